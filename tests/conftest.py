"""
Shared fixtures for the test suite.
"""

import pytest

from xray_tracer.config import RecorderConfig
from xray_tracer.emitters import InMemoryEmitter
from xray_tracer.recorder import Recorder


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: tests that open real local sockets")


class FakeClock:
    """Manually advanced epoch-second clock."""

    def __init__(self, start: float = 1700000000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """A clock that only moves when the test advances it."""
    return FakeClock()


@pytest.fixture
def emitter():
    """Emitter collecting closed segments in memory."""
    return InMemoryEmitter()


@pytest.fixture
def recorder(emitter, clock):
    """Recorder that samples everything and emits into memory."""
    config = RecorderConfig(service_name="test-service", sampling=False)
    return Recorder(config=config, emitter=emitter, clock=clock)
