"""
Unit tests for the explicit tracing context and subsegment capture.
"""

import asyncio
import logging

import pytest

from xray_tracer.config import IGNORE_ERROR, RecorderConfig, RUNTIME_ERROR
from xray_tracer.context import capture, capture_async
from xray_tracer.exceptions import ContextMissingError, MetadataSizeExceededError
from xray_tracer.recorder import Recorder


class RoleLookupError(Exception):
    pass


class TestCapture:
    """Test cases for capture() and TraceContext.capture()."""

    def test_capture_returns_result(self, recorder, clock):
        """Test that the work's result is returned and the subsegment closed."""
        ctx = recorder.begin_segment("GetRoles")

        def build(child, count):
            clock.advance(0.1)
            child.put_metadata("No. roles built", count)
            return ["role"] * count

        result = capture(ctx, "BuildRolesDetail", build, 3)

        assert result == ["role", "role", "role"]
        (subsegment,) = ctx.segment.ordered_subsegments()
        assert subsegment.name == "BuildRolesDetail"
        assert subsegment.closed
        assert subsegment.duration == pytest.approx(0.1)
        assert subsegment.metadata == {"default": {"No. roles built": 3}}
        assert subsegment.parent is ctx.segment

    def test_failure_propagates_unchanged(self, recorder):
        """Test that the original exception object reaches the caller."""
        ctx = recorder.begin_segment("GetRoles")
        error = RoleLookupError("role store unavailable")

        def failing(child):
            raise error

        with pytest.raises(RoleLookupError) as exc_info:
            capture(ctx, "BuildRolesDetail", failing)

        assert exc_info.value is error
        (subsegment,) = ctx.segment.ordered_subsegments()
        assert subsegment.closed
        assert subsegment.fault is True
        assert subsegment.cause["exceptions"][0]["type"] == "RoleLookupError"

    def test_noop_capture_changes_only_timing(self, recorder):
        """Test that wrapping a no-op adds a clean subsegment and nothing else."""
        ctx = recorder.begin_segment("GetRoles")

        assert capture(ctx, "noop", lambda child: None) is None

        (subsegment,) = ctx.segment.ordered_subsegments()
        document = subsegment.to_dict()
        assert set(document) == {"name", "id", "start_time", "end_time"}
        assert not ctx.segment.fault and not ctx.segment.error

    def test_nested_captures_build_a_chain(self, recorder):
        """Test that N nested captures produce a tree of depth N."""
        ctx = recorder.begin_segment("GetRoles")
        depth = 5

        def descend(child, level):
            if level < depth:
                capture(child, f"level-{level + 1}", descend, level + 1)

        capture(ctx, "level-1", descend, 1)

        node = ctx.segment
        names = []
        while node.subsegments:
            assert len(node.subsegments) == 1
            child = node.subsegments[0]
            assert child.parent is node
            names.append(child.name)
            node = child
        assert names == [f"level-{i}" for i in range(1, depth + 1)]

    def test_context_manager_form(self, recorder):
        """Test the with-statement form yields the derived context."""
        ctx = recorder.begin_segment("GetRoles")

        with ctx.capture("BuildRolesDetail") as child:
            assert child.entity.parent is ctx.entity
            assert child.trace_id == ctx.trace_id

        assert child.entity.closed

    def test_metadata_overflow_does_not_abort_work(self, recorder):
        """Test that a rejected metadata entry leaves the work and subsegment intact."""
        ctx = recorder.begin_segment("GetRoles")

        def build(child):
            child.put_metadata("count", 1)
            with pytest.raises(MetadataSizeExceededError):
                child.put_metadata("dump", "x" * (70 * 1024))
            return "built"

        assert capture(ctx, "BuildRolesDetail", build) == "built"

        (subsegment,) = ctx.segment.ordered_subsegments()
        assert subsegment.metadata == {"default": {"count": 1}}
        assert not subsegment.fault

    def test_capture_under_closed_parent_runs_detached(self, recorder, caplog):
        """Test that work started after its parent closed still runs, untraced."""
        ctx = recorder.begin_segment("GetRoles")
        recorder.end_segment(ctx)

        with caplog.at_level(logging.ERROR):
            result = capture(ctx, "late", lambda child: child.entity.parent)

        assert result is None
        assert ctx.segment.subsegments == []
        assert "Cannot open subsegment 'late'" in caplog.text

    def test_trace_header_points_at_active_entity(self, recorder):
        """Test the header propagated from inside a capture."""
        ctx = recorder.begin_segment("GetRoles")

        with ctx.capture("call") as child:
            header = child.trace_header()

        assert header.root == ctx.trace_id
        assert header.parent == child.entity.id
        assert header.sampled == "1"


class TestMissingContext:
    """Test cases for work run without a tracing context."""

    def test_log_error_runs_untraced(self, caplog):
        """Test the default strategy logs and still runs the work."""
        with caplog.at_level(logging.ERROR):
            result = capture(None, "BuildRolesDetail", lambda child: child)

        assert result is None
        assert "No tracing context" in caplog.text

    def test_runtime_error_strategy(self, emitter, clock):
        """Test that RUNTIME_ERROR raises instead of running the work."""
        config = RecorderConfig(service_name="svc", sampling=False, context_missing=RUNTIME_ERROR)
        recorder = Recorder(config=config, emitter=emitter, clock=clock)
        calls = []

        with pytest.raises(ContextMissingError):
            recorder.capture(None, "BuildRolesDetail", calls.append)

        assert calls == []

    def test_module_capture_follows_given_strategy(self, caplog):
        """Test that capture and capture_async honor the context_missing keyword."""
        calls = []

        async def fetch(child, role_id):
            return role_id

        with pytest.raises(ContextMissingError):
            capture(None, "BuildRolesDetail", calls.append, context_missing=RUNTIME_ERROR)
        with pytest.raises(ContextMissingError):
            asyncio.run(capture_async(None, "FetchRole", fetch, 7, context_missing=RUNTIME_ERROR))
        with caplog.at_level(logging.ERROR):
            result = asyncio.run(capture_async(None, "FetchRole", fetch, 7, context_missing=IGNORE_ERROR))

        assert calls == []
        assert result == 7
        assert "No tracing context" not in caplog.text

    def test_recorder_capture_async_uses_configured_strategy(self, emitter, clock):
        """Test that the recorder passes its configured strategy to capture_async."""
        config = RecorderConfig(service_name="svc", sampling=False, context_missing=RUNTIME_ERROR)
        recorder = Recorder(config=config, emitter=emitter, clock=clock)

        async def fetch(child):
            return "role"

        with pytest.raises(ContextMissingError):
            asyncio.run(recorder.capture_async(None, "FetchRole", fetch))


class TestAsyncCapture:
    """Test cases for capture in coroutines."""

    def test_capture_async(self, recorder, clock):
        """Test awaiting work inside a subsegment."""
        ctx = recorder.begin_segment("GetRoles")

        async def fetch(child, role_id):
            await asyncio.sleep(0)
            clock.advance(0.05)
            return {"id": role_id}

        result = asyncio.run(capture_async(ctx, "FetchRole", fetch, "admin"))

        assert result == {"id": "admin"}
        (subsegment,) = ctx.segment.ordered_subsegments()
        assert subsegment.duration == pytest.approx(0.05)

    def test_concurrent_siblings(self, recorder, clock):
        """Test that concurrent tasks under one parent get distinct subsegments."""
        ctx = recorder.begin_segment("GetRoles")

        async def fetch(child, index):
            await asyncio.sleep(0)
            child.put_metadata("index", index)
            return index

        async def main():
            async with ctx.capture("FetchAll") as parent:
                return await asyncio.gather(*[
                    capture_async(parent, f"FetchRole-{i}", fetch, i) for i in range(20)
                ])

        assert asyncio.run(main()) == list(range(20))

        (fetch_all,) = ctx.segment.ordered_subsegments()
        children = fetch_all.ordered_subsegments()
        assert len(children) == 20
        assert len({child.id for child in children}) == 20
        assert [child.name for child in children] == [f"FetchRole-{i}" for i in range(20)]

    def test_cancellation_closes_subsegment(self, recorder):
        """Test that a cancelled task still closes its subsegment, marked as fault."""
        ctx = recorder.begin_segment("GetRoles")
        started = []

        async def slow(child):
            started.append(child)
            await asyncio.sleep(10)

        async def main():
            task = asyncio.ensure_future(capture_async(ctx, "slow", slow))
            while not started:
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(main())

        (subsegment,) = ctx.segment.ordered_subsegments()
        assert subsegment.closed
        assert subsegment.fault
        assert subsegment.cause["exceptions"][0]["type"] == "CancelledError"
