"""
Reservoir-based sampler evaluating sampling rules in-process.
"""

import logging
import math
import random
import threading
import time
from typing import Callable, Dict, List, Optional

from .rules import SamplingRequest, SamplingRule


class Reservoir:
    """Allows up to ``fixed_target`` borrows per wall-clock second."""

    def __init__(self, fixed_target: int, clock: Callable[[], float] = time.time):
        self.fixed_target = fixed_target
        self._clock = clock
        self._lock = threading.Lock()
        self._current_second = -1
        self._used = 0

    def take(self) -> bool:
        now = int(math.floor(self._clock()))
        with self._lock:
            if now != self._current_second:
                self._current_second = now
                self._used = 0
            if self._used < self.fixed_target:
                self._used += 1
                return True
            return False


class LocalSampler:
    """
    Samples requests using the first matching rule, by priority.

    Each rule first borrows from its reservoir; once the reservoir is
    exhausted for the current second, requests are sampled at the rule's rate.
    """

    def __init__(
        self,
        rules: Optional[List[SamplingRule]] = None,
        default: Optional[SamplingRule] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._clock = clock
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self.default = default or SamplingRule()
        self._rules: List[SamplingRule] = []
        self._reservoirs: Dict[str, Reservoir] = {}
        self.set_rules(rules or [])

    @property
    def rules(self) -> List[SamplingRule]:
        with self._lock:
            return list(self._rules)

    def set_rules(self, rules: List[SamplingRule], default: Optional[SamplingRule] = None) -> None:
        """Replace the rule set; reservoirs are rebuilt for the new rules."""
        ordered = sorted(rules, key=lambda rule: rule.priority)
        with self._lock:
            if default is not None:
                self.default = default
            self._rules = ordered
            self._reservoirs = {
                id(rule): Reservoir(rule.fixed_target, self._clock)
                for rule in ordered + [self.default]
            }
        self.logger.debug(f"Loaded {len(ordered)} sampling rules")

    def match(self, request: SamplingRequest) -> SamplingRule:
        with self._lock:
            rules = list(self._rules)
            default = self.default
        for rule in rules:
            if rule.matches(request):
                return rule
        return default

    def should_trace(self, request: Optional[SamplingRequest] = None) -> bool:
        """
        Decide whether a request is sampled.

        Args:
            request: Request attributes; None matches only the default rule

        Returns:
            True if the request should be traced and emitted
        """
        rule = self.match(request or SamplingRequest())
        with self._lock:
            reservoir = self._reservoirs.get(id(rule))
        if reservoir is not None and reservoir.take():
            return True
        return self._rng.random() < rule.rate
