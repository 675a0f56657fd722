"""
Recorder tying configuration, sampling and emission together.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .config import RecorderConfig
from .context import TraceContext, capture, capture_async
from .emitters import Emitter, UDPEmitter
from .models import Segment, TraceHeader
from .sampling import DaemonSamplingConnector, LocalRulesDocument, LocalSampler, SamplingRequest
from .sampling.connector import DaemonConnectorConfig

T = TypeVar("T")


class Recorder:
    """
    Opens and closes segments and hands closed trees to an emitter.

    The recorder holds no per-request state; the active segment travels in
    the TraceContext returned by begin_segment.
    """

    def __init__(
        self,
        config: Optional[RecorderConfig] = None,
        emitter: Optional[Emitter] = None,
        sampler: Optional[LocalSampler] = None,
        sampling_connector: Optional[DaemonSamplingConnector] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the recorder.

        Args:
            config: Recorder configuration; defaults to RecorderConfig.from_env()
            emitter: Where closed segments go; defaults to a UDPEmitter on the daemon address
            sampler: Sampling rules; defaults to the configured local rules file or the default rule
            sampling_connector: Source of centralized rules for refresh_sampling_rules
            clock: Source of epoch-second timestamps
        """
        self.config = config or RecorderConfig.from_env()
        self.logger = logging.getLogger(self.__class__.__name__)
        self.clock = clock
        self.emitter = emitter or UDPEmitter(self.config.daemon_address)
        self.sampler = sampler or self._build_sampler()
        self._sampling_connector = sampling_connector

    def _build_sampler(self) -> LocalSampler:
        if self.config.sampling_rules:
            document = LocalRulesDocument.from_file(self.config.sampling_rules)
            return LocalSampler(document.rules, document.default, clock=self.clock)
        return LocalSampler(clock=self.clock)

    def should_sample(
        self,
        trace_header: Optional[TraceHeader] = None,
        request: Optional[SamplingRequest] = None,
    ) -> bool:
        """An upstream decision wins; otherwise the sampler decides."""
        if trace_header is not None and trace_header.sampling_decision is not None:
            return trace_header.sampling_decision
        if not self.config.sampling:
            return True
        return self.sampler.should_trace(request)

    def begin_segment(
        self,
        name: Optional[str] = None,
        trace_header: Optional[TraceHeader] = None,
        sampled: Optional[bool] = None,
        sampling_request: Optional[SamplingRequest] = None,
    ) -> TraceContext:
        """
        Open a segment, continuing the trace in ``trace_header`` if it has a root.

        Args:
            name: Segment name; defaults to the configured service name
            trace_header: Parsed incoming header, if any
            sampled: Explicit sampling decision, overriding header and sampler
            sampling_request: Request attributes for rule matching

        Returns:
            Context whose active entity is the new segment
        """
        header = trace_header or TraceHeader()
        segment_name = name or self.config.service_name
        if sampled is None:
            sampled = self.should_sample(header, sampling_request)

        fields = {"name": segment_name, "start_time": self.clock(), "sampled": sampled}
        if header.root:
            fields["trace_id"] = header.root
            fields["parent_id"] = header.parent
        if self.config.service_version:
            fields["service"] = {"version": self.config.service_version}
        if self.config.origin:
            fields["origin"] = self.config.origin

        segment = Segment(**fields)
        self.logger.debug(
            f"Opened segment '{segment.name}' ({segment.id}) in trace {segment.trace_id}, sampled={sampled}"
        )
        return TraceContext(segment, self)

    def end_segment(self, ctx: TraceContext) -> None:
        """
        Close the context's segment and emit it when sampled.

        Emission problems are logged and never raised.

        Raises:
            EntityClosedError: If the segment was already closed
        """
        segment = ctx.segment
        segment.close(self.clock())
        self._emit(segment)

    def finish_segment(self, ctx: TraceContext) -> bool:
        """
        Close the context's segment if still open and emit it if it has not been emitted.

        Unlike end_segment, a segment the application already closed is not an
        error; this is what request instrumentation calls once the work is done.

        Returns:
            True if this call handed the segment to the emitter
        """
        segment = ctx.segment
        if not segment.try_close(self.clock()):
            self.logger.debug(f"Segment '{segment.name}' ({segment.id}) was already closed")
        return self._emit(segment)

    def _emit(self, segment: Segment) -> bool:
        if not (segment.sampled and self.config.enabled):
            self.logger.debug(f"Segment '{segment.name}' ({segment.id}) not emitted")
            return False
        if not segment.mark_emitted():
            self.logger.debug(f"Segment '{segment.name}' ({segment.id}) already emitted")
            return False

        try:
            self.emitter.send_entity(segment)
        except Exception as e:
            self.logger.error(f"Emitter failed for segment '{segment.name}' ({segment.id}): {e}")
        return True

    def capture(
        self,
        ctx: Optional[TraceContext],
        name: str,
        fn: Callable[..., T],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """capture() using this recorder's context-missing strategy."""
        return capture(ctx, name, fn, *args, context_missing=self.config.context_missing, **kwargs)

    async def capture_async(
        self,
        ctx: Optional[TraceContext],
        name: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        return await capture_async(ctx, name, fn, *args, context_missing=self.config.context_missing, **kwargs)

    def refresh_sampling_rules(self) -> bool:
        """
        Replace the sampler's rules with centralized rules from the daemon.

        Returns:
            True if new rules were installed, False if the local rules were kept
        """
        if self._sampling_connector is None:
            self._sampling_connector = DaemonSamplingConnector(
                DaemonConnectorConfig(daemon_address=self.config.daemon_address)
            )
        rules = self._sampling_connector.fetch_sampling_rules()
        if not rules:
            self.logger.info("No centralized sampling rules available; keeping local rules")
            return False
        self.sampler.set_rules(rules)
        self.logger.info(f"Installed {len(rules)} centralized sampling rules")
        return True

    def close(self) -> None:
        self.emitter.close()
        if self._sampling_connector is not None:
            self._sampling_connector.close()
