"""
Explicit tracing context and the subsegment capture API.

A TraceContext points at the active segment or subsegment. It is passed
along the call chain as an ordinary argument; nothing here is stored in
thread-local or global state, so concurrent requests never share a tree.
"""

import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, TypeVar, Union

from .config import IGNORE_ERROR, LOG_ERROR, RUNTIME_ERROR
from .exceptions import ContextMissingError, EntityClosedError
from .models import DEFAULT_METADATA_NAMESPACE, Entity, Segment, Subsegment, TraceHeader

if TYPE_CHECKING:
    from .recorder import Recorder

logger = logging.getLogger(__name__)

T = TypeVar("T")


def handle_missing_context(operation: str, strategy: str = LOG_ERROR) -> None:
    """
    Apply the context-missing strategy for traced work that has no context.

    Raises:
        ContextMissingError: When the strategy is RUNTIME_ERROR
    """
    if strategy == RUNTIME_ERROR:
        raise ContextMissingError(operation)
    if strategy != IGNORE_ERROR:
        logger.error(f"No tracing context for '{operation}'; running it untraced")


class TraceContext:
    """Immutable handle on the active entity of one request's trace tree."""

    __slots__ = ("_entity", "_recorder")

    def __init__(self, entity: Entity, recorder: Optional["Recorder"] = None):
        self._entity = entity
        self._recorder = recorder

    def __repr__(self) -> str:
        return f"TraceContext(entity={self._entity.name!r}, id={self._entity.id!r}, trace_id={self.trace_id!r})"

    @property
    def entity(self) -> Entity:
        return self._entity

    @property
    def recorder(self) -> Optional["Recorder"]:
        return self._recorder

    @property
    def segment(self) -> Segment:
        return self._entity.segment

    @property
    def trace_id(self) -> str:
        return self.segment.trace_id

    @property
    def sampled(self) -> bool:
        return self.segment.sampled

    def _now(self) -> float:
        if self._recorder is not None:
            return self._recorder.clock()
        return time.time()

    def trace_header(self) -> TraceHeader:
        """Header that continues this trace in a downstream service."""
        return TraceHeader(
            root=self.trace_id,
            parent=self._entity.id,
            sampled="1" if self.sampled else "0",
        )

    def begin_subsegment(self, name: str, namespace: Optional[str] = None) -> "TraceContext":
        """
        Open a child subsegment of the active entity.

        Raises:
            EntityClosedError: If the active entity is already closed
        """
        subsegment = Subsegment(self.segment, name=name, namespace=namespace, start_time=self._now())
        self._entity.add_subsegment(subsegment)
        return TraceContext(subsegment, self._recorder)

    def end(self) -> bool:
        """Close the active entity; False if it was already closed."""
        return self._entity.try_close(self._now())

    def capture(self, name: str, namespace: Optional[str] = None) -> "Capture":
        """
        Wrap a block in a child subsegment.

        Usable as ``with ctx.capture("name") as child:`` or with ``async with``.
        """
        return Capture(self, name, namespace)

    def put_metadata(self, key: str, value: Any, namespace: str = DEFAULT_METADATA_NAMESPACE) -> None:
        """Attach metadata to the active entity. See Entity.put_metadata for errors."""
        self._entity.put_metadata(key, value, namespace)

    def put_annotation(self, key: str, value: Union[str, int, float, bool]) -> None:
        self._entity.put_annotation(key, value)

    def put_http_meta(self, key: str, value: Any) -> None:
        self._entity.put_http_meta(key, value)

    def add_exception(self, exc: BaseException, remote: bool = False, fault: bool = True) -> None:
        self._entity.add_exception(exc, remote=remote, fault=fault)


class Capture:
    """
    Context manager that times a block as a subsegment.

    The subsegment is closed however the block exits. An exception leaving
    the block is recorded on the subsegment and then propagates unchanged.
    """

    def __init__(self, parent: TraceContext, name: str, namespace: Optional[str] = None):
        self.parent = parent
        self.name = name
        self.namespace = namespace
        self.context: Optional[TraceContext] = None

    def __enter__(self) -> TraceContext:
        try:
            self.context = self.parent.begin_subsegment(self.name, self.namespace)
        except EntityClosedError as e:
            # The work still runs; its subsegment is detached and never emitted
            logger.error(f"Cannot open subsegment '{self.name}': {e}")
            detached = Subsegment(self.parent.segment, name=self.name, namespace=self.namespace)
            self.context = TraceContext(detached, self.parent.recorder)
        return self.context

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None:
            try:
                self.context.add_exception(exc)
            except EntityClosedError:
                logger.debug(f"Subsegment '{self.name}' was already closed; exception not recorded")
        if not self.context.end():
            logger.debug(f"Subsegment '{self.name}' ({self.context.entity.id}) was already closed")
        return False

    async def __aenter__(self) -> TraceContext:
        return self.__enter__()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return self.__exit__(exc_type, exc, tb)


def capture(
    ctx: Optional[TraceContext],
    name: str,
    fn: Callable[..., T],
    *args: Any,
    context_missing: str = LOG_ERROR,
    **kwargs: Any,
) -> T:
    """
    Run ``fn(child_ctx, *args, **kwargs)`` inside a subsegment named ``name``.

    The result is returned and any exception propagates unchanged; the
    subsegment is closed either way. With no context the work runs untraced
    and ``fn`` receives None.

    Args:
        ctx: Context of the enclosing segment or subsegment
        name: Subsegment name
        fn: Unit of work; receives the derived context as first argument
        context_missing: Strategy applied when ``ctx`` is None

    Returns:
        Whatever ``fn`` returns
    """
    if ctx is None:
        handle_missing_context(f"capture {name}", context_missing)
        return fn(None, *args, **kwargs)
    with ctx.capture(name) as child:
        return fn(child, *args, **kwargs)


async def capture_async(
    ctx: Optional[TraceContext],
    name: str,
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    context_missing: str = LOG_ERROR,
    **kwargs: Any,
) -> T:
    """Awaitable variant of capture for coroutine functions."""
    if ctx is None:
        handle_missing_context(f"capture {name}", context_missing)
        return await fn(None, *args, **kwargs)
    async with ctx.capture(name) as child:
        return await fn(child, *args, **kwargs)
