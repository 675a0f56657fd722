"""
Outbound HTTP instrumentation for httpx clients.

The caller's TraceContext travels with each request in its extensions:

    client.get(url, extensions=trace_extensions(ctx))

Each instrumented call becomes one ``remote`` subsegment of the active
entity, and the trace header is forwarded so the downstream service
continues the same trace.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from .config import LOG_ERROR
from .context import TraceContext, handle_missing_context
from .exceptions import EntityClosedError
from .models import TRACE_HEADER_NAME

logger = logging.getLogger(__name__)

CONTEXT_EXTENSION = "xray_context"
NAME_EXTENSION = "xray_name"
REMOTE_NAMESPACE = "remote"


def trace_extensions(ctx: Optional[TraceContext], name: Optional[str] = None) -> Dict[str, Any]:
    """
    Build request extensions carrying the tracing context.

    Args:
        ctx: Active context of the caller
        name: Subsegment name; defaults to the request host
    """
    extensions: Dict[str, Any] = {CONTEXT_EXTENSION: ctx}
    if name:
        extensions[NAME_EXTENSION] = name
    return extensions


class _OutboundTracer:
    """Shared bookkeeping for the sync and async transports."""

    def __init__(self, context_missing: str = LOG_ERROR):
        self.context_missing = context_missing

    def begin(self, request: httpx.Request) -> Optional[TraceContext]:
        ctx = request.extensions.get(CONTEXT_EXTENSION)
        name = request.extensions.get(NAME_EXTENSION) or request.url.host or "remote"
        if ctx is None:
            handle_missing_context(f"{request.method} {request.url}", self.context_missing)
            return None

        try:
            child = ctx.begin_subsegment(name, namespace=REMOTE_NAMESPACE)
        except EntityClosedError as e:
            logger.error(f"Cannot trace {request.method} {request.url}: {e}")
            return None

        child.put_http_meta("method", request.method)
        child.put_http_meta("url", str(request.url))
        request.headers[TRACE_HEADER_NAME] = child.trace_header().to_header_str()
        return child

    @staticmethod
    def record_response(child: TraceContext, response: httpx.Response) -> None:
        try:
            child.put_http_meta("status", response.status_code)
            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit():
                child.put_http_meta("content_length", int(content_length))
        except EntityClosedError:
            logger.debug(f"Subsegment {child.entity.id} already closed; response not recorded")

    @staticmethod
    def record_exception(child: TraceContext, exc: BaseException) -> None:
        try:
            child.add_exception(exc, remote=True)
        except EntityClosedError:
            logger.debug(f"Subsegment {child.entity.id} already closed; exception not recorded")

    @staticmethod
    def end(child: TraceContext) -> None:
        if not child.end():
            logger.debug(f"Subsegment {child.entity.id} was already closed")


class TracedTransport(httpx.BaseTransport):
    """Wraps a synchronous httpx transport, tracing every request."""

    def __init__(self, transport: Optional[httpx.BaseTransport] = None, context_missing: str = LOG_ERROR):
        self._transport = transport or httpx.HTTPTransport()
        self._tracer = _OutboundTracer(context_missing)

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        child = self._tracer.begin(request)
        if child is None:
            return self._transport.handle_request(request)

        try:
            response = self._transport.handle_request(request)
        except Exception as e:
            self._tracer.record_exception(child, e)
            raise
        else:
            self._tracer.record_response(child, response)
            return response
        finally:
            self._tracer.end(child)

    def close(self) -> None:
        self._transport.close()


class AsyncTracedTransport(httpx.AsyncBaseTransport):
    """Wraps an asynchronous httpx transport, tracing every request."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, context_missing: str = LOG_ERROR):
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._tracer = _OutboundTracer(context_missing)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        child = self._tracer.begin(request)
        if child is None:
            return await self._transport.handle_async_request(request)

        try:
            response = await self._transport.handle_async_request(request)
        except BaseException as e:
            self._tracer.record_exception(child, e)
            raise
        else:
            self._tracer.record_response(child, response)
            return response
        finally:
            self._tracer.end(child)

    async def aclose(self) -> None:
        await self._transport.aclose()


def traced_client(
    transport: Optional[httpx.BaseTransport] = None,
    context_missing: str = LOG_ERROR,
    **kwargs: Any,
) -> httpx.Client:
    """Create an httpx.Client whose requests are traced."""
    return httpx.Client(transport=TracedTransport(transport, context_missing), **kwargs)


def traced_async_client(
    transport: Optional[httpx.AsyncBaseTransport] = None,
    context_missing: str = LOG_ERROR,
    **kwargs: Any,
) -> httpx.AsyncClient:
    """Create an httpx.AsyncClient whose requests are traced."""
    return httpx.AsyncClient(transport=AsyncTracedTransport(transport, context_missing), **kwargs)
