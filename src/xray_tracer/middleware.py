"""
ASGI middleware opening one segment per inbound request.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from .context import TraceContext
from .exceptions import EntityClosedError
from .models import Segment, TraceHeader, TRACE_HEADER_NAME
from .recorder import Recorder
from .sampling import SamplingRequest

logger = logging.getLogger(__name__)

STATE_ATTRIBUTE = "xray"


class SegmentNamer(ABC):
    """Chooses the segment name for an inbound request."""

    @abstractmethod
    def name_for(self, request: Request) -> Optional[str]:
        """
        Return the segment name for ``request``, or None to use the service name.
        """
        pass


class FixedSegmentNamer(SegmentNamer):
    """Uses the same name for every request."""

    def __init__(self, name: str):
        self.name = name

    def name_for(self, request: Request) -> Optional[str]:
        return self.name


class RouteSegmentNamer(SegmentNamer):
    """
    Names segments per route.

    Keys are either an exact path (``/roles``) or a method and path
    (``GET /roles``); the method-qualified key wins.
    """

    def __init__(self, routes: Dict[str, str], fallback: Optional[str] = None):
        self.routes = dict(routes)
        self.fallback = fallback

    def name_for(self, request: Request) -> Optional[str]:
        path = request.url.path
        return (
            self.routes.get(f"{request.method.upper()} {path}")
            or self.routes.get(path)
            or self.fallback
        )


def get_trace_context(request: Request) -> Optional[TraceContext]:
    """The context of the segment opened for ``request``, if any."""
    return getattr(request.state, STATE_ATTRIBUTE, None)


class XRayMiddleware(BaseHTTPMiddleware):
    """
    Traces every request as a segment.

    The incoming ``X-Amzn-Trace-Id`` header is continued when well-formed;
    otherwise a new trace id is generated. The segment is closed and emitted
    after the handler finishes, whether it returned or raised. A handler may
    close its own segment early; the middleware then only emits it.

    The segment ends when the handler returns its response object. With a
    StreamingResponse the body is sent after that point, so streaming time is
    not part of the segment duration and captures made inside the body
    iterator run detached.
    """

    def __init__(self, app: ASGIApp, recorder: Recorder, segment_namer: Optional[SegmentNamer] = None):
        super().__init__(app)
        self.recorder = recorder
        self.segment_namer = segment_namer or FixedSegmentNamer(recorder.config.service_name)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        header = TraceHeader.from_header_str(request.headers.get(TRACE_HEADER_NAME))
        name = self.segment_namer.name_for(request) or self.recorder.config.service_name
        sampling_request = SamplingRequest(
            host=request.headers.get("host"),
            method=request.method,
            path=request.url.path,
            service_name=name,
        )

        ctx = self.recorder.begin_segment(name, header, sampling_request=sampling_request)
        segment = ctx.segment
        setattr(request.state, STATE_ATTRIBUTE, ctx)
        self._record_request(segment, request)

        try:
            response = await call_next(request)
        except Exception as e:
            self._record_failure(segment, e)
            raise
        else:
            self._record_response(segment, response)
            response.headers[TRACE_HEADER_NAME] = TraceHeader(
                root=segment.trace_id,
                sampled="1" if segment.sampled else "0",
            ).to_header_str()
            return response
        finally:
            self.recorder.finish_segment(ctx)

    @staticmethod
    def _record_failure(segment: Segment, exc: Exception) -> None:
        try:
            segment.add_exception(exc)
            segment.put_http_meta("status", 500)
        except EntityClosedError:
            logger.debug(f"Segment {segment.id} already closed; exception not recorded")

    @staticmethod
    def _record_response(segment: Segment, response: Response) -> None:
        try:
            segment.put_http_meta("status", response.status_code)
            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit():
                segment.put_http_meta("content_length", int(content_length))
        except EntityClosedError:
            logger.debug(f"Segment {segment.id} already closed; response not recorded")

    @staticmethod
    def _record_request(segment: Segment, request: Request) -> None:
        segment.put_http_meta("method", request.method)
        segment.put_http_meta("url", str(request.url))

        user_agent = request.headers.get("user-agent")
        if user_agent:
            segment.put_http_meta("user_agent", user_agent)

        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            segment.put_http_meta("client_ip", forwarded_for.split(",")[0].strip())
            segment.put_http_meta("x_forwarded_for", True)
        elif request.client is not None:
            segment.put_http_meta("client_ip", request.client.host)
