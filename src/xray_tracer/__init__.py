"""
xray_tracer - Segment/subsegment request tracing for Python web services.

This package provides tools and utilities for:
- Opening one segment per inbound request through ASGI middleware
- Timing units of work as nested subsegments with custom metadata
- Tracing outbound httpx calls and propagating the trace header downstream
- Sampling requests with local or centralized rules
- Emitting closed segment documents to the local collector daemon over UDP
"""

__version__ = "0.1.0"
__author__ = "Your Name"
__email__ = "your.email@example.com"

from .models import (
    Entity,
    Segment,
    Subsegment,
    TraceHeader,
    TRACE_HEADER_NAME,
    METADATA_SIZE_LIMIT,
    generate_trace_id,
)
from .config import RecorderConfig, DaemonAddress, DaemonConfig, parse_daemon_address
from .context import TraceContext, Capture, capture, capture_async
from .recorder import Recorder
from .middleware import (
    XRayMiddleware,
    SegmentNamer,
    FixedSegmentNamer,
    RouteSegmentNamer,
    get_trace_context,
)
from .client import (
    TracedTransport,
    AsyncTracedTransport,
    traced_client,
    traced_async_client,
    trace_extensions,
)
from .emitters import Emitter, UDPEmitter, InMemoryEmitter
from .sampling import LocalSampler, SamplingRule, DaemonSamplingConnector
from .exceptions import (
    XRayTracerError,
    EntityClosedError,
    MetadataSizeExceededError,
    InvalidMetadataError,
    InvalidAnnotationError,
    ContextMissingError,
    ConfigurationError,
    InvalidDaemonAddressError,
)

__all__ = [
    "Entity",
    "Segment",
    "Subsegment",
    "TraceHeader",
    "TRACE_HEADER_NAME",
    "METADATA_SIZE_LIMIT",
    "generate_trace_id",
    "RecorderConfig",
    "DaemonAddress",
    "DaemonConfig",
    "parse_daemon_address",
    "TraceContext",
    "Capture",
    "capture",
    "capture_async",
    "Recorder",
    # Middleware
    "XRayMiddleware",
    "SegmentNamer",
    "FixedSegmentNamer",
    "RouteSegmentNamer",
    "get_trace_context",
    # Outbound calls
    "TracedTransport",
    "AsyncTracedTransport",
    "traced_client",
    "traced_async_client",
    "trace_extensions",
    # Emission and sampling
    "Emitter",
    "UDPEmitter",
    "InMemoryEmitter",
    "LocalSampler",
    "SamplingRule",
    "DaemonSamplingConnector",
    # Errors
    "XRayTracerError",
    "EntityClosedError",
    "MetadataSizeExceededError",
    "InvalidMetadataError",
    "InvalidAnnotationError",
    "ContextMissingError",
    "ConfigurationError",
    "InvalidDaemonAddressError",
]
