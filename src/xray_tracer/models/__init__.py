"""
Core data models for segment documents and trace propagation.
"""

from .entity import Entity, DEFAULT_METADATA_NAMESPACE
from .segment import Segment, METADATA_SIZE_LIMIT
from .subsegment import Subsegment
from .trace_header import (
    TraceHeader,
    TRACE_HEADER_NAME,
    generate_trace_id,
    generate_entity_id,
    is_valid_trace_id,
    is_valid_entity_id,
)

__all__ = [
    "Entity",
    "Segment",
    "Subsegment",
    "TraceHeader",
    "TRACE_HEADER_NAME",
    "DEFAULT_METADATA_NAMESPACE",
    "METADATA_SIZE_LIMIT",
    "generate_trace_id",
    "generate_entity_id",
    "is_valid_trace_id",
    "is_valid_entity_id",
]
