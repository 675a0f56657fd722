"""
Exception types raised by the tracing library.
"""

from typing import Optional


class XRayTracerError(Exception):
    """Base class for all tracing errors."""


class EntityClosedError(XRayTracerError):
    """Raised when a closed segment or subsegment is closed again or mutated."""

    def __init__(self, entity_name: str, entity_id: str, action: str = "modify"):
        self.entity_name = entity_name
        self.entity_id = entity_id
        super().__init__(f"Cannot {action} entity '{entity_name}' ({entity_id}): already closed")


class MetadataSizeExceededError(XRayTracerError):
    """Raised when attaching metadata would push a segment tree over its size ceiling."""

    def __init__(self, key: str, limit: int, current: int, requested: int):
        self.key = key
        self.limit = limit
        self.current = current
        self.requested = requested
        super().__init__(
            f"Metadata '{key}' needs {requested} bytes but only {limit - current} "
            f"of {limit} remain in the segment"
        )


class InvalidMetadataError(XRayTracerError):
    """Raised when a metadata value cannot be serialized to JSON."""


class InvalidAnnotationError(XRayTracerError):
    """Raised when an annotation key or value is not supported."""


class ContextMissingError(XRayTracerError):
    """Raised when traced work runs without a tracing context under RUNTIME_ERROR."""

    def __init__(self, operation: str, detail: Optional[str] = None):
        self.operation = operation
        message = f"No tracing context available for '{operation}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ConfigurationError(XRayTracerError):
    """Raised for invalid recorder or daemon configuration."""


class InvalidDaemonAddressError(ConfigurationError):
    """Raised when a daemon address string cannot be parsed."""
