"""
Segment model: the top-level unit of work for one service handling one request.
"""

import logging
import threading
from typing import Any, Dict, Optional

from pydantic import Field, PrivateAttr

from ..exceptions import MetadataSizeExceededError
from .entity import Entity
from .trace_header import generate_trace_id

logger = logging.getLogger(__name__)

METADATA_SIZE_LIMIT = 64 * 1024


class Segment(Entity):
    """Represents the work done by one service for one request."""
    trace_id: str = Field(default_factory=generate_trace_id, description="Trace id shared across services")
    parent_id: Optional[str] = Field(None, description="Id of the upstream entity that called this service")
    service: Optional[Dict[str, Any]] = Field(None, description="Service information, e.g. version")
    origin: Optional[str] = Field(None, description="Type of resource running the service")
    sampled: bool = Field(True, exclude=True, description="Whether the segment is sent to the daemon")

    _budget_lock: Any = PrivateAttr(default_factory=threading.Lock)
    _metadata_bytes: int = PrivateAttr(0)
    _metadata_limit: int = PrivateAttr(METADATA_SIZE_LIMIT)
    _emitted: bool = PrivateAttr(False)

    def __init__(self, metadata_limit: int = METADATA_SIZE_LIMIT, **data: Any):
        super().__init__(**data)
        self._metadata_limit = metadata_limit

    @property
    def segment(self) -> "Segment":
        return self

    @property
    def metadata_limit(self) -> int:
        return self._metadata_limit

    @property
    def metadata_bytes(self) -> int:
        """Total metadata and annotation bytes attached anywhere in the tree."""
        with self._budget_lock:
            return self._metadata_bytes

    def reserve_metadata_bytes(self, key: str, delta: int) -> None:
        """
        Account for ``delta`` bytes of metadata in the segment tree.

        Raises:
            MetadataSizeExceededError: If the tree would exceed the ceiling; nothing is reserved
        """
        with self._budget_lock:
            if delta > 0 and self._metadata_bytes + delta > self._metadata_limit:
                logger.warning(
                    f"Rejected metadata '{key}' on segment '{self.name}': "
                    f"{self._metadata_bytes} + {delta} bytes exceeds {self._metadata_limit}"
                )
                raise MetadataSizeExceededError(key, self._metadata_limit, self._metadata_bytes, delta)
            self._metadata_bytes += delta

    @property
    def emitted(self) -> bool:
        return self._emitted

    def mark_emitted(self) -> bool:
        """Claim the single emission of this segment; False if it was already claimed."""
        with self._lock:
            if self._emitted:
                return False
            self._emitted = True
            return True

    def to_document(self) -> Dict[str, Any]:
        """Serialize the closed segment tree as sent to the daemon."""
        return self.to_dict()
