"""
In-memory emitter that keeps closed segments for inspection.
"""

import logging
import threading
from typing import Any, Dict, List, TYPE_CHECKING

from .interfaces import Emitter

if TYPE_CHECKING:
    from ..models import Segment


class InMemoryEmitter(Emitter):
    """Collects emitted segments in a list, for tests and local development."""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._segments: List["Segment"] = []
        self._lock = threading.Lock()

    def send_entity(self, segment: "Segment") -> bool:
        with self._lock:
            self._segments.append(segment)
        self.logger.debug(f"Captured segment '{segment.name}' ({segment.id})")
        return True

    @property
    def segments(self) -> List["Segment"]:
        with self._lock:
            return list(self._segments)

    def documents(self) -> List[Dict[str, Any]]:
        return [segment.to_document() for segment in self.segments]

    def clear(self) -> None:
        with self._lock:
            self._segments.clear()
