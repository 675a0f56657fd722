"""
Base model shared by segments and subsegments.
"""

import json
import logging
import os
import re
import threading
import time
import traceback
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, PrivateAttr

from ..exceptions import EntityClosedError, InvalidAnnotationError, InvalidMetadataError
from .trace_header import generate_entity_id

if TYPE_CHECKING:
    from .segment import Segment
    from .subsegment import Subsegment

logger = logging.getLogger(__name__)

DEFAULT_METADATA_NAMESPACE = "default"
MAX_STACK_FRAMES = 10
INCOMPLETE_EXCEPTION_TYPE = "Incomplete"

ANNOTATION_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

_HTTP_REQUEST_KEYS = ("method", "url", "user_agent", "client_ip", "x_forwarded_for")
_HTTP_RESPONSE_KEYS = ("status", "content_length")


def _measure(key: str, value: Any) -> Tuple[Any, int]:
    """Return the JSON-normalized value and the byte size of ``{key: value}``."""
    try:
        encoded = json.dumps({key: value}, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise InvalidMetadataError(f"Value for '{key}' is not JSON serializable: {e}") from e
    return json.loads(encoded)[key], len(encoded.encode("utf-8"))


class Entity(BaseModel):
    """Common state of a traced unit of work."""
    name: str = Field(..., description="Name of the unit of work")
    id: str = Field(default_factory=generate_entity_id, description="64-bit entity id in hex")
    start_time: float = Field(default_factory=time.time, description="Start time in epoch seconds")
    end_time: Optional[float] = Field(None, description="End time in epoch seconds")
    http: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="HTTP request/response block")
    error: bool = Field(False, description="Client error (4xx)")
    throttle: bool = Field(False, description="Request was throttled (429)")
    fault: bool = Field(False, description="Server error (5xx) or unhandled exception")
    cause: Optional[Dict[str, Any]] = Field(None, description="Recorded exceptions")
    annotations: Dict[str, Any] = Field(default_factory=dict, description="Indexed annotations")
    metadata: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Metadata by namespace")
    subsegments: List["Entity"] = Field(default_factory=list, exclude=True, description="Child subsegments")

    _lock: Any = PrivateAttr(default_factory=threading.RLock)
    _next_sequence: int = PrivateAttr(0)
    _sequence: int = PrivateAttr(0)
    _parent: Any = PrivateAttr(None)
    _entry_sizes: Dict[Tuple[str, str, str], int] = PrivateAttr(default_factory=dict)
    _segment: Any = PrivateAttr(None)

    @property
    def closed(self) -> bool:
        return self.end_time is not None

    @property
    def duration(self) -> Optional[float]:
        """Elapsed seconds, or None while open."""
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    @property
    def parent(self) -> Optional["Entity"]:
        return self._parent

    @property
    def sequence(self) -> int:
        return self._sequence

    @property
    def segment(self) -> Optional["Segment"]:
        """The root segment owning this entity; None for an entity outside any tree."""
        return self._segment

    def _check_open(self, action: str = "modify") -> None:
        if self.closed:
            raise EntityClosedError(self.name, self.id, action)

    # Tree

    def add_subsegment(self, subsegment: "Subsegment") -> None:
        """
        Attach a child subsegment. Safe to call from concurrent workers.

        Args:
            subsegment: Subsegment to attach; it must not have a parent yet
        """
        with self._lock:
            self._check_open("add a subsegment to")
            subsegment._parent = self
            subsegment._sequence = self._next_sequence
            self._next_sequence += 1
            self.subsegments.append(subsegment)
        logger.debug(f"Attached subsegment '{subsegment.name}' ({subsegment.id}) to '{self.name}' ({self.id})")

    def ordered_subsegments(self) -> List["Entity"]:
        """Children ordered by start time, ties broken by attach order."""
        with self._lock:
            children = list(self.subsegments)
        return sorted(children, key=lambda child: (child.start_time, child.sequence))

    def open_descendants(self) -> List["Entity"]:
        """Depth-first list of descendants that are still open, innermost first."""
        found = []
        for child in self.ordered_subsegments():
            found.extend(child.open_descendants())
            if not child.closed:
                found.append(child)
        return found

    # Metadata and annotations

    def put_metadata(self, key: str, value: Any, namespace: str = DEFAULT_METADATA_NAMESPACE) -> None:
        """
        Attach a metadata entry.

        Raises:
            InvalidMetadataError: If the value is not JSON serializable
            MetadataSizeExceededError: If the segment's metadata ceiling would be exceeded
            EntityClosedError: If the entity is already closed
        """
        if not isinstance(key, str) or not key:
            raise InvalidMetadataError("Metadata key must be a non-empty string")
        if not isinstance(namespace, str) or not namespace:
            raise InvalidMetadataError("Metadata namespace must be a non-empty string")
        normalized, size = _measure(key, value)
        with self._lock:
            self._check_open()
            self._reserve(("metadata", namespace, key), key, size)
            self.metadata.setdefault(namespace, {})[key] = normalized

    def put_annotation(self, key: str, value: Union[str, int, float, bool]) -> None:
        """
        Attach an indexed annotation.

        Raises:
            InvalidAnnotationError: If the key or value type is not supported
            MetadataSizeExceededError: If the segment's metadata ceiling would be exceeded
            EntityClosedError: If the entity is already closed
        """
        if not isinstance(key, str) or not ANNOTATION_KEY_PATTERN.match(key):
            raise InvalidAnnotationError(f"Invalid annotation key '{key}'")
        if not isinstance(value, (str, int, float, bool)):
            raise InvalidAnnotationError(
                f"Annotation '{key}' has unsupported type {type(value).__name__}"
            )
        try:
            _, size = _measure(key, value)
        except InvalidMetadataError as e:
            raise InvalidAnnotationError(str(e)) from e
        with self._lock:
            self._check_open()
            self._reserve(("annotation", "", key), key, size)
            self.annotations[key] = value

    def _reserve(self, slot: Tuple[str, str, str], key: str, size: int) -> None:
        previous = self._entry_sizes.get(slot, 0)
        if self.segment is not None:
            self.segment.reserve_metadata_bytes(key, size - previous)
        self._entry_sizes[slot] = size

    @property
    def metadata_size(self) -> int:
        """Bytes of metadata and annotations attached directly to this entity."""
        with self._lock:
            return sum(self._entry_sizes.values())

    # HTTP and errors

    def put_http_meta(self, key: str, value: Any) -> None:
        """Record an HTTP request or response attribute, e.g. ``method`` or ``status``."""
        with self._lock:
            self._check_open()
            if key in _HTTP_REQUEST_KEYS:
                self.http.setdefault("request", {})[key] = value
            elif key in _HTTP_RESPONSE_KEYS:
                self.http.setdefault("response", {})[key] = value
                if key == "status":
                    self.apply_status_code(value)
            else:
                logger.warning(f"Ignoring unsupported http attribute '{key}' on '{self.name}'")

    def apply_status_code(self, status: Optional[int]) -> None:
        """Set the error/throttle/fault flags implied by an HTTP status code."""
        if status is None:
            return
        if 400 <= status < 500:
            self.error = True
            if status == 429:
                self.throttle = True
        elif status >= 500:
            self.fault = True

    def add_exception(self, exc: BaseException, remote: bool = False, fault: bool = True) -> None:
        """
        Record an exception in the entity's cause.

        Args:
            exc: The exception that ended or interrupted the work
            remote: True when the exception came from a downstream service
            fault: Mark as fault (server side) rather than error (client side)
        """
        frames = traceback.extract_tb(exc.__traceback__)[-MAX_STACK_FRAMES:] if exc.__traceback__ else []
        record = {
            "id": generate_entity_id(),
            "message": str(exc),
            "type": type(exc).__name__,
            "remote": remote,
            "stack": [
                {"path": frame.filename, "line": frame.lineno, "label": frame.name}
                for frame in frames
            ],
        }
        with self._lock:
            self._check_open()
            if fault:
                self.fault = True
            else:
                self.error = True
            self._append_cause(record)

    def _append_cause(self, record: Dict[str, Any]) -> None:
        if self.cause is None:
            self.cause = {"working_directory": os.getcwd(), "exceptions": []}
        self.cause["exceptions"].append(record)

    # Lifecycle

    def try_close(self, end_time: Optional[float] = None) -> bool:
        """
        Close the entity unless it is already closed.

        Still-open descendants are closed first with an ``Incomplete`` marker.

        Returns:
            True if this call closed the entity, False if it was already closed
        """
        end = end_time if end_time is not None else time.time()
        with self._lock:
            if self.closed:
                return False
            for child in self.open_descendants():
                child.mark_incomplete(end)
            self.end_time = max(end, self.start_time)
        logger.debug(f"Closed '{self.name}' ({self.id}) after {self.duration:.6f}s")
        return True

    def close(self, end_time: Optional[float] = None) -> None:
        """
        Close the entity exactly once.

        Raises:
            EntityClosedError: If the entity was already closed
        """
        if not self.try_close(end_time):
            raise EntityClosedError(self.name, self.id, "close")

    def mark_incomplete(self, end_time: float) -> None:
        """Close an entity whose work never finished, flagging it as a fault."""
        with self._lock:
            if self.closed:
                return
            self.fault = True
            self._append_cause({
                "id": generate_entity_id(),
                "message": "Closed before its work completed",
                "type": INCOMPLETE_EXCEPTION_TYPE,
                "remote": False,
                "stack": [],
            })
            self.end_time = max(end_time, self.start_time)
        logger.warning(f"Subsegment '{self.name}' ({self.id}) was closed as incomplete")

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the entity and its subtree to the segment document format."""
        with self._lock:
            document = self.model_dump(exclude_none=True)
            for flag in ("error", "throttle", "fault"):
                if not document.get(flag):
                    document.pop(flag, None)
            for block in ("http", "annotations", "metadata"):
                if not document.get(block):
                    document.pop(block, None)
            if self.end_time is None:
                document["in_progress"] = True
        children = self.ordered_subsegments()
        if children:
            document["subsegments"] = [child.to_dict() for child in children]
        return document
