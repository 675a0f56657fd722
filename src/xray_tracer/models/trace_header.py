"""
Trace header model for propagating trace context between services.
"""

import logging
import os
import re
import time
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

TRACE_HEADER_NAME = "X-Amzn-Trace-Id"

ROOT_KEY = "Root"
PARENT_KEY = "Parent"
SAMPLED_KEY = "Sampled"

TRACE_ID_VERSION = "1"
TRACE_ID_PATTERN = re.compile(r"^1-[0-9a-f]{8}-[0-9a-f]{24}$")
ENTITY_ID_PATTERN = re.compile(r"^[0-9a-f]{16}$")
SAMPLED_VALUES = ("0", "1", "?")


def generate_trace_id(now: Optional[float] = None) -> str:
    """
    Generate a new trace id of the form ``1-<epoch hex>-<96 random bits>``.

    Args:
        now: Epoch seconds to embed; defaults to the current time

    Returns:
        Trace id string
    """
    epoch = int(now if now is not None else time.time())
    return f"{TRACE_ID_VERSION}-{epoch:08x}-{os.urandom(12).hex()}"


def generate_entity_id() -> str:
    """Return a random 64-bit id as 16 lowercase hex characters."""
    return os.urandom(8).hex()


def is_valid_trace_id(value: Optional[str]) -> bool:
    return bool(value) and TRACE_ID_PATTERN.match(value) is not None


def is_valid_entity_id(value: Optional[str]) -> bool:
    return bool(value) and ENTITY_ID_PATTERN.match(value) is not None


class TraceHeader(BaseModel):
    """Parsed form of the ``X-Amzn-Trace-Id`` header."""
    root: Optional[str] = Field(None, description="Trace id shared by every entity of the request chain")
    parent: Optional[str] = Field(None, description="Id of the upstream segment or subsegment")
    sampled: Optional[Literal["0", "1", "?"]] = Field(None, description="Upstream sampling decision")
    data: Dict[str, str] = Field(default_factory=dict, description="Additional key/value pairs, passed through")

    @classmethod
    def from_header_str(cls, header: Optional[str]) -> "TraceHeader":
        """
        Parse a trace header value. Never raises.

        A malformed root is treated as absent so that the caller generates a
        fresh trace id; a malformed parent or sampled value is dropped.

        Args:
            header: Raw header value, or None when the header is missing

        Returns:
            TraceHeader, possibly empty
        """
        if not header:
            return cls()

        root = None
        parent = None
        sampled = None
        data: Dict[str, str] = {}

        for part in header.split(";"):
            part = part.strip()
            if not part:
                continue
            key, sep, value = part.partition("=")
            key = key.strip()
            value = value.strip()
            if not sep or not key:
                logger.warning(f"Ignoring malformed trace header segment '{part}'")
                continue

            if key == ROOT_KEY:
                if is_valid_trace_id(value):
                    root = value
                else:
                    logger.warning(f"Ignoring malformed trace id '{value}'")
            elif key == PARENT_KEY:
                if is_valid_entity_id(value):
                    parent = value
                else:
                    logger.warning(f"Ignoring malformed parent id '{value}'")
            elif key == SAMPLED_KEY:
                if value in SAMPLED_VALUES:
                    sampled = value
                else:
                    logger.warning(f"Ignoring unknown sampling decision '{value}'")
            else:
                data[key] = value

        # A parent without a root cannot be continued
        if root is None:
            parent = None

        return cls(root=root, parent=parent, sampled=sampled, data=data)

    def to_header_str(self) -> str:
        """Serialize back to the wire form, omitting absent parts."""
        parts = []
        if self.root:
            parts.append(f"{ROOT_KEY}={self.root}")
        if self.parent:
            parts.append(f"{PARENT_KEY}={self.parent}")
        if self.sampled is not None:
            parts.append(f"{SAMPLED_KEY}={self.sampled}")
        for key, value in self.data.items():
            parts.append(f"{key}={value}")
        return ";".join(parts)

    @property
    def sampling_decision(self) -> Optional[bool]:
        """True/False when upstream decided, None when undecided or requested (``?``)."""
        if self.sampled == "1":
            return True
        if self.sampled == "0":
            return False
        return None
