"""
Utility functions for serializing segment documents.
"""

import json
import logging
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..models import Segment

logger = logging.getLogger(__name__)

PROTOCOL_HEADER = json.dumps({"format": "json", "version": 1})
PROTOCOL_DELIMITER = "\n"
# Largest payload of a single IPv4 UDP datagram.
MAX_DATAGRAM_SIZE = 65507


def serialize_segment(segment: "Segment") -> Optional[bytes]:
    """
    Serialize a segment tree to the daemon wire format.

    Args:
        segment: Closed segment to serialize

    Returns:
        Encoded datagram, or None if the segment could not be serialized
    """
    try:
        document: Dict[str, Any] = segment.to_document()
        body = json.dumps(document, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to serialize segment '{segment.name}' ({segment.id}): {e}")
        return None
    return f"{PROTOCOL_HEADER}{PROTOCOL_DELIMITER}{body}".encode("utf-8")


def parse_datagram(payload: bytes) -> Dict[str, Any]:
    """
    Split a datagram back into its segment document.

    Raises:
        ValueError: If the header is missing or the body is not valid JSON
    """
    header, sep, body = payload.decode("utf-8").partition(PROTOCOL_DELIMITER)
    if not sep or json.loads(header) != {"format": "json", "version": 1}:
        raise ValueError("Datagram does not start with the segment document header")
    return json.loads(body)
