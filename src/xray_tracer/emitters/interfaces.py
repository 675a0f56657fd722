"""
Interfaces for emitters that deliver closed segments to a collector.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models import Segment


class Emitter(ABC):
    """Abstract interface for delivering closed segment trees."""

    @abstractmethod
    def send_entity(self, segment: "Segment") -> bool:
        """
        Deliver a closed segment and its subsegment tree.

        Implementations must not raise for delivery problems; they log them
        and report the outcome through the return value.

        Args:
            segment: The closed segment to deliver

        Returns:
            True if the document was handed to the transport, False otherwise
        """
        pass

    def close(self) -> None:
        """Release transport resources. The default does nothing."""
        pass
