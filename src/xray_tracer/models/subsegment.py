"""
Subsegment model for nested units of work inside a segment.
"""

from typing import Any, Literal, Optional

from pydantic import Field

from .entity import Entity
from .segment import Segment


class Subsegment(Entity):
    """A bounded piece of work, such as a loop or a downstream call."""
    namespace: Optional[Literal["aws", "remote"]] = Field(
        None, description="'remote' for calls to other services, unset for local work"
    )

    def __init__(self, segment: Segment, **data: Any):
        super().__init__(**data)
        self._segment = segment

    @property
    def trace_id(self) -> str:
        return self._segment.trace_id

    @property
    def sampled(self) -> bool:
        return self._segment.sampled
