"""Per-query pagination state."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models.segment import Segment
from .range import PaginationRange


@dataclass
class PaginationState:
    """Loaded range of one paginated query and its discovered size.

    Attributes:
        pagination_range: Positions loaded so far, with their ids
        limit: Exclusive upper bound on the query's positions, learned from a
            short fetch or a reported total (None = unknown)
    """

    pagination_range: PaginationRange = field(default_factory=PaginationRange)
    limit: int | None = None

    def discover_limit(self, limit: int) -> None:
        """Record an upper bound, keeping the smallest one seen."""
        if self.limit is None or limit < self.limit:
            self.limit = limit

    def clip(self, window: Segment) -> Segment:
        """Restrict ``window`` to positions below the known limit."""
        if self.limit is None or window.end <= self.limit:
            return window
        return Segment(offset=window.offset, count=max(0, self.limit - window.offset))

    def was_out_of_bounds(self, window: Segment) -> bool:
        return self.limit is not None and window.end > self.limit
