"""Data models.

Segments are immutable Pydantic v2 models (frozen=True); fetch results are
plain dataclasses since their entities are arbitrary caller objects.
"""

from .results import FetchByQueryResult
from .segment import Segment, SegmentWithIds, sort_segments, tidy_segments

__all__ = [
    "FetchByQueryResult",
    "Segment",
    "SegmentWithIds",
    "sort_segments",
    "tidy_segments",
]
