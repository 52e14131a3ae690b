"""Sparse record of which positions of one query are loaded."""

from __future__ import annotations

from collections.abc import Hashable, Iterator
from typing import Any

from ..models.segment import Segment, SegmentWithIds, tidy_segments


class PaginationRange:
    """All currently loaded segments of a single query.

    The stored segments are kept tidy: sorted by offset, and no two of them
    overlap or touch. ``add`` is the only mutation.
    """

    def __init__(self) -> None:
        self._segments: list[SegmentWithIds] = []

    def add(self, segment: SegmentWithIds) -> None:
        """Record a loaded segment and merge it with its neighbours.

        Empty segments carry no positions and are ignored.
        """
        if segment.count == 0:
            return
        self._segments = tidy_segments([*self._segments, segment])

    @property
    def segments(self) -> tuple[SegmentWithIds, ...]:
        return tuple(self._segments)

    @property
    def loaded_segments(self) -> list[Segment]:
        """Loaded ranges without their ids."""
        return [Segment(offset=s.offset, count=s.count) for s in self._segments]

    def get_ids(self, window: Segment | Any) -> tuple[Hashable, ...]:
        """Ids at the loaded positions inside ``window``, in position order.

        Gaps inside the window are skipped.
        """
        window = Segment.of(window)
        ids: dict[Hashable, None] = {}
        for existing in self._segments:
            intersection = existing.intersect(window)
            if intersection is not None:
                ids.update(dict.fromkeys(intersection.ids))
        return tuple(ids)

    def get_missing_segments(self, window: Segment | Any) -> list[Segment]:
        """Maximal gaps of ``window`` not covered by any loaded segment.

        Returns:
            Missing segments in offset order; empty if the window is fully loaded.
        """
        window = Segment.of(window)
        missing = [window] if window.count > 0 else []
        for existing in self._segments:
            missing = [part for gap in missing for part in gap.subtract(existing)]
            if not missing:
                break
        return missing

    def is_fully_loaded(self, window: Segment | Any) -> bool:
        return not self.get_missing_segments(window)

    def has_id(self, id_: Hashable) -> bool:
        """Whether any loaded segment contains ``id_``."""
        return any(segment.has_id(id_) for segment in self._segments)

    def __iter__(self) -> Iterator[SegmentWithIds]:
        return iter(self._segments)

    def __len__(self) -> int:
        return len(self._segments)

    def __repr__(self) -> str:
        spans = ", ".join(f"[{s.offset}, {s.end})" for s in self._segments)
        return f"PaginationRange({spans})"
