"""Segment models for pagination bookkeeping.

A ``Segment`` is the half-open range ``[offset, offset + count)`` over the
ordinal positions of a query's results. ``SegmentWithIds`` additionally
carries the ids found at those positions, in position order.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Mapping, Sequence
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.exceptions import SegmentInvariantError

S = TypeVar("S", bound="Segment")


def sort_segments(segments: Iterable[S]) -> list[S]:
    """Return a shallow copy of ``segments`` sorted by offset."""
    return sorted(segments, key=lambda segment: segment.offset)


class Segment(BaseModel):
    """Immutable half-open range of positions."""

    offset: int = Field(0, ge=0)
    count: int = Field(0, ge=0)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def of(cls, window: Segment | Mapping[str, int] | Any) -> Segment:
        """Build a plain segment from a segment, a mapping or any object with offset/count."""
        if isinstance(window, Segment):
            return Segment(offset=window.offset, count=window.count)
        if isinstance(window, Mapping):
            return Segment(offset=window["offset"], count=window["count"])
        return Segment(offset=window.offset, count=window.count)

    @property
    def end(self) -> int:
        """Exclusive end: the first position no longer inside this segment."""
        return self.offset + self.count

    def overlaps(self, other: Segment) -> bool:
        """Whether both segments intersect or are adjacent.

        Examples:
            Segment(offset=1, count=3).overlaps(Segment(offset=2, count=5))  # True
            Segment(offset=1, count=3).overlaps(Segment(offset=4, count=1))  # True, adjacent
            Segment(offset=1, count=3).overlaps(Segment(offset=7, count=3))  # False
        """
        if self.offset == other.offset:
            return True
        first, second = sort_segments([self, other])
        return first.end >= second.offset

    def intersects(self, other: Segment) -> bool:
        """Whether both segments share at least one position."""
        return max(self.offset, other.offset) < min(self.end, other.end)

    def split(self, at: int) -> list[Segment]:
        """Split into ``[offset, at)`` and ``[at, end)``.

        Returns the segment unsplit when ``at`` is at or before the offset, or
        at or after the last position (``end - 1``).
        """
        if at <= self.offset or at >= self.end - 1:
            return [Segment(offset=self.offset, count=self.count)]
        first_count = at - self.offset
        return [
            Segment(offset=self.offset, count=first_count),
            Segment(offset=at, count=self.count - first_count),
        ]

    def contains(self, other: Segment) -> bool:
        """Whether ``other`` lies completely within this segment."""
        return other.offset >= self.offset and other.end <= self.end

    def contained_in(self, other: Segment) -> bool:
        """Whether this segment lies completely within ``other``."""
        return other.contains(self)

    def equals(self, other: Segment) -> bool:
        """Whether both segments designate the same range, ignoring any ids."""
        return self.offset == other.offset and self.count == other.count

    def subtract(self, subtrahend: Segment | None) -> list[Segment]:
        """Remove ``subtrahend`` from this segment.

        Args:
            subtrahend: Range to remove (None removes nothing)

        Returns:
            Zero, one or two segments covering the positions of this segment
            that are not in ``subtrahend``.

        Examples:
            Segment(offset=1, count=7).subtract(Segment(offset=1, count=3))  # [4, 8)
            Segment(offset=1, count=7).subtract(Segment(offset=2, count=3))  # [1, 2), [5, 8)
            Segment(offset=1, count=7).subtract(Segment(offset=1, count=7))  # []
        """
        if subtrahend is None or subtrahend.count == 0 or not self.intersects(subtrahend):
            return [Segment(offset=self.offset, count=self.count)]
        if self.equals(subtrahend) or self.contained_in(subtrahend):
            return []
        if self.offset == subtrahend.offset:
            return [Segment(offset=subtrahend.end, count=self.end - subtrahend.end)]
        if self.end == subtrahend.end:
            return [Segment(offset=self.offset, count=self.count - subtrahend.count)]
        if self.contains(subtrahend):
            before, after = self.split(subtrahend.offset)
            return [
                before,
                Segment(offset=after.offset + subtrahend.count, count=after.count - subtrahend.count),
            ]
        if self.offset < subtrahend.offset:
            return [Segment(offset=self.offset, count=subtrahend.offset - self.offset)]
        # Overlapping from the left: self.offset > subtrahend.offset
        return [Segment(offset=subtrahend.end, count=self.end - subtrahend.end)]


def _union(*groups: Sequence[Hashable]) -> tuple[Hashable, ...]:
    return tuple(dict.fromkeys(id_ for group in groups for id_ in group))


class SegmentWithIds(Segment):
    """A segment together with the ids at its positions.

    ``count`` always equals the number of ids; it is derived from ``ids``
    when omitted.
    """

    ids: tuple[Any, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def derive_count(cls, data: Any) -> Any:
        if isinstance(data, dict) and "count" not in data and "ids" in data:
            data = {**data, "count": len(tuple(data["ids"]))}
        return data

    @model_validator(mode="after")
    def validate_ids(self) -> SegmentWithIds:
        if len(self.ids) != self.count:
            raise ValueError(f"count {self.count} does not match {len(self.ids)} ids")
        if len(set(self.ids)) != len(self.ids):
            raise ValueError("ids must be unique within a segment")
        return self

    @classmethod
    def from_ids(cls, offset: int, ids: Iterable[Hashable]) -> SegmentWithIds:
        """Create a segment starting at ``offset`` spanning exactly ``ids``."""
        ids = tuple(ids)
        return cls(offset=offset, count=len(ids), ids=ids)

    def has_id(self, id_: Hashable) -> bool:
        return id_ in self.ids

    def combine(self, other: SegmentWithIds) -> SegmentWithIds:
        """Merge an overlapping or adjacent segment into one spanning both.

        Raises:
            SegmentInvariantError: If the merged ids do not fill the merged span,
                which means both segments disagree about some position.
        """
        if self.offset == other.offset:
            longer, shorter = (self, other) if self.count >= other.count else (other, self)
            ids = _union(longer.ids, shorter.ids)
            expected = longer.count
            offset = self.offset
        else:
            first, second = sort_segments([self, other])
            ids = _union(first.ids, second.ids)
            overlap = second.count if first.end >= second.end else first.end - second.offset
            expected = first.count + second.count - overlap
            offset = first.offset
        if len(ids) != expected:
            raise SegmentInvariantError(
                f"Invalid number of ids after combining: {len(ids)} != {expected}"
            )
        return SegmentWithIds.from_ids(offset, ids)

    def intersect(self, window: Segment) -> SegmentWithIds | None:
        """Clip this segment to ``window``.

        Returns:
            The overlapping part with its ids, or None if both are disjoint.
            Adjacent segments yield an empty segment.
        """
        if window.offset > self.end or window.end < self.offset:
            return None
        if self.offset >= window.offset:
            count = max(0, min(window.end - self.offset, self.count))
            return SegmentWithIds.from_ids(self.offset, self.ids[:count])
        count = max(0, min(self.end - window.offset, window.count))
        start = window.offset - self.offset
        return SegmentWithIds.from_ids(window.offset, self.ids[start : start + count])


def tidy_segments(segments: Iterable[SegmentWithIds]) -> list[SegmentWithIds]:
    """Merge overlapping or adjacent segments until no pair overlaps.

    Returns:
        The merged segments sorted by offset.
    """
    pending = list(segments)
    changed = True
    while changed:
        changed = False
        for i, a in enumerate(pending):
            for j in range(i):
                b = pending[j]
                if a.overlaps(b):
                    merged = a.combine(b)
                    pending = [s for k, s in enumerate(pending) if k not in (i, j)]
                    pending.append(merged)
                    changed = True
                    break
            if changed:
                break
    return sort_segments(pending)
