"""Domain layer: half-open UTC time intervals and interval algebra.

Every instant handled by the availability engine is a timezone-aware UTC
``datetime``. An ``Interval`` is ``[start, end)``: it contains ``start`` and
excludes ``end``, so two back-to-back meetings touch without overlapping.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True, order=True)
class Interval:
    """A half-open ``[start, end)`` range of UTC instants."""
    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))
        if self.start >= self.end:
            raise ValueError(f"Interval start must be before end ({self.start} >= {self.end})")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def touches(self, other: "Interval") -> bool:
        """True when the intervals overlap or are directly adjacent."""
        return self.start <= other.end and other.start <= self.end

    def contains(self, instant: datetime) -> bool:
        return self.start <= ensure_utc(instant) < self.end

    def contains_interval(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def expand(self, before: timedelta = timedelta(0), after: timedelta = timedelta(0)) -> "Interval":
        return Interval(self.start - before, self.end + after)

    def intersect(self, other: "Interval") -> Optional["Interval"]:
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if start >= end:
            return None
        return Interval(start, end)

    def subtract(self, others: Iterable["Interval"]) -> List["Interval"]:
        """Return the parts of this interval not covered by ``others``."""
        remaining: List[Interval] = []
        cursor = self.start
        for block in merge_intervals(others):
            if block.end <= cursor:
                continue
            if block.start >= self.end:
                break
            if block.start > cursor:
                remaining.append(Interval(cursor, block.start))
            cursor = max(cursor, block.end)
            if cursor >= self.end:
                break
        if cursor < self.end:
            remaining.append(Interval(cursor, self.end))
        return remaining

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """Coalesce overlapping or adjacent intervals into maximal sorted runs.

    The output depends only on the set of instants covered, never on the
    order of the input.
    """
    ordered = sorted(intervals)
    if not ordered:
        return []
    merged = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = Interval(last.start, current.end)
        else:
            merged.append(current)
    return merged


def subtract_intervals(base: Iterable[Interval], blocks: Iterable[Interval]) -> List[Interval]:
    """Remove every block from every base interval."""
    blocks = merge_intervals(blocks)
    free: List[Interval] = []
    for interval in sorted(base):
        free.extend(interval.subtract(blocks))
    return free


def intersect_intervals(first: Iterable[Interval], second: Iterable[Interval]) -> List[Interval]:
    """Instants covered by both lists, coalesced."""
    a = merge_intervals(first)
    b = merge_intervals(second)
    result: List[Interval] = []
    i = j = 0
    while i < len(a) and j < len(b):
        overlap = a[i].intersect(b[j])
        if overlap:
            result.append(overlap)
        if a[i].end < b[j].end:
            i += 1
        else:
            j += 1
    return result


def clip_intervals(intervals: Iterable[Interval], window: Interval) -> List[Interval]:
    """Restrict intervals to ``window``, dropping the ones entirely outside it."""
    clipped = []
    for interval in intervals:
        part = interval.intersect(window)
        if part:
            clipped.append(part)
    return sorted(clipped)
