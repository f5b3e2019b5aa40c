"""Application layer: slice free time into offerable slots.

This module is the heart of the scheduling system. Given working intervals
and occupied time it produces the slots an invitee may book, honouring the
event type's buffers, minimum notice, booking window, daily cap, group
capacity and the engine's safety caps. It is a pure function of its inputs:
the same inputs and the same ``now`` always give the same output.
"""
import bisect
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

from timetide.domain.errors import TruncationWarning
from timetide.domain.intervals import Interval, merge_intervals, subtract_intervals
from timetide.domain.policies import MAX_DAYS_TO_PROCESS, MAX_SLOTS_PER_DAY, EventTypeRules
from timetide.utils.time import get_timezone, local_date, local_midnight_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class CandidateSlot:
    """One offerable window. ``seats_available`` is set for group event types."""
    start: datetime
    end: datetime
    seats_available: Optional[int] = None

    def to_dict(self) -> dict:
        data = {"start": self.start.isoformat(), "end": self.end.isoformat()}
        if self.seats_available is not None:
            data["seatsAvailable"] = self.seats_available
        return data


@dataclass
class SlotResult:
    slots_by_date: Dict[str, List[CandidateSlot]] = field(default_factory=OrderedDict)
    truncated: bool = False
    warnings: List[str] = field(default_factory=list)

    def all_slots(self) -> List[CandidateSlot]:
        return [slot for slots in self.slots_by_date.values() for slot in slots]

    def to_dict(self) -> dict:
        return {
            "slots": {day: [s.to_dict() for s in slots] for day, slots in self.slots_by_date.items()},
            "truncated": self.truncated,
            "warnings": list(self.warnings),
        }


class SlotGenerator:
    def __init__(self, max_slots_per_day: int = MAX_SLOTS_PER_DAY,
                 max_days_to_process: int = MAX_DAYS_TO_PROCESS):
        self.max_slots_per_day = max_slots_per_day
        self.max_days_to_process = max_days_to_process

    def generate(self, working: Iterable[Interval], occupied: Iterable[Interval],
                 event_type: EventTypeRules, now: datetime, invitee_timezone: str,
                 host_timezone: str = "UTC",
                 open_group_slots: Optional[Dict[datetime, int]] = None,
                 bookings_per_day: Optional[Dict[date, int]] = None,
                 query_start: Optional[datetime] = None,
                 buffer_anchors: Optional[Iterable[Interval]] = None,
                 offer_range: Optional[Interval] = None) -> SlotResult:
        """Produce slots grouped by invitee-local date.

        ``open_group_slots`` maps partially booked group slot starts to seats
        taken; ``bookings_per_day`` counts the event type's active bookings
        per host-local date. ``buffer_anchors`` are the raw intervals the
        candidate's buffers are measured from (bookings without their own
        buffers, plus external busy time); they default to ``occupied``.
        Only starts inside ``offer_range`` are returned. All comparisons
        happen in UTC; only the output is rendered in ``invitee_timezone``.
        """
        host_tz = get_timezone(host_timezone)
        invitee_tz = get_timezone(invitee_timezone)
        working = merge_intervals(working)
        occupied = merge_intervals(occupied)
        open_group_slots = open_group_slots or {}
        bookings_per_day = bookings_per_day or {}
        duration = event_type.duration
        warnings: List[str] = []
        truncated = False

        anchors = merge_intervals(buffer_anchors) if buffer_anchors is not None else occupied
        placeable = self._placeable_intervals(working, occupied, anchors, event_type)

        starts = set()
        for region in placeable:
            starts.update(self._slice(region, duration, event_type.slot_step, host_tz))
        # Partially filled group slots stay bookable at their exact start
        for group_start in open_group_slots:
            slot = Interval(group_start, group_start + duration)
            if any(region.contains_interval(slot) for region in placeable):
                starts.add(group_start)

        earliest = now + event_type.minimum_notice
        today = local_date(now, host_tz)
        horizon = query_start + timedelta(days=self.max_days_to_process) if query_start else None
        group_blocks = [
            Interval(s, s + duration).expand(event_type.buffer_before, event_type.buffer_after)
            for s in sorted(open_group_slots)
        ]

        kept: List[CandidateSlot] = []
        for start in sorted(starts):
            end = start + duration
            if start < earliest:
                continue
            if offer_range is not None and not offer_range.contains(start):
                continue
            host_day = local_date(start, host_tz)
            if not event_type.booking_window.allows(host_day, today):
                continue
            if event_type.max_bookings_per_day and bookings_per_day.get(host_day, 0) >= event_type.max_bookings_per_day:
                continue
            if start not in open_group_slots and group_blocks:
                padded = Interval(start, end).expand(event_type.buffer_before, event_type.buffer_after)
                if any(padded.overlaps(block) for block in group_blocks):
                    continue
            if horizon is not None and start >= horizon:
                truncated = True
                continue
            seats = None
            if event_type.is_group:
                seats = event_type.seats_per_slot - open_group_slots.get(start, 0)
            kept.append(CandidateSlot(start.astimezone(invitee_tz), end.astimezone(invitee_tz), seats))

        if truncated:
            warnings.append(str(TruncationWarning(
                "max_days", f"results limited to {self.max_days_to_process} days from the query start")))

        slots_by_date: Dict[str, List[CandidateSlot]] = OrderedDict()
        capped_days = []
        for slot in kept:
            key = slot.start.date().isoformat()
            day_slots = slots_by_date.setdefault(key, [])
            if len(day_slots) >= self.max_slots_per_day:
                if key not in capped_days:
                    capped_days.append(key)
                continue
            day_slots.append(slot)
        for key in capped_days:
            truncated = True
            warnings.append(str(TruncationWarning(
                "max_slots_per_day", f"{key} limited to {self.max_slots_per_day} slots")))

        return SlotResult(slots_by_date=slots_by_date, truncated=truncated, warnings=warnings)

    @staticmethod
    def _slice(region: Interval, duration: timedelta, step: timedelta, host_tz) -> List[datetime]:
        """Back-to-back starts in ``region``. The grid restarts at every
        host-local midnight the region crosses, so a day's starts never
        depend on how far back the caller expanded availability."""
        starts = []
        day = local_date(region.start, host_tz)
        day_start = local_midnight_utc(day, host_tz)
        while day_start < region.end:
            next_day_start = local_midnight_utc(day + timedelta(days=1), host_tz)
            start = max(region.start, day_start)
            while start < next_day_start and start + duration <= region.end:
                starts.append(start)
                start += step
            day += timedelta(days=1)
            day_start = next_day_start
        return starts

    def _placeable_intervals(self, working: List[Interval], occupied: List[Interval],
                             anchors: List[Interval], event_type: EventTypeRules) -> List[Interval]:
        """Free time where a slot may be placed once the candidate's buffers
        keep it clear of neighbouring busy time.

        ``occupied`` already carries each booking's own buffers; the
        candidate's buffers are measured from the raw ``anchors``, so the gap
        to a booking is the larger of the two buffers, never their sum.
        Availability edges that touch nothing are used as-is.
        """
        free = subtract_intervals(working, occupied)
        occupied_ends = [a.end for a in anchors]
        occupied_starts = [a.start for a in anchors]
        regions: List[Interval] = []
        for run in free:
            start, end = run.start, run.end
            if event_type.buffer_before:
                idx = bisect.bisect_right(occupied_ends, run.start)
                if idx:
                    start = max(start, occupied_ends[idx - 1] + event_type.buffer_before)
            if event_type.buffer_after:
                idx = bisect.bisect_left(occupied_starts, run.end)
                if idx < len(occupied_starts):
                    end = min(end, occupied_starts[idx] - event_type.buffer_after)
            if start < end:
                regions.append(Interval(start, end))
        return regions


def is_slot_available(slot: Interval, busy: Iterable[Interval],
                      buffer_before: timedelta = timedelta(0),
                      buffer_after: timedelta = timedelta(0)) -> bool:
    """True when ``slot`` padded by the buffers overlaps no busy interval."""
    padded = slot.expand(buffer_before, buffer_after)
    return not any(padded.overlaps(b) for b in busy)


def next_available_slot(result: SlotResult) -> Optional[CandidateSlot]:
    for day in sorted(result.slots_by_date):
        if result.slots_by_date[day]:
            return result.slots_by_date[day][0]
    return None


slot_generator = SlotGenerator()
