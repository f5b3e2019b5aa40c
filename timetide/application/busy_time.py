"""Application layer: merge every source of busy time for a host."""
import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from timetide.domain.errors import CollaboratorError
from timetide.domain.intervals import Interval, merge_intervals
from timetide.domain.policies import MAX_BUFFER_MINUTES, BookingSnapshot, EventTypeRules

logger = logging.getLogger(__name__)

STALE_AVAILABILITY_WARNING = "stale availability: external calendars could not be read"

# Bookings this far outside the range can still reach into it through buffers
BOOKING_LOOKAROUND = timedelta(minutes=MAX_BUFFER_MINUTES)


class FailurePolicy(str, Enum):
    FAIL_CLOSED = "fail_closed"
    FAIL_OPEN = "fail_open"


@dataclass
class BusyTime:
    """Aggregated occupied time for one host over one range.

    ``occupied`` holds bookings widened by their own buffers plus external
    busy time; ``buffer_anchors`` holds the same time without booking
    buffers, for measuring the candidate's buffers. ``open_group_slots`` maps
    the start of each group slot of the candidate event type that still has
    free seats to the number of seats taken.
    """
    occupied: List[Interval] = field(default_factory=list)
    buffer_anchors: List[Interval] = field(default_factory=list)
    open_group_slots: Dict[datetime, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


class BusyTimeAggregator:
    """Unions booking-derived and calendar-derived busy time.

    ``booking_repo`` only needs ``list_active_bookings(host_id, window)``
    returning ``BookingSnapshot`` values for every event type of the host.
    """

    def __init__(self, booking_repo):
        self.booking_repo = booking_repo

    def aggregate(self, host_id: str, date_range: Interval,
                  external_busy: Iterable[Interval] = (),
                  candidate: Optional[EventTypeRules] = None,
                  exclude_booking_ids: Iterable[str] = ()) -> BusyTime:
        window = date_range.expand(BOOKING_LOOKAROUND, BOOKING_LOOKAROUND)
        excluded = set(exclude_booking_ids)
        bookings = [
            b for b in self.booking_repo.list_active_bookings(host_id, window)
            if b.is_active and b.booking_id not in excluded
        ]
        blocking, open_group_slots = split_group_bookings(bookings, candidate)
        external_busy = list(external_busy)
        merged = merge_intervals([b.occupied_interval() for b in blocking] + external_busy)
        anchors = merge_intervals([b.interval for b in blocking] + external_busy)
        logger.debug(
            f"Host {host_id}: {len(bookings)} bookings + external busy -> {len(merged)} occupied runs"
        )
        return BusyTime(occupied=merged, buffer_anchors=anchors, open_group_slots=open_group_slots)


def split_group_bookings(bookings: Iterable[BookingSnapshot],
                         candidate: Optional[EventTypeRules]) -> Tuple[List[BookingSnapshot], Dict[datetime, int]]:
    """Separate the bookings that block time from group slots of the
    candidate event type that still have spare seats."""
    blocking: List[BookingSnapshot] = []
    group_seats: Dict[datetime, int] = defaultdict(int)
    group_members: Dict[datetime, List[BookingSnapshot]] = defaultdict(list)

    for booking in bookings:
        if candidate is not None and candidate.is_group and booking.event_type_id == candidate.id:
            group_seats[booking.start] += booking.seats_taken
            group_members[booking.start].append(booking)
        else:
            blocking.append(booking)

    open_slots: Dict[datetime, int] = {}
    for start in sorted(group_seats):
        if group_seats[start] < candidate.seats_per_slot:
            open_slots[start] = group_seats[start]
        else:
            blocking.extend(group_members[start])
    return blocking, open_slots


def fetch_external_busy(provider, host_id: str, date_range: Interval,
                        policy: FailurePolicy = FailurePolicy.FAIL_CLOSED,
                        timeout_seconds: float = 10.0) -> Tuple[List[Interval], List[str]]:
    """Ask the calendar provider for busy time within an overall deadline.

    Returns ``(intervals, warnings)``. Under ``FAIL_CLOSED`` a failure or
    timeout raises ``CollaboratorError``; under ``FAIL_OPEN`` the source is
    dropped and a stale-availability warning is returned instead.
    """
    if provider is None:
        return [], []
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(provider.get_busy_intervals, host_id, date_range.start, date_range.end)
        intervals = future.result(timeout=timeout_seconds)
        return merge_intervals(intervals), []
    except FutureTimeoutError:
        error = CollaboratorError(f"Calendar busy-time fetch timed out after {timeout_seconds}s", source="calendar")
    except CollaboratorError as e:
        error = e
    except Exception as e:
        error = CollaboratorError(f"Calendar busy-time fetch failed: {e}", source="calendar")
    finally:
        # Do not wait on a hung provider call
        executor.shutdown(wait=False)

    if FailurePolicy(policy) == FailurePolicy.FAIL_OPEN:
        logger.warning(f"⚠️  Ignoring external calendars for host {host_id}: {error}")
        return [], [STALE_AVAILABILITY_WARNING]
    logger.warning(f"⚠️  Calendar collaborator failure for host {host_id}: {error}")
    raise error
