"""Domain layer: scheduling constants and the value types the engine reads.

The engine never touches ORM rows. Repositories translate persisted
schedules, event types and bookings into these immutable values.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Tuple

from timetide.domain.intervals import Interval

# Safety floors and caps
MIN_SLOT_DURATION = 5       # minutes
MIN_SLOT_INTERVAL = 5       # minutes
MAX_SLOTS_PER_DAY = 100
MAX_DAYS_TO_PROCESS = 90
MAX_BUFFER_MINUTES = 120
MAX_DURATION_MINUTES = 24 * 60
MINUTES_PER_DAY = 24 * 60


class PeriodType(str, Enum):
    ROLLING = "ROLLING"
    RANGE = "RANGE"
    UNLIMITED = "UNLIMITED"


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


# Only these statuses occupy time
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


def parse_wall_time(value: str, allow_end_of_day: bool = False) -> int:
    """Parse ``HH:MM`` into minutes after local midnight.

    ``24:00`` is accepted only when ``allow_end_of_day`` is set (an end
    boundary meaning "until midnight").
    """
    try:
        hours_str, minutes_str = value.split(":")
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid time format {value!r}, expected HH:MM")
    if len(hours_str) != 2 or len(minutes_str) != 2:
        raise ValueError(f"Invalid time format {value!r}, expected HH:MM")
    if allow_end_of_day and hours == 24 and minutes == 0:
        return MINUTES_PER_DAY
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Time {value!r} is out of range")
    return hours * 60 + minutes


def format_wall_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass(frozen=True, order=True)
class WallClockRange:
    """A host-local ``[start, end)`` wall-clock range with no date component."""
    start_minute: int
    end_minute: int

    @classmethod
    def from_strings(cls, start: str, end: str) -> "WallClockRange":
        return cls(parse_wall_time(start), parse_wall_time(end, allow_end_of_day=True))

    @property
    def is_valid(self) -> bool:
        return 0 <= self.start_minute < self.end_minute <= MINUTES_PER_DAY

    def overlaps(self, other: "WallClockRange") -> bool:
        return self.start_minute < other.end_minute and other.start_minute < self.end_minute

    def __str__(self) -> str:
        return f"{format_wall_time(self.start_minute)}-{format_wall_time(self.end_minute)}"


@dataclass(frozen=True)
class DayOverride:
    """Pins one host-local date to explicit ranges, or to a day off."""
    date: date
    is_working: bool
    ranges: Tuple[WallClockRange, ...] = ()


@dataclass(frozen=True)
class ScheduleRules:
    """Weekly recurring ranges keyed by day of week (0 = Sunday .. 6 = Saturday)
    plus date overrides."""
    timezone: str
    weekly: Dict[int, Tuple[WallClockRange, ...]] = field(default_factory=dict)
    overrides: Dict[date, DayOverride] = field(default_factory=dict)

    def ranges_for(self, day: date) -> Tuple[WallClockRange, ...]:
        override = self.overrides.get(day)
        if override is not None:
            if not override.is_working:
                return ()
            # A working override with no ranges is misconfigured: no slots that day
            return tuple(sorted(override.ranges))
        return tuple(sorted(self.weekly.get(day_of_week(day), ())))


def day_of_week(day: date) -> int:
    """Sunday-based day number (0 = Sunday .. 6 = Saturday)."""
    return (day.weekday() + 1) % 7


@dataclass(frozen=True)
class BookingWindow:
    """How far ahead slots may be offered, evaluated on host-local dates."""
    period_type: PeriodType = PeriodType.UNLIMITED
    days: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @classmethod
    def rolling(cls, days: int) -> "BookingWindow":
        return cls(PeriodType.ROLLING, days=days)

    @classmethod
    def date_range(cls, start: date, end: date) -> "BookingWindow":
        return cls(PeriodType.RANGE, start_date=start, end_date=end)

    @classmethod
    def unlimited(cls) -> "BookingWindow":
        return cls(PeriodType.UNLIMITED)

    def allows(self, local_date: date, today: date) -> bool:
        if self.period_type == PeriodType.ROLLING:
            days = self.days if self.days is not None else 0
            return today <= local_date <= today + timedelta(days=days)
        if self.period_type == PeriodType.RANGE:
            if self.start_date and local_date < self.start_date:
                return False
            if self.end_date and local_date > self.end_date:
                return False
            return True
        return True


@dataclass(frozen=True)
class EventTypeRules:
    """The constraints of the event type being scheduled."""
    id: str
    host_id: str
    duration_minutes: int
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    minimum_notice_minutes: int = 0
    slot_interval_minutes: Optional[int] = None
    max_bookings_per_day: int = 0
    seats_per_slot: int = 1
    booking_window: BookingWindow = field(default_factory=BookingWindow)
    requires_confirmation: bool = False

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=max(MIN_SLOT_DURATION, self.duration_minutes))

    @property
    def slot_step(self) -> timedelta:
        interval = self.slot_interval_minutes or self.duration_minutes
        return timedelta(minutes=max(MIN_SLOT_INTERVAL, interval))

    @property
    def buffer_before(self) -> timedelta:
        return timedelta(minutes=self.buffer_before_minutes or 0)

    @property
    def buffer_after(self) -> timedelta:
        return timedelta(minutes=self.buffer_after_minutes or 0)

    @property
    def minimum_notice(self) -> timedelta:
        return timedelta(minutes=self.minimum_notice_minutes or 0)

    @property
    def is_group(self) -> bool:
        return self.seats_per_slot > 1


@dataclass(frozen=True)
class BookingSnapshot:
    """An existing booking as seen by the aggregator, with the buffers of the
    event type it belongs to."""
    start: datetime
    end: datetime
    event_type_id: str
    status: BookingStatus = BookingStatus.CONFIRMED
    seats_taken: int = 1
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    booking_id: Optional[str] = None

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def occupied_interval(self) -> Interval:
        """The time this booking blocks, padded by its own event type's buffers."""
        return self.interval.expand(
            timedelta(minutes=self.buffer_before_minutes or 0),
            timedelta(minutes=self.buffer_after_minutes or 0),
        )
