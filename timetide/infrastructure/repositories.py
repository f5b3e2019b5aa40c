"""Infrastructure layer: Repository interfaces and implementations.

Repositories hand the engine immutable domain values (``ScheduleRules``,
``EventTypeRules``, ``BookingSnapshot``) instead of ORM rows.
"""
import hashlib
import logging
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, text
from sqlalchemy.orm import Session

from database.models import (
    AvailabilitySchedule, Booking, ConnectedCalendar, DateOverride, EventType, Host,
)
from timetide.domain.intervals import Interval
from timetide.domain.policies import (
    ACTIVE_STATUSES, BookingSnapshot, BookingStatus, BookingWindow, DayOverride, EventTypeRules,
    PeriodType, ScheduleRules, WallClockRange,
)
from timetide.utils.time import get_timezone, local_date

logger = logging.getLogger(__name__)

_ACTIVE = [s.value for s in ACTIVE_STATUSES]


def parse_id(value) -> Optional[uuid.UUID]:
    """Return ``value`` as a UUID, or None when it is not one."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


def event_type_rules(event_type: EventType) -> EventTypeRules:
    period = PeriodType(event_type.period_type or PeriodType.ROLLING.value)
    if period == PeriodType.ROLLING:
        window = BookingWindow.rolling(event_type.period_days if event_type.period_days is not None else 30)
    elif period == PeriodType.RANGE:
        window = BookingWindow.date_range(event_type.period_start_date, event_type.period_end_date)
    else:
        window = BookingWindow.unlimited()
    return EventTypeRules(
        id=str(event_type.id),
        host_id=str(event_type.host_id),
        duration_minutes=event_type.duration_minutes,
        buffer_before_minutes=event_type.buffer_before_minutes or 0,
        buffer_after_minutes=event_type.buffer_after_minutes or 0,
        minimum_notice_minutes=event_type.minimum_notice_minutes or 0,
        slot_interval_minutes=event_type.slot_interval_minutes,
        max_bookings_per_day=event_type.max_bookings_per_day or 0,
        seats_per_slot=event_type.seats_per_slot or 1,
        booking_window=window,
        requires_confirmation=bool(event_type.requires_confirmation),
    )


def schedule_rules(schedule: AvailabilitySchedule, host_timezone: str = "UTC") -> ScheduleRules:
    weekly: Dict[int, List[WallClockRange]] = defaultdict(list)
    for slot in schedule.slots:
        weekly[slot.day_of_week].append(WallClockRange.from_strings(slot.start_time, slot.end_time))
    overrides = {}
    for override in schedule.overrides:
        ranges = tuple(
            WallClockRange.from_strings(item["start"], item["end"])
            for item in (override.intervals or [])
        )
        overrides[override.date] = DayOverride(override.date, bool(override.is_working), ranges)
    return ScheduleRules(
        timezone=schedule.timezone or host_timezone,
        weekly={day: tuple(sorted(ranges)) for day, ranges in weekly.items()},
        overrides=overrides,
    )


def booking_snapshot(booking: Booking, event_type: EventType) -> BookingSnapshot:
    return BookingSnapshot(
        start=booking.start_time,
        end=booking.end_time,
        event_type_id=str(booking.event_type_id),
        status=BookingStatus(booking.status),
        seats_taken=booking.seats_taken or 1,
        buffer_before_minutes=event_type.buffer_before_minutes or 0,
        buffer_after_minutes=event_type.buffer_after_minutes or 0,
        booking_id=str(booking.id),
    )


class HostRepository(ABC):
    """Repository interface for Host operations."""

    @abstractmethod
    def get_by_id(self, host_id: str) -> Optional[Host]:
        pass

    @abstractmethod
    def save(self, host: Host) -> None:
        pass


class ScheduleRepository(ABC):
    """Repository interface for availability schedules."""

    @abstractmethod
    def get_by_id(self, schedule_id: str) -> Optional[AvailabilitySchedule]:
        pass

    @abstractmethod
    def get_default(self, host_id: str) -> Optional[AvailabilitySchedule]:
        pass

    @abstractmethod
    def list_for_host(self, host_id: str) -> List[AvailabilitySchedule]:
        pass

    @abstractmethod
    def get_override(self, schedule_id: str, day: date) -> Optional[DateOverride]:
        pass


class EventTypeRepository(ABC):
    """Repository interface for event types."""

    @abstractmethod
    def get_by_id(self, event_type_id: str) -> Optional[EventType]:
        pass

    @abstractmethod
    def get_active(self, event_type_id: str) -> Optional[EventType]:
        pass


class BookingRepository(ABC):
    """Repository interface for the booking store."""

    @abstractmethod
    def list_active_bookings(self, host_id: str, window: Interval) -> List[BookingSnapshot]:
        """Active bookings of the host across every event type overlapping ``window``."""
        pass

    @abstractmethod
    def count_per_day(self, event_type_id: str, window: Interval, host_timezone: str) -> Dict[date, int]:
        """Active bookings of one event type per host-local date."""
        pass

    @abstractmethod
    def seats_taken(self, event_type_id: str, start: datetime) -> int:
        pass

    @abstractmethod
    def get_by_uid(self, uid: str) -> Optional[Booking]:
        pass

    @abstractmethod
    def add(self, booking: Booking) -> None:
        pass

    @abstractmethod
    def lock_keys(self, keys: Iterable[str]) -> None:
        """Take database-level exclusive locks for the current transaction."""
        pass


class SqlAlchemyHostRepository(HostRepository):
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, host_id: str) -> Optional[Host]:
        parsed = parse_id(host_id)
        if parsed is None:
            return None
        return self.db.query(Host).filter(Host.id == parsed).first()

    def save(self, host: Host) -> None:
        self.db.add(host)
        self.db.flush()


class SqlAlchemyScheduleRepository(ScheduleRepository):
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, schedule_id: str) -> Optional[AvailabilitySchedule]:
        parsed = parse_id(schedule_id)
        if parsed is None:
            return None
        return self.db.query(AvailabilitySchedule).filter(AvailabilitySchedule.id == parsed).first()

    def get_default(self, host_id: str) -> Optional[AvailabilitySchedule]:
        parsed = parse_id(host_id)
        if parsed is None:
            return None
        return self.db.query(AvailabilitySchedule).filter(
            AvailabilitySchedule.host_id == parsed,
            AvailabilitySchedule.is_default.is_(True),
        ).first()

    def list_for_host(self, host_id: str) -> List[AvailabilitySchedule]:
        parsed = parse_id(host_id)
        if parsed is None:
            return []
        return self.db.query(AvailabilitySchedule).filter(
            AvailabilitySchedule.host_id == parsed
        ).order_by(AvailabilitySchedule.created_at).all()

    def get_override(self, schedule_id: str, day: date) -> Optional[DateOverride]:
        parsed = parse_id(schedule_id)
        if parsed is None:
            return None
        return self.db.query(DateOverride).filter(
            DateOverride.schedule_id == parsed,
            DateOverride.date == day,
        ).first()


class SqlAlchemyEventTypeRepository(EventTypeRepository):
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, event_type_id: str) -> Optional[EventType]:
        parsed = parse_id(event_type_id)
        if parsed is None:
            return None
        return self.db.query(EventType).filter(EventType.id == parsed).first()

    def get_active(self, event_type_id: str) -> Optional[EventType]:
        event_type = self.get_by_id(event_type_id)
        if event_type is None or not event_type.is_active:
            return None
        return event_type


class SqlAlchemyBookingRepository(BookingRepository):
    def __init__(self, db: Session):
        self.db = db

    def list_active_bookings(self, host_id: str, window: Interval) -> List[BookingSnapshot]:
        parsed = parse_id(host_id)
        if parsed is None:
            return []
        rows = self.db.query(Booking, EventType).join(EventType, Booking.event_type_id == EventType.id).filter(
            Booking.host_id == parsed,
            Booking.status.in_(_ACTIVE),
            Booking.start_time < window.end,
            Booking.end_time > window.start,
        ).order_by(Booking.start_time).all()
        return [booking_snapshot(booking, event_type) for booking, event_type in rows]

    def count_per_day(self, event_type_id: str, window: Interval, host_timezone: str) -> Dict[date, int]:
        parsed = parse_id(event_type_id)
        if parsed is None:
            return {}
        tz = get_timezone(host_timezone)
        starts = self.db.query(Booking.start_time).filter(
            Booking.event_type_id == parsed,
            Booking.status.in_(_ACTIVE),
            Booking.start_time >= window.start,
            Booking.start_time < window.end,
        ).all()
        counts: Dict[date, int] = defaultdict(int)
        for (start,) in starts:
            counts[local_date(start, tz)] += 1
        return dict(counts)

    def seats_taken(self, event_type_id: str, start: datetime) -> int:
        parsed = parse_id(event_type_id)
        if parsed is None:
            return 0
        total = self.db.query(func.coalesce(func.sum(Booking.seats_taken), 0)).filter(
            Booking.event_type_id == parsed,
            Booking.status.in_(_ACTIVE),
            Booking.start_time == start,
        ).scalar()
        return int(total or 0)

    def get_by_uid(self, uid: str) -> Optional[Booking]:
        return self.db.query(Booking).filter(Booking.uid == uid).first()

    def add(self, booking: Booking) -> None:
        self.db.add(booking)
        self.db.flush()

    def lock_keys(self, keys: Iterable[str]) -> None:
        if self.db.get_bind().dialect.name != "postgresql":
            return
        for key in sorted(set(keys)):
            lock_id = int.from_bytes(hashlib.sha256(key.encode()).digest()[:8], "big", signed=True)
            self.db.execute(text("SELECT pg_advisory_xact_lock(:lock_id)"), {"lock_id": lock_id})


class SqlAlchemyCalendarRepository:
    """Read access to the host's connected calendars."""

    def __init__(self, db: Session):
        self.db = db

    def list_enabled(self, host_id: str) -> List[ConnectedCalendar]:
        parsed = parse_id(host_id)
        if parsed is None:
            return []
        return self.db.query(ConnectedCalendar).filter(
            ConnectedCalendar.host_id == parsed,
            ConnectedCalendar.is_enabled.is_(True),
        ).all()


def resolve_schedule_rules(event_type: EventType, schedules: ScheduleRepository) -> Optional[ScheduleRules]:
    """Rules of the event type's own schedule, else the host's default one."""
    host_timezone = event_type.host.timezone if event_type.host is not None else "UTC"
    schedule = event_type.schedule or schedules.get_default(str(event_type.host_id))
    if schedule is None:
        logger.info(f"Host {event_type.host_id} has no schedule, event type {event_type.id} has no availability")
        return None
    return schedule_rules(schedule, host_timezone)
