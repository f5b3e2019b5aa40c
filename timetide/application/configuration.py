"""Application layer: host, schedule and event-type configuration.

Everything the engine later trusts is validated here at save time, so slot
generation never has to reject stored data.
"""
import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from database.models import AvailabilitySchedule, DateOverride, EventType, Host, RecurringSlot
from timetide.domain.errors import ConfigurationError, NotFoundError
from timetide.domain.policies import (
    MAX_BUFFER_MINUTES, MAX_DURATION_MINUTES, MIN_SLOT_DURATION, MIN_SLOT_INTERVAL,
    PeriodType, WallClockRange, format_wall_time, parse_wall_time,
)
from timetide.infrastructure.repositories import (
    SqlAlchemyHostRepository, SqlAlchemyScheduleRepository,
)
from timetide.utils.time import is_valid_timezone

logger = logging.getLogger(__name__)

DEFAULT_WORKING_DAYS = (1, 2, 3, 4, 5)  # Monday..Friday, 0 = Sunday
DEFAULT_WORKING_HOURS = ("09:00", "17:00")

MAX_SLOT_INTERVAL_MINUTES = 120
MAX_NOTICE_MINUTES = 43200
MAX_SEATS_PER_SLOT = 100
MAX_BOOKINGS_PER_DAY = 100
MAX_ROLLING_DAYS = 365


def validate_timezone(name: Optional[str]) -> str:
    if not name or not is_valid_timezone(name):
        raise ConfigurationError(f"Unknown timezone: {name!r}")
    return name


def validate_day_ranges(ranges: Iterable[Tuple[str, str]]) -> List[WallClockRange]:
    """Parse ``(start, end)`` HH:MM pairs for one day and reject empty or
    overlapping ranges. ``24:00`` is allowed as an end."""
    parsed: List[WallClockRange] = []
    for start, end in ranges:
        try:
            wall_range = WallClockRange(parse_wall_time(start), parse_wall_time(end, allow_end_of_day=True))
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        if not wall_range.is_valid:
            raise ConfigurationError(f"Range {start}-{end} must end after it starts")
        parsed.append(wall_range)
    parsed.sort()
    for previous, current in zip(parsed, parsed[1:]):
        if previous.overlaps(current):
            raise ConfigurationError(f"Ranges {previous} and {current} overlap")
    return parsed


def _check_range(fields: dict, name: str, low: int, high: int) -> None:
    value = fields.get(name)
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or not (low <= value <= high):
        raise ConfigurationError(f"{name} must be an integer between {low} and {high}")


def validate_event_type(fields: dict) -> dict:
    """Validate event-type settings, returning them with defaults applied."""
    if fields.get("duration_minutes") is None:
        raise ConfigurationError("duration_minutes is required")
    _check_range(fields, "duration_minutes", MIN_SLOT_DURATION, MAX_DURATION_MINUTES)
    _check_range(fields, "slot_interval_minutes", MIN_SLOT_INTERVAL, MAX_SLOT_INTERVAL_MINUTES)
    _check_range(fields, "buffer_before_minutes", 0, MAX_BUFFER_MINUTES)
    _check_range(fields, "buffer_after_minutes", 0, MAX_BUFFER_MINUTES)
    _check_range(fields, "minimum_notice_minutes", 0, MAX_NOTICE_MINUTES)
    _check_range(fields, "seats_per_slot", 1, MAX_SEATS_PER_SLOT)
    _check_range(fields, "max_bookings_per_day", 0, MAX_BOOKINGS_PER_DAY)

    try:
        period = PeriodType(fields.get("period_type") or PeriodType.ROLLING.value)
    except ValueError:
        raise ConfigurationError(f"Unknown period_type {fields.get('period_type')!r}")
    validated = dict(fields)
    validated["period_type"] = period.value
    if period == PeriodType.ROLLING:
        validated.setdefault("period_days", 30)
        if validated["period_days"] is None:
            validated["period_days"] = 30
        _check_range(validated, "period_days", 1, MAX_ROLLING_DAYS)
    elif period == PeriodType.RANGE:
        start, end = fields.get("period_start_date"), fields.get("period_end_date")
        if start is None or end is None:
            raise ConfigurationError("RANGE booking windows need period_start_date and period_end_date")
        if start > end:
            raise ConfigurationError("period_start_date must not be after period_end_date")
    return validated


class ConfigurationService:
    """Writes host configuration; each public method is one transaction."""

    def __init__(self, db: Session):
        self.db = db
        self.hosts = SqlAlchemyHostRepository(db)
        self.schedules = SqlAlchemyScheduleRepository(db)

    def create_host(self, name: str, email: Optional[str] = None, timezone: Optional[str] = None) -> Host:
        """Onboard a host together with a default Mon-Fri 09:00-17:00 schedule."""
        host = Host(name=name, email=email, timezone=validate_timezone(timezone or "UTC"))
        try:
            self.hosts.save(host)
            self._create_default_schedule(host)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"👤 Onboarded host {host.id} ({host.timezone})")
        return host

    def create_default_schedule(self, host_id: str) -> AvailabilitySchedule:
        host = self._get_host(host_id)
        try:
            schedule = self._create_default_schedule(host)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return schedule

    def create_schedule(self, host_id: str, name: str, timezone: Optional[str] = None,
                        weekly: Optional[Dict[int, Sequence[Tuple[str, str]]]] = None,
                        make_default: bool = False) -> AvailabilitySchedule:
        host = self._get_host(host_id)
        if timezone is not None:
            validate_timezone(timezone)
        try:
            schedule = AvailabilitySchedule(host_id=host.id, name=name, timezone=timezone, is_default=False)
            self.db.add(schedule)
            self.db.flush()
            for day, ranges in (weekly or {}).items():
                self._write_day(schedule, day, ranges)
            if make_default or not self.schedules.get_default(str(host.id)):
                self._make_default(schedule)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(schedule)
        return schedule

    def replace_day_slots(self, schedule_id: str, day_of_week: int,
                          ranges: Sequence[Tuple[str, str]]) -> AvailabilitySchedule:
        """Replace every recurring range of one weekday; an empty list makes
        the day unavailable."""
        schedule = self._get_schedule(schedule_id)
        try:
            self._write_day(schedule, day_of_week, ranges)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(schedule)
        return schedule

    def set_default_schedule(self, schedule_id: str) -> AvailabilitySchedule:
        schedule = self._get_schedule(schedule_id)
        try:
            self._make_default(schedule)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Schedule {schedule.id} is now the default for host {schedule.host_id}")
        return schedule

    def upsert_override(self, schedule_id: str, day: date, is_working: bool,
                        ranges: Sequence[Tuple[str, str]] = ()) -> DateOverride:
        schedule = self._get_schedule(schedule_id)
        parsed = validate_day_ranges(ranges) if is_working else []
        intervals = [{"start": format_wall_time(r.start_minute), "end": format_wall_time(r.end_minute)} for r in parsed]
        try:
            override = self.schedules.get_override(str(schedule.id), day)
            if override is None:
                override = DateOverride(schedule_id=schedule.id, date=day)
                self.db.add(override)
            override.is_working = is_working
            override.intervals = intervals
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return override

    def delete_override(self, schedule_id: str, day: date) -> None:
        schedule = self._get_schedule(schedule_id)
        override = self.schedules.get_override(str(schedule.id), day)
        if override is None:
            raise NotFoundError(f"No override for {day.isoformat()} on schedule {schedule_id}")
        self.db.delete(override)
        self.db.commit()

    def create_event_type(self, host_id: str, **fields) -> EventType:
        host = self._get_host(host_id)
        validated = validate_event_type(fields)
        schedule_id = validated.pop("schedule_id", None)
        schedule = None
        if schedule_id is not None:
            schedule = self._get_schedule(str(schedule_id))
            if schedule.host_id != host.id:
                raise ConfigurationError("The schedule belongs to another host")
        if not validated.get("slug"):
            validated["slug"] = "-".join((validated.get("title") or "event").lower().split())
        try:
            event_type = EventType(host_id=host.id, schedule_id=schedule.id if schedule else None, **validated)
            self.db.add(event_type)
            self.db.commit()
        except TypeError as e:
            self.db.rollback()
            raise ConfigurationError(f"Unknown event type field: {e}") from e
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Created event type {event_type.id} ({event_type.duration_minutes} min) for host {host.id}")
        return event_type

    def _get_host(self, host_id: str) -> Host:
        host = self.hosts.get_by_id(host_id)
        if host is None:
            raise NotFoundError(f"Host {host_id} not found")
        return host

    def _get_schedule(self, schedule_id: str) -> AvailabilitySchedule:
        schedule = self.schedules.get_by_id(schedule_id)
        if schedule is None:
            raise NotFoundError(f"Schedule {schedule_id} not found")
        return schedule

    def _create_default_schedule(self, host: Host) -> AvailabilitySchedule:
        schedule = AvailabilitySchedule(host_id=host.id, name="Working hours", is_default=False)
        self.db.add(schedule)
        self.db.flush()
        for day in DEFAULT_WORKING_DAYS:
            self._write_day(schedule, day, [DEFAULT_WORKING_HOURS])
        self._make_default(schedule)
        return schedule

    def _write_day(self, schedule: AvailabilitySchedule, day_of_week: int,
                   ranges: Sequence[Tuple[str, str]]) -> None:
        if isinstance(day_of_week, bool) or not isinstance(day_of_week, int) or not 0 <= day_of_week <= 6:
            raise ConfigurationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        parsed = validate_day_ranges(ranges)
        self.db.query(RecurringSlot).filter(
            RecurringSlot.schedule_id == schedule.id,
            RecurringSlot.day_of_week == day_of_week,
        ).delete(synchronize_session=False)
        for wall_range in parsed:
            self.db.add(RecurringSlot(
                schedule_id=schedule.id,
                day_of_week=day_of_week,
                start_time=format_wall_time(wall_range.start_minute),
                end_time=format_wall_time(wall_range.end_minute),
            ))
        self.db.flush()
        self.db.expire(schedule, ["slots"])

    def _make_default(self, schedule: AvailabilitySchedule) -> None:
        """Clear then set the default flag inside the caller's transaction, so
        a host never has two defaults."""
        self.db.query(AvailabilitySchedule).filter(
            AvailabilitySchedule.host_id == schedule.host_id,
            AvailabilitySchedule.id != schedule.id,
        ).update({AvailabilitySchedule.is_default: False}, synchronize_session=False)
        schedule.is_default = True
        self.db.flush()
