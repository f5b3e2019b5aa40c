"""Application layer: answer "which slots can I book?" for an event type.

Reads configuration and bookings through the repositories and runs the
pure engine: recurrence expansion, busy-time aggregation, slot generation.
Nothing here writes to the store.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from timetide.application.busy_time import BusyTimeAggregator, FailurePolicy, fetch_external_busy
from timetide.application.recurrence import host_days_covering, recurrence_expander
from timetide.application.slot_generator import CandidateSlot, SlotGenerator, SlotResult, next_available_slot
from timetide.domain.errors import ConfigurationError, NotFoundError, TruncationWarning
from timetide.domain.intervals import Interval, ensure_utc
from timetide.domain.policies import MAX_DAYS_TO_PROCESS
from timetide.infrastructure.repositories import (
    SqlAlchemyBookingRepository, SqlAlchemyEventTypeRepository, SqlAlchemyScheduleRepository,
    event_type_rules, resolve_schedule_rules,
)
from timetide.utils.time import get_timezone, local_date, local_midnight_utc, utc_now

logger = logging.getLogger(__name__)


class SlotService:
    def __init__(self, db: Session, calendar_provider=None,
                 failure_policy: FailurePolicy = FailurePolicy.FAIL_CLOSED,
                 timeout_seconds: float = 10.0, generator: Optional[SlotGenerator] = None,
                 clock=utc_now):
        self.bookings = SqlAlchemyBookingRepository(db)
        self.event_types = SqlAlchemyEventTypeRepository(db)
        self.schedules = SqlAlchemyScheduleRepository(db)
        self.aggregator = BusyTimeAggregator(self.bookings)
        self.generator = generator or SlotGenerator()
        self.calendar_provider = calendar_provider
        self.failure_policy = failure_policy
        self.timeout_seconds = timeout_seconds
        self.clock = clock

    def get_slots(self, event_type_id: str, start_date: date, end_date: date,
                  invitee_timezone: str, now: Optional[datetime] = None) -> SlotResult:
        """Slots of one event type between two invitee-local dates, inclusive.

        Raises ``NotFoundError`` for unknown or inactive event types,
        ``ConfigurationError`` for bad input and ``CollaboratorError`` when
        external calendars fail under the fail-closed policy. Ranges longer
        than the processing cap are cut short and reported, never rejected.
        """
        now = ensure_utc(now or self.clock())
        event_type = self.event_types.get_active(event_type_id)
        if event_type is None:
            raise NotFoundError(f"Event type {event_type_id} not found")
        if end_date < start_date:
            raise ConfigurationError("endDate must not be before startDate")
        invitee_tz = get_timezone(invitee_timezone)

        warnings = []
        truncated = False
        max_days = self.generator.max_days_to_process
        if (end_date - start_date).days + 1 > max_days:
            end_date = start_date + timedelta(days=max_days - 1)
            truncated = True
            warnings.append(str(TruncationWarning(
                "max_days", f"results limited to {max_days} days from the query start")))

        date_range = Interval(
            local_midnight_utc(start_date, invitee_tz),
            local_midnight_utc(end_date + timedelta(days=1), invitee_tz),
        )
        rules = event_type_rules(event_type)
        schedule = resolve_schedule_rules(event_type, self.schedules)
        if schedule is None or date_range.end <= now:
            return SlotResult(truncated=truncated, warnings=warnings)

        host_id = str(event_type.host_id)
        # Generate over whole host-local days so the slot grid matches the one
        # a commit re-validates against; slots are cut to the invitee range after.
        host_range = host_days_covering(date_range, get_timezone(schedule.timezone))
        working = recurrence_expander.expand(schedule, host_range)
        external, fetch_warnings = fetch_external_busy(
            self.calendar_provider, host_id, host_range, self.failure_policy, self.timeout_seconds,
        )
        busy = self.aggregator.aggregate(host_id, host_range, external, candidate=rules)
        per_day = self.bookings.count_per_day(rules.id, host_range, schedule.timezone)

        result = self.generator.generate(
            working, busy.occupied, rules, now,
            invitee_timezone=invitee_timezone,
            host_timezone=schedule.timezone,
            open_group_slots=busy.open_group_slots,
            bookings_per_day=per_day,
            query_start=date_range.start,
            buffer_anchors=busy.buffer_anchors,
            offer_range=date_range,
        )
        result.truncated = result.truncated or truncated
        result.warnings = fetch_warnings + warnings + result.warnings
        logger.info(
            f"🔍 Event type {event_type_id}: {len(result.all_slots())} slots "
            f"{start_date.isoformat()}..{end_date.isoformat()} ({invitee_timezone})"
        )
        return result

    def next_available(self, event_type_id: str, invitee_timezone: str,
                       now: Optional[datetime] = None, days: int = 14) -> Optional[CandidateSlot]:
        """First bookable slot from today within ``days`` invitee-local days."""
        now = ensure_utc(now or self.clock())
        days = max(1, min(days, MAX_DAYS_TO_PROCESS))
        today = local_date(now, get_timezone(invitee_timezone))
        result = self.get_slots(event_type_id, today, today + timedelta(days=days - 1), invitee_timezone, now=now)
        return next_available_slot(result)
