"""Application layer: the only write path for bookings.

A commit re-validates the requested slot against fresh data while holding
the exclusion scope for the host's affected dates, so two invitees racing
for the same time can never both succeed.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from database.models import Booking
from timetide.application.busy_time import BusyTimeAggregator, FailurePolicy, fetch_external_busy
from timetide.application.recurrence import host_days_covering, recurrence_expander
from timetide.application.slot_generator import SlotGenerator
from timetide.domain.errors import ConflictError, NotFoundError, PolicyError
from timetide.domain.events import (
    BookingCancelled, BookingCommitted, BookingRescheduled, event_dispatcher,
)
from timetide.domain.intervals import Interval, ensure_utc, merge_intervals
from timetide.domain.policies import (
    MIN_SLOT_INTERVAL, MINUTES_PER_DAY, BookingStatus, EventTypeRules, ScheduleRules,
)
from timetide.infrastructure.locks import daily_cap_lock_key, slot_lock_keys, slot_locks
from timetide.infrastructure.repositories import (
    SqlAlchemyBookingRepository, SqlAlchemyEventTypeRepository, SqlAlchemyScheduleRepository,
    event_type_rules, resolve_schedule_rules,
)
from timetide.utils.time import get_timezone, local_date, utc_now

logger = logging.getLogger(__name__)

# Large enough that the per-day output cap never hides a real slot during
# re-validation (a 25 hour DST day at the finest step).
_REVALIDATION_SLOT_CAP = 2 * MINUTES_PER_DAY // MIN_SLOT_INTERVAL


@dataclass
class Invitee:
    name: str
    email: str
    timezone: str = "UTC"
    phone: Optional[str] = None
    notes: Optional[str] = None
    responses: Optional[dict] = None


class BookingCommitter:
    """Commits, cancels, reschedules and confirms bookings.

    Any two commits that could conflict share at least one lock key, and the
    free-slot check and the insert happen under those keys. A losing commit
    fails fast with ``ConflictError`` and is never retried here.
    """

    def __init__(self, db: Session, calendar_provider=None,
                 failure_policy: FailurePolicy = FailurePolicy.FAIL_CLOSED,
                 timeout_seconds: float = 10.0, locks=slot_locks, clock=utc_now):
        self.db = db
        self.bookings = SqlAlchemyBookingRepository(db)
        self.event_types = SqlAlchemyEventTypeRepository(db)
        self.schedules = SqlAlchemyScheduleRepository(db)
        self.aggregator = BusyTimeAggregator(self.bookings)
        self.generator = SlotGenerator(max_slots_per_day=_REVALIDATION_SLOT_CAP)
        self.calendar_provider = calendar_provider
        self.failure_policy = failure_policy
        self.timeout_seconds = timeout_seconds
        self.locks = locks
        self.clock = clock

    def commit(self, event_type_id: str, slot_start: datetime, invitee: Invitee,
               now: Optional[datetime] = None) -> Booking:
        """Book ``slot_start`` for ``invitee`` or raise Conflict/Policy errors."""
        booking = self._commit(event_type_id, slot_start, invitee, now=now)
        event_dispatcher.dispatch(BookingCommitted(booking))
        return booking

    def reschedule(self, uid: str, new_start: datetime, reason: Optional[str] = None,
                   now: Optional[datetime] = None) -> Booking:
        """Move an active booking: the new booking is committed and the
        original cancelled in the same transaction."""
        original = self._get_booking(uid)
        if BookingStatus(original.status) not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise PolicyError(f"Booking {uid} is {original.status} and cannot be rescheduled")
        invitee = Invitee(
            name=original.invitee_name,
            email=original.invitee_email,
            timezone=original.timezone,
            phone=original.invitee_phone,
            notes=original.invitee_notes,
            responses=original.responses,
        )
        booking = self._commit(str(original.event_type_id), new_start, invitee,
                               now=now, replaces=original, reason=reason)
        event_dispatcher.dispatch(BookingRescheduled(original, booking))
        return booking

    def cancel(self, uid: str, reason: Optional[str] = None, now: Optional[datetime] = None) -> Booking:
        booking = self._get_booking(uid)
        if BookingStatus(booking.status) not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise PolicyError(f"Booking {uid} is {booking.status} and cannot be cancelled")
        self._mark_cancelled(booking, reason, now or self.clock())
        self.db.commit()
        event_dispatcher.dispatch(BookingCancelled(booking, reason))
        return booking

    def confirm(self, uid: str) -> Booking:
        booking = self._get_booking(uid)
        if booking.status != BookingStatus.PENDING.value:
            raise PolicyError(f"Only pending bookings can be confirmed, {uid} is {booking.status}")
        booking.status = BookingStatus.CONFIRMED.value
        self.db.commit()
        event_dispatcher.dispatch(BookingCommitted(booking))
        return booking

    def reject(self, uid: str, reason: Optional[str] = None, now: Optional[datetime] = None) -> Booking:
        booking = self._get_booking(uid)
        if booking.status != BookingStatus.PENDING.value:
            raise PolicyError(f"Only pending bookings can be rejected, {uid} is {booking.status}")
        booking.status = BookingStatus.REJECTED.value
        booking.cancellation_reason = reason
        booking.cancelled_at = now or self.clock()
        self.db.commit()
        event_dispatcher.dispatch(BookingCancelled(booking, reason))
        return booking

    def _get_booking(self, uid: str) -> Booking:
        booking = self.bookings.get_by_uid(uid)
        if booking is None:
            raise NotFoundError(f"Booking {uid} not found")
        return booking

    def _mark_cancelled(self, booking: Booking, reason: Optional[str], now: datetime) -> None:
        booking.status = BookingStatus.CANCELLED.value
        booking.cancellation_reason = reason
        booking.cancelled_at = now

    def _commit(self, event_type_id: str, slot_start: datetime, invitee: Invitee,
                now: Optional[datetime] = None, replaces: Optional[Booking] = None,
                reason: Optional[str] = None) -> Booking:
        now = ensure_utc(now or self.clock())
        event_type = self.event_types.get_active(event_type_id)
        if event_type is None:
            raise NotFoundError(f"Event type {event_type_id} not found")
        rules = event_type_rules(event_type)
        schedule = resolve_schedule_rules(event_type, self.schedules)
        get_timezone(invitee.timezone)

        start = ensure_utc(slot_start)
        slot = Interval(start, start + rules.duration)
        self._check_policy(rules, schedule, slot, now)

        host_id = str(event_type.host_id)
        keys = slot_lock_keys(host_id, slot)
        if replaces is not None:
            keys += slot_lock_keys(host_id, Interval(replaces.start_time, replaces.end_time))
        if rules.max_bookings_per_day:
            # The cap is counted per host-local date, which UTC date keys do not cover
            keys.append(daily_cap_lock_key(host_id, local_date(slot.start, get_timezone(schedule.timezone))))

        with self.locks.hold(keys):
            try:
                self.bookings.lock_keys(keys)
                if not self._still_offered(host_id, rules, schedule, slot, now, replaces):
                    logger.info(f"Slot {start.isoformat()} for event type {event_type_id} lost to a concurrent booking")
                    raise ConflictError()

                booking = Booking(
                    event_type_id=event_type.id,
                    host_id=event_type.host_id,
                    start_time=slot.start,
                    end_time=slot.end,
                    timezone=invitee.timezone,
                    invitee_name=invitee.name,
                    invitee_email=invitee.email,
                    invitee_phone=invitee.phone,
                    invitee_notes=invitee.notes,
                    responses=invitee.responses,
                    status=(BookingStatus.PENDING if rules.requires_confirmation else BookingStatus.CONFIRMED).value,
                    seats_taken=1,
                    rescheduled_from_id=replaces.id if replaces is not None else None,
                )
                self.bookings.add(booking)
                if replaces is not None:
                    self._mark_cancelled(replaces, reason or "Rescheduled", now)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(f"✅ Booked {booking.uid} for host {host_id} at {slot.start.isoformat()} ({booking.status})")
        return booking

    def _check_policy(self, rules: EventTypeRules, schedule: Optional[ScheduleRules],
                      slot: Interval, now: datetime) -> None:
        """Reject requests the event type would never offer, regardless of
        other bookings."""
        if schedule is None:
            raise PolicyError("The host has no availability schedule")
        if slot.start < now + rules.minimum_notice:
            raise PolicyError(f"Bookings need at least {rules.minimum_notice_minutes} minutes notice")
        tz = get_timezone(schedule.timezone)
        if not rules.booking_window.allows(local_date(slot.start, tz), local_date(now, tz)):
            raise PolicyError("The requested time is outside the booking window")
        working = merge_intervals(recurrence_expander.expand(schedule, host_days_covering(slot, tz)))
        if not any(w.contains_interval(slot) for w in working):
            raise PolicyError("The requested time is outside the host's working hours")

    def _still_offered(self, host_id: str, rules: EventTypeRules, schedule: ScheduleRules,
                       slot: Interval, now: datetime, replaces: Optional[Booking]) -> bool:
        tz = get_timezone(schedule.timezone)
        day_range = host_days_covering(slot, tz)
        exclude: List[str] = [str(replaces.id)] if replaces is not None else []

        working = recurrence_expander.expand(schedule, day_range)
        external, _ = fetch_external_busy(
            self.calendar_provider, host_id, day_range, self.failure_policy, self.timeout_seconds,
        )
        busy = self.aggregator.aggregate(host_id, day_range, external, candidate=rules, exclude_booking_ids=exclude)
        per_day = self.bookings.count_per_day(rules.id, day_range, schedule.timezone)
        self._discount(per_day, replaces, rules, tz)

        result = self.generator.generate(
            working, busy.occupied, rules, now,
            invitee_timezone=schedule.timezone,
            host_timezone=schedule.timezone,
            open_group_slots=busy.open_group_slots,
            bookings_per_day=per_day,
            buffer_anchors=busy.buffer_anchors,
        )
        return any(candidate.start == slot.start for candidate in result.all_slots())

    @staticmethod
    def _discount(per_day, replaces: Optional[Booking], rules: EventTypeRules, tz) -> None:
        # The booking being replaced must not count against the daily cap
        if replaces is None or str(replaces.event_type_id) != rules.id:
            return
        day = local_date(replaces.start_time, tz)
        if per_day.get(day):
            per_day[day] -= 1

