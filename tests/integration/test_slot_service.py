"""
Integration tests for slot lookup over the database.
"""
import pytest
import pytz
from datetime import date, timedelta
from unittest.mock import MagicMock

from timetide.application.busy_time import STALE_AVAILABILITY_WARNING, FailurePolicy
from timetide.application.slot_service import SlotService
from timetide.domain.errors import CollaboratorError, ConfigurationError, NotFoundError
from timetide.domain.intervals import Interval
from timetide.infrastructure.calendar_providers import StaticCalendarProvider
from timetide.infrastructure.repositories import SqlAlchemyScheduleRepository
from tests.helpers import MONDAY, NOW, add_booking, utc

NEW_YORK = "America/New_York"


def times(result, day="2030-01-07"):
    return [slot.start.strftime("%H:%M") for slot in result.slots_by_date.get(day, [])]


class TestSlotService:
    """Test GetSlots end to end over SQLAlchemy repositories."""

    def test_scenario_a(self, test_db_session, sample_event_type):
        result = SlotService(test_db_session).get_slots(str(sample_event_type.id), MONDAY, MONDAY, NEW_YORK, now=NOW)
        assert len(times(result)) == 16
        assert times(result)[0] == "09:00"
        assert times(result)[-1] == "16:30"

    def test_scenario_b_existing_booking_with_buffers(self, test_db_session, config_service, sample_host,
                                                      sample_event_type):
        padded = config_service.create_event_type(
            str(sample_host.id), title="Padded", duration_minutes=30, minimum_notice_minutes=0,
            buffer_before_minutes=15, buffer_after_minutes=15,
        )
        add_booking(test_db_session, padded, utc(2030, 1, 7, 15))  # 10:00 local
        result = SlotService(test_db_session).get_slots(str(sample_event_type.id), MONDAY, MONDAY, NEW_YORK, now=NOW)
        assert times(result)[:3] == ["09:00", "10:45", "11:15"]

    def test_scenario_b_own_booking_with_buffers(self, test_db_session, config_service, sample_host):
        padded = config_service.create_event_type(
            str(sample_host.id), title="Padded", duration_minutes=30, minimum_notice_minutes=0,
            buffer_before_minutes=15, buffer_after_minutes=15,
        )
        add_booking(test_db_session, padded, utc(2030, 1, 7, 15))  # 10:00 local
        result = SlotService(test_db_session).get_slots(str(padded.id), MONDAY, MONDAY, NEW_YORK, now=NOW)
        assert times(result)[:3] == ["09:00", "10:45", "11:15"]

    def test_scenario_c_day_off_override(self, test_db_session, config_service, sample_host, sample_event_type):
        default = SqlAlchemyScheduleRepository(test_db_session).get_default(str(sample_host.id))
        config_service.upsert_override(str(default.id), MONDAY, False)
        result = SlotService(test_db_session).get_slots(
            str(sample_event_type.id), MONDAY, MONDAY + timedelta(days=1), NEW_YORK, now=NOW)
        assert times(result) == []
        assert len(times(result, "2030-01-08")) == 16

    def test_invitee_day_boundary_keeps_the_host_grid(self, test_db_session, config_service, sample_host):
        hourly = config_service.create_event_type(
            str(sample_host.id), title="Hourly", duration_minutes=60, minimum_notice_minutes=0,
        )
        service = SlotService(test_db_session)
        # Midnight in Kolkata falls at 13:30 New York, inside working hours
        monday = service.get_slots(str(hourly.id), MONDAY, MONDAY, "Asia/Kolkata", now=NOW)
        tuesday = service.get_slots(str(hourly.id), MONDAY + timedelta(days=1), MONDAY + timedelta(days=1),
                                    "Asia/Kolkata", now=NOW)
        offered = [s.start.astimezone(pytz.utc) for s in monday.all_slots() + tuesday.all_slots()]
        assert [s for s in offered if s < utc(2030, 1, 8)] == [utc(2030, 1, 7, hour) for hour in range(14, 22)]

    def test_cancelled_bookings_do_not_block(self, test_db_session, sample_event_type):
        add_booking(test_db_session, sample_event_type, utc(2030, 1, 7, 14), status="CANCELLED")
        result = SlotService(test_db_session).get_slots(str(sample_event_type.id), MONDAY, MONDAY, NEW_YORK, now=NOW)
        assert times(result)[0] == "09:00"

    def test_event_type_schedule_wins_over_default(self, test_db_session, config_service, sample_host):
        evenings = config_service.create_schedule(str(sample_host.id), "Evenings", weekly={1: [("18:00", "19:00")]})
        event_type = config_service.create_event_type(
            str(sample_host.id), title="Late", duration_minutes=30, minimum_notice_minutes=0,
            schedule_id=str(evenings.id),
        )
        result = SlotService(test_db_session).get_slots(str(event_type.id), MONDAY, MONDAY, NEW_YORK, now=NOW)
        assert times(result) == ["18:00", "18:30"]

    def test_external_busy_time(self, test_db_session, sample_event_type, sample_host):
        provider = StaticCalendarProvider({str(sample_host.id): [Interval(utc(2030, 1, 7, 14), utc(2030, 1, 7, 20))]})
        result = SlotService(test_db_session, calendar_provider=provider).get_slots(
            str(sample_event_type.id), MONDAY, MONDAY, NEW_YORK, now=NOW)
        assert times(result)[0] == "15:00"

    def test_fail_closed(self, test_db_session, sample_event_type):
        provider = MagicMock()
        provider.get_busy_intervals.side_effect = RuntimeError("calendar down")
        service = SlotService(test_db_session, calendar_provider=provider, failure_policy=FailurePolicy.FAIL_CLOSED)
        with pytest.raises(CollaboratorError):
            service.get_slots(str(sample_event_type.id), MONDAY, MONDAY, NEW_YORK, now=NOW)

    def test_fail_open(self, test_db_session, sample_event_type):
        provider = MagicMock()
        provider.get_busy_intervals.side_effect = RuntimeError("calendar down")
        service = SlotService(test_db_session, calendar_provider=provider, failure_policy=FailurePolicy.FAIL_OPEN)
        result = service.get_slots(str(sample_event_type.id), MONDAY, MONDAY, NEW_YORK, now=NOW)
        assert len(times(result)) == 16
        assert STALE_AVAILABILITY_WARNING in result.warnings

    def test_long_ranges_are_truncated(self, test_db_session, sample_event_type):
        result = SlotService(test_db_session).get_slots(
            str(sample_event_type.id), MONDAY, MONDAY + timedelta(days=200), NEW_YORK, now=NOW)
        assert result.truncated
        assert any(w.startswith("max_days") for w in result.warnings)

    def test_daily_cap(self, test_db_session, config_service, sample_host):
        capped = config_service.create_event_type(
            str(sample_host.id), title="Capped", duration_minutes=30, minimum_notice_minutes=0,
            max_bookings_per_day=1,
        )
        add_booking(test_db_session, capped, utc(2030, 1, 7, 21))
        result = SlotService(test_db_session).get_slots(
            str(capped.id), MONDAY, MONDAY + timedelta(days=1), NEW_YORK, now=NOW)
        assert times(result) == []
        assert len(times(result, "2030-01-08")) == 16

    def test_unknown_and_inactive_event_types(self, test_db_session, sample_event_type):
        service = SlotService(test_db_session)
        with pytest.raises(NotFoundError):
            service.get_slots("00000000-0000-0000-0000-000000000000", MONDAY, MONDAY, NEW_YORK, now=NOW)
        sample_event_type.is_active = False
        test_db_session.commit()
        with pytest.raises(NotFoundError):
            service.get_slots(str(sample_event_type.id), MONDAY, MONDAY, NEW_YORK, now=NOW)

    def test_bad_input(self, test_db_session, sample_event_type):
        service = SlotService(test_db_session)
        with pytest.raises(ConfigurationError):
            service.get_slots(str(sample_event_type.id), MONDAY, MONDAY - timedelta(days=1), NEW_YORK, now=NOW)
        with pytest.raises(ConfigurationError):
            service.get_slots(str(sample_event_type.id), MONDAY, MONDAY, "Not/AZone", now=NOW)

    def test_next_available(self, test_db_session, sample_event_type):
        slot = SlotService(test_db_session).next_available(str(sample_event_type.id), NEW_YORK, now=NOW)
        assert slot.start.date() == date(2030, 1, 7)
        assert slot.start.strftime("%H:%M") == "09:00"

    def test_host_without_schedule(self, test_db_session, sample_host, sample_event_type):
        for schedule in SqlAlchemyScheduleRepository(test_db_session).list_for_host(str(sample_host.id)):
            test_db_session.delete(schedule)
        test_db_session.commit()
        result = SlotService(test_db_session).get_slots(str(sample_event_type.id), MONDAY, MONDAY, NEW_YORK, now=NOW)
        assert result.all_slots() == []
