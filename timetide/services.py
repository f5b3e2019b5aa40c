"""Service singletons (initialized once) used across routers.

This avoids circular imports between routers and keeps construction logic
away from `main.py` for cleaner testing. Tests swap ``calendar_provider``
with ``set_calendar_provider``.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from database.connection import SessionLocal
from timetide.application.booking_committer import BookingCommitter
from timetide.application.busy_time import FailurePolicy
from timetide.application.slot_generator import SlotGenerator
from timetide.application.slot_service import SlotService
from timetide.config import get_settings
from timetide.infrastructure.calendar_providers import CalendarProvider, ConnectedCalendarsProvider

settings = get_settings()
if settings.environment != 'testing':
    # Re-evaluate in case tests loaded after initial import forced test mode
    settings = get_settings(refresh=True)
logger = logging.getLogger(__name__)

try:
    calendar_provider: Optional[CalendarProvider] = ConnectedCalendarsProvider(
        SessionLocal, timeout=settings.calendar_timeout_seconds,
    )
    logger.info("📅 Connected calendars provider initialized")
except Exception as e:
    logger.warning(f"⚠️  Failed to initialize calendar provider: {e}")
    calendar_provider = None


def set_calendar_provider(provider: Optional[CalendarProvider]) -> None:
    global calendar_provider
    calendar_provider = provider


def failure_policy() -> FailurePolicy:
    return FailurePolicy(get_settings().calendar_failure_policy)


def build_slot_service(db: Session) -> SlotService:
    current = get_settings()
    return SlotService(
        db,
        calendar_provider=calendar_provider,
        failure_policy=failure_policy(),
        timeout_seconds=current.calendar_timeout_seconds,
        generator=SlotGenerator(
            max_slots_per_day=current.max_slots_per_day,
            max_days_to_process=current.max_days_to_process,
        ),
    )


def build_booking_committer(db: Session) -> BookingCommitter:
    current = get_settings()
    return BookingCommitter(
        db,
        calendar_provider=calendar_provider,
        failure_policy=failure_policy(),
        timeout_seconds=current.calendar_timeout_seconds,
    )
