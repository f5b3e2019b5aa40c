"""Helpers shared by the test modules."""
from datetime import date, datetime, timedelta, timezone

from database.models import Booking

# Monday 2030-01-07; "now" for engine tests is the Sunday before, at noon UTC
MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 6, 12, 0, tzinfo=timezone.utc)


def utc(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def add_booking(session, event_type, start, minutes=None, status="CONFIRMED", seats_taken=1, email="guest@example.com"):
    """Insert a booking row directly, bypassing the committer."""
    booking = Booking(
        event_type_id=event_type.id,
        host_id=event_type.host_id,
        start_time=start,
        end_time=start + timedelta(minutes=minutes or event_type.duration_minutes),
        timezone="UTC",
        invitee_name="Guest",
        invitee_email=email,
        status=status,
        seats_taken=seats_taken,
    )
    session.add(booking)
    session.commit()
    return booking


def upcoming_monday(today=None):
    """The Monday at least two days after ``today`` (UTC)."""
    today = today or datetime.now(timezone.utc).date()
    day = today + timedelta(days=2)
    while day.weekday() != 0:
        day += timedelta(days=1)
    return day
