"""Time/date related helpers.

All engine arithmetic is done on aware UTC datetimes; these helpers are the
only place wall-clock values and IANA zone names are turned into instants
and back.
"""
from __future__ import annotations
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import pytz

from timetide.domain.errors import ConfigurationError

__all__ = [
    "utc_now",
    "iso_utc",
    "get_timezone",
    "is_valid_timezone",
    "parse_iso_datetime",
    "local_date",
    "local_midnight_utc",
    "wall_time_to_utc",
]

_EXTRA_FRACTION = re.compile(r"(\.\d{6})\d+")


def utc_now() -> datetime:
    """Return an aware UTC datetime."""
    return datetime.now(timezone.utc)


def iso_utc(dt: Optional[datetime] = None) -> str:
    """Return ISO8601 string with Z suffix for given datetime (defaults to now)."""
    if dt is None:
        dt = utc_now()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def get_timezone(name: str):
    """Resolve an IANA timezone name; unknown names are a configuration error."""
    try:
        return pytz.timezone(name)
    except (pytz.exceptions.UnknownTimeZoneError, AttributeError) as e:
        raise ConfigurationError(f"Unknown timezone: {name!r}") from e


def is_valid_timezone(name: str) -> bool:
    try:
        get_timezone(name)
        return True
    except ConfigurationError:
        return False


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO8601 timestamp (trailing ``Z`` accepted) into aware UTC."""
    # Graph returns seven fractional digits; fromisoformat takes at most six
    value = _EXTRA_FRACTION.sub(r"\1", value.replace("Z", "+00:00"))
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def local_date(instant: datetime, tz) -> date:
    """Calendar date of ``instant`` on the wall clock of ``tz``."""
    return instant.astimezone(tz).date()


def local_midnight_utc(day: date, tz) -> datetime:
    """The UTC instant at which ``day`` begins in ``tz``."""
    return wall_time_to_utc(day, 0, tz)


def wall_time_to_utc(day: date, minute_of_day: int, tz) -> datetime:
    """Convert a host-local wall-clock time on ``day`` to a UTC instant.

    ``minute_of_day`` may be 1440 (midnight ending the day). Each boundary
    gets exactly one offset: ambiguous fall-back times take pytz's standard
    disambiguation (``is_dst=False``), and times inside a spring-forward gap
    move forward to the first wall-clock minute that exists.
    """
    naive = datetime.combine(day, time.min) + timedelta(minutes=minute_of_day)
    try:
        aware = tz.localize(naive, is_dst=None)
    except pytz.exceptions.AmbiguousTimeError:
        aware = tz.localize(naive, is_dst=False)
    except pytz.exceptions.NonExistentTimeError:
        aware = tz.localize(_first_existing_wall_time(naive, tz), is_dst=False)
    return aware.astimezone(timezone.utc)


def _first_existing_wall_time(naive: datetime, tz) -> datetime:
    candidate = naive.replace(second=0, microsecond=0)
    # DST gaps are at most a few hours
    for _ in range(24 * 60):
        candidate += timedelta(minutes=1)
        try:
            tz.localize(candidate, is_dst=None)
            return candidate
        except pytz.exceptions.NonExistentTimeError:
            continue
        except pytz.exceptions.AmbiguousTimeError:
            return candidate
    raise ConfigurationError(f"Could not resolve wall-clock time {naive} in {tz}")
