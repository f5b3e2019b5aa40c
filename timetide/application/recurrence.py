"""Application layer: expand recurring weekly availability into UTC intervals."""
import logging
from datetime import timedelta
from typing import List, Optional

from timetide.domain.intervals import Interval, clip_intervals
from timetide.domain.policies import ScheduleRules, WallClockRange
from timetide.utils.time import get_timezone, local_date, local_midnight_utc, wall_time_to_utc

logger = logging.getLogger(__name__)


def host_days_covering(window: Interval, host_tz) -> Interval:
    """Whole host-local days around ``window``, one spare day on each side.

    The day before supplies busy time whose buffers reach past midnight; the
    day after lets a slot starting late on the last day run past midnight.
    """
    first_day = local_date(window.start, host_tz) - timedelta(days=1)
    last_day = local_date(window.end - timedelta(microseconds=1), host_tz) + timedelta(days=1)
    return Interval(local_midnight_utc(first_day, host_tz), local_midnight_utc(last_day + timedelta(days=1), host_tz))


class RecurrenceExpander:
    """Turns a schedule's weekly pattern and date overrides into concrete
    working intervals for a bounded UTC range."""

    def expand(self, schedule: Optional[ScheduleRules], date_range: Interval,
               host_timezone: Optional[str] = None) -> List[Interval]:
        """Return the sorted UTC working intervals that fall inside ``date_range``.

        ``host_timezone`` overrides the schedule's own zone when given. An
        unknown zone raises ``ConfigurationError``; a missing schedule means
        the host has no availability.
        """
        if schedule is None:
            return []
        tz = get_timezone(host_timezone or schedule.timezone)

        first_day = local_date(date_range.start, tz)
        last_day = local_date(date_range.end, tz)

        working: List[Interval] = []
        day = first_day
        while day <= last_day:
            for wall_range in schedule.ranges_for(day):
                interval = self._to_utc(day, wall_range, tz)
                if interval is not None:
                    working.append(interval)
            day += timedelta(days=1)

        return clip_intervals(working, date_range)

    def _to_utc(self, day, wall_range: WallClockRange, tz) -> Optional[Interval]:
        if not wall_range.is_valid:
            logger.warning(f"Skipping invalid wall-clock range {wall_range} on {day}")
            return None
        start = wall_time_to_utc(day, wall_range.start_minute, tz)
        end = wall_time_to_utc(day, wall_range.end_minute, tz)
        # A range lying entirely inside a spring-forward gap collapses to nothing
        if start >= end:
            return None
        return Interval(start, end)


recurrence_expander = RecurrenceExpander()
