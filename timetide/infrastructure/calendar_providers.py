"""Infrastructure layer: external calendar busy-time adapters.

Each adapter returns already-UTC, per-provider merged busy intervals.
Credential acquisition and refresh happen elsewhere; adapters only use the
access token stored with the connected calendar.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import requests

from timetide.domain.errors import CollaboratorError
from timetide.domain.intervals import Interval, ensure_utc, merge_intervals
from timetide.infrastructure.repositories import SqlAlchemyCalendarRepository
from timetide.utils.time import iso_utc, parse_iso_datetime

logger = logging.getLogger(__name__)


class CalendarProvider(ABC):
    """Collaborator interface: busy time for one host over ``[start, end)``."""

    @abstractmethod
    def get_busy_intervals(self, host_id: str, start: datetime, end: datetime) -> List[Interval]:
        pass


class StaticCalendarProvider(CalendarProvider):
    """In-memory busy time, for local development and tests."""

    def __init__(self, busy: Optional[Dict[str, Iterable[Interval]]] = None):
        self._busy: Dict[str, List[Interval]] = {k: list(v) for k, v in (busy or {}).items()}
        self.calls = 0

    def set_busy(self, host_id: str, intervals: Iterable[Interval]) -> None:
        self._busy[str(host_id)] = list(intervals)

    def get_busy_intervals(self, host_id: str, start: datetime, end: datetime) -> List[Interval]:
        self.calls += 1
        window = Interval(start, end)
        return merge_intervals(i for i in self._busy.get(str(host_id), []) if i.overlaps(window))


class GoogleFreeBusyClient:
    """Google Calendar v3 ``freeBusy`` query for one calendar."""

    base_url = "https://www.googleapis.com/calendar/v3"

    def __init__(self, access_token: str, calendar_id: str = "primary", timeout: float = 10.0):
        self.access_token = access_token
        self.calendar_id = calendar_id
        self.timeout = timeout

    def busy(self, start: datetime, end: datetime) -> List[Interval]:
        payload = {
            "timeMin": iso_utc(start),
            "timeMax": iso_utc(end),
            "items": [{"id": self.calendar_id}],
        }
        headers = {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}
        try:
            response = requests.post(f"{self.base_url}/freeBusy", headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise CollaboratorError(f"Google freeBusy request failed: {e}", source="GOOGLE") from e
        if response.status_code != 200:
            raise CollaboratorError(f"Google freeBusy returned {response.status_code}: {response.text[:200]}", source="GOOGLE")

        calendar = response.json().get("calendars", {}).get(self.calendar_id, {})
        if calendar.get("errors"):
            raise CollaboratorError(f"Google freeBusy error for {self.calendar_id}: {calendar['errors']}", source="GOOGLE")
        intervals = []
        for period in calendar.get("busy", []):
            period_start = parse_iso_datetime(period["start"])
            period_end = parse_iso_datetime(period["end"])
            if period_start < period_end:
                intervals.append(Interval(period_start, period_end))
        return merge_intervals(intervals)


class OutlookScheduleClient:
    """Microsoft Graph ``calendar/getSchedule`` for one mailbox."""

    base_url = "https://graph.microsoft.com/v1.0"
    busy_statuses = {"busy", "tentative", "oof", "workingElsewhere"}

    def __init__(self, access_token: str, mailbox: str, timeout: float = 10.0):
        self.access_token = access_token
        self.mailbox = mailbox
        self.timeout = timeout

    def busy(self, start: datetime, end: datetime) -> List[Interval]:
        payload = {
            "schedules": [self.mailbox],
            "startTime": {"dateTime": ensure_utc(start).strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": "UTC"},
            "endTime": {"dateTime": ensure_utc(end).strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": "UTC"},
            "availabilityViewInterval": 15,
        }
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Prefer": 'outlook.timezone="UTC"',
        }
        try:
            response = requests.post(f"{self.base_url}/me/calendar/getSchedule", headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise CollaboratorError(f"Outlook getSchedule request failed: {e}", source="OUTLOOK") from e
        if response.status_code != 200:
            raise CollaboratorError(f"Outlook getSchedule returned {response.status_code}: {response.text[:200]}", source="OUTLOOK")

        intervals = []
        for schedule in response.json().get("value", []):
            for item in schedule.get("scheduleItems", []):
                if item.get("status") not in self.busy_statuses:
                    continue
                # Graph returns naive UTC strings when asked for UTC
                item_start = parse_iso_datetime(item["start"]["dateTime"])
                item_end = parse_iso_datetime(item["end"]["dateTime"])
                if item_start < item_end:
                    intervals.append(Interval(item_start, item_end))
        return merge_intervals(intervals)


class ConnectedCalendarsProvider(CalendarProvider):
    """Queries every enabled connected calendar of the host and unions them.

    Any single calendar failing is a collaborator failure; the failure
    policy is applied by the caller.
    """

    def __init__(self, session_factory, timeout: float = 10.0):
        self.session_factory = session_factory
        self.timeout = timeout

    def _client_for(self, calendar):
        if calendar.provider == "GOOGLE":
            return GoogleFreeBusyClient(calendar.access_token or "", calendar.external_id, self.timeout)
        if calendar.provider == "OUTLOOK":
            return OutlookScheduleClient(calendar.access_token or "", calendar.external_id, self.timeout)
        logger.warning(f"Unsupported calendar provider {calendar.provider!r} for calendar {calendar.id}")
        return None

    def get_busy_intervals(self, host_id: str, start: datetime, end: datetime) -> List[Interval]:
        db = self.session_factory()
        try:
            calendars = SqlAlchemyCalendarRepository(db).list_enabled(host_id)
            clients = [c for c in (self._client_for(cal) for cal in calendars) if c is not None]
        finally:
            db.close()

        if not clients:
            logger.debug(f"No calendars connected for host {host_id}, skipping busy time fetch")
            return []

        busy: List[Interval] = []
        for client in clients:
            busy.extend(client.busy(start, end))
        return merge_intervals(busy)
