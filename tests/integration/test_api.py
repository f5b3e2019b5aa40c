"""
Integration tests for the HTTP API through FastAPI's TestClient.
"""
import pytest
from unittest.mock import MagicMock

from timetide import services
from timetide.config import get_settings
from timetide.domain.errors import CollaboratorError
from timetide.utils.time import get_timezone, wall_time_to_utc
from tests.helpers import upcoming_monday

NEW_YORK = "America/New_York"


@pytest.fixture
def monday():
    return upcoming_monday()


@pytest.fixture
def host(test_client):
    response = test_client.post("/hosts", json={"name": "Ada", "email": "ada@example.com", "timezone": NEW_YORK})
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def event_type(test_client, host):
    response = test_client.post(f"/hosts/{host['id']}/event-types", json={
        "title": "Intro call",
        "durationMinutes": 30,
        "minimumNoticeMinutes": 0,
    })
    assert response.status_code == 201
    return response.json()


def slots_for(client, event_type_id, day, tz=NEW_YORK):
    return client.get("/slots", params={
        "eventTypeId": event_type_id,
        "startDate": day.isoformat(),
        "endDate": day.isoformat(),
        "timezone": tz,
    })


def nine_am(day):
    return wall_time_to_utc(day, 9 * 60, get_timezone(NEW_YORK))


class TestHealthEndpoints:
    """Test liveness and readiness checks."""

    def test_health(self, test_client):
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_readiness(self, test_client):
        data = test_client.get("/readiness").json()
        assert data["ready"] is True
        assert data["calendar_failure_policy"] == "fail_closed"


class TestSlotsEndpoint:
    """Test GET /slots."""

    def test_slots_for_default_schedule(self, test_client, event_type, monday):
        response = slots_for(test_client, event_type["id"], monday)
        assert response.status_code == 200
        data = response.json()
        day_slots = data["slots"][monday.isoformat()]
        assert len(day_slots) == 16
        assert day_slots[0]["start"].startswith(f"{monday.isoformat()}T09:00:00")
        assert data["truncated"] is False
        assert data["warnings"] == []

    def test_unknown_event_type(self, test_client, monday):
        response = slots_for(test_client, "00000000-0000-0000-0000-000000000000", monday)
        assert response.status_code == 404

    def test_invalid_input(self, test_client, event_type, monday):
        response = test_client.get("/slots", params={
            "eventTypeId": event_type["id"], "startDate": "not-a-date", "endDate": monday.isoformat(),
        })
        assert response.status_code == 400
        assert slots_for(test_client, event_type["id"], monday, tz="Nowhere/City").status_code == 400

    def test_calendar_failure_is_503(self, test_client, event_type, monday):
        failing = MagicMock()
        failing.get_busy_intervals.side_effect = CollaboratorError("timeout", source="GOOGLE")
        services.set_calendar_provider(failing)
        response = slots_for(test_client, event_type["id"], monday)
        assert response.status_code == 503

    def test_fail_open_returns_warning(self, test_client, event_type, monday, monkeypatch):
        failing = MagicMock()
        failing.get_busy_intervals.side_effect = RuntimeError("down")
        services.set_calendar_provider(failing)
        monkeypatch.setenv("CALENDAR_FAILURE_POLICY", "fail_open")
        get_settings(refresh=True)
        data = slots_for(test_client, event_type["id"], monday).json()
        assert len(data["slots"][monday.isoformat()]) == 16
        assert any("stale availability" in w for w in data["warnings"])


class TestBookingEndpoints:
    """Test booking creation and lifecycle routes."""

    def book(self, client, event_type_id, start, email="guest@example.com"):
        return client.post("/bookings", json={
            "eventTypeId": event_type_id,
            "startTime": start.isoformat(),
            "timezone": "Europe/Paris",
            "name": "Guest",
            "email": email,
        })

    def test_create_then_conflict(self, test_client, event_type, monday):
        first = self.book(test_client, event_type["id"], nine_am(monday))
        assert first.status_code == 201
        body = first.json()
        assert body["status"] == "CONFIRMED"
        assert body["eventTypeId"] == event_type["id"]

        second = self.book(test_client, event_type["id"], nine_am(monday), email="late@example.com")
        assert second.status_code == 409

        remaining = slots_for(test_client, event_type["id"], monday).json()["slots"][monday.isoformat()]
        assert len(remaining) == 15

    def test_policy_violation_is_422(self, test_client, event_type, monday):
        response = self.book(test_client, event_type["id"], wall_time_to_utc(monday, 7 * 60, get_timezone(NEW_YORK)))
        assert response.status_code == 422

    def test_invalid_body_is_400(self, test_client, event_type, monday):
        response = test_client.post("/bookings", json={"eventTypeId": event_type["id"], "startTime": "soon"})
        assert response.status_code == 400

    def test_get_cancel_and_reschedule(self, test_client, event_type, monday):
        uid = self.book(test_client, event_type["id"], nine_am(monday)).json()["uid"]
        assert test_client.get(f"/bookings/{uid}").status_code == 200
        assert test_client.get("/bookings/missing").status_code == 404

        moved = test_client.post(f"/bookings/{uid}/reschedule", json={
            "startTime": wall_time_to_utc(monday, 11 * 60, get_timezone(NEW_YORK)).isoformat(),
            "reason": "Clash",
        })
        assert moved.status_code == 200
        new_uid = moved.json()["uid"]
        assert moved.json()["rescheduledFrom"] == uid
        assert test_client.get(f"/bookings/{uid}").json()["status"] == "CANCELLED"

        cancelled = test_client.post(f"/bookings/{new_uid}/cancel", json={"reason": "No longer needed"})
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "CANCELLED"
        assert test_client.post(f"/bookings/{new_uid}/cancel").status_code == 422

    def test_confirm_pending_booking(self, test_client, host, monday):
        gated = test_client.post(f"/hosts/{host['id']}/event-types", json={
            "title": "Gated", "durationMinutes": 30, "minimumNoticeMinutes": 0, "requiresConfirmation": True,
        }).json()
        booking = self.book(test_client, gated["id"], nine_am(monday)).json()
        assert booking["status"] == "PENDING"
        confirmed = test_client.post(f"/bookings/{booking['uid']}/confirm")
        assert confirmed.json()["status"] == "CONFIRMED"
        assert test_client.post(f"/bookings/{booking['uid']}/reject").status_code == 422


class TestConfigurationEndpoints:
    """Test host, schedule and event-type routes."""

    def test_onboarding_returns_default_schedule(self, host):
        assert host["timezone"] == NEW_YORK
        assert host["defaultScheduleId"]

    def test_unknown_timezone_rejected(self, test_client):
        response = test_client.post("/hosts", json={"name": "Bad", "timezone": "Nowhere/City"})
        assert response.status_code == 400

    def test_schedule_lifecycle(self, test_client, host, event_type, monday):
        created = test_client.post(f"/hosts/{host['id']}/schedules", json={
            "name": "Mornings", "weekly": {"1": [{"start": "08:00", "end": "10:00"}]},
        })
        assert created.status_code == 201
        schedule = created.json()
        assert schedule["isDefault"] is False

        overlap = test_client.put(f"/schedules/{schedule['id']}/days/2", json={"ranges": [
            {"start": "09:00", "end": "11:00"}, {"start": "10:00", "end": "12:00"},
        ]})
        assert overlap.status_code == 400

        made_default = test_client.post(f"/schedules/{schedule['id']}/default")
        assert made_default.json()["isDefault"] is True

        # The event type follows the host's default schedule
        day_slots = slots_for(test_client, event_type["id"], monday).json()["slots"][monday.isoformat()]
        assert [s["start"][11:16] for s in day_slots] == ["08:00", "08:30", "09:00", "09:30"]

    def test_override_routes(self, test_client, host, event_type, monday):
        schedule_id = host["defaultScheduleId"]
        day_off = test_client.put(f"/schedules/{schedule_id}/overrides/{monday.isoformat()}", json={"isWorking": False})
        assert day_off.status_code == 200
        assert slots_for(test_client, event_type["id"], monday).json()["slots"] == {}

        deleted = test_client.delete(f"/schedules/{schedule_id}/overrides/{monday.isoformat()}")
        assert deleted.status_code == 204
        assert test_client.delete(f"/schedules/{schedule_id}/overrides/{monday.isoformat()}").status_code == 404

    def test_invalid_event_type(self, test_client, host):
        response = test_client.post(f"/hosts/{host['id']}/event-types", json={"title": "Tiny", "durationMinutes": 3})
        assert response.status_code == 400

    def test_admin_key_required_when_configured(self, test_client, monkeypatch):
        monkeypatch.setenv("ADMIN_API_KEY", "secret")
        assert test_client.post("/hosts", json={"name": "Ada"}).status_code == 401
        response = test_client.post("/hosts", json={"name": "Ada"}, headers={"X-API-Key": "secret"})
        assert response.status_code == 201
