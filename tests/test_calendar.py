import asyncio
import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from dentcare.domain.calendar.client import GoogleCalendarClient, get_http_client
from dentcare.domain.calendar.service import GoogleCalendarService, parse_event_time
from dentcare.main import app
from dentcare.models import Appointment
from dentcare.models_google_calendar import GoogleCalendarIntegration
from dentcare.plans import PLAN_LIMITS
from dentcare.security_utils import decrypt_token, encrypt_token

SYNC_RANGE = {"calendar_id": "primary", "start_date": "2030-01-01T00:00:00", "end_date": "2030-01-31T23:59:00"}


class FakeGoogle:
    """In-memory stand-in for the Google OAuth and Calendar endpoints"""

    def __init__(self):
        self.requests = []
        self.events = {}
        self.remote_events = []
        self.fail_calendar = False
        self._next_id = 0

    def calls(self, method, path_fragment):
        return [r for r in self.requests if r.method == method and path_fragment in r.url.path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/token":
            form = parse_qs(request.content.decode())
            if form["grant_type"] == ["authorization_code"]:
                if form["code"] == ["bad-code"]:
                    return httpx.Response(400, json={"error": "invalid_grant"})
                return httpx.Response(
                    200,
                    json={"access_token": "access-1", "refresh_token": "refresh-1", "expires_in": 3600},
                )
            return httpx.Response(200, json={"access_token": "access-2", "expires_in": 3600})

        if path == "/revoke":
            return httpx.Response(200)

        if path == "/oauth2/v2/userinfo":
            return httpx.Response(200, json={"email": "marta@gmail.com"})

        if self.fail_calendar:
            return httpx.Response(500, json={"error": "backendError"})

        if path == "/calendar/v3/users/me/calendarList":
            return httpx.Response(
                200, json={"items": [{"id": "primary", "summary": "Marta", "primary": True, "timeZone": "Europe/Lisbon"}]}
            )

        if path.startswith("/calendar/v3/calendars/"):
            if request.method == "GET":
                return httpx.Response(200, json={"items": list(self.events.values()) + self.remote_events})
            if request.method == "POST":
                self._next_id += 1
                event = {**json.loads(request.content), "id": f"evt-{self._next_id}"}
                self.events[event["id"]] = event
                return httpx.Response(200, json=event)
            event_id = path.rsplit("/", 1)[1]
            if request.method == "PUT":
                self.events[event_id] = {**json.loads(request.content), "id": event_id}
                return httpx.Response(200, json=self.events[event_id])
            if request.method == "DELETE":
                self.events.pop(event_id, None)
                return httpx.Response(204)

        return httpx.Response(404)


@pytest.fixture()
def google(client):
    fake = FakeGoogle()

    async def override_http_client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
            yield http

    app.dependency_overrides[get_http_client] = override_http_client
    return fake


@pytest.fixture()
def connected(db, seed):
    integration = GoogleCalendarIntegration(
        user_id=seed.dentist_user.id,
        clinic_id=seed.clinic.id,
        access_token=encrypt_token("access-1"),
        refresh_token=encrypt_token("refresh-1"),
        token_expires_at=datetime.utcnow() + timedelta(hours=1),
        google_user_email="marta@gmail.com",
        google_calendar_id="primary",
        auto_sync_enabled=True,
    )
    db.add(integration)
    db.commit()
    return integration


@pytest.fixture()
def appointment(db, seed):
    appointment = Appointment(
        clinic_id=seed.clinic.id,
        dentist_id=seed.dentist.id,
        patient_id=seed.ana.id,
        start_time=datetime(2030, 1, 7, 9, 0),
        end_time=datetime(2030, 1, 7, 10, 0),
        status="scheduled",
        notes="Bring previous x-rays",
    )
    db.add(appointment)
    db.commit()
    return appointment


def run_with_fake(db, fake, call):
    """Run a service coroutine against the fake Google outside a request"""

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
            return await call(GoogleCalendarService(db, GoogleCalendarClient(http)))

    return asyncio.run(_run())


class TestConnection:
    def test_config(self, client, seed, google):
        response = client.get("/google-calendar/config", headers=seed.headers["owner"])
        assert response.json() == {"configured": True}

    def test_auth_url_requests_offline_consent(self, client, seed, google):
        url = httpx.URL(client.get("/google-calendar/auth-url", headers=seed.headers["owner"]).json()["auth_url"])

        assert url.host == "accounts.google.com"
        assert url.params["access_type"] == "offline"
        assert url.params["prompt"] == "consent"
        assert url.params["state"] == "owner-1"
        assert "https://www.googleapis.com/auth/calendar.events" in url.params["scope"].split(" ")

    def test_auth_url_when_not_configured(self, client, seed, google, monkeypatch):
        monkeypatch.setattr(GoogleCalendarClient, "is_configured", lambda self: False)
        response = client.get("/google-calendar/auth-url", headers=seed.headers["owner"])
        assert response.status_code == 503

    def test_exchange_code_stores_encrypted_tokens(self, client, db, seed, google):
        response = client.post(
            "/google-calendar/exchange-code", json={"code": "good-code"}, headers=seed.headers["dentist"]
        )

        assert response.status_code == 200
        assert response.json()["connected"] is True
        assert response.json()["user_email"] == "marta@gmail.com"

        integration = db.query(GoogleCalendarIntegration).filter_by(user_id=seed.dentist_user.id).one()
        assert integration.access_token != "access-1"
        assert decrypt_token(integration.access_token) == "access-1"
        assert decrypt_token(integration.refresh_token) == "refresh-1"
        assert integration.clinic_id == seed.clinic.id

    def test_exchange_code_twice_updates_the_integration(self, client, db, seed, google):
        client.post("/google-calendar/exchange-code", json={"code": "good-code"}, headers=seed.headers["dentist"])
        client.post("/google-calendar/exchange-code", json={"code": "good-code"}, headers=seed.headers["dentist"])

        assert db.query(GoogleCalendarIntegration).filter_by(user_id=seed.dentist_user.id).count() == 1

    def test_rejected_code(self, client, seed, google):
        response = client.post(
            "/google-calendar/exchange-code", json={"code": "bad-code"}, headers=seed.headers["dentist"]
        )
        assert response.status_code == 400

    def test_status_when_not_connected(self, client, seed, google):
        body = client.get("/google-calendar/status", headers=seed.headers["owner"]).json()
        assert body["connected"] is False
        assert body["user_email"] is None

    def test_disconnect_revokes_and_deletes(self, client, db, seed, google, connected):
        response = client.post("/google-calendar/disconnect", headers=seed.headers["dentist"])

        assert response.status_code == 200
        revoke = google.calls("POST", "/revoke")
        assert len(revoke) == 1
        assert revoke[0].url.params["token"] == "access-1"
        assert db.query(GoogleCalendarIntegration).count() == 0

        assert client.post("/google-calendar/disconnect", headers=seed.headers["dentist"]).status_code == 404


class TestEvents:
    def test_expiring_token_is_refreshed_and_stored(self, client, db, seed, google, connected):
        connected.token_expires_at = datetime.utcnow() + timedelta(minutes=2)
        db.commit()

        response = client.get("/google-calendar/calendars", headers=seed.headers["dentist"])

        assert response.status_code == 200
        assert response.json()[0]["id"] == "primary"
        refresh = google.calls("POST", "/token")
        assert parse_qs(refresh[0].content.decode())["grant_type"] == ["refresh_token"]
        db.refresh(connected)
        assert decrypt_token(connected.access_token) == "access-2"
        assert google.calls("GET", "calendarList")[0].headers["Authorization"] == "Bearer access-2"

    def test_valid_token_is_not_refreshed(self, client, seed, google, connected):
        client.get("/google-calendar/calendars", headers=seed.headers["dentist"])
        assert google.calls("POST", "/token") == []

    def test_not_connected(self, client, seed, google):
        response = client.get("/google-calendar/calendars", headers=seed.headers["owner"])
        assert response.status_code == 404

    def test_create_event_applies_timezone_and_reminders(self, client, seed, google, connected):
        response = client.post(
            "/google-calendar/events",
            json={
                "summary": "Team meeting",
                "start_time": "2030-01-07T12:00:00",
                "end_time": "2030-01-07T13:00:00",
                "attendees": [{"email": "Staff@Sorriso.pt", "display_name": "Staff"}],
            },
            headers=seed.headers["dentist"],
        )

        assert response.json() == {"success": True, "event_id": "evt-1"}
        request = google.calls("POST", "/events")[0]
        body = json.loads(request.content)
        assert request.url.params["sendUpdates"] == "all"
        assert body["start"] == {"dateTime": "2030-01-07T12:00:00", "timeZone": "Europe/Lisbon"}
        assert body["reminders"]["overrides"] == [
            {"method": "email", "minutes": 1440},
            {"method": "popup", "minutes": 60},
        ]
        assert body["attendees"] == [{"email": "staff@sorriso.pt", "displayName": "Staff"}]

    def test_list_events_expands_recurrences(self, client, seed, google, connected):
        client.get(
            "/google-calendar/events",
            params={"start": "2030-01-01T00:00:00", "end": "2030-01-31T00:00:00"},
            headers=seed.headers["dentist"],
        )

        params = google.calls("GET", "/events")[0].url.params
        assert params["singleEvents"] == "true"
        assert params["orderBy"] == "startTime"
        assert params["timeMin"] == "2030-01-01T00:00:00+00:00"

    def test_summer_window_carries_clinic_offset(self, client, seed, google, connected):
        client.get(
            "/google-calendar/events",
            params={"start": "2030-07-01T09:00:00+01:00", "end": "2030-07-01T18:00:00"},
            headers=seed.headers["dentist"],
        )

        params = google.calls("GET", "/events")[0].url.params
        assert datetime.fromisoformat(params["timeMin"]) == datetime(2030, 7, 1, 8, 0, tzinfo=timezone.utc)
        assert datetime.fromisoformat(params["timeMax"]) == datetime(2030, 7, 1, 17, 0, tzinfo=timezone.utc)

    def test_full_sync_window_in_summer(self, client, seed, google, connected):
        client.post(
            "/google-calendar/full-sync",
            json={"start_date": "2030-07-01T00:00:00", "end_date": "2030-07-31T23:59:00"},
            headers=seed.headers["dentist"],
        )

        params = google.calls("GET", "/events")[0].url.params
        assert params["timeMin"] == "2030-07-01T00:00:00+01:00"
        assert datetime.fromisoformat(params["timeMin"]) == datetime(2030, 6, 30, 23, 0, tzinfo=timezone.utc)

    def test_delete_event(self, client, seed, google, connected):
        google.events["evt-9"] = {"id": "evt-9"}
        response = client.delete("/google-calendar/events/evt-9", headers=seed.headers["dentist"])

        assert response.json() == {"success": True}
        assert "evt-9" not in google.events

    def test_google_failure_is_bad_gateway(self, client, seed, google, connected):
        google.fail_calendar = True
        response = client.get("/google-calendar/calendars", headers=seed.headers["dentist"])
        assert response.status_code == 502


class TestAppointmentSync:
    def test_sync_creates_then_updates_the_event(self, client, db, seed, google, connected, appointment):
        first = client.post(
            "/google-calendar/sync-appointment",
            json={"appointment_id": appointment.id},
            headers=seed.headers["dentist"],
        ).json()
        second = client.post(
            "/google-calendar/sync-appointment",
            json={"appointment_id": appointment.id},
            headers=seed.headers["dentist"],
        ).json()

        assert first["event_id"] == second["event_id"] == "evt-1"
        assert len(google.calls("POST", "/events")) == 1
        assert len(google.calls("PUT", "/events/evt-1")) == 1
        db.refresh(appointment)
        assert appointment.google_event_id == "evt-1"

        event = google.events["evt-1"]
        assert event["summary"] == "Appointment - Ana Silva"
        assert [a["email"] for a in event["attendees"]] == ["ana@example.com", "marta@sorriso.pt"]
        assert "Bring previous x-rays" in event["description"]
        assert event["location"] == "Sorriso Clinic, Rua Augusta 10, Lisboa"

    def test_sync_foreign_appointment_is_not_found(self, client, seed, google, connected, appointment):
        response = client.post(
            "/google-calendar/sync-appointment",
            json={"appointment_id": appointment.id},
            headers=seed.headers["other"],
        )
        assert response.status_code == 404

    def test_auto_sync_helper_skips_when_disabled(self, db, seed, connected, appointment):
        connected.auto_sync_enabled = False
        db.commit()
        fake = FakeGoogle()

        result = run_with_fake(db, fake, lambda s: s.sync_appointment_if_enabled(seed.dentist_user, appointment))

        assert result is None
        assert fake.requests == []

    def test_auto_sync_helper_swallows_google_errors(self, db, seed, connected, appointment):
        fake = FakeGoogle()
        fake.fail_calendar = True

        result = run_with_fake(db, fake, lambda s: s.sync_appointment_if_enabled(seed.dentist_user, appointment))

        assert result is None
        assert appointment.google_event_id is None

    def test_remove_event_of_cancelled_appointment(self, db, seed, connected, appointment):
        fake = FakeGoogle()
        fake.events["evt-5"] = {"id": "evt-5"}
        appointment.google_event_id = "evt-5"
        db.commit()

        removed = run_with_fake(db, fake, lambda s: s.remove_appointment_event(seed.dentist_user, appointment))

        assert removed is True
        assert fake.events == {}
        assert appointment.google_event_id is None


class TestFullSync:
    def _remote_event(self, event_id, email, start, end=None, all_day=False):
        if all_day:
            return {"id": event_id, "summary": "Check-up", "attendees": [{"email": email}],
                    "start": {"date": start}, "end": {"date": end}}
        return {
            "id": event_id,
            "summary": "Check-up",
            "attendees": [{"email": "someone@gmail.com"}, {"email": email}],
            "start": {"dateTime": start},
            "end": {"dateTime": end},
        }

    def test_only_dentists_can_sync(self, client, seed, google):
        response = client.post("/google-calendar/full-sync", json=SYNC_RANGE, headers=seed.headers["owner"])
        assert response.status_code == 403

    def test_push_and_pull(self, client, db, seed, google, connected, appointment):
        google.remote_events = [
            self._remote_event("g-1", "BRUNO@example.com", "2030-01-08T10:00:00Z", "2030-01-08T10:45:00Z"),
            self._remote_event("g-2", "stranger@example.com", "2030-01-09T10:00:00Z", "2030-01-09T11:00:00Z"),
            self._remote_event("g-3", "ana@example.com", "2030-01-10", "2030-01-11", all_day=True),
        ]

        response = client.post("/google-calendar/full-sync", json=SYNC_RANGE, headers=seed.headers["dentist"])

        assert response.status_code == 200
        # evt-1 is the pushed appointment coming back from Google and is already linked
        assert response.json() == {"pushed": 1, "pulled": 2, "skipped": 2, "failed": 0}

        pulled = db.query(Appointment).filter(Appointment.google_event_id == "g-1").one()
        assert pulled.patient_id == seed.bruno.id
        assert pulled.dentist_id == seed.dentist.id
        assert pulled.status == "scheduled"
        assert pulled.start_time == datetime(2030, 1, 8, 10, 0)
        assert pulled.end_time == datetime(2030, 1, 8, 10, 45)

        all_day = db.query(Appointment).filter(Appointment.google_event_id == "g-3").one()
        assert all_day.start_time == datetime(2030, 1, 10, 0, 0)

        db.refresh(connected)
        assert connected.last_synced_at is not None

    def test_second_sync_does_not_duplicate(self, client, db, seed, google, connected):
        google.remote_events = [
            self._remote_event("g-1", "bruno@example.com", "2030-01-08T10:00:00Z", "2030-01-08T11:00:00Z")
        ]

        client.post("/google-calendar/full-sync", json=SYNC_RANGE, headers=seed.headers["dentist"])
        second = client.post("/google-calendar/full-sync", json=SYNC_RANGE, headers=seed.headers["dentist"]).json()

        assert db.query(Appointment).filter(Appointment.google_event_id == "g-1").count() == 1
        assert second["pulled"] == 0
        assert second["pushed"] == 1

    def test_pull_respects_monthly_plan_limit(self, client, db, seed, google, connected, appointment, monkeypatch):
        monkeypatch.setitem(PLAN_LIMITS["PRO"], "appointments_per_month", 1)
        google.remote_events = [
            self._remote_event("g-1", "bruno@example.com", "2030-01-08T10:00:00Z", "2030-01-08T11:00:00Z")
        ]

        result = client.post("/google-calendar/full-sync", json=SYNC_RANGE, headers=seed.headers["dentist"]).json()

        assert result["pulled"] == 0
        assert db.query(Appointment).filter(Appointment.google_event_id == "g-1").count() == 0

    def test_unreachable_calendar_fails_the_sync(self, client, seed, google, connected, appointment):
        google.fail_calendar = True
        response = client.post("/google-calendar/full-sync", json=SYNC_RANGE, headers=seed.headers["dentist"])

        # Pushing fails per item, listing events then fails the whole pull
        assert response.status_code == 502


class TestParseEventTime:
    def test_utc_is_converted_to_clinic_time(self):
        # Lisbon is UTC+1 in summer
        assert parse_event_time({"dateTime": "2030-07-01T09:00:00Z"}) == datetime(2030, 7, 1, 10, 0)

    def test_offset_is_respected(self):
        assert parse_event_time({"dateTime": "2030-01-15T09:00:00+01:00"}) == datetime(2030, 1, 15, 8, 0)

    def test_all_day_maps_to_midnight(self):
        assert parse_event_time({"date": "2030-01-15"}) == datetime(2030, 1, 15)

    def test_missing(self):
        assert parse_event_time(None) is None
        assert parse_event_time({}) is None
