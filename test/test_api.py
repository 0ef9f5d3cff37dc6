from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_sync_service
from api.main import app
from integration import token_manager as tm_module
from storage.credential_store import TokenSet

from conftest import USER_ID, make_assignment

HEADERS = {"X-User-Id": USER_ID}


@pytest.fixture
def client(service):
    app.dependency_overrides[get_sync_service] = lambda: service
    # no context manager: startup (database pool) is not run
    yield TestClient(app)
    app.dependency_overrides.clear()


def _location_query(response) -> dict:
    return parse_qs(urlparse(response.headers["location"]).query)


def test_requests_without_user_are_rejected(client):
    assert client.get("/auth/google/status").status_code == 401
    assert client.post("/calendar/sync-all").status_code == 401


def test_login_returns_consent_url(client):
    r = client.get("/auth/google/login", headers=HEADERS)
    assert r.status_code == 200
    assert r.json()["authUrl"].startswith("https://accounts.google.com/")


def test_login_when_not_configured(client, service):
    service.settings.google_client_id = ""
    r = client.get("/auth/google/login", headers=HEADERS)
    assert r.status_code == 503


def test_callback_success_redirects_to_app(client, service, monkeypatch):
    tokens = TokenSet(
        access_token="access-new",
        refresh_token="refresh-new",
        expiry=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    monkeypatch.setattr(tm_module, "fetch_token_from_code", lambda settings, code: tokens)

    r = client.get(
        "/auth/google/callback",
        params={"code": "code-1", "state": service.encode_state(USER_ID)},
        follow_redirects=False,
    )

    assert r.status_code == 307
    assert r.headers["location"].startswith("https://app.example.com/assignments?")
    query = _location_query(r)
    assert query["calendar_connected"] == ["true"]
    assert query["calendar_name"] == ["Work"]


def test_callback_with_provider_error(client):
    r = client.get(
        "/auth/google/callback", params={"error": "access_denied"}, follow_redirects=False
    )
    assert r.status_code == 307
    assert _location_query(r)["calendar_error"] == ["access_denied"]


def test_callback_with_forged_state(client):
    r = client.get(
        "/auth/google/callback",
        params={"code": "code-1", "state": "forged"},
        follow_redirects=False,
    )
    assert _location_query(r)["calendar_error"] == ["Invalid session state"]


def test_status_and_disconnect(client):
    status = client.get("/auth/google/status", headers=HEADERS).json()
    assert status["connected"] is True
    assert status["calendar_id"] == "primary"

    r = client.post("/auth/google/disconnect", headers=HEADERS)
    assert r.json() == {"success": True}
    assert client.get("/auth/google/status", headers=HEADERS).json()["connected"] is False


def test_sync_single_assignment(client, assignments):
    assignments.add(USER_ID, make_assignment("a-1"))

    r = client.post("/calendar/sync/a-1", headers=HEADERS)

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["event_id"] == "evt-1"


def test_sync_unknown_assignment_is_404(client):
    assert client.post("/calendar/sync/missing", headers=HEADERS).status_code == 404


def test_sync_batch_limit(client):
    ids = [f"a-{i}" for i in range(51)]
    r = client.post("/calendar/sync-batch", json={"assignment_ids": ids}, headers=HEADERS)
    assert r.status_code == 400


def test_sync_all_and_unsync(client, assignments, fake_client):
    assignments.add(USER_ID, make_assignment("a-1"))
    assignments.add(USER_ID, make_assignment("a-2"))

    r = client.post("/calendar/sync-all", headers=HEADERS)
    assert r.json() == {"synced": 2, "failed": 0, "errors": []}

    r = client.delete("/calendar/sync/a-1", headers=HEADERS)
    assert r.json() == {"success": True}
    assert fake_client.calls_to("delete")[0][0] == "evt-1"


def test_list_calendars(client):
    r = client.get("/calendar/calendars", headers=HEADERS)
    assert r.json()["calendars"][0]["id"] == "primary"


def test_update_preferences(client):
    ok = client.put(
        "/calendar/preferences",
        json={"sync_preferences": {"prep_reminder_minutes": 30}},
        headers=HEADERS,
    )
    assert ok.status_code == 200

    bad = client.put(
        "/calendar/preferences",
        json={"sync_preferences": {"prep_reminder_minutes": "later"}},
        headers=HEADERS,
    )
    assert bad.status_code == 400


def test_set_calendar_id(client, credential_store):
    assert client.put("/calendar/calendar-id", json={"calendar_id": ""}, headers=HEADERS).status_code == 400

    r = client.put("/calendar/calendar-id", json={"calendar_id": "team@group.calendar.google.com"}, headers=HEADERS)
    assert r.status_code == 200
    assert credential_store.credentials[USER_ID].calendar_id == "team@group.calendar.google.com"


def test_metrics_endpoint_exposes_prometheus_text(client, assignments):
    assignments.add(USER_ID, make_assignment("a-1"))
    client.post("/calendar/sync/a-1", headers=HEADERS)

    r = client.get("/metrics")
    assert r.status_code == 200
    assert "text/plain" in r.headers.get("content-type", "")
    assert "calsync_sync_attempts_total" in r.text
    assert any(
        line.startswith('calsync_requests_total{endpoint="/calendar/sync",status="ok"}')
        for line in r.text.splitlines()
    )


def test_health_without_database(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "degraded"
