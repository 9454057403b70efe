import sqlite3

import pytest
from fastapi.testclient import TestClient

from rollcall.api import create_app

HEADERS = {"X-API-Key": "test-key"}


@pytest.fixture()
def client(service):
    app = create_app(service.settings, service)
    with TestClient(app) as c:
        yield c


def test_health(client):
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_api_key_is_required(client):
    assert client.get("/api/roster").status_code == 422
    assert client.get("/api/roster", headers={"X-API-Key": "wrong"}).status_code == 401


def test_search_people(client):
    res = client.get("/api/people/search", params={"q": "souza"}, headers=HEADERS)
    assert res.status_code == 200
    assert [p["id"] for p in res.json()["people"]] == ["p-ana"]

    short = client.get("/api/people/search", params={"q": "s"}, headers=HEADERS)
    assert short.json()["people"] == []


def test_today_context_and_selection(client):
    res = client.get("/api/context/today", headers=HEADERS)
    body = res.json()
    assert body["date"] == "2026-10-19"
    assert body["fixed"] is None
    assert [s["id"] for s in body["sessions"]] == ["sch-1"]

    selected = client.put("/api/context/selection", json={"session_id": "sch-1"}, headers=HEADERS)
    assert selected.status_code == 200
    assert selected.json()["label"] == "Teologia Sistematica"
    assert client.get("/api/context/today", headers=HEADERS).json()["selected_session_id"] == "sch-1"

    missing = client.put("/api/context/selection", json={"session_id": "sch-2"}, headers=HEADERS)
    assert missing.status_code == 404
    both = client.put(
        "/api/context/selection", json={"session_id": "sch-1", "event_id": "e-1"}, headers=HEADERS
    )
    assert both.status_code == 400

    cleared = client.delete("/api/context/selection", headers=HEADERS)
    assert cleared.status_code == 204
    assert client.get("/api/context/today", headers=HEADERS).json()["selected_session_id"] is None


def test_manual_checkin_statuses(client):
    first = client.post("/api/checkins", json={"person_id": "p-bruno"}, headers=HEADERS)
    assert first.status_code == 201
    assert first.json()["kind"] == "committed"
    assert first.json()["record"]["verification_method"] == "manual"

    again = client.post("/api/checkins", json={"person_id": "p-bruno"}, headers=HEADERS)
    assert again.status_code == 409
    assert again.json()["existing_checked_in_at"].startswith("2026-10-19T12:00:00")

    unknown = client.post("/api/checkins", json={"person_id": "p-nobody"}, headers=HEADERS)
    assert unknown.status_code == 404

    student = client.post("/api/checkins", json={"person_id": "p-ana"}, headers=HEADERS)
    assert student.status_code == 422
    assert student.json()["choice"] == "session"


def test_resolve_scan_then_suppressed(client):
    first = client.post("/api/scans/resolve", json={"payload": "B-200"}, headers=HEADERS)
    second = client.post("/api/scans/resolve", json={"payload": "B-200"}, headers=HEADERS)
    garbage = client.post("/api/scans/resolve", json={"payload": "hello world"}, headers=HEADERS)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["kind"] == "suppressed"
    assert garbage.status_code == 400

    cleared = client.delete("/api/scanner/history", headers=HEADERS)
    assert cleared.json() == {"cleared": 1}
    third = client.post("/api/scans/resolve", json={"payload": "B-200"}, headers=HEADERS)
    assert third.status_code == 409


def test_scanner_lifecycle(client):
    assert client.post("/api/scans", json={"payload": "B-200"}, headers=HEADERS).status_code == 409

    started = client.post("/api/scanner/start", headers=HEADERS)
    assert started.json() == {"running": True}
    queued = client.post("/api/scans", json={"payload": "B-200"}, headers=HEADERS)
    assert queued.status_code == 202

    status = client.get("/api/scanner", headers=HEADERS).json()
    assert status["running"] is True

    stopped = client.post("/api/scanner/stop", headers=HEADERS)
    assert stopped.json() == {"running": False}
    assert client.get("/api/scanner", headers=HEADERS).json()["running"] is False


def test_roster_and_outcomes(client):
    client.post("/api/checkins", json={"person_id": "p-bruno"}, headers=HEADERS)
    client.put("/api/context/selection", json={"session_id": "sch-1"}, headers=HEADERS)
    client.post("/api/scans/resolve", json={"payload": "QR-ANA"}, headers=HEADERS)

    roster = client.get("/api/roster", headers=HEADERS).json()
    assert roster["stats"] == {"today_total": 2, "today_manual": 1, "today_scanned": 1, "total": 2}
    assert [r["person_id"] for r in roster["records"]] == ["p-ana", "p-bruno"]

    outcomes = client.get("/api/outcomes", headers=HEADERS).json()["outcomes"]
    assert [o["kind"] for o in outcomes] == ["committed", "committed"]


def test_lookup_failures_map_to_service_unavailable(client, service, monkeypatch):
    def broken(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(service.database, "search_active_people", broken)
    monkeypatch.setattr(service.database, "get_person", broken)

    search = client.get("/api/people/search", params={"q": "Bruno"}, headers=HEADERS)
    checkin = client.post("/api/checkins", json={"person_id": "p-bruno"}, headers=HEADERS)

    assert search.status_code == 503
    assert checkin.status_code == 503
    assert checkin.json()["kind"] == "persistence_error"
    assert checkin.json()["retryable"] is True
