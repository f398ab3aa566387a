from __future__ import annotations

import sys
import uuid
from pathlib import Path

from fastapi.testclient import TestClient
from sqlalchemy import event


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import settings  # noqa: E402
from db.database import Database  # noqa: E402
from main import create_app  # noqa: E402


def _client(tmp_path) -> TestClient:
    database = Database(f"sqlite:///{tmp_path / 'planner.db'}")
    return TestClient(create_app(database))


def _register(client: TestClient) -> dict:
    email = f"sync_{uuid.uuid4().hex[:10]}@example.com"
    resp = client.post("/api/auth/register", json={"email": email, "password": "Passw0rd!"})
    assert resp.status_code == 201, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def _batch() -> dict:
    return {
        "plans": [{"id": "plan-a", "title": "Learn Spanish", "targetHours": 20, "lastModified": "2024-01-01T08:00:00Z"}],
        "tasks": [
            {
                "id": "task-a",
                "planId": "plan-a",
                "title": "Flashcards",
                "durationMinutes": 15,
                "isRecurring": True,
                "repeatDays": 42,
                "lastModified": "2024-01-01T08:00:00Z",
            }
        ],
        "sessions": [
            {
                "id": "session-a",
                "taskId": "task-a",
                "durationMinutes": 15,
                "type": "pomodoro",
                "timestamp": "2024-01-01T09:00:00Z",
            }
        ],
    }


def test_sync_requires_authentication(tmp_path):
    with _client(tmp_path) as client:
        assert client.post("/api/sync/push", json=_batch()).status_code == 401
        assert client.get("/api/sync/pull").status_code == 401


def test_push_then_pull_round_trip(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "SYNC_PULL_OVERLAP_SECONDS", 0.0)
    with _client(tmp_path) as client:
        headers = _register(client)

        push = client.post("/api/sync/push", json=_batch(), headers=headers)
        assert push.status_code == 200, push.text
        body = push.json()
        assert body["success"] is True
        assert body["results"]["plans"]["created"] == 1
        assert body["results"]["tasks"]["created"] == 1
        assert body["results"]["sessions"]["created"] == 1

        pull = client.get("/api/sync/pull", headers=headers)
        assert pull.status_code == 200
        data = pull.json()
        assert [plan["id"] for plan in data["plans"]] == ["plan-a"]
        assert data["tasks"][0]["repeatDays"] == 42
        assert data["sessions"][0]["taskId"] == "task-a"
        assert data["pulledAt"].endswith("Z")

        again = client.get("/api/sync/pull", params={"since": data["pulledAt"]}, headers=headers)
        assert again.json()["plans"] == []


def test_push_is_idempotent_over_http(tmp_path):
    with _client(tmp_path) as client:
        headers = _register(client)
        client.post("/api/sync/push", json=_batch(), headers=headers)
        replay = client.post("/api/sync/push", json=_batch(), headers=headers)
        assert replay.status_code == 200
        results = replay.json()["results"]
        assert results["plans"]["skipped"] == 1
        assert results["tasks"]["skipped"] == 1
        assert results["sessions"]["skipped"] == 1


def test_malformed_push_returns_400_with_details(tmp_path):
    with _client(tmp_path) as client:
        headers = _register(client)
        resp = client.post(
            "/api/sync/push",
            json={"plans": [{"id": "p", "title": ""}]},
            headers=headers,
        )
        assert resp.status_code == 400
        detail = resp.json()["detail"]
        assert detail["error"] == "Validation failed"
        assert detail["details"]

        not_object = client.post("/api/sync/push", json=["plans"], headers=headers)
        assert not_object.status_code == 400


def test_other_users_cannot_pull_or_overwrite(tmp_path):
    with _client(tmp_path) as client:
        owner = _register(client)
        intruder = _register(client)
        client.post("/api/sync/push", json=_batch(), headers=owner)

        hijack = _batch()
        hijack["plans"][0]["title"] = "Mine now"
        hijack["plans"][0]["lastModified"] = "2030-01-01T00:00:00Z"
        resp = client.post("/api/sync/push", json=hijack, headers=intruder)
        assert resp.status_code == 200
        body = resp.json()
        assert body["results"]["plans"]["rejected"] == 1
        assert {item["reason"] for item in body["rejected"]} == {"forbidden"}

        pulled = client.get("/api/sync/pull", headers=intruder).json()
        assert pulled["plans"] == []
        assert pulled["tasks"] == []

        mine = client.get("/api/sync/pull", headers=owner).json()
        assert mine["plans"][0]["title"] == "Learn Spanish"


def test_bad_cursor_is_a_validation_error(tmp_path):
    with _client(tmp_path) as client:
        headers = _register(client)
        resp = client.get("/api/sync/pull", params={"since": "not-a-date"}, headers=headers)
        assert resp.status_code == 400


def test_repull_near_the_cursor_resends_recent_rows_idempotently(tmp_path):
    with _client(tmp_path) as client:
        headers = _register(client)
        client.post("/api/sync/push", json=_batch(), headers=headers)
        first = client.get("/api/sync/pull", headers=headers).json()

        # Rows stamped within the overlap window of the cursor come back again.
        again = client.get("/api/sync/pull", params={"since": first["pulledAt"]}, headers=headers).json()
        assert [plan["id"] for plan in again["plans"]] == ["plan-a"]

        echoed = {"plans": again["plans"], "tasks": again["tasks"], "sessions": again["sessions"]}
        replay = client.post("/api/sync/push", json=echoed, headers=headers)
        assert replay.status_code == 200
        results = replay.json()["results"]
        assert results["plans"]["updated"] == 0
        assert results["plans"]["skipped"] == 1
        assert results["tasks"]["skipped"] == 1


def test_sync_requests_hold_one_pooled_connection_at_a_time(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'planner.db'}")
    with TestClient(create_app(database)) as client:
        headers = _register(client)
        usage = {"open": 0, "peak": 0}

        def on_checkout(dbapi_connection, connection_record, connection_proxy):
            usage["open"] += 1
            usage["peak"] = max(usage["peak"], usage["open"])

        def on_checkin(dbapi_connection, connection_record):
            usage["open"] -= 1

        event.listen(database.engine, "checkout", on_checkout)
        event.listen(database.engine, "checkin", on_checkin)
        try:
            push = client.post("/api/sync/push", json=_batch(), headers=headers)
            assert push.status_code == 200
            assert usage["peak"] == 1

            usage["peak"] = 0
            pull = client.get("/api/sync/pull", headers=headers)
            assert pull.status_code == 200
            assert usage["peak"] == 1
            assert usage["open"] == 0
        finally:
            event.remove(database.engine, "checkout", on_checkout)
            event.remove(database.engine, "checkin", on_checkin)
