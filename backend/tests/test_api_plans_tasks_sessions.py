from __future__ import annotations

import sys
import uuid
from pathlib import Path

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import api.plans as plans_api  # noqa: E402
import api.sessions as sessions_api  # noqa: E402
import api.tasks as tasks_api  # noqa: E402
from db.database import Database  # noqa: E402
from main import create_app  # noqa: E402


def _client(tmp_path) -> TestClient:
    database = Database(f"sqlite:///{tmp_path / 'planner.db'}")
    return TestClient(create_app(database))


def _register(client: TestClient) -> dict:
    email = f"crud_{uuid.uuid4().hex[:10]}@example.com"
    resp = client.post("/api/auth/register", json={"email": email, "password": "Passw0rd!"})
    assert resp.status_code == 201, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def _create_plan(client: TestClient, headers: dict, **extra) -> dict:
    payload = {"title": "Marathon prep", "targetHours": 40, "startDate": "2024-01-01", "endDate": "2024-03-31"}
    payload.update(extra)
    resp = client.post("/api/plans", json=payload, headers=headers)
    assert resp.status_code in (200, 201), resp.text
    return resp.json()


def _create_recurring_task(client: TestClient, headers: dict, plan_id: str) -> dict:
    resp = client.post(
        "/api/tasks",
        json={"planId": plan_id, "title": "Easy run", "durationMinutes": 30, "isRecurring": True, "repeatDays": 42},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_auth_me_and_logout_all(tmp_path):
    with _client(tmp_path) as client:
        headers = _register(client)
        me = client.get("/api/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.json()["email"].startswith("crud_")

        assert client.post("/api/auth/logout-all", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401


def test_plan_crud_and_idempotent_create(tmp_path):
    with _client(tmp_path) as client:
        headers = _register(client)
        plan = _create_plan(client, headers, id="plan-fixed")
        assert plan["id"] == "plan-fixed"
        assert plan["lastModified"].endswith("Z")

        replay = client.post("/api/plans", json={"id": "plan-fixed", "title": "Other"}, headers=headers)
        assert replay.status_code == 200
        assert replay.json()["title"] == "Marathon prep"

        updated = client.put("/api/plans/plan-fixed", json={"title": "Half marathon", "status": "in_progress"}, headers=headers)
        assert updated.status_code == 200
        assert updated.json()["title"] == "Half marathon"

        bad_field = client.put("/api/plans/plan-fixed", json={"userId": 99}, headers=headers)
        assert bad_field.status_code == 422

        listing = client.get("/api/plans", headers=headers).json()["plans"]
        assert [row["id"] for row in listing] == ["plan-fixed"]
        assert listing[0]["totalLoggedMinutes"] == 0

        assert client.delete("/api/plans/plan-fixed", headers=headers).status_code == 204
        assert client.get("/api/plans/plan-fixed", headers=headers).status_code == 404


def test_plans_are_private(tmp_path):
    with _client(tmp_path) as client:
        owner = _register(client)
        other = _register(client)
        plan = _create_plan(client, owner)

        assert client.get(f"/api/plans/{plan['id']}", headers=other).status_code == 403
        assert client.put(f"/api/plans/{plan['id']}", json={"title": "x"}, headers=other).status_code == 403
        assert client.delete(f"/api/plans/{plan['id']}", headers=other).status_code == 403
        assert client.get("/api/plans", headers=other).json()["plans"] == []


def test_one_off_task_requires_date(tmp_path):
    with _client(tmp_path) as client:
        headers = _register(client)
        plan = _create_plan(client, headers)
        resp = client.post("/api/tasks", json={"planId": plan["id"], "title": "Buy shoes"}, headers=headers)
        assert resp.status_code == 400

        ok = client.post(
            "/api/tasks",
            json={"planId": plan["id"], "title": "Buy shoes", "taskDate": "2024-01-02"},
            headers=headers,
        )
        assert ok.status_code == 201
        task = ok.json()

        done = client.put(f"/api/tasks/{task['id']}", json={"status": "completed"}, headers=headers)
        assert done.status_code == 200
        assert done.json()["status"] == "completed"
        assert done.json()["completedAt"] is not None


def test_recurring_task_instances_over_http(tmp_path):
    with _client(tmp_path) as client:
        headers = _register(client)
        plan = _create_plan(client, headers)
        task = _create_recurring_task(client, headers, plan["id"])

        window = client.get(
            f"/api/tasks/{task['id']}/instances",
            params={"start": "2024-01-01", "end": "2024-01-10"},
            headers=headers,
        )
        assert window.status_code == 200
        dates = [row["instanceDate"] for row in window.json()["instances"]]
        assert dates == ["2024-01-01", "2024-01-03", "2024-01-05", "2024-01-08", "2024-01-10"]
        assert not any(row["materialized"] for row in window.json()["instances"])

        updated = client.put(
            f"/api/tasks/{task['id']}",
            params={"instanceDate": "2024-01-03"},
            json={"status": "completed", "actualDurationMinutes": 28},
            headers=headers,
        )
        assert updated.status_code == 200, updated.text
        body = updated.json()
        assert body["status"] == "completed"
        assert body["actualDurationMinutes"] == 28
        assert body["instance"]["materialized"] is True

        wrong_day = client.put(
            f"/api/tasks/{task['id']}",
            params={"instanceDate": "2024-01-02"},
            json={"status": "completed"},
            headers=headers,
        )
        assert wrong_day.status_code == 400

        day_view = client.get("/api/tasks", params={"date": "2024-01-05"}, headers=headers).json()["tasks"]
        assert day_view[0]["status"] == "not_started"
        done_view = client.get("/api/tasks", params={"date": "2024-01-03"}, headers=headers).json()["tasks"]
        assert done_view[0]["status"] == "completed"

        template = client.get(f"/api/tasks/{task['id']}", headers=headers).json()
        assert template["status"] == "not_started"

        pulled = client.get("/api/sync/pull", headers=headers).json()
        assert [row["instanceDate"] for row in pulled["instances"]] == ["2024-01-03"]


def test_task_listing_requires_a_filter(tmp_path):
    with _client(tmp_path) as client:
        headers = _register(client)
        assert client.get("/api/tasks", headers=headers).status_code == 400


def test_sessions_create_list_and_daily_stats(tmp_path):
    with _client(tmp_path) as client:
        headers = _register(client)
        plan = _create_plan(client, headers)
        task = _create_recurring_task(client, headers, plan["id"])

        first = client.post(
            "/api/sessions",
            json={"id": "sess-1", "taskId": task["id"], "durationMinutes": 25, "type": "pomodoro", "timestamp": "2024-01-03T09:00:00Z"},
            headers=headers,
        )
        assert first.status_code == 201
        replay = client.post(
            "/api/sessions",
            json={"id": "sess-1", "taskId": task["id"], "durationMinutes": 99, "type": "manual", "timestamp": "2024-01-03T09:00:00Z"},
            headers=headers,
        )
        assert replay.status_code == 200
        assert replay.json()["durationMinutes"] == 25

        client.post(
            "/api/sessions",
            json={"taskId": task["id"], "durationMinutes": 20, "type": "stopwatch", "timestamp": "2024-01-03T15:00:00Z"},
            headers=headers,
        )

        listing = client.get("/api/sessions", params={"date": "2024-01-03"}, headers=headers).json()["sessions"]
        assert len(listing) == 2
        assert listing[0]["taskTitle"] == "Easy run"

        stats = client.get("/api/sessions/stats/daily", params={"date": "2024-01-03"}, headers=headers).json()
        assert stats == {"date": "2024-01-03", "pomodoroCount": 1, "totalMinutes": 45, "totalHours": 0.75}

        one = client.get("/api/sessions/sess-1", headers=headers)
        assert one.status_code == 200
        assert client.get("/api/sessions/missing", headers=headers).status_code == 404

        plan_view = client.get(f"/api/plans/{plan['id']}", headers=headers).json()
        assert plan_view["totalLoggedMinutes"] == 45


def test_security_headers_and_health(tmp_path):
    with _client(tmp_path) as client:
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"


def _storage_down(*args, **kwargs):
    raise OperationalError("SELECT", {}, Exception("disk I/O error"))


def test_listing_reads_report_storage_failures_as_503(tmp_path, monkeypatch):
    monkeypatch.setattr(tasks_api, "list_tasks_for_date", _storage_down)
    monkeypatch.setattr(plans_api, "list_plans", _storage_down)
    monkeypatch.setattr(sessions_api, "list_sessions", _storage_down)
    monkeypatch.setattr(sessions_api, "daily_stats", _storage_down)
    with _client(tmp_path) as client:
        headers = _register(client)
        for path, params in (
            ("/api/tasks", {"date": "2024-01-03"}),
            ("/api/plans", None),
            ("/api/sessions", None),
            ("/api/sessions/stats/daily", None),
        ):
            resp = client.get(path, params=params, headers=headers)
            assert resp.status_code == 503, path
            assert resp.headers.get("Retry-After")
