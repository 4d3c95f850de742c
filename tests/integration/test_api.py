"""
Integration tests for the HTTP API.

Runs the FastAPI app in-process against a throwaway SQLite database.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from src.api import main as api_main
from src.api.main import app
from src.api.routers import planner_router
from src.api.routers.planner_router import get_planner_service
from src.planner import StateConflict

ALICE = {"X-User-Id": "alice"}


@pytest.fixture
def client(service):
    app.dependency_overrides[get_planner_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def goal(client, goal_payload):
    response = client.post("/api/goals", json=goal_payload, headers=ALICE)
    assert response.status_code == 201
    return response.json()


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "study-planner"

    def test_health_reports_database(self, client, monkeypatch):
        monkeypatch.setattr(api_main, "check_database_health", lambda: ("ok", None))
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["components"]["database"] == "ok"

    def test_health_unhealthy(self, client, monkeypatch):
        monkeypatch.setattr(api_main, "check_database_health", lambda: ("error", "disk gone"))
        body = client.get("/health").json()
        assert body["status"] == "unhealthy"
        assert body["errors"] == {"database": "disk gone"}


class TestUserKey:
    def test_header_query_and_default(self, client, goal_payload):
        client.post("/api/goals", json=goal_payload, headers=ALICE)
        client.post("/api/goals?userId=bob", json=goal_payload)
        client.post("/api/goals?userId=bob", json=goal_payload)

        assert len(client.get("/api/goals", headers=ALICE).json()) == 1
        assert len(client.get("/api/goals", params={"userId": "bob"}).json()) == 2
        assert client.get("/api/goals").json() == []
        assert client.get("/api/state").json()["userId"] == "default-user"

    def test_header_wins_over_query(self, client, goal_payload):
        client.post("/api/goals?userId=bob", json=goal_payload, headers=ALICE)
        assert len(client.get("/api/goals", headers=ALICE).json()) == 1
        assert client.get("/api/goals?userId=bob").json() == []


class TestGoalRoutes:
    def test_create_returns_camel_case(self, goal):
        assert goal["title"] == "Calc Final"
        assert goal["status"] == "active"
        assert "createdAt" in goal
        assert goal["topics"][0]["goalId"] == goal["id"]
        assert goal["topics"][0]["masteryLevel"] == 0

    def test_create_invalid(self, client, goal_payload):
        response = client.post("/api/goals", json={**goal_payload, "priority": 7}, headers=ALICE)
        assert response.status_code == 400
        assert "priority" in response.json()["error"]

    def test_list_with_decay(self, client, goal):
        goals = client.get("/api/goals", headers=ALICE).json()
        decorated = goals[0]["topicsWithDecay"][0]
        assert decorated["decayLevel"] == "red"
        assert decorated["isDue"] is True
        assert decorated["nextReviewDate"] is None

    def test_update(self, client, goal):
        response = client.put(f"/api/goals/{goal['id']}", json={"priority": 1}, headers=ALICE)
        assert response.status_code == 200
        assert response.json()["priority"] == 1
        assert response.json()["createdAt"] == goal["createdAt"]

    def test_update_unknown(self, client):
        response = client.put("/api/goals/nope", json={"priority": 1}, headers=ALICE)
        assert response.status_code == 404
        assert response.json() == {"error": "Goal with id nope not found"}

    def test_delete(self, client, goal):
        response = client.delete(f"/api/goals/{goal['id']}", headers=ALICE)
        assert response.json() == {"success": True}
        assert client.get("/api/goals", headers=ALICE).json() == []
        assert client.delete(f"/api/goals/{goal['id']}", headers=ALICE).status_code == 404

    def test_add_topic(self, client, goal):
        response = client.post(f"/api/goals/{goal['id']}/topics", json={"name": "Series"}, headers=ALICE)
        assert response.status_code == 201
        assert response.json()["name"] == "Series"
        assert client.post("/api/goals/nope/topics", json={"name": "x"}, headers=ALICE).status_code == 404
        assert client.post(f"/api/goals/{goal['id']}/topics", json={}, headers=ALICE).status_code == 400


class TestSessionAndReviewRoutes:
    def test_record_session(self, client, goal):
        topic = goal["topics"][0]
        response = client.post(
            "/api/sessions",
            json={"goalId": goal["id"], "topicId": topic["id"], "durationMinutes": 90},
            headers=ALICE,
        )
        assert response.status_code == 201
        assert response.json()["durationMinutes"] == 90

        stored = client.get("/api/state", headers=ALICE).json()["goals"][0]["topics"][0]
        assert stored["masteryLevel"] == 28
        assert stored["reviewCount"] == 1

    def test_fractional_minutes(self, client, goal):
        topic = goal["topics"][0]
        response = client.post(
            "/api/sessions",
            json={"goalId": goal["id"], "topicId": topic["id"], "durationMinutes": 45.5},
            headers=ALICE,
        )
        assert response.status_code == 201
        assert response.json()["durationMinutes"] == 45.5
        stored = client.get("/api/state", headers=ALICE).json()["goals"][0]["topics"][0]
        assert stored["masteryLevel"] == 23

    def test_record_session_unknown_topic(self, client, goal):
        response = client.post(
            "/api/sessions",
            json={"goalId": goal["id"], "topicId": "nope", "durationMinutes": 30},
            headers=ALICE,
        )
        assert response.status_code == 404

    def test_review_queue(self, client, goal, now):
        queue = client.get("/api/review", headers=ALICE).json()
        assert [t["name"] for t in queue] == ["Limits"]

        topic = goal["topics"][0]
        client.post(
            "/api/sessions",
            json={"goalId": goal["id"], "topicId": topic["id"], "durationMinutes": 30},
            headers=ALICE,
        )
        assert client.get("/api/review", headers=ALICE).json() == []

        later = (now + timedelta(days=5)).date().isoformat()
        assert len(client.get("/api/review", params={"asOfDate": later}, headers=ALICE).json()) == 1

    def test_review_bad_date(self, client):
        response = client.get("/api/review", params={"asOfDate": "soon"}, headers=ALICE)
        assert response.status_code == 400


class TestPlanRoutes:
    def test_plan_lifecycle(self, client, goal):
        topic = goal["topics"][0]
        plan = {
            "date": "2026-03-11",
            "reasoning": "Limits first",
            "tasks": [
                {"goalId": goal["id"], "topicId": topic["id"], "type": "study", "estimatedMinutes": 50,
                 "priority": 5, "reasoning": ""},
            ],
        }

        created = client.post("/api/plan", json=plan, headers=ALICE)
        assert created.status_code == 201
        assert created.json()["date"] == "2026-03-11"

        fetched = client.get("/api/plan/2026-03-11", headers=ALICE)
        assert fetched.json()["reasoning"] == "Limits first"

        deleted = client.delete("/api/plan/2026-03-11", headers=ALICE)
        assert deleted.json() == {"success": True, "deleted": True}
        assert client.get("/api/plan/2026-03-11", headers=ALICE).status_code == 404
        assert client.delete("/api/plan/2026-03-11", headers=ALICE).json()["deleted"] is False

    def test_store_plan_requires_fields(self, client, goal):
        response = client.post("/api/plan", json={"date": "2026-03-11"}, headers=ALICE)
        assert response.status_code == 400

    def test_store_plan_unknown_topic(self, client, goal):
        plan = {
            "date": "2026-03-11",
            "reasoning": "",
            "tasks": [{"goalId": goal["id"], "topicId": "ghost", "type": "study", "estimatedMinutes": 30,
                       "priority": 3}],
        }
        response = client.post("/api/plan", json=plan, headers=ALICE)
        assert response.status_code == 400
        assert "ghost" in response.json()["error"]

    @pytest.mark.parametrize("path", ["/api/plan/11-03-2026", "/api/plan/tomorrow", "/api/plan/20260310"])
    def test_bad_date_format(self, client, path):
        response = client.get(path, headers=ALICE)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid date format. Use YYYY-MM-DD"}

    def test_generate_fallback(self, client, goal):
        response = client.post("/api/plan/generate", json={"date": "2026-03-12"}, headers=ALICE)
        assert response.status_code == 201
        body = response.json()
        assert body["date"] == "2026-03-12"
        assert body["tasks"][0]["type"] == "review"
        assert body["tasks"][0]["estimatedMinutes"] == 45

    def test_generate_without_goals(self, client):
        response = client.post("/api/plan/generate", headers=ALICE)
        assert response.status_code == 400
        assert "no topics available for planning" in response.json()["error"]


class TestStateRoutes:
    def test_replace_state(self, client, goal):
        snapshot = client.get("/api/state", headers=ALICE).json()
        assert client.put("/api/state", json=snapshot, headers={"X-User-Id": "carol"}).json() == {"success": True}

        carol = client.get("/api/state", headers={"X-User-Id": "carol"}).json()
        assert carol["userId"] == "carol"
        assert carol["goals"] == snapshot["goals"]

    def test_replace_state_invalid(self, client):
        response = client.put("/api/state", json={"goals": "nope"}, headers=ALICE)
        assert response.status_code == 400


def test_storage_failure_is_500(client, engine):
    from sqlalchemy import text

    with engine.begin() as conn:
        conn.execute(text("DROP TABLE user_states"))

    response = client.get("/api/state", headers=ALICE)
    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"


def test_write_conflict_is_409(client, service, goal_payload, monkeypatch):
    def always_stale(user_key, state, expected_version=None):
        raise StateConflict(user_key, expected_version)

    monkeypatch.setattr(service.store, "set_state", always_stale)

    response = client.post("/api/goals", json=goal_payload, headers=ALICE)
    assert response.status_code == 409
    assert response.json()["error"] == "Conflict"


class TestServiceLifecycle:
    def test_shutdown_closes_shared_service(self, monkeypatch):
        closed = []
        monkeypatch.setattr(api_main, "configure_logging", lambda: None)
        monkeypatch.setattr(api_main, "init_db", lambda: None)
        monkeypatch.setattr(planner_router, "close_planner_service", lambda: closed.append(True))

        with TestClient(app) as client:
            assert client.get("/").status_code == 200
            assert closed == []

        assert closed == [True]

    def test_close_planner_service_closes_cached_instance(self, monkeypatch):
        factory = Mock()
        monkeypatch.setattr(planner_router, "StudyPlannerService", factory)
        get_planner_service.cache_clear()
        try:
            shared = get_planner_service()
            planner_router.close_planner_service()

            shared.close.assert_called_once()
            assert get_planner_service.cache_info().currsize == 0
        finally:
            get_planner_service.cache_clear()

    def test_close_planner_service_without_instance(self, monkeypatch):
        factory = Mock()
        monkeypatch.setattr(planner_router, "StudyPlannerService", factory)
        get_planner_service.cache_clear()

        planner_router.close_planner_service()

        factory.assert_not_called()
