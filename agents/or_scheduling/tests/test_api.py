"""
OR Scheduling Agent - API Tests

Runs against the seeded demo facility.

Run with: pytest agents/or_scheduling/tests/test_api.py -v
"""

from datetime import date, datetime, time, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from agents.or_scheduling.api import LOG_FORMATS, app, app_state, log_format_for
from agents.or_scheduling.config import settings


@pytest.fixture
def client():
    """Test client over a freshly seeded demo facility."""
    app_state.reset()
    yield TestClient(app)
    app_state.reset()


def tomorrow_at(hour, minute=0):
    return datetime.combine(date.today() + timedelta(days=1), time(hour, minute)).isoformat()


def tomorrow_at_utc(hour, minute=0):
    """The same instant as ``tomorrow_at``, written as a UTC timestamp with a Z suffix."""
    local = datetime.combine(date.today() + timedelta(days=1), time(hour, minute))
    return local.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == settings.service_name
        assert data["environment"] == settings.environment
        assert "orchestrator" in data["checks"]
        assert data["checks"]["authorization"]["mode"] in ("allow_all", "roles")

    @pytest.mark.parametrize("name,expected", [
        ("text", "text"),
        ("JSON", "json"),
        ("xml", "text"),
    ])
    def test_log_format_lookup(self, name, expected):
        assert log_format_for(name) == LOG_FORMATS[expected]


class TestConfigEndpoints:
    def test_constraints_are_listed(self, client):
        data = client.get("/config/constraints").json()

        hard = [c["name"] for c in data["hard"]]
        assert "no_overlap" in hard
        assert "surgeon_hours" in hard
        assert data["penalties"] == {"hard": 25, "soft": 5}

    def test_operating_day(self, client):
        data = client.get("/config/operating-day").json()
        assert data["setup_minutes"] == 15
        assert data["escalation_hours"] == {"elective": 72, "urgent": 48}


class TestPredictionEndpoints:
    def test_duration_prediction(self, client):
        response = client.post("/predict/duration", json={"complexity": 3, "estimated_duration": 60})
        assert response.status_code == 200

        data = response.json()
        assert data["predicted"] == 77
        assert data["lower"] <= data["predicted"] <= data["upper"]

    def test_complexity_out_of_range(self, client):
        response = client.post("/predict/duration", json={"complexity": 6, "estimated_duration": 60})
        assert response.status_code == 422

    def test_equipment_failure(self, client):
        response = client.post("/predict/equipment-failure", json={
            "usage_count": 100,
            "max_usage": 100,
            "days_since_service": 45,
            "equipment_type": "instruments",
        })
        data = response.json()
        assert data["risk"] == "critical"
        assert data["score"] == 80

    def test_score_empty_schedule(self, client):
        data = client.post("/schedule/score", json={"slots": []}).json()
        assert data["score"] == 100
        assert data["grade"] == "A"

    def test_recommend_sequence(self, client):
        response = client.post("/schedule/recommend-sequence", json={"surgeries": [
            {"id": "A", "procedure_type": "ortho", "complexity": 2},
            {"id": "B", "procedure_type": "general", "complexity": 1},
            {"id": "C", "procedure_type": "general", "complexity": 3},
            {"id": "D", "procedure_type": "ortho", "complexity": 2},
        ]})
        assert response.json() == {"sequence": ["B", "C", "A", "D"], "count": 4}

    def test_inventory_risk(self, client):
        data = client.get("/equipment/risk").json()

        assert data["count"] == 6
        top = data["equipment"][:2]
        assert {item["equipment_id"] for item in top} == {"eq-bypass", "eq-c-arm"}
        assert all(item["risk"] == "critical" for item in top)


class TestQueueEndpoints:
    def test_queue_tiers(self, client):
        data = client.get("/queue").json()
        elective = {e["surgery_id"]: e for e in data["tiers"]["elective"]}

        assert elective["surg-004"]["escalate"] is True
        assert elective["surg-005"]["escalate"] is False
        assert "surg-006" not in elective
        assert [e["surgery_id"] for e in data["tiers"]["emergency"]] == ["surg-002"]

    def test_escalation_cycle_runs_once(self, client):
        first = client.post("/queue/escalation-cycle").json()
        assert first["count"] == 2
        assert sorted(s["id"] for s in first["escalated"]) == ["surg-003", "surg-004"]
        assert all(s["priority"] == "urgent" for s in first["escalated"])

        second = client.post("/queue/escalation-cycle").json()
        assert second["count"] == 0


class TestSchedulingEndpoints:
    def test_place_then_overlap_is_rejected(self, client):
        response = client.post("/schedule/place", json={
            "surgery_id": "surg-005",
            "room_id": "OR-1",
            "start": tomorrow_at(10, 0),
            "end": tomorrow_at(11, 15),
        })
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["surgery"]["status"] == "scheduled"
        assert [s["slot_type"] for s in data["slots"]] == ["setup", "surgery", "cleanup"]

        clash = client.post("/schedule/place", json={
            "surgery_id": "surg-001",
            "room_id": "OR-1",
            "start": tomorrow_at(10, 30),
            "end": tomorrow_at(11, 30),
        })
        assert clash.status_code == 409
        detail = clash.json()["detail"]
        assert detail["error"] == "constraint_violation"
        assert "no_overlap" in detail["violated_rules"]
        assert detail["retryable"] is False

    def test_check_does_not_write(self, client):
        payload = {
            "surgery_id": "surg-005",
            "room_id": "OR-1",
            "start": tomorrow_at(10, 0),
            "end": tomorrow_at(11, 15),
        }
        report = client.post("/schedule/check", json=payload).json()
        assert report["conflict"] is False

        # the same window is still free afterwards
        assert client.post("/schedule/place", json=payload).status_code == 200

    def test_room_under_maintenance(self, client):
        response = client.post("/schedule/place", json={
            "surgery_id": "surg-005",
            "room_id": "OR-6",
            "start": tomorrow_at(10, 0),
            "end": tomorrow_at(11, 0),
        })
        assert response.status_code == 409
        assert "room_status" in response.json()["detail"]["violated_rules"]

    def test_pending_surgery_cannot_be_placed(self, client):
        response = client.post("/schedule/place", json={
            "surgery_id": "surg-004",
            "room_id": "OR-5",
            "start": tomorrow_at(10, 0),
            "end": tomorrow_at(12, 30),
        })
        assert response.status_code == 400

    def test_inverted_window(self, client):
        response = client.post("/schedule/place", json={
            "surgery_id": "surg-005",
            "room_id": "OR-1",
            "start": tomorrow_at(11, 0),
            "end": tomorrow_at(10, 0),
        })
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "validation_error"

    def test_utc_timestamps_are_accepted(self, client):
        payload = {
            "surgery_id": "surg-005",
            "room_id": "OR-1",
            "start": tomorrow_at_utc(10, 0),
            "end": tomorrow_at_utc(11, 15),
        }
        report = client.post("/schedule/check", json=payload)
        assert report.status_code == 200
        assert report.json()["conflict"] is False

        placed = client.post("/schedule/place", json=payload)
        assert placed.status_code == 200
        surgery = placed.json()["surgery"]
        assert surgery["scheduled_start"] == tomorrow_at(10, 0)
        assert surgery["scheduled_end"] == tomorrow_at(11, 15)

    def test_unknown_surgery(self, client):
        response = client.post("/schedule/find-slot", json={"surgery_id": "surg-999"})
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    def test_find_slot_and_auto_place(self, client):
        day = (date.today() + timedelta(days=1)).isoformat()

        found = client.post("/schedule/find-slot", json={"surgery_id": "surg-005", "day": day}).json()
        assert found["found"] is True
        assert found["room_id"] == "OR-1"
        assert found["start"] == tomorrow_at(7, 15)

        placed = client.post("/schedule/auto-place", json={"surgery_id": "surg-005", "day": day}).json()
        assert placed["surgery"]["room_id"] == "OR-1"
        assert placed["surgery"]["scheduled_start"] == tomorrow_at(7, 15)

        notes = client.get("/notifications").json()
        assert notes["count"] >= 1
        assert notes["notifications"][-1]["title"] == "Surgery scheduled"

    def test_quality_of_an_empty_day(self, client):
        day = (date.today() + timedelta(days=2)).isoformat()
        data = client.get("/schedule/quality", params={"day": day}).json()
        assert data["score"] == 100


class TestSurgeryEndpoints:
    def test_approve(self, client):
        response = client.post("/surgeries/surg-004/approve", json={"approved": True})
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

    def test_reject_cancels(self, client):
        data = client.post("/surgeries/surg-004/approve", json={"approved": False}).json()
        assert data["status"] == "cancelled"
        assert data["approval_status"] == "rejected"

    def test_completed_surgery_cannot_be_cancelled(self, client):
        response = client.post("/surgeries/surg-006/status", json={"status": "cancelled"})
        assert response.status_code == 400

    def test_cancel_frees_the_room(self, client):
        data = client.post("/surgeries/surg-003/status", json={"status": "cancelled"}).json()
        assert data["status"] == "cancelled"
        assert data["room_id"] is None

    def test_emergency_cannot_be_escalated(self, client):
        response = client.post("/surgeries/surg-002/escalate")
        assert response.status_code == 400

    def test_escalate(self, client):
        data = client.post("/surgeries/surg-005/escalate").json()
        assert data["priority"] == "urgent"
        assert data["escalated_at"] is not None


class TestRoleEnforcement:
    @pytest.fixture
    def guarded_client(self, monkeypatch):
        monkeypatch.setattr(settings, "enforce_roles", True)
        app_state.reset()
        yield TestClient(app)
        app_state.reset()

    def test_nurse_is_forbidden(self, guarded_client):
        response = guarded_client.post(
            "/surgeries/surg-005/escalate",
            headers={"X-User-Id": "staff-malik", "X-User-Role": "nurse"},
        )
        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "forbidden"

    def test_missing_identity_is_forbidden(self, guarded_client):
        assert guarded_client.post("/queue/escalation-cycle").status_code == 403

    def test_scheduler_is_allowed(self, guarded_client):
        response = guarded_client.post(
            "/surgeries/surg-005/escalate",
            headers={"X-User-Id": "staff-raza", "X-User-Role": "scheduler"},
        )
        assert response.status_code == 200

    def test_unknown_role(self, guarded_client):
        response = guarded_client.post(
            "/surgeries/surg-005/escalate",
            headers={"X-User-Id": "someone", "X-User-Role": "janitor"},
        )
        assert response.status_code == 400
