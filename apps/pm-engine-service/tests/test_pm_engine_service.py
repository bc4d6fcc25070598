"""API tests for the PM engine service."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys

from fastapi.testclient import TestClient
import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT / "src"))

from pm_engine.main import app  # noqa: E402
from pm_engine.notifier import RecordingNotifier  # noqa: E402
from pm_engine.observability import get_metrics  # noqa: E402
from pm_engine.routes import _engine  # noqa: E402
from pm_engine.store import TaskTemplate  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime() -> None:
    _engine.reset_state_for_tests()
    _engine.set_notifier_for_tests(RecordingNotifier())
    get_metrics().reset()


def _seed_schedule(*, criticality: str = "HIGH", organization_id: int = 1) -> tuple[int, int]:
    asset = _engine.store.add_asset(organization_id=organization_id, name="Hydraulic Press 5", criticality=criticality)
    schedule = _engine.store.add_schedule(
        asset_id=asset.asset_id,
        title="Press lubrication",
        description="Grease all fittings.",
        tasks=[
            TaskTemplate(title="Grease fittings", order_index=1),
            TaskTemplate(title="Lock out press", order_index=0),
        ],
    )
    return asset.asset_id, schedule.schedule_id


def _days_ago(days: float) -> datetime:
    return datetime.now(tz=timezone.utc) - timedelta(days=days)


def test_health_and_metrics() -> None:
    client = TestClient(app)

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert health.json()["service"] == "pm-engine-service"

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "cmms_pm_engine_triggers_fired_total 0" in metrics.text
    assert 'cmms_pm_engine_reschedules_total{strategy="escalate"} 0' in metrics.text


def test_create_and_list_triggers() -> None:
    client = TestClient(app)
    _, schedule_id = _seed_schedule()

    created = client.post(
        "/triggers",
        json={"pm_schedule_id": schedule_id, "type": "TIME_BASED", "interval_days": 3, "meter_type": "HOURS"},
    )
    assert created.status_code == 201
    body = created.json()
    assert body["type"] == "TIME_BASED"
    assert body["interval_days"] == 3
    assert body["meter_type"] is None
    assert body["next_due"] is not None
    assert body["last_triggered"] is None

    listed = client.get(f"/pm-schedules/{schedule_id}/triggers")
    assert listed.status_code == 200
    assert listed.json()["count"] == 1
    assert listed.json()["triggers"][0]["trigger_id"] == body["trigger_id"]

    assert client.get("/pm-schedules/999/triggers").status_code == 404


def test_create_trigger_rejects_bad_configuration() -> None:
    client = TestClient(app)
    _, schedule_id = _seed_schedule()

    missing_fields = client.post("/triggers", json={"pm_schedule_id": schedule_id, "type": "USAGE_BASED"})
    assert missing_fields.status_code == 400
    assert "threshold_value" in missing_fields.json()["detail"] or "meter_type" in missing_fields.json()["detail"]

    unknown_schedule = client.post("/triggers", json={"pm_schedule_id": 999, "type": "TIME_BASED", "interval_days": 1})
    assert unknown_schedule.status_code == 404
    assert unknown_schedule.json()["detail"] == "pm schedule not found: 999"

    out_of_range = client.post("/triggers", json={"pm_schedule_id": schedule_id, "type": "TIME_BASED", "day_of_week": 9})
    assert out_of_range.status_code == 422


def test_update_fire_and_delete_trigger() -> None:
    client = TestClient(app)
    _, schedule_id = _seed_schedule()
    trigger_id = client.post(
        "/triggers",
        json={"pm_schedule_id": schedule_id, "type": "TIME_BASED", "interval_days": 3},
    ).json()["trigger_id"]

    updated = client.put(f"/triggers/{trigger_id}", json={"interval_days": None, "interval_weeks": 2})
    assert updated.status_code == 200
    assert updated.json()["interval_days"] is None
    assert updated.json()["interval_weeks"] == 2

    switched = client.put(
        f"/triggers/{trigger_id}",
        json={"type": "CONDITION_BASED", "sensor_field": "temperature", "comparison_operator": ">", "threshold_value": 80},
    )
    assert switched.status_code == 200
    assert switched.json()["type"] == "CONDITION_BASED"
    assert switched.json()["interval_weeks"] is None
    assert switched.json()["next_due"] is None

    fired = client.post(f"/triggers/{trigger_id}/fired")
    assert fired.status_code == 200
    assert fired.json()["last_triggered"] is not None
    assert fired.json()["next_due"] is None

    assert client.delete(f"/triggers/{trigger_id}").status_code == 204
    assert client.delete(f"/triggers/{trigger_id}").status_code == 404
    assert client.put(f"/triggers/{trigger_id}", json={"is_active": False}).status_code == 404


def test_evaluate_due_and_upcoming_triggers() -> None:
    client = TestClient(app)
    _, schedule_id = _seed_schedule()
    due = _engine.create_trigger(schedule_id, "TIME_BASED", {"interval_days": 1}, now=_days_ago(2))
    upcoming = _engine.create_trigger(schedule_id, "TIME_BASED", {"interval_days": 10}, now=_days_ago(1))

    evaluated = client.get("/triggers/evaluate/due")
    assert evaluated.status_code == 200
    assert [item["trigger_id"] for item in evaluated.json()["triggers"]] == [due.trigger_id]

    window = client.get("/triggers/upcoming")
    assert window.status_code == 200
    assert [item["trigger_id"] for item in window.json()["triggers"]] == [upcoming.trigger_id]

    reversed_window = client.get(
        "/triggers/upcoming",
        params={"start": "2026-03-10T00:00:00Z", "end": "2026-03-01T00:00:00Z"},
    )
    assert reversed_window.status_code == 400


def test_condition_evaluation_and_generation() -> None:
    client = TestClient(app)
    asset_id, schedule_id = _seed_schedule()
    trigger = _engine.create_trigger(
        schedule_id,
        "CONDITION_BASED",
        {"sensor_field": "oil_temperature", "comparison_operator": ">=", "threshold_value": 95},
    )

    holds = client.post(f"/triggers/evaluate/condition/{asset_id}", json={"sensor_data": {"oil_temperature": 95}})
    assert holds.json()["count"] == 1
    quiet = client.post(f"/triggers/evaluate/condition/{asset_id}", json={"sensor_data": {"oil_temperature": "n/a"}})
    assert quiet.json()["count"] == 0

    generated = client.post(f"/assets/{asset_id}/work-orders/condition", json={"sensor_data": {"oil_temperature": 101.5}})
    assert generated.status_code == 200
    assert generated.json()["job"] == "condition"
    assert generated.json()["counts"] == {"generated": 1}
    assert generated.json()["outcomes"][0]["item_id"] == trigger.trigger_id


def test_usage_generation_fires_once_per_crossing() -> None:
    client = TestClient(app)
    asset_id, schedule_id = _seed_schedule()
    _engine.create_trigger(schedule_id, "USAGE_BASED", {"meter_type": "CYCLES", "threshold_value": 5000})
    _engine.store.add_meter_reading(
        asset_id=asset_id,
        meter_type="CYCLES",
        value=5200,
        reading_date=_days_ago(0.5),
    )

    assert client.get(f"/triggers/evaluate/usage/{asset_id}").json()["count"] == 1
    first = client.post(f"/assets/{asset_id}/work-orders/usage", json={"meter_type": "CYCLES"})
    assert first.json()["counts"] == {"generated": 1}
    second = client.post(f"/assets/{asset_id}/work-orders/usage", json={"meter_type": "CYCLES"})
    assert second.json()["counts"] == {}
    assert client.get(f"/triggers/evaluate/usage/{asset_id}").json()["count"] == 0


def test_generate_complete_and_failure_status() -> None:
    client = TestClient(app)
    _, schedule_id = _seed_schedule()
    trigger = _engine.create_trigger(schedule_id, "TIME_BASED", {"interval_weeks": 1})
    _, other_schedule_id = _seed_schedule()
    foreign = _engine.create_trigger(other_schedule_id, "TIME_BASED", {"interval_weeks": 1})

    created = client.post(f"/pm-schedules/{schedule_id}/work-orders", json={"trigger_id": trigger.trigger_id})
    assert created.status_code == 201
    work_order = created.json()
    assert work_order["title"] == "PM: Press lubrication"
    assert work_order["priority"] == "HIGH"
    assert [task["title"] for task in work_order["tasks"]] == ["Lock out press", "Grease fittings"]

    mismatched = client.post(f"/pm-schedules/{schedule_id}/work-orders", json={"trigger_id": foreign.trigger_id})
    assert mismatched.status_code == 400
    assert client.post("/pm-schedules/999/work-orders").status_code == 404

    status = client.get(f"/pm-schedules/{schedule_id}/failures")
    assert status.status_code == 200
    assert status.json()["failure_count"] == 1
    assert status.json()["strategy"] == "DELAY"
    assert status.json()["delay_days"] == 1

    completed = client.post(f"/work-orders/{work_order['work_order_id']}/complete")
    assert completed.status_code == 200
    assert completed.json()["status"] == "COMPLETED"
    assert client.get(f"/pm-schedules/{schedule_id}/failures").json()["failure_count"] == 0
    assert client.post("/work-orders/999/complete").status_code == 404


def test_run_critical_escalations_job() -> None:
    client = TestClient(app)
    _, schedule_id = _seed_schedule()
    manager = _engine.store.add_user(organization_id=1, role="MANAGER", name="Dana Ortiz")
    admin = _engine.store.add_user(organization_id=1, role="ADMIN", name="Robin Yates")
    _engine.generate_work_order(schedule_id, now=_days_ago(3))

    response = client.post("/runs/critical-escalations")

    assert response.status_code == 200
    body = response.json()
    assert body["skipped"] is False
    assert body["reports"][0]["counts"] == {"escalated": 1}
    sent = _engine.notifier.sent
    assert sorted(item.user_id for item in sent) == sorted([manager.user_id, admin.user_id])
    assert all(item.title == "URGENT: Critical PM Overdue - Hydraulic Press 5" for item in sent)
    assert client.get("/metrics").text.count("cmms_pm_engine_critical_escalations_total 1") == 1


def test_run_comprehensive_job() -> None:
    client = TestClient(app)
    _, schedule_id = _seed_schedule()
    _engine.create_trigger(schedule_id, "TIME_BASED", {"interval_days": 1}, now=_days_ago(2))

    response = client.post("/runs/comprehensive")

    assert response.status_code == 200
    jobs = [report["job"] for report in response.json()["reports"]]
    assert jobs == ["generate-due", "failed-work-orders", "overdue-pms", "critical-escalations"]
    assert response.json()["reports"][0]["counts"] == {"generated": 1}
    assert client.post("/runs/nightly").status_code == 422


def test_compliance_report() -> None:
    client = TestClient(app)
    _, schedule_id = _seed_schedule(criticality="HIGH", organization_id=4)
    first = _engine.generate_work_order(schedule_id)
    _engine.generate_work_order(schedule_id)
    _engine.complete_work_order(first.work_order_id)

    response = client.get("/reports/compliance", params={"organization_id": 4, "days": 30})

    assert response.status_code == 200
    body = response.json()
    assert body["summary"] == {
        "total_pms": 2,
        "completed_pms": 1,
        "overdue_pms": 0,
        "canceled_pms": 0,
        "compliance_rate": 50,
    }
    assert body["criticality_breakdown"] == {"HIGH": 2}
    assert body["task_stats"] == {"NOT_STARTED": 4}
    assert body["recommendations"] == [
        "PM compliance rate is below 70%. Consider reviewing PM schedules and technician workload.",
        "Critical asset PMs detected. Prioritize these for immediate completion.",
    ]

    empty = client.get("/reports/compliance", params={"organization_id": 9})
    assert empty.json()["summary"]["compliance_rate"] == 0
    assert client.get("/reports/compliance", params={"organization_id": 4, "days": 0}).status_code == 422
