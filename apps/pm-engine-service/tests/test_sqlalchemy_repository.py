"""Repository tests against an in-memory SQLite database."""

from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys

from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT / "src"))

from pm_engine.config import Settings  # noqa: E402
from pm_engine.db import Base, create_db_engine, create_session_factory, init_db  # noqa: E402
from pm_engine.engine import PMEngine  # noqa: E402
from pm_engine.notifier import RecordingNotifier  # noqa: E402
from pm_engine.observability import PMEngineMetrics  # noqa: E402
from pm_engine.repositories import SqlAlchemyPMRepository  # noqa: E402
from pm_engine.store import ConditionBasedConfig, TaskTemplate, TimeBasedConfig, UsageBasedConfig  # noqa: E402

NOW = datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)


@contextmanager
def _build_repository() -> Generator[SqlAlchemyPMRepository, None, None]:
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    try:
        yield SqlAlchemyPMRepository(create_session_factory(engine))
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def test_schedule_and_trigger_round_trip() -> None:
    with _build_repository() as repository:
        asset = repository.add_asset(organization_id=3, name="Conveyor 9", criticality="IMPORTANT")
        schedule = repository.add_schedule(
            asset_id=asset.asset_id,
            title="Belt tension check",
            tasks=[TaskTemplate(title="Measure", order_index=1), TaskTemplate(title="Isolate", order_index=0)],
        )
        assert [task.title for task in schedule.tasks] == ["Isolate", "Measure"]

        time_trigger = repository.add_trigger(
            schedule_id=schedule.schedule_id,
            config=TimeBasedConfig(day_of_month=31),
            is_active=True,
            next_due=NOW,
            created_at=NOW - timedelta(days=1),
        )
        condition_trigger = repository.add_trigger(
            schedule_id=schedule.schedule_id,
            config=ConditionBasedConfig(sensor_field="vibration", comparison_operator=">=", threshold_value=7.5),
            is_active=True,
            next_due=None,
            created_at=NOW,
        )

        loaded = repository.get_trigger(time_trigger.trigger_id)
        assert loaded is not None
        assert loaded.config == TimeBasedConfig(day_of_month=31)
        assert loaded.next_due == NOW
        assert loaded.next_due.tzinfo is not None
        assert loaded.last_triggered is None

        triggers = repository.list_triggers(asset_id=asset.asset_id, trigger_type="CONDITION_BASED")
        assert [trigger.trigger_id for trigger in triggers] == [condition_trigger.trigger_id]
        assert triggers[0].config.comparison_operator == ">="

        loaded.config = UsageBasedConfig(meter_type="CYCLES", threshold_value=1000)
        loaded.next_due = None
        saved = repository.save_trigger(loaded)
        assert saved.trigger_type == "USAGE_BASED"
        reloaded = repository.get_trigger(time_trigger.trigger_id)
        assert reloaded is not None
        assert reloaded.config == UsageBasedConfig(meter_type="CYCLES", threshold_value=1000)
        assert reloaded.next_due is None

        assert repository.set_triggers_active(schedule.schedule_id, False, updated_at=NOW) == 2
        assert repository.list_triggers(schedule_id=schedule.schedule_id, active_only=True) == []
        assert repository.delete_trigger(condition_trigger.trigger_id) is True
        assert repository.delete_trigger(condition_trigger.trigger_id) is False


def test_due_window_and_meter_queries() -> None:
    with _build_repository() as repository:
        asset = repository.add_asset(organization_id=3, name="Generator 1")
        schedule = repository.add_schedule(asset_id=asset.asset_id, title="Load bank test")
        for offset in (-2, 0, 3):
            repository.add_trigger(
                schedule_id=schedule.schedule_id,
                config=TimeBasedConfig(interval_days=1),
                is_active=True,
                next_due=NOW + timedelta(days=offset),
                created_at=NOW - timedelta(days=5),
            )

        inclusive = repository.list_triggers_due(NOW)
        exclusive = repository.list_triggers_due(NOW, inclusive=False)
        window = repository.list_triggers_due(NOW + timedelta(days=5), start=NOW - timedelta(days=1))
        assert [trigger.next_due for trigger in inclusive] == [NOW - timedelta(days=2), NOW]
        assert [trigger.next_due for trigger in exclusive] == [NOW - timedelta(days=2)]
        assert [trigger.next_due for trigger in window] == [NOW, NOW + timedelta(days=3)]

        for hours, value in ((1, 90.0), (2, 120.0), (3, 40.0)):
            repository.add_meter_reading(
                asset_id=asset.asset_id,
                meter_type="HOURS",
                value=value,
                reading_date=NOW + timedelta(hours=hours),
            )
        latest = repository.latest_meter_reading(asset.asset_id, "HOURS")
        assert latest is not None and latest.value == 40.0
        earlier = repository.latest_meter_reading(asset.asset_id, "HOURS", at_or_before=NOW + timedelta(hours=2))
        assert earlier is not None and earlier.value == 120.0
        after = repository.list_meter_readings(asset.asset_id, "HOURS", after=NOW + timedelta(hours=1))
        assert [reading.value for reading in after] == [120.0, 40.0]
        assert repository.latest_meter_reading(asset.asset_id, "MILES") is None


def test_work_orders_history_and_users() -> None:
    with _build_repository() as repository:
        asset = repository.add_asset(organization_id=3, name="Chiller 4", criticality="HIGH")
        schedule = repository.add_schedule(asset_id=asset.asset_id, title="Coil cleaning", description="Quarterly")
        manager = repository.add_user(organization_id=3, role="MANAGER", name="Dana Ortiz", email="dana@example.com")
        repository.add_user(organization_id=4, role="MANAGER", name="Sam Hale")

        work_order = repository.create_work_order(
            schedule_id=schedule.schedule_id,
            asset_id=asset.asset_id,
            organization_id=3,
            title="PM: Coil cleaning",
            description="Preventive maintenance for Chiller 4",
            priority="HIGH",
            tasks=[TaskTemplate(title="Rinse coil", order_index=0)],
            created_at=NOW,
        )
        assert work_order.tasks[0].status == "NOT_STARTED"

        repository.set_task_status(work_order.tasks[0].task_id, "FAILED")
        updated = repository.update_work_order(work_order.work_order_id, updated_at=NOW, status="ON_HOLD")
        assert updated is not None
        assert updated.status == "ON_HOLD"
        assert updated.tasks[0].status == "FAILED"
        assert [item.work_order_id for item in repository.list_work_orders(statuses=["ON_HOLD"], pm_only=True)] == [
            work_order.work_order_id
        ]
        assert repository.list_work_orders(statuses=["OPEN"]) == []

        repository.append_history(
            asset_id=asset.asset_id,
            schedule_id=schedule.schedule_id,
            work_order_id=work_order.work_order_id,
            title="PM: Coil cleaning",
            description="PM work order generated automatically",
            is_completed=False,
            created_at=NOW - timedelta(days=40),
        )
        repository.append_history(
            asset_id=asset.asset_id,
            schedule_id=schedule.schedule_id,
            work_order_id=None,
            title="PM Failure Recorded",
            description="Failure #1 recorded for automatic rescheduling",
            is_completed=False,
            created_at=NOW,
        )
        recent = repository.list_history(schedule_id=schedule.schedule_id, since=NOW - timedelta(days=30))
        assert [entry.title for entry in recent] == ["PM Failure Recorded"]
        assert recent[0].created_at == NOW

        repository.append_schedule_note(schedule.schedule_id, "[ESCALATED] note", updated_at=NOW)
        noted = repository.get_schedule(schedule.schedule_id)
        assert noted is not None and noted.description == "Quarterly\n\n[ESCALATED] note"

        assert [user.user_id for user in repository.list_users(3, ["MANAGER", "ADMIN"])] == [manager.user_id]
        fetched = repository.get_user(manager.user_id)
        assert fetched is not None and fetched.email == "dana@example.com"


def test_engine_escalates_on_sqlalchemy_backend() -> None:
    with _build_repository() as repository:
        notifier = RecordingNotifier()
        engine = PMEngine(settings=Settings(), store=repository, metrics=PMEngineMetrics(), notifier=notifier)
        asset = repository.add_asset(organization_id=1, name="Boiler 2")
        manager = repository.add_user(organization_id=1, role="MANAGER", name="Dana Ortiz")
        schedule = repository.add_schedule(asset_id=asset.asset_id, title="Monthly boiler check")
        start = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)
        trigger = engine.create_trigger(schedule.schedule_id, "TIME_BASED", {"interval_months": 1}, now=start)

        generated_at = start + timedelta(days=31)
        strategies = []
        for _ in range(3):
            report = engine.generate_for_all_due(now=generated_at)
            assert report.counts == {"generated": 1}
            failed_at = generated_at + timedelta(days=8)
            failed = engine.process_failed_work_orders(now=failed_at)
            strategies.append(failed.outcomes[0].action)
            current = repository.get_trigger(trigger.trigger_id)
            assert current is not None and current.next_due is not None
            generated_at = current.next_due

        assert strategies == ["delay", "delay", "escalate"]
        escalations = [item for item in notifier.sent if item.title.startswith("PM Escalation Required")]
        assert [item.user_id for item in escalations] == [manager.user_id]
        assert engine.failure_status(schedule.schedule_id, now=failed_at).failure_count == 3
