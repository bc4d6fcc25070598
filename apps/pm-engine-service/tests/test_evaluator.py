"""Tests for trigger evaluation and trigger administration."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT / "src"))

from pm_engine.config import Settings  # noqa: E402
from pm_engine.engine import PMEngine  # noqa: E402
from pm_engine.errors import InvalidConfigurationError, NotFoundError  # noqa: E402
from pm_engine.notifier import RecordingNotifier  # noqa: E402
from pm_engine.observability import PMEngineMetrics  # noqa: E402
from pm_engine.evaluator import TriggerEvaluator  # noqa: E402
from pm_engine.store import InMemoryPMStore, PMTrigger, TimeBasedConfig, UsageBasedConfig  # noqa: E402

NOW = datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def store() -> InMemoryPMStore:
    return InMemoryPMStore()


@pytest.fixture
def metrics() -> PMEngineMetrics:
    return PMEngineMetrics()


@pytest.fixture
def engine(store: InMemoryPMStore, metrics: PMEngineMetrics) -> PMEngine:
    return PMEngine(settings=Settings(), store=store, metrics=metrics, notifier=RecordingNotifier())


def _schedule(store: InMemoryPMStore) -> tuple[int, int]:
    asset = store.add_asset(organization_id=1, name="Air Compressor 3", criticality="HIGH")
    schedule = store.add_schedule(asset_id=asset.asset_id, title="Compressor service")
    return asset.asset_id, schedule.schedule_id


def test_time_triggers_due_when_next_due_reached(engine: PMEngine, store: InMemoryPMStore) -> None:
    _, schedule_id = _schedule(store)
    due_now = engine.create_trigger(schedule_id, "TIME_BASED", {"interval_days": 1}, now=NOW - timedelta(days=1))
    engine.create_trigger(schedule_id, "TIME_BASED", {"interval_days": 5}, now=NOW - timedelta(days=1))
    engine.create_trigger(
        schedule_id,
        "TIME_BASED",
        {"interval_days": 1},
        is_active=False,
        now=NOW - timedelta(days=3),
    )

    due = engine.due_time_triggers(now=NOW)
    assert [trigger.trigger_id for trigger in due] == [due_now.trigger_id]


def test_malformed_trigger_is_skipped_and_counted(
    engine: PMEngine,
    store: InMemoryPMStore,
    metrics: PMEngineMetrics,
) -> None:
    _, schedule_id = _schedule(store)
    store.add_trigger(
        schedule_id=schedule_id,
        config=TimeBasedConfig(),
        is_active=True,
        next_due=NOW - timedelta(hours=1),
        created_at=NOW - timedelta(days=2),
    )
    good = engine.create_trigger(schedule_id, "TIME_BASED", {"interval_weeks": 1}, now=NOW - timedelta(days=8))

    due = engine.due_time_triggers(now=NOW)
    assert [trigger.trigger_id for trigger in due] == [good.trigger_id]
    assert metrics.triggers_skipped_malformed_total == 1


def test_usage_trigger_fires_once_per_threshold_crossing(engine: PMEngine, store: InMemoryPMStore) -> None:
    asset_id, schedule_id = _schedule(store)
    trigger = engine.create_trigger(
        schedule_id,
        "USAGE_BASED",
        {"meter_type": "HOURS", "threshold_value": 100},
        now=NOW,
    )
    assert trigger.next_due is None

    store.add_meter_reading(asset_id=asset_id, meter_type="HOURS", value=40, reading_date=NOW + timedelta(hours=1))
    assert engine.due_usage_triggers(asset_id) == []

    store.add_meter_reading(asset_id=asset_id, meter_type="HOURS", value=120, reading_date=NOW + timedelta(hours=2))
    assert [item.trigger_id for item in engine.due_usage_triggers(asset_id)] == [trigger.trigger_id]

    report = engine.generate_from_usage(asset_id, "HOURS", now=NOW + timedelta(hours=3))
    assert report.counts == {"generated": 1}
    fired = store.get_trigger(trigger.trigger_id)
    assert fired is not None
    assert fired.last_triggered == NOW + timedelta(hours=3)
    assert fired.next_due is None

    # Still above threshold: no fresh crossing.
    store.add_meter_reading(asset_id=asset_id, meter_type="HOURS", value=150, reading_date=NOW + timedelta(hours=4))
    assert engine.due_usage_triggers(asset_id) == []

    # Meter reset below threshold, then crosses again.
    store.add_meter_reading(asset_id=asset_id, meter_type="HOURS", value=20, reading_date=NOW + timedelta(hours=5))
    store.add_meter_reading(asset_id=asset_id, meter_type="HOURS", value=130, reading_date=NOW + timedelta(hours=6))
    assert [item.trigger_id for item in engine.due_usage_triggers(asset_id)] == [trigger.trigger_id]


def test_usage_trigger_without_prior_reading_fires(engine: PMEngine, store: InMemoryPMStore) -> None:
    asset_id, schedule_id = _schedule(store)
    trigger = engine.create_trigger(schedule_id, "USAGE_BASED", {"meter_type": "CYCLES", "threshold_value": 10}, now=NOW)
    store.add_meter_reading(asset_id=asset_id, meter_type="CYCLES", value=10, reading_date=NOW)
    store.add_meter_reading(asset_id=asset_id, meter_type="HOURS", value=1, reading_date=NOW + timedelta(minutes=5))

    assert [item.trigger_id for item in engine.due_usage_triggers(asset_id)] == [trigger.trigger_id]
    report = engine.generate_from_usage(asset_id, "HOURS", now=NOW)
    assert report.outcomes == []


def test_usage_trigger_missing_threshold_is_skipped(
    engine: PMEngine,
    store: InMemoryPMStore,
    metrics: PMEngineMetrics,
) -> None:
    asset_id, schedule_id = _schedule(store)
    store.add_trigger(
        schedule_id=schedule_id,
        config=UsageBasedConfig(meter_type="HOURS"),
        is_active=True,
        next_due=None,
        created_at=NOW,
    )
    store.add_meter_reading(asset_id=asset_id, meter_type="HOURS", value=999, reading_date=NOW)

    assert engine.due_usage_triggers(asset_id) == []
    assert metrics.triggers_skipped_malformed_total == 1


def test_condition_trigger_uses_numeric_comparison(engine: PMEngine, store: InMemoryPMStore) -> None:
    asset_id, schedule_id = _schedule(store)
    trigger = engine.create_trigger(
        schedule_id,
        "CONDITION_BASED",
        {"sensor_field": "temperature", "comparison_operator": ">=", "threshold_value": 100},
        now=NOW,
    )

    assert [item.trigger_id for item in engine.due_condition_triggers(asset_id, {"temperature": 100})] == [
        trigger.trigger_id
    ]
    assert engine.due_condition_triggers(asset_id, {"temperature": 99}) == []
    assert engine.due_condition_triggers(asset_id, {"vibration": 400}) == []
    assert engine.due_condition_triggers(asset_id, {"temperature": "hot"}) == []
    assert engine.due_condition_triggers(asset_id, {"temperature": None}) == []


class _UnfilteredTypeStore(InMemoryPMStore):
    def list_triggers(self, *, trigger_type: str | None = None, **filters: object) -> list[PMTrigger]:
        return super().list_triggers(**filters)  # type: ignore[arg-type]


def test_evaluator_skips_triggers_of_another_type(metrics: PMEngineMetrics) -> None:
    store = _UnfilteredTypeStore()
    engine = PMEngine(settings=Settings(), store=store, metrics=metrics, notifier=RecordingNotifier())
    asset_id, schedule_id = _schedule(store)
    engine.create_trigger(schedule_id, "TIME_BASED", {"interval_days": 1}, now=NOW)
    usage = engine.create_trigger(schedule_id, "USAGE_BASED", {"meter_type": "CYCLES", "threshold_value": 10}, now=NOW)
    condition = engine.create_trigger(
        schedule_id,
        "CONDITION_BASED",
        {"sensor_field": "temperature", "comparison_operator": ">", "threshold_value": 50},
        now=NOW,
    )
    store.add_meter_reading(asset_id=asset_id, meter_type="CYCLES", value=12, reading_date=NOW)
    evaluator = TriggerEvaluator(store=store, metrics=metrics)

    assert [item.trigger_id for item in evaluator.due_usage_triggers(asset_id)] == [usage.trigger_id]
    assert [item.trigger_id for item in evaluator.due_condition_triggers(asset_id, {"temperature": 60})] == [
        condition.trigger_id
    ]


@pytest.mark.parametrize(
    ("operator", "value", "expected"),
    [(">", 5.1, True), (">", 5, False), ("<", 4, True), ("<=", 5, True), ("=", 5, True), ("!=", 5, False)],
)
def test_condition_operators(
    engine: PMEngine,
    store: InMemoryPMStore,
    operator: str,
    value: float,
    expected: bool,
) -> None:
    asset_id, schedule_id = _schedule(store)
    engine.create_trigger(
        schedule_id,
        "CONDITION_BASED",
        {"sensor_field": "pressure", "comparison_operator": operator, "threshold_value": 5},
        now=NOW,
    )
    assert bool(engine.due_condition_triggers(asset_id, {"pressure": value})) is expected


def test_condition_trigger_refires_while_condition_holds(engine: PMEngine, store: InMemoryPMStore) -> None:
    asset_id, schedule_id = _schedule(store)
    engine.create_trigger(
        schedule_id,
        "CONDITION_BASED",
        {"sensor_field": "vibration", "comparison_operator": ">", "threshold_value": 7.5},
        now=NOW,
    )

    first = engine.generate_from_condition(asset_id, {"vibration": 9.1}, now=NOW)
    second = engine.generate_from_condition(asset_id, {"vibration": 9.4}, now=NOW + timedelta(minutes=10))
    assert first.counts == {"generated": 1}
    assert second.counts == {"generated": 1}
    assert len(store.list_work_orders(schedule_id=schedule_id)) == 2


def test_upcoming_triggers_are_ordered_by_due_date(engine: PMEngine, store: InMemoryPMStore) -> None:
    _, schedule_id = _schedule(store)
    later = engine.create_trigger(schedule_id, "TIME_BASED", {"interval_days": 20}, now=NOW)
    sooner = engine.create_trigger(schedule_id, "TIME_BASED", {"interval_days": 3}, now=NOW)
    engine.create_trigger(schedule_id, "TIME_BASED", {"interval_days": 60}, now=NOW)

    upcoming = engine.upcoming_triggers(start=NOW, end=NOW + timedelta(days=30))
    assert [trigger.trigger_id for trigger in upcoming] == [sooner.trigger_id, later.trigger_id]


def test_create_trigger_validates_type_specific_fields(engine: PMEngine, store: InMemoryPMStore) -> None:
    _, schedule_id = _schedule(store)

    with pytest.raises(InvalidConfigurationError):
        engine.create_trigger(schedule_id, "TIME_BASED", {}, now=NOW)
    with pytest.raises(InvalidConfigurationError):
        engine.create_trigger(schedule_id, "TIME_BASED", {"day_of_week": 7}, now=NOW)
    with pytest.raises(InvalidConfigurationError):
        engine.create_trigger(schedule_id, "USAGE_BASED", {"meter_type": "HOURS"}, now=NOW)
    with pytest.raises(InvalidConfigurationError):
        engine.create_trigger(
            schedule_id,
            "CONDITION_BASED",
            {"sensor_field": "temperature", "comparison_operator": "~", "threshold_value": 1},
            now=NOW,
        )
    with pytest.raises(InvalidConfigurationError):
        engine.create_trigger(schedule_id, "CALENDAR", {"interval_days": 1}, now=NOW)
    with pytest.raises(NotFoundError):
        engine.create_trigger(404, "TIME_BASED", {"interval_days": 1}, now=NOW)


def test_fields_of_other_types_are_ignored(engine: PMEngine, store: InMemoryPMStore) -> None:
    _, schedule_id = _schedule(store)
    trigger = engine.create_trigger(
        schedule_id,
        "TIME_BASED",
        {"interval_days": 2, "meter_type": "HOURS", "sensor_field": "temperature"},
        now=NOW,
    )
    assert trigger.config == TimeBasedConfig(interval_days=2)


def test_reactivating_time_trigger_recomputes_due_date(engine: PMEngine, store: InMemoryPMStore) -> None:
    _, schedule_id = _schedule(store)
    trigger = engine.create_trigger(schedule_id, "TIME_BASED", {"interval_days": 2}, now=NOW)
    store.set_triggers_active(schedule_id, False, updated_at=NOW)

    later = NOW + timedelta(days=10)
    updated = engine.update_trigger(trigger.trigger_id, {"is_active": True}, now=later)
    assert updated.is_active is True
    assert updated.next_due == later + timedelta(days=2)

    changed = engine.update_trigger(
        trigger.trigger_id,
        {"interval_days": None, "interval_weeks": 1},
        now=later + timedelta(hours=1),
    )
    assert changed.config == TimeBasedConfig(interval_weeks=1)
    assert changed.next_due == later + timedelta(hours=1, days=7)


def test_mark_fired_advances_due_date(engine: PMEngine, store: InMemoryPMStore, metrics: PMEngineMetrics) -> None:
    _, schedule_id = _schedule(store)
    trigger = engine.create_trigger(schedule_id, "TIME_BASED", {"interval_months": 1}, now=NOW)

    fired = engine.mark_fired(trigger.trigger_id, now=NOW + timedelta(days=31))
    assert fired.last_triggered == NOW + timedelta(days=31)
    assert fired.next_due == datetime(2026, 5, 10, 9, 30, tzinfo=timezone.utc)
    assert metrics.triggers_fired_total == 1

    condition = engine.create_trigger(
        schedule_id,
        "CONDITION_BASED",
        {"sensor_field": "temperature", "comparison_operator": ">", "threshold_value": 80},
        now=NOW,
    )
    unchanged = engine.mark_fired(condition.trigger_id, now=NOW + timedelta(hours=1))
    assert unchanged.next_due is None
    assert unchanged.last_triggered == NOW + timedelta(hours=1)

    with pytest.raises(NotFoundError):
        engine.mark_fired(999, now=NOW)


def test_delete_trigger(engine: PMEngine, store: InMemoryPMStore) -> None:
    _, schedule_id = _schedule(store)
    trigger = engine.create_trigger(schedule_id, "TIME_BASED", {"interval_days": 2}, now=NOW)

    engine.delete_trigger(trigger.trigger_id)
    assert engine.list_triggers(schedule_id) == []
    with pytest.raises(NotFoundError):
        engine.delete_trigger(trigger.trigger_id)
