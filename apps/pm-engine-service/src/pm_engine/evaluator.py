"""Decides which active triggers require a work order."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timezone
import logging
import math
import operator
from typing import Any

from .errors import InvalidConfigurationError
from .observability import PMEngineMetrics, log_event
from .repository import PMRepository
from .store import ConditionBasedConfig, PMTrigger, UsageBasedConfig
from .triggers import ensure_complete

logger = logging.getLogger("pm_engine")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "=": operator.eq,
    "!=": operator.ne,
}


def _numeric(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def compare(value: float, comparison_operator: str, threshold: float) -> bool:
    """Apply a trigger comparison operator numerically."""

    return _OPERATORS[comparison_operator](value, threshold)


class TriggerEvaluator:
    """Per-type due-ness rules for time, usage and condition triggers."""

    def __init__(self, *, store: PMRepository, metrics: PMEngineMetrics) -> None:
        self._store = store
        self._metrics = metrics

    def due_time_triggers(self, now: datetime | None = None) -> list[PMTrigger]:
        current_time = now or datetime.now(tz=timezone.utc)
        return self._well_formed(self._store.list_triggers_due(current_time))

    def due_usage_triggers(self, asset_id: int, *, meter_type: str | None = None) -> list[PMTrigger]:
        """Usage triggers on the asset whose threshold has been freshly crossed."""

        candidates = self._well_formed(
            self._store.list_triggers(asset_id=asset_id, trigger_type="USAGE_BASED", active_only=True)
        )
        due: list[PMTrigger] = []
        for trigger in candidates:
            config = trigger.config
            if not isinstance(config, UsageBasedConfig):
                continue
            if meter_type is not None and config.meter_type != meter_type:
                continue
            if self._freshly_crossed(asset_id, trigger, config):
                due.append(trigger)
        return due

    def due_condition_triggers(self, asset_id: int, snapshot: Mapping[str, Any]) -> list[PMTrigger]:
        """Condition triggers whose comparison holds for the snapshot.

        Previous firings are not consulted; a condition that keeps holding
        keeps the trigger due.
        """

        candidates = self._well_formed(
            self._store.list_triggers(asset_id=asset_id, trigger_type="CONDITION_BASED", active_only=True)
        )
        due: list[PMTrigger] = []
        for trigger in candidates:
            config = trigger.config
            if not isinstance(config, ConditionBasedConfig):
                continue
            value = _numeric(snapshot.get(config.sensor_field))
            if value is None:
                continue
            if compare(value, config.comparison_operator, config.threshold_value):
                due.append(trigger)
        return due

    def upcoming_triggers(self, start: datetime, end: datetime) -> list[PMTrigger]:
        return self._well_formed(self._store.list_triggers_due(end, start=start))

    def _freshly_crossed(self, asset_id: int, trigger: PMTrigger, config: UsageBasedConfig) -> bool:
        threshold = config.threshold_value
        latest = self._store.latest_meter_reading(asset_id, config.meter_type)
        if latest is None or latest.value < threshold:
            return False

        baseline_time = trigger.last_triggered or EPOCH
        baseline = self._store.latest_meter_reading(asset_id, config.meter_type, at_or_before=baseline_time)
        if baseline is None or baseline.value < threshold:
            return True

        # A dip below threshold after the last firing re-arms the trigger.
        later = self._store.list_meter_readings(asset_id, config.meter_type, after=baseline_time)
        return any(reading.value < threshold for reading in later)

    def _well_formed(self, triggers: list[PMTrigger]) -> list[PMTrigger]:
        kept: list[PMTrigger] = []
        for trigger in triggers:
            try:
                ensure_complete(trigger.config)
            except InvalidConfigurationError as exc:
                self._metrics.record_trigger_skipped()
                log_event(
                    logger,
                    "pm_trigger_skipped_malformed",
                    level=logging.WARNING,
                    trigger_id=trigger.trigger_id,
                    pm_schedule_id=trigger.pm_schedule_id,
                    trigger_type=trigger.trigger_type,
                    reason=str(exc),
                )
                continue
            kept.append(trigger)
        return kept
