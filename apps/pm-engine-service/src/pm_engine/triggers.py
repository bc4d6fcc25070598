"""Trigger administration: creation, updates and firing."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, replace
from datetime import datetime, timezone
import logging
from typing import Any

from .due_dates import UNCHANGED, compute_next_due, initial_next_due
from .errors import InvalidConfigurationError, NotFoundError
from .observability import PMEngineMetrics, log_event
from .repository import PMRepository
from .schemas import COMPARISON_OPERATORS, METER_TYPES, TRIGGER_TYPES
from .store import ConditionBasedConfig, PMTrigger, TimeBasedConfig, TriggerConfig, UsageBasedConfig

logger = logging.getLogger("pm_engine")

TIME_FIELDS = ("interval_days", "interval_weeks", "interval_months", "day_of_week", "day_of_month")
USAGE_FIELDS = ("meter_type", "threshold_value")
CONDITION_FIELDS = ("sensor_field", "comparison_operator", "threshold_value")
CONFIG_FIELDS = tuple(dict.fromkeys(TIME_FIELDS + USAGE_FIELDS + CONDITION_FIELDS))

_CONFIG_TYPES: dict[str, type] = {
    "TIME_BASED": TimeBasedConfig,
    "USAGE_BASED": UsageBasedConfig,
    "CONDITION_BASED": ConditionBasedConfig,
}
_TYPE_FIELDS: dict[str, tuple[str, ...]] = {
    "TIME_BASED": TIME_FIELDS,
    "USAGE_BASED": USAGE_FIELDS,
    "CONDITION_BASED": CONDITION_FIELDS,
}


def ensure_complete(config: TriggerConfig) -> None:
    """Raise `InvalidConfigurationError` when the config cannot be evaluated."""

    if isinstance(config, TimeBasedConfig):
        for name in ("interval_days", "interval_weeks", "interval_months"):
            value = getattr(config, name)
            if value is not None and value < 1:
                raise InvalidConfigurationError(f"{name} must be a positive integer")
        if config.day_of_week is not None and not 0 <= config.day_of_week <= 6:
            raise InvalidConfigurationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        if config.day_of_month is not None and not 1 <= config.day_of_month <= 31:
            raise InvalidConfigurationError("day_of_month must be between 1 and 31")
        if all(getattr(config, name) is None for name in TIME_FIELDS):
            raise InvalidConfigurationError("time-based trigger needs an interval, day_of_week or day_of_month")
        return

    if isinstance(config, UsageBasedConfig):
        if config.meter_type not in METER_TYPES:
            raise InvalidConfigurationError("usage-based trigger needs a known meter_type")
        if config.threshold_value is None:
            raise InvalidConfigurationError("usage-based trigger needs threshold_value")
        return

    if not config.sensor_field:
        raise InvalidConfigurationError("condition-based trigger needs sensor_field")
    if config.comparison_operator not in COMPARISON_OPERATORS:
        raise InvalidConfigurationError("condition-based trigger needs a supported comparison_operator")
    if config.threshold_value is None:
        raise InvalidConfigurationError("condition-based trigger needs threshold_value")


def build_trigger_config(trigger_type: str, fields: Mapping[str, Any]) -> TriggerConfig:
    """Build and validate the config variant for `trigger_type` from flat fields.

    Fields belonging to other trigger types are ignored.
    """

    if trigger_type not in TRIGGER_TYPES:
        raise InvalidConfigurationError(f"unsupported trigger type: {trigger_type}")
    config_type = _CONFIG_TYPES[trigger_type]
    config = config_type(**{name: fields.get(name) for name in _TYPE_FIELDS[trigger_type]})
    ensure_complete(config)
    return config


def config_fields(config: TriggerConfig) -> dict[str, Any]:
    """Flatten a config variant into the full set of trigger fields."""

    flat: dict[str, Any] = {name: None for name in CONFIG_FIELDS}
    flat.update(asdict(config))
    return flat


class TriggerService:
    """Creates, updates, deletes and fires PM triggers."""

    def __init__(self, *, store: PMRepository, metrics: PMEngineMetrics) -> None:
        self._store = store
        self._metrics = metrics

    def create_trigger(
        self,
        schedule_id: int,
        trigger_type: str,
        fields: Mapping[str, Any],
        *,
        is_active: bool = True,
        now: datetime | None = None,
    ) -> PMTrigger:
        current_time = now or datetime.now(tz=timezone.utc)
        if self._store.get_schedule(schedule_id) is None:
            raise NotFoundError("pm schedule", schedule_id)

        config = build_trigger_config(trigger_type, fields)
        trigger = self._store.add_trigger(
            schedule_id=schedule_id,
            config=config,
            is_active=is_active,
            next_due=initial_next_due(config, current_time),
            created_at=current_time,
        )
        log_event(
            logger,
            "pm_trigger_created",
            trigger_id=trigger.trigger_id,
            pm_schedule_id=schedule_id,
            trigger_type=trigger.trigger_type,
            next_due=trigger.next_due,
        )
        return trigger

    def update_trigger(
        self,
        trigger_id: int,
        changes: Mapping[str, Any],
        *,
        now: datetime | None = None,
    ) -> PMTrigger:
        """Apply a partial update.

        `changes` holds only the fields the caller supplied. A time-based
        trigger gets a fresh due date when it is reactivated or when its
        calendar fields change.
        """

        current_time = now or datetime.now(tz=timezone.utc)
        trigger = self._store.get_trigger(trigger_id)
        if trigger is None:
            raise NotFoundError("pm trigger", trigger_id)

        trigger_type = changes.get("type") or trigger.trigger_type
        merged = config_fields(trigger.config)
        merged.update({name: changes[name] for name in CONFIG_FIELDS if name in changes})
        config = build_trigger_config(trigger_type, merged)

        was_active = trigger.is_active
        is_active = changes["is_active"] if changes.get("is_active") is not None else was_active
        calendar_changed = config != trigger.config

        updated = replace(trigger, config=config, is_active=is_active, updated_at=current_time)
        if isinstance(config, TimeBasedConfig):
            if calendar_changed or (is_active and not was_active) or updated.next_due is None:
                updated.next_due = initial_next_due(config, current_time)
        elif trigger_type != trigger.trigger_type:
            updated.next_due = None

        saved = self._store.save_trigger(updated)
        log_event(
            logger,
            "pm_trigger_updated",
            trigger_id=trigger_id,
            trigger_type=saved.trigger_type,
            is_active=saved.is_active,
            next_due=saved.next_due,
        )
        return saved

    def delete_trigger(self, trigger_id: int) -> None:
        if not self._store.delete_trigger(trigger_id):
            raise NotFoundError("pm trigger", trigger_id)
        log_event(logger, "pm_trigger_deleted", trigger_id=trigger_id)

    def list_for_schedule(self, schedule_id: int) -> list[PMTrigger]:
        if self._store.get_schedule(schedule_id) is None:
            raise NotFoundError("pm schedule", schedule_id)
        return self._store.list_triggers(schedule_id=schedule_id)

    def mark_fired(self, trigger_id: int, *, now: datetime | None = None) -> PMTrigger:
        """Record a firing and advance the due date."""

        current_time = now or datetime.now(tz=timezone.utc)
        trigger = self._store.get_trigger(trigger_id)
        if trigger is None:
            raise NotFoundError("pm trigger", trigger_id)

        trigger.last_triggered = current_time
        trigger.updated_at = current_time
        next_due = compute_next_due(trigger.config, current_time)
        if next_due is UNCHANGED:
            log_event(
                logger,
                "pm_trigger_next_due_unchanged",
                level=logging.WARNING,
                trigger_id=trigger_id,
                trigger_type=trigger.trigger_type,
            )
        else:
            trigger.next_due = next_due

        saved = self._store.save_trigger(trigger)
        self._metrics.record_trigger_fired()
        log_event(
            logger,
            "pm_trigger_fired",
            trigger_id=trigger_id,
            pm_schedule_id=saved.pm_schedule_id,
            last_triggered=saved.last_triggered,
            next_due=saved.next_due,
        )
        return saved
