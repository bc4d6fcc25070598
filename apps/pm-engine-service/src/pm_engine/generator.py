"""Turns PM schedules into work orders with their task checklist."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
import logging
from time import perf_counter
from typing import Any

from .errors import InvalidConfigurationError, NotFoundError
from .evaluator import TriggerEvaluator
from .observability import PMEngineMetrics, log_event
from .repository import PMRepository
from .results import BatchReport, record_item_failure
from .schemas import ACTIVE_WORK_ORDER_STATUSES, WorkOrderPriority
from .store import PMTrigger, WorkOrder
from .triggers import TriggerService

logger = logging.getLogger("pm_engine")

PRIORITY_BY_CRITICALITY: dict[str, WorkOrderPriority] = {
    "IMPORTANT": "HIGH",
    "HIGH": "HIGH",
    "MEDIUM": "MEDIUM",
    "LOW": "LOW",
}


def priority_for_criticality(criticality: str | None) -> WorkOrderPriority:
    return PRIORITY_BY_CRITICALITY.get(criticality or "", "MEDIUM")


class WorkOrderGenerator:
    """Creates PM work orders and records each attempt in maintenance history."""

    def __init__(
        self,
        *,
        store: PMRepository,
        triggers: TriggerService,
        evaluator: TriggerEvaluator,
        metrics: PMEngineMetrics,
    ) -> None:
        self._store = store
        self._triggers = triggers
        self._evaluator = evaluator
        self._metrics = metrics

    def generate(
        self,
        schedule_id: int,
        trigger_id: int | None = None,
        *,
        now: datetime | None = None,
    ) -> WorkOrder:
        """Create an OPEN work order for the schedule.

        When `trigger_id` is given the trigger is marked fired afterwards,
        which is the only place a firing advances its due date.
        """

        current_time = now or datetime.now(tz=timezone.utc)
        schedule = self._store.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError("pm schedule", schedule_id)
        asset = self._store.get_asset(schedule.asset_id)
        if asset is None:
            raise NotFoundError("asset", schedule.asset_id)
        if trigger_id is not None:
            trigger = self._store.get_trigger(trigger_id)
            if trigger is None:
                raise NotFoundError("pm trigger", trigger_id)
            if trigger.pm_schedule_id != schedule_id:
                raise InvalidConfigurationError(f"pm trigger {trigger_id} does not belong to pm schedule {schedule_id}")

        work_order = self._store.create_work_order(
            schedule_id=schedule.schedule_id,
            asset_id=asset.asset_id,
            organization_id=asset.organization_id,
            title=f"PM: {schedule.title}",
            description=f"Preventive maintenance for {asset.name}\n\n{schedule.description or ''}",
            priority=priority_for_criticality(asset.criticality),
            tasks=sorted(schedule.tasks, key=lambda task: task.order_index),
            created_at=current_time,
        )
        self._store.append_history(
            asset_id=asset.asset_id,
            schedule_id=schedule.schedule_id,
            work_order_id=work_order.work_order_id,
            title=work_order.title,
            description="PM work order generated automatically",
            is_completed=False,
            created_at=current_time,
        )
        self._metrics.record_work_order_generated()
        log_event(
            logger,
            "pm_work_order_generated",
            work_order_id=work_order.work_order_id,
            pm_schedule_id=schedule_id,
            asset_id=asset.asset_id,
            priority=work_order.priority,
            task_count=len(work_order.tasks),
            trigger_id=trigger_id,
        )

        if trigger_id is not None:
            self._triggers.mark_fired(trigger_id, now=current_time)
        return work_order

    def generate_for_all_due(self, *, now: datetime | None = None) -> BatchReport:
        """Generate for every time-due trigger unless its schedule already has active work."""

        current_time = now or datetime.now(tz=timezone.utc)
        started = perf_counter()
        report = BatchReport(job="generate-due", started_at=current_time)

        for trigger in self._evaluator.due_time_triggers(current_time):
            try:
                active = self._store.list_work_orders(
                    schedule_id=trigger.pm_schedule_id,
                    statuses=ACTIVE_WORK_ORDER_STATUSES,
                )
                if active:
                    self._metrics.record_generation_skipped()
                    log_event(
                        logger,
                        "pm_generation_skipped_active",
                        trigger_id=trigger.trigger_id,
                        pm_schedule_id=trigger.pm_schedule_id,
                        active_work_order_id=active[0].work_order_id,
                    )
                    report.record_success(trigger.trigger_id, "skipped_active")
                    continue
                work_order = self.generate(trigger.pm_schedule_id, trigger.trigger_id, now=current_time)
                report.record_success(trigger.trigger_id, "generated", work_order_id=work_order.work_order_id)
            except Exception as exc:
                record_item_failure(report, self._metrics, trigger.trigger_id, exc, pm_schedule_id=trigger.pm_schedule_id)

        return report.finish(self._metrics, started)

    def generate_from_usage(
        self,
        asset_id: int,
        meter_type: str,
        *,
        now: datetime | None = None,
    ) -> BatchReport:
        current_time = now or datetime.now(tz=timezone.utc)
        started = perf_counter()
        report = BatchReport(job="usage", started_at=current_time)
        due = self._evaluator.due_usage_triggers(asset_id, meter_type=meter_type)
        self._generate_each(report, due, current_time)
        return report.finish(self._metrics, started)

    def generate_from_condition(
        self,
        asset_id: int,
        snapshot: Mapping[str, Any],
        *,
        now: datetime | None = None,
    ) -> BatchReport:
        """Generate for every condition trigger that holds; no active-work guard applies."""

        current_time = now or datetime.now(tz=timezone.utc)
        started = perf_counter()
        report = BatchReport(job="condition", started_at=current_time)
        due = self._evaluator.due_condition_triggers(asset_id, snapshot)
        self._generate_each(report, due, current_time)
        return report.finish(self._metrics, started)

    def complete_work_order(self, work_order_id: int, *, now: datetime | None = None) -> WorkOrder:
        """Mark a PM work order completed and resolve its attempt in history."""

        current_time = now or datetime.now(tz=timezone.utc)
        work_order = self._store.get_work_order(work_order_id)
        if work_order is None:
            raise NotFoundError("work order", work_order_id)
        if work_order.pm_schedule_id is None:
            raise InvalidConfigurationError(f"work order {work_order_id} was not generated from a pm schedule")
        if work_order.status == "CANCELED":
            raise InvalidConfigurationError(f"work order {work_order_id} is canceled")
        if work_order.status == "COMPLETED":
            return work_order

        updated = self._store.update_work_order(work_order_id, updated_at=current_time, status="COMPLETED")
        if updated is None:  # pragma: no cover
            raise NotFoundError("work order", work_order_id)
        self._store.append_history(
            asset_id=work_order.asset_id,
            schedule_id=work_order.pm_schedule_id,
            work_order_id=work_order_id,
            title=work_order.title,
            description="PM work order completed",
            is_completed=True,
            created_at=current_time,
        )
        log_event(
            logger,
            "pm_work_order_completed",
            work_order_id=work_order_id,
            pm_schedule_id=work_order.pm_schedule_id,
        )
        return updated

    def _generate_each(self, report: BatchReport, triggers: list[PMTrigger], now: datetime) -> None:
        for trigger in triggers:
            try:
                work_order = self.generate(trigger.pm_schedule_id, trigger.trigger_id, now=now)
                report.record_success(trigger.trigger_id, "generated", work_order_id=work_order.work_order_id)
            except Exception as exc:
                record_item_failure(report, self._metrics, trigger.trigger_id, exc, pm_schedule_id=trigger.pm_schedule_id)
