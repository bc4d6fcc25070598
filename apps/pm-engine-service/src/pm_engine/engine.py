"""PM engine facade wiring evaluator, generator, rescheduler and scheduler."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
import logging
from typing import Any

from .compliance import ComplianceReport, ComplianceService
from .config import Settings
from .db import create_db_engine, create_session_factory, init_db
from .evaluator import TriggerEvaluator
from .generator import WorkOrderGenerator
from .notifier import HttpNotifier, NotificationGateway, Notifier, RecordingNotifier
from .observability import PMEngineMetrics, log_event
from .repositories import SqlAlchemyPMRepository
from .repository import PMRepository
from .rescheduler import FailureStatus, FailureTracker, RescheduleOutcome, Rescheduler
from .results import BatchReport
from .scheduler import JobRun, PMScheduler, build_jobs
from .store import InMemoryPMStore, PMTrigger, WorkOrder
from .triggers import TriggerService

logger = logging.getLogger("pm_engine")


def build_store(settings: Settings) -> PMRepository:
    """Select the repository implementation for the configured backend."""

    if settings.storage_backend == "sqlalchemy":
        engine = create_db_engine(settings.database_url, echo=settings.sql_echo)
        init_db(engine)
        log_event(logger, "pm_storage_initialized", backend="sqlalchemy", database_url=engine.url.render_as_string())
        return SqlAlchemyPMRepository(create_session_factory(engine))
    return InMemoryPMStore()


def build_notifier(settings: Settings) -> Notifier:
    if settings.notification_backend == "http":
        return HttpNotifier(settings)
    return RecordingNotifier()


class PMEngine:
    """Constructs every PM component once and exposes their operations."""

    def __init__(
        self,
        *,
        settings: Settings,
        store: PMRepository,
        metrics: PMEngineMetrics,
        notifier: Notifier | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._metrics = metrics

        self.notifications = NotificationGateway(
            store=store,
            notifier=notifier or build_notifier(settings),
            metrics=metrics,
        )
        self.triggers = TriggerService(store=store, metrics=metrics)
        self.evaluator = TriggerEvaluator(store=store, metrics=metrics)
        self.generator = WorkOrderGenerator(
            store=store,
            triggers=self.triggers,
            evaluator=self.evaluator,
            metrics=metrics,
        )
        self.tracker = FailureTracker(store=store, metrics=metrics, window_days=settings.failure_window_days)
        self.rescheduler = Rescheduler(
            settings=settings,
            store=store,
            generator=self.generator,
            tracker=self.tracker,
            notifications=self.notifications,
            metrics=metrics,
        )
        self.compliance = ComplianceService(
            settings=settings,
            store=store,
            notifications=self.notifications,
            metrics=metrics,
        )
        self.scheduler = PMScheduler(build_jobs(self, settings, metrics))

    @property
    def store(self) -> PMRepository:
        return self._store

    @property
    def notifier(self) -> Notifier:
        return self.notifications.notifier

    def reset_state_for_tests(self) -> None:
        """Reset store and notifier for deterministic tests."""

        if isinstance(self._store, InMemoryPMStore):
            self._store.reset()
        self.notifications.notifier = build_notifier(self._settings)

    def set_notifier_for_tests(self, notifier: Notifier) -> None:
        """Inject test notifier to observe or break delivery."""

        self.notifications.notifier = notifier

    # Trigger administration.

    def create_trigger(
        self,
        schedule_id: int,
        trigger_type: str,
        fields: Mapping[str, Any],
        *,
        is_active: bool = True,
        now: datetime | None = None,
    ) -> PMTrigger:
        return self.triggers.create_trigger(schedule_id, trigger_type, fields, is_active=is_active, now=now)

    def update_trigger(self, trigger_id: int, changes: Mapping[str, Any], *, now: datetime | None = None) -> PMTrigger:
        return self.triggers.update_trigger(trigger_id, changes, now=now)

    def delete_trigger(self, trigger_id: int) -> None:
        self.triggers.delete_trigger(trigger_id)

    def list_triggers(self, schedule_id: int) -> list[PMTrigger]:
        return self.triggers.list_for_schedule(schedule_id)

    def mark_fired(self, trigger_id: int, *, now: datetime | None = None) -> PMTrigger:
        return self.triggers.mark_fired(trigger_id, now=now)

    # Evaluation.

    def due_time_triggers(self, *, now: datetime | None = None) -> list[PMTrigger]:
        return self.evaluator.due_time_triggers(now)

    def due_usage_triggers(self, asset_id: int) -> list[PMTrigger]:
        return self.evaluator.due_usage_triggers(asset_id)

    def due_condition_triggers(self, asset_id: int, snapshot: Mapping[str, Any]) -> list[PMTrigger]:
        return self.evaluator.due_condition_triggers(asset_id, snapshot)

    def upcoming_triggers(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[PMTrigger]:
        range_start = start or datetime.now(tz=timezone.utc)
        range_end = end or range_start + timedelta(days=self._settings.upcoming_window_days)
        return self.evaluator.upcoming_triggers(range_start, range_end)

    # Generation.

    def generate_work_order(
        self,
        schedule_id: int,
        trigger_id: int | None = None,
        *,
        now: datetime | None = None,
    ) -> WorkOrder:
        return self.generator.generate(schedule_id, trigger_id, now=now)

    def generate_for_all_due(self, *, now: datetime | None = None) -> BatchReport:
        return self.generator.generate_for_all_due(now=now)

    def generate_from_usage(self, asset_id: int, meter_type: str, *, now: datetime | None = None) -> BatchReport:
        return self.generator.generate_from_usage(asset_id, meter_type, now=now)

    def generate_from_condition(
        self,
        asset_id: int,
        snapshot: Mapping[str, Any],
        *,
        now: datetime | None = None,
    ) -> BatchReport:
        return self.generator.generate_from_condition(asset_id, snapshot, now=now)

    def complete_work_order(self, work_order_id: int, *, now: datetime | None = None) -> WorkOrder:
        return self.generator.complete_work_order(work_order_id, now=now)

    # Failure handling.

    def failure_status(self, schedule_id: int, *, now: datetime | None = None) -> FailureStatus:
        return self.rescheduler.failure_status(schedule_id, now=now)

    def reschedule_work_order(self, work_order_id: int, *, now: datetime | None = None) -> RescheduleOutcome:
        return self.rescheduler.reschedule_work_order(work_order_id, now=now)

    def process_failed_work_orders(self, *, now: datetime | None = None) -> BatchReport:
        return self.rescheduler.process_failed_work_orders(now=now)

    def process_overdue_pms(self, *, now: datetime | None = None) -> BatchReport:
        return self.rescheduler.process_overdue_pms(now=now)

    def run_rescheduling(self, *, now: datetime | None = None) -> list[BatchReport]:
        return self.rescheduler.run_comprehensive(now=now)

    def process_critical_escalations(self, *, now: datetime | None = None) -> BatchReport:
        return self.compliance.process_critical_escalations(now=now)

    def run_comprehensive(self, *, now: datetime | None = None) -> list[BatchReport]:
        """Generation, rescheduling and critical escalation in one pass."""

        current_time = now or datetime.now(tz=timezone.utc)
        return [
            self.generate_for_all_due(now=current_time),
            *self.run_rescheduling(now=current_time),
            self.process_critical_escalations(now=current_time),
        ]

    def compliance_report(
        self,
        organization_id: int,
        *,
        days: int = 30,
        now: datetime | None = None,
    ) -> ComplianceReport:
        return self.compliance.compliance_report(organization_id, days=days, now=now)

    def run_job(self, name: str) -> JobRun:
        return self.scheduler.run_job(name)
