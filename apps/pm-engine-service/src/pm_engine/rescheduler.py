"""Failure tracking and rule-driven rescheduling of failed or stalled PM work."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from time import perf_counter

from .config import Settings
from .errors import InvalidConfigurationError, NotFoundError
from .generator import WorkOrderGenerator
from .notifier import Notification, NotificationGateway
from .observability import PMEngineMetrics, log_event
from .repository import PMRepository
from .results import BatchReport, record_item_failure
from .rules import DEFAULT_RULES, RescheduleRule, RuleTable
from .schemas import ACTIVE_WORK_ORDER_STATUSES, RescheduleStrategy
from .store import PMSchedule, PMTrigger, TimeBasedConfig, WorkOrder

logger = logging.getLogger("pm_engine")

CANCEL_NOTE = "[SYSTEM] Canceled and rescheduled due to failure/timeout."
ESCALATION_NOTE = "[ESCALATED] Requires management attention - multiple failures detected."
TERMINAL_STATUSES = ("COMPLETED", "CANCELED")


@dataclass(frozen=True)
class RescheduleOutcome:
    """What rescheduling one failed work order did."""

    work_order_id: int
    pm_schedule_id: int
    strategy: RescheduleStrategy
    failure_count: int
    rule: RescheduleRule
    new_work_order_id: int | None = None
    next_due: datetime | None = None


@dataclass(frozen=True)
class FailureStatus:
    pm_schedule_id: int
    failure_count: int
    window_days: int
    trigger_type: str | None
    rule: RescheduleRule | None


class FailureTracker:
    """Counts unresolved PM attempts per schedule over a rolling window."""

    def __init__(self, *, store: PMRepository, metrics: PMEngineMetrics, window_days: int = 30) -> None:
        self._store = store
        self._metrics = metrics
        self.window_days = window_days

    def failure_count(self, schedule_id: int, *, now: datetime | None = None) -> int:
        return len(self._unresolved_attempts(schedule_id, now or datetime.now(tz=timezone.utc)))

    def record_failure(
        self,
        *,
        schedule_id: int,
        asset_id: int,
        work_order_id: int | None,
        now: datetime | None = None,
    ) -> int:
        """Append a failure entry and return the resulting failure count."""

        current_time = now or datetime.now(tz=timezone.utc)
        attempts = self._unresolved_attempts(schedule_id, current_time)
        if work_order_id is not None:
            attempts.add(("work_order", work_order_id))
            failure_number = len(attempts)
        else:
            failure_number = len(attempts) + 1

        self._store.append_history(
            asset_id=asset_id,
            schedule_id=schedule_id,
            work_order_id=work_order_id,
            title="PM Failure Recorded",
            description=f"Failure #{failure_number} recorded for automatic rescheduling",
            is_completed=False,
            created_at=current_time,
        )
        self._metrics.record_failure()
        log_event(
            logger,
            "pm_failure_recorded",
            pm_schedule_id=schedule_id,
            work_order_id=work_order_id,
            failure_number=failure_number,
        )
        return failure_number

    def _unresolved_attempts(self, schedule_id: int, now: datetime) -> set[tuple[str, int]]:
        # Entries of one work order form a single attempt; a completion entry resolves it.
        since = now - timedelta(days=self.window_days)
        entries = [
            entry
            for entry in self._store.list_history(schedule_id=schedule_id, since=since)
            if entry.type == "PREVENTIVE" and entry.created_at <= now
        ]
        resolved = {entry.work_order_id for entry in entries if entry.is_completed and entry.work_order_id is not None}

        attempts: set[tuple[str, int]] = set()
        for entry in entries:
            if entry.is_completed:
                continue
            if entry.work_order_id is None:
                attempts.add(("entry", entry.entry_id))
            elif entry.work_order_id not in resolved:
                attempts.add(("work_order", entry.work_order_id))
        return attempts


class Rescheduler:
    """Applies the reschedule decision table to failed and overdue PM work."""

    def __init__(
        self,
        *,
        settings: Settings,
        store: PMRepository,
        generator: WorkOrderGenerator,
        tracker: FailureTracker,
        notifications: NotificationGateway,
        metrics: PMEngineMetrics,
        rules: RuleTable = DEFAULT_RULES,
    ) -> None:
        self._settings = settings
        self._store = store
        self._generator = generator
        self._tracker = tracker
        self._notifications = notifications
        self._metrics = metrics
        self.rules = rules

    def primary_trigger(self, schedule_id: int) -> PMTrigger | None:
        """Oldest trigger of the schedule; it decides which rules apply."""

        triggers = self._store.list_triggers(schedule_id=schedule_id)
        return triggers[0] if triggers else None

    def failure_status(self, schedule_id: int, *, now: datetime | None = None) -> FailureStatus:
        """Current failure count and the rule a failure right now would start from."""

        if self._store.get_schedule(schedule_id) is None:
            raise NotFoundError("pm schedule", schedule_id)
        failure_count = self._tracker.failure_count(schedule_id, now=now)
        primary = self.primary_trigger(schedule_id)
        return FailureStatus(
            pm_schedule_id=schedule_id,
            failure_count=failure_count,
            window_days=self._tracker.window_days,
            trigger_type=primary.trigger_type if primary else None,
            rule=self.rules.select(primary.trigger_type, failure_count) if primary else None,
        )

    def reschedule_work_order(self, work_order_id: int, *, now: datetime | None = None) -> RescheduleOutcome:
        current_time = now or datetime.now(tz=timezone.utc)
        work_order = self._store.get_work_order(work_order_id)
        if work_order is None:
            raise NotFoundError("work order", work_order_id)
        if work_order.pm_schedule_id is None:
            raise InvalidConfigurationError(f"cannot reschedule non-PM work order {work_order_id}")
        if work_order.status in TERMINAL_STATUSES:
            raise InvalidConfigurationError(f"work order {work_order_id} is already {work_order.status}")

        schedule = self._store.get_schedule(work_order.pm_schedule_id)
        if schedule is None:
            raise NotFoundError("pm schedule", work_order.pm_schedule_id)
        primary = self.primary_trigger(schedule.schedule_id)
        if primary is None:
            raise InvalidConfigurationError(f"no triggers found for pm schedule {schedule.schedule_id}")

        failure_count = self._tracker.record_failure(
            schedule_id=schedule.schedule_id,
            asset_id=work_order.asset_id,
            work_order_id=work_order_id,
            now=current_time,
        )
        rule = self.rules.select(primary.trigger_type, failure_count)

        new_work_order_id: int | None = None
        if rule.strategy == "IMMEDIATE":
            new_work_order_id = self._reschedule_immediate(schedule, primary, current_time)
        elif rule.strategy == "DELAY":
            self._reschedule_with_delay(primary, rule.delay_days or 1, current_time)
        elif rule.strategy == "ESCALATE":
            self._escalate(work_order, schedule, rule, failure_count, current_time)
        else:
            self._mark_for_manual_reschedule(work_order, schedule, current_time)

        self._notify_rescheduled(work_order, schedule, rule, failure_count)
        self._store.update_work_order(
            work_order_id,
            updated_at=current_time,
            status="CANCELED",
            description=f"{work_order.description}\n\n{CANCEL_NOTE}",
        )

        refreshed = self._store.get_trigger(primary.trigger_id)
        self._metrics.record_reschedule(rule.strategy)
        outcome = RescheduleOutcome(
            work_order_id=work_order_id,
            pm_schedule_id=schedule.schedule_id,
            strategy=rule.strategy,
            failure_count=failure_count,
            rule=rule,
            new_work_order_id=new_work_order_id,
            next_due=refreshed.next_due if refreshed else None,
        )
        log_event(
            logger,
            "pm_work_order_rescheduled",
            work_order_id=work_order_id,
            pm_schedule_id=schedule.schedule_id,
            trigger_id=primary.trigger_id,
            strategy=rule.strategy,
            failure_count=failure_count,
            new_work_order_id=new_work_order_id,
            next_due=outcome.next_due,
        )
        return outcome

    def failed_work_order_candidates(self, now: datetime) -> list[WorkOrder]:
        """PM work orders with a failed task, stale while OPEN, or stalled ON_HOLD."""

        open_cutoff = now - timedelta(days=self._settings.stale_open_days)
        on_hold_cutoff = now - timedelta(days=self._settings.stale_on_hold_days)
        candidates: list[WorkOrder] = []
        for work_order in self._store.list_work_orders(pm_only=True):
            if work_order.status in TERMINAL_STATUSES:
                continue
            has_failed_task = any(task.status == "FAILED" for task in work_order.tasks)
            stale_open = work_order.status == "OPEN" and work_order.created_at < open_cutoff
            stalled = work_order.status == "ON_HOLD" and work_order.updated_at < on_hold_cutoff
            if has_failed_task or stale_open or stalled:
                candidates.append(work_order)
        return candidates

    def process_failed_work_orders(self, *, now: datetime | None = None) -> BatchReport:
        current_time = now or datetime.now(tz=timezone.utc)
        started = perf_counter()
        report = BatchReport(job="failed-work-orders", started_at=current_time)

        for work_order in self.failed_work_order_candidates(current_time):
            try:
                outcome = self.reschedule_work_order(work_order.work_order_id, now=current_time)
                report.record_success(
                    work_order.work_order_id,
                    outcome.strategy.lower(),
                    work_order_id=outcome.new_work_order_id,
                )
            except Exception as exc:
                record_item_failure(
                    report,
                    self._metrics,
                    work_order.work_order_id,
                    exc,
                    pm_schedule_id=work_order.pm_schedule_id,
                )

        return report.finish(self._metrics, started)

    def process_overdue_pms(self, *, now: datetime | None = None) -> BatchReport:
        """Generate for overdue schedules without active work, reschedule stale active work."""

        current_time = now or datetime.now(tz=timezone.utc)
        started = perf_counter()
        report = BatchReport(job="overdue-pms", started_at=current_time)
        stale_cutoff = current_time - timedelta(days=self._settings.overdue_reschedule_days)

        seen_schedules: set[int] = set()
        for trigger in self._store.list_triggers_due(current_time, inclusive=False):
            if trigger.pm_schedule_id in seen_schedules:
                continue
            seen_schedules.add(trigger.pm_schedule_id)
            try:
                active = self._store.list_work_orders(
                    schedule_id=trigger.pm_schedule_id,
                    statuses=ACTIVE_WORK_ORDER_STATUSES,
                )
                if not active:
                    work_order = self._generator.generate(trigger.pm_schedule_id, trigger.trigger_id, now=current_time)
                    report.record_success(trigger.pm_schedule_id, "generated", work_order_id=work_order.work_order_id)
                    continue

                oldest = active[0]
                if oldest.created_at >= stale_cutoff:
                    report.record_success(trigger.pm_schedule_id, "waiting")
                    continue

                outcome = self.reschedule_work_order(oldest.work_order_id, now=current_time)
                action = "escalated" if outcome.strategy == "ESCALATE" else "rescheduled"
                report.record_success(trigger.pm_schedule_id, action, work_order_id=outcome.new_work_order_id)
            except Exception as exc:
                record_item_failure(report, self._metrics, trigger.pm_schedule_id, exc, trigger_id=trigger.trigger_id)

        return report.finish(self._metrics, started)

    def run_comprehensive(self, *, now: datetime | None = None) -> list[BatchReport]:
        current_time = now or datetime.now(tz=timezone.utc)
        return [
            self.process_failed_work_orders(now=current_time),
            self.process_overdue_pms(now=current_time),
        ]

    def _reschedule_immediate(self, schedule: PMSchedule, trigger: PMTrigger, now: datetime) -> int:
        # Usage and condition triggers never carry a calendar due date.
        if isinstance(trigger.config, TimeBasedConfig):
            trigger.next_due = now
            trigger.updated_at = now
            self._store.save_trigger(trigger)
        work_order = self._generator.generate(schedule.schedule_id, trigger.trigger_id, now=now)
        return work_order.work_order_id

    def _reschedule_with_delay(self, trigger: PMTrigger, delay_days: int, now: datetime) -> None:
        trigger.next_due = now + timedelta(days=delay_days)
        trigger.updated_at = now
        self._store.save_trigger(trigger)

    def _escalate(
        self,
        work_order: WorkOrder,
        schedule: PMSchedule,
        rule: RescheduleRule,
        failure_count: int,
        now: datetime,
    ) -> None:
        asset = self._store.get_asset(work_order.asset_id)
        asset_name = asset.name if asset else f"#{work_order.asset_id}"
        notification = Notification(
            organization_id=work_order.organization_id,
            title=f"PM Escalation Required: {schedule.title}",
            message=(
                f"Work Order {work_order.work_order_id} for asset {asset_name} has failed "
                f"{failure_count} times and requires management intervention."
            ),
            priority=rule.notification_level,
            kind="ALERT",
            related_entity_type="pmSchedule",
            related_entity_id=schedule.schedule_id,
            action_url=f"/pm-schedules/{schedule.schedule_id}",
            action_label="Review PM Schedule",
        )
        self._notifications.send_to_roles(notification, [rule.escalate_to_role or "MANAGER"])
        self._store.append_schedule_note(schedule.schedule_id, ESCALATION_NOTE, updated_at=now)

    def _mark_for_manual_reschedule(self, work_order: WorkOrder, schedule: PMSchedule, now: datetime) -> None:
        deactivated = self._store.set_triggers_active(schedule.schedule_id, False, updated_at=now)
        log_event(
            logger,
            "pm_schedule_disabled",
            level=logging.WARNING,
            pm_schedule_id=schedule.schedule_id,
            triggers_deactivated=deactivated,
        )
        asset = self._store.get_asset(work_order.asset_id)
        asset_name = asset.name if asset else f"#{work_order.asset_id}"
        notification = Notification(
            organization_id=work_order.organization_id,
            title=f"Manual PM Reschedule Required: {schedule.title}",
            message=(
                f"PM schedule for asset {asset_name} has been disabled and requires manual "
                "rescheduling due to repeated failures."
            ),
            priority="HIGH",
            kind="WARNING",
            related_entity_type="pmSchedule",
            related_entity_id=schedule.schedule_id,
            action_url=f"/pm-schedules/{schedule.schedule_id}",
            action_label="Reschedule PM",
        )
        self._notifications.send_to_roles(notification, ["MANAGER", "ADMIN"])

    def _notify_rescheduled(
        self,
        work_order: WorkOrder,
        schedule: PMSchedule,
        rule: RescheduleRule,
        failure_count: int,
    ) -> None:
        notification = Notification(
            organization_id=work_order.organization_id,
            title=f"PM Rescheduled: {schedule.title}",
            message=(
                f"Work order {work_order.work_order_id} has been rescheduled after {failure_count} "
                f"failure(s). Strategy: {rule.strategy}"
            ),
            priority=rule.notification_level,
            kind="ALERT" if rule.notification_level == "URGENT" else "WARNING",
            related_entity_type="pmSchedule",
            related_entity_id=schedule.schedule_id,
            action_url=f"/pm-schedules/{schedule.schedule_id}",
            action_label="View PM Schedule",
        )
        try:
            recipients = self._notifications.recipients_for(
                work_order.organization_id,
                [rule.escalate_to_role or "MANAGER"],
                assignee_id=work_order.assigned_to_id,
            )
        except Exception as exc:
            log_event(
                logger,
                "pm_notification_recipients_failed",
                level=logging.WARNING,
                work_order_id=work_order.work_order_id,
                error=str(exc) or type(exc).__name__,
            )
            return
        self._notifications.send(notification, recipients)
