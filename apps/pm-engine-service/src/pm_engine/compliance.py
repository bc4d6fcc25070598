"""Critical overdue escalation and PM compliance reporting."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from time import perf_counter

from .config import Settings
from .notifier import Notification, NotificationGateway
from .observability import PMEngineMetrics, log_event
from .repository import PMRepository
from .results import BatchReport, record_item_failure
from .store import WorkOrder

logger = logging.getLogger("pm_engine")

CRITICAL_PRIORITIES = ("HIGH", "URGENT")
MANAGEMENT_ROLES = ("MANAGER", "ADMIN")


@dataclass(frozen=True)
class ComplianceReport:
    """PM compliance numbers for one organization and period."""

    organization_id: int
    period_days: int
    start_date: datetime
    end_date: datetime
    total_pms: int
    completed_pms: int
    overdue_pms: int
    canceled_pms: int
    compliance_rate: int
    criticality_breakdown: dict[str, int] = field(default_factory=dict)
    task_stats: dict[str, int] = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)


def build_recommendations(
    *,
    total_pms: int,
    completed_pms: int,
    overdue_pms: int,
    canceled_pms: int,
    criticality_breakdown: dict[str, int],
) -> list[str]:
    recommendations: list[str] = []
    compliance_rate = (completed_pms / total_pms) * 100 if total_pms > 0 else 0.0

    if compliance_rate < 70:
        recommendations.append(
            "PM compliance rate is below 70%. Consider reviewing PM schedules and technician workload."
        )
    if overdue_pms > total_pms * 0.2:
        recommendations.append("More than 20% of PMs are overdue. Consider implementing automatic escalation rules.")
    if canceled_pms > total_pms * 0.15:
        recommendations.append(
            "High PM cancellation rate detected. Review PM scheduling accuracy and resource availability."
        )
    if criticality_breakdown.get("HIGH", 0) + criticality_breakdown.get("IMPORTANT", 0) > 0:
        recommendations.append("Critical asset PMs detected. Prioritize these for immediate completion.")
    if not recommendations:
        recommendations.append("PM compliance is good. Continue current maintenance practices.")
    return recommendations


class ComplianceService:
    """Escalates long-open high-priority PM work and summarizes PM compliance."""

    def __init__(
        self,
        *,
        settings: Settings,
        store: PMRepository,
        notifications: NotificationGateway,
        metrics: PMEngineMetrics,
    ) -> None:
        self._settings = settings
        self._store = store
        self._notifications = notifications
        self._metrics = metrics

    def process_critical_escalations(self, *, now: datetime | None = None) -> BatchReport:
        current_time = now or datetime.now(tz=timezone.utc)
        started = perf_counter()
        report = BatchReport(job="critical-escalations", started_at=current_time)
        cutoff = current_time - timedelta(hours=self._settings.critical_overdue_hours)

        candidates = [
            work_order
            for work_order in self._store.list_work_orders(statuses=("OPEN", "IN_PROGRESS"), pm_only=True)
            if work_order.priority in CRITICAL_PRIORITIES and work_order.created_at < cutoff
        ]
        for work_order in candidates:
            try:
                delivered = self._escalate(work_order, current_time)
                self._metrics.record_critical_escalation()
                report.record_success(work_order.work_order_id, "escalated")
                log_event(
                    logger,
                    "pm_critical_overdue_escalated",
                    work_order_id=work_order.work_order_id,
                    pm_schedule_id=work_order.pm_schedule_id,
                    priority=work_order.priority,
                    notified=delivered,
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

    def compliance_report(
        self,
        organization_id: int,
        *,
        days: int = 30,
        now: datetime | None = None,
    ) -> ComplianceReport:
        end_date = now or datetime.now(tz=timezone.utc)
        start_date = end_date - timedelta(days=days)
        overdue_cutoff = end_date - timedelta(days=self._settings.stale_open_days)

        work_orders = [
            work_order
            for work_order in self._store.list_work_orders(pm_only=True)
            if work_order.organization_id == organization_id and start_date <= work_order.created_at <= end_date
        ]
        total_pms = len(work_orders)
        completed_pms = sum(1 for work_order in work_orders if work_order.status == "COMPLETED")
        overdue_pms = sum(
            1 for work_order in work_orders if work_order.status == "OPEN" and work_order.created_at < overdue_cutoff
        )
        canceled_pms = sum(1 for work_order in work_orders if work_order.status == "CANCELED")

        criticality: Counter[str] = Counter()
        asset_criticality: dict[int, str] = {}
        for work_order in work_orders:
            if work_order.asset_id not in asset_criticality:
                asset = self._store.get_asset(work_order.asset_id)
                asset_criticality[work_order.asset_id] = asset.criticality if asset else "MEDIUM"
            criticality[asset_criticality[work_order.asset_id]] += 1
        task_stats = Counter(task.status for work_order in work_orders for task in work_order.tasks)

        breakdown = dict(criticality)
        return ComplianceReport(
            organization_id=organization_id,
            period_days=days,
            start_date=start_date,
            end_date=end_date,
            total_pms=total_pms,
            completed_pms=completed_pms,
            overdue_pms=overdue_pms,
            canceled_pms=canceled_pms,
            compliance_rate=round(completed_pms / total_pms * 100) if total_pms > 0 else 0,
            criticality_breakdown=breakdown,
            task_stats=dict(task_stats),
            recommendations=build_recommendations(
                total_pms=total_pms,
                completed_pms=completed_pms,
                overdue_pms=overdue_pms,
                canceled_pms=canceled_pms,
                criticality_breakdown=breakdown,
            ),
        )

    def _escalate(self, work_order: WorkOrder, now: datetime) -> int:
        asset = self._store.get_asset(work_order.asset_id)
        asset_name = asset.name if asset else "Asset"
        assignee = self._store.get_user(work_order.assigned_to_id) if work_order.assigned_to_id else None
        hours_overdue = int((now - work_order.created_at).total_seconds() // 3600)
        assignment = f"Assigned to: {assignee.name}" if assignee else "Not assigned"

        notification = Notification(
            organization_id=work_order.organization_id,
            title=f"URGENT: Critical PM Overdue - {asset_name}",
            message=(
                f"Work Order {work_order.work_order_id} for {asset_name} is {hours_overdue} hours overdue. "
                f"Asset criticality: {asset.criticality if asset else 'Unknown'}. {assignment}."
            ),
            priority="URGENT",
            kind="ALERT",
            related_entity_type="workOrder",
            related_entity_id=work_order.work_order_id,
            action_url=f"/work-orders/{work_order.work_order_id}",
            action_label="View Work Order",
        )
        return self._notifications.send_to_roles(notification, MANAGEMENT_ROLES)
