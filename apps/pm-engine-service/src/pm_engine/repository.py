"""Persistence contract shared by the in-memory store and the SQLAlchemy repository."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from .schemas import TaskStatus, WorkOrderPriority, WorkOrderStatus
from .store import (
    Asset,
    MaintenanceHistoryEntry,
    MeterReading,
    PMSchedule,
    PMTrigger,
    TaskTemplate,
    TriggerConfig,
    User,
    WorkOrder,
    WorkOrderTask,
)


class PMRepository(Protocol):
    """Schedule/trigger store plus the asset, user and meter readers the engine needs."""

    def get_asset(self, asset_id: int) -> Asset | None:
        """Fetch one asset reference."""

    def get_user(self, user_id: int) -> User | None:
        """Fetch one user."""

    def list_users(self, organization_id: int, roles: Iterable[str]) -> list[User]:
        """List users of an organization holding any of the roles."""

    def latest_meter_reading(
        self,
        asset_id: int,
        meter_type: str,
        *,
        at_or_before: datetime | None = None,
    ) -> MeterReading | None:
        """Return the newest reading, optionally bounded by a timestamp."""

    def list_meter_readings(
        self,
        asset_id: int,
        meter_type: str,
        *,
        after: datetime | None = None,
    ) -> list[MeterReading]:
        """Return readings ordered by reading date."""

    def get_schedule(self, schedule_id: int) -> PMSchedule | None:
        """Fetch a schedule with its ordered task templates."""

    def append_schedule_note(self, schedule_id: int, note: str, *, updated_at: datetime) -> None:
        """Append a note paragraph to the schedule description."""

    def add_trigger(
        self,
        *,
        schedule_id: int,
        config: TriggerConfig,
        is_active: bool,
        next_due: datetime | None,
        created_at: datetime,
    ) -> PMTrigger:
        """Persist a new trigger."""

    def get_trigger(self, trigger_id: int) -> PMTrigger | None:
        """Fetch one trigger."""

    def save_trigger(self, trigger: PMTrigger) -> PMTrigger:
        """Overwrite the mutable state of an existing trigger."""

    def delete_trigger(self, trigger_id: int) -> bool:
        """Delete a trigger; return whether it existed."""

    def list_triggers(
        self,
        *,
        schedule_id: int | None = None,
        asset_id: int | None = None,
        trigger_type: str | None = None,
        active_only: bool = False,
    ) -> list[PMTrigger]:
        """List triggers ordered by creation."""

    def list_triggers_due(
        self,
        end: datetime,
        *,
        start: datetime | None = None,
        inclusive: bool = True,
    ) -> list[PMTrigger]:
        """List active triggers whose calendar due date falls in the range."""

    def set_triggers_active(self, schedule_id: int, is_active: bool, *, updated_at: datetime) -> int:
        """Toggle every trigger of a schedule; return how many changed."""

    def create_work_order(
        self,
        *,
        schedule_id: int | None,
        asset_id: int,
        organization_id: int,
        title: str,
        description: str,
        priority: WorkOrderPriority,
        tasks: Iterable[TaskTemplate],
        created_at: datetime,
        status: WorkOrderStatus = "OPEN",
        assigned_to_id: int | None = None,
    ) -> WorkOrder:
        """Create a work order and copy the task templates in order."""

    def get_work_order(self, work_order_id: int) -> WorkOrder | None:
        """Fetch one work order with its tasks."""

    def list_work_orders(
        self,
        *,
        schedule_id: int | None = None,
        statuses: Iterable[str] | None = None,
        pm_only: bool = False,
    ) -> list[WorkOrder]:
        """List work orders ordered by creation."""

    def update_work_order(
        self,
        work_order_id: int,
        *,
        updated_at: datetime,
        status: WorkOrderStatus | None = None,
        description: str | None = None,
        assigned_to_id: int | None = None,
    ) -> WorkOrder | None:
        """Update status, description or assignee of a work order."""

    def set_task_status(self, task_id: int, status: TaskStatus) -> WorkOrderTask | None:
        """Set the completion status of one checklist task."""

    def append_history(
        self,
        *,
        asset_id: int,
        schedule_id: int | None,
        work_order_id: int | None,
        title: str,
        description: str | None,
        is_completed: bool,
        created_at: datetime,
    ) -> MaintenanceHistoryEntry:
        """Append a PREVENTIVE maintenance history entry."""

    def list_history(self, *, schedule_id: int, since: datetime | None = None) -> list[MaintenanceHistoryEntry]:
        """List history entries of a schedule ordered by creation."""
