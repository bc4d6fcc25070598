"""Domain records and the in-memory PM store."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from threading import Lock
from typing import ClassVar

from .schemas import (
    AssetCriticality,
    ComparisonOperator,
    MeterType,
    TaskStatus,
    UserRole,
    WorkOrderPriority,
    WorkOrderStatus,
)


@dataclass(frozen=True)
class Asset:
    """Asset reference owned by the asset registry."""

    asset_id: int
    organization_id: int
    name: str
    criticality: AssetCriticality = "MEDIUM"


@dataclass(frozen=True)
class User:
    """User directory entry used for escalation targeting."""

    user_id: int
    organization_id: int
    role: UserRole
    name: str
    email: str | None = None


@dataclass(frozen=True)
class MeterReading:
    """One meter reading for an asset."""

    reading_id: int
    asset_id: int
    meter_type: MeterType
    value: float
    reading_date: datetime


@dataclass(frozen=True)
class TaskTemplate:
    """Task template attached to a PM schedule."""

    title: str
    description: str | None = None
    procedure: str | None = None
    order_index: int = 0


@dataclass
class PMSchedule:
    """Maintenance template that triggers generate work orders from."""

    schedule_id: int
    asset_id: int
    title: str
    description: str | None
    tasks: list[TaskTemplate] = field(default_factory=list)


@dataclass(frozen=True)
class TimeBasedConfig:
    """Calendar fields; the first populated one in precedence order wins."""

    trigger_type: ClassVar[str] = "TIME_BASED"

    interval_days: int | None = None
    interval_weeks: int | None = None
    interval_months: int | None = None
    day_of_week: int | None = None
    day_of_month: int | None = None


@dataclass(frozen=True)
class UsageBasedConfig:
    """Meter threshold that must be freshly crossed to fire."""

    trigger_type: ClassVar[str] = "USAGE_BASED"

    meter_type: MeterType | None = None
    threshold_value: float | None = None


@dataclass(frozen=True)
class ConditionBasedConfig:
    """Sensor comparison evaluated against a snapshot."""

    trigger_type: ClassVar[str] = "CONDITION_BASED"

    sensor_field: str | None = None
    comparison_operator: ComparisonOperator | None = None
    threshold_value: float | None = None


TriggerConfig = TimeBasedConfig | UsageBasedConfig | ConditionBasedConfig


@dataclass
class PMTrigger:
    """Trigger state belonging to exactly one PM schedule."""

    trigger_id: int
    pm_schedule_id: int
    config: TriggerConfig
    is_active: bool
    next_due: datetime | None
    last_triggered: datetime | None
    created_at: datetime
    updated_at: datetime

    @property
    def trigger_type(self) -> str:
        return self.config.trigger_type


@dataclass
class WorkOrderTask:
    """Checklist item instantiated from a task template."""

    task_id: int
    title: str
    description: str | None
    procedure: str | None
    order_index: int
    status: TaskStatus = "NOT_STARTED"


@dataclass
class WorkOrder:
    """Unit of work; PM-generated orders carry `pm_schedule_id`."""

    work_order_id: int
    title: str
    description: str
    status: WorkOrderStatus
    priority: WorkOrderPriority
    asset_id: int
    organization_id: int
    pm_schedule_id: int | None
    created_at: datetime
    updated_at: datetime
    assigned_to_id: int | None = None
    tasks: list[WorkOrderTask] = field(default_factory=list)


@dataclass(frozen=True)
class MaintenanceHistoryEntry:
    """Append-only record of one PM attempt or failure."""

    entry_id: int
    asset_id: int
    pm_schedule_id: int | None
    work_order_id: int | None
    title: str
    description: str | None
    is_completed: bool
    created_at: datetime
    type: str = "PREVENTIVE"


def _copy_work_order(work_order: WorkOrder) -> WorkOrder:
    return replace(work_order, tasks=[replace(task) for task in work_order.tasks])


def _copy_schedule(schedule: PMSchedule) -> PMSchedule:
    return replace(schedule, tasks=list(schedule.tasks))


class InMemoryPMStore:
    """Thread-safe in-memory store for schedules, triggers, work orders and history."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._counters: dict[str, int] = {}
            self._assets: dict[int, Asset] = {}
            self._users: dict[int, User] = {}
            self._readings: list[MeterReading] = []
            self._schedules: dict[int, PMSchedule] = {}
            self._triggers: dict[int, PMTrigger] = {}
            self._work_orders: dict[int, WorkOrder] = {}
            self._history: list[MaintenanceHistoryEntry] = []

    def _next_id(self, kind: str) -> int:
        self._counters[kind] = self._counters.get(kind, 0) + 1
        return self._counters[kind]

    # Seeding helpers for collaborator-owned records.

    def add_asset(
        self,
        *,
        organization_id: int,
        name: str,
        criticality: AssetCriticality = "MEDIUM",
    ) -> Asset:
        with self._lock:
            asset = Asset(
                asset_id=self._next_id("asset"),
                organization_id=organization_id,
                name=name,
                criticality=criticality,
            )
            self._assets[asset.asset_id] = asset
            return asset

    def add_user(
        self,
        *,
        organization_id: int,
        role: UserRole,
        name: str,
        email: str | None = None,
    ) -> User:
        with self._lock:
            user = User(
                user_id=self._next_id("user"),
                organization_id=organization_id,
                role=role,
                name=name,
                email=email,
            )
            self._users[user.user_id] = user
            return user

    def add_meter_reading(
        self,
        *,
        asset_id: int,
        meter_type: MeterType,
        value: float,
        reading_date: datetime,
    ) -> MeterReading:
        with self._lock:
            reading = MeterReading(
                reading_id=self._next_id("reading"),
                asset_id=asset_id,
                meter_type=meter_type,
                value=value,
                reading_date=reading_date,
            )
            self._readings.append(reading)
            return reading

    def add_schedule(
        self,
        *,
        asset_id: int,
        title: str,
        description: str | None = None,
        tasks: Iterable[TaskTemplate] = (),
    ) -> PMSchedule:
        with self._lock:
            schedule = PMSchedule(
                schedule_id=self._next_id("schedule"),
                asset_id=asset_id,
                title=title,
                description=description,
                tasks=sorted(tasks, key=lambda task: task.order_index),
            )
            self._schedules[schedule.schedule_id] = schedule
            return _copy_schedule(schedule)

    # Collaborator readers.

    def get_asset(self, asset_id: int) -> Asset | None:
        with self._lock:
            return self._assets.get(asset_id)

    def get_user(self, user_id: int) -> User | None:
        with self._lock:
            return self._users.get(user_id)

    def list_users(self, organization_id: int, roles: Iterable[str]) -> list[User]:
        wanted = set(roles)
        with self._lock:
            users = list(self._users.values())
        return [user for user in users if user.organization_id == organization_id and user.role in wanted]

    def latest_meter_reading(
        self,
        asset_id: int,
        meter_type: str,
        *,
        at_or_before: datetime | None = None,
    ) -> MeterReading | None:
        with self._lock:
            readings = [
                reading
                for reading in self._readings
                if reading.asset_id == asset_id
                and reading.meter_type == meter_type
                and (at_or_before is None or reading.reading_date <= at_or_before)
            ]
        if not readings:
            return None
        return max(readings, key=lambda reading: (reading.reading_date, reading.reading_id))

    def list_meter_readings(
        self,
        asset_id: int,
        meter_type: str,
        *,
        after: datetime | None = None,
    ) -> list[MeterReading]:
        with self._lock:
            readings = [
                reading
                for reading in self._readings
                if reading.asset_id == asset_id
                and reading.meter_type == meter_type
                and (after is None or reading.reading_date > after)
            ]
        return sorted(readings, key=lambda reading: (reading.reading_date, reading.reading_id))

    # Schedules.

    def get_schedule(self, schedule_id: int) -> PMSchedule | None:
        with self._lock:
            schedule = self._schedules.get(schedule_id)
            return _copy_schedule(schedule) if schedule else None

    def append_schedule_note(self, schedule_id: int, note: str, *, updated_at: datetime) -> None:
        del updated_at
        with self._lock:
            schedule = self._schedules.get(schedule_id)
            if schedule is None:
                return
            schedule.description = f"{schedule.description or ''}\n\n{note}"

    # Triggers.

    def add_trigger(
        self,
        *,
        schedule_id: int,
        config: TriggerConfig,
        is_active: bool,
        next_due: datetime | None,
        created_at: datetime,
    ) -> PMTrigger:
        with self._lock:
            trigger = PMTrigger(
                trigger_id=self._next_id("trigger"),
                pm_schedule_id=schedule_id,
                config=config,
                is_active=is_active,
                next_due=next_due,
                last_triggered=None,
                created_at=created_at,
                updated_at=created_at,
            )
            self._triggers[trigger.trigger_id] = trigger
            return replace(trigger)

    def get_trigger(self, trigger_id: int) -> PMTrigger | None:
        with self._lock:
            trigger = self._triggers.get(trigger_id)
            return replace(trigger) if trigger else None

    def save_trigger(self, trigger: PMTrigger) -> PMTrigger:
        with self._lock:
            if trigger.trigger_id not in self._triggers:
                raise KeyError(trigger.trigger_id)
            self._triggers[trigger.trigger_id] = replace(trigger)
            return replace(trigger)

    def delete_trigger(self, trigger_id: int) -> bool:
        with self._lock:
            return self._triggers.pop(trigger_id, None) is not None

    def list_triggers(
        self,
        *,
        schedule_id: int | None = None,
        asset_id: int | None = None,
        trigger_type: str | None = None,
        active_only: bool = False,
    ) -> list[PMTrigger]:
        with self._lock:
            triggers = [replace(trigger) for trigger in self._triggers.values()]
            schedule_assets = {key: value.asset_id for key, value in self._schedules.items()}

        if schedule_id is not None:
            triggers = [trigger for trigger in triggers if trigger.pm_schedule_id == schedule_id]
        if asset_id is not None:
            triggers = [trigger for trigger in triggers if schedule_assets.get(trigger.pm_schedule_id) == asset_id]
        if trigger_type:
            triggers = [trigger for trigger in triggers if trigger.trigger_type == trigger_type]
        if active_only:
            triggers = [trigger for trigger in triggers if trigger.is_active]
        return sorted(triggers, key=lambda trigger: (trigger.created_at, trigger.trigger_id))

    def list_triggers_due(
        self,
        end: datetime,
        *,
        start: datetime | None = None,
        inclusive: bool = True,
    ) -> list[PMTrigger]:
        with self._lock:
            triggers = [replace(trigger) for trigger in self._triggers.values() if trigger.is_active]

        due: list[PMTrigger] = []
        for trigger in triggers:
            if trigger.next_due is None:
                continue
            if start is not None and trigger.next_due < start:
                continue
            if trigger.next_due > end or (not inclusive and trigger.next_due == end):
                continue
            due.append(trigger)
        return sorted(due, key=lambda trigger: (trigger.next_due, trigger.trigger_id))

    def set_triggers_active(self, schedule_id: int, is_active: bool, *, updated_at: datetime) -> int:
        changed = 0
        with self._lock:
            for trigger in self._triggers.values():
                if trigger.pm_schedule_id != schedule_id:
                    continue
                trigger.is_active = is_active
                trigger.updated_at = updated_at
                changed += 1
        return changed

    # Work orders.

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
        with self._lock:
            work_order = WorkOrder(
                work_order_id=self._next_id("work_order"),
                title=title,
                description=description,
                status=status,
                priority=priority,
                asset_id=asset_id,
                organization_id=organization_id,
                pm_schedule_id=schedule_id,
                created_at=created_at,
                updated_at=created_at,
                assigned_to_id=assigned_to_id,
                tasks=[
                    WorkOrderTask(
                        task_id=self._next_id("task"),
                        title=template.title,
                        description=template.description,
                        procedure=template.procedure,
                        order_index=template.order_index,
                    )
                    for template in tasks
                ],
            )
            self._work_orders[work_order.work_order_id] = work_order
            return _copy_work_order(work_order)

    def get_work_order(self, work_order_id: int) -> WorkOrder | None:
        with self._lock:
            work_order = self._work_orders.get(work_order_id)
            return _copy_work_order(work_order) if work_order else None

    def list_work_orders(
        self,
        *,
        schedule_id: int | None = None,
        statuses: Iterable[str] | None = None,
        pm_only: bool = False,
    ) -> list[WorkOrder]:
        with self._lock:
            records = [_copy_work_order(record) for record in self._work_orders.values()]

        if schedule_id is not None:
            records = [record for record in records if record.pm_schedule_id == schedule_id]
        if statuses is not None:
            wanted = set(statuses)
            records = [record for record in records if record.status in wanted]
        if pm_only:
            records = [record for record in records if record.pm_schedule_id is not None]
        return sorted(records, key=lambda record: (record.created_at, record.work_order_id))

    def update_work_order(
        self,
        work_order_id: int,
        *,
        updated_at: datetime,
        status: WorkOrderStatus | None = None,
        description: str | None = None,
        assigned_to_id: int | None = None,
    ) -> WorkOrder | None:
        with self._lock:
            work_order = self._work_orders.get(work_order_id)
            if work_order is None:
                return None
            if status is not None:
                work_order.status = status
            if description is not None:
                work_order.description = description
            if assigned_to_id is not None:
                work_order.assigned_to_id = assigned_to_id
            work_order.updated_at = updated_at
            return _copy_work_order(work_order)

    def set_task_status(self, task_id: int, status: TaskStatus) -> WorkOrderTask | None:
        with self._lock:
            for work_order in self._work_orders.values():
                for task in work_order.tasks:
                    if task.task_id == task_id:
                        task.status = status
                        return replace(task)
        return None

    # Maintenance history.

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
        with self._lock:
            entry = MaintenanceHistoryEntry(
                entry_id=self._next_id("history"),
                asset_id=asset_id,
                pm_schedule_id=schedule_id,
                work_order_id=work_order_id,
                title=title,
                description=description,
                is_completed=is_completed,
                created_at=created_at,
            )
            self._history.append(entry)
            return entry

    def list_history(self, *, schedule_id: int, since: datetime | None = None) -> list[MaintenanceHistoryEntry]:
        with self._lock:
            entries = [entry for entry in self._history if entry.pm_schedule_id == schedule_id]
        if since is not None:
            entries = [entry for entry in entries if entry.created_at >= since]
        return sorted(entries, key=lambda entry: (entry.created_at, entry.entry_id))
