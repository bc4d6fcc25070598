"""SQLAlchemy-backed implementation of the PM repository contract."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import Select, select, update
from sqlalchemy.orm import Session, selectinload, sessionmaker

from .models import (
    AssetRow,
    MaintenanceHistoryRow,
    MeterReadingRow,
    PMScheduleRow,
    PMTaskTemplateRow,
    PMTriggerRow,
    UserRow,
    WorkOrderRow,
    WorkOrderTaskRow,
)
from .schemas import AssetCriticality, MeterType, TaskStatus, UserRole, WorkOrderPriority, WorkOrderStatus
from .store import (
    Asset,
    ConditionBasedConfig,
    MaintenanceHistoryEntry,
    MeterReading,
    PMSchedule,
    PMTrigger,
    TaskTemplate,
    TimeBasedConfig,
    TriggerConfig,
    UsageBasedConfig,
    User,
    WorkOrder,
    WorkOrderTask,
)


def _utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _config_from_row(row: PMTriggerRow) -> TriggerConfig:
    if row.type == "USAGE_BASED":
        return UsageBasedConfig(meter_type=row.meter_type, threshold_value=row.threshold_value)
    if row.type == "CONDITION_BASED":
        return ConditionBasedConfig(
            sensor_field=row.sensor_field,
            comparison_operator=row.comparison_operator,
            threshold_value=row.threshold_value,
        )
    return TimeBasedConfig(
        interval_days=row.interval_days,
        interval_weeks=row.interval_weeks,
        interval_months=row.interval_months,
        day_of_week=row.day_of_week,
        day_of_month=row.day_of_month,
    )


def _apply_config(row: PMTriggerRow, config: TriggerConfig) -> None:
    row.type = config.trigger_type
    row.interval_days = row.interval_weeks = row.interval_months = None
    row.day_of_week = row.day_of_month = None
    row.meter_type = row.threshold_value = None
    row.sensor_field = row.comparison_operator = None

    if isinstance(config, TimeBasedConfig):
        row.interval_days = config.interval_days
        row.interval_weeks = config.interval_weeks
        row.interval_months = config.interval_months
        row.day_of_week = config.day_of_week
        row.day_of_month = config.day_of_month
    elif isinstance(config, UsageBasedConfig):
        row.meter_type = config.meter_type
        row.threshold_value = config.threshold_value
    else:
        row.sensor_field = config.sensor_field
        row.comparison_operator = config.comparison_operator
        row.threshold_value = config.threshold_value


def _to_trigger(row: PMTriggerRow) -> PMTrigger:
    return PMTrigger(
        trigger_id=row.id,
        pm_schedule_id=row.schedule_id,
        config=_config_from_row(row),
        is_active=row.is_active,
        next_due=_utc(row.next_due),
        last_triggered=_utc(row.last_triggered),
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


def _to_work_order(row: WorkOrderRow) -> WorkOrder:
    return WorkOrder(
        work_order_id=row.id,
        title=row.title,
        description=row.description,
        status=row.status,
        priority=row.priority,
        asset_id=row.asset_id,
        organization_id=row.organization_id,
        pm_schedule_id=row.schedule_id,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
        assigned_to_id=row.assigned_to_id,
        tasks=[_to_task(task) for task in row.tasks],
    )


def _to_task(row: WorkOrderTaskRow) -> WorkOrderTask:
    return WorkOrderTask(
        task_id=row.id,
        title=row.title,
        description=row.description,
        procedure=row.procedure,
        order_index=row.order_index,
        status=row.status,
    )


def _to_history(row: MaintenanceHistoryRow) -> MaintenanceHistoryEntry:
    return MaintenanceHistoryEntry(
        entry_id=row.id,
        asset_id=row.asset_id,
        pm_schedule_id=row.schedule_id,
        work_order_id=row.work_order_id,
        title=row.title,
        description=row.description,
        is_completed=row.is_completed,
        created_at=_utc(row.created_at),
        type=row.type,
    )


def _to_reading(row: MeterReadingRow) -> MeterReading:
    return MeterReading(
        reading_id=row.id,
        asset_id=row.asset_id,
        meter_type=row.meter_type,
        value=row.value,
        reading_date=_utc(row.reading_date),
    )


def _to_user(row: UserRow) -> User:
    return User(
        user_id=row.id,
        organization_id=row.organization_id,
        role=row.role,
        name=row.name,
        email=row.email,
    )


class SqlAlchemyPMRepository:
    """Repository for schedules, triggers, work orders and maintenance history."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    # Seeding helpers for collaborator-owned records.

    def add_asset(self, *, organization_id: int, name: str, criticality: AssetCriticality = "MEDIUM") -> Asset:
        with self._session_factory() as session:
            row = AssetRow(organization_id=organization_id, name=name, criticality=criticality)
            session.add(row)
            session.commit()
            return Asset(asset_id=row.id, organization_id=row.organization_id, name=row.name, criticality=row.criticality)

    def add_user(self, *, organization_id: int, role: UserRole, name: str, email: str | None = None) -> User:
        with self._session_factory() as session:
            row = UserRow(organization_id=organization_id, role=role, name=name, email=email)
            session.add(row)
            session.commit()
            return _to_user(row)

    def add_meter_reading(
        self,
        *,
        asset_id: int,
        meter_type: MeterType,
        value: float,
        reading_date: datetime,
    ) -> MeterReading:
        with self._session_factory() as session:
            row = MeterReadingRow(asset_id=asset_id, meter_type=meter_type, value=value, reading_date=_utc(reading_date))
            session.add(row)
            session.commit()
            return _to_reading(row)

    def add_schedule(
        self,
        *,
        asset_id: int,
        title: str,
        description: str | None = None,
        tasks: Iterable[TaskTemplate] = (),
    ) -> PMSchedule:
        with self._session_factory() as session:
            row = PMScheduleRow(asset_id=asset_id, title=title, description=description)
            row.tasks = [
                PMTaskTemplateRow(
                    title=task.title,
                    description=task.description,
                    procedure=task.procedure,
                    order_index=task.order_index,
                )
                for task in tasks
            ]
            session.add(row)
            session.commit()
            schedule_id = row.id
        schedule = self.get_schedule(schedule_id)
        if schedule is None:  # pragma: no cover
            raise KeyError(schedule_id)
        return schedule

    # Collaborator readers.

    def get_asset(self, asset_id: int) -> Asset | None:
        with self._session_factory() as session:
            row = session.get(AssetRow, asset_id)
            if row is None:
                return None
            return Asset(asset_id=row.id, organization_id=row.organization_id, name=row.name, criticality=row.criticality)

    def get_user(self, user_id: int) -> User | None:
        with self._session_factory() as session:
            row = session.get(UserRow, user_id)
            return _to_user(row) if row else None

    def list_users(self, organization_id: int, roles: Iterable[str]) -> list[User]:
        stmt = (
            select(UserRow)
            .where(UserRow.organization_id == organization_id, UserRow.role.in_(list(roles)))
            .order_by(UserRow.id)
        )
        with self._session_factory() as session:
            return [_to_user(row) for row in session.scalars(stmt)]

    def latest_meter_reading(
        self,
        asset_id: int,
        meter_type: str,
        *,
        at_or_before: datetime | None = None,
    ) -> MeterReading | None:
        stmt: Select[tuple[MeterReadingRow]] = select(MeterReadingRow).where(
            MeterReadingRow.asset_id == asset_id,
            MeterReadingRow.meter_type == meter_type,
        )
        if at_or_before is not None:
            stmt = stmt.where(MeterReadingRow.reading_date <= _utc(at_or_before))
        stmt = stmt.order_by(MeterReadingRow.reading_date.desc(), MeterReadingRow.id.desc()).limit(1)
        with self._session_factory() as session:
            row = session.scalar(stmt)
            return _to_reading(row) if row else None

    def list_meter_readings(
        self,
        asset_id: int,
        meter_type: str,
        *,
        after: datetime | None = None,
    ) -> list[MeterReading]:
        stmt = select(MeterReadingRow).where(
            MeterReadingRow.asset_id == asset_id,
            MeterReadingRow.meter_type == meter_type,
        )
        if after is not None:
            stmt = stmt.where(MeterReadingRow.reading_date > _utc(after))
        stmt = stmt.order_by(MeterReadingRow.reading_date, MeterReadingRow.id)
        with self._session_factory() as session:
            return [_to_reading(row) for row in session.scalars(stmt)]

    # Schedules.

    def get_schedule(self, schedule_id: int) -> PMSchedule | None:
        stmt = select(PMScheduleRow).where(PMScheduleRow.id == schedule_id).options(selectinload(PMScheduleRow.tasks))
        with self._session_factory() as session:
            row = session.scalar(stmt)
            if row is None:
                return None
            return PMSchedule(
                schedule_id=row.id,
                asset_id=row.asset_id,
                title=row.title,
                description=row.description,
                tasks=[
                    TaskTemplate(
                        title=task.title,
                        description=task.description,
                        procedure=task.procedure,
                        order_index=task.order_index,
                    )
                    for task in row.tasks
                ],
            )

    def append_schedule_note(self, schedule_id: int, note: str, *, updated_at: datetime) -> None:
        with self._session_factory() as session:
            row = session.get(PMScheduleRow, schedule_id)
            if row is None:
                return
            row.description = f"{row.description or ''}\n\n{note}"
            row.updated_at = _utc(updated_at)
            session.commit()

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
        with self._session_factory() as session:
            row = PMTriggerRow(
                schedule_id=schedule_id,
                is_active=is_active,
                next_due=_utc(next_due),
                created_at=_utc(created_at),
                updated_at=_utc(created_at),
            )
            _apply_config(row, config)
            session.add(row)
            session.commit()
            return _to_trigger(row)

    def get_trigger(self, trigger_id: int) -> PMTrigger | None:
        with self._session_factory() as session:
            row = session.get(PMTriggerRow, trigger_id)
            return _to_trigger(row) if row else None

    def save_trigger(self, trigger: PMTrigger) -> PMTrigger:
        with self._session_factory() as session:
            row = session.get(PMTriggerRow, trigger.trigger_id)
            if row is None:
                raise KeyError(trigger.trigger_id)
            _apply_config(row, trigger.config)
            row.is_active = trigger.is_active
            row.next_due = _utc(trigger.next_due)
            row.last_triggered = _utc(trigger.last_triggered)
            row.updated_at = _utc(trigger.updated_at)
            session.commit()
            return _to_trigger(row)

    def delete_trigger(self, trigger_id: int) -> bool:
        with self._session_factory() as session:
            row = session.get(PMTriggerRow, trigger_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def list_triggers(
        self,
        *,
        schedule_id: int | None = None,
        asset_id: int | None = None,
        trigger_type: str | None = None,
        active_only: bool = False,
    ) -> list[PMTrigger]:
        stmt = select(PMTriggerRow)
        if schedule_id is not None:
            stmt = stmt.where(PMTriggerRow.schedule_id == schedule_id)
        if asset_id is not None:
            stmt = stmt.join(PMScheduleRow, PMScheduleRow.id == PMTriggerRow.schedule_id).where(
                PMScheduleRow.asset_id == asset_id
            )
        if trigger_type:
            stmt = stmt.where(PMTriggerRow.type == trigger_type)
        if active_only:
            stmt = stmt.where(PMTriggerRow.is_active.is_(True))
        stmt = stmt.order_by(PMTriggerRow.created_at, PMTriggerRow.id)
        with self._session_factory() as session:
            return [_to_trigger(row) for row in session.scalars(stmt)]

    def list_triggers_due(
        self,
        end: datetime,
        *,
        start: datetime | None = None,
        inclusive: bool = True,
    ) -> list[PMTrigger]:
        end_bound = _utc(end)
        stmt = select(PMTriggerRow).where(
            PMTriggerRow.is_active.is_(True),
            PMTriggerRow.next_due.is_not(None),
            PMTriggerRow.next_due <= end_bound if inclusive else PMTriggerRow.next_due < end_bound,
        )
        if start is not None:
            stmt = stmt.where(PMTriggerRow.next_due >= _utc(start))
        stmt = stmt.order_by(PMTriggerRow.next_due, PMTriggerRow.id)
        with self._session_factory() as session:
            return [_to_trigger(row) for row in session.scalars(stmt)]

    def set_triggers_active(self, schedule_id: int, is_active: bool, *, updated_at: datetime) -> int:
        stmt = (
            update(PMTriggerRow)
            .where(PMTriggerRow.schedule_id == schedule_id)
            .values(is_active=is_active, updated_at=_utc(updated_at))
        )
        with self._session_factory() as session:
            result = session.execute(stmt)
            session.commit()
            return int(result.rowcount or 0)

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
        with self._session_factory() as session:
            row = WorkOrderRow(
                title=title,
                description=description,
                status=status,
                priority=priority,
                asset_id=asset_id,
                organization_id=organization_id,
                schedule_id=schedule_id,
                assigned_to_id=assigned_to_id,
                created_at=_utc(created_at),
                updated_at=_utc(created_at),
            )
            row.tasks = [
                WorkOrderTaskRow(
                    title=template.title,
                    description=template.description,
                    procedure=template.procedure,
                    order_index=template.order_index,
                    status="NOT_STARTED",
                )
                for template in tasks
            ]
            session.add(row)
            session.commit()
            return _to_work_order(row)

    def get_work_order(self, work_order_id: int) -> WorkOrder | None:
        stmt = select(WorkOrderRow).where(WorkOrderRow.id == work_order_id).options(selectinload(WorkOrderRow.tasks))
        with self._session_factory() as session:
            row = session.scalar(stmt)
            return _to_work_order(row) if row else None

    def list_work_orders(
        self,
        *,
        schedule_id: int | None = None,
        statuses: Iterable[str] | None = None,
        pm_only: bool = False,
    ) -> list[WorkOrder]:
        stmt = select(WorkOrderRow).options(selectinload(WorkOrderRow.tasks))
        if schedule_id is not None:
            stmt = stmt.where(WorkOrderRow.schedule_id == schedule_id)
        if statuses is not None:
            stmt = stmt.where(WorkOrderRow.status.in_(list(statuses)))
        if pm_only:
            stmt = stmt.where(WorkOrderRow.schedule_id.is_not(None))
        stmt = stmt.order_by(WorkOrderRow.created_at, WorkOrderRow.id)
        with self._session_factory() as session:
            return [_to_work_order(row) for row in session.scalars(stmt)]

    def update_work_order(
        self,
        work_order_id: int,
        *,
        updated_at: datetime,
        status: WorkOrderStatus | None = None,
        description: str | None = None,
        assigned_to_id: int | None = None,
    ) -> WorkOrder | None:
        with self._session_factory() as session:
            row = session.get(WorkOrderRow, work_order_id)
            if row is None:
                return None
            if status is not None:
                row.status = status
            if description is not None:
                row.description = description
            if assigned_to_id is not None:
                row.assigned_to_id = assigned_to_id
            row.updated_at = _utc(updated_at)
            session.commit()
            return _to_work_order(row)

    def set_task_status(self, task_id: int, status: TaskStatus) -> WorkOrderTask | None:
        with self._session_factory() as session:
            row = session.get(WorkOrderTaskRow, task_id)
            if row is None:
                return None
            row.status = status
            session.commit()
            return _to_task(row)

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
        with self._session_factory() as session:
            row = MaintenanceHistoryRow(
                asset_id=asset_id,
                schedule_id=schedule_id,
                work_order_id=work_order_id,
                type="PREVENTIVE",
                title=title,
                description=description,
                is_completed=is_completed,
                created_at=_utc(created_at),
            )
            session.add(row)
            session.commit()
            return _to_history(row)

    def list_history(self, *, schedule_id: int, since: datetime | None = None) -> list[MaintenanceHistoryEntry]:
        stmt = select(MaintenanceHistoryRow).where(MaintenanceHistoryRow.schedule_id == schedule_id)
        if since is not None:
            stmt = stmt.where(MaintenanceHistoryRow.created_at >= _utc(since))
        stmt = stmt.order_by(MaintenanceHistoryRow.created_at, MaintenanceHistoryRow.id)
        with self._session_factory() as session:
            return [_to_history(row) for row in session.scalars(stmt)]
