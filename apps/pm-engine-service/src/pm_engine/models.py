"""SQLAlchemy models for the PM engine bounded context."""

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class AssetRow(Base):
    """Asset reference mirrored from the asset registry."""

    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    criticality: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM")

    __table_args__ = (
        CheckConstraint(
            "criticality IN ('LOW', 'MEDIUM', 'HIGH', 'IMPORTANT')",
            name="ck_assets_criticality",
        ),
    )


class UserRow(Base):
    """User directory entry."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str | None] = mapped_column(String(254), nullable=True)

    __table_args__ = (CheckConstraint("role IN ('ADMIN', 'MANAGER', 'TECHNICIAN')", name="ck_users_role"),)


class MeterReadingRow(Base):
    """Meter reading for an asset."""

    __tablename__ = "meter_readings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, index=True)
    meter_type: Mapped[str] = mapped_column(String(16), nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    reading_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PMScheduleRow(Base):
    """PM schedule template."""

    __tablename__ = "pm_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id", ondelete="RESTRICT"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    tasks: Mapped[list["PMTaskTemplateRow"]] = relationship(
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="PMTaskTemplateRow.order_index",
    )
    triggers: Mapped[list["PMTriggerRow"]] = relationship(back_populates="schedule", cascade="all, delete-orphan")


class PMTaskTemplateRow(Base):
    """Ordered task template of a PM schedule."""

    __tablename__ = "pm_task_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schedule_id: Mapped[int] = mapped_column(ForeignKey("pm_schedules.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    procedure: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    schedule: Mapped[PMScheduleRow] = relationship(back_populates="tasks")


class PMTriggerRow(Base):
    """Trigger record; only the field group of its type is meaningful."""

    __tablename__ = "pm_triggers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schedule_id: Mapped[int] = mapped_column(ForeignKey("pm_schedules.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    interval_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    interval_weeks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    interval_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    meter_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    threshold_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    sensor_field: Mapped[str | None] = mapped_column(String(128), nullable=True)
    comparison_operator: Mapped[str | None] = mapped_column(String(2), nullable=True)
    next_due: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_triggered: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    schedule: Mapped[PMScheduleRow] = relationship(back_populates="triggers")

    __table_args__ = (
        CheckConstraint(
            "type IN ('TIME_BASED', 'USAGE_BASED', 'CONDITION_BASED')",
            name="ck_pm_triggers_type",
        ),
    )


class WorkOrderRow(Base):
    """Work order; PM-generated rows reference their schedule."""

    __tablename__ = "work_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(250), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="OPEN")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM")
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id", ondelete="RESTRICT"), nullable=False)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False)
    schedule_id: Mapped[int | None] = mapped_column(
        ForeignKey("pm_schedules.id", ondelete="SET NULL"), nullable=True, index=True
    )
    assigned_to_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    tasks: Mapped[list["WorkOrderTaskRow"]] = relationship(
        back_populates="work_order",
        cascade="all, delete-orphan",
        order_by="WorkOrderTaskRow.order_index",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('OPEN', 'IN_PROGRESS', 'ON_HOLD', 'COMPLETED', 'CANCELED')",
            name="ck_work_orders_status",
        ),
        CheckConstraint("priority IN ('LOW', 'MEDIUM', 'HIGH', 'URGENT')", name="ck_work_orders_priority"),
    )


class WorkOrderTaskRow(Base):
    """Checklist task of a work order."""

    __tablename__ = "work_order_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    work_order_id: Mapped[int] = mapped_column(ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    procedure: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="NOT_STARTED")

    work_order: Mapped[WorkOrderRow] = relationship(back_populates="tasks")


class MaintenanceHistoryRow(Base):
    """Append-only maintenance history entry."""

    __tablename__ = "maintenance_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id", ondelete="CASCADE"), nullable=False)
    schedule_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    work_order_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="PREVENTIVE")
    title: Mapped[str] = mapped_column(String(250), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
