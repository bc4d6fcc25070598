"""Domain literals and pydantic schemas for the PM engine API."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


TriggerType = Literal["TIME_BASED", "USAGE_BASED", "CONDITION_BASED"]
MeterType = Literal["HOURS", "MILES", "CYCLES", "GALLONS", "TEMPERATURE", "PRESSURE", "VIBRATION", "OTHER"]
ComparisonOperator = Literal[">", ">=", "<", "<=", "=", "!="]
WorkOrderStatus = Literal["OPEN", "IN_PROGRESS", "ON_HOLD", "COMPLETED", "CANCELED"]
WorkOrderPriority = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]
AssetCriticality = Literal["LOW", "MEDIUM", "HIGH", "IMPORTANT"]
TaskStatus = Literal["NOT_STARTED", "IN_PROGRESS", "COMPLETED", "SKIPPED", "FAILED"]
UserRole = Literal["ADMIN", "MANAGER", "TECHNICIAN"]
NotificationLevel = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]
NotificationKind = Literal["ALERT", "WARNING", "INFO"]
RescheduleStrategy = Literal["IMMEDIATE", "DELAY", "ESCALATE", "MANUAL"]
JobName = Literal["generate-due", "reschedule", "critical-escalations", "comprehensive"]

TRIGGER_TYPES: tuple[str, ...] = ("TIME_BASED", "USAGE_BASED", "CONDITION_BASED")
METER_TYPES: tuple[str, ...] = ("HOURS", "MILES", "CYCLES", "GALLONS", "TEMPERATURE", "PRESSURE", "VIBRATION", "OTHER")
COMPARISON_OPERATORS: tuple[str, ...] = (">", ">=", "<", "<=", "=", "!=")
ACTIVE_WORK_ORDER_STATUSES: tuple[str, ...] = ("OPEN", "IN_PROGRESS")


class HealthResponse(BaseModel):
    """Health endpoint response."""

    status: Literal["ok"] = "ok"
    service: str
    version: str
    timestamp: datetime


class TriggerFields(BaseModel):
    """Flat type-specific trigger fields as accepted over HTTP."""

    interval_days: int | None = Field(default=None, ge=1)
    interval_weeks: int | None = Field(default=None, ge=1)
    interval_months: int | None = Field(default=None, ge=1)
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    meter_type: MeterType | None = None
    threshold_value: float | None = None
    sensor_field: str | None = Field(default=None, min_length=1, max_length=128)
    comparison_operator: ComparisonOperator | None = None


class CreateTriggerRequest(TriggerFields):
    """Request body for trigger creation."""

    pm_schedule_id: int = Field(ge=1)
    type: TriggerType
    is_active: bool = True


class UpdateTriggerRequest(TriggerFields):
    """Partial trigger update; omitted fields keep their current value."""

    type: TriggerType | None = None
    is_active: bool | None = None


class TriggerResponse(TriggerFields):
    """Trigger state returned by the API."""

    trigger_id: int
    pm_schedule_id: int
    type: TriggerType
    is_active: bool
    next_due: datetime | None = None
    last_triggered: datetime | None = None
    created_at: datetime
    updated_at: datetime


class TriggerListResponse(BaseModel):
    """List of triggers with count."""

    count: int = Field(ge=0)
    triggers: list[TriggerResponse]


class ConditionEvaluationRequest(BaseModel):
    """Sensor snapshot used to evaluate condition triggers."""

    sensor_data: dict[str, float | int | str | bool | None]


class UsageGenerationRequest(BaseModel):
    """Meter type whose usage triggers should generate work orders."""

    meter_type: MeterType


class GenerateWorkOrderRequest(BaseModel):
    """Optional trigger to mark fired when generating a work order."""

    trigger_id: int | None = Field(default=None, ge=1)


class WorkOrderTaskResponse(BaseModel):
    """Checklist task copied from a PM task template."""

    task_id: int
    title: str
    description: str | None = None
    procedure: str | None = None
    order_index: int
    status: TaskStatus


class WorkOrderResponse(BaseModel):
    """Work order state returned by the API."""

    work_order_id: int
    title: str
    description: str
    status: WorkOrderStatus
    priority: WorkOrderPriority
    asset_id: int
    organization_id: int
    pm_schedule_id: int | None = None
    assigned_to_id: int | None = None
    created_at: datetime
    updated_at: datetime
    tasks: list[WorkOrderTaskResponse] = Field(default_factory=list)


class ItemOutcomeResponse(BaseModel):
    """Per-item result of a batch pass."""

    item_id: int
    succeeded: bool
    action: str | None = None
    error: str | None = None


class BatchReportResponse(BaseModel):
    """Summary of one batch pass."""

    job: str
    started_at: datetime
    finished_at: datetime | None = None
    succeeded: int = Field(ge=0)
    failed: int = Field(ge=0)
    counts: dict[str, int]
    work_order_ids: list[int]
    outcomes: list[ItemOutcomeResponse]


class JobRunResponse(BaseModel):
    """Response for on-demand job runs."""

    job: JobName
    skipped: bool
    reports: list[BatchReportResponse] = Field(default_factory=list)


class FailureStatusResponse(BaseModel):
    """Rolling failure count for a schedule and the rule it selects."""

    pm_schedule_id: int
    failure_count: int = Field(ge=0)
    window_days: int
    trigger_type: TriggerType | None = None
    strategy: RescheduleStrategy | None = None
    notification_level: NotificationLevel | None = None
    delay_days: int | None = None


class ComplianceSummary(BaseModel):
    """Aggregate PM compliance numbers."""

    total_pms: int
    completed_pms: int
    overdue_pms: int
    canceled_pms: int
    compliance_rate: int


class ComplianceReportResponse(BaseModel):
    """PM compliance report for one organization."""

    organization_id: int
    period_days: int
    start_date: datetime
    end_date: datetime
    summary: ComplianceSummary
    criticality_breakdown: dict[str, int]
    task_stats: dict[str, int]
    recommendations: list[str]
