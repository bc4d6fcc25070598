"""HTTP routes for the PM engine service."""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, HTTPException, Query, Response
from fastapi.responses import PlainTextResponse

from .compliance import ComplianceReport
from .config import get_settings
from .engine import PMEngine, build_store
from .errors import InvalidConfigurationError, NotFoundError, PMEngineError
from .observability import get_metrics, log_event
from .results import BatchReport
from .schemas import (
    BatchReportResponse,
    ComplianceReportResponse,
    ComplianceSummary,
    ConditionEvaluationRequest,
    CreateTriggerRequest,
    FailureStatusResponse,
    GenerateWorkOrderRequest,
    HealthResponse,
    ItemOutcomeResponse,
    JobName,
    JobRunResponse,
    TriggerListResponse,
    TriggerResponse,
    UpdateTriggerRequest,
    UsageGenerationRequest,
    WorkOrderResponse,
    WorkOrderTaskResponse,
)
from .store import PMTrigger, WorkOrder
from .triggers import CONFIG_FIELDS, config_fields

router = APIRouter()
logger = logging.getLogger("pm_engine")

_settings = get_settings()
_store = build_store(_settings)
_metrics = get_metrics()
_engine = PMEngine(settings=_settings, store=_store, metrics=_metrics)


def _http_error(exc: PMEngineError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidConfigurationError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _trigger_response(trigger: PMTrigger) -> TriggerResponse:
    return TriggerResponse(
        trigger_id=trigger.trigger_id,
        pm_schedule_id=trigger.pm_schedule_id,
        type=trigger.trigger_type,
        is_active=trigger.is_active,
        next_due=trigger.next_due,
        last_triggered=trigger.last_triggered,
        created_at=trigger.created_at,
        updated_at=trigger.updated_at,
        **config_fields(trigger.config),
    )


def _trigger_list(triggers: list[PMTrigger]) -> TriggerListResponse:
    return TriggerListResponse(count=len(triggers), triggers=[_trigger_response(trigger) for trigger in triggers])


def _work_order_response(work_order: WorkOrder) -> WorkOrderResponse:
    return WorkOrderResponse(
        work_order_id=work_order.work_order_id,
        title=work_order.title,
        description=work_order.description,
        status=work_order.status,
        priority=work_order.priority,
        asset_id=work_order.asset_id,
        organization_id=work_order.organization_id,
        pm_schedule_id=work_order.pm_schedule_id,
        assigned_to_id=work_order.assigned_to_id,
        created_at=work_order.created_at,
        updated_at=work_order.updated_at,
        tasks=[
            WorkOrderTaskResponse(
                task_id=task.task_id,
                title=task.title,
                description=task.description,
                procedure=task.procedure,
                order_index=task.order_index,
                status=task.status,
            )
            for task in work_order.tasks
        ],
    )


def _batch_response(report: BatchReport) -> BatchReportResponse:
    return BatchReportResponse(
        job=report.job,
        started_at=report.started_at,
        finished_at=report.finished_at,
        succeeded=report.succeeded_count,
        failed=report.failed_count,
        counts=report.counts,
        work_order_ids=list(report.work_order_ids),
        outcomes=[
            ItemOutcomeResponse(
                item_id=outcome.item_id,
                succeeded=outcome.succeeded,
                action=outcome.action,
                error=outcome.error,
            )
            for outcome in report.outcomes
        ],
    )


def _compliance_response(report: ComplianceReport) -> ComplianceReportResponse:
    return ComplianceReportResponse(
        organization_id=report.organization_id,
        period_days=report.period_days,
        start_date=report.start_date,
        end_date=report.end_date,
        summary=ComplianceSummary(
            total_pms=report.total_pms,
            completed_pms=report.completed_pms,
            overdue_pms=report.overdue_pms,
            canceled_pms=report.canceled_pms,
            compliance_rate=report.compliance_rate,
        ),
        criticality_breakdown=report.criticality_breakdown,
        task_stats=report.task_stats,
        recommendations=report.recommendations,
    )


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(
        service=_settings.service_name,
        version=_settings.service_version,
        timestamp=datetime.now(tz=timezone.utc),
    )


@router.get("/metrics", response_class=PlainTextResponse)
def metrics() -> str:
    if not _settings.metrics_enabled:
        raise HTTPException(status_code=404, detail="metrics endpoint disabled")
    return _metrics.render_prometheus()


@router.post("/triggers", response_model=TriggerResponse, status_code=201)
def create_trigger(payload: CreateTriggerRequest) -> TriggerResponse:
    try:
        trigger = _engine.create_trigger(
            payload.pm_schedule_id,
            payload.type,
            payload.model_dump(include=set(CONFIG_FIELDS)),
            is_active=payload.is_active,
        )
    except PMEngineError as exc:
        raise _http_error(exc) from exc
    return _trigger_response(trigger)


@router.put("/triggers/{trigger_id}", response_model=TriggerResponse)
def update_trigger(trigger_id: int, payload: UpdateTriggerRequest) -> TriggerResponse:
    try:
        trigger = _engine.update_trigger(trigger_id, payload.model_dump(exclude_unset=True))
    except PMEngineError as exc:
        raise _http_error(exc) from exc
    return _trigger_response(trigger)


@router.delete("/triggers/{trigger_id}", status_code=204)
def delete_trigger(trigger_id: int) -> Response:
    try:
        _engine.delete_trigger(trigger_id)
    except PMEngineError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@router.post("/triggers/{trigger_id}/fired", response_model=TriggerResponse)
def mark_trigger_fired(trigger_id: int) -> TriggerResponse:
    try:
        trigger = _engine.mark_fired(trigger_id)
    except PMEngineError as exc:
        raise _http_error(exc) from exc
    return _trigger_response(trigger)


@router.get("/pm-schedules/{schedule_id}/triggers", response_model=TriggerListResponse)
def list_schedule_triggers(schedule_id: int) -> TriggerListResponse:
    try:
        triggers = _engine.list_triggers(schedule_id)
    except PMEngineError as exc:
        raise _http_error(exc) from exc
    return _trigger_list(triggers)


@router.get("/triggers/evaluate/due", response_model=TriggerListResponse)
def evaluate_due_triggers(now: datetime | None = Query(default=None)) -> TriggerListResponse:
    return _trigger_list(_engine.due_time_triggers(now=_as_utc(now)))


@router.get("/triggers/evaluate/usage/{asset_id}", response_model=TriggerListResponse)
def evaluate_usage_triggers(asset_id: int) -> TriggerListResponse:
    return _trigger_list(_engine.due_usage_triggers(asset_id))


@router.post("/triggers/evaluate/condition/{asset_id}", response_model=TriggerListResponse)
def evaluate_condition_triggers(asset_id: int, payload: ConditionEvaluationRequest) -> TriggerListResponse:
    return _trigger_list(_engine.due_condition_triggers(asset_id, payload.sensor_data))


@router.get("/triggers/upcoming", response_model=TriggerListResponse)
def upcoming_triggers(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
) -> TriggerListResponse:
    start, end = _as_utc(start), _as_utc(end)
    if start is not None and end is not None and end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    return _trigger_list(_engine.upcoming_triggers(start=start, end=end))


@router.post("/pm-schedules/{schedule_id}/work-orders", response_model=WorkOrderResponse, status_code=201)
def generate_work_order(schedule_id: int, payload: GenerateWorkOrderRequest | None = None) -> WorkOrderResponse:
    trigger_id = payload.trigger_id if payload else None
    try:
        work_order = _engine.generate_work_order(schedule_id, trigger_id)
    except PMEngineError as exc:
        raise _http_error(exc) from exc
    return _work_order_response(work_order)


@router.post("/assets/{asset_id}/work-orders/usage", response_model=BatchReportResponse)
def generate_from_usage(asset_id: int, payload: UsageGenerationRequest) -> BatchReportResponse:
    return _batch_response(_engine.generate_from_usage(asset_id, payload.meter_type))


@router.post("/assets/{asset_id}/work-orders/condition", response_model=BatchReportResponse)
def generate_from_condition(asset_id: int, payload: ConditionEvaluationRequest) -> BatchReportResponse:
    return _batch_response(_engine.generate_from_condition(asset_id, payload.sensor_data))


@router.post("/work-orders/{work_order_id}/complete", response_model=WorkOrderResponse)
def complete_work_order(work_order_id: int) -> WorkOrderResponse:
    try:
        work_order = _engine.complete_work_order(work_order_id)
    except PMEngineError as exc:
        raise _http_error(exc) from exc
    return _work_order_response(work_order)


@router.get("/pm-schedules/{schedule_id}/failures", response_model=FailureStatusResponse)
def failure_status(schedule_id: int) -> FailureStatusResponse:
    try:
        status = _engine.failure_status(schedule_id)
    except PMEngineError as exc:
        raise _http_error(exc) from exc
    rule = status.rule
    return FailureStatusResponse(
        pm_schedule_id=status.pm_schedule_id,
        failure_count=status.failure_count,
        window_days=status.window_days,
        trigger_type=status.trigger_type,
        strategy=rule.strategy if rule else None,
        notification_level=rule.notification_level if rule else None,
        delay_days=rule.delay_days if rule else None,
    )


@router.post("/runs/{job}", response_model=JobRunResponse)
def run_job(job: JobName) -> JobRunResponse:
    run = _engine.run_job(job)
    if run.error is not None:
        raise HTTPException(status_code=500, detail=f"{job} failed: {run.error}")
    log_event(logger, "pm_job_run_requested", job=job, skipped=run.skipped)
    return JobRunResponse(job=job, skipped=run.skipped, reports=[_batch_response(report) for report in run.reports])


@router.get("/reports/compliance", response_model=ComplianceReportResponse)
def compliance_report(
    organization_id: int = Query(ge=1),
    days: int = Query(default=30, ge=1, le=365),
) -> ComplianceReportResponse:
    return _compliance_response(_engine.compliance_report(organization_id, days=days))
