"""Per-item outcome accumulation for batch passes."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from time import perf_counter
from typing import Any

from .observability import PMEngineMetrics, log_event

logger = logging.getLogger("pm_engine")


@dataclass(frozen=True)
class ItemOutcome:
    """Result of processing one trigger, schedule or work order in a batch."""

    item_id: int
    succeeded: bool
    action: str | None = None
    error: str | None = None


@dataclass
class BatchReport:
    """Outcomes of one batch pass; a failed item never aborts the pass."""

    job: str
    started_at: datetime
    finished_at: datetime | None = None
    outcomes: list[ItemOutcome] = field(default_factory=list)
    work_order_ids: list[int] = field(default_factory=list)

    def record_success(self, item_id: int, action: str, *, work_order_id: int | None = None) -> ItemOutcome:
        outcome = ItemOutcome(item_id=item_id, succeeded=True, action=action)
        self.outcomes.append(outcome)
        if work_order_id is not None:
            self.work_order_ids.append(work_order_id)
        return outcome

    def record_failure(self, item_id: int, error: Exception | str) -> ItemOutcome:
        message = str(error).strip() or type(error).__name__
        if len(message) > 320:
            message = message[:320]
        outcome = ItemOutcome(item_id=item_id, succeeded=False, error=message)
        self.outcomes.append(outcome)
        return outcome

    def finish(self, metrics: PMEngineMetrics, started: float) -> BatchReport:
        """Stamp completion time from a `perf_counter` start and record latency."""

        elapsed_ms = (perf_counter() - started) * 1000.0
        self.finished_at = self.started_at + timedelta(milliseconds=elapsed_ms)
        metrics.record_batch_latency(elapsed_ms)
        log_event(
            logger,
            "pm_batch_completed",
            job=self.job,
            succeeded=self.succeeded_count,
            failed=self.failed_count,
            counts=self.counts,
            latency_ms=round(elapsed_ms, 3),
        )
        return self

    @property
    def succeeded_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed_count(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.succeeded)

    @property
    def counts(self) -> dict[str, int]:
        """Number of successful items per action label."""

        return dict(Counter(outcome.action for outcome in self.outcomes if outcome.succeeded and outcome.action))


def record_item_failure(
    report: BatchReport,
    metrics: PMEngineMetrics,
    item_id: int,
    exc: Exception,
    **fields: Any,
) -> ItemOutcome:
    """Isolate one failed batch item: log it, count it and keep going."""

    outcome = report.record_failure(item_id, exc)
    metrics.record_batch_item_failure()
    log_event(
        logger,
        "pm_batch_item_failed",
        level=logging.ERROR,
        job=report.job,
        item_id=item_id,
        error=outcome.error,
        error_type=type(exc).__name__,
        **fields,
    )
    return outcome
