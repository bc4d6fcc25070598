"""Structured logging and in-memory metrics for the PM engine."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from threading import Lock
from typing import Any


def configure_logging(level: str) -> None:
    """Install the JSON-line log format once per process."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
    )


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Write an engine event as a single JSON record."""

    payload = {
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        "event": event,
        **fields,
    }
    logger.log(level, json.dumps(payload, default=str, separators=(",", ":")))


class PMEngineMetrics:
    """Thread-safe in-memory metrics for trigger evaluation and rescheduling."""

    STRATEGIES = ("IMMEDIATE", "DELAY", "ESCALATE", "MANUAL")

    def __init__(self) -> None:
        self._lock = Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.triggers_fired_total = 0
            self.triggers_skipped_malformed_total = 0
            self.work_orders_generated_total = 0
            self.generation_skipped_active_total = 0
            self.failures_recorded_total = 0
            self.reschedules_total = {strategy: 0 for strategy in self.STRATEGIES}
            self.critical_escalations_total = 0
            self.notifications_sent_total = 0
            self.notification_failures_total = 0
            self.batch_item_failures_total = 0
            self.scheduler_ticks_total = 0
            self.scheduler_ticks_skipped_total = 0
            self.batch_latency_ms_sum = 0.0
            self.batch_latency_ms_count = 0

    def record_trigger_fired(self) -> None:
        with self._lock:
            self.triggers_fired_total += 1

    def record_trigger_skipped(self) -> None:
        with self._lock:
            self.triggers_skipped_malformed_total += 1

    def record_work_order_generated(self) -> None:
        with self._lock:
            self.work_orders_generated_total += 1

    def record_generation_skipped(self) -> None:
        with self._lock:
            self.generation_skipped_active_total += 1

    def record_failure(self) -> None:
        with self._lock:
            self.failures_recorded_total += 1

    def record_reschedule(self, strategy: str) -> None:
        with self._lock:
            self.reschedules_total[strategy] = self.reschedules_total.get(strategy, 0) + 1

    def record_critical_escalation(self) -> None:
        with self._lock:
            self.critical_escalations_total += 1

    def record_notification(self, *, delivered: bool) -> None:
        with self._lock:
            if delivered:
                self.notifications_sent_total += 1
            else:
                self.notification_failures_total += 1

    def record_batch_item_failure(self) -> None:
        with self._lock:
            self.batch_item_failures_total += 1

    def record_scheduler_tick(self, *, skipped: bool) -> None:
        with self._lock:
            if skipped:
                self.scheduler_ticks_skipped_total += 1
            else:
                self.scheduler_ticks_total += 1

    def record_batch_latency(self, latency_ms: float) -> None:
        with self._lock:
            self.batch_latency_ms_sum += max(latency_ms, 0.0)
            self.batch_latency_ms_count += 1

    def render_prometheus(self) -> str:
        with self._lock:
            lines = [
                "# HELP cmms_pm_engine_triggers_fired_total PM triggers marked fired.",
                "# TYPE cmms_pm_engine_triggers_fired_total counter",
                f"cmms_pm_engine_triggers_fired_total {self.triggers_fired_total}",
                "# HELP cmms_pm_engine_triggers_skipped_malformed_total Trigger records skipped during evaluation.",
                "# TYPE cmms_pm_engine_triggers_skipped_malformed_total counter",
                f"cmms_pm_engine_triggers_skipped_malformed_total {self.triggers_skipped_malformed_total}",
                "# HELP cmms_pm_engine_work_orders_generated_total PM work orders generated.",
                "# TYPE cmms_pm_engine_work_orders_generated_total counter",
                f"cmms_pm_engine_work_orders_generated_total {self.work_orders_generated_total}",
                "# HELP cmms_pm_engine_generation_skipped_active_total Due triggers skipped because of an active work order.",
                "# TYPE cmms_pm_engine_generation_skipped_active_total counter",
                f"cmms_pm_engine_generation_skipped_active_total {self.generation_skipped_active_total}",
                "# HELP cmms_pm_engine_failures_recorded_total PM failures appended to maintenance history.",
                "# TYPE cmms_pm_engine_failures_recorded_total counter",
                f"cmms_pm_engine_failures_recorded_total {self.failures_recorded_total}",
                "# HELP cmms_pm_engine_reschedules_total Reschedules executed per strategy.",
                "# TYPE cmms_pm_engine_reschedules_total counter",
            ]
            for strategy, count in sorted(self.reschedules_total.items()):
                lines.append(f'cmms_pm_engine_reschedules_total{{strategy="{strategy.lower()}"}} {count}')
            lines.extend(
                [
                    "# HELP cmms_pm_engine_critical_escalations_total Critical overdue work orders escalated.",
                    "# TYPE cmms_pm_engine_critical_escalations_total counter",
                    f"cmms_pm_engine_critical_escalations_total {self.critical_escalations_total}",
                    "# HELP cmms_pm_engine_notifications_sent_total Notifications handed to the notifier.",
                    "# TYPE cmms_pm_engine_notifications_sent_total counter",
                    f"cmms_pm_engine_notifications_sent_total {self.notifications_sent_total}",
                    "# HELP cmms_pm_engine_notification_failures_total Notifications the notifier rejected.",
                    "# TYPE cmms_pm_engine_notification_failures_total counter",
                    f"cmms_pm_engine_notification_failures_total {self.notification_failures_total}",
                    "# HELP cmms_pm_engine_batch_item_failures_total Batch items isolated after an error.",
                    "# TYPE cmms_pm_engine_batch_item_failures_total counter",
                    f"cmms_pm_engine_batch_item_failures_total {self.batch_item_failures_total}",
                    "# HELP cmms_pm_engine_scheduler_ticks_total Periodic job runs executed.",
                    "# TYPE cmms_pm_engine_scheduler_ticks_total counter",
                    f"cmms_pm_engine_scheduler_ticks_total {self.scheduler_ticks_total}",
                    "# HELP cmms_pm_engine_scheduler_ticks_skipped_total Periodic job runs skipped while still running.",
                    "# TYPE cmms_pm_engine_scheduler_ticks_skipped_total counter",
                    f"cmms_pm_engine_scheduler_ticks_skipped_total {self.scheduler_ticks_skipped_total}",
                    "# HELP cmms_pm_engine_batch_latency_ms_sum Sum of batch pass latency in milliseconds.",
                    "# TYPE cmms_pm_engine_batch_latency_ms_sum counter",
                    f"cmms_pm_engine_batch_latency_ms_sum {self.batch_latency_ms_sum:.3f}",
                    "# HELP cmms_pm_engine_batch_latency_ms_count Number of batch latency observations.",
                    "# TYPE cmms_pm_engine_batch_latency_ms_count counter",
                    f"cmms_pm_engine_batch_latency_ms_count {self.batch_latency_ms_count}",
                ]
            )
        return "\n".join(lines) + "\n"


_metrics = PMEngineMetrics()


def get_metrics() -> PMEngineMetrics:
    """Return the process-wide PM engine metrics."""

    return _metrics
