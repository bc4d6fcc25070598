"""Periodic driver for the PM batch passes."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
import logging
from threading import Lock
from typing import TYPE_CHECKING

from .config import Settings
from .observability import PMEngineMetrics, log_event
from .results import BatchReport

if TYPE_CHECKING:
    from .engine import PMEngine

logger = logging.getLogger("pm_engine")

JobAction = Callable[[], list[BatchReport]]

MIN_INTERVAL_SECONDS = 5


@dataclass
class JobRun:
    """Result of one attempt to run a periodic job."""

    name: str
    skipped: bool
    reports: list[BatchReport] = field(default_factory=list)
    error: str | None = None


class PeriodicJob:
    """A batch pass with its own cadence and a skip-if-running guard.

    A job built with `covers` also takes the guards of those jobs, so it is
    skipped while any of them runs and they are skipped while it runs.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        action: JobAction,
        *,
        metrics: PMEngineMetrics,
        scheduled: bool = True,
        covers: Iterable[PeriodicJob] = (),
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self.scheduled = scheduled
        self._action = action
        self._metrics = metrics
        self._lock = Lock()
        self._guards = [self._lock, *(job._lock for job in covers)]

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def run_once(self) -> JobRun:
        if not self._acquire_guards():
            self._metrics.record_scheduler_tick(skipped=True)
            log_event(logger, "pm_scheduler_tick_skipped", level=logging.WARNING, job=self.name)
            return JobRun(name=self.name, skipped=True)

        try:
            reports = self._action()
        except Exception as exc:
            self._metrics.record_scheduler_tick(skipped=False)
            log_event(
                logger,
                "pm_scheduler_job_failed",
                level=logging.ERROR,
                job=self.name,
                error=str(exc) or type(exc).__name__,
            )
            return JobRun(name=self.name, skipped=False, error=str(exc) or type(exc).__name__)
        finally:
            self._release_guards(self._guards)

        self._metrics.record_scheduler_tick(skipped=False)
        return JobRun(name=self.name, skipped=False, reports=reports)

    def _acquire_guards(self) -> bool:
        held: list[Lock] = []
        for guard in self._guards:
            if not guard.acquire(blocking=False):
                self._release_guards(held)
                return False
            held.append(guard)
        return True

    @staticmethod
    def _release_guards(guards: list[Lock]) -> None:
        for guard in reversed(guards):
            guard.release()


class PMScheduler:
    """Owns tick cadence and start/stop lifecycle of the periodic jobs."""

    def __init__(self, jobs: Iterable[PeriodicJob]) -> None:
        self._jobs = {job.name: job for job in jobs}
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def jobs(self) -> dict[str, PeriodicJob]:
        return dict(self._jobs)

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        """Launch one task per scheduled job on the running event loop."""

        if self._tasks:
            return
        for job in self._jobs.values():
            if job.scheduled:
                self._tasks.append(asyncio.create_task(self._tick_loop(job), name=f"pm-scheduler-{job.name}"))
        log_event(logger, "pm_scheduler_started", jobs=[job.name for job in self._jobs.values() if job.scheduled])

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            log_event(logger, "pm_scheduler_stopped", jobs=len(tasks))

    def run_job(self, name: str) -> JobRun:
        """Run a job now through the same overlap guard as its ticks."""

        job = self._jobs.get(name)
        if job is None:
            raise KeyError(name)
        return job.run_once()

    async def _tick_loop(self, job: PeriodicJob) -> None:
        interval_seconds = max(job.interval_seconds, MIN_INTERVAL_SECONDS)
        while True:
            await asyncio.to_thread(job.run_once)
            await asyncio.sleep(interval_seconds)


def build_jobs(engine: PMEngine, settings: Settings, metrics: PMEngineMetrics) -> list[PeriodicJob]:
    def generate_due() -> list[BatchReport]:
        return [engine.generate_for_all_due()]

    def reschedule() -> list[BatchReport]:
        return engine.run_rescheduling()

    def critical_escalations() -> list[BatchReport]:
        return [engine.process_critical_escalations()]

    passes = [
        PeriodicJob("generate-due", settings.generation_interval_seconds, generate_due, metrics=metrics),
        PeriodicJob("reschedule", settings.reschedule_interval_seconds, reschedule, metrics=metrics),
        PeriodicJob(
            "critical-escalations",
            settings.escalation_interval_seconds,
            critical_escalations,
            metrics=metrics,
        ),
    ]
    comprehensive = PeriodicJob(
        "comprehensive",
        0,
        engine.run_comprehensive,
        metrics=metrics,
        scheduled=False,
        covers=passes,
    )
    return [*passes, comprehensive]
