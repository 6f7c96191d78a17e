"""Leader-gated periodic sweep scheduler.

Timers come from an APScheduler ``BackgroundScheduler``: one job per sweep, each
fired on its own cron trigger and executed on a thread-pool worker, so a slow
sweep never delays another sweep's tick.

Every tick goes through `ScheduledTask.execute()` (timers call it via `fire()`):
  1. Read the gate. Not master -> skip (counted, DEBUG log only).
  2. Try the task's run lock without blocking. Held -> the previous run of this
     same sweep is still in flight; the tick is skipped, not queued.
  3. Run the action. Exceptions are wrapped in `ActionFailure` and handed to
     the error sink; they never reach APScheduler and never cancel the job.

APScheduler's own `max_instances=1` enforces the same skip policy at the
executor level; the run lock additionally covers manual triggers from the
maintenance API.
"""
from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_MISSED,
    JobEvent,
)
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler

from restaurant_ops.config import SWEEP_SETTINGS
from restaurant_ops.exceptions import ActionFailure, ScheduleConfigError
from restaurant_ops.jobs.cron import CronSchedule
from restaurant_ops.utils import get_logger, log_performance
from restaurant_ops.utils.metrics import GLOBAL_SWEEP_METRICS, SweepMetrics
from restaurant_ops.utils.time import utc_now

logger = get_logger(__name__)

ErrorSink = Callable[[ActionFailure], None]


class MasterStatusReader(Protocol):
    def is_master(self) -> bool: ...


class TaskState(str, enum.Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"


class TickOutcome(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED_NOT_MASTER = "skipped_not_master"
    SKIPPED_OVERLAP = "skipped_overlap"


@dataclass(frozen=True, slots=True)
class TickResult:
    """Outcome of one tick plus the value its own action returned (None unless completed)."""
    outcome: TickOutcome
    result: Any = None


def log_action_failure(failure: ActionFailure) -> None:
    logger.error(
        "Sweep failed; next scheduled tick will retry",
        task=failure.task_name,
        error=str(failure.cause),
        error_type=type(failure.cause).__name__,
        exc_info=failure.cause,
    )


class ScheduledTask:
    """One registered sweep: schedule + action + run lock + error sink."""

    def __init__(
        self,
        name: str,
        schedule: CronSchedule,
        action: Callable[[], Any],
        gate: MasterStatusReader,
        *,
        scheduler: BaseScheduler,
        error_sink: ErrorSink = log_action_failure,
        metrics: SweepMetrics = GLOBAL_SWEEP_METRICS,
        misfire_grace_seconds: Optional[int] = None,
    ) -> None:
        self.name = name
        self.schedule = schedule
        self.action = action
        self._gate = gate
        self._scheduler = scheduler
        self._error_sink = error_sink
        self._metrics = metrics
        self._misfire_grace_seconds = int(
            misfire_grace_seconds if misfire_grace_seconds is not None else SWEEP_SETTINGS.get("misfire_grace_seconds", 60)
        )
        self._state = TaskState.STOPPED
        self._state_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self.last_result: Any = None

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._run_lock.locked()

    def start(self) -> None:
        with self._state_lock:
            if self._state == TaskState.RUNNING:
                return
            self._scheduler.add_job(
                self.fire,
                trigger=self.schedule.trigger,
                id=self.name,
                name=f"sweep:{self.name}",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=self._misfire_grace_seconds,
                replace_existing=True,
            )
            self._state = TaskState.RUNNING
        logger.info(
            "Sweep scheduled",
            task=self.name,
            expression=self.schedule.expression,
            timezone=self.schedule.timezone,
        )

    def stop(self) -> None:
        """Cancel future ticks. A run already in flight finishes normally."""
        with self._state_lock:
            if self._state == TaskState.STOPPED:
                return
            try:
                self._scheduler.remove_job(self.name)
            except JobLookupError:
                pass
            self._state = TaskState.STOPPED
        logger.info("Sweep unscheduled", task=self.name, in_flight=self.in_flight)

    def fire(self) -> TickOutcome:
        """Timer entry point registered with APScheduler."""
        return self.execute().outcome

    def execute(self) -> TickResult:
        if not self._gate.is_master():
            self._metrics.record_skip(self.name, reason="not_master")
            logger.debug("Not master; skipping sweep tick", task=self.name)
            return TickResult(TickOutcome.SKIPPED_NOT_MASTER)
        if not self._run_lock.acquire(blocking=False):
            self._metrics.record_skip(self.name, reason="overlap")
            logger.warning("Previous run still in flight; skipping tick", task=self.name)
            return TickResult(TickOutcome.SKIPPED_OVERLAP)
        try:
            return self._run()
        finally:
            self._run_lock.release()

    def _run(self) -> TickResult:
        logger.info("I am the master, sweep started", task=self.name)
        self._metrics.record_started(self.name)
        started = time.perf_counter()
        try:
            result = self.action()
        except Exception as e:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            failure = ActionFailure(self.name, e)
            self._metrics.record_failure(self.name, duration_ms, str(failure))
            self._report(failure)
            return TickResult(TickOutcome.FAILED)

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        self.last_result = result
        self._metrics.record_success(self.name, duration_ms)
        log_performance(f"sweep.{self.name}", duration_ms)
        logger.info("Sweep completed", task=self.name, duration_ms=duration_ms, result=result)
        return TickResult(TickOutcome.COMPLETED, result)

    def _report(self, failure: ActionFailure) -> None:
        try:
            self._error_sink(failure)
        except Exception as e:
            logger.error("Sweep error sink raised", task=self.name, error=str(e), exc_info=True)

    def next_fire_time(self, now: datetime | None = None) -> datetime | None:
        return self.schedule.next_fire_time(now or utc_now())

    def snapshot(self, now: datetime | None = None) -> dict:
        next_fire = self.next_fire_time(now) if self._state == TaskState.RUNNING else None
        return {
            "name": self.name,
            "state": self._state.value,
            "expression": self.schedule.expression,
            "timezone": self.schedule.timezone,
            "in_flight": self.in_flight,
            "next_fire_time": next_fire.isoformat() if next_fire else None,
        }


class ReconciliationScheduler:
    def __init__(
        self,
        gate: MasterStatusReader,
        *,
        scheduler: Optional[BaseScheduler] = None,
        error_sink: ErrorSink = log_action_failure,
        metrics: SweepMetrics = GLOBAL_SWEEP_METRICS,
        max_workers: Optional[int] = None,
        misfire_grace_seconds: Optional[int] = None,
    ) -> None:
        self.gate = gate
        self.metrics = metrics
        self._error_sink = error_sink
        self._misfire_grace_seconds = misfire_grace_seconds
        if scheduler is None:
            workers = int(max_workers if max_workers is not None else SWEEP_SETTINGS.get("max_workers", 4))
            scheduler = BackgroundScheduler(
                executors={"default": ThreadPoolExecutor(max_workers=workers)},
                job_defaults={"coalesce": True, "max_instances": 1},
            )
        self._scheduler = scheduler
        self._scheduler.add_listener(self._on_job_event, EVENT_JOB_MAX_INSTANCES | EVENT_JOB_MISSED | EVENT_JOB_ERROR)
        self._tasks: dict[str, ScheduledTask] = {}
        self._lock = threading.Lock()

    @property
    def tasks(self) -> dict[str, ScheduledTask]:
        return dict(self._tasks)

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def get(self, name: str) -> ScheduledTask | None:
        return self._tasks.get(name)

    def schedule(
        self,
        cron_expression: str,
        timezone: str,
        action: Callable[[], Any],
        *,
        name: Optional[str] = None,
    ) -> ScheduledTask:
        """Register a recurring sweep. Returns a stopped handle; call ``start()`` on it."""
        if not callable(action):
            raise ScheduleConfigError("Sweep action must be callable")
        schedule = CronSchedule.parse(cron_expression, timezone)
        task_name = name or getattr(action, "__name__", None) or "sweep"
        with self._lock:
            if task_name in self._tasks:
                raise ScheduleConfigError(f"Sweep '{task_name}' is already registered")
            task = ScheduledTask(
                task_name,
                schedule,
                action,
                self.gate,
                scheduler=self._scheduler,
                error_sink=self._error_sink,
                metrics=self.metrics,
                misfire_grace_seconds=self._misfire_grace_seconds,
            )
            self._tasks[task_name] = task
        return task

    def start(self) -> None:
        if self._scheduler.running:
            return
        self._scheduler.start()
        logger.info("Sweep scheduler started", tasks=sorted(self._tasks))

    def shutdown(self, *, wait: bool = False) -> None:
        for task in self._tasks.values():
            task.stop()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        logger.info("Sweep scheduler stopped")

    def snapshot(self, now: datetime | None = None) -> list[dict]:
        return [task.snapshot(now) for task in self._tasks.values()]

    def _on_job_event(self, event: JobEvent) -> None:
        task_name = getattr(event, "job_id", None)
        if event.code == EVENT_JOB_MAX_INSTANCES:
            if task_name:
                self.metrics.record_skip(task_name, reason="overlap")
            logger.warning("Previous run still in flight; skipping tick", task=task_name)
        elif event.code == EVENT_JOB_MISSED:
            logger.warning(
                "Sweep tick missed its grace window",
                task=task_name,
                scheduled_run_time=str(getattr(event, "scheduled_run_time", None)),
            )
        elif event.code == EVENT_JOB_ERROR:  # pragma: no cover - fire() catches action errors
            logger.error("Sweep job raised inside scheduler", task=task_name, error=str(getattr(event, "exception", None)))


__all__ = [
    "MasterStatusReader",
    "TaskState",
    "TickOutcome",
    "TickResult",
    "ScheduledTask",
    "ReconciliationScheduler",
    "log_action_failure",
]
