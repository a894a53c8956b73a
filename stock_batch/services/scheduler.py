"""
InventoryScheduler -- In-process polling scheduler.

Contract:
    Evaluates every configured schedule on each tick with ``should_fire()``
    (pure) and runs due jobs through their registered InventoryTask.

Architecture: stock_batch/services.  Uses stock_batch.domain.schedule for
    pure evaluation and stock_batch.tasks for execution.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Schedule evaluation is pure (should_fire).
    - A job whose previous run is still in flight is skipped, not queued.
    - Graceful shutdown (respects stop signal between jobs).
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime
from uuid import uuid4

from stock_batch.domain.schedule import compute_next_run, should_fire
from stock_batch.domain.types import JobRunResult, JobRunStatus, JobSchedule
from stock_batch.tasks import TaskRegistry, default_task_registry
from stock_config.schema import StockConfig
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.logging_config import LogContext, get_logger
from stock_services.reconciliation_engine import ReconciliationEngine

logger = get_logger("batch.scheduler")


class InventoryScheduler:
    """In-process polling scheduler for the reconciliation jobs.

    Contract:
        - ``tick()`` evaluates all schedules and runs the due ones.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  Run one
          scheduler process per database.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        schedules: Sequence[JobSchedule],
        registry: TaskRegistry | None = None,
        clock: Clock | None = None,
        tick_interval_seconds: float = 60,
    ):
        self._engine = engine
        self._registry = registry or default_task_registry()
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

        names = [s.job_name for s in schedules]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate job names in schedules: {names}")
        for schedule in schedules:
            # Fails fast on an unknown task type.
            self._registry.get(schedule.task_type)
        self._schedules: dict[str, JobSchedule] = {s.job_name: s for s in schedules}

    @classmethod
    def from_config(
        cls,
        config: StockConfig,
        engine: ReconciliationEngine,
        registry: TaskRegistry | None = None,
        clock: Clock | None = None,
        tick_interval_seconds: float = 60,
    ) -> InventoryScheduler:
        return cls(
            engine=engine,
            schedules=[JobSchedule.from_config(s) for s in config.schedules],
            registry=registry,
            clock=clock,
            tick_interval_seconds=tick_interval_seconds,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def schedules(self) -> tuple[JobSchedule, ...]:
        with self._lock:
            return tuple(self._schedules.values())

    def schedule(self, job_name: str) -> JobSchedule:
        with self._lock:
            return self._schedules[job_name]

    def tick(self, now: datetime | None = None) -> tuple[JobRunResult, ...]:
        """Evaluate and run due schedules (public for testing).

        Returns one JobRunResult per schedule that was due, including
        skipped ones.
        """
        now = now or self._clock.now()
        results: list[JobRunResult] = []

        for schedule in self.schedules:
            if self._stop_event.is_set() and self._thread is not None:
                break
            if not should_fire(schedule, now):
                continue

            if not self._claim(schedule.job_name):
                logger.warning(
                    "job_skipped_in_flight", extra={"job_name": schedule.job_name}
                )
                result = JobRunResult(
                    job_name=schedule.job_name,
                    task_type=schedule.task_type,
                    status=JobRunStatus.SKIPPED,
                    started_at=now,
                    completed_at=now,
                )
                self._advance(schedule.job_name, now, None)
                results.append(result)
                continue

            try:
                result = self._run(schedule, now)
            finally:
                self._release(schedule.job_name)
            self._advance(schedule.job_name, now, result.status)
            results.append(result)

        return tuple(results)

    def run_now(self, job_name: str) -> JobRunResult:
        """Run one job immediately regardless of its schedule."""
        schedule = self.schedule(job_name)
        now = self._clock.now()
        if not self._claim(job_name):
            logger.warning("job_skipped_in_flight", extra={"job_name": job_name})
            return JobRunResult(
                job_name=job_name,
                task_type=schedule.task_type,
                status=JobRunStatus.SKIPPED,
                started_at=now,
                completed_at=now,
            )
        try:
            return self._run(schedule, now)
        finally:
            self._release(job_name)

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="inventory-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "scheduler_started",
            extra={"tick_interval": self._tick_interval, "jobs": len(self._schedules)},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the scheduler to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until ``stop()`` is called or ``timeout`` elapses."""
        return self._stop_event.wait(timeout=timeout)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background polling loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _claim(self, job_name: str) -> bool:
        with self._lock:
            if job_name in self._in_flight:
                return False
            self._in_flight.add(job_name)
            return True

    def _release(self, job_name: str) -> None:
        with self._lock:
            self._in_flight.discard(job_name)

    def _advance(
        self,
        job_name: str,
        now: datetime,
        status: JobRunStatus | None,
    ) -> None:
        with self._lock:
            schedule = self._schedules[job_name]
            changes = {"next_run_at": compute_next_run(schedule.cron_expression, now)}
            if status is not None:
                changes["last_run_at"] = now
                changes["last_run_status"] = status
            self._schedules[job_name] = replace(schedule, **changes)

    def _run(self, schedule: JobSchedule, now: datetime) -> JobRunResult:
        task = self._registry.get(schedule.task_type)
        correlation_id = str(uuid4())

        with LogContext.bind(job_name=schedule.job_name, correlation_id=correlation_id):
            logger.info(
                "job_started",
                extra={"job_name": schedule.job_name, "task_type": schedule.task_type},
            )
            try:
                data = task.run(self._engine, dict(schedule.parameters), now)
            except Exception as exc:
                completed = self._clock.now()
                logger.exception(
                    "job_failed",
                    extra={
                        "job_name": schedule.job_name,
                        "task_type": schedule.task_type,
                    },
                )
                return JobRunResult(
                    job_name=schedule.job_name,
                    task_type=schedule.task_type,
                    status=JobRunStatus.FAILED,
                    started_at=now,
                    completed_at=completed,
                    error_code=getattr(exc, "code", None) or type(exc).__name__,
                    error_message=str(exc),
                    duration_ms=_duration_ms(now, completed),
                    correlation_id=correlation_id,
                )

            completed = self._clock.now()
            logger.info(
                "job_completed",
                extra={
                    "job_name": schedule.job_name,
                    "task_type": schedule.task_type,
                    "duration_ms": _duration_ms(now, completed),
                },
            )
            return JobRunResult(
                job_name=schedule.job_name,
                task_type=schedule.task_type,
                status=JobRunStatus.SUCCEEDED,
                started_at=now,
                completed_at=completed,
                result_data=data,
                duration_ms=_duration_ms(now, completed),
                correlation_id=correlation_id,
            )


def _duration_ms(started: datetime, completed: datetime) -> int:
    return max(int((completed - started).total_seconds() * 1000), 0)
