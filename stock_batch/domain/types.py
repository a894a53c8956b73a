"""
stock_batch.domain.types -- Pure frozen dataclasses for scheduling.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from stock_config.schema import ScheduleConfig


class JobRunStatus(str, Enum):
    """Outcome of one scheduled run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Previous run of the same job still in flight


@dataclass(frozen=True)
class JobSchedule:
    """Immutable snapshot of a recurring job schedule.

    The scheduler replaces the snapshot after every evaluation; nothing
    mutates it in place.
    """

    job_name: str
    task_type: str  # Registered task key (e.g., "inventory.sync_all")
    cron_expression: str
    parameters: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_run_status: JobRunStatus | None = None

    @classmethod
    def from_config(cls, config: ScheduleConfig) -> JobSchedule:
        return cls(
            job_name=config.name,
            task_type=config.task_type,
            cron_expression=config.cron,
            parameters=dict(config.parameters),
            is_active=config.enabled,
        )


@dataclass(frozen=True)
class JobRunResult:
    """Immutable result of one scheduled run."""

    job_name: str
    task_type: str
    status: JobRunStatus
    started_at: datetime
    completed_at: datetime
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None
    duration_ms: int = 0
    correlation_id: str | None = None
