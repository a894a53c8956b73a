"""
stock_batch.domain -- Pure types and cron evaluation for scheduling.

ZERO I/O.  All types are frozen dataclasses.
"""

from stock_batch.domain.schedule import (
    CronSpec,
    compute_next_run,
    matches_cron,
    parse_cron,
    should_fire,
)
from stock_batch.domain.types import JobRunResult, JobRunStatus, JobSchedule

__all__ = [
    "CronSpec",
    "JobRunResult",
    "JobRunStatus",
    "JobSchedule",
    "compute_next_run",
    "matches_cron",
    "parse_cron",
    "should_fire",
]
