"""
Pure schedule evaluation functions.

Contract:
    ``should_fire(schedule, as_of)`` and ``compute_next_run()`` are PURE --
    no I/O, no side effects.  The scheduler supplies the current time from
    its injected clock.

Architecture: stock_batch/domain.  ZERO I/O.

Cron expressions are evaluated against the timestamp as given.  The
scheduler passes UTC, so ``0 2 * * *`` means 02:00 UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from stock_batch.domain.types import JobSchedule


# =============================================================================
# CronSpec (lightweight cron parser)
# =============================================================================


@dataclass(frozen=True)
class CronSpec:
    """Parsed cron expression (minute hour day_of_month month day_of_week).

    Each field is a frozenset of valid integer values.
    Supports: *, values, lists (1,15), ranges (1-5), steps (*/5, 1-10/2).
    """

    minutes: frozenset[int] = field(default_factory=lambda: frozenset(range(60)))
    hours: frozenset[int] = field(default_factory=lambda: frozenset(range(24)))
    days_of_month: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 32)))
    months: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 13)))
    days_of_week: frozenset[int] = field(default_factory=lambda: frozenset(range(7)))


def _parse_bound(value: str, min_val: int, max_val: int) -> int:
    v = int(value)
    if v < min_val or v > max_val:
        raise ValueError(f"Value {v} outside range [{min_val}, {max_val}]")
    return v


def _parse_cron_field(field_str: str, min_val: int, max_val: int) -> frozenset[int]:
    """Parse a single cron field into a frozenset of valid values.

    Supports:
        * -- all values
        N -- single value
        N-M -- range
        */N -- step from min
        N-M/S -- range with step

    Raises:
        ValueError: If the field is syntactically invalid or values out of range.
    """
    values: set[int] = set()

    for part in field_str.split(","):
        part = part.strip()
        if not part:
            raise ValueError(f"Empty element in cron field '{field_str}'")

        step = 1
        if "/" in part:
            part, step_str = part.split("/", 1)
            step = int(step_str)
            if step <= 0:
                raise ValueError(f"Step must be positive: {step}")

        if part == "*":
            start, end = min_val, max_val
        elif "-" in part:
            s, e = part.split("-", 1)
            start = _parse_bound(s, min_val, max_val)
            end = _parse_bound(e, min_val, max_val)
            if start > end:
                raise ValueError(f"Range start > end: {start}-{end}")
        else:
            start = _parse_bound(part, min_val, max_val)
            end = max_val if step > 1 else start

        values.update(range(start, end + 1, step))

    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse a 5-field cron expression into a CronSpec.

    Format: ``minute hour day_of_month month day_of_week``

    Raises:
        ValueError: If expression is malformed.
    """
    parts = expression.strip().split()
    if len(parts) != 5:
        raise ValueError(
            f"Cron expression must have 5 fields, got {len(parts)}: '{expression}'"
        )

    return CronSpec(
        minutes=_parse_cron_field(parts[0], 0, 59),
        hours=_parse_cron_field(parts[1], 0, 23),
        days_of_month=_parse_cron_field(parts[2], 1, 31),
        months=_parse_cron_field(parts[3], 1, 12),
        days_of_week=_parse_cron_field(parts[4], 0, 6),
    )


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    """Check if a datetime matches a cron spec.

    Cron convention: 0=Sunday, 1=Monday, ..., 6=Saturday.
    Python datetime.weekday(): 0=Monday, ..., 6=Sunday.
    """
    cron_dow = (dt.weekday() + 1) % 7
    return (
        dt.minute in spec.minutes
        and dt.hour in spec.hours
        and dt.day in spec.days_of_month
        and dt.month in spec.months
        and cron_dow in spec.days_of_week
    )


# =============================================================================
# Schedule evaluation (pure)
# =============================================================================


def should_fire(schedule: JobSchedule, as_of: datetime) -> bool:
    """Determine if a schedule should fire at the given time.

    Rules:
        - Inactive schedules never fire.
        - Once ``next_run_at`` is known the schedule fires when
          ``as_of >= next_run_at``, so a late tick catches up instead of
          skipping the slot.
        - Before the first evaluation the cron expression must match
          ``as_of`` itself.
        - An unparseable cron expression never fires.
    """
    if not schedule.is_active:
        return False

    if schedule.next_run_at is not None:
        return as_of >= schedule.next_run_at

    try:
        spec = parse_cron(schedule.cron_expression)
    except ValueError:
        return False
    return matches_cron(spec, as_of)


def compute_next_run(cron_expression: str, after: datetime) -> datetime:
    """First minute strictly after ``after`` that matches the expression.

    Raises:
        ValueError: If the expression is malformed or never matches
            within 366 days.
    """
    return _next_cron_match(parse_cron(cron_expression), after)


def _next_cron_match(spec: CronSpec, after: datetime) -> datetime:
    """Scan minute-by-minute up to 366 days for the next match."""
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    max_iterations = 366 * 24 * 60

    for _ in range(max_iterations):
        if matches_cron(spec, candidate):
            return candidate
        candidate += timedelta(minutes=1)

    raise ValueError(f"No cron match found within 366 days after {after}")
