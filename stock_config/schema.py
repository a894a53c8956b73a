"""
Stock configuration schema.

Frozen dataclasses that the loader builds from YAML.  Every section
validates itself in ``__post_init__`` so a bad file fails at load time,
not halfway through a nightly repair.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from stock_kernel.domain.types import UnitType

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings passed to ``init_engine_from_url``."""

    url: str = "sqlite:///stock.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("database.url must not be empty")
        if self.pool_size <= 0:
            raise ValueError("database.pool_size must be positive")
        if self.max_overflow < 0:
            raise ValueError("database.max_overflow cannot be negative")


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReconciliationConfig:
    """
    Tuning for the reconciliation engine.

    The repair timeout scales with the number of batches the product has:
    ``min(base + per_batch * batch_count, max)``.
    """

    repair_timeout_base_seconds: float = 5.0
    repair_timeout_per_batch_seconds: float = 0.05
    repair_timeout_max_seconds: float = 60.0
    business_timezone: str = "UTC"
    continuity_unit: UnitType = UnitType.PACKS
    continuity_lookback_days: int = 7

    def __post_init__(self) -> None:
        if self.repair_timeout_base_seconds <= 0:
            raise ValueError("repair_timeout_base_seconds must be positive")
        if self.repair_timeout_per_batch_seconds < 0:
            raise ValueError("repair_timeout_per_batch_seconds cannot be negative")
        if self.repair_timeout_max_seconds < self.repair_timeout_base_seconds:
            raise ValueError(
                "repair_timeout_max_seconds must be >= repair_timeout_base_seconds"
            )
        if self.continuity_lookback_days <= 0:
            raise ValueError("continuity_lookback_days must be positive")
        try:
            ZoneInfo(self.business_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(
                f"Unknown business_timezone '{self.business_timezone}'"
            ) from exc

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.business_timezone)

    def repair_timeout(self, batch_count: int) -> float:
        """Seconds a repair of a product with ``batch_count`` batches may take."""
        return min(
            self.repair_timeout_base_seconds
            + self.repair_timeout_per_batch_seconds * batch_count,
            self.repair_timeout_max_seconds,
        )


# ---------------------------------------------------------------------------
# Batch status job
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BatchStatusConfig:
    expiry_alert_days: int = 60

    def __post_init__(self) -> None:
        if self.expiry_alert_days <= 0:
            raise ValueError("expiry_alert_days must be positive")


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScheduleConfig:
    """One recurring job: which task runs, and when (5-field cron)."""

    name: str
    task_type: str
    cron: str
    enabled: bool = True
    parameters: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("schedule name must not be empty")
        if not self.task_type:
            raise ValueError(f"schedule '{self.name}' has no task_type")
        if len(self.cron.split()) != 5:
            raise ValueError(
                f"schedule '{self.name}' cron must have 5 fields, got '{self.cron}'"
            )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self) -> None:
        if self.level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level must be one of {sorted(VALID_LOG_LEVELS)}, got '{self.level}'"
            )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StockConfig:
    """The complete, validated configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    batch_status: BatchStatusConfig = field(default_factory=BatchStatusConfig)
    schedules: tuple[ScheduleConfig, ...] = ()
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: str | None = None
    checksum: str = ""

    def __post_init__(self) -> None:
        names = [s.name for s in self.schedules]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate schedule names: {sorted(duplicates)}")

    def schedule(self, name: str) -> ScheduleConfig | None:
        for s in self.schedules:
            if s.name == name:
                return s
        return None
