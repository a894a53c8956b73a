"""
stock_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services, the scheduler and the CLI receive
    the returned ``StockConfig`` (or one of its sections) by injection and
    never read files or environment variables themselves.

Resolution order:
    1. ``path`` argument, if given.
    2. ``STOCK_CONFIG_PATH`` environment variable.
    3. ``stock_config/defaults.yaml`` shipped with the package.
    ``DATABASE_URL``, when set, overrides ``database.url``.

Failure modes:
    - ``FileNotFoundError`` -- the resolved file does not exist.
    - ``ValueError`` -- schema validation failures.

Audit relevance:
    Every successful call emits a ``config_loaded`` log entry carrying the
    source path and checksum, tying a scan's behaviour to the exact
    configuration that governed it.
"""

from __future__ import annotations

import os
from pathlib import Path

from stock_config.loader import compute_checksum, load_config
from stock_config.schema import (
    BatchStatusConfig,
    DatabaseConfig,
    LoggingConfig,
    ReconciliationConfig,
    ScheduleConfig,
    StockConfig,
)
from stock_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> StockConfig:
    """The ONLY public configuration entrypoint."""
    env_path = os.environ.get("STOCK_CONFIG_PATH")
    resolved = Path(path) if path else Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    config = load_config(resolved, database_url=os.environ.get("DATABASE_URL"))

    logger.info(
        "config_loaded",
        extra={
            "source": str(resolved),
            "checksum": config.checksum,
            "schedules": len(config.schedules),
            "business_timezone": config.reconciliation.business_timezone,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "compute_checksum",
    "StockConfig",
    "DatabaseConfig",
    "ReconciliationConfig",
    "BatchStatusConfig",
    "ScheduleConfig",
    "LoggingConfig",
    "DEFAULT_CONFIG_PATH",
]
