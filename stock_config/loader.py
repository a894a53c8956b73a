"""
Configuration loader (``stock_config.loader``).

Responsibility
--------------
Reads the YAML file and parses it into the frozen dataclasses of
``stock_config.schema``.  Callers use ``stock_config.get_active_config()``;
this module is its implementation and the seam tests use to load a file
from a temporary directory.

Invariants enforced
-------------------
* Unknown keys in a section raise ``ValueError`` instead of being ignored.
* ``compute_checksum`` gives a deterministic SHA-256 of the parsed data so
  the loaded configuration can be matched against a known baseline.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from the schema's ``__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import (
    BatchStatusConfig,
    DatabaseConfig,
    LoggingConfig,
    ReconciliationConfig,
    ScheduleConfig,
    StockConfig,
)
from stock_kernel.domain.types import UnitType


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _section(cls, data: dict[str, Any] | None, name: str):
    data = dict(data or {})
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")
    return cls(**data)


def parse_reconciliation(data: dict[str, Any] | None) -> ReconciliationConfig:
    data = dict(data or {})
    if "continuity_unit" in data:
        data["continuity_unit"] = UnitType(str(data["continuity_unit"]).upper())
    for key in (
        "repair_timeout_base_seconds",
        "repair_timeout_per_batch_seconds",
        "repair_timeout_max_seconds",
    ):
        if key in data:
            data[key] = float(data[key])
    return _section(ReconciliationConfig, data, "reconciliation")


def parse_schedules(data: list[dict[str, Any]] | None) -> tuple[ScheduleConfig, ...]:
    schedules = []
    for item in data or []:
        schedules.append(
            ScheduleConfig(
                name=item["name"],
                task_type=item["task_type"],
                cron=str(item["cron"]),
                enabled=bool(item.get("enabled", True)),
                parameters=dict(item.get("parameters") or {}),
            )
        )
    return tuple(schedules)


def parse_config(
    data: dict[str, Any],
    source: str | None = None,
    database_url: str | None = None,
) -> StockConfig:
    """
    Build a StockConfig from a parsed YAML mapping.

    Args:
        data: The mapping.
        source: Where it came from, for the load trace.
        database_url: Overrides ``database.url`` when given.
    """
    unknown = set(data) - {"database", "reconciliation", "batch_status", "schedules", "logging"}
    if unknown:
        raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")

    database = dict(data.get("database") or {})
    if database_url:
        database["url"] = database_url

    return StockConfig(
        database=_section(DatabaseConfig, database, "database"),
        reconciliation=parse_reconciliation(data.get("reconciliation")),
        batch_status=_section(BatchStatusConfig, data.get("batch_status"), "batch_status"),
        schedules=parse_schedules(data.get("schedules")),
        logging=_section(LoggingConfig, data.get("logging"), "logging"),
        source=source,
        checksum=compute_checksum(data),
    )


def load_config(path: Path, database_url: str | None = None) -> StockConfig:
    """Load and validate one configuration file."""
    return parse_config(load_yaml_file(path), source=str(path), database_url=database_url)


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
