"""
Scheduled tasks: inventory reconciliation.

Each task is a thin adapter from a schedule to one ReconciliationEngine
operation.  ``triggered_by`` defaults to the label the audit trail uses
for that job and may be overridden through schedule parameters.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from stock_services.reconciliation_engine import ReconciliationEngine


class SyncAllTask:
    """Recompute every product's snapshot from its batches."""

    @property
    def task_type(self) -> str:
        return "inventory.sync_all"

    @property
    def description(self) -> str:
        return "Sync inventory snapshots with batch stock"

    def run(
        self,
        engine: ReconciliationEngine,
        parameters: dict[str, Any],
        as_of: datetime,
    ) -> dict[str, Any]:
        return engine.sync_all(
            triggered_by=parameters.get("triggered_by", "scheduled")
        ).to_dict()


class FullAuditTask:
    """Repair batches from sales, then resync snapshots."""

    @property
    def task_type(self) -> str:
        return "inventory.full_audit"

    @property
    def description(self) -> str:
        return "Full inventory audit: batch-vs-sales repair then snapshot sync"

    def run(
        self,
        engine: ReconciliationEngine,
        parameters: dict[str, Any],
        as_of: datetime,
    ) -> dict[str, Any]:
        return engine.full_audit(
            triggered_by=parameters.get("triggered_by", "scheduled")
        ).to_dict()


class DailyIntegrityTask:
    """Integrity sweep; runs a full audit only when issues are found."""

    @property
    def task_type(self) -> str:
        return "inventory.daily_integrity"

    @property
    def description(self) -> str:
        return "Daily batch integrity check with automatic repair"

    def run(
        self,
        engine: ReconciliationEngine,
        parameters: dict[str, Any],
        as_of: datetime,
    ) -> dict[str, Any]:
        return engine.daily_integrity_check(
            triggered_by=parameters.get("triggered_by", "daily_integrity_fix")
        ).to_dict()


class BatchStatusTask:
    """Expire and deplete batches as of the tick, then resync affected products."""

    @property
    def task_type(self) -> str:
        return "inventory.batch_status"

    @property
    def description(self) -> str:
        return "Batch status management (expiry and depletion)"

    def run(
        self,
        engine: ReconciliationEngine,
        parameters: dict[str, Any],
        as_of: datetime,
    ) -> dict[str, Any]:
        return engine.refresh_batch_statuses(
            as_of=as_of,
            triggered_by=parameters.get("triggered_by", "batch_status"),
        ).to_dict()


INVENTORY_TASKS = (SyncAllTask, FullAuditTask, DailyIntegrityTask, BatchStatusTask)
