"""Flush-only kernel services.  Callers own the transaction."""

from stock_kernel.services.audit_log import AuditLogService
from stock_kernel.services.batch_store import BatchStoreService
from stock_kernel.services.snapshot_service import InventorySnapshotService

__all__ = [
    "AuditLogService",
    "BatchStoreService",
    "InventorySnapshotService",
]
