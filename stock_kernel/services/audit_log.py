"""
AuditLogService -- append-only record of automatic corrections.

Responsibility:
    Creates AuditEntry rows for the three kinds of correction the system
    applies without a human: snapshot drift overwritten by sync, batch
    counters rebuilt by repair, and batch statuses changed by the status
    job.  Also serves the small read API an audit-log viewer needs.

Architecture position:
    Kernel > Services -- imperative shell, called by
    InventorySnapshotService, BatchStoreService and ReconciliationEngine.

Invariants enforced:
    - Append-only: entries are never modified or deleted (ORM listeners
      on AuditEntry).
    - An entry is written only when something was actually changed.

Failure modes:
    - ImmutabilityViolationError if a caller later mutates a flushed entry.

Audit relevance:
    This IS the audit trail for self-healing.  Every silently corrected
    value leaves its before and after state here.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.types import (
    BatchRebuildLine,
    BatchStatusChange,
    BatchSalesConsistency,
    UnitType,
    to_plain,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_entry import AuditAction, AuditEntry
from stock_kernel.services.base import BaseService

logger = get_logger("services.audit_log")


class AuditLogService(BaseService):
    """
    Service for recording automatic corrections.

    Contract:
        Domain-specific ``record_*`` methods build the old/new value
        payloads; ``_create_entry`` persists them.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT record ordinary sales or purchases; those are the
          business ledger, not corrections.
    """

    def _create_entry(
        self,
        entity: str,
        entity_id: UUID,
        action: AuditAction,
        triggered_by: str,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """
        Create and flush one audit entry.

        Postconditions:
            - A new AuditEntry row is flushed with created_at from the clock.
        """
        entry = AuditEntry(
            entity=entity,
            entity_id=entity_id,
            action=action,
            old_values=to_plain(old_values) if old_values is not None else None,
            new_values=to_plain(new_values) if new_values is not None else None,
            triggered_by=triggered_by,
            created_at=self.clock.now(),
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "audit_entry_created",
            extra={
                "entity": entity,
                "entity_id": str(entity_id),
                "action": action.value,
                "triggered_by": triggered_by,
            },
        )
        return entry

    # Domain-specific recording methods

    def record_snapshot_correction(
        self,
        snapshot_id: UUID,
        product_id: UUID,
        product_name: str | None,
        unit_type: UnitType,
        before: int | None,
        after: int,
        triggered_by: str,
    ) -> AuditEntry:
        """Record a snapshot row overwritten by sync.

        ``before`` is None when the row did not exist.
        """
        common = {
            "product_id": product_id,
            "product_name": product_name,
            "unit_type": unit_type,
            "triggered_by": triggered_by,
        }
        return self._create_entry(
            entity="InventorySnapshot",
            entity_id=snapshot_id,
            action=AuditAction.AUTO_SYNC_CORRECTION,
            triggered_by=triggered_by,
            old_values={**common, "quantity": before},
            new_values={
                **common,
                "quantity": after,
                "before": before,
                "after": after,
                "delta": after - (before or 0),
            },
        )

    def record_batch_repair(
        self,
        product_id: UUID,
        product_name: str | None,
        triggered_by: str,
        before: BatchSalesConsistency,
        lines: tuple[BatchRebuildLine, ...],
        allocations_rebuilt: int,
        sales_replayed: int,
    ) -> AuditEntry:
        """Record a destructive batch rebuild for one product."""
        sales_total = sum(u.sales_quantity for u in before.units)
        return self._create_entry(
            entity="StockBatch",
            entity_id=product_id,
            action=AuditAction.BATCH_SALES_DISCREPANCY_FIX,
            triggered_by=triggered_by,
            old_values={
                "product_name": product_name,
                "triggered_by": triggered_by,
                "batch_quantity_sold": sum(u.batch_quantity_sold for u in before.units),
                "actual_sales_quantity": sales_total,
                "discrepancy": before.discrepancy,
                "units": [u.to_dict() for u in before.units],
            },
            new_values={
                "product_name": product_name,
                "triggered_by": triggered_by,
                "batch_quantity_sold": sales_total,
                "actual_sales_quantity": sales_total,
                "discrepancy": 0,
                "batches_updated": len(lines),
                "allocations_rebuilt": allocations_rebuilt,
                "sales_replayed": sales_replayed,
                "updates": [
                    {
                        "batch_id": line.batch_id,
                        "batch_number": line.batch_number,
                        "sold_change": line.new_quantity_sold - line.old_quantity_sold,
                        "remaining_change": (
                            line.new_quantity_remaining - line.old_quantity_remaining
                        ),
                        "old_status": line.old_status,
                        "new_status": line.new_status,
                    }
                    for line in lines
                ],
            },
        )

    def record_batch_status_change(
        self,
        change: BatchStatusChange,
        triggered_by: str,
        reason: str,
    ) -> AuditEntry:
        """Record an automatic batch status transition."""
        return self._create_entry(
            entity="StockBatch",
            entity_id=change.batch_id,
            action=AuditAction.BATCH_STATUS_CHANGE,
            triggered_by=triggered_by,
            old_values={"status": change.old_status},
            new_values={
                "status": change.new_status,
                "reason": reason,
                "product_id": change.product_id,
                "batch_number": change.batch_number,
                "quantity_remaining": change.quantity_remaining,
                "expiry_date": change.expiry_date,
            },
        )

    # Read API for the audit-log viewer

    def entries_for(self, entity: str, entity_id: UUID) -> list[AuditEntry]:
        """All entries for one entity, oldest first."""
        return list(
            self.session.execute(
                select(AuditEntry)
                .where(AuditEntry.entity == entity, AuditEntry.entity_id == entity_id)
                .order_by(AuditEntry.created_at, AuditEntry.id)
            ).scalars()
        )

    def recent(
        self,
        limit: int = 50,
        action: AuditAction | None = None,
    ) -> list[AuditEntry]:
        """Most recent entries first, optionally filtered by action."""
        stmt = select(AuditEntry)
        if action is not None:
            stmt = stmt.where(AuditEntry.action == action)
        stmt = stmt.order_by(AuditEntry.created_at.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())
