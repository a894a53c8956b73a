"""
InventorySnapshotService -- keeps the per-product stock cache in step with
the batches.

Responsibility:
    Recomputes snapshot rows from eligible batches (``sync_product``) and
    applies the incremental updates that sales and purchases make inside
    their own transactions (``adjust``).

Architecture position:
    Kernel > Services -- imperative shell.  Called by BatchAllocator,
    BatchStoreService and ReconciliationEngine.

Invariants enforced:
    - After ``sync_product``, every snapshot row of the product equals
      sum(quantity_remaining) over its eligible batches of the same unit.
    - Sync touches snapshot rows only.  Batches, allocations and sales are
      read, never written.
    - Sync is idempotent: a second call finds nothing to correct and
      writes nothing.

Failure modes:
    - IntegrityError if two transactions create the same (product, unit)
      row concurrently; the loser's transaction rolls back and the next
      sync picks the product up again.

Audit relevance:
    Each overwritten value produces one AUTO_SYNC_CORRECTION entry and a
    DiscrepancyCorrected event carrying before, after and delta.
"""

from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.clock import Clock
from stock_kernel.domain.events import DiscrepancyCorrected
from stock_kernel.domain.types import SnapshotLine, SyncResult, UnitType
from stock_kernel.logging_config import get_logger
from stock_kernel.models.inventory import InventorySnapshot
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.audit_log import AuditLogService
from stock_kernel.services.base import BaseService

logger = get_logger("services.snapshot")


class InventorySnapshotService(BaseService):
    """
    Maintains InventorySnapshot rows.

    Contract:
        ``sync_product`` reads batches without locks and overwrites the
        product's snapshot rows; ``adjust`` is used by writers that already
        hold the product's batch lock.

    Non-goals:
        - Does NOT decide what counts as stock; it uses ELIGIBLE_STATUSES
          through StockSelector.
    """

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._selector = StockSelector(session)
        self._audit = AuditLogService(session, self.clock)

    def sync_product(self, product_id: UUID, triggered_by: str = "manual") -> SyncResult:
        """
        Overwrite the product's snapshot rows with values computed from batches.

        Covers every unit type that has batches or an existing snapshot row.
        A missing row is created.  Holding stock with no row, or a row whose
        value differs, counts as a discrepancy and is audited.
        """
        computed = self._selector.eligible_remaining_by_unit(product_id)
        rows = self._selector.snapshot_rows(product_id)
        units = sorted(
            self._selector.batch_units(product_id) | set(rows),
            key=lambda u: u.value,
        )

        now = self.clock.now()
        lines: list[SnapshotLine] = []
        corrections: list[DiscrepancyCorrected] = []
        product_name: str | None = None

        for unit in units:
            value = computed.get(unit, 0)
            row = rows.get(unit)
            before = row.quantity if row is not None else None
            lines.append(SnapshotLine(unit_type=unit, cached=before, computed=value))

            if row is not None and row.quantity == value:
                continue

            if row is None:
                row = InventorySnapshot(
                    product_id=product_id,
                    unit_type=unit,
                    quantity=value,
                    last_updated=now,
                )
                self.session.add(row)
            else:
                row.quantity = value
                row.last_updated = now
            self.session.flush()

            if before is None and value == 0:
                continue

            if product_name is None:
                product_name = self._selector.product_name(product_id)
            entry = self._audit.record_snapshot_correction(
                snapshot_id=row.id,
                product_id=product_id,
                product_name=product_name,
                unit_type=unit,
                before=before,
                after=value,
                triggered_by=triggered_by,
            )
            event = DiscrepancyCorrected(
                product_id=product_id,
                unit_type=unit,
                before=before,
                after=value,
                triggered_by=triggered_by,
                corrected_at=now,
                audit_entry_id=entry.id,
            )
            corrections.append(event)
            logger.warning(
                "snapshot_discrepancy_corrected",
                extra={
                    "product_id": str(product_id),
                    "unit_type": unit.value,
                    "before": before,
                    "after": value,
                    "delta": event.delta,
                    "triggered_by": triggered_by,
                },
            )

        return SyncResult(
            product_id=product_id,
            triggered_by=triggered_by,
            lines=tuple(lines),
            corrections=tuple(corrections),
        )

    def adjust(self, product_id: UUID, unit_type: UnitType, delta: int) -> int:
        """
        Apply an incremental change to one snapshot row.

        The caller has already flushed its batch changes.  If the row does
        not exist yet it is created from a fresh recompute, which already
        reflects those changes, so ``delta`` is not applied on top.

        Returns:
            The row's new quantity.
        """
        row = self.session.execute(
            select(InventorySnapshot)
            .where(
                InventorySnapshot.product_id == product_id,
                InventorySnapshot.unit_type == unit_type,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        now = self.clock.now()
        if row is None:
            value = self._selector.eligible_remaining_by_unit(product_id).get(unit_type, 0)
            row = InventorySnapshot(
                product_id=product_id,
                unit_type=unit_type,
                quantity=value,
                last_updated=now,
            )
            self.session.add(row)
        else:
            row.quantity = row.quantity + delta
            row.last_updated = now
        self.session.flush()

        logger.debug(
            "snapshot_adjusted",
            extra={
                "product_id": str(product_id),
                "unit_type": unit_type.value,
                "delta": delta,
                "quantity": row.quantity,
            },
        )
        return row.quantity
