"""
BatchStoreService -- purchase batches and their lifecycle.

Responsibility:
    Records and deletes purchase batches, provides the per-product row
    lock every batch mutation goes through, and applies the automatic
    status transitions (ACTIVE -> EXPIRED, ACTIVE -> DEPLETED) run by the
    daily status job.

Architecture position:
    Kernel > Services -- imperative shell.  Used by BatchAllocator,
    ReconciliationEngine and the CLI.

Invariants enforced:
    - quantity == quantity_sold + quantity_remaining on every batch it
      creates; purchases start with sold == 0.
    - A batch with quantity_sold > 0 is never deleted (BatchInUseError here,
      ImmutabilityViolationError from the ORM listener as a backstop).
    - Batch rows are read for mutation only through ``lock_product_batches``
      (SELECT ... FOR UPDATE with populate_existing), so counters are never
      taken from a read made before the lock.

Failure modes:
    - InvalidQuantityError for non-positive purchase quantities.
    - BatchNotFoundError / BatchInUseError on deletion.

Audit relevance:
    Each automatic expiry writes a BATCH_STATUS_CHANGE entry.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.clock import Clock
from stock_kernel.domain.types import (
    BatchStatus,
    BatchStatusChange,
    StatusRefreshResult,
    UnitType,
    is_eligible,
)
from stock_kernel.exceptions import (
    BatchInUseError,
    BatchNotFoundError,
    InvalidQuantityError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.batch import StockBatch
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.audit_log import AuditLogService
from stock_kernel.services.base import BaseService
from stock_kernel.services.snapshot_service import InventorySnapshotService

logger = get_logger("services.batch_store")

FEFO_ORDER = (
    StockBatch.expiry_date.is_(None),
    StockBatch.expiry_date,
    StockBatch.purchase_date,
    StockBatch.id,
)


class BatchStoreService(BaseService):
    """
    Durable store of purchase batches.

    Non-goals:
        - Does NOT allocate sales (BatchAllocator).
        - Does NOT repair counters (ReconciliationEngine).
    """

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._snapshots = InventorySnapshotService(session, self.clock)
        self._audit = AuditLogService(session, self.clock)

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    def lock_product_batches(
        self,
        product_id: UUID,
        unit_type: UnitType | None = None,
    ) -> list[StockBatch]:
        """
        Lock and re-read a product's batch rows in FEFO order.

        This is the single-writer lock shared by allocation, reversal and
        repair.  On SQLite FOR UPDATE is a no-op and the database-level
        write lock serializes writers instead.
        """
        stmt = select(StockBatch).where(StockBatch.product_id == product_id)
        if unit_type is not None:
            stmt = stmt.where(StockBatch.unit_type == unit_type)
        stmt = (
            stmt.order_by(*FEFO_ORDER)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(self.session.execute(stmt).scalars())

    def get_batch(self, batch_id: UUID, lock: bool = False) -> StockBatch:
        stmt = select(StockBatch).where(StockBatch.id == batch_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        batch = self.session.execute(stmt).scalar_one_or_none()
        if batch is None:
            raise BatchNotFoundError(str(batch_id))
        return batch

    # -------------------------------------------------------------------------
    # Purchases
    # -------------------------------------------------------------------------

    def record_purchase(
        self,
        product_id: UUID,
        quantity: int,
        unit_type: UnitType,
        purchase_date: datetime | None = None,
        expiry_date: datetime | None = None,
        batch_number: str | None = None,
    ) -> StockBatch:
        """
        Create an ACTIVE batch with the full quantity remaining and add it
        to the snapshot.
        """
        if quantity <= 0:
            raise InvalidQuantityError(quantity, "purchase")

        unit_type = UnitType(unit_type)
        batch = StockBatch(
            product_id=product_id,
            batch_number=batch_number,
            quantity=quantity,
            quantity_sold=0,
            quantity_remaining=quantity,
            unit_type=unit_type,
            status=BatchStatus.ACTIVE,
            purchase_date=purchase_date or self.clock.now(),
            expiry_date=expiry_date,
        )
        self.session.add(batch)
        self.session.flush()

        snapshot_quantity = self._snapshots.adjust(product_id, unit_type, quantity)

        logger.info(
            "purchase_recorded",
            extra={
                "product_id": str(product_id),
                "batch_id": str(batch.id),
                "batch_number": batch_number,
                "quantity": quantity,
                "unit_type": unit_type.value,
                "snapshot_quantity": snapshot_quantity,
            },
        )
        return batch

    def delete_purchase(self, batch_id: UUID) -> None:
        """
        Delete a batch nothing has been sold from and take its eligible
        remaining stock out of the snapshot.

        Raises:
            BatchNotFoundError: No such batch.
            BatchInUseError: The batch has recorded sales.
        """
        batch = self.get_batch(batch_id, lock=True)
        if batch.quantity_sold > 0:
            raise BatchInUseError(str(batch_id), batch.quantity_sold)

        product_id = batch.product_id
        unit_type = batch.unit_type
        eligible_remaining = batch.quantity_remaining if is_eligible(batch.status) else 0

        self.session.delete(batch)
        self.session.flush()

        if eligible_remaining:
            self._snapshots.adjust(product_id, unit_type, -eligible_remaining)

        logger.info(
            "purchase_deleted",
            extra={
                "product_id": str(product_id),
                "batch_id": str(batch_id),
                "removed_quantity": eligible_remaining,
            },
        )

    # -------------------------------------------------------------------------
    # Status management
    # -------------------------------------------------------------------------

    def mark_expired_batches(
        self,
        as_of: datetime | None = None,
        triggered_by: str = "batch_status",
    ) -> tuple[BatchStatusChange, ...]:
        """ACTIVE batches with stock left whose expiry has been reached become EXPIRED."""
        as_of = as_of or self.clock.now()
        batches = self.session.execute(
            select(StockBatch)
            .where(
                StockBatch.status == BatchStatus.ACTIVE,
                StockBatch.quantity_remaining > 0,
                StockBatch.expiry_date.is_not(None),
                StockBatch.expiry_date <= as_of,
            )
            .order_by(StockBatch.product_id, *FEFO_ORDER)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        changes = []
        for batch in batches:
            change = BatchStatusChange(
                batch_id=batch.id,
                product_id=batch.product_id,
                batch_number=batch.batch_number,
                old_status=batch.status,
                new_status=BatchStatus.EXPIRED,
                quantity_remaining=batch.quantity_remaining,
                expiry_date=batch.expiry_date,
            )
            batch.status = BatchStatus.EXPIRED
            self.session.flush()
            self._audit.record_batch_status_change(
                change,
                triggered_by=triggered_by,
                reason=(
                    f"Batch expired on {batch.expiry_date.date().isoformat()} "
                    "- auto-marked by system"
                ),
            )
            changes.append(change)
            logger.info(
                "batch_expired",
                extra={
                    "product_id": str(batch.product_id),
                    "batch_id": str(batch.id),
                    "batch_number": batch.batch_number,
                    "quantity_remaining": batch.quantity_remaining,
                },
            )
        return tuple(changes)

    def mark_depleted_batches(self) -> int:
        """ACTIVE batches with nothing left become DEPLETED (clean-up of misses)."""
        batches = self.session.execute(
            select(StockBatch)
            .where(
                StockBatch.status == BatchStatus.ACTIVE,
                StockBatch.quantity_remaining == 0,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        for batch in batches:
            batch.status = BatchStatus.DEPLETED
        self.session.flush()
        if batches:
            logger.info("batches_depleted", extra={"count": len(batches)})
        return len(batches)

    def refresh_statuses(
        self,
        as_of: datetime | None = None,
        triggered_by: str = "batch_status",
        expiry_alert_days: int = 60,
    ) -> StatusRefreshResult:
        """
        Run both status transitions and count batches expiring soon.

        The caller resyncs ``result.affected_product_ids``; depletion never
        changes eligible stock, expiry does.
        """
        as_of = as_of or self.clock.now()
        expired = self.mark_expired_batches(as_of, triggered_by)
        depleted = self.mark_depleted_batches()
        expiring = StockSelector(self.session).expiring_soon(as_of, expiry_alert_days)

        if expiring:
            logger.warning(
                "batches_expiring_soon",
                extra={"count": len(expiring), "within_days": expiry_alert_days},
            )
        return StatusRefreshResult(
            as_of=as_of,
            expired=expired,
            depleted=depleted,
            expiring_soon=len(expiring),
        )
