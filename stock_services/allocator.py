"""
BatchAllocator -- FEFO sale allocation and sale reversal.

Responsibility:
    Turns a sale request into one Sale row, one SaleAllocation row per
    batch drawn from, updated batch counters and a decremented snapshot,
    all inside one SAVEPOINT of the caller's transaction.  Reversal is the
    only path by which a sale is removed.

Architecture position:
    Services -- composes kernel services (BatchStoreService,
    InventorySnapshotService) with the pure FEFO planner from
    stock_engines.  Flush-only: the caller commits.

Invariants enforced:
    - FEFO: batches are consumed by (expiry ASC NULLS LAST, purchase ASC, id).
    - Candidates are re-read under FOR UPDATE inside the transaction and
      re-checked against the sellability predicate at that point, so a
      batch that expired after an earlier read is never drawn from.
    - All-or-nothing: insufficient stock is detected before anything is
      written; any error after that rolls the savepoint back.
    - After a sale, sum(allocations for the sale) == sale.quantity and each
      batch's quantity == sold + remaining.

Failure modes:
    - InvalidQuantityError for non-positive quantities.
    - InsufficientStockError when sellable stock cannot cover the request.
    - SaleNotFoundError on reversal of an unknown sale.

Audit relevance:
    Sales are business records, not corrections, so no AuditEntry is
    written here.  The allocation rows are the per-batch trace.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from stock_engines.fefo import BatchCapacity, FefoPlanner
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.types import (
    AllocationLine,
    BatchStatus,
    SaleAllocationResult,
    SaleReversalResult,
    UnitType,
    is_eligible,
    status_for_counters,
)
from stock_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    SaleNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.sale import Sale, SaleAllocation
from stock_kernel.services.batch_store import BatchStoreService
from stock_kernel.services.snapshot_service import InventorySnapshotService

logger = get_logger("services.allocator")


class BatchAllocator:
    """
    Sale path over purchase batches.

    Contract:
        Runs inside the caller's transaction; uses a SAVEPOINT for the
        multi-row write so a failure leaves the outer transaction usable.

    Non-goals:
        - Pricing, payment terms, customers.  Credit and cash sales are
          identical here.
    """

    def __init__(self, session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
        self._batches = BatchStoreService(session, self.clock)
        self._snapshots = InventorySnapshotService(session, self.clock)
        self._planner = FefoPlanner()

    def create_sale(
        self,
        product_id: UUID,
        quantity: int,
        unit_type: UnitType,
        created_at: datetime | None = None,
        reference: str | None = None,
    ) -> SaleAllocationResult:
        """
        Record a sale and draw its quantity from batches in FEFO order.

        Raises:
            InvalidQuantityError: quantity <= 0.
            InsufficientStockError: sellable stock < quantity.  Nothing is
                written.
        """
        if quantity <= 0:
            raise InvalidQuantityError(quantity, "sale")

        unit_type = UnitType(unit_type)
        now = self.clock.now()

        locked = self._batches.lock_product_batches(product_id, unit_type)
        sellable = {b.id: b for b in locked if b.is_sellable(unit_type, now)}
        plan = self._planner.plan(
            quantity,
            [
                BatchCapacity(
                    batch_id=b.id,
                    available=b.quantity_remaining,
                    expiry_date=b.expiry_date,
                    purchase_date=b.purchase_date,
                )
                for b in sellable.values()
            ],
        )
        if not plan.is_complete:
            logger.warning(
                "sale_rejected_insufficient_stock",
                extra={
                    "product_id": str(product_id),
                    "unit_type": unit_type.value,
                    "requested": quantity,
                    "available": plan.available,
                },
            )
            raise InsufficientStockError(
                str(product_id), unit_type.value, quantity, plan.available
            )

        lines: list[AllocationLine] = []
        with self.session.begin_nested():
            sale = Sale(
                product_id=product_id,
                quantity=quantity,
                unit_type=unit_type,
                created_at=created_at or now,
                reference=reference,
            )
            self.session.add(sale)
            self.session.flush()

            for draw in plan.draws:
                batch = sellable[draw.batch_id]
                batch.quantity_remaining -= draw.quantity
                batch.quantity_sold += draw.quantity
                if batch.quantity_remaining == 0:
                    batch.status = BatchStatus.DEPLETED
                self.session.add(
                    SaleAllocation(
                        batch_id=batch.id,
                        sale_id=sale.id,
                        quantity_sold=draw.quantity,
                    )
                )
                lines.append(
                    AllocationLine(
                        batch_id=batch.id,
                        batch_number=batch.batch_number,
                        quantity=draw.quantity,
                        remaining_after=batch.quantity_remaining,
                        status_after=batch.status,
                    )
                )
            self.session.flush()

            snapshot_quantity = self._snapshots.adjust(product_id, unit_type, -quantity)

        logger.info(
            "sale_allocated",
            extra={
                "product_id": str(product_id),
                "sale_id": str(sale.id),
                "quantity": quantity,
                "unit_type": unit_type.value,
                "batches": len(lines),
                "snapshot_quantity": snapshot_quantity,
            },
        )
        return SaleAllocationResult(
            sale_id=sale.id,
            product_id=product_id,
            unit_type=unit_type,
            quantity=quantity,
            allocations=tuple(lines),
            snapshot_quantity=snapshot_quantity,
        )

    def reverse_sale(self, sale_id: UUID) -> SaleReversalResult:
        """
        Delete a sale and give its quantities back to the batches it drew from.

        Batches that come back above zero return to ACTIVE, or to EXPIRED if
        their expiry has passed in the meantime.  The snapshot moves by the
        change in each batch's eligible stock, so a batch that expires on
        reversal takes its whole remainder out of the snapshot.

        Raises:
            SaleNotFoundError: No such sale.
        """
        sale = self.session.execute(
            select(Sale)
            .where(Sale.id == sale_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if sale is None:
            raise SaleNotFoundError(str(sale_id))

        now = self.clock.now()
        product_id = sale.product_id
        unit_type = sale.unit_type
        batches = {
            b.id: b for b in self._batches.lock_product_batches(product_id)
        }
        allocations = list(
            self.session.execute(
                select(SaleAllocation)
                .where(SaleAllocation.sale_id == sale.id)
                .order_by(SaleAllocation.id)
            ).scalars()
        )

        restored: list[AllocationLine] = []
        snapshot_delta = 0
        with self.session.begin_nested():
            for allocation in allocations:
                batch = batches.get(allocation.batch_id) or self._batches.get_batch(
                    allocation.batch_id, lock=True
                )
                before = _stock_contribution(batch, unit_type)
                batch.quantity_sold -= allocation.quantity_sold
                batch.quantity_remaining += allocation.quantity_sold
                batch.status = status_for_counters(
                    batch.quantity_remaining, batch.expiry_date, now
                )
                snapshot_delta += _stock_contribution(batch, unit_type) - before
                restored.append(
                    AllocationLine(
                        batch_id=batch.id,
                        batch_number=batch.batch_number,
                        quantity=allocation.quantity_sold,
                        remaining_after=batch.quantity_remaining,
                        status_after=batch.status,
                    )
                )
                self.session.delete(allocation)
            self.session.flush()

            self.session.delete(sale)
            self.session.flush()

            snapshot_quantity = self._snapshots.adjust(
                product_id, unit_type, snapshot_delta
            )

        logger.info(
            "sale_reversed",
            extra={
                "product_id": str(product_id),
                "sale_id": str(sale_id),
                "quantity": sale.quantity,
                "snapshot_delta": snapshot_delta,
                "snapshot_quantity": snapshot_quantity,
            },
        )
        return SaleReversalResult(
            sale_id=sale_id,
            product_id=product_id,
            unit_type=unit_type,
            quantity=sale.quantity,
            restored=tuple(restored),
            snapshot_quantity=snapshot_quantity,
        )


def _stock_contribution(batch, unit_type: UnitType) -> int:
    """Quantity a batch adds to the snapshot row for ``unit_type``."""
    if batch.unit_type != unit_type or not is_eligible(batch.status):
        return 0
    return batch.quantity_remaining
