"""
Module: stock_kernel.selectors.integrity
Responsibility: Read-only integrity sweep across batches, allocations,
    sales and snapshot rows.
Architecture position: Kernel > Selectors.

Each check is independent and returns row-level IntegrityViolation
findings.  Nothing here mutates or repairs; the daily job decides whether
to run a full audit based on the report.

Checks:
    QUANTITY_MISMATCH          quantity != quantity_sold + quantity_remaining
    NEGATIVE_QUANTITIES        quantity_sold < 0 or quantity_remaining < 0
    BATCH_ALLOCATION_MISMATCH  sum(allocations per batch) != batch.quantity_sold
    ORPHAN_SALES               sale with no allocation row
    SALE_ALLOCATION_MISMATCH   sum(allocations per sale) != sale.quantity
    INVENTORY_BATCH_MISMATCH   snapshot != eligible sum(remaining), including
                               eligible stock that has no snapshot row
"""

from collections.abc import Callable, Iterable
from uuid import UUID

from sqlalchemy import func, or_, select

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.integrity import (
    IntegrityCheck,
    IntegrityReport,
    IntegrityViolation,
    IntegrityViolationGroup,
)
from stock_kernel.domain.types import ELIGIBLE_STATUSES, UnitType
from stock_kernel.logging_config import get_logger
from stock_kernel.models.batch import StockBatch
from stock_kernel.models.inventory import InventorySnapshot
from stock_kernel.models.product import Product
from stock_kernel.models.sale import Sale, SaleAllocation
from stock_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.integrity")


class IntegrityValidator(BaseSelector):
    """Composable, read-only integrity checks."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._checks: dict[IntegrityCheck, Callable[[], list[IntegrityViolation]]] = {
            IntegrityCheck.QUANTITY_MISMATCH: self._quantity_mismatch,
            IntegrityCheck.NEGATIVE_QUANTITIES: self._negative_quantities,
            IntegrityCheck.BATCH_ALLOCATION_MISMATCH: self._batch_allocation_mismatch,
            IntegrityCheck.ORPHAN_SALES: self._orphan_sales,
            IntegrityCheck.SALE_ALLOCATION_MISMATCH: self._sale_allocation_mismatch,
            IntegrityCheck.INVENTORY_BATCH_MISMATCH: self._inventory_batch_mismatch,
        }

    def validate(
        self,
        checks: Iterable[IntegrityCheck] | None = None,
    ) -> IntegrityReport:
        """Run the given checks (all by default) and group the findings."""
        selected = tuple(checks) if checks is not None else tuple(IntegrityCheck)
        groups = []
        for check in selected:
            violations = self.run_check(check)
            if violations:
                groups.append(IntegrityViolationGroup(check, tuple(violations)))

        report = IntegrityReport(
            checked_at=self._clock.now(),
            groups=tuple(groups),
            checks_run=selected,
        )
        if report.has_issues:
            logger.warning(
                "integrity_issues_found",
                extra={
                    "total_issues": report.total_issues,
                    "issue_types": len(report.groups),
                    "counts": {g.check.value: g.count for g in report.groups},
                },
            )
        else:
            logger.info("integrity_check_passed", extra={"checks": len(selected)})
        return report

    def run_check(self, check: IntegrityCheck) -> list[IntegrityViolation]:
        """Run a single check."""
        return self._checks[IntegrityCheck(check)]()

    # -------------------------------------------------------------------------
    # Batch counters
    # -------------------------------------------------------------------------

    def _batch_rows(self, *criteria):
        return self.session.execute(
            select(StockBatch, Product.name)
            .outerjoin(Product, Product.id == StockBatch.product_id)
            .where(*criteria)
            .order_by(StockBatch.product_id, StockBatch.purchase_date, StockBatch.id)
        ).all()

    def _quantity_mismatch(self) -> list[IntegrityViolation]:
        rows = self._batch_rows(
            StockBatch.quantity
            != StockBatch.quantity_sold + StockBatch.quantity_remaining
        )
        return [
            IntegrityViolation(
                check=IntegrityCheck.QUANTITY_MISMATCH,
                entity="StockBatch",
                entity_id=str(batch.id),
                product_id=str(batch.product_id),
                details={
                    "product_name": name,
                    "batch_number": batch.batch_number,
                    "quantity": batch.quantity,
                    "quantity_sold": batch.quantity_sold,
                    "quantity_remaining": batch.quantity_remaining,
                    "discrepancy": batch.quantity
                    - batch.quantity_sold
                    - batch.quantity_remaining,
                },
            )
            for batch, name in rows
        ]

    def _negative_quantities(self) -> list[IntegrityViolation]:
        rows = self._batch_rows(
            or_(StockBatch.quantity_sold < 0, StockBatch.quantity_remaining < 0)
        )
        return [
            IntegrityViolation(
                check=IntegrityCheck.NEGATIVE_QUANTITIES,
                entity="StockBatch",
                entity_id=str(batch.id),
                product_id=str(batch.product_id),
                details={
                    "product_name": name,
                    "batch_number": batch.batch_number,
                    "quantity_sold": batch.quantity_sold,
                    "quantity_remaining": batch.quantity_remaining,
                },
            )
            for batch, name in rows
        ]

    # -------------------------------------------------------------------------
    # Allocation ledger
    # -------------------------------------------------------------------------

    def _batch_allocation_mismatch(self) -> list[IntegrityViolation]:
        tracked = (
            select(
                SaleAllocation.batch_id.label("batch_id"),
                func.sum(SaleAllocation.quantity_sold).label("tracked"),
            )
            .group_by(SaleAllocation.batch_id)
            .subquery()
        )
        tracked_sold = func.coalesce(tracked.c.tracked, 0)
        rows = self.session.execute(
            select(StockBatch, tracked_sold)
            .outerjoin(tracked, tracked.c.batch_id == StockBatch.id)
            .where(StockBatch.quantity_sold != tracked_sold)
            .order_by(StockBatch.product_id, StockBatch.id)
        ).all()
        return [
            IntegrityViolation(
                check=IntegrityCheck.BATCH_ALLOCATION_MISMATCH,
                entity="StockBatch",
                entity_id=str(batch.id),
                product_id=str(batch.product_id),
                details={
                    "batch_number": batch.batch_number,
                    "batch_quantity_sold": batch.quantity_sold,
                    "tracked_quantity_sold": int(tracked_total),
                    "discrepancy": batch.quantity_sold - int(tracked_total),
                },
            )
            for batch, tracked_total in rows
        ]

    def _orphan_sales(self) -> list[IntegrityViolation]:
        rows = self.session.execute(
            select(Sale)
            .outerjoin(SaleAllocation, SaleAllocation.sale_id == Sale.id)
            .where(SaleAllocation.id.is_(None))
            .order_by(Sale.created_at, Sale.id)
        ).scalars()
        return [
            IntegrityViolation(
                check=IntegrityCheck.ORPHAN_SALES,
                entity="Sale",
                entity_id=str(sale.id),
                product_id=str(sale.product_id),
                details={
                    "reference": sale.reference,
                    "quantity": sale.quantity,
                    "unit_type": sale.unit_type,
                    "created_at": sale.created_at,
                },
            )
            for sale in rows
        ]

    def _sale_allocation_mismatch(self) -> list[IntegrityViolation]:
        allocated = (
            select(
                SaleAllocation.sale_id.label("sale_id"),
                func.sum(SaleAllocation.quantity_sold).label("allocated"),
            )
            .group_by(SaleAllocation.sale_id)
            .subquery()
        )
        rows = self.session.execute(
            select(Sale, allocated.c.allocated)
            .join(allocated, allocated.c.sale_id == Sale.id)
            .where(Sale.quantity != allocated.c.allocated)
            .order_by(Sale.created_at, Sale.id)
        ).all()
        return [
            IntegrityViolation(
                check=IntegrityCheck.SALE_ALLOCATION_MISMATCH,
                entity="Sale",
                entity_id=str(sale.id),
                product_id=str(sale.product_id),
                details={
                    "reference": sale.reference,
                    "quantity": sale.quantity,
                    "allocated": int(total),
                    "discrepancy": sale.quantity - int(total),
                },
            )
            for sale, total in rows
        ]

    # -------------------------------------------------------------------------
    # Snapshot cache
    # -------------------------------------------------------------------------

    def _inventory_batch_mismatch(self) -> list[IntegrityViolation]:
        eligible: dict[tuple[UUID, UnitType], int] = {
            (product_id, unit): int(total or 0)
            for product_id, unit, total in self.session.execute(
                select(
                    StockBatch.product_id,
                    StockBatch.unit_type,
                    func.sum(StockBatch.quantity_remaining),
                )
                .where(StockBatch.status.in_(tuple(ELIGIBLE_STATUSES)))
                .group_by(StockBatch.product_id, StockBatch.unit_type)
            ).all()
        }
        snapshots = {
            (row.product_id, row.unit_type): row
            for row in self.session.execute(select(InventorySnapshot)).scalars()
        }

        violations = []
        for key in sorted(
            set(eligible) | set(snapshots), key=lambda k: (str(k[0]), k[1].value)
        ):
            product_id, unit = key
            expected = eligible.get(key, 0)
            row = snapshots.get(key)
            if row is None and expected == 0:
                continue
            if row is not None and row.quantity == expected:
                continue
            violations.append(
                IntegrityViolation(
                    check=IntegrityCheck.INVENTORY_BATCH_MISMATCH,
                    entity="InventorySnapshot",
                    entity_id=str(row.id) if row is not None else "",
                    product_id=str(product_id),
                    details={
                        "unit_type": unit,
                        "inventory_quantity": row.quantity if row is not None else None,
                        "batch_remaining": expected,
                        "discrepancy": (row.quantity if row is not None else 0)
                        - expected,
                    },
                )
            )
        return violations
