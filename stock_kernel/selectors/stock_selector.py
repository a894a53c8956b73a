"""
Module: stock_kernel.selectors.stock_selector
Responsibility: Read-only stock queries shared by sync, verification,
    continuity validation, scans and the health summary.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every "counts as stock" filter is built from ELIGIBLE_STATUSES.
      No query here spells out statuses by hand.
    - The continuity formula is defined once (``stock_at``) and used for
      both opening and closing positions, so the two can only differ by
      the cutoff instant.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select, union

from stock_kernel.domain.types import (
    ELIGIBLE_STATUSES,
    BatchStatus,
    HealthIssue,
    StockHealthSummary,
    UnitType,
)
from stock_kernel.models.batch import StockBatch
from stock_kernel.models.inventory import InventorySnapshot
from stock_kernel.models.product import Product
from stock_kernel.models.sale import Sale
from stock_kernel.selectors.base import BaseSelector


def _eligible():
    return StockBatch.status.in_(tuple(ELIGIBLE_STATUSES))


class StockSelector(BaseSelector):
    """Stock positions derived from batches, sales and snapshot rows."""

    # -------------------------------------------------------------------------
    # Per-product totals
    # -------------------------------------------------------------------------

    def eligible_remaining_by_unit(self, product_id: UUID) -> dict[UnitType, int]:
        """Sum of quantity_remaining over eligible batches, per unit type."""
        rows = self.session.execute(
            select(StockBatch.unit_type, func.sum(StockBatch.quantity_remaining))
            .where(StockBatch.product_id == product_id, _eligible())
            .group_by(StockBatch.unit_type)
        ).all()
        return {unit: int(total or 0) for unit, total in rows}

    def batch_units(self, product_id: UUID) -> set[UnitType]:
        """Unit types for which the product has any batch, whatever its status."""
        return set(
            self.session.execute(
                select(StockBatch.unit_type)
                .where(StockBatch.product_id == product_id)
                .distinct()
            ).scalars()
        )

    def snapshot_rows(self, product_id: UUID) -> dict[UnitType, InventorySnapshot]:
        rows = self.session.execute(
            select(InventorySnapshot).where(InventorySnapshot.product_id == product_id)
        ).scalars()
        return {row.unit_type: row for row in rows}

    def batch_sold_by_unit(self, product_id: UUID) -> dict[UnitType, int]:
        """Sum of quantity_sold over ALL of the product's batches, per unit."""
        rows = self.session.execute(
            select(StockBatch.unit_type, func.sum(StockBatch.quantity_sold))
            .where(StockBatch.product_id == product_id)
            .group_by(StockBatch.unit_type)
        ).all()
        return {unit: int(total or 0) for unit, total in rows}

    def sales_by_unit(self, product_id: UUID) -> dict[UnitType, int]:
        """Sum of Sale.quantity per unit for the product."""
        rows = self.session.execute(
            select(Sale.unit_type, func.sum(Sale.quantity))
            .where(Sale.product_id == product_id)
            .group_by(Sale.unit_type)
        ).all()
        return {unit: int(total or 0) for unit, total in rows}

    # -------------------------------------------------------------------------
    # Continuity
    # -------------------------------------------------------------------------

    def purchased_upto(
        self,
        product_id: UUID,
        unit_type: UnitType,
        cutoff: datetime,
        inclusive: bool,
    ) -> int:
        """Quantity of eligible batches purchased up to ``cutoff``."""
        bound = (
            StockBatch.purchase_date <= cutoff
            if inclusive
            else StockBatch.purchase_date < cutoff
        )
        total = self.session.execute(
            select(func.coalesce(func.sum(StockBatch.quantity), 0)).where(
                StockBatch.product_id == product_id,
                StockBatch.unit_type == unit_type,
                _eligible(),
                bound,
            )
        ).scalar_one()
        return int(total)

    def sold_upto(
        self,
        product_id: UUID,
        unit_type: UnitType,
        cutoff: datetime,
        inclusive: bool,
    ) -> int:
        """Quantity sold up to ``cutoff``."""
        bound = Sale.created_at <= cutoff if inclusive else Sale.created_at < cutoff
        total = self.session.execute(
            select(func.coalesce(func.sum(Sale.quantity), 0)).where(
                Sale.product_id == product_id,
                Sale.unit_type == unit_type,
                bound,
            )
        ).scalar_one()
        return int(total)

    def stock_at(
        self,
        product_id: UUID,
        unit_type: UnitType,
        cutoff: datetime,
        inclusive: bool,
    ) -> int:
        """
        Stock position at an instant.

        purchases of eligible batches minus sales, both bounded by
        ``cutoff`` (``<=`` when inclusive, ``<`` otherwise).
        """
        return self.purchased_upto(
            product_id, unit_type, cutoff, inclusive
        ) - self.sold_upto(product_id, unit_type, cutoff, inclusive)

    # -------------------------------------------------------------------------
    # Scan candidates
    # -------------------------------------------------------------------------

    def product_ids_for_sync(self) -> list[UUID]:
        """Active products that have at least one batch or snapshot row."""
        touched = union(
            select(StockBatch.product_id.label("product_id")),
            select(InventorySnapshot.product_id.label("product_id")),
        ).subquery()
        return list(
            self.session.execute(
                select(Product.id)
                .where(Product.is_active.is_(True), Product.id.in_(select(touched.c.product_id)))
                .order_by(Product.name, Product.id)
            ).scalars()
        )

    def product_ids_with_activity(self) -> list[UUID]:
        """Products that have at least one batch or sale."""
        touched = union(
            select(StockBatch.product_id.label("product_id")),
            select(Sale.product_id.label("product_id")),
        ).subquery()
        return list(
            self.session.execute(
                select(Product.id)
                .where(Product.id.in_(select(touched.c.product_id)))
                .order_by(Product.name, Product.id)
            ).scalars()
        )

    def product_name(self, product_id: UUID) -> str | None:
        return self.session.execute(
            select(Product.name).where(Product.id == product_id)
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Expiry and health
    # -------------------------------------------------------------------------

    def expiring_soon(self, as_of: datetime, days: int) -> list[StockBatch]:
        """ACTIVE batches with stock left that expire within ``days``."""
        horizon = as_of + timedelta(days=days)
        return list(
            self.session.execute(
                select(StockBatch)
                .where(
                    StockBatch.status == BatchStatus.ACTIVE,
                    StockBatch.quantity_remaining > 0,
                    StockBatch.expiry_date.is_not(None),
                    StockBatch.expiry_date > as_of,
                    StockBatch.expiry_date <= horizon,
                )
                .order_by(StockBatch.expiry_date, StockBatch.purchase_date)
            ).scalars()
        )

    def batch_status_counts(self) -> dict[BatchStatus, int]:
        rows = self.session.execute(
            select(StockBatch.status, func.count(StockBatch.id)).group_by(
                StockBatch.status
            )
        ).all()
        return {status: int(count) for status, count in rows}

    def health_summary(
        self,
        as_of: datetime,
        expiry_alert_days: int,
    ) -> StockHealthSummary:
        """
        Dashboard view: products whose snapshot agrees with their batches,
        batch counts per status, and batches expiring soon.
        """
        eligible = defaultdict(int)
        for product_id, unit, total in self.session.execute(
            select(
                StockBatch.product_id,
                StockBatch.unit_type,
                func.sum(StockBatch.quantity_remaining),
            )
            .where(_eligible())
            .group_by(StockBatch.product_id, StockBatch.unit_type)
        ).all():
            eligible[(product_id, unit)] = int(total or 0)

        snapshots: dict[tuple[UUID, UnitType], int] = {
            (row.product_id, row.unit_type): row.quantity
            for row in self.session.execute(select(InventorySnapshot)).scalars()
        }

        products = self.session.execute(
            select(Product.id, Product.name)
            .where(
                Product.is_active.is_(True),
                Product.id.in_(select(InventorySnapshot.product_id)),
            )
            .order_by(Product.name, Product.id)
        ).all()

        issues: list[HealthIssue] = []
        healthy = 0
        for product_id, name in products:
            units = {u for (p, u) in snapshots if p == product_id} | {
                u for (p, u) in eligible if p == product_id
            }
            product_issues = [
                HealthIssue(
                    product_id=product_id,
                    product_name=name,
                    unit_type=unit,
                    snapshot_quantity=snapshots.get((product_id, unit), 0),
                    expected_quantity=eligible.get((product_id, unit), 0),
                )
                for unit in sorted(units, key=lambda u: u.value)
                if snapshots.get((product_id, unit), 0)
                != eligible.get((product_id, unit), 0)
            ]
            if product_issues:
                issues.extend(product_issues)
            else:
                healthy += 1

        counts = self.batch_status_counts()
        return StockHealthSummary(
            checked_at=as_of,
            total_products=len(products),
            healthy_products=healthy,
            products_with_issues=len(products) - healthy,
            total_batches=sum(counts.values()),
            active_batches=counts.get(BatchStatus.ACTIVE, 0),
            depleted_batches=counts.get(BatchStatus.DEPLETED, 0),
            expired_batches=counts.get(BatchStatus.EXPIRED, 0),
            expiring_soon=len(self.expiring_soon(as_of, expiry_alert_days)),
            issues=tuple(issues),
        )
