"""
Module: stock_kernel.models.batch
Responsibility: ORM persistence for purchase batches, the unit of stock
    allocation.  Each batch carries its own sold/remaining counters, unit
    type, lifecycle status and expiry.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

Invariants enforced:
    - quantity == quantity_sold + quantity_remaining, both >= 0.  Enforced by
      the services that mutate batches (BatchAllocator, BatchStoreService,
      ReconciliationEngine repair) and reported by IntegrityValidator.
    - A batch with quantity_sold > 0 is never deleted (before_delete
      listener in db/immutability.py).
    - (product_id, unit_type, status) index supports the FEFO candidate
      query and the eligible-stock sums.

Failure modes:
    - ImmutabilityViolationError when deleting a batch that has sales.

Audit relevance:
    BatchStore is authoritative for "what remains right now".  The snapshot
    cache is always recomputed from these rows.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString
from stock_kernel.domain.types import (
    BatchStatus,
    UnitType,
    is_eligible,
    is_expired,
    is_sellable,
)


class StockBatch(TrackedBase):
    """
    One purchase batch of a product.

    Contract:
        Counters are mutated only under a row lock held by the mutating
        transaction (see BatchStoreService.lock_product_batches).

    Guarantees:
        - status is one of ACTIVE, DEPLETED, EXPIRED.
        - EXPIRED batches are retained for history but never count as stock.

    Non-goals:
        - Costing.  Purchase prices live with the purchasing module.
    """

    __tablename__ = "stock_batches"

    __table_args__ = (
        Index("idx_batch_product_unit_status", "product_id", "unit_type", "status"),
        Index("idx_batch_fefo", "product_id", "expiry_date", "purchase_date"),
        Index("idx_batch_expiry", "expiry_date"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    batch_number: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    quantity: Mapped[int] = mapped_column(nullable=False)

    quantity_sold: Mapped[int] = mapped_column(default=0, nullable=False)

    quantity_remaining: Mapped[int] = mapped_column(nullable=False)

    unit_type: Mapped[UnitType] = mapped_column(
        SAEnum(UnitType, native_enum=False, length=20),
        nullable=False,
    )

    status: Mapped[BatchStatus] = mapped_column(
        SAEnum(BatchStatus, native_enum=False, length=20),
        default=BatchStatus.ACTIVE,
        nullable=False,
    )

    purchase_date: Mapped[datetime] = mapped_column(nullable=False)

    expiry_date: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<StockBatch {self.batch_number or self.id}: "
            f"{self.quantity_remaining}/{self.quantity} {self.unit_type.value} "
            f"{self.status.value}>"
        )

    @property
    def is_eligible(self) -> bool:
        """Counts towards stock on hand."""
        return is_eligible(self.status)

    def is_expired(self, as_of: datetime) -> bool:
        return is_expired(self.expiry_date, as_of)

    def is_sellable(self, unit_type: UnitType, as_of: datetime) -> bool:
        return is_sellable(
            self.status,
            self.quantity_remaining,
            self.unit_type,
            unit_type,
            self.expiry_date,
            as_of,
        )

    @property
    def counters_balanced(self) -> bool:
        return (
            self.quantity == self.quantity_sold + self.quantity_remaining
            and self.quantity_sold >= 0
            and self.quantity_remaining >= 0
        )
