"""
Module: stock_kernel.models.sale
Responsibility: ORM persistence for the sales ledger and the sale-to-batch
    allocation ledger.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

Invariants enforced:
    - sum(SaleAllocation.quantity_sold where batch_id=B) == StockBatch[B].quantity_sold
    - sum(SaleAllocation.quantity_sold where sale_id=S) == Sale[S].quantity
    Both hold after every BatchAllocator call and after repair; the
    integrity sweep reports rows where they do not.

Audit relevance:
    The sales ledger is authoritative for "what was actually sold, in
    total".  Repair replays it to re-derive batch counters.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString
from stock_kernel.domain.types import UnitType


class Sale(Base):
    """
    A quantity of one product that left the warehouse.

    Payment terms do not matter here: credit and cash sales decrement stock
    identically.  Rows change only through the reversal path.
    """

    __tablename__ = "stock_sales"

    __table_args__ = (
        Index("idx_sale_product_unit", "product_id", "unit_type"),
        Index("idx_sale_product_created", "product_id", "created_at"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(nullable=False)

    unit_type: Mapped[UnitType] = mapped_column(
        SAEnum(UnitType, native_enum=False, length=20),
        nullable=False,
    )

    # Business timestamp, taken from the injected clock
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    # Receipt or order number supplied by the caller
    reference: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Sale {self.reference or self.id}: {self.quantity} {self.unit_type.value}>"


class SaleAllocation(Base):
    """Quantity of one sale drawn from one batch."""

    __tablename__ = "sale_allocations"

    __table_args__ = (
        Index("idx_allocation_batch", "batch_id"),
        Index("idx_allocation_sale", "sale_id"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_batches.id"),
        nullable=False,
    )

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_sales.id"),
        nullable=False,
    )

    quantity_sold: Mapped[int] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<SaleAllocation sale={self.sale_id} batch={self.batch_id}: {self.quantity_sold}>"
