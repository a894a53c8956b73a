"""
Module: stock_kernel.models.inventory
Responsibility: The denormalized per-product, per-unit stock cache used for
    fast reads.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

Invariants enforced:
    - One row per (product_id, unit_type) (unique constraint).
    - After a sync, quantity == sum(StockBatch.quantity_remaining) over
      eligible batches of the same product and unit.  The row is derived
      data and is never authored independently.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString
from stock_kernel.domain.types import UnitType


class InventorySnapshot(Base):
    """Cached stock on hand for one product and unit type."""

    __tablename__ = "inventory_snapshots"

    __table_args__ = (
        UniqueConstraint("product_id", "unit_type", name="uq_snapshot_product_unit"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    unit_type: Mapped[UnitType] = mapped_column(
        SAEnum(UnitType, native_enum=False, length=20),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(default=0, nullable=False)

    last_updated: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<InventorySnapshot {self.product_id} {self.unit_type.value}: {self.quantity}>"
