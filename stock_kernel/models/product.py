"""
Module: stock_kernel.models.product
Responsibility: Minimal catalogue row for products held in the warehouse.
Architecture position: Kernel > Models.  May import from db/base.py only.

Catalogue maintenance (names, numbering, pricing) happens elsewhere.  This
table exists so that scans can iterate "every active product" and so that
audit entries and reports can carry a readable product name.
"""

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase


class Product(TrackedBase):
    """A sellable product."""

    __tablename__ = "products"

    __table_args__ = (Index("idx_product_active", "is_active"),)

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )

    # External catalogue number, e.g. "PRD-0042"
    product_no: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        unique=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Product {self.product_no or self.id}: {self.name}>"
