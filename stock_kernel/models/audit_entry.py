"""
Module: stock_kernel.models.audit_entry
Responsibility: ORM persistence for the append-only record of automatic
    corrections.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: UPDATE and DELETE are blocked by ORM listeners
      (db/immutability.py).

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.

Audit relevance:
    Every silently healed drift leaves one row here: snapshot corrections,
    destructive batch repairs and automatic batch status changes.
    old_values/new_values hold the before and after state as JSON.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of automatic corrections that are recorded.

    Contract: adding an action requires a matching record_* method on
    AuditLogService.
    """

    AUTO_SYNC_CORRECTION = "AUTO_SYNC_CORRECTION"
    BATCH_SALES_DISCREPANCY_FIX = "BATCH_SALES_DISCREPANCY_FIX"
    BATCH_STATUS_CHANGE = "BATCH_STATUS_CHANGE"


class AuditEntry(Base):
    """
    One automatic correction.

    Contract:
        Rows are never updated or deleted once flushed.

    Guarantees:
        - created_at comes from the injected clock of the writing service.
        - triggered_by names what caused the correction (e.g. "scheduled",
          "manual", "daily_integrity_fix").
    """

    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("idx_audit_entry_entity", "entity", "entity_id"),
        Index("idx_audit_entry_action", "action"),
        Index("idx_audit_entry_created", "created_at"),
    )

    # Type of entity corrected (e.g. "InventorySnapshot", "StockBatch")
    entity: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    action: Mapped[AuditAction] = mapped_column(
        SAEnum(AuditAction, native_enum=False, length=50),
        nullable=False,
    )

    old_values: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
    )

    new_values: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
    )

    triggered_by: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntry {self.action.value} {self.entity}:{self.entity_id}>"
