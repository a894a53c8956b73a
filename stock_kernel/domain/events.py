"""
Informational domain events.

DiscrepancyCorrected is emitted by snapshot sync whenever a cached stock
value was overwritten.  It is not an error: the matching AuditEntry row is
the durable record, the event is what callers and logs see.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from stock_kernel.domain.types import UnitType, to_plain


@dataclass(frozen=True)
class DiscrepancyCorrected:
    """A snapshot row was found out of step with its batches and overwritten."""

    product_id: UUID
    unit_type: UnitType
    before: int | None
    after: int
    triggered_by: str
    corrected_at: datetime
    audit_entry_id: UUID | None = None

    @property
    def delta(self) -> int:
        return self.after - (self.before or 0)

    def to_dict(self) -> dict[str, Any]:
        data = to_plain(self)
        data["delta"] = self.delta
        return data
