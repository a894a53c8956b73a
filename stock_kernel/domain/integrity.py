"""
Integrity findings.

An IntegrityViolation is a finding, not an exception: the sweep never
raises for bad data, it reports it grouped by check so that an operator
(or the daily job) can decide whether to repair.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from stock_kernel.domain.types import to_plain


class IntegrityCheck(str, Enum):
    """Independent checks run by the integrity sweep."""

    QUANTITY_MISMATCH = "QUANTITY_MISMATCH"
    NEGATIVE_QUANTITIES = "NEGATIVE_QUANTITIES"
    BATCH_ALLOCATION_MISMATCH = "BATCH_ALLOCATION_MISMATCH"
    ORPHAN_SALES = "ORPHAN_SALES"
    SALE_ALLOCATION_MISMATCH = "SALE_ALLOCATION_MISMATCH"
    INVENTORY_BATCH_MISMATCH = "INVENTORY_BATCH_MISMATCH"


CHECK_DESCRIPTIONS: dict[IntegrityCheck, str] = {
    IntegrityCheck.QUANTITY_MISMATCH: (
        "Batches where quantity != quantity_sold + quantity_remaining"
    ),
    IntegrityCheck.NEGATIVE_QUANTITIES: (
        "Batches with negative sold or remaining quantities"
    ),
    IntegrityCheck.BATCH_ALLOCATION_MISMATCH: (
        "Batches whose quantity_sold does not match their allocation rows"
    ),
    IntegrityCheck.ORPHAN_SALES: "Sales without batch allocation records",
    IntegrityCheck.SALE_ALLOCATION_MISMATCH: (
        "Sales whose allocation rows do not sum to the sale quantity"
    ),
    IntegrityCheck.INVENTORY_BATCH_MISMATCH: (
        "Inventory snapshot does not match sum of eligible batch remaining"
    ),
}


@dataclass(frozen=True)
class IntegrityViolation:
    """One offending row found by a check."""

    check: IntegrityCheck
    entity: str
    entity_id: str
    product_id: str | None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return to_plain(self)


@dataclass(frozen=True)
class IntegrityViolationGroup:
    """All violations of one check type."""

    check: IntegrityCheck
    violations: tuple[IntegrityViolation, ...]

    @property
    def description(self) -> str:
        return CHECK_DESCRIPTIONS[self.check]

    @property
    def count(self) -> int:
        return len(self.violations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.check.value,
            "description": self.description,
            "count": self.count,
            "details": [v.to_dict() for v in self.violations],
        }


@dataclass(frozen=True)
class IntegrityReport:
    """Result of a full (or partial) integrity sweep.

    Only checks that found something produce a group.
    """

    checked_at: datetime
    groups: tuple[IntegrityViolationGroup, ...] = ()
    checks_run: tuple[IntegrityCheck, ...] = ()

    @property
    def has_issues(self) -> bool:
        return len(self.groups) > 0

    @property
    def total_issues(self) -> int:
        return sum(g.count for g in self.groups)

    def group(self, check: IntegrityCheck) -> IntegrityViolationGroup | None:
        for g in self.groups:
            if g.check == check:
                return g
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked_at": self.checked_at.isoformat(),
            "has_issues": self.has_issues,
            "total_issues": self.total_issues,
            "issue_types": len(self.groups),
            "checks_run": [c.value for c in self.checks_run],
            "issues": [g.to_dict() for g in self.groups],
        }
