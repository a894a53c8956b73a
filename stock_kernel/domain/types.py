"""
Stock domain types -- enums, predicates and immutable result DTOs.

Responsibility:
    Defines the vocabulary every other layer speaks: unit types, batch
    statuses, the ONE eligibility predicate that decides whether a batch
    counts as stock, the sellability predicate used at allocation time,
    and the frozen result objects returned by services and the
    reconciliation engine.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies; services convert models to these DTOs.

Invariants enforced:
    - A batch counts as stock iff its status is in ELIGIBLE_STATUSES
      (ACTIVE or DEPLETED).  Snapshot sync, continuity validation, the
      integrity sweep and repair post-sync all build their filters from
      this constant.  There is no second definition anywhere.
    - A batch is sellable iff ACTIVE, remaining > 0, same unit type, and
      its expiry is unset or strictly after the allocation instant.
    - All DTOs are frozen; collections are tuples.

Failure modes:
    None.  Pure functions over plain values.

Audit relevance:
    Result DTOs expose ``to_dict()`` so scan results can be logged and
    returned to monitoring without leaking ORM objects.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from stock_kernel.domain.events import DiscrepancyCorrected
    from stock_kernel.domain.integrity import IntegrityReport


# =============================================================================
# Enums
# =============================================================================


class UnitType(str, Enum):
    """Counting unit of a batch, sale or snapshot row."""

    PALLETS = "PALLETS"
    PACKS = "PACKS"
    UNITS = "UNITS"


class BatchStatus(str, Enum):
    """Lifecycle status of a purchase batch.

    ACTIVE -> DEPLETED when remaining reaches zero.
    ACTIVE -> EXPIRED when expiry passes while remaining > 0.
    DEPLETED -> ACTIVE when a reversal or repair restores stock.
    """

    ACTIVE = "ACTIVE"
    DEPLETED = "DEPLETED"
    EXPIRED = "EXPIRED"


ELIGIBLE_STATUSES: frozenset[BatchStatus] = frozenset(
    {BatchStatus.ACTIVE, BatchStatus.DEPLETED}
)


# =============================================================================
# Predicates
# =============================================================================


def is_eligible(status: BatchStatus | str) -> bool:
    """True if a batch with this status counts towards stock on hand."""
    return BatchStatus(status) in ELIGIBLE_STATUSES


def is_expired(expiry_date: datetime | None, as_of: datetime) -> bool:
    """True if the expiry instant has been reached at ``as_of``."""
    return expiry_date is not None and expiry_date <= as_of


def is_sellable(
    status: BatchStatus | str,
    quantity_remaining: int,
    batch_unit: UnitType | str,
    requested_unit: UnitType | str,
    expiry_date: datetime | None,
    as_of: datetime,
) -> bool:
    """True if stock may be allocated from this batch at ``as_of``."""
    return (
        BatchStatus(status) == BatchStatus.ACTIVE
        and quantity_remaining > 0
        and UnitType(batch_unit) == UnitType(requested_unit)
        and not is_expired(expiry_date, as_of)
    )


def status_for_counters(
    quantity_remaining: int,
    expiry_date: datetime | None,
    as_of: datetime,
) -> BatchStatus:
    """Status a batch should carry after its counters were recomputed."""
    if quantity_remaining == 0:
        return BatchStatus.DEPLETED
    if is_expired(expiry_date, as_of):
        return BatchStatus.EXPIRED
    return BatchStatus.ACTIVE


# =============================================================================
# Serialization
# =============================================================================


def to_plain(obj: Any) -> Any:
    """
    Convert a result DTO (or nested value) into JSON-friendly primitives.

    Enums become their value, UUIDs and Decimals strings, dates ISO strings,
    tuples lists, and dataclasses dicts.  Nested objects that define
    ``to_dict()`` are rendered through it so derived fields survive.
    """
    if obj is None:
        return None
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_nested(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k): _nested(v) for k, v in obj.items()}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: _nested(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, (str, int, float, bool)):
        return obj
    return str(obj)


def _nested(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and hasattr(value, "to_dict"):
        return value.to_dict()
    return to_plain(value)


class _Serializable:
    def to_dict(self) -> dict[str, Any]:
        return to_plain(self)


# =============================================================================
# Sale path
# =============================================================================


@dataclass(frozen=True)
class AllocationLine(_Serializable):
    """Quantity taken from (or restored to) one batch."""

    batch_id: UUID
    batch_number: str | None
    quantity: int
    remaining_after: int
    status_after: BatchStatus


@dataclass(frozen=True)
class SaleAllocationResult(_Serializable):
    """Outcome of a committed FEFO allocation for one sale."""

    sale_id: UUID
    product_id: UUID
    unit_type: UnitType
    quantity: int
    allocations: tuple[AllocationLine, ...]
    snapshot_quantity: int


@dataclass(frozen=True)
class SaleReversalResult(_Serializable):
    """Outcome of reversing a sale and restoring its batches."""

    sale_id: UUID
    product_id: UUID
    unit_type: UnitType
    quantity: int
    restored: tuple[AllocationLine, ...]
    snapshot_quantity: int


@dataclass(frozen=True)
class BatchStatusChange(_Serializable):
    """An automatic status transition applied to a batch."""

    batch_id: UUID
    product_id: UUID
    batch_number: str | None
    old_status: BatchStatus
    new_status: BatchStatus
    quantity_remaining: int
    expiry_date: datetime | None


@dataclass(frozen=True)
class StatusRefreshResult(_Serializable):
    """Result of a batch status management run."""

    as_of: datetime
    expired: tuple[BatchStatusChange, ...]
    depleted: int
    expiring_soon: int
    products_synced: int = 0
    products_failed: int = 0

    @property
    def affected_product_ids(self) -> tuple[UUID, ...]:
        """Products whose eligible stock changed because a batch expired."""
        return tuple(dict.fromkeys(c.product_id for c in self.expired))


# =============================================================================
# Snapshot sync
# =============================================================================


@dataclass(frozen=True)
class SnapshotLine(_Serializable):
    """Cached vs. computed stock for one product/unit.

    ``cached`` is None when no snapshot row existed.
    """

    unit_type: UnitType
    cached: int | None
    computed: int

    @property
    def delta(self) -> int:
        return self.computed - (self.cached or 0)

    @property
    def in_sync(self) -> bool:
        return self.cached is not None and self.cached == self.computed

    def to_dict(self) -> dict[str, Any]:
        data = to_plain(self)
        data["delta"] = self.delta
        return data


@dataclass(frozen=True)
class SyncResult(_Serializable):
    """Outcome of synchronizing one product's snapshot rows."""

    product_id: UUID
    triggered_by: str
    lines: tuple[SnapshotLine, ...]
    corrections: tuple[DiscrepancyCorrected, ...] = ()

    @property
    def had_discrepancy(self) -> bool:
        return len(self.corrections) > 0

    def quantity(self, unit_type: UnitType) -> int:
        for line in self.lines:
            if line.unit_type == unit_type:
                return line.computed
        return 0

    def to_dict(self) -> dict[str, Any]:
        data = to_plain(self)
        data["had_discrepancy"] = self.had_discrepancy
        return data


@dataclass(frozen=True)
class SnapshotVerification(_Serializable):
    """Read-only comparison of snapshot rows against batch totals."""

    product_id: UUID
    lines: tuple[SnapshotLine, ...]

    @property
    def has_discrepancy(self) -> bool:
        return any((line.cached or 0) != line.computed for line in self.lines)

    def to_dict(self) -> dict[str, Any]:
        data = to_plain(self)
        data["has_discrepancy"] = self.has_discrepancy
        return data


@dataclass(frozen=True)
class ProductFailure(_Serializable):
    """A product whose step raised during a scan."""

    product_id: UUID
    error_code: str
    message: str


@dataclass(frozen=True)
class SyncScanSummary(_Serializable):
    """Result of ``sync_all``."""

    triggered_by: str
    scanned: int
    corrected: int
    failed: int
    corrections: tuple[DiscrepancyCorrected, ...] = ()
    failures: tuple[ProductFailure, ...] = ()


# =============================================================================
# Batch vs. sales
# =============================================================================

OVER_COUNTED_ISSUE = "Batch over-counted (more sold in batches than actual sales)"
UNDER_COUNTED_ISSUE = (
    "Sales not reflected in batches (sales missing from batch deductions)"
)


@dataclass(frozen=True)
class UnitConsistency(_Serializable):
    """Batch-sold total vs. sales-ledger total for one unit type."""

    unit_type: UnitType
    batch_quantity_sold: int
    sales_quantity: int

    @property
    def discrepancy(self) -> int:
        return self.batch_quantity_sold - self.sales_quantity

    @property
    def has_discrepancy(self) -> bool:
        return self.discrepancy != 0

    @property
    def issue(self) -> str | None:
        if self.discrepancy > 0:
            return OVER_COUNTED_ISSUE
        if self.discrepancy < 0:
            return UNDER_COUNTED_ISSUE
        return None

    def to_dict(self) -> dict[str, Any]:
        data = to_plain(self)
        data["discrepancy"] = self.discrepancy
        data["issue"] = self.issue
        return data


@dataclass(frozen=True)
class BatchSalesConsistency(_Serializable):
    """Per-unit batch-vs-sales comparison for one product."""

    product_id: UUID
    units: tuple[UnitConsistency, ...]

    @property
    def has_discrepancy(self) -> bool:
        return any(u.has_discrepancy for u in self.units)

    @property
    def discrepancy(self) -> int:
        return sum(u.discrepancy for u in self.units)

    def unit(self, unit_type: UnitType) -> UnitConsistency | None:
        for u in self.units:
            if u.unit_type == unit_type:
                return u
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": str(self.product_id),
            "has_discrepancy": self.has_discrepancy,
            "discrepancy": self.discrepancy,
            "units": [u.to_dict() for u in self.units],
        }


@dataclass(frozen=True)
class BatchRebuildLine(_Serializable):
    """Counter change applied to one batch by a repair."""

    batch_id: UUID
    batch_number: str | None
    unit_type: UnitType
    old_quantity_sold: int
    new_quantity_sold: int
    old_quantity_remaining: int
    new_quantity_remaining: int
    old_status: BatchStatus
    new_status: BatchStatus


@dataclass(frozen=True)
class BatchRepairResult(_Serializable):
    """Outcome of ``fix_batch_sales_discrepancy``."""

    product_id: UUID
    fixed: bool
    before: BatchSalesConsistency
    after: BatchSalesConsistency | None = None
    batches: tuple[BatchRebuildLine, ...] = ()
    allocations_rebuilt: int = 0
    sales_replayed: int = 0
    timeout_seconds: float = 0.0
    elapsed_seconds: float = 0.0
    sync: SyncResult | None = None
    message: str | None = None


@dataclass(frozen=True)
class BatchSalesScanSummary(_Serializable):
    """Result of ``scan_and_fix_batch_sales``."""

    triggered_by: str
    auto_fix: bool
    scanned: int
    with_discrepancy: int
    fixed: int
    failed: int
    discrepancies: tuple[BatchSalesConsistency, ...] = ()
    failures: tuple[ProductFailure, ...] = ()


# =============================================================================
# Continuity
# =============================================================================


@dataclass(frozen=True)
class ContinuityResult(_Serializable):
    """Opening stock of ``day`` compared with closing stock of the day before.

    ``discrepancy`` is ``opening_stock - previous_closing_stock``.
    """

    product_id: UUID
    day: date
    previous_day: date
    unit_type: UnitType
    previous_closing_stock: int
    opening_stock: int
    closing_stock: int
    purchased: int
    sold: int

    @property
    def discrepancy(self) -> int:
        return self.opening_stock - self.previous_closing_stock

    @property
    def is_valid(self) -> bool:
        return self.discrepancy == 0

    @property
    def movement_matches(self) -> bool:
        return self.closing_stock - self.opening_stock == self.purchased - self.sold

    def to_dict(self) -> dict[str, Any]:
        data = to_plain(self)
        data["discrepancy"] = self.discrepancy
        data["is_valid"] = self.is_valid
        data["movement_matches"] = self.movement_matches
        return data


@dataclass(frozen=True)
class ContinuityReport(_Serializable):
    """Continuity results for a trailing window of days, oldest first."""

    product_id: UUID
    unit_type: UnitType
    start_day: date
    end_day: date
    days: tuple[ContinuityResult, ...]

    @property
    def is_valid(self) -> bool:
        return all(d.is_valid and d.movement_matches for d in self.days)

    @property
    def broken_days(self) -> tuple[date, ...]:
        return tuple(
            d.day for d in self.days if not (d.is_valid and d.movement_matches)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": str(self.product_id),
            "unit_type": self.unit_type.value,
            "start_day": self.start_day.isoformat(),
            "end_day": self.end_day.isoformat(),
            "is_valid": self.is_valid,
            "broken_days": [d.isoformat() for d in self.broken_days],
            "days": [d.to_dict() for d in self.days],
        }


# =============================================================================
# Composite runs
# =============================================================================


@dataclass(frozen=True)
class FullAuditSummary(_Serializable):
    """Batch-sales scan followed by a snapshot sync, in that order."""

    triggered_by: str
    started_at: datetime
    completed_at: datetime
    batch_sales: BatchSalesScanSummary
    inventory_sync: SyncScanSummary


@dataclass(frozen=True)
class DailyIntegritySummary(_Serializable):
    """Integrity sweep plus the full audit it triggered, if any."""

    triggered_by: str
    report: IntegrityReport
    audit: FullAuditSummary | None = None

    @property
    def repaired(self) -> bool:
        return self.audit is not None

    def to_dict(self) -> dict[str, Any]:
        data = to_plain(self)
        data["repaired"] = self.repaired
        return data


# =============================================================================
# Health
# =============================================================================


@dataclass(frozen=True)
class HealthIssue(_Serializable):
    """A product/unit whose snapshot disagrees with its batches."""

    product_id: UUID
    product_name: str
    unit_type: UnitType
    snapshot_quantity: int
    expected_quantity: int

    @property
    def discrepancy(self) -> int:
        return self.snapshot_quantity - self.expected_quantity

    def to_dict(self) -> dict[str, Any]:
        data = to_plain(self)
        data["discrepancy"] = self.discrepancy
        return data


@dataclass(frozen=True)
class StockHealthSummary(_Serializable):
    """Dashboard-level view of batch and snapshot health."""

    checked_at: datetime
    total_products: int
    healthy_products: int
    products_with_issues: int
    total_batches: int
    active_batches: int
    depleted_batches: int
    expired_batches: int
    expiring_soon: int
    issues: tuple[HealthIssue, ...] = ()
