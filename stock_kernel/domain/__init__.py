"""Pure domain layer: clock, enums, predicates, findings and result DTOs."""

from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.events import DiscrepancyCorrected
from stock_kernel.domain.integrity import (
    IntegrityCheck,
    IntegrityReport,
    IntegrityViolation,
    IntegrityViolationGroup,
)
from stock_kernel.domain.types import (
    ELIGIBLE_STATUSES,
    BatchStatus,
    UnitType,
    is_eligible,
    is_expired,
    is_sellable,
    status_for_counters,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "DiscrepancyCorrected",
    "IntegrityCheck",
    "IntegrityReport",
    "IntegrityViolation",
    "IntegrityViolationGroup",
    "ELIGIBLE_STATUSES",
    "BatchStatus",
    "UnitType",
    "is_eligible",
    "is_expired",
    "is_sellable",
    "status_for_counters",
]
