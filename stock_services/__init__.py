"""
stock_services -- Package init and public API.

Responsibility:
    Orchestration services that compose the pure FEFO engine
    (stock_engines/) with database sessions and the kernel services.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layering.py):
        stock_services/ -> stock_engines/  (allowed)
        stock_services/ -> stock_kernel/   (allowed)
        stock_engines/  -> stock_services/ (FORBIDDEN)
        stock_kernel/   -> stock_services/ (FORBIDDEN)

Audit relevance:
    This package is the import surface for the scheduler and the CLI.
"""

from stock_services.allocator import BatchAllocator
from stock_services.reconciliation_engine import ReconciliationEngine

__all__ = [
    "BatchAllocator",
    "ReconciliationEngine",
]
