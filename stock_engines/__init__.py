"""
Module: stock_engines
Responsibility:
    Pure calculation engines.  Currently the FEFO planner used by the sale
    path and by destructive batch repair.

Architecture position:
    Engines -- zero I/O.  May import stock_kernel.domain and logging only.
    MUST NOT import stock_services or stock_batch.
"""

from stock_engines.fefo import (
    BatchCapacity,
    FefoDraw,
    FefoPlan,
    FefoPlanner,
    RebuildAllocation,
    RebuildPlan,
    SaleDemand,
    fefo_key,
)

__all__ = [
    "BatchCapacity",
    "FefoDraw",
    "FefoPlan",
    "FefoPlanner",
    "RebuildAllocation",
    "RebuildPlan",
    "SaleDemand",
    "fefo_key",
]
