"""
Module: stock_engines.fefo
Responsibility:
    First-Expired-First-Out planning.  Given sellable batch capacities and
    a requested quantity, decide how much to draw from each batch; given
    every sale of a product and every batch, replay the sales to re-derive
    per-batch sold quantities and allocation rows.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import stock_kernel.domain and logging.

Invariants enforced:
    - Order: batches are consumed by (expiry_date ASC NULLS LAST,
      purchase_date ASC, batch_id).  Identical inputs give identical plans.
    - Conservation: sum of draws + shortfall == requested, and no batch is
      drawn beyond its capacity.
    - Purity: no clock access.  The caller has already filtered candidates
      with the sellability predicate at its own "now".

Failure modes:
    - ValueError on a non-positive requested quantity or negative capacity.
      Shortfall is reported in the plan, not raised; the caller decides
      whether it is an InsufficientStockError or a RepairFailureError.

Usage:
    from stock_engines.fefo import BatchCapacity, FefoPlanner

    plan = FefoPlanner().plan(8, [
        BatchCapacity(b1, available=5, expiry_date=day1, purchase_date=p1),
        BatchCapacity(b2, available=10, expiry_date=day5, purchase_date=p2),
    ])
    # plan.draws == (FefoDraw(b1, 5), FefoDraw(b2, 3))
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from stock_kernel.logging_config import get_logger

logger = get_logger("engines.fefo")


@dataclass(frozen=True)
class BatchCapacity:
    """
    A batch as seen by the planner.

    Contract:
        ``available`` is what may be drawn: remaining stock for a sale,
        the full batch quantity for a rebuild.
    """

    batch_id: UUID
    available: int
    expiry_date: datetime | None
    purchase_date: datetime

    def __post_init__(self) -> None:
        if self.available < 0:
            raise ValueError(
                f"Batch {self.batch_id} capacity cannot be negative: {self.available}"
            )


@dataclass(frozen=True)
class FefoDraw:
    """Quantity drawn from one batch."""

    batch_id: UUID
    quantity: int


@dataclass(frozen=True)
class FefoPlan:
    """
    Result of planning one request.

    Guarantees:
        - ``allocated + shortfall == requested``.
        - Draws are in consumption order and all positive.
    """

    requested: int
    draws: tuple[FefoDraw, ...]
    available: int

    @property
    def allocated(self) -> int:
        return sum(d.quantity for d in self.draws)

    @property
    def shortfall(self) -> int:
        return self.requested - self.allocated

    @property
    def is_complete(self) -> bool:
        return self.shortfall == 0


@dataclass(frozen=True)
class SaleDemand:
    """One sale to replay during a rebuild."""

    sale_id: UUID
    quantity: int
    created_at: datetime


@dataclass(frozen=True)
class RebuildAllocation:
    """Allocation row produced by a rebuild."""

    sale_id: UUID
    batch_id: UUID
    quantity: int


@dataclass(frozen=True)
class RebuildPlan:
    """
    Result of replaying every sale of a product through FEFO.

    Guarantees:
        - ``sold_by_batch`` has an entry for every input batch (0 if untouched).
        - sum(sold_by_batch) + unallocated == sum(sale quantities).
    """

    sold_by_batch: dict[UUID, int]
    allocations: tuple[RebuildAllocation, ...]
    total_demand: int
    unallocated: int

    @property
    def is_complete(self) -> bool:
        return self.unallocated == 0


def fefo_key(batch: BatchCapacity) -> tuple:
    """Sort key: soonest expiry first, batches without expiry last."""
    return (
        batch.expiry_date is None,
        batch.expiry_date or batch.purchase_date,
        batch.purchase_date,
        str(batch.batch_id),
    )


class FefoPlanner:
    """
    Pure FEFO planner.

    Contract:
        No I/O, no database access, no clock.
    Non-goals:
        - Does not decide sellability; callers pass only candidates they
          have already checked.
    """

    def plan(self, requested: int, candidates: Sequence[BatchCapacity]) -> FefoPlan:
        """
        Draw ``requested`` from ``candidates`` in FEFO order.

        Raises:
            ValueError: If ``requested`` is not positive.
        """
        if requested <= 0:
            raise ValueError(f"Requested quantity must be positive, got {requested}")

        ordered = sorted(candidates, key=fefo_key)
        needed = requested
        draws: list[FefoDraw] = []
        for batch in ordered:
            if needed == 0:
                break
            take = min(needed, batch.available)
            if take > 0:
                draws.append(FefoDraw(batch.batch_id, take))
                needed -= take

        plan = FefoPlan(
            requested=requested,
            draws=tuple(draws),
            available=sum(b.available for b in ordered),
        )
        logger.debug(
            "fefo_planned",
            extra={
                "requested": requested,
                "candidates": len(ordered),
                "draws": len(plan.draws),
                "shortfall": plan.shortfall,
            },
        )
        return plan

    def rebuild(
        self,
        sales: Sequence[SaleDemand],
        batches: Sequence[BatchCapacity],
    ) -> RebuildPlan:
        """
        Replay ``sales`` (by created_at, sale_id) against ``batches``.

        Each batch starts with its full capacity; consumption carries over
        from one sale to the next.
        """
        ordered_batches = sorted(batches, key=fefo_key)
        capacity = {b.batch_id: b.available for b in ordered_batches}
        sold = {b.batch_id: 0 for b in ordered_batches}
        allocations: list[RebuildAllocation] = []
        unallocated = 0
        total = 0

        for sale in sorted(sales, key=lambda s: (s.created_at, str(s.sale_id))):
            total += sale.quantity
            needed = sale.quantity
            for batch in ordered_batches:
                if needed <= 0:
                    break
                take = min(needed, capacity[batch.batch_id])
                if take > 0:
                    capacity[batch.batch_id] -= take
                    sold[batch.batch_id] += take
                    allocations.append(RebuildAllocation(sale.sale_id, batch.batch_id, take))
                    needed -= take
            unallocated += max(needed, 0)

        return RebuildPlan(
            sold_by_batch=sold,
            allocations=tuple(allocations),
            total_demand=total,
            unallocated=unallocated,
        )
