"""
ReconciliationEngine -- detects and repairs drift between batches, sales
and the snapshot cache.

Responsibility:
    Orchestrates the kernel services and selectors into the operations the
    scheduler and the operator CLI run: snapshot sync, batch-vs-sales
    validation and repair, daily continuity, integrity sweeps, batch status
    refresh and the health summary.

Architecture position:
    Services -- owns transaction boundaries.  Every per-product step opens
    its own session from the injected factory, commits on success and
    rolls back on failure, so one broken product never blocks the rest of
    a scan.

Invariants enforced:
    - BatchStore answers "what remains right now"; the sales ledger answers
      "what was sold in total".  Repair always rewrites batches from sales,
      never the other way round.
    - A repair replays every sale of the product through FEFO under the
      product's batch lock and commits in full or not at all.
    - The snapshot is resynced only after the batch repair has committed.
    - ``full_audit`` repairs batches before it syncs the cache.

Failure modes:
    - Direct single-product calls propagate typed errors
      (RepairFailureError, RepairTimeoutError).
    - Scan loops catch per-product exceptions, log them with exc_info and
      count them in ``failed``; the scan result is always returned.

Audit relevance:
    Snapshot corrections, batch repairs and automatic status changes are
    written as AuditEntry rows by the kernel services this engine drives.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from time import monotonic
from uuid import UUID

from sqlalchemy import delete, or_, select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from stock_config.schema import BatchStatusConfig, ReconciliationConfig
from stock_engines.fefo import BatchCapacity, FefoPlanner, SaleDemand
from stock_kernel.db.engine import is_postgres
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.integrity import IntegrityReport
from stock_kernel.domain.types import (
    BatchRebuildLine,
    BatchRepairResult,
    BatchSalesConsistency,
    BatchSalesScanSummary,
    ContinuityReport,
    ContinuityResult,
    DailyIntegritySummary,
    FullAuditSummary,
    ProductFailure,
    SnapshotLine,
    SnapshotVerification,
    StatusRefreshResult,
    StockHealthSummary,
    SyncResult,
    SyncScanSummary,
    UnitConsistency,
    UnitType,
    status_for_counters,
)
from stock_kernel.exceptions import (
    RepairFailureError,
    RepairTimeoutError,
    StockKernelError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.batch import StockBatch
from stock_kernel.models.sale import Sale, SaleAllocation
from stock_kernel.selectors.integrity import IntegrityValidator
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.audit_log import AuditLogService
from stock_kernel.services.batch_store import BatchStoreService
from stock_kernel.services.snapshot_service import InventorySnapshotService

logger = get_logger("services.reconciliation")

_ONE_MICROSECOND = timedelta(microseconds=1)

# PostgreSQL SQLSTATE for query_canceled (statement_timeout).
_PG_QUERY_CANCELED = "57014"


def _error_code(exc: Exception) -> str:
    return getattr(exc, "code", None) or type(exc).__name__


class ReconciliationEngine:
    """
    Drift detection and repair across batches, sales and snapshots.

    Contract:
        Constructed with a session factory; never receives an open session.
        All public methods are safe to call from the scheduler thread.

    Non-goals:
        - Does NOT allocate sales (BatchAllocator).
        - Does NOT schedule itself (stock_batch drives it).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        clock: Clock | None = None,
        config: ReconciliationConfig | None = None,
        batch_status: BatchStatusConfig | None = None,
        timer: Callable[[], float] = monotonic,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or ReconciliationConfig()
        self._batch_status = batch_status or BatchStatusConfig()
        self._timer = timer
        self._planner = FefoPlanner()

    # -------------------------------------------------------------------------
    # Transaction helpers
    # -------------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def _read_session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.rollback()
            session.close()

    # -------------------------------------------------------------------------
    # Snapshot sync
    # -------------------------------------------------------------------------

    def sync_one(self, product_id: UUID, triggered_by: str = "manual") -> SyncResult:
        """Recompute one product's snapshot rows in their own transaction."""
        with LogContext.bind(product_id=str(product_id), triggered_by=triggered_by):
            with self._transaction() as session:
                result = InventorySnapshotService(session, self._clock).sync_product(
                    product_id, triggered_by=triggered_by
                )
            logger.debug(
                "inventory_synced",
                extra={
                    "product_id": str(product_id),
                    "corrections": len(result.corrections),
                },
            )
            return result

    def sync_all(self, triggered_by: str = "scheduled") -> SyncScanSummary:
        """Sync every active product that has batches or a snapshot row."""
        with self._read_session() as session:
            product_ids = StockSelector(session).product_ids_for_sync()

        logger.info(
            "inventory_sync_started",
            extra={"triggered_by": triggered_by, "products": len(product_ids)},
        )
        corrected = 0
        corrections = []
        failures: list[ProductFailure] = []
        for product_id in product_ids:
            try:
                result = self.sync_one(product_id, triggered_by=triggered_by)
            except StockKernelError as exc:
                logger.warning(
                    "inventory_sync_failed",
                    exc_info=True,
                    extra={"product_id": str(product_id), "error_code": exc.code},
                )
                failures.append(ProductFailure(product_id, exc.code, str(exc)))
                continue
            except Exception as exc:
                logger.exception(
                    "inventory_sync_failed",
                    extra={"product_id": str(product_id), "error_code": _error_code(exc)},
                )
                failures.append(ProductFailure(product_id, _error_code(exc), str(exc)))
                continue
            if result.had_discrepancy:
                corrected += 1
                corrections.extend(result.corrections)

        summary = SyncScanSummary(
            triggered_by=triggered_by,
            scanned=len(product_ids),
            corrected=corrected,
            failed=len(failures),
            corrections=tuple(corrections),
            failures=tuple(failures),
        )
        log = logger.warning if corrected or failures else logger.info
        log(
            "inventory_sync_completed",
            extra={
                "triggered_by": triggered_by,
                "scanned": summary.scanned,
                "corrected": summary.corrected,
                "failed": summary.failed,
            },
        )
        return summary

    def verify_product_inventory(self, product_id: UUID) -> SnapshotVerification:
        """Compare snapshot rows with batches without changing anything."""
        with self._read_session() as session:
            selector = StockSelector(session)
            computed = selector.eligible_remaining_by_unit(product_id)
            rows = selector.snapshot_rows(product_id)
            units = sorted(
                selector.batch_units(product_id) | set(rows), key=lambda u: u.value
            )
            lines = tuple(
                SnapshotLine(
                    unit_type=unit,
                    cached=rows[unit].quantity if unit in rows else None,
                    computed=computed.get(unit, 0),
                )
                for unit in units
            )
        return SnapshotVerification(product_id=product_id, lines=lines)

    # -------------------------------------------------------------------------
    # Batch vs sales
    # -------------------------------------------------------------------------

    def _consistency(self, session: Session, product_id: UUID) -> BatchSalesConsistency:
        selector = StockSelector(session)
        batch_sold = selector.batch_sold_by_unit(product_id)
        sales = selector.sales_by_unit(product_id)
        units = sorted(set(batch_sold) | set(sales), key=lambda u: u.value)
        return BatchSalesConsistency(
            product_id=product_id,
            units=tuple(
                UnitConsistency(
                    unit_type=unit,
                    batch_quantity_sold=batch_sold.get(unit, 0),
                    sales_quantity=sales.get(unit, 0),
                )
                for unit in units
            ),
        )

    def validate_batch_sales_consistency(self, product_id: UUID) -> BatchSalesConsistency:
        """Sum of batch quantity_sold against sum of sales, per unit type."""
        with self._read_session() as session:
            result = self._consistency(session, product_id)
        if result.has_discrepancy:
            for unit in result.units:
                if unit.has_discrepancy:
                    logger.warning(
                        "batch_sales_discrepancy_detected",
                        extra={
                            "product_id": str(product_id),
                            "unit_type": unit.unit_type.value,
                            "batch_quantity_sold": unit.batch_quantity_sold,
                            "sales_quantity": unit.sales_quantity,
                            "discrepancy": unit.discrepancy,
                            "issue": unit.issue,
                        },
                    )
        return result

    def fix_batch_sales_discrepancy(
        self,
        product_id: UUID,
        triggered_by: str = "manual",
    ) -> BatchRepairResult:
        """
        Rebuild the product's batch counters and allocation rows from its sales.

        Runs under the product's batch lock in a single transaction with a
        time budget scaled by batch count.  After commit the snapshot is
        resynced with ``triggered_by`` suffixed ``_batch_fix``.

        Raises:
            RepairFailureError: Sales exceed total batch capacity, or the
                rebuild failed for any other reason.  Nothing is committed.
            RepairTimeoutError: The rebuild ran past its time budget.
        """
        with LogContext.bind(product_id=str(product_id), triggered_by=triggered_by):
            session = self._session_factory()
            started = self._timer()
            timeout = self._config.repair_timeout_base_seconds
            try:
                batches = BatchStoreService(session, self._clock).lock_product_batches(
                    product_id
                )
                before = self._consistency(session, product_id)
                if not before.has_discrepancy:
                    session.rollback()
                    logger.info(
                        "batch_sales_consistent", extra={"product_id": str(product_id)}
                    )
                    return BatchRepairResult(
                        product_id=product_id,
                        fixed=False,
                        before=before,
                        message="No discrepancy found",
                    )

                timeout = self._config.repair_timeout(len(batches))
                if is_postgres(session):
                    session.execute(
                        text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}")
                    )

                lines, allocations_rebuilt, sales_replayed = self._rebuild(
                    session, product_id, batches
                )
                AuditLogService(session, self._clock).record_batch_repair(
                    product_id=product_id,
                    product_name=StockSelector(session).product_name(product_id),
                    triggered_by=triggered_by,
                    before=before,
                    lines=lines,
                    allocations_rebuilt=allocations_rebuilt,
                    sales_replayed=sales_replayed,
                )
                after = self._consistency(session, product_id)

                elapsed = self._timer() - started
                if elapsed > timeout:
                    raise RepairTimeoutError(str(product_id), timeout, elapsed)
                session.commit()
            except RepairFailureError as exc:
                session.rollback()
                logger.warning(
                    "batch_repair_failed",
                    exc_info=True,
                    extra={"product_id": str(product_id), "error_code": exc.code},
                )
                raise
            except OperationalError as exc:
                session.rollback()
                elapsed = self._timer() - started
                if getattr(exc.orig, "sqlstate", None) == _PG_QUERY_CANCELED:
                    logger.warning(
                        "batch_repair_timed_out",
                        extra={"product_id": str(product_id), "timeout_seconds": timeout},
                    )
                    raise RepairTimeoutError(str(product_id), timeout, elapsed) from exc
                logger.exception(
                    "batch_repair_failed", extra={"product_id": str(product_id)}
                )
                raise RepairFailureError(str(product_id), str(exc)) from exc
            except Exception as exc:
                session.rollback()
                logger.exception(
                    "batch_repair_failed", extra={"product_id": str(product_id)}
                )
                raise RepairFailureError(str(product_id), str(exc)) from exc
            finally:
                session.close()

            logger.warning(
                "batch_sales_discrepancy_fixed",
                extra={
                    "product_id": str(product_id),
                    "discrepancy": before.discrepancy,
                    "batches_updated": len(lines),
                    "allocations_rebuilt": allocations_rebuilt,
                    "sales_replayed": sales_replayed,
                    "elapsed_seconds": round(elapsed, 3),
                },
            )
            sync = self.sync_one(product_id, triggered_by=f"{triggered_by}_batch_fix")
            return BatchRepairResult(
                product_id=product_id,
                fixed=True,
                before=before,
                after=after,
                batches=lines,
                allocations_rebuilt=allocations_rebuilt,
                sales_replayed=sales_replayed,
                timeout_seconds=timeout,
                elapsed_seconds=elapsed,
                sync=sync,
            )

    def _rebuild(
        self,
        session: Session,
        product_id: UUID,
        batches: list[StockBatch],
    ) -> tuple[tuple[BatchRebuildLine, ...], int, int]:
        """Replay every sale through FEFO over the locked batches, per unit."""
        now = self._clock.now()
        sales = list(
            session.execute(
                select(Sale)
                .where(Sale.product_id == product_id)
                .order_by(Sale.created_at, Sale.id)
            ).scalars()
        )

        batch_ids = [b.id for b in batches]
        session.execute(
            delete(SaleAllocation)
            .where(
                or_(
                    SaleAllocation.sale_id.in_([s.id for s in sales]),
                    SaleAllocation.batch_id.in_(batch_ids),
                )
            )
            .execution_options(synchronize_session="fetch")
        )

        lines: list[BatchRebuildLine] = []
        allocations = 0
        units = sorted(
            {b.unit_type for b in batches} | {s.unit_type for s in sales},
            key=lambda u: u.value,
        )
        for unit in units:
            unit_batches = [b for b in batches if b.unit_type == unit]
            plan = self._planner.rebuild(
                [
                    SaleDemand(sale_id=s.id, quantity=s.quantity, created_at=s.created_at)
                    for s in sales
                    if s.unit_type == unit
                ],
                [
                    BatchCapacity(
                        batch_id=b.id,
                        available=b.quantity,
                        expiry_date=b.expiry_date,
                        purchase_date=b.purchase_date,
                    )
                    for b in unit_batches
                ],
            )
            if not plan.is_complete:
                raise RepairFailureError(
                    str(product_id),
                    f"sales exceed batch capacity by {plan.unallocated} {unit.value}",
                )

            for batch in unit_batches:
                sold = plan.sold_by_batch[batch.id]
                remaining = batch.quantity - sold
                status = status_for_counters(remaining, batch.expiry_date, now)
                if (
                    batch.quantity_sold == sold
                    and batch.quantity_remaining == remaining
                    and batch.status == status
                ):
                    continue
                lines.append(
                    BatchRebuildLine(
                        batch_id=batch.id,
                        batch_number=batch.batch_number,
                        unit_type=unit,
                        old_quantity_sold=batch.quantity_sold,
                        new_quantity_sold=sold,
                        old_quantity_remaining=batch.quantity_remaining,
                        new_quantity_remaining=remaining,
                        old_status=batch.status,
                        new_status=status,
                    )
                )
                batch.quantity_sold = sold
                batch.quantity_remaining = remaining
                batch.status = status

            for allocation in plan.allocations:
                session.add(
                    SaleAllocation(
                        batch_id=allocation.batch_id,
                        sale_id=allocation.sale_id,
                        quantity_sold=allocation.quantity,
                    )
                )
            allocations += len(plan.allocations)

        session.flush()
        return tuple(lines), allocations, len(sales)

    def scan_and_fix_batch_sales(
        self,
        triggered_by: str = "scheduled",
        auto_fix: bool = True,
    ) -> BatchSalesScanSummary:
        """Validate, and optionally repair, every product with batches or sales."""
        with self._read_session() as session:
            product_ids = StockSelector(session).product_ids_with_activity()

        discrepancies: list[BatchSalesConsistency] = []
        failures: list[ProductFailure] = []
        fixed = 0
        for product_id in product_ids:
            try:
                consistency = self.validate_batch_sales_consistency(product_id)
                if not consistency.has_discrepancy:
                    continue
                discrepancies.append(consistency)
                if auto_fix:
                    if self.fix_batch_sales_discrepancy(product_id, triggered_by).fixed:
                        fixed += 1
            except StockKernelError as exc:
                logger.warning(
                    "batch_sales_scan_product_failed",
                    exc_info=True,
                    extra={"product_id": str(product_id), "error_code": exc.code},
                )
                failures.append(ProductFailure(product_id, exc.code, str(exc)))
            except Exception as exc:
                logger.exception(
                    "batch_sales_scan_product_failed",
                    extra={"product_id": str(product_id), "error_code": _error_code(exc)},
                )
                failures.append(ProductFailure(product_id, _error_code(exc), str(exc)))

        summary = BatchSalesScanSummary(
            triggered_by=triggered_by,
            auto_fix=auto_fix,
            scanned=len(product_ids),
            with_discrepancy=len(discrepancies),
            fixed=fixed,
            failed=len(failures),
            discrepancies=tuple(discrepancies),
            failures=tuple(failures),
        )
        log = logger.warning if discrepancies or failures else logger.info
        log(
            "batch_sales_scan_completed",
            extra={
                "triggered_by": triggered_by,
                "scanned": summary.scanned,
                "with_discrepancy": summary.with_discrepancy,
                "fixed": summary.fixed,
                "failed": summary.failed,
            },
        )
        return summary

    # -------------------------------------------------------------------------
    # Continuity
    # -------------------------------------------------------------------------

    def _day_start(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self._config.tz)

    def validate_daily_continuity(
        self,
        product_id: UUID,
        day: date,
        unit_type: UnitType | None = None,
    ) -> ContinuityResult:
        """
        Opening stock of ``day`` against closing stock of the day before.

        Day boundaries are midnights in the business timezone.  Both sides
        use the same eligibility predicate and unit.
        """
        unit = UnitType(unit_type) if unit_type else self._config.continuity_unit
        start = self._day_start(day)
        end = self._day_start(day + timedelta(days=1)) - _ONE_MICROSECOND

        with self._read_session() as session:
            selector = StockSelector(session)
            previous_closing = selector.stock_at(
                product_id, unit, start - _ONE_MICROSECOND, inclusive=True
            )
            opening = selector.stock_at(product_id, unit, start, inclusive=False)
            closing = selector.stock_at(product_id, unit, end, inclusive=True)
            purchased = selector.purchased_upto(
                product_id, unit, end, inclusive=True
            ) - selector.purchased_upto(product_id, unit, start, inclusive=False)
            sold = selector.sold_upto(
                product_id, unit, end, inclusive=True
            ) - selector.sold_upto(product_id, unit, start, inclusive=False)

        result = ContinuityResult(
            product_id=product_id,
            day=day,
            previous_day=day - timedelta(days=1),
            unit_type=unit,
            previous_closing_stock=previous_closing,
            opening_stock=opening,
            closing_stock=closing,
            purchased=purchased,
            sold=sold,
        )
        if not result.is_valid:
            logger.warning(
                "continuity_break_detected",
                extra={
                    "product_id": str(product_id),
                    "day": day.isoformat(),
                    "unit_type": unit.value,
                    "previous_closing_stock": previous_closing,
                    "opening_stock": opening,
                    "discrepancy": result.discrepancy,
                },
            )
        return result

    def continuity_report(
        self,
        product_id: UUID,
        end_day: date | None = None,
        days: int | None = None,
        unit_type: UnitType | None = None,
    ) -> ContinuityReport:
        """Continuity for the trailing window ending at ``end_day`` (today by default)."""
        unit = UnitType(unit_type) if unit_type else self._config.continuity_unit
        days = self._config.continuity_lookback_days if days is None else days
        if days <= 0:
            raise ValueError(f"days must be positive, got {days}")
        end_day = end_day or self._clock.now().astimezone(self._config.tz).date()
        start_day = end_day - timedelta(days=days - 1)

        results = tuple(
            self.validate_daily_continuity(
                product_id, start_day + timedelta(days=offset), unit
            )
            for offset in range(days)
        )
        return ContinuityReport(
            product_id=product_id,
            unit_type=unit,
            start_day=start_day,
            end_day=end_day,
            days=results,
        )

    # -------------------------------------------------------------------------
    # Integrity and composite runs
    # -------------------------------------------------------------------------

    def validate_batch_integrity(self) -> IntegrityReport:
        with self._read_session() as session:
            return IntegrityValidator(session, self._clock).validate()

    def full_audit(self, triggered_by: str = "scheduled") -> FullAuditSummary:
        """Repair batches from sales first, then propagate into the cache."""
        started_at = self._clock.now()
        logger.info("full_audit_started", extra={"triggered_by": triggered_by})

        batch_sales = self.scan_and_fix_batch_sales(triggered_by, auto_fix=True)
        inventory_sync = self.sync_all(triggered_by)

        summary = FullAuditSummary(
            triggered_by=triggered_by,
            started_at=started_at,
            completed_at=self._clock.now(),
            batch_sales=batch_sales,
            inventory_sync=inventory_sync,
        )
        logger.info(
            "full_audit_completed",
            extra={
                "triggered_by": triggered_by,
                "batch_sales_fixed": batch_sales.fixed,
                "batch_sales_failed": batch_sales.failed,
                "snapshots_corrected": inventory_sync.corrected,
                "snapshots_failed": inventory_sync.failed,
            },
        )
        return summary

    def daily_integrity_check(
        self,
        triggered_by: str = "daily_integrity_fix",
    ) -> DailyIntegritySummary:
        """Integrity sweep; a full audit runs only when it finds something."""
        report = self.validate_batch_integrity()
        audit = None
        if report.has_issues:
            logger.warning(
                "daily_integrity_issues_found",
                extra={"total_issues": report.total_issues},
            )
            audit = self.full_audit(triggered_by)
        return DailyIntegritySummary(triggered_by=triggered_by, report=report, audit=audit)

    # -------------------------------------------------------------------------
    # Batch status and health
    # -------------------------------------------------------------------------

    def refresh_batch_statuses(
        self,
        as_of: datetime | None = None,
        triggered_by: str = "batch_status",
    ) -> StatusRefreshResult:
        """Expire and deplete batches, then resync every product whose stock changed."""
        with self._transaction() as session:
            result = BatchStoreService(session, self._clock).refresh_statuses(
                as_of=as_of,
                triggered_by=triggered_by,
                expiry_alert_days=self._batch_status.expiry_alert_days,
            )

        synced = 0
        failed = 0
        for product_id in result.affected_product_ids:
            try:
                self.sync_one(product_id, triggered_by=triggered_by)
                synced += 1
            except Exception:
                failed += 1
                logger.exception(
                    "batch_status_sync_failed", extra={"product_id": str(product_id)}
                )

        logger.info(
            "batch_statuses_refreshed",
            extra={
                "expired": len(result.expired),
                "depleted": result.depleted,
                "expiring_soon": result.expiring_soon,
                "products_synced": synced,
                "products_failed": failed,
            },
        )
        return replace(result, products_synced=synced, products_failed=failed)

    def stock_health_summary(self) -> StockHealthSummary:
        with self._read_session() as session:
            return StockSelector(session).health_summary(
                self._clock.now(), self._batch_status.expiry_alert_days
            )
