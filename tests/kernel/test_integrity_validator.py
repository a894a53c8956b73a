"""
IntegrityValidator: each check finds exactly the rows it is meant to.
"""

import pytest
from sqlalchemy import delete, select

from stock_kernel.domain.integrity import IntegrityCheck
from stock_kernel.domain.types import UnitType
from stock_kernel.models.inventory import InventorySnapshot
from stock_kernel.models.sale import Sale, SaleAllocation
from stock_kernel.selectors.integrity import IntegrityValidator
from stock_kernel.services.snapshot_service import InventorySnapshotService


@pytest.fixture
def validator(session, clock):
    return IntegrityValidator(session, clock)


@pytest.fixture
def stocked(product, purchase, allocator):
    batch = purchase(product, 100, batch_number="LOT-1")
    sale = allocator.create_sale(product.id, 10, UnitType.PACKS)
    return batch, sale


class TestCleanData:
    def test_no_issues(self, stocked, validator):
        report = validator.validate()

        assert not report.has_issues
        assert report.total_issues == 0
        assert report.checks_run == tuple(IntegrityCheck)

    def test_report_shape(self, stocked, validator):
        payload = validator.validate().to_dict()

        assert payload["has_issues"] is False
        assert payload["issues"] == []
        assert len(payload["checks_run"]) == 6


class TestBatchCounters:
    def test_quantity_mismatch(self, session, stocked, validator):
        batch, _ = stocked
        batch.quantity = 99
        session.flush()

        violations = validator.run_check(IntegrityCheck.QUANTITY_MISMATCH)

        assert len(violations) == 1
        assert violations[0].entity_id == str(batch.id)
        assert violations[0].details["discrepancy"] == -1
        assert violations[0].details["product_name"] == "Paracetamol 500mg"

    def test_negative_quantities(self, session, stocked, validator):
        batch, _ = stocked
        batch.quantity_sold, batch.quantity_remaining = 101, -1
        session.flush()

        violations = validator.run_check(IntegrityCheck.NEGATIVE_QUANTITIES)

        assert [v.entity_id for v in violations] == [str(batch.id)]
        assert violations[0].details["quantity_remaining"] == -1


class TestAllocationLedger:
    def test_batch_sold_without_allocations(self, session, stocked, validator):
        batch, sale = stocked
        session.execute(delete(SaleAllocation).where(SaleAllocation.sale_id == sale.sale_id))
        session.execute(delete(Sale).where(Sale.id == sale.sale_id))
        session.flush()

        report = validator.validate()

        group = report.group(IntegrityCheck.BATCH_ALLOCATION_MISMATCH)
        assert group.count == 1
        assert group.violations[0].details == {
            "batch_number": "LOT-1",
            "batch_quantity_sold": 10,
            "tracked_quantity_sold": 0,
            "discrepancy": 10,
        }
        assert report.group(IntegrityCheck.ORPHAN_SALES) is None

    def test_orphan_sale(self, session, clock, product, validator):
        sale = Sale(
            product_id=product.id,
            quantity=4,
            unit_type=UnitType.PACKS,
            created_at=clock.now(),
            reference="INV-404",
        )
        session.add(sale)
        session.flush()

        violations = validator.run_check(IntegrityCheck.ORPHAN_SALES)

        assert [v.entity_id for v in violations] == [str(sale.id)]
        assert violations[0].details["reference"] == "INV-404"

    def test_sale_allocation_mismatch(self, session, stocked, validator):
        _, sale = stocked
        allocation = session.execute(
            select(SaleAllocation).where(SaleAllocation.sale_id == sale.sale_id)
        ).scalar_one()
        allocation.quantity_sold = 7
        session.flush()

        report = validator.validate()

        group = report.group(IntegrityCheck.SALE_ALLOCATION_MISMATCH)
        assert group.count == 1
        assert group.violations[0].details["discrepancy"] == 3
        # The batch still says 10 sold against 7 tracked.
        assert report.group(IntegrityCheck.BATCH_ALLOCATION_MISMATCH).count == 1


class TestSnapshotCache:
    def test_snapshot_disagrees_with_batches(self, session, product, stocked, validator):
        row = session.execute(
            select(InventorySnapshot).where(InventorySnapshot.product_id == product.id)
        ).scalar_one()
        row.quantity = 95
        session.flush()

        violations = validator.run_check(IntegrityCheck.INVENTORY_BATCH_MISMATCH)

        assert len(violations) == 1
        assert violations[0].details["inventory_quantity"] == 95
        assert violations[0].details["batch_remaining"] == 90
        assert violations[0].details["discrepancy"] == 5

    def test_missing_snapshot_row(self, session, product, stocked, validator):
        session.execute(delete(InventorySnapshot))
        session.flush()

        violations = validator.run_check(IntegrityCheck.INVENTORY_BATCH_MISMATCH)

        assert violations[0].entity_id == ""
        assert violations[0].details["inventory_quantity"] is None
        assert violations[0].details["discrepancy"] == -90

    def test_expired_stock_is_not_expected_in_snapshot(
        self, session, clock, product, purchase, batch_store, validator
    ):
        purchase(product, 30, expires_in_days=1)
        clock.advance_days(2)
        batch_store.refresh_statuses()

        stale = validator.run_check(IntegrityCheck.INVENTORY_BATCH_MISMATCH)
        assert stale[0].details["batch_remaining"] == 0
        assert stale[0].details["discrepancy"] == 30

        InventorySnapshotService(session, clock).sync_product(product.id)
        assert validator.run_check(IntegrityCheck.INVENTORY_BATCH_MISMATCH) == []


def test_grouped_report_counts(session, stocked, validator):
    batch, _ = stocked
    batch.quantity = 99
    session.execute(delete(InventorySnapshot))
    session.flush()

    report = validator.validate()

    assert report.has_issues
    assert report.total_issues == 2
    assert {g.check for g in report.groups} == {
        IntegrityCheck.QUANTITY_MISMATCH,
        IntegrityCheck.INVENTORY_BATCH_MISMATCH,
    }
