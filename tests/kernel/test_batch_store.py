"""
BatchStoreService: purchases, deletion guard and automatic status changes.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from stock_kernel.domain.types import BatchStatus, UnitType
from stock_kernel.exceptions import (
    BatchInUseError,
    BatchNotFoundError,
    InvalidQuantityError,
)
from stock_kernel.models.audit_entry import AuditAction, AuditEntry
from stock_kernel.models.batch import StockBatch
from stock_kernel.selectors.stock_selector import StockSelector


def snapshot_quantity(session, product_id, unit=UnitType.PACKS):
    row = StockSelector(session).snapshot_rows(product_id).get(unit)
    return row.quantity if row is not None else None


class TestRecordPurchase:
    def test_new_batch_is_active_and_fully_remaining(self, session, product, purchase):
        batch = purchase(product, 100, batch_number="B-001")

        assert batch.status == BatchStatus.ACTIVE
        assert (batch.quantity, batch.quantity_sold, batch.quantity_remaining) == (100, 0, 100)
        assert batch.counters_balanced

    def test_purchase_creates_then_increments_snapshot(self, session, product, purchase):
        purchase(product, 100)
        assert snapshot_quantity(session, product.id) == 100

        purchase(product, 20)
        assert snapshot_quantity(session, product.id) == 120

    def test_units_are_tracked_separately(self, session, product, purchase):
        purchase(product, 100, UnitType.PACKS)
        purchase(product, 4, UnitType.PALLETS)

        assert snapshot_quantity(session, product.id, UnitType.PACKS) == 100
        assert snapshot_quantity(session, product.id, UnitType.PALLETS) == 4

    @pytest.mark.parametrize("quantity", [0, -5])
    def test_non_positive_quantity_rejected(self, batch_store, product, quantity):
        with pytest.raises(InvalidQuantityError) as exc_info:
            batch_store.record_purchase(product.id, quantity, UnitType.PACKS)
        assert exc_info.value.code == "INVALID_QUANTITY"

    def test_logs_purchase(self, product, purchase, captured_logs):
        purchase(product, 10)

        records = [r for r in captured_logs() if r["message"] == "purchase_recorded"]
        assert records and records[0]["quantity"] == 10


class TestDeletePurchase:
    def test_unsold_batch_removed_from_snapshot(self, session, product, purchase, batch_store):
        purchase(product, 100)
        extra = purchase(product, 30)

        batch_store.delete_purchase(extra.id)

        assert session.get(StockBatch, extra.id) is None
        assert snapshot_quantity(session, product.id) == 100

    def test_batch_with_sales_cannot_be_deleted(self, product, purchase, allocator, batch_store):
        batch = purchase(product, 100)
        allocator.create_sale(product.id, 1, UnitType.PACKS)

        with pytest.raises(BatchInUseError) as exc_info:
            batch_store.delete_purchase(batch.id)
        assert exc_info.value.quantity_sold == 1

    def test_unknown_batch(self, batch_store):
        from uuid import uuid4

        with pytest.raises(BatchNotFoundError):
            batch_store.delete_purchase(uuid4())


class TestStatusManagement:
    def test_expired_batch_marked_and_audited(self, session, clock, product, purchase, batch_store):
        batch = purchase(product, 50, expires_in_days=1)
        clock.advance_days(2)

        changes = batch_store.mark_expired_batches()

        assert [c.batch_id for c in changes] == [batch.id]
        assert batch.status == BatchStatus.EXPIRED
        entries = session.execute(
            select(AuditEntry).where(AuditEntry.action == AuditAction.BATCH_STATUS_CHANGE)
        ).scalars().all()
        assert len(entries) == 1
        assert entries[0].old_values == {"status": "ACTIVE"}
        assert entries[0].new_values["status"] == "EXPIRED"
        assert "auto-marked by system" in entries[0].new_values["reason"]

    def test_expiry_exactly_now_counts(self, clock, product, purchase, batch_store):
        purchase(product, 5, expires_in_days=0)

        assert len(batch_store.mark_expired_batches()) == 1

    def test_depleted_and_no_expiry_batches_untouched(self, clock, product, purchase, batch_store):
        purchase(product, 5, expires_in_days=None)
        clock.advance_days(1000)

        assert batch_store.mark_expired_batches() == ()

    def test_mark_depleted_catches_missed_transition(self, session, product, purchase, batch_store):
        batch = purchase(product, 5)
        batch.quantity_sold, batch.quantity_remaining = 5, 0
        session.flush()

        assert batch_store.mark_depleted_batches() == 1
        assert batch.status == BatchStatus.DEPLETED

    def test_refresh_counts_expiring_soon(self, clock, product, purchase, batch_store):
        purchase(product, 5, expires_in_days=1)
        purchase(product, 5, expires_in_days=30)
        purchase(product, 5, expires_in_days=300)
        clock.advance(3600 * 36)

        result = batch_store.refresh_statuses(expiry_alert_days=60)

        assert len(result.expired) == 1
        assert result.expiring_soon == 1
        assert result.affected_product_ids == (product.id,)
