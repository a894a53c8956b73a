"""
Append-only audit entries and protected batches.

Verifies:
- AuditEntry rows can never be updated or deleted through the ORM
- A batch with recorded sales cannot be deleted
- A batch nothing was sold from can be
"""

from contextlib import contextmanager

import pytest
from sqlalchemy import select

from stock_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stock_kernel.domain.types import UnitType
from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.models.audit_entry import AuditEntry
from stock_kernel.models.batch import StockBatch
from stock_kernel.services.audit_log import AuditLogService


@contextmanager
def disabled_immutability():
    """Disable ORM immutability listeners to simulate tampering."""
    unregister_immutability_listeners()
    try:
        yield
    finally:
        register_immutability_listeners()


@pytest.fixture
def audit_entry(session, clock, product):
    return AuditLogService(session, clock).record_snapshot_correction(
        snapshot_id=product.id,
        product_id=product.id,
        product_name=product.name,
        unit_type=UnitType.PACKS,
        before=12,
        after=10,
        triggered_by="manual",
    )


class TestAuditEntryImmutability:
    def test_update_rejected(self, session, audit_entry):
        audit_entry.triggered_by = "someone_else"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "AuditEntry"
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"

    def test_payload_update_rejected(self, session, audit_entry):
        audit_entry.new_values = {"quantity": 999}

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_rejected(self, session, audit_entry):
        session.delete(audit_entry)

        with pytest.raises(ImmutabilityViolationError, match="cannot be deleted"):
            session.flush()

    def test_tampering_possible_only_with_listeners_off(self, session, audit_entry):
        with disabled_immutability():
            audit_entry.triggered_by = "tampered"
            session.flush()

        session.expire_all()
        stored = session.execute(
            select(AuditEntry.triggered_by).where(AuditEntry.id == audit_entry.id)
        ).scalar_one()
        assert stored == "tampered"


class TestBatchDeletion:
    def test_sold_batch_cannot_be_deleted(self, session, product, purchase, allocator):
        batch = purchase(product, 10)
        allocator.create_sale(product.id, 1, UnitType.PACKS)
        session.delete(batch)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "StockBatch"
        assert "1 sold" in exc_info.value.reason

    def test_unsold_batch_can_be_deleted(self, session, product, purchase):
        batch = purchase(product, 10)
        batch_id = batch.id
        session.delete(batch)
        session.flush()

        assert session.get(StockBatch, batch_id) is None

    def test_counter_updates_allowed(self, session, product, purchase):
        batch = purchase(product, 10)
        batch.quantity_sold, batch.quantity_remaining = 2, 8
        session.flush()

        assert batch.counters_balanced
