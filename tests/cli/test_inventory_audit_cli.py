"""
Operator CLI: each subcommand runs one engine operation against a real
SQLite file and prints its result as JSON.
"""

import json
from datetime import timedelta
from io import StringIO

import pytest
from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from stock_cli.inventory_audit import build_parser, main
from stock_kernel.db.engine import create_sqlite_engine, reset_engine
from stock_kernel.domain.clock import SystemClock
from stock_kernel.domain.types import UnitType
from stock_kernel.models.audit_entry import AuditAction, AuditEntry
from stock_kernel.models.inventory import InventorySnapshot
from stock_kernel.models.product import Product
from stock_kernel.models.sale import Sale, SaleAllocation
from stock_kernel.services.batch_store import BatchStoreService
from stock_services.allocator import BatchAllocator


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("STOCK_CONFIG_PATH", raising=False)
    url = f"sqlite:///{tmp_path / 'stock.db'}"
    yield url
    reset_engine()


def run(database_url: str, *argv: str) -> tuple[int, dict]:
    out = StringIO()
    code = main(["--database-url", database_url, *argv], out=out)
    return code, json.loads(out.getvalue())


@pytest.fixture
def store(database_url):
    """Initialized database plus a session factory for seeding it."""
    code, payload = run(database_url, "init-db")
    assert (code, payload["status"]) == (0, "ok")
    engine = create_sqlite_engine(database_url)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def seeded(store):
    """One product: 100 packs bought, 10 sold, then the sale deleted behind the ledger's back."""
    clock = SystemClock()
    with store() as session:
        product = Product(name="Amoxicillin 250mg", product_no="PRD-0001")
        session.add(product)
        session.flush()
        BatchStoreService(session, clock).record_purchase(
            product.id,
            100,
            UnitType.PACKS,
            expiry_date=clock.now() + timedelta(days=365),
            batch_number="AMX-1",
        )
        sale = BatchAllocator(session, clock).create_sale(product.id, 10, UnitType.PACKS)
        session.execute(delete(SaleAllocation).where(SaleAllocation.sale_id == sale.sale_id))
        session.execute(delete(Sale).where(Sale.id == sale.sale_id))
        session.commit()
        return product.id


class TestParser:
    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_fix_requires_product(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["fix"])

    def test_unit_is_case_insensitive(self):
        args = build_parser().parse_args(
            ["continuity", "--product-id", "6f1c8a52-9a57-4a65-9d0c-1f0f1f6f2b1e", "--unit", "units"]
        )
        assert args.unit == UnitType.UNITS
        assert args.triggered_by == "manual"


class TestCommands:
    def test_health(self, database_url, seeded):
        code, payload = run(database_url, "health")

        assert code == 0
        assert payload["total_products"] == 1
        assert payload["healthy_products"] == 1

    def test_integrity_reports_orphaned_deduction(self, database_url, seeded):
        code, payload = run(database_url, "integrity")

        assert code == 0
        assert payload["has_issues"] is True
        assert [i["type"] for i in payload["issues"]] == ["BATCH_ALLOCATION_MISMATCH"]

    def test_consistency_report_then_fix(self, database_url, seeded):
        _, report = run(database_url, "consistency")
        assert (report["with_discrepancy"], report["fixed"]) == (1, 0)

        _, single = run(database_url, "consistency", "--product-id", str(seeded))
        assert single["discrepancy"] == 10

        _, fixed = run(database_url, "consistency", "--fix")
        assert fixed["fixed"] == 1

        _, after = run(database_url, "consistency")
        assert after["with_discrepancy"] == 0

    def test_fix_records_triggered_by(self, database_url, store, seeded):
        code, payload = run(
            database_url, "--triggered-by", "ops_ticket_42", "fix", "--product-id", str(seeded)
        )

        assert code == 0
        assert payload["fixed"] is True
        with store() as session:
            entry = session.execute(
                select(AuditEntry).where(
                    AuditEntry.action == AuditAction.BATCH_SALES_DISCREPANCY_FIX
                )
            ).scalar_one()
            assert entry.triggered_by == "ops_ticket_42"
            snapshot = session.execute(
                select(InventorySnapshot.quantity).where(InventorySnapshot.product_id == seeded)
            ).scalar_one()
            assert snapshot == 100

    def test_sync_one_and_all(self, database_url, store, seeded):
        with store() as session:
            row = session.execute(select(InventorySnapshot)).scalar_one()
            row.quantity = 7
            session.commit()

        _, one = run(database_url, "sync", "--product-id", str(seeded))
        _, everything = run(database_url, "sync")

        assert one["corrections"][0]["after"] == 90
        assert everything["corrected"] == 0

    def test_audit(self, database_url, seeded):
        code, payload = run(database_url, "audit")

        assert code == 0
        assert payload["batch_sales"]["fixed"] == 1
        assert payload["inventory_sync"]["scanned"] == 1

    def test_continuity(self, database_url, seeded):
        code, payload = run(
            database_url, "continuity", "--product-id", str(seeded), "--days", "2"
        )

        assert code == 0
        assert payload["unit_type"] == "PACKS"
        assert len(payload["days"]) == 2

    def test_batch_status(self, database_url, seeded):
        code, payload = run(database_url, "batch-status")

        assert code == 0
        assert payload["expired"] == []


class TestErrors:
    def test_typed_error_exit_code(self, database_url, store):
        clock = SystemClock()
        with store() as session:
            product = Product(name="Ibuprofen 400mg", product_no="PRD-0002")
            session.add(product)
            session.flush()
            batch = BatchStoreService(session, clock).record_purchase(
                product.id, 10, UnitType.PACKS
            )
            BatchAllocator(session, clock).create_sale(product.id, 10, UnitType.PACKS)
            batch.quantity, batch.quantity_sold, batch.quantity_remaining = 5, 3, 2
            session.commit()
            product_id = product.id

        code, payload = run(database_url, "fix", "--product-id", str(product_id))

        assert code == 1
        assert payload["error"] == "REPAIR_FAILURE"
        assert "exceed batch capacity" in payload["message"]
