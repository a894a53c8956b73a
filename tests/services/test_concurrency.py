"""
Concurrent writers on a file database.

Sales and repairs on the same product serialize on the batch lock: the
second writer waits for the first to commit and then reads its counters,
so the last units of stock are never sold twice and a sale never draws
from counters a repair is about to replace.
"""

import threading
import time
from datetime import timedelta
from time import monotonic

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.orm import sessionmaker

from stock_kernel.db.engine import create_sqlite_engine, create_tables
from stock_kernel.domain.types import BatchStatus, UnitType
from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.models.batch import StockBatch
from stock_kernel.models.product import Product
from stock_kernel.models.sale import Sale, SaleAllocation
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.batch_store import BatchStoreService
from stock_services.allocator import BatchAllocator
from stock_services.reconciliation_engine import ReconciliationEngine

JOIN_TIMEOUT = 20


@pytest.fixture
def file_factory(tmp_path):
    engine = create_sqlite_engine(f"sqlite:///{tmp_path / 'stock.db'}")
    create_tables(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


def seed_product(factory, clock, quantity: int) -> Product:
    with factory() as session:
        product = Product(name="Ceftriaxone 1g", product_no="PRD-0100")
        session.add(product)
        session.flush()
        BatchStoreService(session, clock).record_purchase(
            product.id,
            quantity,
            UnitType.PACKS,
            expiry_date=clock.now() + timedelta(days=365),
            batch_number="CFX-1",
        )
        session.commit()
        return product.id


def sell(factory, clock, product_id, quantity, outcomes, key):
    with factory() as session:
        try:
            outcomes[key] = BatchAllocator(session, clock).create_sale(
                product_id, quantity, UnitType.PACKS
            )
            session.commit()
        except Exception as exc:
            outcomes[key] = exc


def stock_state(factory, product_id):
    with factory() as session:
        batch = session.execute(
            select(StockBatch).where(StockBatch.product_id == product_id)
        ).scalar_one()
        sold = session.execute(
            select(func.coalesce(func.sum(Sale.quantity), 0)).where(
                Sale.product_id == product_id
            )
        ).scalar_one()
        snapshot = StockSelector(session).snapshot_rows(product_id)[UnitType.PACKS].quantity
        return batch, sold, snapshot


class TestRacingSales:
    def test_second_sale_waits_for_first_and_finds_no_stock(self, file_factory, clock):
        product_id = seed_product(file_factory, clock, 5)
        first_drawn = threading.Event()
        release_first = threading.Event()
        outcomes = {}

        def first():
            with file_factory() as session:
                outcomes["first"] = BatchAllocator(session, clock).create_sale(
                    product_id, 5, UnitType.PACKS
                )
                first_drawn.set()
                release_first.wait(timeout=JOIN_TIMEOUT)
                session.commit()

        t1 = threading.Thread(target=first)
        t1.start()
        assert first_drawn.wait(timeout=JOIN_TIMEOUT)

        t2 = threading.Thread(
            target=sell, args=(file_factory, clock, product_id, 5, outcomes, "second")
        )
        t2.start()
        time.sleep(0.3)
        # Still waiting on the first sale's lock.
        assert t2.is_alive()
        assert "second" not in outcomes

        release_first.set()
        t1.join(JOIN_TIMEOUT)
        t2.join(JOIN_TIMEOUT)

        assert outcomes["first"].quantity == 5
        assert isinstance(outcomes["second"], InsufficientStockError)
        assert outcomes["second"].available == 0

        batch, sold, snapshot = stock_state(file_factory, product_id)
        assert (batch.quantity_sold, batch.quantity_remaining) == (5, 0)
        assert batch.status == BatchStatus.DEPLETED
        assert sold == 5
        assert snapshot == 0

    def test_many_buyers_never_oversell(self, file_factory, clock):
        product_id = seed_product(file_factory, clock, 5)
        outcomes = {}
        threads = [
            threading.Thread(
                target=sell, args=(file_factory, clock, product_id, 1, outcomes, n)
            )
            for n in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(JOIN_TIMEOUT)

        succeeded = [o for o in outcomes.values() if not isinstance(o, Exception)]
        rejected = [o for o in outcomes.values() if isinstance(o, Exception)]
        assert len(succeeded) == 5
        assert len(rejected) == 3
        assert all(isinstance(o, InsufficientStockError) for o in rejected)

        batch, sold, snapshot = stock_state(file_factory, product_id)
        assert (batch.quantity_sold, batch.quantity_remaining) == (5, 0)
        assert sold == 5
        assert snapshot == 0


class _PausingTimer:
    """Pauses on its second reading, taken just before a repair commits."""

    def __init__(self):
        self.readings = 0
        self.paused = threading.Event()
        self.resume = threading.Event()

    def __call__(self) -> float:
        self.readings += 1
        if self.readings == 2:
            self.paused.set()
            self.resume.wait(timeout=JOIN_TIMEOUT)
        return monotonic()


class TestSaleDuringRepair:
    def test_sale_waits_for_repair_and_draws_repaired_stock(self, file_factory, clock):
        product_id = seed_product(file_factory, clock, 100)
        with file_factory() as session:
            sale = BatchAllocator(session, clock).create_sale(product_id, 10, UnitType.PACKS)
            session.execute(delete(SaleAllocation).where(SaleAllocation.sale_id == sale.sale_id))
            session.execute(delete(Sale).where(Sale.id == sale.sale_id))
            session.commit()

        timer = _PausingTimer()
        reconciler = ReconciliationEngine(file_factory, clock=clock, timer=timer)
        outcomes = {}

        def repair():
            try:
                outcomes["repair"] = reconciler.fix_batch_sales_discrepancy(product_id)
            except Exception as exc:
                outcomes["repair"] = exc

        t1 = threading.Thread(target=repair)
        t1.start()
        assert timer.paused.wait(timeout=JOIN_TIMEOUT)

        # 90 remaining before the repair commits, 100 after it.
        t2 = threading.Thread(
            target=sell, args=(file_factory, clock, product_id, 95, outcomes, "sale")
        )
        t2.start()
        time.sleep(0.3)
        assert t2.is_alive()
        assert "sale" not in outcomes

        timer.resume.set()
        t1.join(JOIN_TIMEOUT)
        t2.join(JOIN_TIMEOUT)

        assert outcomes["repair"].fixed is True
        assert outcomes["sale"].quantity == 95

        batch, sold, snapshot = stock_state(file_factory, product_id)
        assert (batch.quantity_sold, batch.quantity_remaining) == (95, 5)
        assert sold == 95
        assert snapshot == 5
