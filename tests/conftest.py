"""
Pytest fixtures for the stock reconciliation test suite.

Provides:
- In-memory SQLite databases (StaticPool, one per test) with all tables
- A session factory for ReconciliationEngine, which opens its own sessions
- Deterministic clocks
- Product / purchase / sale helpers
- Structured log capture

Every in-memory session shares one DBAPI connection.  Commit the test
session before calling anything that opens its own session (the
reconciliation engine, the scheduler, the CLI), then ``expire_all()``
before reading results back.
"""

import json
import logging
from datetime import UTC, datetime, timedelta
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from stock_config.schema import BatchStatusConfig, ReconciliationConfig
from stock_kernel.db.engine import create_sqlite_engine, create_tables
from stock_kernel.db.immutability import register_immutability_listeners
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.domain.types import UnitType
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stock_kernel.models.product import Product
from stock_kernel.services.batch_store import BatchStoreService
from stock_services.allocator import BatchAllocator
from stock_services.reconciliation_engine import ReconciliationEngine

# 2024-06-01 12:00 UTC, a Saturday.
T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


def days(n: float) -> timedelta:
    return timedelta(days=n)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stock_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, reconciler):
            reconciler.sync_all()
            logs = captured_logs()
            assert any(r["message"] == "inventory_sync_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield


@pytest.fixture
def db_engine():
    """Fresh in-memory database with every table created."""
    engine = create_sqlite_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    sess = session_factory()
    yield sess
    try:
        sess.rollback()
    finally:
        sess.close()


# =============================================================================
# Clock and configuration
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(T0)


@pytest.fixture
def reconciliation_config() -> ReconciliationConfig:
    return ReconciliationConfig()


@pytest.fixture
def reconciler(session_factory, clock, reconciliation_config) -> ReconciliationEngine:
    return ReconciliationEngine(
        session_factory,
        clock=clock,
        config=reconciliation_config,
        batch_status=BatchStatusConfig(expiry_alert_days=60),
    )


# =============================================================================
# Data helpers
# =============================================================================


@pytest.fixture
def make_product(session):
    """Create and flush a product."""
    counter = {"n": 0}

    def _make(name: str | None = None, is_active: bool = True) -> Product:
        counter["n"] += 1
        product = Product(
            name=name or f"Product {counter['n']:03d}",
            product_no=f"PRD-{counter['n']:04d}",
            is_active=is_active,
        )
        session.add(product)
        session.flush()
        return product

    return _make


@pytest.fixture
def product(make_product) -> Product:
    return make_product("Paracetamol 500mg")


@pytest.fixture
def batch_store(session, clock) -> BatchStoreService:
    return BatchStoreService(session, clock)


@pytest.fixture
def allocator(session, clock) -> BatchAllocator:
    return BatchAllocator(session, clock)


@pytest.fixture
def purchase(batch_store, clock):
    """Record a purchase; dates are offsets in days from the clock's now."""

    def _purchase(
        product: Product,
        quantity: int,
        unit_type: UnitType = UnitType.PACKS,
        expires_in_days: float | None = 365,
        purchased_days_ago: float = 0,
        batch_number: str | None = None,
    ):
        now = clock.now()
        return batch_store.record_purchase(
            product.id,
            quantity,
            unit_type,
            purchase_date=now - days(purchased_days_ago),
            expiry_date=now + days(expires_in_days) if expires_in_days is not None else None,
            batch_number=batch_number,
        )

    return _purchase
