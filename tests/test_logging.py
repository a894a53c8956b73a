"""Tests for the structured logging system (stock_kernel/logging_config.py)."""

import json
import logging
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import PurePosixPath
from io import StringIO
from uuid import uuid4

import pytest

from stock_kernel.domain.types import BatchStatus
from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite-wide setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "stock_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("inventory_synced", extra={"corrections": 2, "unit_type": "PACKS"})

        record = _parse_log(stream)
        assert record["corrections"] == 2
        assert record["unit_type"] == "PACKS"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", job_name="inventory-sync")
        get_logger("test").info("job_started")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["job_name"] == "inventory-sync"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_stock_exception_code_extracted(self):
        """Stock kernel exceptions carry a .code attribute."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InsufficientStockError("p-1", "PACKS", 10, 4)
        except InsufficientStockError:
            get_logger("test").error("sale_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INSUFFICIENT_STOCK"
        assert record["exc_requested"] == 10
        assert record["exc_available"] == 4

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "product_id" not in record

    def test_domain_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        when = datetime(2024, 6, 1, tzinfo=UTC)
        get_logger("test").info(
            "batch_expired",
            extra={"batch_id": uid, "status": BatchStatus.EXPIRED, "at": when},
        )

        record = _parse_log(stream)
        assert record["batch_id"] == str(uid)
        assert record["status"] == "EXPIRED"
        assert record["at"] == when.isoformat()

    def test_dates_and_unknown_objects_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "continuity_checked",
            extra={
                "day": date(2024, 6, 1),
                "ratio": Decimal("0.50"),
                "config_path": PurePosixPath("/etc/stock/defaults.yaml"),
            },
        )

        record = _parse_log(stream)
        assert record["day"] == "2024-06-01"
        assert record["ratio"] == "0.50"
        assert record["config_path"] == "/etc/stock/defaults.yaml"

    def test_level_filters_debug(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", product_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "product_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(triggered_by="scheduled")
        with LogContext.bind(triggered_by="manual"):
            assert LogContext.get_all()["triggered_by"] == "manual"
        assert LogContext.get_all()["triggered_by"] == "scheduled"

    def test_bind_restores_none(self):
        with LogContext.bind(product_id="temp"):
            assert LogContext.get_all()["product_id"] == "temp"
        assert "product_id" not in LogContext.get_all()

    def test_bind_stringifies_values(self):
        uid = uuid4()
        with LogContext.bind(product_id=uid):
            assert LogContext.get_all()["product_id"] == str(uid)

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            product_id="p",
            triggered_by="t",
            actor_id="a",
            job_name="j",
        )
        assert len(LogContext.get_all()) == 5


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        handlers = logging.getLogger("stock_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers

    def test_get_logger_returns_child(self):
        assert get_logger("services.reconciliation").name == (
            "stock_kernel.services.reconciliation"
        )

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("batch.scheduler").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "stock_kernel.batch.scheduler"
