"""
Operator CLI for stock reconciliation.

Runs the same ReconciliationEngine operations the scheduler runs, on demand,
and prints each result as JSON on stdout.  Structured logs go to stderr.

Usage:
    inventory-audit sync [--product-id ID]
    inventory-audit audit
    inventory-audit integrity
    inventory-audit consistency [--product-id ID] [--fix]
    inventory-audit fix --product-id ID
    inventory-audit continuity --product-id ID [--date YYYY-MM-DD] [--days N]
    inventory-audit health
    inventory-audit batch-status
    inventory-audit init-db
    inventory-audit scheduler

Global options:
    --config PATH        YAML configuration (default: STOCK_CONFIG_PATH or defaults.yaml)
    --database-url URL   Overrides database.url
    --triggered-by NAME  Label written to audit entries (default: manual)

Exit codes:
    0  success
    1  a typed stock error was raised (printed as JSON with its code)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from typing import Any
from uuid import UUID

from stock_batch.services.scheduler import InventoryScheduler
from stock_config import get_active_config
from stock_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from stock_kernel.domain.clock import SystemClock
from stock_kernel.domain.types import UnitType
from stock_kernel.exceptions import StockKernelError
from stock_kernel.logging_config import LogContext, configure_logging, get_logger
from stock_services.reconciliation_engine import ReconciliationEngine

logger = get_logger("cli.inventory_audit")


def _emit(payload: dict[str, Any], out) -> None:
    out.write(json.dumps(payload, indent=2, sort_keys=True, default=str))
    out.write("\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inventory_audit",
        description="Stock reconciliation: sync, audit, repair and report",
    )
    parser.add_argument("--config", default=None, help="Path to configuration YAML")
    parser.add_argument("--database-url", default=None, help="Overrides database.url")
    parser.add_argument(
        "--triggered-by",
        default="manual",
        help="Label recorded on audit entries (default: manual)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("sync", help="Recompute snapshot rows from batches")
    p.add_argument("--product-id", type=UUID, default=None)

    sub.add_parser("audit", help="Batch-vs-sales repair, then snapshot sync")
    sub.add_parser("integrity", help="Read-only integrity sweep")

    p = sub.add_parser("consistency", help="Batch quantity_sold vs sales ledger")
    p.add_argument("--product-id", type=UUID, default=None)
    p.add_argument("--fix", action="store_true", help="Repair discrepancies found")

    p = sub.add_parser("fix", help="Rebuild one product's batches from its sales")
    p.add_argument("--product-id", type=UUID, required=True)

    p = sub.add_parser("continuity", help="Closing(D-1) vs opening(D)")
    p.add_argument("--product-id", type=UUID, required=True)
    p.add_argument("--date", type=date.fromisoformat, default=None, help="Last day checked")
    p.add_argument("--days", type=int, default=None, help="Trailing window length")
    p.add_argument(
        "--unit",
        type=lambda v: UnitType(v.upper()),
        default=None,
        help="PALLETS, PACKS or UNITS (default: configured continuity unit)",
    )

    sub.add_parser("health", help="Stock health summary")
    sub.add_parser("batch-status", help="Expire and deplete batches, then resync")
    sub.add_parser("init-db", help="Create tables")

    p = sub.add_parser("scheduler", help="Run the job scheduler until interrupted")
    p.add_argument("--tick-interval", type=float, default=60.0)

    return parser


def run_command(args: argparse.Namespace, engine: ReconciliationEngine, config) -> dict[str, Any]:
    """Dispatch one parsed command and return its JSON payload."""
    command = args.command
    triggered_by = args.triggered_by

    if command == "sync":
        if args.product_id:
            return engine.sync_one(args.product_id, triggered_by=triggered_by).to_dict()
        return engine.sync_all(triggered_by=triggered_by).to_dict()

    if command == "audit":
        return engine.full_audit(triggered_by=triggered_by).to_dict()

    if command == "integrity":
        return engine.validate_batch_integrity().to_dict()

    if command == "consistency":
        if args.product_id:
            return engine.validate_batch_sales_consistency(args.product_id).to_dict()
        return engine.scan_and_fix_batch_sales(
            triggered_by=triggered_by, auto_fix=args.fix
        ).to_dict()

    if command == "fix":
        return engine.fix_batch_sales_discrepancy(
            args.product_id, triggered_by=triggered_by
        ).to_dict()

    if command == "continuity":
        return engine.continuity_report(
            args.product_id, end_day=args.date, days=args.days, unit_type=args.unit
        ).to_dict()

    if command == "health":
        return engine.stock_health_summary().to_dict()

    if command == "batch-status":
        return engine.refresh_batch_statuses(triggered_by=triggered_by).to_dict()

    if command == "init-db":
        create_tables()
        return {"status": "ok", "command": "init-db"}

    if command == "scheduler":
        scheduler = InventoryScheduler.from_config(
            config, engine, tick_interval_seconds=args.tick_interval
        )
        scheduler.start()
        try:
            scheduler.wait()
        except KeyboardInterrupt:
            pass
        finally:
            scheduler.stop()
        return {"status": "stopped", "command": "scheduler"}

    raise ValueError(f"Unknown command: {command}")


def main(argv: list[str] | None = None, out=None) -> int:
    out = out or sys.stdout
    args = build_parser().parse_args(argv)

    config = get_active_config(args.config)
    configure_logging(level=getattr(logging, config.logging.level.upper()))
    init_engine_from_url(
        args.database_url or config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    engine = ReconciliationEngine(
        get_session_factory(),
        clock=SystemClock(),
        config=config.reconciliation,
        batch_status=config.batch_status,
    )

    with LogContext.bind(triggered_by=args.triggered_by):
        try:
            payload = run_command(args, engine, config)
        except StockKernelError as exc:
            logger.error(
                "cli_command_failed",
                extra={"command": args.command, "error_code": exc.code},
            )
            _emit({"error": exc.code, "message": str(exc)}, out)
            return 1

    _emit(payload, out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
