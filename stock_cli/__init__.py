"""
stock_cli -- Operator command line for stock reconciliation.

Entry point: the ``inventory-audit`` console script, or
``python -m stock_cli``.
"""

from stock_cli.inventory_audit import main

__all__ = ["main"]
