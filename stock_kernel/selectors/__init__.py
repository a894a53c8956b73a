"""Read-only selectors for stock queries and the integrity sweep."""

from stock_kernel.selectors.integrity import IntegrityValidator
from stock_kernel.selectors.stock_selector import StockSelector

__all__ = ["StockSelector", "IntegrityValidator"]
