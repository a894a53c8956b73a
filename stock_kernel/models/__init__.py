"""Domain models for the stock kernel."""

from stock_kernel.models.audit_entry import AuditAction, AuditEntry
from stock_kernel.models.batch import StockBatch
from stock_kernel.models.inventory import InventorySnapshot
from stock_kernel.models.product import Product
from stock_kernel.models.sale import Sale, SaleAllocation

__all__ = [
    "Product",
    "StockBatch",
    "Sale",
    "SaleAllocation",
    "InventorySnapshot",
    "AuditEntry",
    "AuditAction",
]
