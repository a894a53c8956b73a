"""stock_batch.services -- The polling scheduler."""

from stock_batch.services.scheduler import InventoryScheduler

__all__ = ["InventoryScheduler"]
