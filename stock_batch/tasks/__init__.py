"""
stock_batch.tasks -- Task protocol, registry, and the inventory tasks.
"""

from stock_batch.tasks.base import InventoryTask, TaskRegistry
from stock_batch.tasks.inventory_tasks import (
    INVENTORY_TASKS,
    BatchStatusTask,
    DailyIntegrityTask,
    FullAuditTask,
    SyncAllTask,
)


def default_task_registry() -> TaskRegistry:
    """Create a fresh registry with every inventory task registered."""
    registry = TaskRegistry()
    for task_cls in INVENTORY_TASKS:
        registry.register(task_cls())
    return registry


__all__ = [
    "BatchStatusTask",
    "DailyIntegrityTask",
    "FullAuditTask",
    "InventoryTask",
    "SyncAllTask",
    "TaskRegistry",
    "default_task_registry",
]
