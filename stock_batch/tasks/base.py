"""
InventoryTask protocol and TaskRegistry.

Contract:
    ``InventoryTask`` defines the interface every scheduled task implements.
    ``TaskRegistry`` stores registered tasks keyed by ``task_type``.

Architecture:
    stock_batch/tasks.  Tasks receive a ReconciliationEngine and never
    open sessions themselves; the engine owns transaction boundaries.

Invariants enforced:
    - One task per ``task_type`` string.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from stock_kernel.exceptions import TaskNotRegisteredError

if TYPE_CHECKING:
    from stock_services.reconciliation_engine import ReconciliationEngine


@runtime_checkable
class InventoryTask(Protocol):
    """Protocol for scheduled reconciliation tasks.

    Contract:
        - ``task_type``: unique string key registered in TaskRegistry.
        - ``description``: human-readable label for logs.
        - ``run()``: performs one run and returns a JSON-safe summary.

    Non-goals:
        - Does NOT catch per-product failures; the engine's scans do.
        - Does NOT retry; the next scheduled run does.
    """

    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def run(
        self,
        engine: ReconciliationEngine,
        parameters: dict[str, Any],
        as_of: datetime,
    ) -> dict[str, Any]:
        """Execute one run.

        Args:
            engine: The reconciliation engine to drive.
            parameters: Schedule parameters from configuration.
            as_of: Clock-injected timestamp of the tick.

        Returns:
            The run's result DTO as a plain dict.
        """
        ...


class TaskRegistry:
    """Registry mapping task_type strings to InventoryTask implementations.

    Contract:
        - ``register()`` adds a task; raises ValueError on duplicate.
        - ``get()`` retrieves by task_type; raises TaskNotRegisteredError.
        - ``list_tasks()`` returns all registered task_type strings.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, InventoryTask] = {}

    def register(self, task: InventoryTask) -> None:
        """Register a task implementation.

        Raises:
            ValueError: If a task with the same task_type is already registered.
        """
        if task.task_type in self._tasks:
            raise ValueError(f"Task type '{task.task_type}' is already registered")
        self._tasks[task.task_type] = task

    def get(self, task_type: str) -> InventoryTask:
        try:
            return self._tasks[task_type]
        except KeyError:
            raise TaskNotRegisteredError(task_type, self.list_tasks()) from None

    def list_tasks(self) -> tuple[str, ...]:
        """Return all registered task_type strings, sorted."""
        return tuple(sorted(self._tasks.keys()))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_type: str) -> bool:
        return task_type in self._tasks
