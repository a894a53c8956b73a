"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Two kinds of stock rows must never be rewritten after the fact:

  - AuditEntry rows are the record of every automatic correction.  If they
    could be edited, drift that was silently healed could also be silently
    hidden.
  - A Batch with recorded sales is referenced by allocation rows and by the
    sales ledger.  Deleting it would orphan those sales and make the
    batch-vs-sales check meaningless.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity      | When Protected                 | Operation blocked
------------|--------------------------------|-------------------
AuditEntry  | ALWAYS (from creation)         | UPDATE, DELETE
StockBatch  | While quantity_sold > 0        | DELETE

===============================================================================
USAGE
===============================================================================

    from stock_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup (idempotent)

To temporarily disable (TESTS ONLY - never in production):

    from stock_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_audit_entry_immutability(mapper, connection, target):
    """Prevent any updates to AuditEntry records."""
    from stock_kernel.models.audit_entry import AuditEntry

    if not isinstance(target, AuditEntry):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "AuditEntry",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="AuditEntry",
        entity_id=str(target.id),
        reason="Audit entries are append-only and cannot be modified",
    )


def _check_audit_entry_delete(mapper, connection, target):
    """Prevent deletion of AuditEntry records."""
    from stock_kernel.models.audit_entry import AuditEntry

    if not isinstance(target, AuditEntry):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "AuditEntry",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="AuditEntry",
        entity_id=str(target.id),
        reason="Audit entries cannot be deleted",
    )


def _check_batch_delete(mapper, connection, target):
    """Prevent deletion of batches that stock has been sold from."""
    from stock_kernel.models.batch import StockBatch

    if not isinstance(target, StockBatch):
        return

    if (target.quantity_sold or 0) <= 0:
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "StockBatch",
            "entity_id": str(target.id),
            "operation": "DELETE",
            "quantity_sold": target.quantity_sold,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="StockBatch",
        entity_id=str(target.id),
        reason=f"Batch has {target.quantity_sold} sold and cannot be deleted",
    )


def _listeners():
    from stock_kernel.models.audit_entry import AuditEntry
    from stock_kernel.models.batch import StockBatch

    return (
        (AuditEntry, "before_update", _check_audit_entry_immutability),
        (AuditEntry, "before_delete", _check_audit_entry_delete),
        (StockBatch, "before_delete", _check_batch_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; already-registered listeners are skipped.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
