"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock bookkeeping errors have very different consequences. A sale that
cannot be filled must fail loudly and immediately; a repair that could not
complete must be retried by the next scan; an attempt to edit the audit
trail is a security event. Callers tell these apart by TYPE and CODE,
never by parsing messages.

Every exception:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        allocator.create_sale(product_id, 1000, UnitType.PACKS)
    except InsufficientStockError as e:
        api_response(code=e.code, requested=e.requested, available=e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- StockError
    |   +-- InvalidQuantityError
    |   +-- InsufficientStockError
    |   +-- SaleNotFoundError
    |   +-- BatchNotFoundError
    |   +-- BatchInUseError
    |
    +-- ReconciliationError
    |   +-- RepairFailureError
    |   +-- RepairTimeoutError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- SchedulingError
        +-- TaskNotRegisteredError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Stock           | INVALID_QUANTITY            | Zero or negative quantity requested
                | INSUFFICIENT_STOCK          | Sellable batches cannot cover the sale
                | SALE_NOT_FOUND              | Sale ID doesn't exist
                | BATCH_NOT_FOUND             | Batch ID doesn't exist
                | BATCH_IN_USE                | Deleting a batch that has sales
----------------|-----------------------------|-----------------------------------------
Reconciliation  | REPAIR_FAILURE              | Batch rebuild aborted and rolled back
                | REPAIR_TIMEOUT              | Batch rebuild exceeded its time budget
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Updating/deleting an append-only row
----------------|-----------------------------|-----------------------------------------
Scheduling      | TASK_NOT_REGISTERED         | Schedule names an unknown task type

===============================================================================
HANDLING PATTERNS
===============================================================================

1. SALE PATH -- propagate to the caller, nothing is committed:

    except InsufficientStockError as e:
        return {"error": e.code, "available": e.available}

2. RECONCILIATION PATH -- caught per product inside scan loops:

    except RepairFailureError as e:
        logger.warning("repair_failed", extra={"product_id": e.product_id})
        # product stays inconsistent; next scheduled scan retries it

===============================================================================
"""


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Stock-related exceptions


class StockError(StockKernelError):
    """Base exception for stock movement errors."""

    code: str = "STOCK_ERROR"


class InvalidQuantityError(StockError):
    """A stock movement was requested with a non-positive quantity."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: int, operation: str):
        self.quantity = quantity
        self.operation = operation
        super().__init__(
            f"Quantity must be a positive integer for {operation}, got {quantity}"
        )


class InsufficientStockError(StockError):
    """
    Sellable batches cannot satisfy the requested quantity.

    Raised before anything is written: the sale, its allocations and the
    snapshot are all left untouched.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        unit_type: str,
        requested: int,
        available: int,
    ):
        self.product_id = product_id
        self.unit_type = unit_type
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: requested "
            f"{requested} {unit_type}, only {available} available"
        )


class SaleNotFoundError(StockError):
    """Sale with given ID was not found."""

    code: str = "SALE_NOT_FOUND"

    def __init__(self, sale_id: str):
        self.sale_id = sale_id
        super().__init__(f"Sale not found: {sale_id}")


class BatchNotFoundError(StockError):
    """Batch with given ID was not found."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Batch not found: {batch_id}")


class BatchInUseError(StockError):
    """A batch with recorded sales cannot be deleted."""

    code: str = "BATCH_IN_USE"

    def __init__(self, batch_id: str, quantity_sold: int):
        self.batch_id = batch_id
        self.quantity_sold = quantity_sold
        super().__init__(
            f"Batch {batch_id} cannot be deleted: {quantity_sold} already sold from it"
        )


# Reconciliation-related exceptions


class ReconciliationError(StockKernelError):
    """Base exception for reconciliation and repair errors."""

    code: str = "RECONCILIATION_ERROR"


class RepairFailureError(ReconciliationError):
    """
    A destructive batch rebuild could not complete.

    The repair transaction is rolled back in full; the product stays in
    its previous (inconsistent) state until the next scheduled scan.
    """

    code: str = "REPAIR_FAILURE"

    def __init__(self, product_id: str, reason: str):
        self.product_id = product_id
        self.reason = reason
        super().__init__(f"Batch repair failed for product {product_id}: {reason}")


class RepairTimeoutError(RepairFailureError):
    """A batch rebuild ran past its time budget and was rolled back."""

    code: str = "REPAIR_TIMEOUT"

    def __init__(self, product_id: str, timeout_seconds: float, elapsed_seconds: float):
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds
        super().__init__(
            product_id,
            f"exceeded {timeout_seconds:.1f}s budget (took {elapsed_seconds:.1f}s)",
        )


# Immutability-related exceptions


class ImmutabilityError(StockKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete a protected record.

    Audit entries are append-only; batches with recorded sales are
    never deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Scheduling-related exceptions


class SchedulingError(StockKernelError):
    """Base exception for scheduler errors."""

    code: str = "SCHEDULING_ERROR"


class TaskNotRegisteredError(SchedulingError):
    """A schedule references a task type that is not registered."""

    code: str = "TASK_NOT_REGISTERED"

    def __init__(self, task_type: str, available: tuple[str, ...]):
        self.task_type = task_type
        self.available = available
        super().__init__(
            f"No task registered for type '{task_type}'. Available: {list(available)}"
        )
