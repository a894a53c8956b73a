"""
BaseService -- abstract base for all stock kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write service in the kernel.  Services receive a SQLAlchemy
    ``Session`` and an injected ``Clock``; they use ``session.flush()``,
    never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback it.  The caller
      (ReconciliationEngine, the scheduler, the CLI or a test) owns
      commit/rollback.  Services MAY open a SAVEPOINT
      (``session.begin_nested()``) to make a multi-row mutation atomic
      inside the caller's transaction.

Failure modes:
    - A subclass that commits breaks the one-transaction-per-product
      guarantee of the reconciliation scans.
"""

from abc import ABC

from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for all kernel write services.

    Contract:
        Accepts a ``Session`` from the caller and persists changes with
        ``session.flush()`` inside the active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle.
        - Does NOT provide read-only reporting queries; those belong in
          ``stock_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Args:
            session: SQLAlchemy session for database operations.
            clock: Clock for timestamps.  Defaults to SystemClock.
        """
        self.session = session
        self.clock = clock or SystemClock()
