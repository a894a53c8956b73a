"""
stock_batch -- Job scheduling for the reconciliation runs.

Drives ReconciliationEngine from outside on cron schedules taken from
configuration: snapshot sync every five minutes, a full audit hourly, the
integrity check at 02:00 and the batch status refresh at midnight.

Architecture:
    stock_batch/ is a top-level package.  Nothing in stock_kernel/,
    stock_engines/ or stock_services/ imports from stock_batch.

Invariants:
    - Clock injection (no datetime.now() calls).
    - Schedule evaluation is pure.
    - At most one run of a given job is in flight at a time.
    - Graceful shutdown (stop() waits for the current tick).
"""
