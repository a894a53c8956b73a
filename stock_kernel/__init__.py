"""
Stock Kernel

Batch-level stock bookkeeping for a warehouse distribution business:
- FEFO batch allocation at sale time
- Per-product inventory snapshot kept in step with batch counters
- Append-only audit trail of every automatic correction
- Read-only integrity sweeps across all three stock representations
"""

__version__ = "0.1.0"
