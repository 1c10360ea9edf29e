"""
Stock Kernel

An append-only inventory ledger with:
- Idempotent stock mutations
- Atomic multi-store transfers
- Snapshot projection rebuildable from the ledger
- Expiry lot tracking and moving average cost
- Full auditability via hash chain
"""

__version__ = "0.1.0"
