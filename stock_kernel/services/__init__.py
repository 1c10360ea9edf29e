"""Kernel services: everything that writes ledger state (command side)."""

from stock_kernel.services.auditor_service import AuditorService, AuditTrace
from stock_kernel.services.cost_accumulator import CostAccumulator
from stock_kernel.services.idempotency_guard import IdempotencyGuard, IdempotentOutcome
from stock_kernel.services.ledger_writer import LedgerWriter
from stock_kernel.services.lot_tracker import LotTracker
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.snapshot_projector import SnapshotProjector

__all__ = [
    "AuditTrace",
    "AuditorService",
    "CostAccumulator",
    "IdempotencyGuard",
    "IdempotentOutcome",
    "LedgerWriter",
    "LotTracker",
    "SequenceService",
    "SnapshotProjector",
]
