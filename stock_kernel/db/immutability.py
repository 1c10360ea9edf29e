"""
Append-only enforcement for the ledger and the audit trail.

``StockMovement`` and ``AuditEvent`` rows are never changed once flushed.
Listeners on ``before_update`` and ``before_delete`` raise
``ImmutabilityViolationError`` before any SQL is sent.  A wrong movement is
corrected by appending a compensating one.

Snapshots, lots and cost rows are projections of the ledger and stay
mutable.

Call ``register_immutability_listeners()`` once at startup.
"""

from sqlalchemy import event

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_REASONS = {
    ("StockMovement", "UPDATE"): "stock movements are append-only; append a compensating movement",
    ("StockMovement", "DELETE"): "stock movements cannot be deleted; append a compensating movement",
    ("AuditEvent", "UPDATE"): "audit events are immutable",
    ("AuditEvent", "DELETE"): "audit events cannot be deleted",
}


def _reject(entity_type: str, operation: str, target) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": entity_type, "entity_id": str(target.id), "operation": operation},
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=_REASONS[(entity_type, operation)],
    )


def _movement_update(mapper, connection, target):
    _reject("StockMovement", "UPDATE", target)


def _movement_delete(mapper, connection, target):
    _reject("StockMovement", "DELETE", target)


def _audit_update(mapper, connection, target):
    _reject("AuditEvent", "UPDATE", target)


def _audit_delete(mapper, connection, target):
    _reject("AuditEvent", "DELETE", target)


def _listeners():
    from stock_kernel.models.audit_event import AuditEvent
    from stock_kernel.models.stock_movement import StockMovement

    return (
        (StockMovement, "before_update", _movement_update),
        (StockMovement, "before_delete", _movement_delete),
        (AuditEvent, "before_update", _audit_update),
        (AuditEvent, "before_delete", _audit_delete),
    )


def register_immutability_listeners() -> None:
    """Install the listeners; calling it again is a no-op."""
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners.  Tests use this to simulate tampering."""
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
