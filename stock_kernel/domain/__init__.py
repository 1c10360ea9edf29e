"""
Pure domain layer for the stock kernel.

Nothing in this package performs I/O or imports SQLAlchemy; services load
state, call into these functions, and persist the results.
"""

from stock_kernel.domain.actor import ActorContext
from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.values import (
    BASE_VARIANT_KEY,
    IdempotencyScope,
    MovementType,
    ReferenceType,
    Role,
    variant_key_for,
)

__all__ = [
    "ActorContext",
    "BASE_VARIANT_KEY",
    "Clock",
    "DeterministicClock",
    "IdempotencyScope",
    "MovementType",
    "ReferenceType",
    "Role",
    "SystemClock",
    "variant_key_for",
]
