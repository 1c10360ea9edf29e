"""
Value types shared across the stock kernel.

Responsibility:
    Closed enumerations (movement types, reference types, roles) and the
    variant-key convention.  Pure: no I/O, no SQLAlchemy.
"""

from enum import Enum
from uuid import UUID

BASE_VARIANT_KEY = "BASE"


def variant_key_for(variant_id: UUID | str | None) -> str:
    """Return the stock-tracking key for a variant ("BASE" when None)."""
    if variant_id is None:
        return BASE_VARIANT_KEY
    return str(variant_id)


class MovementType(str, Enum):
    """Closed set of ledger movement types.

    Only RECEIVE carries cost and creates lots from incoming stock.
    """

    RECEIVE = "RECEIVE"
    SALE = "SALE"
    ADJUSTMENT = "ADJUSTMENT"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"

    @property
    def updates_cost(self) -> bool:
        return self is MovementType.RECEIVE


class ReferenceType(str, Enum):
    """What a movement's reference_id points at."""

    TRANSFER = "TRANSFER"
    PURCHASE_ORDER = "PURCHASE_ORDER"
    PURCHASE_ORDER_ROLLBACK = "PURCHASE_ORDER_ROLLBACK"
    STOCK_COUNT = "STOCK_COUNT"


class Role(str, Enum):
    """Actor roles, ranked."""

    STAFF = "STAFF"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def satisfies(self, required: "Role") -> bool:
        return self.rank >= required.rank


_ROLE_RANK = {Role.STAFF: 1, Role.MANAGER: 2, Role.ADMIN: 3}


class IdempotencyScope(str, Enum):
    """Operation families an idempotency key is scoped to."""

    INVENTORY_ADJUST = "inventory.adjust"
    INVENTORY_RECEIVE = "inventory.receive"
    INVENTORY_TRANSFER = "inventory.transfer"
    PURCHASE_ORDER_RECEIVE = "purchase_orders.receive"
    PURCHASE_ORDER_CREATE_FROM_REORDER = "purchase_orders.create_from_reorder"
    STOCK_COUNT_APPLY = "stock_counts.apply"
