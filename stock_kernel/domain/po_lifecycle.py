"""
Purchase order lifecycle.

Responsibility:
    The transition table and the receipt-status function.  Pure: the
    purchasing service loads and locks the order, asks this module whether
    the move is legal, then persists.

States:
    DRAFT -> SUBMITTED -> APPROVED -> PARTIALLY_RECEIVED -> RECEIVED
    DRAFT | SUBMITTED -> CANCELLED
    RECEIVED and CANCELLED are terminal.

Compensation (rollback of received or approved orders) is a separate path:
it may move APPROVED, PARTIALLY_RECEIVED or RECEIVED to CANCELLED, and only
``assert_compensation`` allows it.
"""

from enum import Enum
from typing import Iterable, Protocol

from stock_kernel.exceptions import InvalidTransitionError


class PurchaseOrderStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


ALLOWED_TRANSITIONS: dict[PurchaseOrderStatus, frozenset[PurchaseOrderStatus]] = {
    PurchaseOrderStatus.DRAFT: frozenset(
        {PurchaseOrderStatus.SUBMITTED, PurchaseOrderStatus.CANCELLED}
    ),
    PurchaseOrderStatus.SUBMITTED: frozenset(
        {PurchaseOrderStatus.APPROVED, PurchaseOrderStatus.CANCELLED}
    ),
    PurchaseOrderStatus.APPROVED: frozenset(
        {PurchaseOrderStatus.PARTIALLY_RECEIVED, PurchaseOrderStatus.RECEIVED}
    ),
    PurchaseOrderStatus.PARTIALLY_RECEIVED: frozenset(
        {PurchaseOrderStatus.PARTIALLY_RECEIVED, PurchaseOrderStatus.RECEIVED}
    ),
    PurchaseOrderStatus.RECEIVED: frozenset(),
    PurchaseOrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    {PurchaseOrderStatus.RECEIVED, PurchaseOrderStatus.CANCELLED}
)

# Statuses whose unreceived quantities count toward on_order.
OPEN_STATUSES = frozenset(
    {
        PurchaseOrderStatus.SUBMITTED,
        PurchaseOrderStatus.APPROVED,
        PurchaseOrderStatus.PARTIALLY_RECEIVED,
    }
)

RECEIVABLE_STATUSES = frozenset(
    {PurchaseOrderStatus.APPROVED, PurchaseOrderStatus.PARTIALLY_RECEIVED}
)

COMPENSATION_SOURCES = frozenset(
    {
        PurchaseOrderStatus.APPROVED,
        PurchaseOrderStatus.PARTIALLY_RECEIVED,
        PurchaseOrderStatus.RECEIVED,
    }
)


class ReceivableLine(Protocol):
    qty_ordered: int
    qty_received: int


def can_transition(current: str, target: str) -> bool:
    return PurchaseOrderStatus(target) in ALLOWED_TRANSITIONS[PurchaseOrderStatus(current)]


def assert_transition(purchase_order_id: object, current: str, target: str) -> PurchaseOrderStatus:
    """
    Raise InvalidTransitionError unless ``current -> target`` is allowed.

    Returns:
        The target status.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(
            purchase_order_id=str(purchase_order_id),
            from_status=str(PurchaseOrderStatus(current).value),
            to_status=str(PurchaseOrderStatus(target).value),
        )
    return PurchaseOrderStatus(target)


def assert_compensation(purchase_order_id: object, current: str) -> PurchaseOrderStatus:
    """Allow the rollback path into CANCELLED."""
    if PurchaseOrderStatus(current) not in COMPENSATION_SOURCES:
        raise InvalidTransitionError(
            purchase_order_id=str(purchase_order_id),
            from_status=PurchaseOrderStatus(current).value,
            to_status=PurchaseOrderStatus.CANCELLED.value,
        )
    return PurchaseOrderStatus.CANCELLED


def derive_receipt_status(lines: Iterable[ReceivableLine]) -> PurchaseOrderStatus:
    """RECEIVED iff every line has qty_received >= qty_ordered."""
    if all(line.qty_received >= line.qty_ordered for line in lines):
        return PurchaseOrderStatus.RECEIVED
    return PurchaseOrderStatus.PARTIALLY_RECEIVED
