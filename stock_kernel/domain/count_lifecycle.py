"""
Stock count lifecycle.

    DRAFT -> IN_PROGRESS      (first scan)
    DRAFT | IN_PROGRESS -> APPLIED | CANCELLED

APPLIED and CANCELLED are terminal; lines of a terminal count never change.
"""

from enum import Enum

from stock_kernel.exceptions import StockCountLockedError


class StockCountStatus(str, Enum):
    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    APPLIED = "APPLIED"
    CANCELLED = "CANCELLED"


EDITABLE_STATUSES = frozenset({StockCountStatus.DRAFT, StockCountStatus.IN_PROGRESS})


def assert_editable(stock_count_id: object, status: str) -> StockCountStatus:
    current = StockCountStatus(status)
    if current not in EDITABLE_STATUSES:
        raise StockCountLockedError(str(stock_count_id), current.value)
    return current


def count_delta(counted_qty: int, expected_on_hand: int) -> int:
    """Adjustment that brings ``expected_on_hand`` to ``counted_qty``."""
    return counted_qty - expected_on_hand
