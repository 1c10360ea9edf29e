"""
Lot depletion planning.

Responsibility:
    Decide which expiry lots an outgoing quantity draws from when the caller
    did not name an expiry date.  Pure: the LotTracker service loads and
    locks the lots, applies the plan, and persists.

Policies:
    fefo -- first expired, first out: earliest expiry_date first.
    fifo -- first in, first out: oldest lot (created_at) first.

Each lot gives at most what it holds.  Quantity beyond the tracked total
is left untracked, so lot sums never exceed on-hand.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Sequence
from uuid import UUID


class DepletionPolicy(str, Enum):
    FEFO = "fefo"
    FIFO = "fifo"


@dataclass(frozen=True)
class LotBalance:
    lot_id: UUID
    expiry_date: date
    on_hand_qty: int
    created_at: datetime


@dataclass(frozen=True)
class LotDraw:
    lot_id: UUID
    expiry_date: date
    qty: int


def plan_depletion(
    lots: Sequence[LotBalance],
    qty: int,
    policy: DepletionPolicy | str = DepletionPolicy.FEFO,
) -> tuple[LotDraw, ...]:
    """
    Plan how ``qty`` (> 0) is drawn from ``lots``.

    Returns:
        Draws in consumption order; their total is min(qty, tracked total).
    """
    if qty <= 0:
        raise ValueError(f"qty must be positive, got {qty}")
    policy = DepletionPolicy(policy)
    if policy is DepletionPolicy.FEFO:
        ordered = sorted(lots, key=lambda lot: (lot.expiry_date, lot.created_at))
    else:
        ordered = sorted(lots, key=lambda lot: (lot.created_at, lot.expiry_date))

    draws: list[LotDraw] = []
    outstanding = qty
    for lot in ordered:
        if outstanding == 0:
            break
        if lot.on_hand_qty <= 0:
            continue
        take = min(lot.on_hand_qty, outstanding)
        draws.append(LotDraw(lot_id=lot.lot_id, expiry_date=lot.expiry_date, qty=take))
        outstanding -= take
    return tuple(draws)
