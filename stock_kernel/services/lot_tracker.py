"""
LotTracker -- expiry-dated sub-balances for stores that track lots.

Responsibility:
    Apply one movement's quantity to the store's lots: create or increment
    the named lot on the way in, decrement the named lot or deplete by policy
    on the way out, and hand a receipt's lots back when it is reversed.

Architecture position:
    Kernel > Services.  Called by InventoryService after the ledger movement
    is appended, inside the same transaction and under the snapshot lock.

Invariants enforced:
    - No-op for stores whose policy has ``track_expiry_lots`` off.
    - The positive lot total for a key never exceeds ``max(on_hand, 0)``:
      incoming quantity is tracked only up to that room, depletion without
      an expiry date never takes more than a lot holds, and a reversal trims
      whatever the lots still hold above the new on-hand.
    - A named lot may only go below zero when the store allows negative
      stock.

Failure modes:
    - LotNotFoundError: outgoing quantity names an expiry date with no lot.
    - InsufficientLotStockError: named lot would go negative while the store
      forbids negative stock.
"""

from datetime import date
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.collaborators import StorePolicy
from stock_kernel.domain.dtos import LotChange
from stock_kernel.domain.lots import DepletionPolicy, LotBalance, plan_depletion
from stock_kernel.exceptions import InsufficientLotStockError, LotNotFoundError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.stock_lot import StockLot
from stock_kernel.services.base import BaseService

logger = get_logger("services.lot_tracker")


class LotTracker(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        depletion_policy: DepletionPolicy | str = DepletionPolicy.FEFO,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = DepletionPolicy(depletion_policy)

    @property
    def depletion_policy(self) -> DepletionPolicy:
        return self._policy

    def apply(
        self,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
        qty_delta: int,
        expiry_date: date | None = None,
        on_hand: int | None = None,
    ) -> tuple[LotChange, ...]:
        """
        Apply ``qty_delta`` to the lots of one key.

        ``on_hand`` is the snapshot after the movement; when given, incoming
        quantity is tracked only up to the room it leaves above the lots, and
        outgoing quantity leaves no more in the lots than ``on_hand``.

        Returns:
            One LotChange per lot touched, in the order they were touched.
        """
        if not store.track_expiry_lots or qty_delta == 0:
            return ()
        if qty_delta > 0:
            if expiry_date is None:
                return ()
            if on_hand is not None:
                room = max(on_hand, 0) - self.tracked_total(store, product_id, variant_key)
                if room < qty_delta:
                    logger.debug(
                        "lot_increment_capped",
                        extra={"qty": qty_delta, "tracked_qty": max(room, 0), "on_hand": on_hand},
                    )
                    qty_delta = room
                if qty_delta <= 0:
                    return ()
            return (self._add_to_lot(store, product_id, variant_key, expiry_date, qty_delta),)
        if expiry_date is not None:
            changes = (self._take_from_lot(store, product_id, variant_key, expiry_date, qty_delta),)
        else:
            changes = self._deplete(store, product_id, variant_key, -qty_delta)
        return changes + self._trim(store, product_id, variant_key, on_hand)

    def reverse(
        self,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
        qty: int,
        received_lots: Sequence[tuple[date, int]],
        on_hand: int,
    ) -> tuple[LotChange, ...]:
        """
        Take back ``qty`` that was received into ``received_lots``.

        Each named lot gives back at most what it received and what it still
        holds.  Quantity already sold out of those lots is not chased into
        other lots; only what the lots hold above ``on_hand`` afterwards is
        depleted by policy.
        """
        if not store.track_expiry_lots or qty <= 0:
            return ()

        changes: list[LotChange] = []
        remaining = qty
        for expiry_date, received in sorted(received_lots):
            if remaining <= 0:
                break
            lot = self._lock_one(
                StockLot,
                store_id=store.store_id,
                product_id=product_id,
                variant_key=variant_key,
                expiry_date=expiry_date,
            )
            if lot is None:
                continue
            take = min(received, remaining, max(lot.on_hand_qty, 0))
            if take <= 0:
                continue
            lot.on_hand_qty -= take
            remaining -= take
            changes.append(
                LotChange(
                    lot_id=lot.id,
                    expiry_date=lot.expiry_date,
                    qty_delta=-take,
                    on_hand_qty=lot.on_hand_qty,
                )
            )
        self.session.flush()
        return tuple(changes) + self._trim(store, product_id, variant_key, on_hand)

    def _trim(
        self,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
        on_hand: int | None,
    ) -> tuple[LotChange, ...]:
        # A named lot driven below zero leaves the others above on_hand.
        if on_hand is None:
            return ()
        excess = self.tracked_total(store, product_id, variant_key) - max(on_hand, 0)
        if excess <= 0:
            return ()
        return self._deplete(store, product_id, variant_key, excess)

    def tracked_total(self, store: StorePolicy, product_id: UUID, variant_key: str) -> int:
        """Sum of the positive lot balances for one key."""
        total = self.session.execute(
            select(func.coalesce(func.sum(StockLot.on_hand_qty), 0)).where(
                StockLot.store_id == store.store_id,
                StockLot.product_id == product_id,
                StockLot.variant_key == variant_key,
                StockLot.on_hand_qty > 0,
            )
        ).scalar_one()
        return int(total)

    def _add_to_lot(
        self,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
        expiry_date: date,
        qty: int,
    ) -> LotChange:
        lot, _ = self._get_or_create_locked(
            StockLot,
            filters={
                "store_id": store.store_id,
                "product_id": product_id,
                "variant_key": variant_key,
                "expiry_date": expiry_date,
            },
            defaults={
                "organization_id": store.organization_id,
                "on_hand_qty": 0,
                "created_at": self._clock.now(),
            },
        )
        lot.on_hand_qty += qty
        self.session.flush()
        logger.debug(
            "lot_incremented",
            extra={"lot_id": str(lot.id), "expiry_date": expiry_date.isoformat(), "qty": qty},
        )
        return LotChange(
            lot_id=lot.id,
            expiry_date=lot.expiry_date,
            qty_delta=qty,
            on_hand_qty=lot.on_hand_qty,
        )

    def _take_from_lot(
        self,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
        expiry_date: date,
        qty_delta: int,
    ) -> LotChange:
        lot = self._lock_one(
            StockLot,
            store_id=store.store_id,
            product_id=product_id,
            variant_key=variant_key,
            expiry_date=expiry_date,
        )
        if lot is None:
            raise LotNotFoundError(f"{product_id}/{variant_key}@{expiry_date.isoformat()}")
        if lot.on_hand_qty + qty_delta < 0 and not store.allow_negative_stock:
            raise InsufficientLotStockError(
                store_id=str(store.store_id),
                product_id=str(product_id),
                expiry_date=expiry_date.isoformat(),
                on_hand_qty=lot.on_hand_qty,
                qty_delta=qty_delta,
            )
        lot.on_hand_qty += qty_delta
        self.session.flush()
        return LotChange(
            lot_id=lot.id,
            expiry_date=lot.expiry_date,
            qty_delta=qty_delta,
            on_hand_qty=lot.on_hand_qty,
        )

    def _deplete(
        self,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
        qty: int,
    ) -> tuple[LotChange, ...]:
        lots = self.session.execute(
            select(StockLot)
            .where(
                StockLot.store_id == store.store_id,
                StockLot.product_id == product_id,
                StockLot.variant_key == variant_key,
                StockLot.on_hand_qty > 0,
            )
            .order_by(StockLot.expiry_date, StockLot.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        by_id = {lot.id: lot for lot in lots}

        draws = plan_depletion(
            [
                LotBalance(
                    lot_id=lot.id,
                    expiry_date=lot.expiry_date,
                    on_hand_qty=lot.on_hand_qty,
                    created_at=lot.created_at,
                )
                for lot in lots
            ],
            qty,
            self._policy,
        )

        changes = []
        for draw in draws:
            lot = by_id[draw.lot_id]
            lot.on_hand_qty -= draw.qty
            changes.append(
                LotChange(
                    lot_id=lot.id,
                    expiry_date=lot.expiry_date,
                    qty_delta=-draw.qty,
                    on_hand_qty=lot.on_hand_qty,
                )
            )
        self.session.flush()

        untracked = qty - sum(draw.qty for draw in draws)
        logger.debug(
            "lots_depleted",
            extra={
                "policy": self._policy.value,
                "lots_touched": len(changes),
                "untracked_qty": untracked,
            },
        )
        return tuple(changes)
