"""
LedgerWriter -- the only code path that appends stock movements.

Responsibility:
    Lock the (store, product, variant) snapshot, apply the negative-stock
    gate, append the movement and move ``on_hand`` by the same delta, all
    in the caller's transaction.  Also owns ``on_order`` arithmetic for
    purchase orders.

Architecture position:
    Kernel > Services.  Called by InventoryService (and through it by the
    purchasing module).  Never commits.

Invariants enforced:
    - Ledger correctness: every appended movement moves the locked snapshot's
      ``on_hand`` by exactly ``qty_delta``, so ``on_hand`` equals the ledger
      sum for the key after every flush.
    - Negative-stock gate: when the store policy forbids negative stock, a
      movement that would take ``on_hand`` below zero is rejected before
      anything is written.
    - ``on_order`` never goes below zero.
    - qty_delta is a non-zero integer.

Failure modes:
    - InvalidQuantityError: zero or non-integer qty_delta.
    - InsufficientStockError: negative-stock gate (conflict, not validation).
    - OnOrderUnderflowError: on_order would go negative.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from stock_kernel.domain.actor import ActorContext
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.collaborators import StorePolicy
from stock_kernel.domain.values import MovementType, ReferenceType
from stock_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    OnOrderUnderflowError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.stock_movement import StockMovement
from stock_kernel.services.base import BaseService

logger = get_logger("services.ledger_writer")


def require_nonzero_int(field_name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidQuantityError(field_name, value, "must be an integer")
    if value == 0:
        raise InvalidQuantityError(field_name, value, "must be non-zero")
    return value


class LedgerWriter(BaseService):
    """
    Append-only writer for the stock ledger.

    Contract:
        Callers pass the store policy they already resolved for the actor's
        organization; the writer trusts it for the negative-stock gate.

    Non-goals:
        - Does NOT check roles or tenancy (the inventory module does).
        - Does NOT touch lots or costs.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def lock_snapshot(
        self,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
    ) -> InventorySnapshot:
        """Return the snapshot for the key, inserted at zero if missing, locked."""
        snapshot, created = self._get_or_create_locked(
            InventorySnapshot,
            filters={
                "store_id": store.store_id,
                "product_id": product_id,
                "variant_key": variant_key,
            },
            defaults={
                "organization_id": store.organization_id,
                "on_hand": 0,
                "on_order": 0,
                "allow_negative_stock": store.allow_negative_stock,
                "min_stock": 0,
            },
        )
        logger.debug(
            "snapshot_locked",
            extra={
                "store_id": str(store.store_id),
                "product_id": str(product_id),
                "variant_key": variant_key,
                "snapshot_created": created,
                "on_hand": snapshot.on_hand,
            },
        )
        return snapshot

    def lock_snapshots(
        self,
        store: StorePolicy,
        keys: Iterable[tuple[UUID, str]],
    ) -> dict[tuple[UUID, str], InventorySnapshot]:
        """
        Lock several keys of one store in (product_id, variant_key) order.

        Multi-key operations call this before any cost row or audit counter
        is touched, so every writer takes snapshot locks in the same order.
        """
        return {
            (product_id, variant_key): self.lock_snapshot(store, product_id, variant_key)
            for product_id, variant_key in sorted(set(keys), key=lambda k: (str(k[0]), k[1]))
        }

    def append_movement(
        self,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
        movement_type: MovementType,
        qty_delta: int,
        actor: ActorContext,
        request_id: str,
        unit_cost: Decimal | None = None,
        note: str | None = None,
        reference_type: ReferenceType | None = None,
        reference_id: UUID | None = None,
        created_at: datetime | None = None,
    ) -> tuple[StockMovement, InventorySnapshot]:
        """
        Append one movement and apply it to the locked snapshot.

        Postconditions:
            - snapshot.on_hand == previous on_hand + qty_delta.
            - Nothing is written when the gate rejects the movement.
        """
        qty_delta = require_nonzero_int("qty_delta", qty_delta)
        movement_type = MovementType(movement_type)

        snapshot = self.lock_snapshot(store, product_id, variant_key)
        new_on_hand = snapshot.on_hand + qty_delta
        if new_on_hand < 0 and not store.allow_negative_stock:
            logger.info(
                "negative_stock_rejected",
                extra={
                    "store_id": str(store.store_id),
                    "product_id": str(product_id),
                    "variant_key": variant_key,
                    "on_hand": snapshot.on_hand,
                    "qty_delta": qty_delta,
                },
            )
            raise InsufficientStockError(
                store_id=str(store.store_id),
                product_id=str(product_id),
                variant_key=variant_key,
                on_hand=snapshot.on_hand,
                qty_delta=qty_delta,
            )

        now = created_at or self._clock.now()
        movement = StockMovement(
            organization_id=store.organization_id,
            store_id=store.store_id,
            product_id=product_id,
            variant_key=variant_key,
            movement_type=movement_type.value,
            qty_delta=qty_delta,
            unit_cost=unit_cost,
            note=note,
            reference_type=ReferenceType(reference_type).value if reference_type else None,
            reference_id=reference_id,
            request_id=request_id,
            created_by_id=actor.actor_id,
            created_at=now,
        )
        self.session.add(movement)
        snapshot.on_hand = new_on_hand
        snapshot.updated_at = now
        self.session.flush()

        logger.info(
            "stock_movement_appended",
            extra={
                "movement_id": str(movement.id),
                "movement_type": movement_type.value,
                "product_id": str(product_id),
                "variant_key": variant_key,
                "qty_delta": qty_delta,
                "on_hand": new_on_hand,
            },
        )
        return movement, snapshot

    def adjust_on_order(
        self,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
        delta: int,
    ) -> InventorySnapshot:
        """Move ``on_order`` by ``delta`` (positive on submit, negative on receive/cancel)."""
        snapshot = self.lock_snapshot(store, product_id, variant_key)
        if delta == 0:
            return snapshot
        new_on_order = snapshot.on_order + delta
        if new_on_order < 0:
            raise OnOrderUnderflowError(
                store_id=str(store.store_id),
                product_id=str(product_id),
                variant_key=variant_key,
                on_order=snapshot.on_order,
                delta=delta,
            )
        snapshot.on_order = new_on_order
        snapshot.updated_at = self._clock.now()
        self.session.flush()
        logger.debug(
            "on_order_adjusted",
            extra={
                "product_id": str(product_id),
                "variant_key": variant_key,
                "delta": delta,
                "on_order": new_on_order,
            },
        )
        return snapshot
