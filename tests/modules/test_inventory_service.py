"""
Tests for InventoryService: adjust, receive, snapshot maintenance.

Covers:
- adjustments move on_hand and the snapshot always equals the ledger sum
- the negative-stock gate, and that a rejected request writes nothing
- role, store-scope and tenant checks
- idempotent replay and key reuse with different arguments
- pack conversion and per-base cost on receipt
- low-stock alert after set_min_stock
- expiry lots never hold more than the on-hand
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from stock_kernel.domain.values import BASE_VARIANT_KEY, MovementType
from stock_kernel.exceptions import (
    IdempotencyKeyReuseError,
    InsufficientRoleError,
    InsufficientStockError,
    InvalidQuantityError,
    MissingIdentifierError,
    NegativeUnitCostError,
    PackNotFoundError,
    ProductNotFoundError,
    StoreAccessDeniedError,
    StoreNotFoundError,
)
from stock_kernel.models.audit_event import AuditEvent
from stock_kernel.models.catalog import Store
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.stock_lot import StockLot
from stock_kernel.models.stock_movement import StockMovement

SEPT = date(2024, 9, 30)


def _ledger_sum(session, store_id, product_id, variant_key=BASE_VARIANT_KEY):
    return session.execute(
        select(func.coalesce(func.sum(StockMovement.qty_delta), 0)).where(
            StockMovement.store_id == store_id,
            StockMovement.product_id == product_id,
            StockMovement.variant_key == variant_key,
        )
    ).scalar_one()


def _movement_count(session, store_id=None):
    query = select(func.count()).select_from(StockMovement)
    if store_id is not None:
        query = query.where(StockMovement.store_id == store_id)
    return session.execute(query).scalar_one()


def _snapshot(session, store_id, product_id, variant_key=BASE_VARIANT_KEY):
    return session.execute(
        select(InventorySnapshot).where(
            InventorySnapshot.store_id == store_id,
            InventorySnapshot.product_id == product_id,
            InventorySnapshot.variant_key == variant_key,
        )
    ).scalar_one_or_none()


@pytest.fixture
def stocked(inventory, manager, catalog, key):
    """Ten units of product 1 in store A."""
    return inventory.receive_stock(
        manager,
        store_id=catalog.store_a,
        product_id=catalog.product_id,
        qty_received=10,
        unit_cost=Decimal("2.00"),
        idempotency_key=key("seed"),
    )


# =========================================================================
# Adjust
# =========================================================================


class TestAdjustStock:
    def test_positive_and_negative(self, session, inventory, manager, catalog, key):
        first = inventory.adjust_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            qty_delta=7, reason="count", idempotency_key=key(),
        )
        second = inventory.adjust_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            qty_delta=-4, reason="damage", idempotency_key=key(),
        )
        assert first.on_hand == 7
        assert second.on_hand == 3
        assert second.movement_type == MovementType.ADJUSTMENT
        assert _snapshot(session, catalog.store_a, catalog.product_id).on_hand == 3
        assert _ledger_sum(session, catalog.store_a, catalog.product_id) == 3

    def test_adjust_to_exactly_zero(self, inventory, manager, catalog, stocked, key):
        result = inventory.adjust_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            qty_delta=-10, reason="count", idempotency_key=key(),
        )
        assert result.on_hand == 0

    def test_insufficient_stock_writes_nothing(self, session, inventory, manager, catalog, stocked, key):
        before_events = session.execute(select(func.count()).select_from(AuditEvent)).scalar_one()
        with pytest.raises(InsufficientStockError) as exc_info:
            inventory.adjust_stock(
                manager, store_id=catalog.store_a, product_id=catalog.product_id,
                qty_delta=-11, reason="damage", idempotency_key=key(),
            )
        assert exc_info.value.on_hand == 10
        assert exc_info.value.qty_delta == -11
        assert _movement_count(session, catalog.store_a) == 1
        assert _snapshot(session, catalog.store_a, catalog.product_id).on_hand == 10
        assert session.execute(select(func.count()).select_from(AuditEvent)).scalar_one() == before_events

    def test_negative_allowed_in_permissive_store(self, session, inventory, manager, catalog, key):
        result = inventory.adjust_stock(
            manager, store_id=catalog.negative_store, product_id=catalog.product_id,
            qty_delta=-5, reason="oversold", idempotency_key=key(),
        )
        assert result.on_hand == -5
        assert _ledger_sum(session, catalog.negative_store, catalog.product_id) == -5

    @pytest.mark.parametrize("qty", [0, True, 1.5, "3"])
    def test_invalid_delta(self, inventory, manager, catalog, qty, key):
        with pytest.raises(InvalidQuantityError):
            inventory.adjust_stock(
                manager, store_id=catalog.store_a, product_id=catalog.product_id,
                qty_delta=qty, reason="count", idempotency_key=key(),
            )

    def test_missing_store_id(self, inventory, manager, catalog, key):
        with pytest.raises(MissingIdentifierError):
            inventory.adjust_stock(
                manager, store_id=None, product_id=catalog.product_id,
                qty_delta=1, reason="count", idempotency_key=key(),
            )

    def test_missing_idempotency_key(self, inventory, manager, catalog):
        with pytest.raises(MissingIdentifierError):
            inventory.adjust_stock(
                manager, store_id=catalog.store_a, product_id=catalog.product_id,
                qty_delta=1, reason="count", idempotency_key="  ",
            )

    def test_variant_tracked_separately(self, session, inventory, manager, catalog, stocked, key):
        result = inventory.adjust_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            variant_id=catalog.variant_id, qty_delta=4, reason="count", idempotency_key=key(),
        )
        assert result.variant_key == str(catalog.variant_id)
        assert result.on_hand == 4
        assert _snapshot(session, catalog.store_a, catalog.product_id).on_hand == 10

    def test_pack_quantity(self, inventory, manager, catalog, stocked, key):
        result = inventory.adjust_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            pack_id=catalog.pack_id, qty_delta=1, reason="found case", idempotency_key=key(),
        )
        assert result.qty_delta == 12
        assert result.on_hand == 22


class TestAuthorization:
    def test_staff_cannot_adjust(self, session, inventory, staff, catalog, key):
        with pytest.raises(InsufficientRoleError):
            inventory.adjust_stock(
                staff, store_id=catalog.store_a, product_id=catalog.product_id,
                qty_delta=1, reason="count", idempotency_key=key(),
            )
        assert _movement_count(session) == 0

    def test_store_scope(self, inventory, scoped_manager, catalog, key):
        inventory.adjust_stock(
            scoped_manager, store_id=catalog.store_a, product_id=catalog.product_id,
            qty_delta=1, reason="count", idempotency_key=key(),
        )
        with pytest.raises(StoreAccessDeniedError):
            inventory.adjust_stock(
                scoped_manager, store_id=catalog.store_b, product_id=catalog.product_id,
                qty_delta=1, reason="count", idempotency_key=key(),
            )

    def test_foreign_store_looks_missing(self, inventory, foreign_manager, catalog, key):
        with pytest.raises(StoreNotFoundError):
            inventory.adjust_stock(
                foreign_manager, store_id=catalog.store_a, product_id=catalog.other_product_id,
                qty_delta=1, reason="count", idempotency_key=key(),
            )

    def test_foreign_product_looks_missing(self, inventory, manager, catalog, key):
        with pytest.raises(ProductNotFoundError):
            inventory.adjust_stock(
                manager, store_id=catalog.store_a, product_id=catalog.other_product_id,
                qty_delta=1, reason="count", idempotency_key=key(),
            )

    def test_unknown_product(self, inventory, manager, catalog, key):
        with pytest.raises(ProductNotFoundError):
            inventory.adjust_stock(
                manager, store_id=catalog.store_a, product_id=uuid4(),
                qty_delta=1, reason="count", idempotency_key=key(),
            )

    def test_recompute_requires_admin(self, inventory, manager, catalog):
        with pytest.raises(InsufficientRoleError):
            inventory.recompute_inventory_snapshots(manager, store_id=catalog.store_a)


# =========================================================================
# Idempotency
# =========================================================================


class TestIdempotentRequests:
    def test_replay_returns_recorded_result(self, session, inventory, manager, catalog, key):
        request_key = key()
        kwargs = dict(
            store_id=catalog.store_a, product_id=catalog.product_id,
            qty_delta=5, reason="count", idempotency_key=request_key,
        )
        first = inventory.adjust_stock(manager, **kwargs)
        second = inventory.adjust_stock(manager, **kwargs)
        assert second == first
        assert _movement_count(session) == 1
        assert _snapshot(session, catalog.store_a, catalog.product_id).on_hand == 5

    def test_replay_is_logged(self, inventory, manager, catalog, key, captured_logs):
        request_key = key()
        for _ in range(2):
            inventory.adjust_stock(
                manager, store_id=catalog.store_a, product_id=catalog.product_id,
                qty_delta=5, reason="count", idempotency_key=request_key,
            )
        adjusted = [r for r in captured_logs() if r["message"] == "stock_adjusted"]
        assert [r["replayed"] for r in adjusted] == [False, True]
        assert any(r["message"] == "idempotent_replay" for r in captured_logs())

    def test_key_reuse_with_other_arguments(self, inventory, manager, catalog, key):
        request_key = key()
        inventory.adjust_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            qty_delta=5, reason="count", idempotency_key=request_key,
        )
        with pytest.raises(IdempotencyKeyReuseError):
            inventory.adjust_stock(
                manager, store_id=catalog.store_a, product_id=catalog.product_id,
                qty_delta=6, reason="count", idempotency_key=request_key,
            )

    def test_failed_request_releases_key(self, session, inventory, manager, catalog, key):
        request_key = key()
        kwargs = dict(
            store_id=catalog.store_a, product_id=catalog.product_id,
            qty_delta=-3, reason="damage", idempotency_key=request_key,
        )
        with pytest.raises(InsufficientStockError):
            inventory.adjust_stock(manager, **kwargs)

        inventory.receive_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            qty_received=3, idempotency_key=key(),
        )
        result = inventory.adjust_stock(manager, **kwargs)
        assert result.on_hand == 0

    def test_keys_are_scoped_per_actor(self, session, inventory, manager, admin, catalog, key):
        request_key = key()
        for actor in (manager, admin):
            inventory.adjust_stock(
                actor, store_id=catalog.store_a, product_id=catalog.product_id,
                qty_delta=1, reason="count", idempotency_key=request_key,
            )
        assert _movement_count(session) == 2

    def test_keys_are_scoped_per_operation(self, session, inventory, manager, catalog, key):
        request_key = key()
        inventory.adjust_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            qty_delta=1, reason="count", idempotency_key=request_key,
        )
        inventory.receive_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            qty_received=1, idempotency_key=request_key,
        )
        assert _movement_count(session) == 2


# =========================================================================
# Receive
# =========================================================================


class TestReceiveStock:
    def test_receive_sets_average_cost(self, session, inventory, manager, catalog, stocked, key):
        assert stocked.avg_cost == Decimal("2")
        result = inventory.receive_stock(
            manager, store_id=catalog.store_b, product_id=catalog.product_id,
            qty_received=10, unit_cost=Decimal("4.00"), idempotency_key=key(),
        )
        # organization-wide: (10*2 + 10*4) / 20
        assert result.avg_cost == Decimal("3")
        assert result.on_hand == 10
        assert result.movement_type == MovementType.RECEIVE

    def test_unpriced_receipt_keeps_average(self, inventory, manager, catalog, stocked, key):
        result = inventory.receive_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            qty_received=5, idempotency_key=key(),
        )
        assert result.avg_cost is None
        assert result.on_hand == 15

    def test_pack_receipt_spreads_cost(self, session, inventory, manager, catalog, key):
        result = inventory.receive_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            pack_id=catalog.pack_id, qty_received=2, unit_cost=Decimal("24.00"),
            idempotency_key=key(),
        )
        assert result.qty_delta == 24
        assert result.avg_cost == Decimal("2")
        movement = session.execute(select(StockMovement)).scalar_one()
        assert movement.unit_cost == Decimal("2")

    def test_pack_of_other_product(self, inventory, manager, catalog, key):
        with pytest.raises(PackNotFoundError):
            inventory.receive_stock(
                manager, store_id=catalog.store_a, product_id=catalog.product_2_id,
                pack_id=catalog.pack_id, qty_received=1, idempotency_key=key(),
            )

    @pytest.mark.parametrize("qty", [0, -1])
    def test_non_positive_quantity(self, inventory, manager, catalog, qty, key):
        with pytest.raises(InvalidQuantityError):
            inventory.receive_stock(
                manager, store_id=catalog.store_a, product_id=catalog.product_id,
                qty_received=qty, idempotency_key=key(),
            )

    def test_negative_cost(self, inventory, manager, catalog, key):
        with pytest.raises(NegativeUnitCostError):
            inventory.receive_stock(
                manager, store_id=catalog.store_a, product_id=catalog.product_id,
                qty_received=1, unit_cost=Decimal("-1"), idempotency_key=key(),
            )

    def test_lot_store_creates_lot(self, session, inventory, manager, catalog, key):
        result = inventory.receive_stock(
            manager, store_id=catalog.lot_store, product_id=catalog.product_id,
            qty_received=6, expiry_date=date(2024, 6, 30), idempotency_key=key(),
        )
        (change,) = result.lot_changes
        assert change.qty_delta == 6
        lot = session.execute(select(StockLot)).scalar_one()
        assert lot.on_hand_qty == 6

    def test_audit_event_for_receipt(self, session, inventory, manager, catalog, stocked):
        event = session.execute(
            select(AuditEvent).where(AuditEvent.action == "stock_received")
        ).scalar_one()
        assert event.entity_type == "StockMovement"
        assert event.entity_id == stocked.movement_id
        assert event.payload["after"] == {"on_hand": 10}


@pytest.fixture
def negative_lot_store(session, catalog):
    store = Store(
        organization_id=catalog.organization_id,
        name="F Night Pharmacy",
        allow_negative_stock=True,
        track_expiry_lots=True,
    )
    session.add(store)
    session.commit()
    return store.id


def _lot_map(session, store_id):
    return {
        lot.expiry_date: lot.on_hand_qty
        for lot in session.execute(select(StockLot).where(StockLot.store_id == store_id)).scalars()
    }


class TestLotsFollowOnHand:
    def test_receipt_into_negative_stock_is_not_lotted(
        self, session, inventory, manager, catalog, negative_lot_store, key
    ):
        inventory.adjust_stock(
            manager, store_id=negative_lot_store, product_id=catalog.product_id,
            qty_delta=-5, reason="oversold", idempotency_key=key(),
        )
        result = inventory.receive_stock(
            manager, store_id=negative_lot_store, product_id=catalog.product_id,
            qty_received=3, expiry_date=SEPT, idempotency_key=key(),
        )

        assert result.on_hand == -2
        assert result.lot_changes == ()
        assert _lot_map(session, negative_lot_store) == {}

    def test_receipt_back_above_zero_lots_only_the_positive_part(
        self, session, inventory, manager, catalog, negative_lot_store, key
    ):
        inventory.adjust_stock(
            manager, store_id=negative_lot_store, product_id=catalog.product_id,
            qty_delta=-2, reason="oversold", idempotency_key=key(),
        )
        result = inventory.receive_stock(
            manager, store_id=negative_lot_store, product_id=catalog.product_id,
            qty_received=5, expiry_date=SEPT, idempotency_key=key(),
        )

        assert result.on_hand == 3
        assert _lot_map(session, negative_lot_store) == {SEPT: 3}

    def test_untracked_decrease_keeps_lots_within_on_hand(
        self, session, inventory, manager, catalog, key
    ):
        inventory.receive_stock(
            manager, store_id=catalog.lot_store, product_id=catalog.product_id,
            qty_received=4, expiry_date=SEPT, idempotency_key=key(),
        )
        inventory.receive_stock(
            manager, store_id=catalog.lot_store, product_id=catalog.product_id,
            qty_received=2, idempotency_key=key(),
        )
        inventory.adjust_stock(
            manager, store_id=catalog.lot_store, product_id=catalog.product_id,
            qty_delta=-5, reason="damaged", idempotency_key=key(),
        )

        lots = _lot_map(session, catalog.lot_store)
        on_hand = _snapshot(session, catalog.lot_store, catalog.product_id).on_hand
        assert on_hand == 1
        assert sum(qty for qty in lots.values() if qty > 0) <= on_hand


# =========================================================================
# Snapshot maintenance
# =========================================================================


class TestSnapshotMaintenance:
    def test_low_stock_alert(self, inventory, manager, catalog, stocked, key, captured_logs):
        snapshot = inventory.set_min_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id, min_stock=5
        )
        assert snapshot.min_stock == 5

        inventory.adjust_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            qty_delta=-4, reason="sold", idempotency_key=key(),
        )
        assert not any(r["message"] == "low_stock_alert" for r in captured_logs())

        inventory.adjust_stock(
            manager, store_id=catalog.store_a, product_id=catalog.product_id,
            qty_delta=-1, reason="sold", idempotency_key=key(),
        )
        (alert,) = [r for r in captured_logs() if r["message"] == "low_stock_alert"]
        assert alert["level"] == "WARNING"
        assert alert["on_hand"] == 5
        assert alert["min_stock"] == 5

    def test_min_stock_must_be_non_negative(self, inventory, manager, catalog):
        with pytest.raises(InvalidQuantityError):
            inventory.set_min_stock(
                manager, store_id=catalog.store_a, product_id=catalog.product_id, min_stock=-1
            )

    def test_ensure_snapshots(self, session, inventory, manager, catalog):
        assert inventory.ensure_snapshots_for_product(manager, product_id=catalog.product_2_id) == 5
        assert inventory.ensure_snapshots_for_product(manager, product_id=catalog.product_2_id) == 0
        assert _snapshot(session, catalog.store_b, catalog.product_2_id).on_hand == 0

    def test_recompute_repairs_drift(self, session, inventory, admin, catalog, stocked):
        _snapshot(session, catalog.store_a, catalog.product_id).on_hand = 3
        session.flush()

        result = inventory.recompute_inventory_snapshots(admin, store_id=catalog.store_a)

        assert result.updated_count == 1
        assert result.drifted[0].previous_on_hand == 3
        assert _snapshot(session, catalog.store_a, catalog.product_id).on_hand == 10

    def test_recompute_twice_is_stable(self, inventory, admin, catalog, stocked):
        inventory.recompute_inventory_snapshots(admin, store_id=catalog.store_a)
        again = inventory.recompute_inventory_snapshots(admin, store_id=catalog.store_a)
        assert again.updated_count == 0
