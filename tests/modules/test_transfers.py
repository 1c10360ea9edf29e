"""
Tests for InventoryService.transfer_stock.

Both legs of a transfer commit together or not at all, and they share one
reference_id.
"""

from datetime import date

import pytest
from sqlalchemy import func, select

from stock_kernel.domain.values import BASE_VARIANT_KEY, MovementType, ReferenceType
from stock_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    SameStoreTransferError,
    StoreAccessDeniedError,
    StoreNotFoundError,
)
from stock_kernel.models.audit_event import AuditEvent
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.stock_lot import StockLot
from stock_kernel.models.stock_movement import StockMovement

JUNE = date(2024, 6, 30)
JULY = date(2024, 7, 31)
SEPT = date(2024, 9, 30)


def _on_hand(session, store_id, product_id):
    snapshot = session.execute(
        select(InventorySnapshot).where(
            InventorySnapshot.store_id == store_id,
            InventorySnapshot.product_id == product_id,
            InventorySnapshot.variant_key == BASE_VARIANT_KEY,
        )
    ).scalar_one_or_none()
    return None if snapshot is None else snapshot.on_hand


def _lots(session, store_id):
    return {
        lot.expiry_date: lot.on_hand_qty
        for lot in session.execute(select(StockLot).where(StockLot.store_id == store_id)).scalars()
    }


@pytest.fixture
def stocked(inventory, manager, catalog, key):
    inventory.receive_stock(
        manager, store_id=catalog.store_a, product_id=catalog.product_id,
        qty_received=10, idempotency_key=key("seed"),
    )


class TestTransfer:
    def test_two_legs(self, session, inventory, manager, catalog, stocked, key):
        result = inventory.transfer_stock(
            manager, from_store_id=catalog.store_a, to_store_id=catalog.store_b,
            product_id=catalog.product_id, qty=4, idempotency_key=key(),
        )

        assert result.source.qty_delta == -4
        assert result.source.on_hand == 6
        assert result.destination.qty_delta == 4
        assert result.destination.on_hand == 4

        legs = session.execute(
            select(StockMovement).where(StockMovement.reference_id == result.transfer_id)
        ).scalars().all()
        assert {leg.movement_type for leg in legs} == {
            MovementType.TRANSFER_OUT.value,
            MovementType.TRANSFER_IN.value,
        }
        assert {leg.reference_type for leg in legs} == {ReferenceType.TRANSFER.value}
        assert sum(leg.qty_delta for leg in legs) == 0

    def test_audit_events_name_the_other_store(self, session, inventory, manager, catalog, stocked, key):
        inventory.transfer_stock(
            manager, from_store_id=catalog.store_a, to_store_id=catalog.store_b,
            product_id=catalog.product_id, qty=1, idempotency_key=key(),
        )
        out_event = session.execute(
            select(AuditEvent).where(AuditEvent.action == "stock_transferred_out")
        ).scalar_one()
        in_event = session.execute(
            select(AuditEvent).where(AuditEvent.action == "stock_transferred_in")
        ).scalar_one()
        assert out_event.payload["to_store_id"] == str(catalog.store_b)
        assert in_event.payload["from_store_id"] == str(catalog.store_a)
        assert out_event.payload["reference_id"] == in_event.payload["reference_id"]

    def test_insufficient_stock_writes_neither_leg(self, session, inventory, manager, catalog, stocked, key):
        with pytest.raises(InsufficientStockError):
            inventory.transfer_stock(
                manager, from_store_id=catalog.store_a, to_store_id=catalog.store_b,
                product_id=catalog.product_id, qty=11, idempotency_key=key(),
            )
        assert _on_hand(session, catalog.store_a, catalog.product_id) == 10
        assert not _on_hand(session, catalog.store_b, catalog.product_id)
        count = session.execute(select(func.count()).select_from(StockMovement)).scalar_one()
        assert count == 1

    def test_same_store(self, inventory, manager, catalog, key):
        with pytest.raises(SameStoreTransferError):
            inventory.transfer_stock(
                manager, from_store_id=catalog.store_a, to_store_id=catalog.store_a,
                product_id=catalog.product_id, qty=1, idempotency_key=key(),
            )

    def test_non_positive_qty(self, inventory, manager, catalog, key):
        with pytest.raises(InvalidQuantityError):
            inventory.transfer_stock(
                manager, from_store_id=catalog.store_a, to_store_id=catalog.store_b,
                product_id=catalog.product_id, qty=0, idempotency_key=key(),
            )

    def test_destination_in_other_organization(self, inventory, manager, catalog, stocked, key):
        with pytest.raises(StoreNotFoundError):
            inventory.transfer_stock(
                manager, from_store_id=catalog.store_a, to_store_id=catalog.other_store,
                product_id=catalog.product_id, qty=1, idempotency_key=key(),
            )

    def test_destination_outside_scope(self, inventory, scoped_manager, catalog, stocked, key):
        with pytest.raises(StoreAccessDeniedError):
            inventory.transfer_stock(
                scoped_manager, from_store_id=catalog.store_a, to_store_id=catalog.store_b,
                product_id=catalog.product_id, qty=1, idempotency_key=key(),
            )

    def test_replay(self, session, inventory, manager, catalog, stocked, key):
        request_key = key()
        kwargs = dict(
            from_store_id=catalog.store_a, to_store_id=catalog.store_b,
            product_id=catalog.product_id, qty=3, idempotency_key=request_key,
        )
        first = inventory.transfer_stock(manager, **kwargs)
        second = inventory.transfer_stock(manager, **kwargs)
        assert second == first
        assert _on_hand(session, catalog.store_a, catalog.product_id) == 7
        assert _on_hand(session, catalog.store_b, catalog.product_id) == 3


class TestLotTransfer:
    def test_lots_follow_the_stock(self, session, inventory, manager, catalog, key):
        for qty, expiry in ((5, JULY), (3, JUNE)):
            inventory.receive_stock(
                manager, store_id=catalog.lot_store, product_id=catalog.product_id,
                qty_received=qty, expiry_date=expiry, idempotency_key=key(),
            )

        result = inventory.transfer_stock(
            manager, from_store_id=catalog.lot_store, to_store_id=catalog.lot_store_b,
            product_id=catalog.product_id, qty=4, idempotency_key=key(),
        )

        assert [(c.expiry_date, c.qty_delta) for c in result.source.lot_changes] == [
            (JUNE, -3),
            (JULY, -1),
        ]
        assert _lots(session, catalog.lot_store) == {JUNE: 0, JULY: 4}
        assert _lots(session, catalog.lot_store_b) == {JUNE: 3, JULY: 1}

    def test_named_lot(self, session, inventory, manager, catalog, key):
        for qty, expiry in ((5, JULY), (3, JUNE)):
            inventory.receive_stock(
                manager, store_id=catalog.lot_store, product_id=catalog.product_id,
                qty_received=qty, expiry_date=expiry, idempotency_key=key(),
            )
        inventory.transfer_stock(
            manager, from_store_id=catalog.lot_store, to_store_id=catalog.lot_store_b,
            product_id=catalog.product_id, qty=2, expiry_date=JULY, idempotency_key=key(),
        )
        assert _lots(session, catalog.lot_store) == {JUNE: 3, JULY: 3}
        assert _lots(session, catalog.lot_store_b) == {JULY: 2}

    def test_into_store_without_lots(self, session, inventory, manager, catalog, key):
        inventory.receive_stock(
            manager, store_id=catalog.lot_store, product_id=catalog.product_id,
            qty_received=5, expiry_date=JUNE, idempotency_key=key(),
        )
        inventory.transfer_stock(
            manager, from_store_id=catalog.lot_store, to_store_id=catalog.store_a,
            product_id=catalog.product_id, qty=2, idempotency_key=key(),
        )
        assert _lots(session, catalog.store_a) == {}
        assert _on_hand(session, catalog.store_a, catalog.product_id) == 2

    def test_from_store_without_lots_files_under_expiry(
        self, session, inventory, manager, catalog, stocked, key
    ):
        result = inventory.transfer_stock(
            manager, from_store_id=catalog.store_a, to_store_id=catalog.lot_store,
            product_id=catalog.product_id, qty=3, expiry_date=SEPT, idempotency_key=key(),
        )

        assert result.source.lot_changes == ()
        assert [(c.expiry_date, c.qty_delta) for c in result.destination.lot_changes] == [(SEPT, 3)]
        assert _lots(session, catalog.lot_store) == {SEPT: 3}
        assert _lots(session, catalog.store_a) == {}

    def test_from_store_without_lots_and_no_expiry(self, session, inventory, manager, catalog, stocked, key):
        inventory.transfer_stock(
            manager, from_store_id=catalog.store_a, to_store_id=catalog.lot_store,
            product_id=catalog.product_id, qty=3, idempotency_key=key(),
        )
        assert _lots(session, catalog.lot_store) == {}
        assert _on_hand(session, catalog.lot_store, catalog.product_id) == 3
