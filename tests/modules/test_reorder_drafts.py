"""
Tests for PurchaseOrderService.create_drafts_from_reorder.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from stock_kernel.domain.po_lifecycle import PurchaseOrderStatus
from stock_kernel.exceptions import (
    InvalidQuantityError,
    MissingSupplierError,
    StoreAccessDeniedError,
    SupplierNotFoundError,
)
from stock_kernel.models.purchase_order import PurchaseOrder
from stock_modules.purchasing import ReorderDraftItem


def _order_count(session):
    return session.execute(select(func.count()).select_from(PurchaseOrder)).scalar_one()


class TestReorderDrafts:
    def test_one_draft_per_supplier(self, session, purchasing, manager, catalog, key):
        result = purchasing.create_drafts_from_reorder(
            manager,
            store_id=catalog.store_a,
            items=[
                ReorderDraftItem(product_id=catalog.product_id, qty=5, unit_cost=Decimal("2")),
                ReorderDraftItem(product_id=catalog.product_2_id, qty=3),
                ReorderDraftItem(product_id=catalog.product_id, qty=7),
            ],
            idempotency_key=key(),
        )

        first, second = result.purchase_orders
        assert (first.supplier_id, second.supplier_id) == (catalog.supplier_id, catalog.supplier_2_id)
        assert all(order.status == PurchaseOrderStatus.DRAFT for order in result.purchase_orders)
        assert all(order.note == "reorder" for order in result.purchase_orders)

        (merged,) = first.lines
        assert merged.qty_ordered == 12
        assert merged.unit_cost == Decimal("2")
        assert second.lines[0].qty_ordered == 3

    def test_supplier_override(self, purchasing, manager, catalog, key):
        result = purchasing.create_drafts_from_reorder(
            manager,
            store_id=catalog.store_a,
            items=[
                ReorderDraftItem(product_id=catalog.product_id, qty=5, supplier_id=catalog.supplier_2_id),
                ReorderDraftItem(product_id=catalog.product_2_id, qty=3),
            ],
            idempotency_key=key(),
        )
        (order,) = result.purchase_orders
        assert order.supplier_id == catalog.supplier_2_id
        assert len(order.lines) == 2

    def test_variants_get_their_own_lines(self, purchasing, manager, catalog, key):
        result = purchasing.create_drafts_from_reorder(
            manager,
            store_id=catalog.store_a,
            items=[
                ReorderDraftItem(product_id=catalog.product_id, qty=5),
                ReorderDraftItem(product_id=catalog.product_id, variant_id=catalog.variant_id, qty=2),
            ],
            idempotency_key=key(),
        )
        (order,) = result.purchase_orders
        assert sorted(line.qty_ordered for line in order.lines) == [2, 5]

    def test_missing_supplier_creates_nothing(self, session, purchasing, manager, catalog, key):
        with pytest.raises(MissingSupplierError):
            purchasing.create_drafts_from_reorder(
                manager,
                store_id=catalog.store_a,
                items=[
                    ReorderDraftItem(product_id=catalog.product_id, qty=5),
                    ReorderDraftItem(product_id=catalog.orphan_product_id, qty=1),
                ],
                idempotency_key=key(),
            )
        assert _order_count(session) == 0

    def test_foreign_supplier_override(self, purchasing, manager, catalog, key):
        with pytest.raises(SupplierNotFoundError):
            purchasing.create_drafts_from_reorder(
                manager,
                store_id=catalog.store_a,
                items=[
                    ReorderDraftItem(
                        product_id=catalog.product_id, qty=5, supplier_id=catalog.other_supplier_id
                    )
                ],
                idempotency_key=key(),
            )

    def test_empty_items(self, purchasing, manager, catalog, key):
        with pytest.raises(InvalidQuantityError):
            purchasing.create_drafts_from_reorder(
                manager, store_id=catalog.store_a, items=[], idempotency_key=key()
            )

    def test_non_positive_qty(self, purchasing, manager, catalog, key):
        with pytest.raises(InvalidQuantityError):
            purchasing.create_drafts_from_reorder(
                manager,
                store_id=catalog.store_a,
                items=[ReorderDraftItem(product_id=catalog.product_id, qty=0)],
                idempotency_key=key(),
            )

    def test_store_scope(self, purchasing, scoped_manager, catalog, key):
        with pytest.raises(StoreAccessDeniedError):
            purchasing.create_drafts_from_reorder(
                scoped_manager,
                store_id=catalog.store_b,
                items=[ReorderDraftItem(product_id=catalog.product_id, qty=1)],
                idempotency_key=key(),
            )

    def test_replay(self, session, purchasing, manager, catalog, key):
        request_key = key()
        items = [ReorderDraftItem(product_id=catalog.product_id, qty=5)]
        first = purchasing.create_drafts_from_reorder(
            manager, store_id=catalog.store_a, items=items, idempotency_key=request_key
        )
        second = purchasing.create_drafts_from_reorder(
            manager, store_id=catalog.store_a, items=items, idempotency_key=request_key
        )
        assert [o.purchase_order_id for o in second.purchase_orders] == [
            o.purchase_order_id for o in first.purchase_orders
        ]
        assert _order_count(session) == 1

    def test_drafts_can_be_submitted(self, session, purchasing, manager, catalog, key):
        result = purchasing.create_drafts_from_reorder(
            manager,
            store_id=catalog.store_a,
            items=[ReorderDraftItem(product_id=catalog.product_id, qty=5)],
            idempotency_key=key(),
        )
        order = purchasing.submit(manager, purchase_order_id=result.purchase_orders[0].purchase_order_id)
        assert order.status == PurchaseOrderStatus.SUBMITTED
