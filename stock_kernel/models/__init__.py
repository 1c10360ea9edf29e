"""ORM models for the stock kernel."""

from stock_kernel.models.audit_event import AuditAction, AuditEvent
from stock_kernel.models.catalog import (
    Product,
    ProductBarcode,
    ProductPack,
    ProductVariant,
    Store,
    Supplier,
)
from stock_kernel.models.idempotency import IdempotencyRecord
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.product_cost import ProductCost
from stock_kernel.models.purchase_order import (
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderLineLot,
)
from stock_kernel.models.reorder_policy import ReorderPolicy
from stock_kernel.models.sequence import SequenceCounter
from stock_kernel.models.stock_count import StockCount, StockCountLine
from stock_kernel.models.stock_lot import StockLot
from stock_kernel.models.stock_movement import StockMovement

__all__ = [
    "AuditAction",
    "AuditEvent",
    "IdempotencyRecord",
    "InventorySnapshot",
    "Product",
    "ProductBarcode",
    "ProductCost",
    "ProductPack",
    "ProductVariant",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "PurchaseOrderLineLot",
    "ReorderPolicy",
    "SequenceCounter",
    "StockCount",
    "StockCountLine",
    "StockLot",
    "StockMovement",
    "Store",
    "Supplier",
]
