"""Purchasing module: purchase order lifecycle and reorder drafts."""

from stock_modules.purchasing.models import (
    PurchaseOrderLineInput,
    PurchaseOrderLineView,
    PurchaseOrderReceiveResult,
    PurchaseOrderView,
    ReceiveLineInput,
    ReorderDraftItem,
    ReorderDraftResult,
    RollbackResult,
)
from stock_modules.purchasing.service import PurchaseOrderService

__all__ = [
    "PurchaseOrderLineInput",
    "PurchaseOrderLineView",
    "PurchaseOrderReceiveResult",
    "PurchaseOrderService",
    "PurchaseOrderView",
    "ReceiveLineInput",
    "ReorderDraftItem",
    "ReorderDraftResult",
    "RollbackResult",
]
