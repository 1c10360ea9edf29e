"""
Purchasing Domain Models (``stock_modules.purchasing.models``).

Responsibility
--------------
Frozen value objects that flow into and out of ``PurchaseOrderService``:
line inputs, receive requests, reorder-draft items, and the read views of
orders and lines.

Architecture position
---------------------
**Modules layer** -- pure data definitions.  ``PurchaseOrderView`` is built
from the ORM row by ``from_model`` so callers never hold a live ORM object.

Invariants enforced
-------------------
* All cost fields use ``Decimal``.
* Results returned from idempotent operations round-trip through
  ``to_payload()`` / ``from_payload()`` so a replay returns an equal object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from stock_kernel.domain.dtos import StockChangeResult
from stock_kernel.domain.po_lifecycle import PurchaseOrderStatus
from stock_kernel.models.purchase_order import PurchaseOrder, PurchaseOrderLine


def _opt_uuid(value: Any) -> UUID | None:
    return None if value is None else UUID(str(value))


def _opt_decimal(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def _opt_datetime(value: Any) -> datetime | None:
    return None if value is None else datetime.fromisoformat(value)


def _opt_iso(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class PurchaseOrderLineInput:
    """One requested line; ``qty_ordered`` is in pack units when ``pack_id`` is set."""

    product_id: UUID
    qty_ordered: int
    variant_id: UUID | None = None
    pack_id: UUID | None = None
    unit_cost: Decimal | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "qty_ordered": self.qty_ordered,
            "variant_id": self.variant_id,
            "pack_id": self.pack_id,
            "unit_cost": self.unit_cost,
        }


@dataclass(frozen=True)
class ReceiveLineInput:
    line_id: UUID
    qty_received: int
    pack_id: UUID | None = None
    expiry_date: date | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "line_id": self.line_id,
            "qty_received": self.qty_received,
            "pack_id": self.pack_id,
            "expiry_date": self.expiry_date,
        }


@dataclass(frozen=True)
class ReorderDraftItem:
    """
    One item of a reorder request.

    ``supplier_id`` overrides the product's default supplier.
    """

    product_id: UUID
    qty: int
    variant_id: UUID | None = None
    supplier_id: UUID | None = None
    unit_cost: Decimal | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "qty": self.qty,
            "variant_id": self.variant_id,
            "supplier_id": self.supplier_id,
            "unit_cost": self.unit_cost,
        }


# =============================================================================
# Views
# =============================================================================


@dataclass(frozen=True)
class PurchaseOrderLineView:
    line_id: UUID
    product_id: UUID
    variant_id: UUID | None
    variant_key: str
    qty_ordered: int
    qty_received: int
    unit_cost: Decimal | None

    @property
    def remaining(self) -> int:
        return max(self.qty_ordered - self.qty_received, 0)

    @classmethod
    def from_model(cls, line: PurchaseOrderLine) -> PurchaseOrderLineView:
        return cls(
            line_id=line.id,
            product_id=line.product_id,
            variant_id=line.variant_id,
            variant_key=line.variant_key,
            qty_ordered=line.qty_ordered,
            qty_received=line.qty_received,
            unit_cost=line.unit_cost,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "line_id": str(self.line_id),
            "product_id": str(self.product_id),
            "variant_id": str(self.variant_id) if self.variant_id else None,
            "variant_key": self.variant_key,
            "qty_ordered": self.qty_ordered,
            "qty_received": self.qty_received,
            "unit_cost": str(self.unit_cost) if self.unit_cost is not None else None,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> PurchaseOrderLineView:
        return cls(
            line_id=UUID(data["line_id"]),
            product_id=UUID(data["product_id"]),
            variant_id=_opt_uuid(data.get("variant_id")),
            variant_key=data["variant_key"],
            qty_ordered=int(data["qty_ordered"]),
            qty_received=int(data["qty_received"]),
            unit_cost=_opt_decimal(data.get("unit_cost")),
        )


@dataclass(frozen=True)
class PurchaseOrderView:
    """Read model of one purchase order and its lines."""

    purchase_order_id: UUID
    organization_id: UUID
    store_id: UUID
    supplier_id: UUID
    status: PurchaseOrderStatus
    note: str | None
    lines: tuple[PurchaseOrderLineView, ...] = ()
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    received_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def total_ordered(self) -> int:
        return sum(line.qty_ordered for line in self.lines)

    @property
    def total_received(self) -> int:
        return sum(line.qty_received for line in self.lines)

    @classmethod
    def from_model(cls, order: PurchaseOrder) -> PurchaseOrderView:
        return cls(
            purchase_order_id=order.id,
            organization_id=order.organization_id,
            store_id=order.store_id,
            supplier_id=order.supplier_id,
            status=PurchaseOrderStatus(order.status),
            note=order.note,
            lines=tuple(PurchaseOrderLineView.from_model(line) for line in order.lines),
            submitted_at=order.submitted_at,
            approved_at=order.approved_at,
            received_at=order.received_at,
            cancelled_at=order.cancelled_at,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "purchase_order_id": str(self.purchase_order_id),
            "organization_id": str(self.organization_id),
            "store_id": str(self.store_id),
            "supplier_id": str(self.supplier_id),
            "status": self.status.value,
            "note": self.note,
            "lines": [line.to_payload() for line in self.lines],
            "submitted_at": _opt_iso(self.submitted_at),
            "approved_at": _opt_iso(self.approved_at),
            "received_at": _opt_iso(self.received_at),
            "cancelled_at": _opt_iso(self.cancelled_at),
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> PurchaseOrderView:
        return cls(
            purchase_order_id=UUID(data["purchase_order_id"]),
            organization_id=UUID(data["organization_id"]),
            store_id=UUID(data["store_id"]),
            supplier_id=UUID(data["supplier_id"]),
            status=PurchaseOrderStatus(data["status"]),
            note=data.get("note"),
            lines=tuple(PurchaseOrderLineView.from_payload(line) for line in data["lines"]),
            submitted_at=_opt_datetime(data.get("submitted_at")),
            approved_at=_opt_datetime(data.get("approved_at")),
            received_at=_opt_datetime(data.get("received_at")),
            cancelled_at=_opt_datetime(data.get("cancelled_at")),
        )


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class PurchaseOrderReceiveResult:
    purchase_order_id: UUID
    status: PurchaseOrderStatus
    lines: tuple[PurchaseOrderLineView, ...]
    movements: tuple[StockChangeResult, ...] = field(default_factory=tuple)

    def to_payload(self) -> dict[str, Any]:
        return {
            "purchase_order_id": str(self.purchase_order_id),
            "status": self.status.value,
            "lines": [line.to_payload() for line in self.lines],
            "movements": [movement.to_payload() for movement in self.movements],
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> PurchaseOrderReceiveResult:
        return cls(
            purchase_order_id=UUID(data["purchase_order_id"]),
            status=PurchaseOrderStatus(data["status"]),
            lines=tuple(PurchaseOrderLineView.from_payload(line) for line in data["lines"]),
            movements=tuple(StockChangeResult.from_payload(m) for m in data["movements"]),
        )


@dataclass(frozen=True)
class ReorderDraftResult:
    purchase_orders: tuple[PurchaseOrderView, ...]

    def to_payload(self) -> dict[str, Any]:
        return {"purchase_orders": [order.to_payload() for order in self.purchase_orders]}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ReorderDraftResult:
        return cls(
            purchase_orders=tuple(
                PurchaseOrderView.from_payload(order) for order in data["purchase_orders"]
            )
        )


@dataclass(frozen=True)
class RollbackResult:
    """Outcome of a purchase order rollback; movements are the compensating ADJUSTMENTs."""

    purchase_order_id: UUID
    previous_status: PurchaseOrderStatus
    status: PurchaseOrderStatus
    movements: tuple[StockChangeResult, ...]
    released_on_order: int
