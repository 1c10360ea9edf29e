"""
Result DTOs for ledger operations.

Every result that can be returned from an idempotent operation round-trips
through ``to_payload()`` / ``from_payload()`` so that the Idempotency Guard
can store it as JSON and hand back an equal object on replay.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from stock_kernel.domain.values import MovementType


def _opt_decimal(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


@dataclass(frozen=True)
class LotChange:
    lot_id: UUID
    expiry_date: date
    qty_delta: int
    on_hand_qty: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "lot_id": str(self.lot_id),
            "expiry_date": self.expiry_date.isoformat(),
            "qty_delta": self.qty_delta,
            "on_hand_qty": self.on_hand_qty,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "LotChange":
        return cls(
            lot_id=UUID(data["lot_id"]),
            expiry_date=date.fromisoformat(data["expiry_date"]),
            qty_delta=int(data["qty_delta"]),
            on_hand_qty=int(data["on_hand_qty"]),
        )


@dataclass(frozen=True)
class StockChangeResult:
    """Outcome of one ledger movement and its side effects."""

    movement_id: UUID
    store_id: UUID
    product_id: UUID
    variant_key: str
    movement_type: MovementType
    qty_delta: int
    on_hand: int
    on_order: int
    avg_cost: Decimal | None = None
    lot_changes: tuple[LotChange, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "movement_id": str(self.movement_id),
            "store_id": str(self.store_id),
            "product_id": str(self.product_id),
            "variant_key": self.variant_key,
            "movement_type": MovementType(self.movement_type).value,
            "qty_delta": self.qty_delta,
            "on_hand": self.on_hand,
            "on_order": self.on_order,
            "avg_cost": _opt_str(self.avg_cost),
            "lot_changes": [change.to_payload() for change in self.lot_changes],
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "StockChangeResult":
        return cls(
            movement_id=UUID(data["movement_id"]),
            store_id=UUID(data["store_id"]),
            product_id=UUID(data["product_id"]),
            variant_key=data["variant_key"],
            movement_type=MovementType(data["movement_type"]),
            qty_delta=int(data["qty_delta"]),
            on_hand=int(data["on_hand"]),
            on_order=int(data["on_order"]),
            avg_cost=_opt_decimal(data.get("avg_cost")),
            lot_changes=tuple(LotChange.from_payload(c) for c in data.get("lot_changes", [])),
        )


@dataclass(frozen=True)
class TransferResult:
    """Both legs of a transfer; they share ``transfer_id`` as reference_id."""

    transfer_id: UUID
    source: StockChangeResult
    destination: StockChangeResult

    def to_payload(self) -> dict[str, Any]:
        return {
            "transfer_id": str(self.transfer_id),
            "source": self.source.to_payload(),
            "destination": self.destination.to_payload(),
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "TransferResult":
        return cls(
            transfer_id=UUID(data["transfer_id"]),
            source=StockChangeResult.from_payload(data["source"]),
            destination=StockChangeResult.from_payload(data["destination"]),
        )


@dataclass(frozen=True)
class SnapshotDrift:
    product_id: UUID
    variant_key: str
    previous_on_hand: int
    on_hand: int
    previous_on_order: int
    on_order: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "product_id": str(self.product_id),
            "variant_key": self.variant_key,
            "previous_on_hand": self.previous_on_hand,
            "on_hand": self.on_hand,
            "previous_on_order": self.previous_on_order,
            "on_order": self.on_order,
        }


@dataclass(frozen=True)
class RecomputeResult:
    store_id: UUID
    updated_count: int
    drifted: tuple[SnapshotDrift, ...] = field(default_factory=tuple)

    def to_payload(self) -> dict[str, Any]:
        return {
            "store_id": str(self.store_id),
            "updated_count": self.updated_count,
            "drifted": [d.to_payload() for d in self.drifted],
        }
