"""
Counting Domain Models (``stock_modules.counting.models``).

Frozen views of stock counts and their lines, and the result of applying a
count.  ``StockCountApplyResult`` round-trips through ``to_payload()`` /
``from_payload()`` because ``apply_stock_count`` is idempotent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from stock_kernel.domain.count_lifecycle import StockCountStatus
from stock_kernel.domain.dtos import StockChangeResult
from stock_kernel.models.stock_count import StockCount, StockCountLine


class CountMode(str, Enum):
    """How a scan changes the counted quantity of its line."""

    INCREMENT = "increment"
    SET = "set"


@dataclass(frozen=True)
class StockCountLineView:
    line_id: UUID
    product_id: UUID
    variant_id: UUID | None
    variant_key: str
    scan_value: str | None
    expected_on_hand: int
    counted_qty: int
    delta_qty: int
    last_scanned_at: datetime | None = None

    @classmethod
    def from_model(cls, line: StockCountLine) -> StockCountLineView:
        return cls(
            line_id=line.id,
            product_id=line.product_id,
            variant_id=line.variant_id,
            variant_key=line.variant_key,
            scan_value=line.scan_value,
            expected_on_hand=line.expected_on_hand,
            counted_qty=line.counted_qty,
            delta_qty=line.delta_qty,
            last_scanned_at=line.last_scanned_at,
        )


@dataclass(frozen=True)
class StockCountView:
    """Read model of one stock count and its lines."""

    stock_count_id: UUID
    organization_id: UUID
    store_id: UUID
    code: str
    status: StockCountStatus
    note: str | None
    lines: tuple[StockCountLineView, ...] = ()
    started_at: datetime | None = None
    applied_at: datetime | None = None
    applied_by_id: UUID | None = None
    cancelled_at: datetime | None = None

    @property
    def variance_lines(self) -> tuple[StockCountLineView, ...]:
        return tuple(line for line in self.lines if line.delta_qty != 0)

    def line_for(self, product_id: UUID, variant_key: str) -> StockCountLineView | None:
        for line in self.lines:
            if line.product_id == product_id and line.variant_key == variant_key:
                return line
        return None

    @classmethod
    def from_model(cls, count: StockCount) -> StockCountView:
        return cls(
            stock_count_id=count.id,
            organization_id=count.organization_id,
            store_id=count.store_id,
            code=count.code,
            status=StockCountStatus(count.status),
            note=count.note,
            lines=tuple(StockCountLineView.from_model(line) for line in count.lines),
            started_at=count.started_at,
            applied_at=count.applied_at,
            applied_by_id=count.applied_by_id,
            cancelled_at=count.cancelled_at,
        )


@dataclass(frozen=True)
class StockCountApplyResult:
    """
    Outcome of applying a count.

    ``movements`` holds one ADJUSTMENT per line whose counted quantity
    differed from the on-hand at apply time.  Applying an already applied
    count returns ``already_applied=True`` and no movements.
    """

    stock_count_id: UUID
    status: StockCountStatus
    movements: tuple[StockChangeResult, ...] = ()
    already_applied: bool = False

    @property
    def adjustments(self) -> int:
        return len(self.movements)

    def to_payload(self) -> dict[str, Any]:
        return {
            "stock_count_id": str(self.stock_count_id),
            "status": self.status.value,
            "movements": [movement.to_payload() for movement in self.movements],
            "already_applied": self.already_applied,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> StockCountApplyResult:
        return cls(
            stock_count_id=UUID(data["stock_count_id"]),
            status=StockCountStatus(data["status"]),
            movements=tuple(StockChangeResult.from_payload(m) for m in data["movements"]),
            already_applied=bool(data.get("already_applied", False)),
        )
