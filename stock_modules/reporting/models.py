"""
Stock Reporting Models (``stock_modules.reporting.models``).

Responsibility
--------------
Frozen rows returned by ``ReportingService``: stockouts, slow movers,
shrinkage and reorder suggestions.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from stock_kernel.domain.values import BASE_VARIANT_KEY
from stock_modules.purchasing.models import ReorderDraftItem


@dataclass(frozen=True)
class StockoutRow:
    """A key whose on-hand crossed from positive to zero or below in the window."""

    product_id: UUID
    variant_key: str
    stockout_count: int
    last_stockout_at: datetime | None
    on_hand: int


@dataclass(frozen=True)
class SlowMoverRow:
    product_id: UUID
    variant_key: str
    on_hand: int
    last_movement_at: datetime | None


@dataclass(frozen=True)
class ShrinkageRow:
    """Negative adjustments by one user for one key; ``total_qty`` is positive."""

    product_id: UUID
    variant_key: str
    created_by_id: UUID
    total_qty: int
    movement_count: int


@dataclass(frozen=True)
class ReorderSuggestionRow:
    product_id: UUID
    variant_key: str
    supplier_id: UUID | None
    on_hand: int
    on_order: int
    p50_daily: float
    p90_daily: float
    demand_during_lead: float
    safety_stock: float
    reorder_point: float
    target_level: float
    suggested_qty: int

    @property
    def needs_reorder(self) -> bool:
        return self.suggested_qty > 0

    def to_draft_item(self) -> ReorderDraftItem:
        """Input for ``PurchaseOrderService.create_drafts_from_reorder``."""
        return ReorderDraftItem(
            product_id=self.product_id,
            qty=self.suggested_qty,
            variant_id=None if self.variant_key == BASE_VARIANT_KEY else UUID(self.variant_key),
            supplier_id=self.supplier_id,
        )
