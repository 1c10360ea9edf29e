"""
Module: stock_kernel.selectors.movement_selector
Responsibility: Read-only queries over stock movements, snapshots and open
    purchase order quantities, filtered by organization, store and time
    window.  The reporting module and drift detection are built on these.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Every query is scoped by organization_id.
    - Balances are derived from movements at query time; snapshot values
      are only returned as snapshots, never as balances.
    - Time windows are half-open: start <= created_at < end, evaluated in SQL.

Failure modes:
    - Returns empty results when nothing matches; never raises for unknown
      stores (tenancy checks happen in the calling service).

Audit relevance:
    detect_drift() compares the cached snapshots against the ledger without
    writing, which is what the operational CLI reports in --check-only mode.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import case, func, select

from stock_kernel.domain.dtos import SnapshotDrift
from stock_kernel.domain.po_lifecycle import OPEN_STATUSES
from stock_kernel.domain.values import MovementType
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from stock_kernel.models.stock_movement import StockMovement
from stock_kernel.selectors.base import BaseSelector

StockKey = tuple[UUID, str]


@dataclass(frozen=True)
class MovementRecord:
    movement_id: UUID
    store_id: UUID
    product_id: UUID
    variant_key: str
    movement_type: MovementType
    qty_delta: int
    unit_cost: Decimal | None
    reference_type: str | None
    reference_id: UUID | None
    request_id: str
    created_by_id: UUID
    created_at: datetime

    @property
    def key(self) -> StockKey:
        return (self.product_id, self.variant_key)


@dataclass(frozen=True)
class SnapshotRecord:
    snapshot_id: UUID
    store_id: UUID
    product_id: UUID
    variant_key: str
    on_hand: int
    on_order: int
    min_stock: int
    allow_negative_stock: bool

    @property
    def key(self) -> StockKey:
        return (self.product_id, self.variant_key)

    @property
    def is_low_stock(self) -> bool:
        return self.min_stock > 0 and self.on_hand <= self.min_stock


@dataclass(frozen=True)
class LedgerBalance:
    product_id: UUID
    variant_key: str
    on_hand: int
    movement_count: int


class MovementSelector(BaseSelector):
    """
    Query side of the stock ledger.

    Non-goals:
        - Does NOT lock rows.  Writers that need consistent reads lock
          through the kernel services.
    """

    @staticmethod
    def _to_record(movement: StockMovement) -> MovementRecord:
        return MovementRecord(
            movement_id=movement.id,
            store_id=movement.store_id,
            product_id=movement.product_id,
            variant_key=movement.variant_key,
            movement_type=MovementType(movement.movement_type),
            qty_delta=movement.qty_delta,
            unit_cost=movement.unit_cost,
            reference_type=movement.reference_type,
            reference_id=movement.reference_id,
            request_id=movement.request_id,
            created_by_id=movement.created_by_id,
            created_at=movement.created_at,
        )

    def list_movements(
        self,
        organization_id: UUID,
        store_id: UUID | None = None,
        product_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        movement_types: Iterable[MovementType | str] | None = None,
        reference_id: UUID | None = None,
    ) -> list[MovementRecord]:
        """Movements in chronological order."""
        stmt = select(StockMovement).where(StockMovement.organization_id == organization_id)
        if store_id is not None:
            stmt = stmt.where(StockMovement.store_id == store_id)
        if product_id is not None:
            stmt = stmt.where(StockMovement.product_id == product_id)
        if start is not None:
            stmt = stmt.where(StockMovement.created_at >= start)
        if end is not None:
            stmt = stmt.where(StockMovement.created_at < end)
        if movement_types is not None:
            stmt = stmt.where(
                StockMovement.movement_type.in_([MovementType(t).value for t in movement_types])
            )
        if reference_id is not None:
            stmt = stmt.where(StockMovement.reference_id == reference_id)
        stmt = stmt.order_by(StockMovement.created_at, StockMovement.id)
        return [self._to_record(m) for m in self.session.execute(stmt).scalars()]

    def ledger_balances(self, organization_id: UUID, store_id: UUID) -> list[LedgerBalance]:
        """Sum of qty_delta per (product, variant_key) for one store."""
        rows = self.session.execute(
            select(
                StockMovement.product_id,
                StockMovement.variant_key,
                func.sum(StockMovement.qty_delta),
                func.count(StockMovement.id),
            )
            .where(
                StockMovement.organization_id == organization_id,
                StockMovement.store_id == store_id,
            )
            .group_by(StockMovement.product_id, StockMovement.variant_key)
        ).all()
        return [
            LedgerBalance(
                product_id=product_id,
                variant_key=variant_key,
                on_hand=int(total),
                movement_count=int(count),
            )
            for product_id, variant_key, total, count in rows
        ]

    def net_movement(
        self,
        organization_id: UUID,
        store_id: UUID,
        start: datetime | None,
        end: datetime | None,
    ) -> dict[StockKey, int]:
        """Net qty_delta per key in [start, end); None leaves that side open."""
        stmt = (
            select(
                StockMovement.product_id,
                StockMovement.variant_key,
                func.sum(StockMovement.qty_delta),
            )
            .where(
                StockMovement.organization_id == organization_id,
                StockMovement.store_id == store_id,
            )
            .group_by(StockMovement.product_id, StockMovement.variant_key)
        )
        if start is not None:
            stmt = stmt.where(StockMovement.created_at >= start)
        if end is not None:
            stmt = stmt.where(StockMovement.created_at < end)
        return {
            (product_id, variant_key): int(total)
            for product_id, variant_key, total in self.session.execute(stmt).all()
        }

    def open_order_quantities(self, organization_id: UUID, store_id: UUID) -> dict[StockKey, int]:
        """Unreceived quantity per key over SUBMITTED/APPROVED/PARTIALLY_RECEIVED orders."""
        remaining = case(
            (
                PurchaseOrderLine.qty_ordered > PurchaseOrderLine.qty_received,
                PurchaseOrderLine.qty_ordered - PurchaseOrderLine.qty_received,
            ),
            else_=0,
        )
        rows = self.session.execute(
            select(
                PurchaseOrderLine.product_id,
                PurchaseOrderLine.variant_key,
                func.sum(remaining),
            )
            .join(PurchaseOrder, PurchaseOrder.id == PurchaseOrderLine.purchase_order_id)
            .where(
                PurchaseOrder.organization_id == organization_id,
                PurchaseOrder.store_id == store_id,
                PurchaseOrder.status.in_([status.value for status in OPEN_STATUSES]),
            )
            .group_by(PurchaseOrderLine.product_id, PurchaseOrderLine.variant_key)
        ).all()
        return {(product_id, variant_key): int(total) for product_id, variant_key, total in rows}

    def list_snapshots(self, organization_id: UUID, store_id: UUID) -> list[SnapshotRecord]:
        snapshots = self.session.execute(
            select(InventorySnapshot)
            .where(
                InventorySnapshot.organization_id == organization_id,
                InventorySnapshot.store_id == store_id,
            )
            .order_by(InventorySnapshot.product_id, InventorySnapshot.variant_key)
        ).scalars()
        return [
            SnapshotRecord(
                snapshot_id=s.id,
                store_id=s.store_id,
                product_id=s.product_id,
                variant_key=s.variant_key,
                on_hand=s.on_hand,
                on_order=s.on_order,
                min_stock=s.min_stock,
                allow_negative_stock=s.allow_negative_stock,
            )
            for s in snapshots
        ]

    def last_movement_at(self, organization_id: UUID, store_id: UUID) -> dict[StockKey, datetime]:
        rows = self.session.execute(
            select(
                StockMovement.product_id,
                StockMovement.variant_key,
                func.max(StockMovement.created_at),
            )
            .where(
                StockMovement.organization_id == organization_id,
                StockMovement.store_id == store_id,
            )
            .group_by(StockMovement.product_id, StockMovement.variant_key)
        ).all()
        return {(product_id, variant_key): last for product_id, variant_key, last in rows}

    def detect_drift(self, organization_id: UUID, store_id: UUID) -> list[SnapshotDrift]:
        """Keys whose snapshot disagrees with the ledger or open orders (no writes)."""
        on_hand_by_key = {
            (b.product_id, b.variant_key): b.on_hand
            for b in self.ledger_balances(organization_id, store_id)
        }
        on_order_by_key = self.open_order_quantities(organization_id, store_id)
        snapshots = {s.key: s for s in self.list_snapshots(organization_id, store_id)}

        drifted = []
        keys = set(snapshots) | set(on_hand_by_key) | set(on_order_by_key)
        for key in sorted(keys, key=lambda k: (str(k[0]), k[1])):
            snapshot = snapshots.get(key)
            cached_on_hand = snapshot.on_hand if snapshot else 0
            cached_on_order = snapshot.on_order if snapshot else 0
            on_hand = on_hand_by_key.get(key, 0)
            on_order = on_order_by_key.get(key, 0)
            if cached_on_hand != on_hand or cached_on_order != on_order:
                drifted.append(
                    SnapshotDrift(
                        product_id=key[0],
                        variant_key=key[1],
                        previous_on_hand=cached_on_hand,
                        on_hand=on_hand,
                        previous_on_order=cached_on_order,
                        on_order=on_order,
                    )
                )
        return drifted
