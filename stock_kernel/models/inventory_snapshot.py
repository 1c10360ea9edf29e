"""
Module: stock_kernel.models.inventory_snapshot
Responsibility: Denormalized current position per (store, product, variant).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE (store_id, product_id, variant_key): one row per key.
    - on_hand == sum(StockMovement.qty_delta) for the key; rebuildable by
      SnapshotProjector.recompute().
    - on_order >= 0.

Failure modes:
    - Drift (on_hand != ledger sum) is detected by MovementSelector.detect_drift
      and repaired by recompute; it never blocks writes.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class InventorySnapshot(Base):
    """
    Cached stock position.

    allow_negative_stock is copied from the store policy when the row is
    created and kept for reporting; the live gate reads the store policy.
    """

    __tablename__ = "inventory_snapshots"

    __table_args__ = (
        UniqueConstraint("store_id", "product_id", "variant_key", name="uq_snapshot_key"),
        Index("idx_snapshot_org_store", "organization_id", "store_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    store_id: Mapped[UUID] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(nullable=False)
    variant_key: Mapped[str] = mapped_column(String(64), nullable=False)
    on_hand: Mapped[int] = mapped_column(nullable=False, default=0)
    on_order: Mapped[int] = mapped_column(nullable=False, default=0)
    allow_negative_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    min_stock: Mapped[int] = mapped_column(nullable=False, default=0)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_low_stock(self) -> bool:
        return self.min_stock > 0 and self.on_hand <= self.min_stock

    def __repr__(self) -> str:
        return (
            f"<InventorySnapshot {self.product_id}/{self.variant_key} @ {self.store_id} "
            f"on_hand={self.on_hand} on_order={self.on_order}>"
        )
