"""
Module: stock_kernel.models.stock_lot
Responsibility: Expiry-dated sub-balances of a snapshot, for stores with
    track_expiry_lots enabled.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE (store_id, product_id, variant_key, expiry_date).
    - The positive on_hand_qty total for a key never exceeds
      max(snapshot on_hand, 0); LotTracker enforces it on every movement.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Date, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class StockLot(Base):
    __tablename__ = "stock_lots"

    __table_args__ = (
        UniqueConstraint(
            "store_id", "product_id", "variant_key", "expiry_date", name="uq_stock_lot_key"
        ),
        Index("idx_lot_key", "store_id", "product_id", "variant_key"),
    )

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    store_id: Mapped[UUID] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(nullable=False)
    variant_key: Mapped[str] = mapped_column(String(64), nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)
    on_hand_qty: Mapped[int] = mapped_column(nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<StockLot {self.product_id}/{self.variant_key} exp={self.expiry_date} qty={self.on_hand_qty}>"
