"""
Module: stock_kernel.models.stock_count
Responsibility: ORM persistence for physical stock counts and their lines.
Architecture position: Kernel > Models.  May import from db/base.py only.
    Lives beside purchase orders: applied counts are the source document of
    STOCK_COUNT adjustments in the ledger.

Invariants enforced:
    - status changes only through stock_kernel.domain.count_lifecycle.
    - UNIQUE code; UNIQUE (stock_count_id, product_id, variant_key).
    - counted_qty >= 0; delta_qty == counted_qty - expected_on_hand.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TrackedBase


class StockCount(TrackedBase):
    __tablename__ = "stock_counts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_stock_count_code"),
        Index("idx_stock_count_org_store", "organization_id", "store_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    store_id: Mapped[UUID] = mapped_column(nullable=False)
    code: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="DRAFT")
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    applied_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    lines: Mapped[list["StockCountLine"]] = relationship(
        "StockCountLine",
        back_populates="stock_count",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockCountLine.position",
    )

    def __repr__(self) -> str:
        return f"<StockCount {self.code} [{self.status}]>"


class StockCountLine(Base):
    __tablename__ = "stock_count_lines"

    __table_args__ = (
        UniqueConstraint("stock_count_id", "product_id", "variant_key", name="uq_stock_count_line_key"),
    )

    stock_count_id: Mapped[UUID] = mapped_column(ForeignKey("stock_counts.id"), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    product_id: Mapped[UUID] = mapped_column(nullable=False)
    variant_id: Mapped[UUID | None] = mapped_column(nullable=True)
    variant_key: Mapped[str] = mapped_column(String(64), nullable=False)
    scan_value: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expected_on_hand: Mapped[int] = mapped_column(nullable=False, default=0)
    counted_qty: Mapped[int] = mapped_column(nullable=False, default=0)
    delta_qty: Mapped[int] = mapped_column(nullable=False, default=0)
    last_scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    stock_count: Mapped[StockCount] = relationship("StockCount", back_populates="lines")
