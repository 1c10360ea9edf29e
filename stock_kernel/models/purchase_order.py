"""
Module: stock_kernel.models.purchase_order
Responsibility: ORM persistence for purchase orders and their lines.
Architecture position: Kernel > Models.  May import from db/base.py only.
    Lives in the kernel because snapshot recomputation derives on_order from
    open purchase order lines.

Invariants enforced:
    - status is one of PurchaseOrderStatus values and changes only through
      stock_kernel.domain.po_lifecycle.
    - 0 <= qty_received <= qty_ordered unless over-receive was allowed.
    - UNIQUE (purchase_order_id, product_id, variant_key): no duplicate lines.

Audit relevance:
    Every status change is recorded by AuditorService with the actor; the
    submitted_at / approved_at / received_at / cancelled_at stamps are the
    lifecycle timeline.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TrackedBase


class PurchaseOrder(TrackedBase):
    """
    A purchase order for one store from one supplier.

    Guarantees:
        - lines are loaded eagerly (selectin) and cascade with the order.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        Index("idx_po_org_store", "organization_id", "store_id"),
        Index("idx_po_status", "status"),
    )

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    store_id: Mapped[UUID] = mapped_column(nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="DRAFT")
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        "PurchaseOrderLine",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLine.position",
    )

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.id} [{self.status}]>"


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "product_id", "variant_key", name="uq_po_line_key"),
        Index("idx_po_line_product", "product_id", "variant_key"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(ForeignKey("purchase_orders.id"), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    product_id: Mapped[UUID] = mapped_column(nullable=False)
    variant_id: Mapped[UUID | None] = mapped_column(nullable=True)
    variant_key: Mapped[str] = mapped_column(String(64), nullable=False)
    qty_ordered: Mapped[int] = mapped_column(nullable=False)
    qty_received: Mapped[int] = mapped_column(nullable=False, default=0)
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    purchase_order: Mapped[PurchaseOrder] = relationship(
        "PurchaseOrder",
        back_populates="lines",
    )
    lots: Mapped[list["PurchaseOrderLineLot"]] = relationship(
        "PurchaseOrderLineLot",
        back_populates="line",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLineLot.expiry_date",
    )

    @property
    def remaining(self) -> int:
        return max(self.qty_ordered - self.qty_received, 0)

    def __repr__(self) -> str:
        return f"<PurchaseOrderLine {self.product_id}/{self.variant_key} {self.qty_received}/{self.qty_ordered}>"


class PurchaseOrderLineLot(Base):
    """Quantity one line received into one expiry lot; a rollback returns it there."""

    __tablename__ = "purchase_order_line_lots"

    __table_args__ = (
        UniqueConstraint("purchase_order_line_id", "expiry_date", name="uq_po_line_lot"),
    )

    purchase_order_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_order_lines.id"), nullable=False
    )
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)
    qty_received: Mapped[int] = mapped_column(nullable=False, default=0)

    line: Mapped[PurchaseOrderLine] = relationship("PurchaseOrderLine", back_populates="lots")
