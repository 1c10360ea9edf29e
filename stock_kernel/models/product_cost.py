"""
Module: stock_kernel.models.product_cost
Responsibility: Moving average unit cost per (organization, product, variant).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE (organization_id, product_id, variant_key).
    - avg_cost is only changed by RECEIVE movements carrying a unit cost.
    - avg_cost keeps Numeric(38, 9) precision; no rounding in storage.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class ProductCost(Base):
    __tablename__ = "product_costs"

    __table_args__ = (
        UniqueConstraint("organization_id", "product_id", "variant_key", name="uq_product_cost_key"),
    )

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(nullable=False)
    variant_key: Mapped[str] = mapped_column(String(64), nullable=False)
    avg_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    # Organization-wide on-hand the current average was computed against
    cost_basis_qty: Mapped[int] = mapped_column(nullable=False, default=0)
    last_receipt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ProductCost {self.product_id}/{self.variant_key} avg={self.avg_cost}>"
