"""
Module: stock_kernel.models.reorder_policy
Responsibility: Per (store, product) replenishment parameters.  Products
    without a row use the defaults from stock_config.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from uuid import UUID

from sqlalchemy import Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class ReorderPolicy(Base):
    __tablename__ = "reorder_policies"

    __table_args__ = (
        UniqueConstraint("store_id", "product_id", name="uq_reorder_policy_key"),
    )

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    store_id: Mapped[UUID] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(nullable=False)
    lead_time_days: Mapped[int] = mapped_column(Integer, nullable=False, default=7)
    review_cycle_days: Mapped[int] = mapped_column(Integer, nullable=False, default=7)
    safety_stock_days: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    min_order_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
