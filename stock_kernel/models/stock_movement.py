"""
Module: stock_kernel.models.stock_movement
Responsibility: ORM persistence for the append-only stock ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listeners in db/immutability.py).
    - For every (store_id, product_id, variant_key) the sum of qty_delta
      equals InventorySnapshot.on_hand.  Corrections are compensating rows,
      never edits.
    - qty_delta is a non-zero integer in base units.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.

Audit relevance:
    The ledger is the authoritative stock history.  request_id ties each row
    to the idempotent request that produced it; reference_type/reference_id
    tie transfer legs and purchase order receipts together.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class StockMovement(Base):
    """
    One signed quantity change in one store.

    Guarantees:
        - movement_type is one of MovementType values.
        - transfer legs share reference_id with reference_type TRANSFER.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        Index("idx_movement_key", "store_id", "product_id", "variant_key"),
        Index("idx_movement_org_created", "organization_id", "created_at"),
        Index("idx_movement_reference", "reference_type", "reference_id"),
        CheckConstraint("qty_delta <> 0", name="ck_movement_nonzero"),
    )

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    store_id: Mapped[UUID] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(nullable=False)
    variant_key: Mapped[str] = mapped_column(String(64), nullable=False)
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    qty_delta: Mapped[int] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(nullable=True)
    request_id: Mapped[str] = mapped_column(String(200), nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.movement_type} {self.qty_delta:+d} "
            f"{self.product_id}/{self.variant_key} @ {self.store_id}>"
        )
