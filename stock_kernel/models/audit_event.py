"""
Module: stock_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain per organization: hash = H(entity_type | entity_id |
      action | payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing per organization, allocated by
      SequenceService.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a mismatch.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Ledger
    STOCK_ADJUSTED = "stock_adjusted"
    STOCK_RECEIVED = "stock_received"
    STOCK_TRANSFERRED_OUT = "stock_transferred_out"
    STOCK_TRANSFERRED_IN = "stock_transferred_in"
    STOCK_COMPENSATED = "stock_compensated"
    STOCK_COUNTED = "stock_counted"
    SNAPSHOT_RECOMPUTED = "snapshot_recomputed"

    # Purchase order lifecycle
    PURCHASE_ORDER_CREATED = "purchase_order_created"
    PURCHASE_ORDER_SUBMITTED = "purchase_order_submitted"
    PURCHASE_ORDER_APPROVED = "purchase_order_approved"
    PURCHASE_ORDER_RECEIVED = "purchase_order_received"
    PURCHASE_ORDER_CANCELLED = "purchase_order_cancelled"
    PURCHASE_ORDER_LINES_EDITED = "purchase_order_lines_edited"
    PURCHASE_ORDER_ROLLED_BACK = "purchase_order_rolled_back"

    # Stock counts
    STOCK_COUNT_CREATED = "stock_count_created"
    STOCK_COUNT_LINE_RECORDED = "stock_count_line_recorded"
    STOCK_COUNT_LINE_REMOVED = "stock_count_line_removed"
    STOCK_COUNT_APPLIED = "stock_count_applied"
    STOCK_COUNT_CANCELLED = "stock_count_cancelled"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - (organization_id, seq) is unique and seq increases per organization.
        - prev_hash is None only for the genesis event of an organization.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        UniqueConstraint("organization_id", "seq", name="uq_audit_org_seq"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
    )

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    seq: Mapped[int] = mapped_column(nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
