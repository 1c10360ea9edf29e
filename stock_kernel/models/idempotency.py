"""
Module: stock_kernel.models.idempotency
Responsibility: Durable map from (scope, key, actor) to the recorded result of
    a stock-mutating request.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE (scope, key, actor_id): one logical intent per key per operation
      family per actor.
    - The row is inserted in the same transaction as the effect it guards;
      a rollback removes both.
    - request_hash pins the request arguments; a reused key with different
      arguments is a conflict, not a replay.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_keys"

    __table_args__ = (
        UniqueConstraint("scope", "key", "actor_id", name="uq_idempotency_scope_key_actor"),
        Index("idx_idempotency_org", "organization_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    actor_id: Mapped[UUID] = mapped_column(nullable=False)
    scope: Mapped[str] = mapped_column(String(100), nullable=False)
    key: Mapped[str] = mapped_column(String(200), nullable=False)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    response_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_complete(self) -> bool:
        return self.response is not None

    def __repr__(self) -> str:
        return f"<IdempotencyRecord {self.scope}:{self.key}>"
