"""
BaseService -- abstract base for kernel services that write.

Responsibility:
    Common constructor and session contract, plus the row-locking helpers
    every ledger service uses.  Kernel services receive a SQLAlchemy
    ``Session`` and persist with ``session.flush()`` only.

Architecture position:
    Kernel > Services.  Every writing service in ``stock_kernel/services/``
    extends this class.

Invariants enforced:
    - Transaction boundaries: kernel services flush within the caller's
      transaction and never commit or roll back.  The module services in
      ``stock_modules`` (or a test harness) own the unit of work, so a
      movement, its snapshot update, its lots, its cost row, its audit event
      and its idempotency record commit or vanish together.
    - Read-modify-write on a snapshot, lot or cost row always happens on a
      row locked with ``SELECT ... FOR UPDATE``.

Failure modes:
    - IntegrityError on a concurrent first insert of the same key is
      absorbed by a savepoint rollback followed by a locked re-read.
"""

from abc import ABC
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only queries; those live in
          ``stock_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

    def _lock_one(self, model: type[ModelType], **filters: Any) -> ModelType | None:
        """Select one row by its natural key, locked FOR UPDATE and refreshed."""
        return self.session.execute(
            select(model)
            .filter_by(**filters)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _get_or_create_locked(
        self,
        model: type[ModelType],
        filters: dict[str, Any],
        defaults: dict[str, Any],
    ) -> tuple[ModelType, bool]:
        """
        Return the locked row for ``filters``, inserting it when missing.

        Postconditions:
            - The returned row is locked for the rest of the transaction.
            - ``created`` is True only if this call inserted it.
        """
        row = self._lock_one(model, **filters)
        if row is not None:
            return row, False

        savepoint = self.session.begin_nested()
        try:
            row = model(**filters, **defaults)
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
            return row, True
        except IntegrityError:
            savepoint.rollback()
            row = self._lock_one(model, **filters)
            if row is None:
                raise
            return row, False
