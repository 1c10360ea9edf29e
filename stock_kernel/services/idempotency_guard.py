"""
IdempotencyGuard -- at-most-once execution of stock-mutating requests.

Responsibility:
    Given (scope, key, actor) and the request arguments, either run the
    operation and record its result, or hand back the recorded result of an
    earlier run without touching the ledger again.

Architecture position:
    Kernel > Services.  Injected into InventoryService and
    PurchaseOrderService; runs inside the caller's unit of work so the key
    row commits or rolls back together with the effect it guards.

Invariants enforced:
    - One logical intent per (scope, key, actor_id), enforced by a UNIQUE
      constraint on idempotency_keys.
    - A replay returns the recorded result; the operation is not invoked.
    - The request hash pins the arguments.  Reusing a key with different
      arguments is a conflict, never a silent replay of the wrong intent.
    - No dangling keys: if the operation raises, the caller's rollback
      removes the key together with any partial effect.

Failure modes:
    - IdempotencyKeyReuseError: key already used with a different request.
    - RequestInProgressError: key row exists without a recorded result
      (another transaction is still running it).
    - Concurrent duplicate insert: the IntegrityError is absorbed by a
      savepoint rollback and treated as "already executed".

Audit relevance:
    ``idempotency_key_claimed`` and ``idempotent_replay`` log lines carry the
    scope, key and request hash, so a retried client call can be traced to
    the original movements.
"""

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.actor import ActorContext
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.values import IdempotencyScope
from stock_kernel.exceptions import (
    IdempotencyKeyReuseError,
    MissingIdentifierError,
    RequestInProgressError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.idempotency import IdempotencyRecord
from stock_kernel.services.base import BaseService
from stock_kernel.utils.hashing import hash_payload

logger = get_logger("services.idempotency")


ResultT = TypeVar("ResultT")


@dataclass(frozen=True)
class IdempotentOutcome(Generic[ResultT]):
    result: ResultT
    replayed: bool


class IdempotencyGuard(BaseService):
    """
    Run-once wrapper around a mutating operation.

    Contract:
        ``operation`` must do all of its work through the same session and
        return an object with ``to_payload()``; ``result_type.from_payload``
        must rebuild an equal object from that payload.

    Non-goals:
        - Does NOT commit.  The caller's unit of work owns the transaction.
        - Does NOT expire keys.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _select_locked(self, scope: str, key: str, actor_id: Any) -> IdempotencyRecord | None:
        return self.session.execute(
            select(IdempotencyRecord)
            .where(
                IdempotencyRecord.scope == scope,
                IdempotencyRecord.key == key,
                IdempotencyRecord.actor_id == actor_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _replay(
        self,
        record: IdempotencyRecord,
        request_hash: str,
        result_type: Any,
    ) -> IdempotentOutcome:
        if record.request_hash != request_hash:
            logger.warning(
                "idempotency_key_reused",
                extra={
                    "scope": record.scope,
                    "expected_hash": record.request_hash,
                    "received_hash": request_hash,
                },
            )
            raise IdempotencyKeyReuseError(
                scope=record.scope,
                key=record.key,
                expected_hash=record.request_hash,
                received_hash=request_hash,
            )
        if not record.is_complete:
            raise RequestInProgressError(scope=record.scope, key=record.key)

        logger.info(
            "idempotent_replay",
            extra={"scope": record.scope, "request_hash": request_hash},
        )
        return IdempotentOutcome(result=result_type.from_payload(record.response), replayed=True)

    def run(
        self,
        *,
        scope: IdempotencyScope | str,
        key: str,
        actor: ActorContext,
        request: dict[str, Any],
        operation: Callable[[], ResultT],
        result_type: Any,
    ) -> IdempotentOutcome[ResultT]:
        """
        Execute ``operation`` at most once for (scope, key, actor).

        Args:
            request: The operation's arguments; hashed to detect key reuse.
            operation: Zero-argument callable doing the guarded work.
            result_type: Class with ``from_payload`` used on replay.

        Returns:
            IdempotentOutcome with ``replayed`` True when the stored result
            was returned instead of running ``operation``.
        """
        if not key or not str(key).strip():
            raise MissingIdentifierError("idempotency_key")
        scope_value = IdempotencyScope(scope).value
        request_hash = hash_payload(request)

        existing = self._select_locked(scope_value, key, actor.actor_id)
        if existing is not None:
            return self._replay(existing, request_hash, result_type)

        savepoint = self.session.begin_nested()
        try:
            record = IdempotencyRecord(
                organization_id=actor.organization_id,
                actor_id=actor.actor_id,
                scope=scope_value,
                key=key,
                request_hash=request_hash,
                created_at=self._clock.now(),
            )
            self.session.add(record)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # A concurrent request claimed the key first and has committed.
            savepoint.rollback()
            logger.info(
                "idempotency_key_race",
                extra={"scope": scope_value, "request_hash": request_hash},
            )
            existing = self._select_locked(scope_value, key, actor.actor_id)
            if existing is None:
                raise
            return self._replay(existing, request_hash, result_type)

        logger.info(
            "idempotency_key_claimed",
            extra={"scope": scope_value, "request_hash": request_hash},
        )

        result = operation()

        response = result.to_payload()
        record.response = response
        record.response_hash = hash_payload(response)
        record.completed_at = self._clock.now()
        self.session.flush()
        return IdempotentOutcome(result=result, replayed=False)
