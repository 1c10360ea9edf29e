"""
Counting Module Service (``stock_modules.counting.service``).

Responsibility
--------------
Physical stock counts: open a count for a store, record scanned or typed
quantities per product and variant, then apply the count, which writes one
ADJUSTMENT per line whose counted quantity differs from the on-hand at that
moment.

Architecture position
---------------------
**Modules layer**.  Composes ``InventoryService`` with ``auto_commit=False``
so count adjustments take the same ledger path as every other movement, and
the pure status rules in ``stock_kernel.domain.count_lifecycle``.

Invariants enforced
-------------------
* Lines change only while the count is DRAFT or IN_PROGRESS.
* ``delta_qty`` is always ``counted_qty - expected_on_hand``.
* On apply, ``expected_on_hand`` is refreshed from the locked snapshot, so
  after apply each counted key's on-hand equals its counted quantity.
* Apply is idempotent on its key; applying an applied count is a no-op.

Failure modes
-------------
* ``StockCountLockedError`` -- edit or apply of an applied or cancelled count.
* ``StockCountStoreMismatchError`` -- scan submitted for another store.
* ``ScanNotFoundError`` / ``AmbiguousScanError`` -- unresolvable scan value.
* ``StockCountNotFoundError`` / ``StockCountLineNotFoundError``.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_config.schema import StockConfig
from stock_kernel.db.engine import unit_of_work
from stock_kernel.domain.actor import ActorContext
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.collaborators import (
    CatalogReader,
    ScanResolver,
    StorePolicyReader,
    UnitResolver,
)
from stock_kernel.domain.count_lifecycle import (
    StockCountStatus,
    assert_editable,
    count_delta,
)
from stock_kernel.domain.values import IdempotencyScope, Role
from stock_kernel.exceptions import (
    InvalidQuantityError,
    StockCountCodeExhaustedError,
    StockCountLineNotFoundError,
    StockCountLockedError,
    StockCountNotFoundError,
    StockCountStoreMismatchError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.audit_event import AuditAction
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.stock_count import StockCount, StockCountLine
from stock_kernel.selectors.catalog_selector import OrmCatalogReader
from stock_modules.counting.models import (
    CountMode,
    StockCountApplyResult,
    StockCountLineView,
    StockCountView,
)
from stock_modules.inventory.service import InventoryService, require_id

logger = get_logger("modules.counting.service")

CODE_ATTEMPTS = 5


def generate_count_code(now: datetime) -> str:
    """``SC-YYYYMMDD-XXXXXX`` with a random upper-case hex suffix."""
    return f"SC-{now:%Y%m%d}-{uuid4().hex[:6].upper()}"


def _require_counted_qty(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidQuantityError("counted_qty", value, "must be a non-negative integer")
    return value


class StockCountService:
    """
    Stock counts over the stock ledger.

    STAFF may open counts and record lines; applying and cancelling require
    MANAGER.  Every method checks the actor's store scope against the
    count's store.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: StockConfig | None = None,
        policy_reader: StorePolicyReader | None = None,
        unit_resolver: UnitResolver | None = None,
        catalog: CatalogReader | None = None,
        scanner: ScanResolver | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._inventory = InventoryService(
            session,
            clock=self._clock,
            config=config,
            policy_reader=policy_reader,
            unit_resolver=unit_resolver,
            catalog=catalog,
            auto_commit=False,
        )
        self._scanner = scanner or OrmCatalogReader(session)
        self._ledger = self._inventory.ledger
        self._auditor = self._inventory.auditor
        self._guard = self._inventory.guard
        self._stores = self._inventory.policy_reader
        self._catalog = self._inventory.catalog

    @contextmanager
    def _bound(self, actor: ActorContext, **fields: object) -> Iterator[None]:
        with LogContext.bind(**actor.log_fields(), **fields):
            with unit_of_work(self._session):
                yield

    # =========================================================================
    # Loading
    # =========================================================================

    def _select_count_for_update(self, stock_count_id: UUID) -> StockCount | None:
        return self._session.execute(
            select(StockCount)
            .where(StockCount.id == stock_count_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_count(self, actor: ActorContext, stock_count_id: UUID) -> StockCount:
        count = self._select_count_for_update(stock_count_id)
        if count is None or count.organization_id != actor.organization_id:
            raise StockCountNotFoundError(str(stock_count_id))
        actor.require_store(count.store_id)
        return count

    def _lock_line(self, actor: ActorContext, line_id: UUID) -> tuple[StockCount, StockCountLine]:
        line = self._session.get(StockCountLine, line_id)
        if line is None:
            raise StockCountLineNotFoundError(str(line_id))
        count = self._select_count_for_update(line.stock_count_id)
        if count is None or count.organization_id != actor.organization_id:
            raise StockCountLineNotFoundError(str(line_id))
        actor.require_store(count.store_id)
        for candidate in count.lines:
            if candidate.id == line_id:
                return count, candidate
        raise StockCountLineNotFoundError(str(line_id))

    def _current_on_hand(self, store_id: UUID, product_id: UUID, variant_key: str) -> int:
        on_hand = self._session.execute(
            select(InventorySnapshot.on_hand).where(
                InventorySnapshot.store_id == store_id,
                InventorySnapshot.product_id == product_id,
                InventorySnapshot.variant_key == variant_key,
            )
        ).scalar_one_or_none()
        return on_hand or 0

    def _touch(self, count: StockCount, actor: ActorContext) -> None:
        count.updated_at = self._clock.now()
        count.updated_by_id = actor.actor_id

    def _record(
        self,
        actor: ActorContext,
        count: StockCount,
        action: AuditAction,
        from_status: str | None,
        extra_payload: dict | None = None,
    ) -> None:
        self._auditor.record_stock_count_event(
            organization_id=count.organization_id,
            stock_count_id=count.id,
            action=action,
            actor_id=actor.actor_id,
            from_status=from_status,
            to_status=count.status,
            extra_payload=extra_payload,
        )
        logger.info(
            "stock_count_event",
            extra={
                "stock_count_id": str(count.id),
                "code": count.code,
                "action": action.value,
                "status": count.status,
            },
        )

    # =========================================================================
    # Create
    # =========================================================================

    def _insert_with_code(self, actor: ActorContext, store_id: UUID, note: str | None) -> StockCount:
        for attempt in range(1, CODE_ATTEMPTS + 1):
            now = self._clock.now()
            code = generate_count_code(now)
            savepoint = self._session.begin_nested()
            try:
                count = StockCount(
                    organization_id=actor.organization_id,
                    store_id=store_id,
                    code=code,
                    status=StockCountStatus.DRAFT.value,
                    note=note,
                    created_at=now,
                    updated_at=now,
                    created_by_id=actor.actor_id,
                )
                self._session.add(count)
                self._session.flush()
                savepoint.commit()
                return count
            except IntegrityError:
                savepoint.rollback()
                logger.warning("stock_count_code_taken", extra={"code": code, "attempt": attempt})
        raise StockCountCodeExhaustedError(CODE_ATTEMPTS)

    def create_stock_count(
        self,
        actor: ActorContext,
        *,
        store_id: UUID,
        note: str | None = None,
    ) -> StockCountView:
        """Open a DRAFT count for ``store_id`` with a fresh ``SC-`` code."""
        actor.require_role(Role.STAFF)
        require_id("store_id", store_id)
        actor.require_store(store_id)

        with self._bound(actor, store_id=store_id):
            store = self._stores.get_store(actor.organization_id, store_id)
            count = self._insert_with_code(actor, store.store_id, note)
            self._record(actor, count, AuditAction.STOCK_COUNT_CREATED, None)
            return StockCountView.from_model(count)

    # =========================================================================
    # Lines
    # =========================================================================

    def record_scan(
        self,
        actor: ActorContext,
        *,
        stock_count_id: UUID,
        store_id: UUID,
        scan_value: str,
        mode: CountMode = CountMode.INCREMENT,
        counted_qty: int | None = None,
        counted_delta: int | None = None,
    ) -> StockCountLineView:
        """
        Add or update the line for whatever ``scan_value`` resolves to.

        ``INCREMENT`` adds ``counted_delta`` (default 1) to the line's counted
        quantity; ``SET`` replaces it with ``counted_qty``.  A new line takes
        its expected on-hand from the store's snapshot (0 without one); an
        existing line keeps the expectation it was opened with.  The first
        scan moves a DRAFT count to IN_PROGRESS.
        """
        actor.require_role(Role.STAFF)
        require_id("stock_count_id", stock_count_id)
        require_id("store_id", store_id)
        mode = CountMode(mode)
        if mode is CountMode.SET:
            _require_counted_qty(counted_qty)
            increment = 0
        else:
            increment = 1 if counted_delta is None else counted_delta
            if isinstance(increment, bool) or not isinstance(increment, int):
                raise InvalidQuantityError("counted_delta", counted_delta, "must be an integer")

        with self._bound(actor, store_id=store_id):
            count = self._lock_count(actor, stock_count_id)
            if count.store_id != store_id:
                raise StockCountStoreMismatchError(str(count.id), str(store_id))
            previous = assert_editable(count.id, count.status)

            match = self._scanner.resolve_scan(actor.organization_id, scan_value)
            variant_key = self._catalog.resolve_variant_key(
                actor.organization_id, match.product_id, match.variant_id
            )

            line = None
            for candidate in count.lines:
                if candidate.product_id == match.product_id and candidate.variant_key == variant_key:
                    line = candidate
                    break

            base = 0 if line is None else line.counted_qty
            next_counted = counted_qty if mode is CountMode.SET else base + increment
            _require_counted_qty(next_counted)

            now = self._clock.now()
            if line is None:
                line = StockCountLine(
                    position=max((c.position for c in count.lines), default=-1) + 1,
                    product_id=match.product_id,
                    variant_id=match.variant_id,
                    variant_key=variant_key,
                    expected_on_hand=self._current_on_hand(count.store_id, match.product_id, variant_key),
                )
                count.lines.append(line)
            line.counted_qty = next_counted
            line.delta_qty = count_delta(next_counted, line.expected_on_hand)
            line.scan_value = match.scan_value
            line.last_scanned_at = now

            if previous is StockCountStatus.DRAFT:
                count.status = StockCountStatus.IN_PROGRESS.value
                count.started_at = count.started_at or now
            self._touch(count, actor)
            self._session.flush()
            self._record(
                actor,
                count,
                AuditAction.STOCK_COUNT_LINE_RECORDED,
                previous.value,
                {
                    "line_id": line.id,
                    "product_id": line.product_id,
                    "variant_key": line.variant_key,
                    "mode": mode.value,
                    "counted_qty": line.counted_qty,
                },
            )
            return StockCountLineView.from_model(line)

    def set_line_counted_qty(
        self,
        actor: ActorContext,
        *,
        line_id: UUID,
        counted_qty: int,
    ) -> StockCountLineView:
        """Overwrite a line's counted quantity."""
        actor.require_role(Role.STAFF)
        require_id("line_id", line_id)
        _require_counted_qty(counted_qty)

        with self._bound(actor):
            count, line = self._lock_line(actor, line_id)
            previous = assert_editable(count.id, count.status)
            before = line.counted_qty
            line.counted_qty = counted_qty
            line.delta_qty = count_delta(counted_qty, line.expected_on_hand)
            self._touch(count, actor)
            self._session.flush()
            self._record(
                actor,
                count,
                AuditAction.STOCK_COUNT_LINE_RECORDED,
                previous.value,
                {"line_id": line.id, "counted_qty_before": before, "counted_qty": counted_qty},
            )
            return StockCountLineView.from_model(line)

    def remove_line(self, actor: ActorContext, *, line_id: UUID) -> StockCountView:
        actor.require_role(Role.STAFF)
        require_id("line_id", line_id)

        with self._bound(actor):
            count, line = self._lock_line(actor, line_id)
            previous = assert_editable(count.id, count.status)
            count.lines.remove(line)
            self._touch(count, actor)
            self._session.flush()
            self._record(
                actor,
                count,
                AuditAction.STOCK_COUNT_LINE_REMOVED,
                previous.value,
                {"line_id": line_id, "product_id": line.product_id, "variant_key": line.variant_key},
            )
            return StockCountView.from_model(count)

    # =========================================================================
    # Apply / cancel
    # =========================================================================

    def apply_stock_count(
        self,
        actor: ActorContext,
        *,
        stock_count_id: UUID,
        idempotency_key: str,
    ) -> StockCountApplyResult:
        """
        Bring every counted key to its counted quantity and mark the count APPLIED.

        Each line is compared with the on-hand read under the snapshot lock,
        not with the expectation captured while scanning, so sales between
        the scan and the apply are not double counted.
        """
        actor.require_role(Role.MANAGER)
        require_id("stock_count_id", stock_count_id)

        request = {"stock_count_id": stock_count_id}

        def operation() -> StockCountApplyResult:
            count = self._lock_count(actor, stock_count_id)
            if count.status == StockCountStatus.APPLIED.value:
                return StockCountApplyResult(
                    stock_count_id=count.id,
                    status=StockCountStatus.APPLIED,
                    already_applied=True,
                )
            previous = assert_editable(count.id, count.status)
            store = self._stores.get_store(count.organization_id, count.store_id)

            snapshots = self._ledger.lock_snapshots(
                store, [(line.product_id, line.variant_key) for line in count.lines]
            )
            movements = []
            for line in sorted(count.lines, key=lambda item: (str(item.product_id), item.variant_key)):
                line.expected_on_hand = snapshots[(line.product_id, line.variant_key)].on_hand
                line.delta_qty = count_delta(line.counted_qty, line.expected_on_hand)
                if line.delta_qty == 0:
                    continue
                movements.append(
                    self._inventory.apply_count_adjustment(
                        actor,
                        store,
                        line.product_id,
                        line.variant_key,
                        line.delta_qty,
                        f"stockCount:{count.code}",
                        count.id,
                        idempotency_key,
                        {"stock_count_id": count.id, "counted_qty": line.counted_qty},
                    )
                )

            now = self._clock.now()
            count.status = StockCountStatus.APPLIED.value
            count.applied_at = now
            count.applied_by_id = actor.actor_id
            self._touch(count, actor)
            self._session.flush()
            self._record(
                actor,
                count,
                AuditAction.STOCK_COUNT_APPLIED,
                previous.value,
                {"adjustments": len(movements), "line_count": len(count.lines)},
            )
            return StockCountApplyResult(
                stock_count_id=count.id,
                status=StockCountStatus.APPLIED,
                movements=tuple(movements),
            )

        with LogContext.bind(
            request_id=idempotency_key,
            idempotency_key=idempotency_key,
            **actor.log_fields(),
        ):
            with unit_of_work(self._session):
                outcome = self._guard.run(
                    scope=IdempotencyScope.STOCK_COUNT_APPLY,
                    key=idempotency_key,
                    actor=actor,
                    request=request,
                    operation=operation,
                    result_type=StockCountApplyResult,
                )
            logger.info(
                "stock_count_applied",
                extra={
                    "stock_count_id": str(stock_count_id),
                    "replayed": outcome.replayed,
                    "already_applied": outcome.result.already_applied,
                    "adjustments": outcome.result.adjustments,
                },
            )
            return outcome.result

    def cancel_stock_count(self, actor: ActorContext, *, stock_count_id: UUID) -> StockCountView:
        """DRAFT | IN_PROGRESS -> CANCELLED; cancelling twice changes nothing."""
        actor.require_role(Role.MANAGER)
        require_id("stock_count_id", stock_count_id)

        with self._bound(actor):
            count = self._lock_count(actor, stock_count_id)
            if count.status == StockCountStatus.CANCELLED.value:
                return StockCountView.from_model(count)
            if count.status == StockCountStatus.APPLIED.value:
                raise StockCountLockedError(str(count.id), count.status)
            previous = count.status
            count.status = StockCountStatus.CANCELLED.value
            count.cancelled_at = self._clock.now()
            self._touch(count, actor)
            self._session.flush()
            self._record(actor, count, AuditAction.STOCK_COUNT_CANCELLED, previous)
            return StockCountView.from_model(count)

    # =========================================================================
    # Read
    # =========================================================================

    def get_stock_count(self, actor: ActorContext, *, stock_count_id: UUID) -> StockCountView:
        actor.require_role(Role.STAFF)
        require_id("stock_count_id", stock_count_id)
        count = self._session.get(StockCount, stock_count_id)
        if count is None or count.organization_id != actor.organization_id:
            raise StockCountNotFoundError(str(stock_count_id))
        actor.require_store(count.store_id)
        return StockCountView.from_model(count)

    def list_stock_counts(
        self,
        actor: ActorContext,
        *,
        store_id: UUID,
        status: StockCountStatus | None = None,
    ) -> list[StockCountView]:
        """Counts of one store, newest first."""
        actor.require_role(Role.STAFF)
        require_id("store_id", store_id)
        actor.require_store(store_id)
        query = select(StockCount).where(
            StockCount.organization_id == actor.organization_id,
            StockCount.store_id == store_id,
        )
        if status is not None:
            query = query.where(StockCount.status == StockCountStatus(status).value)
        counts = self._session.execute(
            query.order_by(StockCount.created_at.desc(), StockCount.code)
        ).scalars().all()
        return [StockCountView.from_model(count) for count in counts]
