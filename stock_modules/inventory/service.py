"""
Inventory Module Service (``stock_modules.inventory.service``).

Responsibility
--------------
Orchestrates adjust / receive / transfer / recompute by composing the kernel
services: ``IdempotencyGuard``, ``LedgerWriter``, ``LotTracker``,
``CostAccumulator``, ``SnapshotProjector`` and ``AuditorService``.  It
contains the policy glue (roles, tenancy, quantity rules) and no ledger
arithmetic of its own.

Architecture
------------
Layer: **Modules** -- stateful orchestration wrapper.

1. Checks the actor's role and store scope (Forbidden before anything else).
2. Runs the operation through ``IdempotencyGuard`` so retries replay.
3. Appends the movement through ``LedgerWriter`` (negative-stock gate).
4. Applies lots and cost, writes the audit event, logs low stock.

Invariants
----------
- Each public method owns its transaction boundary through ``unit_of_work``
  unless constructed with ``auto_commit=False``; the purchasing module does
  that and calls ``apply_receipt`` / ``apply_compensation`` inside its own
  transaction; the counting module does the same with
  ``apply_count_adjustment``.
- A transfer appends exactly two movements sharing one ``reference_id``;
  both commit or neither does.
- Snapshot locks for a transfer are taken in sorted store-id order.

Failure Modes
-------------
- ``StockForbiddenError`` subclasses before any read of ledger state.
- ``StockValidationError`` subclasses for malformed input.
- ``StockNotFoundError`` subclasses for unknown or foreign references.
- ``StockConflictError`` subclasses for business-rule violations.
- ``TransientStorageError`` when the database reports contention; retry
  with the same idempotency key.

Audit Relevance
---------------
Every movement writes one hash-chained audit event with the before/after
on-hand.  ``request_id`` on each movement is the idempotency key of the
request that produced it.

Usage::

    service = InventoryService(session, clock=clock)
    result = service.receive_stock(
        actor, store_id=store_id, product_id=product_id, qty_received=10,
        unit_cost=Decimal("5.00"), idempotency_key="rcv-7f3a",
    )
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Iterator, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from stock_config.schema import StockConfig
from stock_kernel.db.engine import unit_of_work
from stock_kernel.domain.actor import ActorContext
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.collaborators import (
    CatalogReader,
    StorePolicy,
    StorePolicyReader,
    UnitResolver,
)
from stock_kernel.domain.costing import per_base_unit_cost
from stock_kernel.domain.dtos import LotChange, RecomputeResult, StockChangeResult, TransferResult
from stock_kernel.domain.lots import DepletionPolicy
from stock_kernel.domain.values import (
    IdempotencyScope,
    MovementType,
    ReferenceType,
    Role,
)
from stock_kernel.exceptions import (
    InvalidQuantityError,
    MissingIdentifierError,
    SameStoreTransferError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.audit_event import AuditAction
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.selectors.catalog_selector import (
    OrmCatalogReader,
    OrmStorePolicyReader,
    OrmUnitResolver,
)
from stock_kernel.services.auditor_service import AuditorService
from stock_kernel.services.cost_accumulator import CostAccumulator
from stock_kernel.services.idempotency_guard import IdempotencyGuard
from stock_kernel.services.ledger_writer import LedgerWriter
from stock_kernel.services.lot_tracker import LotTracker
from stock_kernel.services.snapshot_projector import SnapshotProjector

logger = get_logger("modules.inventory.service")


def require_id(field_name: str, value: UUID | None) -> UUID:
    if value is None:
        raise MissingIdentifierError(field_name)
    return value


def require_positive_int(field_name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidQuantityError(field_name, value, "must be an integer")
    if value <= 0:
        raise InvalidQuantityError(field_name, value, "must be positive")
    return value


class InventoryService:
    """
    Orchestrates stock-affecting operations through the kernel.

    Contract
    --------
    Every public mutating method takes the caller's ``ActorContext`` and an
    idempotency key, and returns a frozen result DTO that is identical on
    replay.

    Guarantees
    ----------
    - Atomicity: movement, snapshot, lots, cost, audit event and idempotency
      record share one transaction.
    - Idempotency: the same key and arguments never apply a delta twice.
    - Ledger correctness: ``on_hand`` equals the ledger sum after commit.

    Non-goals
    ---------
    - Does NOT convert units itself; ``UnitResolver`` does.
    - Does NOT retry transient errors; callers retry with the same key.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: StockConfig | None = None,
        policy_reader: StorePolicyReader | None = None,
        unit_resolver: UnitResolver | None = None,
        catalog: CatalogReader | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit

        depletion = (
            config.inventory.lot_depletion_policy if config is not None else DepletionPolicy.FEFO
        )

        # Collaborator seams (ORM-backed defaults)
        self._policy_reader = policy_reader or OrmStorePolicyReader(session)
        self._units = unit_resolver or OrmUnitResolver(session)
        self._catalog = catalog or OrmCatalogReader(session)

        # Kernel services (share session for atomicity)
        self._auditor = AuditorService(session, self._clock)
        self._guard = IdempotencyGuard(session, self._clock)
        self._ledger = LedgerWriter(session, self._clock)
        self._lots = LotTracker(session, self._clock, depletion_policy=depletion)
        self._costs = CostAccumulator(session)
        self._projector = SnapshotProjector(
            session, self._clock, auditor=self._auditor, policy_reader=self._policy_reader
        )

    @property
    def ledger(self) -> LedgerWriter:
        return self._ledger

    @property
    def costs(self) -> CostAccumulator:
        return self._costs

    @property
    def auditor(self) -> AuditorService:
        return self._auditor

    @property
    def guard(self) -> IdempotencyGuard:
        return self._guard

    @property
    def policy_reader(self) -> StorePolicyReader:
        return self._policy_reader

    @property
    def unit_resolver(self) -> UnitResolver:
        return self._units

    @property
    def catalog(self) -> CatalogReader:
        return self._catalog

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        if not self._auto_commit:
            yield
            return
        with unit_of_work(self._session):
            yield

    # =========================================================================
    # Shared movement path
    # =========================================================================

    def _record_movement(
        self,
        actor: ActorContext,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
        movement_type: MovementType,
        qty_delta: int,
        *,
        request_id: str,
        audit_action: AuditAction,
        unit_cost: Decimal | None = None,
        expiry_date: date | None = None,
        note: str | None = None,
        reference_type: ReferenceType | None = None,
        reference_id: UUID | None = None,
        incoming_lots: Sequence[LotChange] | None = None,
        received_lots: Sequence[tuple[date, int]] | None = None,
        audit_payload: dict | None = None,
    ) -> StockChangeResult:
        now = self._clock.now()

        # Lock order for every writer: snapshot, cost row, lots, audit counter.
        self._ledger.lock_snapshot(store, product_id, variant_key)

        avg_cost = None
        if movement_type.updates_cost:
            # Before the append: the average uses on-hand prior to this receipt.
            cost = self._costs.apply_receipt(
                store.organization_id, product_id, variant_key, qty_delta, unit_cost, now
            )
            avg_cost = cost.avg_cost if cost is not None else None

        movement, snapshot = self._ledger.append_movement(
            store,
            product_id,
            variant_key,
            movement_type,
            qty_delta,
            actor,
            request_id,
            unit_cost=unit_cost,
            note=note,
            reference_type=reference_type,
            reference_id=reference_id,
            created_at=now,
        )

        if received_lots is not None:
            lot_changes = self._lots.reverse(
                store, product_id, variant_key, -qty_delta, received_lots, snapshot.on_hand
            )
        elif incoming_lots:
            lot_changes = tuple(
                change
                for moved in incoming_lots
                for change in self._lots.apply(
                    store,
                    product_id,
                    variant_key,
                    -moved.qty_delta,
                    moved.expiry_date,
                    on_hand=snapshot.on_hand,
                )
            )
        else:
            lot_changes = self._lots.apply(
                store, product_id, variant_key, qty_delta, expiry_date, on_hand=snapshot.on_hand
            )

        payload = dict(audit_payload or {})
        if reference_id is not None:
            payload["reference_id"] = reference_id
        if lot_changes:
            payload["lots"] = [change.to_payload() for change in lot_changes]
        if avg_cost is not None:
            payload["avg_cost"] = avg_cost
        self._auditor.record_stock_change(
            organization_id=store.organization_id,
            movement_id=movement.id,
            action=audit_action,
            actor_id=actor.actor_id,
            store_id=store.store_id,
            product_id=product_id,
            variant_key=variant_key,
            movement_type=movement_type.value,
            qty_delta=qty_delta,
            on_hand_before=snapshot.on_hand - qty_delta,
            on_hand_after=snapshot.on_hand,
            extra_payload=payload,
        )
        self._alert_low_stock(snapshot)

        return StockChangeResult(
            movement_id=movement.id,
            store_id=store.store_id,
            product_id=product_id,
            variant_key=variant_key,
            movement_type=movement_type,
            qty_delta=qty_delta,
            on_hand=snapshot.on_hand,
            on_order=snapshot.on_order,
            avg_cost=avg_cost,
            lot_changes=lot_changes,
        )

    def _alert_low_stock(self, snapshot: InventorySnapshot) -> None:
        if snapshot.is_low_stock:
            logger.warning(
                "low_stock_alert",
                extra={
                    "product_id": str(snapshot.product_id),
                    "variant_key": snapshot.variant_key,
                    "on_hand": snapshot.on_hand,
                    "min_stock": snapshot.min_stock,
                },
            )

    def _resolve_key(
        self,
        actor: ActorContext,
        product_id: UUID,
        variant_id: UUID | None,
    ) -> str:
        self._catalog.get_product(actor.organization_id, product_id)
        return self._catalog.resolve_variant_key(actor.organization_id, product_id, variant_id)

    # =========================================================================
    # Adjust
    # =========================================================================

    def adjust_stock(
        self,
        actor: ActorContext,
        *,
        store_id: UUID,
        product_id: UUID,
        qty_delta: int,
        reason: str,
        idempotency_key: str,
        variant_id: UUID | None = None,
        pack_id: UUID | None = None,
        expiry_date: date | None = None,
        note: str | None = None,
    ) -> StockChangeResult:
        """
        Append one ADJUSTMENT movement of ``qty_delta`` (pack units if ``pack_id``).

        Raises:
            InsufficientStockError: on_hand would go below zero and the store
                forbids negative stock.
        """
        actor.require_role(Role.MANAGER)
        require_id("store_id", store_id)
        require_id("product_id", product_id)
        actor.require_store(store_id)
        if isinstance(qty_delta, bool) or not isinstance(qty_delta, int) or qty_delta == 0:
            raise InvalidQuantityError("qty_delta", qty_delta, "must be a non-zero integer")

        request = {
            "store_id": store_id,
            "product_id": product_id,
            "variant_id": variant_id,
            "pack_id": pack_id,
            "qty_delta": qty_delta,
            "reason": reason,
            "expiry_date": expiry_date,
            "note": note,
        }

        def operation() -> StockChangeResult:
            store = self._policy_reader.get_store(actor.organization_id, store_id)
            variant_key = self._resolve_key(actor, product_id, variant_id)
            base_qty = self._units.to_base_quantity(product_id, pack_id, qty_delta)
            return self._record_movement(
                actor,
                store,
                product_id,
                variant_key,
                MovementType.ADJUSTMENT,
                base_qty,
                request_id=idempotency_key,
                audit_action=AuditAction.STOCK_ADJUSTED,
                expiry_date=expiry_date,
                note=note or reason,
                audit_payload={"reason": reason},
            )

        with LogContext.bind(
            request_id=idempotency_key,
            idempotency_key=idempotency_key,
            store_id=store_id,
            **actor.log_fields(),
        ):
            with self._transaction():
                outcome = self._guard.run(
                    scope=IdempotencyScope.INVENTORY_ADJUST,
                    key=idempotency_key,
                    actor=actor,
                    request=request,
                    operation=operation,
                    result_type=StockChangeResult,
                )
            logger.info(
                "stock_adjusted",
                extra={"replayed": outcome.replayed, "on_hand": outcome.result.on_hand},
            )
            return outcome.result

    # =========================================================================
    # Receive
    # =========================================================================

    def receive_stock(
        self,
        actor: ActorContext,
        *,
        store_id: UUID,
        product_id: UUID,
        qty_received: int,
        idempotency_key: str,
        variant_id: UUID | None = None,
        pack_id: UUID | None = None,
        unit_cost: Decimal | None = None,
        expiry_date: date | None = None,
        note: str | None = None,
    ) -> StockChangeResult:
        """
        Append one RECEIVE movement; update cost (when priced) and lots.

        Returns:
            StockChangeResult with the new on-hand and average cost.
        """
        actor.require_role(Role.MANAGER)
        require_id("store_id", store_id)
        require_id("product_id", product_id)
        actor.require_store(store_id)
        require_positive_int("qty_received", qty_received)
        unit_cost = CostAccumulator.validate_unit_cost(unit_cost)

        request = {
            "store_id": store_id,
            "product_id": product_id,
            "variant_id": variant_id,
            "pack_id": pack_id,
            "qty_received": qty_received,
            "unit_cost": unit_cost,
            "expiry_date": expiry_date,
            "note": note,
        }

        def operation() -> StockChangeResult:
            store = self._policy_reader.get_store(actor.organization_id, store_id)
            variant_key = self._resolve_key(actor, product_id, variant_id)
            base_qty = self._units.to_base_quantity(product_id, pack_id, qty_received)
            base_cost = per_base_unit_cost(unit_cost, qty_received, base_qty)
            return self._record_movement(
                actor,
                store,
                product_id,
                variant_key,
                MovementType.RECEIVE,
                base_qty,
                request_id=idempotency_key,
                audit_action=AuditAction.STOCK_RECEIVED,
                unit_cost=base_cost,
                expiry_date=expiry_date,
                note=note,
            )

        with LogContext.bind(
            request_id=idempotency_key,
            idempotency_key=idempotency_key,
            store_id=store_id,
            **actor.log_fields(),
        ):
            with self._transaction():
                outcome = self._guard.run(
                    scope=IdempotencyScope.INVENTORY_RECEIVE,
                    key=idempotency_key,
                    actor=actor,
                    request=request,
                    operation=operation,
                    result_type=StockChangeResult,
                )
            logger.info(
                "stock_received",
                extra={"replayed": outcome.replayed, "on_hand": outcome.result.on_hand},
            )
            return outcome.result

    # =========================================================================
    # Transfer
    # =========================================================================

    def transfer_stock(
        self,
        actor: ActorContext,
        *,
        from_store_id: UUID,
        to_store_id: UUID,
        product_id: UUID,
        qty: int,
        idempotency_key: str,
        variant_id: UUID | None = None,
        pack_id: UUID | None = None,
        expiry_date: date | None = None,
        note: str | None = None,
    ) -> TransferResult:
        """
        Move ``qty`` between two stores of the actor's organization.

        Postconditions:
            - Exactly one TRANSFER_OUT and one TRANSFER_IN with equal and
              opposite deltas and the same reference_id, or nothing at all.
        """
        actor.require_role(Role.MANAGER)
        require_id("from_store_id", from_store_id)
        require_id("to_store_id", to_store_id)
        require_id("product_id", product_id)
        actor.require_store(from_store_id)
        actor.require_store(to_store_id)
        if from_store_id == to_store_id:
            raise SameStoreTransferError(str(from_store_id))
        require_positive_int("qty", qty)

        request = {
            "from_store_id": from_store_id,
            "to_store_id": to_store_id,
            "product_id": product_id,
            "variant_id": variant_id,
            "pack_id": pack_id,
            "qty": qty,
            "expiry_date": expiry_date,
            "note": note,
        }

        def operation() -> TransferResult:
            source = self._policy_reader.get_store(actor.organization_id, from_store_id)
            destination = self._policy_reader.get_store(actor.organization_id, to_store_id)
            variant_key = self._resolve_key(actor, product_id, variant_id)
            base_qty = self._units.to_base_quantity(product_id, pack_id, qty)
            transfer_id = uuid4()

            for store in sorted((source, destination), key=lambda s: str(s.store_id)):
                self._ledger.lock_snapshot(store, product_id, variant_key)

            outgoing = self._record_movement(
                actor,
                source,
                product_id,
                variant_key,
                MovementType.TRANSFER_OUT,
                -base_qty,
                request_id=idempotency_key,
                audit_action=AuditAction.STOCK_TRANSFERRED_OUT,
                expiry_date=expiry_date,
                note=note,
                reference_type=ReferenceType.TRANSFER,
                reference_id=transfer_id,
                audit_payload={"to_store_id": to_store_id},
            )
            incoming = self._record_movement(
                actor,
                destination,
                product_id,
                variant_key,
                MovementType.TRANSFER_IN,
                base_qty,
                request_id=idempotency_key,
                audit_action=AuditAction.STOCK_TRANSFERRED_IN,
                expiry_date=expiry_date,
                note=note,
                reference_type=ReferenceType.TRANSFER,
                reference_id=transfer_id,
                # A source without lots hands over no lot changes; the
                # destination then files the quantity under expiry_date.
                incoming_lots=outgoing.lot_changes,
                audit_payload={"from_store_id": from_store_id},
            )
            return TransferResult(transfer_id=transfer_id, source=outgoing, destination=incoming)

        with LogContext.bind(
            request_id=idempotency_key,
            idempotency_key=idempotency_key,
            store_id=from_store_id,
            **actor.log_fields(),
        ):
            with self._transaction():
                outcome = self._guard.run(
                    scope=IdempotencyScope.INVENTORY_TRANSFER,
                    key=idempotency_key,
                    actor=actor,
                    request=request,
                    operation=operation,
                    result_type=TransferResult,
                )
            logger.info(
                "stock_transferred",
                extra={
                    "replayed": outcome.replayed,
                    "transfer_id": str(outcome.result.transfer_id),
                    "to_store_id": str(to_store_id),
                },
            )
            return outcome.result

    # =========================================================================
    # Snapshots
    # =========================================================================

    def recompute_inventory_snapshots(
        self,
        actor: ActorContext,
        *,
        store_id: UUID,
    ) -> RecomputeResult:
        """Rebuild the store's snapshots from the ledger (ADMIN only)."""
        actor.require_role(Role.ADMIN)
        require_id("store_id", store_id)
        actor.require_store(store_id)

        with LogContext.bind(store_id=store_id, **actor.log_fields()):
            with self._transaction():
                store = self._policy_reader.get_store(actor.organization_id, store_id)
                return self._projector.recompute(store, actor)

    def ensure_snapshots_for_product(
        self,
        actor: ActorContext,
        *,
        product_id: UUID,
        variant_id: UUID | None = None,
    ) -> int:
        """Seed zero snapshots in every store; called when a product is created or imported."""
        actor.require_role(Role.MANAGER)
        require_id("product_id", product_id)

        with LogContext.bind(**actor.log_fields()):
            with self._transaction():
                variant_key = self._resolve_key(actor, product_id, variant_id)
                return self._projector.ensure_snapshots_for_product(
                    actor.organization_id, product_id, variant_key
                )

    def set_min_stock(
        self,
        actor: ActorContext,
        *,
        store_id: UUID,
        product_id: UUID,
        min_stock: int,
        variant_id: UUID | None = None,
    ) -> InventorySnapshot:
        """Set the low-stock threshold for one key (0 disables the alert)."""
        actor.require_role(Role.MANAGER)
        require_id("store_id", store_id)
        require_id("product_id", product_id)
        actor.require_store(store_id)
        if isinstance(min_stock, bool) or not isinstance(min_stock, int) or min_stock < 0:
            raise InvalidQuantityError("min_stock", min_stock, "must be a non-negative integer")

        with LogContext.bind(store_id=store_id, **actor.log_fields()):
            with self._transaction():
                store = self._policy_reader.get_store(actor.organization_id, store_id)
                variant_key = self._resolve_key(actor, product_id, variant_id)
                snapshot = self._ledger.lock_snapshot(store, product_id, variant_key)
                snapshot.min_stock = min_stock
                self._session.flush()
            return snapshot

    # =========================================================================
    # In-transaction paths for the purchasing module
    # =========================================================================

    def apply_receipt(
        self,
        actor: ActorContext,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
        qty: int,
        unit_cost: Decimal | None,
        expiry_date: date | None,
        note: str | None,
        reference_type: ReferenceType | None,
        reference_id: UUID | None,
        request_id: str,
    ) -> StockChangeResult:
        """
        RECEIVE inside the caller's transaction.

        Preconditions:
            - The caller has checked roles and tenancy, holds the
              transaction, and runs its own idempotency guard.
        """
        require_positive_int("qty", qty)
        return self._record_movement(
            actor,
            store,
            product_id,
            variant_key,
            MovementType.RECEIVE,
            qty,
            request_id=request_id,
            audit_action=AuditAction.STOCK_RECEIVED,
            unit_cost=CostAccumulator.validate_unit_cost(unit_cost),
            expiry_date=expiry_date,
            note=note,
            reference_type=reference_type,
            reference_id=reference_id,
        )

    def apply_compensation(
        self,
        actor: ActorContext,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
        qty_delta: int,
        note: str | None,
        reference_type: ReferenceType | None,
        reference_id: UUID | None,
        request_id: str,
        received_lots: Sequence[tuple[date, int]] = (),
    ) -> StockChangeResult:
        """
        Compensating ADJUSTMENT inside the caller's transaction.

        ``received_lots`` are the (expiry_date, qty) lots the reversed receipt
        filled; they give the quantity back first, and the other lots are
        only trimmed down to the new on-hand.  Subject to the negative-stock
        gate like any other movement.
        """
        return self._record_movement(
            actor,
            store,
            product_id,
            variant_key,
            MovementType.ADJUSTMENT,
            qty_delta,
            request_id=request_id,
            audit_action=AuditAction.STOCK_COMPENSATED,
            note=note,
            reference_type=reference_type,
            reference_id=reference_id,
            received_lots=received_lots,
            audit_payload={"compensation": True},
        )

    def apply_count_adjustment(
        self,
        actor: ActorContext,
        store: StorePolicy,
        product_id: UUID,
        variant_key: str,
        qty_delta: int,
        note: str,
        reference_id: UUID,
        request_id: str,
        audit_payload: dict | None = None,
    ) -> StockChangeResult:
        """
        ADJUSTMENT that brings a counted key to its counted quantity.

        Runs inside the caller's transaction like ``apply_receipt``; the
        movement references the stock count and is subject to the
        negative-stock gate.
        """
        return self._record_movement(
            actor,
            store,
            product_id,
            variant_key,
            MovementType.ADJUSTMENT,
            qty_delta,
            request_id=request_id,
            audit_action=AuditAction.STOCK_COUNTED,
            note=note,
            reference_type=ReferenceType.STOCK_COUNT,
            reference_id=reference_id,
            audit_payload=audit_payload,
        )
