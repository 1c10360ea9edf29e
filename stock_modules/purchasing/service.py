"""
Purchasing Module Service (``stock_modules.purchasing.service``).

Responsibility
--------------
Drives purchase orders through their lifecycle -- draft editing, submit,
approve, receive, cancel, rollback -- and creates draft orders from reorder
suggestions.  Receipts and compensations go through the inventory module so
that every stock change takes the same ledger path.

Architecture position
---------------------
**Modules layer**.  Composes ``InventoryService`` (constructed with
``auto_commit=False`` so receipts share this service's transaction), the
kernel ``LedgerWriter`` for ``on_order`` and the pure transition table in
``stock_kernel.domain.po_lifecycle``.

Invariants enforced
-------------------
* Status changes only through ``assert_transition`` / ``assert_compensation``.
* ``on_order`` for a key equals the unreceived quantity over its open
  orders: submit adds, receive and cancel release, rollback releases.
* Lines are editable only while DRAFT.
* A receive validates every requested line before mutating anything.
* Rollback never deletes movements; it appends compensating ADJUSTMENTs.

Failure modes
-------------
* ``InvalidTransitionError`` -- disallowed status move (conflict).
* ``PurchaseOrderNotEditableError`` -- line edit outside DRAFT.
* ``OverReceiveError`` -- receipt beyond the remaining quantity.
* ``PurchaseOrderNotFoundError`` -- unknown or foreign purchase order.
* ``InsufficientStockError`` -- rollback compensation would take a store
  without negative stock below zero; nothing is written.

Audit relevance
---------------
Every transition writes one ``PurchaseOrder`` audit event with the before
and after status; every receipt line additionally writes the stock event
through the inventory module.
"""

from __future__ import annotations

from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, Sequence
from uuid import UUID

from sqlalchemy import select
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
from stock_kernel.domain.dtos import LotChange, StockChangeResult
from stock_kernel.domain.po_lifecycle import (
    OPEN_STATUSES,
    RECEIVABLE_STATUSES,
    PurchaseOrderStatus,
    assert_compensation,
    assert_transition,
    derive_receipt_status,
)
from stock_kernel.domain.values import IdempotencyScope, ReferenceType, Role
from stock_kernel.exceptions import (
    DuplicateLineError,
    EmptyPurchaseOrderError,
    EmptyReceiveRequestError,
    InvalidQuantityError,
    InvalidTransitionError,
    MissingSupplierError,
    OverReceiveError,
    PurchaseOrderLineNotFoundError,
    PurchaseOrderNotEditableError,
    PurchaseOrderNotFoundError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.audit_event import AuditAction
from stock_kernel.models.purchase_order import (
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderLineLot,
)
from stock_kernel.services.cost_accumulator import CostAccumulator
from stock_modules.inventory.service import (
    InventoryService,
    require_id,
    require_positive_int,
)
from stock_modules.purchasing.models import (
    PurchaseOrderLineInput,
    PurchaseOrderLineView,
    PurchaseOrderReceiveResult,
    PurchaseOrderView,
    ReceiveLineInput,
    ReorderDraftItem,
    ReorderDraftResult,
    RollbackResult,
)

logger = get_logger("modules.purchasing.service")


def _line_sort_key(line: PurchaseOrderLine) -> tuple[str, str]:
    # Snapshot locks are always taken in this order.
    return (str(line.product_id), line.variant_key)


class PurchaseOrderService:
    """
    Purchase order lifecycle over the stock ledger.

    Contract
    --------
    Mutating methods require MANAGER (rollback requires ADMIN) and return
    ``PurchaseOrderView`` or a result DTO.  ``receive`` and
    ``create_drafts_from_reorder`` are idempotent on their key.

    Guarantees
    ----------
    * The order row is locked ``FOR UPDATE`` before any transition.
    * Status, lines, ``on_order``, movements and audit events commit together.

    Non-goals
    ---------
    * Does NOT invoice or pay suppliers.
    * Does NOT expose ORM rows; views are frozen snapshots.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: StockConfig | None = None,
        policy_reader: StorePolicyReader | None = None,
        unit_resolver: UnitResolver | None = None,
        catalog: CatalogReader | None = None,
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
        self._ledger = self._inventory.ledger
        self._costs = self._inventory.costs
        self._auditor = self._inventory.auditor
        self._guard = self._inventory.guard
        self._stores = self._inventory.policy_reader
        self._units = self._inventory.unit_resolver
        self._catalog = self._inventory.catalog

    @contextmanager
    def _bound(self, actor: ActorContext, **fields: object) -> Iterator[None]:
        with LogContext.bind(**actor.log_fields(), **fields):
            with unit_of_work(self._session):
                yield

    # =========================================================================
    # Loading
    # =========================================================================

    def _lock_po(self, actor: ActorContext, purchase_order_id: UUID) -> PurchaseOrder:
        order = self._session.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.id == purchase_order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None or order.organization_id != actor.organization_id:
            raise PurchaseOrderNotFoundError(str(purchase_order_id))
        actor.require_store(order.store_id)
        return order

    def _store_for(self, order: PurchaseOrder) -> StorePolicy:
        return self._stores.get_store(order.organization_id, order.store_id)

    @staticmethod
    def _find_line(order: PurchaseOrder, line_id: UUID) -> PurchaseOrderLine:
        for line in order.lines:
            if line.id == line_id:
                return line
        raise PurchaseOrderLineNotFoundError(str(line_id))

    @staticmethod
    def _record_line_lots(line: PurchaseOrderLine, lot_changes: Sequence[LotChange]) -> None:
        by_expiry = {lot.expiry_date: lot for lot in line.lots}
        for change in lot_changes:
            lot = by_expiry.get(change.expiry_date)
            if lot is None:
                lot = PurchaseOrderLineLot(expiry_date=change.expiry_date, qty_received=0)
                line.lots.append(lot)
                by_expiry[change.expiry_date] = lot
            lot.qty_received += change.qty_delta

    @staticmethod
    def _require_draft(order: PurchaseOrder) -> None:
        if order.status != PurchaseOrderStatus.DRAFT.value:
            raise PurchaseOrderNotEditableError(str(order.id), order.status)

    def _touch(self, order: PurchaseOrder, actor: ActorContext) -> None:
        order.updated_at = self._clock.now()
        order.updated_by_id = actor.actor_id

    def _record_transition(
        self,
        actor: ActorContext,
        order: PurchaseOrder,
        action: AuditAction,
        from_status: str | None,
        extra_payload: dict | None = None,
    ) -> None:
        self._auditor.record_purchase_order_transition(
            organization_id=order.organization_id,
            purchase_order_id=order.id,
            action=action,
            actor_id=actor.actor_id,
            from_status=from_status,
            to_status=order.status,
            extra_payload=extra_payload,
        )
        logger.info(
            "purchase_order_transition",
            extra={
                "purchase_order_id": str(order.id),
                "action": action.value,
                "from_status": from_status,
                "to_status": order.status,
            },
        )

    # =========================================================================
    # Line building
    # =========================================================================

    def _build_line(
        self,
        actor: ActorContext,
        line_input: PurchaseOrderLineInput,
        position: int,
    ) -> PurchaseOrderLine:
        require_id("product_id", line_input.product_id)
        require_positive_int("qty_ordered", line_input.qty_ordered)
        unit_cost = CostAccumulator.validate_unit_cost(line_input.unit_cost)

        self._catalog.get_product(actor.organization_id, line_input.product_id)
        variant_key = self._catalog.resolve_variant_key(
            actor.organization_id, line_input.product_id, line_input.variant_id
        )
        base_qty = self._units.to_base_quantity(
            line_input.product_id, line_input.pack_id, line_input.qty_ordered
        )
        unit_cost = per_base_unit_cost(unit_cost, line_input.qty_ordered, base_qty)

        return PurchaseOrderLine(
            position=position,
            product_id=line_input.product_id,
            variant_id=line_input.variant_id,
            variant_key=variant_key,
            qty_ordered=base_qty,
            qty_received=0,
            unit_cost=unit_cost,
        )

    @staticmethod
    def _attach_line(order: PurchaseOrder, line: PurchaseOrderLine) -> None:
        for existing in order.lines:
            if existing.product_id == line.product_id and existing.variant_key == line.variant_key:
                raise DuplicateLineError(str(line.product_id), line.variant_key)
        order.lines.append(line)

    def _new_order(
        self,
        actor: ActorContext,
        store: StorePolicy,
        supplier_id: UUID,
        note: str | None,
    ) -> PurchaseOrder:
        now = self._clock.now()
        order = PurchaseOrder(
            organization_id=store.organization_id,
            store_id=store.store_id,
            supplier_id=supplier_id,
            status=PurchaseOrderStatus.DRAFT.value,
            note=note,
            created_at=now,
            updated_at=now,
            created_by_id=actor.actor_id,
        )
        self._session.add(order)
        return order

    # =========================================================================
    # Create and edit
    # =========================================================================

    def create_purchase_order(
        self,
        actor: ActorContext,
        *,
        store_id: UUID,
        supplier_id: UUID,
        lines: Sequence[PurchaseOrderLineInput] = (),
        submit: bool = False,
        note: str | None = None,
    ) -> PurchaseOrderView:
        """
        Create a DRAFT order; with ``submit=True`` also submit it.

        Raises:
            DuplicateLineError: two lines for the same product and variant.
            SupplierNotFoundError: unknown or foreign supplier.
        """
        actor.require_role(Role.MANAGER)
        require_id("store_id", store_id)
        require_id("supplier_id", supplier_id)
        actor.require_store(store_id)

        with self._bound(actor, store_id=store_id):
            store = self._stores.get_store(actor.organization_id, store_id)
            self._catalog.require_supplier(actor.organization_id, supplier_id)

            order = self._new_order(actor, store, supplier_id, note)
            for position, line_input in enumerate(lines):
                self._attach_line(order, self._build_line(actor, line_input, position))
            self._session.flush()
            if submit:
                # Snapshot locks precede the audit counter taken by the CREATED event.
                self._ledger.lock_snapshots(
                    store, [(line.product_id, line.variant_key) for line in order.lines]
                )
            self._record_transition(
                actor,
                order,
                AuditAction.PURCHASE_ORDER_CREATED,
                None,
                {"supplier_id": supplier_id, "line_count": len(order.lines)},
            )
            if submit:
                self._submit_locked(actor, order)
            return PurchaseOrderView.from_model(order)

    def add_line(
        self,
        actor: ActorContext,
        *,
        purchase_order_id: UUID,
        line: PurchaseOrderLineInput,
    ) -> PurchaseOrderView:
        actor.require_role(Role.MANAGER)
        require_id("purchase_order_id", purchase_order_id)

        with self._bound(actor):
            order = self._lock_po(actor, purchase_order_id)
            self._require_draft(order)
            new_line = self._build_line(actor, line, len(order.lines))
            self._attach_line(order, new_line)
            self._touch(order, actor)
            self._session.flush()
            self._record_transition(
                actor,
                order,
                AuditAction.PURCHASE_ORDER_LINES_EDITED,
                order.status,
                {"operation": "add_line", "line_id": new_line.id, "qty_ordered": new_line.qty_ordered},
            )
            return PurchaseOrderView.from_model(order)

    def update_line(
        self,
        actor: ActorContext,
        *,
        purchase_order_id: UUID,
        line_id: UUID,
        qty_ordered: int | None = None,
        unit_cost: Decimal | None = None,
    ) -> PurchaseOrderView:
        """Change quantity and/or unit cost of a DRAFT line (base units)."""
        actor.require_role(Role.MANAGER)
        require_id("purchase_order_id", purchase_order_id)
        require_id("line_id", line_id)
        if qty_ordered is not None:
            require_positive_int("qty_ordered", qty_ordered)
        unit_cost = CostAccumulator.validate_unit_cost(unit_cost)

        with self._bound(actor):
            order = self._lock_po(actor, purchase_order_id)
            self._require_draft(order)
            line = self._find_line(order, line_id)
            before = {"qty_ordered": line.qty_ordered, "unit_cost": line.unit_cost}
            if qty_ordered is not None:
                line.qty_ordered = qty_ordered
            if unit_cost is not None:
                line.unit_cost = unit_cost
            self._touch(order, actor)
            self._session.flush()
            self._record_transition(
                actor,
                order,
                AuditAction.PURCHASE_ORDER_LINES_EDITED,
                order.status,
                {
                    "operation": "update_line",
                    "line_id": line_id,
                    "line_before": before,
                    "line_after": {"qty_ordered": line.qty_ordered, "unit_cost": line.unit_cost},
                },
            )
            return PurchaseOrderView.from_model(order)

    def remove_line(
        self,
        actor: ActorContext,
        *,
        purchase_order_id: UUID,
        line_id: UUID,
    ) -> PurchaseOrderView:
        actor.require_role(Role.MANAGER)
        require_id("purchase_order_id", purchase_order_id)
        require_id("line_id", line_id)

        with self._bound(actor):
            order = self._lock_po(actor, purchase_order_id)
            self._require_draft(order)
            line = self._find_line(order, line_id)
            order.lines.remove(line)
            self._touch(order, actor)
            self._session.flush()
            self._record_transition(
                actor,
                order,
                AuditAction.PURCHASE_ORDER_LINES_EDITED,
                order.status,
                {"operation": "remove_line", "line_id": line_id},
            )
            return PurchaseOrderView.from_model(order)

    # =========================================================================
    # Submit / approve / cancel
    # =========================================================================

    def _submit_locked(self, actor: ActorContext, order: PurchaseOrder) -> None:
        previous = order.status
        assert_transition(order.id, previous, PurchaseOrderStatus.SUBMITTED)
        if not order.lines:
            raise EmptyPurchaseOrderError(str(order.id))

        store = self._store_for(order)
        for line in sorted(order.lines, key=_line_sort_key):
            self._ledger.adjust_on_order(store, line.product_id, line.variant_key, line.qty_ordered)

        order.status = PurchaseOrderStatus.SUBMITTED.value
        order.submitted_at = self._clock.now()
        self._touch(order, actor)
        self._session.flush()
        self._record_transition(
            actor,
            order,
            AuditAction.PURCHASE_ORDER_SUBMITTED,
            previous,
            {"on_order_added": sum(line.qty_ordered for line in order.lines)},
        )

    def submit(self, actor: ActorContext, *, purchase_order_id: UUID) -> PurchaseOrderView:
        """DRAFT -> SUBMITTED; each line's quantity goes on order."""
        actor.require_role(Role.MANAGER)
        require_id("purchase_order_id", purchase_order_id)

        with self._bound(actor):
            order = self._lock_po(actor, purchase_order_id)
            self._submit_locked(actor, order)
            return PurchaseOrderView.from_model(order)

    def approve(self, actor: ActorContext, *, purchase_order_id: UUID) -> PurchaseOrderView:
        """SUBMITTED -> APPROVED."""
        actor.require_role(Role.MANAGER)
        require_id("purchase_order_id", purchase_order_id)

        with self._bound(actor):
            order = self._lock_po(actor, purchase_order_id)
            previous = order.status
            assert_transition(order.id, previous, PurchaseOrderStatus.APPROVED)
            order.status = PurchaseOrderStatus.APPROVED.value
            order.approved_at = self._clock.now()
            self._touch(order, actor)
            self._session.flush()
            self._record_transition(actor, order, AuditAction.PURCHASE_ORDER_APPROVED, previous)
            return PurchaseOrderView.from_model(order)

    def _release_on_order(self, order: PurchaseOrder) -> int:
        store = self._store_for(order)
        released = 0
        for line in sorted(order.lines, key=_line_sort_key):
            if line.remaining:
                self._ledger.adjust_on_order(
                    store, line.product_id, line.variant_key, -line.remaining
                )
                released += line.remaining
        return released

    def cancel(self, actor: ActorContext, *, purchase_order_id: UUID) -> PurchaseOrderView:
        """
        DRAFT | SUBMITTED -> CANCELLED.

        Approved or received orders are cancelled through
        ``rollback_purchase_order`` instead.
        """
        actor.require_role(Role.MANAGER)
        require_id("purchase_order_id", purchase_order_id)

        with self._bound(actor):
            order = self._lock_po(actor, purchase_order_id)
            previous = order.status
            assert_transition(order.id, previous, PurchaseOrderStatus.CANCELLED)
            released = 0
            if previous == PurchaseOrderStatus.SUBMITTED.value:
                released = self._release_on_order(order)
            order.status = PurchaseOrderStatus.CANCELLED.value
            order.cancelled_at = self._clock.now()
            self._touch(order, actor)
            self._session.flush()
            self._record_transition(
                actor,
                order,
                AuditAction.PURCHASE_ORDER_CANCELLED,
                previous,
                {"released_on_order": released},
            )
            return PurchaseOrderView.from_model(order)

    # =========================================================================
    # Receive
    # =========================================================================

    def _plan_receipt(
        self,
        order: PurchaseOrder,
        lines: Sequence[ReceiveLineInput] | None,
        allow_over_receive: bool,
    ) -> list[tuple[PurchaseOrderLine, int, ReceiveLineInput | None]]:
        if lines is None:
            plan = [(line, line.remaining, None) for line in order.lines if line.remaining > 0]
        else:
            plan = []
            for request in lines:
                require_id("line_id", request.line_id)
                line = self._find_line(order, request.line_id)
                require_positive_int("qty_received", request.qty_received)
                base_qty = self._units.to_base_quantity(
                    line.product_id, request.pack_id, request.qty_received
                )
                plan.append((line, base_qty, request))
        if not plan:
            raise EmptyReceiveRequestError(str(order.id))

        if not allow_over_receive:
            requested: dict[UUID, int] = {}
            for line, qty, _ in plan:
                requested[line.id] = requested.get(line.id, 0) + qty
                if requested[line.id] > line.remaining:
                    raise OverReceiveError(str(line.id), line.remaining, requested[line.id])

        return sorted(plan, key=lambda item: _line_sort_key(item[0]))

    def receive(
        self,
        actor: ActorContext,
        *,
        purchase_order_id: UUID,
        idempotency_key: str,
        lines: Sequence[ReceiveLineInput] | None = None,
        allow_over_receive: bool = False,
    ) -> PurchaseOrderReceiveResult:
        """
        Receive stock against an APPROVED or PARTIALLY_RECEIVED order.

        ``lines=None`` receives every remaining quantity.  Each received
        line appends one RECEIVE movement referencing the order and releases
        up to its remaining quantity from ``on_order``.
        """
        actor.require_role(Role.MANAGER)
        require_id("purchase_order_id", purchase_order_id)

        request = {
            "purchase_order_id": purchase_order_id,
            "lines": None if lines is None else [line.to_payload() for line in lines],
            "allow_over_receive": allow_over_receive,
        }

        def operation() -> PurchaseOrderReceiveResult:
            order = self._lock_po(actor, purchase_order_id)
            previous = order.status
            if PurchaseOrderStatus(previous) not in RECEIVABLE_STATUSES:
                raise InvalidTransitionError(
                    purchase_order_id=str(order.id),
                    from_status=previous,
                    to_status=PurchaseOrderStatus.RECEIVED.value,
                )
            plan = self._plan_receipt(order, lines, allow_over_receive)
            store = self._store_for(order)

            # Every snapshot, then every cost row, before the first audit write.
            self._ledger.lock_snapshots(
                store, [(line.product_id, line.variant_key) for line, _, _ in plan]
            )
            priced = {
                (line.product_id, line.variant_key) for line, _, _ in plan if line.unit_cost is not None
            }
            for product_id, variant_key in sorted(priced, key=lambda k: (str(k[0]), k[1])):
                self._costs.lock_cost(order.organization_id, product_id, variant_key)

            movements: list[StockChangeResult] = []
            for line, qty, receive_line in plan:
                release = min(qty, line.remaining)
                if release:
                    self._ledger.adjust_on_order(store, line.product_id, line.variant_key, -release)
                movement = self._inventory.apply_receipt(
                    actor,
                    store,
                    line.product_id,
                    line.variant_key,
                    qty,
                    line.unit_cost,
                    receive_line.expiry_date if receive_line else None,
                    None,
                    ReferenceType.PURCHASE_ORDER,
                    order.id,
                    idempotency_key,
                )
                self._record_line_lots(line, movement.lot_changes)
                movements.append(movement)
                line.qty_received += qty

            status = assert_transition(order.id, previous, derive_receipt_status(order.lines))
            now = self._clock.now()
            order.status = status.value
            if status is PurchaseOrderStatus.RECEIVED:
                order.received_at = now
            self._touch(order, actor)
            self._session.flush()
            self._record_transition(
                actor,
                order,
                AuditAction.PURCHASE_ORDER_RECEIVED,
                previous,
                {
                    "received": [
                        {"line_id": line.id, "qty": qty} for line, qty, _ in plan
                    ],
                },
            )
            return PurchaseOrderReceiveResult(
                purchase_order_id=order.id,
                status=status,
                lines=tuple(PurchaseOrderLineView.from_model(line) for line in order.lines),
                movements=tuple(movements),
            )

        with LogContext.bind(
            request_id=idempotency_key,
            idempotency_key=idempotency_key,
            **actor.log_fields(),
        ):
            with unit_of_work(self._session):
                outcome = self._guard.run(
                    scope=IdempotencyScope.PURCHASE_ORDER_RECEIVE,
                    key=idempotency_key,
                    actor=actor,
                    request=request,
                    operation=operation,
                    result_type=PurchaseOrderReceiveResult,
                )
            logger.info(
                "purchase_order_received",
                extra={
                    "purchase_order_id": str(purchase_order_id),
                    "replayed": outcome.replayed,
                    "status": outcome.result.status.value,
                },
            )
            return outcome.result

    # =========================================================================
    # Reorder drafts
    # =========================================================================

    def create_drafts_from_reorder(
        self,
        actor: ActorContext,
        *,
        store_id: UUID,
        items: Sequence[ReorderDraftItem],
        idempotency_key: str,
    ) -> ReorderDraftResult:
        """
        Create one DRAFT per supplier from reorder items.

        Suppliers keep the order in which they first appear; repeated items
        for the same product and variant are merged into one line.
        """
        actor.require_role(Role.MANAGER)
        require_id("store_id", store_id)
        actor.require_store(store_id)
        if not items:
            raise InvalidQuantityError("items", 0, "must not be empty")

        request = {
            "store_id": store_id,
            "items": [item.to_payload() for item in items],
        }

        def operation() -> ReorderDraftResult:
            store = self._stores.get_store(actor.organization_id, store_id)

            groups: dict[UUID, dict[tuple[UUID, str], dict]] = {}
            for item in items:
                require_id("product_id", item.product_id)
                require_positive_int("qty", item.qty)
                product = self._catalog.get_product(actor.organization_id, item.product_id)
                supplier_id = item.supplier_id or product.supplier_id
                if supplier_id is None:
                    raise MissingSupplierError(str(item.product_id))
                self._catalog.require_supplier(actor.organization_id, supplier_id)
                variant_key = self._catalog.resolve_variant_key(
                    actor.organization_id, item.product_id, item.variant_id
                )

                lines = groups.setdefault(supplier_id, {})
                merged = lines.get((item.product_id, variant_key))
                if merged is None:
                    lines[(item.product_id, variant_key)] = {
                        "product_id": item.product_id,
                        "variant_id": item.variant_id,
                        "qty": item.qty,
                        "unit_cost": CostAccumulator.validate_unit_cost(item.unit_cost),
                    }
                else:
                    merged["qty"] += item.qty
                    if merged["unit_cost"] is None:
                        merged["unit_cost"] = CostAccumulator.validate_unit_cost(item.unit_cost)

            orders = []
            for supplier_id, lines in groups.items():
                order = self._new_order(actor, store, supplier_id, "reorder")
                for position, ((product_id, variant_key), merged) in enumerate(lines.items()):
                    order.lines.append(
                        PurchaseOrderLine(
                            position=position,
                            product_id=product_id,
                            variant_id=merged["variant_id"],
                            variant_key=variant_key,
                            qty_ordered=merged["qty"],
                            qty_received=0,
                            unit_cost=merged["unit_cost"],
                        )
                    )
                self._session.flush()
                self._record_transition(
                    actor,
                    order,
                    AuditAction.PURCHASE_ORDER_CREATED,
                    None,
                    {"supplier_id": supplier_id, "line_count": len(order.lines), "source": "reorder"},
                )
                orders.append(PurchaseOrderView.from_model(order))
            return ReorderDraftResult(purchase_orders=tuple(orders))

        with LogContext.bind(
            request_id=idempotency_key,
            idempotency_key=idempotency_key,
            store_id=store_id,
            **actor.log_fields(),
        ):
            with unit_of_work(self._session):
                outcome = self._guard.run(
                    scope=IdempotencyScope.PURCHASE_ORDER_CREATE_FROM_REORDER,
                    key=idempotency_key,
                    actor=actor,
                    request=request,
                    operation=operation,
                    result_type=ReorderDraftResult,
                )
            logger.info(
                "reorder_drafts_created",
                extra={
                    "replayed": outcome.replayed,
                    "order_count": len(outcome.result.purchase_orders),
                },
            )
            return outcome.result

    # =========================================================================
    # Rollback
    # =========================================================================

    def rollback_purchase_order(
        self,
        actor: ActorContext,
        *,
        purchase_order_id: UUID,
        reason: str,
    ) -> RollbackResult:
        """
        Reverse an approved or received order (ADMIN only).

        Writes one compensating ADJUSTMENT of ``-qty_received`` per received
        line, taking the quantity back out of the expiry lots the receipts
        filled, releases whatever is still on order and moves the order to
        CANCELLED.  The original movements stay in the ledger.
        """
        actor.require_role(Role.ADMIN)
        require_id("purchase_order_id", purchase_order_id)

        with self._bound(actor):
            order = self._lock_po(actor, purchase_order_id)
            previous = order.status
            status = assert_compensation(order.id, previous)
            store = self._store_for(order)
            self._ledger.lock_snapshots(
                store, [(line.product_id, line.variant_key) for line in order.lines]
            )

            movements: list[StockChangeResult] = []
            for line in sorted(order.lines, key=_line_sort_key):
                if line.qty_received <= 0:
                    continue
                movements.append(
                    self._inventory.apply_compensation(
                        actor,
                        store,
                        line.product_id,
                        line.variant_key,
                        -line.qty_received,
                        reason,
                        ReferenceType.PURCHASE_ORDER_ROLLBACK,
                        order.id,
                        f"po-rollback:{order.id}",
                        received_lots=[(lot.expiry_date, lot.qty_received) for lot in line.lots],
                    )
                )

            released = 0
            if PurchaseOrderStatus(previous) in OPEN_STATUSES:
                released = self._release_on_order(order)

            order.status = status.value
            order.cancelled_at = self._clock.now()
            self._touch(order, actor)
            self._session.flush()
            self._auditor.record_purchase_order_rollback(
                organization_id=order.organization_id,
                purchase_order_id=order.id,
                actor_id=actor.actor_id,
                from_status=previous,
                reason=reason,
                compensating_movement_ids=[m.movement_id for m in movements],
                released_on_order=released,
            )
            logger.warning(
                "purchase_order_rolled_back",
                extra={
                    "purchase_order_id": str(order.id),
                    "from_status": previous,
                    "compensating_count": len(movements),
                    "released_on_order": released,
                },
            )
            return RollbackResult(
                purchase_order_id=order.id,
                previous_status=PurchaseOrderStatus(previous),
                status=status,
                movements=tuple(movements),
                released_on_order=released,
            )

    # =========================================================================
    # Read
    # =========================================================================

    def get_purchase_order(
        self,
        actor: ActorContext,
        *,
        purchase_order_id: UUID,
    ) -> PurchaseOrderView:
        actor.require_role(Role.STAFF)
        require_id("purchase_order_id", purchase_order_id)
        order = self._session.get(PurchaseOrder, purchase_order_id)
        if order is None or order.organization_id != actor.organization_id:
            raise PurchaseOrderNotFoundError(str(purchase_order_id))
        actor.require_store(order.store_id)
        return PurchaseOrderView.from_model(order)
