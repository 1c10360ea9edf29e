"""
Stock Reporting Service (``stock_modules.reporting.service``).

Responsibility
--------------
Builds the store-level stock reports -- stockouts, slow movers, shrinkage
and reorder suggestions -- from ``MovementSelector`` reads and the pure
replenishment math in ``stock_kernel.domain.replenishment``.

Architecture position
---------------------
**Modules layer** -- read-only.  No movements, snapshots or audit events
are written.  Constructor: ``session`` + ``clock`` + ``config``.

Invariants enforced
-------------------
* Read-only.
* Balances used for replay come from the ledger, never from snapshots.
* Time windows are half-open ``[start, end)`` and filtered in SQL.

Failure modes
-------------
* ``ValueError`` -- ``end`` not after ``start``; raised before any query.
* ``StockForbiddenError`` / ``StoreNotFoundError`` -- as for every module.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_config.schema import ReplenishmentConfig, StockConfig
from stock_kernel.domain.actor import ActorContext
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.collaborators import CatalogReader, StorePolicy, StorePolicyReader
from stock_kernel.domain.replenishment import ReorderParameters, compute_reorder, percentile
from stock_kernel.domain.values import MovementType, Role
from stock_kernel.logging_config import get_logger
from stock_kernel.models.reorder_policy import ReorderPolicy
from stock_kernel.selectors.catalog_selector import OrmCatalogReader, OrmStorePolicyReader
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_modules.inventory.service import require_id
from stock_modules.reporting.models import (
    ReorderSuggestionRow,
    ShrinkageRow,
    SlowMoverRow,
    StockoutRow,
)

logger = get_logger("modules.reporting.service")


def _validate_window(start: datetime, end: datetime) -> None:
    if end <= start:
        raise ValueError(f"end ({end.isoformat()}) must be after start ({start.isoformat()})")


class ReportingService:
    """
    Read-only stock reports for one store.

    All reports require STAFF and the store to be within the actor's scope.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: StockConfig | None = None,
        policy_reader: StorePolicyReader | None = None,
        catalog: CatalogReader | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._replenishment = config.replenishment if config is not None else ReplenishmentConfig()
        self._stores = policy_reader or OrmStorePolicyReader(session)
        self._catalog = catalog or OrmCatalogReader(session)
        self._movements = MovementSelector(session)

    def _authorize(self, actor: ActorContext, store_id: UUID) -> StorePolicy:
        actor.require_role(Role.STAFF)
        require_id("store_id", store_id)
        actor.require_store(store_id)
        return self._stores.get_store(actor.organization_id, store_id)

    # =========================================================================
    # Stockouts
    # =========================================================================

    def stockouts(
        self,
        actor: ActorContext,
        *,
        store_id: UUID,
        start: datetime,
        end: datetime,
    ) -> list[StockoutRow]:
        """
        Count positive-to-empty crossings per key in ``[start, end)``.

        The replay starts from the ledger balance just before ``start``.
        """
        _validate_window(start, end)
        store = self._authorize(actor, store_id)

        opening = self._movements.net_movement(store.organization_id, store.store_id, None, start)
        current = {
            snapshot.key: snapshot.on_hand
            for snapshot in self._movements.list_snapshots(store.organization_id, store.store_id)
        }
        balance = dict(opening)
        counts: dict[tuple[UUID, str], int] = defaultdict(int)
        last_at: dict[tuple[UUID, str], datetime] = {}

        for movement in self._movements.list_movements(
            store.organization_id, store_id=store.store_id, start=start, end=end
        ):
            before = balance.get(movement.key, 0)
            after = before + movement.qty_delta
            balance[movement.key] = after
            if before > 0 and after <= 0:
                counts[movement.key] += 1
                last_at[movement.key] = movement.created_at

        rows = [
            StockoutRow(
                product_id=key[0],
                variant_key=key[1],
                stockout_count=count,
                last_stockout_at=last_at.get(key),
                on_hand=current.get(key, 0),
            )
            for key, count in counts.items()
        ]
        rows.sort(key=lambda row: (-row.stockout_count, str(row.product_id), row.variant_key))
        logger.info("report_generated", extra={"report": "stockouts", "row_count": len(rows)})
        return rows

    # =========================================================================
    # Slow movers
    # =========================================================================

    def slow_movers(
        self,
        actor: ActorContext,
        *,
        store_id: UUID,
        since: datetime,
    ) -> list[SlowMoverRow]:
        """Keys with stock on hand and no movement at or after ``since``."""
        store = self._authorize(actor, store_id)

        moved = {
            movement.key
            for movement in self._movements.list_movements(
                store.organization_id, store_id=store.store_id, start=since
            )
        }
        last_movement = self._movements.last_movement_at(store.organization_id, store.store_id)

        rows = [
            SlowMoverRow(
                product_id=snapshot.product_id,
                variant_key=snapshot.variant_key,
                on_hand=snapshot.on_hand,
                last_movement_at=last_movement.get(snapshot.key),
            )
            for snapshot in self._movements.list_snapshots(store.organization_id, store.store_id)
            if snapshot.on_hand > 0 and snapshot.key not in moved
        ]
        logger.info("report_generated", extra={"report": "slow_movers", "row_count": len(rows)})
        return rows

    # =========================================================================
    # Shrinkage
    # =========================================================================

    def shrinkage(
        self,
        actor: ActorContext,
        *,
        store_id: UUID,
        start: datetime,
        end: datetime,
    ) -> list[ShrinkageRow]:
        """Negative ADJUSTMENTs grouped by key and the user who recorded them."""
        _validate_window(start, end)
        store = self._authorize(actor, store_id)

        totals: dict[tuple[UUID, str, UUID], list[int]] = {}
        for movement in self._movements.list_movements(
            store.organization_id,
            store_id=store.store_id,
            start=start,
            end=end,
            movement_types=[MovementType.ADJUSTMENT],
        ):
            if movement.qty_delta >= 0:
                continue
            group = totals.setdefault(
                (movement.product_id, movement.variant_key, movement.created_by_id), [0, 0]
            )
            group[0] += abs(movement.qty_delta)
            group[1] += 1

        rows = [
            ShrinkageRow(
                product_id=product_id,
                variant_key=variant_key,
                created_by_id=created_by_id,
                total_qty=total,
                movement_count=count,
            )
            for (product_id, variant_key, created_by_id), (total, count) in totals.items()
        ]
        rows.sort(key=lambda row: (-row.total_qty, str(row.product_id), row.variant_key))
        logger.info("report_generated", extra={"report": "shrinkage", "row_count": len(rows)})
        return rows

    # =========================================================================
    # Reorder suggestions
    # =========================================================================

    def _parameters_by_product(self, store: StorePolicy) -> dict[UUID, ReorderParameters]:
        policies = self._session.execute(
            select(ReorderPolicy).where(
                ReorderPolicy.organization_id == store.organization_id,
                ReorderPolicy.store_id == store.store_id,
            )
        ).scalars()
        return {
            policy.product_id: ReorderParameters(
                lead_time_days=policy.lead_time_days,
                review_cycle_days=policy.review_cycle_days,
                safety_stock_days=policy.safety_stock_days,
                min_order_qty=policy.min_order_qty,
            )
            for policy in policies
        }

    def _default_parameters(self) -> ReorderParameters:
        return ReorderParameters(
            lead_time_days=self._replenishment.lead_time_days,
            review_cycle_days=self._replenishment.review_cycle_days,
            safety_stock_days=self._replenishment.safety_stock_days,
            min_order_qty=self._replenishment.min_order_qty,
        )

    def _daily_sales(
        self,
        store: StorePolicy,
        as_of: datetime,
    ) -> tuple[list[date], dict[tuple[UUID, str], dict[date, int]]]:
        window = self._replenishment.demand_window_days
        days = [as_of.date() - timedelta(days=offset) for offset in range(window - 1, -1, -1)]
        start = datetime.combine(days[0], time.min, tzinfo=as_of.tzinfo)

        sales: dict[tuple[UUID, str], dict[date, int]] = defaultdict(lambda: defaultdict(int))
        for movement in self._movements.list_movements(
            store.organization_id,
            store_id=store.store_id,
            start=start,
            end=as_of,
            movement_types=[MovementType.SALE],
        ):
            if movement.qty_delta < 0:
                sales[movement.key][movement.created_at.date()] += -movement.qty_delta
        return days, sales

    def reorder_suggestions(
        self,
        actor: ActorContext,
        *,
        store_id: UUID,
        as_of: datetime | None = None,
    ) -> list[ReorderSuggestionRow]:
        """
        Reorder point and suggested quantity for every snapshot of the store.

        Daily SALE outflow over the trailing demand window (days without
        sales count as zero) gives p50 and p90.  Rows with
        ``suggested_qty > 0`` feed ``create_drafts_from_reorder`` through
        ``ReorderSuggestionRow.to_draft_item``.
        """
        store = self._authorize(actor, store_id)
        as_of = as_of or self._clock.now()

        days, sales = self._daily_sales(store, as_of)
        overrides = self._parameters_by_product(store)
        defaults = self._default_parameters()
        snapshots = self._movements.list_snapshots(store.organization_id, store.store_id)
        suppliers = self._catalog.default_suppliers(
            store.organization_id, sorted({s.product_id for s in snapshots}, key=str)
        )

        rows = []
        for snapshot in snapshots:
            by_day = sales.get(snapshot.key, {})
            series = [float(by_day.get(day, 0)) for day in days]
            p50 = percentile(series, 0.5)
            p90 = percentile(series, 0.9)
            computation = compute_reorder(
                p50=p50,
                p90=p90,
                on_hand=snapshot.on_hand,
                on_order=snapshot.on_order,
                params=overrides.get(snapshot.product_id, defaults),
            )
            rows.append(
                ReorderSuggestionRow(
                    product_id=snapshot.product_id,
                    variant_key=snapshot.variant_key,
                    supplier_id=suppliers.get(snapshot.product_id),
                    on_hand=snapshot.on_hand,
                    on_order=snapshot.on_order,
                    p50_daily=p50,
                    p90_daily=p90,
                    demand_during_lead=computation.demand_during_lead,
                    safety_stock=computation.safety_stock,
                    reorder_point=computation.reorder_point,
                    target_level=computation.target_level,
                    suggested_qty=computation.suggested_qty,
                )
            )

        logger.info(
            "report_generated",
            extra={
                "report": "reorder_suggestions",
                "row_count": len(rows),
                "reorder_count": sum(1 for row in rows if row.needs_reorder),
            },
        )
        return rows
