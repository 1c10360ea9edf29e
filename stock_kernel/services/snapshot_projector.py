"""
SnapshotProjector -- rebuild cached positions from the ledger.

Responsibility:
    Recompute ``on_hand`` (ledger sum) and ``on_order`` (open purchase order
    lines) for every key of one store and overwrite drifted snapshots.  Also
    seeds zero snapshots when a product is created or imported.

Architecture position:
    Kernel > Services.  Called by InventoryService.recompute_inventory_snapshots
    and by the operational CLI (through the inventory module).

Invariants enforced:
    - Read-only over stock_movements; writes snapshots only.
    - Idempotent: a second recompute with no intervening movement finds no
      drift and writes nothing.
    - A negative ledger sum in a store that forbids negative stock aborts
      the whole recompute before any snapshot is written.
    - Every drifted key gets one SNAPSHOT_RECOMPUTED audit event with the
      before and after values.

Failure modes:
    - NegativeSnapshotError: ledger sum < 0 under a no-negative policy.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.actor import ActorContext
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.collaborators import StorePolicy, StorePolicyReader
from stock_kernel.domain.dtos import RecomputeResult, SnapshotDrift
from stock_kernel.domain.values import BASE_VARIANT_KEY
from stock_kernel.exceptions import NegativeSnapshotError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.selectors.catalog_selector import OrmStorePolicyReader
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_kernel.services.auditor_service import AuditorService
from stock_kernel.services.base import BaseService
from stock_kernel.services.ledger_writer import LedgerWriter

logger = get_logger("services.snapshot_projector")


class SnapshotProjector(BaseService):
    """
    Ledger replay into inventory_snapshots.

    Non-goals:
        - Does NOT check roles; InventoryService requires ADMIN first.
        - Does NOT touch lots or costs.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        policy_reader: StorePolicyReader | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._policy_reader = policy_reader or OrmStorePolicyReader(session)
        self._movements = MovementSelector(session)

    def recompute(self, store: StorePolicy, actor: ActorContext) -> RecomputeResult:
        """
        Overwrite every snapshot of ``store`` that disagrees with the ledger.

        Returns:
            RecomputeResult with the number of snapshots written and one
            SnapshotDrift per key whose cached values were wrong.
        """
        # Rows are locked before the ledger is summed so no movement lands in between.
        snapshots = {
            (snapshot.product_id, snapshot.variant_key): snapshot
            for snapshot in self.session.execute(
                select(InventorySnapshot)
                .where(
                    InventorySnapshot.organization_id == store.organization_id,
                    InventorySnapshot.store_id == store.store_id,
                )
                .order_by(InventorySnapshot.product_id, InventorySnapshot.variant_key)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        }

        on_hand_by_key = {
            (balance.product_id, balance.variant_key): balance.on_hand
            for balance in self._movements.ledger_balances(store.organization_id, store.store_id)
        }
        on_order_by_key = self._movements.open_order_quantities(
            store.organization_id, store.store_id
        )

        if not store.allow_negative_stock:
            for (product_id, variant_key), total in sorted(
                on_hand_by_key.items(), key=lambda item: (str(item[0][0]), item[0][1])
            ):
                if total < 0:
                    raise NegativeSnapshotError(
                        store_id=str(store.store_id),
                        product_id=str(product_id),
                        variant_key=variant_key,
                        on_hand=total,
                    )

        now = self._clock.now()
        drifted: list[SnapshotDrift] = []
        created_keys: set[tuple[UUID, str]] = set()

        # Keys with ledger or on-order history but no snapshot row yet.
        missing = (set(on_hand_by_key) | set(on_order_by_key)) - set(snapshots)
        for product_id, variant_key in sorted(missing, key=lambda k: (str(k[0]), k[1])):
            snapshot, created = self._get_or_create_locked(
                InventorySnapshot,
                filters={
                    "store_id": store.store_id,
                    "product_id": product_id,
                    "variant_key": variant_key,
                },
                defaults={
                    "organization_id": store.organization_id,
                    "on_hand": 0,
                    "on_order": 0,
                    "allow_negative_stock": store.allow_negative_stock,
                    "min_stock": 0,
                    "updated_at": now,
                },
            )
            snapshots[(product_id, variant_key)] = snapshot
            if created:
                created_keys.add((product_id, variant_key))
        updated = len(created_keys)

        keys = set(snapshots)
        for key in sorted(keys, key=lambda k: (str(k[0]), k[1])):
            product_id, variant_key = key
            on_hand = on_hand_by_key.get(key, 0)
            on_order = on_order_by_key.get(key, 0)
            snapshot = snapshots[key]
            if snapshot.on_hand == on_hand and snapshot.on_order == on_order:
                continue

            previous_on_hand, previous_on_order = snapshot.on_hand, snapshot.on_order
            snapshot.on_hand = on_hand
            snapshot.on_order = on_order
            snapshot.updated_at = now
            self.session.flush()
            if key not in created_keys:
                updated += 1

            drift = SnapshotDrift(
                product_id=product_id,
                variant_key=variant_key,
                previous_on_hand=previous_on_hand,
                on_hand=on_hand,
                previous_on_order=previous_on_order,
                on_order=on_order,
            )
            drifted.append(drift)
            self._auditor.record_snapshot_recomputed(
                organization_id=store.organization_id,
                snapshot_id=snapshot.id,
                actor_id=actor.actor_id,
                store_id=store.store_id,
                product_id=product_id,
                variant_key=variant_key,
                before={"on_hand": previous_on_hand, "on_order": previous_on_order},
                after={"on_hand": on_hand, "on_order": on_order},
            )

        logger.info(
            "snapshots_recomputed",
            extra={
                "store_id": str(store.store_id),
                "keys": len(keys),
                "updated_count": updated,
                "drift_count": len(drifted),
            },
        )
        return RecomputeResult(store_id=store.store_id, updated_count=updated, drifted=tuple(drifted))

    def ensure_snapshots_for_product(
        self,
        organization_id: UUID,
        product_id: UUID,
        variant_key: str = BASE_VARIANT_KEY,
    ) -> int:
        """
        Seed a zero snapshot in every store of the organization.

        Returns:
            The number of snapshots that did not exist before.
        """
        writer = LedgerWriter(self.session, self._clock)
        created = 0
        for store_id in self._policy_reader.list_store_ids(organization_id):
            store = self._policy_reader.get_store(organization_id, store_id)
            existing = self._lock_one(
                InventorySnapshot,
                store_id=store_id,
                product_id=product_id,
                variant_key=variant_key,
            )
            if existing is None:
                writer.lock_snapshot(store, product_id, variant_key)
                created += 1
        logger.info(
            "snapshots_seeded",
            extra={"product_id": str(product_id), "variant_key": variant_key, "created_count": created},
        )
        return created
