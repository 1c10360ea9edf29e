"""
CostAccumulator -- moving average unit cost per (organization, product, variant).

Responsibility:
    Fold one priced receipt into the organization-wide average cost.

Architecture position:
    Kernel > Services.  Called by InventoryService on RECEIVE movements
    only, after the receiving snapshot is locked and before the movement is
    appended, so the snapshot sum it reads is the quantity on hand before
    the receipt.

Invariants enforced:
    - Only receipts with a unit cost change the average.
    - ``newAvg = (oldAvg*oldOnHand + unitCost*qty) / (oldOnHand + qty)``
      with oldOnHand summed over every store of the organization; a
      non-positive oldOnHand resets the average to the incoming unit cost.
    - Full Decimal precision, quantized to 9 places; no display rounding.
    - Lock order is snapshot, then cost row.  Receipts of one key serialize
      on the cost row.

Accepted approximation:
    The other stores' snapshots are summed without locking them.  An
    adjustment or transfer committing in another store while a receipt is
    being priced is weighted at its committed value; locking every store's
    row would invert the snapshot-then-cost order.

Failure modes:
    - NegativeUnitCostError: unit_cost < 0.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from stock_kernel.domain.costing import weighted_average_cost
from stock_kernel.exceptions import NegativeUnitCostError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.product_cost import ProductCost
from stock_kernel.services.base import BaseService

logger = get_logger("services.cost_accumulator")


class CostAccumulator(BaseService):
    @staticmethod
    def validate_unit_cost(unit_cost: Decimal | None) -> Decimal | None:
        if unit_cost is None:
            return None
        unit_cost = Decimal(str(unit_cost))
        if unit_cost < 0:
            raise NegativeUnitCostError(str(unit_cost))
        return unit_cost

    def organization_on_hand(self, organization_id: UUID, product_id: UUID, variant_key: str) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(InventorySnapshot.on_hand), 0)).where(
                InventorySnapshot.organization_id == organization_id,
                InventorySnapshot.product_id == product_id,
                InventorySnapshot.variant_key == variant_key,
            )
        ).scalar_one()
        return int(total)

    def lock_cost(self, organization_id: UUID, product_id: UUID, variant_key: str) -> ProductCost:
        """The cost row for the key, inserted unpriced if missing, locked."""
        cost, _ = self._get_or_create_locked(
            ProductCost,
            filters={
                "organization_id": organization_id,
                "product_id": product_id,
                "variant_key": variant_key,
            },
            defaults={"avg_cost": Decimal("0"), "cost_basis_qty": 0},
        )
        return cost

    def apply_receipt(
        self,
        organization_id: UUID,
        product_id: UUID,
        variant_key: str,
        qty: int,
        unit_cost: Decimal | None,
        received_at: datetime,
    ) -> ProductCost | None:
        """
        Update the average for a receipt of ``qty`` at ``unit_cost``.

        Returns:
            The locked ProductCost row, or None when nothing was priced.
        """
        unit_cost = self.validate_unit_cost(unit_cost)
        if unit_cost is None or qty <= 0:
            return None

        cost = self.lock_cost(organization_id, product_id, variant_key)
        old_on_hand = self.organization_on_hand(organization_id, product_id, variant_key)
        # A row that never took a priced receipt has no average to blend.
        previous_avg = cost.avg_cost if cost.last_receipt_at is not None else None

        cost.avg_cost = weighted_average_cost(previous_avg, old_on_hand, unit_cost, qty)
        cost.cost_basis_qty = max(old_on_hand, 0) + qty
        cost.last_receipt_at = received_at
        self.session.flush()

        logger.info(
            "average_cost_updated",
            extra={
                "product_id": str(product_id),
                "variant_key": variant_key,
                "previous_avg_cost": str(previous_avg) if previous_avg is not None else None,
                "avg_cost": str(cost.avg_cost),
                "old_on_hand": old_on_hand,
                "qty": qty,
            },
        )
        return cost
