"""
Property-based tests for the pure stock math and the ledger/snapshot pair.

Properties checked:
- percentile stays inside the series and grows with p.
- compute_reorder never suggests a negative quantity and honours the
  minimum order size.
- plan_depletion never overdraws a lot and draws min(qty, tracked total).
- weighted_average_cost stays between the previous average and the new cost.
- After any sequence of adjustments the snapshot equals the ledger sum.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import func, select

from stock_kernel.domain.costing import weighted_average_cost
from stock_kernel.domain.lots import DepletionPolicy, LotBalance, plan_depletion
from stock_kernel.domain.replenishment import ReorderParameters, compute_reorder, percentile
from stock_kernel.domain.values import BASE_VARIANT_KEY
from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.stock_movement import StockMovement

demand_series = st.lists(st.integers(min_value=0, max_value=500), max_size=60)
fraction = st.floats(min_value=0.0, max_value=1.0, allow_nan=False)
costs = st.decimals(min_value=Decimal("0"), max_value=Decimal("10000"), places=4)


@st.composite
def lot_balances(draw):
    count = draw(st.integers(min_value=0, max_value=6))
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [
        LotBalance(
            lot_id=uuid4(),
            expiry_date=date(2024, 6, 1) + timedelta(days=draw(st.integers(0, 365))),
            on_hand_qty=draw(st.integers(min_value=0, max_value=50)),
            created_at=base + timedelta(hours=n),
        )
        for n in range(count)
    ]


class TestPercentileProperties:
    @given(values=demand_series, p=fraction)
    def test_result_is_a_member_of_the_series(self, values, p):
        result = percentile(values, p)
        if values:
            assert result in values
        else:
            assert result == 0.0

    @given(values=demand_series, low=fraction, high=fraction)
    def test_monotone_in_p(self, values, low, high):
        low, high = sorted((low, high))
        assert percentile(values, low) <= percentile(values, high)


class TestReorderProperties:
    @given(
        series=demand_series,
        on_hand=st.integers(min_value=-100, max_value=1000),
        on_order=st.integers(min_value=0, max_value=1000),
        lead=st.integers(min_value=0, max_value=60),
        review=st.integers(min_value=0, max_value=60),
        safety_days=st.integers(min_value=0, max_value=30),
        moq=st.integers(min_value=0, max_value=500),
    )
    def test_suggestion_bounds(self, series, on_hand, on_order, lead, review, safety_days, moq):
        p50, p90 = percentile(series, 0.5), percentile(series, 0.9)
        params = ReorderParameters(
            lead_time_days=lead, review_cycle_days=review,
            safety_stock_days=safety_days, min_order_qty=moq,
        )
        result = compute_reorder(p50=p50, p90=p90, on_hand=on_hand, on_order=on_order, params=params)

        assert result.suggested_qty >= 0
        assert result.safety_stock >= 0
        assert result.target_level >= result.reorder_point
        if result.suggested_qty > 0:
            assert result.suggested_qty >= moq
            assert result.suggested_qty >= result.target_level - (on_hand + on_order)


class TestDepletionProperties:
    @given(lots=lot_balances(), qty=st.integers(min_value=1, max_value=400), policy=st.sampled_from(list(DepletionPolicy)))
    def test_draws_respect_lot_balances(self, lots, qty, policy):
        draws = plan_depletion(lots, qty, policy)

        held = {lot.lot_id: lot.on_hand_qty for lot in lots}
        assert all(0 < draw.qty <= held[draw.lot_id] for draw in draws)
        assert len({draw.lot_id for draw in draws}) == len(draws)
        assert sum(draw.qty for draw in draws) == min(qty, sum(held.values()))

    @given(lots=lot_balances(), qty=st.integers(min_value=1, max_value=400))
    def test_fefo_draws_in_expiry_order(self, lots, qty):
        draws = plan_depletion(lots, qty, DepletionPolicy.FEFO)
        expiries = [draw.expiry_date for draw in draws]
        assert expiries == sorted(expiries)


class TestAverageCostProperties:
    @given(
        prev_avg=costs,
        prev_qty=st.integers(min_value=1, max_value=10_000),
        unit_cost=costs,
        qty=st.integers(min_value=1, max_value=10_000),
    )
    def test_between_inputs(self, prev_avg, prev_qty, unit_cost, qty):
        result = weighted_average_cost(prev_avg, prev_qty, unit_cost, qty)
        tolerance = Decimal("0.000000001")
        assert min(prev_avg, unit_cost) - tolerance <= result <= max(prev_avg, unit_cost) + tolerance

    @given(unit_cost=costs, qty=st.integers(min_value=1, max_value=100))
    def test_empty_history_resets_to_cost(self, unit_cost, qty):
        assert weighted_average_cost(None, 0, unit_cost, qty) == unit_cost
        assert weighted_average_cost(Decimal("99"), -5, unit_cost, qty) == unit_cost


class TestLedgerSnapshotAgreement:
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(deltas=st.lists(st.integers(min_value=-20, max_value=20).filter(bool), min_size=1, max_size=12))
    def test_snapshot_equals_ledger_sum(self, session, inventory, manager, catalog, deltas):
        # Examples share one transaction; the property holds cumulatively.
        for delta in deltas:
            try:
                inventory.adjust_stock(
                    manager, store_id=catalog.store_a, product_id=catalog.product_id,
                    qty_delta=delta, reason="count", idempotency_key=f"fuzz-{uuid4()}",
                )
            except InsufficientStockError:
                pass

        ledger_sum = session.execute(
            select(func.coalesce(func.sum(StockMovement.qty_delta), 0)).where(
                StockMovement.store_id == catalog.store_a,
                StockMovement.product_id == catalog.product_id,
            )
        ).scalar_one()
        snapshot = session.execute(
            select(InventorySnapshot)
            .where(
                InventorySnapshot.store_id == catalog.store_a,
                InventorySnapshot.product_id == catalog.product_id,
                InventorySnapshot.variant_key == BASE_VARIANT_KEY,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        assert (snapshot.on_hand if snapshot else 0) == ledger_sum
        assert ledger_sum >= 0


@pytest.mark.parametrize("policy", ["fefo", "fifo"])
def test_zero_quantity_is_rejected(policy):
    with pytest.raises(ValueError):
        plan_depletion([], 0, policy)
