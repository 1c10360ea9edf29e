"""
Replenishment math.

Responsibility:
    Demand percentiles and the reorder-point formula.  Pure: callers pass in
    the daily demand series and the current position.

Formula (all quantities in base units, all durations in days):
    demand   = p50 * lead_time
    safety   = (p90 - p50) * lead_time + safety_stock_days * p50
    ROP      = demand + safety
    target   = ROP + review_cycle * p50
    suggest  = max(0, ceil(target - (on_hand + on_order)))
    suggest  = max(suggest, min_order_qty) when suggest > 0
"""

import math
from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class ReorderParameters:
    lead_time_days: int = 7
    review_cycle_days: int = 7
    safety_stock_days: int = 3
    min_order_qty: int = 0


@dataclass(frozen=True)
class ReorderComputation:
    demand_during_lead: float
    safety_stock: float
    reorder_point: float
    target_level: float
    suggested_qty: int


def percentile(values: Sequence[float], p: float) -> float:
    """
    Nearest-rank percentile: index ``floor(p * n)`` clamped to the series.

    Returns 0.0 for an empty series.
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(max(math.floor(p * len(ordered)), 0), len(ordered) - 1)
    return float(ordered[index])


def compute_reorder(
    *,
    p50: float,
    p90: float,
    on_hand: int,
    on_order: int,
    params: ReorderParameters,
) -> ReorderComputation:
    demand = p50 * params.lead_time_days
    safety = (p90 - p50) * params.lead_time_days + params.safety_stock_days * p50
    reorder_point = demand + safety
    target = reorder_point + params.review_cycle_days * p50
    suggested = max(0, math.ceil(target - (on_hand + on_order)))
    if suggested > 0:
        suggested = max(suggested, params.min_order_qty)
    return ReorderComputation(
        demand_during_lead=demand,
        safety_stock=safety,
        reorder_point=reorder_point,
        target_level=target,
        suggested_qty=suggested,
    )
