"""
Moving average cost.

Pure function; the CostAccumulator service feeds it the organization-wide
on-hand before the receipt and persists the result.
"""

from decimal import Decimal

COST_QUANTUM = Decimal("0.000000001")


def weighted_average_cost(
    prev_avg: Decimal | None,
    prev_qty: int,
    unit_cost: Decimal,
    qty: int,
) -> Decimal:
    """
    Return the new average unit cost after receiving ``qty`` at ``unit_cost``.

    ``(prev_avg*prev_qty + unit_cost*qty) / (prev_qty + qty)``, except that
    a missing previous average or a non-positive previous quantity resets the
    average to ``unit_cost``.

    Preconditions:
        - qty > 0
        - unit_cost >= 0

    Returns:
        Decimal quantized to 9 places (storage precision).
    """
    if qty <= 0:
        raise ValueError(f"qty must be positive, got {qty}")
    if prev_avg is None or prev_qty <= 0:
        return unit_cost.quantize(COST_QUANTUM)
    total = prev_avg * prev_qty + unit_cost * qty
    return (total / (prev_qty + qty)).quantize(COST_QUANTUM)


def per_base_unit_cost(unit_cost: Decimal | None, pack_qty: int, base_qty: int) -> Decimal | None:
    """Spread a per-pack price over the base units it converts to."""
    if unit_cost is None or pack_qty == base_qty:
        return unit_cost
    return (unit_cost * pack_qty / base_qty).quantize(COST_QUANTUM)
