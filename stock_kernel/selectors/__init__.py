"""Read-only selectors over the stock ledger (query side)."""

from stock_kernel.selectors.base import BaseSelector
from stock_kernel.selectors.catalog_selector import (
    OrmCatalogReader,
    OrmStorePolicyReader,
    OrmUnitResolver,
)
from stock_kernel.selectors.movement_selector import MovementSelector

__all__ = [
    "BaseSelector",
    "MovementSelector",
    "OrmCatalogReader",
    "OrmStorePolicyReader",
    "OrmUnitResolver",
]
