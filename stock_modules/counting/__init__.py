"""Counting module: physical stock counts applied as ledger adjustments."""

from stock_modules.counting.models import (
    CountMode,
    StockCountApplyResult,
    StockCountLineView,
    StockCountView,
)
from stock_modules.counting.service import StockCountService

__all__ = [
    "CountMode",
    "StockCountApplyResult",
    "StockCountLineView",
    "StockCountService",
    "StockCountView",
]
