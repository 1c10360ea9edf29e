"""Reporting module: read-only stock reports and reorder suggestions."""

from stock_modules.reporting.models import (
    ReorderSuggestionRow,
    ShrinkageRow,
    SlowMoverRow,
    StockoutRow,
)
from stock_modules.reporting.service import ReportingService

__all__ = [
    "ReorderSuggestionRow",
    "ReportingService",
    "ShrinkageRow",
    "SlowMoverRow",
    "StockoutRow",
]
