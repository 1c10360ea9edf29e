"""Inventory module: the only entry point for stock-affecting operations."""

from stock_modules.inventory.service import InventoryService

__all__ = ["InventoryService"]
