"""
Stock configuration schema.

Frozen dataclasses parsed from the YAML configuration set by
``stock_config.loader``.  Field defaults here are the documented defaults;
a YAML file only has to name what it changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEPLETION_POLICIES = ("fefo", "fifo")


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings; ``url`` may be overridden by $DATABASE_URL."""

    url: str = "sqlite:///stock_ledger.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class InventoryConfig:
    """Ledger behaviour that is a business decision rather than a store flag."""

    lot_depletion_policy: str = "fefo"  # fefo | fifo


@dataclass(frozen=True)
class ReplenishmentConfig:
    """Defaults for products without a reorder_policies row."""

    lead_time_days: int = 7
    review_cycle_days: int = 7
    safety_stock_days: int = 3
    min_order_qty: int = 0
    demand_window_days: int = 28


@dataclass(frozen=True)
class StockConfig:
    config_id: str
    version: int
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    inventory: InventoryConfig = field(default_factory=InventoryConfig)
    replenishment: ReplenishmentConfig = field(default_factory=ReplenishmentConfig)
    checksum: str = ""
