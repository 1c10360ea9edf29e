"""
Configuration Loader (``stock_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into the frozen
dataclasses of ``stock_config.schema``.  Runtime code calls
``stock_config.get_active_config()`` instead of this module.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required keys are never silently defaulted.
* ``compute_checksum`` is a deterministic SHA-256 over the parsed source,
  logged with every ``get_active_config()`` call.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id`` / ``version``  -> ``KeyError``.
* Unknown depletion policy or non-positive day counts  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import (
    DEPLETION_POLICIES,
    DatabaseConfig,
    InventoryConfig,
    LoggingConfig,
    ReplenishmentConfig,
    StockConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _non_negative_int(section: str, data: dict[str, Any], name: str, default: int) -> int:
    value = data.get(name, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{section}.{name} must be a non-negative integer, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    defaults = DatabaseConfig()
    return DatabaseConfig(
        url=str(data.get("url", defaults.url)),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=_non_negative_int("database", data, "pool_size", defaults.pool_size),
        max_overflow=_non_negative_int("database", data, "max_overflow", defaults.max_overflow),
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    return LoggingConfig(level=str(data.get("level", LoggingConfig().level)).upper())


def parse_inventory(data: dict[str, Any]) -> InventoryConfig:
    policy = str(data.get("lot_depletion_policy", InventoryConfig().lot_depletion_policy)).lower()
    if policy not in DEPLETION_POLICIES:
        raise ValueError(
            f"inventory.lot_depletion_policy must be one of {DEPLETION_POLICIES}, got {policy!r}"
        )
    return InventoryConfig(lot_depletion_policy=policy)


def parse_replenishment(data: dict[str, Any]) -> ReplenishmentConfig:
    defaults = ReplenishmentConfig()
    config = ReplenishmentConfig(
        lead_time_days=_non_negative_int("replenishment", data, "lead_time_days", defaults.lead_time_days),
        review_cycle_days=_non_negative_int(
            "replenishment", data, "review_cycle_days", defaults.review_cycle_days
        ),
        safety_stock_days=_non_negative_int(
            "replenishment", data, "safety_stock_days", defaults.safety_stock_days
        ),
        min_order_qty=_non_negative_int("replenishment", data, "min_order_qty", defaults.min_order_qty),
        demand_window_days=_non_negative_int(
            "replenishment", data, "demand_window_days", defaults.demand_window_days
        ),
    )
    if config.demand_window_days == 0:
        raise ValueError("replenishment.demand_window_days must be at least 1")
    return config


def parse_stock_config(data: dict[str, Any]) -> StockConfig:
    """Parse the root mapping of a configuration file."""
    return StockConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        database=parse_database(data.get("database") or {}),
        logging=parse_logging(data.get("logging") or {}),
        inventory=parse_inventory(data.get("inventory") or {}),
        replenishment=parse_replenishment(data.get("replenishment") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
