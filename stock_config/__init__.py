"""
stock_config -- single public entrypoint for stock ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration.  Consumed by ``stock_modules`` and ``scripts``.  The
    kernel never imports from ``stock_config``; module services translate
    the relevant settings (depletion policy, replenishment defaults) into
    plain constructor arguments for kernel services.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - The returned ``StockConfig`` is frozen.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file does not exist.
    - ``ValueError`` / ``KeyError`` -- schema validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``STOCK_CONFIG_TRACE`` log entry with the config_id, version and
    checksum, tying ledger activity to the configuration that governed it.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from stock_config.loader import load_yaml_file, parse_stock_config
from stock_config.schema import (
    DatabaseConfig,
    InventoryConfig,
    LoggingConfig,
    ReplenishmentConfig,
    StockConfig,
)

_logger = logging.getLogger("stock_kernel.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_PATH_ENV = "STOCK_CONFIG_PATH"
DATABASE_URL_ENV = "DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> StockConfig:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: ``path`` argument, then
    ``$STOCK_CONFIG_PATH``, then ``stock_config/sets/default.yaml``.
    ``$DATABASE_URL``, when set, replaces ``database.url``.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If configuration validation fails.
        KeyError: If a required key is missing.
    """
    config_path = Path(path or os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_FILE)
    config = parse_stock_config(load_yaml_file(config_path))

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        config = dataclasses.replace(
            config, database=dataclasses.replace(config.database, url=database_url)
        )

    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "trace_type": "STOCK_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "config_path": str(config_path),
            "database_url_overridden": bool(database_url),
            "lot_depletion_policy": config.inventory.lot_depletion_policy,
        },
    )
    return config


__all__ = [
    "DatabaseConfig",
    "InventoryConfig",
    "LoggingConfig",
    "ReplenishmentConfig",
    "StockConfig",
    "get_active_config",
]
