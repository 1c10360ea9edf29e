"""Database layer: engine, declarative base, immutability listeners."""

from stock_kernel.db.base import Base, TrackedBase, UUIDString
from stock_kernel.db.engine import create_tables, get_engine, get_session, unit_of_work

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session",
    "unit_of_work",
]
