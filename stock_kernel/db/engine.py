"""
Engine, sessions and the transaction boundary.

One engine per process, created by ``init_engine_from_url``.  Everything
that writes runs inside ``unit_of_work(session)``: the movement, its
snapshot, lots, cost row, audit event and idempotency key commit together
or not at all.

PostgreSQL runs at READ COMMITTED; snapshot, lot, cost, purchase-order and
idempotency rows are locked with ``SELECT ... FOR UPDATE``.  On SQLite the
driver's implicit transactions are switched off and BEGIN is issued from the
engine ``begin`` event so SAVEPOINTs behave; SQLite serializes writers on
its own, so FOR UPDATE is simply not emitted there.

Contention (serialization failure, deadlock, lock timeout, locked SQLite
file) leaves ``unit_of_work`` as ``TransientStorageError``.  Callers retry
with the same idempotency key.
"""

import atexit
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from stock_kernel.exceptions import TransientStorageError
from stock_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _enable_sqlite_savepoints(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    lock_timeout_seconds: int = 30,
) -> Engine:
    """
    Create the process engine and session factory, replacing any previous one.

    ``database_url`` is a ``postgresql://`` or ``sqlite://`` URL; pool
    settings apply to PostgreSQL only.
    """
    global _engine, _session_factory

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": lock_timeout_seconds},
        )
        _enable_sqlite_savepoints(engine)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_timeout=lock_timeout_seconds,
            isolation_level="READ COMMITTED",
        )

    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": engine.dialect.name, "echo": echo})
    return engine


def _require_factory() -> sessionmaker[Session]:
    if _session_factory is None:
        raise RuntimeError("database engine is not initialized; call init_engine_from_url()")
    return _session_factory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("database engine is not initialized; call init_engine_from_url()")
    return _engine


def get_session() -> Session:
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """The factory itself, for code that opens one session per thread."""
    return _require_factory()


def is_transient_error(exc: BaseException) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    if getattr(exc.orig, "pgcode", None) in RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(exc.orig).lower()


@contextmanager
def unit_of_work(session: Session) -> Iterator[Session]:
    """
    Commit the block on success; roll it back and re-raise on failure.

    Usage:
        with unit_of_work(session):
            guard.run(...)
    """
    try:
        yield session
        session.commit()
    except DBAPIError as exc:
        session.rollback()
        if is_transient_error(exc):
            logger.warning("transaction_transient_failure", extra={"reason": str(exc.orig)})
            raise TransientStorageError(str(exc.orig)) from exc
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    except Exception:
        session.rollback()
        logger.info("transaction_rolled_back", exc_info=True)
        raise


def _metadata():
    from stock_kernel.db.base import Base
    import stock_kernel.models  # noqa: F401  (registers every table)

    return Base.metadata


def create_tables() -> None:
    _metadata().create_all(get_engine())


def drop_tables() -> None:
    """Drop every stock table (tests and local resets)."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)
