"""
Pytest fixtures for the stock ledger test suite.

Provides:
- Database sessions isolated per test by an outer transaction
- Catalog fixtures (organizations, stores, suppliers, products, packs)
- Actors for each role
- Module services (inventory, purchasing, counting, reporting) wired to a
  deterministic clock

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL.  If not set, the suite runs on a
  SQLite file in the pytest temp directory.  Tests that need real row locks
  are marked ``postgres`` and skipped on SQLite.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from stock_kernel.db.base import Base
from stock_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from stock_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stock_kernel.domain.actor import ActorContext
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.domain.values import Role
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stock_kernel.models.catalog import Product, ProductPack, ProductVariant, Store, Supplier
from stock_modules.counting import StockCountService
from stock_modules.inventory import InventoryService
from stock_modules.purchasing import PurchaseOrderService
from stock_modules.reporting import ReportingService

START_TIME = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


def pytest_collection_modifyitems(config, items):
    if get_database_url(None).startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


def get_database_url(tmp_dir) -> str:
    """DATABASE_URL from the environment, else a SQLite file under *tmp_dir*."""
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    if tmp_dir is None:
        return "sqlite://"
    return f"sqlite:///{tmp_dir / 'stock_ledger_test.db'}"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stock_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, inventory):
            inventory.adjust_stock(...)
            assert any(r["message"] == "stock_adjusted" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Session-scoped DB infrastructure (engine + tables once per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory):
    eng = init_engine_from_url(get_database_url(tmp_path_factory.mktemp("db")), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session; immutability listeners stay registered."""
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _truncate_all_tables(engine):
    """Delete all rows (concurrency tests commit for real)."""
    unregister_immutability_listeners()
    try:
        with engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(text(f"DELETE FROM {table.name}"))
    finally:
        register_immutability_listeners()


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection; each
    ``session.commit()`` inside the code under test releases a savepoint, and
    the outer transaction is rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture(scope="function")
def pg_session_factory(db_engine, db_tables):
    """Session factory with real commits for multi-threaded tests; rows deleted at teardown."""
    factory = get_session_factory()
    created: list[Session] = []

    def tracked_factory() -> Session:
        s = factory()
        created.append(s)
        return s

    yield tracked_factory

    for s in created:
        s.close()
    _truncate_all_tables(db_engine)


@pytest.fixture
def pg_session(db_engine, db_tables) -> Generator[Session, None, None]:
    sess = get_session()
    try:
        yield sess
    finally:
        sess.close()
        _truncate_all_tables(db_engine)


# =============================================================================
# Clock and catalog
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    """Deterministic clock; every ``now()`` advances one second."""
    return DeterministicClock(fixed_time=START_TIME, auto_advance_seconds=1)


@dataclass
class Catalog:
    organization_id: UUID
    store_a: UUID
    store_b: UUID
    lot_store: UUID
    lot_store_b: UUID
    negative_store: UUID
    supplier_id: UUID
    supplier_2_id: UUID
    product_id: UUID
    product_2_id: UUID
    orphan_product_id: UUID
    variant_id: UUID
    pack_id: UUID
    other_organization_id: UUID
    other_store: UUID
    other_product_id: UUID
    other_supplier_id: UUID


def make_store(session, organization_id, name, allow_negative=False, track_lots=False) -> UUID:
    store = Store(
        organization_id=organization_id,
        name=name,
        allow_negative_stock=allow_negative,
        track_expiry_lots=track_lots,
    )
    session.add(store)
    session.flush()
    return store.id


def make_supplier(session, organization_id, name="Supplier") -> UUID:
    supplier = Supplier(organization_id=organization_id, name=name)
    session.add(supplier)
    session.flush()
    return supplier.id


def make_product(session, organization_id, sku, supplier_id=None) -> UUID:
    product = Product(
        organization_id=organization_id,
        name=f"Product {sku}",
        sku=sku,
        supplier_id=supplier_id,
    )
    session.add(product)
    session.flush()
    return product.id


@pytest.fixture
def catalog(session) -> Catalog:
    org = uuid4()
    other_org = uuid4()

    supplier_id = make_supplier(session, org, "Acme Wholesale")
    supplier_2_id = make_supplier(session, org, "Bolt Distribution")
    product_id = make_product(session, org, "SKU-1", supplier_id)
    product_2_id = make_product(session, org, "SKU-2", supplier_2_id)
    orphan_product_id = make_product(session, org, "SKU-3", None)

    variant = ProductVariant(product_id=product_id, name="Large")
    pack = ProductPack(product_id=product_id, name="Case of 12", multiplier=12)
    session.add_all([variant, pack])
    session.flush()

    other_supplier_id = make_supplier(session, other_org, "Foreign Supplier")

    result = Catalog(
        organization_id=org,
        store_a=make_store(session, org, "A Main Street"),
        store_b=make_store(session, org, "B Harbour"),
        lot_store=make_store(session, org, "C Pharmacy", track_lots=True),
        lot_store_b=make_store(session, org, "D Clinic", track_lots=True),
        negative_store=make_store(session, org, "E Outlet", allow_negative=True),
        supplier_id=supplier_id,
        supplier_2_id=supplier_2_id,
        product_id=product_id,
        product_2_id=product_2_id,
        orphan_product_id=orphan_product_id,
        variant_id=variant.id,
        pack_id=pack.id,
        other_organization_id=other_org,
        other_store=make_store(session, other_org, "Elsewhere"),
        other_product_id=make_product(session, other_org, "SKU-X", other_supplier_id),
        other_supplier_id=other_supplier_id,
    )
    session.commit()
    return result


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def admin(catalog) -> ActorContext:
    return ActorContext(actor_id=uuid4(), organization_id=catalog.organization_id, role=Role.ADMIN)


@pytest.fixture
def manager(catalog) -> ActorContext:
    return ActorContext(actor_id=uuid4(), organization_id=catalog.organization_id, role=Role.MANAGER)


@pytest.fixture
def staff(catalog) -> ActorContext:
    return ActorContext(actor_id=uuid4(), organization_id=catalog.organization_id, role=Role.STAFF)


@pytest.fixture
def scoped_manager(catalog) -> ActorContext:
    """Manager restricted to store A."""
    return ActorContext(
        actor_id=uuid4(),
        organization_id=catalog.organization_id,
        role=Role.MANAGER,
        store_ids=frozenset({catalog.store_a}),
    )


@pytest.fixture
def foreign_manager(catalog) -> ActorContext:
    return ActorContext(
        actor_id=uuid4(), organization_id=catalog.other_organization_id, role=Role.MANAGER
    )


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def inventory(session, clock) -> InventoryService:
    return InventoryService(session, clock=clock)


@pytest.fixture
def purchasing(session, clock) -> PurchaseOrderService:
    return PurchaseOrderService(session, clock=clock)


@pytest.fixture
def reporting(session, clock) -> ReportingService:
    return ReportingService(session, clock=clock)


@pytest.fixture
def counting(session, clock) -> StockCountService:
    return StockCountService(session, clock=clock)


@pytest.fixture
def key():
    """Fresh idempotency keys: ``key()`` or ``key("receive")``."""
    counter = iter(range(1, 1_000_000))

    def _next(prefix: str = "req") -> str:
        return f"{prefix}-{next(counter)}-{uuid4().hex[:8]}"

    return _next
