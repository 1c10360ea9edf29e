"""
Tests for scripts/recompute_snapshots.py.

The script is loaded from its file and pointed at the test connection, so
everything it writes is rolled back with the test.
"""

import importlib.util
import json
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

import stock_kernel.db.engine as engine_module
from stock_config import CONFIG_PATH_ENV, DATABASE_URL_ENV
from stock_kernel.domain.values import BASE_VARIANT_KEY
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.stock_movement import StockMovement

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "recompute_snapshots.py"


@pytest.fixture
def script(session, db_engine, monkeypatch):
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
    monkeypatch.delenv(DATABASE_URL_ENV, raising=False)
    monkeypatch.setattr(engine_module, "init_engine_from_url", lambda *args, **kwargs: db_engine)
    monkeypatch.setattr(
        engine_module,
        "get_session",
        lambda: Session(bind=session.bind, join_transaction_mode="create_savepoint", expire_on_commit=False),
    )
    spec = importlib.util.spec_from_file_location("recompute_snapshots", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def stocked(inventory, manager, catalog, key):
    inventory.receive_stock(
        manager, store_id=catalog.store_a, product_id=catalog.product_id,
        qty_received=6, idempotency_key=key(),
    )


def _snapshot(session, store_id, product_id):
    return session.execute(
        select(InventorySnapshot)
        .where(
            InventorySnapshot.store_id == store_id,
            InventorySnapshot.product_id == product_id,
            InventorySnapshot.variant_key == BASE_VARIANT_KEY,
        )
        .execution_options(populate_existing=True)
    ).scalar_one()


def _corrupt(session, catalog, on_hand):
    _snapshot(session, catalog.store_a, catalog.product_id).on_hand = on_hand
    session.commit()


class TestCheckOnly:
    def test_clean_ledger(self, script, catalog, stocked, capsys):
        code = script.main(["--organization-id", str(catalog.organization_id), "--check-only"])
        report = json.loads(capsys.readouterr().out)
        assert code == 0
        assert report["drift_count"] == 0
        assert len(report["stores"]) == 5

    def test_drift_reported_not_repaired(self, script, session, catalog, stocked, capsys):
        _corrupt(session, catalog, 2)

        code = script.main([
            "--organization-id", str(catalog.organization_id),
            "--store-id", str(catalog.store_a),
            "--check-only",
        ])

        report = json.loads(capsys.readouterr().out)
        assert code == 1
        (store,) = report["stores"]
        (drift,) = store["drift"]
        assert (drift["previous_on_hand"], drift["on_hand"]) == (2, 6)
        assert _snapshot(session, catalog.store_a, catalog.product_id).on_hand == 2


class TestRecompute:
    def test_repairs_drift(self, script, session, catalog, stocked, capsys):
        _corrupt(session, catalog, 2)

        code = script.main([
            "--organization-id", str(catalog.organization_id),
            "--store-id", str(catalog.store_a),
            "--actor-id", str(uuid4()),
        ])

        output = json.loads(capsys.readouterr().out)
        assert code == 0
        assert output["stores"][0]["updated_count"] == 1
        assert _snapshot(session, catalog.store_a, catalog.product_id).on_hand == 6

    def test_negative_ledger_in_strict_store(self, script, session, admin, catalog, capsys):
        session.add(
            StockMovement(
                organization_id=catalog.organization_id,
                store_id=catalog.store_a,
                product_id=catalog.product_id,
                variant_key=BASE_VARIANT_KEY,
                movement_type="ADJUSTMENT",
                qty_delta=-1,
                request_id="legacy-import",
                created_by_id=admin.actor_id,
                created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )
        )
        session.commit()

        code = script.main([
            "--organization-id", str(catalog.organization_id),
            "--store-id", str(catalog.store_a),
            "--actor-id", str(admin.actor_id),
        ])

        assert code == 2
        assert "NEGATIVE_SNAPSHOT" in capsys.readouterr().err

    def test_actor_required(self, script, catalog):
        with pytest.raises(SystemExit) as exc_info:
            script.main(["--organization-id", str(catalog.organization_id)])
        assert exc_info.value.code == 2
