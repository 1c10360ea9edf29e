"""
Tests for stock_kernel.logging_config -- structured JSON logging.

Covers:
- StructuredFormatter envelope, extras, exception fields
- LogContext set / bind / clear semantics
- configure_logging idempotency
- Module services emit their operation events with bound context
"""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


def _format(record: logging.LogRecord) -> dict:
    return json.loads(StructuredFormatter().format(record))


def _record(msg="event", level=logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord("stock_kernel.test", level, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_envelope_fields(self):
        payload = _format(_record("stock_adjusted"))
        assert payload["message"] == "stock_adjusted"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "stock_kernel.test"
        assert "ts" in payload

    def test_extras_are_serialized(self):
        product_id = uuid4()
        payload = _format(_record(product_id=product_id, avg_cost=Decimal("1.50"), qty=3))
        assert payload["product_id"] == str(product_id)
        assert payload["avg_cost"] == "1.50"
        assert payload["qty"] == 3

    def test_context_fields_included(self):
        with LogContext.bind(request_id="req-1", store_id="store-9"):
            payload = _format(_record())
        assert payload["request_id"] == "req-1"
        assert payload["store_id"] == "store-9"

    def test_exception_fields(self):
        exc = InsufficientStockError(
            store_id="s", product_id="p", variant_key="BASE", on_hand=1, qty_delta=-5
        )
        record = logging.LogRecord(
            "stock_kernel.test", logging.INFO, __file__, 1, "rolled_back", (), (type(exc), exc, None)
        )
        payload = _format(record)
        assert payload["exc_type"] == "InsufficientStockError"
        assert payload["exc_code"] == "INSUFFICIENT_STOCK"
        assert payload["exc_kind"] == "conflict"
        assert payload["exc_on_hand"] == 1
        assert payload["exc_qty_delta"] == -5


class TestLogContext:
    def test_set_ignores_none(self):
        LogContext.set(request_id="a")
        LogContext.set(request_id=None, actor_id="b")
        assert LogContext.get_all() == {"request_id": "a", "actor_id": "b"}

    def test_bind_restores_previous_values(self):
        LogContext.set(store_id="outer")
        with LogContext.bind(store_id="inner", idempotency_key="k"):
            assert LogContext.get_all()["store_id"] == "inner"
        assert LogContext.get_all() == {"store_id": "outer"}

    def test_clear(self):
        LogContext.set(trace_id="t", organization_id="o")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestConfigureLogging:
    def test_idempotent(self):
        reset_logging()
        try:
            stream = StringIO()
            configure_logging(level=logging.INFO, stream=stream)
            configure_logging(level=logging.INFO, stream=stream)
            assert len(logging.getLogger("stock_kernel").handlers) == 1

            get_logger("reporting").info("report_built", extra={"n": 1})
            lines = [json.loads(line) for line in stream.getvalue().splitlines()]
            assert lines[-1]["message"] == "report_built"
            assert lines[-1]["logger"] == "stock_kernel.reporting"
        finally:
            reset_logging()
            configure_logging(level=logging.DEBUG)


class TestServiceLogging:
    def test_adjust_logs_with_bound_context(self, captured_logs, inventory, manager, catalog, key):
        idem = key("adjust")
        inventory.adjust_stock(
            manager,
            store_id=catalog.store_a,
            product_id=catalog.product_id,
            qty_delta=4,
            reason="count",
            idempotency_key=idem,
        )
        records = [r for r in captured_logs() if r["message"] == "stock_adjusted"]
        assert len(records) == 1
        assert records[0]["idempotency_key"] == idem
        assert records[0]["store_id"] == str(catalog.store_a)
        assert records[0]["actor_id"] == str(manager.actor_id)
        assert records[0]["replayed"] is False

    def test_context_cleared_after_operation(self, inventory, manager, catalog, key):
        inventory.adjust_stock(
            manager,
            store_id=catalog.store_a,
            product_id=catalog.product_id,
            qty_delta=1,
            reason="count",
            idempotency_key=key(),
        )
        assert LogContext.get_all() == {}

    def test_rejected_movement_is_logged(self, captured_logs, inventory, manager, catalog, key):
        with pytest.raises(InsufficientStockError):
            inventory.adjust_stock(
                manager,
                store_id=catalog.store_a,
                product_id=catalog.product_id,
                qty_delta=-1,
                reason="damage",
                idempotency_key=key(),
            )
        messages = [r["message"] for r in captured_logs()]
        assert "negative_stock_rejected" in messages
        assert "transaction_rolled_back" in messages
