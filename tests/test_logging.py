"""Tests for the structured logging system (market_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from market_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "market_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("held", extra={"amount": 600, "status": "active"})

        record = _parse_log(stream)
        assert record["amount"] == 600
        assert record["status"] == "active"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", order_id="ord-456")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["order_id"] == "ord-456"

    def test_market_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        from market_kernel.exceptions import InsufficientFundsError

        try:
            raise InsufficientFundsError("acct-1", available=100, requested=600)
        except InsufficientFundsError:
            get_logger("test").error("hold_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INSUFFICIENT_FUNDS"
        assert record["exc_type"] == "InsufficientFundsError"
        assert record["exc_available"] == 100
        assert record["exc_requested"] == 600
        assert "traceback" in record

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "order_id" not in record

    def test_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_uuid", extra={"account_id": uid})

        assert _parse_log(stream)["account_id"] == str(uid)

    def test_debug_filtered_at_default_level(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", request_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "request_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner"):
            assert LogContext.get_all()["correlation_id"] == "inner"
        assert LogContext.get_all()["correlation_id"] == "outer"

    def test_bind_stringifies_uuids(self):
        order_id = uuid4()
        with LogContext.bind(order_id=order_id):
            assert LogContext.get_all()["order_id"] == str(order_id)
        assert "order_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(correlation_id="c", not_a_field="z"):
            assert LogContext.get_all() == {"correlation_id": "c"}

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            actor_id="a",
            order_id="o",
            request_id="r",
            offer_id="f",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 5
        assert ctx["offer_id"] == "f"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)

        handlers = logging.getLogger("market_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers
        structured = [h for h in handlers if isinstance(h.formatter, StructuredFormatter)]
        assert structured == [h1]

    def test_reset_removes_only_installed_handler(self):
        foreign = logging.NullHandler()
        root = logging.getLogger("market_kernel")
        root.addHandler(foreign)
        try:
            installed, _ = _make_handler()
            configure_logging(handler=installed)
            reset_logging()
            assert installed not in root.handlers
            assert foreign in root.handlers
        finally:
            root.removeHandler(foreign)

    def test_get_logger_returns_child(self):
        assert get_logger("services.order").name == "market_kernel.services.order"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "market_kernel.deep.nested.module"
