"""Tests for the structured logging system (capital_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from capital_kernel.domain.lifecycle import CapitalCallStatus
from capital_kernel.exceptions import ConcurrencyError
from capital_kernel.logging_config import (
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
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "capital_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("funded", extra={"version": 2, "status": "FUNDED"})

        record = _parse_log(stream)
        assert record["version"] == 2
        assert record["status"] == "FUNDED"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", capital_call_id="call-9")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["capital_call_id"] == "call-9"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_attributes_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ConcurrencyError("CapitalCallAllocation", "alloc-1", 0, 1)
        except ConcurrencyError:
            get_logger("test").warning("conflict", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "CONCURRENCY_ERROR"
        assert record["exc_type"] == "ConcurrencyError"
        assert record["exc_expected_version"] == 0
        assert record["exc_current_version"] == 1

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "deal_id" not in record

    def test_domain_types_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "typed",
            extra={
                "call_id": uid,
                "amount": Decimal("100.00"),
                "due": date(2025, 4, 1),
                "call_status": CapitalCallStatus.ISSUED,
            },
        )

        record = _parse_log(stream)
        assert record["call_id"] == str(uid)
        assert record["amount"] == "100.00"
        assert record["due"] == "2025-04-01"
        assert record["call_status"] == "ISSUED"

    def test_unknown_object_falls_back_to_str(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        class Opaque:
            def __str__(self):
                return "opaque!"

        get_logger("test").info("odd", extra={"thing": Opaque()})
        assert _parse_log(stream)["thing"] == "opaque!"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # default level is INFO, so the debug line is dropped
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= set(record)


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", deal_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "deal_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner"):
            assert LogContext.get_all()["correlation_id"] == "inner"
        assert LogContext.get_all()["correlation_id"] == "outer"

    def test_bind_restores_none(self):
        assert "correlation_id" not in LogContext.get_all()
        with LogContext.bind(correlation_id="temp"):
            assert LogContext.get_all()["correlation_id"] == "temp"
        assert "correlation_id" not in LogContext.get_all()

    def test_bind_skips_none_values(self):
        with LogContext.bind(actor_id="gp-1", deal_id=None):
            assert LogContext.get_all() == {"actor_id": "gp-1"}

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            request_id="r",
            actor_id="a",
            deal_id="d",
            capital_call_id="k",
            operation="o",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 6
        assert ctx["operation"] == "o"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is no-op
        handlers = logging.getLogger("capital_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers

    def test_get_logger_returns_child(self):
        assert get_logger("services.allocation").name == "capital_kernel.services.allocation"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "capital_kernel.deep.nested.module"

    def test_level_accepts_name(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level="WARNING")
        logger = get_logger("test")
        logger.info("quiet")
        logger.warning("loud")
        assert [r["message"] for r in _parse_all_logs(stream)] == ["loud"]
