"""Tests for the structured logging system (procurement_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from procurement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's config."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


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
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "procurement_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("requisition_created", extra={"level_count": 3, "number": "REQ-2025-00001"})

        record = _parse_log(stream)
        assert record["level_count"] == 3
        assert record["number"] == "REQ-2025-00001"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        actor, requisition = uuid4(), uuid4()
        with LogContext.bind(actor_id=actor, requisition_id=requisition):
            get_logger("test").info("requisition_advanced")

        record = _parse_log(stream)
        assert record["actor_id"] == str(actor)
        assert record["requisition_id"] == str(requisition)

    def test_procurement_error_fields_extracted(self):
        from procurement_kernel.exceptions import InsufficientPermissionError

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InsufficientPermissionError("actor-1", "finance", "approver", 0)
        except InsufficientPermissionError:
            get_logger("test").error("decision_refused", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INSUFFICIENT_PERMISSION"
        assert record["exc_type"] == "InsufficientPermissionError"
        assert record["exc_required_role"] == "approver"
        assert record["exc_level"] == 0
        assert "traceback" in record

    def test_decimal_and_uuid_serialized(self):
        from decimal import Decimal

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("amounts", extra={"department_id": uid, "committed": Decimal("12.50")})

        record = _parse_log(stream)
        assert record["department_id"] == str(uid)
        assert record["committed"] == "12.50"

    def test_default_level_drops_debug(self):
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
    def test_set_and_clear(self):
        LogContext.set(correlation_id="x", department_id="d")
        assert LogContext.get_all() == {"correlation_id": "x", "department_id": "d"}
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_outer_value(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner"):
            assert LogContext.get_all()["actor_id"] == "inner"
        assert LogContext.get_all()["actor_id"] == "outer"

    def test_bind_ignores_none(self):
        with LogContext.bind(actor_id=None, purchase_order_id="po"):
            assert LogContext.get_all() == {"purchase_order_id": "po"}
        assert LogContext.get_all() == {}

    def test_unknown_field(self):
        with pytest.raises(KeyError):
            LogContext.set(journal_id="x")


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        before = list(logging.getLogger("procurement_kernel").handlers)
        h2, _ = _make_handler()
        configure_logging(handler=h2)

        handlers = logging.getLogger("procurement_kernel").handlers
        assert handlers == before
        structured = [h for h in handlers if isinstance(h.formatter, StructuredFormatter)]
        assert structured == [h1]

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("services.requisition").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "procurement_kernel.services.requisition"
