"""Tests for the structured logging system (docflow_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from docflow_kernel.domain.document import DocumentStatus
from docflow_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's configuration."""
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
    """Parse all JSON log lines from a stream."""
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
        assert record["logger"] == "docflow.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("document_claimed", extra={"document_id": "d-1", "claims": 2})

        record = _parse_log(stream)
        assert record["document_id"] == "d-1"
        assert record["claims"] == 2

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        with LogContext.bind(correlation_id="abc-123", document_id="doc-456"):
            logger.info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["document_id"] == "doc-456"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_docflow_exception_code_extracted(self):
        """Docflow exceptions carry .code and .category attributes."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from docflow_kernel.exceptions import LeaseHeldError

        try:
            raise LeaseHeldError("doc-1", "reviewer-9")
        except LeaseHeldError:
            logger.error("claim_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "LEASE_HELD"
        assert record["exc_category"] == "conflict"
        assert record["exc_type"] == "LeaseHeldError"
        assert record["exc_document_id"] == "doc-1"
        assert record["exc_holder_id"] == "reviewer-9"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "actor_id" not in record

    def test_domain_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        uid = uuid4()
        logger.info(
            "with_values",
            extra={"entry_id": uid, "amount": Decimal("12.50"), "to_status": DocumentStatus.SETTLED},
        )

        record = _parse_log(stream)
        assert record["entry_id"] == str(uid)
        assert record["amount"] == "12.50"
        assert record["to_status"] == "settled"

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
            assert "ts" in record
            assert "level" in record
            assert "logger" in record
            assert "message" in record


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_bind_and_get(self):
        with LogContext.bind(actor_id="y", correlation_id="x", document_id=None):
            ctx = LogContext.get_all()
        assert ctx == {"correlation_id": "x", "actor_id": "y"}
        assert list(ctx) == ["correlation_id", "actor_id"]

    def test_clear(self):
        with LogContext.bind(correlation_id="x"):
            LogContext.clear()
            assert LogContext.get_all() == {}

    def test_nested_bind_restores_outer(self):
        with LogContext.bind(correlation_id="outer"):
            with LogContext.bind(correlation_id="inner", actor_id="a"):
                assert LogContext.get_all()["correlation_id"] == "inner"
            assert LogContext.get_all() == {"correlation_id": "outer"}

    def test_bind_restores_none(self):
        """bind() restores to None if there was no previous value."""
        assert "correlation_id" not in LogContext.get_all()
        with LogContext.bind(correlation_id="temp"):
            assert LogContext.get_all()["correlation_id"] == "temp"
        assert "correlation_id" not in LogContext.get_all()

    def test_bind_stringifies_and_ignores_unknown_fields(self):
        document_id = uuid4()
        with LogContext.bind(document_id=document_id, unknown_field="z"):
            ctx = LogContext.get_all()
        assert ctx == {"document_id": str(document_id)}

    def test_all_fields(self):
        with LogContext.bind(**{name: name[0] for name in CONTEXT_FIELDS}):
            ctx = LogContext.get_all()
        assert list(ctx) == list(CONTEXT_FIELDS)
        assert ctx["instrument_id"] == "i"


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
        root = logging.getLogger("docflow")
        assert h1 in root.handlers
        assert h2 not in root.handlers

    def test_get_logger_returns_child(self):
        logger = get_logger("services.lease")
        assert logger.name == "docflow.services.lease"

    def test_logger_hierarchy(self):
        """Child loggers inherit the docflow root config."""
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        child = get_logger("deep.nested.module")
        child.debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "docflow.deep.nested.module"
