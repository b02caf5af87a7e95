# backend/tests/utils/test_logging.py
"""
Tests for logging configuration and correlation context.
"""

import json
import logging
import sys

import pytest

from roi_engine.utils.context import (
    clear_correlation_id,
    correlation_scope,
    get_correlation_id,
    new_correlation_id,
    set_correlation_id,
)
from roi_engine.utils.logging import (
    NO_CORRELATION_ID,
    CorrelationIdFilter,
    JsonFormatter,
    get_log_level,
    setup_logging,
)


def make_record(message: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("roi_engine.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationContext:
    """Tests for the correlation ID context."""

    def setup_method(self):
        clear_correlation_id()

    def test_set_and_clear(self):
        set_correlation_id("abc")
        assert get_correlation_id() == "abc"
        clear_correlation_id()
        assert get_correlation_id() is None

    def test_scope_restores_previous(self):
        set_correlation_id("outer")
        with correlation_scope("inner") as value:
            assert value == "inner"
            assert get_correlation_id() == "inner"
        assert get_correlation_id() == "outer"

    def test_scope_generates_id(self):
        with correlation_scope() as value:
            assert len(value) == 36

    def test_prefixed_id(self):
        assert new_correlation_id("cron").startswith("cron-")


class TestCorrelationIdFilter:
    """Tests for CorrelationIdFilter."""

    def test_stamps_current_id(self):
        record = make_record()
        with correlation_scope("req-1"):
            assert CorrelationIdFilter().filter(record) is True
        assert record.correlation_id == "req-1"

    def test_placeholder_outside_a_request(self):
        clear_correlation_id()
        record = make_record()
        CorrelationIdFilter().filter(record)
        assert record.correlation_id == NO_CORRELATION_ID


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_fields(self):
        record = make_record("recomputed", correlation_id="job-1", portfolio_key="t1_none_semi")
        entry = json.loads(JsonFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "roi_engine.test"
        assert entry["message"] == "recomputed"
        assert entry["correlation_id"] == "job-1"
        assert entry["extra"] == {"portfolio_key": "t1_none_semi"}

    def test_non_serializable_extra_is_stringified(self):
        record = make_record(payload=object())
        entry = json.loads(JsonFormatter().format(record))
        assert entry["extra"]["payload"].startswith("<object")

    def test_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        entry = json.loads(JsonFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]


class TestSetupLogging:
    """Tests for get_log_level() and setup_logging()."""

    @pytest.mark.parametrize("name,level", [("debug", logging.DEBUG), (" WARN ", logging.WARNING)])
    def test_get_log_level(self, name, level):
        assert get_log_level(name) == level

    def test_invalid_level(self):
        with pytest.raises(ValueError):
            get_log_level("LOUD")

    def test_configures_root_logger(self):
        root = logging.getLogger()
        previous_handlers, previous_level = list(root.handlers), root.level
        try:
            setup_logging(level="WARNING", log_format="json")

            assert root.level == logging.WARNING
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = previous_handlers
            root.setLevel(previous_level)
