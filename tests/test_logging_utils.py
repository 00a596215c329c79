"""Tests for copyforce.logging_utils."""

import io
import json
import logging
import sys
from datetime import datetime, timezone

import pytest

from copyforce.logging_utils import (
    NOISY_LOGGERS,
    CorrelationIdFilter,
    JSONFormatter,
    get_logger,
    log_operation,
    setup_logging,
)


def _record(msg="msg", level=logging.INFO, exc_info=None, **extra):
    record = logging.LogRecord(
        name="copyforce.test", level=level, pathname="", lineno=0,
        msg=msg, args=(), exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    CorrelationIdFilter.set_correlation_id(None)


class TestJSONFormatter:
    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(_record("Copy table Account")))
        assert data["level"] == "INFO"
        assert data["logger"] == "copyforce.test"
        assert data["message"] == "Copy table Account"
        assert "timestamp" in data

    def test_extra_fields(self):
        data = json.loads(JSONFormatter().format(_record(table="Account", rows_written=12)))
        assert data["table"] == "Account"
        assert data["rows_written"] == 12

    def test_correlation_id(self):
        data = json.loads(JSONFormatter().format(_record(correlation_id="run-1")))
        assert data["correlation_id"] == "run-1"

    def test_missing_correlation_id_omitted(self):
        data = json.loads(JSONFormatter().format(_record(correlation_id=None)))
        assert "correlation_id" not in data

    def test_datetime_extra(self):
        data = json.loads(JSONFormatter().format(_record(start_time=datetime(2024, 1, 10, tzinfo=timezone.utc))))
        assert data["start_time"].startswith("2024-01-10")

    def test_unserializable_extra_becomes_string(self):
        data = json.loads(JSONFormatter().format(_record(tables={"Account"})))
        assert isinstance(data["tables"], str)

    def test_exception(self):
        try:
            raise ValueError("bad batch")
        except ValueError:
            exc_info = sys.exc_info()
        data = json.loads(JSONFormatter().format(_record(level=logging.ERROR, exc_info=exc_info)))
        assert "ValueError: bad batch" in data["exception"]


class TestCorrelationIdFilter:
    def test_stamps_record(self):
        CorrelationIdFilter.set_correlation_id("run-42")
        record = _record()
        assert CorrelationIdFilter().filter(record) is True
        assert record.correlation_id == "run-42"

    def test_generate(self):
        cid = CorrelationIdFilter.generate_correlation_id()
        assert len(cid) == 36
        assert CorrelationIdFilter.get_correlation_id() == cid


class TestSetupLogging:
    def test_defaults_to_stderr_at_error(self):
        setup_logging()
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.ERROR
        assert root.handlers[0].stream is sys.stderr

    def test_json_format(self):
        setup_logging(level="debug", json_format=True)
        assert isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)

    def test_writes_to_given_stream(self):
        stream = io.StringIO()
        setup_logging(level="INFO", stream=stream)
        get_logger("copyforce.test").info("Selected tables")
        assert "Selected tables" in stream.getvalue()

    def test_level_filters_messages(self):
        stream = io.StringIO()
        setup_logging(level="ERROR", stream=stream)
        get_logger("copyforce.test").info("hidden")
        assert stream.getvalue() == ""

    def test_third_party_loggers_quietened(self):
        setup_logging(level="DEBUG")
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING


class TestLogOperation:
    def test_logs_start_and_completion(self):
        stream = io.StringIO()
        setup_logging(level="INFO", json_format=True, stream=stream)
        with log_operation(get_logger("copyforce.test"), "extract_data", table_count=2):
            pass

        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert [line["message"] for line in lines] == ["Starting extract_data", "Completed extract_data"]
        assert lines[1]["table_count"] == 2
        assert "duration_ms" in lines[1]

    def test_failure_logged_and_reraised(self):
        stream = io.StringIO()
        setup_logging(level="INFO", json_format=True, stream=stream)
        with pytest.raises(RuntimeError, match="boom"):
            with log_operation(get_logger("copyforce.test"), "extract_schema"):
                raise RuntimeError("boom")

        last = json.loads(stream.getvalue().splitlines()[-1])
        assert last["message"] == "Failed extract_schema"
        assert last["error"] == "boom"

    def test_context_updates_reach_completion_record(self):
        stream = io.StringIO()
        setup_logging(level="INFO", json_format=True, stream=stream)
        with log_operation(get_logger("copyforce.test"), "parquet_write_table", table="Account") as ctx:
            ctx["rows_written"] = 25

        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert "rows_written" not in lines[0]
        assert lines[1]["rows_written"] == 25
        assert lines[1]["table"] == "Account"
