"""
Tests for structured logging module.
"""

import json
import logging
import sys

import pytest

from screepsapi.core.exceptions import DecodeError
from screepsapi.core.structured_logging import (
    JSONFormatter,
    configure_logging,
    generate_trace_id,
    get_trace_id,
    set_trace_id,
)


def make_record(msg="Test", level=logging.INFO, exc_info=None, lineno=1, name="test"):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=lineno,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_basic_formatting(self):
        """Test basic JSON log formatting."""
        formatter = JSONFormatter()

        output = formatter.format(make_record("Test message", name="screepsapi.socket", lineno=10))
        log_data = json.loads(output)

        assert log_data["level"] == "INFO"
        assert log_data["logger"] == "screepsapi.socket"
        assert log_data["message"] == "Test message"
        assert "timestamp" in log_data
        assert log_data["source"]["line"] == 10

    def test_timestamp_optional(self):
        """Test timestamp can be disabled."""
        formatter = JSONFormatter(include_timestamp=False)

        log_data = json.loads(formatter.format(make_record()))

        assert "timestamp" not in log_data

    def test_exception_formatting(self):
        """Test exception info is included."""
        formatter = JSONFormatter(include_traceback=True)

        try:
            raise ValueError("Test error")
        except ValueError:
            exc_info = sys.exc_info()

        log_data = json.loads(formatter.format(make_record(level=logging.ERROR, exc_info=exc_info)))

        assert log_data["exception"]["type"] == "ValueError"
        assert log_data["exception"]["message"] == "Test error"
        assert "traceback" in log_data["exception"]

    def test_exception_without_traceback(self):
        """Test exception without traceback."""
        formatter = JSONFormatter(include_traceback=False)

        try:
            raise RuntimeError("Runtime error")
        except RuntimeError:
            exc_info = sys.exc_info()

        log_data = json.loads(formatter.format(make_record(level=logging.ERROR, exc_info=exc_info)))

        assert "traceback" not in log_data["exception"]

    def test_extra_fields(self):
        """Test global extra fields are included."""
        formatter = JSONFormatter(extra_fields={"service": "screeps-bot", "version": "1.0"})

        log_data = json.loads(formatter.format(make_record()))

        assert log_data["service"] == "screeps-bot"
        assert log_data["version"] == "1.0"

    def test_record_extra_fields(self):
        """Test extra fields from log record."""
        formatter = JSONFormatter()
        record = make_record()
        record.topic = "user:u1/console"
        record.attempt = 3

        log_data = json.loads(formatter.format(record))

        assert log_data["topic"] == "user:u1/console"
        assert log_data["attempt"] == 3

    def test_trace_id_included(self):
        """Test trace ID is included when set."""
        formatter = JSONFormatter()
        set_trace_id("abc123")

        log_data = json.loads(formatter.format(make_record()))

        assert log_data["trace_id"] == "abc123"

    def test_indent_option(self):
        formatter = JSONFormatter(indent=2)

        assert "\n" in formatter.format(make_record())

    def test_serialization_of_complex_types(self):
        """Test nested values, objects and library errors are serialized."""
        formatter = JSONFormatter()
        record = make_record()
        record.data = {"nested": {"list": [1, 2, 3]}}
        record.obj = object()
        record.error = DecodeError("bad frame", frame="gz:xyz")

        log_data = json.loads(formatter.format(record))

        assert log_data["data"] == {"nested": {"list": [1, 2, 3]}}
        assert isinstance(log_data["obj"], str)
        assert log_data["error"]["error_code"] == "DECODE_ERROR"


class TestTraceId:
    """Tests for trace ID functions."""

    def test_generate_trace_id(self):
        trace_id = generate_trace_id()

        assert len(trace_id) == 8
        assert get_trace_id() == trace_id

    def test_get_trace_id(self):
        set_trace_id("test123")
        assert get_trace_id() == "test123"

    def test_trace_id_uniqueness(self):
        ids = [generate_trace_id() for _ in range(100)]
        assert len(set(ids)) == 100


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json_format(self, restore_root_logger):
        configure_logging(level=logging.DEBUG, json_format=True)

        assert restore_root_logger.level == logging.DEBUG
        assert isinstance(restore_root_logger.handlers[0].formatter, JSONFormatter)

    def test_text_format(self, restore_root_logger):
        configure_logging(level=logging.INFO, json_format=False)

        assert not isinstance(restore_root_logger.handlers[0].formatter, JSONFormatter)

    def test_extra_fields_propagation(self, restore_root_logger):
        configure_logging(json_format=True, extra_fields={"environment": "test"})

        assert restore_root_logger.handlers[0].formatter.extra_fields["environment"] == "test"

    def test_log_file(self, restore_root_logger, tmp_path):
        log_file = tmp_path / "logs" / "screeps.log"

        configure_logging(json_format=True, log_file=str(log_file))
        logging.getLogger("screepsapi.test").warning("hello")
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert json.loads(log_file.read_text().splitlines()[-1])["message"] == "hello"
        for handler in restore_root_logger.handlers:
            if isinstance(handler, logging.FileHandler):
                handler.close()
