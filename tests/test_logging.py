"""
Tests for the logging module.

This test module validates:
- JSON-formatted structured logging output
- Logger configuration and setup
- Logger naming
"""

from __future__ import annotations

import json
import logging
import sys
from io import StringIO

from source_rcon.config import LoggingConfig
from source_rcon.logging import JSONFormatter, get_logger, setup_logging


def _record(msg: str = "Test message", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test_logger",
        level=logging.INFO,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Tests for JSONFormatter class."""

    def test_format_basic_log_record(self) -> None:
        """Test formatting a basic log record as JSON."""
        parsed = json.loads(JSONFormatter().format(_record()))

        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test_logger"
        assert parsed["message"] == "Test message"
        assert "timestamp" in parsed

    def test_format_with_extra_fields(self) -> None:
        """Test extra fields become top-level keys."""
        parsed = json.loads(
            JSONFormatter().format(_record("Client connected", peer="127.0.0.1:5000"))
        )
        assert parsed["peer"] == "127.0.0.1:5000"

    def test_none_extra_fields_skipped(self) -> None:
        """Test extra fields with None values are omitted."""
        parsed = json.loads(JSONFormatter().format(_record(error=None)))
        assert "error" not in parsed

    def test_format_exception(self) -> None:
        """Test exception info is included."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        parsed = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in parsed["exception"]

    def test_non_serializable_extra(self) -> None:
        """Test non-JSON values are stringified."""
        parsed = json.loads(JSONFormatter().format(_record(ids={7})))
        assert parsed["ids"] == "{7}"


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_default_setup(self) -> None:
        """Test the package logger gets one JSON handler."""
        logger = setup_logging(level="DEBUG")
        assert logger.name == "source_rcon"
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.propagate is False

    def test_setup_from_config(self) -> None:
        """Test a LoggingConfig drives level and format."""
        logger = setup_logging(LoggingConfig(level="warning", json_format=False))
        assert logger.level == logging.WARNING
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_repeated_setup_does_not_duplicate_handlers(self) -> None:
        """Test calling setup twice keeps one handler."""
        setup_logging()
        logger = setup_logging()
        assert len(logger.handlers) == 1

    def test_child_logger_output(self) -> None:
        """Test module loggers write through the package handler."""
        logger = setup_logging(level="INFO")
        stream = StringIO()
        logger.handlers[0].setStream(stream)

        get_logger("source_rcon.protocol").info("Frame sent", extra={"size": 12})

        parsed = json.loads(stream.getvalue())
        assert parsed["logger"] == "source_rcon.protocol"
        assert parsed["size"] == 12


class TestGetLogger:
    """Tests for get_logger()."""

    def test_prefix_added(self) -> None:
        """Test names outside the package get the prefix."""
        assert get_logger("tests.helpers").name == "source_rcon.tests.helpers"

    def test_server_package_maps_to_server(self) -> None:
        """Test server modules log under source_rcon.server."""
        assert get_logger("source_rcon_server.server").name == (
            "source_rcon.server.server"
        )
        assert get_logger("source_rcon_server.connection").name == (
            "source_rcon.server.connection"
        )
        assert get_logger("source_rcon_server").name == "source_rcon.server"

    def test_prefix_not_duplicated(self) -> None:
        """Test package names are kept as-is."""
        assert get_logger("source_rcon.client").name == "source_rcon.client"
        assert get_logger("source_rcon").name == "source_rcon"
