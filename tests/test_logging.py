"""
Tests for the logging module.

This test module validates:
- JSON-formatted structured logging output
- Console logger setup
- Log file handlers
- Logger naming
"""

from __future__ import annotations

import json
import logging
import sys
from io import StringIO
from pathlib import Path

from selfupgrade.config import LoggingConfig
from selfupgrade.logging import (
    JSONFormatter,
    add_log_file_handler,
    get_logger,
    setup_logging,
)


def _record(msg: str = "Test message", *args: object, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test_logger",
        level=logging.INFO,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=args,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# =============================================================================
# Tests for JSONFormatter
# =============================================================================


class TestJSONFormatter:
    """Tests for JSONFormatter class."""

    def test_format_basic_log_record(self) -> None:
        """Test formatting a basic log record as JSON."""
        parsed = json.loads(JSONFormatter().format(_record()))

        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test_logger"
        assert parsed["message"] == "Test message"
        assert "timestamp" in parsed

    def test_format_with_message_args(self) -> None:
        """Test %-style arguments are interpolated."""
        parsed = json.loads(JSONFormatter().format(_record("Installing %s", "2.3.0")))
        assert parsed["message"] == "Installing 2.3.0"

    def test_format_with_extra_fields(self) -> None:
        """Test extra fields are included and None values dropped."""
        record = _record(
            activity="download_upgrade",
            metadata={"Upgrade Step": "download"},
            empty=None,
        )
        parsed = json.loads(JSONFormatter().format(record))

        assert parsed["activity"] == "download_upgrade"
        assert parsed["metadata"] == {"Upgrade Step": "download"}
        assert "empty" not in parsed

    def test_format_non_serializable_extra(self) -> None:
        """Test values JSON cannot encode fall back to str()."""
        parsed = json.loads(JSONFormatter().format(_record(path=Path("/tmp/x"))))
        assert parsed["path"] == "/tmp/x"

    def test_format_with_exception(self) -> None:
        """Test exception info is rendered."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                name="test_logger",
                level=logging.ERROR,
                pathname="test.py",
                lineno=10,
                msg="failed",
                args=(),
                exc_info=sys.exc_info(),
            )

        parsed = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in parsed["exception"]


# =============================================================================
# Tests for setup_logging
# =============================================================================


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_setup_logging_returns_package_logger(self) -> None:
        """Test the package root logger is returned."""
        logger = setup_logging()
        assert logger.name == "selfupgrade"
        assert logger.propagate is False

    def test_console_handler_writes_to_stderr(self) -> None:
        """Test console output never goes to stdout."""
        logger = setup_logging(level="debug")

        assert len(logger.handlers) == 1
        handler = logger.handlers[0]
        assert isinstance(handler, logging.StreamHandler)
        assert handler.stream is sys.stderr
        assert handler.level == logging.DEBUG

    def test_setup_logging_json_format(self) -> None:
        """Test JSON formatting on the console."""
        logger = setup_logging(json_format=True)
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_setup_logging_without_console(self) -> None:
        """Test console logging can be switched off."""
        assert setup_logging(log_to_console=False).handlers == []

    def test_setup_logging_clears_existing_handlers(self) -> None:
        """Test repeated setup does not duplicate handlers."""
        setup_logging()
        assert len(setup_logging().handlers) == 1

    def test_setup_with_logging_config(self) -> None:
        """Test a LoggingConfig drives the console handler."""
        logger = setup_logging(LoggingConfig(level="error", json_console=True))

        handler = logger.handlers[0]
        assert handler.level == logging.ERROR
        assert isinstance(handler.formatter, JSONFormatter)


# =============================================================================
# Tests for add_log_file_handler
# =============================================================================


class TestLogFileHandler:
    """Tests for add_log_file_handler."""

    def test_writes_json_lines(self, tmp_path: Path) -> None:
        """Test events reach the file as JSON lines."""
        path = tmp_path / "logs" / "upgrade.log"
        handler = add_log_file_handler(path, logging.INFO)

        get_logger("tests").info("hello", extra={"version": "2.3.0"})
        get_logger("tests").debug("too detailed")
        handler.flush()

        lines = path.read_text().splitlines()
        assert len(lines) == 1
        entry = json.loads(lines[0])
        assert entry["message"] == "hello"
        assert entry["version"] == "2.3.0"

    def test_file_level_independent_of_console(self, tmp_path: Path) -> None:
        """Test a quiet console does not silence the log file."""
        console = StringIO()
        logger = setup_logging(level="error")
        logger.handlers[0].setStream(console)

        path = tmp_path / "upgrade.log"
        handler = add_log_file_handler(path, logging.INFO)
        get_logger("tests").info("file only")
        handler.flush()

        assert console.getvalue() == ""
        assert "file only" in path.read_text()


# =============================================================================
# Tests for get_logger
# =============================================================================


class TestGetLogger:
    """Tests for get_logger function."""

    def test_get_logger_adds_prefix(self) -> None:
        """Test the package prefix is added."""
        assert get_logger("custom_module").name == "selfupgrade.custom_module"

    def test_get_logger_does_not_duplicate_prefix(self) -> None:
        """Test an already-prefixed name is kept."""
        assert get_logger("selfupgrade.orchestrator").name == "selfupgrade.orchestrator"

    def test_get_logger_is_child_of_package_logger(self) -> None:
        """Test module loggers inherit the package handlers."""
        assert get_logger("test").parent is logging.getLogger("selfupgrade")
