"""
Structured logging for the self-upgrade orchestrator.

Features:
- JSON-formatted log output (one object per line) for machine-readable logs
- Consistent field structure across all log entries
- Console logging to stderr, kept off stdout so user-facing text stays clean
- Per-attempt log files attached through :func:`add_log_file_handler`
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from selfupgrade.config import LoggingConfig

ROOT_LOGGER_NAME = "selfupgrade"

# Default log format for non-JSON console output
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JSONFormatter(logging.Formatter):
    """
    A logging formatter that outputs log records as JSON objects.

    Each log record is formatted as a JSON object with consistent fields:
    - timestamp: ISO 8601 formatted timestamp in UTC
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - logger: Logger name
    - message: Log message
    - Additional fields from the record's extra dict
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            JSON-formatted string representation of the log record.
        """
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in set(record.__dict__.keys()) - _RESERVED_RECORD_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = False,
    log_to_console: bool = True,
) -> logging.Logger:
    """
    Configure the console side of the logging system.

    Per-attempt log files are attached later by the orchestrator's tracer;
    this only decides what reaches the terminal.

    Args:
        config: Optional LoggingConfig object with logging settings.
            If provided, overrides other parameters.
        level: Default console log level if no config is provided.
        json_format: Whether to use JSON formatting on the console.
        log_to_console: Whether to log to stderr at all.

    Returns:
        The root logger configured for the selfupgrade package.

    Example:
        >>> from selfupgrade.logging import setup_logging
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("Starting upgrade", extra={"dry_run": True})
    """
    if config is not None:
        log_level = config.level.upper()
        json_format = config.json_console
        log_to_console = config.log_to_console
    else:
        log_level = level.upper()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    # The logger itself passes everything; handlers filter by their own level
    logger.setLevel(logging.DEBUG)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    if log_to_console:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(getattr(logging, log_level, logging.INFO))

        if json_format:
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))

        logger.addHandler(handler)

    # Prevent propagation to root logger to avoid duplicate logs
    logger.propagate = False

    return logger


def add_log_file_handler(
    path: Path,
    level: int = logging.INFO,
    logger_name: str = ROOT_LOGGER_NAME,
) -> logging.FileHandler:
    """
    Attach a JSON file handler to a logger.

    Args:
        path: Log file path. The parent directory is created if missing.
        level: Minimum level written to the file.
        logger_name: Logger to attach to (defaults to the package root).

    Returns:
        The attached handler, so callers can detach and close it.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())

    logger = logging.getLogger(logger_name)
    if logger.level == logging.NOTSET or logger.level > level:
        logger.setLevel(level)
    logger.addHandler(handler)
    return handler


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: The name for the logger, typically __name__ of the calling module.
            The "selfupgrade." prefix is added automatically if not present.

    Returns:
        A configured logger instance.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
