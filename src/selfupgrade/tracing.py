"""
Activity tracing on top of the package's structured logging.

A Tracer is a thin wrapper over a named logger. Activities are nested named
scopes: entering one logs a start event, leaving it logs a stop event with the
elapsed time, and the yielded child tracer logs under the activity's name so
every event in a log file can be attributed to the step that emitted it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from selfupgrade.logging import ROOT_LOGGER_NAME, add_log_file_handler, get_logger

UPGRADE_PROCESS_LOG_TYPE = "upgrade_process"
INSTALLER_LOG_TYPE = "installer"
LOG_FILE_PREFIX = "selfupgrade"


def new_log_file_path(log_dir: Path, log_type: str, log_id: str) -> Path:
    """
    Build a log file path that does not collide with an existing file.

    Names look like ``selfupgrade_<log_type>_<log_id>.log``; when that name is
    taken, ``_1``, ``_2`` ... is appended before the extension.
    """
    stem = f"{LOG_FILE_PREFIX}_{log_type}_{log_id}"
    candidate = log_dir / f"{stem}.log"
    counter = 1
    while candidate.exists():
        candidate = log_dir / f"{stem}_{counter}.log"
        counter += 1
    return candidate


class Tracer:
    """Structured event logging with nested named activities."""

    def __init__(self, logger: logging.Logger, activity: str | None = None) -> None:
        self._logger = logger
        self._activity = activity
        self._handlers: list[logging.Handler] = []

    @classmethod
    def create(cls, name: str = "UpgradeProcess") -> Tracer:
        """Create a tracer logging under ``selfupgrade.<name>``."""
        return cls(get_logger(f"{ROOT_LOGGER_NAME}.{name}"))

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def add_log_file_listener(self, path: Path, level: int = logging.INFO) -> Path:
        """Write every event at ``level`` or above to ``path`` as JSON lines."""
        handler = add_log_file_handler(path, level)
        self._handlers.append(handler)
        return path

    def close(self) -> None:
        """Detach and close the log files attached by this tracer."""
        root = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in self._handlers:
            root.removeHandler(handler)
            handler.close()
        self._handlers.clear()

    def _extra(self, metadata: dict[str, Any] | None) -> dict[str, Any]:
        extra: dict[str, Any] = {}
        if self._activity:
            extra["activity"] = self._activity
        if metadata:
            extra["metadata"] = dict(metadata)
        return extra

    def related_event(
        self,
        level: int,
        event_name: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._logger.log(level, event_name, extra=self._extra(metadata))

    def related_info(self, message: str, *args: Any) -> None:
        self._logger.info(message, *args, extra=self._extra(None))

    def related_warning(
        self, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        self._logger.warning(message, extra=self._extra(metadata))

    def related_error(
        self, metadata: dict[str, Any] | None, message: str, *args: Any
    ) -> None:
        self._logger.error(message, *args, extra=self._extra(metadata))

    @contextmanager
    def start_activity(
        self,
        name: str,
        level: int = logging.INFO,
        metadata: dict[str, Any] | None = None,
    ) -> Iterator[Tracer]:
        """
        Scope a block of work as a named activity.

        Args:
            name: Activity name, also used as the child logger suffix.
            level: Level of the start/stop events.
            metadata: Attached to both the start and the stop event.

        Yields:
            A child tracer whose events carry the activity name.
        """
        child = Tracer(self._logger.getChild(name), activity=name)
        started = time.monotonic()
        child.related_event(level, f"{name} started", metadata)
        try:
            yield child
        finally:
            stop_metadata = dict(metadata or {})
            stop_metadata["duration_ms"] = round((time.monotonic() - started) * 1000, 1)
            child.related_event(level, f"{name} stopped", stop_metadata)
