"""
Pytest configuration for the selfupgrade tests.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

from selfupgrade.config import AppConfig, LoggingConfig, UpgradeConfig


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Configuration whose downloads and logs live under tmp_path."""
    return AppConfig(
        upgrade=UpgradeConfig(
            package_name="selfupgrade",
            downloads_dir=str(tmp_path / "downloads"),
            min_free_disk_mb=0,
        ),
        logging=LoggingConfig(log_dir=str(tmp_path / "logs")),
    )


@pytest.fixture
def live_foreign_pid() -> Iterator[int]:
    """PID of a running process other than the test process."""
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
    try:
        yield proc.pid
    finally:
        proc.kill()
        proc.wait()


@pytest.fixture(autouse=True)
def _cleanup_loggers() -> Iterator[None]:
    """Restore the package logger after a test configured it."""
    yield
    logger = logging.getLogger("selfupgrade")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
