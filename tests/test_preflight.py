"""
Tests for pre-upgrade environment checks.

Tests cover:
- Downloads directory creation and writability
- Free disk space threshold
- Blocking process detection (psutil mocked)
"""

from __future__ import annotations

import os
from collections import namedtuple
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import psutil
import pytest

from selfupgrade import preflight
from selfupgrade.config import AppConfig
from selfupgrade.errors import FailedPreconditionError
from selfupgrade.preflight import PreflightChecker
from selfupgrade.tracing import Tracer
from selfupgrade.upgrades import DownloadArea

DiskUsage = namedtuple("DiskUsage", ["total", "used", "free"])
MIB = 1024 * 1024


def _proc(pid: int, name: str, cmdline: list[str] | None = None) -> MagicMock:
    proc = MagicMock()
    proc.info = {"pid": pid, "name": name, "cmdline": cmdline or [name]}
    return proc


@pytest.fixture
def make_checker(app_config: AppConfig) -> Any:
    def _make(**overrides: Any) -> PreflightChecker:
        config = app_config.upgrade.model_copy(update=overrides)
        return PreflightChecker(
            Tracer.create("TestPreflight"), config, DownloadArea(config.downloads_dir)
        )

    return _make


@pytest.fixture
def processes(monkeypatch: pytest.MonkeyPatch) -> list[MagicMock]:
    """Running processes as seen by psutil; the test process has no parents."""
    running: list[MagicMock] = []
    monkeypatch.setattr(preflight.psutil, "process_iter", lambda attrs: iter(running))
    me = MagicMock()
    me.parents.return_value = []
    monkeypatch.setattr(preflight.psutil, "Process", lambda: me)
    return running


# =============================================================================
# Environment Checks
# =============================================================================


class TestPreUpgradeChecks:
    """Tests for try_run_pre_upgrade_checks."""

    def test_passes_and_creates_directory(self, make_checker: Any) -> None:
        checker = make_checker()
        assert checker.try_run_pre_upgrade_checks().success is True
        assert checker.downloads.path.is_dir()

    def test_insufficient_disk_space(
        self, make_checker: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test the free space threshold is enforced."""
        monkeypatch.setattr(
            preflight.shutil, "disk_usage", lambda path: DiskUsage(1000 * MIB, 990 * MIB, 10 * MIB)
        )

        result = make_checker(min_free_disk_mb=100).try_run_pre_upgrade_checks()

        assert result.success is False
        assert "Not enough free disk space" in result.message
        assert "10 MiB available, 100 MiB required" in result.message

    def test_unwritable_directory(
        self, make_checker: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(preflight.os, "access", lambda path, mode: False)

        result = make_checker().try_run_pre_upgrade_checks()
        assert result.success is False
        assert "Cannot write to the downloads directory" in result.message

    def test_directory_cannot_be_created(
        self, make_checker: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        checker = make_checker()

        def _refuse() -> Path:
            raise FailedPreconditionError("Failed to create directory: /nope")

        monkeypatch.setattr(checker.downloads, "ensure", _refuse)

        result = checker.try_run_pre_upgrade_checks()
        assert result.success is False
        assert result.message == "Failed to create directory: /nope"


# =============================================================================
# Blocking Processes
# =============================================================================


class TestBlockingProcesses:
    """Tests for is_installation_blocked_by_running_process."""

    def test_nothing_running(self, make_checker: Any, processes: list[MagicMock]) -> None:
        processes.append(_proc(100, "bash"))
        assert make_checker().is_installation_blocked_by_running_process().success is True

    def test_blocking_process_found(
        self, make_checker: Any, processes: list[MagicMock]
    ) -> None:
        """Test a running instance of the tool blocks installation."""
        processes.extend([_proc(100, "bash"), _proc(200, "selfupgrade.exe")])

        result = make_checker().is_installation_blocked_by_running_process()

        assert result.success is False
        assert "selfupgrade (pid 200)" in result.message
        assert "Close them and run the upgrade again." in result.message

    def test_console_script_under_python(
        self, make_checker: Any, processes: list[MagicMock]
    ) -> None:
        """Test a console script is recognized through the interpreter's cmdline."""
        processes.append(
            _proc(300, "python3", ["/usr/bin/python3", "/home/u/.local/bin/mytool", "watch"])
        )

        blocking = make_checker(blocking_processes=["mytool"]).find_blocking_processes()
        assert blocking == [("mytool", 300)]

    def test_own_process_is_ignored(
        self, make_checker: Any, processes: list[MagicMock]
    ) -> None:
        """Test the upgrading process never blocks itself."""
        processes.append(_proc(os.getpid(), "selfupgrade"))
        assert make_checker().find_blocking_processes() == []

    def test_parent_process_is_ignored(
        self, make_checker: Any, processes: list[MagicMock], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        parent = MagicMock(pid=42)
        me = MagicMock()
        me.parents.return_value = [parent]
        monkeypatch.setattr(preflight.psutil, "Process", lambda: me)
        processes.append(_proc(42, "selfupgrade"))

        assert make_checker().find_blocking_processes() == []

    def test_no_blocking_names_configured(
        self, make_checker: Any, processes: list[MagicMock]
    ) -> None:
        processes.append(_proc(200, "selfupgrade"))
        assert make_checker(blocking_processes=[]).find_blocking_processes() == []

    def test_process_listing_error(
        self, make_checker: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test a psutil failure fails the check rather than passing it."""

        def _denied(attrs: list[str]) -> Any:
            raise psutil.AccessDenied()

        monkeypatch.setattr(preflight.psutil, "process_iter", _denied)

        result = make_checker().is_installation_blocked_by_running_process()
        assert result.success is False
        assert "Unable to list running processes" in result.message
