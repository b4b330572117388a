"""
Pre-upgrade environment checks.

PreflightChecker validates the environment before anything is downloaded
(writable downloads directory, enough free disk space) and, just before the
installer runs, looks for running processes that would conflict with it.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Any

import psutil

from selfupgrade.errors import FailedPreconditionError
from selfupgrade.logging import get_logger
from selfupgrade.upgrades.base import StepResult

if TYPE_CHECKING:
    from selfupgrade.config import UpgradeConfig
    from selfupgrade.tracing import Tracer
    from selfupgrade.upgrades.downloads import DownloadArea

logger = get_logger(__name__)

_MIB = 1024 * 1024


def _normalize_process_name(name: str) -> str:
    base = Path(name).name.lower()
    for suffix in (".exe", ".py"):
        if base.endswith(suffix):
            return base[: -len(suffix)]
    return base


def _process_names(info: dict[str, Any]) -> set[str]:
    """Names a process may be known by: its executable and script names."""
    names = set()
    if info.get("name"):
        names.add(_normalize_process_name(info["name"]))
    # Console scripts run as "python /path/to/tool ..."
    for arg in (info.get("cmdline") or [])[:2]:
        if arg and not arg.startswith("-"):
            names.add(_normalize_process_name(arg))
    return names


class PreflightChecker:
    """
    Environment validation for an upgrade attempt.

    Attributes:
        config: Upgrade configuration (free space threshold, blocking processes).
        downloads: Downloads area the upgrade will write to.
    """

    def __init__(
        self,
        tracer: Tracer,
        config: UpgradeConfig,
        downloads: DownloadArea,
    ) -> None:
        self.tracer = tracer
        self.config = config
        self.downloads = downloads

    def try_run_pre_upgrade_checks(self) -> StepResult:
        """
        Check that the downloads directory is usable and has room.

        Returns:
            A successful result, or a failed one naming the first problem found.
        """
        try:
            path = self.downloads.ensure()
        except FailedPreconditionError as e:
            return self._fail("downloads_directory", e.message)

        if not os.access(path, os.W_OK):
            return self._fail(
                "downloads_directory",
                f"Cannot write to the downloads directory {path}. "
                "Check its permissions and try again.",
            )

        try:
            free_bytes = shutil.disk_usage(path).free
        except OSError as e:
            return self._fail("disk_space", f"Unable to determine free disk space: {e}")

        required_bytes = self.config.min_free_disk_mb * _MIB
        if free_bytes < required_bytes:
            return self._fail(
                "disk_space",
                f"Not enough free disk space in {path}: {free_bytes // _MIB} MiB "
                f"available, {self.config.min_free_disk_mb} MiB required.",
            )

        return StepResult.ok()

    def _excluded_pids(self) -> set[int]:
        excluded = {os.getpid()}
        try:
            excluded.update(p.pid for p in psutil.Process().parents())
        except psutil.Error as e:
            logger.debug(f"Unable to list parent processes: {e}")
        return excluded

    def find_blocking_processes(self) -> list[tuple[str, int]]:
        """Return ``(name, pid)`` for every running process that blocks install."""
        wanted = {_normalize_process_name(n) for n in self.config.blocking_processes}
        if not wanted:
            return []

        excluded = self._excluded_pids()
        blocking = []
        for proc in psutil.process_iter(["pid", "name", "cmdline"]):
            info = proc.info
            if info.get("pid") in excluded:
                continue
            matches = _process_names(info) & wanted
            if matches:
                blocking.append((sorted(matches)[0], info["pid"]))
        return sorted(blocking, key=lambda item: item[1])

    def is_installation_blocked_by_running_process(self) -> StepResult:
        """
        Succeeds when nothing blocks installation.

        Returns:
            A failed result listing the blocking processes otherwise.
        """
        try:
            blocking = self.find_blocking_processes()
        except psutil.Error as e:
            return self._fail("blocking_processes", f"Unable to list running processes: {e}")

        if not blocking:
            return StepResult.ok()

        listing = ", ".join(f"{name} (pid {pid})" for name, pid in blocking)
        return self._fail(
            "blocking_processes",
            f"Blocking processes are running: {listing}. "
            "Close them and run the upgrade again.",
        )

    def _fail(self, check: str, message: str) -> StepResult:
        self.tracer.related_error({"Upgrade Step": "preflight", "Check": check}, message)
        return StepResult.failed(message)
