"""
Upgrade orchestrator: one end-to-end self-upgrade attempt.

The orchestrator owns the sequencing of an attempt, its exit code, and the
guarantee that downloaded assets are cleaned up however the attempt ends.

Sequence (each step gated on the previous one):
1. Eligibility check - not allowed is a successful no-op (INELIGIBLE)
2. Pre-upgrade checks - environment validation
3. Version query - nothing newer is a successful no-op (UP_TO_DATE)
4. Download
5. Blocking process check
6. Install
7. Cleanup - always, exactly once, via the attempt scope

Construction is two-phase. ``__init__`` only stores collaborators, because
command-line handling may build throwaway instances; the tracer (and with it
the log file) and the preflight checker are created by
``initialize_on_first_execute()``, which only ``execute()`` calls.

The exit code starts at SUCCESS and becomes GENERIC_ERROR the first time a
stage fails; it never reverts. Cleanup failures are logged and never touch it.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from datetime import datetime
from enum import Enum, IntEnum
from pathlib import Path
from typing import IO

from pydantic import BaseModel, Field

from selfupgrade.config import AppConfig, UpgradeOptions
from selfupgrade.errors import UpgradeError
from selfupgrade.git import GitCredentialStore, find_git_binary, get_git_version
from selfupgrade.logging import get_logger
from selfupgrade.preflight import PreflightChecker
from selfupgrade.progress import ProgressRunner
from selfupgrade.tracing import UPGRADE_PROCESS_LOG_TYPE, Tracer, new_log_file_path
from selfupgrade.upgrades import DownloadArea, ProductUpgrader, StepResult, create_upgrader
from selfupgrade.upgrades.version import get_installed_version

logger = get_logger(__name__)

UpgraderFactory = Callable[
    [AppConfig, GitCredentialStore, UpgradeOptions, Tracer], ProductUpgrader
]

INSTALLATION_ID_FORMAT = "%Y%m%d_%H%M%S"


class ExitCode(IntEnum):
    """Process exit status of an upgrade attempt."""

    SUCCESS = 0
    GENERIC_ERROR = 3


class UpgradeOutcome(str, Enum):
    """Why an attempt ended the way it did."""

    UPGRADED = "upgraded"
    INELIGIBLE = "ineligible"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"


class UpgradeAttemptResult(BaseModel):
    """
    Terminal outcome of one ``execute()`` call.

    Attributes:
        exit_code: Final exit code.
        outcome: Which path the attempt took.
        resolved_version: Installed version, only set for UPGRADED.
        error_message: User-facing error text, only set for FAILED.
        installation_id: Correlation id shared with the log files.
    """

    exit_code: ExitCode = Field(..., description="Final exit code")
    outcome: UpgradeOutcome = Field(..., description="Path the attempt took")
    resolved_version: str | None = Field(default=None, description="Installed version")
    error_message: str | None = Field(default=None, description="User-facing error text")
    installation_id: str = Field(..., description="Log correlation id")


class UpgradeOrchestrator:
    """
    Runs one self-upgrade attempt from eligibility check to cleanup.

    Collaborators passed to the constructor are used as-is; anything left as
    None is created on first execute (tracer, preflight checker) or during
    initialization (upgrader).
    """

    def __init__(
        self,
        options: UpgradeOptions | None = None,
        config: AppConfig | None = None,
        *,
        upgrader: ProductUpgrader | None = None,
        tracer: Tracer | None = None,
        preflight_checker: PreflightChecker | None = None,
        downloads: DownloadArea | None = None,
        progress_runner: ProgressRunner | None = None,
        upgrader_factory: UpgraderFactory = create_upgrader,
        git_locator: Callable[[], str | None] = find_git_binary,
        input: IO[str] | None = None,
        output: IO[str] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.options = options or UpgradeOptions()
        self.config = config or AppConfig()
        self.upgrader = upgrader
        self.tracer = tracer
        self.preflight_checker = preflight_checker
        self.downloads = downloads or DownloadArea(self.config.upgrade.downloads_dir)
        self._input = input if input is not None else sys.stdin
        self._output = output if output is not None else sys.stdout
        self.progress_runner = progress_runner or ProgressRunner(output=self._output)
        self._upgrader_factory = upgrader_factory
        self._git_locator = git_locator

        self.exit_code = ExitCode.SUCCESS
        self.installation_id = clock().strftime(INSTALLATION_ID_FORMAT)
        self.log_file_path: Path | None = None
        self.result: UpgradeAttemptResult | None = None

        self._first_execute_done = False
        self._owns_tracer = False

    @property
    def log_directory(self) -> Path:
        return Path(self.config.logging.log_dir)

    def _write(self, text: str = "") -> None:
        print(text, file=self._output)

    # ------------------------------------------------------------------
    # Two-phase construction
    # ------------------------------------------------------------------

    def initialize_on_first_execute(self) -> None:
        """Create the tracer (and its log file) and preflight checker, once."""
        if self._first_execute_done:
            return
        self._first_execute_done = True

        if self.tracer is None:
            self.tracer = self._create_tracer()
            self._owns_tracer = True

        if self.preflight_checker is None:
            self.preflight_checker = PreflightChecker(
                self.tracer, self.config.upgrade, self.downloads
            )

    def _create_tracer(self) -> Tracer:
        tracer = Tracer.create("UpgradeProcess")
        self.log_file_path = new_log_file_path(
            self.log_directory, UPGRADE_PROCESS_LOG_TYPE, self.installation_id
        )
        level = getattr(logging, self.config.logging.file_level.upper(), logging.INFO)
        tracer.add_log_file_listener(self.log_file_path, level)
        return tracer

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    def execute(self) -> ExitCode:
        """
        Run the upgrade attempt and report its outcome.

        Returns:
            The final exit code, also stored in ``self.result``.
        """
        self.initialize_on_first_execute()

        outcome = UpgradeOutcome.FAILED
        new_version: str | None = None
        error: str | None = None

        with ExitStack() as stack:
            stack.callback(self._close_tracer)
            stack.callback(self._release_upgrader)

            with self._upgrade_attempt():
                initialized = self._try_initialize()
                if initialized:
                    outcome, new_version, error = self._try_run_upgrade()
                else:
                    error = initialized.message

            if outcome is UpgradeOutcome.FAILED:
                self._set_failed()

            self._report(new_version, error)

        self.result = UpgradeAttemptResult(
            exit_code=self.exit_code,
            outcome=outcome,
            resolved_version=new_version,
            error_message=error,
            installation_id=self.installation_id,
        )

        self._wait_for_keypress()
        return self.exit_code

    def _set_failed(self) -> None:
        self.exit_code = ExitCode.GENERIC_ERROR

    def _report(self, new_version: str | None, error: str | None) -> None:
        if self.exit_code == ExitCode.GENERIC_ERROR:
            self._write()
            self._write(f"ERROR: {error}")
            self._write()
            self._write(
                f"Upgrade logs can be found at: {self.log_directory} with file names "
                f"that end with the installation ID: {self.installation_id}."
            )
        elif new_version is not None:
            self._write()
            if self.options.dry_run:
                self._write(f"Dry run completed successfully. {new_version} was not installed.")
            else:
                self._write("Upgrade completed successfully.")

    def _wait_for_keypress(self) -> None:
        if self._input is sys.stdin and sys.stdin.isatty():
            self._write("Press Enter to exit.")
            self._input.readline()

    def _release_upgrader(self) -> None:
        if self.upgrader is not None:
            self.upgrader.close()

    def _close_tracer(self) -> None:
        if self._owns_tracer and self.tracer is not None:
            self.tracer.close()

    @contextmanager
    def _upgrade_attempt(self) -> Iterator[None]:
        try:
            yield
        finally:
            self._delete_downloaded_assets()

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def _try_initialize(self) -> StepResult:
        if self.upgrader is not None:
            return StepResult.ok()

        git_path = self._git_locator()
        if not git_path:
            return StepResult.failed(
                "Unable to locate git installation. Ensure git is installed and try again."
            )

        credential_store = GitCredentialStore(git_path)
        try:
            upgrader = self._upgrader_factory(
                self.config, credential_store, self.options, self.tracer
            )
        except UpgradeError as e:
            self.tracer.related_error(
                {"Upgrade Step": "initialize", **e.to_dict()},
                f"Failed to create upgrader. {e.message}",
            )
            return StepResult.failed(e.message)

        # Installer logs land next to ours, tagged with the same id
        upgrader.upgrade_instance_id = self.installation_id
        self.upgrader = upgrader
        return StepResult.ok()

    # ------------------------------------------------------------------
    # Upgrade sequence
    # ------------------------------------------------------------------

    def _try_run_upgrade(self) -> tuple[UpgradeOutcome, str | None, str | None]:
        """
        Run steps 1-6.

        Returns:
            ``(outcome, new_version, error)``.
        """
        allowed = self.upgrader.upgrade_allowed()
        if not allowed:
            stale_error = self._delete_all_installer_downloads()
            if stale_error:
                self.tracer.related_warning(
                    f"Failed to delete stale downloads. {stale_error}",
                    {"Upgrade Step": "upgrade_allowed"},
                )
            self._write(allowed.message or "Upgrade is not allowed right now.")
            self.tracer.related_info("Upgrade not allowed. %s", allowed.message)
            return UpgradeOutcome.INELIGIBLE, None, None

        preflight = self.progress_runner.run(
            self.preflight_checker.try_run_pre_upgrade_checks,
            "Running pre-upgrade checks",
        )
        if not preflight:
            return UpgradeOutcome.FAILED, None, preflight.message

        self._log_installed_version_info()

        query = self._try_check_if_upgrade_available()
        if not query:
            return UpgradeOutcome.FAILED, None, query.message
        if query.version is None:
            return UpgradeOutcome.UP_TO_DATE, None, None

        new_version = query.version

        download = self.progress_runner.run(
            lambda: self._try_download_upgrade(new_version),
            "Downloading",
        )
        if not download:
            return UpgradeOutcome.FAILED, None, download.message

        blocking = self.progress_runner.run(
            self.preflight_checker.is_installation_blocked_by_running_process,
            "Checking for blocking processes",
        )
        if not blocking:
            return UpgradeOutcome.FAILED, None, blocking.message

        install = self.upgrader.try_run_installer(self.progress_runner)
        if not install:
            return UpgradeOutcome.FAILED, None, install.message

        return UpgradeOutcome.UPGRADED, new_version, None

    def _try_check_if_upgrade_available(self) -> StepResult:
        with self.tracer.start_activity("check_if_upgrade_available") as activity:
            query = self.upgrader.try_query_newest_version()
            if not query:
                self.tracer.related_error(
                    {"Upgrade Step": "check_if_upgrade_available"},
                    f"try_query_newest_version failed. {query.message}",
                )
                return query

            if query.version is None:
                if query.message:
                    self._write(query.message)
                self.tracer.related_info(
                    "No new upgrade releases available. %s", query.message or ""
                )
                return query

            activity.related_info(
                "New release found - latest available version: %s", query.version
            )
            return query

    def _try_download_upgrade(self, version: str) -> StepResult:
        metadata = {"Upgrade Step": "download_upgrade", "Version": version}
        with self.tracer.start_activity("download_upgrade", metadata=metadata) as activity:
            download = self.upgrader.try_download_newest_version()
            if not download:
                self.tracer.related_error(
                    metadata, f"try_download_newest_version failed. {download.message}"
                )
                return download

            activity.related_info("Successfully downloaded version: %s", version)
            return download

    def _log_installed_version_info(self) -> None:
        metadata = {
            "installed_version": get_installed_version(self.config.upgrade.package_name),
        }
        git_path = self._git_locator()
        if git_path:
            git_version = get_git_version(git_path)
            if git_version:
                metadata["installed_git_version"] = git_version
        self.tracer.related_event(logging.INFO, "Installed Version", metadata)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def _delete_all_installer_downloads(self) -> str | None:
        try:
            self.downloads.delete_all()
        except UpgradeError as e:
            return e.message
        return None

    def _delete_downloaded_assets(self) -> None:
        if self.upgrader is not None:
            cleanup = self.upgrader.try_cleanup()
            error = None if cleanup else cleanup.message
        else:
            error = self._delete_all_installer_downloads()

        if error:
            self.tracer.related_error(
                {
                    "Upgrade Step": "delete_downloaded_assets",
                    "Download cleanup error": error,
                },
                "delete_downloaded_assets failed.",
            )
