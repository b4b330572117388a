"""
Upgrader abstraction for the self-upgrade orchestrator.

This module defines the ProductUpgrader abstract base class that all upgrade
backends implement, and the StepResult model every fallible step returns.

Backends implement small hooks that raise UpgradeError subclasses. The public
``try_*`` methods wrap those hooks, log failures and turn them into failed
StepResults, so callers only ever look at explicit results.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from selfupgrade.errors import UpgradeError

if TYPE_CHECKING:
    from selfupgrade.config import UpgradeOptions
    from selfupgrade.progress import ProgressRunner
    from selfupgrade.tracing import Tracer
    from selfupgrade.upgrades.downloads import DownloadArea


class StepResult(BaseModel):
    """
    Outcome of one fallible upgrade step.

    A StepResult is truthy when the step succeeded.

    Attributes:
        success: Whether the step succeeded.
        message: Human-readable detail; the error text on failure.
        version: Version resolved by a version query, if any.
    """

    model_config = ConfigDict(frozen=True)

    success: bool = Field(..., description="Whether the step succeeded")
    message: str | None = Field(default=None, description="Human-readable detail")
    version: str | None = Field(default=None, description="Resolved version")

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, message: str | None = None, version: str | None = None) -> StepResult:
        return cls(success=True, message=message, version=version)

    @classmethod
    def failed(cls, message: str) -> StepResult:
        return cls(success=False, message=message)


class ProductUpgrader(ABC):
    """
    Abstract base class for upgrade backends.

    Upgrade backends are responsible for:
    - Deciding whether an upgrade may run right now
    - Finding the newest published version
    - Downloading (and verifying) it into the downloads area
    - Running the installer
    - Removing downloaded assets

    Attributes:
        upgrade_instance_id: Installation id of the current attempt, stamped by
            the orchestrator after construction so installer logs can be
            matched to the orchestrator's own log.
        newest_version: Version resolved by the last successful query.
    """

    def __init__(
        self,
        tracer: Tracer,
        downloads: DownloadArea,
        options: UpgradeOptions,
    ) -> None:
        self.tracer = tracer
        self.downloads = downloads
        self.options = options
        self.upgrade_instance_id: str | None = None
        self.newest_version: str | None = None

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _upgrade_blocked_reason(self) -> str | None:
        """Return why policy forbids an upgrade now, or None if it allows one."""

    @abstractmethod
    def _query_newest_version(self) -> tuple[str | None, str]:
        """
        Find the newest published version.

        Returns:
            ``(version, message)`` where version is None when nothing newer
            than the installed version exists.

        Raises:
            UpgradeError: If the query itself fails.
        """

    @abstractmethod
    def _download_newest_version(self) -> None:
        """Download the version found by the last query into the downloads area."""

    @abstractmethod
    def _run_installer(self) -> None:
        """Install the downloaded version."""

    def _cleanup(self) -> None:
        self.downloads.delete_all()

    def close(self) -> None:
        """Release resources held by the backend."""

    # ------------------------------------------------------------------
    # Public step interface
    # ------------------------------------------------------------------

    def _guard(self, step: str, action: Callable[[], StepResult]) -> StepResult:
        try:
            return action()
        except UpgradeError as e:
            self.tracer.related_error(
                {"Upgrade Step": step, **e.to_dict()},
                f"{step} failed. {e.message}",
            )
            return StepResult.failed(e.message)

    def upgrade_allowed(self) -> StepResult:
        """
        Succeeds when an upgrade may run; fails with the reason otherwise.

        An allowed attempt leaves holding the downloads lock, so a concurrent
        attempt is refused from this point on.
        """

        def _check() -> StepResult:
            reason = self._upgrade_blocked_reason()
            if reason:
                return StepResult.failed(reason)
            if not self.downloads.acquire_lock():
                return StepResult.failed(
                    "Another upgrade is already in progress "
                    f"(pid {self.downloads.lock_owner()}). Try again once it finishes."
                )
            return StepResult.ok()

        return self._guard("upgrade_allowed", _check)

    def try_query_newest_version(self) -> StepResult:
        """Succeeds with ``version`` set to the newer release, or None if up to date."""

        def _query() -> StepResult:
            version, message = self._query_newest_version()
            self.newest_version = version
            return StepResult.ok(message=message, version=version)

        return self._guard("try_query_newest_version", _query)

    def try_download_newest_version(self) -> StepResult:
        def _download() -> StepResult:
            self._download_newest_version()
            return StepResult.ok()

        return self._guard("try_download_newest_version", _download)

    def try_run_installer(self, progress_runner: ProgressRunner) -> StepResult:
        """Run the installer behind the same spinner used for downloading."""

        def _install() -> StepResult:
            self._run_installer()
            return StepResult.ok()

        label = f"Installing {self.newest_version}" if self.newest_version else "Installing"
        return progress_runner.run(
            lambda: self._guard("try_run_installer", _install), label
        )

    def try_cleanup(self) -> StepResult:
        def _clean() -> StepResult:
            self._cleanup()
            return StepResult.ok()

        return self._guard("try_cleanup", _clean)
