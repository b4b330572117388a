"""
Python package upgrade backend.

This module implements the PythonPackageUpgrader, which upgrades a
Python-packaged command-line tool from a PyPI-compatible JSON index.

The upgrade flow:
1. upgrade_allowed: configuration gate plus the in-progress lock
2. try_query_newest_version: read ``<index_url>/<package>/json``
3. try_download_newest_version: stream the release file into the downloads
   area and verify its SHA-256 against the index
4. try_run_installer: ``uv pip install`` (preferred) or ``python -m pip install``
5. try_cleanup: remove the downloads area
"""

from __future__ import annotations

import shutil
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from pydantic import BaseModel, Field, ValidationError

from selfupgrade.errors import (
    FailedPreconditionError,
    InternalError,
    UnavailableError,
)
from selfupgrade.logging import get_logger
from selfupgrade.tracing import INSTALLER_LOG_TYPE, new_log_file_path
from selfupgrade.upgrades.base import ProductUpgrader
from selfupgrade.upgrades.operations import sha256_of_file
from selfupgrade.upgrades.version import (
    compare_versions,
    get_installed_version,
    is_prerelease,
    is_valid_version,
    version_key,
)

if TYPE_CHECKING:
    from selfupgrade.config import UpgradeConfig, UpgradeOptions
    from selfupgrade.git import Credential, GitCredentialStore
    from selfupgrade.tracing import Tracer
    from selfupgrade.upgrades.downloads import DownloadArea

logger = get_logger(__name__)

_DOWNLOAD_CHUNK_SIZE = 64 * 1024


class ReleaseFile(BaseModel):
    """One downloadable file of a release, as listed by the package index."""

    filename: str = Field(..., description="File name of the distribution")
    url: str = Field(..., description="Download URL")
    packagetype: str = Field(default="", description="bdist_wheel, sdist, ...")
    digests: dict[str, str] = Field(default_factory=dict, description="Digests by algorithm")
    yanked: bool = Field(default=False, description="Whether the file was yanked")


class PackageIndexResponse(BaseModel):
    """The parts of a ``<index_url>/<package>/json`` document the upgrader reads."""

    releases: dict[str, list[ReleaseFile]] | None = Field(
        default=None, description="Release files keyed by version"
    )


class PythonPackageUpgrader(ProductUpgrader):
    """
    Upgrade backend for Python package releases.

    Attributes:
        config: Upgrade configuration (package name, index, channel, timeouts).
        credential_store: Git-backed credential store for authenticated indexes.
        log_dir: Directory where installer logs are written.
    """

    def __init__(
        self,
        tracer: Tracer,
        downloads: DownloadArea,
        options: UpgradeOptions,
        config: UpgradeConfig,
        credential_store: GitCredentialStore | None,
        log_dir: Path,
        http_client: httpx.Client | None = None,
    ) -> None:
        super().__init__(tracer, downloads, options)
        self.config = config
        self.credential_store = credential_store
        self.log_dir = log_dir
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=config.request_timeout_seconds,
            follow_redirects=True,
        )
        self._auth: tuple[str, str] | None = None
        self._release_file: ReleaseFile | None = None
        self._downloaded_file: Path | None = None

    @property
    def package_name(self) -> str:
        return self.config.package_name

    @property
    def index_json_url(self) -> str:
        return f"{self.config.index_url}/{self.package_name}/json"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _get(self, url: str) -> httpx.Response:
        try:
            response = self._client.get(url, auth=self._auth)
            if response.status_code == 401 and self._auth is None:
                response = self._retry_with_credentials(url) or response
        except httpx.HTTPError as e:
            raise UnavailableError(
                f"Failed to reach package index: {e}",
                details={"url": url, "error": str(e)},
            ) from e

        if response.status_code != 200:
            raise UnavailableError(
                f"Package index returned HTTP {response.status_code} for {url}",
                details={"url": url, "status_code": response.status_code},
            )
        return response

    def _retry_with_credentials(self, url: str) -> httpx.Response | None:
        if not self.config.use_git_credentials or self.credential_store is None:
            return None

        credential = self.credential_store.get_credential(url)
        if credential is None:
            return None

        response = self._client.get(url, auth=(credential.username, credential.password))
        self._record_credential_outcome(url, credential, response.status_code)
        return response

    def _record_credential_outcome(
        self, url: str, credential: Credential, status_code: int
    ) -> None:
        if self.credential_store is None:
            return
        if status_code == 401:
            logger.warning("Stored credential was rejected by the package index")
            self.credential_store.delete_credential(url, credential)
            return
        self._auth = (credential.username, credential.password)
        self.credential_store.store_credential(url, credential)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _upgrade_blocked_reason(self) -> str | None:
        if not self.config.enabled:
            return (
                "Upgrade is disabled by configuration. "
                "Set upgrade.enabled to true to allow upgrades."
            )
        return None

    def _candidate_versions(self, releases: dict[str, list[ReleaseFile]]) -> list[str]:
        candidates = []
        for version, files in releases.items():
            if not is_valid_version(version):
                continue
            if not files or all(f.yanked for f in files):
                continue
            if self.config.channel == "stable" and is_prerelease(version):
                continue
            candidates.append(version)
        candidates.sort(key=version_key, reverse=True)
        return candidates

    @staticmethod
    def _select_release_file(files: list[ReleaseFile]) -> ReleaseFile | None:
        usable = [f for f in files if not f.yanked]
        wheels = [f for f in usable if f.packagetype == "bdist_wheel"]
        universal = [f for f in wheels if f.filename.endswith("-none-any.whl")]
        sdists = [f for f in usable if f.packagetype == "sdist"]
        for group in (universal, wheels, sdists):
            if group:
                return group[0]
        return None

    def _fetch_index(self) -> PackageIndexResponse:
        url = self.index_json_url
        response = self._get(url)
        try:
            data = response.json()
        except ValueError as e:
            raise UnavailableError(
                f"Package index returned invalid JSON: {e}",
                details={"url": url},
            ) from e

        try:
            return PackageIndexResponse.model_validate(data)
        except ValidationError as e:
            raise UnavailableError(
                f"Package index returned an unexpected response from {url}",
                details={"url": url, "error": str(e)},
            ) from e

    def _query_newest_version(self) -> tuple[str | None, str]:
        releases = self._fetch_index().releases or {}
        candidates = self._candidate_versions(releases)
        if not candidates:
            return None, (
                f"No releases of {self.package_name} are available "
                f"in the {self.config.channel} channel."
            )

        newest = candidates[0]
        installed = get_installed_version(self.package_name)
        if installed is not None and is_valid_version(installed):
            if compare_versions(newest, installed) <= 0:
                return None, (
                    f"{self.package_name} {installed} is the newest available version. "
                    "You're up to date."
                )
        elif installed is not None:
            logger.warning(
                "Installed version is not a semantic version; assuming an upgrade is available",
                extra={"installed_version": installed},
            )

        release_file = self._select_release_file(releases[newest])
        if release_file is None:
            raise UnavailableError(
                f"Release {newest} has no installable files",
                details={"package": self.package_name, "version": newest},
            )
        self._release_file = release_file
        return newest, f"New version available: {newest} (installed: {installed or 'unknown'})"

    def _download_newest_version(self) -> None:
        if self.newest_version is None or self._release_file is None:
            raise FailedPreconditionError(
                "No version to download. Query for the newest version first.",
            )

        if not self.downloads.acquire_lock():
            raise FailedPreconditionError(
                "Another upgrade is already in progress "
                f"(pid {self.downloads.lock_owner()}). Try again once it finishes.",
                details={"lock_path": str(self.downloads.lock_path)},
            )

        filename = self._release_file.filename
        url = self._release_file.url
        target = self.downloads.file_path(filename)
        partial = target.with_name(target.name + ".part")

        logger.info(
            "Downloading release",
            extra={"version": self.newest_version, "url": url, "path": str(target)},
        )

        try:
            with self._client.stream("GET", url, auth=self._auth) as response:
                if response.status_code != 200:
                    raise UnavailableError(
                        f"Download failed with HTTP {response.status_code}",
                        details={"url": url, "status_code": response.status_code},
                    )
                with open(partial, "wb") as f:
                    for chunk in response.iter_bytes(_DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
        except httpx.HTTPError as e:
            partial.unlink(missing_ok=True)
            raise UnavailableError(
                f"Failed to download {filename}: {e}",
                details={"url": url, "error": str(e)},
            ) from e
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise FailedPreconditionError(
                f"Failed to write {filename}: {e}",
                details={"path": str(partial), "error": str(e)},
            ) from e

        partial.replace(target)

        if self.options.no_verify:
            logger.warning("Skipping checksum verification", extra={"path": str(target)})
        else:
            self._verify(target)

        self._downloaded_file = target

    def _verify(self, path: Path) -> None:
        expected = self._release_file.digests.get("sha256") if self._release_file else None
        if not expected:
            path.unlink(missing_ok=True)
            raise FailedPreconditionError(
                f"The index publishes no SHA-256 digest for {path.name}. "
                "Run again with --no-verify to skip verification.",
                details={"path": str(path)},
            )

        actual = sha256_of_file(path)
        if actual.lower() != expected.lower():
            path.unlink(missing_ok=True)
            raise FailedPreconditionError(
                f"Checksum mismatch for {path.name}",
                details={"expected": expected, "actual": actual},
            )

    def _installer_command(self, package_file: Path) -> list[str]:
        if shutil.which("uv") is not None:
            return ["uv", "pip", "install", "--python", sys.executable, str(package_file)]
        return [sys.executable, "-m", "pip", "install", "--upgrade", str(package_file)]

    def _run_installer(self) -> None:
        package_file = self._downloaded_file
        if package_file is None or not package_file.exists():
            raise FailedPreconditionError(
                "No downloaded package to install",
                details={"downloads_dir": str(self.downloads.path)},
            )

        if self.options.dry_run:
            self.tracer.related_info(
                "Dry run: not installing %s", package_file.name
            )
            return

        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_path = new_log_file_path(
            self.log_dir, INSTALLER_LOG_TYPE, self.upgrade_instance_id or "unknown"
        )
        args = self._installer_command(package_file)

        logger.info(
            "Running installer",
            extra={"command": " ".join(args), "installer_log": str(log_path)},
        )

        try:
            with open(log_path, "w", encoding="utf-8") as log_file:
                completed = subprocess.run(
                    args,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=self.config.installer_timeout_seconds,
                    check=False,
                )
        except subprocess.TimeoutExpired as e:
            raise InternalError(
                f"Installer timed out after {self.config.installer_timeout_seconds}s",
                details={"installer_log": str(log_path)},
            ) from e
        except OSError as e:
            raise UnavailableError(
                f"Failed to execute installer: {e}",
                details={"command": " ".join(args), "error": str(e)},
            ) from e

        if completed.returncode != 0:
            raise InternalError(
                f"installer exited {completed.returncode}. See {log_path} for details.",
                details={"returncode": completed.returncode, "installer_log": str(log_path)},
            )

    def _cleanup(self) -> None:
        self._downloaded_file = None
        super()._cleanup()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
