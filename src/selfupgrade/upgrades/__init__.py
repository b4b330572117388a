"""
Upgrade backends for the self-upgrade orchestrator.

- ProductUpgrader abstraction and StepResult
- PythonPackageUpgrader for PyPI-compatible indexes
- DownloadArea for staged installers
- create_upgrader factory
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

from selfupgrade.errors import InvalidConfigError, UnsupportedPlatformError
from selfupgrade.upgrades.base import ProductUpgrader, StepResult
from selfupgrade.upgrades.downloads import DownloadArea
from selfupgrade.upgrades.python_package import PythonPackageUpgrader

if TYPE_CHECKING:
    from selfupgrade.config import AppConfig, UpgradeOptions
    from selfupgrade.git import GitCredentialStore
    from selfupgrade.tracing import Tracer

SUPPORTED_PLATFORMS = ("linux", "darwin", "win32")

__all__ = [
    "DownloadArea",
    "ProductUpgrader",
    "PythonPackageUpgrader",
    "StepResult",
    "SUPPORTED_PLATFORMS",
    "create_upgrader",
]


def create_upgrader(
    config: AppConfig,
    credential_store: GitCredentialStore | None,
    options: UpgradeOptions,
    tracer: Tracer,
) -> ProductUpgrader:
    """
    Create the upgrader selected by ``config.upgrade.backend``.

    Raises:
        UnsupportedPlatformError: If self-upgrade is unsupported on this platform.
        InvalidConfigError: If the backend is unknown or the package name is empty.
    """
    if not sys.platform.startswith(SUPPORTED_PLATFORMS):
        raise UnsupportedPlatformError(
            f"Self-upgrade is not supported on {sys.platform}",
            details={"platform": sys.platform},
        )

    upgrade_config = config.upgrade
    if not upgrade_config.package_name.strip():
        raise InvalidConfigError(
            "upgrade.package_name must not be empty",
        )

    if upgrade_config.backend != "python_package":
        raise InvalidConfigError(
            f"Unknown upgrade backend: {upgrade_config.backend}",
            details={"backend": upgrade_config.backend, "supported": ["python_package"]},
        )

    return PythonPackageUpgrader(
        tracer=tracer,
        downloads=DownloadArea(upgrade_config.downloads_dir),
        options=options,
        config=upgrade_config,
        credential_store=credential_store,
        log_dir=Path(config.logging.log_dir),
    )
