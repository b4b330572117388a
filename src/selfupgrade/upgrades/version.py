"""
Semantic version handling for the self-upgrader.

- Semantic versioning validation and parsing
- Ordering of versions (including pre-releases)
- Lookup of the currently installed package version
"""

from __future__ import annotations

import re
from importlib import metadata
from typing import Any

from selfupgrade.errors import InvalidConfigError
from selfupgrade.logging import get_logger

logger = get_logger(__name__)

# Semantic versioning regex pattern
# Accepts: 1.0.0, 1.2.3, 2.0.0-beta.1, 1.0.0-alpha+build.123
SEMVER_PATTERN = re.compile(
    r"^(?P<major>0|[1-9]\d*)"
    r"\.(?P<minor>0|[1-9]\d*)"
    r"\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<buildmetadata>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


def parse_semantic_version(version: str) -> dict[str, Any]:
    """
    Parse and validate a semantic version string.

    Args:
        version: Version string (e.g., "1.0.0", "1.2.3-beta.1").

    Returns:
        Dictionary with parsed version components:
        - major: Major version number
        - minor: Minor version number
        - patch: Patch version number
        - prerelease: Pre-release identifier (optional)
        - buildmetadata: Build metadata (optional)

    Raises:
        InvalidConfigError: If version string is invalid.
    """
    if not version:
        raise InvalidConfigError(
            "Version string cannot be empty",
            details={"version": version},
        )

    match = SEMVER_PATTERN.match(version)
    if not match:
        raise InvalidConfigError(
            f"Invalid semantic version: {version}",
            details={
                "version": version,
                "format": "MAJOR.MINOR.PATCH[-PRERELEASE][+BUILDMETADATA]",
            },
        )

    return {
        "major": int(match.group("major")),
        "minor": int(match.group("minor")),
        "patch": int(match.group("patch")),
        "prerelease": match.group("prerelease"),
        "buildmetadata": match.group("buildmetadata"),
    }


def is_valid_version(version: str) -> bool:
    try:
        parse_semantic_version(version)
    except InvalidConfigError:
        return False
    return True


def is_prerelease(version: str) -> bool:
    return parse_semantic_version(version)["prerelease"] is not None


def _prerelease_key(prerelease: str) -> tuple[tuple[int, int, str], ...]:
    # Numeric identifiers compare numerically and sort before alphanumeric ones
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in prerelease.split(".")
    )


def _precedence(parsed: dict[str, Any]) -> tuple[Any, ...]:
    prerelease = parsed.get("prerelease")
    if prerelease is None:
        return (parsed["major"], parsed["minor"], parsed["patch"], 1, ())
    return (parsed["major"], parsed["minor"], parsed["patch"], 0, _prerelease_key(prerelease))


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two semantic versions.

    Pre-releases sort before their release. Dot-separated pre-release
    identifiers are compared one by one, so ``beta.10`` is newer than
    ``beta.2`` and ``alpha`` is older than ``alpha.1``. Build metadata is
    ignored.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2

    Raises:
        InvalidConfigError: If either version is invalid.
    """
    k1 = _precedence(parse_semantic_version(v1))
    k2 = _precedence(parse_semantic_version(v2))
    if k1 < k2:
        return -1
    elif k1 > k2:
        return 1
    return 0


def version_key(version: str) -> tuple[Any, ...]:
    """Create a sort key for a version string. Invalid versions sort first."""
    try:
        return _precedence(parse_semantic_version(version))
    except InvalidConfigError:
        return (-1, 0, 0, 0, ())


def get_installed_version(package_name: str) -> str | None:
    """
    Return the installed version of ``package_name``, or None if not installed.
    """
    try:
        return metadata.version(package_name)
    except metadata.PackageNotFoundError:
        logger.debug(f"Package {package_name} is not installed")
        return None
