"""
Filesystem helpers for the downloads area.
"""

from __future__ import annotations

import hashlib
import shutil
from pathlib import Path

from selfupgrade.errors import FailedPreconditionError
from selfupgrade.logging import get_logger

logger = get_logger(__name__)

_CHUNK_SIZE = 1024 * 1024


def ensure_directory(path: Path) -> Path:
    """
    Create ``path`` (and its parents) unless it already exists.

    Raises:
        FailedPreconditionError: If the directory cannot be created.
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FailedPreconditionError(
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e
    return path


def remove_tree(path: Path) -> bool:
    """
    Delete a directory tree.

    Returns:
        True if the tree was deleted, False if there was nothing to delete.

    Raises:
        FailedPreconditionError: If something in the tree could not be deleted.
    """
    if not path.exists():
        return False

    try:
        shutil.rmtree(path)
    except OSError as e:
        raise FailedPreconditionError(
            f"Failed to remove directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e

    logger.debug("Removed directory", extra={"path": str(path)})
    return True


def sha256_of_file(path: Path) -> str:
    """Return the hex SHA-256 digest of a file."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()
