"""
The downloads area: where installers are staged before they are run.

The directory is owned by the upgrader. Besides downloaded packages it holds
an ``upgrade.lock`` file naming the PID of the process currently upgrading.
The lock is taken as soon as an attempt is found eligible and is released by
cleanup; while another live process holds it, this process neither claims
nor deletes the area.
"""

from __future__ import annotations

import os
from pathlib import Path

import psutil

from selfupgrade.errors import FailedPreconditionError
from selfupgrade.logging import get_logger
from selfupgrade.upgrades.operations import ensure_directory, remove_tree

logger = get_logger(__name__)

LOCK_FILE_NAME = "upgrade.lock"


class DownloadArea:
    """
    Staging directory for downloaded installers.

    Attributes:
        path: Directory holding downloads and the in-progress lock.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    @property
    def lock_path(self) -> Path:
        return self.path / LOCK_FILE_NAME

    def ensure(self) -> Path:
        """Create the directory if needed and return it."""
        return ensure_directory(self.path)

    def file_path(self, filename: str) -> Path:
        # Index-provided names must not escape the downloads directory
        return self.path / Path(filename).name

    def downloaded_files(self) -> list[Path]:
        if not self.path.exists():
            return []
        return sorted(p for p in self.path.iterdir() if p.is_file() and p != self.lock_path)

    def acquire_lock(self) -> bool:
        """
        Claim the area for the current process.

        The lock file is created exclusively, so of two processes racing for
        it only one succeeds. A lock left behind by a dead process is replaced.

        Returns:
            True if this process holds the lock, False if another live
            process does.

        Raises:
            FailedPreconditionError: If the lock file cannot be written.
        """
        self.ensure()
        for _ in range(2):
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self.lock_owner() == os.getpid():
                    return True
                if self.is_locked_by_other_process():
                    return False
                logger.info("Replacing stale upgrade lock", extra={"path": str(self.lock_path)})
                self.lock_path.unlink(missing_ok=True)
                continue
            except OSError as e:
                raise FailedPreconditionError(
                    f"Failed to create upgrade lock: {self.lock_path}",
                    details={"path": str(self.lock_path), "error": str(e)},
                ) from e

            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
            return True
        return False

    def lock_owner(self) -> int | None:
        """Return the PID recorded in the lock file, if any."""
        try:
            content = self.lock_path.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Failed to read upgrade lock: {e}")
            return None

        try:
            return int(content)
        except ValueError:
            logger.warning(
                "Ignoring malformed upgrade lock",
                extra={"path": str(self.lock_path), "content": content},
            )
            return None

    def is_locked_by_other_process(self) -> bool:
        """True when a different, still-running process holds the lock."""
        owner = self.lock_owner()
        if owner is None or owner == os.getpid():
            return False
        return psutil.pid_exists(owner)

    def delete_all(self) -> bool:
        """
        Remove every download, including the lock file.

        The area is left alone while another live process holds the lock.

        Returns:
            True if something was removed, False otherwise.

        Raises:
            FailedPreconditionError: If the directory cannot be removed.
        """
        if self.is_locked_by_other_process():
            logger.info(
                "Not deleting downloads owned by another upgrade",
                extra={"path": str(self.path), "owner_pid": self.lock_owner()},
            )
            return False

        files = [p.name for p in self.downloaded_files()]
        removed = remove_tree(self.path)
        if removed:
            logger.info("Deleted downloaded assets", extra={"path": str(self.path), "files": files})
        return removed
