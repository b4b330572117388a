"""
Git installation lookup and git-backed credential storage.

The upgrader needs git for one thing: its credential helpers. Authenticated
package indexes reuse whatever credentials the user already stored for git,
through ``git credential fill/approve/reject``.
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from urllib.parse import urlsplit

from selfupgrade.errors import UnavailableError
from selfupgrade.logging import get_logger

logger = get_logger(__name__)

GIT_VERSION_PATTERN = re.compile(r"git version (?P<version>\d+\.\d+\.\d+\S*)")


def find_git_binary() -> str | None:
    """
    Locate the installed git executable.

    ``SELFUPGRADE_GIT_PATH`` takes precedence over PATH lookup.

    Returns:
        Absolute path to git, or None when git is not installed.
    """
    override = os.environ.get("SELFUPGRADE_GIT_PATH")
    if override:
        return override if os.path.isfile(override) else None
    return shutil.which("git")


def get_git_version(git_path: str, timeout: float = 10.0) -> str | None:
    """
    Return the version reported by ``git --version``, or None if unknown.
    """
    try:
        completed = subprocess.run(
            [git_path, "--version"],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Failed to query git version: {e}")
        return None

    if completed.returncode != 0:
        return None

    match = GIT_VERSION_PATTERN.search(completed.stdout)
    return match.group("version") if match else None


@dataclass(frozen=True)
class Credential:
    username: str
    password: str


class GitCredentialStore:
    """
    Credential store backed by git's configured credential helpers.

    Attributes:
        git_path: Path to the git executable.
        timeout: Timeout for each git invocation.
    """

    def __init__(self, git_path: str, timeout: float = 30.0) -> None:
        self.git_path = git_path
        self.timeout = timeout

    @staticmethod
    def _describe(url: str) -> str:
        parts = urlsplit(url)
        lines = [f"protocol={parts.scheme}", f"host={parts.netloc}"]
        if parts.path:
            lines.append(f"path={parts.path.lstrip('/')}")
        return "\n".join(lines) + "\n"

    def _run(self, action: str, payload: str) -> subprocess.CompletedProcess[str]:
        # Never let git fall back to an interactive prompt
        env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
        try:
            return subprocess.run(
                [self.git_path, "credential", action],
                input=payload + "\n",
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise UnavailableError(
                f"git credential {action} timed out after {self.timeout}s",
                details={"git_path": self.git_path},
            ) from e
        except OSError as e:
            raise UnavailableError(
                f"Failed to execute git: {e}",
                details={"git_path": self.git_path, "error": str(e)},
            ) from e

    def get_credential(self, url: str) -> Credential | None:
        """
        Ask git's credential helpers for a username/password for ``url``.

        Returns:
            The stored credential, or None if no helper had one.

        Raises:
            UnavailableError: If git cannot be executed.
        """
        completed = self._run("fill", self._describe(url))
        if completed.returncode != 0:
            logger.debug(
                "git credential fill found nothing",
                extra={"stderr": completed.stderr.strip()},
            )
            return None

        values: dict[str, str] = {}
        for line in completed.stdout.splitlines():
            if "=" in line:
                key, value = line.split("=", 1)
                values[key] = value

        if "username" not in values or "password" not in values:
            return None
        return Credential(username=values["username"], password=values["password"])

    def store_credential(self, url: str, credential: Credential) -> None:
        """Tell git the credential worked, so helpers may persist it."""
        self._feedback("approve", url, credential)

    def delete_credential(self, url: str, credential: Credential) -> None:
        """Tell git the credential was rejected, so helpers may drop it."""
        self._feedback("reject", url, credential)

    def _feedback(self, action: str, url: str, credential: Credential) -> None:
        payload = (
            self._describe(url)
            + f"username={credential.username}\npassword={credential.password}\n"
        )
        try:
            completed = self._run(action, payload)
        except UnavailableError as e:
            logger.warning(f"git credential {action} failed: {e.message}")
            return
        if completed.returncode != 0:
            logger.warning(
                f"git credential {action} failed",
                extra={"stderr": completed.stderr.strip()},
            )
