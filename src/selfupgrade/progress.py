"""
Console progress indication for long-running upgrade steps.

ProgressRunner runs a unit of work inline while a rich spinner shows a label,
then prints ``<label>...Succeeded`` or ``<label>...Failed``. It has no state of
its own and never changes the result of the work it wraps.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import IO, TypeVar

from rich.console import Console

T = TypeVar("T")

SUCCEEDED = "Succeeded"
FAILED = "Failed"


class ProgressRunner:
    """Runs work behind a textual spinner and returns its result unchanged."""

    def __init__(self, output: IO[str] | None = None, console: Console | None = None) -> None:
        if console is None:
            console = Console(file=output, highlight=False, soft_wrap=True)
        self._console = console

    @property
    def console(self) -> Console:
        return self._console

    def run(self, work: Callable[[], T], message: str) -> T:
        """
        Run ``work`` while showing ``message`` next to a spinner.

        The outcome line is printed even when ``work`` raises; the exception
        is re-raised untouched.
        """
        succeeded = False
        try:
            with self._console.status(message, spinner="dots"):
                result = work()
            succeeded = bool(result)
            return result
        finally:
            self._console.print(
                f"{message}...{SUCCEEDED if succeeded else FAILED}",
                markup=False,
            )

