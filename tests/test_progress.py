"""
Tests for the console progress runner.
"""

from __future__ import annotations

from io import StringIO

import pytest

from selfupgrade.progress import ProgressRunner
from selfupgrade.upgrades import StepResult


@pytest.fixture
def output() -> StringIO:
    return StringIO()


class TestProgressRunner:
    """Tests for ProgressRunner.run."""

    def test_returns_result_unchanged(self, output: StringIO) -> None:
        result = StepResult.ok(version="2.3.0")
        assert ProgressRunner(output=output).run(lambda: result, "Downloading") is result

    def test_success_line(self, output: StringIO) -> None:
        ProgressRunner(output=output).run(StepResult.ok, "Downloading")
        assert output.getvalue().splitlines()[-1] == "Downloading...Succeeded"

    def test_failure_line(self, output: StringIO) -> None:
        result = ProgressRunner(output=output).run(
            lambda: StepResult.failed("HTTP 500"), "Downloading"
        )
        assert result.success is False
        assert output.getvalue().splitlines()[-1] == "Downloading...Failed"

    def test_exception_propagates_after_failed_line(self, output: StringIO) -> None:
        """Test a raising unit of work still reports Failed."""

        def _boom() -> StepResult:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            ProgressRunner(output=output).run(_boom, "Installing 2.3.0")
        assert "Installing 2.3.0...Failed" in output.getvalue()

    def test_label_is_not_markup(self, output: StringIO) -> None:
        """Test square brackets in labels are printed literally."""
        ProgressRunner(output=output).run(StepResult.ok, "Installing [beta]")
        assert "Installing [beta]...Succeeded" in output.getvalue()
