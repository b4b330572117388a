"""
Tests for activity tracing and log file naming.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from selfupgrade.tracing import Tracer, new_log_file_path


def _entries(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestNewLogFilePath:
    """Tests for new_log_file_path."""

    def test_name_format(self, tmp_path: Path) -> None:
        path = new_log_file_path(tmp_path, "upgrade_process", "20240506_070809")
        assert path == tmp_path / "selfupgrade_upgrade_process_20240506_070809.log"

    def test_collision_gets_suffix(self, tmp_path: Path) -> None:
        """Test an existing file is never reused."""
        (tmp_path / "selfupgrade_installer_X.log").write_text("")
        (tmp_path / "selfupgrade_installer_X_1.log").write_text("")

        path = new_log_file_path(tmp_path, "installer", "X")
        assert path.name == "selfupgrade_installer_X_2.log"


class TestTracer:
    """Tests for Tracer."""

    @pytest.fixture
    def traced(self, tmp_path: Path) -> tuple[Tracer, Path]:
        tracer = Tracer.create("TestProcess")
        path = tracer.add_log_file_listener(tmp_path / "trace.log", logging.DEBUG)
        yield tracer, path
        tracer.close()

    def test_logger_name(self) -> None:
        assert Tracer.create().logger.name == "selfupgrade.UpgradeProcess"

    def test_events_carry_metadata(self, traced: tuple[Tracer, Path]) -> None:
        """Test metadata lands in the log file."""
        tracer, path = traced
        tracer.related_event(logging.INFO, "Installed Version", {"Version": "1.0.0"})
        tracer.related_error({"Upgrade Step": "download"}, "download failed: %s", "HTTP 500")
        tracer.close()

        first, second = _entries(path)
        assert first["message"] == "Installed Version"
        assert first["metadata"] == {"Version": "1.0.0"}
        assert second["level"] == "ERROR"
        assert second["message"] == "download failed: HTTP 500"

    def test_activity_start_and_stop(self, traced: tuple[Tracer, Path]) -> None:
        """Test an activity logs start, nested events and stop with duration."""
        tracer, path = traced
        with tracer.start_activity("download_upgrade", metadata={"Version": "2.3.0"}) as child:
            child.related_info("fetching %s", "pkg.whl")
        tracer.close()

        started, inner, stopped = _entries(path)
        assert started["message"] == "download_upgrade started"
        assert inner["activity"] == "download_upgrade"
        assert inner["logger"] == "selfupgrade.TestProcess.download_upgrade"
        assert stopped["message"] == "download_upgrade stopped"
        assert stopped["metadata"]["Version"] == "2.3.0"
        assert stopped["metadata"]["duration_ms"] >= 0

    def test_activity_stops_on_exception(self, traced: tuple[Tracer, Path]) -> None:
        """Test the stop event is logged when the block raises."""
        tracer, path = traced
        with pytest.raises(RuntimeError):
            with tracer.start_activity("check"):
                raise RuntimeError("boom")
        tracer.close()

        assert _entries(path)[-1]["message"] == "check stopped"

    def test_close_detaches_file(self, traced: tuple[Tracer, Path]) -> None:
        """Test nothing is written after close."""
        tracer, path = traced
        root = logging.getLogger("selfupgrade")
        attached = [h for h in root.handlers if isinstance(h, logging.FileHandler)]
        assert [Path(h.baseFilename) for h in attached] == [path]
        tracer.close()
        tracer.related_info("after close")

        assert not any(h in root.handlers for h in attached)
        assert "after close" not in path.read_text()
