"""Tests for the think-mcp command line interface."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

import think_mcp
from think_mcp.analytics.privacy import PRIVACY_NOTICE_BRIEF
from think_mcp_serve.cli import app

if TYPE_CHECKING:
    from pathlib import Path

    from think_mcp.analytics.storage import StorageAdapter

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep CLI commands from adding loguru sinks bound to the runner's streams."""
    monkeypatch.setattr("think_mcp.logging.configure_logging", lambda *args, **kwargs: None)


@pytest.fixture
def stored_events(storage: StorageAdapter, make_event) -> StorageAdapter:
    asyncio.run(
        storage.append_events(
            [make_event("trace", day="2026-01-15"), make_event("model", day="2026-01-15", success=False)]
        )
    )
    return storage


# =============================================================================
# SERVER ENTRY
# =============================================================================


@pytest.mark.unit
@pytest.mark.serve
def test_version() -> None:
    """Verify --version prints the package version and exits."""
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert think_mcp.__version__ in result.output


@pytest.mark.unit
@pytest.mark.serve
def test_analytics_group_shows_help() -> None:
    """Verify the analytics group lists its commands when called bare."""
    result = runner.invoke(app, ["analytics"])
    assert "enable" in result.output
    assert "export" in result.output


# =============================================================================
# CONSENT - enable, disable, status
# =============================================================================


@pytest.mark.unit
@pytest.mark.serve
class TestConsentCommands:
    """Test opting in and out from the command line."""

    def test_enable_with_yes(self, think_home: Path) -> None:
        result = runner.invoke(app, ["analytics", "enable", "--yes"])

        assert result.exit_code == 0
        assert "Analytics enabled." in result.output
        consent = json.loads((think_home / "consent.json").read_text(encoding="utf-8"))
        assert consent["hasConsented"] is True

    def test_enable_declined(self, think_home: Path) -> None:
        result = runner.invoke(app, ["analytics", "enable"], input="n\n")

        assert result.exit_code == 0
        assert "Analytics left disabled." in result.output
        assert not (think_home / "consent.json").exists()

    def test_disable(self, think_home: Path) -> None:
        runner.invoke(app, ["analytics", "enable", "--yes"])

        result = runner.invoke(app, ["analytics", "disable"])

        assert result.exit_code == 0
        assert "Analytics disabled." in result.output
        consent = json.loads((think_home / "consent.json").read_text(encoding="utf-8"))
        assert consent["hasConsented"] is False
        assert consent["withdrawnAt"]

    def test_status(self) -> None:
        runner.invoke(app, ["analytics", "enable", "--yes"])

        result = runner.invoke(app, ["analytics", "status", "--verbose"])

        assert result.exit_code == 0
        assert "Analytics Status" in result.output
        assert "Collecting" in result.output
        assert "Batch size" in result.output


# =============================================================================
# DATA - export, clear, cleanup, insights
# =============================================================================


@pytest.mark.unit
@pytest.mark.serve
class TestDataCommands:
    """Test export and deletion commands."""

    def test_export_json_to_file(self, stored_events: StorageAdapter, tmp_path: Path) -> None:
        target = tmp_path / "out" / "export.json"

        result = runner.invoke(
            app,
            ["analytics", "export", "--start", "2026-01-15", "--end", "2026-01-15", "-o", str(target)],
        )

        assert result.exit_code == 0
        data = json.loads(target.read_text(encoding="utf-8"))
        assert data["summary"]["totalInvocations"] == 2
        assert "rawEvents" not in data

    def test_export_csv_to_stdout(self, stored_events: StorageAdapter) -> None:
        result = runner.invoke(
            app, ["analytics", "export", "-f", "csv", "--start", "2026-01-15", "--end", "2026-01-15"]
        )

        assert result.exit_code == 0
        assert '"timestamp","toolName"' in result.output
        assert '"model","false"' in result.output

    def test_export_unknown_format(self) -> None:
        result = runner.invoke(app, ["analytics", "export", "--format", "xml"])
        assert result.exit_code == 2

    def test_clear_with_yes(self, stored_events: StorageAdapter, storage_dir: Path) -> None:
        result = runner.invoke(app, ["analytics", "clear", "--yes"])

        assert result.exit_code == 0
        assert "Files deleted:     1" in result.output
        assert not list(storage_dir.glob("analytics-*.json"))

    def test_clear_cancelled(self, stored_events: StorageAdapter, storage_dir: Path) -> None:
        result = runner.invoke(app, ["analytics", "clear"], input="n\n")

        assert result.exit_code == 0
        assert "Cancelled. No data was deleted." in result.output
        assert len(list(storage_dir.glob("analytics-*.json"))) == 1

    def test_cleanup_dry_run(self) -> None:
        result = runner.invoke(app, ["analytics", "cleanup", "--dry-run"])
        assert result.exit_code == 0
        assert "Would delete 0 file(s)" in result.output

    def test_privacy_brief(self) -> None:
        result = runner.invoke(app, ["analytics", "privacy", "--brief"])
        assert result.exit_code == 0
        assert PRIVACY_NOTICE_BRIEF.splitlines()[0] in result.output

    def test_insights(self, stored_events: StorageAdapter) -> None:
        result = runner.invoke(app, ["analytics", "insights", "--start", "2026-01-15", "--end", "2026-01-15"])
        assert result.exit_code == 0
        assert "ANALYTICS INSIGHTS REPORT" in result.output
