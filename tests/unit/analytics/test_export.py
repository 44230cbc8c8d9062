"""Unit tests for dashboard export."""

from __future__ import annotations

import csv
import io
import json
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio

from think_mcp.analytics.export import (
    CSV_HEADERS,
    EXPORT_FORMAT_VERSION,
    ExportOptions,
    build_export_summary,
    events_to_csv,
)

if TYPE_CHECKING:
    from pathlib import Path

DAY = "2026-01-15"


@pytest_asyncio.fixture
async def populated_context(make_context, make_event):
    context = make_context()
    await context.storage.append_events(
        [make_event("trace", day=DAY) for _ in range(3)]
        + [make_event("model", day=DAY, success=False) for _ in range(2)]
    )
    return context


# =============================================================================
# CSV
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
def test_events_to_csv(make_event) -> None:
    """Verify CSV output quotes every cell and leaves errorCategory blank on success."""
    text = events_to_csv([make_event("trace", day=DAY), make_event("map", day=DAY, success=False)])

    lines = text.splitlines()
    assert lines[0] == ",".join(f'"{h}"' for h in CSV_HEADERS)
    rows = list(csv.reader(io.StringIO(text)))
    assert rows[1] == [f"{DAY}T12:00:00.000Z", "trace", "true", "100", "", "testsession00001"]
    assert rows[2][2:5] == ["false", "100", "runtime"]


@pytest.mark.unit
@pytest.mark.core
def test_export_summary_without_stats() -> None:
    """Verify an export summary without stats reports a healthy empty state."""
    summary = build_export_summary(None, None)
    assert summary["totalInvocations"] == 0
    assert summary["successRate"] == 100
    assert summary["healthStatus"] == "healthy"


# =============================================================================
# DASHBOARD - JSON document
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
class TestDashboardExport:
    """Test the dashboard export document."""

    @pytest.mark.asyncio
    async def test_full_document(self, populated_context) -> None:
        result = await populated_context.exporter.export_for_dashboard(
            ExportOptions(start_date=DAY, end_date=DAY)
        )

        assert result.success
        data = result.data
        assert data["metadata"]["version"] == EXPORT_FORMAT_VERSION
        assert data["metadata"]["periodDays"] == 0
        assert data["metadata"]["analyticsEnabled"] is True
        assert data["summary"]["totalInvocations"] == 5
        assert data["summary"]["errorRate"] == pytest.approx(40.0)
        assert data["summary"]["mostPopularTool"] == "trace"
        assert data["errorStats"]["overallErrorRate"] == pytest.approx(0.4)
        assert data["popularityRanking"][0]["toolName"] == "trace"
        for key in ("usageStats", "dailyCounts", "weeklyCounts", "monthlyCounts", "insightsReport", "storageInfo"):
            assert key in data
        assert "rawEvents" not in data
        assert json.loads(result.json) == data

    @pytest.mark.asyncio
    async def test_minimal_export(self, populated_context) -> None:
        result = await populated_context.exporter.export_minimal(DAY, DAY)

        assert result.success
        assert "usageStats" in result.data
        assert "errorStats" not in result.data
        assert "insightsReport" not in result.data
        assert "dailyCounts" not in result.data

    @pytest.mark.asyncio
    async def test_full_export_has_six_field_events(self, populated_context) -> None:
        result = await populated_context.exporter.export_full(DAY, DAY)

        raw = result.data["rawEvents"]
        assert len(raw) == 5
        assert set(raw[0]) == {"toolName", "timestamp", "success", "durationMs", "sessionId"}
        assert set(raw[-1]) == {"toolName", "timestamp", "success", "durationMs", "sessionId", "errorCategory"}

    @pytest.mark.asyncio
    async def test_compact_json(self, populated_context) -> None:
        result = await populated_context.exporter.export_for_dashboard(
            ExportOptions(start_date=DAY, end_date=DAY, pretty_print=False)
        )
        assert "\n" not in result.json

    @pytest.mark.asyncio
    async def test_invalid_period(self, make_context) -> None:
        result = await make_context().exporter.export_for_dashboard(
            ExportOptions(start_date="15/01/2026", end_date=DAY)
        )
        assert not result.success
        assert result.error is not None

    @pytest.mark.asyncio
    async def test_export_to_file(self, populated_context, tmp_path: Path) -> None:
        target = tmp_path / "exports" / "dashboard.json"

        result = await populated_context.exporter.export_to_file(
            target, ExportOptions(start_date=DAY, end_date=DAY)
        )

        assert result.success
        assert result.file_path == target.resolve()
        assert json.loads(target.read_text(encoding="utf-8"))["summary"]["totalInvocations"] == 5
