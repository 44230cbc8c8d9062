"""Dashboard export of analytics data.

Composes usage statistics, error analysis, insights and storage metadata
into one versioned JSON document:

    {"metadata": {"version": "1.0.0", ...}, "summary": {...},
     "usageStats": {...}, "errorStats": {...}, "insightsReport": {...},
     "storageInfo": {...}}

Raw events are only included when asked for, and then only as the six-field
event shape.
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any

import aiofiles
from pydantic import BaseModel, Field

from think_mcp.analytics.aggregator import (
    build_period_counts,
    build_usage_stats,
    popularity_ranking,
)
from think_mcp.analytics.error_tracker import (
    build_error_stats,
    build_error_trend,
    find_problematic_tools,
)
from think_mcp.analytics.insights import determine_health_status, summarize_report
from think_mcp.analytics.privacy import PRIVACY_NOTICE_VERSION
from think_mcp.analytics.types import utc_now_iso
from think_mcp.paths import expand_path

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from think_mcp.analytics.aggregator import UsageStats
    from think_mcp.analytics.config import ConfigManager
    from think_mcp.analytics.consent import ConsentManager
    from think_mcp.analytics.insights import InsightsGenerator, InsightsReport
    from think_mcp.analytics.storage import StorageAdapter
    from think_mcp.analytics.types import AnalyticsEvent

EXPORT_FORMAT_VERSION = "1.0.0"
DEFAULT_EXPORT_DAYS = 30

CSV_HEADERS = ("timestamp", "toolName", "success", "durationMs", "errorCategory", "sessionId")


class ExportOptions(BaseModel):
    """What to include in a dashboard export."""

    start_date: str | None = Field(default=None, description="Inclusive start (YYYY-MM-DD)")
    end_date: str | None = Field(default=None, description="Inclusive end (YYYY-MM-DD)")
    include_raw_events: bool = False
    include_stats: bool = True
    include_insights: bool = True
    include_errors: bool = True
    include_trends: bool = True
    pretty_print: bool = True


@dataclass
class ExportResult:
    success: bool
    data: dict[str, Any] | None = None
    json: str | None = None
    error: str | None = None
    file_path: Path | None = None


def events_to_csv(events: Iterable[AnalyticsEvent]) -> str:
    """Render events as CSV with every cell quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for event in events:
        writer.writerow(
            [
                event.timestamp,
                event.tool_name,
                "true" if event.success else "false",
                event.duration_ms,
                event.error_category or "",
                event.session_id,
            ]
        )
    return buffer.getvalue()


def days_between(start: str, end: str) -> int:
    return abs((date.fromisoformat(end) - date.fromisoformat(start)).days)


def build_export_summary(
    stats: UsageStats | None, report: InsightsReport | None
) -> dict[str, Any]:
    total = stats.total_invocations if stats else 0
    error_rate = stats.overall_error_rate if stats else 0.0
    critical = report.summary.critical_count if report else 0
    warnings = report.summary.warning_count if report else 0
    with_errors = [m for m in stats.tool_metrics if m.error_count > 0] if stats else []
    highest = max(with_errors, key=lambda m: m.error_rate, default=None)
    return {
        "totalInvocations": total,
        "uniqueSessions": stats.unique_sessions if stats else 0,
        "successRate": 100 - error_rate if total > 0 else 100,
        "errorRate": error_rate,
        "mostPopularTool": stats.popularity_ranking[0] if stats and stats.popularity_ranking else None,
        "highestErrorRateTool": highest.tool_name if highest else None,
        "healthStatus": determine_health_status(critical, warnings),
        "toolsUsed": len(stats.tool_metrics) if stats else 0,
        "insightsCount": len(report.insights) if report else 0,
        "criticalIssuesCount": critical,
        "warningsCount": warnings,
    }


class AnalyticsExporter:
    """Builds dashboard export documents from stored events."""

    def __init__(
        self,
        storage: StorageAdapter,
        insights: InsightsGenerator,
        config_manager: ConfigManager,
        consent_manager: ConsentManager,
    ) -> None:
        self.storage = storage
        self.insights = insights
        self.config_manager = config_manager
        self.consent_manager = consent_manager

    async def export_for_dashboard(self, options: ExportOptions | None = None) -> ExportResult:
        """Build the export document.

        Failures are returned as ``ExportResult(success=False)``.
        """
        options = options or ExportOptions()
        today = self.storage.today()
        end = options.end_date or today.isoformat()
        start = options.start_date or (today - timedelta(days=DEFAULT_EXPORT_DAYS)).isoformat()

        try:
            period_days = days_between(start, end)
        except ValueError as e:
            return ExportResult(success=False, error=f"Invalid export period: {e}")

        read = await self.storage.read_events(start, end)
        if not read.success:
            return ExportResult(success=False, error=read.error)
        events = read.events

        stats = build_usage_stats(events, start, end)
        error_stats = build_error_stats(events, start, end)
        problematic = find_problematic_tools(error_stats)
        error_trend = build_error_trend(events)
        report = None
        insights_summary = None
        if options.include_insights:
            report = self.insights.build_report(
                stats,
                find_problematic_tools(error_stats, self.insights.options.error_rate_threshold),
                error_trend,
            )
            insights_summary = summarize_report(report, stats)

        data: dict[str, Any] = {
            "metadata": {
                "version": EXPORT_FORMAT_VERSION,
                "generatedAt": utc_now_iso(),
                "periodStart": start,
                "periodEnd": end,
                "periodDays": period_days,
                "privacyVersion": PRIVACY_NOTICE_VERSION,
                "analyticsEnabled": (
                    self.config_manager.is_enabled() and self.consent_manager.is_consent_given()
                ),
                "options": {
                    "includeRawEvents": options.include_raw_events,
                    "includeStats": options.include_stats,
                    "includeInsights": options.include_insights,
                    "includeErrors": options.include_errors,
                    "includeTrends": options.include_trends,
                },
            },
            "summary": build_export_summary(stats if options.include_stats else None, report),
        }

        if options.include_stats:
            data["usageStats"] = stats.to_dict()
            data["toolMetrics"] = [m.to_dict() for m in stats.tool_metrics]
            data["popularityRanking"] = [entry.to_dict() for entry in popularity_ranking(stats)]
        if options.include_trends:
            for key, period in (
                ("dailyCounts", "daily"),
                ("weeklyCounts", "weekly"),
                ("monthlyCounts", "monthly"),
            ):
                data[key] = [c.to_dict() for c in build_period_counts(events, period)]
            data["trends"] = [t.to_dict() for t in stats.trends]
        if options.include_errors:
            data["errorStats"] = error_stats.to_dict()
            data["problematicTools"] = [p.to_dict() for p in problematic]
            data["errorTrend"] = error_trend.to_dict()
        if report is not None and insights_summary is not None:
            data["insightsReport"] = report.to_dict()
            data["insightsSummary"] = insights_summary.to_dict()
        if options.include_raw_events:
            data["rawEvents"] = [event.to_dict() for event in events]

        storage_info = await self.storage.get_storage_info()
        data["storageInfo"] = storage_info.to_dict()

        text = json.dumps(data, indent=2 if options.pretty_print else None, ensure_ascii=False)
        return ExportResult(success=True, data=data, json=text)

    async def export_to_file(
        self, file_path: Path | str, options: ExportOptions | None = None
    ) -> ExportResult:
        """Export and write the JSON document to file_path."""
        result = await self.export_for_dashboard(options)
        if not result.success or result.json is None:
            return result

        path = expand_path(file_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(result.json)
        except OSError as e:
            return ExportResult(success=False, error=f"Failed to write file: {e}")
        result.file_path = path
        return result

    async def export_minimal(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> ExportResult:
        """Usage statistics only."""
        return await self.export_for_dashboard(
            ExportOptions(
                start_date=start_date,
                end_date=end_date,
                include_insights=False,
                include_errors=False,
                include_trends=False,
            )
        )

    async def export_full(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> ExportResult:
        """Everything, including raw events."""
        return await self.export_for_dashboard(
            ExportOptions(start_date=start_date, end_date=end_date, include_raw_events=True)
        )
