"""Actionable insights derived from usage and error statistics.

Insights fall into four categories (popularity, reliability, performance,
trend) with an info/warning/critical severity. A tool only contributes an
insight once it has at least ``min_invocations_for_insight`` invocations.
"""

from __future__ import annotations

import secrets
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

from think_mcp.analytics.aggregator import build_usage_stats
from think_mcp.analytics.error_tracker import (
    build_error_stats,
    build_error_trend,
    find_problematic_tools,
)
from think_mcp.analytics.models import ReportModel
from think_mcp.analytics.types import InsightCategory, InsightSeverity, utc_now_iso
from think_mcp.tool_names import TOOL_NAMES, TOOL_USAGE_SUGGESTIONS, get_tool_display_name

if TYPE_CHECKING:
    from think_mcp.analytics.aggregator import ToolMetrics, UsageStats, UsageAggregator
    from think_mcp.analytics.error_tracker import ErrorTrend, ErrorTracker, ProblematicTool

HealthStatus = Literal["healthy", "needs-attention", "critical"]

_SEVERITY_ORDER = {"critical": 0, "warning": 1, "info": 2}

INSIGHT_ICONS: dict[str, dict[str, str]] = {
    "popularity": {"info": "⭐", "warning": "⭐", "critical": "⭐"},
    "performance": {"info": "⏱️", "warning": "⚠️", "critical": "\U0001f6a8"},
    "reliability": {"info": "ℹ️", "warning": "⚠️", "critical": "❌"},
    "trend": {"info": "\U0001f4c8", "warning": "\U0001f4c9", "critical": "\U0001f4c9"},
}

# Order of sections in the text report
REPORT_CATEGORIES: tuple[InsightCategory, ...] = ("reliability", "performance", "popularity", "trend")


class InsightOptions(BaseModel):
    """Thresholds used when generating insights."""

    error_rate_threshold: float = Field(default=0.05, description="Error rate (0-1) worth reporting")
    slow_response_threshold: float = Field(default=1000, description="Average duration (ms) considered slow")
    trend_change_threshold: float = Field(default=20, description="Percent change considered significant")
    min_invocations_for_insight: int = Field(default=10, description="Invocations needed before a tool is judged")


class Insight(ReportModel):
    id: str
    category: InsightCategory
    severity: InsightSeverity
    title: str
    description: str
    recommendation: str | None = None
    affected_tools: list[str]
    metrics: dict[str, Any]
    generated_at: str = Field(default_factory=utc_now_iso)


class InsightCounts(ReportModel):
    total_insights: int
    critical_count: int
    warning_count: int
    info_count: int


class InsightsReport(ReportModel):
    insights: list[Insight]
    summary: InsightCounts
    period_start: str
    period_end: str
    generated_at: str = Field(default_factory=utc_now_iso)


class InsightsSummary(ReportModel):
    total_insights: int
    critical_count: int
    warning_count: int
    info_count: int
    most_popular_tool: str | None
    tool_needing_attention: str | None
    health_status: HealthStatus
    one_liner: str


class FormattedInsight(ReportModel):
    icon: str
    title: str
    description: str
    recommendation: str | None = None
    severity: InsightSeverity
    category: InsightCategory


def format_percentage(value: float) -> str:
    return f"{value:.1f}%"


def format_duration(ms: float) -> str:
    if ms < 1000:
        return f"{round(ms)}ms"
    return f"{ms / 1000:.2f}s"


def _insight_id(category: str, tool_name: str | None) -> str:
    tool_part = f"-{tool_name}" if tool_name else ""
    return f"{category}{tool_part}-{int(time.time() * 1000):x}-{secrets.token_hex(2)}"


def create_insight(
    category: InsightCategory,
    severity: InsightSeverity,
    title: str,
    description: str,
    affected_tools: list[str],
    metrics: dict[str, Any],
    recommendation: str | None = None,
) -> Insight:
    return Insight(
        id=_insight_id(category, affected_tools[0] if affected_tools else None),
        category=category,
        severity=severity,
        title=title,
        description=description,
        recommendation=recommendation,
        affected_tools=affected_tools,
        metrics=metrics,
    )


def determine_health_status(critical_count: int, warning_count: int) -> HealthStatus:
    if critical_count > 0:
        return "critical"
    if warning_count > 0:
        return "needs-attention"
    return "healthy"


# =============================================================================
# Insight rules
# =============================================================================


def popularity_insights(stats: UsageStats, options: InsightOptions) -> list[Insight]:
    if stats.total_invocations == 0:
        return []

    significant = [
        m for m in stats.tool_metrics if m.invocation_count >= options.min_invocations_for_insight
    ]
    if not significant:
        return [
            create_insight(
                "popularity",
                "info",
                "Collecting Usage Data",
                f"Analytics has recorded {stats.total_invocations} tool invocations. "
                "Continue using the tools to generate more insights.",
                [],
                {"totalInvocations": stats.total_invocations, "toolsUsed": len(stats.tool_metrics)},
                "Use the thinking tools in your workflows to generate meaningful insights.",
            )
        ]

    insights = []
    ranked = sorted(significant, key=lambda m: m.invocation_count, reverse=True)
    top = ranked[0]
    top_share = top.invocation_count / stats.total_invocations * 100
    insights.append(
        create_insight(
            "popularity",
            "info",
            "Most Popular Tool",
            f"{get_tool_display_name(top.tool_name)} is your most-used tool, accounting for "
            f"{format_percentage(top_share)} of all invocations ({top.invocation_count} uses).",
            [top.tool_name],
            {
                "invocationCount": top.invocation_count,
                "percentageOfTotal": top_share,
                "totalInvocations": stats.total_invocations,
            },
        )
    )

    if len(ranked) > 1:
        least = ranked[-1]
        least_share = least.invocation_count / stats.total_invocations * 100
        if least_share < 5:
            suggestion = TOOL_USAGE_SUGGESTIONS.get(least.tool_name, "exploring its unique capabilities")
            insights.append(
                create_insight(
                    "popularity",
                    "info",
                    "Underutilized Tool",
                    f"{get_tool_display_name(least.tool_name)} is rarely used "
                    f"({format_percentage(least_share)} of invocations). It might offer valuable "
                    "capabilities you're not leveraging.",
                    [least.tool_name],
                    {"invocationCount": least.invocation_count, "percentageOfTotal": least_share},
                    f"Try using {least.tool_name} for {suggestion}.",
                )
            )

    used = {m.tool_name for m in stats.tool_metrics}
    unused = [name for name in TOOL_NAMES if name not in used]
    if unused:
        insights.append(
            create_insight(
                "popularity",
                "info",
                "Unexplored Tools",
                f"{len(unused)} tools haven't been used yet: {', '.join(unused)}. "
                "Each offers unique thinking approaches.",
                unused,
                {"unusedToolCount": len(unused)},
                "Explore these tools to expand your analytical toolkit.",
            )
        )

    concentrated = _concentrated_tools(stats.tool_metrics, stats.total_invocations)
    if concentrated is not None:
        tools, share = concentrated
        insights.append(
            create_insight(
                "popularity",
                "info",
                "Concentrated Usage Pattern",
                f"{len(tools)} tools account for {format_percentage(share)} of all usage. "
                "Consider diversifying your approach.",
                tools,
                {"topToolsCount": len(tools), "topToolsPercentage": share},
                "Different thinking tools are suited for different problem types. "
                "Try varying your approach.",
            )
        )
    return insights


def _concentrated_tools(
    metrics: list[ToolMetrics], total: int
) -> tuple[list[str], float] | None:
    """Top two tools if they take more than 80% of usage across 3+ tools."""
    if len(metrics) <= 2 or total == 0:
        return None
    top_two = sorted(metrics, key=lambda m: m.invocation_count, reverse=True)[:2]
    share = sum(m.invocation_count for m in top_two) / total * 100
    if share > 80:
        return [m.tool_name for m in top_two], share
    return None


def reliability_insights(
    problematic: list[ProblematicTool], stats: UsageStats, options: InsightOptions
) -> list[Insight]:
    insights = []
    for tool in problematic:
        if tool.invocation_count < options.min_invocations_for_insight:
            continue
        name = get_tool_display_name(tool.tool_name)
        pct = tool.error_rate * 100
        if tool.severity == "critical":
            title = "Critical Error Rate"
            description = (
                f"{name} has a {format_percentage(pct)} error rate ({tool.error_count} errors out of "
                f"{tool.invocation_count} invocations). This significantly impacts reliability."
            )
            recommendation = (
                "Investigate error patterns immediately. "
                "Check if there are issues with input validation or edge cases."
            )
        elif tool.severity == "warning":
            title = "Elevated Error Rate"
            description = (
                f"{name} has a {format_percentage(pct)} error rate ({tool.error_count} errors). "
                "This is above the recommended threshold."
            )
            recommendation = "Review recent error patterns to identify common causes."
        else:
            title = "Error Rate Notice"
            description = (
                f"{name} has a {format_percentage(pct)} error rate. "
                "While within acceptable limits, monitoring is recommended."
            )
            recommendation = "Keep an eye on this tool's error patterns."
        if tool.most_common_error_category:
            description += f" Most errors are {tool.most_common_error_category} errors."
        insights.append(
            create_insight(
                "reliability",
                tool.severity,
                title,
                description,
                [tool.tool_name],
                {
                    "errorRate": pct,
                    "errorCount": tool.error_count,
                    "invocationCount": tool.invocation_count,
                    "mostCommonErrorCategory": tool.most_common_error_category or "unknown",
                },
                recommendation,
            )
        )

    if not problematic and stats.total_invocations >= options.min_invocations_for_insight:
        threshold_pct = options.error_rate_threshold * 100
        insights.append(
            create_insight(
                "reliability",
                "info",
                "Healthy Error Rates",
                "All tools are operating within acceptable error rate thresholds "
                f"(< {format_percentage(threshold_pct)}). "
                f"Overall error rate is {format_percentage(stats.overall_error_rate)}.",
                [],
                {"overallErrorRate": stats.overall_error_rate, "threshold": threshold_pct},
            )
        )
    return insights


def performance_insights(stats: UsageStats, options: InsightOptions) -> list[Insight]:
    if stats.total_invocations < options.min_invocations_for_insight:
        return []

    insights = []
    significant = [
        m for m in stats.tool_metrics if m.invocation_count >= options.min_invocations_for_insight
    ]
    for tool in significant:
        if tool.avg_duration_ms <= options.slow_response_threshold:
            continue
        severity: InsightSeverity = (
            "warning" if tool.avg_duration_ms > options.slow_response_threshold * 3 else "info"
        )
        insights.append(
            create_insight(
                "performance",
                severity,
                "Slow Response Time" if severity == "warning" else "Response Time Notice",
                f"{get_tool_display_name(tool.tool_name)} has an average response time of "
                f"{format_duration(tool.avg_duration_ms)} (P95: {format_duration(tool.p95_duration_ms)}). "
                "This may impact user experience.",
                [tool.tool_name],
                {
                    "avgDurationMs": tool.avg_duration_ms,
                    "p95DurationMs": tool.p95_duration_ms,
                    "minDurationMs": tool.min_duration_ms,
                    "maxDurationMs": tool.max_duration_ms,
                },
                "Complex mental models and multi-perspective tools naturally take longer. "
                "Consider this expected behavior for thorough analysis.",
            )
        )

    fastest = min(significant, key=lambda m: m.avg_duration_ms, default=None)
    if fastest is not None and fastest.avg_duration_ms < 100:
        insights.append(
            create_insight(
                "performance",
                "info",
                "Fastest Tool",
                f"{get_tool_display_name(fastest.tool_name)} is your fastest tool with an average "
                f"response time of {format_duration(fastest.avg_duration_ms)}.",
                [fastest.tool_name],
                {"avgDurationMs": fastest.avg_duration_ms},
            )
        )
    return insights


def trend_insights(
    stats: UsageStats, error_trend: ErrorTrend, options: InsightOptions
) -> list[Insight]:
    if stats.total_invocations < options.min_invocations_for_insight:
        return []

    insights = []
    for trend in stats.trends:
        if len(trend.data_points) < 3:
            continue
        if sum(p.count for p in trend.data_points) < options.min_invocations_for_insight:
            continue
        if abs(trend.change_percentage) < options.trend_change_threshold:
            continue
        metrics = {
            "changePercentage": trend.change_percentage,
            "trend": trend.trend,
            "dataPoints": len(trend.data_points),
        }
        name = get_tool_display_name(trend.tool_name)
        if trend.trend == "increasing":
            insights.append(
                create_insight(
                    "trend",
                    "info",
                    "Growing Tool Usage",
                    f"{name} usage has increased by {format_percentage(trend.change_percentage)} over "
                    "the analysis period. This tool is becoming more central to your workflow.",
                    [trend.tool_name],
                    metrics,
                )
            )
        elif trend.trend == "decreasing":
            insights.append(
                create_insight(
                    "trend",
                    "info",
                    "Declining Tool Usage",
                    f"{name} usage has decreased by {format_percentage(abs(trend.change_percentage))} "
                    "over the analysis period. You might be shifting to other approaches.",
                    [trend.tool_name],
                    metrics,
                    "Consider if this tool still serves your needs or if you've found better alternatives.",
                )
            )

    change = error_trend.change_percentage
    error_metrics = {
        "changePercentage": change,
        "averageErrorRate": error_trend.average_error_rate * 100,
        "trend": error_trend.trend,
    }
    if error_trend.trend == "increasing" and abs(change) > options.trend_change_threshold:
        insights.append(
            create_insight(
                "trend",
                "warning",
                "Increasing Error Trend",
                f"Error rates have increased by {format_percentage(change)} over the analysis "
                "period. This trend should be monitored.",
                [],
                error_metrics,
                "Review recent changes and error patterns to identify the cause.",
            )
        )
    elif error_trend.trend == "decreasing" and abs(change) > options.trend_change_threshold:
        insights.append(
            create_insight(
                "trend",
                "info",
                "Improving Error Trend",
                f"Error rates have decreased by {format_percentage(abs(change))} over the analysis "
                "period. Great progress!",
                [],
                error_metrics,
            )
        )
    return insights


# =============================================================================
# Generator
# =============================================================================


class InsightsGenerator:
    """Builds insight reports from the aggregator and error tracker."""

    def __init__(
        self,
        aggregator: UsageAggregator,
        error_tracker: ErrorTracker,
        options: InsightOptions | None = None,
    ) -> None:
        self.aggregator = aggregator
        self.error_tracker = error_tracker
        self.options = options or InsightOptions()

    async def _inputs(
        self, start_date: str | None, end_date: str | None
    ) -> tuple[UsageStats, list[ProblematicTool], ErrorTrend]:
        # One read shared by every rule
        result = await self.aggregator.storage.read_events(start_date, end_date)
        events = result.events if result.success else []
        start, end = result.date_range.start, result.date_range.end
        stats = build_usage_stats(events, start, end)
        problematic = find_problematic_tools(
            build_error_stats(events, start, end), self.options.error_rate_threshold
        )
        return stats, problematic, build_error_trend(events)

    async def get_popularity_insights(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> list[Insight]:
        stats = await self.aggregator.get_usage_stats(start_date, end_date)
        return popularity_insights(stats, self.options)

    async def get_reliability_insights(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> list[Insight]:
        stats, problematic, _ = await self._inputs(start_date, end_date)
        return reliability_insights(problematic, stats, self.options)

    async def get_performance_insights(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> list[Insight]:
        stats = await self.aggregator.get_usage_stats(start_date, end_date)
        return performance_insights(stats, self.options)

    async def get_trend_insights(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> list[Insight]:
        stats, _, error_trend = await self._inputs(start_date, end_date)
        return trend_insights(stats, error_trend, self.options)

    async def generate_report(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> InsightsReport:
        """All insights for the range, most severe first."""
        stats, problematic, error_trend = await self._inputs(start_date, end_date)
        return self.build_report(stats, problematic, error_trend)

    def build_report(
        self, stats: UsageStats, problematic: list[ProblematicTool], error_trend: ErrorTrend
    ) -> InsightsReport:
        insights = [
            *popularity_insights(stats, self.options),
            *reliability_insights(problematic, stats, self.options),
            *performance_insights(stats, self.options),
            *trend_insights(stats, error_trend, self.options),
        ]
        insights.sort(key=lambda i: _SEVERITY_ORDER[i.severity])
        return InsightsReport(
            insights=insights,
            summary=InsightCounts(
                total_insights=len(insights),
                critical_count=sum(1 for i in insights if i.severity == "critical"),
                warning_count=sum(1 for i in insights if i.severity == "warning"),
                info_count=sum(1 for i in insights if i.severity == "info"),
            ),
            period_start=stats.period_start,
            period_end=stats.period_end,
        )

    async def get_summary(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> InsightsSummary:
        stats, problematic, error_trend = await self._inputs(start_date, end_date)
        report = self.build_report(stats, problematic, error_trend)
        return summarize_report(report, stats)

    def format_insights(self, insights: list[Insight]) -> list[FormattedInsight]:
        return [
            FormattedInsight(
                icon=INSIGHT_ICONS[i.category][i.severity],
                title=i.title,
                description=i.description,
                recommendation=i.recommendation,
                severity=i.severity,
                category=i.category,
            )
            for i in insights
        ]

    async def generate_text_report(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> str:
        """Plain-text insights report for terminals."""
        stats, problematic, error_trend = await self._inputs(start_date, end_date)
        report = self.build_report(stats, problematic, error_trend)
        return render_text_report(report, summarize_report(report, stats))


def summarize_report(report: InsightsReport, stats: UsageStats) -> InsightsSummary:
    counts = report.summary
    most_popular = stats.popularity_ranking[0] if stats.popularity_ranking else None

    attention = None
    for severity in ("critical", "warning"):
        match = next(
            (
                i
                for i in report.insights
                if i.category == "reliability" and i.severity == severity and i.affected_tools
            ),
            None,
        )
        if match is not None:
            attention = match.affected_tools[0]
            break

    health = determine_health_status(counts.critical_count, counts.warning_count)
    if stats.total_invocations == 0:
        one_liner = "No analytics data collected yet. Start using the thinking tools!"
    elif health == "critical":
        one_liner = f"{counts.critical_count} critical issue(s) detected. Immediate attention recommended."
    elif health == "needs-attention":
        one_liner = f"{counts.warning_count} warning(s) detected. Review recommended."
    else:
        one_liner = "All systems healthy."
        if most_popular:
            one_liner += f" {most_popular} is your most-used tool."

    return InsightsSummary(
        total_insights=counts.total_insights,
        critical_count=counts.critical_count,
        warning_count=counts.warning_count,
        info_count=counts.info_count,
        most_popular_tool=most_popular,
        tool_needing_attention=attention,
        health_status=health,
        one_liner=one_liner,
    )


def render_text_report(report: InsightsReport, summary: InsightsSummary) -> str:
    rule, thin = "=" * 60, "-" * 60
    generated = datetime.fromisoformat(report.generated_at.replace("Z", "+00:00"))
    lines = [
        rule,
        "ANALYTICS INSIGHTS REPORT",
        rule,
        "",
        f"Period: {report.period_start} to {report.period_end}",
        f"Generated: {generated:%Y-%m-%d %H:%M:%S} UTC",
        "",
        f"Status: {summary.health_status.upper()}",
        summary.one_liner,
        "",
        thin,
        "SUMMARY",
        thin,
        f"Total Insights: {report.summary.total_insights}",
    ]
    if report.summary.critical_count:
        lines.append(f"  Critical: {report.summary.critical_count}")
    if report.summary.warning_count:
        lines.append(f"  Warnings: {report.summary.warning_count}")
    lines.append(f"  Info: {report.summary.info_count}")
    lines.append("")

    for category in REPORT_CATEGORIES:
        in_category = [i for i in report.insights if i.category == category]
        if not in_category:
            continue
        lines.extend([thin, category.upper(), thin])
        for insight in in_category:
            icon = INSIGHT_ICONS[insight.category][insight.severity]
            lines.append("")
            lines.append(f"{icon} [{insight.severity.upper()}] {insight.title}")
            lines.append(f"   {insight.description}")
            if insight.recommendation:
                lines.append(f"   Recommendation: {insight.recommendation}")
        lines.append("")
    return "\n".join(lines)
