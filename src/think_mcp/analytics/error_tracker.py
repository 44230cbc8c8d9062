"""Error-rate analysis over stored events.

All rates here are fractions (0-1), 0 when there were no invocations. Only
events for known tool names are counted.

Severity tiers for problematic tools:
    critical  >= 25%
    warning   >= 10%
    info      below that (but at or above the caller's threshold)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from think_mcp.analytics.aggregator import calculate_error_rate, calculate_trend
from think_mcp.analytics.models import ReportModel
from think_mcp.analytics.types import (
    ERROR_CATEGORIES,
    ErrorCategory,
    InsightSeverity,
    TrendDirection,
    empty_error_counts,
    utc_now_iso,
)
from think_mcp.tool_names import TOOL_NAMES

if TYPE_CHECKING:
    from collections.abc import Sequence

    from think_mcp.analytics.storage import StorageAdapter
    from think_mcp.analytics.types import AnalyticsEvent

CRITICAL_ERROR_RATE = 0.25
WARNING_ERROR_RATE = 0.10
INFO_ERROR_RATE = 0.05

_SEVERITY_ORDER = {"critical": 0, "warning": 1, "info": 2}


def most_common_category(counts: dict[str, int]) -> ErrorCategory | None:
    """Category with the highest count; earlier categories win ties."""
    best: ErrorCategory | None = None
    best_count = 0
    for category in ERROR_CATEGORIES:
        if counts.get(category, 0) > best_count:
            best_count = counts[category]
            best = category  # type: ignore[assignment]
    return best


def severity_for_rate(error_rate: float) -> InsightSeverity:
    if error_rate >= CRITICAL_ERROR_RATE:
        return "critical"
    if error_rate >= WARNING_ERROR_RATE:
        return "warning"
    return "info"


# =============================================================================
# Models
# =============================================================================


class ToolErrorBreakdown(ReportModel):
    tool_name: str
    total_invocations: int
    total_errors: int
    error_rate: float
    errors_by_category: dict[str, int]
    most_common_error_category: ErrorCategory | None


class ErrorStats(ReportModel):
    total_invocations: int
    total_errors: int
    overall_error_rate: float
    by_tool: list[ToolErrorBreakdown]
    by_category: dict[str, int]
    tools_by_error_rate: list[str]
    tools_by_error_count: list[str]
    period_start: str
    period_end: str
    generated_at: str


class ProblematicTool(ReportModel):
    tool_name: str
    error_rate: float
    error_count: int
    invocation_count: int
    most_common_error_category: ErrorCategory | None
    severity: InsightSeverity


class ErrorFrequencyDataPoint(ReportModel):
    date: str
    total_invocations: int
    total_errors: int
    error_rate: float
    by_category: dict[str, int]


class ErrorTrend(ReportModel):
    data_points: list[ErrorFrequencyDataPoint]
    trend: TrendDirection
    change_percentage: float
    average_error_rate: float


class ErrorSummary(ReportModel):
    total_errors: int
    overall_error_rate: str
    most_problematic_tool: str | None
    most_common_error_type: ErrorCategory | None
    trend: TrendDirection


# =============================================================================
# Pure computations
# =============================================================================


def build_error_stats(
    events: Sequence[AnalyticsEvent], period_start: str, period_end: str
) -> ErrorStats:
    totals = dict.fromkeys(TOOL_NAMES, 0)
    errors = dict.fromkeys(TOOL_NAMES, 0)
    categories = {name: empty_error_counts() for name in TOOL_NAMES}
    overall_categories = empty_error_counts()

    for event in events:
        if event.tool_name not in totals:
            continue
        totals[event.tool_name] += 1
        if not event.success:
            category = event.error_category or "unknown"
            errors[event.tool_name] += 1
            categories[event.tool_name][category] += 1
            overall_categories[category] += 1

    by_tool = [
        ToolErrorBreakdown(
            tool_name=name,
            total_invocations=totals[name],
            total_errors=errors[name],
            error_rate=calculate_error_rate(errors[name], totals[name]),
            errors_by_category=categories[name],
            most_common_error_category=most_common_category(categories[name]),
        )
        for name in TOOL_NAMES
        if totals[name] > 0
    ]
    total_invocations = sum(totals.values())
    total_errors = sum(errors.values())
    return ErrorStats(
        total_invocations=total_invocations,
        total_errors=total_errors,
        overall_error_rate=calculate_error_rate(total_errors, total_invocations),
        by_tool=by_tool,
        by_category=overall_categories,
        tools_by_error_rate=[
            t.tool_name for t in sorted(by_tool, key=lambda t: t.error_rate, reverse=True)
        ],
        tools_by_error_count=[
            t.tool_name for t in sorted(by_tool, key=lambda t: t.total_errors, reverse=True)
        ],
        period_start=period_start,
        period_end=period_end,
        generated_at=utc_now_iso(),
    )


def find_problematic_tools(stats: ErrorStats, threshold: float = INFO_ERROR_RATE) -> list[ProblematicTool]:
    """Tools at or above threshold, most severe first, then by rate."""
    tools = [
        ProblematicTool(
            tool_name=t.tool_name,
            error_rate=t.error_rate,
            error_count=t.total_errors,
            invocation_count=t.total_invocations,
            most_common_error_category=t.most_common_error_category,
            severity=severity_for_rate(t.error_rate),
        )
        for t in stats.by_tool
        if t.error_rate >= threshold and t.total_errors > 0
    ]
    tools.sort(key=lambda t: (_SEVERITY_ORDER[t.severity], -t.error_rate))
    return tools


def build_error_trend(events: Sequence[AnalyticsEvent], tool_name: str | None = None) -> ErrorTrend:
    """Daily error rates with a two-half comparison of mean error rate."""
    by_date: dict[str, list[AnalyticsEvent]] = {}
    for event in events:
        if tool_name and event.tool_name != tool_name:
            continue
        by_date.setdefault(event.date, []).append(event)

    points = []
    for date_str, day_events in sorted(by_date.items()):
        categories = empty_error_counts()
        for event in day_events:
            if not event.success:
                categories[event.error_category or "unknown"] += 1
        day_errors = sum(categories.values())
        points.append(
            ErrorFrequencyDataPoint(
                date=date_str,
                total_invocations=len(day_events),
                total_errors=day_errors,
                error_rate=calculate_error_rate(day_errors, len(day_events)),
                by_category=categories,
            )
        )

    trend, change = calculate_trend([p.error_rate for p in points])
    return ErrorTrend(
        data_points=points,
        trend=trend,
        change_percentage=change,
        average_error_rate=calculate_error_rate(
            sum(p.total_errors for p in points), sum(p.total_invocations for p in points)
        ),
    )


# =============================================================================
# Tracker
# =============================================================================


class ErrorTracker:
    """Error statistics for a date range from storage."""

    def __init__(self, storage: StorageAdapter) -> None:
        self.storage = storage

    async def _read(
        self, start_date: str | None, end_date: str | None
    ) -> tuple[list[AnalyticsEvent], str, str]:
        result = await self.storage.read_events(start_date, end_date)
        events = result.events if result.success else []
        return events, result.date_range.start, result.date_range.end

    async def get_error_stats(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> ErrorStats:
        """Error totals, per-tool breakdowns and per-category counts."""
        events, start, end = await self._read(start_date, end_date)
        return build_error_stats(events, start, end)

    async def get_tool_error_breakdown(
        self,
        tool_name: str,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> ToolErrorBreakdown | None:
        stats = await self.get_error_stats(start_date, end_date)
        return next((t for t in stats.by_tool if t.tool_name == tool_name), None)

    async def get_problematic_tools(
        self,
        threshold: float = INFO_ERROR_RATE,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[ProblematicTool]:
        stats = await self.get_error_stats(start_date, end_date)
        return find_problematic_tools(stats, threshold)

    async def get_error_trend(
        self,
        start_date: str | None = None,
        end_date: str | None = None,
        tool_name: str | None = None,
    ) -> ErrorTrend:
        events, _, _ = await self._read(start_date, end_date)
        return build_error_trend(events, tool_name)

    async def get_errors_by_category(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> dict[str, int]:
        stats = await self.get_error_stats(start_date, end_date)
        return stats.by_category

    async def has_high_error_rate(
        self,
        tool_name: str,
        threshold: float = WARNING_ERROR_RATE,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> bool:
        breakdown = await self.get_tool_error_breakdown(tool_name, start_date, end_date)
        return breakdown is not None and breakdown.error_rate >= threshold

    async def get_summary(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> ErrorSummary:
        events, start, end = await self._read(start_date, end_date)
        stats = build_error_stats(events, start, end)
        trend = build_error_trend(events)
        most_problematic = (
            stats.tools_by_error_rate[0]
            if stats.tools_by_error_rate and stats.total_errors > 0
            else None
        )
        return ErrorSummary(
            total_errors=stats.total_errors,
            overall_error_rate=f"{stats.overall_error_rate * 100:.1f}%",
            most_problematic_tool=most_problematic,
            most_common_error_type=most_common_category(stats.by_category),
            trend=trend.trend,
        )
