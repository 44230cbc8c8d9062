"""Usage aggregation over stored events.

Read-only views computed from StorageAdapter.read_events(): per-tool metrics,
popularity, daily/weekly/monthly counts and usage trends.

Rates in ToolMetrics and UsageStats are percentages (0-100); the summary's
``overall_error_rate`` is a fraction (0-1). Every rate is 0 when the total is 0.
"""

from __future__ import annotations

import math
from datetime import date
from typing import TYPE_CHECKING, Literal

from pydantic import Field

from think_mcp.analytics.models import ReportModel
from think_mcp.analytics.types import TrendDirection, empty_error_counts, utc_now_iso

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from think_mcp.analytics.storage import StorageAdapter
    from think_mcp.analytics.types import AnalyticsEvent

AggregationPeriod = Literal["daily", "weekly", "monthly"]

# Relative change (percent) beyond which a series counts as trending
TREND_SIGNIFICANCE_THRESHOLD = 10
MIN_TREND_DATA_POINTS = 2

# ToolMetrics.error_rate (percent) above which a tool needs attention
ATTENTION_ERROR_RATE = 10


# =============================================================================
# Math helpers
# =============================================================================


def calculate_error_rate(errors: int, total: int) -> float:
    """errors / total as a fraction, 0 when total is 0."""
    if total == 0:
        return 0.0
    return errors / total


def calculate_average(total: float, count: int) -> float:
    if count == 0:
        return 0.0
    return total / count


def calculate_p95(values: Sequence[float]) -> float:
    """Nearest-rank 95th percentile."""
    if not values:
        return 0
    ordered = sorted(values)
    index = math.ceil(len(ordered) * 0.95) - 1
    return ordered[max(0, index)]


def calculate_change(values: Sequence[float]) -> float:
    """Percent change of the second half's mean over the first half's.

    The series is split at floor(n / 2). Going from zero to anything is 100.
    """
    midpoint = len(values) // 2
    first, second = values[:midpoint], values[midpoint:]
    first_avg = sum(first) / len(first)
    second_avg = sum(second) / len(second)
    if first_avg > 0:
        return (second_avg - first_avg) / first_avg * 100
    if second_avg > 0:
        return 100.0
    return 0.0


def calculate_trend(values: Sequence[float]) -> tuple[TrendDirection, float]:
    """Classify a time-ordered series as increasing, decreasing or stable.

    Returns:
        (trend, change_percentage)
    """
    if len(values) < MIN_TREND_DATA_POINTS:
        return "stable", 0.0
    change = calculate_change(values)
    if change > TREND_SIGNIFICANCE_THRESHOLD:
        return "increasing", change
    if change < -TREND_SIGNIFICANCE_THRESHOLD:
        return "decreasing", change
    return "stable", change


def week_id(date_str: str) -> str:
    """ISO week identifier, e.g. "2026-W03"."""
    iso = date.fromisoformat(date_str).isocalendar()
    return f"{iso.year}-W{iso.week:02d}"


def month_id(date_str: str) -> str:
    return date_str[:7]


_PERIOD_KEYS: dict[str, Callable[[str], str]] = {
    "daily": lambda d: d,
    "weekly": week_id,
    "monthly": month_id,
}


# =============================================================================
# Models
# =============================================================================


class ToolMetrics(ReportModel):
    tool_name: str
    invocation_count: int
    success_count: int
    error_count: int
    error_rate: float = Field(description="Error rate as a percentage (0-100)")
    avg_duration_ms: float
    min_duration_ms: float
    max_duration_ms: float
    p95_duration_ms: float
    errors_by_category: dict[str, int]
    first_invocation: str
    last_invocation: str


class TimeSeriesDataPoint(ReportModel):
    date: str
    count: int
    success_count: int
    error_count: int


class UsageTrend(ReportModel):
    tool_name: str
    data_points: list[TimeSeriesDataPoint]
    trend: TrendDirection
    change_percentage: float


class UsageStats(ReportModel):
    total_invocations: int
    total_successes: int
    total_errors: int
    overall_error_rate: float = Field(description="Error rate as a percentage (0-100)")
    tool_metrics: list[ToolMetrics]
    popularity_ranking: list[str]
    tools_needing_attention: list[str]
    trends: list[UsageTrend]
    unique_sessions: int
    avg_invocations_per_session: float
    period_start: str
    period_end: str
    generated_at: str = Field(default_factory=utc_now_iso)


class PeriodCount(ReportModel):
    period: str
    total_count: int
    success_count: int
    error_count: int
    error_rate: float = Field(description="Error rate as a fraction (0-1)")
    avg_duration_ms: float


class ToolPeriodCounts(ReportModel):
    tool_name: str
    period_type: AggregationPeriod
    periods: list[PeriodCount]
    trend: TrendDirection
    change_percentage: float


class AggregationSummary(ReportModel):
    total_invocations: int
    total_successes: int
    total_errors: int
    overall_error_rate: float = Field(description="Error rate as a fraction (0-1)")
    overall_avg_duration_ms: float
    unique_sessions: int
    avg_invocations_per_session: float
    most_popular_tool: str | None
    highest_error_rate_tool: str | None
    slowest_tool: str | None


class PopularityEntry(ReportModel):
    tool_name: str
    count: int
    percentage: float
    rank: int


class ErrorRateEntry(ReportModel):
    tool_name: str
    error_rate: float
    error_count: int


class ResponseTimeEntry(ReportModel):
    tool_name: str
    avg_duration_ms: float
    min_duration_ms: float
    max_duration_ms: float
    p95_duration_ms: float


# =============================================================================
# Pure aggregation
# =============================================================================


def build_tool_metrics(events: Sequence[AnalyticsEvent]) -> list[ToolMetrics]:
    """Per-tool metrics in order of first appearance."""
    grouped: dict[str, list[AnalyticsEvent]] = {}
    for event in events:
        grouped.setdefault(event.tool_name, []).append(event)

    metrics = []
    for tool_name, tool_events in grouped.items():
        durations = [e.duration_ms for e in tool_events]
        errors = empty_error_counts()
        for event in tool_events:
            if not event.success:
                errors[event.error_category or "unknown"] += 1
        error_count = sum(1 for e in tool_events if not e.success)
        timestamps = [e.timestamp for e in tool_events]
        metrics.append(
            ToolMetrics(
                tool_name=tool_name,
                invocation_count=len(tool_events),
                success_count=len(tool_events) - error_count,
                error_count=error_count,
                error_rate=calculate_error_rate(error_count, len(tool_events)) * 100,
                avg_duration_ms=calculate_average(sum(durations), len(durations)),
                min_duration_ms=min(durations),
                max_duration_ms=max(durations),
                p95_duration_ms=calculate_p95(durations),
                errors_by_category=errors,
                first_invocation=min(timestamps),
                last_invocation=max(timestamps),
            )
        )
    return metrics


def build_usage_trends(events: Sequence[AnalyticsEvent]) -> list[UsageTrend]:
    """Per-tool daily series with a two-half trend on counts."""
    by_tool: dict[str, dict[str, TimeSeriesDataPoint]] = {}
    for event in events:
        points = by_tool.setdefault(event.tool_name, {})
        point = points.get(event.date)
        if point is None:
            point = TimeSeriesDataPoint(date=event.date, count=0, success_count=0, error_count=0)
            points[event.date] = point
        point.count += 1
        if event.success:
            point.success_count += 1
        else:
            point.error_count += 1

    trends = []
    for tool_name, points in by_tool.items():
        data_points = sorted(points.values(), key=lambda p: p.date)
        trend, change = calculate_trend([p.count for p in data_points])
        trends.append(
            UsageTrend(
                tool_name=tool_name,
                data_points=data_points,
                trend=trend,
                change_percentage=change,
            )
        )
    return trends


def build_period_counts(
    events: Sequence[AnalyticsEvent],
    period_type: AggregationPeriod,
    tool_name: str | None = None,
) -> list[ToolPeriodCounts]:
    key_for = _PERIOD_KEYS[period_type]
    by_tool: dict[str, dict[str, list[AnalyticsEvent]]] = {}
    for event in events:
        if tool_name and event.tool_name != tool_name:
            continue
        by_tool.setdefault(event.tool_name, {}).setdefault(key_for(event.date), []).append(event)

    results = []
    for tool, periods_map in by_tool.items():
        periods = []
        for period, period_events in sorted(periods_map.items()):
            errors = sum(1 for e in period_events if not e.success)
            periods.append(
                PeriodCount(
                    period=period,
                    total_count=len(period_events),
                    success_count=len(period_events) - errors,
                    error_count=errors,
                    error_rate=calculate_error_rate(errors, len(period_events)),
                    avg_duration_ms=calculate_average(
                        sum(e.duration_ms for e in period_events), len(period_events)
                    ),
                )
            )
        trend, change = calculate_trend([p.total_count for p in periods])
        results.append(
            ToolPeriodCounts(
                tool_name=tool,
                period_type=period_type,
                periods=periods,
                trend=trend,
                change_percentage=change,
            )
        )
    return results


def build_usage_stats(
    events: Sequence[AnalyticsEvent],
    period_start: str,
    period_end: str,
) -> UsageStats:
    metrics = build_tool_metrics(events)
    total = len(events)
    errors = sum(1 for e in events if not e.success)
    sessions = {e.session_id for e in events}

    by_popularity = sorted(metrics, key=lambda m: m.invocation_count, reverse=True)
    needing_attention = sorted(
        (m for m in metrics if m.error_rate > ATTENTION_ERROR_RATE),
        key=lambda m: m.error_rate,
        reverse=True,
    )
    return UsageStats(
        total_invocations=total,
        total_successes=total - errors,
        total_errors=errors,
        overall_error_rate=calculate_error_rate(errors, total) * 100,
        tool_metrics=metrics,
        popularity_ranking=[m.tool_name for m in by_popularity],
        tools_needing_attention=[m.tool_name for m in needing_attention],
        trends=build_usage_trends(events),
        unique_sessions=len(sessions),
        avg_invocations_per_session=calculate_average(total, len(sessions)),
        period_start=period_start,
        period_end=period_end,
    )


# =============================================================================
# Aggregator
# =============================================================================


class UsageAggregator:
    """Computes usage statistics for a date range from storage."""

    def __init__(self, storage: StorageAdapter) -> None:
        self.storage = storage

    async def _read(
        self, start_date: str | None, end_date: str | None
    ) -> tuple[list[AnalyticsEvent], str, str]:
        result = await self.storage.read_events(start_date, end_date)
        events = result.events if result.success else []
        return events, result.date_range.start, result.date_range.end

    async def get_usage_stats(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> UsageStats:
        """Totals, per-tool metrics, popularity and trends for a range.

        Args:
            start_date: Inclusive start (default: 30 days ago)
            end_date: Inclusive end (default: today)
        """
        events, start, end = await self._read(start_date, end_date)
        return build_usage_stats(events, start, end)

    async def get_usage_trends(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> list[UsageTrend]:
        events, _, _ = await self._read(start_date, end_date)
        return build_usage_trends(events)

    async def get_period_counts(
        self,
        period_type: AggregationPeriod,
        tool_name: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[ToolPeriodCounts]:
        events, _, _ = await self._read(start_date, end_date)
        return build_period_counts(events, period_type, tool_name)

    async def get_daily_counts(
        self,
        tool_name: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[ToolPeriodCounts]:
        return await self.get_period_counts("daily", tool_name, start_date, end_date)

    async def get_weekly_counts(
        self,
        tool_name: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[ToolPeriodCounts]:
        return await self.get_period_counts("weekly", tool_name, start_date, end_date)

    async def get_monthly_counts(
        self,
        tool_name: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[ToolPeriodCounts]:
        return await self.get_period_counts("monthly", tool_name, start_date, end_date)

    async def get_summary(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> AggregationSummary:
        stats = await self.get_usage_stats(start_date, end_date)
        metrics = stats.tool_metrics
        with_errors = [m for m in metrics if m.error_count > 0]
        highest_error = max(with_errors, key=lambda m: m.error_rate, default=None)
        slowest = max(metrics, key=lambda m: m.avg_duration_ms, default=None)
        total_duration = sum(m.avg_duration_ms * m.invocation_count for m in metrics)
        return AggregationSummary(
            total_invocations=stats.total_invocations,
            total_successes=stats.total_successes,
            total_errors=stats.total_errors,
            overall_error_rate=stats.overall_error_rate / 100,
            overall_avg_duration_ms=calculate_average(total_duration, stats.total_invocations),
            unique_sessions=stats.unique_sessions,
            avg_invocations_per_session=stats.avg_invocations_per_session,
            most_popular_tool=stats.popularity_ranking[0] if stats.popularity_ranking else None,
            highest_error_rate_tool=highest_error.tool_name if highest_error else None,
            slowest_tool=slowest.tool_name if slowest else None,
        )

    async def get_tool_metrics(
        self,
        tool_name: str,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> ToolMetrics | None:
        stats = await self.get_usage_stats(start_date, end_date)
        return next((m for m in stats.tool_metrics if m.tool_name == tool_name), None)

    async def get_popularity_ranking(
        self,
        start_date: str | None = None,
        end_date: str | None = None,
        limit: int | None = None,
    ) -> list[PopularityEntry]:
        stats = await self.get_usage_stats(start_date, end_date)
        return popularity_ranking(stats, limit)

    async def get_error_rates(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> list[ErrorRateEntry]:
        stats = await self.get_usage_stats(start_date, end_date)
        entries = [
            ErrorRateEntry(tool_name=m.tool_name, error_rate=m.error_rate, error_count=m.error_count)
            for m in stats.tool_metrics
        ]
        return sorted(entries, key=lambda e: e.error_rate, reverse=True)

    async def get_response_times(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> list[ResponseTimeEntry]:
        stats = await self.get_usage_stats(start_date, end_date)
        entries = [
            ResponseTimeEntry(
                tool_name=m.tool_name,
                avg_duration_ms=m.avg_duration_ms,
                min_duration_ms=m.min_duration_ms,
                max_duration_ms=m.max_duration_ms,
                p95_duration_ms=m.p95_duration_ms,
            )
            for m in stats.tool_metrics
        ]
        return sorted(entries, key=lambda e: e.avg_duration_ms, reverse=True)


def popularity_ranking(stats: UsageStats, limit: int | None = None) -> list[PopularityEntry]:
    """Rank tools by invocation count with their share of all invocations."""
    ordered = sorted(stats.tool_metrics, key=lambda m: m.invocation_count, reverse=True)
    ranking = [
        PopularityEntry(
            tool_name=m.tool_name,
            count=m.invocation_count,
            percentage=(
                m.invocation_count / stats.total_invocations * 100
                if stats.total_invocations
                else 0.0
            ),
            rank=index + 1,
        )
        for index, m in enumerate(ordered)
    ]
    return ranking[:limit] if limit else ranking
