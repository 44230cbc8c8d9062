"""Privacy-first local usage analytics for think-mcp.

Records only which tool ran, when, whether it succeeded, how long it took and
a coarse error category. Collection is opt-in (config flag AND consent), data
never leaves the machine, and partitions older than the retention window are
deleted automatically.

Components are owned by a single AnalyticsContext:
- Config/consent: ConfigManager, ConsentManager
- Write path: InvocationTracker -> AnalyticsCollector -> StorageAdapter
- Lifecycle: RetentionEnforcer, DeletionManager
- Read path: UsageAggregator, ErrorTracker, InsightsGenerator, AnalyticsExporter
"""

from think_mcp.analytics.aggregator import UsageAggregator, UsageStats
from think_mcp.analytics.collector import AnalyticsCollector, FlushResult
from think_mcp.analytics.config import AnalyticsConfig, AnalyticsConfigError, ConfigManager
from think_mcp.analytics.consent import ConsentManager, ConsentStatus
from think_mcp.analytics.context import AnalyticsContext
from think_mcp.analytics.deletion import DeletionManager, DeletionResult
from think_mcp.analytics.error_tracker import ErrorStats, ErrorTracker
from think_mcp.analytics.export import AnalyticsExporter, ExportOptions, events_to_csv
from think_mcp.analytics.insights import InsightOptions, InsightsGenerator, InsightsReport
from think_mcp.analytics.retention import RetentionEnforcer
from think_mcp.analytics.storage import StorageAdapter
from think_mcp.analytics.tracker import InvocationTracker, categorize_error
from think_mcp.analytics.types import AnalyticsEvent, ConsentRecord, ErrorCategory

__all__ = [
    "AnalyticsCollector",
    "AnalyticsConfig",
    "AnalyticsConfigError",
    "AnalyticsContext",
    "AnalyticsEvent",
    "AnalyticsExporter",
    "ConfigManager",
    "ConsentManager",
    "ConsentRecord",
    "ConsentStatus",
    "DeletionManager",
    "DeletionResult",
    "ErrorCategory",
    "ErrorStats",
    "ErrorTracker",
    "ExportOptions",
    "FlushResult",
    "InsightOptions",
    "InsightsGenerator",
    "InsightsReport",
    "InvocationTracker",
    "RetentionEnforcer",
    "StorageAdapter",
    "UsageAggregator",
    "UsageStats",
    "categorize_error",
    "events_to_csv",
]
