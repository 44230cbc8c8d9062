"""Process-wide owner of the analytics components.

One AnalyticsContext holds exactly one instance of every component and wires
them together explicitly:

    context = AnalyticsContext()
    await context.start()
    handle = context.tracker.start_invocation("trace")
    ...
    await context.shutdown()

Tests and long-running processes rebuild everything from a fresh config read
with ``await context.reset()``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

from think_mcp.analytics.aggregator import UsageAggregator
from think_mcp.analytics.collector import AnalyticsCollector
from think_mcp.analytics.config import ConfigManager
from think_mcp.analytics.consent import ConsentManager
from think_mcp.analytics.deletion import DeletionManager
from think_mcp.analytics.error_tracker import ErrorTracker
from think_mcp.analytics.export import AnalyticsExporter
from think_mcp.analytics.insights import InsightOptions, InsightsGenerator
from think_mcp.analytics.retention import RetentionEnforcer
from think_mcp.analytics.storage import StorageAdapter
from think_mcp.analytics.tracker import InvocationTracker
from think_mcp.logging import LogSpan

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path


class AnalyticsContext:
    """Owns and wires every analytics component."""

    def __init__(
        self,
        overrides: Mapping[str, Any] | None = None,
        *,
        config_path: Path | None = None,
        consent_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
        insight_options: InsightOptions | None = None,
        auto_cleanup: bool = True,
    ) -> None:
        self._overrides = dict(overrides or {})
        self._config_path = config_path
        self._consent_path = consent_path
        self._environ = environ
        self._insight_options = insight_options
        self._auto_cleanup = auto_cleanup
        self._started = False
        self._build()

    def _build(self) -> None:
        self.config_manager = ConfigManager(
            self._overrides, config_path=self._config_path, environ=self._environ
        )
        config = self.config_manager.get_config()
        self.storage = StorageAdapter(config.resolved_storage_path, config.retention_days)
        self.consent_manager = ConsentManager(
            self._consent_path, config_manager=self.config_manager, storage=self.storage
        )
        self.collector = AnalyticsCollector(self.storage, self.config_manager, self.consent_manager)
        self.tracker = InvocationTracker(self.collector)
        self.retention = RetentionEnforcer(self.storage, auto_cleanup_on_init=self._auto_cleanup)
        self.deletion = DeletionManager(
            self.storage,
            self.collector,
            self.consent_manager,
            reset_components=self.reset_components,
        )
        self.aggregator = UsageAggregator(self.storage)
        self.error_tracker = ErrorTracker(self.storage)
        self.insights = InsightsGenerator(self.aggregator, self.error_tracker, self._insight_options)
        self.exporter = AnalyticsExporter(
            self.storage, self.insights, self.config_manager, self.consent_manager
        )

    @property
    def started(self) -> bool:
        return self._started

    def is_enabled(self) -> bool:
        return self.collector.is_enabled()

    async def start(self) -> None:
        """Initialize storage and run the startup retention sweep.

        Does nothing on disk unless analytics is enabled.
        """
        if self._started:
            return
        self._started = True
        with LogSpan(span="analytics.start", enabled=self.is_enabled()) as span:
            if not self.is_enabled():
                return
            try:
                await self.storage.initialize()
            except OSError as e:
                span.add("storageError", str(e))
                logger.warning(f"Analytics storage unavailable: {e}")
                return
            cleanup = await self.retention.initialize()
            if cleanup is not None:
                span.add(filesDeleted=cleanup.files_deleted)
            self.retention.start_scheduled_cleanup()

    async def shutdown(self) -> None:
        """Drain pending events and stop background tasks.

        A started, enabled context also runs one final retention cleanup.
        """
        with LogSpan(span="analytics.shutdown") as span:
            final_cleanup = self._started and self.is_enabled()
            self.retention.stop_scheduled_cleanup()
            result = await self.collector.shutdown()
            span.add(eventsFlushed=result.events_flushed, flushOk=result.success)
            if final_cleanup:
                cleanup = await self.retention.shutdown()
                span.add(filesDeleted=cleanup.files_deleted)
        self._started = False

    def reset_components(self) -> None:
        """Reset the collector and drop cached config and consent state."""
        self.collector.reset()
        self.config_manager.reload()
        self.consent_manager.clear_cache()

    async def reset(self) -> None:
        """Shut down and rebuild every component from a fresh config read."""
        await self.shutdown()
        self.retention.reset()
        self._build()
