"""Retention policy enforcement.

Wraps the storage adapter's cleanup with a lifecycle: an optional cleanup on
initialize(), a recurring scheduled cleanup, an audit log of recent runs and
cumulative statistics. Dry runs are logged but never counted.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger

from think_mcp.analytics.types import utc_now_iso
from think_mcp.logging import LogSpan

if TYPE_CHECKING:
    from collections.abc import Callable

    from think_mcp.analytics.storage import StorageAdapter

CleanupAction = Literal["cleanup_started", "cleanup_completed", "cleanup_failed", "dry_run"]

DEFAULT_SCHEDULED_INTERVAL_MS = 24 * 60 * 60 * 1000
MAX_LOG_ENTRIES = 100


@dataclass
class CleanupLogEntry:
    action: CleanupAction
    details: dict[str, Any]
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "action": self.action, "details": self.details}


@dataclass
class RetentionCleanupResult:
    """Storage cleanup result plus the policy it ran under."""

    success: bool
    files_deleted: int
    events_deleted: int
    retention_days: int
    cutoff_date: str
    duration_ms: int
    dry_run: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "filesDeleted": self.files_deleted,
            "eventsDeleted": self.events_deleted,
            "retentionDays": self.retention_days,
            "cutoffDate": self.cutoff_date,
            "durationMs": self.duration_ms,
            "dryRun": self.dry_run,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class RetentionStats:
    initialized: bool
    total_cleanups: int
    total_files_deleted: int
    total_events_deleted: int
    last_cleanup_at: str | None
    last_cleanup_result: RetentionCleanupResult | None
    current_retention_days: int
    scheduled_cleanup_active: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "initialized": self.initialized,
            "totalCleanups": self.total_cleanups,
            "totalFilesDeleted": self.total_files_deleted,
            "totalEventsDeleted": self.total_events_deleted,
            "lastCleanupAt": self.last_cleanup_at,
            "lastCleanupResult": (
                self.last_cleanup_result.to_dict() if self.last_cleanup_result else None
            ),
            "currentRetentionDays": self.current_retention_days,
            "scheduledCleanupActive": self.scheduled_cleanup_active,
        }


class RetentionEnforcer:
    """Applies the retention window to stored partitions."""

    def __init__(
        self,
        storage: StorageAdapter,
        *,
        log_sink: Callable[[CleanupLogEntry], None] | None = None,
        auto_cleanup_on_init: bool = True,
    ) -> None:
        self.storage = storage
        self.log_sink = log_sink
        self.auto_cleanup_on_init = auto_cleanup_on_init
        self._initialized = False
        self._scheduled_task: asyncio.Task[None] | None = None
        self._log_entries: list[CleanupLogEntry] = []
        self._total_cleanups = 0
        self._total_files_deleted = 0
        self._total_events_deleted = 0
        self._last_cleanup_at: str | None = None
        self._last_cleanup_result: RetentionCleanupResult | None = None

    @property
    def retention_days(self) -> int:
        return self.storage.retention_days

    async def initialize(self) -> RetentionCleanupResult | None:
        """Run the startup cleanup once.

        Returns:
            The cleanup result, or None if already initialized or auto
            cleanup is off
        """
        if self._initialized:
            return None
        self._initialized = True
        if self.auto_cleanup_on_init:
            return await self.run_cleanup()
        return None

    async def run_cleanup(self, dry_run: bool = False) -> RetentionCleanupResult:
        """Delete partitions outside the retention window.

        Args:
            dry_run: Report what would be deleted without deleting
        """
        start = time.monotonic()
        retention_days = self.retention_days
        cutoff_date = self.storage.cutoff_date()
        details = {"retentionDays": retention_days, "cutoffDate": cutoff_date, "dryRun": dry_run}
        self._log("dry_run" if dry_run else "cleanup_started", dict(details))

        with LogSpan(span="analytics.retention.cleanup", **details) as span:
            result = await self.storage.run_cleanup(dry_run=dry_run)
            span.add(filesDeleted=result.files_deleted, eventsDeleted=result.events_deleted)

        cleanup = RetentionCleanupResult(
            success=result.success,
            files_deleted=result.files_deleted,
            events_deleted=result.events_deleted,
            retention_days=retention_days,
            cutoff_date=cutoff_date,
            duration_ms=round((time.monotonic() - start) * 1000),
            dry_run=dry_run,
            error=result.error,
        )

        if not dry_run and result.success:
            self._total_cleanups += 1
            self._total_files_deleted += result.files_deleted
            self._total_events_deleted += result.events_deleted
            self._last_cleanup_at = utc_now_iso()
            self._last_cleanup_result = cleanup

        completion = {
            **details,
            "filesDeleted": result.files_deleted,
            "eventsDeleted": result.events_deleted,
        }
        if result.error:
            completion["error"] = result.error
        self._log("cleanup_completed" if result.success else "cleanup_failed", completion)
        return cleanup

    # ----- scheduling --------------------------------------------------------

    def start_scheduled_cleanup(self, interval_ms: int = DEFAULT_SCHEDULED_INTERVAL_MS) -> None:
        """Run cleanup every interval_ms, replacing any running schedule.

        Must be called from within a running event loop.
        """
        self.stop_scheduled_cleanup()
        loop = asyncio.get_running_loop()
        self._scheduled_task = loop.create_task(self._scheduled_loop(interval_ms / 1000))

    async def _scheduled_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.run_cleanup()

    def stop_scheduled_cleanup(self) -> None:
        task, self._scheduled_task = self._scheduled_task, None
        if task is not None and not task.done():
            task.cancel()

    def is_scheduled_cleanup_active(self) -> bool:
        return self._scheduled_task is not None and not self._scheduled_task.done()

    # ----- state -------------------------------------------------------------

    def get_stats(self) -> RetentionStats:
        return RetentionStats(
            initialized=self._initialized,
            total_cleanups=self._total_cleanups,
            total_files_deleted=self._total_files_deleted,
            total_events_deleted=self._total_events_deleted,
            last_cleanup_at=self._last_cleanup_at,
            last_cleanup_result=self._last_cleanup_result,
            current_retention_days=self.retention_days,
            scheduled_cleanup_active=self.is_scheduled_cleanup_active(),
        )

    def get_logs(self) -> list[CleanupLogEntry]:
        return list(self._log_entries)

    def clear_logs(self) -> None:
        self._log_entries = []

    def reset(self) -> None:
        self.stop_scheduled_cleanup()
        self._initialized = False
        self._log_entries = []
        self._total_cleanups = 0
        self._total_files_deleted = 0
        self._total_events_deleted = 0
        self._last_cleanup_at = None
        self._last_cleanup_result = None

    async def shutdown(self) -> RetentionCleanupResult:
        """Stop the schedule and run one final cleanup."""
        self.stop_scheduled_cleanup()
        return await self.run_cleanup()

    def _log(self, action: CleanupAction, details: dict[str, Any]) -> None:
        entry = CleanupLogEntry(action=action, details=details)
        self._log_entries.append(entry)
        if len(self._log_entries) > MAX_LOG_ENTRIES:
            self._log_entries = self._log_entries[-MAX_LOG_ENTRIES:]
        if self.log_sink is not None:
            try:
                self.log_sink(entry)
            except Exception as e:
                logger.debug(f"Retention log sink failed: {e}")
