"""In-memory batching collector for analytics events.

The collector sits on the hot path of every tool call:

- Disabled (no config flag or no consent): track calls return immediately
  without allocating anything.
- Enabled: events are appended to an in-memory batch. One background flush
  task per collector persists the batch when it reaches ``batch_size`` or
  when ``flush_interval_ms`` elapses.

Flushing swaps the batch for an empty list with no await in between, so a
track call racing with a flush can never lose or duplicate an event. When a
write fails, only the events of uncommitted partitions are put back at the
front of the batch.
"""

from __future__ import annotations

import asyncio
import secrets
import string
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loguru import logger

from think_mcp.analytics.types import AnalyticsEvent, ErrorCategory, utc_now_iso
from think_mcp.logging import LogSpan

if TYPE_CHECKING:
    from think_mcp.analytics.config import ConfigManager
    from think_mcp.analytics.consent import ConsentManager
    from think_mcp.analytics.storage import StorageAdapter

SESSION_ID_LENGTH = 16
_SESSION_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id() -> str:
    """Random 16-character session token from [a-z0-9]."""
    return "".join(secrets.choice(_SESSION_ID_ALPHABET) for _ in range(SESSION_ID_LENGTH))


@dataclass
class FlushResult:
    success: bool
    events_flushed: int
    error: str | None = None


@dataclass
class CollectorStats:
    """Point-in-time collector counters.

    Every counter is monotonic except ``pending_events``.
    """

    enabled: bool
    pending_events: int
    total_events_tracked: int
    total_events_flushed: int
    total_flush_errors: int
    session_id: str
    batch_size: int
    flush_interval_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "pendingEvents": self.pending_events,
            "totalEventsTracked": self.total_events_tracked,
            "totalEventsFlushed": self.total_events_flushed,
            "totalFlushErrors": self.total_flush_errors,
            "sessionId": self.session_id,
            "batchSize": self.batch_size,
            "flushIntervalMs": self.flush_interval_ms,
        }


class AnalyticsCollector:
    """Batches events in memory in front of the storage adapter."""

    def __init__(
        self,
        storage: StorageAdapter,
        config_manager: ConfigManager,
        consent_manager: ConsentManager,
        *,
        session_id: str | None = None,
    ) -> None:
        self.storage = storage
        self.config_manager = config_manager
        self.consent_manager = consent_manager
        self._session_id = session_id or generate_session_id()
        self._batch: list[AnalyticsEvent] = []
        self._total_tracked = 0
        self._total_flushed = 0
        self._total_flush_errors = 0
        self._is_shutdown = False
        self._flush_task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[FlushResult] | None = None
        self._wakeup: asyncio.Event | None = None
        self._writes_in_progress = 0
        self._writes_idle = asyncio.Event()
        self._writes_idle.set()

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def pending_events(self) -> int:
        return len(self._batch)

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    def is_enabled(self) -> bool:
        """Whether collection is allowed right now (config flag AND consent)."""
        return self.config_manager.is_enabled() and self.consent_manager.is_consent_given()

    # =========================================================================
    # Tracking
    # =========================================================================

    def _append(
        self,
        tool_name: str,
        success: bool,
        duration_ms: float,
        error_category: ErrorCategory | None,
        timestamp: str | None,
    ) -> None:
        event = AnalyticsEvent(
            tool_name=tool_name,
            timestamp=timestamp or utc_now_iso(),
            success=success,
            duration_ms=max(0, round(duration_ms)),
            session_id=self._session_id,
            error_category=None if success else (error_category or "unknown"),
        )
        self._batch.append(event)
        self._total_tracked += 1

    def track_sync(
        self,
        tool_name: str,
        success: bool,
        duration_ms: float,
        error_category: ErrorCategory | None = None,
        timestamp: str | None = None,
    ) -> None:
        """Queue an event without waiting for any I/O.

        Outside a running event loop the event stays pending until the next
        flush() call.
        """
        if self._is_shutdown or not self.is_enabled():
            return
        self._append(tool_name, success, duration_ms, error_category, timestamp)
        self._schedule_flush()

    async def track(
        self,
        tool_name: str,
        success: bool,
        duration_ms: float,
        error_category: ErrorCategory | None = None,
        timestamp: str | None = None,
    ) -> None:
        """Queue an event, flushing inline once the batch is full."""
        if self._is_shutdown or not self.is_enabled():
            return
        self._append(tool_name, success, duration_ms, error_category, timestamp)
        if len(self._batch) >= self.config_manager.get_config().batch_size:
            await self.flush()
        else:
            self._schedule_flush()

    # =========================================================================
    # Background flushing
    # =========================================================================

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        if self._flush_task is None or self._flush_task.done():
            self._wakeup = asyncio.Event()
            self._flush_task = loop.create_task(self._flush_loop())
            self._flush_task.add_done_callback(self._on_flush_task_done)

        if self._wakeup is not None and len(self._batch) >= self.config_manager.get_config().batch_size:
            self._wakeup.set()

    async def _flush_loop(self) -> None:
        """Flush on size or interval until the batch drains."""
        interval = self.config_manager.get_config().flush_interval_ms / 1000
        while True:
            assert self._wakeup is not None
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
            except TimeoutError:
                pass
            self._wakeup.clear()
            if self._batch:
                # Shielded so cancelling the loop never abandons a swapped batch
                self._inflight = asyncio.ensure_future(self.flush())
                await asyncio.shield(self._inflight)
            if not self._batch:
                return

    def _on_flush_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Analytics flush task failed: {type(error).__name__}: {error}")

    # =========================================================================
    # Flush / shutdown
    # =========================================================================

    async def flush(self) -> FlushResult:
        """Persist all pending events.

        While collection is disabled (e.g. consent was withdrawn) pending
        events are discarded instead of written.
        """
        if not self._batch:
            return FlushResult(success=True, events_flushed=0)

        if not self.is_enabled():
            logger.debug(f"Analytics disabled; discarding {len(self._batch)} pending events")
            self._batch = []
            return FlushResult(success=True, events_flushed=0)

        events, self._batch = self._batch, []

        self._writes_in_progress += 1
        self._writes_idle.clear()
        try:
            with LogSpan(span="analytics.flush", pending=len(events)) as span:
                result = await self.storage.append_events(events)
                self._total_flushed += result.events_written
                span.add("eventsWritten", result.events_written)

                if not result.success:
                    self._batch = result.unwritten + self._batch
                    self._total_flush_errors += 1
                    span.add(requeued=len(result.unwritten), writeError=result.error)
                    return FlushResult(
                        success=False,
                        events_flushed=result.events_written,
                        error=result.error,
                    )
        finally:
            self._writes_in_progress -= 1
            if not self._writes_in_progress:
                self._writes_idle.set()

        return FlushResult(success=True, events_flushed=result.events_written)

    def discard_pending(self) -> int:
        """Drop every pending event without writing it.

        Returns:
            Number of events dropped
        """
        discarded = len(self._batch)
        self._batch = []
        return discarded

    async def wait_for_writes(self) -> None:
        """Wait until no flush is writing to storage."""
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            await asyncio.shield(inflight)
        await self._writes_idle.wait()

    async def _stop_flush_task(self) -> None:
        task, self._flush_task = self._flush_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        inflight, self._inflight = self._inflight, None
        if inflight is not None and not inflight.done():
            await inflight

    async def shutdown(self) -> FlushResult:
        """Stop the background task, drain the batch and refuse further tracking."""
        self._is_shutdown = True
        await self._stop_flush_task()
        result = await self.flush()
        logger.debug(f"Analytics collector shut down (flushed {result.events_flushed})")
        return result

    def get_stats(self) -> CollectorStats:
        config = self.config_manager.get_config()
        return CollectorStats(
            enabled=self.is_enabled(),
            pending_events=len(self._batch),
            total_events_tracked=self._total_tracked,
            total_events_flushed=self._total_flushed,
            total_flush_errors=self._total_flush_errors,
            session_id=self._session_id,
            batch_size=config.batch_size,
            flush_interval_ms=config.flush_interval_ms,
        )

    def reset(self) -> None:
        """Drop pending events and counters and start a new session."""
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
        self._flush_task = None
        self._inflight = None
        self._wakeup = None
        self._batch = []
        self._total_tracked = 0
        self._total_flushed = 0
        self._total_flush_errors = 0
        self._is_shutdown = False
        self._session_id = generate_session_id()
