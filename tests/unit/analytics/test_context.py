"""Unit tests for the analytics context lifecycle."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from think_mcp.analytics.context import AnalyticsContext

if TYPE_CHECKING:
    from pathlib import Path


@pytest.mark.unit
@pytest.mark.core
def test_components_share_storage(make_context) -> None:
    """Verify every component is wired to the same storage adapter."""
    context = make_context()
    assert context.collector.storage is context.storage
    assert context.aggregator.storage is context.storage
    assert context.error_tracker.storage is context.storage
    assert context.exporter.storage is context.storage
    assert context.insights.aggregator is context.aggregator


@pytest.mark.unit
@pytest.mark.core
def test_contexts_are_independent(make_context) -> None:
    """Verify two contexts do not share collector state."""
    first, second = make_context(), make_context()
    first.collector.track_sync("trace", True, 10)
    assert second.collector.pending_events == 0
    assert first.collector.session_id != second.collector.session_id


# =============================================================================
# LIFECYCLE - start, shutdown, reset
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
class TestLifecycle:
    """Test starting, stopping and rebuilding a context."""

    @pytest.mark.asyncio
    async def test_start_when_disabled_touches_nothing(self, make_context, storage_dir: Path) -> None:
        context = make_context(enabled=False)

        await context.start()

        assert context.started
        assert not storage_dir.exists()
        assert not context.retention.is_scheduled_cleanup_active()
        await context.shutdown()
        assert not context.started

    @pytest.mark.asyncio
    async def test_start_enabled_initializes_and_schedules(
        self, make_context, storage_dir: Path, make_event, days_ago
    ) -> None:
        context = make_context(retention_days=7)
        await context.storage.append_events([make_event(day=days_ago(30))])

        await context.start()
        await context.start()

        assert storage_dir.is_dir()
        assert context.retention.get_stats().total_files_deleted == 1
        assert context.retention.is_scheduled_cleanup_active()

        await context.shutdown()
        assert not context.retention.is_scheduled_cleanup_active()

    @pytest.mark.asyncio
    async def test_shutdown_drains_pending(self, make_context) -> None:
        context = make_context(batch_size=100)
        await context.start()
        context.tracker.start_invocation("trace").complete(True)

        await context.shutdown()

        read = await context.storage.read_events()
        assert len(read.events) == 1

    @pytest.mark.asyncio
    async def test_shutdown_runs_final_retention_cleanup(
        self, make_context, make_event, days_ago
    ) -> None:
        context = make_context(retention_days=7)
        await context.start()
        await context.storage.append_events([make_event(day=days_ago(10)), make_event()])

        await context.shutdown()

        logs = [entry.action for entry in context.retention.get_logs()]
        assert logs[-1] == "cleanup_completed"
        assert context.retention.get_stats().total_cleanups == 2
        info = await context.storage.get_storage_info()
        assert info.total_files == 1

    @pytest.mark.asyncio
    async def test_reset_rebuilds_components(self, make_context) -> None:
        context = make_context()
        old_collector = context.collector
        context.collector.track_sync("trace", True, 10)

        await context.reset()

        assert context.collector is not old_collector
        assert context.collector.pending_events == 0
        assert old_collector.is_shutdown

    def test_reset_components(self, make_context) -> None:
        context = make_context()
        context.collector.track_sync("trace", True, 10)
        session = context.collector.session_id

        context.reset_components()

        assert context.collector.pending_events == 0
        assert context.collector.session_id != session
        assert context.is_enabled()


@pytest.mark.unit
@pytest.mark.core
def test_environment_overrides_config(storage_dir: Path) -> None:
    """Verify the environment mapping is honored when building the context."""
    context = AnalyticsContext(
        environ={
            "THINK_MCP_ANALYTICS_ENABLED": "true",
            "THINK_MCP_ANALYTICS_STORAGE_PATH": str(storage_dir),
            "THINK_MCP_ANALYTICS_BATCH_SIZE": "7",
        }
    )
    config = context.config_manager.get_config()
    assert config.enabled
    assert config.batch_size == 7
    # No consent record yet
    assert not context.is_enabled()


# =============================================================================
# SCENARIOS - End to end through one context
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
class TestScenarios:
    """Test collection, storage and analysis together."""

    @pytest.mark.asyncio
    async def test_batch_flush_and_error_stats(self, make_context) -> None:
        context = make_context(batch_size=5)
        for _ in range(3):
            await context.collector.track("trace", True, 10)
        for _ in range(2):
            await context.collector.track("model", False, 10, error_category="runtime")

        assert context.collector.pending_events == 0
        read = await context.storage.read_events()
        stats = await context.error_tracker.get_error_stats()

        assert len(read.events) == 5
        assert stats.total_invocations == 5
        assert stats.total_errors == 2
        assert stats.overall_error_rate == pytest.approx(0.4)
        await context.shutdown()

    @pytest.mark.asyncio
    async def test_withdrawal_keeps_flushed_events(self, make_context) -> None:
        context = make_context(batch_size=2)
        await context.collector.track("trace", True, 10)
        await context.collector.track("trace", True, 10)

        await context.consent_manager.withdraw_consent()
        for _ in range(4):
            await context.collector.track("trace", True, 10)
        await context.shutdown()

        read = await context.storage.read_events()
        assert len(read.events) == 2
