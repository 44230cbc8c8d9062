"""Unit tests for retention policy enforcement."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from think_mcp.analytics.retention import MAX_LOG_ENTRIES, RetentionEnforcer
from think_mcp.analytics.storage import StorageAdapter

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def week_storage(storage_dir: Path) -> StorageAdapter:
    return StorageAdapter(storage_dir, retention_days=7)


# =============================================================================
# CLEANUP - Counting and statistics
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
class TestRetentionCleanup:
    """Test cleanup runs and their bookkeeping."""

    @pytest.mark.asyncio
    async def test_initialize_runs_cleanup(
        self, week_storage: StorageAdapter, make_event, days_ago
    ) -> None:
        await week_storage.append_events([make_event(day=days_ago(30)), make_event(day=days_ago(1))])
        enforcer = RetentionEnforcer(week_storage)

        result = await enforcer.initialize()

        assert result is not None
        assert result.files_deleted == 1
        assert result.retention_days == 7
        assert result.cutoff_date == days_ago(7)
        assert enforcer.get_stats().initialized

    @pytest.mark.asyncio
    async def test_initialize_without_auto_cleanup(self, week_storage: StorageAdapter) -> None:
        enforcer = RetentionEnforcer(week_storage, auto_cleanup_on_init=False)
        assert await enforcer.initialize() is None

    @pytest.mark.asyncio
    async def test_dry_run_is_not_counted(
        self, week_storage: StorageAdapter, storage_dir: Path, make_event, days_ago
    ) -> None:
        await week_storage.append_events([make_event(day=days_ago(9)), make_event(day=days_ago(9))])
        enforcer = RetentionEnforcer(week_storage)

        result = await enforcer.run_cleanup(dry_run=True)

        assert result.dry_run
        assert result.files_deleted == 1
        assert result.events_deleted == 2
        assert (storage_dir / f"analytics-{days_ago(9)}.json").exists()
        stats = enforcer.get_stats()
        assert stats.total_cleanups == 0
        assert stats.total_files_deleted == 0
        assert stats.last_cleanup_result is None
        assert enforcer.get_logs()[0].action == "dry_run"

    @pytest.mark.asyncio
    async def test_stats_accumulate(
        self, week_storage: StorageAdapter, make_event, days_ago
    ) -> None:
        enforcer = RetentionEnforcer(week_storage)
        await week_storage.append_events([make_event(day=days_ago(8))])
        await enforcer.run_cleanup()
        await week_storage.append_events([make_event(day=days_ago(9)), make_event(day=days_ago(10))])
        await enforcer.run_cleanup()

        stats = enforcer.get_stats()

        assert stats.total_cleanups == 2
        assert stats.total_files_deleted == 3
        assert stats.total_events_deleted == 3
        assert stats.last_cleanup_at is not None
        assert stats.to_dict()["currentRetentionDays"] == 7

    @pytest.mark.asyncio
    async def test_log_sink_receives_entries(self, week_storage: StorageAdapter) -> None:
        received = []
        enforcer = RetentionEnforcer(week_storage, log_sink=received.append)

        await enforcer.run_cleanup()

        assert [e.action for e in received] == ["cleanup_started", "cleanup_completed"]

    @pytest.mark.asyncio
    async def test_failing_log_sink_is_ignored(self, week_storage: StorageAdapter) -> None:
        def broken_sink(_entry) -> None:
            raise RuntimeError("sink down")

        enforcer = RetentionEnforcer(week_storage, log_sink=broken_sink)
        result = await enforcer.run_cleanup()
        assert result.success

    @pytest.mark.asyncio
    async def test_log_is_bounded(self, week_storage: StorageAdapter) -> None:
        enforcer = RetentionEnforcer(week_storage)
        for _ in range(MAX_LOG_ENTRIES):
            await enforcer.run_cleanup()
        assert len(enforcer.get_logs()) == MAX_LOG_ENTRIES
        enforcer.clear_logs()
        assert enforcer.get_logs() == []


# =============================================================================
# SCHEDULING
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
class TestScheduledCleanup:
    """Test the recurring cleanup task."""

    @pytest.mark.asyncio
    async def test_scheduled_cleanup_runs_and_stops(
        self, week_storage: StorageAdapter, make_event, days_ago
    ) -> None:
        await week_storage.append_events([make_event(day=days_ago(20))])
        enforcer = RetentionEnforcer(week_storage)

        enforcer.start_scheduled_cleanup(interval_ms=10)
        assert enforcer.is_scheduled_cleanup_active()
        for _ in range(50):
            if enforcer.get_stats().total_cleanups > 0:
                break
            await asyncio.sleep(0.01)
        enforcer.stop_scheduled_cleanup()
        await asyncio.sleep(0)

        assert enforcer.get_stats().total_files_deleted == 1
        assert not enforcer.is_scheduled_cleanup_active()

    def test_start_requires_running_loop(self, week_storage: StorageAdapter) -> None:
        enforcer = RetentionEnforcer(week_storage)
        with pytest.raises(RuntimeError):
            enforcer.start_scheduled_cleanup()

    @pytest.mark.asyncio
    async def test_reset_clears_state(self, week_storage: StorageAdapter) -> None:
        enforcer = RetentionEnforcer(week_storage)
        await enforcer.initialize()
        enforcer.start_scheduled_cleanup()

        enforcer.reset()

        stats = enforcer.get_stats()
        assert not stats.initialized
        assert stats.total_cleanups == 0
        assert not stats.scheduled_cleanup_active

    @pytest.mark.asyncio
    async def test_shutdown_runs_final_cleanup(self, week_storage: StorageAdapter) -> None:
        enforcer = RetentionEnforcer(week_storage)
        enforcer.start_scheduled_cleanup()

        result = await enforcer.shutdown()

        assert result.success
        assert not enforcer.is_scheduled_cleanup_active()
