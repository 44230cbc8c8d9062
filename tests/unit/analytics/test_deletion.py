"""Unit tests for user-initiated deletion of analytics data."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from think_mcp.analytics.deletion import (
    DELETION_SUCCESS_MESSAGE,
    DELETION_SUCCESS_WITH_CONSENT_MESSAGE,
    DeletionResult,
    format_deletion_result,
)

if TYPE_CHECKING:
    from pathlib import Path


# =============================================================================
# DELETE - Full data deletion
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
class TestDeleteAllData:
    """Test deleting every partition and resetting components."""

    @pytest.mark.asyncio
    async def test_deletes_files_and_counts_pending(self, make_context, make_event) -> None:
        context = make_context(batch_size=100)
        await context.storage.append_events(
            [make_event(day="2026-01-15"), make_event(day="2026-01-16")]
        )
        context.collector.track_sync("trace", True, 10)
        old_session = context.collector.session_id

        result = await context.deletion.delete_all_data(reason="test")

        assert result.success
        assert result.files_deleted == 2
        assert result.events_deleted == 3
        assert result.components_reset
        assert not result.consent_deleted
        assert context.collector.pending_events == 0
        assert context.collector.session_id != old_session
        info = await context.storage.get_storage_info()
        assert info.total_files == 0
        # Consent is preserved unless asked for
        assert context.consent_manager.is_consent_given()

    @pytest.mark.asyncio
    async def test_delete_with_consent(self, make_context, think_home: Path) -> None:
        context = make_context()

        result = await context.deletion.delete_all_data(delete_consent=True)

        assert result.success
        assert result.consent_deleted
        assert not (think_home / "consent.json").exists()
        assert not context.collector.is_enabled()

    @pytest.mark.asyncio
    async def test_delete_without_reset(self, make_context) -> None:
        context = make_context()
        session = context.collector.session_id

        result = await context.deletion.delete_all_data(reset_components=False)

        assert not result.components_reset
        assert context.collector.session_id == session

    @pytest.mark.asyncio
    async def test_pending_events_do_not_survive_without_reset(self, make_context) -> None:
        context = make_context(batch_size=100)
        for _ in range(3):
            context.collector.track_sync("trace", True, 10)

        result = await context.deletion.delete_all_data(reset_components=False)
        await context.collector.flush()

        assert result.events_deleted == 3
        assert context.collector.pending_events == 0
        read = await context.storage.read_events()
        assert read.events == []
        await context.shutdown()

    @pytest.mark.asyncio
    async def test_waits_for_write_in_progress(
        self, make_context, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        context = make_context(batch_size=100)
        release = asyncio.Event()
        append_events = context.storage.append_events

        async def gated_append(events):
            await release.wait()
            return await append_events(events)

        monkeypatch.setattr(context.storage, "append_events", gated_append)
        context.collector.track_sync("trace", True, 10)
        context.collector.track_sync("trace", True, 10)
        flush = asyncio.create_task(context.collector.flush())
        await asyncio.sleep(0)

        deletion = asyncio.create_task(context.deletion.delete_all_data(reset_components=False))
        await asyncio.sleep(0)
        assert not deletion.done()

        release.set()
        await flush
        result = await deletion

        assert result.success
        assert result.events_deleted == 2
        read = await context.storage.read_events()
        assert read.events == []
        await context.shutdown()

    @pytest.mark.asyncio
    async def test_audit_log_and_stats(self, make_context) -> None:
        context = make_context()
        received = []

        await context.deletion.delete_all_data(reason="cleanup", log_sink=received.append)

        actions = [e.action for e in context.deletion.get_logs()]
        assert actions[0] == "deletion_requested"
        assert actions[-1] == "deletion_completed"
        assert [e.action for e in received] == actions
        stats = context.deletion.get_stats()
        assert stats.total_deletions == 1
        assert stats.last_deletion_result is not None

    @pytest.mark.asyncio
    async def test_storage_failure(self, make_context, monkeypatch: pytest.MonkeyPatch) -> None:
        from think_mcp.analytics.storage import CleanupResult

        context = make_context()

        async def failing_delete() -> CleanupResult:
            return CleanupResult(success=False, files_deleted=0, events_deleted=0, error="busy")

        monkeypatch.setattr(context.storage, "delete_all_data", failing_delete)
        result = await context.deletion.delete_all_data()

        assert not result.success
        assert result.error == "busy"
        assert context.deletion.get_logs()[-1].action == "deletion_failed"
        assert context.deletion.get_stats().total_deletions == 0


# =============================================================================
# TEXT - Prompts and messages
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
class TestDeletionText:
    """Test user-facing deletion text."""

    def test_confirmation_prompt(self, make_context) -> None:
        deletion = make_context().deletion

        plain = deletion.get_confirmation_prompt()
        with_consent = deletion.get_confirmation_prompt(include_consent=True)

        assert "cannot be undone" in plain.message
        assert "consent record" in with_consent.message
        assert with_consent.to_dict()["confirmText"] == "Delete All Data"

    def test_success_messages(self, make_context) -> None:
        deletion = make_context().deletion
        assert deletion.get_success_message() == DELETION_SUCCESS_MESSAGE
        assert deletion.get_success_message(consent_deleted=True) == DELETION_SUCCESS_WITH_CONSENT_MESSAGE

    def test_format_result(self) -> None:
        result = DeletionResult(
            success=True,
            files_deleted=3,
            events_deleted=42,
            components_reset=True,
            consent_deleted=False,
            duration_ms=7,
            completed_at="2026-01-15T10:00:00.000Z",
        )
        text = format_deletion_result(result)
        assert "Files deleted:     3" in text
        assert "Events deleted:    42" in text
        assert "Consent deleted:   No" in text

    def test_format_failure(self) -> None:
        result = DeletionResult(
            success=False,
            files_deleted=0,
            events_deleted=0,
            components_reset=False,
            consent_deleted=False,
            duration_ms=1,
            completed_at="2026-01-15T10:00:00.000Z",
            error="permission denied",
        )
        assert "permission denied" in format_deletion_result(result)
