"""Full deletion of analytics data.

delete_all_data() runs, in order: audit the request, drop pending events,
delete every partition, optionally reset in-memory components, optionally
delete the consent record, audit completion. Data and consent deletion are
independent flags; the default deletes data only.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger

from think_mcp.analytics.types import utc_now_iso
from think_mcp.logging import LogSpan

if TYPE_CHECKING:
    from collections.abc import Callable

    from think_mcp.analytics.collector import AnalyticsCollector
    from think_mcp.analytics.consent import ConsentManager
    from think_mcp.analytics.storage import StorageAdapter

DeletionAction = Literal[
    "deletion_requested",
    "deletion_started",
    "deletion_completed",
    "deletion_failed",
    "components_reset",
]

MAX_LOG_ENTRIES = 50


@dataclass(frozen=True)
class ConfirmationPrompt:
    title: str
    message: str
    warning: str
    confirm_text: str
    cancel_text: str

    def to_dict(self) -> dict[str, str]:
        return {
            "title": self.title,
            "message": self.message,
            "warning": self.warning,
            "confirmText": self.confirm_text,
            "cancelText": self.cancel_text,
        }


DELETION_CONFIRMATION_PROMPT = ConfirmationPrompt(
    title="Delete All Analytics Data",
    message=(
        "This will permanently delete all collected analytics data including:\n"
        "  - All tool invocation records\n"
        "  - Usage statistics and trends\n"
        "  - Error tracking data\n"
        "  - Session information\n"
        "\n"
        "This action cannot be undone."
    ),
    warning="All historical analytics data will be permanently lost.",
    confirm_text="Delete All Data",
    cancel_text="Cancel",
)

DELETION_CONFIRMATION_BRIEF = (
    "Are you sure you want to delete all analytics data? This cannot be undone."
)

DELETION_SUCCESS_MESSAGE = """\
All analytics data has been successfully deleted.
Your analytics collection preference has been preserved.

To re-enable data collection, run: think-mcp analytics enable"""

DELETION_SUCCESS_WITH_CONSENT_MESSAGE = """\
All analytics data and consent record have been deleted.
You will need to opt-in again to enable analytics collection.

Run: think-mcp analytics enable"""


@dataclass
class DeletionLogEntry:
    action: DeletionAction
    details: dict[str, Any]
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "action": self.action, "details": self.details}


@dataclass
class DeletionResult:
    success: bool
    files_deleted: int
    events_deleted: int
    components_reset: bool
    consent_deleted: bool
    duration_ms: int
    completed_at: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "filesDeleted": self.files_deleted,
            "eventsDeleted": self.events_deleted,
            "componentsReset": self.components_reset,
            "consentDeleted": self.consent_deleted,
            "durationMs": self.duration_ms,
            "completedAt": self.completed_at,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DeletionStats:
    total_deletions: int = 0
    total_files_deleted: int = 0
    total_events_deleted: int = 0
    last_deletion_at: str | None = None
    last_deletion_result: DeletionResult | None = None


class DeletionManager:
    """Deletes all analytics data, optionally with the consent record."""

    def __init__(
        self,
        storage: StorageAdapter,
        collector: AnalyticsCollector,
        consent_manager: ConsentManager,
        *,
        reset_components: Callable[[], None] | None = None,
    ) -> None:
        self.storage = storage
        self.collector = collector
        self.consent_manager = consent_manager
        self._reset_components = reset_components or collector.reset
        self._log_sink: Callable[[DeletionLogEntry], None] | None = None
        self._log_entries: list[DeletionLogEntry] = []
        self._stats = DeletionStats()

    async def delete_all_data(
        self,
        *,
        reset_components: bool = True,
        delete_consent: bool = False,
        reason: str | None = None,
        log_sink: Callable[[DeletionLogEntry], None] | None = None,
    ) -> DeletionResult:
        """Delete every stored partition.

        Events still pending in the collector are dropped and count as
        deleted.

        Args:
            reset_components: Reset the collector and cached state afterwards
            delete_consent: Also delete the consent record
            reason: Free-text reason kept in the audit log
            log_sink: Callable receiving every audit entry from now on
        """
        if log_sink is not None:
            self._log_sink = log_sink
        start = time.monotonic()

        self._log(
            "deletion_requested",
            {"componentsReset": reset_components, "consentDeleted": delete_consent, "reason": reason},
        )
        self._log("deletion_started", {})

        # A write already under way must land before the wipe, not after it
        await self.collector.wait_for_writes()
        pending = self.collector.discard_pending()
        with LogSpan(span="analytics.deletion", pending=pending) as span:
            storage_result = await self.storage.delete_all_data()
            span.add(filesDeleted=storage_result.files_deleted, success=storage_result.success)

        if not storage_result.success:
            duration_ms = round((time.monotonic() - start) * 1000)
            self._log("deletion_failed", {"error": storage_result.error, "durationMs": duration_ms})
            return DeletionResult(
                success=False,
                files_deleted=storage_result.files_deleted,
                events_deleted=storage_result.events_deleted + pending,
                components_reset=False,
                consent_deleted=False,
                duration_ms=duration_ms,
                completed_at=utc_now_iso(),
                error=storage_result.error,
            )

        events_deleted = storage_result.events_deleted + pending

        components_reset = False
        if reset_components:
            self._reset_components()
            components_reset = True
            self._log("components_reset", {"componentsReset": True})

        consent_deleted = False
        error = None
        if delete_consent:
            try:
                consent_deleted = self.consent_manager.delete_consent_file()
            except OSError as e:
                error = f"Failed to delete consent record: {e}"
                logger.warning(error)
            self.consent_manager.reset()

        duration_ms = round((time.monotonic() - start) * 1000)
        result = DeletionResult(
            success=error is None,
            files_deleted=storage_result.files_deleted,
            events_deleted=events_deleted,
            components_reset=components_reset,
            consent_deleted=consent_deleted,
            duration_ms=duration_ms,
            completed_at=utc_now_iso(),
            error=error,
        )

        self._stats.total_deletions += 1
        self._stats.total_files_deleted += result.files_deleted
        self._stats.total_events_deleted += result.events_deleted
        self._stats.last_deletion_at = result.completed_at
        self._stats.last_deletion_result = result

        self._log(
            "deletion_completed",
            {
                "filesDeleted": result.files_deleted,
                "eventsDeleted": result.events_deleted,
                "componentsReset": components_reset,
                "consentDeleted": consent_deleted,
                "durationMs": duration_ms,
                "reason": reason,
            },
        )
        return result

    # ----- user-facing text --------------------------------------------------

    def get_confirmation_prompt(self, include_consent: bool = False) -> ConfirmationPrompt:
        if not include_consent:
            return DELETION_CONFIRMATION_PROMPT
        return replace(
            DELETION_CONFIRMATION_PROMPT,
            message=(
                f"{DELETION_CONFIRMATION_PROMPT.message}\n\n"
                "Additionally, your consent record will be deleted and you will need to opt-in again."
            ),
            warning="All data and consent will be permanently deleted.",
        )

    def get_brief_confirmation(self) -> str:
        return DELETION_CONFIRMATION_BRIEF

    def get_success_message(self, consent_deleted: bool = False) -> str:
        return DELETION_SUCCESS_WITH_CONSENT_MESSAGE if consent_deleted else DELETION_SUCCESS_MESSAGE

    # ----- state -------------------------------------------------------------

    def get_stats(self) -> DeletionStats:
        return replace(self._stats)

    def get_logs(self) -> list[DeletionLogEntry]:
        return list(self._log_entries)

    def clear_logs(self) -> None:
        self._log_entries = []

    def reset(self) -> None:
        self._log_entries = []
        self._stats = DeletionStats()
        self._log_sink = None

    def _log(self, action: DeletionAction, details: dict[str, Any]) -> None:
        entry = DeletionLogEntry(action=action, details=details)
        self._log_entries.append(entry)
        if len(self._log_entries) > MAX_LOG_ENTRIES:
            self._log_entries = self._log_entries[-MAX_LOG_ENTRIES:]
        if self._log_sink is not None:
            try:
                self._log_sink(entry)
            except Exception as e:
                logger.debug(f"Deletion log sink failed: {e}")


def format_deletion_result(result: DeletionResult) -> str:
    """Render a deletion result for the terminal."""
    if not result.success:
        return f"Deletion failed.\n\n  Error: {result.error}"
    return "\n".join(
        [
            "Deletion completed successfully.",
            "",
            f"  Files deleted:     {result.files_deleted}",
            f"  Events deleted:    {result.events_deleted}",
            f"  Components reset:  {'Yes' if result.components_reset else 'No'}",
            f"  Consent deleted:   {'Yes' if result.consent_deleted else 'No'}",
            f"  Duration:          {result.duration_ms}ms",
        ]
    )
