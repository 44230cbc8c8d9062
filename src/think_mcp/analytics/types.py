"""Core analytics value types.

Privacy-first: an event captures only metadata about a tool invocation.
No arguments, no error messages, no stack traces and no user identifiers
ever exist on the type. On disk, events are serialized with camelCase keys:

    {"toolName": "trace", "timestamp": "2026-01-15T10:30:00.000Z",
     "success": false, "durationMs": 42, "sessionId": "k3j9...",
     "errorCategory": "runtime"}
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any, Literal, get_args

ErrorCategory = Literal["validation", "runtime", "timeout", "unknown"]
ERROR_CATEGORIES: tuple[str, ...] = get_args(ErrorCategory)

TrendDirection = Literal["increasing", "decreasing", "stable"]
InsightSeverity = Literal["info", "warning", "critical"]
InsightCategory = Literal["popularity", "performance", "reliability", "trend"]
ExportFormat = Literal["json", "csv"]

# Bump when the partition file layout changes incompatibly
ANALYTICS_SCHEMA_VERSION = "1.0.0"

# The complete set of keys a persisted event may carry
EVENT_KEYS = frozenset(
    {"toolName", "timestamp", "success", "durationMs", "sessionId", "errorCategory"}
)


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string with millisecond precision."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def today_utc() -> str:
    """Current UTC date as YYYY-MM-DD."""
    return datetime.now(UTC).date().isoformat()


def is_valid_date(value: str) -> bool:
    """Check that a string is a real YYYY-MM-DD calendar date."""
    if len(value) != 10:
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def empty_error_counts() -> dict[str, int]:
    """Zeroed per-category error counters."""
    return dict.fromkeys(ERROR_CATEGORIES, 0)


@dataclass(frozen=True)
class AnalyticsEvent:
    """A single tool invocation record.

    ``error_category`` is only meaningful (and only serialized) when
    ``success`` is False.
    """

    tool_name: str
    timestamp: str
    success: bool
    duration_ms: int
    session_id: str
    error_category: ErrorCategory | None = None

    @property
    def date(self) -> str:
        """Partition date (YYYY-MM-DD) taken from the event's own timestamp."""
        return self.timestamp[:10]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "toolName": self.tool_name,
            "timestamp": self.timestamp,
            "success": self.success,
            "durationMs": self.duration_ms,
            "sessionId": self.session_id,
        }
        if not self.success and self.error_category is not None:
            data["errorCategory"] = self.error_category
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalyticsEvent:
        """Create from dictionary.

        Unknown keys are dropped so that nothing beyond the six event fields
        survives a read.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has the wrong type
        """
        timestamp = data["timestamp"]
        tool_name = data["toolName"]
        if not isinstance(timestamp, str) or not isinstance(tool_name, str):
            raise ValueError("toolName and timestamp must be strings")
        if not is_valid_date(timestamp[:10]):
            raise ValueError(f"timestamp does not start with a date: {timestamp!r}")
        success = bool(data["success"])
        category = data.get("errorCategory")
        if category not in ERROR_CATEGORIES:
            category = None
        return cls(
            tool_name=tool_name,
            timestamp=timestamp,
            success=success,
            duration_ms=int(data["durationMs"]),
            session_id=str(data["sessionId"]),
            error_category=None if success else category,
        )


@dataclass(frozen=True)
class ConsentRecord:
    """Persisted consent decision.

    ``consented_at`` survives withdrawal and ``withdrawn_at`` survives re-grant,
    so the record keeps an audit trail of both.
    """

    has_consented: bool
    policy_version: str
    consented_at: str | None = None
    withdrawn_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "hasConsented": self.has_consented,
            "policyVersion": self.policy_version,
        }
        if self.consented_at is not None:
            data["consentedAt"] = self.consented_at
        if self.withdrawn_at is not None:
            data["withdrawnAt"] = self.withdrawn_at
        return data

    @classmethod
    def from_dict(cls, data: Any) -> ConsentRecord | None:
        """Create from dictionary, or None if the data is not a valid record."""
        if not isinstance(data, dict):
            return None
        has_consented = data.get("hasConsented")
        policy_version = data.get("policyVersion")
        if not isinstance(has_consented, bool) or not isinstance(policy_version, str):
            return None
        consented_at = data.get("consentedAt")
        withdrawn_at = data.get("withdrawnAt")
        return cls(
            has_consented=has_consented,
            policy_version=policy_version,
            consented_at=consented_at if isinstance(consented_at, str) else None,
            withdrawn_at=withdrawn_at if isinstance(withdrawn_at, str) else None,
        )
