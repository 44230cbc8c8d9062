"""Shared fixtures for think-mcp tests.

Every test runs against a throwaway THINK_MCP_HOME so nothing touches the
real ~/.think-mcp/ directory.
"""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from think_mcp.analytics.context import AnalyticsContext
from think_mcp.analytics.storage import StorageAdapter
from think_mcp.analytics.types import AnalyticsEvent, ConsentRecord

if TYPE_CHECKING:
    from collections.abc import Callable


@pytest.fixture(autouse=True)
def think_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point THINK_MCP_HOME at a temp directory and clear analytics env vars."""
    home = tmp_path / "think-home"
    monkeypatch.setenv("THINK_MCP_HOME", str(home))
    for name in list(os.environ):
        if name.startswith("THINK_MCP_ANALYTICS_"):
            monkeypatch.delenv(name)
    return home


@pytest.fixture
def storage_dir(think_home: Path) -> Path:
    return think_home / "analytics"


@pytest.fixture
def storage(storage_dir: Path) -> StorageAdapter:
    return StorageAdapter(storage_dir, retention_days=90)


def _days_ago(n: int) -> str:
    """UTC date n days before today as YYYY-MM-DD."""
    return (StorageAdapter.today() - timedelta(days=n)).isoformat()


def _make_event(
    tool_name: str = "trace",
    *,
    day: str | None = None,
    time: str = "12:00:00.000",
    success: bool = True,
    duration_ms: int = 100,
    error_category: str | None = None,
    session_id: str = "testsession00001",
) -> AnalyticsEvent:
    """Build an event on the given day (default: today)."""
    day = day or _days_ago(0)
    return AnalyticsEvent(
        tool_name=tool_name,
        timestamp=f"{day}T{time}Z",
        success=success,
        duration_ms=duration_ms,
        session_id=session_id,
        error_category=None if success else (error_category or "runtime"),  # type: ignore[arg-type]
    )


@pytest.fixture
def make_context(storage_dir: Path) -> Callable[..., AnalyticsContext]:
    """Factory for contexts isolated from the process environment.

    Args (of the returned factory):
        consent: Write a consent record granting collection
        **overrides: Config overrides (enabled defaults to True)
    """

    def factory(*, consent: bool = True, **overrides: Any) -> AnalyticsContext:
        values: dict[str, Any] = {
            "enabled": True,
            "storage_path": str(storage_dir),
            "flush_interval_ms": 60_000,
            **overrides,
        }
        context = AnalyticsContext(values, environ={})
        if consent:
            context.consent_manager.set_consent(
                ConsentRecord(
                    has_consented=True,
                    policy_version="1.0.0",
                    consented_at="2026-01-01T00:00:00.000Z",
                )
            )
        return context

    return factory


@pytest.fixture
def days_ago() -> Callable[[int], str]:
    return _days_ago


@pytest.fixture
def make_event() -> Callable[..., AnalyticsEvent]:
    return _make_event
