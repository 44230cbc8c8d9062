"""Unit tests for tool invocation tracking and error categorization."""

from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel, ValidationError

from think_mcp.analytics.tracker import NOOP_HANDLE, categorize_error


class SchemaMismatch(Exception):
    pass


class UpstreamTimedOut(Exception):
    pass


def _pydantic_error() -> ValidationError:
    class Model(BaseModel):
        count: int

    try:
        Model(count="many")  # type: ignore[arg-type]
    except ValidationError as e:
        return e
    raise AssertionError("expected a validation error")


# =============================================================================
# CATEGORIZATION - Exception class name to category
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
class TestCategorizeError:
    """Test error categorization by exception class name."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (TypeError("bad"), "validation"),
            (SchemaMismatch(), "validation"),
            (TimeoutError(), "timeout"),
            (UpstreamTimedOut(), "timeout"),
            (RuntimeError("boom"), "runtime"),
            (KeyError("k"), "runtime"),
            (ValueError("v"), "runtime"),
            (None, "unknown"),
        ],
    )
    def test_categories(self, error: BaseException | None, expected: str) -> None:
        assert categorize_error(error) == expected

    def test_pydantic_validation_error(self) -> None:
        assert categorize_error(_pydantic_error()) == "validation"

    def test_message_is_never_consulted(self) -> None:
        assert categorize_error(RuntimeError("validation timeout invalid")) == "runtime"


# =============================================================================
# HANDLES - Manual start/complete
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
class TestInvocationHandles:
    """Test invocation handles."""

    def test_disabled_returns_shared_noop(self, make_context) -> None:
        context = make_context(consent=False)

        first = context.tracker.start_invocation("trace")
        second = context.tracker.start_invocation("model")

        assert first is NOOP_HANDLE
        assert second is NOOP_HANDLE
        first.complete(True)
        assert context.collector.pending_events == 0

    def test_handle_records_once(self, make_context) -> None:
        context = make_context()
        handle = context.tracker.start_invocation("trace")

        handle.complete(False, "timeout")
        handle.complete(True)

        assert handle.completed
        assert context.collector.pending_events == 1

    @pytest.mark.asyncio
    async def test_failure_defaults_to_unknown(self, make_context) -> None:
        context = make_context()
        context.tracker.start_invocation("debug").complete(False)
        await context.collector.flush()

        read = await context.storage.read_events()
        assert read.events[0].error_category == "unknown"
        await context.collector.shutdown()


# =============================================================================
# WRAPPING - track_invocation and the decorator
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
class TestWrapping:
    """Test wrapping sync and async tool handlers."""

    @pytest.mark.asyncio
    async def test_track_invocation_sync_success(self, make_context) -> None:
        context = make_context()

        result = await context.tracker.track_invocation("trace", lambda x: x * 2, 21)

        assert result == 42
        await context.collector.flush()
        read = await context.storage.read_events()
        assert read.events[0].tool_name == "trace"
        assert read.events[0].success is True
        await context.collector.shutdown()

    @pytest.mark.asyncio
    async def test_track_invocation_reraises(self, make_context) -> None:
        context = make_context()

        async def broken() -> None:
            raise TypeError("bad input")

        with pytest.raises(TypeError, match="bad input"):
            await context.tracker.track_invocation("model", broken)

        await context.collector.flush()
        read = await context.storage.read_events()
        assert read.events[0].success is False
        assert read.events[0].error_category == "validation"
        await context.collector.shutdown()

    @pytest.mark.asyncio
    async def test_async_decorator_measures_duration(self, make_context) -> None:
        context = make_context()

        @context.tracker.with_analytics("council")
        async def slow() -> str:
            await asyncio.sleep(0.02)
            return "done"

        assert await slow() == "done"
        assert slow.__name__ == "slow"

        await context.collector.flush()
        read = await context.storage.read_events()
        assert read.events[0].tool_name == "council"
        assert read.events[0].duration_ms >= 15
        await context.collector.shutdown()

    def test_sync_decorator_reraises(self, make_context) -> None:
        context = make_context()

        @context.tracker.with_analytics("decide")
        def decide() -> None:
            raise TimeoutError

        with pytest.raises(TimeoutError):
            decide()

        assert context.collector.pending_events == 1

    def test_decorator_when_disabled(self, make_context) -> None:
        context = make_context(enabled=False)

        @context.tracker.with_analytics("map")
        def mapper(value: int) -> int:
            return value + 1

        assert mapper(1) == 2
        assert context.collector.pending_events == 0
