"""Tool invocation tracking.

Tool handlers record analytics through a handle:

    handle = tracker.start_invocation("trace")
    try:
        result = run_tool()
    except Exception as e:
        handle.complete(False, categorize_error(e))
        raise
    handle.complete(True)

or through the decorator:

    @tracker.with_analytics("trace")
    async def trace(...): ...

When analytics is disabled, start_invocation() returns one shared no-op
handle, so an untracked call allocates nothing. Errors are classified by
exception class name only; messages are never read.
"""

from __future__ import annotations

import functools
import inspect
import re
import time
from typing import TYPE_CHECKING, Any, TypeVar

from think_mcp.analytics.types import ErrorCategory

if TYPE_CHECKING:
    from collections.abc import Callable

    from think_mcp.analytics.collector import AnalyticsCollector

F = TypeVar("F", bound="Callable[..., Any]")

_VALIDATION_PATTERN = re.compile(r"validation|schema|type|argument|invalid", re.IGNORECASE)
_TIMEOUT_PATTERN = re.compile(r"timeout|timedout", re.IGNORECASE)


def categorize_error(error: BaseException | None) -> ErrorCategory:
    """Classify an exception by its class name.

    Examples:
        ValidationError, TypeError -> "validation"
        TimeoutError -> "timeout"
        RuntimeError, KeyError -> "runtime"
        None -> "unknown"
    """
    if error is None:
        return "unknown"
    name = type(error).__name__
    if _VALIDATION_PATTERN.search(name):
        return "validation"
    if _TIMEOUT_PATTERN.search(name):
        return "timeout"
    return "runtime"


class InvocationHandle:
    """Timing handle for one tool invocation. Records at most once."""

    __slots__ = ("_collector", "_completed", "_start", "tool_name")

    def __init__(self, collector: AnalyticsCollector, tool_name: str) -> None:
        self._collector = collector
        self.tool_name = tool_name
        self._start = time.perf_counter()
        self._completed = False

    @property
    def duration_ms(self) -> int:
        return round((time.perf_counter() - self._start) * 1000)

    @property
    def completed(self) -> bool:
        return self._completed

    def complete(self, success: bool, error_category: ErrorCategory | None = None) -> None:
        if self._completed:
            return
        self._completed = True
        self._collector.track_sync(
            self.tool_name,
            success,
            self.duration_ms,
            None if success else (error_category or "unknown"),
        )


class _NoopHandle:
    """Handle returned while analytics is disabled."""

    __slots__ = ()

    tool_name = ""
    duration_ms = 0
    completed = False

    def complete(self, success: bool, error_category: ErrorCategory | None = None) -> None:
        return None


NOOP_HANDLE = _NoopHandle()


class InvocationTracker:
    """Creates invocation handles bound to a collector."""

    def __init__(self, collector: AnalyticsCollector) -> None:
        self.collector = collector

    def is_enabled(self) -> bool:
        return self.collector.is_enabled()

    def start_invocation(self, tool_name: str) -> InvocationHandle | _NoopHandle:
        if not self.collector.is_enabled():
            return NOOP_HANDLE
        return InvocationHandle(self.collector, tool_name)

    async def track_invocation(
        self,
        tool_name: str,
        fn: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Run a sync or async callable and record its outcome.

        Raises:
            Exception: Whatever fn raised, unchanged
        """
        handle = self.start_invocation(tool_name)
        try:
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            handle.complete(False, categorize_error(e))
            raise
        handle.complete(True)
        return result

    def with_analytics(self, tool_name: str) -> Callable[[F], F]:
        """Decorator recording each call of a sync or async tool handler."""

        def decorator(func: F) -> F:
            if inspect.iscoroutinefunction(func):

                @functools.wraps(func)
                async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                    handle = self.start_invocation(tool_name)
                    try:
                        result = await func(*args, **kwargs)
                    except Exception as e:
                        handle.complete(False, categorize_error(e))
                        raise
                    handle.complete(True)
                    return result

                return async_wrapper  # type: ignore[return-value]

            @functools.wraps(func)
            def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
                handle = self.start_invocation(tool_name)
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    handle.complete(False, categorize_error(e))
                    raise
                handle.complete(True)
                return result

            return sync_wrapper  # type: ignore[return-value]

        return decorator
