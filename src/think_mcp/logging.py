"""Structured logging for think-mcp.

All output goes through loguru. The MCP server speaks JSON-RPC over stdio, so
configure_logging() removes loguru's default stderr handler and writes to
~/.think-mcp/logs/<name>.log instead.

Spans are emitted as single JSON lines:

    with LogSpan(span="analytics.flush", pending=12) as span:
        result = await storage.append_events(events)
        span.add("eventsWritten", result.events_written)
"""

from __future__ import annotations

import json
import sys
import time
from typing import TYPE_CHECKING, Any

from loguru import logger

from think_mcp.paths import get_logs_dir

if TYPE_CHECKING:
    from types import TracebackType

# Remove Loguru's default console handler on import; stdout/stderr belong to MCP
logger.remove()

_configured_sinks: dict[str, int] = {}


def configure_logging(
    log_name: str,
    *,
    level: str = "DEBUG",
    stderr: bool = False,
) -> None:
    """Configure loguru sinks for a process.

    Args:
        log_name: Base name of the log file (e.g., "serve", "cli")
        level: Minimum level written to the file
        stderr: Also log WARNING and above to stderr (CLI use only)
    """
    if log_name in _configured_sinks:
        return

    logs_dir = get_logs_dir()
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        sink_id = logger.add(
            logs_dir / f"{log_name}.log",
            level=level,
            rotation="10 MB",
            retention=5,
            enqueue=False,
        )
        _configured_sinks[log_name] = sink_id
    except OSError as e:
        print(f"Could not open log directory {logs_dir}: {e}", file=sys.stderr)

    if stderr:
        logger.add(sys.stderr, level="WARNING")


class LogEntry:
    """A structured log message rendered as compact JSON."""

    def __init__(self, **fields: Any) -> None:
        self.fields = fields

    def add(self, key: str, value: Any) -> LogEntry:
        """Add a field and return self for chaining."""
        self.fields[key] = value
        return self

    def __str__(self) -> str:
        return json.dumps(self.fields, default=str)


class LogSpan:
    """A structured logging span with timing and attributes.

    Used as a context manager; emits one log line on exit with elapsed time
    and, if the block raised, the exception type and message. Exceptions
    are never swallowed.
    """

    def __init__(self, span: str, **attrs: Any) -> None:
        """Initialize a log span.

        Args:
            span: Span name (e.g., "analytics.cleanup")
            **attrs: Initial attributes to log
        """
        self.span = span
        self.attrs: dict[str, Any] = dict(attrs)
        self.start_time = time.monotonic()
        self.error: str | None = None

    def add(self, key: str | None = None, value: Any = None, **attrs: Any) -> LogSpan:
        """Add attributes to the span.

        Supports both positional and keyword argument styles.

        Returns:
            Self for method chaining
        """
        if key is not None:
            self.attrs[key] = value
        self.attrs.update(attrs)
        return self

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000

    def __enter__(self) -> LogSpan:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is not None:
            self.error = f"{type(exc).__name__}: {exc}"
        self._emit()

    def _emit(self) -> None:
        entry = LogEntry(span=self.span, elapsed_ms=round(self.elapsed_ms, 2), **self.attrs)
        if self.error:
            entry.add("error", self.error)
            logger.opt(depth=2).warning(str(entry))
        else:
            logger.opt(depth=2).debug(str(entry))
