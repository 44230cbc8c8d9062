"""FastMCP server for think-mcp.

Exposes the reasoning tools over stdio. Every tool call passes through the
analytics tracker, which records only metadata (tool name, outcome, duration,
error category) and only when the user has opted in.

Each server is built around one AnalyticsContext by create_server(); nothing
analytics-related lives at module level.

Resources:
    think://analytics/status   - consent, collector and storage state
    think://analytics/privacy  - the privacy notice
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastmcp import FastMCP

from think_mcp.analytics.context import AnalyticsContext
from think_mcp.analytics.privacy import PRIVACY_NOTICE_FULL

# Import logging first to remove Loguru's default console handler
from think_mcp.logging import LogSpan, configure_logging

# Initialize logging to serve.log
configure_logging(log_name="serve")

INSTRUCTIONS = """\
think-mcp provides structured reasoning tools.

Use `trace` to work through a problem one numbered thought at a time. Set
next_thought_needed to false on the final thought.

Usage analytics are local-only and off unless the user opted in with
`think-mcp analytics enable`."""

STATUS_URI = "think://analytics/status"
PRIVACY_URI = "think://analytics/privacy"


# =============================================================================
# Reasoning tools
# =============================================================================


class ThoughtValidationError(ValueError):
    """A trace step with inconsistent numbering."""


class ThoughtTrace:
    """Ordered record of the thoughts submitted to the trace tool."""

    def __init__(self) -> None:
        self.thoughts: list[dict[str, Any]] = []

    def add(
        self,
        thought: str,
        thought_number: int,
        total_thoughts: int,
        next_thought_needed: bool,
    ) -> dict[str, Any]:
        if not thought.strip():
            raise ThoughtValidationError("thought must not be empty")
        if thought_number < 1 or total_thoughts < 1:
            raise ThoughtValidationError("thought_number and total_thoughts must be >= 1")

        # Allow the plan to grow past the original estimate
        total_thoughts = max(total_thoughts, thought_number)
        self.thoughts.append(
            {
                "thought": thought,
                "thoughtNumber": thought_number,
                "totalThoughts": total_thoughts,
            }
        )
        recorded = len(self.thoughts)
        if not next_thought_needed:
            self.thoughts = []
        return {
            "thoughtNumber": thought_number,
            "totalThoughts": total_thoughts,
            "nextThoughtNeeded": next_thought_needed,
            "thoughtHistoryLength": recorded,
        }


class ThinkTools:
    """Tool and resource handlers bound to one analytics context."""

    def __init__(self, context: AnalyticsContext) -> None:
        self.context = context
        self.thought_trace = ThoughtTrace()

    async def trace(
        self,
        thought: str,
        thought_number: int,
        total_thoughts: int,
        next_thought_needed: bool,
    ) -> dict[str, Any]:
        """Record one step of a structured problem breakdown.

        Args:
            thought: The current thinking step
            thought_number: Position of this thought (1-based)
            total_thoughts: Current estimate of thoughts needed
            next_thought_needed: Whether another thought follows

        Returns:
            Progress of the current trace
        """
        return await self.context.tracker.track_invocation(
            "trace",
            self.thought_trace.add,
            thought,
            thought_number,
            total_thoughts,
            next_thought_needed,
        )

    async def analytics_insights(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> dict[str, Any]:
        """Summarize local usage analytics.

        Args:
            start_date: Inclusive start date (YYYY-MM-DD), default 30 days ago
            end_date: Inclusive end date (YYYY-MM-DD), default today

        Returns:
            Health status, insight counts and a one-line summary
        """
        summary = await self.context.insights.get_summary(start_date, end_date)
        return {"analyticsEnabled": self.context.is_enabled(), **summary.to_dict()}

    async def analytics_status(self) -> dict[str, Any]:
        """Consent, collector and storage state."""
        storage_info = await self.context.storage.get_storage_info()
        return {
            "consent": self.context.consent_manager.get_consent_status().to_dict(),
            "config": self.context.config_manager.get_resolved_config().to_dict(),
            "collector": self.context.collector.get_stats().to_dict(),
            "storage": storage_info.to_dict(),
        }

    def privacy_notice(self) -> str:
        """The analytics privacy notice."""
        return PRIVACY_NOTICE_FULL


# =============================================================================
# Server
# =============================================================================


def create_server(context: AnalyticsContext) -> FastMCP:
    """Build a server whose tools and lifespan share one analytics context."""

    @asynccontextmanager
    async def lifespan(_server: FastMCP) -> AsyncIterator[None]:
        """Start analytics with the server and drain it on shutdown."""
        with LogSpan(span="mcp.server.start") as start_span:
            await context.start()
            start_span.add("analyticsEnabled", context.is_enabled())

        try:
            yield
        finally:
            with LogSpan(span="mcp.server.stop") as stop_span:
                pending = context.collector.pending_events
                await context.shutdown()
                stop_span.add("pendingEvents", pending)

    mcp = FastMCP(
        name="think-mcp",
        instructions=INSTRUCTIONS,
        lifespan=lifespan,
    )
    tools = ThinkTools(context)

    mcp.tool(
        tools.trace,
        annotations={
            "title": "Trace Reasoning Step",
            "readOnlyHint": True,
            "destructiveHint": False,
            "idempotentHint": False,
            "openWorldHint": False,
        },
    )
    mcp.tool(
        tools.analytics_insights,
        annotations={
            "title": "Analytics Insights Summary",
            "readOnlyHint": True,
            "destructiveHint": False,
            "idempotentHint": True,
            "openWorldHint": False,
        },
    )
    mcp.resource(STATUS_URI, name="analytics_status", mime_type="application/json")(
        tools.analytics_status
    )
    mcp.resource(PRIVACY_URI, name="privacy_notice", mime_type="text/plain")(tools.privacy_notice)
    return mcp


def main(context: AnalyticsContext | None = None) -> None:
    """Run the MCP server over stdio transport.

    Events the lifespan could not drain, e.g. after Ctrl+C tore down the
    event loop, are flushed on a fresh loop before returning.
    """
    if context is None:
        context = AnalyticsContext()
    try:
        create_server(context).run(show_banner=False)
    finally:
        if context.started:
            asyncio.run(context.shutdown())
