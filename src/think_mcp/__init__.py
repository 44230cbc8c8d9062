"""think-mcp - MCP server for structured reasoning tools.

Features:
- Reasoning tools (trace, model, pattern, paradigm, debug, ...) served over MCP
- Optional, opt-in, local-only usage analytics (think_mcp.analytics)
- Analytics CLI for consent, status, export and deletion

Usage:
    # Start MCP server (stdio transport)
    think-mcp

    # Manage analytics
    think-mcp analytics status
    think-mcp analytics enable
"""

from importlib.metadata import version
from typing import Any

__version__ = version("think-mcp")

__all__ = ["__version__", "main"]


def __getattr__(name: str) -> Any:
    """Lazy import for server module to avoid building the server at import time."""
    if name == "main":
        from think_mcp.server import main

        return main
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
