"""Path resolution for the think-mcp user directory.

think-mcp keeps all user state under a single global directory:
- ~/.think-mcp/analytics.{yaml,yml,json}: analytics configuration
- ~/.think-mcp/consent.json: analytics consent record
- ~/.think-mcp/analytics/: daily analytics partitions (default storage path)
- ~/.think-mcp/logs/: server and CLI logs

Set THINK_MCP_HOME to relocate the directory (used by tests and sandboxes).
Directories are created lazily on first use, not on install.
"""

from __future__ import annotations

import os
from pathlib import Path

# Directory name under the user's home
GLOBAL_DIR_NAME = ".think-mcp"

# Environment variable overriding the global directory
HOME_ENV_VAR = "THINK_MCP_HOME"

CONSENT_FILE_NAME = "consent.json"
CONFIG_FILE_NAMES = ("analytics.yaml", "analytics.yml", "analytics.json")
LOGS_DIR_NAME = "logs"


def get_global_dir() -> Path:
    """Get the global think-mcp directory path.

    Returns THINK_MCP_HOME if set, else ~/.think-mcp/ (not necessarily existing).
    """
    env_home = os.getenv(HOME_ENV_VAR)
    if env_home:
        return expand_path(env_home)
    return Path.home() / GLOBAL_DIR_NAME


def get_consent_path() -> Path:
    """Get the path of the persisted consent record."""
    return get_global_dir() / CONSENT_FILE_NAME


def get_config_path() -> Path:
    """Get the analytics config file path.

    Resolution order:
    1. ~/.think-mcp/analytics.yaml
    2. ~/.think-mcp/analytics.yml
    3. ~/.think-mcp/analytics.json

    Returns:
        The first existing candidate, or the JSON path when none exists
        (the location new configs are saved to).
    """
    global_dir = get_global_dir()
    for name in CONFIG_FILE_NAMES:
        candidate = global_dir / name
        if candidate.exists():
            return candidate
    return global_dir / CONFIG_FILE_NAMES[-1]


def get_logs_dir() -> Path:
    """Get the log directory path."""
    return get_global_dir() / LOGS_DIR_NAME


def expand_path(path: str | Path) -> Path:
    """Expand ~ in a path.

    Only expands ~ to home directory. Does NOT expand ${VAR} patterns.

    Args:
        path: Path string potentially containing ~

    Returns:
        Expanded absolute Path
    """
    return Path(path).expanduser().resolve()
