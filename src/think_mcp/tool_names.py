"""Canonical names of the reasoning tools served by think-mcp."""

from __future__ import annotations

from typing import Literal, get_args

ToolName = Literal[
    "trace",
    "model",
    "pattern",
    "paradigm",
    "debug",
    "council",
    "decide",
    "reflect",
    "hypothesis",
    "debate",
    "map",
]

TOOL_NAMES: tuple[str, ...] = get_args(ToolName)

TOOL_DESCRIPTIONS: dict[str, str] = {
    "trace": "Trace (structured problem breakdown)",
    "model": "Model (mental model application)",
    "pattern": "Pattern (pattern matching)",
    "paradigm": "Paradigm (paradigm exploration)",
    "debug": "Debug (systematic debugging)",
    "council": "Council (multi-perspective analysis)",
    "decide": "Decide (decision frameworks)",
    "reflect": "Reflect (reflection prompts)",
    "hypothesis": "Hypothesis (hypothesis generation)",
    "debate": "Debate (argument exploration)",
    "map": "Map (concept mapping)",
}

TOOL_USAGE_SUGGESTIONS: dict[str, str] = {
    "trace": "breaking down complex problems into manageable steps",
    "model": "applying mental models to understand situations",
    "pattern": "recognizing patterns in problems and solutions",
    "paradigm": "exploring different paradigms and perspectives",
    "debug": "systematically debugging issues",
    "council": "getting multiple perspectives on a problem",
    "decide": "making structured decisions with frameworks",
    "reflect": "reflecting on your thinking process",
    "hypothesis": "generating and testing hypotheses",
    "debate": "exploring arguments from multiple angles",
    "map": "mapping concepts and their relationships",
}


def is_tool_name(name: str) -> bool:
    """Check whether a string names a known reasoning tool."""
    return name in TOOL_NAMES


def get_tool_display_name(name: str) -> str:
    """Get the human-readable display name for a tool."""
    return TOOL_DESCRIPTIONS.get(name, name)
