"""Shared typer helpers for think-mcp command line tools."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from rich.console import Console

if TYPE_CHECKING:
    from collections.abc import Callable


def create_cli(name: str, help_text: str) -> typer.Typer:
    """Create a typer app with the project's defaults."""
    return typer.Typer(
        name=name,
        help=help_text,
        no_args_is_help=False,
        add_completion=False,
        rich_markup_mode="rich",
    )


def version_callback(name: str, version: str) -> Callable[[bool | None], None]:
    """Build an eager --version option callback."""

    def callback(value: bool | None) -> None:
        if value:
            Console().print(f"{name} [bold]{version}[/bold]")
            raise typer.Exit()

    return callback
