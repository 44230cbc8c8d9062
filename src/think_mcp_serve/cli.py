"""CLI entry point for the think-mcp server and its analytics controls."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.table import Table

import think_mcp
from think_mcp._cli import create_cli, version_callback

if TYPE_CHECKING:
    from think_mcp.analytics.context import AnalyticsContext

app = create_cli(
    "think-mcp",
    "think-mcp MCP server - structured reasoning tools with opt-in local analytics.",
)

# Console for stderr output (stdout is reserved for MCP JSON-RPC)
_stderr_console = Console(stderr=True)


def _print_startup_banner() -> None:
    """Print startup message to stderr."""
    _stderr_console.print(
        f"[bold cyan]think-mcp MCP Server[/bold cyan] [dim]v{think_mcp.__version__}[/dim]"
    )
    _stderr_console.print("Running on stdio transport. Press [bold yellow]Ctrl+C[/bold yellow] to stop.")


def _setup_signal_handlers() -> None:
    """Make SIGTERM unwind the server the same way Ctrl+C does.

    The server lifespan and main() then drain pending analytics on the way out.
    """

    def handle_signal(signum: int, _frame: object) -> None:
        sig_name = signal.Signals(signum).name
        _stderr_console.print(f"\n[dim]Received {sig_name}, shutting down...[/dim]")
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, handle_signal)


# Analytics subcommand group - consent, status, export and deletion
analytics_app = typer.Typer(
    name="analytics",
    help="Manage opt-in local usage analytics stored in ~/.think-mcp/",
    no_args_is_help=True,
)
app.add_typer(analytics_app)


def _build_context() -> AnalyticsContext:
    """Build an analytics context for one CLI command.

    The CLI never runs the startup retention sweep; only the server does.
    """
    from think_mcp.analytics.context import AnalyticsContext
    from think_mcp.logging import configure_logging

    configure_logging(log_name="cli", stderr=True)
    return AnalyticsContext(auto_cleanup=False)


@analytics_app.command("enable")
def analytics_enable(
    yes: bool = typer.Option(False, "--yes", "-y", help="Accept the privacy notice without prompting."),
) -> None:
    """Opt in to local usage analytics."""
    from think_mcp.analytics.privacy import ANALYTICS_ENABLED_MESSAGE, PRIVACY_NOTICE_BRIEF

    context = _build_context()
    if not yes:
        _stderr_console.print(PRIVACY_NOTICE_BRIEF)
        _stderr_console.print()
        if not typer.confirm("Enable analytics?", default=True):
            _stderr_console.print("[dim]Analytics left disabled.[/dim]")
            raise typer.Exit()

    result = asyncio.run(context.consent_manager.grant_consent(enable_analytics=True))
    if not result.success:
        _stderr_console.print(f"[red]Failed to enable analytics:[/red] {result.error}")
        raise typer.Exit(1)
    if result.error:
        _stderr_console.print(f"[yellow]Warning:[/yellow] {result.error}")
    _stderr_console.print(f"[green]{ANALYTICS_ENABLED_MESSAGE}[/green]")


@analytics_app.command("disable")
def analytics_disable(
    delete_data: bool = typer.Option(
        False, "--delete-data", help="Also delete all recorded analytics data."
    ),
) -> None:
    """Opt out of analytics. Recorded data is kept unless --delete-data is given."""
    from think_mcp.analytics.privacy import (
        ANALYTICS_DISABLED_MESSAGE,
        ANALYTICS_DISABLED_WITH_DATA_DELETED_MESSAGE,
    )

    context = _build_context()
    result = asyncio.run(
        context.consent_manager.withdraw_consent(disable_analytics=True, delete_data=delete_data)
    )
    if not result.success:
        _stderr_console.print(f"[red]Failed to disable analytics:[/red] {result.error}")
        raise typer.Exit(1)
    if result.error:
        _stderr_console.print(f"[yellow]Warning:[/yellow] {result.error}")
    message = ANALYTICS_DISABLED_WITH_DATA_DELETED_MESSAGE if delete_data else ANALYTICS_DISABLED_MESSAGE
    _stderr_console.print(message)


@analytics_app.command("status")
def analytics_status(
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Show config sources and validation."),
) -> None:
    """Show consent, configuration and storage usage."""
    from think_mcp.analytics.privacy import RECONSENT_PROMPT

    context = _build_context()
    consent = context.consent_manager.get_consent_status()
    resolved = context.config_manager.get_resolved_config()
    config = context.config_manager.get_config()
    info = asyncio.run(context.storage.get_storage_info())

    console = Console()
    table = Table(title="Analytics Status", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Collecting", "[green]yes[/green]" if context.is_enabled() else "[dim]no[/dim]")
    table.add_row("Config enabled", str(config.enabled))
    table.add_row("Consent given", str(consent.has_consented))
    table.add_row("Consented at", consent.consented_at or "-")
    table.add_row("Withdrawn at", consent.withdrawn_at or "-")
    table.add_row("Policy version", consent.policy_version or "-")
    table.add_row("Retention days", str(config.retention_days))
    table.add_row("Storage path", str(config.resolved_storage_path))
    table.add_row("Stored files", str(info.total_files))
    table.add_row("Stored events", str(info.total_events))
    table.add_row("Stored bytes", str(info.total_bytes))
    if info.oldest_date:
        table.add_row("Date range", f"{info.oldest_date} to {info.newest_date}")
    if verbose:
        table.add_row("Batch size", str(config.batch_size))
        table.add_row("Flush interval (ms)", str(config.flush_interval_ms))
        for name, source in resolved.sources.items():
            table.add_row(f"Source: {name}", source)
    console.print(table)

    if consent.needs_reconsent:
        _stderr_console.print(f"\n[yellow]{RECONSENT_PROMPT}[/yellow]")
        _stderr_console.print("Run 'think-mcp analytics enable' to accept the current notice.")

    if verbose:
        validation = context.config_manager.validate()
        for error in validation.errors:
            _stderr_console.print(f"[red]Config error:[/red] {error}")
        for warning in validation.warnings:
            _stderr_console.print(f"[yellow]Config warning:[/yellow] {warning}")


@analytics_app.command("export")
def analytics_export(
    output_format: str = typer.Option("json", "--format", "-f", help="Output format: json or csv."),
    start: str | None = typer.Option(None, "--start", help="Inclusive start date (YYYY-MM-DD)."),
    end: str | None = typer.Option(None, "--end", help="Inclusive end date (YYYY-MM-DD)."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to this file instead of stdout."),
    raw: bool = typer.Option(False, "--raw", help="Include raw events in the JSON export."),
) -> None:
    """Export recorded analytics as a dashboard JSON document or CSV events."""
    from think_mcp.analytics.export import ExportOptions, events_to_csv

    if output_format not in ("json", "csv"):
        _stderr_console.print(f"[red]Unknown format:[/red] {output_format} (expected json or csv)")
        raise typer.Exit(2)

    context = _build_context()

    if output_format == "csv":
        read = asyncio.run(context.storage.read_events(start, end))
        if not read.success:
            _stderr_console.print(f"[red]Export failed:[/red] {read.error}")
            raise typer.Exit(1)
        text = events_to_csv(read.events)
    else:
        options = ExportOptions(start_date=start, end_date=end, include_raw_events=raw)
        result = asyncio.run(context.exporter.export_for_dashboard(options))
        if not result.success or result.json is None:
            _stderr_console.print(f"[red]Export failed:[/red] {result.error}")
            raise typer.Exit(1)
        text = result.json

    if output is None:
        typer.echo(text)
        return

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    _stderr_console.print(f"[green]Exported to {output}[/green]")


@analytics_app.command("clear")
def analytics_clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
    include_consent: bool = typer.Option(
        False, "--include-consent", help="Also delete the consent record."
    ),
) -> None:
    """Permanently delete all recorded analytics data."""
    from think_mcp.analytics.deletion import format_deletion_result

    context = _build_context()
    if not yes:
        prompt = context.deletion.get_confirmation_prompt(include_consent)
        _stderr_console.print(f"[bold]{prompt.title}[/bold]\n")
        _stderr_console.print(prompt.message)
        _stderr_console.print(f"\n[yellow]{prompt.warning}[/yellow]")
        if not typer.confirm(prompt.confirm_text, default=False):
            _stderr_console.print("[dim]Cancelled. No data was deleted.[/dim]")
            raise typer.Exit()

    result = asyncio.run(
        context.deletion.delete_all_data(delete_consent=include_consent, reason="cli")
    )
    _stderr_console.print(format_deletion_result(result))
    if not result.success:
        raise typer.Exit(1)
    _stderr_console.print(f"\n{context.deletion.get_success_message(result.consent_deleted)}")


@analytics_app.command("cleanup")
def analytics_cleanup(
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would be deleted."),
) -> None:
    """Delete partitions older than the retention window now."""
    context = _build_context()
    result = asyncio.run(context.retention.run_cleanup(dry_run=dry_run))
    if not result.success:
        _stderr_console.print(f"[red]Cleanup failed:[/red] {result.error}")
        raise typer.Exit(1)
    verb = "Would delete" if dry_run else "Deleted"
    _stderr_console.print(
        f"{verb} {result.files_deleted} file(s) with {result.events_deleted} event(s) "
        f"dated on or before {result.cutoff_date} ({result.retention_days}-day retention)."
    )


@analytics_app.command("privacy")
def analytics_privacy(
    brief: bool = typer.Option(False, "--brief", help="Show the short notice."),
) -> None:
    """Show the analytics privacy notice."""
    from think_mcp.analytics.privacy import (
        CLI_QUICK_REFERENCE,
        DATA_COLLECTION_TABLE,
        PRIVACY_NOTICE_BRIEF,
        PRIVACY_NOTICE_FULL,
    )

    if brief:
        typer.echo(PRIVACY_NOTICE_BRIEF)
        return
    typer.echo(PRIVACY_NOTICE_FULL)
    typer.echo()
    typer.echo(DATA_COLLECTION_TABLE)
    typer.echo()
    typer.echo(CLI_QUICK_REFERENCE)


@analytics_app.command("insights")
def analytics_insights(
    start: str | None = typer.Option(None, "--start", help="Inclusive start date (YYYY-MM-DD)."),
    end: str | None = typer.Option(None, "--end", help="Inclusive end date (YYYY-MM-DD)."),
) -> None:
    """Print an insights report for the recorded usage."""
    context = _build_context()
    typer.echo(asyncio.run(context.insights.generate_text_report(start, end)))


@app.callback(invoke_without_command=True)
def serve(
    ctx: typer.Context,
    _version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback("think-mcp", think_mcp.__version__),
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Run the think-mcp MCP server over stdio transport.

    The server communicates via stdio and is typically invoked by MCP clients.

    Examples:
        think-mcp
        think-mcp analytics status
    """
    # Only run if no subcommand was invoked (handles --help automatically)
    if ctx.invoked_subcommand is not None:
        return

    _setup_signal_handlers()

    # Print startup banner to stderr (stdout is for MCP JSON-RPC)
    _print_startup_banner()

    # Import here so analytics subcommands never build the server
    from think_mcp.server import main as server_main

    try:
        server_main()
    except KeyboardInterrupt:
        _stderr_console.print("[dim]Server stopped.[/dim]")


def cli() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    cli()
