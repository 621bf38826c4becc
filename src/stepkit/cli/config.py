"""
CLI: ``stepkit config`` - show the effective process settings.
"""

from __future__ import annotations

import typer
from rich.table import Table

from stepkit.cli.utils import console

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show the settings pipelines fall back to (from STEPKIT_* env vars / .env)."""
    from stepkit.core.settings import get_settings

    settings = get_settings()

    if format == "json":
        typer.echo(settings.model_dump_json(indent=2))
        return

    if format == "env":
        for key, value in sorted(settings.model_dump().items()):
            typer.echo(f"STEPKIT_{key.upper()}={value}")
        return

    if format != "table":
        console.print(f"[red]Unknown format:[/red] {format}")
        raise typer.Exit(code=1)

    table = Table(title="stepkit settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in sorted(settings.model_dump().items()):
        table.add_row(key, str(value))
    console.print(table)
