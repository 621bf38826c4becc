"""
CLI utility helpers - input reading and output formatting.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)


def read_source(source: str) -> str:
    """Read a file, or stdin when ``source`` is ``-``."""
    if source == "-":
        return sys.stdin.read()
    try:
        return Path(source).read_text(encoding="utf-8")
    except OSError as e:
        fail(f"Cannot read {source}: {e.strerror or e}")


def fail(message: str, code: int = 1) -> NoReturn:
    """Print an error to stderr and exit."""
    err_console.print(f"[bold red]Error[/bold red]: {message}", markup=True, highlight=False)
    raise typer.Exit(code=code)


def print_json(payload: Any) -> None:
    """Emit JSON on stdout without rich wrapping, so it can be piped."""
    typer.echo(json.dumps(payload, indent=2, default=str, ensure_ascii=False))


def _preview(value: Any, limit: int = 60) -> str:
    text = json.dumps(value, default=str, ensure_ascii=False)
    return text if len(text) <= limit else text[: limit - 1] + "…"


def print_context_table(context: dict[str, Any], *, title: str = "") -> None:
    """Render context keys, value types and a short preview."""
    if not context:
        console.print("[dim]Empty context.[/dim]")
        return
    table = Table(title=title or None)
    table.add_column("Key", style="cyan")
    table.add_column("Type")
    table.add_column("Value")
    for key, value in context.items():
        table.add_row(str(key), type(value).__name__, _preview(value))
    console.print(table)


def parse_assignment(assignment: str) -> tuple[str, Any]:
    """Split ``key=value``; the value is parsed as JSON, else kept as a string."""
    key, sep, raw = assignment.partition("=")
    key = key.strip()
    if not sep or not key:
        fail(f"Expected key=value, got {assignment!r}")
    try:
        return key, json.loads(raw)
    except json.JSONDecodeError:
        return key, raw
