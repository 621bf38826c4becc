"""
CLI: ``stepkit checkpoint`` - inspect and edit persisted checkpoints.
"""

from __future__ import annotations

import typer

from stepkit.cli.utils import (
    console,
    fail,
    parse_assignment,
    print_context_table,
    print_json,
    read_source,
)
from stepkit.pipeline.checkpoint import apply_override, decode_checkpoint, encode_checkpoint
from stepkit.pipeline.exceptions import InvalidCheckpointError

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_checkpoint(
    source: str = typer.Argument(..., help="Checkpoint file, or - for stdin"),
    as_json: bool = typer.Option(False, "--json", help="Print the decoded checkpoint as JSON"),
) -> None:
    """Decode a checkpoint and show its step name and context."""
    try:
        checkpoint = decode_checkpoint(read_source(source).strip())
    except InvalidCheckpointError as e:
        fail(e.message)

    if as_json:
        print_json({"step_name": checkpoint.step_name, "output": checkpoint.output})
        return

    console.print(f"[bold]Step:[/bold] {checkpoint.step_name}", highlight=False)
    console.print(f"[bold]Keys:[/bold] {len(checkpoint.output)}", highlight=False)
    print_context_table(checkpoint.output)


@app.command("patch")
def patch_checkpoint(
    source: str = typer.Argument(..., help="Checkpoint file, or - for stdin"),
    assignments: list[str] = typer.Option(
        [], "--set", "-s", help="key=value override (value parsed as JSON); repeatable"
    ),
    output: str | None = typer.Option(
        None, "--output", "-o", help="Write the new checkpoint here instead of stdout"
    ),
) -> None:
    """Apply top-level overrides to a checkpoint and print the result."""
    if not assignments:
        fail("Nothing to patch: pass at least one --set key=value")

    try:
        checkpoint = decode_checkpoint(read_source(source).strip())
    except InvalidCheckpointError as e:
        fail(e.message)

    override = dict(parse_assignment(a) for a in assignments)
    patched = encode_checkpoint(
        checkpoint.step_name, apply_override(checkpoint.output, override)
    )

    if output is None:
        typer.echo(patched)
        return
    try:
        with open(output, "w", encoding="utf-8") as fh:
            fh.write(patched)
    except OSError as e:
        fail(f"Cannot write {output}: {e.strerror or e}")
    console.print(f"[green]Wrote[/green] {output}", highlight=False)
