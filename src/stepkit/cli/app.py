"""
Root Typer application for the stepkit CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="stepkit",
    help="stepkit - composable async pipelines with checkpoint/resume.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("stepkit")
        except PackageNotFoundError:
            from stepkit import __version__ as v
        typer.echo(f"stepkit {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """stepkit CLI - inspect checkpoints and settings."""


# ── Sub-command registration ─────────────────────────────────────────────

from stepkit.cli.checkpoint import app as checkpoint_app  # noqa: E402
from stepkit.cli.config import app as config_app  # noqa: E402

app.add_typer(checkpoint_app, name="checkpoint", help="Inspect and patch checkpoints.")
app.add_typer(config_app, name="config", help="Show effective settings.")
