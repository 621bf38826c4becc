"""
CLI layer for stepkit.

Terminal transport only: argument parsing, coloured output and tables.
Checkpoint decoding and patching live in ``stepkit.pipeline.checkpoint``.

Entry point::

    stepkit --help
"""

from stepkit.cli.app import app

__all__ = ["app"]
