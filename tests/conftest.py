"""
Shared pytest fixtures and configuration for stepkit tests.

This module provides:
- Settings isolation (STEPKIT_* env vars cleared, settings cache reset)
- A recording log hook pair for asserting on emitted events

Usage:
    Fixtures are auto-discovered by pytest.

    def test_something(log_recorder):
        pipeline = create(PipelineConfig(log=log_recorder.config()))
"""

from __future__ import annotations

import os
from collections.abc import Generator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from stepkit.core.settings import reset_settings
from stepkit.pipeline.runtime import LogConfig, StopwatchConfig


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark every test without an explicit marker as a unit test."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Settings Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """
    Strip STEPKIT_* variables and run from an empty directory.

    Keeps a developer's environment or .env file from leaking into tests.
    """
    for key in list(os.environ):
        if key.startswith("STEPKIT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_settings()
    yield
    reset_settings()


# =============================================================================
# Log Recording
# =============================================================================


@dataclass
class LogRecorder:
    """Captures ``log_fn`` / ``error_log_fn`` calls as ``(event, fields)`` tuples."""

    infos: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    errors: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def log(self, event: str, **fields: Any) -> None:
        self.infos.append((event, fields))

    def error(self, event: str, **fields: Any) -> None:
        self.errors.append((event, fields))

    def config(self, stopwatch: bool | StopwatchConfig | None = None) -> LogConfig:
        return LogConfig(log_fn=self.log, error_log_fn=self.error, stopwatch=stopwatch)

    def events(self) -> list[str]:
        return [event for event, _ in self.infos]

    def error_events(self) -> list[str]:
        return [event for event, _ in self.errors]

    def find(self, event: str) -> list[dict[str, Any]]:
        return [fields for name, fields in self.infos + self.errors if name == event]


@pytest.fixture
def log_recorder() -> LogRecorder:
    return LogRecorder()

