"""Process-wide defaults for stepkit.

``StepkitSettings`` holds the defaults a pipeline falls back to when its
own config is silent: whether step logging is on, whether the stopwatch
is on, the default merge policy, and logger setup.  Values come from
``STEPKIT_*`` environment variables or a ``.env`` file.

Examples:
    >>> import os
    >>> os.environ["STEPKIT_LOG_ENABLED"] = "true"
    >>> from stepkit.core.settings import get_settings, reset_settings
    >>> reset_settings()
    >>> get_settings().log_enabled
    True

Tags:
    settings, configuration, pydantic, environment, stepkit
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StepkitSettings(BaseSettings):
    """Defaults shared by every pipeline in the process.

    Fields
    ──────
    log_enabled          : Default for ``PipelineConfig.log`` when omitted
    log_level            : structlog level used by ``configure_logging``
    log_format           : ``json``, ``console`` or ``auto`` (JSON when not a tty)
    stopwatch            : Default stopwatch flag when logging is on
    default_merge_policy : Merge policy for steps that do not set one
    circuit_cooldown     : Cooldown seconds for circuit breakers without one
    max_checkpoint_bytes : Refuse to decode larger checkpoints (0 = unlimited)
    """

    model_config = SettingsConfigDict(
        env_prefix="STEPKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_enabled: bool = False
    log_level: str = "INFO"
    log_format: Literal["json", "console", "auto"] = "auto"
    stopwatch: bool = False

    # ── Execution defaults ───────────────────────────────────────
    default_merge_policy: Literal["override", "error", "warn", "skip"] = "override"
    circuit_cooldown: float = Field(default=30.0, ge=0.0)
    max_checkpoint_bytes: int = Field(default=0, ge=0)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return value


@lru_cache(maxsize=1)
def get_settings() -> StepkitSettings:
    """Return the cached process settings."""
    return StepkitSettings()


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()


__all__ = ["StepkitSettings", "get_settings", "reset_settings"]
