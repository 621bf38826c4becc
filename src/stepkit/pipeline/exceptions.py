"""Pipeline exceptions - structured error hierarchy.

All pipeline exceptions inherit from ``stepkit.core.errors.StepkitError``
so that callers can catch the entire family with a single ``except`` clause.

Hierarchy::

    StepkitError  (from stepkit.core.errors)
      ├── ValidationError
      │     └── StepOutputError        ── step/transform returned a non-dict (also TypeError)
      ├── MergeCollisionError          ── key collision under merge_policy="error"
      ├── ConfigError
      │     └── PipelineConfigError    ── builder arguments are invalid
      ├── TransientError
      │     └── StepTimeoutError       ── attempt exceeded its timeout (also TimeoutError)
      └── PipelineError
            ├── PipelineAbortedError   ── abort signal fired
            ├── NonErrorThrow          ── attempt ended without an Exception
            ├── CircuitOpenError       ── step circuit open, behavior_on_open="throw"
            └── InvalidCheckpointError ── checkpoint string cannot be decoded
"""

from stepkit.core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorContext,
    PipelineError,
    StepkitError,
    ValidationError,
)
from stepkit.execution.circuit_breaker import CircuitOpenError
from stepkit.execution.timeout import NonErrorThrow, PipelineAbortedError, StepTimeoutError


class StepOutputError(ValidationError, TypeError):
    """Raised when a step returns something other than a dict (or None)."""

    def __init__(self, step: str, message: str | None = None):
        self.step = step
        super().__init__(
            message or f"Step '{step}' must return an object or void",
            context=ErrorContext(step=step),
        )


class MergeCollisionError(StepkitError):
    """Raised when a step output collides with an existing key under ``error`` policy."""

    default_category = ErrorCategory.COLLISION
    default_retryable = False

    def __init__(self, key: str):
        self.key = key
        super().__init__(
            f"Key collision on '{key}'",
            context=ErrorContext(metadata={"key": key}),
        )


class PipelineConfigError(ConfigError):
    """Raised when builder arguments are invalid."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidCheckpointError(PipelineError):
    """Raised when a checkpoint string cannot be decoded."""

    default_category = ErrorCategory.CHECKPOINT

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message, cause=cause)


__all__ = [
    "StepOutputError",
    "MergeCollisionError",
    "PipelineConfigError",
    "InvalidCheckpointError",
    "StepTimeoutError",
    "PipelineAbortedError",
    "NonErrorThrow",
    "CircuitOpenError",
]
