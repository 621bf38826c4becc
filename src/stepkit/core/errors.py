"""
Structured error types for stepkit.

Every failure the engine raises on its own behalf is a ``StepkitError``.
Errors carry a category, a retry flag, optional structured context and a
chained cause so that ``on_error`` hooks and retry policies can make
decisions without string matching.

Manifesto:
    - **Typed Error Hierarchy:** One class per failure the engine can produce
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry the step display name and attempt
    - **Error Chaining:** The original exception is preserved as ``cause``

Architecture:
    ::

        StepkitError  (category, retryable, context, cause)
          ├── ValidationError      (VALIDATION, never retryable)
          ├── ConfigError          (CONFIG, never retryable)
          ├── TransientError       (TIMEOUT, retryable)
          └── PipelineError        (PIPELINE, never retryable)

    Pipeline-specific subclasses live in ``stepkit.pipeline.exceptions``.

Usage:
    from stepkit.core.errors import is_retryable

    try:
        await pipeline.run({"x": 1})
    except StepkitError as e:
        logger.error("run.failed", **e.to_dict())

Tags:
    error-handling, exception-hierarchy, retry-logic, stepkit

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    VALIDATION = "VALIDATION"
    COLLISION = "COLLISION"
    TIMEOUT = "TIMEOUT"
    ABORT = "ABORT"
    CIRCUIT = "CIRCUIT"
    CHECKPOINT = "CHECKPOINT"
    CONFIG = "CONFIG"
    PIPELINE = "PIPELINE"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        step: Display name of the step that failed (``outer/inner`` for nested steps)
        pipeline: Optional caller-supplied pipeline label
        attempt: 1-based attempt number the error was raised on
        metadata: Free-form extra fields
    """

    step: str | None = None
    pipeline: str | None = None
    attempt: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize non-None fields for logging."""
        result: dict[str, Any] = {}
        for key in ("step", "pipeline", "attempt"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        result.update(self.metadata)
        return result


class StepkitError(Exception):
    """Base class for every error raised by the engine itself.

    Args:
        message: Human readable message
        category: Overrides the subclass default category
        retryable: Overrides the subclass default retry flag
        context: Structured context (step, attempt, ...)
        cause: Underlying exception, chained as ``__cause__``
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> StepkitError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = repr(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class ValidationError(StepkitError):
    """
    Data validation error.

    Never retryable - the step's output must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class ConfigError(StepkitError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class TransientError(StepkitError):
    """Temporary failure that may succeed on retry."""

    default_category = ErrorCategory.TIMEOUT
    default_retryable = True


class PipelineError(StepkitError):
    """Pipeline execution error."""

    default_category = ErrorCategory.PIPELINE
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable.

    Engine errors answer for themselves; anything raised by user code is
    assumed retryable.  Pass it as ``should_retry`` to retry everything
    except non-retryable engine errors.
    """
    if isinstance(error, StepkitError):
        return error.retryable
    return isinstance(error, Exception)


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, StepkitError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (TypeError, ValueError)):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "StepkitError",
    "ValidationError",
    "ConfigError",
    "TransientError",
    "PipelineError",
    "is_retryable",
    "categorize_error",
]
