"""
Stepkit core primitives - errors, logging and settings shared by every
other subpackage.
"""

from stepkit.core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorContext,
    PipelineError,
    StepkitError,
    TransientError,
    ValidationError,
    categorize_error,
    is_retryable,
)
from stepkit.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)
from stepkit.core.settings import StepkitSettings, get_settings, reset_settings

__all__ = [
    # errors
    "ErrorCategory",
    "ErrorContext",
    "StepkitError",
    "ValidationError",
    "ConfigError",
    "TransientError",
    "PipelineError",
    "is_retryable",
    "categorize_error",
    # logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
    # settings
    "StepkitSettings",
    "get_settings",
    "reset_settings",
]
