"""
Stepkit execution primitives - retry, timeout/abort racing, circuit
breakers and parallel fan-out used by the pipeline engine.
"""

from stepkit.execution.circuit_breaker import (
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
    StepCircuit,
)
from stepkit.execution.fanout import FanOutItem, FanOutResult, fan_out
from stepkit.execution.retry import (
    ExponentialBackoff,
    LinearBackoff,
    RetryContext,
    RetryPolicy,
    never_retry,
    run_with_retry,
)
from stepkit.execution.timeout import (
    AbortSignal,
    NonErrorThrow,
    PipelineAbortedError,
    StepTimeoutError,
    has_valid_timeout,
    race_attempt,
)

__all__ = [
    # retry
    "ExponentialBackoff",
    "LinearBackoff",
    "RetryPolicy",
    "RetryContext",
    "run_with_retry",
    "never_retry",
    # timeout / abort
    "AbortSignal",
    "StepTimeoutError",
    "PipelineAbortedError",
    "NonErrorThrow",
    "has_valid_timeout",
    "race_attempt",
    # circuit breaker
    "CircuitState",
    "CircuitOpenError",
    "StepCircuit",
    "CircuitBreakerRegistry",
    # fan-out
    "FanOutItem",
    "FanOutResult",
    "fan_out",
]
