"""Per-step circuit breakers.

A step configured with ``CircuitBreakerConfig`` counts its terminal
failures.  Once the count reaches ``failure_threshold`` the circuit opens
and, until ``cooldown`` seconds have passed, the step is either rejected
with ``CircuitOpenError`` or skipped.  After the cooldown the next run is
a half-open probe: success closes the circuit, failure re-opens it.

States:
    CLOSED: Normal operation, the step runs
    OPEN: Cooling down, the step is rejected or skipped
    HALF_OPEN: Cooldown elapsed, the next attempt decides

Circuits are owned by a ``Pipeline`` value and keyed by step name, so
state survives repeated ``run`` calls on the same pipeline but is never
shared between pipelines.

Example:
    >>> from stepkit.execution.circuit_breaker import CircuitBreakerRegistry
    >>>
    >>> registry = CircuitBreakerRegistry()
    >>> circuit = registry.get_or_create("fetch", failure_threshold=3, cooldown=10.0)
    >>> if circuit.allow_request():
    ...     try:
    ...         await fetch()
    ...         circuit.record_success()
    ...     except Exception:
    ...         circuit.record_failure()
    ...         raise
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from stepkit.core.errors import ErrorCategory, ErrorContext, PipelineError
from stepkit.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitOpenError(PipelineError):
    """Raised when a step's circuit is open and the step is configured to throw."""

    default_category = ErrorCategory.CIRCUIT
    default_retryable = False

    def __init__(self, step: str, *, remaining: float | None = None):
        self.step = step
        self.remaining = remaining
        message = f"Circuit breaker is open for step '{step}'"
        if remaining is not None:
            message += f" ({remaining:.3f}s of cooldown remaining)"
        super().__init__(message, context=ErrorContext(step=step))


@dataclass
class StepCircuit:
    """Failure bookkeeping for one step.

    Attributes:
        name: Step name the circuit belongs to
        failure_threshold: Terminal failures before opening (inf = never)
        cooldown: Seconds the circuit stays open
        failure_count: Consecutive terminal failures
        opened_at: Monotonic timestamp the circuit opened at, or None
    """

    name: str
    failure_threshold: float = math.inf
    cooldown: float = 30.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    failure_count: int = field(default=0, init=False)
    opened_at: float | None = field(default=None, init=False)

    @property
    def state(self) -> CircuitState:
        if self.opened_at is None:
            return CircuitState.CLOSED
        if self.clock() - self.opened_at < self.cooldown:
            return CircuitState.OPEN
        return CircuitState.HALF_OPEN

    @property
    def remaining(self) -> float:
        """Seconds of cooldown left (0 unless open)."""
        if self.opened_at is None:
            return 0.0
        return max(0.0, self.cooldown - (self.clock() - self.opened_at))

    def allow_request(self) -> bool:
        """True unless the circuit is open and still cooling down."""
        return self.state is not CircuitState.OPEN

    def record_success(self) -> None:
        if self.opened_at is not None:
            logger.info("pipeline.circuit.closed", step=self.name)
        self.failure_count = 0
        self.opened_at = None

    def record_failure(self) -> None:
        self.failure_count += 1
        if self.failure_count >= self.failure_threshold:
            self.opened_at = self.clock()
            logger.warning(
                "pipeline.circuit.open",
                step=self.name,
                failures=self.failure_count,
                cooldown=self.cooldown,
            )

    def reset(self) -> None:
        self.failure_count = 0
        self.opened_at = None


class CircuitBreakerRegistry:
    """Circuits of one pipeline, keyed by step name.

    Runs on a single event loop mutate circuits between awaits only, so no
    locking is needed.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._circuits: dict[str, StepCircuit] = {}
        self._clock = clock

    def get(self, name: str) -> StepCircuit | None:
        return self._circuits.get(name)

    def get_or_create(
        self,
        name: str,
        failure_threshold: float = math.inf,
        cooldown: float = 30.0,
    ) -> StepCircuit:
        """Get the circuit for ``name``, creating it on first use.

        Thresholds and cooldown are refreshed on every call so the config
        attached to the step always wins.
        """
        circuit = self._circuits.get(name)
        if circuit is None:
            circuit = StepCircuit(
                name=name,
                failure_threshold=failure_threshold,
                cooldown=cooldown,
                clock=self._clock,
            )
            self._circuits[name] = circuit
        else:
            circuit.failure_threshold = failure_threshold
            circuit.cooldown = cooldown
        return circuit

    def list_all(self) -> list[str]:
        return list(self._circuits)

    def reset_all(self) -> None:
        for circuit in self._circuits.values():
            circuit.reset()

    def __len__(self) -> int:
        return len(self._circuits)


__all__ = [
    "CircuitState",
    "CircuitOpenError",
    "StepCircuit",
    "CircuitBreakerRegistry",
]
