"""Step Types - descriptors, per-step config, executables and branch cases.

Manifesto:
A Pipeline is an ordered tuple of steps, and steps come in three
flavours: ``step`` (merge a patch into the context), ``transform``
(replace the context) and ``branch`` (run one of several nested
pipelines).  This module defines the frozen records the builder produces
so the engine never deals with raw builder arguments.

ARCHITECTURE
────────────
::

    StepDescriptor (frozen)
      ├── name                 ── unique among siblings (auto: step-N, transform-N, branch-N)
      ├── kind                 ── StepKind: STEP, TRANSFORM, BRANCH
      ├── executables          ── tuple[Executable, ...] (fan-out when > 1)
      ├── config               ── StepConfig
      └── branch_cases         ── tuple[BranchCase, ...] (BRANCH only)

    StepConfig          ── condition, on_error, timeout, retries, merge policy, ...
    CircuitBreakerConfig── failure_threshold, cooldown, behavior_on_open
    Executable          ── user function or internal nested-run wrapper
    BranchCase          ── .when(predicate, then) / .otherwise(then)

Related modules:
    builder.py   - Pipeline, which produces StepDescriptors
    engine.py    - StepRunner, which consumes them
    branch.py    - case selection for BRANCH steps

Example::

    from stepkit import create, is_retryable, StepConfig

    pipeline = (
        create()
        .step("fetch", StepConfig(timeout=5.0, retries=2, should_retry=is_retryable), fetch_user)
        .transform("shape", lambda ctx: {"user": ctx["user"]})
    )

Tags:
    stepkit, pipeline, step-types, config, branch

Doc-Types:
    api-reference
"""

from __future__ import annotations

import inspect
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from stepkit.execution.retry import RetryDelay, RetryPolicy, ShouldRetry, never_retry
from stepkit.pipeline.context import Context
from stepkit.pipeline.exceptions import PipelineConfigError
from stepkit.pipeline.merge import MergePolicy

if TYPE_CHECKING:
    from stepkit.pipeline.builder import Pipeline
    from stepkit.pipeline.runtime import RuntimeState

Condition = Union[bool, Callable[[Context], Union[bool, Awaitable[bool]]]]
PipelineFactory = Callable[["Pipeline"], "Pipeline"]


class StepKind(str, Enum):
    """Type of pipeline step."""

    STEP = "step"  # Merge a patch into the context
    TRANSFORM = "transform"  # Replace the context
    BRANCH = "branch"  # Run one nested pipeline


class ErrorPolicy(str, Enum):
    """What to do when a step fails terminally."""

    THROW = "throw"  # Re-raise, failing the run (default)
    CONTINUE = "continue"  # Proceed with the next step
    SKIP_REMAINING = "skip-remaining"  # Stop and return the context as-is


class ParallelMode(str, Enum):
    """How a step with several executables joins them."""

    ALL = "all"  # First failure fails the step
    SETTLED = "settled"  # Failures are logged and excluded


class BehaviorOnOpen(str, Enum):
    """What a step does while its circuit is open."""

    THROW = "throw"
    SKIP = "skip"


def _coerce_enum(enum_cls: type[Enum], value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(repr(m.value) for m in enum_cls)  # type: ignore[attr-defined]
        raise PipelineConfigError(
            f"Invalid {field_name}: {value!r} (expected one of {allowed})", field=field_name
        ) from None


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Circuit breaker settings for one step.

    Attributes:
        failure_threshold: Terminal failures before the circuit opens
        cooldown: Seconds the circuit stays open; None uses
            ``StepkitSettings.circuit_cooldown``
        behavior_on_open: ``throw`` raises CircuitOpenError, ``skip`` skips the step
    """

    failure_threshold: float = math.inf
    cooldown: float | None = None
    behavior_on_open: BehaviorOnOpen = BehaviorOnOpen.THROW

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "behavior_on_open",
            _coerce_enum(BehaviorOnOpen, self.behavior_on_open, "behavior_on_open"),
        )
        if not self.failure_threshold > 0:
            raise PipelineConfigError(
                "failure_threshold must be positive", field="failure_threshold"
            )
        if self.cooldown is not None and self.cooldown < 0:
            raise PipelineConfigError("cooldown must not be negative", field="cooldown")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CircuitBreakerConfig:
        return cls(**_checked_kwargs(cls, data))


@dataclass(frozen=True)
class StepConfig:
    """Per-step configuration.

    Attributes:
        name: Step name (a positional name passed to the builder wins)
        condition: Literal bool or sync/async predicate over the context
        on_error: ErrorPolicy applied after retries are exhausted
        log: Per-step logging override; None follows the run's setting
        timeout: Seconds per attempt; ignored unless finite and positive
        parallel_mode: Join policy for steps with several executables
        merge_policy: Collision policy; None uses ``StepkitSettings.default_merge_policy``
        retries: Extra attempts after the first
        retry_delay: Seconds, or ``(attempt, error) -> seconds``
        should_retry: ``(error) -> bool``; None never retries
        circuit_breaker: Optional circuit breaker settings
    """

    name: str | None = None
    condition: Condition | None = None
    on_error: ErrorPolicy = ErrorPolicy.THROW
    log: bool | None = None
    timeout: float | None = None
    parallel_mode: ParallelMode = ParallelMode.ALL
    merge_policy: MergePolicy | None = None
    retries: int = 0
    retry_delay: RetryDelay | None = None
    should_retry: ShouldRetry | None = None
    circuit_breaker: CircuitBreakerConfig | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "on_error", _coerce_enum(ErrorPolicy, self.on_error, "on_error"))
        object.__setattr__(
            self, "parallel_mode", _coerce_enum(ParallelMode, self.parallel_mode, "parallel_mode")
        )
        if self.merge_policy is not None:
            object.__setattr__(self, "merge_policy", MergePolicy.coerce(self.merge_policy))
        if isinstance(self.circuit_breaker, Mapping):
            object.__setattr__(
                self, "circuit_breaker", CircuitBreakerConfig.from_dict(self.circuit_breaker)
            )
        if isinstance(self.retries, bool) or not isinstance(self.retries, int) or self.retries < 0:
            raise PipelineConfigError(
                f"retries must be a non-negative integer, got {self.retries!r}", field="retries"
            )
        if self.name is not None and (not isinstance(self.name, str) or not self.name):
            raise PipelineConfigError("Step name must be a non-empty string", field="name")
        if self.name is not None and "/" in self.name:
            raise PipelineConfigError(
                f"Step name must not contain '/': {self.name!r}", field="name"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StepConfig:
        """Build a StepConfig from a plain dict, rejecting unknown keys."""
        return cls(**_checked_kwargs(cls, data))

    @classmethod
    def coerce(cls, value: StepConfig | Mapping[str, Any] | None) -> StepConfig:
        if value is None:
            return cls()
        if isinstance(value, StepConfig):
            return value
        return cls.from_dict(value)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            retries=self.retries,
            delay=self.retry_delay,
            should_retry=self.should_retry or never_retry,
        )


def _checked_kwargs(cls: type, data: Mapping[str, Any]) -> dict[str, Any]:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise PipelineConfigError(
            f"Unknown {cls.__name__} option(s): {', '.join(unknown)}", field=unknown[0]
        )
    return dict(data)


@dataclass(frozen=True)
class Executable:
    """A unit of work inside a step.

    User functions receive the context only.  Internal wrappers around
    nested pipelines set ``takes_runtime`` and also receive the run's
    RuntimeState so they can extend the name prefix and share hooks.
    """

    fn: Callable[..., Any]
    takes_runtime: bool = False
    label: str | None = None

    async def __call__(self, context: Context, runtime: RuntimeState) -> Any:
        result = self.fn(context, runtime) if self.takes_runtime else self.fn(context)
        if inspect.isawaitable(result):
            result = await result
        return result

    @property
    def display_label(self) -> str:
        if self.label:
            return self.label
        return getattr(self.fn, "__qualname__", None) or repr(self.fn)


@dataclass(frozen=True)
class BranchCase:
    """One case of a ``branch_on`` step.

    Use the factories rather than the constructor:

        BranchCase.when(lambda ctx: ctx["tier"] == "gold", gold_pipeline)
        BranchCase.otherwise(lambda p: p.step("fallback", fallback))

    ``then`` is a pre-built Pipeline or a factory that receives an empty
    Pipeline (same pipeline config) and returns the one to run.
    """

    then: Pipeline | PipelineFactory
    predicate: Callable[[Context], bool | Awaitable[bool]] | None = None
    name: str | None = None
    is_default: bool = False

    @classmethod
    def when(
        cls,
        predicate: Callable[[Context], bool | Awaitable[bool]],
        then: Pipeline | PipelineFactory,
        *,
        name: str | None = None,
    ) -> BranchCase:
        if not callable(predicate):
            raise PipelineConfigError("Branch predicate must be callable", field="when")
        return cls(then=then, predicate=predicate, name=name)

    @classmethod
    def otherwise(cls, then: Pipeline | PipelineFactory, *, name: str | None = None) -> BranchCase:
        return cls(then=then, name=name, is_default=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BranchCase:
        """Accept ``{"when", "then", "name"?}`` or ``{"default", "name"?}``."""
        if "default" in data:
            return cls.otherwise(data["default"], name=data.get("name"))
        if "when" in data and "then" in data:
            return cls.when(data["when"], data["then"], name=data.get("name"))
        raise PipelineConfigError(
            "Branch case needs 'when' and 'then', or 'default'", field="cases"
        )

    @property
    def case_name(self) -> str:
        if self.name:
            return self.name
        return "default-case" if self.is_default else "branch-case"


@dataclass(frozen=True)
class StepDescriptor:
    """Immutable record of one declared step."""

    name: str
    kind: StepKind
    executables: tuple[Executable, ...]
    config: StepConfig = field(default_factory=StepConfig)
    branch_cases: tuple[BranchCase, ...] = ()


__all__ = [
    "StepKind",
    "ErrorPolicy",
    "ParallelMode",
    "BehaviorOnOpen",
    "CircuitBreakerConfig",
    "StepConfig",
    "Executable",
    "BranchCase",
    "StepDescriptor",
]
