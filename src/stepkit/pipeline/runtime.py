"""Runtime state shared by one top-level run and every nested run inside it.

``PipelineConfig`` is what callers hand in (once at ``create`` time and
optionally again per ``run``); ``resolve_runtime`` folds the two together
with ``StepkitSettings`` into a ``RuntimeState``.  Nested sub-pipelines
and branches get a shallow copy with a longer name prefix, so the timing
buffer, the stop/resume controllers and the hooks stay shared.

Log resolution:
    - ``log`` given per run wins over ``log`` given at create time
    - ``LogConfig`` counts as "on"; a bare bool is taken as-is
    - neither given: ``StepkitSettings.log_enabled``
    - ``log_fn`` / ``error_log_fn`` / ``stopwatch``: per run, then create
      time, then defaults (structlog ``info`` / ``error``, settings stopwatch)
"""

from __future__ import annotations

import dataclasses
import inspect
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from stepkit.core.logging import get_logger
from stepkit.core.settings import get_settings
from stepkit.execution.timeout import AbortSignal
from stepkit.pipeline.context import Context
from stepkit.pipeline.exceptions import PipelineConfigError
from stepkit.pipeline.merge import MergePolicy

if TYPE_CHECKING:
    from stepkit.pipeline.stopwatch import RunSummary

LogFn = Callable[..., Any]
OnStepComplete = Callable[["StepCompleteEvent"], Any]
OnError = Callable[[str, BaseException], Any]
OnSummary = Callable[["RunSummary"], Any]

_step_logger = get_logger("stepkit.pipeline")


def default_log(event: str, **fields: Any) -> None:
    _step_logger.info(event, **fields)


def default_error_log(event: str, **fields: Any) -> None:
    _step_logger.error(event, **fields)


@dataclass(frozen=True)
class StopwatchConfig:
    show_step_duration: bool = True
    show_summary: bool = True
    show_total: bool = True


@dataclass(frozen=True)
class LogConfig:
    """Logging hooks for a pipeline.

    Hooks are called as ``log_fn(event, **fields)``, the same shape as a
    structlog bound logger method.
    """

    log_fn: LogFn | None = None
    error_log_fn: LogFn | None = None
    stopwatch: bool | StopwatchConfig | None = None

    def __post_init__(self) -> None:
        if isinstance(self.stopwatch, Mapping):
            object.__setattr__(self, "stopwatch", StopwatchConfig(**self.stopwatch))


@dataclass(frozen=True)
class PipelineConfig:
    """Pipeline-level configuration, also used for per-run options.

    Attributes:
        log: True/False or a LogConfig (which implies True)
        on_step_complete: Awaited after every completed step
        on_error: Called once per terminal step failure
        on_summary: Called with the RunSummary when a stopwatch run finishes
        signal: AbortSignal for cooperative cancellation
    """

    log: bool | LogConfig | None = None
    on_step_complete: OnStepComplete | None = None
    on_error: OnError | None = None
    on_summary: OnSummary | None = None
    signal: AbortSignal | None = None

    def __post_init__(self) -> None:
        if isinstance(self.log, Mapping):
            object.__setattr__(self, "log", LogConfig(**self.log))

    @classmethod
    def coerce(cls, value: PipelineConfig | Mapping[str, Any] | None) -> PipelineConfig:
        if value is None:
            return cls()
        if isinstance(value, PipelineConfig):
            return value
        if isinstance(value, Mapping):
            known = {f.name for f in dataclasses.fields(cls)}
            unknown = sorted(set(value) - known)
            if unknown:
                raise PipelineConfigError(
                    f"Unknown pipeline option(s): {', '.join(unknown)}", field=unknown[0]
                )
            return cls(**value)
        raise PipelineConfigError(f"Invalid pipeline config: {value!r}")


class TimingStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepTimingInfo:
    name: str
    duration: float
    status: TimingStatus


@dataclass
class StopController:
    requested: bool = False
    requested_by: str | None = None

    def request(self, by: str) -> None:
        self.requested = True
        self.requested_by = by


@dataclass
class ResumeController:
    target: str | None = None


@dataclass(frozen=True)
class StepCompleteEvent:
    """Passed to ``on_step_complete`` after each completed step.

    ``context`` is a private copy; ``checkpoint`` can be handed back to
    ``Pipeline.run_checkpoint`` later; ``stop_pipeline()`` ends the run
    after this step.
    """

    step_name: str
    duration: float
    context: Context
    checkpoint: str
    stop_pipeline: Callable[[], None]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class RuntimeState:
    """Mutable state for one top-level run."""

    log_enabled: bool = False
    log_fn: LogFn = default_log
    error_log_fn: LogFn = default_error_log
    stopwatch_enabled: bool = False
    show_step_duration: bool = False
    show_summary: bool = False
    show_total: bool = False
    step_timings: list[StepTimingInfo] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)
    complete_hooks: tuple[OnStepComplete, ...] = ()
    error_hooks: tuple[OnError, ...] = ()
    summary_hooks: tuple[OnSummary, ...] = ()
    name_prefix: tuple[str, ...] = ()
    signal: AbortSignal | None = None
    stop_controller: StopController = field(default_factory=StopController)
    resume_controller: ResumeController = field(default_factory=ResumeController)
    resume_from: str | None = None
    default_merge_policy: MergePolicy = MergePolicy.OVERRIDE
    circuit_cooldown: float = 30.0

    def display_name(self, name: str) -> str:
        if not self.name_prefix:
            return name
        return "/".join((*self.name_prefix, name))

    def nested(self, *segments: str) -> RuntimeState:
        """Shallow copy with the name prefix extended; mutable members stay shared."""
        return dataclasses.replace(self, name_prefix=self.name_prefix + segments)

    def record_timing(self, name: str, duration: float, status: TimingStatus) -> None:
        if self.stopwatch_enabled:
            self.step_timings.append(StepTimingInfo(name, duration, status))

    async def emit_step_complete(self, event: StepCompleteEvent) -> None:
        for hook in self.complete_hooks:
            await _maybe_await(hook(event))

    async def report_error(self, step_name: str, error: BaseException) -> None:
        for hook in self.error_hooks:
            await _maybe_await(hook(step_name, error))

    async def emit_summary(self, summary: RunSummary) -> None:
        for hook in self.summary_hooks:
            await _maybe_await(hook(summary))

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


def _log_parts(log: bool | LogConfig | None) -> LogConfig | None:
    return log if isinstance(log, LogConfig) else None


def resolve_runtime(
    config: PipelineConfig,
    options: PipelineConfig | None = None,
    *,
    resume_target: str | None = None,
) -> RuntimeState:
    """Fold create-time config, per-run options and settings into a RuntimeState."""
    settings = get_settings()
    options = options or PipelineConfig()

    if options.log is not None:
        log_enabled = bool(options.log)
    elif config.log is not None:
        log_enabled = bool(config.log)
    else:
        log_enabled = settings.log_enabled

    run_log = _log_parts(options.log)
    base_log = _log_parts(config.log)

    def pick(attr: str) -> Any:
        for source in (run_log, base_log):
            if source is not None and getattr(source, attr) is not None:
                return getattr(source, attr)
        return None

    stopwatch = pick("stopwatch")
    if stopwatch is None:
        stopwatch = settings.stopwatch
    stopwatch_enabled = stopwatch is not False
    if isinstance(stopwatch, StopwatchConfig):
        show_step_duration = stopwatch.show_step_duration
        show_summary = stopwatch.show_summary
        show_total = stopwatch.show_total
    else:
        show_step_duration = show_summary = show_total = stopwatch_enabled

    complete_hooks = tuple(
        hook for hook in (config.on_step_complete, options.on_step_complete) if hook is not None
    )
    error_hooks = tuple(hook for hook in (config.on_error, options.on_error) if hook is not None)
    summary_hooks = tuple(
        hook for hook in (config.on_summary, options.on_summary) if hook is not None
    )

    return RuntimeState(
        log_enabled=log_enabled,
        log_fn=pick("log_fn") or default_log,
        error_log_fn=pick("error_log_fn") or default_error_log,
        stopwatch_enabled=stopwatch_enabled,
        show_step_duration=show_step_duration,
        show_summary=show_summary,
        show_total=show_total,
        complete_hooks=complete_hooks,
        error_hooks=error_hooks,
        summary_hooks=summary_hooks,
        signal=options.signal or config.signal,
        resume_controller=ResumeController(target=resume_target),
        resume_from=resume_target,
        default_merge_policy=MergePolicy(settings.default_merge_policy),
        circuit_cooldown=settings.circuit_cooldown,
    )


__all__ = [
    "LogConfig",
    "StopwatchConfig",
    "PipelineConfig",
    "TimingStatus",
    "StepTimingInfo",
    "StopController",
    "ResumeController",
    "StepCompleteEvent",
    "RuntimeState",
    "resolve_runtime",
]
