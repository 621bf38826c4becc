"""Pipeline - immutable builder and entry point for runs.

Manifesto:
    Steps do one thing well; a Pipeline composes them into an ordered,
observable, resumable unit of work.  Every builder call returns a *new*
Pipeline, so a half-built pipeline can be shared and extended in
different directions without the branches seeing each other's steps.

ARCHITECTURE
────────────
::

    create(config) → Pipeline
      ├── .step(name?, config?, *fns_or_pipelines)   ── merge a patch
      ├── .transform(name?, config?, fn)              ── replace the context
      ├── .branch_on(name?, config?, *cases)          ── run one nested pipeline
      │
      ├── await .run(input, options?)                 → dict
      ├── await .run_checkpoint(checkpoint, options?) → dict
      ├── .run_sync(...) / .run_checkpoint_sync(...)  ── asyncio.run wrappers
      └── .describe()                                 → ["step-1", ...]

    Pipeline
      ├── steps          ── tuple[StepDescriptor, ...] (never mutated)
      ├── config         ── PipelineConfig (log, hooks, signal)
      └── circuits       ── CircuitBreakerRegistry (lives as long as this value)

Related modules:
    step_types.py   - StepDescriptor, StepConfig, BranchCase
    engine.py       - StepRunner, which executes the descriptors
    checkpoint.py   - checkpoint codec used by run_checkpoint

Example::

    from stepkit import create

    pipeline = (
        create()
        .step("inc", lambda ctx: {"x": ctx["x"] + 1})
        .step("mul", lambda ctx: {"x": ctx["x"] * 3})
        .step("final", lambda ctx: {"y": ctx["x"] + 10})
    )
    await pipeline.run({"x": 1})   # {"x": 6, "y": 16}

Tags:
    stepkit, pipeline, builder, checkpoint, resume

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Mapping
from typing import Any

from stepkit.core.errors import ValidationError
from stepkit.core.logging import LogContext, get_logger
from stepkit.execution.circuit_breaker import CircuitBreakerRegistry
from stepkit.pipeline.branch import make_branch_executable
from stepkit.pipeline.checkpoint import ResumeRequest, apply_override, parse_resume_request
from stepkit.pipeline.context import Context, compute_patch, deep_clone
from stepkit.pipeline.engine import StepRunner
from stepkit.pipeline.exceptions import PipelineConfigError
from stepkit.pipeline.runtime import PipelineConfig, RuntimeState, resolve_runtime
from stepkit.pipeline.step_types import (
    BranchCase,
    Executable,
    StepConfig,
    StepDescriptor,
    StepKind,
)
from stepkit.pipeline.stopwatch import emit_run_summary

logger = get_logger(__name__)

ConfigLike = PipelineConfig | Mapping[str, Any] | None


class Pipeline:
    """Immutable, ordered collection of steps.

    Args:
        config: PipelineConfig (or an equivalent dict) shared by every run
    """

    def __init__(self, config: ConfigLike = None, *, steps: tuple[StepDescriptor, ...] = ()):
        self._config = PipelineConfig.coerce(config)
        self._steps = tuple(steps)
        self._circuits = CircuitBreakerRegistry()

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def steps(self) -> tuple[StepDescriptor, ...]:
        return self._steps

    @property
    def circuits(self) -> CircuitBreakerRegistry:
        return self._circuits

    # ── Building ─────────────────────────────────────────────────────

    def step(self, first: Any = None, *items: Any) -> Pipeline:
        """Add a step whose output dict is merged into the context.

        Accepted forms::

            .step(fn, ...)                      # auto-named step-N
            .step("name", fn, ...)
            .step(StepConfig(...) | {...}, fn, ...)
            .step("name", StepConfig(...) | {...}, fn, ...)

        Items may be functions (sync or async, ``ctx -> dict | None``),
        pre-built Pipelines (run nested, contributing only the keys they
        add or change), or ``Executable`` instances.  Several items run
        concurrently on the same context snapshot.
        """
        name, config, rest = self._parse_head(StepKind.STEP, first, items)
        if not rest:
            raise PipelineConfigError(f"Step '{name}' needs at least one function or pipeline")
        executables = tuple(self._to_executable(name, item) for item in rest)
        return self._extend(StepDescriptor(name, StepKind.STEP, executables, config))

    def transform(self, first: Any, *items: Any) -> Pipeline:
        """Add a step whose output dict replaces the context.

        Accepted forms: ``transform(fn)``, ``transform("name", fn)``,
        ``transform(config, fn)``, ``transform("name", config, fn)``.
        Returning None is an error; return ``{}`` to clear the context.
        """
        name, config, rest = self._parse_head(StepKind.TRANSFORM, first, items)
        if len(rest) != 1 or not callable(rest[0]) or isinstance(rest[0], Pipeline):
            raise PipelineConfigError(f"Transform '{name}' takes exactly one function")
        fn = rest[0]
        executable = fn if isinstance(fn, Executable) else Executable(fn)
        return self._extend(StepDescriptor(name, StepKind.TRANSFORM, (executable,), config))

    def branch_on(self, first: Any, *cases: Any) -> Pipeline:
        """Add a branch: the first case whose predicate holds runs as a nested pipeline.

        Accepted forms: ``branch_on(case, ...)``, ``branch_on("name", case, ...)``,
        ``branch_on(config, case, ...)``.  Cases are ``BranchCase`` values or
        dicts ``{"when": pred, "then": p}`` / ``{"default": p}``.
        """
        if _looks_like_case(first):
            name, config, rest = self._parse_head(StepKind.BRANCH, None, (first, *cases))
        else:
            name, config, rest = self._parse_head(StepKind.BRANCH, first, cases)

        branch_cases = tuple(
            case if isinstance(case, BranchCase) else BranchCase.from_dict(case) for case in rest
        )
        if sum(1 for case in branch_cases if case.is_default) > 1:
            raise PipelineConfigError(f"Branch '{name}' has more than one default case")

        base_config = self._config
        executable = make_branch_executable(name, branch_cases, lambda: Pipeline(base_config))
        return self._extend(
            StepDescriptor(name, StepKind.BRANCH, (executable,), config, branch_cases)
        )

    def _parse_head(
        self, kind: StepKind, first: Any, items: tuple[Any, ...]
    ) -> tuple[str, StepConfig, tuple[Any, ...]]:
        explicit_name: str | None = None
        config = StepConfig()
        rest = items

        if isinstance(first, str):
            explicit_name = first
            if rest and isinstance(rest[0], (StepConfig, Mapping)) and not _looks_like_case(rest[0]):
                config = StepConfig.coerce(rest[0])
                rest = rest[1:]
        elif isinstance(first, (StepConfig, Mapping)):
            config = StepConfig.coerce(first)
        elif first is not None:
            rest = (first, *items)

        name = explicit_name or config.name or f"{kind.value}-{len(self._steps) + 1}"
        if "/" in name:
            raise PipelineConfigError(f"Step name must not contain '/': {name!r}", field="name")
        if name in self.describe():
            raise PipelineConfigError(f"Duplicate step name: {name}", field="name")
        return name, config, rest

    def _to_executable(self, step_name: str, item: Any) -> Executable:
        if isinstance(item, Executable):
            return item
        if isinstance(item, Pipeline):
            return _sub_pipeline_executable(item, step_name)
        if callable(item):
            return Executable(item)
        raise PipelineConfigError(
            f"Step '{step_name}' items must be callables or Pipelines, got {type(item).__name__}"
        )

    def _extend(self, descriptor: StepDescriptor) -> Pipeline:
        return Pipeline(self._config, steps=(*self._steps, descriptor))

    # ── Running ──────────────────────────────────────────────────────

    async def run(self, input: Mapping[str, Any] | None = None, options: ConfigLike = None) -> Context:
        """Run every step on ``input`` and return the final context."""
        context = _as_context(input)
        runtime = resolve_runtime(self._config, _coerce_options(options))
        return await self._run_top_level(context, runtime, start_event="pipeline.start")

    async def run_checkpoint(self, checkpoint: ResumeRequest, options: ConfigLike = None) -> Context:
        """Resume after the step a checkpoint was taken at.

        Args:
            checkpoint: Checkpoint string, or ``{"checkpoint": str,
                "overrideData" | "override_data": {...}}``
            options: Per-run options, as for ``run``
        """
        decoded, override = parse_resume_request(checkpoint)
        context = apply_override(decoded.output, override)
        runtime = resolve_runtime(
            self._config, _coerce_options(options), resume_target=decoded.step_name
        )
        return await self._run_top_level(context, runtime, start_event="pipeline.resume")

    def run_sync(self, input: Mapping[str, Any] | None = None, options: ConfigLike = None) -> Context:
        """``run`` for callers outside an event loop."""
        return asyncio.run(self.run(input, options))

    def run_checkpoint_sync(self, checkpoint: ResumeRequest, options: ConfigLike = None) -> Context:
        """``run_checkpoint`` for callers outside an event loop."""
        return asyncio.run(self.run_checkpoint(checkpoint, options))

    async def execute_nested(self, context: Context, runtime: RuntimeState) -> Context:
        """Run this pipeline inside another run, sharing its RuntimeState."""
        return await StepRunner(self._steps, self._circuits).execute(context, runtime)

    async def _run_top_level(
        self, context: Context, runtime: RuntimeState, *, start_event: str
    ) -> Context:
        run_id = uuid.uuid4().hex[:12]
        async with LogContext(run_id=run_id):
            logger.debug(
                "pipeline.run.start",
                steps=len(self._steps),
                resume_from=runtime.resume_from,
            )
            if runtime.log_enabled:
                if runtime.resume_from is not None:
                    runtime.log_fn(start_event, checkpoint=runtime.resume_from)
                else:
                    runtime.log_fn(start_event, input_keys=list(context))

            result = await self.execute_nested(context, runtime)

            summary = emit_run_summary(runtime)
            if summary is not None:
                await runtime.emit_summary(summary)
            stop = runtime.stop_controller
            if runtime.log_enabled:
                if stop.requested:
                    runtime.log_fn("pipeline.stopped", requested_by=stop.requested_by)
                else:
                    runtime.log_fn("pipeline.complete")
            logger.debug(
                "pipeline.run.complete",
                stopped=stop.requested,
                duration_seconds=runtime.elapsed,
            )
        return result

    # ── Inspection ───────────────────────────────────────────────────

    def describe(self) -> list[str]:
        """Step names in declaration order."""
        return [s.name for s in self._steps]

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self) -> str:
        return f"Pipeline(steps={self.describe()!r})"


def create(config: ConfigLike = None) -> Pipeline:
    """Start an empty Pipeline."""
    return Pipeline(config)


def _looks_like_case(value: Any) -> bool:
    if isinstance(value, BranchCase):
        return True
    return isinstance(value, Mapping) and ("default" in value or ("when" in value and "then" in value))


def _as_context(value: Mapping[str, Any] | None) -> Context:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError(f"Pipeline input must be a mapping, got {type(value).__name__}")
    return deep_clone(dict(value))


def _coerce_options(options: ConfigLike) -> PipelineConfig | None:
    return None if options is None else PipelineConfig.coerce(options)


def _sub_pipeline_executable(pipeline: Pipeline, step_name: str) -> Executable:
    async def run_nested(context: Context, runtime: RuntimeState) -> Context:
        result = await pipeline.execute_nested(context, runtime.nested(step_name))
        return compute_patch(context, result)

    return Executable(run_nested, takes_runtime=True, label=f"{step_name}/*")


__all__ = ["Pipeline", "create"]
