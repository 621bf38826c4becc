"""Step Runner - the execution engine behind ``Pipeline.run``.

Manifesto:
Steps run strictly in declaration order, one at a time.  Each step
passes through a fixed sequence of gates before it runs, and its output
is merged (or, for transforms, swapped in) before the next step starts.
The ``on_step_complete`` hooks are awaited in between, so callers get one
ordered opportunity per step to persist the checkpoint.

ARCHITECTURE
────────────
::

    StepRunner.execute(context, runtime)
      └── for step in steps:
            1. display name      prefix/…/name
            2. resume gate       skip until the checkpointed step
            3. abort gate        signal already fired → PipelineAbortedError
            4. condition gate    false → skipped
            5. circuit gate      open → CircuitOpenError or skipped
            6. attempts          run_with_retry(race_attempt(fan_out | transform))
            7. apply output      merge patch / replace context, emit StepCompleteEvent
            8. on failure        circuit bookkeeping, on_error hooks, ErrorPolicy

Related modules:
    builder.py        - Pipeline, which owns the steps and circuit registry
    runtime.py        - RuntimeState shared with nested runs
    execution/*       - retry, timeout/abort, circuit breaker, fan-out

Tags:
    stepkit, engine, retry, timeout, checkpoint

Doc-Types:
    api-reference
"""

from __future__ import annotations

import inspect
import time
from collections.abc import Sequence
from functools import partial
from typing import Any

from stepkit.core.errors import StepkitError
from stepkit.core.logging import get_logger
from stepkit.execution.circuit_breaker import CircuitBreakerRegistry, CircuitOpenError, StepCircuit
from stepkit.execution.fanout import FanOutItem, FanOutResult, fan_out
from stepkit.execution.retry import run_with_retry
from stepkit.execution.timeout import PipelineAbortedError, race_attempt
from stepkit.pipeline.checkpoint import encode_checkpoint
from stepkit.pipeline.context import Context, deep_clone, is_plain_mapping
from stepkit.pipeline.exceptions import StepOutputError
from stepkit.pipeline.merge import merge_context
from stepkit.pipeline.runtime import RuntimeState, StepCompleteEvent, TimingStatus
from stepkit.pipeline.step_types import BehaviorOnOpen, ErrorPolicy, StepDescriptor, StepKind

logger = get_logger(__name__)


class StepRunner:
    """Executes a sequence of step descriptors against a context.

    Args:
        steps: Descriptors in declaration order
        circuits: Circuit registry of the owning Pipeline
    """

    def __init__(self, steps: Sequence[StepDescriptor], circuits: CircuitBreakerRegistry) -> None:
        self._steps = tuple(steps)
        self._circuits = circuits

    async def execute(self, context: Context, runtime: RuntimeState) -> Context:
        """Run every step and return the final context.

        Raises:
            Exception: A step failure under ``on_error="throw"``, an abort,
                or an output validation / merge collision error
        """
        current = deep_clone(dict(context))
        for step in self._steps:
            stop, current = await self._run_step(step, current, runtime)
            if stop:
                break
        return current

    # ── One step ─────────────────────────────────────────────────────

    async def _run_step(
        self, step: StepDescriptor, context: Context, runtime: RuntimeState
    ) -> tuple[bool, Context]:
        """Run one step; returns ``(stop, context)``."""
        display = runtime.display_name(step.name)
        step_log = step.config.log if step.config.log is not None else runtime.log_enabled

        target = runtime.resume_controller.target
        if target is not None:
            if display == target:
                runtime.resume_controller.target = None
                self._skip(runtime, display, step_log, reason="resume")
                return False, context
            if not target.startswith(display + "/"):
                self._skip(runtime, display, step_log, reason="resume")
                return False, context

        if runtime.signal is not None and runtime.signal.aborted:
            error = PipelineAbortedError(runtime.signal.reason, step=display)
            await runtime.report_error(display, error)
            if step.config.on_error is ErrorPolicy.SKIP_REMAINING:
                return True, context
            raise error

        if not await self._condition_allows(step, context):
            self._skip(runtime, display, step_log, reason="condition")
            return False, context

        circuit = self._circuit_for(step, runtime)
        if circuit is not None and not circuit.allow_request():
            cb = step.config.circuit_breaker
            if cb is not None and cb.behavior_on_open is BehaviorOnOpen.SKIP:
                self._skip(runtime, display, step_log, reason="circuit-open")
                return False, context
            error = CircuitOpenError(display, remaining=circuit.remaining)
            runtime.record_timing(display, 0.0, TimingStatus.FAILED)
            if step_log:
                runtime.error_log_fn("pipeline.step.rejected", step=display, error=str(error))
            await runtime.report_error(display, error)
            return self._apply_policy(step, error), context

        started = time.monotonic()
        if step_log:
            runtime.log_fn("pipeline.step.start", step=display, kind=step.kind.value)

        try:
            output = await run_with_retry(
                partial(self._attempt, step, context, runtime, display),
                step.config.retry_policy(),
                label=display,
                signal=runtime.signal,
            )
        except Exception as error:
            await self._fail(step, runtime, display, started, error, circuit, step_log)
            return self._apply_policy(step, error), context

        try:
            context = self._apply_output(step, context, output, runtime, display)
        except StepkitError as error:
            # validation and collision failures ignore on_error
            await self._fail(step, runtime, display, started, error, circuit, step_log)
            raise

        if circuit is not None:
            circuit.record_success()

        duration = time.monotonic() - started
        runtime.record_timing(display, duration, TimingStatus.SUCCESS)
        if step_log:
            fields: dict[str, Any] = {"step": display, "output_keys": _output_keys(output)}
            if runtime.show_step_duration:
                fields["duration"] = round(duration, 6)
            runtime.log_fn("pipeline.step.complete", **fields)

        if runtime.complete_hooks:
            await runtime.emit_step_complete(
                StepCompleteEvent(
                    step_name=display,
                    duration=duration,
                    context=deep_clone(context),
                    checkpoint=encode_checkpoint(display, context),
                    stop_pipeline=partial(runtime.stop_controller.request, display),
                )
            )

        if runtime.stop_controller.requested:
            if step_log:
                runtime.log_fn(
                    "pipeline.step.stop_requested",
                    step=display,
                    requested_by=runtime.stop_controller.requested_by or display,
                )
            return True, context

        return False, context

    # ── Gates ────────────────────────────────────────────────────────

    async def _condition_allows(self, step: StepDescriptor, context: Context) -> bool:
        condition = step.config.condition
        if condition is None:
            return True
        if callable(condition):
            result = condition(context)
            if inspect.isawaitable(result):
                result = await result
            return bool(result)
        return bool(condition)

    def _circuit_for(self, step: StepDescriptor, runtime: RuntimeState) -> StepCircuit | None:
        cb = step.config.circuit_breaker
        if cb is None:
            return None
        cooldown = cb.cooldown if cb.cooldown is not None else runtime.circuit_cooldown
        return self._circuits.get_or_create(
            step.name, failure_threshold=cb.failure_threshold, cooldown=cooldown
        )

    def _skip(self, runtime: RuntimeState, display: str, step_log: bool, *, reason: str) -> None:
        runtime.record_timing(display, 0.0, TimingStatus.SKIPPED)
        if step_log:
            runtime.log_fn("pipeline.step.skipped", step=display, reason=reason)

    # ── Attempts ─────────────────────────────────────────────────────

    async def _attempt(
        self, step: StepDescriptor, context: Context, runtime: RuntimeState, display: str
    ) -> Any:
        return await race_attempt(
            partial(self._invoke, step, context, runtime, display),
            timeout=step.config.timeout,
            signal=runtime.signal,
            step=display,
        )

    async def _invoke(
        self, step: StepDescriptor, context: Context, runtime: RuntimeState, display: str
    ) -> Any:
        if step.kind is StepKind.TRANSFORM:
            return await step.executables[0](deep_clone(context), runtime)

        def _log_failure(item: FanOutItem) -> None:
            runtime.error_log_fn(
                "pipeline.parallel.failed",
                step=display,
                index=item.index,
                executable=item.name,
                error=repr(item.error),
            )

        return await fan_out(
            [partial(ex, deep_clone(context), runtime) for ex in step.executables],
            mode=step.config.parallel_mode.value,
            names=[ex.display_label for ex in step.executables],
            on_failure=_log_failure,
        )

    # ── Output ───────────────────────────────────────────────────────

    def _apply_output(
        self,
        step: StepDescriptor,
        context: Context,
        output: Any,
        runtime: RuntimeState,
        display: str,
    ) -> Context:
        if step.kind is StepKind.TRANSFORM:
            if output is None:
                raise StepOutputError(
                    display,
                    f"Transform '{display}' must return a dict, not None. Transforms "
                    "replace the entire context, so returning nothing would clear all "
                    "data. Return an empty dict {} to clear the context intentionally.",
                )
            if not is_plain_mapping(output):
                raise StepOutputError(
                    display,
                    f"Transform '{display}' must return a dict, got {type(output).__name__}",
                )
            return deep_clone(dict(output))

        policy = step.config.merge_policy or runtime.default_merge_policy

        def _on_collision(key: str) -> None:
            runtime.log_fn("pipeline.merge.collision", step=display, key=key)

        patch: Context = {}
        outputs = output.outputs if isinstance(output, FanOutResult) else [output]
        for value in outputs:
            value = {} if value is None else value
            if not is_plain_mapping(value):
                raise StepOutputError(display)
            patch = merge_context(patch, value, policy, _on_collision)

        return merge_context(context, patch, policy, _on_collision)

    # ── Failure ──────────────────────────────────────────────────────

    async def _fail(
        self,
        step: StepDescriptor,
        runtime: RuntimeState,
        display: str,
        started: float,
        error: BaseException,
        circuit: StepCircuit | None,
        step_log: bool,
    ) -> None:
        if circuit is not None:
            circuit.record_failure()

        duration = time.monotonic() - started
        runtime.record_timing(display, duration, TimingStatus.FAILED)
        if step_log:
            fields: dict[str, Any] = {"step": display, "error": repr(error)}
            if runtime.show_step_duration:
                fields["duration"] = round(duration, 6)
            runtime.error_log_fn("pipeline.step.failed", **fields)

        logger.debug(
            "pipeline.step.failed",
            step=display,
            error_type=type(error).__name__,
            on_error=step.config.on_error.value,
        )
        await runtime.report_error(display, error)

    def _apply_policy(self, step: StepDescriptor, error: BaseException) -> bool:
        """Return True to stop the loop; re-raise under ``throw``."""
        policy = step.config.on_error
        if policy is ErrorPolicy.THROW:
            raise error
        return policy is ErrorPolicy.SKIP_REMAINING


def _output_keys(output: Any) -> list[str]:
    if isinstance(output, FanOutResult):
        keys: list[str] = []
        for value in output.outputs:
            if isinstance(value, dict):
                keys.extend(k for k in value if k not in keys)
        return keys
    if isinstance(output, dict):
        return list(output)
    return []


__all__ = ["StepRunner"]
