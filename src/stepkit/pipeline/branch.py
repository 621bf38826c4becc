"""Branch executor for ``Pipeline.branch_on``.

Cases are scanned in order.  The first case whose predicate is true is
chosen; the default case (wherever it was declared) is only used when
none match; with neither the branch step contributes nothing.  The chosen
pipeline runs as a nested engine invocation with the name prefix
extended by ``[branch_name, case_name]`` and only its added or changed
keys flow back to the parent.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from stepkit.core.logging import get_logger
from stepkit.pipeline.context import Context, compute_patch
from stepkit.pipeline.exceptions import PipelineConfigError
from stepkit.pipeline.step_types import BranchCase, Executable

if TYPE_CHECKING:
    from stepkit.pipeline.builder import Pipeline
    from stepkit.pipeline.runtime import RuntimeState

logger = get_logger(__name__)


async def select_case(cases: Sequence[BranchCase], context: Context) -> BranchCase | None:
    """Return the first matching case, else the default case, else None."""
    default_case: BranchCase | None = None
    for case in cases:
        if case.is_default:
            default_case = case
            continue
        matched = case.predicate(context) if case.predicate is not None else False
        if inspect.isawaitable(matched):
            matched = await matched
        if matched:
            return case
    return default_case


def build_case_pipeline(case: BranchCase, new_pipeline: Callable[[], Pipeline]) -> Pipeline:
    """Resolve ``case.then`` to a Pipeline, calling factories with a fresh one."""
    from stepkit.pipeline.builder import Pipeline

    then = case.then
    built = then if isinstance(then, Pipeline) else then(new_pipeline())
    if not isinstance(built, Pipeline):
        raise PipelineConfigError(
            f"Branch case '{case.case_name}' must produce a Pipeline, got {type(built).__name__}",
            field="then",
        )
    return built


def make_branch_executable(
    branch_name: str,
    cases: Sequence[BranchCase],
    new_pipeline: Callable[[], Pipeline],
) -> Executable:
    """Wrap case selection and the nested run into a runtime-aware Executable."""
    frozen_cases = tuple(cases)

    async def run_branch(context: Context, runtime: RuntimeState) -> Context:
        chosen = await select_case(frozen_cases, context)
        if chosen is None:
            logger.debug("pipeline.branch.no_match", branch=runtime.display_name(branch_name))
            return {}

        case_name = chosen.case_name
        if runtime.log_enabled:
            runtime.log_fn(
                "pipeline.branch.selected",
                step=runtime.display_name(branch_name),
                case=runtime.nested(branch_name).display_name(case_name),
            )

        pipeline = build_case_pipeline(chosen, new_pipeline)
        result = await pipeline.execute_nested(context, runtime.nested(branch_name, case_name))
        return compute_patch(context, result)

    return Executable(run_branch, takes_runtime=True, label=branch_name)


__all__ = ["select_case", "build_case_pipeline", "make_branch_executable"]
