"""Parallel fan-out for steps that bundle several executables.

WHY
───
A step may carry several functions or sub-pipelines that should see the
same context snapshot and run concurrently.  ``asyncio.gather`` gives
that concurrency on the run's own event loop; the two modes differ only
in how failures are treated.

ARCHITECTURE
────────────
::

    fan_out(calls, mode=...)
      ├── mode="all"      ─ asyncio.gather        ─ first failure raises
      └── mode="settled"  ─ gather(return_exceptions=True)
                              ├── failures → on_failure(item) and excluded
                              └── FanOutResult.outputs (declaration order)

Merging the outputs into the context is the caller's job; this module
only schedules the calls and sorts outcomes.

Example::

    result = await fan_out([lambda: a(ctx), lambda: b(ctx)], mode="settled")
    print(result.succeeded, result.failed)  # 1 1
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from stepkit.core.logging import get_logger

logger = get_logger(__name__)

FanOutMode = Literal["all", "settled"]


@dataclass
class FanOutItem:
    """Outcome of one call in a fan-out."""

    index: int
    name: str
    status: str = "pending"
    output: Any = None
    error: BaseException | None = None


@dataclass
class FanOutResult:
    """Aggregate outcome of a fan-out, items in declaration order."""

    items: list[FanOutItem] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.status == "completed")

    @property
    def failed(self) -> int:
        return sum(1 for i in self.items if i.status == "failed")

    @property
    def outputs(self) -> list[Any]:
        """Outputs of the completed calls, in declaration order."""
        return [i.output for i in self.items if i.status == "completed"]


async def fan_out(
    calls: Sequence[Callable[[], Awaitable[Any]]],
    *,
    mode: FanOutMode = "all",
    names: Sequence[str] | None = None,
    on_failure: Callable[[FanOutItem], None] | None = None,
) -> FanOutResult:
    """Run ``calls`` concurrently.

    Args:
        calls: Zero-argument coroutine factories
        mode: ``all`` raises the first failure; ``settled`` waits for
            every call and excludes failures
        names: Labels for the calls, used in failure reports
        on_failure: Called once per failed call in ``settled`` mode

    Returns:
        ``FanOutResult`` with one item per call

    Raises:
        Exception: In ``all`` mode, the first failure
    """
    labels = list(names) if names is not None else [f"#{n}" for n in range(len(calls))]
    result = FanOutResult(
        items=[FanOutItem(index=n, name=labels[n]) for n in range(len(calls))]
    )

    if mode == "all":
        outputs = await asyncio.gather(*[call() for call in calls])
        for item, output in zip(result.items, outputs):
            item.status = "completed"
            item.output = output
        return result

    outcomes = await asyncio.gather(*[call() for call in calls], return_exceptions=True)
    for item, outcome in zip(result.items, outcomes):
        if isinstance(outcome, BaseException):
            item.status = "failed"
            item.error = outcome
            logger.debug(
                "pipeline.parallel.item_failed",
                index=item.index,
                name=item.name,
                error=repr(outcome),
            )
            if on_failure is not None:
                on_failure(item)
        else:
            item.status = "completed"
            item.output = outcome

    return result


__all__ = ["FanOutItem", "FanOutResult", "FanOutMode", "fan_out"]
