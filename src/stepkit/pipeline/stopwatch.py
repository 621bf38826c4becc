"""Step timings and the end-of-run performance summary.

With the stopwatch on, every step the engine visits leaves a
``StepTimingInfo``.  ``summarize_timings`` turns the buffer into a
``RunSummary`` and ``emit_run_summary`` logs it through the run's
``log_fn`` as ``pipeline.summary`` / ``pipeline.total`` events.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from stepkit.pipeline.runtime import RuntimeState, StepTimingInfo, TimingStatus


def format_duration(seconds: float) -> str:
    """Render a duration as ``ms``, ``s``, ``m`` or ``h``.

    Example:
        >>> format_duration(0.25), format_duration(1.5), format_duration(90)
        ('250ms', '1.5s', '1.5m')
    """
    if seconds < 1:
        return f"{round(seconds * 1000)}ms"
    if seconds < 60:
        return f"{_one_decimal(seconds)}s"
    minutes = seconds / 60
    if minutes < 60:
        return f"{_one_decimal(minutes)}m"
    return f"{_one_decimal(minutes / 60)}h"


def _one_decimal(value: float) -> str:
    return f"{round(value, 1):g}"


@dataclass(frozen=True)
class RunSummary:
    """Aggregate timings for one run.

    Average, slowest and fastest only consider successful steps.
    """

    timings: tuple[StepTimingInfo, ...]
    total_duration: float
    average: float | None = None
    slowest: StepTimingInfo | None = None
    fastest: StepTimingInfo | None = None
    resumed_from: str | None = None
    stopped_by: str | None = None
    counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "steps": [
                {
                    "name": t.name,
                    "status": t.status.value,
                    "duration": "skipped"
                    if t.status is TimingStatus.SKIPPED
                    else format_duration(t.duration),
                }
                for t in self.timings
            ],
            "counts": dict(self.counts),
        }
        if self.average is not None:
            result["average"] = format_duration(self.average)
        if self.slowest is not None:
            result["slowest"] = f"{self.slowest.name} ({format_duration(self.slowest.duration)})"
        if self.fastest is not None:
            result["fastest"] = f"{self.fastest.name} ({format_duration(self.fastest.duration)})"
        if self.resumed_from:
            result["resumed_from"] = self.resumed_from
        if self.stopped_by:
            result["stopped_by"] = self.stopped_by
        return result


def summarize_timings(
    timings: Sequence[StepTimingInfo],
    total_duration: float,
    *,
    resumed_from: str | None = None,
    stopped_by: str | None = None,
) -> RunSummary:
    successful = [t for t in timings if t.status is TimingStatus.SUCCESS]
    counts = {status.value: 0 for status in TimingStatus}
    for timing in timings:
        counts[timing.status.value] += 1

    average = slowest = fastest = None
    if successful:
        average = sum(t.duration for t in successful) / len(successful)
        # ties keep the earliest step
        slowest = max(successful, key=lambda t: t.duration)
        fastest = min(successful, key=lambda t: t.duration)

    return RunSummary(
        timings=tuple(timings),
        total_duration=total_duration,
        average=average,
        slowest=slowest,
        fastest=fastest,
        resumed_from=resumed_from,
        stopped_by=stopped_by,
        counts=counts,
    )


def emit_run_summary(runtime: RuntimeState) -> RunSummary | None:
    """Log the summary for a finished run, honouring the stopwatch flags.

    Returns the summary when the stopwatch is on, else None.
    """
    if not runtime.stopwatch_enabled:
        return None

    stop = runtime.stop_controller
    summary = summarize_timings(
        runtime.step_timings,
        runtime.elapsed,
        resumed_from=runtime.resume_from,
        stopped_by=(stop.requested_by or "unknown") if stop.requested else None,
    )

    if runtime.log_enabled:
        if runtime.show_summary and summary.timings:
            runtime.log_fn("pipeline.summary", **summary.to_dict())
        if runtime.show_total:
            runtime.log_fn("pipeline.total", duration=format_duration(summary.total_duration))

    return summary


__all__ = ["format_duration", "RunSummary", "summarize_timings", "emit_run_summary"]
