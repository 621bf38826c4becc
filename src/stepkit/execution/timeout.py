"""Timeout and abort enforcement for step attempts.

Each attempt of a step is raced against two things: a deadline, when the
step has a finite positive ``timeout``, and the run's ``AbortSignal``,
when one is attached.  Whichever settles first wins.

Manifesto:
    The engine can stop *waiting* for user code, it cannot stop the user
    code itself.  A timed-out or aborted attempt is abandoned: its task is
    left to finish on its own and its eventual outcome is discarded.

Architecture:
    ::

        race_attempt(run, timeout=T, signal=S, step="fetch")
            │
            ├── attempt task ── run() ──────────────┐
            ├── abort waiter ── S.wait() ───────────┤  asyncio.wait(FIRST_COMPLETED,
            └── deadline ────── timeout=T ──────────┘                timeout=T)
                                   │
                 attempt done  →  result / user exception
                 abort fired   →  PipelineAbortedError
                 deadline hit  →  StepTimeoutError

Examples:
    >>> signal = AbortSignal()
    >>> await race_attempt(lambda: fetch(), timeout=5.0, signal=signal, step="fetch")

Tags:
    timeout, abort, cancellation, resilience, stepkit

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from typing import Any

from stepkit.core.errors import (
    ErrorCategory,
    ErrorContext,
    PipelineError,
    TransientError,
)


class StepTimeoutError(TransientError, TimeoutError):
    """Raised when a step attempt exceeds its timeout.

    Inherits from built-in TimeoutError for broad exception handling.

    Attributes:
        timeout: The timeout value that was exceeded, in seconds
        elapsed: How long the attempt ran before it was abandoned
        step: Display name of the step
    """

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, step: str, timeout: float, elapsed: float | None = None):
        self.step = step
        self.timeout = timeout
        self.elapsed = elapsed
        super().__init__(
            f"Step '{step}' timed out after {timeout}s",
            context=ErrorContext(step=step),
        )


class PipelineAbortedError(PipelineError):
    """Raised when the run's abort signal fires."""

    default_category = ErrorCategory.ABORT
    default_retryable = False

    def __init__(self, reason: Any = None, *, step: str | None = None):
        self.reason = reason
        message = "Pipeline aborted" if reason is None else f"Pipeline aborted: {reason}"
        super().__init__(message, context=ErrorContext(step=step))


class NonErrorThrow(PipelineError):
    """An attempt ended without an ``Exception`` (e.g. its task was cancelled).

    The original outcome is preserved in ``cause``.
    """

    def __init__(self, cause: BaseException | None = None, *, step: str | None = None):
        super().__init__("Non-Error thrown", cause=cause, context=ErrorContext(step=step))


class AbortSignal:
    """Cooperative cancellation token for a pipeline run.

    ``abort()`` may be called from any coroutine (or thread) at any time;
    the engine checks ``aborted`` before every step and races ``wait()``
    against every attempt.

    Example:
        >>> signal = AbortSignal()
        >>> task = asyncio.create_task(pipeline.run({}, PipelineConfig(signal=signal)))
        >>> signal.abort("user cancelled")
    """

    def __init__(self) -> None:
        self._aborted = False
        self.reason: Any = None
        self._waiters: set[asyncio.Future[None]] = set()

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self, reason: Any = None) -> None:
        """Trigger the signal. Subsequent calls are ignored."""
        if self._aborted:
            return
        self._aborted = True
        self.reason = reason
        for waiter in list(self._waiters):
            waiter.get_loop().call_soon_threadsafe(_resolve, waiter)

    async def wait(self) -> None:
        """Return once the signal has been aborted."""
        if self._aborted:
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.add(waiter)
        try:
            await waiter
        finally:
            self._waiters.discard(waiter)

    def __repr__(self) -> str:
        return f"AbortSignal(aborted={self._aborted})"


def _resolve(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


def _consume_outcome(task: asyncio.Future[Any]) -> None:
    """Retrieve an abandoned task's exception so asyncio does not warn about it."""
    if not task.cancelled():
        task.exception()


def has_valid_timeout(timeout: float | None) -> bool:
    """True for a finite, positive number of seconds."""
    if timeout is None or isinstance(timeout, bool):
        return False
    try:
        value = float(timeout)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > 0


async def race_attempt(
    run: Callable[[], Awaitable[Any]],
    *,
    timeout: float | None = None,
    signal: AbortSignal | None = None,
    step: str = "operation",
) -> Any:
    """Run one attempt, racing it against ``timeout`` and ``signal``.

    Args:
        run: Zero-argument coroutine factory for the attempt
        timeout: Seconds; ignored unless finite and positive
        signal: Abort signal to race against
        step: Display name for error messages

    Returns:
        Whatever the attempt returned

    Raises:
        PipelineAbortedError: The signal fired first (or was already aborted)
        StepTimeoutError: The deadline passed first
        NonErrorThrow: The attempt ended cancelled
        Exception: Anything the attempt raised
    """
    if signal is not None and signal.aborted:
        raise PipelineAbortedError(signal.reason, step=step)

    started = time.monotonic()
    attempt = asyncio.ensure_future(run())
    waiters: set[asyncio.Future[Any]] = {attempt}

    abort_waiter: asyncio.Future[None] | None = None
    if signal is not None:
        abort_waiter = asyncio.ensure_future(signal.wait())
        waiters.add(abort_waiter)

    deadline = float(timeout) if has_valid_timeout(timeout) else None

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=deadline, return_when=asyncio.FIRST_COMPLETED
        )
    except BaseException:
        attempt.add_done_callback(_consume_outcome)
        raise
    finally:
        if abort_waiter is not None and not abort_waiter.done():
            abort_waiter.cancel()

    if attempt in done:
        if attempt.cancelled():
            raise NonErrorThrow(asyncio.CancelledError(), step=step)
        return attempt.result()

    attempt.add_done_callback(_consume_outcome)

    if abort_waiter is not None and abort_waiter in done:
        raise PipelineAbortedError(signal.reason if signal else None, step=step)

    raise StepTimeoutError(step, deadline or 0.0, elapsed=time.monotonic() - started)


__all__ = [
    "AbortSignal",
    "StepTimeoutError",
    "PipelineAbortedError",
    "NonErrorThrow",
    "has_valid_timeout",
    "race_attempt",
]
