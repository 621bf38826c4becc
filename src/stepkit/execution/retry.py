"""Retry policies and backoff strategies for step attempts.

A step is attempted up to ``retries + 1`` times.  Between attempts the
engine sleeps for ``retry_delay`` seconds, which is either a fixed number
or a callable ``(attempt, error) -> seconds``.  The backoff classes here
are such callables, so they plug straight into ``StepConfig.retry_delay``.

Example:
    >>> from stepkit.execution.retry import ExponentialBackoff
    >>>
    >>> backoff = ExponentialBackoff(base_delay=0.5, max_delay=8.0, jitter=False)
    >>> [backoff(n, RuntimeError()) for n in (1, 2, 3)]
    [0.5, 1.0, 2.0]
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from stepkit.core.errors import StepkitError
from stepkit.core.logging import get_logger
from stepkit.execution.timeout import AbortSignal, PipelineAbortedError

logger = get_logger(__name__)

T = TypeVar("T")

RetryDelay = float | Callable[[int, BaseException], float]
ShouldRetry = Callable[[BaseException], bool]


def never_retry(error: BaseException) -> bool:
    """Default ``should_retry``: a step is only retried when the caller opts in."""
    return False


@dataclass(frozen=True)
class ExponentialBackoff:
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** (attempt - 1)), max_delay) +/- jitter

    Attributes:
        base_delay: Delay after the first failed attempt, in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def __call__(self, attempt: int, error: BaseException) -> float:
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay


@dataclass(frozen=True)
class LinearBackoff:
    """Linear backoff: base_delay + increment * (attempt - 1), capped."""

    base_delay: float = 1.0
    increment: float = 1.0
    max_delay: float = 30.0

    def __call__(self, attempt: int, error: BaseException) -> float:
        return min(self.base_delay + self.increment * (attempt - 1), self.max_delay)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for a single step.

    Attributes:
        retries: Extra attempts after the first one
        delay: Fixed seconds or ``(attempt, error) -> seconds``
        should_retry: Predicate deciding if an error is worth another attempt;
            defaults to ``never_retry``
    """

    retries: int = 0
    delay: RetryDelay | None = None
    should_retry: ShouldRetry = never_retry

    @property
    def max_attempts(self) -> int:
        return max(0, self.retries) + 1

    def next_delay(self, attempt: int, error: BaseException) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        if self.delay is None:
            return 0.0
        if callable(self.delay):
            return float(self.delay(attempt, error))
        return float(self.delay)

    def allows_retry(self, attempt: int, error: BaseException) -> bool:
        """True if another attempt should follow failed ``attempt``."""
        if attempt >= self.max_attempts:
            return False
        return bool(self.should_retry(error))


@dataclass
class RetryContext:
    """Tracks the attempts made for one step execution.

    When a ``signal`` is attached, an abort stops further attempts and
    cuts the delay between attempts short.

    Example:
        >>> ctx = RetryContext(RetryPolicy(retries=2, should_retry=is_retryable))
        >>> result = await ctx.run_async(lambda: call_api())
    """

    policy: RetryPolicy
    on_retry: Callable[[int, BaseException, float], None] | None = None
    signal: AbortSignal | None = None
    label: str = "operation"
    attempt: int = field(default=0, init=False)
    errors: list[BaseException] = field(default_factory=list, init=False)

    @property
    def last_error(self) -> BaseException | None:
        return self.errors[-1] if self.errors else None

    async def run_async(self, func: Callable[[], Awaitable[T]]) -> T:
        """Await ``func()`` until it succeeds or the policy gives up.

        Raises:
            The last exception if all attempts are exhausted or the policy
            refuses to retry it.
        """
        while True:
            self.attempt += 1
            try:
                return await func()
            except Exception as e:
                self.errors.append(e)
                if isinstance(e, StepkitError) and e.context.attempt is None:
                    e.with_context(attempt=self.attempt)

                if self._aborted() or not self.policy.allows_retry(self.attempt, e):
                    raise

                delay = self.policy.next_delay(self.attempt, e)

                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)

                if delay > 0:
                    await self._sleep(delay)

    def _aborted(self) -> bool:
        return self.signal is not None and self.signal.aborted

    async def _sleep(self, delay: float) -> None:
        """Wait ``delay`` seconds, or until the signal fires."""
        if self.signal is None:
            await asyncio.sleep(delay)
            return

        waiter = asyncio.ensure_future(self.signal.wait())
        try:
            await asyncio.wait({waiter}, timeout=delay)
        finally:
            if not waiter.done():
                waiter.cancel()

        if self.signal.aborted:
            raise PipelineAbortedError(self.signal.reason, step=self.label).with_context(
                attempt=self.attempt
            )


async def run_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "operation",
    signal: AbortSignal | None = None,
    **log_fields: Any,
) -> T:
    """Convenience wrapper around ``RetryContext`` that logs each retry."""

    def _log_retry(attempt: int, error: BaseException, delay: float) -> None:
        logger.debug(
            "pipeline.step.retry",
            step=label,
            attempt=attempt,
            delay=delay,
            error=repr(error),
            **log_fields,
        )

    return await RetryContext(policy, on_retry=_log_retry, signal=signal, label=label).run_async(
        func
    )


__all__ = [
    "ExponentialBackoff",
    "LinearBackoff",
    "never_retry",
    "RetryPolicy",
    "RetryContext",
    "run_with_retry",
]
