"""Tests for stepkit.execution.timeout."""

import asyncio
import math

import pytest

from stepkit.core.errors import ErrorCategory
from stepkit.execution.timeout import (
    AbortSignal,
    NonErrorThrow,
    PipelineAbortedError,
    StepTimeoutError,
    has_valid_timeout,
    race_attempt,
)


# ── Errors ───────────────────────────────────────────────────────────


class TestTimeoutErrors:
    def test_step_timeout_message_and_hierarchy(self):
        err = StepTimeoutError("fetch", 0.5)
        assert str(err) == "Step 'fetch' timed out after 0.5s"
        assert isinstance(err, TimeoutError)
        assert err.retryable is True
        assert err.context.step == "fetch"

    def test_aborted_message(self):
        assert str(PipelineAbortedError()) == "Pipeline aborted"
        err = PipelineAbortedError("user cancelled", step="s")
        assert str(err) == "Pipeline aborted: user cancelled"
        assert err.category == ErrorCategory.ABORT
        assert err.retryable is False

    def test_non_error_throw(self):
        cause = asyncio.CancelledError()
        err = NonErrorThrow(cause, step="s")
        assert str(err) == "Non-Error thrown"
        assert err.cause is cause


# ── has_valid_timeout ────────────────────────────────────────────────


class TestHasValidTimeout:
    @pytest.mark.parametrize("value", [0.1, 1, 30.0])
    def test_valid(self, value):
        assert has_valid_timeout(value) is True

    @pytest.mark.parametrize("value", [None, 0, -1, math.inf, math.nan, True, "soon"])
    def test_invalid(self, value):
        assert has_valid_timeout(value) is False


# ── AbortSignal ──────────────────────────────────────────────────────


class TestAbortSignal:
    def test_initial_state(self):
        signal = AbortSignal()
        assert signal.aborted is False
        assert signal.reason is None

    def test_first_reason_wins(self):
        signal = AbortSignal()
        signal.abort("first")
        signal.abort("second")
        assert signal.aborted is True
        assert signal.reason == "first"

    @pytest.mark.asyncio
    async def test_wait_resolves_on_abort(self):
        signal = AbortSignal()
        waiter = asyncio.ensure_future(signal.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        signal.abort()
        await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    async def test_wait_returns_immediately_when_aborted(self):
        signal = AbortSignal()
        signal.abort()
        await asyncio.wait_for(signal.wait(), timeout=1)


# ── race_attempt ─────────────────────────────────────────────────────


class TestRaceAttempt:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def run():
            return {"a": 1}

        assert await race_attempt(run, timeout=1.0) == {"a": 1}

    @pytest.mark.asyncio
    async def test_propagates_user_error(self):
        async def run():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await race_attempt(run)

    @pytest.mark.asyncio
    async def test_times_out(self):
        async def run():
            await asyncio.sleep(1)

        with pytest.raises(StepTimeoutError) as exc_info:
            await race_attempt(run, timeout=0.02, step="slow")
        assert exc_info.value.timeout == 0.02
        assert exc_info.value.step == "slow"
        assert exc_info.value.elapsed >= 0.01

    @pytest.mark.asyncio
    async def test_invalid_timeout_is_ignored(self):
        async def run():
            await asyncio.sleep(0.01)
            return "done"

        assert await race_attempt(run, timeout=0) == "done"
        assert await race_attempt(run, timeout=math.inf) == "done"

    @pytest.mark.asyncio
    async def test_already_aborted_never_invokes(self):
        signal = AbortSignal()
        signal.abort("gone")
        invoked = []

        async def run():
            invoked.append(1)

        with pytest.raises(PipelineAbortedError, match="gone"):
            await race_attempt(run, signal=signal)
        assert invoked == []

    @pytest.mark.asyncio
    async def test_abort_during_attempt(self):
        signal = AbortSignal()

        async def run():
            await asyncio.sleep(1)

        async def abort_soon():
            await asyncio.sleep(0.01)
            signal.abort("stop")

        aborter = asyncio.ensure_future(abort_soon())
        with pytest.raises(PipelineAbortedError, match="stop"):
            await race_attempt(run, timeout=5, signal=signal)
        await aborter

    @pytest.mark.asyncio
    async def test_cancelled_attempt_becomes_non_error_throw(self):
        async def run():
            raise asyncio.CancelledError()

        with pytest.raises(NonErrorThrow):
            await race_attempt(run, step="c")

    @pytest.mark.asyncio
    async def test_abandoned_attempt_keeps_running(self):
        finished = asyncio.Event()

        async def run():
            await asyncio.sleep(0.05)
            finished.set()

        with pytest.raises(StepTimeoutError):
            await race_attempt(run, timeout=0.01)
        await asyncio.wait_for(finished.wait(), timeout=1)
