"""Tests for stepkit.execution.fanout."""

import asyncio

import pytest

from stepkit.execution.fanout import fan_out


def _returns(value, delay=0.0):
    async def call():
        if delay:
            await asyncio.sleep(delay)
        return value

    return call


def _raises(error):
    async def call():
        raise error

    return call


class TestFanOutAll:
    @pytest.mark.asyncio
    async def test_outputs_in_declaration_order(self):
        result = await fan_out([_returns("slow", 0.02), _returns("fast")])
        assert result.outputs == ["slow", "fast"]
        assert result.succeeded == 2
        assert result.failed == 0

    @pytest.mark.asyncio
    async def test_runs_concurrently(self):
        started = []

        def call(n):
            async def run():
                started.append(n)
                await asyncio.sleep(0.01)
                return n

            return run

        loop = asyncio.get_running_loop()
        before = loop.time()
        await fan_out([call(n) for n in range(5)])
        assert loop.time() - before < 0.05
        assert sorted(started) == list(range(5))

    @pytest.mark.asyncio
    async def test_first_failure_raises(self):
        with pytest.raises(RuntimeError, match="bad"):
            await fan_out([_returns(1), _raises(RuntimeError("bad"))])


class TestFanOutSettled:
    @pytest.mark.asyncio
    async def test_failures_excluded(self):
        failures = []
        result = await fan_out(
            [_raises(RuntimeError("x")), _returns({"a": 1})],
            mode="settled",
            names=["broken", "ok"],
            on_failure=failures.append,
        )
        assert result.outputs == [{"a": 1}]
        assert result.succeeded == 1
        assert result.failed == 1
        assert [(f.index, f.name, str(f.error)) for f in failures] == [(0, "broken", "x")]

    @pytest.mark.asyncio
    async def test_default_names(self):
        failures = []
        await fan_out([_raises(ValueError())], mode="settled", on_failure=failures.append)
        assert failures[0].name == "#0"

    @pytest.mark.asyncio
    async def test_all_failed(self):
        result = await fan_out(
            [_raises(RuntimeError()), _raises(KeyError())], mode="settled"
        )
        assert result.outputs == []
        assert result.failed == 2

    @pytest.mark.asyncio
    async def test_empty(self):
        result = await fan_out([], mode="settled")
        assert result.items == []
