"""Tests for Pipeline.run_checkpoint."""

import pytest

from stepkit import Checkpoint, InvalidCheckpointError, create


def counting_pipeline(calls):
    def record(name, fn):
        def step(ctx):
            calls.append(name)
            return fn(ctx)

        return step

    return (
        create()
        .step("inc", record("inc", lambda ctx: {"x": ctx["x"] + 1}))
        .step("mul", record("mul", lambda ctx: {"x": ctx["x"] * 3}))
        .step("final", record("final", lambda ctx: {"y": ctx["x"] + 10}))
    )


async def checkpoints_of(pipeline, input):
    captured = {}
    await pipeline.run(input, {"on_step_complete": lambda e: captured.setdefault(e.step_name, e.checkpoint)})
    return captured


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_reproduces_full_run(self):
        calls = []
        pipeline = counting_pipeline(calls)
        checkpoints = await checkpoints_of(pipeline, {"x": 1})
        calls.clear()

        assert await pipeline.run_checkpoint(checkpoints["mul"]) == {"x": 6, "y": 16}
        assert calls == ["final"]

    @pytest.mark.asyncio
    async def test_resume_after_last_step_runs_nothing(self):
        calls = []
        pipeline = counting_pipeline(calls)
        checkpoints = await checkpoints_of(pipeline, {"x": 1})
        calls.clear()

        assert await pipeline.run_checkpoint(checkpoints["final"]) == {"x": 6, "y": 16}
        assert calls == []

    @pytest.mark.asyncio
    async def test_override_data(self):
        calls = []
        pipeline = counting_pipeline(calls)
        checkpoints = await checkpoints_of(pipeline, {"x": 1})

        result = await pipeline.run_checkpoint(
            {"checkpoint": checkpoints["mul"], "overrideData": {"x": 10}}
        )
        assert result == {"x": 10, "y": 20}

    @pytest.mark.asyncio
    async def test_checkpoint_instance(self):
        pipeline = counting_pipeline([])
        assert await pipeline.run_checkpoint(Checkpoint("inc", {"x": 2})) == {"x": 6, "y": 16}

    @pytest.mark.asyncio
    async def test_unknown_step_skips_everything(self):
        calls = []
        pipeline = counting_pipeline(calls)
        assert await pipeline.run_checkpoint(Checkpoint("gone", {"x": 2})) == {"x": 2}
        assert calls == []

    @pytest.mark.asyncio
    async def test_invalid_checkpoint(self):
        with pytest.raises(InvalidCheckpointError):
            await counting_pipeline([]).run_checkpoint("{broken")

    def test_sync_wrapper(self):
        pipeline = counting_pipeline([])
        assert pipeline.run_checkpoint_sync(Checkpoint("mul", {"x": 6})) == {"x": 6, "y": 16}


class TestNestedResume:
    @pytest.mark.asyncio
    async def test_resume_inside_sub_pipeline(self):
        calls = []

        def record(name, output):
            def step(ctx):
                calls.append(name)
                return output

            return step

        inner = create().step("a", record("a", {"a": 1})).step("b", record("b", {"b": 2}))
        pipeline = (
            create()
            .step("before", record("before", {"before": True}))
            .step("outer", inner)
            .step("after", record("after", {"after": True}))
        )

        checkpoints = await checkpoints_of(pipeline, {})
        assert set(checkpoints) == {"before", "outer/a", "outer/b", "outer", "after"}
        calls.clear()

        result = await pipeline.run_checkpoint(checkpoints["outer/a"])
        assert calls == ["b", "after"]
        assert result == {"before": True, "a": 1, "b": 2, "after": True}

    @pytest.mark.asyncio
    async def test_resume_inside_branch(self):
        calls = []

        def case(p):
            return p.step("one", lambda ctx: calls.append("one") or {"one": 1}).step(
                "two", lambda ctx: calls.append("two") or {"two": 2}
            )

        pipeline = create().branch_on("route", {"default": case, "name": "only"})
        checkpoints = await checkpoints_of(pipeline, {})
        calls.clear()

        result = await pipeline.run_checkpoint(checkpoints["route/only/one"])
        assert calls == ["two"]
        assert result == {"one": 1, "two": 2}
