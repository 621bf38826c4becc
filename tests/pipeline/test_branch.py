"""Tests for branch_on case selection and nested execution."""

import pytest

from stepkit import BranchCase, create
from stepkit.pipeline.branch import build_case_pipeline, select_case
from stepkit.pipeline.exceptions import PipelineConfigError


def tier_is(tier):
    return lambda ctx: ctx.get("tier") == tier


def route_pipeline():
    return create().branch_on(
        "route",
        BranchCase.when(tier_is("gold"), lambda p: p.step("discount", lambda ctx: {"discount": 20}), name="gold"),
        BranchCase.when(tier_is("silver"), lambda p: p.step("discount", lambda ctx: {"discount": 10}), name="silver"),
        BranchCase.otherwise(lambda p: p.step("discount", lambda ctx: {"discount": 0})),
    )


class TestSelectCase:
    @pytest.mark.asyncio
    async def test_first_match_wins(self):
        first = BranchCase.when(lambda ctx: True, create(), name="first")
        second = BranchCase.when(lambda ctx: True, create(), name="second")
        assert await select_case([first, second], {}) is first

    @pytest.mark.asyncio
    async def test_default_only_when_nothing_matches(self):
        default = BranchCase.otherwise(create())
        match = BranchCase.when(lambda ctx: True, create())
        assert await select_case([default, match], {}) is match
        assert await select_case([default], {}) is default

    @pytest.mark.asyncio
    async def test_async_predicate(self):
        async def yes(ctx):
            return True

        case = BranchCase.when(yes, create())
        assert await select_case([case], {}) is case

    @pytest.mark.asyncio
    async def test_no_match_no_default(self):
        assert await select_case([BranchCase.when(lambda ctx: False, create())], {}) is None


class TestBuildCasePipeline:
    def test_factory_receives_empty_pipeline_with_base_config(self):
        base = create({"log": False})
        received = []

        def factory(p):
            received.append(p)
            return p.step("s", lambda ctx: {})

        built = build_case_pipeline(BranchCase.otherwise(factory), lambda: create(base.config))
        assert received[0].describe() == []
        assert received[0].config == base.config
        assert built.describe() == ["s"]

    def test_factory_must_return_pipeline(self):
        with pytest.raises(PipelineConfigError, match="must produce a Pipeline"):
            build_case_pipeline(BranchCase.otherwise(lambda p: None), create)


class TestBranchExecution:
    @pytest.mark.asyncio
    async def test_matching_case_runs(self):
        pipeline = route_pipeline()
        assert await pipeline.run({"tier": "gold"}) == {"tier": "gold", "discount": 20}
        assert await pipeline.run({"tier": "silver"}) == {"tier": "silver", "discount": 10}

    @pytest.mark.asyncio
    async def test_default_case(self):
        assert await route_pipeline().run({"tier": "bronze"}) == {"tier": "bronze", "discount": 0}

    @pytest.mark.asyncio
    async def test_no_match_contributes_nothing(self):
        pipeline = create().branch_on(BranchCase.when(tier_is("gold"), lambda p: p.step(lambda ctx: {"g": 1})))
        assert await pipeline.run({"tier": "none"}) == {"tier": "none"}

    @pytest.mark.asyncio
    async def test_prebuilt_pipeline_as_case(self):
        gold = create().step(lambda ctx: {"vip": True})
        pipeline = create().branch_on({"when": tier_is("gold"), "then": gold})
        assert await pipeline.run({"tier": "gold"}) == {"tier": "gold", "vip": True}

    @pytest.mark.asyncio
    async def test_only_changed_keys_flow_back(self):
        pipeline = (
            create()
            .branch_on(
                "route",
                BranchCase.otherwise(
                    lambda p: p.transform(lambda ctx: {"only": "this"})
                ),
            )
        )
        # the nested transform dropped "keep", but a nested run cannot delete parent keys
        assert await pipeline.run({"keep": 1}) == {"keep": 1, "only": "this"}

    @pytest.mark.asyncio
    async def test_nested_step_names_are_prefixed(self):
        events = []
        pipeline = create({"on_step_complete": lambda e: events.append(e.step_name)}).branch_on(
            "route",
            BranchCase.when(tier_is("gold"), lambda p: p.step("discount", lambda ctx: {"d": 1}), name="gold"),
            BranchCase.otherwise(lambda p: p.step("discount", lambda ctx: {"d": 0})),
        )
        await pipeline.run({"tier": "gold"})
        await pipeline.run({"tier": "x"})
        assert events == [
            "route/gold/discount",
            "route",
            "route/default-case/discount",
            "route",
        ]

    @pytest.mark.asyncio
    async def test_branch_selected_is_logged(self, log_recorder):
        pipeline = create({"log": log_recorder.config()}).branch_on(
            "route", BranchCase.when(tier_is("gold"), lambda p: p.step(lambda ctx: {}), name="gold")
        )
        await pipeline.run({"tier": "gold"})
        assert log_recorder.find("pipeline.branch.selected") == [{"step": "route", "case": "route/gold"}]

    @pytest.mark.asyncio
    async def test_nested_failure_honours_branch_on_error(self):
        pipeline = (
            create()
            .branch_on(
                "route",
                {"on_error": "continue"},
                BranchCase.otherwise(lambda p: p.step(lambda ctx: 1 / 0)),
            )
            .step("after", lambda ctx: {"after": True})
        )
        assert await pipeline.run({}) == {"after": True}
