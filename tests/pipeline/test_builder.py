"""Tests for the Pipeline builder surface."""

import pytest

from stepkit import BranchCase, Pipeline, PipelineConfig, StepConfig, StepKind, create
from stepkit.pipeline.exceptions import PipelineConfigError


def noop(ctx):
    return {}


class TestCreate:
    def test_empty(self):
        pipeline = create()
        assert isinstance(pipeline, Pipeline)
        assert pipeline.describe() == []
        assert len(pipeline) == 0

    def test_config_dict(self):
        pipeline = create({"log": False})
        assert pipeline.config == PipelineConfig(log=False)

    def test_unknown_config_key(self):
        with pytest.raises(PipelineConfigError, match="Unknown pipeline option"):
            create({"logging": True})


class TestNaming:
    def test_auto_names_use_position(self):
        pipeline = (
            create()
            .step(noop)
            .transform(lambda ctx: ctx)
            .branch_on(BranchCase.otherwise(lambda p: p))
        )
        assert pipeline.describe() == ["step-1", "transform-2", "branch-3"]

    def test_explicit_names(self):
        pipeline = create().step("fetch", noop).transform("shape", noop)
        assert pipeline.describe() == ["fetch", "shape"]

    def test_name_from_config(self):
        pipeline = create().step(StepConfig(name="from-config"), noop)
        assert pipeline.describe() == ["from-config"]

    def test_positional_name_wins(self):
        pipeline = create().step("positional", {"name": "ignored"}, noop)
        assert pipeline.describe() == ["positional"]

    def test_duplicate_names_rejected(self):
        with pytest.raises(PipelineConfigError, match="Duplicate step name: fetch"):
            create().step("fetch", noop).step("fetch", noop)

    def test_slash_in_name_rejected(self):
        with pytest.raises(PipelineConfigError, match="must not contain '/'"):
            create().step("a/b", noop)


class TestStepForms:
    def test_name_and_config(self):
        pipeline = create().step("s", StepConfig(retries=2), noop)
        assert pipeline.steps[0].config.retries == 2

    def test_config_dict_only(self):
        pipeline = create().step({"timeout": 1.0}, noop)
        assert pipeline.steps[0].config.timeout == 1.0

    def test_several_executables(self):
        pipeline = create().step("fan", noop, noop, create().step(noop))
        assert len(pipeline.steps[0].executables) == 3
        assert pipeline.steps[0].kind is StepKind.STEP

    def test_step_without_functions(self):
        with pytest.raises(PipelineConfigError, match="needs at least one"):
            create().step("empty")

    def test_step_with_non_callable(self):
        with pytest.raises(PipelineConfigError, match="must be callables or Pipelines"):
            create().step("bad", 42)

    def test_transform_takes_one_function(self):
        with pytest.raises(PipelineConfigError, match="exactly one function"):
            create().transform("t", noop, noop)
        with pytest.raises(PipelineConfigError, match="exactly one function"):
            create().transform("t", create())


class TestBranchForms:
    def test_named_branch_with_dict_cases(self):
        pipeline = create().branch_on(
            "route",
            {"when": lambda ctx: True, "then": lambda p: p, "name": "yes"},
            {"default": lambda p: p},
        )
        step = pipeline.steps[0]
        assert step.kind is StepKind.BRANCH
        assert [c.case_name for c in step.branch_cases] == ["yes", "default-case"]

    def test_branch_with_config(self):
        pipeline = create().branch_on("route", {"on_error": "continue"}, BranchCase.otherwise(create()))
        assert pipeline.steps[0].config.on_error.value == "continue"

    def test_two_defaults_rejected(self):
        with pytest.raises(PipelineConfigError, match="more than one default"):
            create().branch_on(BranchCase.otherwise(create()), BranchCase.otherwise(create()))


class TestImmutability:
    def test_builder_calls_return_new_pipelines(self):
        base = create().step("a", noop)
        left = base.step("left", noop)
        right = base.step("right", noop)
        assert base.describe() == ["a"]
        assert left.describe() == ["a", "left"]
        assert right.describe() == ["a", "right"]

    def test_steps_tuple(self):
        assert isinstance(create().step(noop).steps, tuple)

    def test_config_is_carried_forward(self):
        config = PipelineConfig(log=True)
        assert create(config).step(noop).config is config

    def test_extended_pipeline_gets_fresh_circuits(self):
        base = create().step("a", noop)
        assert base.step("b", noop).circuits is not base.circuits

    def test_repr(self):
        assert repr(create().step("a", noop)) == "Pipeline(steps=['a'])"
