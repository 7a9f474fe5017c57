"""
Unit tests for plan models and plan validation.
"""
import pytest

from mobile_pilot.core.flows.flow_models import (
    ActionPlan,
    Locator,
    PlanStep,
    RunResult,
    Snapshot,
    StepType,
    Strategy,
    jump_targets,
)
from mobile_pilot.utils.error_handler import LabelNotFoundError, PlanValidationError


class TestPlanStep:
    """Test step parsing and coercion."""

    def test_target_hint_alias(self):
        step = PlanStep.model_validate({"type": "TAP", "targetHint": "Login"})
        assert step.target_hint == "Login"
        assert step.type == StepType.TAP

    def test_value_and_meta_are_stringified(self):
        step = PlanStep.model_validate(
            {"type": "SLEEP", "value": 500, "meta": {"timeoutMs": 200, "skip": None}}
        )
        assert step.value == "500"
        assert step.meta == {"timeoutMs": "200"}

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            PlanStep.model_validate({"type": "SWIPE_LEFT"})

    def test_describe(self):
        assert PlanStep(type=StepType.TAP, target_hint="Login").describe() == "TAP Login"
        assert PlanStep(type=StepType.BACK).describe() == "BACK"

    def test_typed_value_never_displayed(self):
        bare = PlanStep(type=StepType.INPUT_TEXT, value="hunter2")
        assert bare.describe() == "INPUT_TEXT"
        assert bare.display_hint == "INPUT_TEXT"
        labelled = PlanStep(type=StepType.INPUT_TEXT, target_hint="PIN", value="hunter2")
        assert labelled.display_hint == "PIN"
        assert PlanStep(type=StepType.WAIT_TEXT, value="Welcome").display_hint == "Welcome"
        assert PlanStep(type=StepType.BACK).display_hint is None

    def test_locator_describe(self):
        loc = Locator(strategy=Strategy.ID, value="com.app:id/login")
        assert loc.describe() == "ID:com.app:id/login"


class TestActionPlan:
    """Test indexing and label lookup."""

    def test_reindexed(self):
        plan = ActionPlan(
            title="t",
            steps=[PlanStep(index=7, type=StepType.BACK), PlanStep(index=7, type=StepType.BACK)],
        )
        assert [s.index for s in plan.reindexed().steps] == [1, 2]
        assert [s.index for s in plan.steps] == [7, 7]

    def test_label_index(self):
        plan = ActionPlan(
            steps=[
                PlanStep(type=StepType.BACK),
                PlanStep(type=StepType.LABEL, value="retry"),
                PlanStep(type=StepType.LABEL, target_hint="done"),
            ]
        )
        assert plan.label_index("retry") == 1
        assert plan.label_index("done") == 2
        assert plan.label_index("missing") is None

    def test_validate_missing_label(self):
        plan = ActionPlan(
            steps=[PlanStep(index=1, type=StepType.GOTO, meta={"label": "nowhere"})]
        )
        with pytest.raises(LabelNotFoundError) as exc:
            plan.validate_plan()
        assert str(exc.value.message) == "Label 'nowhere' not found"

    def test_validate_if_visible_branches(self):
        plan = ActionPlan(
            steps=[
                PlanStep(index=1, type=StepType.IF_VISIBLE, target_hint="Promo", meta={"then": "a", "else": "b"}),
                PlanStep(index=2, type=StepType.LABEL, value="a"),
            ]
        )
        with pytest.raises(LabelNotFoundError):
            plan.validate_plan()

    def test_validate_input_needs_value(self):
        plan = ActionPlan(steps=[PlanStep(index=1, type=StepType.INPUT_TEXT, target_hint="Username")])
        with pytest.raises(PlanValidationError):
            plan.validate_plan()

    def test_jump_targets(self):
        assert jump_targets(PlanStep(type=StepType.GOTO, value="x")) == ["x"]
        assert jump_targets(PlanStep(type=StepType.IF_VISIBLE, meta={"then": "y"})) == ["y"]
        assert jump_targets(PlanStep(type=StepType.TAP, target_hint="z")) == []


class TestRunResult:
    """Test result aggregation."""

    def test_synthetic_snapshots_not_counted(self):
        result = RunResult(
            title="t",
            success=True,
            snapshots=[
                Snapshot(step_index=1, step_type="TAP", target_hint="a", success=True),
                Snapshot(step_index=-1, step_type="AUTO_DIALOG", target_hint="OK", success=True),
                Snapshot(step_index=2, step_type="TAP", target_hint="b", success=False),
            ],
        )
        assert result.successful_steps == 1
