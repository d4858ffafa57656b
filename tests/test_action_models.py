import pytest
from pydantic import ValidationError

from action_models import (
    ERROR_PARAM,
    ERROR_POLICY_REFUSED,
    Action,
    ActionParameterError,
    ActionType,
    AgentState,
    ExecutionResult,
    Observation,
    PlanModel,
    PlanStep,
    RiskLevel,
    parse_action,
)


@pytest.mark.parametrize(
    "wire,expected",
    [
        ("ClickGrid", ActionType.CLICK_GRID),
        ("click_grid", ActionType.CLICK_GRID),
        ("CLICK-TEXT", ActionType.CLICK_TEXT),
        ("NavigateUrl", ActionType.NAVIGATE_URL),
        ("WinRun", ActionType.WIN_RUN),
        ("explode", ActionType.VERIFY),
        (None, ActionType.VERIFY),
    ],
)
def test_action_type_from_wire(wire, expected) -> None:
    assert ActionType.from_wire(wire) is expected


def test_risk_level_parse_is_lenient() -> None:
    assert RiskLevel.parse("HIGH") is RiskLevel.HIGH
    assert RiskLevel.parse("bogus") is RiskLevel.MEDIUM
    assert PlanStep(id=1, risk_level="Low").risk_level is RiskLevel.LOW


def test_parse_action_accepts_alternate_keys() -> None:
    action = parse_action({"type": "Hotkey", "params": {"keys": "cmd+s"}, "requires_confirmation": True})
    assert action.action_type is ActionType.HOTKEY
    assert action.requires_confirmation is True
    assert action.params().keys == ["cmd", "s"]


def test_wait_ms_is_clamped() -> None:
    assert Action(action_type="wait", parameters={"ms": 999999}).params().ms == 60000
    assert Action(action_type="wait", parameters={"ms": -5}).params().ms == 0
    assert Action(action_type="wait", parameters={"ms": "abc"}).params().ms == 0
    assert Action(action_type="wait").params().ms == 0


def test_drag_parameters_are_clamped() -> None:
    p = Action(action_type="click_coordinates", parameters={"rx": 0.1, "ry": 0.2, "drag_steps": 0}).params()
    assert p.drag_steps == 24
    assert p.drag_delay_ms == 5
    assert p.has_relative and not p.has_relative_to
    p = Action(action_type="click_coordinates", parameters={"x": 1, "y": 2, "drag_steps": 1000}).params()
    assert p.drag_steps == 200
    assert p.has_absolute


def test_invalid_parameter_shape_raises_parameter_error() -> None:
    action = Action(action_type="click_grid", parameters={"cell": "abc"})
    with pytest.raises(ActionParameterError) as exc:
        action.params()
    assert "cell" in str(exc.value)


def test_coordinate_strings_are_not_coerced() -> None:
    action = Action(action_type="click_coordinates", parameters={"rx": "0.5", "ry": "0.5"})
    with pytest.raises(ActionParameterError) as exc:
        action.params()
    assert "rx" in str(exc.value)
    p = Action(action_type="click_coordinates", parameters={"rx": 1, "ry": 0.5}).params()
    assert (p.rx, p.ry) == (1.0, 0.5)


def test_unknown_parameters_are_ignored() -> None:
    p = Action(action_type="type_text", parameters={"text": "hi", "speed": "fast"}).params()
    assert p.text == "hi"


def test_action_is_immutable() -> None:
    action = Action(action_type="done")
    with pytest.raises(ValidationError):
        action.action_type = ActionType.WAIT


def test_plan_steps_are_ordered_by_id() -> None:
    plan = PlanModel(goal="g", steps=[PlanStep(id=3), PlanStep(id=1), PlanStep(id=2)])
    assert [s.id for s in plan.ordered_steps()] == [1, 2, 3]


def test_execution_result_helpers() -> None:
    refused = ExecutionResult.fail(ERROR_POLICY_REFUSED, "nope")
    assert refused.is_policy_refusal
    assert not ExecutionResult.fail(ERROR_PARAM, "bad").is_policy_refusal
    assert ExecutionResult.ok("fine").to_dict() == {
        "success": True,
        "error_message": None,
        "details": "fine",
        "error_type": None,
    }


def test_terminal_states() -> None:
    assert AgentState.COMPLETED.is_terminal
    assert AgentState.STOPPED.is_terminal
    assert AgentState.FAILED.is_terminal
    assert not AgentState.EXECUTING.is_terminal
    assert not AgentState.IDLE.is_terminal


def test_observation_prompt_dict_omits_screenshot() -> None:
    obs = Observation(active_window_title="Doc", active_process="TextEdit", screenshot_data_url="data:x")
    assert "screenshot_data_url" not in obs.to_prompt_dict()
    assert "data:x" not in repr(obs)
