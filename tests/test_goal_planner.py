import json

import pytest

from action_models import ActionType, Observation, PlanStep, RiskLevel
from conftest import FakeClaude
from goal_planner import (
    AnthropicActionService,
    AnthropicPlanService,
    PlanGenerationError,
    _extract_first_json,
    build_content,
    demo_plan,
    guess_target_process,
)
from interaction_history import InteractionHistory

PLAN_JSON = json.dumps(
    {
        "goal": "Open TextEdit",
        "required_apps": ["TextEdit"],
        "steps": [
            {"id": 2, "description": "Type hello", "risk_level": "low", "validation": "last_action_success"},
            {"id": 1, "description": "Open TextEdit with Spotlight", "risk_level": "HIGH", "requires_confirmation": True},
        ],
    }
)


def test_extract_first_json_handles_fences_and_prose() -> None:
    assert _extract_first_json('```json\n{"a": 1}\n```') == {"a": 1}
    assert _extract_first_json('Here you go {"a": "x}y", "b": {"c": 2}} thanks') == {"a": "x}y", "b": {"c": 2}}
    assert _extract_first_json("no json here") is None
    assert _extract_first_json("") is None


def test_build_content_with_screenshot() -> None:
    content = build_content("prompt", "data:image/jpeg;base64,AAAA")
    assert content[0] == {"type": "image", "source": {"type": "base64", "media_type": "image/jpeg", "data": "AAAA"}}
    assert content[1] == {"type": "text", "text": "prompt"}
    assert build_content("prompt", None) == [{"type": "text", "text": "prompt"}]


@pytest.mark.parametrize(
    "description,expected",
    [
        ("Open Safari", "Safari"),
        ("Navigate to example.com", "Safari"),
        ("Switch to Google Chrome", "Google Chrome"),
        ("Open TextEdit", "TextEdit"),
        ("Save the file as notes.txt", "TextEdit"),
        ("Open the calculator", "Calculator"),
        ("Type the message", None),
    ],
)
def test_guess_target_process(description, expected) -> None:
    assert guess_target_process(description) == expected


def test_demo_plans() -> None:
    plan = demo_plan("Open TextEdit and type hello")
    assert [s.id for s in plan.steps] == [1, 2, 3, 4, 5]
    fallback = demo_plan("Book a flight")
    assert len(fallback.steps) == 1
    assert fallback.steps[0].risk_level is RiskLevel.HIGH


@pytest.mark.asyncio
async def test_plan_service_parses_model_output() -> None:
    client = FakeClaude("Sure!\n" + PLAN_JSON)
    plan = await AnthropicPlanService(client=client, model="m").generate_plan("Open TextEdit")
    assert [s.id for s in plan.ordered_steps()] == [1, 2]
    assert plan.ordered_steps()[0].risk_level is RiskLevel.HIGH
    assert client.messages.calls[0]["model"] == "m"


@pytest.mark.asyncio
async def test_plan_service_rejects_unusable_output() -> None:
    with pytest.raises(PlanGenerationError):
        await AnthropicPlanService(client=FakeClaude("I cannot help")).generate_plan("x")


@pytest.mark.asyncio
async def test_plan_service_without_key_uses_demo_plan() -> None:
    plan = await AnthropicPlanService(api_key=None).generate_plan("open notepad")
    assert plan.required_apps == ["TextEdit"]


@pytest.mark.asyncio
async def test_action_service_steers_away_from_agent_surface() -> None:
    client = FakeClaude()
    service = AnthropicActionService(client=client, self_processes=["Terminal"])
    step = PlanStep(id=1, description="Type hello into TextEdit")
    action = await service.get_next_action(step, Observation(active_process="Terminal"))
    assert action.action_type is ActionType.FOCUS_WINDOW
    assert action.parameters["process"] == "TextEdit"
    assert client.messages.calls == []


@pytest.mark.asyncio
async def test_action_service_parses_model_action() -> None:
    client = FakeClaude('{"action_type": "ClickGrid", "parameters": {"cell": 5}, "expected_result": "clicked"}')
    service = AnthropicActionService(client=client, self_processes=["Terminal"])
    history = InteractionHistory()
    history.record_action("wait", "waited", True)
    obs = Observation(active_process="TextEdit", screenshot_data_url="data:image/jpeg;base64,AAAA")

    action = await service.get_next_action(PlanStep(id=1, description="Click Save"), obs, "Save a file", history)

    assert action.action_type is ActionType.CLICK_GRID
    assert action.params().cell == 5
    content = client.messages.calls[0]["messages"][0]["content"]
    assert content[0]["type"] == "image"
    assert "Save a file" in content[1]["text"]
    assert "1. wait: waited [OK]" in content[1]["text"]


@pytest.mark.asyncio
async def test_action_service_falls_back_to_demo_action() -> None:
    service = AnthropicActionService(client=FakeClaude(RuntimeError("overloaded")))
    action = await service.get_next_action(PlanStep(id=1, description="Ponder"), Observation(active_process="TextEdit"))
    assert action.action_type is ActionType.WAIT
    assert action.requires_confirmation


@pytest.mark.asyncio
async def test_completion_without_key_uses_rules() -> None:
    service = AnthropicActionService(api_key=None)
    step = PlanStep(id=1, description="Open", validation='active_window_title contains "Untitled"')
    assert (await service.check_step_completion(step, Observation(active_window_title="Untitled"))).is_complete
    assert not (await service.check_step_completion(step, Observation(active_window_title="Other"))).is_complete


@pytest.mark.asyncio
async def test_completion_with_model() -> None:
    step = PlanStep(id=1, description="Open")
    service = AnthropicActionService(
        client=FakeClaude(
            '{"is_complete": true, "reason": "visible", "suggested_next_action": ""}',
            "garbage",
            RuntimeError("down"),
        )
    )
    first = await service.check_step_completion(step, Observation())
    assert first.is_complete and first.reason == "visible"
    assert first.suggested_next_action is None

    second = await service.check_step_completion(step, Observation())
    assert not second.is_complete
    assert second.reason == "Failed to parse verification response"

    third = await service.check_step_completion(step, Observation())
    assert not third.is_complete
