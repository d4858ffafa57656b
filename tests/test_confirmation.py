import pytest

from action_models import Action
from confirmation import ConsoleConfirmationService, UserPreferences, describe_action


def _no_prompt(question: str) -> str:
    raise AssertionError("should not prompt")


@pytest.mark.asyncio
async def test_auto_approve_skips_prompt() -> None:
    service = ConsoleConfirmationService(UserPreferences(auto_approve=True), prompt=_no_prompt)
    assert await service.request_confirmation(Action(action_type="hotkey", parameters={"keys": ["cmd", "q"]}))


@pytest.mark.asyncio
@pytest.mark.parametrize("answer,expected", [("y", True), ("YES ", True), ("", False), ("n", False)])
async def test_prompt_answers(answer, expected) -> None:
    questions = []

    def prompt(q: str) -> str:
        questions.append(q)
        return answer

    service = ConsoleConfirmationService(UserPreferences(auto_approve=False), prompt=prompt)
    assert await service.request_confirmation(Action(action_type="wait", parameters={"ms": 5})) is expected
    assert questions == ["Allow action wait(ms=5)? [y/N] "]


def test_preferences_toggle() -> None:
    prefs = UserPreferences()
    assert prefs.auto_approve
    prefs.auto_approve = False
    assert not prefs.auto_approve


def test_describe_action() -> None:
    action = Action(action_type="type_text", parameters={"text": "hi"}, expected_result="typed")
    assert describe_action(action) == "type_text(text='hi') -> typed"


@pytest.mark.asyncio
async def test_manual_takeover_prints(capsys) -> None:
    await ConsoleConfirmationService(UserPreferences()).request_manual_takeover("stuck")
    assert "Manual takeover needed: stuck" in capsys.readouterr().out
