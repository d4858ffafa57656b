import pytest

from action_models import Observation
from step_validation import validate_step


@pytest.mark.parametrize("expr", ["", "last_action_success", "last_action_success == true", "something else"])
def test_falls_back_to_last_action_success(expr) -> None:
    assert validate_step(expr, Observation(last_action_success=True))
    assert not validate_step(expr, Observation(last_action_success=False))
    assert not validate_step(expr, Observation(last_action_success=None))


def test_window_title_contains_is_case_insensitive() -> None:
    expr = 'active_window_title contains "Untitled"'
    assert validate_step(expr, Observation(active_window_title="untitled 2", last_action_success=False))
    assert not validate_step(expr, Observation(active_window_title="notes.txt", last_action_success=True))
    assert not validate_step(expr, Observation(active_window_title=None))
