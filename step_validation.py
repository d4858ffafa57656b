from __future__ import annotations

"""
step_validation.py

Rule-based step completion used when no completion oracle is reachable.
Understands the two validation forms planners emit:

    last_action_success            (also "last_action_success == true")
    active_window_title contains "Untitled"

Anything else falls back to "did the last action succeed".
"""

from action_models import Observation

_WINDOW_CONTAINS_PREFIX = "active_window_title contains "


def validate_step(expression: str, observation: Observation) -> bool:
    v = (expression or "").strip()
    if not v:
        return observation.last_action_success is True

    low = v.lower()
    if low in {"last_action_success", "last_action_success == true"}:
        return observation.last_action_success is True

    if low.startswith(_WINDOW_CONTAINS_PREFIX):
        needle = v[len(_WINDOW_CONTAINS_PREFIX):].strip().strip('"').lower()
        return needle in (observation.active_window_title or "").lower()

    return observation.last_action_success is True
