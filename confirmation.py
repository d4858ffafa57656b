from __future__ import annotations

"""
confirmation.py

Operator-facing confirmation surface for the console runner.
"""

import asyncio
import threading
from typing import Callable

from action_models import Action
from agent_config import setup_logger

logger = setup_logger("Confirmation")


class UserPreferences:
    def __init__(self, auto_approve: bool = True):
        self._lock = threading.Lock()
        self._auto_approve = bool(auto_approve)

    @property
    def auto_approve(self) -> bool:
        with self._lock:
            return self._auto_approve

    @auto_approve.setter
    def auto_approve(self, value: bool) -> None:
        with self._lock:
            self._auto_approve = bool(value)


def describe_action(action: Action) -> str:
    params = ", ".join(f"{k}={v!r}" for k, v in sorted(action.parameters.items()))
    line = f"{action.action_type.value}({params})"
    if action.expected_result:
        line += f" -> {action.expected_result}"
    return line


class ConsoleConfirmationService:
    """Asks on stdin unless the operator pre-approved automation."""

    def __init__(self, preferences: UserPreferences, prompt: Callable[[str], str] = input):
        self.preferences = preferences
        self._prompt = prompt

    async def request_confirmation(self, action: Action) -> bool:
        if self.preferences.auto_approve:
            logger.info("[confirm] auto-approved %s", action.action_type.value)
            return True

        question = f"Allow action {describe_action(action)}? [y/N] "
        answer = await asyncio.to_thread(self._prompt, question)
        approved = (answer or "").strip().lower() in {"y", "yes"}
        logger.info("[confirm] %s %s", action.action_type.value, "approved" if approved else "declined")
        return approved

    async def request_manual_takeover(self, reason: str) -> None:
        logger.warning("[confirm] manual takeover requested: %s", reason)
        print(f"\n*** Manual takeover needed: {reason}\n")
