from __future__ import annotations

"""
policy.py

Foreground-authorization layer.

DefaultPolicyEngine answers two questions: does an action need operator
confirmation, and may synthesized input go to a given process.

PolicyEnforcedExecutor wraps the DesktopActionExecutor. FocusWindow targets
are checked before anything is synthesized; every other action runs only
while an allowlisted process owns the foreground. When something else is in
front (typically the agent's own terminal, right after an oracle call) it
tries, in order:

1. a Win-key chord that is confirmed or auto-approved
2. NavigateUrl, which brings its own browser to the front
3. the agent's own surface, when auto-approval is on
4. refocusing the last authorized FocusWindow target and re-checking

and otherwise refuses with a policy_refused result.
"""

import threading
from typing import Callable, Iterable, Optional, Protocol, Set, Tuple

from action_models import (
    ERROR_POLICY_REFUSED,
    Action,
    ActionParameterError,
    ActionType,
    ExecutionResult,
)
from agent_config import setup_logger
from desktop_io import WIN_KEY_NAMES, WindowProvider, is_self_process

logger = setup_logger("Policy")

# Terminals are left out on purpose: the agent itself usually runs in one.
DEFAULT_ALLOWED_PROCESSES = [
    "TextEdit",
    "Notes",
    "Finder",
    "Preview",
    "Calculator",
    "Safari",
    "Google Chrome",
    "Firefox",
    "Microsoft Edge",
    "Microsoft Word",
    "Microsoft Excel",
    "Microsoft PowerPoint",
    "Pages",
    "Numbers",
    "Keynote",
    "Code",
    "Visual Studio Code",
]


class ActionExecutor(Protocol):
    async def execute(self, action: Action) -> ExecutionResult: ...


class DefaultPolicyEngine:
    def __init__(self, allowed_processes: Optional[Iterable[str]] = None):
        allowed: Set[str] = {p.strip().lower() for p in (allowed_processes or []) if p and p.strip()}
        if not allowed:
            allowed = {p.lower() for p in DEFAULT_ALLOWED_PROCESSES}
        self._allowed = allowed

    def requires_confirmation(self, action: Action) -> bool:
        if action.requires_confirmation:
            return True
        # raw coordinates can land on anything on screen
        return action.action_type == ActionType.CLICK_COORDINATES

    def is_allowed_process(self, name: Optional[str]) -> bool:
        n = (name or "").strip().lower()
        if not n:
            return False
        return n in self._allowed


class PolicyEnforcedExecutor:
    def __init__(
        self,
        inner: ActionExecutor,
        policy: DefaultPolicyEngine,
        windows: WindowProvider,
        is_auto_approve: Callable[[], bool],
        self_processes: Iterable[str] = (),
    ):
        self.inner = inner
        self.policy = policy
        self.windows = windows
        self.is_auto_approve = is_auto_approve
        self.self_processes = list(self_processes)

        self._gate = threading.Lock()
        self._last_focused_process: Optional[str] = None
        self._last_focused_title: Optional[str] = None

    @property
    def last_focus_target(self) -> Tuple[Optional[str], Optional[str]]:
        with self._gate:
            return self._last_focused_process, self._last_focused_title

    def _remember_focus(self, process: Optional[str], title: Optional[str]) -> None:
        with self._gate:
            self._last_focused_process = process
            self._last_focused_title = title

    async def execute(self, action: Action) -> ExecutionResult:
        if action.action_type == ActionType.FOCUS_WINDOW:
            return await self._execute_focus(action)

        fg = self.windows.get_foreground_window_info()
        if self.policy.is_allowed_process(fg.process):
            return await self.inner.execute(action)

        if self._is_win_hotkey_allowed(action):
            logger.info("[policy] passing global win-key chord with foreground=%r", fg.process)
            return await self.inner.execute(action)

        if action.action_type == ActionType.NAVIGATE_URL:
            return await self.inner.execute(action)

        if is_self_process(fg.process, self.self_processes) and self.is_auto_approve():
            logger.info("[policy] agent surface %r is foreground; auto-approve on", fg.process)
            return await self.inner.execute(action)

        process, title = self.last_focus_target
        if process and self.policy.is_allowed_process(process):
            logger.info("[policy] foreground=%r not allowed; refocusing %r", fg.process, process)
            focus = Action(
                action_type=ActionType.FOCUS_WINDOW,
                parameters={"title": title or "", "process": process},
                expected_result=f"Focus {process}",
            )
            focus_res = await self.inner.execute(focus)
            if focus_res.success:
                fg = self.windows.get_foreground_window_info()
                if self.policy.is_allowed_process(fg.process):
                    return await self.inner.execute(action)

        logger.warning("[policy] refused %s: foreground=%r", action.action_type.value, fg.process)
        return ExecutionResult.fail(ERROR_POLICY_REFUSED, f"Foreground process not allowed: {fg.process}")

    async def _execute_focus(self, action: Action) -> ExecutionResult:
        try:
            p = action.params()
        except ActionParameterError:
            # let the executor report the parameter error
            return await self.inner.execute(action)

        target = (p.process or "").strip()
        if target and not self.policy.is_allowed_process(target):
            logger.warning("[policy] focus target not allowed: %s", target)
            return ExecutionResult.fail(ERROR_POLICY_REFUSED, f"Target process not allowed: {target}")

        res = await self.inner.execute(action)
        if res.success:
            self._remember_focus(target or None, (p.title or "").strip() or None)
        return res

    def _is_win_hotkey_allowed(self, action: Action) -> bool:
        if action.action_type != ActionType.HOTKEY:
            return False
        if not (action.requires_confirmation or self.is_auto_approve()):
            return False
        keys = action.get("keys")
        if isinstance(keys, str):
            keys = keys.split("+")
        if not isinstance(keys, list):
            return False
        return any(isinstance(k, str) and k.strip().lower() in WIN_KEY_NAMES for k in keys)
