import pytest

from action_models import ERROR_ENVIRONMENT, ERROR_POLICY_REFUSED, Action, ActionType, ExecutionResult
from conftest import FakeWindows
from desktop_io import WindowInfo
from policy import DefaultPolicyEngine, PolicyEnforcedExecutor


class RecordingExecutor:
    """Inner executor: records actions; a successful focus moves the fake foreground."""

    def __init__(self, windows: FakeWindows, focus_ok: bool = True):
        self.windows = windows
        self.focus_ok = focus_ok
        self.actions = []

    async def execute(self, action: Action) -> ExecutionResult:
        self.actions.append(action)
        if action.action_type == ActionType.FOCUS_WINDOW:
            if not self.focus_ok:
                return ExecutionResult.fail(ERROR_ENVIRONMENT, "focus failed")
            self.windows.foreground = WindowInfo(title=action.get("title"), process=action.get("process"))
        return ExecutionResult.ok("done")


def make_gate(windows, auto_approve=False, focus_ok=True):
    inner = RecordingExecutor(windows, focus_ok=focus_ok)
    gate = PolicyEnforcedExecutor(
        inner,
        DefaultPolicyEngine(),
        windows,
        is_auto_approve=lambda: auto_approve,
        self_processes=["Terminal"],
    )
    return gate, inner


def type_text(text="hi"):
    return Action(action_type=ActionType.TYPE_TEXT, parameters={"text": text})


def test_default_allowlist() -> None:
    policy = DefaultPolicyEngine()
    assert policy.is_allowed_process("textedit")
    assert policy.is_allowed_process("Safari")
    assert not policy.is_allowed_process("Terminal")
    assert not policy.is_allowed_process(None)
    assert not policy.is_allowed_process("  ")


def test_custom_allowlist_replaces_default() -> None:
    policy = DefaultPolicyEngine(["Notes"])
    assert policy.is_allowed_process("notes")
    assert not policy.is_allowed_process("TextEdit")


def test_requires_confirmation() -> None:
    policy = DefaultPolicyEngine()
    assert policy.requires_confirmation(Action(action_type="click_coordinates", parameters={"x": 1, "y": 1}))
    assert not policy.requires_confirmation(type_text())
    assert policy.requires_confirmation(Action(action_type="type_text", requires_confirmation=True))


@pytest.mark.asyncio
async def test_allowed_foreground_passes_through() -> None:
    windows = FakeWindows(process="TextEdit")
    gate, inner = make_gate(windows)
    res = await gate.execute(type_text())
    assert res.success
    assert [a.action_type for a in inner.actions] == [ActionType.TYPE_TEXT]


@pytest.mark.asyncio
async def test_disallowed_foreground_is_refused() -> None:
    windows = FakeWindows(process="Slack")
    gate, inner = make_gate(windows)
    res = await gate.execute(type_text())
    assert not res.success
    assert res.error_type == ERROR_POLICY_REFUSED
    assert res.error_message == "Foreground process not allowed: Slack"
    assert inner.actions == []


@pytest.mark.asyncio
async def test_unknown_foreground_is_refused() -> None:
    windows = FakeWindows(process=None)
    gate, inner = make_gate(windows, auto_approve=True)
    res = await gate.execute(type_text())
    assert res.is_policy_refusal
    assert inner.actions == []


@pytest.mark.asyncio
async def test_agent_surface_passes_with_auto_approve() -> None:
    windows = FakeWindows(process="Terminal")
    gate, inner = make_gate(windows, auto_approve=True)
    assert (await gate.execute(type_text())).success

    gate, inner = make_gate(windows, auto_approve=False)
    assert (await gate.execute(type_text())).is_policy_refusal


@pytest.mark.asyncio
async def test_navigate_url_bypasses_foreground_check() -> None:
    windows = FakeWindows(process="Slack")
    gate, inner = make_gate(windows)
    res = await gate.execute(Action(action_type="navigate_url", parameters={"url": "https://example.com"}))
    assert res.success


@pytest.mark.asyncio
async def test_win_hotkey_needs_approval() -> None:
    windows = FakeWindows(process="Slack")
    chord = Action(action_type="hotkey", parameters={"keys": "win+r"})

    gate, _ = make_gate(windows, auto_approve=False)
    assert (await gate.execute(chord)).is_policy_refusal

    gate, _ = make_gate(windows, auto_approve=True)
    assert (await gate.execute(chord)).success

    gate, _ = make_gate(windows, auto_approve=False)
    confirmed = Action(action_type="hotkey", parameters={"keys": ["lwin", "d"]}, requires_confirmation=True)
    assert (await gate.execute(confirmed)).success


@pytest.mark.asyncio
async def test_focus_target_must_be_allowed() -> None:
    windows = FakeWindows(process="TextEdit")
    gate, inner = make_gate(windows)
    res = await gate.execute(Action(action_type="focus_window", parameters={"process": "Terminal"}))
    assert res.is_policy_refusal
    assert res.error_message == "Target process not allowed: Terminal"
    assert inner.actions == []


@pytest.mark.asyncio
async def test_refocuses_last_target_then_executes() -> None:
    windows = FakeWindows(process="Terminal")
    gate, inner = make_gate(windows)

    res = await gate.execute(Action(action_type="focus_window", parameters={"process": "TextEdit", "title": "Notes.txt"}))
    assert res.success
    assert gate.last_focus_target == ("TextEdit", "Notes.txt")

    windows.foreground = WindowInfo(title="chat", process="Slack")
    res = await gate.execute(type_text())
    assert res.success
    assert [a.action_type for a in inner.actions] == [
        ActionType.FOCUS_WINDOW,
        ActionType.FOCUS_WINDOW,
        ActionType.TYPE_TEXT,
    ]
    assert inner.actions[1].parameters == {"title": "Notes.txt", "process": "TextEdit"}


@pytest.mark.asyncio
async def test_refocus_failure_refuses() -> None:
    windows = FakeWindows(process="Slack")
    gate, inner = make_gate(windows, focus_ok=False)
    gate._remember_focus("TextEdit", None)

    res = await gate.execute(type_text())
    assert res.is_policy_refusal
    assert [a.action_type for a in inner.actions] == [ActionType.FOCUS_WINDOW]
