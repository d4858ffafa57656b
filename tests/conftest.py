"""Pytest configuration: make the flat modules importable and provide desktop fakes."""

from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from desktop_io import SpawnResult, WindowInfo  # noqa: E402
from geometry import Rect  # noqa: E402


class FakeWindows:
    def __init__(
        self,
        process: Optional[str] = "TextEdit",
        title: Optional[str] = "Untitled",
        rect: Optional[Rect] = Rect(0, 0, 1600, 1200),
        image: Any = None,
    ):
        self.foreground = WindowInfo(title=title, process=process)
        self.rect = rect
        self.image = image
        self.focusable: set = set()
        self.launch_result = SpawnResult(ok=True)
        self.open_url_result = SpawnResult(ok=True)
        self.focus_calls: List[tuple] = []
        self.launch_calls: List[str] = []
        self.open_url_calls: List[tuple] = []
        self.capture_calls: List[Optional[Rect]] = []

    def get_foreground_window_info(self) -> WindowInfo:
        return self.foreground

    def try_get_foreground_client_rect(self) -> Optional[Rect]:
        return self.rect

    def focus_by_title_or_process(self, title, process) -> bool:
        self.focus_calls.append((title, process))
        if process and process in self.focusable:
            self.foreground = WindowInfo(title=title or process, process=process)
            return True
        return False

    def launch_process(self, name: str) -> SpawnResult:
        self.launch_calls.append(name)
        if self.launch_result.ok:
            self.focusable.add(name)
        return self.launch_result

    def open_url(self, url: str, browser: Optional[str] = None) -> SpawnResult:
        self.open_url_calls.append((url, browser))
        return self.open_url_result

    def capture_region(self, rect):
        self.capture_calls.append(rect)
        return self.image


class FakeInput:
    def __init__(self):
        self.calls: List[tuple] = []

    def click_absolute(self, x, y):
        self.calls.append(("click", x, y))

    def move_mouse_absolute(self, x, y):
        self.calls.append(("move", x, y))

    def left_down(self):
        self.calls.append(("down",))

    def left_up(self):
        self.calls.append(("up",))

    def hotkey(self, keys):
        self.calls.append(("hotkey", list(keys)))

    def type_text(self, text):
        self.calls.append(("type", text))

    def mouse_wheel(self, delta):
        self.calls.append(("wheel", delta))

    @property
    def typed(self) -> List[str]:
        return [c[1] for c in self.calls if c[0] == "type"]


class FakeAccessibility:
    def __init__(self, elements: Optional[Dict[str, Any]] = None, passwords=(), invoke_ok: bool = True):
        self.elements = dict(elements or {})
        self.passwords = set(passwords)
        self.invoke_ok = invoke_ok
        self.invoked: List[Any] = []
        self.focused: List[Any] = []

    def find_element(self, automation_id, name):
        return self.elements.get(automation_id or name)

    def is_password_element(self, handle) -> bool:
        return handle in self.passwords

    def try_invoke(self, handle) -> bool:
        self.invoked.append(handle)
        return self.invoke_ok

    def set_focus(self, handle) -> None:
        self.focused.append(handle)


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class AsyncRecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeMessages:
    """Stands in for anthropic.AsyncAnthropic().messages; replies are consumed in order."""

    def __init__(self, replies: List[Any]):
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=reply)])


class FakeClaude:
    def __init__(self, *replies: Any):
        self.messages = FakeMessages(list(replies))


@pytest.fixture
def windows() -> FakeWindows:
    return FakeWindows()


@pytest.fixture
def fake_input() -> FakeInput:
    return FakeInput()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()
