"""
desktop_io.py

Capability interfaces between the executor and the operating system, plus the
OS-neutral helpers (subprocess wrappers, key-name normalization) the concrete
backends share. mac_desktop.py provides the macOS implementation; tests
provide fakes.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Any, Callable, List, NamedTuple, Optional, Protocol, Sequence, Tuple

from PIL import Image

from geometry import Rect


class WindowInfo(NamedTuple):
    title: Optional[str]
    process: Optional[str]


@dataclass
class SpawnResult:
    ok: bool
    error: Optional[str] = None


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False


# -----------------------------
# Capability interfaces
# -----------------------------
class WindowProvider(Protocol):
    def get_foreground_window_info(self) -> WindowInfo: ...

    def try_get_foreground_client_rect(self) -> Optional[Rect]: ...

    def focus_by_title_or_process(self, title: Optional[str], process: Optional[str]) -> bool: ...

    def launch_process(self, name: str) -> SpawnResult: ...

    def open_url(self, url: str, browser: Optional[str] = None) -> SpawnResult: ...


class InputProvider(Protocol):
    def click_absolute(self, x: int, y: int) -> None: ...

    def move_mouse_absolute(self, x: int, y: int) -> None: ...

    def left_down(self) -> None: ...

    def left_up(self) -> None: ...

    def hotkey(self, keys: List[str]) -> None: ...

    def type_text(self, text: str) -> None: ...

    def mouse_wheel(self, delta: int) -> None: ...


class AccessibilityProvider(Protocol):
    def find_element(self, automation_id: Optional[str], name: Optional[str]) -> Optional[Any]: ...

    def is_password_element(self, handle: Any) -> bool: ...

    def try_invoke(self, handle: Any) -> bool: ...

    def set_focus(self, handle: Any) -> None: ...


class ScreenCapture(Protocol):
    def capture_region(self, rect: Optional[Rect]) -> Optional[Image.Image]: ...


# -----------------------------
# OS command helpers
# -----------------------------
def run_cmd(cmd: List[str], timeout: float = 10) -> Tuple[int, str, str]:
    p = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=timeout)
    return p.returncode, (p.stdout or "").strip(), (p.stderr or "").strip()


def run_command(argv: List[str], timeout: float = 10) -> CommandResult:
    """Like run_cmd but keeps raw output and reports a timeout instead of raising."""
    try:
        p = subprocess.run(argv, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        out = e.stdout.decode(errors="replace") if isinstance(e.stdout, bytes) else (e.stdout or "")
        err = e.stderr.decode(errors="replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
        return CommandResult(returncode=-1, stdout=out, stderr=err, timed_out=True)
    return CommandResult(returncode=p.returncode, stdout=p.stdout or "", stderr=p.stderr or "")


def spawn_detached(argv: List[str]) -> SpawnResult:
    try:
        subprocess.Popen(argv, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, start_new_session=True)
        return SpawnResult(ok=True)
    except (OSError, ValueError) as e:
        return SpawnResult(ok=False, error=f"{argv[0] if argv else '<empty>'}: {e}")


def shell_argv(command: str, shell: Optional[str]) -> List[str]:
    s = (shell or "").strip()
    low = s.lower()
    if "powershell" in low or low == "pwsh":
        return [s, "-NoProfile", "-Command", command]
    if low in {"cmd", "cmd.exe"}:
        return [s, "/c", command]
    return [s or "/bin/sh", "-c", command]


# -----------------------------
# AppleScript
# -----------------------------
def run_osascript(script: str, timeout: float = 10) -> Tuple[int, str, str]:
    return run_cmd(["osascript", "-e", script], timeout=timeout)


def escape_applescript_str(s: str) -> str:
    return s.replace("\\", "\\\\").replace('"', '\\"')


def front_window_contents(process: str) -> str:
    return f'entire contents of front window of application process "{escape_applescript_str(process)}"'


def element_lookup_script(process: str, automation_id: Optional[str], name: Optional[str]) -> str:
    """
    AppleScript that walks the front window's UI elements and prints
    "index||role||subrole" for the first one whose AXIdentifier equals
    `automation_id` or whose name/description equals `name`. Prints "" when
    nothing matches.

    `whose` clauses cannot read AXIdentifier, so the walk is explicit.
    """
    tests: List[str] = []
    if automation_id:
        aid = escape_applescript_str(automation_id)
        tests.append(f'if value of attribute "AXIdentifier" of e is "{aid}" then set matched to true')
    if name:
        n = escape_applescript_str(name)
        tests.append(f'if name of e is "{n}" then set matched to true')
        tests.append(f'if description of e is "{n}" then set matched to true')
    checks = "\n".join(f"      try\n        {t}\n      end try" for t in tests)
    return f'''
tell application "System Events"
  set els to {front_window_contents(process)}
  repeat with i from 1 to count of els
    set e to item i of els
    set matched to false
{checks}
    if matched then
      set s to ""
      try
        set s to subrole of e
      end try
      return (i as text) & "||" & (role of e) & "||" & s
    end if
  end repeat
end tell
return ""
'''


def parse_element_lookup(out: str) -> Optional[Tuple[int, str, str]]:
    """(index, role, subrole) from element_lookup_script output, or None."""
    parts = (out or "").strip().split("||")
    if len(parts) != 3:
        return None
    try:
        index = int(parts[0])
    except ValueError:
        return None
    if index < 1:
        return None
    return index, parts[1].strip(), parts[2].strip()


# -----------------------------
# Key names
# -----------------------------
_KEY_ALIASES = {
    "win": "win", "lwin": "win", "rwin": "win", "windows": "win", "super": "win",
    "cmd": "cmd", "command": "cmd", "meta": "cmd",
    "ctrl": "ctrl", "control": "ctrl",
    "alt": "alt", "option": "alt", "menu": "alt",
    "shift": "shift",
    "enter": "enter", "return": "enter",
    "tab": "tab",
    "esc": "esc", "escape": "esc",
    "space": "space", "spacebar": "space",
    "backspace": "backspace", "back": "backspace",
    "delete": "delete", "del": "delete",
    "home": "home", "end": "end",
    "pageup": "page_up", "page_up": "page_up", "pgup": "page_up",
    "pagedown": "page_down", "page_down": "page_down", "pgdn": "page_down",
    "up": "up", "down": "down", "left": "left", "right": "right",
    "arrowup": "up", "arrowdown": "down", "arrowleft": "left", "arrowright": "right",
}

WIN_KEY_NAMES = {"win", "lwin", "rwin"}


def normalize_key_name(k: str) -> Optional[str]:
    """Canonical key name, or None when the name is not a known key."""
    k = (k or "").strip().lower()
    if not k:
        return None
    if k in _KEY_ALIASES:
        return _KEY_ALIASES[k]
    if len(k) == 1 and k.isprintable():
        return k
    if k.startswith("f") and k[1:].isdigit() and 1 <= int(k[1:]) <= 12:
        return k
    return None


def is_self_process(name: Optional[str], self_processes: Sequence[str]) -> bool:
    n = (name or "").strip().lower()
    if not n:
        return False
    return any(n == s.strip().lower() for s in self_processes if s and s.strip())


def press_chord(keys: Sequence[Any], press: Callable[[Any], None], release: Callable[[Any], None]) -> None:
    """Standard chord: press in order, release in reverse order."""
    for k in keys:
        press(k)
    for k in reversed(list(keys)):
        release(k)
