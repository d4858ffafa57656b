"""
mac_desktop.py

macOS backends for the capability interfaces in desktop_io.py.

- MacWindowManager: foreground app/window via System Events (osascript),
  focus by process or title, `open -a` launches, screenshots via pyautogui.
- PyAutoGuiInput: pyautogui for the mouse, pynput for the keyboard.
- MacAccessibility: UI elements by AXIdentifier or name through System Events.

This is the only module that imports pyautogui/pynput at import time; it
needs a logged-in GUI session with Accessibility permission granted to the
terminal running the agent.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pyautogui
from PIL import Image
from pynput.keyboard import Controller, Key

from agent_config import setup_logger
from desktop_io import (
    SpawnResult,
    WindowInfo,
    element_lookup_script,
    escape_applescript_str,
    front_window_contents,
    normalize_key_name,
    parse_element_lookup,
    press_chord,
    run_cmd,
    run_osascript,
    spawn_detached,
)
from geometry import Rect

logger = setup_logger("MacDesktop")

pyautogui.FAILSAFE = True
pyautogui.PAUSE = 0


# =============================
# Windows
# =============================
_BROWSER_APPS = {
    "chrome": "Google Chrome",
    "google chrome": "Google Chrome",
    "firefox": "Firefox",
    "edge": "Microsoft Edge",
    "msedge": "Microsoft Edge",
    "microsoft edge": "Microsoft Edge",
    "safari": "Safari",
}


class MacWindowManager:
    def get_foreground_window_info(self) -> WindowInfo:
        script = r'''
tell application "System Events"
  set p to first application process whose frontmost is true
  set appName to name of p
  try
    set winTitle to name of front window of p
  on error
    set winTitle to ""
  end try
end tell
return appName & "||" & winTitle
'''
        try:
            rc, out, _ = run_osascript(script, timeout=5)
        except Exception as e:
            logger.debug("[windows] foreground query failed: %s", e)
            return WindowInfo(title=None, process=None)
        if rc != 0:
            return WindowInfo(title=None, process=None)
        parts = (out or "").split("||", 1)
        name = parts[0].strip() or None
        title = (parts[1].strip() if len(parts) > 1 else "") or None
        return WindowInfo(title=title, process=name)

    def try_get_foreground_client_rect(self) -> Optional[Rect]:
        script = r'''
tell application "System Events"
  set p to first application process whose frontmost is true
  tell front window of p
    set {x, y} to position
    set {w, h} to size
  end tell
end tell
return (x as text) & "," & (y as text) & "," & (w as text) & "," & (h as text)
'''
        try:
            rc, out, _ = run_osascript(script, timeout=5)
        except Exception as e:
            logger.debug("[windows] rect query failed: %s", e)
            return None
        if rc != 0:
            return None
        try:
            x, y, w, h = (int(float(v)) for v in out.split(","))
        except ValueError:
            return None
        if w <= 0 or h <= 0:
            return None
        return Rect(left=x, top=y, right=x + w, bottom=y + h)

    def focus_by_title_or_process(self, title: Optional[str], process: Optional[str]) -> bool:
        process = (process or "").strip()
        title = (title or "").strip()
        if process:
            script = f'''
tell application "System Events"
  if not (exists application process "{escape_applescript_str(process)}") then return "missing"
  set frontmost of application process "{escape_applescript_str(process)}" to true
  try
    perform action "AXRaise" of front window of application process "{escape_applescript_str(process)}"
  end try
end tell
return "ok"
'''
        elif title:
            script = f'''
tell application "System Events"
  repeat with p in (application processes whose background only is false)
    repeat with w in windows of p
      if name of w contains "{escape_applescript_str(title)}" then
        set frontmost of p to true
        perform action "AXRaise" of w
        return "ok"
      end if
    end repeat
  end repeat
end tell
return "missing"
'''
        else:
            return False

        try:
            rc, out, err = run_osascript(script, timeout=10)
        except Exception as e:
            logger.warning("[windows] focus failed: %s", e)
            return False
        if rc != 0 or out.strip() != "ok":
            logger.debug("[windows] focus miss title=%r process=%r err=%s", title, process, err)
            return False
        time.sleep(0.2)
        fg = self.get_foreground_window_info()
        if process:
            return (fg.process or "").lower() == process.lower()
        return title.lower() in (fg.title or "").lower()

    def launch_process(self, name: str) -> SpawnResult:
        rc, out, err = run_cmd(["open", "-a", name], timeout=10)
        if rc != 0:
            return SpawnResult(ok=False, error=f"Failed to launch {name}: {err or out}")
        return SpawnResult(ok=True)

    def open_url(self, url: str, browser: Optional[str] = None) -> SpawnResult:
        app = _BROWSER_APPS.get((browser or "").strip().lower())
        if browser and not app:
            app = browser.strip()
        argv = ["open", "-a", app, url] if app else ["open", url]
        return spawn_detached(argv)

    def capture_region(self, rect: Optional[Rect]) -> Optional[Image.Image]:
        try:
            if rect is None:
                return pyautogui.screenshot()
            return pyautogui.screenshot(region=(rect.left, rect.top, rect.width, rect.height))
        except Exception as e:
            logger.warning("[windows] screenshot failed: %s", e)
            return None


# =============================
# Input
# =============================
_PYNPUT_KEYS: Dict[str, Any] = {
    "win": Key.cmd,
    "cmd": Key.cmd,
    "ctrl": Key.ctrl,
    "alt": Key.alt,
    "shift": Key.shift,
    "enter": Key.enter,
    "tab": Key.tab,
    "esc": Key.esc,
    "space": Key.space,
    "backspace": Key.backspace,
    "delete": Key.delete,
    "home": Key.home,
    "end": Key.end,
    "page_up": Key.page_up,
    "page_down": Key.page_down,
    "up": Key.up,
    "down": Key.down,
    "left": Key.left,
    "right": Key.right,
}


def map_key(name: str) -> Any:
    k = normalize_key_name(name)
    if k is None:
        raise ValueError(f"Unknown key: {name!r}")
    if k in _PYNPUT_KEYS:
        return _PYNPUT_KEYS[k]
    if k.startswith("f") and k[1:].isdigit():
        return getattr(Key, k)
    return k


class PyAutoGuiInput:
    def __init__(self, type_delay_s: float = 0.0):
        self.kb = Controller()
        self.type_delay_s = float(type_delay_s)

    def click_absolute(self, x: int, y: int) -> None:
        pyautogui.click(int(x), int(y))

    def move_mouse_absolute(self, x: int, y: int) -> None:
        pyautogui.moveTo(int(x), int(y))

    def left_down(self) -> None:
        pyautogui.mouseDown(button="left")

    def left_up(self) -> None:
        pyautogui.mouseUp(button="left")

    def hotkey(self, keys: List[str]) -> None:
        mapped = [map_key(k) for k in keys]
        press_chord(mapped, self.kb.press, self.kb.release)
        time.sleep(0.05)

    def type_text(self, text: str) -> None:
        if self.type_delay_s <= 0:
            self.kb.type(text)
            return
        for ch in text:
            self.kb.type(ch)
            time.sleep(self.type_delay_s)

    def mouse_wheel(self, delta: int) -> None:
        # pyautogui scroll units are lines, not wheel deltas
        pyautogui.scroll(int(delta / 100) or (1 if delta > 0 else -1))


# =============================
# Accessibility
# =============================
@dataclass(frozen=True)
class MacElement:
    process: str
    index: int
    label: str
    role: str
    subrole: str


class MacAccessibility:
    """
    Looks up elements of the frontmost window by AXIdentifier (automation id)
    or by accessibility name/description. A found element is addressed by its
    position in the window's entire contents.
    """

    def __init__(self, windows: MacWindowManager):
        self.windows = windows

    def _element_ref(self, el: MacElement) -> str:
        return f"item {el.index} of ({front_window_contents(el.process)})"

    def find_element(self, automation_id: Optional[str], name: Optional[str]) -> Optional[MacElement]:
        automation_id = (automation_id or "").strip() or None
        name = (name or "").strip() or None
        if not automation_id and not name:
            return None
        fg = self.windows.get_foreground_window_info()
        if not fg.process:
            return None

        try:
            rc, out, _ = run_osascript(element_lookup_script(fg.process, automation_id, name), timeout=15)
        except Exception as e:
            logger.debug("[ax] lookup failed: %s", e)
            return None
        if rc != 0:
            return None
        found = parse_element_lookup(out)
        if found is None:
            return None
        index, role, subrole = found
        return MacElement(process=fg.process, index=index, label=automation_id or name or "", role=role, subrole=subrole)

    def is_password_element(self, handle: MacElement) -> bool:
        return handle.subrole == "AXSecureTextField"

    def try_invoke(self, handle: MacElement) -> bool:
        script = f'''
tell application "System Events"
  perform action "AXPress" of ({self._element_ref(handle)})
end tell
'''
        try:
            rc, _, _ = run_osascript(script, timeout=10)
        except Exception as e:
            logger.debug("[ax] invoke failed: %s", e)
            return False
        return rc == 0

    def set_focus(self, handle: MacElement) -> None:
        script = f'''
tell application "System Events"
  set focused of ({self._element_ref(handle)}) to true
end tell
'''
        rc, out, err = run_osascript(script, timeout=10)
        if rc != 0:
            raise RuntimeError(f"Could not focus element {handle.label!r}: {err or out}")
