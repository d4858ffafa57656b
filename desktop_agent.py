#!/usr/bin/env python3
from __future__ import annotations

"""
desktop_agent.py - Desktop Action Executor

Key behaviors:
- Maps one Action (type + parameter bag) onto primitive input/window calls.
- Resolves absolute, window-relative, square-relative, path and drag
  coordinates against the foreground window's client rectangle.
- Never raises to its caller: parameter problems, environment problems and
  unexpected exceptions all come back as a failed ExecutionResult.
- ClickText is the only suspending action (it waits on OCR); everything else
  runs synchronously and is not interruptible once input injection starts.
"""

import sys
import time
from typing import Callable, Dict, List, Optional, Sequence

from action_models import (
    ERROR_COMMAND,
    ERROR_ENVIRONMENT,
    ERROR_PARAM,
    ERROR_PASSWORD_BLOCKED,
    ERROR_SELF_TYPING,
    ERROR_SPAWN,
    ERROR_UNKNOWN,
    Action,
    ActionParameterError,
    ActionType,
    ClickCoordinatesParams,
    ClickGridParams,
    ClickTextParams,
    ClickUiaParams,
    ExecutionResult,
    FocusWindowParams,
    HotkeyParams,
    NavigateUrlParams,
    RunCommandParams,
    ScrollParams,
    TypeTextParams,
    WaitParams,
    WinRunParams,
)
from agent_config import setup_logger
from desktop_io import (
    AccessibilityProvider,
    CommandResult,
    InputProvider,
    WindowProvider,
    is_self_process,
    normalize_key_name,
    run_command,
    shell_argv,
)
from geometry import EXECUTION_GRID, GridSpec, Point, Rect, interpolate_line, resolve_point
from text_finder import TextFinder

logger = setup_logger("DesktopExecutor")

SCROLL_PAGE_DELTA = 500
SCROLL_DEFAULT_DELTA = 300
STDOUT_PREVIEW_CHARS = 200


def default_run_dialog_keys() -> List[str]:
    # Spotlight plays the Run dialog's part on macOS.
    return ["cmd", "space"] if sys.platform == "darwin" else ["win", "r"]


def default_shell() -> str:
    return "powershell" if sys.platform.startswith("win") else "/bin/sh"


# -----------------------------
# Executor
# -----------------------------
class DesktopActionExecutor:
    """Executes single actions against injected window/input/accessibility providers."""

    def __init__(
        self,
        windows: WindowProvider,
        input: InputProvider,
        accessibility: Optional[AccessibilityProvider] = None,
        text_finder: Optional[TextFinder] = None,
        *,
        self_processes: Sequence[str] = (),
        run_dialog_keys: Optional[List[str]] = None,
        command_timeout_s: float = 10.0,
        command_runner: Callable[[List[str], float], CommandResult] = run_command,
        grid: GridSpec = EXECUTION_GRID,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.windows = windows
        self.input = input
        self.accessibility = accessibility
        self.text_finder = text_finder
        self.self_processes = list(self_processes)
        self.run_dialog_keys = list(run_dialog_keys or default_run_dialog_keys())
        self.command_timeout_s = float(command_timeout_s)
        self.command_runner = command_runner
        self.grid = grid
        self._sleep = sleep

        self._handlers: Dict[ActionType, Callable[[Action], ExecutionResult]] = {
            ActionType.FOCUS_WINDOW: lambda a: self.primitive_focus_window(a.params()),
            ActionType.CLICK_COORDINATES: lambda a: self.primitive_click_coordinates(a.params()),
            ActionType.CLICK_GRID: lambda a: self.primitive_click_grid(a.params()),
            ActionType.CLICK_AND_TYPE: lambda a: self.primitive_click_and_type(a.params()),
            ActionType.CLICK_UIA: lambda a: self.primitive_click_uia(a.params()),
            ActionType.TYPE_TEXT: lambda a: self.primitive_type_text(a.params()),
            ActionType.HOTKEY: lambda a: self.primitive_hotkey(a.params()),
            ActionType.WAIT: lambda a: self.primitive_wait(a.params()),
            ActionType.VERIFY: lambda a: ExecutionResult.ok(),
            ActionType.DONE: lambda a: ExecutionResult.ok(),
            ActionType.NAVIGATE_URL: lambda a: self.primitive_navigate_url(a.params()),
            ActionType.SCROLL: lambda a: self.primitive_scroll(a.params()),
            ActionType.RUN_COMMAND: lambda a: self.primitive_run_command(a.params()),
            ActionType.WIN_RUN: lambda a: self.primitive_win_run(a.params()),
        }

    # =============================
    # Dispatch
    # =============================
    async def execute(self, action: Action) -> ExecutionResult:
        try:
            if action.action_type == ActionType.CLICK_TEXT:
                return await self.primitive_click_text(action.params())
            return self._execute_sync(action)
        except ActionParameterError as e:
            logger.warning("[execute] %s", e)
            return ExecutionResult.fail(ERROR_PARAM, str(e))
        except Exception as e:
            logger.error("[execute] %s threw: %s", action.action_type.value, e)
            return ExecutionResult.fail(ERROR_UNKNOWN, str(e) or type(e).__name__)

    def _execute_sync(self, action: Action) -> ExecutionResult:
        handler = self._handlers.get(action.action_type)
        if handler is None:
            return ExecutionResult.fail(ERROR_PARAM, f"Unsupported action type: {action.action_type.value}")
        return handler(action)

    def _foreground_rect(self) -> Optional[Rect]:
        return self.windows.try_get_foreground_client_rect()

    # =============================
    # Focus
    # =============================
    def primitive_focus_window(self, p: FocusWindowParams) -> ExecutionResult:
        title = (p.title or "").strip() or None
        process = (p.process or "").strip() or None
        if not title and not process:
            return ExecutionResult.fail(ERROR_PARAM, "focus_window requires title or process.")

        logger.info("[execute] focus title=%r process=%r", title, process)
        ok = self.windows.focus_by_title_or_process(title, process)
        if not ok and process:
            spawn = self.windows.launch_process(process)
            if not spawn.ok:
                return ExecutionResult.fail(ERROR_SPAWN, f"Failed to start {process}: {spawn.error}")
            self._sleep(0.5)
            ok = self.windows.focus_by_title_or_process(title, process)

        if not ok:
            return ExecutionResult.fail(ERROR_ENVIRONMENT, "Failed to focus or start target window.")
        return ExecutionResult.ok(f"Focused {process or title}")

    # =============================
    # Coordinates / drag / path
    # =============================
    def primitive_click_coordinates(self, p: ClickCoordinatesParams) -> ExecutionResult:
        if p.path is not None:
            return self._execute_path(p.path, p.move_delay_ms)

        if p.has_relative:
            rect = self._foreground_rect()
            if rect is None:
                return ExecutionResult.fail(ERROR_ENVIRONMENT, "Unable to get foreground window rect.")
            start = rect.resolve_relative(p.rx, p.ry)
            if p.has_relative_to:
                end = rect.resolve_relative(p.to_rx, p.to_ry)
                self._drag(start, end, p.drag_steps, p.drag_delay_ms)
                return ExecutionResult.ok(f"Dragged {start} -> {end}")
            logger.info("[execute] click rel=(%.3f,%.3f) -> %s", p.rx, p.ry, start)
            self.input.click_absolute(*start)
            return ExecutionResult.ok(f"Clicked at {start}")

        if p.has_absolute:
            start = (int(round(p.x)), int(round(p.y)))
            if p.has_absolute_to:
                end = (int(round(p.to_x)), int(round(p.to_y)))
                self._drag(start, end, p.drag_steps, p.drag_delay_ms)
                return ExecutionResult.ok(f"Dragged {start} -> {end}")
            logger.info("[execute] click abs=%s", start)
            self.input.click_absolute(*start)
            return ExecutionResult.ok(f"Clicked at {start}")

        return ExecutionResult.fail(ERROR_PARAM, "click_coordinates missing coordinates (x/y or rx/ry).")

    def _drag(self, start: Point, end: Point, steps: int, delay_ms: int) -> None:
        logger.info("[execute] drag %s -> %s steps=%d delay_ms=%d", start, end, steps, delay_ms)
        self.input.move_mouse_absolute(*start)
        self._sleep(0.01)
        self.input.left_down()
        self._sleep(0.01)
        for pt in interpolate_line(start, end, steps):
            self.input.move_mouse_absolute(*pt)
            if delay_ms > 0:
                self._sleep(delay_ms / 1000.0)
        self._sleep(0.01)
        self.input.left_up()
        self._sleep(0.01)

    def _execute_path(self, points: List[object], move_delay_ms: int) -> ExecutionResult:
        rect = self._foreground_rect()
        if rect is None:
            return ExecutionResult.fail(ERROR_ENVIRONMENT, "Unable to get foreground window rect.")

        pen_down = False
        resolved = 0
        strokes = 0
        for raw in points:
            if not isinstance(raw, dict):
                continue
            pt = resolve_point(raw, rect)
            if pt is None:
                continue
            resolved += 1

            if raw.get("lift") is True and pen_down:
                self.input.left_up()
                pen_down = False
                self._sleep(0.005)

            if not pen_down:
                self.input.move_mouse_absolute(*pt)
                self._sleep(0.01)
                self.input.left_down()
                pen_down = True
                strokes += 1
                self._sleep(0.01)
                continue

            self.input.move_mouse_absolute(*pt)
            if move_delay_ms > 0:
                self._sleep(move_delay_ms / 1000.0)

        if resolved == 0:
            return ExecutionResult.fail(ERROR_PARAM, "Empty path: no point resolved.")

        if pen_down:
            self._sleep(0.01)
            self.input.left_up()

        logger.info("[execute] path points=%d strokes=%d", resolved, strokes)
        return ExecutionResult.ok(f"Drew {strokes} stroke(s) through {resolved} point(s)")

    # =============================
    # Grid
    # =============================
    def _grid_target(self, cell: Optional[int]):
        if cell is None or not self.grid.contains(cell):
            return None, ExecutionResult.fail(
                ERROR_PARAM, f"Invalid grid cell: {cell}. Must be 1-{self.grid.total_cells}."
            )
        rect = self._foreground_rect()
        if rect is None:
            return None, ExecutionResult.fail(ERROR_ENVIRONMENT, "Unable to get foreground window rect.")
        return self.grid.cell_center(cell, rect), None

    def primitive_click_grid(self, p: ClickGridParams) -> ExecutionResult:
        target, err = self._grid_target(p.cell)
        if err is not None:
            return err
        row, col = self.grid.cell_position(p.cell)
        logger.info("[execute] click_grid cell=%d (row %d, col %d) -> %s", p.cell, row + 1, col + 1, target)
        self.input.click_absolute(*target)
        self._sleep(0.1)
        return ExecutionResult.ok(f"Clicked cell {p.cell} at {target}")

    def primitive_click_and_type(self, p: ClickGridParams) -> ExecutionResult:
        target, err = self._grid_target(p.cell)
        if err is not None:
            return err
        logger.info("[execute] click_and_type cell=%d -> %s chars=%d", p.cell, target, len(p.text))

        # focus click, then enough clicks to select the whole field
        for pause in (0.1, 0.05, 0.05, 0.15):
            self.input.click_absolute(*target)
            self._sleep(pause)

        self.input.type_text(p.text)
        self._sleep(0.3)
        return ExecutionResult.ok(f'Typed "{p.text}" in cell {p.cell} at {target}')

    # =============================
    # Accessibility
    # =============================
    def primitive_click_uia(self, p: ClickUiaParams) -> ExecutionResult:
        if not p.automation_id and not p.name:
            return ExecutionResult.fail(ERROR_PARAM, "click_uia requires automation_id or name.")
        if self.accessibility is None:
            return ExecutionResult.fail(ERROR_ENVIRONMENT, "Accessibility provider unavailable.")

        element = self.accessibility.find_element(p.automation_id, p.name)
        if element is None:
            return ExecutionResult.fail(ERROR_ENVIRONMENT, "UIA element not found.")
        if self.accessibility.is_password_element(element):
            return ExecutionResult.fail(ERROR_PASSWORD_BLOCKED, "Password field interaction blocked.")

        ok = self.accessibility.try_invoke(element)
        if not ok:
            try:
                self.accessibility.set_focus(element)
                ok = True
            except Exception as e:
                logger.debug("[execute] uia set_focus failed: %s", e)
                ok = False

        if not ok:
            return ExecutionResult.fail(ERROR_ENVIRONMENT, "UIA click failed.")
        return ExecutionResult.ok(f"Activated element {p.automation_id or p.name}")

    # =============================
    # Typing / hotkeys / scroll
    # =============================
    def primitive_type_text(self, p: TypeTextParams) -> ExecutionResult:
        if not p.text:
            return ExecutionResult.fail(ERROR_PARAM, "No text to type.")

        fg = self.windows.get_foreground_window_info()
        if is_self_process(fg.process, self.self_processes):
            logger.warning("[execute] type refused: agent surface %r is foreground", fg.process)
            return ExecutionResult.fail(ERROR_SELF_TYPING, "Agent UI is foreground - need to focus target app first.")

        if (p.uia_automation_id or p.uia_name) and self.accessibility is not None:
            element = self.accessibility.find_element(p.uia_automation_id, p.uia_name)
            if element is not None:
                if self.accessibility.is_password_element(element):
                    return ExecutionResult.fail(ERROR_PASSWORD_BLOCKED, "Password typing blocked.")
                try:
                    self.accessibility.set_focus(element)
                except Exception as e:
                    logger.debug("[execute] uia set_focus failed, typing anyway: %s", e)

        logger.info("[execute] type chars=%d", len(p.text))
        logger.debug("preview=%r", p.text[:80])
        self.input.type_text(p.text)
        self._sleep(0.1)
        return ExecutionResult.ok(f"Typed: {p.text}")

    def primitive_hotkey(self, p: HotkeyParams) -> ExecutionResult:
        if not p.keys:
            return ExecutionResult.fail(ERROR_PARAM, "Missing keys.")

        keys: List[str] = []
        for k in p.keys:
            name = normalize_key_name(k)
            if name is None:
                logger.debug("[execute] hotkey dropping unknown key %r", k)
                continue
            keys.append(name)

        if not keys:
            return ExecutionResult.fail(ERROR_PARAM, f"No known keys in {p.keys}.")

        logger.info("[execute] hotkey keys=%s", keys)
        self.input.hotkey(keys)
        return ExecutionResult.ok("+".join(keys))

    def primitive_wait(self, p: WaitParams) -> ExecutionResult:
        self._sleep(p.ms / 1000.0)
        return ExecutionResult.ok(f"Waited {p.ms}ms")

    def primitive_scroll(self, p: ScrollParams) -> ExecutionResult:
        is_up = p.direction.lower() == "up"
        if p.amount.lower() == "page":
            amount = SCROLL_PAGE_DELTA
        else:
            try:
                amount = int(p.amount)
            except ValueError:
                amount = SCROLL_DEFAULT_DELTA

        delta = amount if is_up else -amount
        logger.info("[execute] scroll delta=%d", delta)
        self.input.mouse_wheel(delta)
        self._sleep(0.3)
        return ExecutionResult.ok(f"Scrolled {delta}")

    # =============================
    # Processes
    # =============================
    def primitive_navigate_url(self, p: NavigateUrlParams) -> ExecutionResult:
        url = (p.url or "").strip()
        if not url:
            return ExecutionResult.fail(ERROR_PARAM, "Missing url parameter.")

        logger.info("[execute] navigate url=%s browser=%s", url, p.browser or "<default>")
        res = self.windows.open_url(url, (p.browser or "").strip() or None)
        if not res.ok:
            return ExecutionResult.fail(ERROR_SPAWN, f"Failed to navigate: {res.error}")
        self._sleep(1.5)
        return ExecutionResult.ok(f"Opened {url}")

    def primitive_win_run(self, p: WinRunParams) -> ExecutionResult:
        command = (p.command or "").strip()
        if not command:
            return ExecutionResult.fail(ERROR_PARAM, "No command specified for WinRun.")

        logger.info("[execute] run dialog command=%r", command)
        self.input.hotkey(list(self.run_dialog_keys))
        self._sleep(0.5)
        self.input.type_text(command)
        self._sleep(0.2)
        self.input.hotkey(["enter"])
        self._sleep(1.0)
        return ExecutionResult.ok(f"WinRun: {command}")

    def primitive_run_command(self, p: RunCommandParams) -> ExecutionResult:
        command = (p.command or "").strip()
        if not command:
            return ExecutionResult.fail(ERROR_PARAM, "No command specified.")

        shell = (p.shell or "").strip() or default_shell()
        logger.info("[execute] run_command [%s]: %s", shell, command)
        try:
            res = self.command_runner(shell_argv(command, shell), self.command_timeout_s)
        except OSError as e:
            return ExecutionResult.fail(ERROR_SPAWN, f"Failed to start process: {e}")

        if res.timed_out:
            return ExecutionResult.fail(
                ERROR_COMMAND, f"Command timed out after {self.command_timeout_s:g}s", details=res.stdout[:STDOUT_PREVIEW_CHARS]
            )
        if res.returncode != 0 and res.stderr.strip():
            return ExecutionResult.fail(ERROR_COMMAND, res.stderr.strip(), details=res.stdout)

        out = res.stdout
        preview = out[:STDOUT_PREVIEW_CHARS] + "..." if len(out) > STDOUT_PREVIEW_CHARS else out
        return ExecutionResult.ok(preview)

    # =============================
    # OCR click
    # =============================
    async def primitive_click_text(self, p: ClickTextParams) -> ExecutionResult:
        text = (p.text or "").strip()
        if not text:
            return ExecutionResult.fail(ERROR_PARAM, "No text specified for click_text.")
        if self.text_finder is None:
            return ExecutionResult.fail(ERROR_ENVIRONMENT, "Text finder unavailable.")

        rect = self._foreground_rect()
        if rect is None:
            return ExecutionResult.fail(ERROR_ENVIRONMENT, "Cannot get foreground window.")

        logger.info("[execute] click_text searching %r (index %d)", text, p.index)
        matches = await self.text_finder.find_text(rect, text)
        if not matches:
            logger.warning("[execute] click_text no matches for %r", text)
            return ExecutionResult.fail(ERROR_ENVIRONMENT, f"Text '{text}' not found on screen")

        index = p.index if 0 <= p.index < len(matches) else 0
        match = matches[index]
        cx, cy = match.center
        logger.info("[execute] click_text found %r at (%d,%d)", match.text, cx, cy)
        self.input.click_absolute(cx, cy)
        self._sleep(0.1)
        return ExecutionResult.ok(f"Clicked on '{match.text}' at ({cx}, {cy})")
