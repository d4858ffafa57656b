from __future__ import annotations

"""
kill_switch.py

Global emergency stop: pressing Esc twice within 500ms calls the stop
callback, whichever window has focus.
"""

import threading
import time
from typing import Any, Callable, Optional

from agent_config import setup_logger

logger = setup_logger("KillSwitch")

DOUBLE_PRESS_WINDOW_S = 0.5


class GlobalKillSwitch:
    def __init__(
        self,
        on_kill: Callable[[], None],
        window_s: float = DOUBLE_PRESS_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.on_kill = on_kill
        self.window_s = float(window_s)
        self._clock = clock
        self._gate = threading.Lock()
        self._last_esc: Optional[float] = None
        self._listener: Any = None

    def handle_escape(self) -> bool:
        """Register one Esc press; returns True when it completed a double press."""
        with self._gate:
            now = self._clock()
            prev = self._last_esc
            self._last_esc = now
            fired = prev is not None and (now - prev) <= self.window_s

        if fired:
            logger.warning("[kill] double Esc detected; stopping")
            try:
                self.on_kill()
            except Exception as e:
                logger.error("[kill] stop callback failed: %s", e)
        return fired

    def _on_key_press(self, key: Any) -> None:
        if getattr(key, "name", None) == "esc":
            self.handle_escape()

    def start(self) -> None:
        # pynput needs a display/accessibility session; import at start time only.
        from pynput import keyboard

        with self._gate:
            if self._listener is not None:
                return
            self._listener = keyboard.Listener(on_press=self._on_key_press)
            self._listener.daemon = True
            self._listener.start()
        logger.info("[kill] listening (double Esc to stop)")

    def stop(self) -> None:
        with self._gate:
            listener, self._listener = self._listener, None
        if listener is not None:
            listener.stop()
