"""
run_control.py

Small pieces of shared run state: the arm/disarm latch, the cached plan and
the cooperative cancellation token that every suspension point of a goal run
honors.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, Optional, TypeVar

from action_models import PlanModel

T = TypeVar("T")


class GoalCancelledError(Exception):
    """The current run was stopped, superseded, or the operator declined."""


class DisarmedError(RuntimeError):
    """Execution was attempted while the arm latch is off."""


class ArmState:
    def __init__(self, armed: bool = False):
        self._lock = threading.Lock()
        self._armed = bool(armed)

    @property
    def is_armed(self) -> bool:
        with self._lock:
            return self._armed

    def arm(self) -> None:
        with self._lock:
            self._armed = True

    def disarm(self) -> None:
        with self._lock:
            self._armed = False


class PlanContext:
    """Holds the most recent plan; reused only for the same goal text (case-insensitive)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._plan: Optional[PlanModel] = None
        self._goal: Optional[str] = None

    def get_for_goal(self, goal: str) -> Optional[PlanModel]:
        with self._lock:
            if self._plan is None or self._goal is None:
                return None
            if self._goal.strip().lower() != (goal or "").strip().lower():
                return None
            return self._plan

    def set(self, goal: str, plan: PlanModel) -> None:
        with self._lock:
            self._goal = goal
            self._plan = plan

    def clear(self) -> None:
        with self._lock:
            self._goal = None
            self._plan = None


class CancellationToken:
    """
    Thread-safe cancellation flag with asyncio helpers.

    cancel() may be called from any thread (kill switch, UI callback). Async
    waits poll the flag so an in-flight oracle call or settle delay unwinds
    within one poll interval.
    """

    POLL_INTERVAL_S = 0.05

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GoalCancelledError("Run cancelled.")

    async def wait_for(self, aw: Awaitable[T]) -> T:
        """Await `aw`, abandoning it with GoalCancelledError as soon as the token fires."""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(aw)
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=self.POLL_INTERVAL_S)
                if done:
                    return task.result()
                if self._event.is_set():
                    raise GoalCancelledError("Run cancelled.")
        finally:
            if not task.done():
                task.cancel()

    async def sleep(self, seconds: float) -> None:
        self.raise_if_cancelled()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, float(seconds))
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.POLL_INTERVAL_S, remaining))
            self.raise_if_cancelled()
