#!/usr/bin/env python3
from __future__ import annotations

"""
orchestrator.py

Goal Orchestrator: turns a natural-language goal into a plan and drives it
step by step through the policy-gated executor.

State machine:
    Idle -> Planning -> Ready -> Executing <-> WaitingConfirmation
         -> Completed | Failed | Stopped -> Idle

Per step (at most 15 actions):
    observe -> propose action -> loop check -> confirm if needed
    -> execute with retries -> record -> settle -> check completion

Design:
- Single flight: starting a run cancels the previous one. State writes from a
  superseded run are dropped.
- Steps are best effort. A step that hits the action budget or keeps
  repeating itself is abandoned and the run moves on.
- The run fails only when it is disarmed, when the operator declines a
  confirmation (reported as Stopped), or when orchestration itself raises.

Logging policy:
- INFO: step-level progress
- WARNING: refusals, retries, abandoned steps
- DEBUG: oracle payloads (enable via AUTOPILOT_LOG_LEVEL=DEBUG)
"""

import asyncio
import json
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Protocol

from action_models import (
    ERROR_UNKNOWN,
    Action,
    ActionType,
    AgentState,
    ExecutionResult,
    Observation,
    PlanModel,
    PlanStep,
    RiskLevel,
    StepCompletionResult,
)
from agent_config import setup_logger
from interaction_history import InteractionHistory
from policy import ActionExecutor, DefaultPolicyEngine
from run_control import ArmState, CancellationToken, DisarmedError, GoalCancelledError, PlanContext

logger = setup_logger("GoalOrchestrator")

MAX_ACTIONS_PER_STEP = 15
REPEAT_THRESHOLD = 3
MAX_ATTEMPTS = 3
RETRY_BASE_DELAY_S = 0.25
SETTLE_LAUNCH_S = 1.5
SETTLE_DEFAULT_S = 0.3

SleepFn = Callable[[float], Awaitable[None]]

StepOutcome = Literal["completed", "done", "abandoned_repeat", "exhausted"]


# -----------------------------------------------------------------------------
# Collaborator contracts
# -----------------------------------------------------------------------------
class PlanService(Protocol):
    async def generate_plan(self, goal: str) -> PlanModel: ...


class ActionService(Protocol):
    async def get_next_action(
        self,
        step: PlanStep,
        observation: Observation,
        goal_text: Optional[str] = None,
        history: Optional[InteractionHistory] = None,
    ) -> Action: ...

    async def check_step_completion(
        self, step: PlanStep, observation: Observation, goal_text: Optional[str] = None
    ) -> StepCompletionResult: ...


class ObservationProvider(Protocol):
    def observe(self, last_result: Optional[ExecutionResult] = None) -> Observation: ...


class ConfirmationService(Protocol):
    async def request_confirmation(self, action: Action) -> bool: ...

    async def request_manual_takeover(self, reason: str) -> None: ...


# -----------------------------------------------------------------------------
# Results models
# -----------------------------------------------------------------------------
@dataclass
class StepResult:
    step_id: int
    description: str
    outcome: StepOutcome
    actions_used: int
    last_error: Optional[str]
    timing_ms: int
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class GoalRunResult:
    run_id: str
    goal: str
    state: AgentState
    total_steps: int
    step_results: List[StepResult]
    total_time_ms: int
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "goal": self.goal,
            "state": self.state.value,
            "total_steps": self.total_steps,
            "total_time_ms": self.total_time_ms,
            "error": self.error,
            "timestamp": self.timestamp,
            "step_results": [
                {
                    "step_id": r.step_id,
                    "description": r.description,
                    "outcome": r.outcome,
                    "actions_used": r.actions_used,
                    "last_error": r.last_error,
                    "timing_ms": r.timing_ms,
                    "timestamp": r.timestamp,
                }
                for r in self.step_results
            ],
        }


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
_SIGNATURE_KEYS = (
    "text", "command", "process", "title", "url", "cell", "keys",
    "automation_id", "name", "rx", "ry", "to_rx", "to_ry", "x", "y", "to_x", "to_y",
    "direction", "amount", "ms",
)


def _sig_value(v: Any) -> str:
    if isinstance(v, (list, tuple)):
        return "+".join(str(x) for x in v)
    return str(v)


def action_signature(action: Action) -> str:
    """Type plus salient parameters, e.g. "click_coordinates[rx=0.5,ry=0.5]"."""
    parts = [
        f"{k}={_sig_value(action.parameters[k])}"
        for k in _SIGNATURE_KEYS
        if k in action.parameters and action.parameters[k] not in (None, "")
    ]
    if isinstance(action.parameters.get("path"), list):
        parts.append(f"path={len(action.parameters['path'])}")
    return f"{action.action_type.value}[{','.join(parts)}]"


def settle_delay_s(action: Action) -> float:
    if action.action_type in {ActionType.WIN_RUN, ActionType.NAVIGATE_URL}:
        return SETTLE_LAUNCH_S
    return SETTLE_DEFAULT_S


async def execute_with_retries(
    executor: ActionExecutor,
    action: Action,
    token: CancellationToken,
    max_attempts: int = MAX_ATTEMPTS,
    base_delay_s: float = RETRY_BASE_DELAY_S,
    sleep: Optional[SleepFn] = None,
) -> ExecutionResult:
    """
    Up to `max_attempts` tries with linear backoff (base * attempt) between them.
    Every failure is retried, policy refusals included: each attempt re-reads the
    foreground. The final failure keeps the last attempt's error_type.
    """
    sleep = sleep or token.sleep
    last: Optional[ExecutionResult] = None

    for attempt in range(1, max_attempts + 1):
        token.raise_if_cancelled()
        try:
            logger.info("[orch] execute %s attempt %d/%d", action.action_type.value, attempt, max_attempts)
            result = await executor.execute(action)
            if result.success:
                return result
            last = result
            logger.warning("[orch] action failed: %s", result.error_message)
        except GoalCancelledError:
            raise
        except Exception as e:
            if attempt >= max_attempts:
                return ExecutionResult.fail(ERROR_UNKNOWN, f"Action failed after retries: {e}")
            logger.warning("[orch] action threw on attempt %d/%d: %s", attempt, max_attempts, e)
            last = ExecutionResult.fail(ERROR_UNKNOWN, str(e))

        if attempt < max_attempts:
            await sleep(base_delay_s * attempt)

    reason = last.error_message if last is not None else None
    return ExecutionResult.fail(
        (last.error_type if last is not None else None) or ERROR_UNKNOWN,
        f"Action failed after retries: {reason}" if reason else "Action failed after retries",
    )


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------
class GoalOrchestrator:
    def __init__(
        self,
        *,
        arm_state: ArmState,
        plan_context: PlanContext,
        plan_service: PlanService,
        action_service: ActionService,
        executor: ActionExecutor,
        policy: DefaultPolicyEngine,
        confirmation: ConfirmationService,
        observation: ObservationProvider,
        max_actions_per_step: int = MAX_ACTIONS_PER_STEP,
        repeat_threshold: int = REPEAT_THRESHOLD,
        results_dir: Optional[str] = None,
        sleep: Optional[SleepFn] = None,
    ):
        self.arm_state = arm_state
        self.plan_context = plan_context
        self.plan_service = plan_service
        self.action_service = action_service
        self.executor = executor
        self.policy = policy
        self.confirmation = confirmation
        self.observation = observation
        self.max_actions_per_step = int(max_actions_per_step)
        self.repeat_threshold = int(repeat_threshold)
        self._sleep_override = sleep

        self.results_dir = Path(results_dir) if results_dir else None
        if self.results_dir:
            self.results_dir.mkdir(parents=True, exist_ok=True)

        self._gate = threading.Lock()
        self._token: Optional[CancellationToken] = None
        self._state = AgentState.IDLE
        self.last_result: Optional[GoalRunResult] = None

    # -------------------------
    # State
    # -------------------------
    @property
    def state(self) -> AgentState:
        with self._gate:
            return self._state

    def _set_state(self, token: CancellationToken, state: AgentState) -> None:
        with self._gate:
            if self._token is not token:
                return
            if self._state != state:
                logger.debug("[orch] state %s -> %s", self._state.value, state.value)
            self._state = state

    def stop(self) -> None:
        with self._gate:
            token = self._token
        if token is not None:
            logger.info("[orch] stop requested")
            token.cancel()

    async def _sleep(self, token: CancellationToken, seconds: float) -> None:
        if self._sleep_override is not None:
            token.raise_if_cancelled()
            await self._sleep_override(seconds)
            token.raise_if_cancelled()
            return
        await token.sleep(seconds)

    # -------------------------
    # Execution
    # -------------------------
    async def run_goal(self, goal: str) -> GoalRunResult:
        token = CancellationToken()
        with self._gate:
            if self._token is not None:
                logger.info("[orch] superseding in-flight run")
                self._token.cancel()
            self._token = token

        t0 = time.time()
        run_id = f"goal_{int(t0 * 1000)}"
        step_results: List[StepResult] = []
        total_steps = 0
        final_state = AgentState.FAILED
        error: Optional[str] = None

        logger.info("[orch] start run_id=%s goal=%r", run_id, goal)
        try:
            self._set_state(token, AgentState.PLANNING)
            plan = self.plan_context.get_for_goal(goal)
            if plan is None:
                plan = await token.wait_for(self.plan_service.generate_plan(goal))
                self.plan_context.set(goal, plan)
            else:
                logger.info("[orch] reusing cached plan")

            steps = plan.ordered_steps()
            total_steps = len(steps)
            self._set_state(token, AgentState.READY)

            if not self.arm_state.is_armed:
                logger.warning("[orch] disarmed; refusing to execute plan")
                raise DisarmedError("Agent must be armed before running a plan.")

            self._set_state(token, AgentState.EXECUTING)
            for i, step in enumerate(steps, start=1):
                token.raise_if_cancelled()
                logger.info("[orch] step %d/%d id=%d %s", i, total_steps, step.id, step.description)
                step_results.append(await self._run_step(step, goal, token))

            final_state = AgentState.COMPLETED
            self._set_state(token, final_state)
            logger.info("[orch] goal completed")

        except (GoalCancelledError, asyncio.CancelledError) as e:
            final_state = AgentState.STOPPED
            error = str(e) or "Run cancelled."
            self._set_state(token, final_state)
            logger.warning("[orch] execution stopped: %s", error)
            raise

        except Exception as e:
            final_state = AgentState.FAILED
            error = str(e) or type(e).__name__
            self._set_state(token, final_state)
            logger.error("[orch] execution failed: %s", error)
            await self.confirmation.request_manual_takeover(error)
            raise

        finally:
            total_ms = int((time.time() - t0) * 1000)
            result = GoalRunResult(
                run_id=run_id,
                goal=goal,
                state=final_state,
                total_steps=total_steps,
                step_results=step_results,
                total_time_ms=total_ms,
                error=error,
            )
            with self._gate:
                # superseded runs only write their own report
                if self._token is token:
                    self._token = None
                    if not self._state.is_terminal:
                        self._state = AgentState.IDLE
                    self.last_result = result

            self._save_result(result)
            logger.info("[orch] done state=%s steps=%d time=%.2fs", final_state.value, len(step_results), total_ms / 1000.0)

        return result

    async def _run_step(self, step: PlanStep, goal: str, token: CancellationToken) -> StepResult:
        t0 = time.time()
        history = InteractionHistory()
        actions_used = 0
        outcome: StepOutcome = "exhausted"
        last_error: Optional[str] = None

        while actions_used < self.max_actions_per_step:
            token.raise_if_cancelled()
            actions_used += 1

            obs = self.observation.observe()
            action = await token.wait_for(self.action_service.get_next_action(step, obs, goal, history))

            if action.action_type == ActionType.DONE:
                logger.info("[orch] step %d: oracle signaled done", step.id)
                outcome = "done"
                break

            signature = action_signature(action)
            if history.has_repeated_action(action.action_type.value, signature, self.repeat_threshold):
                logger.warning("[orch] step %d: repeated action %s; moving to next step", step.id, signature)
                outcome = "abandoned_repeat"
                break

            needs_confirmation = (
                self.policy.requires_confirmation(action)
                or step.requires_confirmation
                or step.risk_level == RiskLevel.HIGH
            )
            if needs_confirmation:
                self._set_state(token, AgentState.WAITING_CONFIRMATION)
                approved = await token.wait_for(self.confirmation.request_confirmation(action))
                if not approved:
                    raise GoalCancelledError("User declined confirmation.")
                self._set_state(token, AgentState.EXECUTING)

            result = await execute_with_retries(
                self.executor,
                action,
                token,
                sleep=(lambda s: self._sleep(token, s)),
            )
            history.record_action(action.action_type.value, f"{signature} {result.details or ''}".strip(), result.success)

            if result.success:
                logger.info("[orch] action succeeded: %s", result.details)
            else:
                last_error = result.error_message
                logger.warning("[orch] action failed: %s; checking completion anyway", result.error_message)

            await self._sleep(token, settle_delay_s(action))

            post = self.observation.observe(result)
            logger.info("[orch] checking step %d completion (action %d/%d)", step.id, actions_used, self.max_actions_per_step)
            completion = await token.wait_for(self.action_service.check_step_completion(step, post, goal))
            if completion.is_complete:
                logger.info("[orch] step %d verified complete: %s", step.id, completion.reason)
                outcome = "completed"
                break
            logger.info(
                "[orch] step %d not complete: %s. Suggested: %s",
                step.id, completion.reason, completion.suggested_next_action,
            )

        if outcome == "exhausted":
            logger.warning("[orch] step %d did not complete after %d actions; moving on", step.id, self.max_actions_per_step)

        return StepResult(
            step_id=step.id,
            description=step.description,
            outcome=outcome,
            actions_used=actions_used,
            last_error=last_error,
            timing_ms=int((time.time() - t0) * 1000),
        )

    # -------------------------
    # Persistence
    # -------------------------
    def _save_result(self, result: GoalRunResult) -> None:
        if self.results_dir is None:
            return
        fname = f"{result.run_id}_{result.timestamp.replace(':', '-').replace('.', '-')}.json"
        path = self.results_dir / fname
        try:
            path.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
            logger.info("[orch] saved result %s", path)
        except Exception as e:
            logger.error("[orch] failed to save result: %s", e)
