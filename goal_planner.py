from __future__ import annotations

"""
goal_planner.py

Claude-backed oracles:
- AnthropicPlanService: goal text -> PlanModel
- AnthropicActionService: (step, observation, history) -> next Action, and the
  per-step completion verdict

Without an API key both fall back to deterministic demo behavior so the
runner can be exercised end to end offline (TextEdit template plan, scripted
actions, rule-based completion via step_validation).
"""

import json
import re
from typing import Any, Dict, List, Optional, Sequence

import anthropic

from action_models import (
    Action,
    ActionType,
    Observation,
    PlanModel,
    PlanStep,
    RiskLevel,
    StepCompletionResult,
    parse_action,
)
from agent_config import DEFAULT_MODEL, setup_logger
from desktop_io import is_self_process
from interaction_history import InteractionHistory
from step_validation import validate_step

logger = setup_logger("GoalPlanner")


class PlanGenerationError(RuntimeError):
    pass


# -----------------------------
# Model output helpers
# -----------------------------
def _extract_first_json(text: str) -> Optional[Dict[str, Any]]:
    if not text:
        return None

    cleaned = re.sub(r"```(?:json)?", "", text, flags=re.IGNORECASE).strip()

    try:
        obj = json.loads(cleaned)
        return obj if isinstance(obj, dict) else None
    except Exception:
        pass

    start = cleaned.find("{")
    if start == -1:
        return None

    s = cleaned[start:]
    depth = 0
    in_str = False
    escaped = False
    for i, ch in enumerate(s):
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                candidate = s[: i + 1]
                try:
                    obj = json.loads(candidate)
                    return obj if isinstance(obj, dict) else None
                except Exception:
                    return None
    return None


def _response_text(resp: Any) -> str:
    return "".join([c.text for c in (getattr(resp, "content", None) or []) if hasattr(c, "text")])


def build_content(prompt: str, screenshot_data_url: Optional[str]) -> List[Dict[str, Any]]:
    """Text prompt plus, when present, the screenshot as a base64 image block."""
    content: List[Dict[str, Any]] = []
    if screenshot_data_url and screenshot_data_url.startswith("data:") and ";base64," in screenshot_data_url:
        header, b64 = screenshot_data_url.split(";base64,", 1)
        media_type = header[len("data:"):] or "image/jpeg"
        content.append({"type": "image", "source": {"type": "base64", "media_type": media_type, "data": b64}})
    content.append({"type": "text", "text": prompt})
    return content


# -----------------------------
# Target-app heuristics (macOS app names)
# -----------------------------
def guess_target_process(step_description: str) -> Optional[str]:
    d = (step_description or "").lower()

    if "firefox" in d:
        return "Firefox"
    if "chrome" in d:
        return "Google Chrome"
    if "edge" in d and "edge case" not in d:
        return "Microsoft Edge"
    if "safari" in d:
        return "Safari"
    if any(k in d for k in ("browser", "website", "web page", ".com", ".gov", ".org", "http")):
        return "Safari"

    if (
        "textedit" in d
        or "notepad" in d
        or "save dialog" in d
        or "save the file" in d
        or "filename" in d
        or ("enter " in d and "file" in d)
    ):
        return "TextEdit"
    if "finder" in d or "documents folder" in d or "file explorer" in d:
        return "Finder"
    if "word" in d and "document" in d:
        return "Microsoft Word"
    if "excel" in d or "spreadsheet" in d:
        return "Microsoft Excel"
    if "powerpoint" in d or "presentation" in d:
        return "Microsoft PowerPoint"
    if "calculator" in d:
        return "Calculator"
    return None


# -----------------------------
# Demo (offline) behavior
# -----------------------------
def demo_plan(goal: str) -> PlanModel:
    g = (goal or "").lower()
    if "textedit" in g or "notepad" in g:
        return PlanModel(
            goal=goal,
            required_apps=["TextEdit"],
            steps=[
                PlanStep(id=1, description="Open TextEdit", risk_level=RiskLevel.LOW,
                         validation='active_window_title contains "Untitled"'),
                PlanStep(id=2, description="Type the message", risk_level=RiskLevel.LOW,
                         validation="last_action_success"),
                PlanStep(id=3, description="Save: Press Cmd+S", risk_level=RiskLevel.MEDIUM,
                         requires_confirmation=True, validation="last_action_success"),
                PlanStep(id=4, description="Save: Type filename test.txt", risk_level=RiskLevel.LOW,
                         validation="last_action_success"),
                PlanStep(id=5, description="Save: Press Enter", risk_level=RiskLevel.MEDIUM,
                         validation="last_action_success"),
            ],
        )

    return PlanModel(
        goal=goal,
        steps=[
            PlanStep(id=1, description="Unable to auto-generate a plan without an API key.",
                     risk_level=RiskLevel.HIGH, requires_confirmation=True, validation="last_action_success"),
        ],
    )


_DEMO_ACTIONS = [
    ("open textedit", {"action_type": "focus_window", "parameters": {"title": "", "process": "TextEdit"}}),
    ("type the message", {"action_type": "type_text", "parameters": {"text": "Hello from the desktop autopilot"}}),
    ("save: press cmd+s", {"action_type": "hotkey", "parameters": {"keys": ["cmd", "s"]}, "requires_confirmation": True}),
    ("save: type filename", {"action_type": "type_text", "parameters": {"text": "test.txt"}}),
    ("save: press enter", {"action_type": "hotkey", "parameters": {"keys": ["enter"]}}),
]


def demo_action(step: PlanStep) -> Action:
    d = step.description.lower()
    for needle, payload in _DEMO_ACTIONS:
        if needle in d:
            return parse_action(payload)
    logger.warning("[oracle] no demo action for step: %s", step.description)
    return Action(action_type=ActionType.WAIT, parameters={"ms": 500}, requires_confirmation=True)


# -----------------------------
# Prompts
# -----------------------------
PLAN_PROMPT = """Generate a detailed step-by-step plan to reach this goal on a macOS desktop: {goal}

Rules:
1. Break the goal into small atomic steps (10-20 steps is normal).
2. One action per step.
3. Focus or click into the target app before any typing.
4. Be specific about what to click, where to type and which keys to press.

Useful step forms:
- "Open [app] with Spotlight"
- "Focus on [app] window"
- "Click on [exact text or button]"
- "Type '[exact text]'"
- "Press [keys]" (Cmd+S, Enter, Tab)
- "Wait for [condition]"
- "Navigate to [URL]"

Validation expressions: "last_action_success" or 'active_window_title contains "X"'.

Return ONLY a JSON object, no markdown:
{{
  "goal": "<goal>",
  "clarifying_questions": [],
  "required_apps": ["<app>"],
  "steps": [
    {{"id": 1, "description": "...", "risk_level": "low|medium|high", "requires_confirmation": false, "validation": "last_action_success"}}
  ]
}}"""

ACTION_PROMPT = """Return the next automation action as STRICT JSON (no markdown, no code fences).
{goal_info}{history_info}
JSON keys: action_type, parameters, requires_confirmation (bool), expected_result (string)

Action types, best first:
1. win_run: command - opens an app through Spotlight ("TextEdit", "Calculator")
2. click_text: text, index (optional) - OCR-locates visible text and clicks it; preferred way to click
3. hotkey: keys (array) - ["tab"], ["enter"], ["cmd","l"], ["cmd","s"]
4. type_text: text - types into the focused field; focus the target app first
5. focus_window: process - bring an app to the front ("TextEdit", "Safari")
6. click_grid: cell (1-192) - fallback click; the screenshot grid has 16 columns x 12 rows
7. click_and_type: cell, text - select a field by grid cell and replace its contents
8. navigate_url: url, browser (optional)
9. scroll: direction ("up"/"down"), amount ("page" or a number)
10. wait: ms (500-1500)
11. run_command: command, shell - direct shell changes
12. click_coordinates: rx, ry in [0,1] of the window (to_rx/to_ry for a drag)
13. done - the step is already complete

Stay on the current step. Do not click ads, banners, account buttons or navigation menus the step
does not ask for. When the requested content is visible, return action_type "done".

Step: {step}
Observation: {observation}
"""

COMPLETION_PROMPT = """Look at the screenshot and decide whether this step has been completed.

{goal_info}Step goal: {step}
Expected validation: {validation}

Mark complete when the step's action has clearly been performed: the requested app is open,
content is visible, the file was saved, the form was submitted.
Mark incomplete only when the action clearly has not happened, an error is showing or the wrong
app is in front.

Respond with ONLY a JSON object: {{"is_complete": bool, "reason": string, "suggested_next_action": string}}"""


# -----------------------------
# Services
# -----------------------------
def _make_client(api_key: Optional[str], client: Any) -> Any:
    if client is not None:
        return client
    if api_key:
        return anthropic.AsyncAnthropic(api_key=api_key)
    return None


class AnthropicPlanService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 2000,
        client: Any = None,
    ):
        self.model = model
        self.max_tokens = int(max_tokens)
        self.claude = _make_client(api_key, client)

    async def generate_plan(self, goal: str) -> PlanModel:
        if self.claude is None:
            logger.warning("[oracle] no API key configured; using demo plan")
            return demo_plan(goal)

        resp = await self.claude.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": PLAN_PROMPT.format(goal=goal)}],
        )
        raw = _response_text(resp)
        j = _extract_first_json(raw)
        if not j or not isinstance(j.get("steps"), list):
            logger.debug("[oracle] unparsable plan: %r", raw[:500])
            raise PlanGenerationError("Planner returned no usable plan.")
        j.setdefault("goal", goal)
        plan = PlanModel.model_validate(j)
        logger.info("[oracle] plan steps=%d", len(plan.steps))
        return plan


class AnthropicActionService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 1024,
        self_processes: Sequence[str] = (),
        client: Any = None,
    ):
        self.model = model
        self.max_tokens = int(max_tokens)
        self.self_processes = list(self_processes)
        self.claude = _make_client(api_key, client)

    def _focus_override(self, step: PlanStep, observation: Observation) -> Optional[Action]:
        """Oracle calls run while the agent's own window is in front; steer back to the step's app."""
        active = (observation.active_process or "").strip()
        if not active or not is_self_process(active, self.self_processes):
            return None
        target = guess_target_process(step.description)
        if target is None or target.lower() == active.lower():
            return None
        return Action(
            action_type=ActionType.FOCUS_WINDOW,
            parameters={"title": "", "process": target},
            expected_result=f"Focus {target}",
        )

    async def get_next_action(
        self,
        step: PlanStep,
        observation: Observation,
        goal_text: Optional[str] = None,
        history: Optional[InteractionHistory] = None,
    ) -> Action:
        override = self._focus_override(step, observation)
        if override is not None:
            logger.info("[oracle] focus override -> %s", override.parameters.get("process"))
            return override

        if self.claude is None:
            return demo_action(step)

        goal_info = f"\nUser's original request: {goal_text}\n" if goal_text else ""
        history_info = f"\nRecent actions taken:\n{history.summary()}\n" if history is not None and len(history) else ""
        prompt = ACTION_PROMPT.format(
            goal_info=goal_info,
            history_info=history_info,
            step=step.description,
            observation=json.dumps(observation.to_prompt_dict()),
        )

        try:
            resp = await self.claude.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": build_content(prompt, observation.screenshot_data_url)}],
            )
            raw = _response_text(resp)
            j = _extract_first_json(raw)
            if not j:
                raise ValueError(f"no JSON object in model output: {raw[:200]!r}")
            action = parse_action(j)
            logger.info("[oracle] next action=%s", action.action_type.value)
            logger.debug("[oracle] params=%s", action.parameters)
            return action
        except Exception as e:
            logger.error("[oracle] action generation failed; using demo action: %s", e)
            return demo_action(step)

    async def check_step_completion(
        self,
        step: PlanStep,
        observation: Observation,
        goal_text: Optional[str] = None,
    ) -> StepCompletionResult:
        if self.claude is None:
            done = validate_step(step.validation, observation)
            return StepCompletionResult(is_complete=done, reason="Rule-based validation (no API key)")

        goal_info = f"User's original request: {goal_text}\n" if goal_text else ""
        prompt = COMPLETION_PROMPT.format(
            goal_info=goal_info,
            step=step.description,
            validation=step.validation or "N/A",
        )
        try:
            resp = await self.claude.messages.create(
                model=self.model,
                max_tokens=500,
                messages=[{"role": "user", "content": build_content(prompt, observation.screenshot_data_url)}],
            )
            j = _extract_first_json(_response_text(resp))
            if j is None:
                return StepCompletionResult(is_complete=False, reason="Failed to parse verification response")
            suggestion = j.get("suggested_next_action")
            return StepCompletionResult(
                is_complete=j.get("is_complete") is True,
                reason=j.get("reason"),
                suggested_next_action=str(suggestion) if suggestion else None,
            )
        except Exception as e:
            logger.warning("[oracle] completion check failed; assuming incomplete: %s", e)
            return StepCompletionResult(is_complete=False, reason="Verification failed")
