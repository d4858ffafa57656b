"""
action_models.py

Data model shared by the executor, the policy gate and the orchestrator.

Actions arrive from the action-proposal oracle as loosely typed JSON. They are
parsed into an immutable Action whose parameter bag is validated lazily,
per action type, through the *Params schemas below. Unknown fields are
ignored; fields of the wrong shape raise ActionParameterError, which the
executor turns into a failed ExecutionResult.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

import geometry


# =============================================================================
# Enums
# =============================================================================

class ActionType(str, Enum):
    FOCUS_WINDOW = "focus_window"
    CLICK_COORDINATES = "click_coordinates"
    CLICK_GRID = "click_grid"
    CLICK_AND_TYPE = "click_and_type"
    CLICK_UIA = "click_uia"
    TYPE_TEXT = "type_text"
    HOTKEY = "hotkey"
    WAIT = "wait"
    VERIFY = "verify"
    NAVIGATE_URL = "navigate_url"
    SCROLL = "scroll"
    RUN_COMMAND = "run_command"
    WIN_RUN = "win_run"
    CLICK_TEXT = "click_text"
    DONE = "done"

    @classmethod
    def from_wire(cls, value: Any) -> "ActionType":
        """Lenient parse: accepts enum members, snake_case, CamelCase; unknown -> VERIFY."""
        if isinstance(value, cls):
            return value
        key = "".join(c for c in str(value or "").lower() if c.isalnum())
        if not key:
            return cls.VERIFY
        for member in cls:
            if member.value.replace("_", "") == key:
                return member
        return cls.VERIFY


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Any) -> "RiskLevel":
        if isinstance(value, cls):
            return value
        s = str(value or "").strip().lower()
        for member in cls:
            if member.value == s:
                return member
        return cls.MEDIUM


class AgentState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    READY = "ready"
    EXECUTING = "executing"
    WAITING_CONFIRMATION = "waiting_confirmation"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in {AgentState.COMPLETED, AgentState.FAILED, AgentState.STOPPED}


# =============================================================================
# Errors
# =============================================================================

class ActionParameterError(ValueError):
    """Raised when an action's parameter bag does not fit its schema."""


# =============================================================================
# Per-action parameter schemas
# =============================================================================

def _lenient_int(v: Any, default: int) -> int:
    try:
        return int(float(v))
    except (TypeError, ValueError):
        return default


class _Params(BaseModel):
    model_config = ConfigDict(extra="ignore")


class FocusWindowParams(_Params):
    title: Optional[str] = None
    process: Optional[str] = None


class ClickCoordinatesParams(_Params):
    x: Optional[float] = None
    y: Optional[float] = None
    to_x: Optional[float] = None
    to_y: Optional[float] = None
    rx: Optional[float] = None
    ry: Optional[float] = None
    to_rx: Optional[float] = None
    to_ry: Optional[float] = None
    path: Optional[List[Any]] = None
    drag_steps: int = geometry.DEFAULT_DRAG_STEPS
    drag_delay_ms: int = geometry.DEFAULT_DRAG_DELAY_MS
    move_delay_ms: int = geometry.DEFAULT_MOVE_DELAY_MS

    @field_validator("x", "y", "to_x", "to_y", "rx", "ry", "to_rx", "to_ry", mode="before")
    @classmethod
    def _coordinate(cls, v: Any) -> Optional[float]:
        # same notion of "numeric" as path points: no strings, bools or nan
        if v is None:
            return None
        n = geometry.as_number(v)
        if n is None:
            raise ValueError(f"not a number: {v!r}")
        return n

    @field_validator("drag_steps", mode="before")
    @classmethod
    def _drag_steps(cls, v: Any) -> int:
        return geometry.clamp_drag_steps(_lenient_int(v, 0))

    @field_validator("drag_delay_ms", mode="before")
    @classmethod
    def _drag_delay(cls, v: Any) -> int:
        return geometry.clamp_drag_delay(_lenient_int(v, 0))

    @field_validator("move_delay_ms", mode="before")
    @classmethod
    def _move_delay(cls, v: Any) -> int:
        return geometry.clamp_move_delay(_lenient_int(v, 0))

    @field_validator("path", mode="before")
    @classmethod
    def _path_list(cls, v: Any) -> Optional[List[Any]]:
        if v is None or isinstance(v, list):
            return v
        return None

    @property
    def has_relative(self) -> bool:
        return self.rx is not None and self.ry is not None

    @property
    def has_relative_to(self) -> bool:
        return self.to_rx is not None and self.to_ry is not None

    @property
    def has_absolute(self) -> bool:
        return self.x is not None and self.y is not None

    @property
    def has_absolute_to(self) -> bool:
        return self.to_x is not None and self.to_y is not None


class ClickGridParams(_Params):
    cell: Optional[int] = None
    text: str = ""

    @field_validator("text", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return "" if v is None else str(v)


class ClickUiaParams(_Params):
    automation_id: Optional[str] = None
    name: Optional[str] = None


class TypeTextParams(_Params):
    text: str = ""
    uia_automation_id: Optional[str] = None
    uia_name: Optional[str] = None

    @field_validator("text", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return "" if v is None else str(v)


class HotkeyParams(_Params):
    keys: List[str] = Field(default_factory=list)

    @field_validator("keys", mode="before")
    @classmethod
    def _keys(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [p.strip() for p in v.split("+") if p.strip()]
        return [str(k) for k in v]


class WaitParams(_Params):
    ms: int = 0

    @field_validator("ms", mode="before")
    @classmethod
    def _ms(cls, v: Any) -> int:
        return max(0, min(60000, _lenient_int(v, 0)))


class NavigateUrlParams(_Params):
    url: Optional[str] = None
    browser: Optional[str] = None


class ScrollParams(_Params):
    direction: str = "down"
    amount: str = ""

    @field_validator("direction", "amount", mode="before")
    @classmethod
    def _as_text(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()


class RunCommandParams(_Params):
    command: Optional[str] = None
    shell: Optional[str] = None


class WinRunParams(_Params):
    command: Optional[str] = None


class ClickTextParams(_Params):
    text: Optional[str] = None
    index: int = 0

    @field_validator("index", mode="before")
    @classmethod
    def _index(cls, v: Any) -> int:
        return _lenient_int(v, 0)


class NoParams(_Params):
    pass


PARAMS_BY_TYPE: Dict[ActionType, Type[_Params]] = {
    ActionType.FOCUS_WINDOW: FocusWindowParams,
    ActionType.CLICK_COORDINATES: ClickCoordinatesParams,
    ActionType.CLICK_GRID: ClickGridParams,
    ActionType.CLICK_AND_TYPE: ClickGridParams,
    ActionType.CLICK_UIA: ClickUiaParams,
    ActionType.TYPE_TEXT: TypeTextParams,
    ActionType.HOTKEY: HotkeyParams,
    ActionType.WAIT: WaitParams,
    ActionType.VERIFY: NoParams,
    ActionType.NAVIGATE_URL: NavigateUrlParams,
    ActionType.SCROLL: ScrollParams,
    ActionType.RUN_COMMAND: RunCommandParams,
    ActionType.WIN_RUN: WinRunParams,
    ActionType.CLICK_TEXT: ClickTextParams,
    ActionType.DONE: NoParams,
}


# =============================================================================
# Action
# =============================================================================

class Action(BaseModel):
    model_config = ConfigDict(frozen=True)

    action_type: ActionType
    parameters: Dict[str, Any] = Field(default_factory=dict)
    requires_confirmation: bool = False
    expected_result: Optional[str] = None

    @field_validator("action_type", mode="before")
    @classmethod
    def _action_type(cls, v: Any) -> ActionType:
        return ActionType.from_wire(v)

    @field_validator("parameters", mode="before")
    @classmethod
    def _parameters(cls, v: Any) -> Dict[str, Any]:
        return dict(v) if isinstance(v, dict) else {}

    def params(self) -> Any:
        schema = PARAMS_BY_TYPE[self.action_type]
        try:
            return schema.model_validate(self.parameters)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ActionParameterError(f"{self.action_type.value}: invalid parameters ({fields})") from e

    def get(self, key: str, default: Any = None) -> Any:
        return self.parameters.get(key, default)


def parse_action(obj: Dict[str, Any]) -> Action:
    """Build an Action from oracle JSON ({"action_type" | "type", "parameters", ...})."""
    obj = obj or {}
    return Action(
        action_type=obj.get("action_type") or obj.get("type") or "",
        parameters=obj.get("parameters") or obj.get("params") or {},
        requires_confirmation=bool(obj.get("requires_confirmation") or False),
        expected_result=obj.get("expected_result"),
    )


# =============================================================================
# Execution result
# =============================================================================

ERROR_PARAM = "param_error"
ERROR_ENVIRONMENT = "environment_error"
ERROR_POLICY_REFUSED = "policy_refused"
ERROR_PASSWORD_BLOCKED = "password_blocked"
ERROR_SELF_TYPING = "self_typing_blocked"
ERROR_SPAWN = "spawn_failed"
ERROR_COMMAND = "command_failed"
ERROR_UNKNOWN = "unknown_error"


@dataclass
class ExecutionResult:
    success: bool
    error_message: Optional[str] = None
    details: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def ok(cls, details: Optional[str] = None) -> "ExecutionResult":
        return cls(success=True, details=details)

    @classmethod
    def fail(cls, error_type: str, message: str, details: Optional[str] = None) -> "ExecutionResult":
        return cls(success=False, error_message=message, details=details, error_type=error_type)

    @property
    def is_policy_refusal(self) -> bool:
        return not self.success and self.error_type == ERROR_POLICY_REFUSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error_message": self.error_message,
            "details": self.details,
            "error_type": self.error_type,
        }


# =============================================================================
# Plan
# =============================================================================

class PlanStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    description: str = ""
    risk_level: RiskLevel = RiskLevel.MEDIUM
    requires_confirmation: bool = False
    validation: str = ""

    @field_validator("risk_level", mode="before")
    @classmethod
    def _risk(cls, v: Any) -> RiskLevel:
        return RiskLevel.parse(v)

    @field_validator("description", "validation", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return "" if v is None else str(v)


class PlanModel(BaseModel):
    goal: str = ""
    clarifying_questions: List[str] = Field(default_factory=list)
    required_apps: List[str] = Field(default_factory=list)
    steps: List[PlanStep] = Field(default_factory=list)

    def ordered_steps(self) -> List[PlanStep]:
        return sorted(self.steps, key=lambda s: s.id)


# =============================================================================
# Oracle / observation payloads
# =============================================================================

@dataclass
class StepCompletionResult:
    is_complete: bool
    reason: Optional[str] = None
    suggested_next_action: Optional[str] = None


@dataclass
class Observation:
    active_window_title: Optional[str] = None
    active_process: Optional[str] = None
    last_action_success: Optional[bool] = None
    error_message: Optional[str] = None
    screenshot_data_url: Optional[str] = field(default=None, repr=False)

    def to_prompt_dict(self) -> Dict[str, Any]:
        return {
            "active_window_title": self.active_window_title,
            "active_process": self.active_process,
            "last_action_success": self.last_action_success,
            "error_message": self.error_message,
        }
