from __future__ import annotations

"""
agent_config.py

Environment-driven settings and logging for the desktop autopilot.

Every module gets its logger from setup_logger(); the level comes from
AUTOPILOT_LOG_LEVEL (default INFO). AgentSettings.from_env() collects the
knobs the CLI wires into the orchestrator. Call load_dotenv() before
from_env() when a .env file should be honored.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional


# -----------------------------
# Env helpers
# -----------------------------
def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return float(v)
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return int(v)
    except Exception:
        return default


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip()


def _env_list(name: str, default: Optional[List[str]] = None) -> List[str]:
    v = os.getenv(name)
    if v is None:
        return list(default or [])
    return [p.strip() for p in v.split(",") if p.strip()]


# -----------------------------
# Logging
# -----------------------------
def _parse_log_level(s: str, default: int = logging.INFO) -> int:
    if not s:
        return default
    s = s.strip().upper()
    return {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
    }.get(s, default)


def setup_logger(name: str) -> logging.Logger:
    level = _parse_log_level(_env_str("AUTOPILOT_LOG_LEVEL", "INFO"), default=logging.INFO)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    ch = logging.StreamHandler()
    ch.setLevel(level)
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    ch.setFormatter(formatter)
    logger.addHandler(ch)
    return logger


# -----------------------------
# Settings
# -----------------------------
DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_SELF_PROCESSES = ["Terminal", "iTerm2", "Python"]


@dataclass
class AgentSettings:
    anthropic_api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    max_tokens: int = 1024
    ocr_url: str = ""
    ocr_timeout_s: int = 60
    allowed_processes: List[str] = field(default_factory=list)
    self_processes: List[str] = field(default_factory=lambda: list(DEFAULT_SELF_PROCESSES))
    auto_approve: bool = True
    type_delay_s: float = 0.0
    capture_interval_s: float = 3.0
    command_timeout_s: float = 10.0
    results_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "AgentSettings":
        return cls(
            anthropic_api_key=_env_str("ANTHROPIC_API_KEY", "") or None,
            model=_env_str("AUTOPILOT_MODEL", DEFAULT_MODEL),
            max_tokens=_env_int("AUTOPILOT_MAX_TOKENS", 1024),
            ocr_url=_env_str("AUTOPILOT_OCR_URL", ""),
            ocr_timeout_s=_env_int("AUTOPILOT_OCR_TIMEOUT_S", 60),
            allowed_processes=_env_list("AUTOPILOT_ALLOWED_PROCESSES"),
            self_processes=_env_list("AUTOPILOT_SELF_PROCESSES", DEFAULT_SELF_PROCESSES),
            auto_approve=_env_bool("AUTOPILOT_AUTO_APPROVE", True),
            type_delay_s=_env_float("AUTOPILOT_TYPE_DELAY_S", 0.0),
            capture_interval_s=_env_float("AUTOPILOT_CAPTURE_INTERVAL_S", 3.0),
            command_timeout_s=_env_float("AUTOPILOT_COMMAND_TIMEOUT_S", 10.0),
            results_dir=_env_str("AUTOPILOT_RESULTS_DIR", "") or None,
        )
