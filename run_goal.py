#!/usr/bin/env python3
"""
run_goal.py

Console entry point: plan a natural-language goal and drive it on the local
macOS desktop.

Usage:
  python run_goal.py "Open TextEdit and type hello" --arm
  python run_goal.py "..." --arm --confirm          # ask before risky actions
  python run_goal.py "..." --arm --allow TextEdit --allow Safari

Safety:
- Nothing runs unless --arm is given.
- Press Esc twice within half a second to stop the run.
- Only allowlisted apps receive synthesized input.

Exit codes: 0 completed, 1 failed, 2 stopped.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from dotenv import load_dotenv

from agent_config import AgentSettings, setup_logger
from confirmation import ConsoleConfirmationService, UserPreferences
from desktop_agent import DesktopActionExecutor
from goal_planner import AnthropicActionService, AnthropicPlanService
from kill_switch import GlobalKillSwitch
from observation import ObservationService
from orchestrator import GoalOrchestrator
from policy import DefaultPolicyEngine, PolicyEnforcedExecutor
from run_control import ArmState, DisarmedError, GoalCancelledError, PlanContext
from text_finder import OcrTextFinder

logger = setup_logger("RunGoal")


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Plan and execute a desktop goal.")
    ap.add_argument("goal", help="Natural-language goal, e.g. 'Open TextEdit and type hello'")
    ap.add_argument("--arm", action="store_true", help="Allow the agent to act on the desktop")
    approve = ap.add_mutually_exclusive_group()
    approve.add_argument("--auto-approve", dest="auto_approve", action="store_true", default=None,
                         help="Approve confirmation-gated actions without asking")
    approve.add_argument("--confirm", dest="auto_approve", action="store_false",
                         help="Ask on the console before confirmation-gated actions")
    ap.add_argument("--allow", action="append", default=None, metavar="PROCESS",
                    help="Allowlisted process name (repeatable); defaults to a built-in list")
    ap.add_argument("--ocr-url", default=None, help="OCR gateway base URL for click_text")
    ap.add_argument("--results-dir", default=None, help="Write a JSON run report here")
    ap.add_argument("--model", default=None, help="Anthropic model id")
    return ap.parse_args(argv)


def build_orchestrator(settings: AgentSettings, arm_state: ArmState) -> GoalOrchestrator:
    # GUI backends import pyautogui/pynput, which need a display session
    from mac_desktop import MacAccessibility, MacWindowManager, PyAutoGuiInput

    windows = MacWindowManager()
    preferences = UserPreferences(auto_approve=settings.auto_approve)
    policy = DefaultPolicyEngine(settings.allowed_processes)

    text_finder = None
    if settings.ocr_url:
        text_finder = OcrTextFinder(windows, settings.ocr_url, timeout_s=settings.ocr_timeout_s)

    inner = DesktopActionExecutor(
        windows,
        PyAutoGuiInput(type_delay_s=settings.type_delay_s),
        MacAccessibility(windows),
        text_finder,
        self_processes=settings.self_processes,
        command_timeout_s=settings.command_timeout_s,
    )
    executor = PolicyEnforcedExecutor(
        inner,
        policy,
        windows,
        is_auto_approve=lambda: preferences.auto_approve,
        self_processes=settings.self_processes,
    )

    return GoalOrchestrator(
        arm_state=arm_state,
        plan_context=PlanContext(),
        plan_service=AnthropicPlanService(settings.anthropic_api_key, settings.model),
        action_service=AnthropicActionService(
            settings.anthropic_api_key,
            settings.model,
            max_tokens=settings.max_tokens,
            self_processes=settings.self_processes,
        ),
        executor=executor,
        policy=policy,
        confirmation=ConsoleConfirmationService(preferences),
        observation=ObservationService(windows, windows, capture_interval_s=settings.capture_interval_s),
        results_dir=settings.results_dir,
    )


def main(argv=None) -> int:
    load_dotenv()
    args = parse_args(argv)

    settings = AgentSettings.from_env()
    if args.auto_approve is not None:
        settings.auto_approve = args.auto_approve
    if args.allow:
        settings.allowed_processes = list(args.allow)
    if args.ocr_url:
        settings.ocr_url = args.ocr_url
    if args.results_dir:
        settings.results_dir = args.results_dir
    if args.model:
        settings.model = args.model

    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY not set; running with the offline demo planner")

    arm_state = ArmState(armed=args.arm)
    orchestrator = build_orchestrator(settings, arm_state)

    kill_switch = GlobalKillSwitch(on_kill=orchestrator.stop)
    try:
        kill_switch.start()
    except Exception as e:
        logger.warning("Kill switch unavailable: %s", e)

    try:
        result = asyncio.run(orchestrator.run_goal(args.goal))
        logger.info("Goal finished: %s", result.state.value)
        return 0
    except DisarmedError as e:
        logger.error("%s Re-run with --arm.", e)
        return 1
    except GoalCancelledError as e:
        logger.warning("Goal stopped: %s", e)
        return 2
    except KeyboardInterrupt:
        orchestrator.stop()
        logger.warning("Interrupted")
        return 2
    except Exception as e:
        logger.error("Goal failed: %s", e)
        return 1
    finally:
        kill_switch.stop()


if __name__ == "__main__":
    sys.exit(main())
