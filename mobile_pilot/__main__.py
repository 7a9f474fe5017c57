"""
Mobile Pilot - command line entry point

    python -m mobile_pilot run --plan plan.json --udid emulator-5554
    python -m mobile_pilot run --goal 'enter username "demo" tap "Login"' --package com.example.app --autorun
"""

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from mobile_pilot.config.defaults import get_defaults, load_defaults_from_env
from mobile_pilot.core.flow_graph_store import FlowGraphStore
from mobile_pilot.core.flows.agent_runner import AgentRunner
from mobile_pilot.core.flows.flow_models import ActionPlan
from mobile_pilot.core.selector_memory import SelectorMemory
from mobile_pilot.ml_components.autorun_resolver import AutoRunResolver
from mobile_pilot.ml_components.quick_intent import parse_quick_intent
from mobile_pilot.services.device_driver import AppiumDeviceDriver
from mobile_pilot.services.llm_client import LanguageModelClient
from mobile_pilot.services.vision_client import VisionClient
from mobile_pilot.utils.error_handler import MobilePilotError, get_user_friendly_message

logger = logging.getLogger("mobile_pilot")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_STOPPED = 130


def load_plan(path: str) -> ActionPlan:
    with open(path, "r", encoding="utf-8") as f:
        plan = ActionPlan.model_validate(json.load(f))
    plan.validate_plan()
    return plan


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mobile_pilot", description="Run UI automation plans on an Android device")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Execute a plan or a goal")
    source = run.add_mutually_exclusive_group(required=True)
    source.add_argument("--plan", type=str, help="Path to an ActionPlan JSON file")
    source.add_argument("--goal", type=str, help="Natural-language goal")
    run.add_argument("--udid", type=str, default=None, help="Device serial")
    run.add_argument("--package", type=str, default=None, help="App package under test")
    run.add_argument("--activity", type=str, default=None, help="Launch activity")
    run.add_argument("--server", type=str, default=None, help="Appium server URL")
    run.add_argument("--autorun", action="store_true", help="Merge in plans inferred from recorded flows")
    run.add_argument("--no-vision", action="store_true", help="Do not call the vision service")
    run.add_argument("--llm", action="store_true", help="Use the language model for goals and tie-breaks")
    run.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser


def resolve_plan(args, graph_store: FlowGraphStore, llm: Optional[LanguageModelClient]) -> ActionPlan:
    user_plan = load_plan(args.plan) if args.plan else None
    goal = args.goal or (user_plan.title if user_plan else "")

    if user_plan is None and llm is not None and not parse_quick_intent(goal).steps:
        user_plan = llm.parse_intent(goal, package=args.package)

    return AutoRunResolver(graph_store).resolve(goal, args.package, user_plan, enabled=args.autorun)


def run_command(args) -> int:
    settings = get_defaults()

    data_dir = Path(settings.DATA_DIR)
    memory = SelectorMemory(data_dir=str(data_dir), settings=settings)
    graph_store = FlowGraphStore(str(data_dir / settings.GRAPH_DIR))
    llm = LanguageModelClient(settings=settings) if args.llm else None

    plan = resolve_plan(args, graph_store, llm)
    if not plan.steps:
        logger.error("Nothing to run: the goal produced no steps")
        return EXIT_CONFIG

    driver = AppiumDeviceDriver.create_session(
        args.server or settings.APPIUM_SERVER_URL,
        udid=args.udid,
        app_package=args.package,
        app_activity=args.activity,
    )

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())

    runner = AgentRunner(
        driver,
        memory=memory,
        graph_store=graph_store,
        vision_client=None if args.no_vision else VisionClient(settings=settings),
        llm_client=llm,
        settings=settings,
        runs_dir=str(data_dir / settings.RUNS_DIR),
        on_status=lambda message: print(message, flush=True),
        stop_signal=stop.is_set,
    )
    result = runner.run(plan)

    print(f"{result.title}: {result.successful_steps}/{result.total_steps} steps succeeded")
    if result.run_dir:
        print(f"Artifacts: {result.run_dir}")
    if result.stopped:
        return EXIT_STOPPED
    if not result.success:
        print(f"Failed: {result.error}")
        return EXIT_FAILED
    return EXIT_OK


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    load_defaults_from_env()

    try:
        return run_command(args)
    except (OSError, ValueError, ValidationError) as e:
        logger.error(f"Invalid plan: {e}")
        return EXIT_CONFIG
    except MobilePilotError as e:
        logger.error(get_user_friendly_message(e))
        return EXIT_CONFIG if e.code in ("PLAN_VALIDATION_ERROR", "LABEL_NOT_FOUND") else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
