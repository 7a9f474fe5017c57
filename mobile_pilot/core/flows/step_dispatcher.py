"""
Step Dispatcher - routes each plan step to its handler
"""

import logging
from typing import Callable, Dict

from mobile_pilot.core.flows.flow_models import PlanStep, StepOutcome, StepType
from mobile_pilot.core.handlers.assert_wait_handler import AssertWaitHandler
from mobile_pilot.core.handlers.input_handler import InputHandler
from mobile_pilot.core.handlers.nav_handler import NavHandler
from mobile_pilot.core.handlers.scroll_handler import ScrollHandler
from mobile_pilot.core.handlers.tap_handler import TapHandler
from mobile_pilot.core.handlers.toggle_handler import ToggleHandler

logger = logging.getLogger(__name__)


class StepDispatcher:
    """Maps step types to handler callables bound to one RunContext"""

    def __init__(self, ctx):
        self.ctx = ctx
        nav = NavHandler(ctx)
        waits = AssertWaitHandler(ctx)
        scroll = ScrollHandler(ctx)

        self.step_handlers: Dict[StepType, Callable[[PlanStep], StepOutcome]] = {
            StepType.LAUNCH_APP: nav.launch_app,
            StepType.TAP: TapHandler(ctx).handle,
            StepType.INPUT_TEXT: InputHandler(ctx).handle,
            StepType.SCROLL_TO: scroll.scroll_to,
            StepType.WAIT_TEXT: waits.wait_text,
            StepType.ASSERT_TEXT: waits.assert_text,
            StepType.CHECK: ToggleHandler(ctx).handle,
            StepType.SLIDE: scroll.slide,
            StepType.WAIT_OTP: waits.wait_otp,
            StepType.BACK: nav.back,
            StepType.SLEEP: nav.sleep,
            StepType.LABEL: nav.label,
            StepType.GOTO: nav.goto,
            StepType.IF_VISIBLE: nav.if_visible,
        }

    def dispatch(self, step: PlanStep) -> StepOutcome:
        handler = self.step_handlers.get(step.type)
        if not handler:
            raise ValueError(f"Unknown step type: {step.type}")

        outcome = handler(step)
        if not outcome.ok and not outcome.notes:
            outcome.notes = f"{step.type.value} failed"
        return outcome
