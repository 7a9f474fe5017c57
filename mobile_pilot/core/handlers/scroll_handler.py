"""
Scroll Handler - SCROLL_TO and SLIDE steps

SLIDE drags across the resolved element (a "slide to confirm" bar) from 12%
to 88% of its width at mid height, retrying slightly above and below.
"""

import logging

from selenium.common.exceptions import WebDriverException

from mobile_pilot.core.flows.flow_models import PlanStep, StepOutcome, StepType
from mobile_pilot.core.resolver.gestures import scroll_page
from mobile_pilot.services.device_driver import element_rect
from mobile_pilot.utils.error_handler import PlanValidationError

logger = logging.getLogger(__name__)

SLIDE_START = 0.12
SLIDE_END = 0.88
SLIDE_ROW_OFFSETS = (0.0, 0.12, -0.12)
SLIDE_HOLD_MS = 150
SLIDE_MOVE_MS = 700


class ScrollHandler:
    """Scrolling and drag gestures"""

    def __init__(self, ctx):
        self.ctx = ctx
        self.driver = ctx.driver
        self.settings = ctx.settings

    def scroll_to(self, step: PlanStep) -> StepOutcome:
        direction = step.meta.get("scrollDir", "down").lower()
        hint = (step.target_hint or "").strip()
        if not hint:
            scroll_page(self.driver, direction, self.settings)
            self.ctx.dialogs.after_step()
            return StepOutcome(ok=True, notes=f"scrolled {direction}")

        if self.ctx.resolver.scroll_text_into_view_monotonic(hint, direction) or (
            direction == "down" and self.ctx.ui.ensure_visible(hint, self.settings.MAX_AUTO_SCROLLS, StepType.SCROLL_TO)
        ):
            self.ctx.dialogs.after_step()
            return StepOutcome(ok=True)
        return StepOutcome(ok=False, notes=f'SCROLL_TO failed: "{hint}"')

    def slide(self, step: PlanStep) -> StepOutcome:
        hint = step.hint_or_value
        if not hint:
            raise PlanValidationError("SLIDE step needs a target", step.index)
        self.ctx.ui.ensure_visible(hint, self.settings.MAX_AUTO_SCROLLS, StepType.SLIDE)

        attempts = self.settings.SLIDE_RETRY_ATTEMPTS
        for attempt in range(1, attempts + 1):
            self.ctx.check_stop()
            locator = self.ctx.resolver.resolve(hint) or self.ctx.resolver.rebuild_xpath_from_dump(hint)
            elements = self.driver.find_by_locator(locator) if locator else []
            rect = element_rect(elements[0]) if elements else None
            if rect is not None:
                for offset in SLIDE_ROW_OFFSETS:
                    if self._drag_across(rect, offset):
                        logger.info(f"[ScrollHandler] Slid '{hint}' (row offset {offset})")
                        self.ctx.dialogs.after_step()
                        return StepOutcome(ok=True, locator=locator)
            if attempt < attempts:
                self.ctx.sleep_ms(self.settings.SLIDE_RETRY_DELAY_MS)

        return StepOutcome(ok=False, notes=f'SLIDE failed: "{hint}"')

    def _drag_across(self, rect, offset: float) -> bool:
        y = int(rect["y"] + rect["height"] / 2 + rect["height"] * offset)
        start_x = int(rect["x"] + rect["width"] * SLIDE_START)
        end_x = int(rect["x"] + rect["width"] * SLIDE_END)
        before = self.ctx.page_hash()
        try:
            self.driver.drag(start_x, y, end_x, y, SLIDE_HOLD_MS, SLIDE_MOVE_MS)
        except WebDriverException as e:
            logger.debug(f"[ScrollHandler] Drag failed: {e}")
            return False
        return self.ctx.ui.changed_since(before, self.settings.TAP_CHANGE_WINDOW_MS)
