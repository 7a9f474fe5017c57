"""
Toggle Handler - CHECK steps

The step value is the desired state ("on"/"off" and friends); anything else
flips the toggle. A toggle already in the desired state is left untouched.
"""

import logging
import re
from typing import Any, Optional, Tuple

from mobile_pilot.core.flows.flow_models import Locator, PlanStep, StepOutcome, StepType, Strategy
from mobile_pilot.core.resolver.gestures import scroll_page
from mobile_pilot.core.resolver.ui_service import apply_checked_state

logger = logging.getLogger(__name__)

_ON_VALUES = ("on", "true", "yes", "1", "checked", "tick", "select", "enable", "enabled")
_OFF_VALUES = ("off", "false", "no", "0", "unchecked", "untick", "deselect", "disable", "disabled")

# Hints that name a toggle without naming its row
GENERIC_TOGGLE_RE = re.compile(r"^\s*(the\s+)?(switch|toggle|checkbox|check\s*box)\s*$", re.IGNORECASE)

LABEL_SCROLL_ATTEMPTS = 4


def parse_desired_state(value: Optional[str]) -> Optional[bool]:
    """True/False for on/off style values, None to flip."""
    v = (value or "").strip().lower()
    if v in _ON_VALUES:
        return True
    if v in _OFF_VALUES:
        return False
    return None


class ToggleHandler:
    """Drives switches and checkboxes to a desired state"""

    def __init__(self, ctx):
        self.ctx = ctx
        self.driver = ctx.driver
        self.settings = ctx.settings

    def handle(self, step: PlanStep) -> StepOutcome:
        hint = (step.target_hint or "").strip()
        desired = parse_desired_state(step.value)
        key = self.ctx.screen_key()

        saved = self.ctx.mem.find(StepType.CHECK, hint, key)
        for locator in saved:
            if self.ctx.ui.try_check_by_locator(locator, desired):
                logger.info(f"[ToggleHandler] '{hint}' via memory {locator.describe()}")
                return self._finish(hint, locator, None, key)
        prior = saved[0] if saved else None

        if GENERIC_TOGGLE_RE.match(hint):
            if self.ctx.ui.ensure_visible_checkable(self.settings.MAX_AUTO_SCROLLS):
                element = self.ctx.ui.nearest_checkable_near(self.ctx.last_tap_y)
                if element is not None:
                    return self._apply(hint, element, desired, prior, key)

        if self.ctx.vision.enabled:
            xpath = self.ctx.vision.find_toggle_for_label(hint) or self.ctx.vision.find_toggle_for_label(hint, slow=True)
            if xpath:
                found = self.driver.find_elements(Strategy.XPATH, xpath)
                if found:
                    logger.info(f"[ToggleHandler] '{hint}' located by vision")
                    return self._apply(hint, found[0], desired, prior, key, fallback_xpath=xpath)

        element = self.ctx.resolver.find_switch_or_checkable_for_label(hint, self.ctx.active_scope)
        if element is not None:
            return self._apply(hint, element, desired, prior, key)

        # Label may be below the fold
        for _ in range(LABEL_SCROLL_ATTEMPTS):
            self.ctx.check_stop()
            scroll_page(self.driver, "down", self.settings)
            self.ctx.ui.wait_for_stable_ui()
            element = self.ctx.resolver.find_switch_or_checkable_for_label(hint, self.ctx.active_scope)
            if element is not None:
                return self._apply(hint, element, desired, prior, key)

        return StepOutcome(ok=False, notes=f'CHECK failed: "{hint}"')

    def _apply(
        self,
        hint: str,
        element: Any,
        desired: Optional[bool],
        prior: Optional[Locator],
        key: Tuple[str, str],
        fallback_xpath: Optional[str] = None,
    ) -> StepOutcome:
        locator = self.ctx.xpath.to_locator_with(element)
        if locator is None:
            locator = (
                Locator(strategy=Strategy.XPATH, value=fallback_xpath)
                if fallback_xpath
                else self.ctx.ui.build_locator_for_element(element, hint)
            )
        clicked = apply_checked_state(element, desired)
        logger.info(f"[ToggleHandler] '{hint}' -> {desired} ({'clicked' if clicked else 'already set'})")
        return self._finish(hint, locator, prior, key)

    def _finish(self, hint, locator, prior, key) -> StepOutcome:
        self.ctx.dialogs.after_step()
        self.ctx.mem.save(StepType.CHECK, hint, locator, prior=prior, key=key)
        return StepOutcome(ok=True, locator=locator)
