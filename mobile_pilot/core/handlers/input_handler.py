"""
Input Handler - INPUT_TEXT steps
"""

import logging
from typing import Any

from selenium.common.exceptions import WebDriverException

from mobile_pilot.core.flows.flow_models import PlanStep, StepOutcome, StepType
from mobile_pilot.core.resolver.gestures import hide_keyboard_if_open
from mobile_pilot.utils.error_handler import PlanValidationError
from mobile_pilot.utils.text_match import mask_value

logger = logging.getLogger(__name__)


class InputHandler:
    """Finds the field for a label and types the step value into it"""

    def __init__(self, ctx):
        self.ctx = ctx
        self.driver = ctx.driver
        self.settings = ctx.settings

    def handle(self, step: PlanStep) -> StepOutcome:
        hint = (step.target_hint or "").strip()
        if step.value is None:
            raise PlanValidationError("INPUT_TEXT step needs a value", step.index)
        value = step.value
        shown = mask_value(hint, value) if hint else "***"

        key = self.ctx.screen_key()
        saved = self.ctx.mem.find(StepType.INPUT_TEXT, hint, key)
        for locator in saved:
            elements = self.driver.find_by_locator(locator)
            if elements and self._type_into(elements[0], value):
                logger.info(f"[InputHandler] Typed '{shown}' into '{hint}' via memory")
                return self._finish(hint, locator, None, key)

        attempts = self.settings.INPUT_RETRY_ATTEMPTS
        for attempt in range(1, attempts + 1):
            self.ctx.check_stop()
            field = self.ctx.resolver.find_edit_text_for_label(hint)
            if field is not None:
                # Locator first: the field's text changes once typed into
                locator = self.ctx.xpath.to_locator_with(field) or self.ctx.ui.build_locator_for_element(field)
                if self._type_into(field, value):
                    logger.info(f"[InputHandler] Typed '{shown}' into '{hint}' (attempt {attempt})")
                    return self._finish(hint, locator, saved[0] if saved else None, key)
            logger.debug(f"[InputHandler] No field for '{hint}' (attempt {attempt}/{attempts})")
            if attempt < attempts:
                self.ctx.sleep_ms(self.settings.INPUT_RETRY_DELAY_MS)

        return StepOutcome(ok=False, notes=f'INPUT_TEXT failed: "{hint}"')

    def _type_into(self, field: Any, value: str) -> bool:
        try:
            field.click()
            field.clear()
            field.send_keys(value)
        except WebDriverException as e:
            logger.debug(f"[InputHandler] Typing failed: {e}")
            return False
        return True

    def _finish(self, hint, locator, prior, key) -> StepOutcome:
        self.ctx.dialogs.after_step()
        hide_keyboard_if_open(self.driver)
        self.ctx.mem.save(StepType.INPUT_TEXT, hint, locator, prior=prior, key=key)
        return StepOutcome(ok=True, locator=locator)
