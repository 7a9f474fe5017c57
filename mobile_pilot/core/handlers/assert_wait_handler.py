"""
Assert / Wait Handler - WAIT_TEXT, ASSERT_TEXT and WAIT_OTP steps
"""

import logging

from mobile_pilot.core.flows.flow_models import PlanStep, StepOutcome
from mobile_pilot.core.resolver.locator_resolver import LENGTH_PREFIX, REGEX_PREFIX
from mobile_pilot.utils.error_handler import ElementNotFoundError, PlanValidationError

logger = logging.getLogger(__name__)

DEFAULT_OTP_DIGITS = 6


class AssertWaitHandler:
    """Waits for text to appear on screen"""

    def __init__(self, ctx):
        self.ctx = ctx
        self.settings = ctx.settings

    def wait_text(self, step: PlanStep) -> StepOutcome:
        timeout = int(step.meta.get("timeoutMs", self.settings.WAIT_TEXT_TIMEOUT_MS))
        return self._wait_for(step, timeout, "WAIT_TEXT")

    def assert_text(self, step: PlanStep) -> StepOutcome:
        timeout = int(step.meta.get("timeoutMs", self.settings.ASSERT_TIMEOUT_MS))
        return self._wait_for(step, timeout, "ASSERT_TEXT")

    def wait_otp(self, step: PlanStep) -> StepOutcome:
        raw = (step.value or "").strip()
        digits = int(raw) if raw.isdigit() else DEFAULT_OTP_DIGITS
        timeout = int(step.meta.get("timeoutMs", self.settings.WAIT_OTP_TIMEOUT_MS))
        if self.ctx.resolver.wait_for_text(f"{LENGTH_PREFIX}{digits}", timeout):
            self.ctx.dialogs.after_step()
            return StepOutcome(ok=True, notes=f"otp digits={digits}")
        return StepOutcome(ok=False, notes=f"WAIT_OTP timeout: {digits} digits")

    def _wait_for(self, step: PlanStep, timeout_ms: int, kind: str) -> StepOutcome:
        query = step.hint_or_value
        if not query:
            raise PlanValidationError(f"{kind} step needs text", step.index)
        direction = step.meta.get("scrollDir", "down").lower()
        attempts = self.settings.WAIT_RETRY_ATTEMPTS

        for attempt in range(1, attempts + 1):
            self.ctx.check_stop()
            self.ctx.dialogs.after_step_silent(self.settings.DIALOG_PRECHECK_MS)
            if not self.ctx.resolver.text_present(query):
                self.ctx.resolver.scroll_text_into_view_monotonic(query, direction)

            if query.startswith(REGEX_PREFIX):
                # Patterns match the raw dump, there is no element to re-find
                if self.ctx.resolver.wait_for_text(query, timeout_ms):
                    self.ctx.dialogs.after_step()
                    return StepOutcome(ok=True, notes="regex match")
                logger.debug(f"[AssertWaitHandler] No match for {query} (attempt {attempt}/{attempts})")
            else:
                try:
                    locator = self.ctx.resolver.wait_for_element_present(query, timeout_ms)
                except ElementNotFoundError as e:
                    logger.debug(f"[AssertWaitHandler] {e.message} (attempt {attempt}/{attempts})")
                else:
                    locator = self.ctx.xpath.validate(locator) or locator
                    self.ctx.dialogs.after_step()
                    return StepOutcome(ok=True, locator=locator)
            if attempt < attempts:
                self.ctx.sleep_ms(self.settings.WAIT_RETRY_DELAY_MS)

        return StepOutcome(ok=False, notes=f"{kind} timeout: {query}")
