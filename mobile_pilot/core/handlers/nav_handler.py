"""
Navigation Handler - app launch, back, sleeps and plan control flow

LABEL / GOTO / IF_VISIBLE never touch the device beyond a presence probe;
they only steer the runner's program counter through StepOutcome.next_pc.
"""

import logging

from selenium.common.exceptions import WebDriverException

from mobile_pilot.core.flows.flow_models import PlanStep, StepOutcome
from mobile_pilot.utils.error_handler import (
    STOP_REQUESTED,
    LabelNotFoundError,
    PlanValidationError,
    StopRequested,
)

logger = logging.getLogger(__name__)


class NavHandler:
    """Handles LAUNCH_APP, BACK, SLEEP, LABEL, GOTO and IF_VISIBLE"""

    def __init__(self, ctx):
        self.ctx = ctx
        self.driver = ctx.driver
        self.settings = ctx.settings

    def launch_app(self, step: PlanStep) -> StepOutcome:
        package = step.hint_or_value
        if not package:
            raise PlanValidationError("LAUNCH_APP step needs a package", step.index)

        if self.driver.current_package() == package:
            logger.info(f"[NavHandler] {package} already in foreground")
            return StepOutcome(ok=True, notes="already running")

        try:
            self.driver.activate_app(package)
        except WebDriverException as e:
            logger.warning(f"[NavHandler] activate_app failed for {package}: {e}, trying monkey")
            try:
                self.driver.shell("monkey", ["-p", package, "-c", "android.intent.category.LAUNCHER", "1"])
            except WebDriverException as e2:
                logger.error(f"[NavHandler] Launch failed for {package}: {e2}")
                return StepOutcome(ok=False, notes=f"LAUNCH_APP failed for '{package}'")

        self.ctx.ui.wait_for_stable_ui()
        self.ctx.dialogs.after_step()
        return StepOutcome(ok=True)

    def back(self, step: PlanStep) -> StepOutcome:
        self.driver.back()
        return StepOutcome(ok=True)

    def sleep(self, step: PlanStep) -> StepOutcome:
        raw = (step.value or step.target_hint or "").strip()
        try:
            ms = int(raw) if raw else self.settings.DEFAULT_SLEEP_MS
        except ValueError:
            raise PlanValidationError(f"SLEEP duration must be milliseconds, got '{raw}'", step.index)

        try:
            self.ctx.sleep_ms(ms)
        except StopRequested:
            return StepOutcome(ok=False, notes=STOP_REQUESTED)
        return StepOutcome(ok=True)

    def label(self, step: PlanStep) -> StepOutcome:
        return StepOutcome(ok=True)

    def goto(self, step: PlanStep) -> StepOutcome:
        label = step.meta.get("label") or step.target_hint or step.value or ""
        return StepOutcome(ok=True, next_pc=self._jump(label, step), notes=f"goto={label}")

    def if_visible(self, step: PlanStep) -> StepOutcome:
        query = step.hint_or_value
        if not query:
            raise PlanValidationError("IF_VISIBLE step needs a target", step.index)
        timeout = int(step.meta.get("timeoutMs", self.settings.IF_VISIBLE_TIMEOUT_MS))

        visible = self.ctx.resolver.is_present_quick(query, timeout) is not None
        branch = step.meta.get("then") if visible else step.meta.get("else")
        logger.info(f"[NavHandler] IF_VISIBLE '{query}' -> {visible}")

        if not branch:
            return StepOutcome(ok=True, notes=f"visible={str(visible).lower()}")
        return StepOutcome(
            ok=True,
            next_pc=self._jump(branch, step),
            notes=f"visible={str(visible).lower()};goto={branch}",
        )

    def _jump(self, label: str, step: PlanStep) -> int:
        index = self.ctx.plan.label_index(label)
        if index is None:
            raise LabelNotFoundError(label, step.index)
        return index
