"""
Memory Service - SelectorMemory bound to the device's current app and screen

Handlers read the screen key before acting and pass it back when saving, so a
tap that navigates away is still credited to the screen it happened on.
"""

import logging
from typing import List, Optional, Tuple

from mobile_pilot.core.flows.flow_models import Locator, StepType

logger = logging.getLogger(__name__)


class MemoryService:
    """Reads and reinforces remembered locators for the current screen"""

    def __init__(self, ctx):
        self.ctx = ctx

    def find(self, op: StepType, hint: Optional[str], key: Optional[Tuple[str, str]] = None) -> List[Locator]:
        app, screen = key or self.ctx.screen_key()
        found = self.ctx.memory.find(app, screen, op, hint)
        if found:
            logger.debug(f"[MemoryService] {len(found)} remembered locator(s) for {op.value} '{hint}'")
        return found

    def save(
        self,
        op: StepType,
        hint: Optional[str],
        locator: Locator,
        prior: Optional[Locator] = None,
        key: Optional[Tuple[str, str]] = None,
    ) -> None:
        """Reinforce `locator`; penalise `prior` when a different locator had to take over."""
        app, screen = key or self.ctx.screen_key()
        self.ctx.memory.success(app, screen, op, hint, locator)
        if prior is not None and (prior.strategy, prior.value) != (locator.strategy, locator.value):
            self.ctx.memory.failure(app, screen, op, hint, prior)

    def fail(self, op: StepType, hint: Optional[str], locator: Locator, key: Optional[Tuple[str, str]] = None) -> None:
        app, screen = key or self.ctx.screen_key()
        self.ctx.memory.failure(app, screen, op, hint, locator)
