"""
Tap Handler - the TAP resolution cascade

Strategies, cheapest first:
1. Remembered locators for this screen
2. Auto-scroll until the hint is visible, then a clickable holding every token
3. Section-scoped text tap while a "from"/"to" scope is active
4. A toggle sitting next to the label
5. Candidate extraction + ranking, each tap verified by a UI change
6. Manual fallback: ask the operator and wait for the screen to change

A verified tap is reinforced in selector memory; a remembered locator that
had to be replaced is penalised.
"""

import logging
import time
from typing import Any, List, Optional, Tuple

from selenium.common.exceptions import WebDriverException

from mobile_pilot.core.flows.flow_models import Locator, PlanStep, StepOutcome, StepType, Strategy
from mobile_pilot.core.resolver.gestures import hide_keyboard_if_open, scroll_page
from mobile_pilot.utils.element_finder import CandidateExtractor, RankService, UICandidate
from mobile_pilot.utils.error_handler import PlanValidationError

logger = logging.getLogger(__name__)

# Next-step kinds whose target must show up after a candidate tap
_PROBED_NEXT_STEPS = (StepType.TAP, StepType.INPUT_TEXT, StepType.CHECK, StepType.WAIT_TEXT, StepType.ASSERT_TEXT)


class TapHandler:
    """Resolves and performs TAP steps"""

    def __init__(self, ctx):
        self.ctx = ctx
        self.driver = ctx.driver
        self.settings = ctx.settings
        self.extractor = CandidateExtractor(limit=self.settings.CANDIDATE_LIMIT)
        self.ranker = RankService(floor=self.settings.CANDIDATE_SCORE_FLOOR)

    def handle(self, step: PlanStep) -> StepOutcome:
        hint = step.hint_or_value
        if not hint:
            raise PlanValidationError("TAP step needs a target", step.index)
        timeout = int(step.meta.get("timeoutMs", self.settings.TAP_TIMEOUT_MS))
        section = (step.meta.get("section") or self.ctx.active_scope or "").lower() or None

        hide_keyboard_if_open(self.driver)
        key = self.ctx.screen_key()
        saved = self.ctx.mem.find(StepType.TAP, hint, key)
        prior = saved[0] if saved else None

        # 1. Memory
        for locator in saved:
            self.ctx.check_stop()
            if self._tap_remembered(locator, section):
                logger.info(f"[TapHandler] '{hint}' via memory {locator.describe()}")
                return self._succeed(hint, locator, None, key)

        # 2. Visible clickable holding every token
        self.ctx.ui.ensure_visible(hint, self.settings.MAX_AUTO_SCROLLS, StepType.TAP)
        target = self.ctx.resolver.first_clickable_by_tokens(hint)
        if target is not None:
            locator = self._tap_and_verify(target, hint, section, self.settings.TAP_CHANGE_WINDOW_MS)
            if locator is not None:
                logger.info(f"[TapHandler] '{hint}' via token match")
                return self._succeed(hint, locator, prior, key)

        # 3. Section scope
        if section:
            locator = self.ctx.ui.tap_by_text_in_section(hint, section)
            if locator is not None:
                return self._succeed(hint, locator, prior, key)

        # 4. Toggle next to the label
        toggle = self.ctx.resolver.find_switch_or_checkable_for_label(hint, section)
        if toggle is not None:
            locator = self.ctx.xpath.to_locator_with(toggle) or self.ctx.ui.build_locator_for_element(toggle, hint)
            try:
                self.ctx.ui.tap(toggle, section)
            except WebDriverException as e:
                logger.debug(f"[TapHandler] Toggle click failed: {e}")
            else:
                logger.info(f"[TapHandler] '{hint}' via toggle row")
                return self._succeed(hint, locator, prior, key)

        # 5. Ranked candidates
        locator = self._candidate_loop(hint, section, timeout)
        if locator is not None:
            return self._succeed(hint, locator, prior, key)

        # 6. Operator
        return self._manual_fallback(hint)

    # =========================================================================
    # Strategies
    # =========================================================================

    def _tap_remembered(self, locator: Locator, section: Optional[str]) -> bool:
        elements = self.driver.find_by_locator(locator)
        if not elements:
            return False
        scrolls = 0
        while not self.ctx.ui.is_fully_visible(elements[0]) and scrolls < self.settings.MAX_AUTO_SCROLLS:
            scroll_page(self.driver, "down", self.settings)
            scrolls += 1
            self.ctx.ui.wait_for_stable_ui()
            elements = self.driver.find_by_locator(locator)
            if not elements:
                return False
        return self._tap_and_verify(elements[0], None, section, self.settings.TAP_CHANGE_WINDOW_MS) is not None

    def _tap_and_verify(self, element: Any, hint: Optional[str], section: Optional[str], window_ms: int) -> Optional[Locator]:
        """Tap and require a UI change (or a dismissed dialog). Returns the tapped element's locator."""
        target = self.ctx.ui.first_clickable(element)
        locator = self.ctx.xpath.to_locator_with(target) or self.ctx.ui.build_locator_for_element(target, hint)
        before = self.ctx.page_hash()
        try:
            self.ctx.ui.tap(target, section)
        except WebDriverException as e:
            logger.debug(f"[TapHandler] Click failed: {e}")
            return None
        if self.ctx.ui.changed_since(before, window_ms) or self.ctx.dialogs.after_step_silent(0):
            return locator
        return None

    def _candidate_loop(self, hint: str, section: Optional[str], timeout_ms: int) -> Optional[Locator]:
        deadline = self.ctx.deadline(timeout_ms)
        while time.monotonic() < deadline:
            self.ctx.check_stop()
            self.ctx.ui.wait_for_stable_ui()
            if self.ctx.ui.is_busy():
                self.ctx.ui.wait_while_busy()
                continue

            candidates = self.extractor.extract(self.ctx.page_source(), hint)
            if not candidates:
                self.ctx.sleep_ms(self.settings.CANDIDATE_ROUND_PAUSE_MS)
                continue

            ranked = self.ranker.rank(candidates, hint)
            if section:
                ranked = RankService.scope_xy(ranked, self.ctx.ui.header_positions().get(section))
            ranked = self._break_tie(hint, ranked)
            logger.debug(f"[TapHandler] {len(ranked)} ranked candidate(s) for '{hint}'")

            for candidate in ranked:
                locator = self._try_tap_candidate(candidate, section)
                if locator is not None:
                    logger.info(f"[TapHandler] '{hint}' via candidate {candidate.id} ({candidate.role}, {candidate.score})")
                    return locator
            self.ctx.sleep_ms(self.settings.CANDIDATE_ROUND_PAUSE_MS)
        return None

    def _break_tie(self, hint: str, ranked: List[UICandidate]) -> List[UICandidate]:
        """Let the language model pick between equally scored leaders."""
        if self.ctx.llm is None or len(ranked) < 2 or ranked[0].score != ranked[1].score:
            return ranked
        tied = [c for c in ranked if c.score == ranked[0].score]
        options = [{"id": c.id, "label": c.label, "role": c.role} for c in tied]
        winner = self.ctx.llm.disambiguate(hint, options, context=self.ctx.plan.title)
        if not winner:
            return ranked
        return sorted(ranked, key=lambda c: 0 if c.id == winner else 1)

    def _try_tap_candidate(self, candidate: UICandidate, section: Optional[str]) -> Optional[Locator]:
        locator = self.ctx.xpath.validate(Locator(strategy=Strategy.XPATH, value=candidate.xpath))
        if locator is None:
            return None
        elements = self.driver.find_by_locator(locator)
        if not elements:
            return None

        before = self.ctx.page_hash()
        try:
            self.ctx.ui.tap(elements[0], section)
        except WebDriverException as e:
            logger.debug(f"[TapHandler] Candidate click failed: {e}")
            return None
        window = self.settings.CANDIDATE_CHANGE_WINDOW_MS
        if not (self.ctx.ui.changed_since(before, window) or self.ctx.dialogs.after_step_silent(0)):
            return None

        upcoming = self.ctx.next_step()
        if upcoming is not None and upcoming.type in _PROBED_NEXT_STEPS and upcoming.target_hint:
            if self.ctx.resolver.is_present_quick(upcoming.target_hint, self.settings.NEXT_STEP_PROBE_MS) is None:
                logger.info(f"[TapHandler] Next target '{upcoming.target_hint}' missing after candidate, going back")
                self.driver.back()
                self.ctx.ui.wait_for_stable_ui()
                return None
        return locator

    def _manual_fallback(self, hint: str) -> StepOutcome:
        before = self.ctx.page_hash()
        self.ctx.status(f'ACTION_REQUIRED::Tap "{hint}" on the device')
        logger.warning(f"[TapHandler] Waiting for a manual tap on '{hint}'")
        if self.ctx.ui.changed_since(before, self.settings.MANUAL_FALLBACK_MS):
            return StepOutcome(ok=True, notes="MANUAL")
        return StepOutcome(ok=False, notes=f'Tap timeout: "{hint}"')

    def _succeed(self, hint: str, locator: Locator, prior: Optional[Locator], key: Tuple[str, str]) -> StepOutcome:
        self.ctx.dialogs.after_step()
        self.ctx.mem.save(StepType.TAP, hint, locator, prior=prior, key=key)
        return StepOutcome(ok=True, locator=locator)
