"""
UI Service - visibility, change detection and section-aware text taps

Everything here works against the live driver; decisions that only need the
page dump go through mobile_pilot.utils.ui_tree.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from selenium.common.exceptions import WebDriverException

from mobile_pilot.core.flows.flow_models import Locator, StepType, Strategy
from mobile_pilot.core.resolver.gestures import hide_keyboard_if_open, scroll_page
from mobile_pilot.services.device_driver import element_attr, element_checked, element_rect
from mobile_pilot.services.vision_service import determine_scope_by_y
from mobile_pilot.utils.text_match import normalize, significant_tokens
from mobile_pilot.utils.ui_tree import lower_expr, xpath_literal

logger = logging.getLogger(__name__)

BUSY_XPATH = (
    "//android.widget.ProgressBar[@indeterminate='true']"
    " | //*[contains(@content-desc,'progress') and @clickable='false']"
)
CHECKABLE_XPATH = "//*[@checkable='true']"
CLICKABLE_ANCESTOR = "ancestor::*[@clickable='true'][1]"

# Minimum pixel offset from a header row for an element to belong to its section
HEADER_GAP_PX = 4


def contains_token_expr(token: str) -> str:
    lit = xpath_literal(token.lower())
    return f"(contains({lower_expr('@text')},{lit}) or contains({lower_expr('@content-desc')},{lit}))"


def any_token_xpath(tokens: List[str]) -> str:
    return "//*[" + " or ".join(contains_token_expr(t) for t in tokens) + "]"


def all_tokens_xpath(tokens: List[str], clickable_only: bool = False) -> str:
    prefix = "//*[@clickable='true']" if clickable_only else "//*"
    return prefix + "[" + " and ".join(contains_token_expr(t) for t in tokens) + "]"


def exact_text_xpath(label: str) -> str:
    lit = xpath_literal(label.strip().lower())
    raw = xpath_literal(label.strip())
    return (
        f"//*[normalize-space(@text)={raw} or normalize-space(@content-desc)={raw}"
        f" or normalize-space({lower_expr('@text')})={lit}]"
    )


class UiService:
    """Live-UI helpers shared by the resolver and the handlers"""

    def __init__(self, ctx):
        self.ctx = ctx
        self.driver = ctx.driver
        self.settings = ctx.settings

    # =========================================================================
    # Geometry
    # =========================================================================

    def is_fully_visible(self, element: Any) -> bool:
        """Element lies inside the window minus the safe margin at top and bottom."""
        rect = element_rect(element)
        if rect is None or rect["height"] <= 0:
            return False
        _, height = self.driver.window_size()
        margin = self.settings.SAFE_MARGIN_PX
        return rect["y"] >= margin and rect["y"] + rect["height"] <= height - margin

    def center_y(self, element: Any) -> Optional[int]:
        rect = element_rect(element)
        return rect["y"] + rect["height"] // 2 if rect else None

    def first_clickable(self, element: Any) -> Any:
        """The element itself when clickable, else its nearest clickable ancestor."""
        if element_attr(element, "clickable").lower() == "true":
            return element
        ancestors = self.driver.find_within(element, CLICKABLE_ANCESTOR)
        return ancestors[0] if ancestors else element

    def tap(self, element: Any, section: Optional[str] = None) -> None:
        """Click `element`, remembering its row and the section it belongs to."""
        y = self.center_y(element)
        headers = self.header_positions() if section is None and y is not None else {}
        element.click()
        self.ctx.last_tap_y = y
        if section is None and headers:
            from_xy, to_xy = headers.get("from"), headers.get("to")
            section = determine_scope_by_y(y, from_xy[1] if from_xy else None, to_xy[1] if to_xy else None)
        if section:
            self.ctx.set_scope(section)

    # =========================================================================
    # Change detection
    # =========================================================================

    def changed_since(self, before_hash: str, window_ms: int) -> bool:
        """Poll the UI fingerprint until it differs from `before_hash` or the window ends."""
        deadline = self.ctx.deadline(window_ms)
        while True:
            if self.ctx.page_hash() != before_hash:
                return True
            if time.monotonic() >= deadline:
                return False
            self.ctx.sleep_ms(self.settings.CHANGE_POLL_MS)

    def wait_for_stable_ui(self, quiet_ms: Optional[int] = None, timeout_ms: Optional[int] = None) -> bool:
        """Wait until the UI fingerprint stays unchanged for `quiet_ms`."""
        quiet = (quiet_ms if quiet_ms is not None else self.settings.STABLE_UI_QUIET_MS) / 1000
        deadline = self.ctx.deadline(timeout_ms if timeout_ms is not None else self.settings.STABLE_UI_TIMEOUT_MS)
        last = self.ctx.page_hash()
        last_change = time.monotonic()
        while time.monotonic() < deadline:
            self.ctx.sleep_ms(self.settings.STABLE_UI_POLL_MS)
            current = self.ctx.page_hash()
            now = time.monotonic()
            if current != last:
                last, last_change = current, now
            elif now - last_change >= quiet:
                return True
        logger.debug("[UiService] UI did not settle before timeout")
        return False

    def is_busy(self) -> bool:
        return bool(self.driver.find_elements(Strategy.XPATH, BUSY_XPATH))

    def wait_while_busy(self, max_ms: Optional[int] = None) -> bool:
        """Wait for progress indicators to disappear. Returns False when still busy."""
        deadline = self.ctx.deadline(max_ms if max_ms is not None else self.settings.BUSY_WAIT_MS)
        while self.is_busy():
            if time.monotonic() >= deadline:
                return False
            self.ctx.sleep_ms(self.settings.CHANGE_POLL_MS)
        return True

    # =========================================================================
    # Visibility
    # =========================================================================

    def is_target_visible_now(self, hint: str) -> bool:
        """A fully visible element matches any significant token, or vision sees the text."""
        tokens = significant_tokens(hint)
        if tokens:
            for element in self.driver.find_elements(Strategy.XPATH, any_token_xpath(tokens)):
                if self.is_fully_visible(element):
                    return True

        if self.ctx.vision.enabled:
            hit = self.ctx.vision.find_text(hint, section=self.ctx.active_scope)
            if hit is not None:
                _, height = self.driver.window_size()
                margin = self.settings.SAFE_MARGIN_PX
                if hit.y >= margin and hit.y + hit.h <= height - margin:
                    return True
        return False

    def ensure_visible(self, hint: str, max_scrolls: int, before: StepType) -> bool:
        """
        Scroll until `hint` is fully visible, at most `max_scrolls` swipes.

        When any swipe happened, a synthetic SCROLL_TO record is captured and fed
        to the flow recorder.
        """
        hide_keyboard_if_open(self.driver)
        self.wait_for_stable_ui()
        if self.is_target_visible_now(hint):
            return True

        swipes = 0
        visible = False
        for _ in range(max_scrolls):
            self.ctx.check_stop()
            scroll_page(self.driver, "down", self.settings)
            swipes += 1
            self.wait_for_stable_ui()
            if self.is_target_visible_now(hint):
                visible = True
                break

        if swipes:
            logger.info(f"[UiService] Auto-scrolled {swipes}x for '{hint}' (visible={visible})")
            self.ctx.capture_synthetic(
                StepType.SCROLL_TO, hint, f"auto=1;before={before.value};count={swipes}"
            )
            self.ctx.record_step(StepType.SCROLL_TO, hint, hint)
        return visible

    # =========================================================================
    # Sections
    # =========================================================================

    def header_positions(self) -> Dict[str, Tuple[int, int]]:
        """Centers of the "from"/"to" header rows, from vision or the UI tree."""
        headers: Dict[str, Tuple[int, int]] = {}
        if self.ctx.vision.enabled:
            for name, element in self.ctx.vision.header_rows().items():
                headers[name] = element.center
        if headers:
            return headers

        xp = f"//*[normalize-space({lower_expr('@text')})='from' or normalize-space({lower_expr('@text')})='to']"
        for element in self.driver.find_elements(Strategy.XPATH, xp):
            name = normalize(element_attr(element, "text"))
            rect = element_rect(element)
            if rect and name not in headers:
                headers[name] = (rect["x"] + rect["width"] // 2, rect["y"] + rect["height"] // 2)
        return headers

    def find_elements_by_text_scoped(self, hint: str, section: Optional[str]) -> List[Any]:
        """Elements matching `hint` that lie inside `section`, nearest to its header first."""
        tokens = significant_tokens(hint)
        xp = all_tokens_xpath(tokens) if tokens else exact_text_xpath(hint)
        matches = self.driver.find_elements(Strategy.XPATH, xp)
        if not section or not matches:
            return matches

        headers = self.header_positions()
        if not headers:
            return matches
        from_xy, to_xy = headers.get("from"), headers.get("to")
        tolerance = self.settings.HEADER_ROW_TOLERANCE_PX

        positioned = []
        for element in matches:
            rect = element_rect(element)
            if rect is None:
                continue
            positioned.append((element, rect["x"] + rect["width"] // 2, rect["y"] + rect["height"] // 2))

        horizontal = from_xy is not None and to_xy is not None and abs(from_xy[1] - to_xy[1]) < tolerance
        if horizontal:
            split_x = (from_xy[0] + to_xy[0]) / 2
            if section == "from":
                kept = [p for p in positioned if p[1] < split_x]
            else:
                kept = [p for p in positioned if p[1] >= split_x]
        else:
            kept = [p for p in positioned if self._in_vertical_section(p[2], section, from_xy, to_xy)]

        anchor = (from_xy if section == "from" else to_xy) or from_xy or to_xy
        kept.sort(key=lambda p: abs(p[2] - anchor[1]))
        return [p[0] for p in kept]

    @staticmethod
    def _in_vertical_section(cy: int, section: str, from_xy, to_xy) -> bool:
        if section == "from":
            if from_xy is not None and to_xy is not None:
                return from_xy[1] < cy < to_xy[1]
            if from_xy is not None:
                return cy >= from_xy[1] + HEADER_GAP_PX
            return cy < to_xy[1] - HEADER_GAP_PX
        if to_xy is not None:
            return cy >= to_xy[1] + HEADER_GAP_PX
        return cy > from_xy[1] + HEADER_GAP_PX

    def tap_by_text_in_section(self, hint: str, section: str) -> Optional[Locator]:
        """Tap the best in-section match; succeeds only when the UI reacts."""
        before = self.ctx.page_hash()
        for element in self.find_elements_by_text_scoped(hint, section):
            target = self.first_clickable(element)
            locator = self.ctx.xpath.to_locator_with(target) or self.build_locator_for_element(target, hint)
            try:
                self.tap(target, section)
            except WebDriverException as e:
                logger.debug(f"[UiService] Section tap on '{hint}' failed: {e}")
                return None
            if self.changed_since(before, self.settings.TAP_CHANGE_WINDOW_MS):
                logger.info(f"[UiService] Tapped '{hint}' in section '{section}'")
                return locator
            return None
        return None

    # =========================================================================
    # Locators
    # =========================================================================

    def build_locator_for_element(self, element: Any, label: Optional[str] = None) -> Locator:
        """Best-effort XPath for an element: resource-id, then text, then description."""
        rid = element_attr(element, "resource-id")
        if rid:
            return Locator(strategy=Strategy.XPATH, value=f"//*[@resource-id={xpath_literal(rid)}]")
        text = element_attr(element, "text") or (label or "").strip()
        if text:
            return Locator(strategy=Strategy.XPATH, value=f"//*[normalize-space(@text)={xpath_literal(text)}]")
        desc = element_attr(element, "content-desc")
        if desc:
            return Locator(strategy=Strategy.XPATH, value=f"//*[@content-desc={xpath_literal(desc)}]")
        # Rejected by the genericity filter, so never persisted
        return Locator(strategy=Strategy.XPATH, value="(.//*[@clickable='true'])[1]")

    # =========================================================================
    # Checkables
    # =========================================================================

    def try_check_by_locator(self, locator: Locator, desired: Optional[bool]) -> bool:
        """Drive the element behind `locator` to `desired` (None flips). False when not found."""
        found = self.driver.find_by_locator(locator)
        if not found:
            return False
        apply_checked_state(found[0], desired)
        return True

    def visible_checkables(self) -> List[Any]:
        return [e for e in self.driver.find_elements(Strategy.XPATH, CHECKABLE_XPATH) if self.is_fully_visible(e)]

    def nearest_checkable_near(self, y: Optional[int]) -> Optional[Any]:
        """Visible checkable closest to row `y` (first visible one when y is unknown)."""
        checkables = self.visible_checkables()
        if not checkables:
            return None
        if y is None:
            return checkables[0]
        return min(checkables, key=lambda e: abs((self.center_y(e) or 0) - y))

    def ensure_visible_checkable(self, max_scrolls: int) -> List[Any]:
        """Scroll until at least one checkable is visible."""
        for attempt in range(max_scrolls + 1):
            checkables = self.visible_checkables()
            if checkables:
                return checkables
            if attempt < max_scrolls:
                scroll_page(self.driver, "down", self.settings)
                self.wait_for_stable_ui()
        return []


def apply_checked_state(element: Any, desired: Optional[bool]) -> bool:
    """Click only when the element's state differs from `desired`. Returns True when clicked."""
    if desired is not None and element_checked(element) == desired:
        return False
    element.click()
    return True
