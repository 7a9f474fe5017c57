"""
Locator Resolver - turns a human hint into a Locator against the live UI

resolve() walks a fixed cascade of XPath queries and returns the first one
that finds something:

1. exact @text, then exact @content-desc
2. multi-word hints: text containing every token, then description
3. resource id (full id, or the part after ":id/")
4. case-insensitive exact text, then description
5. each token contained in text, then description
6. the whole hint contained in text or description

When the cascade misses, rebuild_xpath_from_dump() scores every node of the
page dump against the hint and emits a class-indexed path to the best one.
"""

import logging
import re
import time
from typing import Any, List, Optional

from mobile_pilot.core.flows.flow_models import Locator, Strategy
from mobile_pilot.core.resolver.gestures import hide_keyboard_if_open, scroll_container, scroll_page
from mobile_pilot.core.resolver.ui_service import all_tokens_xpath
from mobile_pilot.services.device_driver import element_attr
from mobile_pilot.utils.error_handler import ElementNotFoundError
from mobile_pilot.utils.text_match import hint_tokens, significant_tokens
from mobile_pilot.utils.ui_tree import (
    indexed_path,
    is_true,
    iter_nodes,
    lower_expr,
    node_attr,
    parse_page_source,
    xpath_literal,
)

logger = logging.getLogger(__name__)

# Dump scoring
SCORE_EXACT = 110
SCORE_EXACT_CI = 95
SCORE_CONTAINS = 82
SCORE_CONTAINS_CI = 72
SCORE_PER_TOKEN = 14
SCORE_ALL_TOKENS = 10
SCORE_IN_ORDER = 8
SCORE_INTERACTIVE = 3
SCORE_HAS_ID = 2

BACKOFF_FACTOR = 1.4

PASSWORD_XPATH = (
    "(//android.widget.EditText[@password='true' or contains(@input-type,'128')"
    f" or contains({lower_expr('@resource-id')},'password')"
    f" or contains({lower_expr('@content-desc')},'password')])[1]"
)
REGEX_PREFIX = "regex:"
LENGTH_PREFIX = "length:"

EDIT_TEXT = "android.widget.EditText"
TOGGLE_IN_CONTAINER = ".//android.widget.Switch | .//*[@checkable='true']"
ROW_CONTAINER = "ancestor::*[self::android.view.ViewGroup or self::android.widget.LinearLayout][1]"


def _xp(strategy_value: str) -> Locator:
    return Locator(strategy=Strategy.XPATH, value=strategy_value)


def _contains_ci(attr: str, needle: str) -> str:
    return f"contains({lower_expr(attr)},{xpath_literal(needle.lower())})"


class LocatorResolver:
    """Hint -> Locator resolution and presence waits"""

    def __init__(self, ctx):
        self.ctx = ctx
        self.driver = ctx.driver
        self.settings = ctx.settings

    # =========================================================================
    # Query cascade
    # =========================================================================

    def candidate_queries(self, hint: str) -> List[Locator]:
        """Every query resolve() tries for `hint`, in order."""
        h = (hint or "").strip()
        if not h:
            return []
        lit = xpath_literal(h)
        lower_lit = xpath_literal(h.lower())
        tokens = hint_tokens(h)

        queries = [
            _xp(f"//*[@text={lit}]"),
            _xp(f"//*[@content-desc={lit}]"),
        ]
        if len(tokens) >= 2:
            queries.append(_xp("//*[" + " and ".join(_contains_ci("@text", t) for t in tokens) + "]"))
            queries.append(_xp("//*[" + " and ".join(_contains_ci("@content-desc", t) for t in tokens) + "]"))
        if " " not in h:
            if ":id/" in h:
                queries.append(Locator(strategy=Strategy.ID, value=h))
            else:
                suffix = xpath_literal(f":id/{h}")
                queries.append(
                    _xp(
                        f"//*[@resource-id={lit} or substring(@resource-id,"
                        f" string-length(@resource-id) - string-length({suffix}) + 1)={suffix}]"
                    )
                )
        queries.append(_xp(f"//*[normalize-space({lower_expr('@text')})={lower_lit}]"))
        queries.append(_xp(f"//*[normalize-space({lower_expr('@content-desc')})={lower_lit}]"))
        for token in tokens:
            queries.append(_xp(f"//*[{_contains_ci('@text', token)}]"))
            queries.append(_xp(f"//*[{_contains_ci('@content-desc', token)}]"))
        queries.append(_xp(f"//*[{_contains_ci('@text', h)} or {_contains_ci('@content-desc', h)}]"))
        return queries

    def resolve(self, hint: str) -> Optional[Locator]:
        """First cascade query that currently finds an element, or None."""
        for locator in self.candidate_queries(hint):
            if self.driver.find_elements(locator.strategy, locator.value):
                logger.debug(f"[LocatorResolver] '{hint}' -> {locator.describe()}")
                return locator
        return None

    # =========================================================================
    # Dump scoring
    # =========================================================================

    def score_label(self, label: str, hint: str, tokens: List[str]) -> int:
        """Score one node label against the hint and its tokens (0 = no relation)."""
        if not label:
            return 0
        low = label.lower()
        base = 0
        for query in [hint] + tokens:
            if not query:
                continue
            if label == query:
                base = max(base, SCORE_EXACT)
            elif low == query.lower():
                base = max(base, SCORE_EXACT_CI)
            elif query in label:
                base = max(base, SCORE_CONTAINS)
            elif query.lower() in low:
                base = max(base, SCORE_CONTAINS_CI)

        covered = [t for t in tokens if t in low]
        score = base + len(covered) * SCORE_PER_TOKEN
        if tokens and len(covered) == len(tokens):
            score += SCORE_ALL_TOKENS
            positions = [low.find(t) for t in tokens]
            if positions == sorted(positions):
                score += SCORE_IN_ORDER
        return score

    def rebuild_xpath_from_dump(self, hint: str) -> Optional[Locator]:
        """Best-scoring dump node as a class-indexed XPath, verified against the live UI."""
        root = parse_page_source(self.ctx.page_source())
        if root is None:
            return None
        h = (hint or "").strip()
        tokens = hint_tokens(h)

        best = None
        best_score = 0
        for node in iter_nodes(root):
            label_score = max(
                self.score_label(node_attr(node, "text"), h, tokens),
                self.score_label(node_attr(node, "content-desc"), h, tokens),
            )
            if label_score <= 0:
                continue
            score = label_score
            if is_true(node, "clickable") or is_true(node, "focusable"):
                score += SCORE_INTERACTIVE
            if node_attr(node, "resource-id"):
                score += SCORE_HAS_ID
            label = node_attr(node, "text") or node_attr(node, "content-desc")
            score += min(len(label), 40) // 4
            if score > best_score:
                best, best_score = node, score

        if best is None:
            return None
        xpath = indexed_path(best)
        if not self.driver.find_elements(Strategy.XPATH, xpath):
            return None
        logger.debug(f"[LocatorResolver] Rebuilt '{hint}' from dump (score {best_score}): {xpath}")
        return _xp(xpath)

    # =========================================================================
    # Waits
    # =========================================================================

    def wait_for_stable_ui(self, quiet_ms: Optional[int] = None, timeout_ms: Optional[int] = None) -> bool:
        return self.ctx.ui.wait_for_stable_ui(quiet_ms, timeout_ms)

    def wait_for_element_present(self, hint: str, timeout_ms: int) -> Locator:
        """
        Resolve `hint`, retrying with backoff until `timeout_ms`.

        One page scroll is attempted on the first miss. Raises ElementNotFoundError.
        """
        deadline = self.ctx.deadline(timeout_ms)
        delay = self.settings.BACKOFF_START_MS
        scrolled = False
        while True:
            self.ctx.check_stop()
            self.wait_for_stable_ui(timeout_ms=max(0, int((deadline - time.monotonic()) * 1000)))
            hide_keyboard_if_open(self.driver)

            locator = self.resolve(hint)
            if locator is None and not scrolled:
                scrolled = True
                if hint_tokens(hint):
                    scroll_page(self.driver, "down", self.settings)
                    locator = self.resolve(hint)
            if locator is None:
                locator = self.rebuild_xpath_from_dump(hint)
            if locator is not None:
                return locator

            if time.monotonic() >= deadline:
                raise ElementNotFoundError(hint, f"Timed out after {timeout_ms}ms waiting for '{hint}'")
            self.ctx.sleep_ms(delay)
            delay = min(int(delay * BACKOFF_FACTOR), self.settings.BACKOFF_MAX_MS)

    def is_present_quick(self, hint: str, timeout_ms: int) -> Optional[Locator]:
        """Poll resolve() until `timeout_ms`; never scrolls."""
        deadline = self.ctx.deadline(timeout_ms)
        while True:
            locator = self.resolve(hint)
            if locator is not None:
                return locator
            if time.monotonic() >= deadline:
                return None
            self.ctx.sleep_ms(self.settings.PRESENCE_POLL_MS)

    def text_present(self, query: str) -> bool:
        """
        Whether the current dump satisfies `query`:
        "regex:<pattern>" (case-insensitive, over the raw dump), "length:<N>"
        (an EditText holding exactly N digits), or a case-insensitive substring
        of some text/description.
        """
        source = self.ctx.page_source()
        if query.startswith(REGEX_PREFIX):
            try:
                pattern = re.compile(query[len(REGEX_PREFIX):], re.IGNORECASE)
            except re.error as e:
                logger.warning(f"[LocatorResolver] Invalid pattern in '{query}': {e}")
                return False
            return pattern.search(source) is not None

        root = parse_page_source(source)
        if query.startswith(LENGTH_PREFIX):
            raw = query[len(LENGTH_PREFIX):].strip()
            if not raw.isdigit():
                logger.debug(f"[LocatorResolver] Malformed length query '{query}'")
                return False
            digits = re.compile(rf"[0-9]{{{int(raw)}}}")
            return any(
                "EditText" in node_attr(node, "class") and digits.fullmatch(node_attr(node, "text"))
                for node in iter_nodes(root)
            )

        needle = query.lower().strip()
        return any(
            needle in node_attr(node, "text").lower() or needle in node_attr(node, "content-desc").lower()
            for node in iter_nodes(root)
        )

    def wait_for_text(self, query: str, timeout_ms: int) -> bool:
        deadline = self.ctx.deadline(timeout_ms)
        while True:
            if self.text_present(query):
                return True
            if time.monotonic() >= deadline:
                return False
            self.ctx.sleep_ms(self.settings.PRESENCE_POLL_MS)

    def scroll_text_into_view_monotonic(self, text: str, direction: str = "down") -> bool:
        """Swipe one way until `text` shows up; gives up after repeated no-change swipes."""
        stalls = 0
        last = self.ctx.page_hash()
        for _ in range(self.settings.ASSERT_SCROLL_SWIPES):
            if self.text_present(text):
                return True
            self.ctx.check_stop()
            scroll_container(self.driver, direction, self.settings)
            self.ctx.sleep_ms(self.settings.STABLE_UI_POLL_MS)
            current = self.ctx.page_hash()
            if current == last:
                stalls += 1
                if stalls >= self.settings.SCROLL_STALL_LIMIT:
                    logger.debug(f"[LocatorResolver] Scrolling stalled looking for '{text}'")
                    break
            else:
                stalls = 0
                last = current
        return self.text_present(text)

    # =========================================================================
    # Element lookups
    # =========================================================================

    def first_clickable_by_tokens(self, hint: str) -> Optional[Any]:
        """Clickable element containing every significant token, visible ones first."""
        tokens = significant_tokens(hint)
        if not tokens:
            return None
        ui = self.ctx.ui
        clickables = self.driver.find_elements(Strategy.XPATH, all_tokens_xpath(tokens, clickable_only=True))
        if clickables:
            visible = [e for e in clickables if ui.is_fully_visible(e)]
            return (visible or clickables)[0]
        matches = self.driver.find_elements(Strategy.XPATH, all_tokens_xpath(tokens))
        if not matches:
            return None
        visible = [e for e in matches if ui.is_fully_visible(e)]
        return ui.first_clickable((visible or matches)[0])

    def find_switch_or_checkable_for_label(self, label: str, section: Optional[str] = None) -> Optional[Any]:
        """Toggle in the same row container as the text `label` (optionally below a section header)."""
        lit = xpath_literal(label.strip())
        label_xp = f"//*[normalize-space(@text)={lit}]"
        if section:
            header = xpath_literal(section.lower())
            label_xp = (
                f"//*[normalize-space({lower_expr('@text')})={header}]"
                f"/following::*[normalize-space(@text)={lit}]"
            )
        labels = self.driver.find_elements(Strategy.XPATH, label_xp)
        if not labels and section:
            labels = self.driver.find_elements(Strategy.XPATH, f"//*[normalize-space(@text)={lit}]")

        for element in labels:
            if is_checkable(element):
                return element
            containers = self.driver.find_within(element, ROW_CONTAINER)
            if not containers:
                continue
            toggles = self.driver.find_within(containers[0], TOGGLE_IN_CONTAINER)
            if toggles:
                return toggles[0]
        return None

    def _find(self, xpath: str) -> List[Any]:
        return self.driver.find_elements(Strategy.XPATH, xpath)

    def find_edit_text_for_label(self, label: str) -> Optional[Any]:
        """
        Input field for a label, tried in order:
        password heuristics, a field naming the label itself, the innermost
        container holding both label and field, the field following the label,
        then a single or ordinal field.
        """
        needle = (label or "").strip().lower()
        is_password = "pass" in needle

        if is_password:
            found = self._find(PASSWORD_XPATH)
            if found:
                return found[0]

        if needle:
            lit = xpath_literal(needle)
            own = (
                f"//{EDIT_TEXT}[contains({lower_expr('@resource-id')},{lit})"
                f" or contains({lower_expr('@content-desc')},{lit})"
                f" or contains({lower_expr('@text')},{lit})]"
            )
            found = self._find(own)
            if found:
                return found[0]

            label_cond = f"contains({lower_expr('@text')},{lit})"
            containers = self._find(f"(//*[.//*[{label_cond}] and .//{EDIT_TEXT}])[last()]")
            if containers:
                fields = self.driver.find_within(containers[0], f".//{EDIT_TEXT}")
                if fields:
                    return fields[0]

            found = self._find(f"//*[{label_cond}]/following::{EDIT_TEXT}[1]")
            if found:
                return found[0]

        fields = self._find(f"//{EDIT_TEXT}")
        if len(fields) == 1:
            return fields[0]
        if len(fields) > 1:
            if is_password:
                return fields[-1]
            if any(word in needle for word in ("user", "email", "login", "phone")):
                return fields[0]
        return None


def is_checkable(element: Any) -> bool:
    return element_attr(element, "checkable").lower() == "true"
