"""
XPath Service - converts a working locator into a stable, re-findable XPath

A locator that found an element once may be index-fragile. validate() builds
candidate expressions from the live element's attributes and keeps the first one
that re-locates to the *same* element, preferring expressions that match it
uniquely. The original expression is kept as an alternative.
"""

import logging
from typing import Any, List, Optional

from mobile_pilot.core.flows.flow_models import Locator, Strategy
from mobile_pilot.services.device_driver import DeviceDriver, element_attr
from mobile_pilot.utils.ui_tree import lower_expr, xpath_literal

logger = logging.getLogger(__name__)

MAX_CHILD_TEXTS = 3

_CHILD_TEXTS_XPATH = ".//android.widget.TextView[normalize-space(@text)!='' and @clickable='false']"
_CLICKABLE_ROW_XPATH = "//*[self::android.widget.LinearLayout or self::android.view.ViewGroup][@clickable='true']"


def same_element(a: Any, b: Any) -> bool:
    """Same live element: equal handles, else equal resource-id/class/text/desc."""
    try:
        if a.id == b.id:
            return True
    except AttributeError:
        pass
    rid = element_attr(a, "resource-id")
    if not rid or rid != element_attr(b, "resource-id"):
        return False
    return all(
        element_attr(a, name) == element_attr(b, name)
        for name in ("class", "text", "content-desc")
    )


class XPathService:
    """Stable-expression validation against the live UI"""

    def __init__(self, driver: DeviceDriver):
        self.driver = driver

    def candidates_for(self, element: Any) -> List[str]:
        """Candidate expressions for an element, most stable first."""
        rid = element_attr(element, "resource-id")
        desc = element_attr(element, "content-desc")
        text = element_attr(element, "text")

        out: List[str] = []
        if rid:
            out.append(f"//*[@resource-id={xpath_literal(rid)}]")
        if desc:
            out.append(f"//*[@content-desc={xpath_literal(desc)}]")
        if text:
            out.append(f"//*[@text={xpath_literal(text)}]")
            out.append(f"//*[{lower_expr('@text')}={xpath_literal(text.lower())}]")
        if out:
            return out

        # Unlabelled container: anchor on its child texts
        texts: List[str] = []
        for child in self.driver.find_within(element, _CHILD_TEXTS_XPATH):
            child_text = element_attr(child, "text")
            if child_text and child_text not in texts:
                texts.append(child_text)
            if len(texts) >= MAX_CHILD_TEXTS:
                break
        for child_text in texts:
            out.append(
                f"(//*[normalize-space(@text)={xpath_literal(child_text.strip())}]"
                f"/ancestor::*[@clickable='true'][1])"
            )
            out.append(
                f"(//*[normalize-space({lower_expr('@text')})={xpath_literal(child_text.strip().lower())}]"
                f"/ancestor::*[@clickable='true'][1])"
            )
        out.append(_CLICKABLE_ROW_XPATH)
        return out

    def validate(self, original: Locator) -> Optional[Locator]:
        """
        Stable XPATH locator for the element `original` finds.

        Returns None when `original` no longer finds anything; returns `original`
        unchanged when no candidate re-locates to the same element.
        """
        found = self.driver.find_by_locator(original)
        if not found:
            return None
        target = found[0]
        return self.to_locator_with(target, original) or original

    def to_locator_with(self, target: Any, original: Optional[Locator] = None) -> Optional[Locator]:
        candidates = self.candidates_for(target)
        matches = [(xp, self.driver.find_elements(Strategy.XPATH, xp)) for xp in candidates]

        # First pass: unique match that is the same element
        for xp, elements in matches:
            if len(elements) == 1 and same_element(elements[0], target):
                return self._wrap(xp, original)
        # Second pass: any match containing it
        for xp, elements in matches:
            if any(same_element(e, target) for e in elements):
                return self._wrap(xp, original)
        logger.debug(f"[XPathService] No stable expression for {original.describe() if original else 'element'}")
        return None

    @staticmethod
    def _wrap(xpath: str, original: Optional[Locator]) -> Locator:
        alternatives: List[str] = []
        if original is not None and original.value != xpath and original.strategy == Strategy.XPATH:
            alternatives.append(original.value)
        return Locator(strategy=Strategy.XPATH, value=xpath, alternatives=alternatives)
