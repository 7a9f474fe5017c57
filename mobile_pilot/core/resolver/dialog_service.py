"""
Dialog Service - dismiss blocking dialogs that pop up after a step

A dialog is recognised by a button whose whole label is one of DIALOG_LABELS
inside a dialog-like container (alert/dialog panel or a framework button id).
Its first such button is tapped and a synthetic TAP record is captured.
"""

import logging
import time
from typing import Optional, Tuple

from mobile_pilot.core.flows.flow_models import StepType, Strategy
from mobile_pilot.utils.text_match import normalize
from mobile_pilot.utils.ui_tree import indexed_path, node_attr, parse_page_source, xpath_literal

logger = logging.getLogger(__name__)

DIALOG_LABELS = [
    "ok", "okay", "retry", "try again", "cancel", "close", "dismiss", "continue",
    "yes", "no", "allow", "deny", "got it", "understood", "confirm",
]

BUTTON_XPATH = (
    "//*[self::android.widget.Button"
    " or (self::android.widget.TextView and @clickable='true')"
    " or (self::android.widget.CheckedTextView and @clickable='true')]"
)

_DIALOG_MARKERS = ("dialog", "alert", "parentpanel", "buttonpanel", "permission")


def _looks_like_dialog(node) -> bool:
    if node_attr(node, "resource-id").startswith("android:id/button"):
        return True
    for ancestor in node.iterancestors():
        rid = node_attr(ancestor, "resource-id").lower()
        cls = node_attr(ancestor, "class").lower()
        if any(marker in rid or marker in cls for marker in _DIALOG_MARKERS):
            return True
    return False


class DialogService:
    """Polls for and dismisses dialogs between steps"""

    def __init__(self, ctx):
        self.ctx = ctx
        self.driver = ctx.driver
        self.settings = ctx.settings

    def find_dialog_button(self) -> Optional[Tuple[str, str]]:
        """(xpath, label) of the first dialog button on screen."""
        root = parse_page_source(self.ctx.page_source())
        if root is None:
            return None
        for node in root.xpath(BUTTON_XPATH):
            text = node_attr(node, "text")
            if normalize(text) not in DIALOG_LABELS or not _looks_like_dialog(node):
                continue
            container = node.xpath("ancestor::*[@resource-id][1]") or node.xpath("ancestor::*[1]")
            if not container:
                continue
            root_xp = indexed_path(container[0])
            return f"{root_xp}//*[normalize-space(@text)={xpath_literal(text.strip())}]", text.strip()
        return None

    def try_handle_once(self) -> bool:
        found = self.find_dialog_button()
        if found is None:
            return False
        xpath, label = found
        buttons = self.driver.find_elements(Strategy.XPATH, xpath)
        if not buttons:
            return False
        buttons[0].click()
        logger.info(f"[DialogService] Dismissed dialog via '{label}'")
        self.ctx.capture_synthetic(StepType.TAP, f"DIALOG: {label}", "AUTO_DIALOG")
        return True

    def _poll(self, window_ms: int) -> bool:
        deadline = self.ctx.deadline(window_ms)
        while True:
            if self.try_handle_once():
                return True
            if time.monotonic() >= deadline:
                return False
            self.ctx.sleep_ms(self.settings.DIALOG_POLL_MS)

    def after_step(self, window_ms: Optional[int] = None) -> bool:
        """Watch for a dialog after a step; settles briefly when none appeared."""
        handled = self._poll(window_ms if window_ms is not None else self.settings.DIALOG_WINDOW_MS)
        if not handled:
            self.ctx.sleep_ms(self.settings.DIALOG_SETTLE_MS)
        return handled

    def after_step_silent(self, window_ms: Optional[int] = None) -> bool:
        return self._poll(window_ms if window_ms is not None else self.settings.DIALOG_WINDOW_MS)
