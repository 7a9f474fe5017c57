"""
Gestures - screen-relative swipes

Direction names the content that should come into view: "down" reveals what is
below (finger moves up), "up" reveals what is above (finger moves down).
"""

import logging
from typing import Optional, Tuple

from mobile_pilot.config.defaults import AppDefaults, get_defaults
from mobile_pilot.services.device_driver import DeviceDriver
from mobile_pilot.utils.ui_tree import is_true, iter_nodes, node_bounds, parse_page_source

logger = logging.getLogger(__name__)


def scroll_page(driver: DeviceDriver, direction: str = "down", settings: Optional[AppDefaults] = None) -> None:
    """Swipe across the whole window at mid-width."""
    settings = settings or get_defaults()
    w, h = driver.window_size()
    x = w // 2
    if direction == "up":
        start, end = int(h * 0.30), int(h * 0.80)
    else:
        start, end = int(h * 0.78), max(80, int(h * 0.28))
    driver.swipe(x, start, x, end, settings.SWIPE_DURATION_MS)


def first_scrollable_bounds(driver: DeviceDriver) -> Optional[Tuple[int, int, int, int]]:
    """(x, y, width, height) of the first scrollable container on screen."""
    root = parse_page_source(driver.page_source())
    for node in iter_nodes(root):
        if is_true(node, "scrollable"):
            bounds = node_bounds(node)
            if bounds and bounds["width"] > 0 and bounds["height"] > 0:
                return bounds["x"], bounds["y"], bounds["width"], bounds["height"]
    return None


def scroll_container(driver: DeviceDriver, direction: str = "down", settings: Optional[AppDefaults] = None) -> None:
    """
    Swipe inside the first scrollable container (25% <-> 75% of its height),
    falling back to the window (20% <-> 80%).
    """
    settings = settings or get_defaults()
    container = first_scrollable_bounds(driver)
    if container is not None:
        x, y, w, h = container
        top, bottom = y + int(h * 0.25), y + int(h * 0.75)
    else:
        w, h = driver.window_size()
        x = 0
        top, bottom = int(h * 0.20), int(h * 0.80)
    cx = x + w // 2
    if direction == "up":
        driver.swipe(cx, top, cx, bottom, settings.SWIPE_DURATION_MS)
    else:
        driver.swipe(cx, bottom, cx, top, settings.SWIPE_DURATION_MS)


def hide_keyboard_if_open(driver: DeviceDriver) -> bool:
    """Dismiss the soft keyboard. Returns True when it was showing."""
    if driver.is_keyboard_shown():
        driver.hide_keyboard()
        return True
    return False
