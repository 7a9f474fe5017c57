"""
Vision Service - cached, section-aware access to the UI detector

Results are cached per (UI fingerprint, section) so repeated lookups on an
unchanged screen cost one detector call. A screen change drops the cache.

Sections split a dual-field screen into "from" (upper half) and "to" (lower
half). Screenshots are cropped to the section before detection and the
detections are mapped back to full-screen pixels.
"""

import logging
from typing import Dict, Optional, Tuple

from mobile_pilot.config.defaults import AppDefaults, get_defaults
from mobile_pilot.services.device_driver import DeviceDriver
from mobile_pilot.services.vision_client import VisionClient, VisionElement, VisionResult, crop_section
from mobile_pilot.utils.text_match import normalize, soft_score
from mobile_pilot.utils.ui_tree import (
    center_of,
    indexed_path,
    is_true,
    iter_nodes,
    node_attr,
    node_bounds,
    page_fingerprint,
    parse_page_source,
)

logger = logging.getLogger(__name__)

MIN_TEXT_SCORE = 0.5
ROW_SLACK_PX = 48

_TOGGLE_CLASSES = ("Switch", "Toggle", "Radio", "CheckBox")


def determine_scope_by_y(y: int, from_y: Optional[int], to_y: Optional[int]) -> Optional[str]:
    """Section owning screen row `y`, given the header rows that are known."""
    if from_y is not None and to_y is not None:
        return "from" if y < to_y else "to"
    if from_y is not None:
        return "from" if y >= from_y else None
    if to_y is not None:
        return "to" if y >= to_y else None
    return None


def best_text_match(result: Optional[VisionResult], target: str, min_score: float = MIN_TEXT_SCORE) -> Optional[VisionElement]:
    """Detection whose text best matches `target` (equality/containment = 1.0, else Jaccard)."""
    if result is None or not target:
        return None
    best: Optional[VisionElement] = None
    best_score = 0.0
    for element in result.elements:
        if not element.text:
            continue
        score = soft_score(element.text, target)
        if score > best_score:
            best, best_score = element, score
    return best if best_score >= min_score else None


class VisionService:
    """Per-run facade over VisionClient with result caching"""

    def __init__(
        self,
        driver: DeviceDriver,
        client: Optional[VisionClient] = None,
        settings: Optional[AppDefaults] = None,
    ):
        self.driver = driver
        self.client = client
        self.settings = settings or get_defaults()
        self._cache: Dict[Tuple[str, Optional[str]], Optional[VisionResult]] = {}
        self._cache_fingerprint = ""

    @property
    def enabled(self) -> bool:
        return self.client is not None and self.settings.VISION_ENABLED

    # =========================================================================
    # Detection
    # =========================================================================

    def fast(self, section: Optional[str] = None) -> Optional[VisionResult]:
        """Low-resolution, OCR-off detection, cached per (fingerprint, section)."""
        if not self.enabled:
            return None
        fingerprint = page_fingerprint(self.driver.page_source())
        if fingerprint != self._cache_fingerprint:
            self._cache.clear()
            self._cache_fingerprint = fingerprint

        key = (fingerprint, (section or None))
        if key in self._cache:
            return self._cache[key]

        result = self._analyze(
            section,
            self.settings.VISION_FAST_MAX_SIDE,
            self.settings.VISION_FAST_IMGSZ,
            ocr=False,
        )
        self._cache[key] = result
        return result

    def slow_for_text(self, section: Optional[str] = None) -> Optional[VisionResult]:
        """Higher-resolution detection with OCR; never cached."""
        if not self.enabled:
            return None
        return self._analyze(
            section,
            self.settings.VISION_SLOW_MAX_SIDE,
            self.settings.VISION_SLOW_IMGSZ,
            ocr=True,
        )

    def _analyze(self, section: Optional[str], max_side: int, imgsz: int, ocr: bool) -> Optional[VisionResult]:
        png = self.driver.screenshot_png()
        if not png:
            return None
        try:
            cropped, screen_w, crop_top, crop_h = crop_section(png, section)
        except OSError as e:
            logger.warning(f"[VisionService] Unreadable screenshot: {e}")
            return None
        result = self.client.analyze(cropped, max_side, imgsz, self.settings.VISION_CONFIDENCE, ocr)
        if result is None:
            return None
        return result.to_screen(screen_w, crop_top, crop_h)

    # =========================================================================
    # Queries
    # =========================================================================

    def find_text(self, text: str, section: Optional[str] = None, slow: bool = False) -> Optional[VisionElement]:
        result = self.slow_for_text(section) if slow else self.fast(section)
        return best_text_match(result, text)

    def header_rows(self) -> Dict[str, VisionElement]:
        """Detections whose text is exactly a section header ("from" / "to")."""
        headers: Dict[str, VisionElement] = {}
        result = self.fast(None)
        if result is None:
            return headers
        for element in result.elements:
            name = normalize(element.text)
            if name in ("from", "to") and name not in headers:
                headers[name] = element
        return headers

    def find_toggle_for_label(self, label: str, slow: bool = False) -> Optional[str]:
        """
        XPath of the toggle sitting on the same row as the detected `label` text.

        The toggle must be right of the label and within ROW_SLACK_PX of its row;
        the closest one by (3 x row distance + horizontal gap) wins.
        """
        hit = self.find_text(label, slow=slow)
        if hit is None:
            return None

        root = parse_page_source(self.driver.page_source())
        right_edge = hit.x + hit.w
        text_cy = hit.y + hit.h // 2

        best_xpath: Optional[str] = None
        best_score: Optional[int] = None
        for node in iter_nodes(root):
            if not _is_toggle(node):
                continue
            bounds = node_bounds(node)
            if bounds is None:
                continue
            cx, cy = center_of(bounds)
            if not (hit.y - ROW_SLACK_PX <= cy <= hit.y + hit.h + ROW_SLACK_PX):
                continue
            if bounds["x"] < right_edge - 4:
                continue
            score = abs(cy - text_cy) * 3 + max(0, bounds["x"] - right_edge)
            if best_score is None or score < best_score:
                best_score, best_xpath = score, indexed_path(node)

        if best_xpath:
            logger.debug(f"[VisionService] Toggle for '{label}' at {best_xpath}")
        return best_xpath


def _is_toggle(node) -> bool:
    if is_true(node, "checkable"):
        return True
    cls = node_attr(node, "class")
    if any(name in cls for name in _TOGGLE_CLASSES):
        return True
    rid = node_attr(node, "resource-id").lower()
    desc = node_attr(node, "content-desc").lower()
    return any(word in rid or word in desc for word in ("switch", "toggle"))
