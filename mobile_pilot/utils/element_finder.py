"""
Candidate Element Finder - tap candidates for a hint, scored and ranked

Extraction works on the page dump only, so it is cheap and deterministic:

1. Collect nodes whose text/description equals the hint or contains any of
   its normalised tokens
2. Lift each match to its nearest clickable ancestor (up to 8 levels)
3. Classify a coarse role from container ids/classes
4. Emit a re-findable XPath anchored on the label (and the navigation
   container id, when there is one)

Ranking scores each candidate label against the hint:
    exact label match          100
    label contains hint         85
    hint tokens within label    75
    partial token overlap       45 + 5 x overlap
Candidates below the score floor (40) are dropped.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from mobile_pilot.utils.text_match import word_set
from mobile_pilot.utils.ui_tree import (
    center_of,
    is_true,
    iter_nodes,
    node_attr,
    node_bounds,
    parse_page_source,
    xpath_literal,
)

logger = logging.getLogger(__name__)

MAX_CLICKABLE_DEPTH = 8

_NAV_CLASSES = ("BottomNavigationView", "TabLayout", "BottomAppBar")


@dataclass
class UICandidate:
    """A clickable element that may be the target of a tap"""
    id: str
    label: str
    role: str
    xpath: str
    bounds: Optional[Dict[str, int]] = None  # {x, y, width, height}
    resource_id: str = ""
    class_name: str = ""
    score: int = 0

    @property
    def center(self) -> Optional[Tuple[int, int]]:
        return center_of(self.bounds) if self.bounds else None


def _normalize_hint(text: str) -> str:
    s = (text or "").lower()
    s = re.sub(r"&|\band\b", " ", s)
    s = re.sub(r"[^a-z0-9]+", " ", s)
    return re.sub(r"\s+", " ", s).strip()


class CandidateExtractor:
    """Builds UICandidates for a hint from a page dump"""

    ROLE_BOTTOM_NAV = "bottom_nav"
    ROLE_TAB = "tab"
    ROLE_BUTTON = "button"
    ROLE_CHIP = "chip"
    ROLE_LIST_ITEM = "list_item"
    ROLE_DIALOG_BUTTON = "dialog_button"
    ROLE_OTHER = "other"

    def __init__(self, limit: int = 80):
        self.limit = limit

    def extract(self, page_xml: str, hint: str) -> List[UICandidate]:
        root = parse_page_source(page_xml)
        if root is None:
            return []

        raw_hint = (hint or "").strip()
        tokens = [t for t in _normalize_hint(raw_hint).split() if len(t) >= 2]

        candidates: List[UICandidate] = []
        seen_targets = set()
        for node in iter_nodes(root):
            text = node_attr(node, "text")
            desc = node_attr(node, "content-desc")
            if not text and not desc:
                continue

            exact = bool(raw_hint) and raw_hint in (text, desc)
            haystack = _normalize_hint(f"{text} {desc}")
            if not exact and not any(t in haystack for t in tokens):
                continue

            target = self._clickable_ancestor(node)
            if target is None or id(target) in seen_targets:
                continue
            seen_targets.add(id(target))

            label = text or desc
            nav = self._nav_container(target)
            role = self._classify(target, nav, label)
            candidates.append(
                UICandidate(
                    id=f"c{len(candidates)}",
                    label=label,
                    role=role,
                    xpath=self._fixed_xpath(label, nav),
                    bounds=node_bounds(target),
                    resource_id=node_attr(target, "resource-id"),
                    class_name=node_attr(target, "class"),
                )
            )
            if len(candidates) >= self.limit:
                break

        logger.debug(f"[CandidateExtractor] {len(candidates)} candidates for '{hint}'")
        return candidates

    @staticmethod
    def _clickable_ancestor(node):
        current = node
        for _ in range(MAX_CLICKABLE_DEPTH + 1):
            if current is None or not isinstance(current.tag, str):
                return None
            if is_true(current, "clickable"):
                return current
            current = current.getparent()
        return None

    @staticmethod
    def _nav_container(node):
        for ancestor in node.iterancestors():
            rid = node_attr(ancestor, "resource-id").lower()
            cls = node_attr(ancestor, "class")
            if any(word in rid for word in ("nav", "tab", "bottom")) or any(c in cls for c in _NAV_CLASSES):
                return ancestor
        return None

    def _classify(self, target, nav, label: str) -> str:
        if nav is not None:
            rid = node_attr(nav, "resource-id").lower()
            cls = node_attr(nav, "class")
            if "nav" in rid or "bottom" in rid or "BottomNavigationView" in cls or "BottomAppBar" in cls:
                return self.ROLE_BOTTOM_NAV
            if "tab" in rid or "TabLayout" in cls:
                return self.ROLE_TAB
        cls = node_attr(target, "class")
        if "Button" in cls:
            return self.ROLE_BUTTON
        if "Chip" in cls:
            return self.ROLE_CHIP
        for ancestor in target.iterancestors():
            acls = node_attr(ancestor, "class")
            if "RecyclerView" in acls or "List" in acls:
                return self.ROLE_LIST_ITEM
        if label.strip().lower() in ("ok", "cancel"):
            return self.ROLE_DIALOG_BUTTON
        return self.ROLE_OTHER

    @staticmethod
    def _fixed_xpath(label: str, nav) -> str:
        lit = xpath_literal(label)
        match = f"*[@text={lit} or @content-desc={lit}]/ancestor-or-self::*[@clickable='true'][1]"
        nav_rid = node_attr(nav, "resource-id") if nav is not None else ""
        if nav_rid:
            return f"(//*[@resource-id={xpath_literal(nav_rid)}]//{match})[1]"
        return f"(//{match})[1]"


class RankService:
    """Scores candidates against a hint"""

    SCORE_EXACT = 100
    SCORE_CONTAINS = 85
    SCORE_TOKEN_SUBSET = 75
    SCORE_OVERLAP_BASE = 45
    SCORE_OVERLAP_STEP = 5

    def __init__(self, floor: int = 40):
        self.floor = floor

    def score(self, label: str, hint: str) -> int:
        lab = (label or "").strip().lower()
        h = (hint or "").strip().lower()
        if not lab or not h:
            return 0
        if lab == h:
            return self.SCORE_EXACT
        if h in lab:
            return self.SCORE_CONTAINS
        hint_words = word_set(h)
        label_words = word_set(lab)
        if hint_words and hint_words <= label_words:
            return self.SCORE_TOKEN_SUBSET
        overlap = len(hint_words & label_words)
        if overlap:
            return self.SCORE_OVERLAP_BASE + self.SCORE_OVERLAP_STEP * overlap
        return 0

    def rank(self, candidates: List[UICandidate], hint: str) -> List[UICandidate]:
        """Candidates at or above the floor, best first; ties keep discovery order."""
        for candidate in candidates:
            candidate.score = self.score(candidate.label, hint)
        kept = [c for c in candidates if c.score >= self.floor]
        return sorted(kept, key=lambda c: c.score, reverse=True)

    @staticmethod
    def scope_xy(candidates: List[UICandidate], header: Optional[Tuple[int, int]]) -> List[UICandidate]:
        """Re-sort by distance to a section header: |dy| + |dx| / 2."""
        if header is None:
            return candidates
        hx, hy = header

        def distance(c: UICandidate) -> float:
            center = c.center
            if center is None:
                return float("inf")
            return abs(center[1] - hy) + abs(center[0] - hx) / 2

        return sorted(candidates, key=distance)
