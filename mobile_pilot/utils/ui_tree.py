"""
UI Tree Utilities - Parsing and querying Appium page-source dumps

The page source returned by UiAutomator2 is an XML document whose tag names are
widget class names (android.widget.Button, ...) with attributes such as text,
resource-id, content-desc, clickable and bounds="[x1,y1][x2,y2]".

lxml is used instead of xml.etree because the resolver relies on full XPath 1.0
(ancestor axes, translate(), positional predicates) when reasoning over dumps.
"""

import hashlib
import logging
import re
from typing import Dict, Iterator, List, Optional

from lxml import etree

logger = logging.getLogger(__name__)

_BOUNDS_RE = re.compile(r"\[(-?\d+),(-?\d+)\]\[(-?\d+),(-?\d+)\]")

UPPER = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
LOWER = "abcdefghijklmnopqrstuvwxyz"

# Attribute values UiAutomator reports for "unset"
_NULLISH = {"null", "none"}


def parse_page_source(xml_text: str) -> Optional[etree._Element]:
    """Parse a page-source dump. Returns None when the dump is empty or unparseable."""
    if not xml_text or not xml_text.strip():
        return None
    try:
        parser = etree.XMLParser(recover=True, huge_tree=True)
        return etree.fromstring(xml_text.encode("utf-8"), parser=parser)
    except (etree.XMLSyntaxError, ValueError) as e:
        logger.warning(f"[UiTree] Failed to parse page source: {e}")
        return None


def parse_bounds(bounds_str: Optional[str]) -> Optional[Dict[str, int]]:
    """
    Parse bounds string "[x1,y1][x2,y2]" into {x, y, width, height}

    Returns None when the string is missing or malformed.
    """
    if not bounds_str:
        return None
    match = _BOUNDS_RE.search(bounds_str)
    if not match:
        return None
    x1, y1, x2, y2 = (int(v) for v in match.groups())
    return {"x": x1, "y": y1, "width": x2 - x1, "height": y2 - y1}


def center_of(bounds: Dict[str, int]) -> tuple:
    return (bounds["x"] + bounds["width"] // 2, bounds["y"] + bounds["height"] // 2)


def node_attr(node: etree._Element, name: str) -> str:
    """Read an attribute from a dump node, treating 'null'/'none' as empty."""
    if name == "class":
        value = node.get("class") or node.tag
    else:
        value = node.get(name) or ""
    value = value.strip()
    return "" if value.lower() in _NULLISH else value


def is_true(node: etree._Element, name: str) -> bool:
    return node_attr(node, name).lower() == "true"


def iter_nodes(root: Optional[etree._Element]) -> Iterator[etree._Element]:
    """Iterate element nodes in document order (skips comments/PIs)."""
    if root is None:
        return iter(())
    return (n for n in root.iter() if isinstance(n.tag, str))


def node_bounds(node: etree._Element) -> Optional[Dict[str, int]]:
    return parse_bounds(node.get("bounds"))


def xpath_literal(value: str) -> str:
    """Quote a string for use inside an XPath expression."""
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    parts = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{p}'" for p in parts) + ")"


def lower_expr(expr: str) -> str:
    """XPath 1.0 lower-casing of an attribute expression via translate()."""
    return f"translate({expr},'{UPPER}','{LOWER}')"


def page_fingerprint(xml_text: Optional[str]) -> str:
    """Short stable hash of a page-source dump, used to detect UI changes."""
    if not xml_text:
        return ""
    return hashlib.sha256(xml_text.encode("utf-8", errors="ignore")).hexdigest()[:16]


def indexed_path(node: etree._Element) -> str:
    """
    Build an absolute class-indexed XPath for a node, e.g.
    //*[@class='android.widget.FrameLayout'][1]/android.widget.Button[2]
    """
    segments: List[str] = []
    current = node
    while current is not None and isinstance(current.tag, str):
        parent = current.getparent()
        if parent is None:
            break
        same = [c for c in parent if isinstance(c.tag, str) and c.tag == current.tag]
        segments.append(f"{current.tag}[{same.index(current) + 1}]")
        current = parent
    segments.reverse()
    return "/" + "/".join(["*"] + segments) if segments else "/*"
