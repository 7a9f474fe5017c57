"""
Text Matching Helpers - normalisation and token sets shared by the resolver

All comparisons are case-insensitive and ignore punctuation.
"""

import re
from typing import List, Optional, Set

# Words that never identify a tap target on their own
TAP_STOP_WORDS = {"to", "for", "and", "the", "my", "your", "a", "an", "of", "on", "in", "at", "with"}

# Words describing the kind of element rather than the element itself
RESOLVER_STOP_WORDS = {
    "text", "screen", "page", "button", "label", "field",
    "tab", "title", "item", "link", "menu", "option",
}

_REPEAT_RE = re.compile(r"(.)\1{2,}")
_SPLIT_RE = re.compile(r"[\s_\-]+")
_STRIP_CHARS = "\"'.,:;"


def normalize(text: Optional[str]) -> str:
    """
    Lowercase, spell out '&', drop punctuation, collapse runs of 3+ repeated
    characters to 2 and squeeze whitespace.

    >>> normalize("Pay  &  Transfer!!!")
    'pay and transfer'
    """
    s = (text or "").lower().replace("&", " and ")
    s = re.sub(r"[^\w\s]", " ", s)
    s = _REPEAT_RE.sub(r"\1\1", s)
    return re.sub(r"\s+", " ", s).strip()


def significant_tokens(text: Optional[str]) -> List[str]:
    """Tokens of 3+ chars that contain a letter and are not tap stop words."""
    out: List[str] = []
    for tok in normalize(text).split(" "):
        if len(tok) >= 3 and re.search(r"[a-z]", tok) and tok not in TAP_STOP_WORDS and tok not in out:
            out.append(tok)
    return out


def hint_tokens(hint: Optional[str]) -> List[str]:
    """Resolver tokens: split on whitespace/underscore/dash, strip quotes, drop stop words."""
    out: List[str] = []
    for raw in _SPLIT_RE.split(hint or ""):
        tok = raw.strip(_STRIP_CHARS).lower()
        if tok and tok not in RESOLVER_STOP_WORDS:
            out.append(tok)
    return out


def word_set(text: Optional[str], min_len: int = 2) -> Set[str]:
    return {t for t in re.split(r"\W+", (text or "").lower()) if len(t) >= min_len}


def soft_score(label: Optional[str], target: Optional[str]) -> float:
    """1.0 for equality or containment, else token Jaccard in [0, 1]."""
    a, b = normalize(label), normalize(target)
    if not a or not b:
        return 0.0
    if a == b or b in a or a in b:
        return 1.0
    ta, tb = set(a.split()), set(b.split())
    inter = len(ta & tb)
    union = len(ta | tb)
    return inter / union if union else 0.0


def mask_value(hint: Optional[str], value: Optional[str]) -> str:
    """Hide values typed into password-like fields."""
    v = value or ""
    if "pass" not in (hint or "").lower():
        return v
    if len(v) <= 2:
        return "***"
    return f"{v[0]}{'*' * (len(v) - 2)}{v[-1]}"
