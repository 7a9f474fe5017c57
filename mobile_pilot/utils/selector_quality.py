"""
Selector Quality - rejects locators too brittle to be remembered or reused

A locator is "generic" when it would match almost anything on the screen
(positional wildcards, bare //*, literal null resource ids, blank descriptions).
Such locators are never written to selector memory and are filtered out of
lookups.
"""

import re
from typing import List, Tuple

_GENERIC_RULES: List[Tuple[str, "re.Pattern[str]"]] = [
    ("XPATH", re.compile(r"\(\.//\*\[@clickable=['\"]true['\"]\]\)\[1\]", re.IGNORECASE)),
    ("XPATH", re.compile(r"^//\*$")),
    ("XPATH", re.compile(r"\[@resource-id=['\"]null['\"]\]", re.IGNORECASE)),
    ("XPATH", re.compile(r"^\(\.//\*\)\[1\]$", re.IGNORECASE)),
    ("ID", re.compile(r"^null$", re.IGNORECASE)),
    ("DESC", re.compile(r"^\s*$")),
]


def is_generic_selector(strategy: str, value: str) -> bool:
    """True when (strategy, value) matches one of the brittle-locator rules."""
    strategy_name = getattr(strategy, "value", strategy)
    s = str(strategy_name).upper()
    v = (value or "").strip()
    if not v and s != "DESC":
        return True
    return any(rule_strategy == s and pattern.search(v) for rule_strategy, pattern in _GENERIC_RULES)
