"""
Quick Intent - regex extraction of simple steps from a goal sentence

Recognized phrases (case-insensitive, values keep their case):
    input|enter|type <field> "<value>"
    wait "<text>"
    tap|click|press "<label>"
"""

import re
from typing import List, Tuple

from mobile_pilot.core.flows.flow_models import ActionPlan, PlanStep, StepType

_INPUT_RE = re.compile(
    r'\b(input|enter|type)\s+(?:"([^"]+)"|([a-z0-9_ -]+?))\s+"([^"]+)"', re.IGNORECASE
)
_WAIT_RE = re.compile(r'\bwait\s+"([^"]+)"', re.IGNORECASE)
_TAP_RE = re.compile(r'\b(tap|click|press)\s+"([^"]+)"', re.IGNORECASE)


def normalize_field(raw_field: str) -> str:
    return re.sub(r"\s+", " ", raw_field.strip())


def parse_quick_intent(goal: str) -> ActionPlan:
    """Steps found in `goal`, in the order they appear in the sentence."""
    found: List[Tuple[int, PlanStep]] = []

    for m in _INPUT_RE.finditer(goal):
        field = normalize_field(m.group(2) or m.group(3) or "")
        found.append((m.start(), PlanStep(type=StepType.INPUT_TEXT, target_hint=field, value=m.group(4))))

    for m in _WAIT_RE.finditer(goal):
        found.append(
            (m.start(), PlanStep(type=StepType.WAIT_TEXT, target_hint=m.group(1).strip(), meta={"scrollDir": "down"}))
        )

    for m in _TAP_RE.finditer(goal):
        found.append((m.start(), PlanStep(type=StepType.TAP, target_hint=m.group(2).strip())))

    found.sort(key=lambda pair: pair[0])
    return ActionPlan(title=goal, steps=[step for _, step in found]).reindexed()
