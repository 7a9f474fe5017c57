"""
Plan Aligner - merge an inferred (graph) plan with a user-authored plan

Global alignment (Needleman-Wunsch) over the two step sequences:

    same type and hint   +2
    same type            +1   (user INPUT_TEXT vs graph TAP also counts)
    mismatch             -1
    gap                  -2

Back-tracing keeps user steps, keeps graph-only steps only when they are
harmless navigation, and finally force-inserts any user INPUT_TEXT the merge
lost so credentials are never dropped.
"""

import logging
import re
from enum import Enum
from typing import List, Optional, Set, Tuple

from mobile_pilot.core.flows.flow_models import ActionPlan, PlanStep, StepType

logger = logging.getLogger(__name__)

SCORE_EXACT = 2
SCORE_TYPE = 1
SCORE_MISMATCH = -1
SCORE_GAP = -2

_HARMLESS_NAV = {StepType.TAP, StepType.SCROLL_TO, StepType.BACK}
_LOGIN_HINTS = {"login", "sign-in", "signin"}


class AlignOp(str, Enum):
    MATCH = "match"
    INSERT_USER = "insert_user"
    DELETE_GRAPH = "delete_graph"


def norm_hint(hint: Optional[str]) -> str:
    return re.sub(r"\s+", "-", (hint or "").lower().strip())


def step_key(step: PlanStep) -> str:
    return f"{step.type.value}|{norm_hint(step.target_hint)}"


def substitution_score(graph_step: PlanStep, user_step: PlanStep) -> int:
    if user_step.type == StepType.INPUT_TEXT and graph_step.type == StepType.TAP:
        return SCORE_TYPE
    if graph_step.type == user_step.type:
        if norm_hint(graph_step.target_hint) == norm_hint(user_step.target_hint):
            return SCORE_EXACT
        return SCORE_TYPE
    return SCORE_MISMATCH


def merge_steps(graph_step: PlanStep, user_step: PlanStep) -> PlanStep:
    """Pick the step to emit for an aligned (graph, user) pair."""
    if user_step.type == StepType.INPUT_TEXT:
        return user_step
    if user_step.type == StepType.WAIT_TEXT and graph_step.type != StepType.WAIT_TEXT:
        return user_step
    if user_step.type == StepType.ASSERT_TEXT and graph_step.type == StepType.WAIT_TEXT:
        return user_step
    if user_step.type != graph_step.type:
        return user_step
    user_hint = norm_hint(user_step.target_hint)
    if user_hint and user_hint != norm_hint(graph_step.target_hint):
        return graph_step.model_copy(update={"target_hint": user_step.target_hint})
    return graph_step


def _alignment_table(graph: List[PlanStep], user: List[PlanStep]) -> List[List[Tuple[int, AlignOp]]]:
    m, n = len(graph), len(user)
    table = [[(0, AlignOp.MATCH)] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        table[i][0] = (i * SCORE_GAP, AlignOp.DELETE_GRAPH)
    for j in range(1, n + 1):
        table[0][j] = (j * SCORE_GAP, AlignOp.INSERT_USER)

    for i in range(1, m + 1):
        for j in range(1, n + 1):
            diag = table[i - 1][j - 1][0] + substitution_score(graph[i - 1], user[j - 1])
            up = table[i - 1][j][0] + SCORE_GAP
            left = table[i][j - 1][0] + SCORE_GAP
            best = max(diag, up, left)
            # Ties prefer diagonal, then graph deletion
            if best == diag:
                table[i][j] = (best, AlignOp.MATCH)
            elif best == up:
                table[i][j] = (best, AlignOp.DELETE_GRAPH)
            else:
                table[i][j] = (best, AlignOp.INSERT_USER)
    return table


def ensure_critical_inputs(steps: List[PlanStep], user_steps: List[PlanStep]) -> List[PlanStep]:
    """
    Insert every user INPUT_TEXT missing from `steps`.

    Insertion point: first login-like TAP, else first TAP, else the start.
    Already-present inputs are left alone, so this is idempotent.
    """
    out = list(steps)
    present: Set[str] = {step_key(s) for s in out}
    missing = [u for u in user_steps if u.type == StepType.INPUT_TEXT and step_key(u) not in present]
    if not missing:
        return out

    insert_at = next(
        (i for i, s in enumerate(out) if s.type == StepType.TAP and norm_hint(s.target_hint) in _LOGIN_HINTS),
        None,
    )
    if insert_at is None:
        insert_at = next((i for i, s in enumerate(out) if s.type == StepType.TAP), 0)

    for step in missing:
        key = step_key(step)
        if key in present:
            continue
        out.insert(insert_at, step)
        present.add(key)
        insert_at += 1
    logger.info(f"[PlanAligner] Restored {len(missing)} user input step(s)")
    return out


def align_plans(graph_plan: Optional[ActionPlan], user_plan: ActionPlan) -> ActionPlan:
    """Merge a graph plan into a user plan. Output indices are 1..N."""
    graph = list(graph_plan.steps) if graph_plan else []
    user = list(user_plan.steps)

    if not graph:
        return ActionPlan(title=user_plan.title, steps=ensure_critical_inputs(user, user)).reindexed()
    if not user:
        return ActionPlan(title=graph_plan.title or user_plan.title, steps=graph).reindexed()

    table = _alignment_table(graph, user)

    merged: List[PlanStep] = []
    seen: Set[str] = set()

    def emit(step: PlanStep):
        key = step_key(step)
        if key not in seen:
            seen.add(key)
            merged.append(step)

    i, j = len(graph), len(user)
    while i > 0 or j > 0:
        op = table[i][j][1]
        if op == AlignOp.MATCH and i > 0 and j > 0:
            emit(merge_steps(graph[i - 1], user[j - 1]))
            i, j = i - 1, j - 1
        elif op == AlignOp.DELETE_GRAPH and i > 0:
            if graph[i - 1].type in _HARMLESS_NAV:
                emit(graph[i - 1])
            i -= 1
        else:
            emit(user[j - 1])
            j -= 1
    merged.reverse()

    title = user_plan.title or (graph_plan.title if graph_plan else "") or "AutoRun"
    result = ActionPlan(title=title, steps=ensure_critical_inputs(merged, user)).reindexed()
    logger.info(
        f"[PlanAligner] graph={len(graph)} user={len(user)} -> {len(result.steps)} steps"
    )
    return result
