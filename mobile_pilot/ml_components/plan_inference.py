"""
Plan Inference - turn a bare goal into steps using a learned flow graph

1. Score every ASSERT_TEXT node's text against the goal (token Jaccard)
2. Pick the best node as target
3. BFS from root nodes, heaviest outgoing edges first, recording predecessors
4. Walk predecessors back from the target and reverse
5. Render TAP / WAIT_TEXT / INPUT_TEXT nodes as steps, then assert the target text
"""

import logging
import re
from collections import deque
from typing import Dict, List, Optional, Set

from mobile_pilot.core.flows.flow_models import ActionPlan, PlanStep, StepType
from mobile_pilot.ml_components.flow_graph_models import FlowGraph

logger = logging.getLogger(__name__)

_RENDERED_TYPES = (StepType.TAP, StepType.WAIT_TEXT, StepType.INPUT_TEXT)


def _word_set(text: str) -> Set[str]:
    cleaned = re.sub(r"[^a-z0-9\s]+", " ", (text or "").lower())
    return {t for t in cleaned.split() if len(t) >= 2}


def jaccard_score(a: str, b: str) -> float:
    """Token-set Jaccard similarity over lowercase alphanumeric words of length >= 2."""
    ta, tb = _word_set(a), _word_set(b)
    if not ta or not tb:
        return 0.0
    inter = len(ta & tb)
    return inter / max(len(ta) + len(tb) - inter, 1)


def node_text(label: str) -> str:
    """Observed text of a node: the part of its label after the bullet."""
    _, sep, rest = label.partition("•")
    return rest.strip() if sep else label.strip()


def bfs_path(graph: FlowGraph, target: str) -> Optional[List[str]]:
    """
    Breadth-first path from any root to `target`.

    Roots are tokens with no incoming edges (all tokens if none qualify).
    Returns the token sequence root..target, or None when unreachable.
    """
    if target not in graph.nodes:
        return None

    predecessors: Dict[str, Optional[str]] = {}
    queue = deque()
    for root in graph.roots():
        predecessors[root] = None
        queue.append(root)

    found = False
    while queue:
        current = queue.popleft()
        if current == target:
            found = True
            break
        for edge in graph.outgoing(current):
            if edge.target not in predecessors:
                predecessors[edge.target] = current
                queue.append(edge.target)

    if not found:
        return None

    path: List[str] = []
    node: Optional[str] = target
    while node is not None:
        path.append(node)
        node = predecessors[node]
    path.reverse()
    return path


def _step_for_token(token: str) -> Optional[PlanStep]:
    kind, _, hint = token.partition(":")
    try:
        step_type = StepType(kind.upper())
    except ValueError:
        return None
    if step_type not in _RENDERED_TYPES:
        return None
    meta = {"__fromGraph": "1", "graphNode": token}
    if step_type == StepType.WAIT_TEXT:
        meta["scrollDir"] = "down"
    return PlanStep(type=step_type, target_hint=hint.replace("-", " ").strip(), meta=meta)


def infer_plan(goal: str, graph: Optional[FlowGraph]) -> Optional[ActionPlan]:
    """
    Infer a plan reaching the ASSERT_TEXT node that best matches `goal`.

    Returns None when the graph has no assert nodes or no path reaches the target.
    """
    if graph is None or not graph.nodes:
        return None

    assert_nodes = [n for n in graph.nodes.values() if n.id.upper().startswith("ASSERT_TEXT:")]
    if not assert_nodes:
        logger.debug(f"[PlanInference] No ASSERT_TEXT nodes in graph {graph.id}")
        return None

    scored = sorted(
        ((jaccard_score(goal, node_text(n.label)), n) for n in assert_nodes),
        key=lambda pair: pair[0],
        reverse=True,
    )
    best_score, best = scored[0]
    target_text = node_text(best.label)
    logger.info(f"[PlanInference] Target '{target_text}' (score {best_score:.2f}) in graph {graph.id}")

    path = bfs_path(graph, best.id)
    if not path:
        logger.info(f"[PlanInference] No path to {best.id}")
        return None

    steps = [s for s in (_step_for_token(t) for t in path) if s is not None]
    steps.append(
        PlanStep(
            type=StepType.ASSERT_TEXT,
            target_hint=target_text,
            meta={"__fromGraph": "1", "graphNode": best.id, "scrollDir": "down"},
        )
    )
    logger.debug(f"[PlanInference] Path: {' -> '.join(path)}")
    return ActionPlan(title=f"Auto: {goal}", steps=steps).reindexed()
