"""
Flow Graph Store - persistent step-transition graphs learned from runs

One graph per (app, flow-id). Each executed step is folded into a token
"TYPE:canonical-hint"; nodes count token occurrences and edges count
consecutive-token transitions. Graphs are written to `graph_dir` as one JSON
file per flow plus an index.json listing all flows.

FlowRecorder is the per-run writer: the execution engine feeds it every
completed step and commits once when the run ends.
"""

import hashlib
import json
import logging
import re
import time
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple

from mobile_pilot.core.flows.flow_models import StepType
from mobile_pilot.ml_components.flow_graph_models import (
    FlowGraph,
    FlowIndexEntry,
    GraphEdge,
    GraphNode,
    edge_key,
    token_label,
)

logger = logging.getLogger(__name__)

MAX_TOKEN_HINT = 32


def normalize_token(step_type: StepType, hint: Optional[str]) -> str:
    """
    Canonical token for a step, folding common field synonyms.

    INPUT_TEXT "Email address" -> "INPUT_TEXT:username"
    SLIDE "Slide to confirm"   -> "SLIDE:confirm"
    """
    h = (hint or "").strip().lower()
    if "user" in h or "email" in h or "login id" in h:
        canon = "username"
    elif "pass" in h:
        canon = "password"
    elif "otp" in h or "one time" in h:
        canon = "otp"
    elif "login" in h or "sign in" in h:
        canon = "login"
    elif "confirm" in h and step_type == StepType.SLIDE:
        canon = "confirm"
    else:
        canon = re.sub(r"\s+", " ", h)[:MAX_TOKEN_HINT]
    return f"{step_type.value}:{canon}"


class FlowGraphStore:
    """
    Manages learned flow graphs

    Storage Strategy:
    - In-memory dict keyed by (app, flow_id)
    - JSON file per flow, named by a hash of the key
    - index.json rewritten on every snapshot
    """

    def __init__(self, graph_dir: Optional[str] = "data/graphs"):
        self.graph_dir: Optional[Path] = Path(graph_dir) if graph_dir else None
        self._graphs: Dict[Tuple[str, str], FlowGraph] = {}
        self._lock = Lock()

        if self.graph_dir is not None:
            self.graph_dir.mkdir(parents=True, exist_ok=True)
            self._load_all()

        logger.info(f"[FlowGraphStore] Initialized with {len(self._graphs)} graphs")

    def _get_graph_path(self, app: str, flow_id: str) -> Path:
        """Get file path for a flow graph"""
        flow_hash = hashlib.sha256(f"{app}|{flow_id}".encode()).hexdigest()[:16]
        return self.graph_dir / f"flow_{flow_hash}.json"

    def _load_all(self):
        for path in sorted(self.graph_dir.glob("flow_*.json")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    graph = FlowGraph.model_validate(json.load(f))
                self._graphs[(graph.app, graph.id)] = graph
            except Exception as e:
                logger.error(f"[FlowGraphStore] Failed to load {path}: {e}")

    # =========================================================================
    # Observation
    # =========================================================================

    def add_observation(
        self,
        app: str,
        flow_id: str,
        title: str,
        activity: Optional[str],
        token: str,
        prev_token: Optional[str] = None,
    ) -> None:
        """Count one occurrence of `token` and, if given, the edge prev_token -> token."""
        with self._lock:
            graph = self._graphs.get((app, flow_id))
            if graph is None:
                graph = FlowGraph(id=flow_id, title=title, app=app, activity=activity)
                self._graphs[(app, flow_id)] = graph
            graph.last_seen = int(time.time() * 1000)

            node = graph.nodes.get(token)
            if node is None:
                node = GraphNode(id=token, label=token_label(token))
                graph.nodes[token] = node
            node.count += 1

            if prev_token is not None:
                key = edge_key(prev_token, token)
                edge = graph.edges.get(key)
                if edge is None:
                    edge = GraphEdge(source=prev_token, target=token)
                    graph.edges[key] = edge
                edge.weight += 1

    def bump_runs(self, app: str, flow_id: str) -> None:
        with self._lock:
            graph = self._graphs.get((app, flow_id))
            if graph is not None:
                graph.runs += 1
                graph.last_seen = int(time.time() * 1000)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_graph(self, app: str, flow_id: str) -> Optional[FlowGraph]:
        with self._lock:
            graph = self._graphs.get((app, flow_id))
            return graph.model_copy(deep=True) if graph else None

    def graphs_for_app(self, app: str) -> List[FlowGraph]:
        """All graphs of an app, most recently seen first."""
        with self._lock:
            graphs = [g.model_copy(deep=True) for (a, _), g in self._graphs.items() if a == app]
        return sorted(graphs, key=lambda g: g.last_seen, reverse=True)

    def suggest_next_tokens(
        self, app: str, flow_id: Optional[str], current_token: str, top_k: int = 3
    ) -> List[str]:
        """Most frequent successors of `current_token` (one flow, or every flow of the app)."""
        with self._lock:
            if flow_id is None:
                graphs = [g for (a, _), g in self._graphs.items() if a == app]
            else:
                graph = self._graphs.get((app, flow_id))
                graphs = [graph] if graph else []
            totals: Dict[str, int] = {}
            for graph in graphs:
                for edge in graph.edges.values():
                    if edge.source == current_token:
                        totals[edge.target] = totals.get(edge.target, 0) + edge.weight
        ranked = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
        return [token for token, _ in ranked[:top_k]]

    # =========================================================================
    # Persistence
    # =========================================================================

    def save_snapshot(self) -> bool:
        """Write every graph plus index.json. Returns False on I/O failure."""
        if self.graph_dir is None:
            return True
        with self._lock:
            graphs = list(self._graphs.values())
            try:
                index = [
                    FlowIndexEntry(id=g.id, title=g.title, app=g.app, runs=g.runs, last_seen=g.last_seen)
                    for g in sorted(graphs, key=lambda g: g.last_seen, reverse=True)
                ]
                with open(self.graph_dir / "index.json", "w", encoding="utf-8") as f:
                    json.dump(
                        {
                            "updated_at": int(time.time() * 1000),
                            "flows": [e.model_dump(mode="json") for e in index],
                        },
                        f,
                        indent=2,
                        ensure_ascii=False,
                    )
                for graph in graphs:
                    path = self._get_graph_path(graph.app, graph.id)
                    with open(path, "w", encoding="utf-8") as f:
                        json.dump(graph.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
                logger.debug(f"[FlowGraphStore] Saved {len(graphs)} graphs to {self.graph_dir}")
                return True
            except Exception as e:
                logger.error(f"[FlowGraphStore] Failed to save snapshot: {e}")
                return False


class FlowRecorder:
    """
    Feeds one run's executed steps into a FlowGraphStore.

    Usage:
        recorder = FlowRecorder(store, "com.app", "login", "Login flow")
        recorder.add_step(StepType.TAP, "Sign in")
        recorder.commit_run()
    """

    def __init__(
        self,
        store: FlowGraphStore,
        app: str,
        flow_id: str,
        title: str,
        activity_provider: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.store = store
        self.app = app
        self.flow_id = flow_id
        self.title = title
        self.activity_provider = activity_provider or (lambda: None)
        self.tokens: List[str] = []
        self.steps: List[Dict[str, Optional[str]]] = []
        self._committed = False

    def add_step(self, step_type: StepType, title: str, body: Optional[str] = None) -> str:
        token = normalize_token(step_type, title)
        prev = self.tokens[-1] if self.tokens else None
        self.tokens.append(token)
        self.steps.append({"type": step_type.value, "title": title, "body": body or None})
        self.store.add_observation(
            app=self.app,
            flow_id=self.flow_id,
            title=self.title,
            activity=self.activity_provider(),
            token=token,
            prev_token=prev,
        )
        return token

    def commit_run(self) -> None:
        """Count the run once and persist the graph snapshot."""
        if self._committed:
            return
        self._committed = True
        self.store.bump_runs(self.app, self.flow_id)
        self.store.save_snapshot()
        logger.info(f"[FlowRecorder] Committed {len(self.tokens)} tokens for {self.app}/{self.flow_id}")
