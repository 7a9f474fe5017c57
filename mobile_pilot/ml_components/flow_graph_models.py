"""
Mobile Pilot - Flow Graph Models
Pydantic models for the learned step-transition graph

A flow graph is learned per (app, flow-id) from executed runs:
1. Every executed step becomes a token "TYPE:canonical-hint" (a node)
2. Every consecutive pair of tokens becomes a weighted edge
3. Plan inference walks the graph to turn a bare goal into steps
"""

import time
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def _now_ms() -> int:
    return int(time.time() * 1000)


class GraphNode(BaseModel):
    """One distinct step token and how often it was observed"""
    id: str = Field(..., description="Token, e.g. INPUT_TEXT:username")
    label: str = Field(..., description="Display label, e.g. 'INPUT TEXT • username'")
    count: int = Field(0, description="Times this token was observed")


class GraphEdge(BaseModel):
    """Observed transition between two consecutive tokens"""
    source: str
    target: str
    weight: int = Field(0, description="Times this transition was traversed")

    @property
    def key(self) -> str:
        return edge_key(self.source, self.target)


class FlowGraph(BaseModel):
    """
    Learned transition graph for one app flow

    Nodes and edges are keyed maps so repeated observations update in place.
    """
    id: str = Field(..., description="Flow id")
    title: str = ""
    app: str = ""
    activity: Optional[str] = None
    nodes: Dict[str, GraphNode] = Field(default_factory=dict)
    edges: Dict[str, GraphEdge] = Field(default_factory=dict)
    runs: int = 0
    last_seen: int = Field(default_factory=_now_ms)

    def outgoing(self, token: str) -> List[GraphEdge]:
        """Edges leaving `token`, heaviest first."""
        return sorted(
            (e for e in self.edges.values() if e.source == token),
            key=lambda e: e.weight,
            reverse=True,
        )

    def roots(self) -> List[str]:
        """Tokens with no incoming edge, or every token when the graph is cyclic."""
        targets = {e.target for e in self.edges.values()}
        roots = [n for n in self.nodes if n not in targets]
        return roots or list(self.nodes)


class FlowIndexEntry(BaseModel):
    """Row of the graph directory's index.json"""
    id: str
    title: str
    app: str
    runs: int
    last_seen: int


def edge_key(source: str, target: str) -> str:
    return f"{source}→{target}"


def token_label(token: str) -> str:
    """'INPUT_TEXT:username' -> 'INPUT TEXT • username'"""
    kind, sep, rest = token.partition(":")
    if not sep:
        return token
    return f"{kind.replace('_', ' ')} • {rest}"
