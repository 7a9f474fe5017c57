"""
AutoRun Resolver - decide the plan that actually runs

Inputs are a goal string and an optional user plan. An empty user plan is
replaced by the quick-intent parse of the goal. With autorun enabled, the
learned flow graphs of the app are searched for a path to the goal and the
inferred plan is aligned with the user plan.
"""

import logging
from typing import Optional

from mobile_pilot.core.flow_graph_store import FlowGraphStore
from mobile_pilot.core.flows.flow_models import ActionPlan
from mobile_pilot.ml_components.plan_aligner import align_plans
from mobile_pilot.ml_components.plan_inference import infer_plan
from mobile_pilot.ml_components.quick_intent import parse_quick_intent

logger = logging.getLogger(__name__)


class AutoRunResolver:
    """Combines user plans with plans inferred from recorded flows"""

    def __init__(self, graph_store: Optional[FlowGraphStore] = None):
        self.graph_store = graph_store

    def resolve(
        self,
        goal: str,
        app: Optional[str],
        user_plan: Optional[ActionPlan] = None,
        enabled: bool = True,
    ) -> ActionPlan:
        plan = user_plan
        if plan is None or not plan.steps:
            plan = parse_quick_intent(goal or "")
            logger.info(f"[AutoRunResolver] Quick intent produced {len(plan.steps)} step(s)")

        if not enabled or self.graph_store is None or not app:
            return plan.reindexed()

        inferred = self.infer(goal, app)
        if inferred is None:
            logger.info(f"[AutoRunResolver] No learned path for '{goal}' in {app}")
            return align_plans(None, plan)
        return align_plans(inferred, plan)

    def infer(self, goal: str, app: str) -> Optional[ActionPlan]:
        """First plan inferred from the app's graphs, most recently seen graph first."""
        graphs = sorted(self.graph_store.graphs_for_app(app), key=lambda g: g.last_seen, reverse=True)
        for graph in graphs:
            inferred = infer_plan(goal, graph)
            if inferred is not None:
                logger.info(f"[AutoRunResolver] Inferred {len(inferred.steps)} step(s) from graph {graph.id}")
                return inferred
        return None
