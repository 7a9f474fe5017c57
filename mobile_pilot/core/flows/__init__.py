"""
Flow System Package
"""
from .flow_models import (
    StepType,
    Strategy,
    Locator,
    PlanStep,
    ActionPlan,
    StepOutcome,
    Snapshot,
    RunResult,
)

__all__ = [
    'StepType',
    'Strategy',
    'Locator',
    'PlanStep',
    'ActionPlan',
    'StepOutcome',
    'Snapshot',
    'RunResult',
]
