"""
Mobile Pilot - Flow Models
Action plans, steps, locators and execution records
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mobile_pilot.utils.error_handler import LabelNotFoundError, PlanValidationError


class StepType(str, Enum):
    """Types of steps in an action plan"""

    LAUNCH_APP = "LAUNCH_APP"
    TAP = "TAP"
    INPUT_TEXT = "INPUT_TEXT"
    SCROLL_TO = "SCROLL_TO"
    WAIT_TEXT = "WAIT_TEXT"
    ASSERT_TEXT = "ASSERT_TEXT"
    CHECK = "CHECK"
    SLIDE = "SLIDE"
    WAIT_OTP = "WAIT_OTP"
    BACK = "BACK"
    SLEEP = "SLEEP"
    # Control flow
    LABEL = "LABEL"
    GOTO = "GOTO"
    IF_VISIBLE = "IF_VISIBLE"


class Strategy(str, Enum):
    """How a locator value is interpreted by the driver"""

    ID = "ID"
    XPATH = "XPATH"
    UIAUTOMATOR = "UIAUTOMATOR"
    DESC = "DESC"


class Locator(BaseModel):
    """A re-findable expression for one UI element"""

    strategy: Strategy = Field(..., description="Resolution strategy")
    value: str = Field(..., description="Expression interpreted per strategy")
    alternatives: List[str] = Field(
        default_factory=list, description="Equivalent expressions kept as fallbacks"
    )

    def describe(self) -> str:
        return f"{self.strategy.value}:{self.value}"


class PlanStep(BaseModel):
    """Single instruction in an action plan"""

    model_config = ConfigDict(populate_by_name=True)

    index: int = Field(0, description="1-based position in the plan")
    type: StepType = Field(..., description="Step category")
    target_hint: Optional[str] = Field(
        None, alias="targetHint", description="Human label of the element to act on"
    )
    value: Optional[str] = Field(None, description="Text to type, package, label name, ...")
    meta: Dict[str, str] = Field(default_factory=dict, description="Free-form step options")

    @field_validator("value", mode="before")
    @classmethod
    def _stringify_value(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @field_validator("meta", mode="before")
    @classmethod
    def _stringify_meta(cls, v: Any) -> Dict[str, str]:
        if not v:
            return {}
        return {str(k): str(val) for k, val in dict(v).items() if val is not None}

    @property
    def hint_or_value(self) -> str:
        return (self.target_hint or self.value or "").strip()

    @property
    def display_hint(self) -> Optional[str]:
        """Hint written to logs, snapshots and graphs. Typed INPUT_TEXT values never appear."""
        if self.type == StepType.INPUT_TEXT:
            return self.target_hint or self.type.value
        return self.target_hint or self.value

    def describe(self) -> str:
        if self.type == StepType.INPUT_TEXT:
            label = self.target_hint or ""
        else:
            label = self.target_hint or self.value or ""
        return f"{self.type.value} {label}".strip()


class ActionPlan(BaseModel):
    """Ordered automation script"""

    title: str = Field("", description="Human readable plan name")
    steps: List[PlanStep] = Field(default_factory=list)

    def reindexed(self) -> "ActionPlan":
        """Return a copy whose step indices are exactly 1..N."""
        steps = [s.model_copy(update={"index": i}) for i, s in enumerate(self.steps, start=1)]
        return ActionPlan(title=self.title, steps=steps)

    def label_index(self, label: str) -> Optional[int]:
        """0-based position of the LABEL step named `label`."""
        wanted = (label or "").strip()
        for i, step in enumerate(self.steps):
            if step.type == StepType.LABEL and step.hint_or_value == wanted:
                return i
        return None

    def validate_plan(self) -> None:
        """
        Raise PlanValidationError for missing required fields and
        LabelNotFoundError for dangling GOTO / IF_VISIBLE targets.
        """
        for step in self.steps:
            if step.type == StepType.LABEL and not step.hint_or_value:
                raise PlanValidationError("LABEL step needs a name", step.index)
            if step.type in (StepType.INPUT_TEXT, StepType.CHECK) and step.value is None:
                raise PlanValidationError(f"{step.type.value} step needs a value", step.index)
            for target in jump_targets(step):
                if self.label_index(target) is None:
                    raise LabelNotFoundError(target, step.index)


def jump_targets(step: PlanStep) -> List[str]:
    """Labels a control-flow step may jump to."""
    if step.type == StepType.GOTO:
        label = step.meta.get("label") or step.target_hint or step.value
        return [label] if label else [""]
    if step.type == StepType.IF_VISIBLE:
        return [t for t in (step.meta.get("then"), step.meta.get("else")) if t]
    return []


@dataclass
class StepOutcome:
    """Result of executing one step"""
    ok: bool
    locator: Optional[Locator] = None
    notes: Optional[str] = None
    advance: bool = True
    next_pc: Optional[int] = None  # explicit jump target (0-based)


@dataclass
class Snapshot:
    """Audit record for one executed step"""
    step_index: int
    step_type: str
    target_hint: Optional[str]
    success: bool
    locator: Optional[str] = None
    ui_dump_path: Optional[str] = None
    screenshot_path: Optional[str] = None
    notes: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class RunResult:
    """Outcome of a whole plan execution"""
    title: str
    success: bool
    stopped: bool = False
    snapshots: List[Snapshot] = field(default_factory=list)
    total_steps: int = 0
    error: Optional[str] = None
    run_dir: Optional[str] = None

    @property
    def successful_steps(self) -> int:
        # Synthetic dialog/auto-scroll records carry index -1 and do not count
        return sum(1 for s in self.snapshots if s.success and s.step_index > 0)
