"""
Run Context - per-run state shared by the runner, resolvers and handlers

Owned by AgentRunner for the lifetime of one plan execution. Holds the device
driver, the injected stores, the transient section scope and the cancellation
predicate, and builds the resolver services that handlers use.
"""

import logging
import time
from typing import Callable, Optional, Tuple

from mobile_pilot.config.defaults import AppDefaults, get_defaults
from mobile_pilot.core.flow_graph_store import FlowGraphStore, FlowRecorder
from mobile_pilot.core.flows.flow_models import ActionPlan, PlanStep, Snapshot, StepType
from mobile_pilot.core.flows.snapshot_store import SnapshotStore
from mobile_pilot.core.resolver.dialog_service import DialogService
from mobile_pilot.core.resolver.locator_resolver import LocatorResolver
from mobile_pilot.core.resolver.memory_service import MemoryService
from mobile_pilot.core.resolver.ui_service import UiService
from mobile_pilot.core.resolver.xpath_service import XPathService
from mobile_pilot.core.selector_memory import SelectorMemory
from mobile_pilot.services.device_driver import DeviceDriver
from mobile_pilot.services.vision_client import VisionClient
from mobile_pilot.services.vision_service import VisionService
from mobile_pilot.utils.error_handler import StopRequested
from mobile_pilot.utils.text_match import mask_value
from mobile_pilot.utils.ui_tree import page_fingerprint

logger = logging.getLogger(__name__)


def recorder_body(step: PlanStep) -> str:
    """Body text fed to the flow recorder for a step."""
    if step.type == StepType.INPUT_TEXT and not step.target_hint:
        return ": ***"
    if step.type in (StepType.INPUT_TEXT, StepType.CHECK):
        return f"{step.target_hint or ''}: {mask_value(step.target_hint, step.value)}"
    return step.target_hint or step.value or ""


def recorder_title(step: PlanStep) -> str:
    return step.display_hint or step.type.value


class RunContext:
    """
    Everything a step needs to act on the device.

    Services are created here so handlers only ever receive the context.
    """

    def __init__(
        self,
        driver: DeviceDriver,
        plan: ActionPlan,
        memory: Optional[SelectorMemory] = None,
        graph_store: Optional[FlowGraphStore] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        vision_client: Optional[VisionClient] = None,
        llm_client=None,
        settings: Optional[AppDefaults] = None,
        on_log: Optional[Callable[[str], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
        stop_signal: Optional[Callable[[], bool]] = None,
        flow_id: Optional[str] = None,
    ):
        self.driver = driver
        self.plan = plan
        self.settings = settings or get_defaults()
        self.memory = memory or SelectorMemory(settings=self.settings)
        self.graph_store = graph_store
        self.snapshots = snapshot_store or SnapshotStore(None)
        self.llm = llm_client
        self.on_log = on_log
        self.on_status = on_status
        self.stop_signal = stop_signal or (lambda: False)
        self.flow_id = flow_id or plan.title or "default"

        # Execution position, maintained by the runner
        self.pc = 0

        # Transient section scope ("from" / "to") with a step lifetime
        self.active_scope: Optional[str] = None
        self.scope_ttl_steps = 0
        self._scope_fresh = False
        self.last_tap_y: Optional[int] = None

        self.recorder: Optional[FlowRecorder] = None

        # Resolver services
        self.vision = VisionService(driver, vision_client, self.settings)
        self.xpath = XPathService(driver)
        self.ui = UiService(self)
        self.dialogs = DialogService(self)
        self.resolver = LocatorResolver(self)
        self.mem = MemoryService(self)

    # =========================================================================
    # Reporting
    # =========================================================================

    def log(self, message: str) -> None:
        logger.info(message)
        if self.on_log:
            self.on_log(message)

    def status(self, message: str) -> None:
        if self.on_status:
            self.on_status(message)

    # =========================================================================
    # Cancellation
    # =========================================================================

    def is_stopped(self) -> bool:
        return bool(self.stop_signal())

    def check_stop(self) -> None:
        if self.is_stopped():
            raise StopRequested()

    def sleep_ms(self, ms: int) -> None:
        """Sleep in short slices, raising StopRequested as soon as cancellation is seen."""
        slice_s = max(self.settings.CANCEL_SLICE_MS, 1) / 1000
        deadline = time.monotonic() + max(ms, 0) / 1000
        self.check_stop()
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            time.sleep(min(slice_s, remaining))
            self.check_stop()

    def deadline(self, ms: int) -> float:
        return time.monotonic() + ms / 1000

    # =========================================================================
    # Screen state
    # =========================================================================

    def page_source(self) -> str:
        return self.driver.page_source()

    def page_hash(self) -> str:
        return page_fingerprint(self.driver.page_source())

    def screen_key(self) -> Tuple[str, str]:
        """(app package, screen/activity) used to key selector memory."""
        return self.driver.current_package(), self.driver.current_activity()

    def next_step(self) -> Optional[PlanStep]:
        nxt = self.pc + 1
        return self.plan.steps[nxt] if 0 <= nxt < len(self.plan.steps) else None

    # =========================================================================
    # Section scope
    # =========================================================================

    def set_scope(self, section: Optional[str]) -> None:
        self.active_scope = section.lower() if section else None
        self.scope_ttl_steps = self.settings.SCOPE_TTL_STEPS if self.active_scope else 0
        self._scope_fresh = self.active_scope is not None

    def tick_scope_ttl(self) -> None:
        """Count one finished step against the scope lifetime."""
        if self.active_scope is None:
            return
        if self._scope_fresh:
            # The step that set the scope does not count against it
            self._scope_fresh = False
            return
        self.scope_ttl_steps -= 1
        if self.scope_ttl_steps <= 0:
            logger.debug(f"[RunContext] Scope '{self.active_scope}' expired")
            self.active_scope = None
            self.scope_ttl_steps = 0

    # =========================================================================
    # Recording
    # =========================================================================

    def _begin_recording(self) -> None:
        # Started on the first recorded step so the app is known after LAUNCH_APP
        self.recorder = FlowRecorder(
            self.graph_store,
            app=self.driver.current_package() or "unknown",
            flow_id=self.flow_id,
            title=self.plan.title,
            activity_provider=self.driver.current_activity,
        )

    def record_step(self, step_type: StepType, title: str, body: Optional[str] = None) -> None:
        if self.graph_store is None:
            return
        if self.recorder is None:
            self._begin_recording()
        self.recorder.add_step(step_type, title, body)

    def commit_recording(self) -> None:
        if self.recorder is not None:
            self.recorder.commit_run()

    def capture_synthetic(self, step_type: StepType, hint: Optional[str], notes: str) -> Snapshot:
        """Record an engine-initiated action (dialog dismissal, auto-scroll) at index -1."""
        return self.snapshots.capture(
            self.driver,
            step_index=-1,
            step_type=step_type.value,
            target_hint=hint,
            success=True,
            notes=notes,
            synthetic=True,
        )
