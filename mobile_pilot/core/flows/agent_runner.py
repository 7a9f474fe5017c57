"""
Agent Runner - executes an ActionPlan against one device session

Execution model:
- A program counter walks the plan; GOTO / IF_VISIBLE jump by label
- Every executed cycle produces exactly one timeline Snapshot
- The first failed step stops the run; a stop request ends it as "stopped"
- A cycle ceiling guards against endless GOTO loops
- Successful steps feed the flow recorder; the recorder is committed and
  the driver released exactly once, whatever happens
"""

import logging
from typing import Callable, Optional

from mobile_pilot.config.defaults import AppDefaults, get_defaults
from mobile_pilot.core.flow_graph_store import FlowGraphStore
from mobile_pilot.core.flows.flow_models import ActionPlan, RunResult, StepOutcome, StepType
from mobile_pilot.core.flows.run_context import RunContext, recorder_body, recorder_title
from mobile_pilot.core.flows.snapshot_store import SnapshotStore
from mobile_pilot.core.flows.step_dispatcher import StepDispatcher
from mobile_pilot.core.selector_memory import SelectorMemory
from mobile_pilot.services.device_driver import DeviceDriver
from mobile_pilot.services.vision_client import VisionClient
from mobile_pilot.utils.error_handler import STOP_REQUESTED, PlanValidationError, StopRequested

logger = logging.getLogger(__name__)

# Steps that only steer execution and are not part of the recorded flow
_UNRECORDED = (StepType.LABEL, StepType.GOTO, StepType.IF_VISIBLE, StepType.SLEEP)


class AgentRunner:
    """
    Runs plans step by step.

    Stores (selector memory, flow graphs) are shared across runs; everything
    per-run lives in the RunContext built by run().
    """

    def __init__(
        self,
        driver: DeviceDriver,
        memory: Optional[SelectorMemory] = None,
        graph_store: Optional[FlowGraphStore] = None,
        vision_client: Optional[VisionClient] = None,
        llm_client=None,
        settings: Optional[AppDefaults] = None,
        runs_dir: Optional[str] = None,
        on_log: Optional[Callable[[str], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
        stop_signal: Optional[Callable[[], bool]] = None,
    ):
        self.driver = driver
        self.settings = settings or get_defaults()
        self.memory = memory or SelectorMemory(settings=self.settings)
        self.graph_store = graph_store
        self.vision_client = vision_client
        self.llm_client = llm_client
        self.runs_dir = runs_dir
        self.on_log = on_log
        self.on_status = on_status
        self.stop_signal = stop_signal

    def run(self, plan: ActionPlan, flow_id: Optional[str] = None) -> RunResult:
        plan = plan.reindexed()
        store = (
            SnapshotStore.for_new_run(self.runs_dir, plan.title)
            if self.runs_dir
            else SnapshotStore(None, plan.title)
        )
        ctx = RunContext(
            self.driver,
            plan,
            memory=self.memory,
            graph_store=self.graph_store,
            snapshot_store=store,
            vision_client=self.vision_client,
            llm_client=self.llm_client,
            settings=self.settings,
            on_log=self.on_log,
            on_status=self.on_status,
            stop_signal=self.stop_signal,
            flow_id=flow_id,
        )
        result = RunResult(
            title=plan.title,
            success=False,
            total_steps=len(plan.steps),
            run_dir=str(store.run_dir) if store.run_dir else None,
        )
        ctx.log(f"Running plan '{plan.title}' ({len(plan.steps)} steps)")

        failed = False
        try:
            dispatcher = StepDispatcher(ctx)
            max_cycles = self.settings.MAX_PROGRAM_CYCLES
            cycles = 0
            while 0 <= ctx.pc < len(plan.steps):
                if ctx.is_stopped():
                    result.stopped = True
                    break

                step = plan.steps[ctx.pc]
                if max_cycles and cycles >= max_cycles:
                    result.error = f"Cycle limit of {max_cycles} reached"
                    store.capture(self.driver, step.index, step.type.value, step.target_hint, False, notes=result.error)
                    failed = True
                    break
                cycles += 1

                ctx.status(f"Step {step.index}/{len(plan.steps)}: {step.describe()}")
                ctx.log(f"[Step {step.index}] {step.describe()}")
                outcome = self._execute(dispatcher, step)
                store.capture(
                    self.driver,
                    step.index,
                    step.type.value,
                    step.display_hint,
                    outcome.ok,
                    locator=outcome.locator.describe() if outcome.locator else None,
                    notes=outcome.notes,
                )

                if outcome.notes == STOP_REQUESTED:
                    result.stopped = True
                    break
                if not outcome.ok:
                    failed = True
                    result.error = outcome.notes
                    ctx.log(f"[Step {step.index}] failed: {outcome.notes}")
                    break

                if outcome.next_pc is not None:
                    ctx.pc = outcome.next_pc
                elif outcome.advance:
                    ctx.pc += 1
                ctx.tick_scope_ttl()
                if step.type not in _UNRECORDED:
                    ctx.record_step(step.type, recorder_title(step), recorder_body(step))
        finally:
            self._finish(ctx)

        result.snapshots = list(store.timeline)
        result.success = not failed and not result.stopped
        if result.stopped:
            result.error = result.error or "Stopped by user"
        ctx.log(f"Plan completed. Success {result.successful_steps}/{len(plan.steps)}")
        return result

    def _execute(self, dispatcher: StepDispatcher, step) -> StepOutcome:
        try:
            return dispatcher.dispatch(step)
        except StopRequested:
            return StepOutcome(ok=False, notes=STOP_REQUESTED)
        except PlanValidationError as e:
            logger.error(f"[AgentRunner] Step {step.index}: {e.message}")
            return StepOutcome(ok=False, notes=e.message)
        except Exception as e:
            logger.error(f"[AgentRunner] Step {step.index} crashed: {e}", exc_info=True)
            return StepOutcome(ok=False, notes=f"{type(e).__name__}: {e}")

    def _finish(self, ctx: RunContext) -> None:
        try:
            ctx.commit_recording()
        except Exception as e:
            logger.error(f"[AgentRunner] Failed to commit flow recording: {e}")
        try:
            self.driver.quit()
        except Exception as e:
            logger.warning(f"[AgentRunner] Driver teardown failed: {e}")
