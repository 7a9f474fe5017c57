"""
Tests for SCROLL_TO / SLIDE gestures and the command line entry point.
"""
import json

import pytest

from mobile_pilot.__main__ import EXIT_CONFIG, build_parser, load_plan, main
from mobile_pilot.core.flows.agent_runner import AgentRunner
from mobile_pilot.core.flows.flow_models import ActionPlan, PlanStep, StepType
from mobile_pilot.core.selector_memory import SelectorMemory
from mobile_pilot.utils.error_handler import LabelNotFoundError

from .fake_device import HOME_XML, LIST_BOTTOM_XML, LIST_TOP_XML, FakeDevice

SLIDER_XML = """
<hierarchy rotation="0">
  <android.widget.FrameLayout class="android.widget.FrameLayout" bounds="[0,0][1080,2400]">
    <android.widget.TextView class="android.widget.TextView" text="Slide to confirm" bounds="[100,2000][980,2120]"/>
  </android.widget.FrameLayout>
</hierarchy>
"""


class SlidingDevice(FakeDevice):
    """Moves to the home screen once dragged"""

    def drag(self, start_x, start_y, end_x, end_y, hold_ms, move_ms):
        super().drag(start_x, start_y, end_x, end_y, hold_ms, move_ms)
        self.current = "home"


def run_steps(device, settings, *steps):
    memory = SelectorMemory(data_dir=None, settings=settings)
    return AgentRunner(device, memory=memory, settings=settings).run(ActionPlan(title="gesture", steps=list(steps)))


class TestSlide:
    def test_slide_succeeds(self, fast_settings):
        device = SlidingDevice().add_screen("slider", SLIDER_XML).add_screen("home", HOME_XML)
        result = run_steps(device, fast_settings, PlanStep(type=StepType.SLIDE, target_hint="Slide to confirm"))

        assert result.success, result.error
        assert device.drags == [(205, 2060, 874, 2060)]

    def test_slide_retries_rows_then_fails(self, fast_settings):
        device = FakeDevice().add_screen("slider", SLIDER_XML)
        result = run_steps(device, fast_settings, PlanStep(type=StepType.SLIDE, target_hint="Slide to confirm"))

        assert not result.success
        assert result.error == 'SLIDE failed: "Slide to confirm"'
        assert len(device.drags) == 3 * fast_settings.SLIDE_RETRY_ATTEMPTS
        assert [d[1] for d in device.drags[:3]] == [2060, 2074, 2045]


class TestScrollTo:
    def test_scroll_to_text(self, fast_settings):
        device = FakeDevice().add_screen("top", LIST_TOP_XML).add_screen("bottom", LIST_BOTTOM_XML)
        device.swipe_transitions["top"] = "bottom"
        result = run_steps(device, fast_settings, PlanStep(type=StepType.SCROLL_TO, target_hint="Terms of service"))

        assert result.success
        assert device.current == "bottom"

    def test_plain_scroll(self, fast_settings):
        device = FakeDevice().add_screen("home", HOME_XML)
        result = run_steps(device, fast_settings, PlanStep(type=StepType.SCROLL_TO, meta={"scrollDir": "up"}))

        assert result.success
        assert result.snapshots[0].notes == "scrolled up"
        assert len(device.swipes) == 1


class TestCli:
    """Test argument parsing and up-front plan validation."""

    @pytest.fixture(autouse=True)
    def isolated_data(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("MOBILE_PILOT_DATA_DIR", str(tmp_path / "data"))

    def test_parser(self):
        args = build_parser().parse_args(["run", "--plan", "p.json", "--udid", "emulator-5554", "--no-vision"])
        assert args.plan == "p.json"
        assert args.udid == "emulator-5554"
        assert args.no_vision
        assert not args.autorun
        assert args.log_level == "INFO"

    def test_plan_and_goal_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "--plan", "p.json", "--goal", "log in"])

    def test_load_plan_rejects_dangling_label(self, tmp_path):
        path = tmp_path / "plan.json"
        path.write_text(json.dumps({"title": "Jump", "steps": [{"type": "GOTO", "value": "nowhere"}]}))
        with pytest.raises(LabelNotFoundError):
            load_plan(str(path))

    def test_main_missing_plan_file(self, tmp_path):
        assert main(["run", "--plan", str(tmp_path / "missing.json")]) == EXIT_CONFIG

    def test_main_invalid_plan(self, tmp_path):
        path = tmp_path / "plan.json"
        path.write_text(json.dumps({"title": "Bad", "steps": [{"type": "FLY"}]}))
        assert main(["run", "--plan", str(path)]) == EXIT_CONFIG

    def test_main_dangling_label(self, tmp_path):
        path = tmp_path / "plan.json"
        path.write_text(json.dumps({"title": "Jump", "steps": [{"type": "GOTO", "value": "nowhere"}]}))
        assert main(["run", "--plan", str(path)]) == EXIT_CONFIG

    def test_main_goal_without_steps(self):
        assert main(["run", "--goal", "make me a sandwich"]) == EXIT_CONFIG
