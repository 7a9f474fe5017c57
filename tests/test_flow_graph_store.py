"""
Unit tests for flow-graph learning and persistence.
"""
import json

import pytest

from mobile_pilot.core.flow_graph_store import FlowGraphStore, FlowRecorder, normalize_token
from mobile_pilot.core.flows.flow_models import StepType
from mobile_pilot.ml_components.flow_graph_models import edge_key, token_label

APP = "com.example.app"


def record_login(store: FlowGraphStore, flow_id: str = "login") -> FlowRecorder:
    recorder = FlowRecorder(store, APP, flow_id, "Login flow", activity_provider=lambda: ".LoginActivity")
    recorder.add_step(StepType.LAUNCH_APP, APP)
    recorder.add_step(StepType.INPUT_TEXT, "Email address", "demo@example.com")
    recorder.add_step(StepType.INPUT_TEXT, "Password", "***")
    recorder.add_step(StepType.TAP, "LOGIN")
    recorder.add_step(StepType.ASSERT_TEXT, "Welcome")
    return recorder


class TestNormalizeToken:
    """Test field synonym folding."""

    @pytest.mark.parametrize(
        "step_type,hint,expected",
        [
            (StepType.INPUT_TEXT, "Email address", "INPUT_TEXT:username"),
            (StepType.INPUT_TEXT, "User name", "INPUT_TEXT:username"),
            (StepType.INPUT_TEXT, "Passcode", "INPUT_TEXT:password"),
            (StepType.WAIT_OTP, "Enter OTP", "WAIT_OTP:otp"),
            (StepType.TAP, "Sign in", "TAP:login"),
            (StepType.SLIDE, "Slide to confirm", "SLIDE:confirm"),
            (StepType.TAP, "Confirm", "TAP:confirm"),
            (StepType.TAP, "  Open   Settings ", "TAP:open settings"),
        ],
    )
    def test_tokens(self, step_type, hint, expected):
        assert normalize_token(step_type, hint) == expected

    def test_long_hint_truncated(self):
        token = normalize_token(StepType.WAIT_TEXT, "x" * 50)
        assert token == "WAIT_TEXT:" + "x" * 32

    def test_labels(self):
        assert token_label("INPUT_TEXT:username") == "INPUT TEXT • username"
        assert edge_key("A", "B") == "A→B"


class TestFlowGraphStore:
    """Test observation counting and snapshots."""

    def test_nodes_and_edges(self):
        store = FlowGraphStore(graph_dir=None)
        record_login(store)
        record_login(store)

        graph = store.get_graph(APP, "login")
        assert graph.nodes["TAP:login"].count == 2
        assert graph.edges[edge_key("INPUT_TEXT:password", "TAP:login")].weight == 2
        assert graph.activity == ".LoginActivity"
        assert graph.roots() == [f"LAUNCH_APP:{APP}"]

    def test_suggest_next_tokens(self):
        store = FlowGraphStore(graph_dir=None)
        record_login(store)
        store.add_observation(APP, "login", "Login flow", None, "TAP:forgot password", "INPUT_TEXT:password")
        store.add_observation(APP, "login", "Login flow", None, "TAP:login", "INPUT_TEXT:password")

        assert store.suggest_next_tokens(APP, "login", "INPUT_TEXT:password") == [
            "TAP:login",
            "TAP:forgot password",
        ]
        assert store.suggest_next_tokens(APP, None, "INPUT_TEXT:password", top_k=1) == ["TAP:login"]
        assert store.suggest_next_tokens(APP, "other", "INPUT_TEXT:password") == []

    def test_commit_once(self, tmp_path):
        store = FlowGraphStore(graph_dir=str(tmp_path))
        recorder = record_login(store)
        recorder.commit_run()
        recorder.commit_run()

        assert store.get_graph(APP, "login").runs == 1
        with open(tmp_path / "index.json", "r", encoding="utf-8") as f:
            index = json.load(f)
        assert [flow["id"] for flow in index["flows"]] == ["login"]
        assert len(list(tmp_path.glob("flow_*.json"))) == 1

    def test_reload_from_disk(self, tmp_path):
        store = FlowGraphStore(graph_dir=str(tmp_path))
        record_login(store).commit_run()

        reloaded = FlowGraphStore(graph_dir=str(tmp_path))
        graph = reloaded.get_graph(APP, "login")
        assert graph is not None
        assert set(graph.nodes) == {
            f"LAUNCH_APP:{APP}",
            "INPUT_TEXT:username",
            "INPUT_TEXT:password",
            "TAP:login",
            "ASSERT_TEXT:welcome",
        }

    def test_graphs_for_app(self):
        store = FlowGraphStore(graph_dir=None)
        record_login(store, "login")
        record_login(store, "relogin")
        ids = {g.id for g in store.graphs_for_app(APP)}
        assert ids == {"login", "relogin"}
        assert store.graphs_for_app("other.app") == []
