"""
Unit tests for the selector memory and locator quality rules.
"""
import json

import pytest

from mobile_pilot.config.defaults import AppDefaults
from mobile_pilot.core.flows.flow_models import Locator, StepType, Strategy
from mobile_pilot.core.selector_memory import SelectorMemory, memory_key, screen_aliases
from mobile_pilot.utils.selector_quality import is_generic_selector

APP = "com.example.app"
LOGIN_ID = Locator(strategy=Strategy.ID, value="com.example.app:id/login")
LOGIN_XPATH = Locator(strategy=Strategy.XPATH, value="//*[@text='LOGIN']")


@pytest.fixture
def memory():
    return SelectorMemory(data_dir=None, settings=AppDefaults())


class TestSelectorQuality:
    """Test brittle-locator detection."""

    @pytest.mark.parametrize(
        "strategy,value",
        [
            ("XPATH", "//*"),
            ("XPATH", "(.//*[@clickable='true'])[1]"),
            ("XPATH", "//*[@resource-id='null']"),
            ("ID", "null"),
            ("DESC", "  "),
            ("ID", ""),
        ],
    )
    def test_generic(self, strategy, value):
        assert is_generic_selector(strategy, value)

    def test_specific(self):
        assert not is_generic_selector(Strategy.ID, "com.example.app:id/login")
        assert not is_generic_selector(Strategy.XPATH, "//*[@text='LOGIN']")


class TestScreenAliases:
    def test_relative_activity(self):
        assert screen_aliases(".Login", "com.app") == [".Login", "com.app.Login", "Login"]

    def test_empty(self):
        assert screen_aliases("", "com.app") == []

    def test_key(self):
        assert memory_key(APP, ".Login", StepType.TAP, " Sign In ") == f"{APP}||.Login||TAP||sign in"


class TestSelectorMemory:
    """Test reinforcement, lookup and pruning."""

    def test_success_then_find(self, memory):
        assert memory.success(APP, ".LoginActivity", StepType.TAP, "Login", LOGIN_ID)
        found = memory.find(APP, ".LoginActivity", StepType.TAP, "login")
        assert [loc.describe() for loc in found] == [LOGIN_ID.describe()]

    def test_find_through_alias(self, memory):
        memory.success(APP, "LoginActivity", StepType.TAP, "Login", LOGIN_ID)
        assert memory.find(APP, ".LoginActivity", StepType.TAP, "Login")

    def test_find_includes_no_screen_bucket(self, memory):
        memory.success(APP, "", StepType.TAP, "Login", LOGIN_XPATH)
        memory.success(APP, ".LoginActivity", StepType.TAP, "Login", LOGIN_ID)
        found = memory.find(APP, ".LoginActivity", StepType.TAP, "Login")
        assert [loc.strategy for loc in found] == [Strategy.ID, Strategy.XPATH]

    def test_best_score_first(self, memory):
        memory.success(APP, ".A", StepType.TAP, "Login", LOGIN_XPATH)
        memory.success(APP, ".A", StepType.TAP, "Login", LOGIN_ID)
        memory.success(APP, ".A", StepType.TAP, "Login", LOGIN_ID)
        found = memory.find(APP, ".A", StepType.TAP, "Login")
        assert found[0].strategy == Strategy.ID

    def test_generic_never_stored(self, memory):
        generic = Locator(strategy=Strategy.XPATH, value="//*")
        assert not memory.success(APP, ".A", StepType.TAP, "Login", generic)
        assert memory.stats() == {"entries": 0, "selectors": 0}

    def test_empty_hint_never_stored(self, memory):
        assert not memory.success(APP, ".A", StepType.TAP, "  ", LOGIN_ID)

    def test_failures_prune(self, memory):
        for _ in range(3):
            memory.failure(APP, ".A", StepType.TAP, "Login", LOGIN_ID)
        assert memory.get_selectors(APP, ".A", StepType.TAP, "Login") == []

    def test_failures_keep_good_selector(self, memory):
        for _ in range(3):
            memory.success(APP, ".A", StepType.TAP, "Login", LOGIN_ID)
        for _ in range(3):
            memory.failure(APP, ".A", StepType.TAP, "Login", LOGIN_ID)
        selectors = memory.get_selectors(APP, ".A", StepType.TAP, "Login")
        assert len(selectors) == 1
        assert selectors[0].score == 3

    def test_max_candidates(self):
        memory = SelectorMemory(data_dir=None, settings=AppDefaults(MEMORY_MAX_CANDIDATES=2))
        for i in range(4):
            memory.success(APP, ".A", StepType.TAP, "Login", Locator(strategy=Strategy.ID, value=f"id/{i}"))
        assert len(memory.get_selectors(APP, ".A", StepType.TAP, "Login")) == 2

    def test_delete_wildcards(self, memory):
        memory.success(APP, ".A", StepType.TAP, "Login", LOGIN_ID)
        memory.success(APP, ".A", StepType.INPUT_TEXT, "Username", LOGIN_ID)
        memory.success("other.app", ".A", StepType.TAP, "Login", LOGIN_ID)
        assert memory.delete(app=APP, op=StepType.TAP) == 1
        assert memory.clear_all() == 2

    def test_persistence(self, tmp_path):
        memory = SelectorMemory(data_dir=str(tmp_path), settings=AppDefaults())
        memory.success(APP, ".A", StepType.TAP, "Login", LOGIN_ID)

        with open(memory.memory_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        assert memory_key(APP, ".A", StepType.TAP, "login") in data

        reloaded = SelectorMemory(data_dir=str(tmp_path), settings=AppDefaults())
        assert reloaded.find(APP, ".A", StepType.TAP, "Login")[0].value == LOGIN_ID.value

    def test_generic_entries_on_disk_are_skipped(self, tmp_path):
        key = memory_key(APP, ".A", StepType.TAP, "login")
        entry = {
            "app": APP,
            "screen": ".A",
            "op": "TAP",
            "hint": "login",
            "selectors": [
                {"strategy": "XPATH", "value": "(.//*[@clickable='true'])[1]", "successes": 9},
                {"strategy": "ID", "value": LOGIN_ID.value, "successes": 1},
            ],
        }
        with open(tmp_path / "components.json", "w", encoding="utf-8") as f:
            json.dump({key: entry}, f)

        memory = SelectorMemory(data_dir=str(tmp_path), settings=AppDefaults())
        assert [loc.value for loc in memory.find(APP, ".A", StepType.TAP, "Login")] == [LOGIN_ID.value]
