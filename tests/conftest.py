"""
Shared fixtures: fast settings and fake devices preloaded with screens
"""

import pytest

from mobile_pilot.config.defaults import AppDefaults

from .fake_device import HOME_XML, LAUNCHER_XML, LOGIN_XML, SETTINGS_XML, FakeDevice


@pytest.fixture
def fast_settings() -> AppDefaults:
    """Every wait and window shrunk to a few milliseconds."""
    return AppDefaults(
        VISION_ENABLED=False,
        WAIT_TEXT_TIMEOUT_MS=60,
        TAP_TIMEOUT_MS=40,
        ASSERT_TIMEOUT_MS=40,
        IF_VISIBLE_TIMEOUT_MS=10,
        MANUAL_FALLBACK_MS=10,
        WAIT_OTP_TIMEOUT_MS=30,
        DEFAULT_SLEEP_MS=5,
        CANCEL_SLICE_MS=5,
        DIALOG_WINDOW_MS=0,
        DIALOG_POLL_MS=1,
        DIALOG_SETTLE_MS=0,
        DIALOG_PRECHECK_MS=0,
        INPUT_RETRY_DELAY_MS=1,
        SLIDE_RETRY_DELAY_MS=1,
        WAIT_RETRY_DELAY_MS=1,
        STABLE_UI_QUIET_MS=0,
        STABLE_UI_TIMEOUT_MS=20,
        STABLE_UI_POLL_MS=1,
        BACKOFF_START_MS=2,
        BACKOFF_MAX_MS=5,
        PRESENCE_POLL_MS=2,
        CHANGE_POLL_MS=1,
        TAP_CHANGE_WINDOW_MS=10,
        CANDIDATE_CHANGE_WINDOW_MS=10,
        NEXT_STEP_PROBE_MS=5,
        BUSY_WAIT_MS=5,
        CANDIDATE_ROUND_PAUSE_MS=2,
        SWIPE_DURATION_MS=1,
    )


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
def login_device() -> FakeDevice:
    """Launcher -> (launch) login -> (LOGIN) home"""
    dev = FakeDevice()
    dev.add_screen("launcher", LAUNCHER_XML, package="com.android.launcher", activity=".Launcher")
    dev.add_screen("login", LOGIN_XML, activity=".LoginActivity")
    dev.add_screen("home", HOME_XML, activity=".HomeActivity")
    dev.launch_screens["com.example.app"] = "login"
    dev.on_click("login", "com.example.app:id/login", "home")
    return dev


@pytest.fixture
def settings_device() -> FakeDevice:
    dev = FakeDevice()
    dev.add_screen("settings", SETTINGS_XML, package="com.example.settings", activity=".Settings")
    return dev
