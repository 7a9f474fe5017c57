"""
Mobile Pilot - Default Configuration Constants

Centralized configuration for the execution engine and its collaborators.
Values can be overridden via environment variables.

Usage:
    from mobile_pilot.config.defaults import Defaults
    timeout = Defaults.TAP_TIMEOUT_MS

All durations suffixed with _MS are milliseconds; the rest are seconds.
"""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AppDefaults:
    """Application-wide default configuration."""

    # ==========================================================================
    # Storage
    # ==========================================================================
    DATA_DIR: str = "./data"
    MEMORY_FILE: str = "components.json"
    GRAPH_DIR: str = "graphs"
    RUNS_DIR: str = "runs"

    # ==========================================================================
    # External Services
    # ==========================================================================
    APPIUM_SERVER_URL: str = "http://127.0.0.1:4723"
    VISION_SERVER_URL: str = "http://127.0.0.1:8765"
    VISION_ENABLED: bool = True
    VISION_CONNECT_TIMEOUT: int = 5
    VISION_READ_TIMEOUT: int = 10
    VISION_FAST_MAX_SIDE: int = 480
    VISION_FAST_IMGSZ: int = 320
    VISION_SLOW_MAX_SIDE: int = 640
    VISION_SLOW_IMGSZ: int = 416
    VISION_CONFIDENCE: float = 0.25
    LLM_SERVER_URL: str = "http://127.0.0.1:11434"
    LLM_MODEL: str = "llama3.1"
    LLM_TIMEOUT: int = 60

    # ==========================================================================
    # Step Timeouts (ms)
    # ==========================================================================
    WAIT_TEXT_TIMEOUT_MS: int = 45000
    TAP_TIMEOUT_MS: int = 20000
    ASSERT_TIMEOUT_MS: int = 12000
    IF_VISIBLE_TIMEOUT_MS: int = 2500
    MANUAL_FALLBACK_MS: int = 12000
    WAIT_OTP_TIMEOUT_MS: int = 30000
    DEFAULT_SLEEP_MS: int = 500

    # ==========================================================================
    # Cancellation
    # ==========================================================================
    CANCEL_SLICE_MS: int = 100  # Sleeps are split into slices of this size

    # ==========================================================================
    # Dialog Handling
    # ==========================================================================
    DIALOG_WINDOW_MS: int = 2400
    DIALOG_POLL_MS: int = 140
    DIALOG_SETTLE_MS: int = 220
    DIALOG_PRECHECK_MS: int = 1400  # Dialog check before text waits

    # ==========================================================================
    # Retry Budgets
    # ==========================================================================
    INPUT_RETRY_ATTEMPTS: int = 3
    INPUT_RETRY_DELAY_MS: int = 650
    SLIDE_RETRY_ATTEMPTS: int = 2
    SLIDE_RETRY_DELAY_MS: int = 500
    WAIT_RETRY_ATTEMPTS: int = 2
    WAIT_RETRY_DELAY_MS: int = 380

    # ==========================================================================
    # UI Stability / Polling
    # ==========================================================================
    STABLE_UI_QUIET_MS: int = 1200
    STABLE_UI_TIMEOUT_MS: int = 8000
    STABLE_UI_POLL_MS: int = 200
    BACKOFF_START_MS: int = 150
    BACKOFF_MAX_MS: int = 800
    PRESENCE_POLL_MS: int = 150
    CHANGE_POLL_MS: int = 120

    # ==========================================================================
    # Tap Verification
    # ==========================================================================
    TAP_CHANGE_WINDOW_MS: int = 1500
    CANDIDATE_CHANGE_WINDOW_MS: int = 1800
    NEXT_STEP_PROBE_MS: int = 900
    BUSY_WAIT_MS: int = 2500
    CANDIDATE_ROUND_PAUSE_MS: int = 280

    # ==========================================================================
    # Scrolling
    # ==========================================================================
    MAX_AUTO_SCROLLS: int = 6
    ASSERT_SCROLL_SWIPES: int = 8
    SCROLL_STALL_LIMIT: int = 2
    SAFE_MARGIN_PX: int = 40
    SWIPE_DURATION_MS: int = 320

    # ==========================================================================
    # Section Scope
    # ==========================================================================
    SCOPE_TTL_STEPS: int = 3
    HEADER_ROW_TOLERANCE_PX: int = 80

    # ==========================================================================
    # Selector Memory
    # ==========================================================================
    MEMORY_MAX_CANDIDATES: int = 6
    MEMORY_PRUNE_FAILURES: int = 3

    # ==========================================================================
    # Candidate Ranking
    # ==========================================================================
    CANDIDATE_LIMIT: int = 80
    CANDIDATE_SCORE_FLOOR: int = 40

    # ==========================================================================
    # Engine Guard
    # ==========================================================================
    MAX_PROGRAM_CYCLES: int = 1000  # 0 disables the ceiling

    @classmethod
    def from_env(cls) -> "AppDefaults":
        """Create config from environment variables with defaults."""
        return cls(
            DATA_DIR=os.getenv("MOBILE_PILOT_DATA_DIR", cls.DATA_DIR),
            APPIUM_SERVER_URL=os.getenv("APPIUM_SERVER_URL", cls.APPIUM_SERVER_URL),
            VISION_SERVER_URL=os.getenv("VISION_SERVER_URL", cls.VISION_SERVER_URL),
            VISION_ENABLED=_env_bool("MOBILE_PILOT_VISION_ENABLED", cls.VISION_ENABLED),
            LLM_SERVER_URL=os.getenv("LLM_SERVER_URL", cls.LLM_SERVER_URL),
            LLM_MODEL=os.getenv("MOBILE_PILOT_LLM_MODEL", cls.LLM_MODEL),
            TAP_TIMEOUT_MS=int(os.getenv("MOBILE_PILOT_TAP_TIMEOUT_MS", cls.TAP_TIMEOUT_MS)),
            WAIT_TEXT_TIMEOUT_MS=int(
                os.getenv("MOBILE_PILOT_WAIT_TEXT_TIMEOUT_MS", cls.WAIT_TEXT_TIMEOUT_MS)
            ),
            MANUAL_FALLBACK_MS=int(os.getenv("MOBILE_PILOT_MANUAL_FALLBACK_MS", cls.MANUAL_FALLBACK_MS)),
            SCOPE_TTL_STEPS=int(os.getenv("MOBILE_PILOT_SCOPE_TTL_STEPS", cls.SCOPE_TTL_STEPS)),
            MAX_PROGRAM_CYCLES=int(os.getenv("MOBILE_PILOT_MAX_PROGRAM_CYCLES", cls.MAX_PROGRAM_CYCLES)),
        )


# Global defaults instance - can be overridden at runtime
Defaults = AppDefaults()


def load_defaults_from_env():
    """Reload defaults from environment variables."""
    global Defaults
    Defaults = AppDefaults.from_env()


def get_defaults() -> AppDefaults:
    """Return the current global defaults (picks up load_defaults_from_env reloads)."""
    return Defaults
