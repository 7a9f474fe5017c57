"""
Mobile Pilot Configuration Module

Provides centralized configuration management.

Usage:
    from mobile_pilot.config import Defaults
    timeout = Defaults.TAP_TIMEOUT_MS
"""

from .defaults import Defaults, AppDefaults, load_defaults_from_env, get_defaults

__all__ = ["Defaults", "AppDefaults", "load_defaults_from_env", "get_defaults"]
