"""
Step Handlers Package
"""
from .assert_wait_handler import AssertWaitHandler
from .input_handler import InputHandler
from .nav_handler import NavHandler
from .scroll_handler import ScrollHandler
from .tap_handler import TapHandler
from .toggle_handler import ToggleHandler

__all__ = [
    'AssertWaitHandler',
    'InputHandler',
    'NavHandler',
    'ScrollHandler',
    'TapHandler',
    'ToggleHandler',
]
