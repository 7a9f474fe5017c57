"""
Resolver Package - locating elements on the live UI
"""
from .dialog_service import DialogService
from .locator_resolver import LocatorResolver
from .memory_service import MemoryService
from .ui_service import UiService
from .xpath_service import XPathService

__all__ = [
    'DialogService',
    'LocatorResolver',
    'MemoryService',
    'UiService',
    'XPathService',
]
