"""
Device Driver - narrow device-control surface used by the execution engine

DeviceDriver is the interface every resolver, handler and the runner depend on.
AppiumDeviceDriver implements it over an Appium UiAutomator2 session; tests
substitute an in-memory fake that serves scripted page-source XML.

Elements returned by find_elements() are WebElement-like objects exposing
click(), clear(), send_keys(), get_attribute(name), .text, .rect and .id.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from appium import webdriver
from appium.options.android import UiAutomator2Options
from appium.webdriver.common.appiumby import AppiumBy
from selenium.common.exceptions import NoSuchElementException, WebDriverException
from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.common.actions import interaction
from selenium.webdriver.common.actions.action_builder import ActionBuilder
from selenium.webdriver.common.actions.pointer_input import PointerInput

from mobile_pilot.core.flows.flow_models import Locator, Strategy
from mobile_pilot.utils.error_handler import DriverSessionError, ElementNotFoundError, ErrorContext

logger = logging.getLogger(__name__)

_NULLISH = {"null", "none"}

_APPIUM_BY = {
    Strategy.XPATH: AppiumBy.XPATH,
    Strategy.ID: AppiumBy.ID,
    Strategy.DESC: AppiumBy.ACCESSIBILITY_ID,
    Strategy.UIAUTOMATOR: AppiumBy.ANDROID_UIAUTOMATOR,
}


# =============================================================================
# Element helpers
# =============================================================================

def element_attr(element: Any, name: str) -> str:
    """Attribute of a live element; 'null'/'none'/missing/stale read as ''."""
    try:
        value = element.get_attribute(name)
    except WebDriverException:
        return ""
    value = ("" if value is None else str(value)).strip()
    return "" if value.lower() in _NULLISH else value


def element_rect(element: Any) -> Optional[Dict[str, int]]:
    """{x, y, width, height} of a live element, or None when stale."""
    try:
        rect = element.rect
    except WebDriverException:
        return None
    if not rect:
        return None
    return {k: int(rect.get(k, 0)) for k in ("x", "y", "width", "height")}


def element_checked(element: Any) -> bool:
    return element_attr(element, "checked").lower() == "true"


def element_label(element: Any) -> str:
    """Human label of an element: text, else content-desc, else resource-id suffix."""
    text = element_attr(element, "text")
    if text:
        return text
    desc = element_attr(element, "content-desc")
    if desc:
        return desc
    rid = element_attr(element, "resource-id")
    return rid.split("/")[-1] if rid else ""


# =============================================================================
# Driver interface
# =============================================================================

class DeviceDriver(ABC):
    """Device-control surface consumed by the engine"""

    @abstractmethod
    def find_elements(self, strategy: Strategy, value: str) -> List[Any]:
        """All live elements matching the expression (empty list when none)."""

    def find_element(self, strategy: Strategy, value: str) -> Any:
        """First live element matching the expression."""
        elements = self.find_elements(strategy, value)
        if not elements:
            raise ElementNotFoundError(value)
        return elements[0]

    def find_by_locator(self, locator: Locator) -> List[Any]:
        """Elements for a Locator, trying its alternatives when the main value misses."""
        found = self.find_elements(locator.strategy, locator.value)
        if found:
            return found
        for alt in locator.alternatives:
            found = self.find_elements(locator.strategy, alt)
            if found:
                return found
        return []

    @abstractmethod
    def find_within(self, element: Any, xpath: str) -> List[Any]:
        """Elements matching an XPath evaluated relative to `element`."""

    @abstractmethod
    def page_source(self) -> str:
        """Current UI tree as XML."""

    @abstractmethod
    def screenshot_png(self) -> bytes:
        pass

    @abstractmethod
    def current_package(self) -> str:
        pass

    @abstractmethod
    def current_activity(self) -> str:
        pass

    @abstractmethod
    def window_size(self) -> Tuple[int, int]:
        pass

    @abstractmethod
    def back(self) -> None:
        pass

    @abstractmethod
    def swipe(self, start_x: int, start_y: int, end_x: int, end_y: int, duration_ms: int) -> None:
        pass

    @abstractmethod
    def drag(self, start_x: int, start_y: int, end_x: int, end_y: int, hold_ms: int, move_ms: int) -> None:
        """Press, hold, move and release."""

    @abstractmethod
    def hide_keyboard(self) -> None:
        pass

    @abstractmethod
    def is_keyboard_shown(self) -> bool:
        pass

    @abstractmethod
    def activate_app(self, package: str) -> None:
        pass

    @abstractmethod
    def shell(self, command: str, args: List[str]) -> str:
        pass

    @abstractmethod
    def quit(self) -> None:
        pass


# =============================================================================
# Appium implementation
# =============================================================================

class AppiumDeviceDriver(DeviceDriver):
    """
    DeviceDriver over an Appium UiAutomator2 session.

    Usage:
        driver = AppiumDeviceDriver.create_session(
            "http://127.0.0.1:4723", udid="emulator-5554", app_package="com.example"
        )
    """

    def __init__(self, remote: webdriver.Remote, server_url: Optional[str] = None):
        self._driver = remote
        self.server_url = server_url

    @classmethod
    def create_session(
        cls,
        server_url: str,
        udid: Optional[str] = None,
        app_package: Optional[str] = None,
        app_activity: Optional[str] = None,
        extra_caps: Optional[Dict[str, Any]] = None,
    ) -> "AppiumDeviceDriver":
        """Start a UiAutomator2 session. Raises DriverSessionError when the server refuses."""
        capabilities: Dict[str, Any] = {
            "platformName": "Android",
            "appium:automationName": "UiAutomator2",
            "appium:noReset": True,
            "appium:newCommandTimeout": 300,
        }
        if udid:
            capabilities["appium:udid"] = udid
        if app_package:
            capabilities["appium:appPackage"] = app_package
        if app_activity:
            capabilities["appium:appActivity"] = app_activity
        capabilities.update(extra_caps or {})

        options = UiAutomator2Options().load_capabilities(capabilities)
        with ErrorContext(f"starting Appium session at {server_url}", raise_as=DriverSessionError):
            remote = webdriver.Remote(server_url, options=options)
        logger.info(f"[AppiumDeviceDriver] Session {remote.session_id} started on {udid or 'default device'}")
        return cls(remote, server_url)

    def find_elements(self, strategy: Strategy, value: str) -> List[Any]:
        if not value:
            return []
        try:
            return list(self._driver.find_elements(_APPIUM_BY[strategy], value))
        except NoSuchElementException:
            return []
        except WebDriverException as e:
            # Invalid expressions surface as WebDriverException; treat as a miss
            logger.debug(f"[AppiumDeviceDriver] find_elements {strategy.value}:{value} failed: {e.msg}")
            return []

    def find_within(self, element: Any, xpath: str) -> List[Any]:
        try:
            return list(element.find_elements(AppiumBy.XPATH, xpath))
        except WebDriverException:
            return []

    def page_source(self) -> str:
        try:
            return self._driver.page_source or ""
        except WebDriverException as e:
            logger.warning(f"[AppiumDeviceDriver] page_source failed: {e.msg}")
            return ""

    def screenshot_png(self) -> bytes:
        try:
            return self._driver.get_screenshot_as_png()
        except WebDriverException as e:
            logger.warning(f"[AppiumDeviceDriver] screenshot failed: {e.msg}")
            return b""

    def current_package(self) -> str:
        try:
            return self._driver.current_package or ""
        except WebDriverException:
            return ""

    def current_activity(self) -> str:
        try:
            return self._driver.current_activity or ""
        except WebDriverException:
            return ""

    def window_size(self) -> Tuple[int, int]:
        size = self._driver.get_window_size()
        return int(size["width"]), int(size["height"])

    def back(self) -> None:
        self._driver.back()

    def swipe(self, start_x: int, start_y: int, end_x: int, end_y: int, duration_ms: int) -> None:
        self._driver.swipe(start_x, start_y, end_x, end_y, duration_ms)

    def drag(self, start_x: int, start_y: int, end_x: int, end_y: int, hold_ms: int, move_ms: int) -> None:
        actions = ActionChains(self._driver)
        actions.w3c_actions = ActionBuilder(
            self._driver, mouse=PointerInput(interaction.POINTER_TOUCH, "touch"), duration=move_ms
        )
        pointer = actions.w3c_actions.pointer_action
        pointer.move_to_location(start_x, start_y)
        pointer.pointer_down()
        pointer.pause(hold_ms / 1000)
        pointer.move_to_location(end_x, end_y)
        pointer.release()
        actions.perform()

    def hide_keyboard(self) -> None:
        try:
            self._driver.hide_keyboard()
        except WebDriverException:
            # Raised when no keyboard is shown
            pass

    def is_keyboard_shown(self) -> bool:
        try:
            return bool(self._driver.is_keyboard_shown())
        except WebDriverException:
            return False

    def activate_app(self, package: str) -> None:
        self._driver.activate_app(package)

    def shell(self, command: str, args: List[str]) -> str:
        result = self._driver.execute_script("mobile: shell", {"command": command, "args": args})
        return "" if result is None else str(result)

    def quit(self) -> None:
        try:
            self._driver.quit()
            logger.info("[AppiumDeviceDriver] Session closed")
        except WebDriverException as e:
            logger.warning(f"[AppiumDeviceDriver] quit failed: {e.msg}")
