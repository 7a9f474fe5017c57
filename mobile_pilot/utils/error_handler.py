"""
Centralized Error Handling Module for Mobile Pilot

Provides a consistent error taxonomy, logging, and user-friendly messages.

Taxonomy:
- Configuration errors (PlanValidationError, LabelNotFoundError): fatal, never retried
- Transient resolution failures (ElementNotFoundError): retried inside handlers
- Driver failures (DriverSessionError): session start/stop problems
- External degradation (VisionServiceError, LanguageModelError): callers fall back
"""

import logging
from typing import Dict, Any, Optional

logger = logging.getLogger("mobile_pilot")

# Note stored on a StepOutcome/Snapshot when the run was cancelled mid-step
STOP_REQUESTED = "STOP_REQUESTED"


class MobilePilotError(Exception):
    """Base exception for all Mobile Pilot errors"""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class PlanValidationError(MobilePilotError):
    """Raised when a plan or one of its steps is malformed"""

    def __init__(self, message: str, step_index: Optional[int] = None):
        super().__init__(
            message, code="PLAN_VALIDATION_ERROR", details={"step_index": step_index}
        )


class LabelNotFoundError(PlanValidationError):
    """Raised when GOTO / IF_VISIBLE reference a LABEL that does not exist"""

    def __init__(self, label: str, step_index: Optional[int] = None):
        super().__init__(f"Label '{label}' not found", step_index=step_index)
        self.code = "LABEL_NOT_FOUND"
        self.details["label"] = label


class ElementNotFoundError(MobilePilotError):
    """Raised when a UI element could not be located"""

    def __init__(self, hint: str, message: Optional[str] = None):
        super().__init__(
            message or f"Element not found: '{hint}'",
            code="ELEMENT_NOT_FOUND",
            details={"hint": hint},
        )


class StopRequested(MobilePilotError):
    """Raised inside waits when the run's cancellation predicate turns true"""

    def __init__(self):
        super().__init__("Stopped by user", code=STOP_REQUESTED)


class DriverSessionError(MobilePilotError):
    """Raised when the device automation session cannot be started or used"""

    def __init__(self, message: str, server_url: Optional[str] = None):
        super().__init__(
            message, code="DRIVER_SESSION_ERROR", details={"server_url": server_url}
        )


class VisionServiceError(MobilePilotError):
    """Raised when the vision detector is unreachable or returns garbage"""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message, code="VISION_SERVICE_ERROR", details={"url": url})


class LanguageModelError(MobilePilotError):
    """Raised when the language-model service fails"""

    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message, code="LANGUAGE_MODEL_ERROR", details={"model": model})


def get_user_friendly_message(error: Exception) -> str:
    """
    Get a user-friendly error message for CLI display

    Args:
        error: The exception

    Returns:
        User-friendly error message
    """
    if isinstance(error, StopRequested):
        return "The run was stopped by the user."

    elif isinstance(error, LabelNotFoundError):
        return f"The plan jumps to a label that does not exist: {error.details.get('label')}"

    elif isinstance(error, PlanValidationError):
        return f"The plan is invalid: {error.message}"

    elif isinstance(error, ElementNotFoundError):
        return f"Could not find '{error.details.get('hint')}' on screen."

    elif isinstance(error, DriverSessionError):
        return "Could not talk to the automation server. Please check it is running and the device is connected."

    elif isinstance(error, VisionServiceError):
        return "The vision service is unavailable. Continuing with UI-tree search only."

    elif isinstance(error, LanguageModelError):
        return f"The language model could not process the request: {error.message}"

    else:
        return f"An unexpected error occurred: {str(error)}"


# Context manager for error handling
class ErrorContext:
    """
    Context manager for error handling

    Usage:
        with ErrorContext("starting session", raise_as=DriverSessionError):
            # code that might fail
            pass
    """

    def __init__(self, operation: str, raise_as: type = MobilePilotError):
        self.operation = operation
        self.raise_as = raise_as

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            logger.error(f"Error during {self.operation}: {exc_val}", exc_info=True)
            # Re-raise as MobilePilotError
            if not isinstance(exc_val, MobilePilotError):
                raise self.raise_as(f"Failed {self.operation}: {exc_val}") from exc_val
        return False  # Don't suppress exception
