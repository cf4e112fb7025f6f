"""Custom exception hierarchy for the automation run engine."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from run_types import ExecutionOutcome


class AutomationError(Exception):
    """Base exception for all automation engine errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Plan-related exceptions
class PlanDefinitionError(AutomationError):
    """Base exception for plan definition errors."""

    pass


class PlanFormatError(PlanDefinitionError):
    """Raised when a configuration holds no usable plan."""

    def __init__(self, message: str, line: Optional[int] = None):
        details = {}
        if line is not None:
            details["line"] = line
        super().__init__(message, details)
        self.line = line


class PlanLoadError(PlanDefinitionError):
    """Raised when a plan file cannot be read."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        details = {}
        if file_path:
            details["file_path"] = file_path
        super().__init__(message, details)
        self.file_path = file_path


# Browser-related exceptions
class BrowserError(AutomationError):
    """Base exception for browser automation errors."""

    pass


class NavigationError(BrowserError):
    """Raised when page navigation fails."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        details = {}
        if url:
            details["url"] = url
        if timeout:
            details["timeout"] = timeout
        super().__init__(message, details)
        self.url = url
        self.timeout = timeout


class BrowserNotStartedError(BrowserError):
    """Raised when attempting operations on a browser that hasn't been started."""

    def __init__(self, message: str = "Browser session not started. Call start() first."):
        super().__init__(message)


class ScreenshotError(BrowserError):
    """Raised when screenshot capture fails."""

    def __init__(self, message: str, path: Optional[str] = None):
        details = {"path": path} if path else {}
        super().__init__(message, details)
        self.path = path


# LLM-related exceptions
class LLMError(AutomationError):
    """Base exception for LLM-related errors."""

    pass


class LLMResponseError(LLMError):
    """Raised when the LLM returns an invalid or unexpected response."""

    def __init__(
        self,
        message: str,
        response: Optional[str] = None,
        model: Optional[str] = None,
    ):
        details = {}
        if response:
            details["response"] = response[:500] if len(response) > 500 else response
        if model:
            details["model"] = model
        super().__init__(message, details)
        self.response = response
        self.model = model


class ActionParseError(LLMError):
    """Raised when an action cannot be parsed from the model response."""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        details = {}
        if raw_response:
            details["raw_response"] = raw_response[:300]
        super().__init__(message, details)
        self.raw_response = raw_response


# Execution-related exceptions
class ExecutionError(AutomationError):
    """Base exception for plan execution errors."""

    pass


class DriverExecutionError(ExecutionError):
    """Raised when plan execution fails after the browser session is live.

    Carries whatever partial evidence the driver collected so callers can
    still publish the report and record the run.
    """

    def __init__(
        self,
        message: str,
        outcome: Optional["ExecutionOutcome"] = None,
        cause: Optional[BaseException] = None,
    ):
        details = {}
        if cause is not None:
            details["cause"] = type(cause).__name__
        super().__init__(message, details)
        self.outcome = outcome
        self.cause = cause

    def __str__(self) -> str:
        # The raw message is stored verbatim in run logs.
        return self.message


class AssertionFailedError(ExecutionError):
    """Raised when an aiAssert step is judged false by the agent."""

    def __init__(self, message: str, assertion: Optional[str] = None, reason: Optional[str] = None):
        details = {}
        if assertion:
            details["assertion"] = assertion
        if reason:
            details["reason"] = reason
        super().__init__(message, details)
        self.assertion = assertion
        self.reason = reason


class RunCancelledError(ExecutionError):
    """Raised when a run is torn down before completion."""

    def __init__(self, message: str = "cancelled", run_id: Optional[str] = None):
        details = {"run_id": run_id} if run_id else {}
        super().__init__(message, details)
        self.run_id = run_id


# Evidence-related exceptions
class ReportNotFoundError(AutomationError):
    """Raised when a raw report artifact cannot be located."""

    def __init__(self, message: str, path: Optional[str] = None):
        details = {"path": path} if path else {}
        super().__init__(message, details)
        self.path = path


class CorrelationMismatch(AutomationError):
    """Raised when a plan task has no matching execution record."""

    def __init__(self, message: str, task_index: Optional[int] = None, assertion: Optional[str] = None):
        details = {}
        if task_index is not None:
            details["task_index"] = task_index
        if assertion:
            details["assertion"] = assertion
        super().__init__(message, details)
        self.task_index = task_index
        self.assertion = assertion


class RunStateError(AutomationError):
    """Raised on an illegal run status transition."""

    def __init__(self, message: str, current: Optional[str] = None, requested: Optional[str] = None):
        details = {}
        if current:
            details["current"] = current
        if requested:
            details["requested"] = requested
        super().__init__(message, details)
        self.current = current
        self.requested = requested


# Persistence exceptions
class StoreError(AutomationError):
    """Raised when the data layer fails to read or write a record."""

    pass


class RecordNotFoundError(StoreError):
    """Raised when a record id is unknown to a store."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        details = {"record_id": record_id} if record_id else {}
        super().__init__(message, details)
        self.record_id = record_id


# Configuration exceptions
class ConfigurationError(AutomationError):
    """Raised when configuration is invalid or missing."""

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Raised when a configuration file cannot be found."""

    def __init__(self, config_path: str):
        super().__init__(f"Configuration file not found: {config_path}", {"path": config_path})
        self.config_path = config_path
