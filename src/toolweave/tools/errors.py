"""Standardized error types for tool orchestration.

This module provides a hierarchy of error classes with consistent
JSON serialization. Validation and execution errors are converted into
failed tool results by the engine; only abort errors escape a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Sequence


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes used in tool results."""

    # Validation errors
    UNKNOWN_TOOL = "unknown_tool"
    MISSING_PARAMETER = "missing_parameter"
    INVALID_MODE_USAGE = "invalid_mode_usage"

    # Execution errors
    EXECUTION_FAILED = "execution_failed"
    TOOL_NOT_IMPLEMENTED = "tool_not_implemented"
    NOT_ATTEMPTED = "not_attempted"
    CONDITION_ERROR = "condition_error"

    # Cancellation
    ABORTED = "aborted"
    TIMEOUT = "timeout"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class OrchestrationError(Exception):
    """Base exception class for all orchestration errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for tool results."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Validation Errors
# -----------------------------------------------------------------------------

@dataclass
class ValidationError(OrchestrationError):
    """Raised when an invocation cannot be run as requested."""

    error_code: str = field(default=ErrorCode.MISSING_PARAMETER)
    message: str = field(default="Invalid tool invocation")
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class UnknownToolError(ValidationError):
    """Raised when an invocation names a tool the registry does not know."""

    error_code: str = field(default=ErrorCode.UNKNOWN_TOOL)
    message: str = field(default="Unknown tool")
    details: dict[str, Any] = field(default_factory=dict)

    tool_name: str = field(default="")

    def __post_init__(self) -> None:
        if self.tool_name and self.message == "Unknown tool":
            self.message = f"Tool '{self.tool_name}' is not implemented or not available"
        self.details.setdefault("tool", self.tool_name)
        super().__post_init__()


@dataclass
class MissingParameterError(ValidationError):
    """Raised when required parameters are absent from an invocation."""

    error_code: str = field(default=ErrorCode.MISSING_PARAMETER)
    message: str = field(default="Missing required parameter")
    details: dict[str, Any] = field(default_factory=dict)

    tool_name: str = field(default="")
    missing: Sequence[str] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.missing and self.message == "Missing required parameter":
            names = ", ".join(f"'{name}'" for name in self.missing)
            self.message = f"Missing value for required parameter {names} in '{self.tool_name}'"
        self.details.setdefault("tool", self.tool_name)
        self.details.setdefault("missing", list(self.missing))
        super().__post_init__()


@dataclass
class InvalidModeUsage(ValidationError):
    """Raised when a batch does not fit its execution mode."""

    error_code: str = field(default=ErrorCode.INVALID_MODE_USAGE)
    message: str = field(default="Invalid use of execution mode")
    details: dict[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Execution Errors
# -----------------------------------------------------------------------------

class ToolExecutionError(Exception):
    """Raised when a tool runner fails."""

    def __init__(
        self,
        message: str,
        tool_name: str = "",
        cause: Exception | None = None,
    ) -> None:
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(message)


# -----------------------------------------------------------------------------
# Cancellation Errors
# -----------------------------------------------------------------------------

@dataclass
class AbortedError(OrchestrationError):
    """Raised when the caller's abort signal is observed at a checkpoint.

    This is the only error that unwinds a whole run.
    """

    error_code: str = field(default=ErrorCode.ABORTED)
    message: str = field(default="Tool execution aborted")
    details: dict[str, Any] = field(default_factory=dict)

    stage: str = field(default="")

    def __post_init__(self) -> None:
        if self.stage:
            self.details.setdefault("stage", self.stage)
        super().__post_init__()


@dataclass
class RunTimeoutError(AbortedError):
    """Raised when a run exceeds its time budget between scheduling steps."""

    error_code: str = field(default=ErrorCode.TIMEOUT)
    message: str = field(default="Tool execution exceeded its time budget")
    details: dict[str, Any] = field(default_factory=dict)


__all__ = [
    "ErrorCode",
    "OrchestrationError",
    "ValidationError",
    "UnknownToolError",
    "MissingParameterError",
    "InvalidModeUsage",
    "ToolExecutionError",
    "AbortedError",
    "RunTimeoutError",
]
