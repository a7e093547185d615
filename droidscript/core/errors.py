"""Failure taxonomy and exception types shared across droidscript."""

from __future__ import annotations

from enum import Enum


class FailureReason(str, Enum):
    """Typed reasons a step, a negotiation or a run can fail."""

    NO_TARGET = "NoTarget"
    AMBIGUOUS_TARGET = "AmbiguousTarget"
    NOT_FOUND = "NotFound"
    TIMEOUT = "Timeout"
    DEVICE_ERROR = "DeviceError"
    AGENT_UNAVAILABLE = "AgentUnavailable"
    INVALID_RECOVERY_RESPONSE = "InvalidRecoveryResponse"
    CANCELLED = "Cancelled"
    RECURSION_BOUND_EXCEEDED = "RecursionBoundExceeded"

    @property
    def is_infrastructure(self) -> bool:
        """Failures that always end the run instead of entering recovery."""
        return self in _INFRASTRUCTURE


_INFRASTRUCTURE = frozenset(
    {
        FailureReason.AGENT_UNAVAILABLE,
        FailureReason.INVALID_RECOVERY_RESPONSE,
        FailureReason.CANCELLED,
    }
)


class DroidScriptError(Exception):
    """Base class for droidscript exceptions."""


class ADBError(DroidScriptError, RuntimeError):
    """Raised when an ADB-related error occurs."""


class SelectorSyntaxError(DroidScriptError, ValueError):
    """Raised when selector text cannot be parsed."""

    def __init__(self, message: str, text: str = "", position: int | None = None) -> None:
        self.text = text
        self.position = position
        if position is not None:
            message = f"{message} at position {position} in {text!r}"
        super().__init__(message)


class ScriptValidationError(DroidScriptError, ValueError):
    """Raised when a step or script does not satisfy the script schema."""

    def __init__(self, errors: list[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class EngineBusyError(DroidScriptError, RuntimeError):
    """Raised when a run is started on an engine that is already running."""
