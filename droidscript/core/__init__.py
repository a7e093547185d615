"""Core components of the droidscript engine."""

from .config import Config, EngineSettings, RecoveryConfig, config
from .errors import (
    ADBError,
    DroidScriptError,
    EngineBusyError,
    FailureReason,
    ScriptValidationError,
    SelectorSyntaxError,
)
from .logger import Logger, log

__all__ = [
    "ADBError",
    "Config",
    "DroidScriptError",
    "EngineBusyError",
    "EngineSettings",
    "FailureReason",
    "Logger",
    "RecoveryConfig",
    "ScriptValidationError",
    "SelectorSyntaxError",
    "config",
    "log",
]
