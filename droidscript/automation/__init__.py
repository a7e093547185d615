"""Script execution: action executor, engine state machine and run records."""

from .action_executor import ActionExecutor
from .cancellation import CancellationToken
from .engine import ExecutionEngine, run_concurrently
from .results import (
    EngineState,
    ExecutionResult,
    Failure,
    NegotiationRecord,
    RunRecord,
    RunScope,
    RunStatus,
    Success,
)

__all__ = [
    "ActionExecutor",
    "CancellationToken",
    "EngineState",
    "ExecutionEngine",
    "ExecutionResult",
    "Failure",
    "NegotiationRecord",
    "RunRecord",
    "RunScope",
    "RunStatus",
    "Success",
    "run_concurrently",
]
