"""droidscript: scripted Android UI automation with AI-in-the-middle recovery."""

__version__ = "0.1.0"

from .automation import CancellationToken, ExecutionEngine, RunRecord, RunStatus, run_concurrently
from .core import FailureReason
from .script import Script, ScriptBuilder, Step, parse_selector

__all__ = [
    "CancellationToken",
    "ExecutionEngine",
    "FailureReason",
    "RunRecord",
    "RunStatus",
    "Script",
    "ScriptBuilder",
    "Step",
    "__version__",
    "parse_selector",
    "run_concurrently",
]
