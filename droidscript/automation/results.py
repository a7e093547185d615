"""Per-step execution results and the run record that aggregates them."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Optional, Union

from ..core.errors import FailureReason
from ..core.logger import log
from ..screen.models import ElementRef, ScreenSnapshot


class EngineState(str, Enum):
    """States of the execution engine state machine."""

    PENDING = "Pending"
    RUNNING = "Running"
    FAILED = "Failed"
    AWAITING_RECOVERY = "AwaitingRecovery"
    COMPLETED = "Completed"
    ABORTED = "Aborted"


class RunStatus(str, Enum):
    """Final status reported for a run."""

    COMPLETED = "Completed"
    ABORTED = "Aborted"
    RECOVERED_AND_COMPLETED = "RecoveredAndCompleted"
    RECOVERED_AND_ABORTED = "RecoveredAndAborted"


class RunScope(str, Enum):
    """Whether a result came from the script itself or a corrective script."""

    MAIN = "main"
    CORRECTIVE = "corrective"


@dataclass(frozen=True)
class Success:
    """A step that completed; ``value`` holds any output it produced."""

    step_index: int
    action: str
    value: Any = None
    target: Optional[ElementRef] = None
    attempts: int = 0
    snapshot_id: Optional[int] = None
    scope: RunScope = RunScope.MAIN
    negotiation_depth: int = 0
    duration_ms: float = 0.0

    ok: ClassVar[bool] = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": "success",
            "step_index": self.step_index,
            "action": self.action,
            "scope": self.scope.value,
            "negotiation_depth": self.negotiation_depth,
            "value": self.value,
            "target": self.target.as_dict() if self.target else None,
            "attempts": self.attempts,
            "snapshot_id": self.snapshot_id,
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass(frozen=True)
class Failure:
    """A step that failed with a typed reason and the snapshot it saw."""

    step_index: int
    action: str
    reason: FailureReason
    detail: str = ""
    snapshot: Optional[ScreenSnapshot] = field(default=None, repr=False, compare=False)
    attempts: int = 0
    scope: RunScope = RunScope.MAIN
    negotiation_depth: int = 0
    duration_ms: float = 0.0

    ok: ClassVar[bool] = False

    @property
    def snapshot_id(self) -> Optional[int]:
        return self.snapshot.snapshot_id if self.snapshot is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": "failure",
            "step_index": self.step_index,
            "action": self.action,
            "scope": self.scope.value,
            "negotiation_depth": self.negotiation_depth,
            "reason": self.reason.value,
            "detail": self.detail,
            "attempts": self.attempts,
            "snapshot_id": self.snapshot_id,
            "duration_ms": round(self.duration_ms, 2),
        }


ExecutionResult = Union[Success, Failure]


@dataclass(frozen=True)
class NegotiationRecord:
    """Read-only audit entry for one recovery negotiation."""

    step_index: int
    negotiation_depth: int
    request: Optional[dict[str, Any]]
    response: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_index": self.step_index,
            "negotiation_depth": self.negotiation_depth,
            "request": self.request,
            "response": self.response,
        }


@dataclass
class RunRecord:
    """Full trace of one script run, returned whatever the outcome."""

    script_name: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    results: list[ExecutionResult] = field(default_factory=list)
    negotiations: list[NegotiationRecord] = field(default_factory=list)
    states: list[EngineState] = field(default_factory=lambda: [EngineState.PENDING])
    status: Optional[RunStatus] = None
    terminal_reason: Optional[FailureReason] = None
    terminal_detail: str = ""
    agent_verdict: Optional[str] = None
    variables: dict[str, Any] = field(default_factory=dict)
    negotiation_depth: int = 0
    recovery_cycles: int = 0
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def state(self) -> EngineState:
        return self.states[-1]

    @property
    def recovered(self) -> bool:
        """True once at least one corrective script has been executed."""
        return self.recovery_cycles > 0

    @property
    def is_terminal(self) -> bool:
        return self.state in (EngineState.COMPLETED, EngineState.ABORTED)

    def transition(self, state: EngineState) -> None:
        log.debug(f"Run {self.run_id}: {self.state.value} -> {state.value}")
        self.states.append(state)

    def append(self, result: ExecutionResult) -> None:
        self.results.append(result)

    def history(self) -> list[dict[str, Any]]:
        return [result.to_dict() for result in self.results]

    def recent(self, limit: int) -> list[dict[str, Any]]:
        """The last ``limit`` step outcomes, oldest first."""
        if limit <= 0:
            return []
        return [result.to_dict() for result in self.results[-limit:]]

    def finish(self, state: EngineState, reason: FailureReason | None = None, detail: str = "") -> None:
        """Move to a terminal state and derive the reported status."""
        self.transition(state)
        self.terminal_reason = reason
        self.terminal_detail = detail
        self.finished_at = time.time()
        if state is EngineState.COMPLETED:
            self.status = RunStatus.RECOVERED_AND_COMPLETED if self.recovered else RunStatus.COMPLETED
        else:
            self.status = RunStatus.RECOVERED_AND_ABORTED if self.recovered else RunStatus.ABORTED

    @property
    def duration(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.time()
        return end - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "script_name": self.script_name,
            "status": self.status.value if self.status else None,
            "terminal_reason": self.terminal_reason.value if self.terminal_reason else None,
            "terminal_detail": self.terminal_detail,
            "agent_verdict": self.agent_verdict,
            "states": [state.value for state in self.states],
            "results": self.history(),
            "negotiations": [negotiation.to_dict() for negotiation in self.negotiations],
            "recovery_cycles": self.recovery_cycles,
            "variables": self.variables,
            "duration": round(self.duration, 3),
        }
