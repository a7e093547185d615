"""Recovery request/response contract exchanged with the recovery agent."""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from ..core.errors import FailureReason
from ..script.models import Step

__all__ = ["CorrectiveScript", "RecoveryRequest", "RecoveryResponse", "TerminalVerdict", "response_adapter"]


class RecoveryRequest(BaseModel):
    """Everything the agent gets to see about a failed step."""

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    script_name: str
    failed_step_index: int
    failed_step: dict[str, Any]
    failure_reason: FailureReason
    failure_detail: str = ""
    current_screen: list[dict[str, Any]] = Field(default_factory=list)
    recent_history: list[dict[str, Any]] = Field(default_factory=list)
    recovery_hints: list[dict[str, Any]] = Field(default_factory=list)
    negotiation_depth: int = 0
    bound_variables: list[str] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class CorrectiveScript(BaseModel):
    """Agent proposal: steps to run before retrying the failed step."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["corrective_script"] = "corrective_script"
    steps: list[Step] = Field(min_length=1)
    rationale: Optional[str] = None


class TerminalVerdict(BaseModel):
    """Agent (or orchestrator) decision that the run cannot continue.

    ``code`` is only set for verdicts the orchestrator synthesizes itself,
    such as timeouts or an exceeded negotiation bound; agent verdicts carry
    a free-form ``reason`` only.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["terminal"] = "terminal"
    reason: str
    code: Optional[FailureReason] = None


RecoveryResponse = Annotated[Union[CorrectiveScript, TerminalVerdict], Field(discriminator="kind")]

response_adapter: TypeAdapter[Any] = TypeAdapter(RecoveryResponse)
