"""Recovery agents: whatever answers a ``RecoveryRequest``."""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Union, runtime_checkable

from ..core.logger import log
from .contract import RecoveryRequest
from .openai_client import OpenAIClient
from .recovery_prompts import RecoveryPrompts

__all__ = ["OpenAIRecoveryAgent", "RecoveryAgent"]

AgentReply = Union[Mapping[str, Any], str]


@runtime_checkable
class RecoveryAgent(Protocol):
    """Proposes a corrective script or a terminal verdict for a failed step.

    Replies are raw: a JSON string or an already-decoded mapping. The
    orchestrator validates them; agents never act on the device.
    """

    async def propose(self, request: RecoveryRequest) -> AgentReply: ...


class OpenAIRecoveryAgent:
    """Recovery agent backed by an OpenAI chat model."""

    def __init__(self, client: OpenAIClient | None = None, prompts: RecoveryPrompts | None = None) -> None:
        self.client = client or OpenAIClient.instance()
        self.prompts = prompts or RecoveryPrompts()

    async def propose(self, request: RecoveryRequest) -> AgentReply:
        messages = self.prompts.build_messages(request)
        log.debug(f"Requesting recovery for step {request.failed_step_index} ({request.failure_reason.value})")
        return await self.client.chat(messages=messages, json_mode=True)
