"""AI-in-the-middle recovery orchestration.

The orchestrator turns a step failure into a ``RecoveryRequest``, waits for
the agent (bounded by a timeout and the run's cancellation token), and
validates the reply. Infrastructure problems never raise: they come back as
``TerminalVerdict`` objects carrying a ``FailureReason`` code, so the engine
has a single path for every way a negotiation can end.
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, Optional

from ..automation.cancellation import CancellationToken
from ..automation.results import Failure, NegotiationRecord, RunRecord
from ..core.config import RecoveryConfig
from ..core.errors import FailureReason, ScriptValidationError
from ..core.logger import log as root_log
from ..screen.models import ScreenSnapshot
from ..screen.representation import ScreenFormat, render
from ..script.models import Step
from .contract import CorrectiveScript, RecoveryRequest, RecoveryResponse, TerminalVerdict
from .recovery_agent import RecoveryAgent
from .response_parser import parse_recovery_response

__all__ = ["RecoveryOrchestrator"]

log = root_log.child("recovery")


class _AgentCancelled(Exception):
    pass


class RecoveryOrchestrator:
    """Negotiates corrective scripts with a recovery agent."""

    def __init__(self, agent: Optional[RecoveryAgent], config: RecoveryConfig | None = None) -> None:
        """Initialize the orchestrator.

        Args:
            agent: The recovery agent, or None to report every failure as
                ``AgentUnavailable``.
            config: Timeout, negotiation bound and request shaping.
        """
        self.agent = agent
        self.config = config or RecoveryConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def build_request(
        self,
        step: Step,
        failure: Failure,
        *,
        snapshot: ScreenSnapshot,
        record: RunRecord,
        bound_variables: Iterable[str],
    ) -> RecoveryRequest:
        """Assemble the request sent to the agent for ``failure``."""
        return RecoveryRequest(
            script_name=record.script_name,
            failed_step_index=failure.step_index,
            failed_step=step.model_dump(mode="json"),
            failure_reason=failure.reason,
            failure_detail=failure.detail,
            current_screen=render(snapshot, ScreenFormat.SUMMARY),
            recent_history=record.recent(self.config.history_window),
            recovery_hints=[hint.model_dump(mode="json") for hint in step.recovery_hints],
            negotiation_depth=record.negotiation_depth,
            bound_variables=sorted(bound_variables),
        )

    async def negotiate(
        self,
        step: Step,
        failure: Failure,
        *,
        snapshot: ScreenSnapshot,
        record: RunRecord,
        bound_variables: Iterable[str],
        cancel: CancellationToken | None = None,
    ) -> RecoveryResponse:
        """Run one negotiation for a failed step.

        Returns:
            A validated ``CorrectiveScript``, or a ``TerminalVerdict``. The
            verdict's ``code`` is set when the orchestrator itself ended the
            negotiation (timeout, transport error, invalid reply, cancellation
            or the depth bound).
        """
        depth = record.negotiation_depth
        if depth > self.config.max_depth:
            verdict = self._verdict(
                FailureReason.RECURSION_BOUND_EXCEEDED,
                f"Negotiation depth {depth} exceeds bound {self.config.max_depth}",
            )
            self._audit(record, failure, None, verdict)
            return verdict

        if not self.config.enabled or self.agent is None:
            verdict = self._verdict(FailureReason.AGENT_UNAVAILABLE, "Recovery agent disabled or not configured")
            self._audit(record, failure, None, verdict)
            return verdict

        bound = list(bound_variables)
        request = self.build_request(step, failure, snapshot=snapshot, record=record, bound_variables=bound)
        log.log_ai_decision(
            "recovery requested",
            {"step": failure.step_index, "reason": failure.reason.value, "depth": depth},
        )

        response = await self._exchange(request, bound, cancel)
        record.negotiation_depth = depth + 1
        self._audit(record, failure, request, response)

        if isinstance(response, CorrectiveScript):
            log.log_ai_decision("corrective script", {"steps": len(response.steps), "rationale": response.rationale})
        else:
            log.log_ai_decision("terminal verdict", {"reason": response.reason, "code": response.code})
        return response

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _exchange(
        self,
        request: RecoveryRequest,
        bound_variables: list[str],
        cancel: CancellationToken | None,
    ) -> RecoveryResponse:
        timeout = self.config.timeout_s
        try:
            raw = await self._ask(request, cancel, timeout)
        except _AgentCancelled:
            return self._verdict(FailureReason.CANCELLED, cancel.reason if cancel else "cancelled")
        except asyncio.TimeoutError:
            log.error(f"Recovery agent did not answer within {timeout}s")
            return self._verdict(FailureReason.AGENT_UNAVAILABLE, f"Recovery agent timed out after {timeout}s")
        except Exception as exc:
            log.error(f"Recovery agent transport failure: {exc}")
            return self._verdict(FailureReason.AGENT_UNAVAILABLE, f"Recovery agent failed: {exc}")

        try:
            return parse_recovery_response(
                raw,
                bound_variables=bound_variables,
                max_steps=self.config.max_corrective_steps,
            )
        except ScriptValidationError as exc:
            log.error(f"Invalid recovery response: {exc}")
            return self._verdict(FailureReason.INVALID_RECOVERY_RESPONSE, str(exc))

    async def _ask(self, request: RecoveryRequest, cancel: CancellationToken | None, timeout: float) -> Any:
        """Await the agent, racing the timeout and the cancellation token."""
        if cancel is not None and cancel.cancelled:
            raise _AgentCancelled()

        agent_task = asyncio.ensure_future(self.agent.propose(request))
        if cancel is None:
            return await asyncio.wait_for(agent_task, timeout=timeout)

        cancel_task = asyncio.ensure_future(cancel.wait())
        done, pending = await asyncio.wait(
            {agent_task, cancel_task},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if agent_task in done:
            return agent_task.result()
        if cancel_task in done:
            raise _AgentCancelled()
        raise asyncio.TimeoutError()

    @staticmethod
    def _verdict(code: FailureReason, reason: str) -> TerminalVerdict:
        return TerminalVerdict(reason=reason, code=code)

    @staticmethod
    def _audit(
        record: RunRecord,
        failure: Failure,
        request: RecoveryRequest | None,
        response: RecoveryResponse,
    ) -> None:
        record.negotiations.append(
            NegotiationRecord(
                step_index=failure.step_index,
                negotiation_depth=request.negotiation_depth if request else record.negotiation_depth,
                request=request.to_payload() if request else None,
                response=response.model_dump(mode="json"),
            )
        )
