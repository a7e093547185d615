"""Script execution engine.

Drives a script step by step through the run state machine::

    Pending -> Running -> Completed
                  |
                  v
               Failed -> AwaitingRecovery -> Running (corrective script, then resume)
                                          -> Aborted

A failed step hands control to the recovery orchestrator. A corrective
script it returns is executed as a nested run in the same device session;
when that completes, the engine re-resolves the failed step's target on a
fresh snapshot and resumes at the failed step. The recovery agent never
touches the device directly.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
from typing import TYPE_CHECKING, Any, Iterable, Optional, Sequence

from ..ai.contract import CorrectiveScript, TerminalVerdict
from ..core.config import EngineSettings
from ..core.device_manager import DeviceHandle
from ..core.errors import EngineBusyError, FailureReason
from ..core.logger import log
from ..core.snapshotter import ScreenSnapshotter
from ..script.models import Script, Step
from .action_executor import ActionExecutor, needs_target_reresolution
from .cancellation import CancellationToken
from .results import EngineState, ExecutionResult, Failure, RunRecord, RunScope

if TYPE_CHECKING:
    from ..ai.orchestrator import RecoveryOrchestrator

__all__ = ["ExecutionEngine", "run_concurrently"]


class ExecutionEngine:
    """Runs one script at a time against one device session."""

    def __init__(
        self,
        device: DeviceHandle,
        orchestrator: Optional[RecoveryOrchestrator] = None,
        settings: EngineSettings | None = None,
        *,
        snapshotter: ScreenSnapshotter | None = None,
        executor: ActionExecutor | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            device: Device session all actions are delivered to.
            orchestrator: Recovery orchestrator; without one every step
                failure aborts the run with ``AgentUnavailable``.
            settings: Action and snapshot defaults.
            snapshotter: Override the snapshot source (tests).
            executor: Override the action executor (tests).
        """
        self.device = device
        self.settings = settings or EngineSettings()
        self.snapshotter = snapshotter or ScreenSnapshotter(device, self.settings)
        self.executor = executor or ActionExecutor(device, self.snapshotter, self.settings)
        self.orchestrator = orchestrator
        self._running = False

    @property
    def busy(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def run(self, script: Script, cancel: CancellationToken | None = None) -> RunRecord:
        """Execute ``script`` to completion or abort.

        Args:
            script: A validated script.
            cancel: Optional token; cancellation is observed between steps
                and while waiting on the recovery agent.

        Returns:
            The run record, whatever the outcome.

        Raises:
            EngineBusyError: If this engine is already executing a script.
        """
        if self._running:
            raise EngineBusyError("Engine is already executing a script on this device session")
        self._running = True

        cancel = cancel or CancellationToken()
        record = RunRecord(script_name=script.name)
        variables: dict[str, Any] = copy.deepcopy(dict(script.variables))
        log.info(f"Starting run {record.run_id} of '{script.name}' ({len(script.steps)} steps)")

        try:
            record.transition(EngineState.RUNNING)
            await self._drive(script.steps, variables, record, cancel)
        except Exception as exc:
            log.exception(f"Run {record.run_id} crashed: {exc}")
            if not record.is_terminal:
                record.finish(EngineState.ABORTED, FailureReason.DEVICE_ERROR, f"Internal error: {exc}")
        finally:
            record.variables = variables
            self._running = False

        self._report(record)
        return record

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------
    async def _drive(
        self,
        steps: Sequence[Step],
        variables: dict[str, Any],
        record: RunRecord,
        cancel: CancellationToken,
    ) -> None:
        index = 0
        while index < len(steps):
            if cancel.cancelled:
                record.finish(EngineState.ABORTED, FailureReason.CANCELLED, cancel.reason)
                return

            step = steps[index]
            result = await self._execute(step, index, variables, record, cancel, RunScope.MAIN)
            if result.ok:
                index += 1
                continue

            if result.reason.is_infrastructure:
                record.finish(EngineState.ABORTED, result.reason, result.detail)
                return

            if not await self._recover(step, index, result, variables, record, cancel):
                return
            # Resume at the failed step.

        record.finish(EngineState.COMPLETED)

    async def _execute(
        self,
        step: Step,
        index: int,
        variables: dict[str, Any],
        record: RunRecord,
        cancel: CancellationToken,
        scope: RunScope,
    ) -> ExecutionResult:
        result = await self.executor.execute(step, variables, step_index=index, cancel=cancel)
        result = _stamp(result, scope, record.negotiation_depth)
        record.append(result)
        if result.ok and step.capture:
            variables[step.capture] = result.value
            log.debug(f"Bound ${{{step.capture}}} from step {index}")
        return result

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------
    async def _recover(
        self,
        step: Step,
        index: int,
        failure: Failure,
        variables: dict[str, Any],
        record: RunRecord,
        cancel: CancellationToken,
    ) -> bool:
        """Run recovery cycles for a failed step; True means resume the step."""
        while True:
            record.transition(EngineState.FAILED)
            record.transition(EngineState.AWAITING_RECOVERY)

            if self.orchestrator is None:
                record.finish(EngineState.ABORTED, FailureReason.AGENT_UNAVAILABLE, "No recovery agent configured")
                return False

            snapshot = failure.snapshot
            if snapshot is None:
                snapshot = await self.snapshotter.capture(stabilize=True)
            response = await self.orchestrator.negotiate(
                step,
                failure,
                snapshot=snapshot,
                record=record,
                bound_variables=set(variables),
                cancel=cancel,
            )

            if isinstance(response, TerminalVerdict):
                if response.code is not None:
                    record.finish(EngineState.ABORTED, response.code, response.reason)
                else:
                    record.agent_verdict = response.reason
                    record.finish(EngineState.ABORTED, failure.reason, failure.detail)
                return False

            nested_failure = await self._run_corrective(response, variables, record, cancel)
            if nested_failure is not None:
                record.finish(
                    EngineState.ABORTED,
                    nested_failure.reason,
                    f"Corrective step {nested_failure.step_index} failed: {nested_failure.detail}",
                )
                return False

            if cancel.cancelled:
                record.finish(EngineState.ABORTED, FailureReason.CANCELLED, cancel.reason)
                return False

            if not needs_target_reresolution(step) or await self.executor.target_resolves(step, variables):
                log.info(f"Resuming at step {index} after corrective script")
                return True

            # Second-order failure: the target is still missing.
            failure = Failure(
                index,
                step.action.value,
                failure.reason,
                "Target still unresolved after corrective script",
                snapshot=self.snapshotter.last_snapshot,
                scope=RunScope.MAIN,
                negotiation_depth=record.negotiation_depth,
            )
            record.append(failure)
            log.warning(f"Step {index} target still unresolved after recovery (depth {record.negotiation_depth})")

    async def _run_corrective(
        self,
        corrective: CorrectiveScript,
        variables: dict[str, Any],
        record: RunRecord,
        cancel: CancellationToken,
    ) -> Failure | None:
        """Execute a corrective script as a nested run in the same session.

        Corrective step failures are terminal for the nested run; no further
        negotiation is started for them.
        """
        record.recovery_cycles += 1
        record.transition(EngineState.RUNNING)
        log.info(f"Corrective run started ({len(corrective.steps)} steps)")

        for index, step in enumerate(corrective.steps):
            if cancel.cancelled:
                return Failure(index, step.action.value, FailureReason.CANCELLED, cancel.reason, scope=RunScope.CORRECTIVE)
            result = await self._execute(step, index, variables, record, cancel, RunScope.CORRECTIVE)
            if not result.ok:
                log.warning(f"Corrective run aborted at step {index}: {result.reason.value}")
                return result

        log.success("Corrective run completed")
        return None

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    @staticmethod
    def _report(record: RunRecord) -> None:
        summary = f"Run {record.run_id} finished: {record.status.value if record.status else 'unknown'}"
        if record.state is EngineState.COMPLETED:
            log.success(f"{summary} ({len(record.results)} results, {record.duration:.2f}s)")
            return
        reason = record.terminal_reason.value if record.terminal_reason else "unknown"
        message = f"{summary} ({reason}: {record.terminal_detail})"
        if record.agent_verdict:
            message += f" | agent verdict: {record.agent_verdict}"
        log.warning(message)


def _stamp(result: ExecutionResult, scope: RunScope, depth: int) -> ExecutionResult:
    return dataclasses.replace(result, scope=scope, negotiation_depth=depth)


async def run_concurrently(jobs: Iterable[tuple[ExecutionEngine, Script]]) -> list[RunRecord]:
    """Run scripts on distinct engines (one per device session) concurrently."""
    jobs = list(jobs)
    engines = [engine for engine, _ in jobs]
    if len({id(engine) for engine in engines}) != len(engines):
        raise EngineBusyError("Each concurrent script needs its own engine and device session")
    return list(await asyncio.gather(*(engine.run(script) for engine, script in jobs)))
