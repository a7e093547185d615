import asyncio

import pytest

from droidscript.ai.orchestrator import RecoveryOrchestrator
from droidscript.automation.cancellation import CancellationToken
from droidscript.automation.engine import ExecutionEngine, run_concurrently
from droidscript.automation.results import EngineState, RunScope, RunStatus
from droidscript.core.config import RecoveryConfig
from droidscript.core.errors import EngineBusyError, FailureReason
from droidscript.script.models import Script
from tests.conftest import FakeAgent, FakeDevice, button, make_screen, node


def _script(*steps, variables=None, name="test"):
    return Script.from_dict({"name": name, "variables": variables or {}, "steps": list(steps)})


def _engine(device, settings, agent=None, recovery_config=None):
    orchestrator = RecoveryOrchestrator(agent, recovery_config) if agent is not None else None
    return ExecutionEngine(device, orchestrator, settings)


DIALOG = make_screen(
    node("TextView", text="Rate this app?"),
    button("Not now", id="com.example.app:id/dismiss"),
)


@pytest.mark.asyncio
async def test_successful_run_records_results_in_declaration_order(settings, login_screen):
    device = FakeDevice(login_screen)
    script = _script(
        {"action": "type", "selector": "id=username", "params": {"text": "${user}"}},
        {"action": "read_screen", "capture": "screen"},
        {"action": "tap", "selector": "id=login"},
        variables={"user": "ada"},
    )

    record = await _engine(device, settings).run(script)

    assert record.status is RunStatus.COMPLETED
    assert record.states == [EngineState.PENDING, EngineState.RUNNING, EngineState.COMPLETED]
    assert [result.step_index for result in record.results] == [0, 1, 2]
    assert all(result.ok for result in record.results)
    assert record.variables["screen"][0]["text"] == "Welcome"
    assert record.terminal_reason is None
    assert device.names() == ["input_text", "tap"]


@pytest.mark.asyncio
async def test_failure_without_agent_aborts_with_agent_unavailable(settings, login_screen):
    record = await _engine(FakeDevice(login_screen), settings).run(_script({"action": "tap", "selector": "text=Nope"}))

    assert record.status is RunStatus.ABORTED
    assert record.terminal_reason is FailureReason.AGENT_UNAVAILABLE
    assert record.states[-3:] == [EngineState.FAILED, EngineState.AWAITING_RECOVERY, EngineState.ABORTED]


@pytest.mark.asyncio
async def test_terminal_verdict_aborts_with_original_reason(settings, recovery_config):
    # Target vanished and the agent gives up.
    screen = make_screen(node("TextView", text="Settings"))
    agent = FakeAgent({"kind": "terminal", "reason": "element removed"})
    device = FakeDevice(screen)

    record = await _engine(device, settings, agent, recovery_config).run(
        _script({"action": "tap", "selector": "id=submit"})
    )

    assert record.status is RunStatus.ABORTED
    assert record.terminal_reason is FailureReason.NO_TARGET
    assert record.agent_verdict == "element removed"
    assert record.states == [
        EngineState.PENDING,
        EngineState.RUNNING,
        EngineState.FAILED,
        EngineState.AWAITING_RECOVERY,
        EngineState.ABORTED,
    ]
    request = agent.requests[0]
    assert request.failure_reason is FailureReason.NO_TARGET
    assert request.negotiation_depth == 0
    assert request.current_screen[-1]["text"] == "Settings"
    assert device.actions == []


@pytest.mark.asyncio
async def test_malformed_response_aborts_with_invalid_recovery_response(settings, recovery_config, login_screen):
    agent = FakeAgent({"kind": "corrective_script"})
    device = FakeDevice(login_screen)

    record = await _engine(device, settings, agent, recovery_config).run(
        _script({"action": "tap", "selector": "id=missing"}, {"action": "tap", "selector": "id=login"})
    )

    assert record.status is RunStatus.ABORTED
    assert record.terminal_reason is FailureReason.INVALID_RECOVERY_RESPONSE
    assert device.actions == []
    assert len(record.results) == 1


@pytest.mark.asyncio
async def test_corrective_script_then_resume(settings, recovery_config):
    home = make_screen(button("Continue", id="com.example.app:id/next"))
    device = FakeDevice(DIALOG, tap=[home, home])
    agent = FakeAgent(
        {
            "kind": "corrective_script",
            "rationale": "dismiss the rating dialog",
            "steps": [{"action": "tap", "selector": "id=dismiss"}],
        }
    )

    record = await _engine(device, settings, agent, recovery_config).run(
        _script({"action": "tap", "selector": "id=next"})
    )

    assert record.status is RunStatus.RECOVERED_AND_COMPLETED
    assert record.recovered
    assert [(r.scope, r.ok) for r in record.results] == [
        (RunScope.MAIN, False),
        (RunScope.CORRECTIVE, True),
        (RunScope.MAIN, True),
    ]
    assert record.results[1].negotiation_depth == 1
    assert len(record.negotiations) == 1
    assert record.states[-1] is EngineState.COMPLETED
    assert device.names() == ["tap", "tap"]


@pytest.mark.asyncio
async def test_corrective_step_failure_is_terminal(settings, recovery_config):
    agent = FakeAgent({"kind": "corrective_script", "steps": [{"action": "tap", "selector": "text=Ghost"}]})
    device = FakeDevice(DIALOG)

    record = await _engine(device, settings, agent, recovery_config).run(
        _script({"action": "tap", "selector": "id=next"})
    )

    assert record.status is RunStatus.RECOVERED_AND_ABORTED
    assert record.terminal_reason is FailureReason.NO_TARGET
    assert "Corrective step 0" in record.terminal_detail
    assert len(agent.requests) == 1


@pytest.mark.asyncio
async def test_recursion_bound_limits_negotiation_rounds(settings, recovery_config):
    noop = {"kind": "corrective_script", "steps": [{"action": "global_action", "params": {"name": "back"}}]}
    agent = FakeAgent(noop, noop, noop, noop)
    device = FakeDevice(DIALOG)

    record = await _engine(device, settings, agent, recovery_config).run(
        _script({"action": "tap", "selector": "id=next"})
    )

    assert record.status is RunStatus.RECOVERED_AND_ABORTED
    assert record.terminal_reason is FailureReason.RECURSION_BOUND_EXCEEDED
    assert len(agent.requests) == recovery_config.max_depth + 1
    assert [request.negotiation_depth for request in agent.requests] == [0, 1]
    assert device.names() == ["global_action", "global_action"]


@pytest.mark.asyncio
async def test_recursion_bound_spans_every_failed_step_of_a_run(settings, recovery_config):
    home = make_screen(button("Continue", id="com.example.app:id/next"))
    device = FakeDevice(DIALOG, tap=[home, home])
    dismiss = {"kind": "corrective_script", "steps": [{"action": "tap", "selector": "id=dismiss"}]}
    noop = {"kind": "corrective_script", "steps": [{"action": "global_action", "params": {"name": "back"}}]}
    agent = FakeAgent(dismiss, noop, noop, noop)

    record = await _engine(device, settings, agent, recovery_config).run(
        _script({"action": "tap", "selector": "id=next"}, {"action": "tap", "selector": "id=missing"})
    )

    assert record.status is RunStatus.RECOVERED_AND_ABORTED
    assert record.terminal_reason is FailureReason.RECURSION_BOUND_EXCEEDED
    assert len(agent.requests) == recovery_config.max_depth + 1
    assert [(r.failed_step_index, r.negotiation_depth) for r in agent.requests] == [(0, 0), (1, 1)]
    assert [n.negotiation_depth for n in record.negotiations] == [0, 1, 2]
    assert record.negotiations[-1].request is None


@pytest.mark.asyncio
async def test_scroll_to_find_in_a_run_completes_without_recovery(settings):
    def page(label):
        return make_screen(
            node(
                "RecyclerView",
                id="com.example.app:id/menu",
                bounds=(0, 100, 1080, 1100),
                scrollable=True,
                children=[node("TextView", text=label, bounds=(0, 100, 1080, 200), clickable=True)],
            )
        )

    device = FakeDevice(page("Account"), swipe=[page("Privacy"), page("Storage"), page("Settings")])
    agent = FakeAgent()

    record = await _engine(device, settings, agent).run(
        _script({"action": "scroll_to_find", "selector": "text=Settings", "params": {"max_attempts": 5}})
    )

    assert record.status is RunStatus.COMPLETED
    assert record.results[0].attempts == 3
    assert device.names() == ["swipe", "swipe", "swipe"]
    assert agent.requests == []


@pytest.mark.asyncio
async def test_recursion_bound_holds_for_any_response_sequence(settings, recovery_config):
    # The step resolves after recovery but keeps failing on delivery.
    screen = make_screen(button("Pay", id="com.example.app:id/pay"))
    device = FakeDevice(screen)
    device.fail_on.add("tap")
    noop = {"kind": "corrective_script", "steps": [{"action": "wait", "params": {"condition": "stable"}}]}
    agent = FakeAgent(*[noop] * 10)

    record = await _engine(device, settings, agent, recovery_config).run(
        _script({"action": "tap", "selector": "id=pay"})
    )

    assert record.terminal_reason is FailureReason.RECURSION_BOUND_EXCEEDED
    assert len(agent.requests) <= recovery_config.max_depth + 1


@pytest.mark.asyncio
async def test_agent_timeout_is_agent_unavailable(settings, login_screen):
    agent = FakeAgent({"kind": "terminal", "reason": "late"}, delay=5)
    orchestrator = RecoveryOrchestrator(agent, RecoveryConfig(timeout_s=0.05))
    engine = ExecutionEngine(FakeDevice(login_screen), orchestrator, settings)

    record = await engine.run(_script({"action": "tap", "selector": "id=missing"}))

    assert record.terminal_reason is FailureReason.AGENT_UNAVAILABLE
    assert "timed out" in record.terminal_detail


@pytest.mark.asyncio
async def test_agent_transport_error_is_agent_unavailable(settings, recovery_config, login_screen):
    agent = FakeAgent(ConnectionError("connection reset"))

    record = await _engine(FakeDevice(login_screen), settings, agent, recovery_config).run(
        _script({"action": "tap", "selector": "id=missing"})
    )

    assert record.terminal_reason is FailureReason.AGENT_UNAVAILABLE
    assert "connection reset" in record.terminal_detail


@pytest.mark.asyncio
async def test_cancellation_before_start_aborts_immediately(settings, login_screen):
    cancel = CancellationToken()
    cancel.cancel()
    device = FakeDevice(login_screen)

    record = await _engine(device, settings).run(_script({"action": "tap", "selector": "id=login"}), cancel)

    assert record.status is RunStatus.ABORTED
    assert record.terminal_reason is FailureReason.CANCELLED
    assert device.actions == []


@pytest.mark.asyncio
async def test_cancellation_between_steps(settings, login_screen):
    cancel = CancellationToken()
    device = FakeDevice(login_screen)
    device.on_action = lambda _device, _action: cancel.cancel("stop after first tap")
    script = _script({"action": "tap", "selector": "id=login"}, {"action": "tap", "selector": "id=login"})

    record = await _engine(device, settings).run(script, cancel)

    assert record.terminal_reason is FailureReason.CANCELLED
    assert record.terminal_detail == "stop after first tap"
    assert device.names() == ["tap"]


@pytest.mark.asyncio
async def test_cancellation_while_awaiting_agent(settings, recovery_config, login_screen):
    cancel = CancellationToken()
    agent = FakeAgent({"kind": "terminal", "reason": "slow"}, delay=0.5)

    async def _cancel_soon():
        await asyncio.sleep(0.05)
        cancel.cancel()

    engine = _engine(FakeDevice(login_screen), settings, agent, recovery_config)
    record, _ = await asyncio.gather(engine.run(_script({"action": "tap", "selector": "id=missing"}), cancel), _cancel_soon())

    assert record.terminal_reason is FailureReason.CANCELLED
    assert record.state is EngineState.ABORTED


@pytest.mark.asyncio
async def test_engine_runs_one_script_at_a_time(settings, login_screen):
    engine = _engine(FakeDevice(login_screen), settings)
    script = _script({"action": "wait", "params": {"condition": "stable", "timeout_ms": 100}})

    first = asyncio.ensure_future(engine.run(script))
    await asyncio.sleep(0)
    with pytest.raises(EngineBusyError):
        await engine.run(script)
    record = await first

    assert record.status is RunStatus.COMPLETED
    assert not engine.busy


@pytest.mark.asyncio
async def test_independent_runs_execute_concurrently(settings, login_screen):
    devices = [FakeDevice(login_screen), FakeDevice(login_screen)]
    script = _script({"action": "tap", "selector": "id=login"})

    records = await run_concurrently([(_engine(device, settings), script) for device in devices])

    assert [record.status for record in records] == [RunStatus.COMPLETED, RunStatus.COMPLETED]
    assert records[0].run_id != records[1].run_id
    assert all(device.names() == ["tap"] for device in devices)


@pytest.mark.asyncio
async def test_run_record_serializes(settings, login_screen):
    record = await _engine(FakeDevice(login_screen), settings).run(_script({"action": "tap", "selector": "id=nope"}))

    data = record.to_dict()

    assert data["status"] == "Aborted"
    assert data["terminal_reason"] == "AgentUnavailable"
    assert data["results"][0]["reason"] == "NoTarget"
    assert data["states"][0] == "Pending"
