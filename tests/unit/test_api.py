import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from droidscript.api import __main__ as server
from droidscript.api.app import create_app
from droidscript.automation.engine import ExecutionEngine
from droidscript.core.config import Config, EngineSettings
from tests.conftest import FakeDevice, button, make_screen

SCRIPT = {"name": "tap-ok", "steps": [{"action": "tap", "selector": "text=OK"}]}


def _client(with_engine=True):
    settings = EngineSettings(snapshot_settle_delay_ms=0)
    factory = (lambda: ExecutionEngine(FakeDevice(make_screen(button("OK"))), settings=settings)) if with_engine else None
    return TestClient(create_app(factory))


def test_health():
    response = _client(with_engine=False).get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["runs_enabled"] is False


def test_validate_reports_errors():
    client = _client()

    ok = client.post("/api/v1/scripts/validate", json={"script": SCRIPT})
    bad = client.post(
        "/api/v1/scripts/validate",
        json={"script": {"name": "bad", "steps": [{"action": "tap", "selector": "text=${nope}"}]}},
    )

    assert ok.json() == {"valid": True, "errors": [], "step_count": 1}
    assert bad.json()["valid"] is False
    assert bad.json()["errors"]


def test_run_returns_run_record():
    response = _client().post("/api/v1/runs", json={"script": SCRIPT})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "Completed"
    assert body["script_name"] == "tap-ok"
    assert body["results"][0]["outcome"] == "success"


def test_run_rejects_invalid_script():
    response = _client().post("/api/v1/runs", json={"script": {"name": "x", "steps": [{"action": "tap"}]}})

    assert response.status_code == 400
    assert response.json()["detail"]["errors"]


def test_run_without_engine_is_unavailable():
    response = _client(with_engine=False).post("/api/v1/runs", json={"script": SCRIPT})

    assert response.status_code == 503


class SlowTapDevice(FakeDevice):
    """Counts taps that are in flight at the same time."""

    def __init__(self, screen):
        super().__init__(screen)
        self.in_flight = 0
        self.max_in_flight = 0

    async def tap(self, x, y):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.05)
        self.in_flight -= 1
        await super().tap(x, y)


def test_engine_factory_reuses_one_device_session(monkeypatch):
    device = SlowTapDevice(make_screen(button("OK")))
    connects = []
    monkeypatch.setattr(server.AdbDeviceHandle, "connect", lambda *args, **kwargs: connects.append(args) or device)

    factory = server.build_engine_factory(Config(openai_api_key="", snapshot_settle_delay_ms=0), "emulator-5554")

    assert factory() is factory()
    assert len(connects) == 1


@pytest.mark.asyncio
async def test_concurrent_runs_on_one_device_are_rejected(monkeypatch):
    device = SlowTapDevice(make_screen(button("OK")))
    monkeypatch.setattr(server.AdbDeviceHandle, "connect", lambda *args, **kwargs: device)
    factory = server.build_engine_factory(Config(openai_api_key="", snapshot_settle_delay_ms=0), "emulator-5554")
    app = create_app(factory)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        responses = await asyncio.gather(
            client.post("/api/v1/runs", json={"script": SCRIPT}),
            client.post("/api/v1/runs", json={"script": SCRIPT}),
        )

    assert sorted(response.status_code for response in responses) == [200, 409]
    assert device.max_in_flight == 1
    assert device.names() == ["tap"]
