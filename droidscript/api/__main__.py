"""Serve the droidscript API against a connected device.

Usage::

    ANDROID_DEVICE_ID=emulator-5554 API_PORT=8000 python -m droidscript.api
"""

from __future__ import annotations

from typing import Callable, Optional

import uvicorn

from ..ai.openai_client import OpenAIClient
from ..ai.orchestrator import RecoveryOrchestrator
from ..ai.recovery_agent import OpenAIRecoveryAgent
from ..automation.engine import ExecutionEngine
from ..core.config import Config, config
from ..core.device_manager import AdbDeviceHandle
from ..core.logger import log
from .app import create_app


def build_engine_factory(cfg: Config, serial: str | None) -> Callable[[], ExecutionEngine]:
    """Return a factory handing out the one engine that owns the device.

    The device session is opened on first use and shared by every request,
    so the engine's single-run guard makes concurrent runs fail with
    ``EngineBusyError`` instead of driving the device twice.
    """
    cfg.validate_config()
    settings = cfg.engine_settings()
    agent = OpenAIRecoveryAgent(OpenAIClient.from_config(cfg)) if cfg.openai_api_key else None
    if agent is None:
        log.warning("OPENAI_API_KEY not set; step failures will abort without recovery")
    orchestrator = RecoveryOrchestrator(agent, cfg.recovery_settings())
    engine: Optional[ExecutionEngine] = None

    def factory() -> ExecutionEngine:
        nonlocal engine
        if engine is None:
            device = AdbDeviceHandle.connect(
                serial,
                timeout=cfg.adb_command_timeout,
                settle_delay=cfg.snapshot_settle_delay_ms / 1000,
            )
            engine = ExecutionEngine(device, orchestrator, settings)
        return engine

    return factory


def main() -> None:
    """Start the API server using host, port and device from the environment."""
    app = create_app(build_engine_factory(config, config.android_device_id))
    log.info(f"Starting droidscript API on {config.api_host}:{config.api_port} (device {config.android_device_id})")

    uvicorn.run(
        app,
        host=config.api_host,
        port=config.api_port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
