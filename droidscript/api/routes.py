"""API route definitions for droidscript."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from ..automation.engine import ExecutionEngine
from ..core.errors import ADBError, EngineBusyError, ScriptValidationError
from ..core.logger import log
from ..script.models import Script

# Create router instances
scripts_router = APIRouter()
runs_router = APIRouter()

EngineFactory = Callable[[], ExecutionEngine]


# Pydantic models for request/response
class ScriptRequest(BaseModel):
    """Request model wrapping a script document."""
    script: Dict[str, Any]


class ValidationResponse(BaseModel):
    """Response model for script validation."""
    valid: bool
    errors: List[str] = []
    step_count: Optional[int] = None


def _parse(payload: Dict[str, Any]) -> Script:
    try:
        return Script.from_dict(payload)
    except ScriptValidationError as exc:
        raise HTTPException(status_code=400, detail={"errors": exc.errors}) from exc


def get_engine(request: Request) -> ExecutionEngine:
    """Return the engine that owns the application's device session."""
    factory: Optional[EngineFactory] = getattr(request.app.state, "engine_factory", None)
    if factory is None:
        raise HTTPException(status_code=503, detail="No device session configured")
    try:
        return factory()
    except ADBError as exc:
        log.error(f"Could not open device session: {exc}")
        raise HTTPException(status_code=503, detail=str(exc)) from exc


# Script routes
@scripts_router.post("/validate", response_model=ValidationResponse)
async def validate_script(request: ScriptRequest):
    """Validate a script document without running it."""
    try:
        script = Script.from_dict(request.script)
    except ScriptValidationError as exc:
        return ValidationResponse(valid=False, errors=exc.errors)
    return ValidationResponse(valid=True, step_count=len(script.steps))


# Run routes
@runs_router.post("")
async def start_run(body: ScriptRequest, request: Request):
    """Run a script to completion and return its run record."""
    script = _parse(body.script)
    engine = get_engine(request)
    try:
        record = await engine.run(script)
    except EngineBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    log.info(f"API run {record.run_id} finished with {record.status.value if record.status else 'unknown'}")
    return record.to_dict()
