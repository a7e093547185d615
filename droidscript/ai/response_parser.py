"""Parse and validate recovery agent replies."""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ValidationError

from ..core.errors import ScriptValidationError
from ..script.models import check_variable_references, validation_messages
from .contract import RecoveryResponse, TerminalVerdict, response_adapter

__all__ = ["parse_recovery_response"]

_JSON_REGEX = re.compile(r"\{[\s\S]+\}")


def _first_json_blob(text: str) -> str | None:
    """Return first JSON-looking {...} block from text."""
    match = _JSON_REGEX.search(text)
    return match.group(0) if match else None


def _load(raw: Any) -> Any:
    if isinstance(raw, BaseModel):
        return raw.model_dump(mode="json")
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        return raw

    json_str = _first_json_blob(raw)
    if not json_str:
        raise ScriptValidationError("No JSON object found in response")
    try:
        return json.loads(json_str)
    except json.JSONDecodeError as exc:
        raise ScriptValidationError(f"JSON decode error: {exc}") from exc


def parse_recovery_response(
    raw: Mapping[str, Any] | str | BaseModel,
    *,
    bound_variables: Iterable[str] = (),
    max_steps: int | None = None,
) -> RecoveryResponse:
    """Validate an agent reply against the response contract.

    Corrective steps are held to the same schema as authored steps, and may
    only reference variables already bound in the run.

    Args:
        raw: Parsed JSON, a JSON string (possibly wrapped in prose), or a model.
        bound_variables: Names bound at the time of the failure.
        max_steps: Upper bound on corrective script length.

    Raises:
        ScriptValidationError: With one message per violation.
    """
    data = _load(raw)
    if not isinstance(data, Mapping):
        raise ScriptValidationError("Recovery response must be a JSON object")

    data = dict(data)
    if data.get("kind") == "terminal":
        # Failure codes are reserved for verdicts synthesized locally.
        data.pop("code", None)

    try:
        response = response_adapter.validate_python(data)
    except ValidationError as exc:
        raise ScriptValidationError(validation_messages(exc)) from exc

    if isinstance(response, TerminalVerdict):
        return response

    errors = []
    if max_steps is not None and len(response.steps) > max_steps:
        errors.append(f"Corrective script has {len(response.steps)} steps (maximum {max_steps})")
    errors += check_variable_references(response.steps, bound_variables)
    if errors:
        raise ScriptValidationError(errors)
    return response
