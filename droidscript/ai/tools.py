"""Function-calling tool surface mirroring the script primitives.

A script generator emits one tool call per step; ``step_from_tool_call``
turns each call into a validated ``Step`` so that progressive generation
goes through the same schema as hand-authored scripts.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from pydantic import ValidationError

from ..core.errors import ScriptValidationError
from ..screen.models import WindowType
from ..screen.representation import ScreenFormat
from ..script.models import GLOBAL_ACTIONS, ActionKind, ScrollDirection, Step, WaitCondition, validation_messages

__all__ = ["TOOL_DEFINITIONS", "TOOL_NAMES", "step_from_tool_call"]

_SELECTOR = {
    "type": "string",
    "description": (
        "Element selector, e.g. \"id=login\", \"role=Button;text=Sign in\", "
        "\"text~=Settings || desc=Settings\", \"role=Row;inside=(id=list);nth=2\""
    ),
}
_CAPTURE = {"type": "string", "description": "Variable name that receives the step's output"}
_DESCRIPTION = {"type": "string", "description": "Short note on what the step is for"}


def _tool(name: str, description: str, properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": {**properties, "description": _DESCRIPTION},
                "required": required,
                "additionalProperties": False,
            },
        },
    }


TOOL_DEFINITIONS: list[dict[str, Any]] = [
    _tool("tap", "Tap the single element matching the selector.", {"selector": _SELECTOR}, ["selector"]),
    _tool(
        "long_press",
        "Long-press the single element matching the selector.",
        {"selector": _SELECTOR, "duration_ms": {"type": "integer", "minimum": 1}},
        ["selector"],
    ),
    _tool("clear", "Clear the text of the matching input field.", {"selector": _SELECTOR}, ["selector"]),
    _tool(
        "type",
        "Type text into the matching focusable input field.",
        {"selector": _SELECTOR, "text": {"type": "string"}},
        ["selector", "text"],
    ),
    _tool(
        "read_screen",
        "Read the current screen. 'targeted' returns the subtrees matching the selector; "
        "'window' requires the foreground window to be of that type.",
        {
            "format": {"type": "string", "enum": [f.value for f in ScreenFormat]},
            "window": {"type": "string", "enum": [w.value for w in WindowType]},
            "selector": _SELECTOR,
            "capture": _CAPTURE,
        },
        [],
    ),
    _tool(
        "scroll_to_find",
        "Scroll until an element matching the selector appears.",
        {
            "selector": _SELECTOR,
            "direction": {"type": "string", "enum": [d.value for d in ScrollDirection]},
            "max_attempts": {"type": "integer", "minimum": 1},
            "capture": _CAPTURE,
        },
        ["selector"],
    ),
    _tool(
        "wait",
        "Wait until a screen condition holds. 'stable', 'window_changed' and "
        "'content_changed' take no selector.",
        {
            "selector": _SELECTOR,
            "condition": {"type": "string", "enum": [c.value for c in WaitCondition]},
            "timeout_ms": {"type": "integer", "minimum": 0},
            "capture": _CAPTURE,
        },
        [],
    ),
    _tool(
        "global_action",
        "Perform a system-level action.",
        {"name": {"type": "string", "enum": sorted(GLOBAL_ACTIONS)}},
        ["name"],
    ),
]

TOOL_NAMES = frozenset(tool["function"]["name"] for tool in TOOL_DEFINITIONS)


def step_from_tool_call(name: str, arguments: Mapping[str, Any] | str | None) -> Step:
    """Convert one tool call into a validated step.

    Args:
        name: Tool name, one of ``TOOL_NAMES``.
        arguments: Tool arguments as a mapping or the raw JSON string.

    Raises:
        ScriptValidationError: Unknown tool, malformed arguments or a step
            that violates the script schema.
    """
    if name not in TOOL_NAMES:
        raise ScriptValidationError(f"Unknown tool '{name}'")

    if arguments is None:
        args: dict[str, Any] = {}
    elif isinstance(arguments, str):
        try:
            args = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError as exc:
            raise ScriptValidationError(f"Tool '{name}' arguments are not valid JSON: {exc}") from exc
    else:
        args = dict(arguments)
    if not isinstance(args, dict):
        raise ScriptValidationError(f"Tool '{name}' arguments must be an object")

    payload: dict[str, Any] = {"action": ActionKind(name).value}
    for key in ("selector", "capture", "description"):
        if key in args:
            payload[key] = args.pop(key)
    payload["params"] = args

    try:
        return Step.model_validate(payload)
    except ValidationError as exc:
        raise ScriptValidationError(validation_messages(exc)) from exc
