"""Script model: ordered steps of (action, selector, parameters)."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator, model_validator

from ..core.errors import ScriptValidationError
from ..screen.models import WindowType
from ..screen.representation import ScreenFormat
from .selector import Selector, format_selector, parse_selector
from .variables import VARIABLE_NAME, find_references

__all__ = [
    "ACTION_SPECS",
    "ActionKind",
    "GLOBAL_ACTIONS",
    "MAX_TEXT_INPUT_LENGTH",
    "RecoveryHint",
    "SCREEN_CONDITIONS",
    "Script",
    "ScrollDirection",
    "Step",
    "WaitCondition",
    "check_variable_references",
    "validation_messages",
]

# Longer input is rejected rather than typed.
MAX_TEXT_INPUT_LENGTH = 10_000


class ActionKind(str, Enum):
    """Primitive actions a step can perform."""

    TAP = "tap"
    LONG_PRESS = "long_press"
    CLEAR = "clear"
    TYPE = "type"
    READ_SCREEN = "read_screen"
    SCROLL_TO_FIND = "scroll_to_find"
    WAIT = "wait"
    GLOBAL_ACTION = "global_action"


class ScrollDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


class WaitCondition(str, Enum):
    """Screen-state predicates a ``wait`` step can poll for."""

    PRESENT = "present"
    ABSENT = "absent"
    ENABLED = "enabled"
    STABLE = "stable"
    WINDOW_CHANGED = "window_changed"
    CONTENT_CHANGED = "content_changed"


# Conditions on the whole screen; they take no selector.
SCREEN_CONDITIONS = frozenset({WaitCondition.STABLE, WaitCondition.WINDOW_CHANGED, WaitCondition.CONTENT_CHANGED})


GLOBAL_ACTIONS = frozenset({"back", "home", "recents", "notifications", "quick_settings", "power_dialog"})


@dataclass(frozen=True)
class ActionSpec:
    """Selector policy and accepted parameters of one action kind."""

    selector: str  # "required", "optional" or "forbidden"
    required: tuple[str, ...] = ()
    optional: tuple[str, ...] = ()
    captures: bool = False
    choices: dict[str, frozenset[str]] = field(default_factory=dict)
    positive_ints: tuple[str, ...] = ()


ACTION_SPECS: dict[ActionKind, ActionSpec] = {
    ActionKind.TAP: ActionSpec(selector="required"),
    ActionKind.LONG_PRESS: ActionSpec(selector="required", optional=("duration_ms",), positive_ints=("duration_ms",)),
    ActionKind.CLEAR: ActionSpec(selector="required"),
    ActionKind.TYPE: ActionSpec(selector="required", required=("text",)),
    ActionKind.READ_SCREEN: ActionSpec(
        selector="optional",
        optional=("format", "window"),
        captures=True,
        choices={
            "format": frozenset(f.value for f in ScreenFormat),
            "window": frozenset(w.value for w in WindowType),
        },
    ),
    ActionKind.SCROLL_TO_FIND: ActionSpec(
        selector="required",
        optional=("direction", "max_attempts"),
        captures=True,
        choices={"direction": frozenset(d.value for d in ScrollDirection)},
        positive_ints=("max_attempts",),
    ),
    ActionKind.WAIT: ActionSpec(
        selector="optional",
        optional=("condition", "timeout_ms"),
        captures=True,
        choices={"condition": frozenset(c.value for c in WaitCondition)},
    ),
    ActionKind.GLOBAL_ACTION: ActionSpec(selector="forbidden", required=("name",), choices={"name": GLOBAL_ACTIONS}),
}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_params(action: ActionKind, selector: Selector | None, params: dict[str, Any]) -> list[str]:
    spec = ACTION_SPECS[action]
    errors: list[str] = []

    if spec.selector == "required" and selector is None:
        errors.append(f"{action.value} requires a selector")
    if spec.selector == "forbidden" and selector is not None:
        errors.append(f"{action.value} does not take a selector")

    allowed = set(spec.required) | set(spec.optional)
    for name in params:
        if name not in allowed:
            errors.append(f"{action.value} does not accept parameter '{name}'")
    for name in spec.required:
        if name not in params:
            errors.append(f"{action.value} requires parameter '{name}'")
    for name, choices in spec.choices.items():
        if name in params and params[name] not in choices:
            errors.append(f"{action.value}.{name} must be one of {sorted(choices)}")
    for name in spec.positive_ints:
        if name in params and (not _is_int(params[name]) or params[name] < 1):
            errors.append(f"{action.value}.{name} must be a positive integer")

    if action is ActionKind.TYPE and "text" in params:
        text = params["text"]
        if not isinstance(text, str):
            errors.append("type.text must be a string")
        elif len(text) > MAX_TEXT_INPUT_LENGTH:
            errors.append(f"type.text exceeds maximum length of {MAX_TEXT_INPUT_LENGTH} characters")

    if action is ActionKind.READ_SCREEN:
        targeted = params.get("format") == ScreenFormat.TARGETED.value
        if targeted and selector is None:
            errors.append("read_screen format 'targeted' requires a selector")
        if not targeted and selector is not None:
            errors.append("read_screen only takes a selector with format 'targeted'")

    if action is ActionKind.WAIT:
        condition = params.get("condition")
        if "timeout_ms" in params and (not _is_int(params["timeout_ms"]) or params["timeout_ms"] < 0):
            errors.append("wait.timeout_ms must be a non-negative integer")
        screen_conditions = {c.value for c in SCREEN_CONDITIONS}
        if selector is None and condition not in screen_conditions:
            errors.append(f"wait without a selector requires a condition in {sorted(screen_conditions)}")
        if selector is not None and condition in screen_conditions:
            errors.append(f"wait condition '{condition}' does not take a selector")

    return errors


def _parse_selector_value(value: Any) -> Any:
    if isinstance(value, str):
        return parse_selector(value)
    return value


class RecoveryHint(BaseModel):
    """Author guidance for one step, consumed only during recovery."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    guidance: str
    fallback_selectors: list[Selector] = Field(default_factory=list)

    @field_validator("fallback_selectors", mode="before")
    @classmethod
    def _parse_fallbacks(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return [_parse_selector_value(item) for item in value]
        return value

    @field_serializer("fallback_selectors")
    def _format_fallbacks(self, value: list[Selector]) -> list[str]:
        return [format_selector(selector) for selector in value]


class Step(BaseModel):
    """One action, an optional selector and its parameters."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    action: ActionKind
    selector: Optional[Selector] = None
    params: dict[str, Any] = Field(default_factory=dict)
    capture: Optional[str] = None
    description: Optional[str] = None
    recovery_hints: list[RecoveryHint] = Field(default_factory=list)

    @field_validator("selector", mode="before")
    @classmethod
    def _parse_selector(cls, value: Any) -> Any:
        return _parse_selector_value(value)

    @field_serializer("selector")
    def _format_selector(self, value: Optional[Selector]) -> Optional[str]:
        return format_selector(value) if value is not None else None

    @model_validator(mode="after")
    def _check_action(self) -> Step:
        errors = _check_params(self.action, self.selector, self.params)
        if self.capture is not None:
            if not ACTION_SPECS[self.action].captures:
                errors.append(f"{self.action.value} produces no value to capture")
            elif not VARIABLE_NAME.fullmatch(self.capture):
                errors.append(f"Invalid capture variable name '{self.capture}'")
        if errors:
            raise ValueError("; ".join(errors))
        return self

    def variable_references(self) -> set[str]:
        names = find_references(self.params)
        if self.selector is not None:
            names |= self.selector.variable_references()
        return names

    def label(self) -> str:
        """Short description used in logs, e.g. ``tap(id=login)``."""
        target = format_selector(self.selector) if self.selector is not None else ""
        return f"{self.action.value}({target})"


def check_variable_references(steps: Sequence[Step], bound: Iterable[str]) -> list[str]:
    """Return an error for every reference to a variable not bound yet.

    A variable is bound when declared up front or captured by an earlier
    step; a step never sees its own capture.
    """
    known = set(bound)
    errors = []
    for index, step in enumerate(steps):
        for name in sorted(step.variable_references() - known):
            errors.append(f"step {index} references unbound variable '${{{name}}}'")
        if step.capture:
            known.add(step.capture)
    return errors


class Script(BaseModel):
    """Named, ordered sequence of steps with declared variables."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    variables: dict[str, Any] = Field(default_factory=dict)
    steps: list[Step] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_references(self) -> Script:
        errors = [f"Invalid variable name '{name}'" for name in self.variables if not VARIABLE_NAME.fullmatch(name)]
        errors += check_variable_references(self.steps, self.variables)
        if errors:
            raise ValueError("; ".join(errors))
        return self

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(indent=indent)

    @classmethod
    def from_dict(cls, data: Any) -> Script:
        """Validate ``data`` against the script schema.

        Raises:
            ScriptValidationError: With one message per schema violation.
        """
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ScriptValidationError(validation_messages(exc)) from exc

    @classmethod
    def from_json(cls, text: str) -> Script:
        try:
            return cls.model_validate_json(text)
        except ValidationError as exc:
            raise ScriptValidationError(validation_messages(exc)) from exc


def validation_messages(exc: ValidationError) -> list[str]:
    """Flatten a pydantic ``ValidationError`` into readable messages."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid")
        messages.append(f"{location}: {message}" if location else message)
    return messages
