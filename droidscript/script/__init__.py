"""Script model, selector language and selector resolution."""

from .builder import ScriptBuilder, build_script, coerce_step, validate_steps
from .models import (
    ACTION_SPECS,
    GLOBAL_ACTIONS,
    MAX_TEXT_INPUT_LENGTH,
    SCREEN_CONDITIONS,
    ActionKind,
    RecoveryHint,
    Script,
    ScrollDirection,
    Step,
    WaitCondition,
    check_variable_references,
)
from .resolver import resolve, resolve_clause, resolve_indices
from .selector import Selector, SelectorClause, format_selector, parse_selector
from .variables import find_references, render_value, substitute, substitute_params

__all__ = [
    "ACTION_SPECS",
    "ActionKind",
    "GLOBAL_ACTIONS",
    "MAX_TEXT_INPUT_LENGTH",
    "RecoveryHint",
    "SCREEN_CONDITIONS",
    "Script",
    "ScriptBuilder",
    "ScrollDirection",
    "Selector",
    "SelectorClause",
    "Step",
    "WaitCondition",
    "build_script",
    "check_variable_references",
    "coerce_step",
    "find_references",
    "format_selector",
    "parse_selector",
    "render_value",
    "resolve",
    "resolve_clause",
    "resolve_indices",
    "substitute",
    "substitute_params",
    "validate_steps",
]
