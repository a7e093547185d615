"""``${name}`` variable references and substitution."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

from ..core.errors import ScriptValidationError

__all__ = ["VARIABLE_NAME", "find_references", "render_value", "substitute", "substitute_params"]

VARIABLE_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def find_references(value: Any) -> set[str]:
    """Collect every variable name referenced inside ``value``."""
    if isinstance(value, str):
        return set(_REFERENCE.findall(value))
    if isinstance(value, Mapping):
        names: set[str] = set()
        for item in value.values():
            names |= find_references(item)
        return names
    if isinstance(value, (list, tuple)):
        names = set()
        for item in value:
            names |= find_references(item)
        return names
    return set()


def render_value(value: Any) -> str:
    """Text form of a bound value; structured values become compact JSON."""
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def substitute(text: str, variables: Mapping[str, Any]) -> str:
    """Replace every ``${name}`` in ``text`` with its current binding.

    Raises:
        ScriptValidationError: If a referenced variable is not bound.
    """
    def _lookup(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in variables:
            raise ScriptValidationError(f"Unbound variable '${{{name}}}'")
        return render_value(variables[name])

    return _REFERENCE.sub(_lookup, text)


def substitute_params(params: Mapping[str, Any], variables: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``params`` with every string parameter substituted."""
    return {
        key: substitute(value, variables) if isinstance(value, str) else value
        for key, value in params.items()
    }
