"""Progressive and one-shot script construction.

Generators may emit steps one at a time (each validated the moment it is
appended) or hand over a finished step list; either way the result must be a
whole-schema-valid ``Script``.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from pydantic import ValidationError

from ..core.errors import ScriptValidationError
from ..core.logger import log
from .models import Script, Step, check_variable_references, validation_messages

__all__ = ["ScriptBuilder", "build_script", "coerce_step", "validate_steps"]


def coerce_step(data: Step | Mapping[str, Any]) -> Step:
    """Validate one step object.

    Raises:
        ScriptValidationError: If ``data`` is not a schema-valid step.
    """
    if isinstance(data, Step):
        return data
    try:
        return Step.model_validate(data)
    except ValidationError as exc:
        raise ScriptValidationError(validation_messages(exc)) from exc


def _warn_positional(step: Step, index: int) -> None:
    selector = step.selector
    if selector is not None and selector.is_positional:
        log.warning(
            f"Step {index} selector '{selector}' relies on position; "
            "prefer role + text or an explicit id"
        )


def validate_steps(steps: Sequence[Step | Mapping[str, Any]], bound: Iterable[str]) -> list[Step]:
    """Validate a step list against the schema and the variables bound so far."""
    validated: list[Step] = []
    errors: list[str] = []
    for index, raw in enumerate(steps):
        try:
            validated.append(coerce_step(raw))
        except ScriptValidationError as exc:
            errors.extend(f"step {index}: {message}" for message in exc.errors)
    if errors:
        raise ScriptValidationError(errors)
    errors = check_variable_references(validated, bound)
    if errors:
        raise ScriptValidationError(errors)
    return validated


class ScriptBuilder:
    """Accumulates steps emitted progressively by a script generator."""

    def __init__(self, name: str, variables: Mapping[str, Any] | None = None) -> None:
        self.name = name
        self.variables = dict(variables or {})
        self._steps: list[Step] = []
        self._bound = set(self.variables)

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    @property
    def bound_variables(self) -> set[str]:
        return set(self._bound)

    def append(self, data: Step | Mapping[str, Any]) -> Step:
        """Validate and append one step.

        Raises:
            ScriptValidationError: If the step is malformed or references a
                variable no earlier step binds. The builder is unchanged.
        """
        step = coerce_step(data)
        errors = check_variable_references([step], self._bound)
        if errors:
            raise ScriptValidationError(errors)

        index = len(self._steps)
        _warn_positional(step, index)
        self._steps.append(step)
        if step.capture:
            self._bound.add(step.capture)
        log.debug(f"Appended step {index}: {step.label()}")
        return step

    def extend(self, steps: Iterable[Step | Mapping[str, Any]]) -> None:
        for step in steps:
            self.append(step)

    def finalize(self) -> Script:
        """Return the finished, whole-schema-valid script."""
        return build_script(self.name, self._steps, self.variables)


def build_script(
    name: str,
    steps: Sequence[Step | Mapping[str, Any]],
    variables: Mapping[str, Any] | None = None,
) -> Script:
    """Validate a finalized step list as a whole and wrap it in a ``Script``."""
    variables = dict(variables or {})
    validated = validate_steps(steps, variables)
    return Script.from_dict({"name": name, "variables": variables, "steps": validated})
