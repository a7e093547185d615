"""Resolve selectors against a snapshot.

Resolution is a pure function of ``(selector, snapshot)``: matches are always
returned in document order, fallback clauses are tried in declaration order
and the first clause yielding at least one match wins. An empty result is a
normal outcome, not an error.
"""

from __future__ import annotations

from typing import Callable

from ..screen.models import ElementRef, ScreenElement, ScreenSnapshot
from .selector import Predicate, Selector, SelectorClause

__all__ = ["match_indices", "resolve", "resolve_clause", "resolve_indices"]


def _string_test(op: str, expected: str) -> Callable[[str], bool]:
    if op == "~=":
        needle = expected.casefold()
        return lambda actual: needle in actual.casefold()
    if op == "^=":
        return lambda actual: actual.startswith(expected)
    return lambda actual: actual == expected


def _id_matches(test: Callable[[str], bool], element: ScreenElement) -> bool:
    resource_id = element.resource_id
    if test(resource_id) or test(element.element_id):
        return True
    # "login" also matches "com.example:id/login"
    _, sep, short_name = resource_id.partition(":id/")
    return bool(sep) and test(short_name)


def _predicate_filter(predicate: Predicate, snapshot: ScreenSnapshot) -> Callable[[ScreenElement], bool]:
    key, value = predicate.key, predicate.value

    if isinstance(value, SelectorClause):
        anchors = match_indices(value, snapshot)
        if key == "inside":
            anchor_set = set(anchors)
            return lambda element: any(parent.index in anchor_set for parent in snapshot.ancestors(element.index))
        if key == "has":
            anchor_set = set(anchors)
            return lambda element: any(child.index in anchor_set for child in snapshot.descendants(element.index))
        if not anchors:
            return lambda element: False
        anchor = snapshot.element(anchors[0])
        return lambda element: element.index != anchor.index and element.bounds.y >= anchor.bounds.bottom

    if isinstance(value, bool):
        return lambda element: getattr(element, key) is value

    test = _string_test(predicate.op, value)
    if key == "id":
        return lambda element: _id_matches(test, element)
    if key == "text":
        return lambda element: test(element.text)
    if key == "desc":
        return lambda element: test(element.content_description)
    return lambda element: test(element.role) or test(element.class_name)


def match_indices(clause: SelectorClause, snapshot: ScreenSnapshot) -> list[int]:
    """Arena indices matching ``clause`` in document order, ``nth`` applied."""
    filters = [_predicate_filter(predicate, snapshot) for predicate in clause.predicates]
    matches = [element.index for element in snapshot if all(f(element) for f in filters)]
    if clause.nth is None:
        return matches
    return matches[clause.nth:clause.nth + 1]


def resolve_clause(selector: Selector, snapshot: ScreenSnapshot) -> tuple[SelectorClause | None, list[int]]:
    """Return the winning clause with its matches, or ``(None, [])``."""
    for clause in selector.clauses:
        matches = match_indices(clause, snapshot)
        if matches:
            return clause, matches
    return None, []


def resolve_indices(selector: Selector, snapshot: ScreenSnapshot) -> list[int]:
    return resolve_clause(selector, snapshot)[1]


def resolve(selector: Selector, snapshot: ScreenSnapshot) -> tuple[ElementRef, ...]:
    """Resolve ``selector`` to zero or more element references.

    Args:
        selector: Parsed selector, already variable-substituted.
        snapshot: The single snapshot every match is read from.

    Returns:
        Matching element references in document order. Empty when nothing
        matches; callers treat that as retryable.
    """
    return tuple(snapshot.ref(index) for index in resolve_indices(selector, snapshot))
