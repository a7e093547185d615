"""Declarative element selectors and their stable textual form.

Grammar::

    selector  := clause ("||" clause)*          # ordered fallbacks
    clause    := predicate (";" predicate)*     # conjunction
    predicate := key op value | "first"

String keys (``id``, ``text``, ``desc``, ``role``) accept ``=`` (exact),
``~=`` (case-insensitive contains) and ``^=`` (prefix). Boolean keys
(``enabled``, ``visible``, ``clickable``, ``focusable``, ``scrollable``,
``checked``) accept ``=true``/``=false``. Relation keys (``inside``, ``has``,
``below``) take a nested clause in parentheses. ``nth=N`` picks the N-th
match (0-based) and ``first`` is shorthand for ``nth=0``.

Examples::

    id=login
    role=Button;text="Sign in"
    text~=settings || desc=Settings
    role=TextView;inside=(id=toolbar);nth=0
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Callable, Iterator, Union

from ..core.errors import SelectorSyntaxError

__all__ = [
    "BOOL_KEYS",
    "Predicate",
    "RELATION_KEYS",
    "STRING_KEYS",
    "Selector",
    "SelectorClause",
    "format_selector",
    "parse_selector",
]

STRING_KEYS = frozenset({"id", "text", "desc", "role"})
BOOL_KEYS = frozenset({"enabled", "visible", "clickable", "focusable", "scrollable", "checked"})
RELATION_KEYS = frozenset({"inside", "has", "below"})
STRING_OPERATORS = ("~=", "^=", "=")

# Attributes that survive layout changes; anything else is positional.
_STABLE_KEYS = frozenset({"id", "text", "desc"})

_IDENTIFIER = re.compile(r"[a-z_]+")
_NEEDS_QUOTES = re.compile(r'[;|()"\\]')
_VARIABLE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(frozen=True)
class Predicate:
    """One ``key op value`` test."""

    key: str
    op: str
    value: Union[str, bool, "SelectorClause"]


@dataclass(frozen=True)
class SelectorClause:
    """A conjunction of predicates with an optional ``nth`` policy."""

    predicates: tuple[Predicate, ...]
    nth: int | None = None

    @property
    def is_positional(self) -> bool:
        """True when the clause relies on position instead of stable attributes."""
        if self.nth is not None:
            return True
        keys = {predicate.key for predicate in self.predicates}
        return "below" in keys or not (keys & _STABLE_KEYS)

    def string_values(self) -> Iterator[str]:
        for predicate in self.predicates:
            if isinstance(predicate.value, SelectorClause):
                yield from predicate.value.string_values()
            elif isinstance(predicate.value, str):
                yield predicate.value

    def substitute(self, fn: Callable[[str], str]) -> SelectorClause:
        predicates = []
        for predicate in self.predicates:
            value = predicate.value
            if isinstance(value, SelectorClause):
                value = value.substitute(fn)
            elif isinstance(value, str):
                value = fn(value)
            predicates.append(replace(predicate, value=value))
        return replace(self, predicates=tuple(predicates))


@dataclass(frozen=True)
class Selector:
    """Ordered list of fallback clauses; the first clause with a match wins."""

    clauses: tuple[SelectorClause, ...]

    @classmethod
    def parse(cls, text: str) -> Selector:
        return parse_selector(text)

    def __str__(self) -> str:
        return format_selector(self)

    @property
    def is_positional(self) -> bool:
        return any(clause.is_positional for clause in self.clauses)

    def variable_references(self) -> set[str]:
        names: set[str] = set()
        for clause in self.clauses:
            for value in clause.string_values():
                names.update(_VARIABLE.findall(value))
        return names

    def substitute(self, fn: Callable[[str], str]) -> Selector:
        """Return a copy with ``fn`` applied to every string value."""
        return Selector(tuple(clause.substitute(fn) for clause in self.clauses))


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def error(self, message: str) -> SelectorSyntaxError:
        return SelectorSyntaxError(message, self.text, self.pos)

    def skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def consume(self, token: str) -> bool:
        self.skip_ws()
        if self.text.startswith(token, self.pos):
            self.pos += len(token)
            return True
        return False

    def expect(self, token: str) -> None:
        if not self.consume(token):
            raise self.error(f"Expected {token!r}")

    def parse(self) -> Selector:
        clauses = [self.clause()]
        while self.consume("||"):
            clauses.append(self.clause())
        self.skip_ws()
        if self.pos != len(self.text):
            raise self.error(f"Unexpected {self.text[self.pos]!r}")
        return Selector(tuple(clauses))

    def clause(self) -> SelectorClause:
        predicates: list[Predicate] = []
        nth: int | None = None
        while True:
            self.skip_ws()
            match = _IDENTIFIER.match(self.text, self.pos)
            if not match:
                raise self.error("Expected a selector key")
            key = match.group(0)
            self.pos = match.end()

            if key == "first" or key == "nth":
                if nth is not None:
                    raise self.error("Duplicate nth/first policy")
                nth = 0 if key == "first" else self.index()
            else:
                predicates.append(self.predicate(key))

            if not self.consume(";"):
                break
        if not predicates:
            raise self.error("At least one selector criterion must be provided")
        return SelectorClause(tuple(predicates), nth)

    def index(self) -> int:
        self.expect("=")
        self.skip_ws()
        match = re.compile(r"\d+").match(self.text, self.pos)
        if not match:
            raise self.error("nth expects a non-negative integer")
        self.pos = match.end()
        return int(match.group(0))

    def predicate(self, key: str) -> Predicate:
        if key in RELATION_KEYS:
            self.expect("=")
            self.expect("(")
            inner = self.clause()
            self.expect(")")
            return Predicate(key, "=", inner)
        if key in BOOL_KEYS:
            self.expect("=")
            raw = self.value().lower()
            if raw not in ("true", "false"):
                raise self.error(f"{key} expects true or false")
            return Predicate(key, "=", raw == "true")
        if key in STRING_KEYS:
            self.skip_ws()
            for op in STRING_OPERATORS:
                if self.text.startswith(op, self.pos):
                    self.pos += len(op)
                    return Predicate(key, op, self.value())
            raise self.error(f"Expected one of {', '.join(STRING_OPERATORS)}")
        raise self.error(f"Unknown selector key {key!r}")

    def value(self) -> str:
        self.skip_ws()
        if self.text.startswith('"', self.pos):
            return self.quoted()
        start = self.pos
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char in ";)" or self.text.startswith("||", self.pos):
                break
            self.pos += 1
        value = self.text[start:self.pos].strip()
        if not value:
            raise self.error("Empty value")
        return value

    def quoted(self) -> str:
        self.pos += 1
        chars: list[str] = []
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char == "\\" and self.pos + 1 < len(self.text):
                chars.append(self.text[self.pos + 1])
                self.pos += 2
                continue
            if char == '"':
                self.pos += 1
                return "".join(chars)
            chars.append(char)
            self.pos += 1
        raise self.error("Unterminated quoted value")


def parse_selector(text: str) -> Selector:
    """Parse the textual selector form.

    Raises:
        SelectorSyntaxError: If ``text`` is not a valid selector.
    """
    if not text or not text.strip():
        raise SelectorSyntaxError("Empty selector", text)
    return _Parser(text).parse()


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def _format_value(value: str) -> str:
    if not value or value != value.strip() or _NEEDS_QUOTES.search(value):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return value


def _format_clause(clause: SelectorClause) -> str:
    parts = []
    for predicate in clause.predicates:
        if isinstance(predicate.value, SelectorClause):
            parts.append(f"{predicate.key}=({_format_clause(predicate.value)})")
        elif isinstance(predicate.value, bool):
            parts.append(f"{predicate.key}={'true' if predicate.value else 'false'}")
        else:
            parts.append(f"{predicate.key}{predicate.op}{_format_value(predicate.value)}")
    if clause.nth is not None:
        parts.append(f"nth={clause.nth}")
    return ";".join(parts)


def format_selector(selector: Selector) -> str:
    """Canonical textual form; ``parse_selector`` inverts it exactly."""
    return " || ".join(_format_clause(clause) for clause in selector.clauses)
