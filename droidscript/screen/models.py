"""Data models for captured screen state.

A ``ScreenSnapshot`` is an immutable arena of ``ScreenElement`` records kept
in document (pre-order, depth-first) order. Elements reference their parent and
children by arena index, so an ``ElementRef`` is just a snapshot id plus an
index and can be embedded anywhere without copying the tree.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterator, Mapping


class WindowType(str, Enum):
    """Types of windows a snapshot can represent."""

    APPLICATION = "application"
    SYSTEM = "system"
    INPUT_METHOD = "input_method"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Axis-aligned rectangle ``(x, y, w, h)`` in pixel coordinates."""

    x: int
    y: int
    w: int
    h: int

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def bottom(self) -> int:
        return self.y + self.h

    def center(self) -> tuple[int, int]:
        """Centre point, used as the tap location for an element."""
        return self.x + self.w // 2, self.y + self.h // 2

    def as_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}

    @classmethod
    def from_edges(cls, left: int, top: int, right: int, bottom: int) -> BoundingBox:
        """Build a box from ``(left, top, right, bottom)`` edges."""
        return cls(left, top, max(0, right - left), max(0, bottom - top))


@dataclass(frozen=True, slots=True)
class ScreenElement:
    """A single UI element in the snapshot arena."""

    index: int
    element_id: str
    role: str
    bounds: BoundingBox
    text: str = ""
    content_description: str = ""
    resource_id: str = ""
    class_name: str = ""
    enabled: bool = True
    visible: bool = True
    clickable: bool = False
    long_clickable: bool = False
    focusable: bool = False
    focused: bool = False
    editable: bool = False
    scrollable: bool = False
    checkable: bool = False
    checked: bool = False
    password: bool = False
    parent: int | None = None
    children: tuple[int, ...] = ()
    depth: int = 0

    @property
    def is_interactive(self) -> bool:
        """True when a user could act on the element."""
        return (
            self.clickable
            or self.long_clickable
            or self.editable
            or self.checkable
            or self.scrollable
        )

    @property
    def is_text_bearing(self) -> bool:
        return bool(self.text.strip() or self.content_description.strip())

    @property
    def display_text(self) -> str:
        """Visible text, never revealing the contents of password fields."""
        if self.password:
            return ""
        return self.text

    def describe(self) -> str:
        """Return a short human-readable description of the element."""
        parts = [self.role]
        if self.display_text.strip():
            parts.append(f"text={self.display_text!r}")
        if self.content_description.strip():
            parts.append(f"desc={self.content_description!r}")
        if self.resource_id:
            parts.append(f"id={self.resource_id!r}")
        return " ".join(parts)


@dataclass(frozen=True, slots=True)
class ElementRef:
    """Lightweight reference to an element of one snapshot."""

    snapshot_id: int
    index: int
    element_id: str

    def as_dict(self) -> dict[str, Any]:
        return {"snapshot_id": self.snapshot_id, "index": self.index, "element_id": self.element_id}


@dataclass(frozen=True, slots=True)
class ScreenSnapshot:
    """Immutable, timestamped capture of the UI element tree."""

    elements: tuple[ScreenElement, ...]
    roots: tuple[int, ...]
    snapshot_id: int = 0
    captured_at: float = field(default_factory=time.time)
    package_name: str | None = None
    activity_name: str | None = None
    window_type: WindowType = WindowType.APPLICATION
    stable: bool = False

    def __len__(self) -> int:
        return len(self.elements)

    def __iter__(self) -> Iterator[ScreenElement]:
        return iter(self.elements)

    def element(self, index: int) -> ScreenElement:
        return self.elements[index]

    def ref(self, index: int) -> ElementRef:
        return ElementRef(self.snapshot_id, index, self.elements[index].element_id)

    def ancestors(self, index: int) -> Iterator[ScreenElement]:
        """Yield the ancestors of ``index``, nearest first."""
        parent = self.elements[index].parent
        while parent is not None:
            element = self.elements[parent]
            yield element
            parent = element.parent

    def descendants(self, index: int) -> Iterator[ScreenElement]:
        """Yield the descendants of ``index`` in document order."""
        # Pre-order layout: a subtree is a contiguous run of deeper elements.
        root_depth = self.elements[index].depth
        for element in self.elements[index + 1:]:
            if element.depth <= root_depth:
                break
            yield element

    def first_scrollable(self) -> ScreenElement | None:
        for element in self.elements:
            if element.scrollable:
                return element
        return None

    def screen_bounds(self) -> BoundingBox:
        """Bounds of the first root, or an empty box for an empty snapshot."""
        if not self.roots:
            return BoundingBox(0, 0, 0, 0)
        return self.elements[self.roots[0]].bounds

    def structure_key(self) -> tuple:
        """Key for structural equality; capture metadata is excluded."""
        return self.package_name, self.activity_name, self.elements

    def structurally_equal(self, other: ScreenSnapshot) -> bool:
        return self.structure_key() == other.structure_key()

    def window_info(self) -> dict[str, Any]:
        """Identity of the foreground window: package, activity and type."""
        return {
            "package": self.package_name,
            "activity": self.activity_name,
            "window_type": self.window_type.value,
        }

    def with_metadata(self, *, snapshot_id: int, stable: bool) -> ScreenSnapshot:
        return replace(self, snapshot_id=snapshot_id, stable=stable)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------
    @classmethod
    def from_tree(
        cls,
        roots: Mapping[str, Any] | list[Mapping[str, Any]],
        *,
        snapshot_id: int = 0,
        package_name: str | None = None,
        activity_name: str | None = None,
        window_type: WindowType = WindowType.APPLICATION,
    ) -> ScreenSnapshot:
        """Build a snapshot from nested element dictionaries.

        Each dictionary may carry ``id``/``resource_id``, ``role``, ``class``,
        ``text``, ``desc``, ``bounds`` (``{x, y, w, h}`` or a 4-tuple of
        edges), any of the element flags, and ``children``.
        """
        if isinstance(roots, Mapping):
            roots = [roots]
        builder = _ArenaBuilder()
        root_indices = tuple(builder.add(node, None, 0, (position,)) for position, node in enumerate(roots))
        return cls(
            elements=builder.build(),
            roots=root_indices,
            snapshot_id=snapshot_id,
            package_name=package_name,
            activity_name=activity_name,
            window_type=window_type,
        )


_FLAG_NAMES = (
    "enabled",
    "visible",
    "clickable",
    "long_clickable",
    "focusable",
    "focused",
    "editable",
    "scrollable",
    "checkable",
    "checked",
    "password",
)


def _coerce_bounds(raw: Any) -> BoundingBox:
    if raw is None:
        return BoundingBox(0, 0, 0, 0)
    if isinstance(raw, BoundingBox):
        return raw
    if isinstance(raw, Mapping):
        return BoundingBox(int(raw.get("x", 0)), int(raw.get("y", 0)), int(raw.get("w", 0)), int(raw.get("h", 0)))
    left, top, right, bottom = (int(v) for v in raw)
    return BoundingBox.from_edges(left, top, right, bottom)


class _ArenaBuilder:
    """Collects elements in pre-order and back-fills child indices."""

    def __init__(self) -> None:
        self.fields: list[dict[str, Any]] = []
        self.children: list[list[int]] = []

    def add(self, node: Mapping[str, Any], parent: int | None, depth: int, path: tuple[int, ...]) -> int:
        index = len(self.fields)
        class_name = str(node.get("class") or node.get("class_name") or "")
        role = str(node.get("role") or class_name.rsplit(".", 1)[-1] or "View")
        resource_id = str(node.get("resource_id") or node.get("id") or "")
        values: dict[str, Any] = {
            "index": index,
            "element_id": str(node.get("element_id") or resource_id or ".".join(str(p) for p in path)),
            "role": role,
            "class_name": class_name or role,
            "resource_id": resource_id,
            "text": str(node.get("text") or ""),
            "content_description": str(node.get("desc") or node.get("content_description") or ""),
            "bounds": _coerce_bounds(node.get("bounds")),
            "parent": parent,
            "depth": depth,
        }
        for flag in _FLAG_NAMES:
            if flag in node:
                values[flag] = bool(node[flag])
        if "editable" not in node and "EditText" in values["class_name"]:
            values["editable"] = True
            values.setdefault("focusable", True)

        self.fields.append(values)
        self.children.append([])
        for position, child in enumerate(node.get("children") or ()):
            self.children[index].append(self.add(child, index, depth + 1, path + (position,)))
        return index

    def build(self) -> tuple[ScreenElement, ...]:
        return tuple(
            ScreenElement(children=tuple(children), **values)
            for values, children in zip(self.fields, self.children)
        )
