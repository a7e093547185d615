"""Render snapshots into the machine-consumable screen representation.

The same descriptors are returned by ``read_screen`` steps and embedded in
recovery requests, so everything here is deterministic: document order, no
timestamps, and password fields never expose their text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Sequence

from .models import ScreenElement, ScreenSnapshot

__all__ = ["ScreenFormat", "describe_element", "render", "to_hierarchical_text"]

# Guard against pathologically deep trees in the text rendering.
_TEXT_MAX_DEPTH = 100


class ScreenFormat(str, Enum):
    """Output formats recognised by ``read_screen``."""

    FULL = "full"
    SUMMARY = "summary"
    TARGETED = "targeted"
    TEXT = "text"


def describe_element(element: ScreenElement, children: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """Return the ``{id, role, text, bounds, enabled, visible, children}`` descriptor."""
    descriptor: dict[str, Any] = {
        "id": element.element_id,
        "role": element.role,
        "text": element.display_text,
        "bounds": element.bounds.as_dict(),
        "enabled": element.enabled,
        "visible": element.visible,
        "children": children if children is not None else [],
    }
    if element.content_description:
        descriptor["desc"] = element.content_description
    return descriptor


def _subtree(snapshot: ScreenSnapshot, index: int) -> dict[str, Any]:
    element = snapshot.element(index)
    return describe_element(element, [_subtree(snapshot, child) for child in element.children])


def _summary(snapshot: ScreenSnapshot) -> list[dict[str, Any]]:
    return [
        describe_element(element)
        for element in snapshot
        if element.is_interactive or element.is_text_bearing
    ]


def render(
    snapshot: ScreenSnapshot,
    screen_format: ScreenFormat | str = ScreenFormat.SUMMARY,
    matches: Sequence[int] = (),
) -> list[dict[str, Any]] | str:
    """Render ``snapshot`` in one of the recognised formats.

    Args:
        snapshot: The snapshot to render.
        screen_format: ``full`` (nested tree from every root), ``summary``
            (flat list of interactive or text-bearing elements), ``targeted``
            (subtrees rooted at ``matches``) or ``text`` (indented outline).
        matches: Arena indices of resolved elements, used by ``targeted``.

    Returns:
        A list of element descriptors, or a string for the ``text`` format.
    """
    screen_format = ScreenFormat(screen_format)
    if screen_format is ScreenFormat.FULL:
        return [_subtree(snapshot, root) for root in snapshot.roots]
    if screen_format is ScreenFormat.SUMMARY:
        return _summary(snapshot)
    if screen_format is ScreenFormat.TARGETED:
        return [_subtree(snapshot, index) for index in matches]
    return to_hierarchical_text(snapshot)


def _attribute_flags(element: ScreenElement) -> list[str]:
    flags = []
    if element.clickable:
        flags.append("clickable")
    if element.checkable:
        flags.append("checkable")
    if element.checked:
        flags.append("checked")
    if element.scrollable:
        flags.append("scrollable")
    if element.editable:
        flags.append("editable")
    if element.focused:
        flags.append("focused")
    if element.password:
        flags.append("password")
    if not element.enabled:
        flags.append("disabled")
    return flags


def _append_text(snapshot: ScreenSnapshot, index: int, path: list[int], lines: list[str]) -> None:
    element = snapshot.element(index)
    indent = "  " * len(path[1:])
    label = ".".join(str(p) for p in path)
    if len(path) > _TEXT_MAX_DEPTH:
        lines.append(f"{indent}[{label}] ... (max depth reached)")
        return

    line = f"{indent}[{label}] {element.role}"
    properties = []
    if element.display_text.strip():
        properties.append(f"text='{element.display_text}'")
    if element.content_description.strip():
        properties.append(f"desc='{element.content_description}'")
    if element.resource_id:
        properties.append(f"id='{element.resource_id}'")
    if properties:
        line += " " + " ".join(properties)
    flags = _attribute_flags(element)
    if flags:
        line += f" [{', '.join(flags)}]"
    lines.append(line)

    for position, child in enumerate(element.children):
        _append_text(snapshot, child, path + [position], lines)


def to_hierarchical_text(snapshot: ScreenSnapshot) -> str:
    """Indented outline of the tree, compact enough for LLM prompts.

    Example::

        App: com.example.app (MainActivity)
        Window: application

        [0] FrameLayout
          [0.0] Button text='Submit' id='com.example:id/submit' [clickable]
    """
    lines: list[str] = []
    if snapshot.package_name:
        header = f"App: {snapshot.package_name}"
        if snapshot.activity_name:
            header += f" ({snapshot.activity_name})"
        lines.append(header)
    lines.append(f"Window: {snapshot.window_type.value}")
    lines.append("")
    for position, root in enumerate(snapshot.roots):
        _append_text(snapshot, root, [position], lines)
    return "\n".join(lines) + "\n"
