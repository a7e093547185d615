"""Parse ``uiautomator dump`` XML into a ``ScreenSnapshot``."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import Any

from ..core.errors import ADBError
from ..core.logger import log
from .models import ScreenSnapshot, WindowType

__all__ = ["MAX_TREE_DEPTH", "parse_bounds", "parse_hierarchy"]

# Deeper nodes are dropped; malformed trees can nest arbitrarily.
MAX_TREE_DEPTH = 50

_BOUNDS_REGEX = re.compile(r"\[(-?\d+),(-?\d+)\]\[(-?\d+),(-?\d+)\]")

_BOOLEAN_ATTRIBUTES = {
    "enabled": "enabled",
    "clickable": "clickable",
    "long-clickable": "long_clickable",
    "focusable": "focusable",
    "focused": "focused",
    "scrollable": "scrollable",
    "checkable": "checkable",
    "checked": "checked",
    "password": "password",
    "visible-to-user": "visible",
}


def parse_bounds(raw: str) -> tuple[int, int, int, int]:
    """Parse ``"[l,t][r,b]"`` into ``(left, top, right, bottom)``."""
    match = _BOUNDS_REGEX.fullmatch(raw.strip())
    if not match:
        raise ValueError(f"Malformed bounds attribute: {raw!r}")
    left, top, right, bottom = (int(group) for group in match.groups())
    return left, top, right, bottom


def _node_to_dict(node: ET.Element, depth: int, dropped: list[int]) -> dict[str, Any]:
    attrib = node.attrib
    result: dict[str, Any] = {
        "class": attrib.get("class", ""),
        "resource_id": attrib.get("resource-id", ""),
        "text": attrib.get("text", ""),
        "desc": attrib.get("content-desc", ""),
        "bounds": parse_bounds(attrib.get("bounds", "[0,0][0,0]")),
        "package": attrib.get("package", ""),
    }
    for xml_name, field_name in _BOOLEAN_ATTRIBUTES.items():
        if xml_name in attrib:
            result[field_name] = attrib[xml_name] == "true"
    children = node.findall("node")
    if depth >= MAX_TREE_DEPTH:
        dropped[0] += len(children)
        children = []
    result["children"] = [_node_to_dict(child, depth + 1, dropped) for child in children]
    return result


def _window_type(package_name: str | None) -> WindowType:
    if not package_name:
        return WindowType.UNKNOWN
    if package_name == "com.android.systemui":
        return WindowType.SYSTEM
    if "inputmethod" in package_name:
        return WindowType.INPUT_METHOD
    return WindowType.APPLICATION


def parse_hierarchy(xml: str, *, activity_name: str | None = None) -> ScreenSnapshot:
    """Convert a window hierarchy dump into an immutable snapshot.

    Args:
        xml: The XML document produced by ``uiautomator dump``.
        activity_name: Foreground activity, when the caller knows it.

    Returns:
        The parsed ``ScreenSnapshot`` (``snapshot_id`` 0; the snapshotter
        stamps the real id).

    Raises:
        ADBError: If the document is not a parseable hierarchy dump.
    """
    try:
        root = ET.fromstring(xml.strip())
    except ET.ParseError as exc:
        raise ADBError(f"Unparseable window hierarchy: {exc}") from exc

    top_level = root.findall("node") if root.tag == "hierarchy" else [root]
    dropped = [0]
    try:
        trees = [_node_to_dict(node, 0, dropped) for node in top_level]
    except ValueError as exc:
        raise ADBError(str(exc)) from exc
    if dropped[0]:
        log.warning(f"Reached maximum tree depth ({MAX_TREE_DEPTH}); dropped {dropped[0]} subtree(s)")
    package_name = next((tree["package"] for tree in trees if tree["package"]), None)

    return ScreenSnapshot.from_tree(
        trees,
        package_name=package_name,
        activity_name=activity_name,
        window_type=_window_type(package_name),
    )
