"""Screen state: snapshot data model, hierarchy parsing and rendering."""

from .hierarchy_parser import MAX_TREE_DEPTH, parse_hierarchy
from .models import BoundingBox, ElementRef, ScreenElement, ScreenSnapshot, WindowType
from .representation import ScreenFormat, describe_element, render, to_hierarchical_text

__all__ = [
    "BoundingBox",
    "ElementRef",
    "MAX_TREE_DEPTH",
    "ScreenElement",
    "ScreenFormat",
    "ScreenSnapshot",
    "WindowType",
    "describe_element",
    "parse_hierarchy",
    "render",
    "to_hierarchical_text",
]
