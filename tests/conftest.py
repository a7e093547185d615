"""Shared fakes for droidscript tests."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from droidscript.core.config import EngineSettings, RecoveryConfig
from droidscript.core.errors import ADBError
from droidscript.screen.models import ScreenSnapshot

SCREEN_BOUNDS = (0, 0, 1080, 1920)


def node(role: str = "TextView", *, bounds=(0, 0, 100, 100), children=(), **attributes: Any) -> dict[str, Any]:
    """Build one element dictionary for ``ScreenSnapshot.from_tree``."""
    data: dict[str, Any] = {"role": role, "class": f"android.widget.{role}", "bounds": bounds}
    data.update(attributes)
    data["children"] = list(children)
    return data


def button(text: str, *, id: str = "", bounds=(0, 0, 200, 100), **attributes: Any) -> dict[str, Any]:
    return node("Button", text=text, id=id, bounds=bounds, clickable=True, focusable=True, **attributes)


def edit_text(id: str, *, text: str = "", bounds=(0, 200, 1080, 300), **attributes: Any) -> dict[str, Any]:
    return node("EditText", id=id, text=text, bounds=bounds, clickable=True, **attributes)


def make_screen(*children: dict[str, Any], package: str = "com.example.app", activity: str | None = ".MainActivity") -> ScreenSnapshot:
    """A snapshot with a full-screen root ``FrameLayout`` holding ``children``."""
    root = node("FrameLayout", bounds=SCREEN_BOUNDS, children=children)
    return ScreenSnapshot.from_tree(root, package_name=package, activity_name=activity)


class FakeDevice:
    """Device double serving scripted screens and recording every action.

    ``screens_after`` maps an action name to a queue of screens; each
    delivered action of that name switches the current screen to the next
    queued one.
    """

    def __init__(self, screen: ScreenSnapshot, **screens_after: list[ScreenSnapshot]) -> None:
        self.screen = screen
        self.screens_after = {name: list(queue) for name, queue in screens_after.items()}
        self.actions: list[tuple[Any, ...]] = []
        self.reads = 0
        self.fail_on: set[str] = set()
        self.on_action: Callable[[FakeDevice, tuple[Any, ...]], None] | None = None

    async def read_hierarchy(self) -> ScreenSnapshot:
        self.reads += 1
        if "read_hierarchy" in self.fail_on:
            raise ADBError("uiautomator dump failed")
        return self.screen

    def _record(self, name: str, *args: Any) -> None:
        if name in self.fail_on:
            raise ADBError(f"{name} rejected by device")
        action = (name, *args)
        self.actions.append(action)
        queue = self.screens_after.get(name)
        if queue:
            self.screen = queue.pop(0)
        if self.on_action is not None:
            self.on_action(self, action)

    def names(self) -> list[str]:
        return [action[0] for action in self.actions]

    async def tap(self, x: int, y: int) -> None:
        self._record("tap", x, y)

    async def long_press(self, x: int, y: int, duration_ms: int) -> None:
        self._record("long_press", x, y, duration_ms)

    async def clear_text(self, x: int, y: int, length: int) -> None:
        self._record("clear_text", x, y, length)

    async def input_text(self, x: int, y: int, text: str) -> None:
        self._record("input_text", x, y, text)

    async def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None:
        self._record("swipe", x1, y1, x2, y2, duration_ms)

    async def global_action(self, name: str) -> None:
        self._record("global_action", name)


class FakeAgent:
    """Recovery agent double replying from a queue and recording requests."""

    def __init__(self, *replies: Any, delay: float = 0.0) -> None:
        self.replies = list(replies)
        self.delay = delay
        self.requests: list[Any] = []

    async def propose(self, request: Any) -> Any:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if self.replies else {"kind": "terminal", "reason": "out of ideas"}
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(
        snapshot_stabilize_attempts=3,
        snapshot_settle_delay_ms=0,
        wait_poll_interval_ms=5,
        default_wait_timeout_ms=200,
        default_scroll_max_attempts=10,
        scroll_swipe_duration_ms=1,
    )


@pytest.fixture
def recovery_config() -> RecoveryConfig:
    return RecoveryConfig(timeout_s=1.0, max_depth=1, history_window=3)


@pytest.fixture
def login_screen() -> ScreenSnapshot:
    return make_screen(
        node("TextView", text="Welcome", bounds=(0, 0, 1080, 100)),
        edit_text("com.example.app:id/username", bounds=(0, 200, 1080, 300)),
        edit_text("com.example.app:id/password", bounds=(0, 300, 1080, 400), password=True),
        button("Sign in", id="com.example.app:id/login", bounds=(0, 500, 1080, 600)),
    )
