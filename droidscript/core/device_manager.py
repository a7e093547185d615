"""Device handles: the single-writer channel actions are delivered through.

The engine only talks to the ``DeviceHandle`` protocol. ``AdbDeviceHandle``
is the production implementation; tests substitute a scripted fake.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol

from ..screen.hierarchy_parser import parse_hierarchy
from ..screen.models import ScreenSnapshot
from .adb import Device
from .logger import log

__all__ = ["AdbDeviceHandle", "DeviceHandle", "GLOBAL_ACTION_COMMANDS"]

# Android key codes used below
_KEYCODE_MOVE_END = 123
_KEYCODE_DEL = 67

GLOBAL_ACTION_COMMANDS = {
    "back": "input keyevent 4",
    "home": "input keyevent 3",
    "recents": "input keyevent 187",
    "notifications": "cmd statusbar expand-notifications",
    "quick_settings": "cmd statusbar expand-settings",
    "power_dialog": "input keyevent --longpress 26",
}


class DeviceHandle(Protocol):
    """Operations the action executor needs from a live device session."""

    async def read_hierarchy(self) -> ScreenSnapshot: ...

    async def tap(self, x: int, y: int) -> None: ...

    async def long_press(self, x: int, y: int, duration_ms: int) -> None: ...

    async def clear_text(self, x: int, y: int, length: int) -> None: ...

    async def input_text(self, x: int, y: int, text: str) -> None: ...

    async def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None: ...

    async def global_action(self, name: str) -> None: ...


def _escape_input_text(text: str) -> str:
    """Escape text for ``adb shell input text``."""
    escaped = text.replace("\\", "\\\\")
    for char in "\"'`&|;<>()$*~?!":
        escaped = escaped.replace(char, f"\\{char}")
    return escaped.replace(" ", "%s")


class AdbDeviceHandle:
    """``DeviceHandle`` backed by ``adb shell`` commands."""

    def __init__(self, device: Device, *, settle_delay: float = 0.3) -> None:
        """Initialize the handle.

        Args:
            device: Connected ``Device`` wrapper.
            settle_delay: Pause after each input so the UI can react.
        """
        self.device = device
        self.settle_delay = settle_delay

    @classmethod
    def connect(
        cls,
        serial: str | None = None,
        *,
        timeout: int | None = 20,
        settle_delay: float = 0.3,
    ) -> AdbDeviceHandle:
        """Open a handle for ``serial`` or the first running emulator."""
        device = Device(serial, timeout=timeout) if serial else Device.from_emulator()
        log.info(f"Using Android device {device.serial}")
        return cls(device, settle_delay=settle_delay)

    async def _shell(self, command: str) -> str:
        start = time.time()
        output = await asyncio.to_thread(self.device.shell, command)
        log.log_performance(f"adb shell {command.split(' ', 1)[0]}", (time.time() - start) * 1000)
        return output

    async def _settle(self) -> None:
        if self.settle_delay:
            await asyncio.sleep(self.settle_delay)

    async def read_hierarchy(self) -> ScreenSnapshot:
        xml = await asyncio.to_thread(self.device.dump_hierarchy)
        return parse_hierarchy(xml)

    async def tap(self, x: int, y: int) -> None:
        await self._shell(f"input tap {x} {y}")
        await self._settle()

    async def long_press(self, x: int, y: int, duration_ms: int) -> None:
        # A zero-distance swipe is a long press
        await self._shell(f"input swipe {x} {y} {x} {y} {duration_ms}")
        await self._settle()

    async def clear_text(self, x: int, y: int, length: int) -> None:
        await self._shell(f"input tap {x} {y}")
        await self._shell(f"input keyevent {_KEYCODE_MOVE_END}")
        if length > 0:
            await self._shell("input keyevent " + " ".join([str(_KEYCODE_DEL)] * length))
        await self._settle()

    async def input_text(self, x: int, y: int, text: str) -> None:
        await self._shell(f"input tap {x} {y}")
        await self._settle()
        if text:
            await self._shell(f"input text {_escape_input_text(text)}")
        await self._settle()

    async def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None:
        await self._shell(f"input swipe {x1} {y1} {x2} {y2} {duration_ms}")
        await asyncio.sleep(duration_ms / 1000 + self.settle_delay)

    async def global_action(self, name: str) -> None:
        command = GLOBAL_ACTION_COMMANDS.get(name)
        if command is None:
            raise ValueError(f"Unknown global action: {name}")
        await self._shell(command)
        await self._settle()
