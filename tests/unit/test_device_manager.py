import subprocess

import pytest

from droidscript.core.adb import Device
from droidscript.core.device_manager import GLOBAL_ACTION_COMMANDS, AdbDeviceHandle
from droidscript.core.errors import ADBError
from tests.unit.test_screen import DUMP


class _RecordingDevice:
    serial = "emulator-5554"

    def __init__(self):
        self.commands = []

    def shell(self, command):
        self.commands.append(command)
        return ""

    def dump_hierarchy(self):
        return DUMP


@pytest.fixture
def handle():
    return AdbDeviceHandle(_RecordingDevice(), settle_delay=0)


@pytest.mark.asyncio
async def test_read_hierarchy_parses_dump(handle):
    snapshot = await handle.read_hierarchy()

    assert snapshot.element(1).text == "Sign in"


@pytest.mark.asyncio
async def test_input_commands(handle):
    await handle.tap(10, 20)
    await handle.long_press(10, 20, 800)
    await handle.swipe(1, 2, 3, 4, 0)
    await handle.input_text(5, 6, "hi there & co")

    assert handle.device.commands == [
        "input tap 10 20",
        "input swipe 10 20 10 20 800",
        "input swipe 1 2 3 4 0",
        "input tap 5 6",
        "input text hi%sthere%s\\&%sco",
    ]


@pytest.mark.asyncio
async def test_clear_text_deletes_existing_characters(handle):
    await handle.clear_text(5, 6, 3)

    assert handle.device.commands == ["input tap 5 6", "input keyevent 123", "input keyevent 67 67 67"]


@pytest.mark.asyncio
async def test_global_actions(handle):
    for name in GLOBAL_ACTION_COMMANDS:
        await handle.global_action(name)

    assert handle.device.commands == list(GLOBAL_ACTION_COMMANDS.values())
    with pytest.raises(ValueError):
        await handle.global_action("reboot")


def test_shell_failures_raise_adb_error(monkeypatch):
    def _fail(*args, **kwargs):
        raise subprocess.CalledProcessError(1, args[0], stderr="device offline")

    monkeypatch.setattr(subprocess, "check_output", _fail)

    with pytest.raises(ADBError, match="device offline"):
        Device("emulator-5554").shell("input tap 1 1")


def test_from_emulator_picks_first_emulator(monkeypatch):
    output = "List of devices attached\nR58M123\tdevice\nemulator-5556\tdevice\nemulator-5554\toffline\n"
    monkeypatch.setattr(subprocess, "check_output", lambda *args, **kwargs: output)

    assert Device.list_devices() == ["R58M123", "emulator-5556"]
    assert Device.from_emulator().serial == "emulator-5556"
