import pytest

from droidscript.core.config import EngineSettings
from droidscript.core.snapshotter import ScreenSnapshotter
from tests.conftest import FakeDevice, button, make_screen


class _ChangingDevice(FakeDevice):
    """Serves a different screen on every read for the first ``changes`` reads."""

    def __init__(self, changes):
        super().__init__(make_screen(button("frame 0")))
        self.changes = changes

    async def read_hierarchy(self):
        self.reads += 1
        if self.reads <= self.changes:
            return make_screen(button(f"frame {self.reads}"))
        return make_screen(button("settled"))


@pytest.mark.asyncio
async def test_capture_assigns_increasing_ids(settings):
    snapshotter = ScreenSnapshotter(FakeDevice(make_screen(button("OK"))), settings)

    first = await snapshotter.capture()
    second = await snapshotter.capture()

    assert second.snapshot_id > first.snapshot_id
    assert not first.stable
    assert snapshotter.last_snapshot is second


@pytest.mark.asyncio
async def test_stabilize_returns_stable_snapshot_once_two_captures_match(settings):
    device = _ChangingDevice(changes=1)
    snapshotter = ScreenSnapshotter(device, settings)

    snapshot = await snapshotter.capture(stabilize=True)

    assert snapshot.stable
    assert snapshot.element(1).text == "settled"
    assert device.reads == 3


@pytest.mark.asyncio
async def test_stabilize_gives_up_without_failing():
    device = _ChangingDevice(changes=100)
    snapshotter = ScreenSnapshotter(device, EngineSettings(snapshot_stabilize_attempts=4, snapshot_settle_delay_ms=0))

    snapshot = await snapshotter.capture(stabilize=True)

    assert not snapshot.stable
    assert device.reads == 4
    assert snapshot.element(1).text == "frame 4"
