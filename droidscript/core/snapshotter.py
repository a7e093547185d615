"""On-demand screen snapshot capture with optional stabilization."""

from __future__ import annotations

import asyncio
import itertools

from ..screen.models import ScreenSnapshot
from .config import EngineSettings
from .device_manager import DeviceHandle
from .logger import log

__all__ = ["ScreenSnapshotter"]


class ScreenSnapshotter:
    """Captures immutable snapshots from one device session.

    Snapshot ids are assigned from a per-snapshotter counter, so each run
    owns its own snapshot lineage.
    """

    def __init__(self, device: DeviceHandle, settings: EngineSettings | None = None) -> None:
        self.device = device
        self.settings = settings or EngineSettings()
        self._ids = itertools.count(1)
        self.last_snapshot: ScreenSnapshot | None = None

    async def _capture_once(self, stable: bool) -> ScreenSnapshot:
        raw = await self.device.read_hierarchy()
        snapshot = raw.with_metadata(snapshot_id=next(self._ids), stable=stable)
        self.last_snapshot = snapshot
        return snapshot

    async def capture(self, stabilize: bool = False) -> ScreenSnapshot:
        """Capture the current screen.

        Args:
            stabilize: Re-capture until two consecutive captures are
                structurally equal or the attempt budget is spent.

        Returns:
            The last capture. Its ``stable`` flag is True only when two
            consecutive captures matched; exhausting the budget is not an
            error, callers decide how much instability they tolerate.
        """
        if not stabilize:
            return await self._capture_once(stable=False)

        attempts = max(2, self.settings.snapshot_stabilize_attempts)
        delay = self.settings.snapshot_settle_delay_ms / 1000
        previous = await self._capture_once(stable=False)
        for attempt in range(1, attempts):
            if delay:
                await asyncio.sleep(delay)
            current = await self._capture_once(stable=False)
            if current.structurally_equal(previous):
                stable = current.with_metadata(snapshot_id=current.snapshot_id, stable=True)
                self.last_snapshot = stable
                log.debug(f"Screen stable after {attempt + 1} captures (snapshot {stable.snapshot_id})")
                return stable
            previous = current

        log.warning(f"Screen did not stabilize within {attempts} captures")
        return previous
