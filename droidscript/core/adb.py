"""Thin wrapper around the ``adb`` binary for one Android device."""

from __future__ import annotations

import shutil
import subprocess

from .errors import ADBError

__all__ = ["ADBError", "Device"]


class Device:
    """Lightweight wrapper around `adb` for interacting with a single Android device.

    Only a running ``adb`` binary (bundled with the Android SDK) is required.
    Every failure surfaces as ``ADBError`` so callers handle one exception type.
    """

    def __init__(self, serial: str, *, timeout: int | None = 20):
        self.serial = serial
        self.timeout = timeout
        self._adb = shutil.which("adb") or "adb"

    # ---------------------------------------------------------------------
    # Factory helpers
    # ---------------------------------------------------------------------
    @classmethod
    def list_devices(cls) -> list[str]:
        """Return a list of connected device/emulator serial numbers."""
        try:
            output = subprocess.check_output(["adb", "devices"], encoding="utf-8", timeout=10)
        except (OSError, subprocess.SubprocessError) as exc:
            raise ADBError(f"Could not list devices: {exc}") from exc
        lines = output.strip().splitlines()[1:]  # Skip the header
        serials: list[str] = []
        for line in lines:
            if not line.strip():
                continue
            parts = line.split("\t")
            if len(parts) >= 2 and parts[1] == "device":
                serials.append(parts[0])
        return serials

    @classmethod
    def from_emulator(cls) -> Device:
        """Return a ``Device`` instance pointing at the first running emulator.

        Raises:
            ADBError: If no emulator device is detected.

        """
        serials = cls.list_devices()
        emulators = [s for s in serials if s.startswith("emulator-")]
        if not emulators:
            raise ADBError("No Android emulator detected. Start an emulator and ensure 'adb devices' lists it.")
        return cls(emulators[0])

    # ---------------------------------------------------------------------
    # Basic operations
    # ---------------------------------------------------------------------
    def shell(self, command: str) -> str:
        """Execute an ADB shell command and return stdout as a string."""
        cmd = [self._adb, "-s", self.serial, "shell", command]
        try:
            return subprocess.check_output(cmd, encoding="utf-8", timeout=self.timeout, stderr=subprocess.PIPE)
        except subprocess.CalledProcessError as exc:
            raise ADBError(f"adb shell {command!r} failed ({exc.returncode}): {(exc.stderr or '').strip()}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ADBError(f"adb shell {command!r} timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise ADBError(f"adb is not available: {exc}") from exc

    def dump_hierarchy(self, remote_path: str = "/sdcard/window_dump.xml") -> str:
        """Dump the active window hierarchy with ``uiautomator`` and return the XML."""
        self.shell(f"uiautomator dump {remote_path}")
        return self.shell(f"cat {remote_path}")

    def __repr__(self) -> str:  # pragma: no cover - string representation only
        return f"<Device serial={self.serial!r}>"
