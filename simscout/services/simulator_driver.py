"""Simulator device driver.

``DeviceDriver`` is the single capability every explorer component consumes:
raw taps, swipes, text entry, frame capture, app launch and the foreground
queries used by launch verification. ``SimctlDriver`` implements it on top of
``xcrun simctl`` for one booted iOS simulator.

Security:
    The device name and bundle identifier are validated before being passed
    to subprocess commands, and all commands use explicit argument lists
    (no ``shell=True``).

All calls are synchronous and blocking. Failures are logged and surfaced as
``False``/``None`` return values, never raised.
"""

import logging
import re
import subprocess
from abc import ABC, abstractmethod

from simscout.models.schemas import PersistedPreference

logger = logging.getLogger(__name__)

# Simulator names ("iPad Pro (12.9-inch) (6th generation)") or UDIDs
VALID_DEVICE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9 ._()\-]+$")
VALID_BUNDLE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9.\-]+$")

HOME_SCREEN_BUNDLE_ID = "com.apple.springboard"

# launchctl labels of running apps look like "UIKitApplication:com.example.app[1a2b][rb-legacy]"
UIKIT_APPLICATION_PATTERN = re.compile(r"UIKitApplication:([A-Za-z0-9.\-]+)\[")


def _validate_device_name(device_name: str) -> str:
    """Validate a simulator name to prevent command injection.

    Raises:
        ValueError: If the name is empty, too long or has invalid characters.
    """
    if not device_name or len(device_name) > 128:
        raise ValueError("Invalid device name length")
    if not VALID_DEVICE_NAME_PATTERN.match(device_name):
        raise ValueError(f"Invalid device name format: {device_name}")
    return device_name


def _validate_bundle_id(bundle_id: str) -> str:
    """Validate a bundle identifier.

    Raises:
        ValueError: If the identifier is empty or malformed.
    """
    if not bundle_id or not VALID_BUNDLE_ID_PATTERN.match(bundle_id):
        raise ValueError(f"Invalid bundle identifier: {bundle_id!r}")
    return bundle_id


class DeviceDriver(ABC):
    """Synchronous interaction channel to one simulated device."""

    @abstractmethod
    def tap(self, x: int, y: int) -> None:
        """Tap at screen coordinates (points)."""

    @abstractmethod
    def swipe(self, start: tuple[int, int], end: tuple[int, int]) -> None:
        """Swipe from one point to another."""

    @abstractmethod
    def type_text(self, text: str) -> None:
        """Enter text into the focused field."""

    @abstractmethod
    def capture_frame(self, path: str) -> bool:
        """Write the current frame as PNG to ``path``. Returns success."""

    @abstractmethod
    def launch(self, bundle_id: str, args: list[str] | tuple[str, ...] = ()) -> bool:
        """Launch an app with optional command-line arguments. Returns success."""

    @abstractmethod
    def open_url(self, url: str) -> bool:
        """Ask the OS to open a URL. Returns success."""

    @abstractmethod
    def terminate(self, bundle_id: str) -> None:
        """Terminate an app if running."""

    @abstractmethod
    def query_process_running(self, bundle_id: str) -> bool:
        """Whether the app's process is alive."""

    @abstractmethod
    def query_foreground_app(self) -> str | None:
        """Bundle identifier of the foreground app, or None if unknown."""

    @abstractmethod
    def is_home_screen_frontmost(self) -> bool:
        """Whether the home screen is frontmost. Ambiguity must report True."""

    @abstractmethod
    def write_persisted_preference(self, bundle_id: str, preference: PersistedPreference) -> bool:
        """Write a preference into the app's defaults domain."""

    @abstractmethod
    def write_credential_store_entry(self, bundle_id: str, key: str, value: str) -> bool:
        """Store a generic credential entry for the app."""


class SimctlDriver(DeviceDriver):
    """``DeviceDriver`` backed by ``xcrun simctl``.

    Args:
        device_name: Simulator name or UDID.
        timeout: Per-command timeout in seconds.
    """

    def __init__(self, device_name: str, timeout: int = 30):
        self.device_name = _validate_device_name(device_name)
        self.timeout = timeout

    def _run(self, args: list[str], input_text: str | None = None) -> subprocess.CompletedProcess | None:
        """Run a command, returning None if it could not be executed."""
        try:
            return subprocess.run(
                args,
                capture_output=True,
                text=True,
                input=input_text,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out: {' '.join(args[:4])}")
        except FileNotFoundError:
            logger.error("xcrun not found in PATH (Xcode command line tools required)")
        except Exception as e:
            logger.error(f"Command failed: {' '.join(args[:4])}: {e}")
        return None

    def _simctl(self, *args: str, input_text: str | None = None) -> subprocess.CompletedProcess | None:
        return self._run(["xcrun", "simctl", *args], input_text=input_text)

    def _ok(self, result: subprocess.CompletedProcess | None, action: str) -> bool:
        if result is None:
            return False
        if result.returncode != 0:
            logger.debug(f"{action} failed: {result.stderr.strip()}")
            return False
        return True

    # =========================================================================
    # Interaction
    # =========================================================================

    def tap(self, x: int, y: int) -> None:
        self._simctl("io", self.device_name, "tap", str(x), str(y))

    def swipe(self, start: tuple[int, int], end: tuple[int, int]) -> None:
        self._simctl(
            "io", self.device_name, "swipe",
            str(start[0]), str(start[1]), str(end[0]), str(end[1]),
        )

    def type_text(self, text: str) -> None:
        # Paste through the simulator pasteboard; avoids per-key events
        result = self._simctl("pbcopy", self.device_name, input_text=text)
        if self._ok(result, "pbcopy"):
            self._simctl("io", self.device_name, "keyboard", "paste")

    def capture_frame(self, path: str) -> bool:
        result = self._simctl("io", self.device_name, "screenshot", path)
        return self._ok(result, "screenshot")

    # =========================================================================
    # App lifecycle
    # =========================================================================

    def launch(self, bundle_id: str, args: list[str] | tuple[str, ...] = ()) -> bool:
        bundle_id = _validate_bundle_id(bundle_id)
        result = self._simctl("launch", self.device_name, bundle_id, *args)
        return self._ok(result, f"launch {bundle_id}")

    def open_url(self, url: str) -> bool:
        result = self._simctl("openurl", self.device_name, url)
        return self._ok(result, f"openurl {url}")

    def terminate(self, bundle_id: str) -> None:
        bundle_id = _validate_bundle_id(bundle_id)
        self._simctl("terminate", self.device_name, bundle_id)

    # =========================================================================
    # Foreground queries
    # =========================================================================

    def _running_applications(self) -> list[str] | None:
        """Bundle IDs of UIKit apps with a live PID, or None if unavailable."""
        result = self._simctl("spawn", self.device_name, "launchctl", "list")
        if not self._ok(result, "launchctl list"):
            return None

        running = []
        for line in result.stdout.splitlines():
            parts = line.split()
            if len(parts) < 3 or parts[0] == "-":
                continue
            match = UIKIT_APPLICATION_PATTERN.search(parts[-1])
            if match:
                running.append(match.group(1))
        return running

    def query_process_running(self, bundle_id: str) -> bool:
        running = self._running_applications()
        return bool(running) and bundle_id in running

    def query_foreground_app(self) -> str | None:
        """Best-effort foreground app.

        launchctl does not expose focus, so a third-party app is only reported
        when it is the single non-system UIKit app alive.
        """
        running = self._running_applications()
        if not running:
            return None
        candidates = [b for b in running if not b.startswith("com.apple.")]
        if len(candidates) == 1:
            return candidates[0]
        return None

    def is_home_screen_frontmost(self) -> bool:
        foreground = self.query_foreground_app()
        # Unknown foreground counts as home screen
        return foreground is None or foreground == HOME_SCREEN_BUNDLE_ID

    # =========================================================================
    # State injection
    # =========================================================================

    def write_persisted_preference(self, bundle_id: str, preference: PersistedPreference) -> bool:
        bundle_id = _validate_bundle_id(bundle_id)
        result = self._simctl(
            "spawn", self.device_name, "defaults", "write", bundle_id,
            preference.key, *preference.as_defaults_args(),
        )
        return self._ok(result, f"defaults write {preference.key}")

    def write_credential_store_entry(self, bundle_id: str, key: str, value: str) -> bool:
        bundle_id = _validate_bundle_id(bundle_id)
        result = self._run(
            ["security", "add-generic-password", "-a", bundle_id, "-s", key, "-w", value, "-U"]
        )
        return self._ok(result, f"keychain {key}")
