"""Scene fingerprinting.

A fingerprint is the SHA-256 digest of a captured frame. It is a cheap proxy
for "did the screen change", not semantic UI understanding. An empty
fingerprint means the capture failed and is always inconclusive.
"""

import hashlib
import logging
import shutil
import time
from pathlib import Path
from typing import Callable

from simscout.models.schemas import SceneChange
from simscout.services.simulator_driver import DeviceDriver

logger = logging.getLogger(__name__)

SCRATCH_FRAME_NAME = ".scratch_frame.png"
SETTLED_FRAME_NAME = ".settled_frame.png"


def fingerprint_bytes(data: bytes) -> str:
    """Digest raw frame bytes. Empty input yields an empty fingerprint."""
    if not data:
        return ""
    return hashlib.sha256(data).hexdigest()


def fingerprint_file(path: str | Path) -> str:
    """Digest a frame file, or return "" if it is missing or empty."""
    try:
        return fingerprint_bytes(Path(path).read_bytes())
    except OSError:
        return ""


def compare(before: str, after: str) -> SceneChange:
    """Classify two fingerprints.

    Returns:
        INCONCLUSIVE if either side is empty, UNCHANGED if equal,
        CHANGED otherwise.
    """
    if not before or not after:
        return SceneChange.INCONCLUSIVE
    if before == after:
        return SceneChange.UNCHANGED
    return SceneChange.CHANGED


class SceneFingerprinter:
    """Captures frames from the device and turns them into fingerprints.

    Args:
        driver: Device driver used to request frames.
        scratch_dir: Directory for the temporary frame file.
        latency_polls: How many times to check for a non-empty frame file
            after a capture request.
        latency_interval: Delay between those checks, in seconds.
        settle_max_polls: Upper bound on captures in ``wait_for_stable``.
        settle_interval: Delay between settle captures, in seconds.
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        driver: DeviceDriver,
        scratch_dir: str | Path,
        latency_polls: int = 5,
        latency_interval: float = 0.2,
        settle_max_polls: int = 4,
        settle_interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.driver = driver
        self.scratch_path = Path(scratch_dir) / SCRATCH_FRAME_NAME
        self.settled_path = Path(scratch_dir) / SETTLED_FRAME_NAME
        self.latency_polls = latency_polls
        self.latency_interval = latency_interval
        self.settle_max_polls = settle_max_polls
        self.settle_interval = settle_interval
        self.sleep = sleep

    def capture_file(self, path: str | Path) -> str:
        """Capture the current frame to ``path`` and fingerprint it.

        The file is left in place on success. Returns "" on any failure.
        """
        path = Path(path)
        path.unlink(missing_ok=True)

        if not self.driver.capture_frame(str(path)):
            logger.debug("Frame capture request failed")
            return ""

        for attempt in range(self.latency_polls):
            if path.exists() and path.stat().st_size > 0:
                return fingerprint_file(path)
            if attempt < self.latency_polls - 1:
                self.sleep(self.latency_interval)

        logger.debug(f"Frame never appeared at {path}")
        path.unlink(missing_ok=True)
        return ""

    def capture(self) -> str:
        """Fingerprint the current screen without keeping the frame."""
        try:
            return self.capture_file(self.scratch_path)
        finally:
            self.scratch_path.unlink(missing_ok=True)

    def compare(self, before: str, after: str) -> SceneChange:
        return compare(before, after)

    def wait_for_stable(self) -> str:
        """Poll until two consecutive captures match, within a bounded budget.

        The frame behind the returned fingerprint stays at ``settled_path``
        until ``take_settled_frame`` or ``cleanup`` is called.

        Returns:
            The last fingerprint captured (possibly "" if every capture
            failed). When the budget runs out the screen may still be moving.
        """
        self.sleep(self.settle_interval)
        previous = self.capture_file(self.settled_path)
        for _ in range(self.settle_max_polls - 1):
            self.sleep(self.settle_interval)
            current = self.capture_file(self.settled_path)
            if current and current == previous:
                return current
            previous = current
        return previous

    def take_settled_frame(self, fingerprint: str, destination: str | Path) -> bool:
        """Move the last settled frame to ``destination`` if it has ``fingerprint``.

        Returns:
            False if no settled frame with that fingerprint is on disk.
        """
        if not fingerprint or fingerprint_file(self.settled_path) != fingerprint:
            return False
        shutil.move(str(self.settled_path), str(destination))
        return True

    def cleanup(self) -> None:
        """Remove temporary frame files."""
        self.scratch_path.unlink(missing_ok=True)
        self.settled_path.unlink(missing_ok=True)
