"""Exploration session bookkeeping.

The session owns the screenshot sequence counter, the set of fingerprints
already stored and the output manifest. ``capture_unique`` is the only way
any component adds a screenshot.
"""

import json
import logging
import re
from pathlib import Path

from simscout.models.schemas import ManifestEntry
from simscout.services.fingerprinter import SceneFingerprinter

logger = logging.getLogger(__name__)

PENDING_FRAME_NAME = ".pending_frame.png"
URL_MANIFEST_NAME = "urls.json"

LABEL_PATTERN = re.compile(r"[^A-Za-z0-9_-]+")


def _safe_label(label: str) -> str:
    cleaned = LABEL_PATTERN.sub("_", label).strip("_")
    return cleaned or "screen"


class ExplorationSession:
    """Mutable state of a single exploration run.

    Args:
        output_dir: Directory receiving screenshots and ``urls.json``.
        fingerprinter: Fingerprinter bound to the run's device.
    """

    def __init__(self, output_dir: str | Path, fingerprinter: SceneFingerprinter):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.fingerprinter = fingerprinter

        self.screenshot_sequence = 0
        self.seen_fingerprints: set[str] = set()
        self.manifest: list[ManifestEntry] = []

    def capture_unique(self, label: str, fingerprint: str | None = None) -> ManifestEntry | None:
        """Keep the current screen only if it is new.

        Args:
            label: Descriptive label used in the file name.
            fingerprint: Fingerprint of the frame last settled by the
                fingerprinter. That frame is stored as-is instead of taking
                a fresh capture, so the stored file is the one that was
                classified.

        Returns:
            The stored entry, or None if the capture failed or the screen was
            already stored under an earlier sequence number.
        """
        pending = self.output_dir / PENDING_FRAME_NAME
        if fingerprint is None:
            fingerprint = self.fingerprinter.capture_file(pending)
        elif fingerprint and fingerprint not in self.seen_fingerprints:
            if not self.fingerprinter.take_settled_frame(fingerprint, pending):
                logger.warning(f"Settled frame for '{label}' is no longer available")
                fingerprint = ""

        if not fingerprint:
            logger.warning(f"Capture failed for '{label}'")
            pending.unlink(missing_ok=True)
            return None

        if fingerprint in self.seen_fingerprints:
            logger.info(f"Skipping duplicate screen ({label})")
            pending.unlink(missing_ok=True)
            return None

        self.seen_fingerprints.add(fingerprint)
        self.screenshot_sequence += 1
        filename = f"{self.screenshot_sequence:02d}_{_safe_label(label)}.png"
        final_path = self.output_dir / filename
        pending.replace(final_path)

        entry = ManifestEntry(sequence=self.screenshot_sequence, label=label, path=final_path)
        self.manifest.append(entry)
        logger.info(f"Captured: {filename}")
        return entry

    def write_url_manifest(self) -> Path:
        """Write ``urls.json`` as an empty list for the upload step to fill."""
        path = self.output_dir / URL_MANIFEST_NAME
        path.write_text(json.dumps([]))

        logger.info(f"Generated {len(self.manifest)} screenshots")
        for entry in self.manifest:
            logger.info(f"  - {entry.path.name}")
        return path
