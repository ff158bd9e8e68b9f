"""Info.plist reading for extracted ``.app`` bundles.

Only static metadata is read here; extracting the bundle from an IPA is done
upstream. Every function degrades to an empty result when the bundle or its
Info.plist is missing or malformed.
"""

import logging
import plistlib
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def _load_info_plist(app_path: str | Path | None) -> dict[str, Any]:
    if not app_path:
        return {}

    plist_path = Path(app_path) / "Info.plist"
    if not plist_path.is_file():
        logger.info(f"No Info.plist at {plist_path}")
        return {}

    try:
        with open(plist_path, "rb") as f:
            plist = plistlib.load(f)
    except (plistlib.InvalidFileException, ValueError, OSError) as e:
        logger.warning(f"Unreadable Info.plist at {plist_path}: {e}")
        return {}

    return plist if isinstance(plist, dict) else {}


def read_declared_url_schemes(app_path: str | Path | None) -> list[str]:
    """Extract URL schemes from ``CFBundleURLTypes``.

    Args:
        app_path: Path to the extracted ``.app`` directory.

    Returns:
        Declared schemes in declaration order; empty if unavailable.
    """
    plist = _load_info_plist(app_path)
    schemes = []
    for url_type in plist.get("CFBundleURLTypes", []) or []:
        if not isinstance(url_type, dict):
            continue
        for scheme in url_type.get("CFBundleURLSchemes", []) or []:
            if isinstance(scheme, str) and scheme:
                schemes.append(scheme)
    return schemes


def read_app_info(app_path: str | Path | None) -> dict[str, Any]:
    """Read identifying app metadata from Info.plist.

    Returns:
        Dict with ``bundle_id``, ``version``, ``build``, ``display_name``,
        ``minimum_os_version`` and ``device_family`` (values may be None).
        Empty if the plist is unavailable.
    """
    plist = _load_info_plist(app_path)
    if not plist:
        return {}

    return {
        "bundle_id": plist.get("CFBundleIdentifier"),
        "version": plist.get("CFBundleShortVersionString"),
        "build": plist.get("CFBundleVersion"),
        "display_name": plist.get("CFBundleDisplayName") or plist.get("CFBundleName"),
        "minimum_os_version": plist.get("MinimumOSVersion"),
        "device_family": plist.get("UIDeviceFamily"),
    }
