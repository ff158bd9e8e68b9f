"""Static navigation-surface analysis.

Derives candidate deep links from the URL schemes an app declares, before any
interaction happens. The screen keywords are guesswork: nothing validates a
candidate until the bypass pipeline or the controller actually opens it.
"""

import logging

from simscout.models.schemas import AppAnalysis
from simscout.services.bundle_inspector import read_declared_url_schemes

logger = logging.getLogger(__name__)

COMMON_SCREEN_KEYWORDS = [
    "home", "main", "dashboard", "feed", "timeline",
    "profile", "settings", "account", "user",
    "discover", "explore", "search", "browse",
    "messages", "chat", "inbox",
    "notifications", "alerts",
    "library", "saved", "favorites",
    "create", "new", "add",
    "menu", "more", "options",
]

# Appended per scheme after the keyword links
CANONICAL_SUFFIXES = ["", "main", "home", "dashboard"]

PRIORITY_PATHS = ("://home", "://main", "://dashboard")


def generate_deep_links(schemes: list[str], keywords: list[str]) -> list[str]:
    """Cross schemes with screen keywords, then add canonical entry points.

    Duplicates are kept; retrying a link is cheap.

    Example:
        >>> generate_deep_links(["myapp"], ["home", "profile"])
        ['myapp://home', 'myapp://profile', 'myapp://', 'myapp://main', 'myapp://home', 'myapp://dashboard']
    """
    links = []
    for scheme in schemes:
        for keyword in keywords:
            links.append(f"{scheme}://{keyword}")
        for suffix in CANONICAL_SUFFIXES:
            links.append(f"{scheme}://{suffix}")
    return links


def priority_deep_links(candidates: list[str]) -> list[str]:
    """Candidates that point at a home/main/dashboard screen, in order."""
    return [link for link in candidates if any(p in link for p in PRIORITY_PATHS)]


def analyze_app(app_path: str | None, bundle_id: str, enabled: bool = True) -> AppAnalysis:
    """Build the app's navigation surface from static metadata.

    Args:
        app_path: Path to the extracted ``.app`` bundle, if available.
        bundle_id: Bundle identifier of the target app.
        enabled: When False, skip metadata reading entirely.

    Returns:
        AppAnalysis. Schemes and candidates are empty when the metadata is
        missing or unreadable.
    """
    if not enabled or not app_path:
        return AppAnalysis(bundle_id=bundle_id, app_path=app_path)

    schemes = read_declared_url_schemes(app_path)
    keywords = list(COMMON_SCREEN_KEYWORDS)
    candidates = generate_deep_links(schemes, keywords)

    if schemes:
        logger.info(f"Extracted {len(schemes)} URL schemes: {', '.join(schemes)}")
        logger.info(f"Generated {len(candidates)} potential deep links")
    else:
        logger.info("No URL schemes declared; deep link discovery disabled for this app")

    return AppAnalysis(
        bundle_id=bundle_id,
        app_path=app_path,
        url_schemes=schemes,
        common_screen_keywords=keywords,
        deep_link_candidates=candidates,
    )
