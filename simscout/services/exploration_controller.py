"""Exploration controller.

Probes the UI surface of a launched app: deep links, tab bar, a grid of
content taps, scrolling and the navigation header. Everything is built on
``probe()``: fingerprint before, interact, wait for the screen to settle,
fingerprint after, classify. A ``CHANGED`` probe stores a screenshot through
the session (which drops screens it has already stored), optionally explores
the new screen, and optionally navigates back.

Every loop is bounded by a cap from ``ExplorerFeatures``.
"""

import logging
from typing import Callable

from simscout.config import ExplorerFeatures
from simscout.models.schemas import AppAnalysis, DeviceProfile, ProbeResult, SceneChange
from simscout.services.fingerprinter import SceneFingerprinter
from simscout.services.session import ExplorationSession
from simscout.services.simulator_driver import DeviceDriver

logger = logging.getLogger(__name__)

SECONDARY_SCREEN_KEYWORDS = [
    "profile", "settings", "search", "discover",
    "messages", "notifications", "library", "create",
]

BACK_BUTTON = (0.08, 0.07)
BACK_EDGE_SWIPE = ((0.03, 0.5), (0.25, 0.5))

NAVIGATION_CHROME_POSITIONS = [
    (0.13, 0.12, "back"),   # top left
    (0.89, 0.12, "menu"),   # top right
    (0.51, 0.12, "title"),  # top center
]

DETAIL_TAP_POSITIONS = [
    (0.51, 0.35),
    (0.51, 0.59),
]

SCROLL_DOWN = ((0.5, 0.88), (0.5, 0.12))
SCROLL_UP = ((0.5, 0.12), (0.5, 0.88))


class ExplorationController:
    """Systematically probes the app's UI surface.

    Args:
        driver: Device driver.
        fingerprinter: Scene fingerprinter.
        session: Session receiving screenshots.
        device: Screen geometry.
        features: Caps and switches for this run.
    """

    def __init__(
        self,
        driver: DeviceDriver,
        fingerprinter: SceneFingerprinter,
        session: ExplorationSession,
        device: DeviceProfile,
        features: ExplorerFeatures | None = None,
    ):
        self.driver = driver
        self.fingerprinter = fingerprinter
        self.session = session
        self.device = device
        self.features = features or ExplorerFeatures()

    # =========================================================================
    # Primitives
    # =========================================================================

    def tap(self, fx: float, fy: float) -> None:
        self.driver.tap(*self.device.point(fx, fy))

    def swipe(self, start: tuple[float, float], end: tuple[float, float]) -> None:
        self.driver.swipe(self.device.point(*start), self.device.point(*end))

    def probe(
        self,
        interaction: Callable[[], None],
        label: str,
        on_changed: Callable[[], None] | None = None,
        revert: bool = False,
    ) -> ProbeResult:
        """Run one interaction and capture the result if the screen changed.

        Args:
            interaction: Callable performing the device interaction.
            label: Screenshot label used when the screen changed.
            on_changed: Explores the new screen before reverting.
            revert: Navigate back after a change.

        Returns:
            ProbeResult with the classification and the stored entry, if any.
        """
        before = self.fingerprinter.capture()
        interaction()
        after = self.fingerprinter.wait_for_stable()
        change = self.fingerprinter.compare(before, after)

        result = ProbeResult(change=change, before=before, after=after)
        if change is not SceneChange.CHANGED:
            return result

        result.captured = self.session.capture_unique(label, fingerprint=after)
        if on_changed:
            on_changed()
        if revert:
            self.navigate_back()
        return result

    def navigate_back(self) -> None:
        """Best-effort back navigation: back button, then edge swipe.

        Success is not verified.
        """
        self.tap(*BACK_BUTTON)
        self.fingerprinter.sleep(self.features.settle_interval)
        self.swipe(*BACK_EDGE_SWIPE)
        self.fingerprinter.sleep(self.features.settle_interval)

    # =========================================================================
    # Deep links
    # =========================================================================

    def explore_deep_links(self, analysis: AppAnalysis) -> bool:
        """Try candidate deep links; on the first that works, visit more screens.

        Returns:
            True if a deep link changed the screen.
        """
        candidates = analysis.deep_link_candidates
        if not candidates:
            logger.info("No deep links extracted from app")
            return False

        limit = min(self.features.max_priority_deep_links, len(candidates))
        logger.info(f"Trying {limit} of {len(candidates)} extracted deep links...")

        for index, link in enumerate(candidates[:limit]):
            logger.info(f"Trying deep link {index + 1}/{limit}: {link}")
            result = self.probe(lambda link=link: self.driver.open_url(link), f"deeplink_{index + 1}")
            if result.changed:
                logger.info(f"Deep link worked: {link}")
                if analysis.primary_scheme:
                    self.navigate_deep_links(analysis.primary_scheme)
                return True

        logger.info("No working deep links found")
        return False

    def navigate_deep_links(self, scheme: str) -> int:
        """Open ``scheme://keyword`` for the secondary keywords.

        Deep links replace the current screen, so nothing is reverted.

        Returns:
            Number of screens that changed.
        """
        changed = 0
        for keyword in SECONDARY_SCREEN_KEYWORDS[:self.features.max_secondary_deep_links]:
            url = f"{scheme}://{keyword}"
            result = self.probe(lambda url=url: self.driver.open_url(url), f"screen_{keyword}")
            if result.changed:
                logger.info(f"Navigated to {keyword}")
                changed += 1
        return changed

    # =========================================================================
    # Tabs
    # =========================================================================

    def tab_positions(self, tab_count: int) -> list[tuple[int, int]]:
        """Evenly spaced tab centers across the tab bar."""
        spacing = self.device.width // tab_count
        return [(spacing // 2 + i * spacing, self.device.tab_bar_y) for i in range(tab_count)]

    def discover_tabs(self) -> int | None:
        """Find the tab layout by trying candidate tab counts in order.

        The first count where at least one tab changes the screen is taken as
        the layout; later candidates are not tried. Only the first
        ``tab_detail_limit`` tabs get a look into their content.

        Returns:
            The committed tab count, or None if no candidate worked.
        """
        for tab_count in self.features.tab_candidate_counts:
            logger.info(f"Trying {tab_count} tabs...")
            unique_screens = 0

            for i, (x, y) in enumerate(self.tab_positions(tab_count)):
                logger.debug(f"Tapping tab {i + 1} of {tab_count} at ({x}, {y})")
                explore = self.explore_current_view if i < self.features.tab_detail_limit else None
                result = self.probe(lambda x=x, y=y: self.driver.tap(x, y), f"tab_{i + 1}", on_changed=explore)
                if result.changed:
                    unique_screens += 1

            if unique_screens > 0:
                logger.info(f"Found {unique_screens} unique tab screens with {tab_count} tabs")
                return tab_count

        logger.info("No tabs found, continuing with main content exploration")
        return None

    def explore_current_view(self) -> None:
        """Quick look one level into the current screen."""
        for fx, fy in DETAIL_TAP_POSITIONS:
            result = self.probe(lambda fx=fx, fy=fy: self.tap(fx, fy), "detail_view", revert=True)
            if result.changed:
                break

    # =========================================================================
    # Content
    # =========================================================================

    def grid_positions(self) -> list[tuple[int, int, int, int]]:
        """Grid cells over the content area as ``(col, row, x, y)``, 1-based."""
        rows = self.features.grid_rows
        cols = self.features.grid_cols
        margin = self.features.chrome_margin
        content_height = 1.0 - 2 * margin

        cells = []
        for row in range(rows):
            for col in range(cols):
                fx = (col + 1) / (cols + 1)
                fy = margin + content_height * (row + 1) / (rows + 1)
                x, y = self.device.point(fx, fy)
                cells.append((col + 1, row + 1, x, y))
        return cells

    def probe_grid(self) -> int:
        """Tap a grid of content positions, reverting after each discovery.

        Stops after ``max_grid_discoveries`` screens changed.

        Returns:
            Number of cells that changed the screen.
        """
        discoveries = 0
        for col, row, x, y in self.grid_positions():
            if discoveries >= self.features.max_grid_discoveries:
                logger.info("Reached max exploration limit, stopping")
                break
            logger.debug(f"Exploring grid position ({col}, {row})")
            result = self.probe(lambda x=x, y=y: self.driver.tap(x, y), f"grid_{col}_{row}", revert=True)
            if result.changed:
                discoveries += 1
        return discoveries

    def probe_scroll(self) -> None:
        """Scroll down capturing after each swipe, then scroll back up."""
        down = self.features.scroll_down_count
        logger.info("Scrolling to find more content...")
        for i in range(down):
            logger.debug(f"Scroll {i + 1}/{down}")
            self.swipe(*SCROLL_DOWN)
            after = self.fingerprinter.wait_for_stable()
            self.session.capture_unique(f"scroll_{i + 1}", fingerprint=after)

        for _ in range(self.features.scroll_up_count):
            self.swipe(*SCROLL_UP)
            self.fingerprinter.sleep(self.features.settle_interval)

    def probe_navigation_chrome(self) -> int:
        """Tap header positions that often host extra navigation.

        Returns:
            Number of header taps that changed the screen.
        """
        logger.info("Exploring navigation stack...")
        hits = 0
        for fx, fy, name in NAVIGATION_CHROME_POSITIONS:
            result = self.probe(lambda fx=fx, fy=fy: self.tap(fx, fy), f"nav_{name}", revert=True)
            if result.changed:
                hits += 1
        return hits

    # =========================================================================
    # Full pass
    # =========================================================================

    def run(self, analysis: AppAnalysis) -> int | None:
        """Explore deep links, tabs, grid content, scroll and header chrome.

        Returns:
            The committed tab count, or None.
        """
        if self.features.enable_deep_link_discovery:
            logger.info("Trying deep link navigation...")
            self.explore_deep_links(analysis)

        logger.info("Exploring tabs...")
        tab_count = self.discover_tabs()

        logger.info("Exploring main content...")
        self.probe_grid()
        self.probe_scroll()
        self.probe_navigation_chrome()
        return tab_count
