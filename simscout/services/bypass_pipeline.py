"""Onboarding and login wall bypass pipeline.

The pipeline runs an ordered list of strategies against an app it has never
seen before. Strategies belong to one of four phases:

    - **pre-launch**: persisted state injection before the first start.
    - **launch**: relaunch with conventional "skip/test" flags. The launch
      itself always goes through the ``LaunchVerifier``; an aborted launch
      raises ``LaunchAbortError`` and ends the run.
    - **post-launch**: probes that try to clear the wall on screen (deep
      links, canonical skip positions, carousel swipes, credential login).
      The first strategy that clears the wall stops this phase, except that
      a configured email/password login still runs afterwards. If none
      clears it, the onboarding walkthrough pages through the flow screen by
      screen.
    - **final**: a caller-supplied deep link, opened unconditionally.

Each post-launch strategy judges success against its own before-state using
the scene fingerprinter. Nothing here reads text on screen; a custom skip
button label without OCR is recorded as a no-op.

Coordinates are fractions of the device's width and height so the same
positions work across device profiles.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from simscout.models.schemas import (
    AppAnalysis,
    BypassStrategyName,
    Credentials,
    DeviceProfile,
    LaunchResult,
    PersistedPreference,
    PreferenceKind,
    SceneChange,
    StrategyOutcome,
)
from simscout.services.app_analyzer import priority_deep_links
from simscout.services.fingerprinter import SceneFingerprinter
from simscout.services.launch_verifier import LaunchAbortError, LaunchVerifier
from simscout.services.session import ExplorationSession
from simscout.services.simulator_driver import DeviceDriver

logger = logging.getLogger(__name__)


# Preference keys apps commonly use to remember onboarding / first launch
ONBOARDING_PREFERENCES = [
    PersistedPreference("hasSeenOnboarding", PreferenceKind.BOOL, True),
    PersistedPreference("onboardingComplete", PreferenceKind.BOOL, True),
    PersistedPreference("hasCompletedOnboarding", PreferenceKind.BOOL, True),
    PersistedPreference("isOnboardingComplete", PreferenceKind.BOOL, True),
    PersistedPreference("onboardingShown", PreferenceKind.BOOL, True),
    PersistedPreference("firstLaunch", PreferenceKind.BOOL, False),
    PersistedPreference("hasLaunchedBefore", PreferenceKind.BOOL, True),
    PersistedPreference("skipOnboarding", PreferenceKind.BOOL, True),
    PersistedPreference("tutorialCompleted", PreferenceKind.BOOL, True),
    PersistedPreference("welcomeShown", PreferenceKind.BOOL, True),
]

# Speculative stored-auth entries
CREDENTIAL_STORE_ENTRIES = [
    ("auth_token", "test_token"),
    ("user_id", "test_user"),
    ("isAuthenticated", "true"),
]

SKIP_ONBOARDING_ARGS = [
    "-skipOnboarding",
    "-UITests",
    "-disableOnboarding",
    "-skipTutorial",
    "-testMode",
    "-automation",
]

SKIP_POSITIONS = [
    (0.89, 0.06),  # top right
    (0.89, 0.12),  # below status bar
    (0.51, 0.94),  # bottom center
    (0.51, 0.88),  # above bottom
    (0.76, 0.06),  # top right alternative
    (0.13, 0.06),  # top left
]

NEXT_BUTTON_POSITIONS = [
    (0.51, 0.88),  # bottom center
    (0.89, 0.94),  # bottom right
    (0.50, 0.90),  # bottom center, tablet layouts
]

LOGIN_EMAIL_FIELD = (0.51, 0.35)
LOGIN_PASSWORD_FIELD = (0.51, 0.47)
LOGIN_SUBMIT_BUTTON = (0.51, 0.59)

CAROUSEL_SWIPE = ((0.87, 0.5), (0.13, 0.5))


class StrategyPhase(str, Enum):
    """When a strategy runs relative to app launch."""
    PRE_LAUNCH = "pre_launch"
    LAUNCH = "launch"
    POST_LAUNCH = "post_launch"
    FINAL = "final"


@dataclass
class BypassContext:
    """Collaborators shared by all strategies of one run."""

    driver: DeviceDriver
    fingerprinter: SceneFingerprinter
    session: ExplorationSession
    verifier: LaunchVerifier
    analysis: AppAnalysis
    device: DeviceProfile
    credentials: Credentials | None = None
    max_launch_argument_attempts: int = 3
    max_bypass_deep_links: int = 3
    max_bypass_swipes: int = 3
    sleep: Callable[[float], None] = time.sleep
    launch_result: LaunchResult | None = field(default=None)

    @property
    def bundle_id(self) -> str:
        return self.analysis.bundle_id

    def tap(self, position: tuple[float, float]) -> None:
        self.driver.tap(*self.device.point(*position))

    def swipe(self, start: tuple[float, float], end: tuple[float, float]) -> None:
        self.driver.swipe(self.device.point(*start), self.device.point(*end))


def tap_until_changed(context: BypassContext, positions: list[tuple[float, float]], before: str) -> tuple[tuple[float, float], str] | None:
    """Tap positions in order until the screen differs from ``before``.

    Returns:
        The position that changed the screen and the settled fingerprint
        after it, or None.
    """
    for position in positions:
        context.tap(position)
        after = context.fingerprinter.wait_for_stable()
        if context.fingerprinter.compare(before, after) is SceneChange.CHANGED:
            return position, after
    return None


class BypassStrategy(ABC):
    """Base class for bypass strategies.

    Attributes:
        name: Strategy identifier, matches ``BypassStrategyName``.
        phase: Pipeline phase the strategy belongs to.
    """

    name: BypassStrategyName
    phase: StrategyPhase

    @abstractmethod
    def run(self, context: BypassContext) -> StrategyOutcome:
        """Run the strategy to completion and report whether the wall cleared."""

    def outcome(self, cleared: bool, detail: str = "") -> StrategyOutcome:
        return StrategyOutcome(name=self.name.value, cleared=cleared, detail=detail)


class StateInjectionStrategy(BypassStrategy):
    """Write "onboarding done" preferences and stored-auth entries before launch.

    Best effort: most apps ignore these keys, so write failures are not errors.
    Never reports the wall as cleared since nothing is on screen yet.
    """

    name = BypassStrategyName.STATE_INJECTION
    phase = StrategyPhase.PRE_LAUNCH

    def run(self, context: BypassContext) -> StrategyOutcome:
        logger.info("Injecting common onboarding preferences...")
        written = sum(
            1 for pref in ONBOARDING_PREFERENCES
            if context.driver.write_persisted_preference(context.bundle_id, pref)
        )

        logger.info("Injecting credential store entries...")
        stored = sum(
            1 for key, value in CREDENTIAL_STORE_ENTRIES
            if context.driver.write_credential_store_entry(context.bundle_id, key, value)
        )

        return self.outcome(
            False,
            f"preferences {written}/{len(ONBOARDING_PREFERENCES)}, "
            f"credential entries {stored}/{len(CREDENTIAL_STORE_ENTRIES)}",
        )


class LaunchArgumentsStrategy(BypassStrategy):
    """Relaunch with conventional skip flags, one at a time.

    Stops at the first flag whose verified launch yields any fingerprint.
    The last launch result is left on the context for the pipeline.
    """

    name = BypassStrategyName.LAUNCH_ARGUMENTS
    phase = StrategyPhase.LAUNCH

    def run(self, context: BypassContext) -> StrategyOutcome:
        for arg in SKIP_ONBOARDING_ARGS[:context.max_launch_argument_attempts]:
            result = context.verifier.launch([arg])
            context.launch_result = result
            if result.ready and result.fingerprint:
                logger.info(f"Launched with argument: {arg}")
                return self.outcome(True, arg)
        return self.outcome(False, "no launch argument produced a verified launch")


class DeepLinkBypassStrategy(BypassStrategy):
    """Open home/main/dashboard deep links to jump past the wall."""

    name = BypassStrategyName.DEEP_LINK
    phase = StrategyPhase.POST_LAUNCH

    def run(self, context: BypassContext) -> StrategyOutcome:
        links = priority_deep_links(context.analysis.deep_link_candidates)
        if not links:
            return self.outcome(False, "no deep link candidates")

        logger.info("Trying deep links to bypass onboarding...")
        for link in links[:context.max_bypass_deep_links]:
            before = context.fingerprinter.capture()
            context.driver.open_url(link)
            after = context.fingerprinter.wait_for_stable()
            if context.fingerprinter.compare(before, after) is SceneChange.CHANGED:
                logger.info(f"Deep link bypassed onboarding: {link}")
                context.session.capture_unique("deeplink_skip", fingerprint=after)
                return self.outcome(True, link)
        return self.outcome(False, "no deep link changed the screen")


class CoordinateProbeStrategy(BypassStrategy):
    """Tap canonical skip/dismiss positions."""

    name = BypassStrategyName.COORDINATE_PROBE
    phase = StrategyPhase.POST_LAUNCH

    def run(self, context: BypassContext) -> StrategyOutcome:
        logger.info("Trying skip button positions...")
        before = context.fingerprinter.capture()
        hit = tap_until_changed(context, SKIP_POSITIONS, before)
        if hit is None:
            return self.outcome(False, "no skip position changed the screen")

        position, after = hit
        x, y = context.device.point(*position)
        logger.info(f"Screen changed after tap at ({x}, {y})")
        context.session.capture_unique("after_skip", fingerprint=after)
        return self.outcome(True, f"tap ({x}, {y})")


class SwipeProbeStrategy(BypassStrategy):
    """Swipe through onboarding as a paged carousel.

    Weak signal: any readable frame after a swipe counts as success.
    """

    name = BypassStrategyName.SWIPE_PROBE
    phase = StrategyPhase.POST_LAUNCH

    def run(self, context: BypassContext) -> StrategyOutcome:
        logger.info("Trying quick swipe through...")
        for i in range(context.max_bypass_swipes):
            context.swipe(*CAROUSEL_SWIPE)
            after = context.fingerprinter.wait_for_stable()
            if after:
                context.session.capture_unique("swipe_skip", fingerprint=after)
                return self.outcome(True, f"swipe {i + 1}")
        return self.outcome(False, "no frame after swiping")


class CredentialLoginStrategy(BypassStrategy):
    """Fill a login form at canonical field positions."""

    name = BypassStrategyName.CREDENTIAL_LOGIN
    phase = StrategyPhase.POST_LAUNCH

    def run(self, context: BypassContext) -> StrategyOutcome:
        credentials = context.credentials
        if credentials is None:
            return self.outcome(False, "no credentials configured")

        if credentials.skip_button_text:
            # Finding a button by its label needs OCR or an accessibility tree
            logger.info(f"Custom skip button '{credentials.skip_button_text}' ignored: no text matching")

        if not credentials.has_login:
            return self.outcome(False, "no email/password configured")

        logger.info("Attempting login with provided credentials...")
        context.session.capture_unique("login")
        before = context.fingerprinter.capture()

        context.tap(LOGIN_EMAIL_FIELD)
        context.sleep(1)
        context.driver.type_text(credentials.email)

        context.tap(LOGIN_PASSWORD_FIELD)
        context.sleep(1)
        context.driver.type_text(credentials.password)

        context.tap(LOGIN_SUBMIT_BUTTON)
        after = context.fingerprinter.wait_for_stable()

        if context.fingerprinter.compare(before, after) is SceneChange.CHANGED:
            context.session.capture_unique("after_login", fingerprint=after)
            return self.outcome(True, "login form submitted")
        return self.outcome(False, "screen unchanged after login")


class ExplicitDeepLinkStrategy(BypassStrategy):
    """Open the caller's deep link regardless of earlier outcomes."""

    name = BypassStrategyName.EXPLICIT_DEEP_LINK
    phase = StrategyPhase.FINAL

    def run(self, context: BypassContext) -> StrategyOutcome:
        link = context.credentials.deep_link if context.credentials else None
        if not link:
            return self.outcome(False, "no deep link provided")

        logger.info(f"Trying provided deep link: {link}")
        before = context.fingerprinter.capture()
        context.driver.open_url(link)
        after = context.fingerprinter.wait_for_stable()
        context.session.capture_unique("deep_link_provided", fingerprint=after)
        changed = context.fingerprinter.compare(before, after) is SceneChange.CHANGED
        return self.outcome(changed, link)


STRATEGY_REGISTRY: dict[BypassStrategyName, type[BypassStrategy]] = {
    BypassStrategyName.STATE_INJECTION: StateInjectionStrategy,
    BypassStrategyName.LAUNCH_ARGUMENTS: LaunchArgumentsStrategy,
    BypassStrategyName.DEEP_LINK: DeepLinkBypassStrategy,
    BypassStrategyName.COORDINATE_PROBE: CoordinateProbeStrategy,
    BypassStrategyName.SWIPE_PROBE: SwipeProbeStrategy,
    BypassStrategyName.CREDENTIAL_LOGIN: CredentialLoginStrategy,
    BypassStrategyName.EXPLICIT_DEEP_LINK: ExplicitDeepLinkStrategy,
}


class BypassPipeline:
    """Runs bypass strategies phase by phase.

    Args:
        context: Shared collaborators.
        order: Strategy names in execution order. Strategies keep this
            relative order within their phase.
        max_onboarding_screens: Cap for the onboarding walkthrough; 0
            disables it.
        max_stuck_count: Consecutive identical onboarding screens before the
            walkthrough gives up.
    """

    def __init__(
        self,
        context: BypassContext,
        order: list[BypassStrategyName] | None = None,
        max_onboarding_screens: int = 5,
        max_stuck_count: int = 2,
    ):
        self.context = context
        self.strategies = [STRATEGY_REGISTRY[name]() for name in (order or list(BypassStrategyName))]
        self.max_onboarding_screens = max_onboarding_screens
        self.max_stuck_count = max_stuck_count
        self.outcomes: list[StrategyOutcome] = []

    def _phase(self, phase: StrategyPhase) -> list[BypassStrategy]:
        return [s for s in self.strategies if s.phase is phase]

    def _run(self, strategy: BypassStrategy) -> StrategyOutcome:
        outcome = strategy.run(self.context)
        self.outcomes.append(outcome)
        logger.debug(f"{outcome.name}: cleared={outcome.cleared} ({outcome.detail})")
        return outcome

    def _logs_in(self, strategy: BypassStrategy) -> bool:
        credentials = self.context.credentials
        return (
            strategy.name is BypassStrategyName.CREDENTIAL_LOGIN
            and credentials is not None
            and credentials.has_login
        )

    def run_pre_launch(self) -> None:
        """Run pre-launch state injection."""
        for strategy in self._phase(StrategyPhase.PRE_LAUNCH):
            self._run(strategy)

    def launch(self) -> LaunchResult:
        """Launch the app, through skip flags when configured.

        Returns:
            A READY launch result.

        Raises:
            LaunchAbortError: If the final launch could not be verified.
        """
        for strategy in self._phase(StrategyPhase.LAUNCH):
            if self._run(strategy).cleared:
                return self.context.launch_result

        logger.info("Using normal launch")
        result = self.context.verifier.launch()
        self.context.launch_result = result
        if not result.ready:
            raise LaunchAbortError(result.reason, result)
        return result

    def run_post_launch(self) -> bool:
        """Try on-screen strategies until one clears the wall.

        A credential login with email and password runs even after an
        earlier strategy cleared the wall.

        Returns:
            True if a strategy or the onboarding walkthrough cleared the wall.
        """
        logger.info("Checking if onboarding is present...")
        self.context.session.capture_unique("check_onboarding")

        cleared = False
        for strategy in self._phase(StrategyPhase.POST_LAUNCH):
            if cleared and not self._logs_in(strategy):
                continue
            if self._run(strategy).cleared:
                cleared = True
        if cleared:
            return True

        logger.warning("Could not skip onboarding automatically")
        if self.max_onboarding_screens > 0:
            outcome = self.walk_onboarding()
            self.outcomes.append(outcome)
            return outcome.cleared
        return False

    def run_final(self) -> None:
        """Run strategies that apply regardless of earlier outcomes."""
        for strategy in self._phase(StrategyPhase.FINAL):
            self._run(strategy)

    def walk_onboarding(self) -> StrategyOutcome:
        """Page through an onboarding flow one screen at a time.

        Each screen is captured, then advanced by tapping canonical "next"
        positions and, failing that, a carousel swipe. Seeing the same screen
        ``max_stuck_count`` times in a row ends the walk with a last skip
        attempt.
        """
        ctx = self.context
        fingerprinter = ctx.fingerprinter
        last = ""
        stuck = 0
        advanced_screens = 0

        for screen in range(self.max_onboarding_screens):
            logger.info(f"Onboarding screen {screen + 1}/{self.max_onboarding_screens}")
            current = fingerprinter.capture()
            if current:
                ctx.session.capture_unique(f"onboarding_{screen}")

            if current and current == last:
                stuck += 1
                logger.info(f"Same screen detected (stuck count: {stuck})")
                if stuck >= self.max_stuck_count:
                    break
            else:
                stuck = 0
            last = current

            if tap_until_changed(ctx, NEXT_BUTTON_POSITIONS, current) is not None:
                advanced_screens += 1
                continue

            ctx.swipe(*CAROUSEL_SWIPE)
            after = fingerprinter.wait_for_stable()
            if fingerprinter.compare(current, after) is SceneChange.CHANGED:
                advanced_screens += 1

        logger.info("Final skip attempt...")
        before = fingerprinter.capture()
        skipped = tap_until_changed(ctx, SKIP_POSITIONS[:4], before) is not None

        return StrategyOutcome(
            name="onboarding_walkthrough",
            cleared=skipped,
            detail=f"advanced {advanced_screens} screen(s), stuck={stuck}",
        )
