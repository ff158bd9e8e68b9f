"""Launch verification state machine.

A successful launch command does not mean the app reached foreground; the
home screen (SpringBoard) may still be frontmost. The verifier combines four
signals, cheapest first:

    1. the app's process is running,
    2. the foreground-app query names the bundle,
    3. the home screen is frontmost (ambiguous answers count as yes),
    4. the screen fingerprint moved away from the pre-launch baseline.

No single signal is trusted on its own: (4) can fire during a home screen
animation, so it only counts while (3) says the home screen is not frontmost.
The bias is towards aborting: ``ABORTED`` ends the run before any screenshot
is taken, so a run never produces a manifest of home screen images.

States::

    NOT_LAUNCHED -> LAUNCHING -> VERIFYING_FOREGROUND -> READY | ABORTED
"""

import logging
import time
from typing import Callable

from simscout.models.schemas import LaunchResult, LaunchState, SceneChange
from simscout.services.fingerprinter import SceneFingerprinter
from simscout.services.simulator_driver import DeviceDriver

logger = logging.getLogger(__name__)

TERMINAL_STATES = {LaunchState.READY, LaunchState.ABORTED}


class LaunchAbortError(Exception):
    """The app could not be confirmed in foreground. Fatal for the run."""

    def __init__(self, reason: str, result: LaunchResult | None = None):
        super().__init__(reason)
        self.reason = reason
        self.result = result


class LaunchVerifier:
    """Launches the target app and confirms it reached foreground.

    Args:
        driver: Device driver.
        fingerprinter: Fingerprinter for the baseline comparison.
        bundle_id: Target app.
        url_schemes: Declared URL schemes; the first one is the alternate
            launch path when the launch command fails.
        max_attempts: Number of verification polls.
        interval: Delay before each poll, in seconds.
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        driver: DeviceDriver,
        fingerprinter: SceneFingerprinter,
        bundle_id: str,
        url_schemes: list[str] | None = None,
        max_attempts: int = 10,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.driver = driver
        self.fingerprinter = fingerprinter
        self.bundle_id = bundle_id
        self.url_schemes = list(url_schemes or [])
        self.max_attempts = max_attempts
        self.interval = interval
        self.sleep = sleep

        self.state = LaunchState.NOT_LAUNCHED
        self.history: list[LaunchState] = []

    def _transition(self, state: LaunchState) -> None:
        if self.history and self.history[-1] in TERMINAL_STATES:
            raise RuntimeError(f"Launch verifier already finished in {self.history[-1].value}")
        logger.debug(f"Launch state: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _finish(self, state: LaunchState, reason: str, attempts: int, fingerprint: str = "") -> LaunchResult:
        self._transition(state)
        if state is LaunchState.ABORTED:
            logger.error(f"Launch aborted: {reason}")
        else:
            logger.info(f"App in foreground: {reason}")
        return LaunchResult(
            state=state,
            reason=reason,
            attempts=attempts,
            fingerprint=fingerprint,
            history=list(self.history),
        )

    def _start(self, args: list[str] | tuple[str, ...]) -> bool:
        """Issue the launch command, falling back to opening the app's scheme."""
        if self.driver.launch(self.bundle_id, args):
            return True

        if self.url_schemes:
            url = f"{self.url_schemes[0]}://"
            logger.warning(f"Launch command failed, trying {url}")
            return self.driver.open_url(url)

        logger.warning("Launch command failed and no URL scheme to fall back on")
        return False

    def launch(self, args: list[str] | tuple[str, ...] = ()) -> LaunchResult:
        """Launch the app (terminating any running instance) and verify it.

        Args:
            args: Extra command-line arguments for the app.

        Returns:
            LaunchResult in ``READY`` or ``ABORTED`` state.
        """
        self.history = []
        self.state = LaunchState.NOT_LAUNCHED
        self.history.append(self.state)

        suffix = f" with {' '.join(args)}" if args else ""
        logger.info(f"Launching app: {self.bundle_id}{suffix}")

        self.driver.terminate(self.bundle_id)
        self.sleep(self.interval)
        baseline = self.fingerprinter.capture()

        self._transition(LaunchState.LAUNCHING)
        if not self._start(args):
            return self._finish(LaunchState.ABORTED, "launch command failed", attempts=0)

        self._transition(LaunchState.VERIFYING_FOREGROUND)
        running = False
        home_screen = True
        fingerprint = ""

        for attempt in range(1, self.max_attempts + 1):
            self.sleep(self.interval)

            running = self.driver.query_process_running(self.bundle_id)

            if self.driver.query_foreground_app() == self.bundle_id:
                return self._finish(
                    LaunchState.READY,
                    "foreground app query names the bundle",
                    attempt,
                    self.fingerprinter.capture(),
                )

            home_screen = self.driver.is_home_screen_frontmost()
            fingerprint = self.fingerprinter.capture()
            if not home_screen and self.fingerprinter.compare(baseline, fingerprint) is SceneChange.CHANGED:
                return self._finish(
                    LaunchState.READY,
                    "screen changed from home screen baseline",
                    attempt,
                    fingerprint,
                )

            logger.debug(
                f"Verify {attempt}/{self.max_attempts}: running={running} home_screen={home_screen}"
            )

        if home_screen:
            return self._finish(
                LaunchState.ABORTED,
                f"home screen still frontmost after {self.max_attempts} attempts",
                self.max_attempts,
            )
        if not running:
            return self._finish(
                LaunchState.ABORTED,
                f"process not running after {self.max_attempts} attempts",
                self.max_attempts,
            )

        logger.warning("Foreground not positively confirmed; process is up and home screen is not frontmost")
        return self._finish(
            LaunchState.READY,
            "process running, home screen not frontmost",
            self.max_attempts,
            fingerprint,
        )
