"""Exploration run orchestration.

Wires the components of one run together and executes the steps in order:

    1. Static app analysis (URL schemes -> deep link candidates).
    2. Pre-launch state injection.
    3. Verified launch (optionally through skip flags). An aborted launch
       ends the run here with zero screenshots.
    4. Launch screen capture.
    5. Onboarding/login bypass, then the caller's explicit deep link.
    6. UI exploration (deep links, tabs, grid, scroll, header chrome).
    7. ``urls.json`` for the upload step.

Everything after the launch gate is fail-soft; the launch abort is the only
fatal condition.
"""

import logging
import time
from typing import Callable

from simscout.config import RunConfig
from simscout.models.schemas import ExplorationReport
from simscout.services.app_analyzer import analyze_app
from simscout.services.bundle_inspector import read_app_info
from simscout.services.bypass_pipeline import BypassContext, BypassPipeline
from simscout.services.exploration_controller import ExplorationController
from simscout.services.fingerprinter import SceneFingerprinter
from simscout.services.launch_verifier import LaunchAbortError, LaunchVerifier
from simscout.services.session import ExplorationSession
from simscout.services.simulator_driver import DeviceDriver, SimctlDriver

logger = logging.getLogger(__name__)

TOTAL_STEPS = 7


def resolve_bundle_id(config: RunConfig) -> str:
    """Bundle ID from the run config, falling back to the app's Info.plist.

    Raises:
        ValueError: If neither source provides one.
    """
    if config.bundle_id:
        return config.bundle_id

    bundle_id = read_app_info(config.app_path).get("bundle_id")
    if not bundle_id:
        raise ValueError("No bundle identifier configured and none found in Info.plist")
    logger.info(f"Resolved bundle ID from Info.plist: {bundle_id}")
    return bundle_id


class AppExplorer:
    """Runs a full exploration of one app on one simulator.

    Args:
        config: Resolved run configuration.
        driver: Device driver; defaults to ``SimctlDriver`` for the configured
            device.
        sleep: Sleep function shared by all components (injectable for tests).
    """

    def __init__(
        self,
        config: RunConfig,
        driver: DeviceDriver | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.driver = driver or SimctlDriver(config.device_name)
        self.sleep = sleep

    def _step(self, number: int, message: str) -> None:
        logger.info(f"[Step {number}/{TOTAL_STEPS}] {message}")

    def run(self) -> ExplorationReport:
        """Execute the exploration.

        Returns:
            ExplorationReport with status ``completed`` or ``aborted``.
        """
        config = self.config
        features = config.features
        started = time.monotonic()
        bundle_id = resolve_bundle_id(config)

        logger.info("Starting app exploration...")
        logger.info(f"Device: {config.device_name} ({config.device.width}x{config.device.height})")
        logger.info(f"Bundle ID: {bundle_id}")

        self._step(1, "Analyzing app metadata...")
        analysis = analyze_app(config.app_path, bundle_id, enabled=features.enable_app_analysis)

        fingerprinter = SceneFingerprinter(
            self.driver,
            config.output_dir,
            latency_polls=features.capture_latency_polls,
            latency_interval=features.capture_latency_interval,
            settle_max_polls=features.settle_max_polls,
            settle_interval=features.settle_interval,
            sleep=self.sleep,
        )
        session = ExplorationSession(config.output_dir, fingerprinter)
        verifier = LaunchVerifier(
            self.driver,
            fingerprinter,
            bundle_id,
            url_schemes=analysis.url_schemes,
            max_attempts=features.launch_verify_attempts,
            interval=features.launch_verify_interval,
            sleep=self.sleep,
        )
        context = BypassContext(
            driver=self.driver,
            fingerprinter=fingerprinter,
            session=session,
            verifier=verifier,
            analysis=analysis,
            device=config.device,
            credentials=config.credentials,
            max_launch_argument_attempts=features.max_launch_argument_attempts,
            max_bypass_deep_links=features.max_bypass_deep_links,
            max_bypass_swipes=features.max_bypass_swipes,
            sleep=self.sleep,
        )
        pipeline = BypassPipeline(
            context,
            order=features.bypass_strategy_order,
            max_onboarding_screens=features.max_onboarding_screens,
            max_stuck_count=features.max_stuck_count,
        )
        report = ExplorationReport(
            status="completed",
            bundle_id=bundle_id,
            device_name=config.device_name,
        )

        try:
            self._step(2, "Pre-launch onboarding skip...")
            pipeline.run_pre_launch()

            self._step(3, "Launching app...")
            pipeline.launch()
        except LaunchAbortError as e:
            report.status = "aborted"
            report.abort_reason = e.reason
            report.bypass_outcomes = list(pipeline.outcomes)
            report.elapsed_seconds = time.monotonic() - started
            fingerprinter.cleanup()
            logger.error(f"Exploration aborted before capture: {e.reason}")
            return report

        self._step(4, "Capturing launch screen...")
        session.capture_unique("launch")

        self._step(5, "Handling onboarding and login...")
        pipeline.run_post_launch()
        pipeline.run_final()

        self._step(6, "Exploring app content...")
        controller = ExplorationController(
            self.driver, fingerprinter, session, config.device, features
        )
        report.tab_count = controller.run(analysis)

        self._step(7, "Generating URL list...")
        fingerprinter.cleanup()
        session.write_url_manifest()

        report.screenshots = list(session.manifest)
        report.bypass_outcomes = list(pipeline.outcomes)
        report.elapsed_seconds = time.monotonic() - started

        logger.info("Exploration complete!")
        logger.info(f"Total unique screenshots: {session.screenshot_sequence}")
        logger.info(f"Total time: {report.elapsed_seconds:.1f} seconds")
        return report
