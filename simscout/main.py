#!/usr/bin/env python3
"""simscout - explore an installed app in the iOS simulator and capture screenshots.

Settings come from environment variables (DEVICE_NAME, BUNDLE_ID, APP_PATH,
CREDENTIALS, OUTPUT_DIR, FEATURES_FILE, PRESET, LOG_LEVEL) or a ``.env`` file;
command-line flags override them.

Usage:
    simscout --bundle-id com.example.app --app-path extracted/Payload/Example.app
    simscout --device "iPad Pro 13-inch (M4)" --preset thorough --output-dir screenshots/ipad

Exit status is 0 when exploration completes and 2 when the app could not be
confirmed in foreground.
"""

import argparse
import json
import logging
import sys

from simscout.config import FEATURE_PRESETS, build_run_config, get_settings
from simscout.services.explorer import AppExplorer

logger = logging.getLogger(__name__)

EXIT_ABORTED = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="simscout",
        description="Explore an installed app in the iOS simulator and capture de-duplicated screenshots",
    )
    parser.add_argument("--device", dest="device_name", help="Simulator device name or UDID")
    parser.add_argument("--bundle-id", dest="bundle_id", help="Bundle identifier of the installed app")
    parser.add_argument("--app-path", dest="app_path", help="Path to the extracted .app bundle")
    parser.add_argument("--output-dir", dest="output_dir", help="Directory for screenshots and urls.json")
    parser.add_argument("--credentials", help="Credentials JSON (email, password, skipButtonText, deepLink)")
    parser.add_argument("--features", dest="features_file", help="YAML file overriding explorer features")
    parser.add_argument("--preset", choices=sorted(FEATURE_PRESETS), help="Explorer feature preset")
    parser.add_argument("--log-level", dest="log_level", help="Logging level (debug, info, warning, error)")
    parser.add_argument("--report", action="store_true", help="Print the run report as JSON")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    overrides = {
        key: value
        for key, value in vars(args).items()
        if key != "report" and value is not None
    }
    settings = get_settings().model_copy(update=overrides)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = build_run_config(settings)
        report = AppExplorer(config).run()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    if args.report:
        print(json.dumps(report.to_dict(), indent=2))

    if report.status == "aborted":
        logger.error(f"No screenshots captured: {report.abort_reason}")
        return EXIT_ABORTED
    return 0


if __name__ == "__main__":
    sys.exit(main())
