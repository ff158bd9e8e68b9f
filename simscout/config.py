"""Configuration settings for simscout exploration runs.

Process-level settings are loaded from environment variables (or a ``.env``
file) using pydantic-settings. ``get_settings()`` returns a cached singleton.

Exploration behaviour is described by ``ExplorerFeatures``: one of the named
presets, optionally overridden by a YAML file. ``build_run_config()`` resolves
settings, features, credentials and the device profile exactly once at start
up; the resulting ``RunConfig`` is passed to the explorer and nothing reads the
environment after that.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from simscout.models.schemas import BypassStrategyName, Credentials, DeviceProfile
from simscout.services.device_profiles import resolve_device_profile

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Run settings loaded from environment variables.

    Attributes:
        device_name: Simulator device name used with ``xcrun simctl``.
        bundle_id: Bundle identifier of the installed app to explore.
        app_path: Path to the extracted ``.app`` bundle, used for URL scheme
            discovery. Optional.
        credentials: JSON object with ``email``, ``password``,
            ``skipButtonText`` and ``deepLink`` keys. Optional.
        output_dir: Directory receiving ``NN_label.png`` files and ``urls.json``.
        features_file: YAML file overriding fields of the selected preset.
        preset: Name of the feature preset (standard, fast, thorough).
        log_level: Logging level (debug, info, warning, error, critical).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    device_name: str = "iPhone 15 Pro Max"
    bundle_id: str = ""
    app_path: str | None = None
    credentials: str | None = None
    output_dir: Path = Path("screenshots")
    features_file: Path | None = None
    preset: str = "standard"
    log_level: str = "info"


class ExplorerFeatures(BaseModel):
    """Feature switches, caps and timings for one exploration run.

    Every loop in the explorer is bounded by one of these caps.
    """

    enable_app_analysis: bool = True
    enable_deep_link_discovery: bool = True
    max_onboarding_screens: int = Field(default=5, ge=0)
    max_stuck_count: int = Field(default=2, ge=1)
    max_grid_discoveries: int = Field(default=5, ge=0)
    tab_candidate_counts: list[Annotated[int, Field(ge=1)]] = Field(default_factory=lambda: [4, 3, 5])
    tab_detail_limit: int = Field(default=2, ge=0)
    bypass_strategy_order: list[BypassStrategyName] = Field(
        default_factory=lambda: list(BypassStrategyName)
    )

    grid_rows: int = Field(default=3, ge=1)
    grid_cols: int = Field(default=2, ge=1)
    chrome_margin: float = Field(default=0.12, ge=0.0, lt=0.5)
    scroll_down_count: int = Field(default=3, ge=0)
    scroll_up_count: int = Field(default=0, ge=0)

    max_launch_argument_attempts: int = Field(default=3, ge=0)
    max_bypass_deep_links: int = Field(default=3, ge=0)
    max_bypass_swipes: int = Field(default=3, ge=0)
    max_priority_deep_links: int = Field(default=5, ge=0)
    max_secondary_deep_links: int = Field(default=6, ge=0)

    launch_verify_attempts: int = Field(default=10, ge=1)
    launch_verify_interval: float = Field(default=1.0, ge=0.0)
    settle_max_polls: int = Field(default=4, ge=2)
    settle_interval: float = Field(default=0.5, ge=0.0)
    capture_latency_polls: int = Field(default=5, ge=1)
    capture_latency_interval: float = Field(default=0.2, ge=0.0)


FEATURE_PRESETS: dict[str, dict] = {
    "standard": {},
    "fast": {
        "enable_app_analysis": False,
        "enable_deep_link_discovery": False,
        "max_onboarding_screens": 2,
        "max_grid_discoveries": 3,
        "tab_candidate_counts": [4],
        "tab_detail_limit": 0,
        "bypass_strategy_order": [
            BypassStrategyName.STATE_INJECTION,
            BypassStrategyName.LAUNCH_ARGUMENTS,
            BypassStrategyName.COORDINATE_PROBE,
            BypassStrategyName.CREDENTIAL_LOGIN,
            BypassStrategyName.EXPLICIT_DEEP_LINK,
        ],
        "max_launch_argument_attempts": 1,
        "scroll_down_count": 2,
    },
    "thorough": {
        "max_onboarding_screens": 8,
        "max_grid_discoveries": 10,
        "tab_candidate_counts": [4, 3, 5, 2],
        "tab_detail_limit": 5,
        "grid_rows": 4,
        "grid_cols": 3,
        "scroll_down_count": 5,
        "scroll_up_count": 2,
        "max_launch_argument_attempts": 6,
        "max_priority_deep_links": 10,
        "max_secondary_deep_links": 8,
    },
}


def load_features(preset: str = "standard", features_file: Path | None = None) -> ExplorerFeatures:
    """Build the feature set from a preset and an optional YAML override file.

    Args:
        preset: Name of an entry in ``FEATURE_PRESETS``.
        features_file: YAML mapping of ``ExplorerFeatures`` fields.

    Returns:
        Validated feature set.

    Raises:
        ValueError: If the preset is unknown or the YAML file is unreadable
            or malformed.
    """
    if preset not in FEATURE_PRESETS:
        raise ValueError(
            f"Unknown preset '{preset}' (expected one of {', '.join(FEATURE_PRESETS)})"
        )

    values = dict(FEATURE_PRESETS[preset])

    if features_file:
        try:
            with open(features_file) as f:
                overrides = yaml.safe_load(f) or {}
        except OSError as e:
            raise ValueError(f"Cannot read features file {features_file}: {e}") from e
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid features file {features_file}: {e}") from e
        if not isinstance(overrides, dict):
            raise ValueError(f"Features file {features_file} must contain a mapping")
        values.update(overrides)

    try:
        return ExplorerFeatures(**values)
    except ValidationError as e:
        raise ValueError(f"Invalid explorer features: {e}") from e


def parse_credentials(raw: str | None) -> Credentials | None:
    """Parse the credentials JSON payload.

    Malformed payloads are logged and treated as absent.
    """
    if not raw or not raw.strip():
        return None
    try:
        return Credentials.model_validate_json(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed credentials payload: {e.error_count()} error(s)")
        return None


@dataclass(frozen=True)
class RunConfig:
    """Everything an exploration run needs, resolved once at start."""

    device_name: str
    bundle_id: str
    output_dir: Path
    device: DeviceProfile
    features: ExplorerFeatures
    app_path: str | None = None
    credentials: Credentials | None = None


def build_run_config(settings: Settings) -> RunConfig:
    """Resolve settings into an immutable run configuration."""
    return RunConfig(
        device_name=settings.device_name,
        bundle_id=settings.bundle_id,
        output_dir=Path(settings.output_dir),
        device=resolve_device_profile(settings.device_name),
        features=load_features(settings.preset, settings.features_file),
        app_path=settings.app_path,
        credentials=parse_credentials(settings.credentials),
    )


@lru_cache
def get_settings() -> Settings:
    """Get or create the cached settings singleton.

    Returns:
        Cached Settings instance.
    """
    return Settings()
