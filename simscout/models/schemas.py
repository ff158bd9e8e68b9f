"""Data models for simulator exploration runs."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SceneChange(str, Enum):
    """Outcome of comparing two screen fingerprints."""
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    INCONCLUSIVE = "inconclusive"   # at least one capture failed


class LaunchState(str, Enum):
    """States of the launch verification state machine."""
    NOT_LAUNCHED = "not_launched"
    LAUNCHING = "launching"
    VERIFYING_FOREGROUND = "verifying_foreground"
    READY = "ready"
    ABORTED = "aborted"


class PreferenceKind(str, Enum):
    """Value types accepted by ``defaults write``."""
    BOOL = "bool"
    STRING = "string"
    INT = "int"


class BypassStrategyName(str, Enum):
    """Onboarding/login bypass strategies, in default execution order."""
    STATE_INJECTION = "state_injection"
    LAUNCH_ARGUMENTS = "launch_arguments"
    DEEP_LINK = "deep_link"
    COORDINATE_PROBE = "coordinate_probe"
    SWIPE_PROBE = "swipe_probe"
    CREDENTIAL_LOGIN = "credential_login"
    EXPLICIT_DEEP_LINK = "explicit_deep_link"


# ============================================================================
# Inputs
# ============================================================================


class Credentials(BaseModel):
    """Optional login/bypass hints supplied with a run.

    Accepts the camelCase keys used by the job payload (``skipButtonText``,
    ``deepLink``) as well as snake_case.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    email: str | None = None
    password: str | None = None
    skip_button_text: str | None = Field(default=None, alias="skipButtonText")
    deep_link: str | None = Field(default=None, alias="deepLink")

    @property
    def has_login(self) -> bool:
        return bool(self.email and self.password)


class AppAnalysis(BaseModel):
    """Navigation surface derived from static app metadata before launch."""

    model_config = ConfigDict(frozen=True)

    bundle_id: str
    app_path: str | None = None
    url_schemes: list[str] = []
    common_screen_keywords: list[str] = []
    deep_link_candidates: list[str] = []

    @property
    def primary_scheme(self) -> str | None:
        return self.url_schemes[0] if self.url_schemes else None


@dataclass(frozen=True)
class DeviceProfile:
    """Screen geometry of a simulated device, in points."""

    name: str
    width: int
    height: int
    tab_bar_y: int

    def point(self, fx: float, fy: float) -> tuple[int, int]:
        """Map a fractional screen position to integer coordinates."""
        return int(self.width * fx), int(self.height * fy)


@dataclass(frozen=True)
class PersistedPreference:
    """A single typed preference written before the app starts."""

    key: str
    kind: PreferenceKind
    value: bool | str | int

    def __post_init__(self):
        expected = {
            PreferenceKind.BOOL: bool,
            PreferenceKind.STRING: str,
            PreferenceKind.INT: int,
        }[self.kind]
        # bool is a subclass of int, so INT must reject it explicitly
        if not isinstance(self.value, expected) or (
            self.kind is PreferenceKind.INT and isinstance(self.value, bool)
        ):
            raise ValueError(
                f"Preference {self.key!r} expects {self.kind.value}, got {self.value!r}"
            )

    def as_defaults_args(self) -> list[str]:
        """Render the value as ``defaults write`` arguments."""
        if self.kind is PreferenceKind.BOOL:
            return ["-bool", "true" if self.value else "false"]
        if self.kind is PreferenceKind.INT:
            return ["-int", str(self.value)]
        return ["-string", str(self.value)]


# ============================================================================
# Results
# ============================================================================


@dataclass(frozen=True)
class ManifestEntry:
    """A stored screenshot."""

    sequence: int
    label: str
    path: Path

    def to_dict(self) -> dict[str, Any]:
        return {"sequence": self.sequence, "label": self.label, "path": str(self.path)}


@dataclass
class ProbeResult:
    """Result of a single before/interact/after probe."""

    change: SceneChange
    before: str
    after: str
    captured: ManifestEntry | None = None

    @property
    def changed(self) -> bool:
        return self.change is SceneChange.CHANGED


@dataclass
class LaunchResult:
    """Final outcome of the launch verifier."""

    state: LaunchState
    reason: str = ""
    attempts: int = 0
    fingerprint: str = ""
    history: list[LaunchState] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.state is LaunchState.READY


@dataclass
class StrategyOutcome:
    """Whether a bypass strategy cleared the onboarding/login wall."""

    name: str
    cleared: bool
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "cleared": self.cleared, "detail": self.detail}


@dataclass
class ExplorationReport:
    """Summary of an exploration run."""

    status: str  # completed, aborted
    bundle_id: str
    device_name: str
    screenshots: list[ManifestEntry] = field(default_factory=list)
    abort_reason: str | None = None
    tab_count: int | None = None
    bypass_outcomes: list[StrategyOutcome] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status,
            "bundle_id": self.bundle_id,
            "device_name": self.device_name,
            "screenshots": [s.to_dict() for s in self.screenshots],
            "abort_reason": self.abort_reason,
            "tab_count": self.tab_count,
            "bypass_outcomes": [o.to_dict() for o in self.bypass_outcomes],
            "elapsed_seconds": round(self.elapsed_seconds, 1),
        }
