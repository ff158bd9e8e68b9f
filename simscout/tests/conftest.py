"""Shared fixtures for simscout tests.

``FakeSimulator`` is a scripted ``DeviceDriver``: the screen is a name, each
frame is the bytes ``frame:<name>``, and an optional ``on_action`` callback
decides which screen an interaction leads to.
"""

from pathlib import Path
from typing import Callable

import pytest

from simscout.config import ExplorerFeatures, RunConfig
from simscout.models.schemas import DeviceProfile, PersistedPreference
from simscout.services.fingerprinter import SceneFingerprinter
from simscout.services.session import ExplorationSession
from simscout.services.simulator_driver import DeviceDriver

BUNDLE_ID = "com.example.testapp"


class FakeSimulator(DeviceDriver):
    """In-memory simulator for exercising the explorer without Xcode."""

    def __init__(
        self,
        screen: str = "home",
        on_action: Callable[["FakeSimulator", tuple], str | None] | None = None,
        launch_screen: str | None = "app",
        launch_ok: bool = True,
        open_url_ok: bool = True,
        capture_ok: bool = True,
        empty_frames: bool = False,
        foreground_app: str | None = None,
        home_frontmost: bool | None = None,
        process_running: bool | None = None,
    ):
        self.screen = screen
        self.on_action = on_action
        self.launch_screen = launch_screen
        self.launch_ok = launch_ok
        self.open_url_ok = open_url_ok
        self.capture_ok = capture_ok
        self.empty_frames = empty_frames
        self.foreground_app = foreground_app
        self.home_frontmost = home_frontmost
        self.process_running = process_running

        self.launched = False
        self.calls: list[tuple] = []
        self.preferences: list[PersistedPreference] = []
        self.credential_entries: list[tuple[str, str]] = []
        self.capture_count = 0

    def _act(self, action: tuple) -> None:
        self.calls.append(action)
        if self.on_action:
            new_screen = self.on_action(self, action)
            if new_screen is not None:
                self.screen = new_screen

    def taps(self) -> list[tuple[int, int]]:
        return [(c[1], c[2]) for c in self.calls if c[0] == "tap"]

    def opened_urls(self) -> list[str]:
        return [c[1] for c in self.calls if c[0] == "open_url"]

    def launches(self) -> list[tuple[str, ...]]:
        return [c[2] for c in self.calls if c[0] == "launch"]

    def tap(self, x: int, y: int) -> None:
        self._act(("tap", x, y))

    def swipe(self, start: tuple[int, int], end: tuple[int, int]) -> None:
        self._act(("swipe", start, end))

    def type_text(self, text: str) -> None:
        self._act(("type", text))

    def capture_frame(self, path: str) -> bool:
        self.capture_count += 1
        if not self.capture_ok:
            return False
        data = b"" if self.empty_frames else f"frame:{self.screen}".encode()
        Path(path).write_bytes(data)
        return True

    def launch(self, bundle_id: str, args=()) -> bool:
        self.calls.append(("launch", bundle_id, tuple(args)))
        if not self.launch_ok:
            return False
        self.launched = True
        if self.launch_screen is not None:
            self.screen = self.launch_screen
        if self.on_action:
            self._act(("launched", bundle_id, tuple(args)))
        return True

    def open_url(self, url: str) -> bool:
        if not self.open_url_ok:
            self.calls.append(("open_url", url))
            return False
        self._act(("open_url", url))
        return True

    def terminate(self, bundle_id: str) -> None:
        self.calls.append(("terminate", bundle_id))
        self.launched = False
        self.screen = "home"

    def query_process_running(self, bundle_id: str) -> bool:
        if self.process_running is not None:
            return self.process_running
        return self.launched or self.screen != "home"

    def query_foreground_app(self) -> str | None:
        return self.foreground_app

    def is_home_screen_frontmost(self) -> bool:
        if self.home_frontmost is not None:
            return self.home_frontmost
        return self.screen == "home"

    def write_persisted_preference(self, bundle_id: str, preference: PersistedPreference) -> bool:
        self.preferences.append(preference)
        return True

    def write_credential_store_entry(self, bundle_id: str, key: str, value: str) -> bool:
        self.credential_entries.append((key, value))
        return True


@pytest.fixture
def sleeps() -> list[float]:
    """Records requested sleeps instead of sleeping."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def device() -> DeviceProfile:
    return DeviceProfile(name="iPhone 15 Pro", width=393, height=852, tab_bar_y=820)


@pytest.fixture
def simulator() -> FakeSimulator:
    return FakeSimulator(screen="app")


@pytest.fixture
def fingerprinter(simulator, tmp_path, fake_sleep) -> SceneFingerprinter:
    return SceneFingerprinter(simulator, tmp_path, sleep=fake_sleep)


@pytest.fixture
def session(tmp_path, fingerprinter) -> ExplorationSession:
    return ExplorationSession(tmp_path, fingerprinter)


@pytest.fixture
def make_run_config(tmp_path, device):
    """Factory for RunConfig objects pointing at a temporary output dir."""

    def _make(**overrides) -> RunConfig:
        features = overrides.pop("features", ExplorerFeatures())
        values = dict(
            device_name=device.name,
            bundle_id=BUNDLE_ID,
            output_dir=tmp_path / "screenshots",
            device=device,
            features=features,
        )
        values.update(overrides)
        return RunConfig(**values)

    return _make
