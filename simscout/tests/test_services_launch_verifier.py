"""
Tests for the launch verification state machine.
"""

import pytest

from simscout.models.schemas import LaunchState
from simscout.services.fingerprinter import SceneFingerprinter
from simscout.services.launch_verifier import LaunchVerifier
from simscout.tests.conftest import BUNDLE_ID, FakeSimulator


@pytest.fixture
def make_verifier(tmp_path, fake_sleep):
    """Factory binding a verifier to a given fake simulator."""

    def _make(simulator, url_schemes=None, max_attempts=5):
        fingerprinter = SceneFingerprinter(simulator, tmp_path, sleep=fake_sleep)
        return LaunchVerifier(
            simulator,
            fingerprinter,
            BUNDLE_ID,
            url_schemes=url_schemes,
            max_attempts=max_attempts,
            interval=1.0,
            sleep=fake_sleep,
        )

    return _make


class TestLaunchVerifier:
    """Tests for LaunchVerifier.launch."""

    def test_ready_when_screen_leaves_home(self, make_verifier):
        """Test a changed screen with home not frontmost is READY."""
        simulator = FakeSimulator(screen="app")
        verifier = make_verifier(simulator)

        result = verifier.launch()

        assert result.ready
        assert result.attempts == 1
        assert result.fingerprint
        assert result.history == [
            LaunchState.NOT_LAUNCHED,
            LaunchState.LAUNCHING,
            LaunchState.VERIFYING_FOREGROUND,
            LaunchState.READY,
        ]
        assert verifier.state is LaunchState.READY

    def test_terminates_before_launch(self, make_verifier):
        """Test a running instance is stopped so the baseline is the home screen."""
        simulator = FakeSimulator(screen="app")
        make_verifier(simulator).launch(["-skipOnboarding"])

        assert simulator.calls[0] == ("terminate", BUNDLE_ID)
        assert simulator.launches() == [("-skipOnboarding",)]

    def test_ready_when_foreground_query_names_bundle(self, make_verifier):
        """Test the foreground app query alone confirms the launch."""
        simulator = FakeSimulator(launch_screen="home", foreground_app=BUNDLE_ID)
        result = make_verifier(simulator).launch()

        assert result.ready
        assert "foreground" in result.reason

    def test_aborted_when_home_screen_stays_frontmost(self, make_verifier, sleeps):
        """Test SpringBoard frontmost for the whole budget aborts."""
        simulator = FakeSimulator(home_frontmost=True)
        result = make_verifier(simulator, max_attempts=4).launch()

        assert result.state is LaunchState.ABORTED
        assert "home screen" in result.reason
        assert result.attempts == 4
        assert result.history[-1] is LaunchState.ABORTED
        # one settle before the baseline plus one per verification poll
        assert sleeps.count(1.0) == 5

    def test_screen_change_ignored_while_home_frontmost(self, make_verifier):
        """Test a changing frame does not count while the home screen is up."""
        simulator = FakeSimulator(launch_screen="springboard_animation", home_frontmost=True)
        result = make_verifier(simulator).launch()

        assert result.state is LaunchState.ABORTED

    def test_falls_back_to_url_scheme(self, make_verifier):
        """Test a failed launch command retries through the app's scheme."""
        simulator = FakeSimulator(
            launch_ok=False,
            on_action=lambda sim, action: "app" if action[0] == "open_url" else None,
        )
        result = make_verifier(simulator, url_schemes=["testapp", "other"]).launch()

        assert result.ready
        assert simulator.opened_urls() == ["testapp://"]

    def test_aborted_when_launch_fails_without_scheme(self, make_verifier):
        """Test a failed launch with no fallback aborts immediately."""
        simulator = FakeSimulator(launch_ok=False)
        result = make_verifier(simulator).launch()

        assert result.state is LaunchState.ABORTED
        assert result.reason == "launch command failed"
        assert result.attempts == 0
        assert LaunchState.VERIFYING_FOREGROUND not in result.history

    def test_aborted_when_process_never_runs(self, make_verifier):
        """Test a process that never appears aborts."""
        simulator = FakeSimulator(launch_screen="home", home_frontmost=False, process_running=False)
        result = make_verifier(simulator).launch()

        assert result.state is LaunchState.ABORTED
        assert "process not running" in result.reason

    def test_aborted_when_process_dies_during_verification(self, make_verifier):
        """Test a process seen early but gone on the last poll aborts."""

        class CrashingSimulator(FakeSimulator):
            polls = 0

            def query_process_running(self, bundle_id):
                self.polls += 1
                return self.polls == 1

        simulator = CrashingSimulator(launch_screen="home", home_frontmost=False)
        result = make_verifier(simulator, max_attempts=3).launch()

        assert result.state is LaunchState.ABORTED
        assert "process not running" in result.reason

    def test_degraded_ready(self, make_verifier):
        """Test running process without home screen is READY when the frame never moves."""
        simulator = FakeSimulator(launch_screen="home", home_frontmost=False, process_running=True)
        result = make_verifier(simulator, max_attempts=3).launch()

        assert result.ready
        assert result.attempts == 3

    def test_relaunch_resets_history(self, make_verifier):
        """Test each launch runs a fresh state machine."""
        simulator = FakeSimulator(screen="app")
        verifier = make_verifier(simulator)

        verifier.launch()
        second = verifier.launch()

        assert second.ready
        assert second.history[0] is LaunchState.NOT_LAUNCHED
        assert second.history.count(LaunchState.READY) == 1

    def test_no_transition_after_terminal_state(self, make_verifier):
        """Test a finished state machine refuses further transitions."""
        verifier = make_verifier(FakeSimulator(screen="app"))
        verifier.launch()

        with pytest.raises(RuntimeError):
            verifier._transition(LaunchState.LAUNCHING)
