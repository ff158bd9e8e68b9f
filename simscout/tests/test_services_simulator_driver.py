"""
Tests for the xcrun simctl device driver.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from simscout.models.schemas import PersistedPreference, PreferenceKind
from simscout.services.simulator_driver import SimctlDriver

DEVICE = "iPhone 15 Pro"

LAUNCHCTL_OUTPUT = """PID\tStatus\tLabel
412\t0\tUIKitApplication:com.apple.springboard[4f2a][rb-legacy]
913\t0\tUIKitApplication:com.example.testapp[9c1d][rb-legacy]
-\t0\tUIKitApplication:com.example.stopped[77aa][rb-legacy]
88\t0\tcom.apple.backboardd
"""


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def driver():
    return SimctlDriver(DEVICE, timeout=5)


class TestValidation:
    """Tests for argument validation."""

    def test_rejects_shell_metacharacters_in_device_name(self):
        """Test device names cannot inject commands."""
        with pytest.raises(ValueError):
            SimctlDriver("iPhone; rm -rf /")

    def test_rejects_empty_device_name(self):
        with pytest.raises(ValueError):
            SimctlDriver("")

    def test_accepts_udid(self):
        """Test a UDID is a valid device name."""
        assert SimctlDriver("8A4C2F1E-3B5D-4E6F-9A0B-1C2D3E4F5A6B").device_name

    def test_rejects_bad_bundle_id(self, driver):
        """Test bundle identifiers are validated before launch."""
        with patch("subprocess.run") as mock_run:
            with pytest.raises(ValueError):
                driver.launch("com.example.app && reboot")
            mock_run.assert_not_called()


class TestCommands:
    """Tests for the simctl command lines."""

    @patch("subprocess.run")
    def test_tap(self, mock_run, driver):
        mock_run.return_value = completed()
        driver.tap(120, 340)

        args = mock_run.call_args[0][0]
        assert args == ["xcrun", "simctl", "io", DEVICE, "tap", "120", "340"]
        assert "shell" not in mock_run.call_args[1]

    @patch("subprocess.run")
    def test_swipe(self, mock_run, driver):
        mock_run.return_value = completed()
        driver.swipe((10, 20), (30, 40))

        assert mock_run.call_args[0][0] == [
            "xcrun", "simctl", "io", DEVICE, "swipe", "10", "20", "30", "40",
        ]

    @patch("subprocess.run")
    def test_launch_with_arguments(self, mock_run, driver):
        mock_run.return_value = completed()

        assert driver.launch("com.example.testapp", ["-skipOnboarding"]) is True
        assert mock_run.call_args[0][0] == [
            "xcrun", "simctl", "launch", DEVICE, "com.example.testapp", "-skipOnboarding",
        ]

    @patch("subprocess.run")
    def test_launch_failure(self, mock_run, driver):
        mock_run.return_value = completed(returncode=1, stderr="not installed")
        assert driver.launch("com.example.testapp") is False

    @patch("subprocess.run")
    def test_type_text_pastes(self, mock_run, driver):
        """Test text goes through the pasteboard then a paste keystroke."""
        mock_run.return_value = completed()
        driver.type_text("qa@example.com")

        first, second = mock_run.call_args_list
        assert first[0][0] == ["xcrun", "simctl", "pbcopy", DEVICE]
        assert first[1]["input"] == "qa@example.com"
        assert second[0][0] == ["xcrun", "simctl", "io", DEVICE, "keyboard", "paste"]

    @patch("subprocess.run")
    def test_screenshot(self, mock_run, driver):
        mock_run.return_value = completed()

        assert driver.capture_frame("/tmp/frame.png") is True
        assert mock_run.call_args[0][0] == ["xcrun", "simctl", "io", DEVICE, "screenshot", "/tmp/frame.png"]

    @patch("subprocess.run")
    def test_timeout_is_failure(self, mock_run, driver):
        """Test a hung command is reported as failure, not raised."""
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="xcrun", timeout=5)
        assert driver.open_url("testapp://home") is False

    @patch("subprocess.run")
    def test_missing_xcrun_is_failure(self, mock_run, driver):
        mock_run.side_effect = FileNotFoundError("xcrun")
        assert driver.capture_frame("/tmp/frame.png") is False

    @patch("subprocess.run")
    def test_write_preference(self, mock_run, driver):
        mock_run.return_value = completed()
        pref = PersistedPreference("hasSeenOnboarding", PreferenceKind.BOOL, True)

        assert driver.write_persisted_preference("com.example.testapp", pref) is True
        assert mock_run.call_args[0][0] == [
            "xcrun", "simctl", "spawn", DEVICE, "defaults", "write",
            "com.example.testapp", "hasSeenOnboarding", "-bool", "true",
        ]

    @patch("subprocess.run")
    def test_write_credential_entry(self, mock_run, driver):
        mock_run.return_value = completed()

        assert driver.write_credential_store_entry("com.example.testapp", "auth_token", "test_token") is True
        args = mock_run.call_args[0][0]
        assert args[:2] == ["security", "add-generic-password"]
        assert "-U" in args


class TestForegroundQueries:
    """Tests for launchctl based process and foreground detection."""

    @pytest.fixture
    def running(self, driver):
        with patch.object(driver, "_run", MagicMock(return_value=completed(stdout=LAUNCHCTL_OUTPUT))):
            yield driver

    def test_running_process(self, running):
        assert running.query_process_running("com.example.testapp") is True

    def test_stopped_process_not_running(self, running):
        """Test entries without a PID are ignored."""
        assert running.query_process_running("com.example.stopped") is False

    def test_single_third_party_app_is_foreground(self, running):
        assert running.query_foreground_app() == "com.example.testapp"
        assert running.is_home_screen_frontmost() is False

    def test_ambiguous_foreground_counts_as_home_screen(self, driver):
        """Test several third-party apps leave the home screen assumed frontmost."""
        output = LAUNCHCTL_OUTPUT + "914\t0\tUIKitApplication:com.example.other[1111][rb-legacy]\n"
        with patch.object(driver, "_run", MagicMock(return_value=completed(stdout=output))):
            assert driver.query_foreground_app() is None
            assert driver.is_home_screen_frontmost() is True

    def test_query_failure_counts_as_home_screen(self, driver):
        with patch.object(driver, "_run", MagicMock(return_value=None)):
            assert driver.query_process_running("com.example.testapp") is False
            assert driver.is_home_screen_frontmost() is True
