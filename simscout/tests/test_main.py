"""
Tests for the command-line entry point.
"""

import json

import pytest

from simscout import main as cli
from simscout.config import get_settings
from simscout.models.schemas import ExplorationReport


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    for var in ("DEVICE_NAME", "BUNDLE_ID", "PRESET", "CREDENTIALS", "FEATURES_FILE"):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_explorer(monkeypatch):
    """Replace AppExplorer, recording the config it receives."""
    seen = {}

    def install(status="completed", abort_reason=None):
        class StubExplorer:
            def __init__(self, config):
                seen["config"] = config

            def run(self):
                return ExplorationReport(
                    status=status,
                    bundle_id=seen["config"].bundle_id,
                    device_name=seen["config"].device_name,
                    abort_reason=abort_reason,
                )

        monkeypatch.setattr(cli, "AppExplorer", StubExplorer)
        return seen

    return install


class TestMain:
    """Tests for main()."""

    def test_flags_override_settings(self, fake_explorer, tmp_path):
        seen = fake_explorer()

        code = cli.main([
            "--bundle-id", "com.example.testapp",
            "--device", "iPhone 15 Pro",
            "--output-dir", str(tmp_path),
            "--preset", "fast",
        ])

        assert code == 0
        config = seen["config"]
        assert config.bundle_id == "com.example.testapp"
        assert config.device.width == 393
        assert config.features.tab_candidate_counts == [4]

    def test_aborted_exit_code(self, fake_explorer):
        fake_explorer(status="aborted", abort_reason="home screen still frontmost")

        assert cli.main(["--bundle-id", "com.example.testapp"]) == cli.EXIT_ABORTED

    def test_invalid_features_file(self, fake_explorer, tmp_path):
        fake_explorer()
        path = tmp_path / "features.yaml"
        path.write_text("grid_rows: -1\n")

        assert cli.main(["--bundle-id", "com.example.testapp", "--features", str(path)]) == 1

    def test_missing_features_file(self, fake_explorer, tmp_path):
        fake_explorer()
        missing = tmp_path / "missing.yaml"

        assert cli.main(["--bundle-id", "com.example.testapp", "--features", str(missing)]) == 1

    def test_report_printed(self, fake_explorer, capsys):
        fake_explorer()

        cli.main(["--bundle-id", "com.example.testapp", "--report"])

        data = json.loads(capsys.readouterr().out)
        assert data["status"] == "completed"
        assert data["bundle_id"] == "com.example.testapp"

    def test_unknown_preset_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            cli.main(["--preset", "exhaustive"])
