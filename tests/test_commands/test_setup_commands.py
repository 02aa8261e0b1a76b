"""Tests for setup command module."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from setup_texlive.__main__ import main
from setup_texlive.core.errors import CLASSIFIER, TeXLiveError
from setup_texlive.core.setup import SetupResult
from setup_texlive.core.types import Version


class TestSetupCommands:
    """Test install, save, keys and releases commands."""

    @pytest.fixture
    def runner(self):
        """Create CLI test runner."""
        return CliRunner()

    @pytest.fixture
    def config_file(self, temp_dir):
        """Configuration keeping all state inside the test directory."""
        path = temp_dir / "config.json"
        path.write_text(json.dumps({
            "data_dir": str(temp_dir / "data"),
            "cache": {
                "cache_dir": str(temp_dir / "blobs"),
                "tool_cache_dir": str(temp_dir / "tools"),
            },
        }))
        return path

    def invoke(self, runner, config_file, *args):
        return runner.invoke(main, ["--config", str(config_file), "--output", "json", *args])

    def test_install(self, runner, config_file, temp_dir):
        """Test that inputs reach run_setup and results are reported."""
        result_value = SetupResult(Version("2025"), True, True)
        with patch("setup_texlive.commands.setup.run_setup", return_value=result_value) as mock_run:
            result = self.invoke(
                runner, config_file, "install",
                "--version", "2025",
                "--packages", "xcolor amsmath",
                "--prefix", str(temp_dir / "tl"),
                "--tlcontrib",
            )

        assert result.exit_code == 0
        setup_config = mock_run.call_args.args[0]
        assert setup_config.version == "2025"
        assert setup_config.packages == ("amsmath", "xcolor")
        assert setup_config.tlcontrib
        assert json.loads(result.stdout) == {
            "version": "2025",
            "cache_hit": True,
            "cache_restored": True,
            "repository": None,
        }

    def test_install_rich_output(self, runner, temp_dir):
        """Test the table output."""
        result_value = SetupResult(Version("2025"), False, False, "https://example.com/tlnet/")
        with patch("setup_texlive.commands.setup.run_setup", return_value=result_value):
            result = runner.invoke(main, ["--verbose", "install", "--prefix", str(temp_dir)])
        assert result.exit_code == 0
        assert "2025" in result.output
        assert "https://example.com/tlnet/" in result.output

    def test_install_failure(self, runner, config_file, temp_dir):
        """Test that classified failures exit with status 1 and a note."""
        error = TeXLiveError(CLASSIFIER.download_failed("https://example.com/").error)
        with patch("setup_texlive.commands.setup.run_setup", side_effect=error):
            result = self.invoke(runner, config_file, "install", "--prefix", str(temp_dir))
        assert result.exit_code == 1
        assert "Failed to download install-tl" in result.output

    def test_install_invalid_repository(self, runner, config_file, temp_dir):
        """Test that input errors exit with status 1."""
        with patch("setup_texlive.commands.setup.run_setup") as mock_run:
            result = self.invoke(
                runner, config_file, "install",
                "--prefix", str(temp_dir), "--repository", "ftp://example.com/",
            )
        assert result.exit_code == 1
        mock_run.assert_not_called()

    def test_save(self, runner, config_file):
        """Test reporting a saved entry."""
        with patch("setup_texlive.commands.setup.run_save", return_value=123):
            result = self.invoke(runner, config_file, "save")
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"saved": True, "size": 123}

    def test_save_nothing(self, runner, config_file):
        with patch("setup_texlive.commands.setup.run_save", return_value=None):
            result = self.invoke(runner, config_file, "save")
        assert json.loads(result.stdout) == {"saved": False, "size": None}

    def test_keys(self, runner, config_file):
        """Test showing cache keys without network access."""
        result = self.invoke(
            runner, config_file, "keys", "2025", "--packages", "amsmath", "--offline"
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["secondary"] == "setup-texlive-action-linux-x64-2025-"
        assert data["primary"].startswith(data["secondary"])
        assert data["old_primary"].startswith("setup-texlive-linux-x64-2025-")
        assert data["matched"] is None
        assert data["status"] == "miss"

    def test_keys_invalid_version(self, runner, config_file):
        result = self.invoke(runner, config_file, "keys", "1999", "--offline")
        assert result.exit_code == 1

    def test_releases(self, runner, config_file):
        """Test the offline release window."""
        result = self.invoke(runner, config_file, "releases", "--offline")
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {
            "previous": "2024",
            "latest": "2025",
            "next": "2026",
            "new_version_released": False,
            "latest_release_date": None,
        }
