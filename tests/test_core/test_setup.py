"""Tests for setup.py module."""

from unittest.mock import MagicMock, patch

import pytest

from setup_texlive.core.cache import CacheKeyManager, digest
from setup_texlive.core.config import AppConfig, CacheConfig, NetworkConfig, SetupConfig
from setup_texlive.core.errors import CLASSIFIER, TeXLiveError
from setup_texlive.core.installer import InstallReport
from setup_texlive.core.setup import adjust_inputs, run_save, run_setup, set_output
from setup_texlive.core.state import SaveState
from setup_texlive.core.types import Arch, Platform, ReleaseWindow, Repository, RepositoryKind, Version

MIRROR = "https://ctan.example.org/"
REPORT = InstallReport(
    Repository(MIRROR + "systems/texlive/tlnet/", RepositoryKind.MIRROR), []
)


@pytest.fixture
def app_config(temp_dir):
    return AppConfig(
        data_dir=temp_dir / "data",
        cache=CacheConfig(cache_dir=temp_dir / "blobs", tool_cache_dir=temp_dir / "tools"),
    )


@pytest.fixture
def environ(temp_dir):
    return {"RUNNER_TEMP": str(temp_dir), "GITHUB_OUTPUT": str(temp_dir / "output")}


@pytest.fixture
def keys():
    return CacheKeyManager(Platform.LINUX, Arch.X64, id_factory=lambda: "feed")


@pytest.fixture
def store():
    store = MagicMock()
    store.is_available.return_value = True
    store.restore.return_value = None
    return store


@pytest.fixture
def collaborators():
    """Patch the installer, tlmgr and updater used by run_setup."""
    with (
        patch("setup_texlive.core.setup.InstallOrchestrator") as orchestrator,
        patch("setup_texlive.core.setup.Tlmgr") as tlmgr_class,
        patch("setup_texlive.core.setup.UpdateOrchestrator") as updater,
        patch("setup_texlive.core.setup.adjust_texmf") as adjust,
    ):
        orchestrator.return_value.install.return_value = REPORT
        tlmgr_class.return_value.show_version.return_value = "tlmgr revision 1\n"
        yield {
            "orchestrator": orchestrator,
            "tlmgr": tlmgr_class.return_value,
            "updater": updater,
            "adjust": adjust,
        }


def make_config(temp_dir, **kwargs) -> SetupConfig:
    kwargs.setdefault("version", "2025")
    return SetupConfig(prefix=temp_dir / "texlive", **kwargs)


def run(config, app_config, store, keys, environ, window=None):
    ctan = MagicMock()
    ctan.config = NetworkConfig()
    ctan.resolve_mirror.side_effect = lambda master=False: MIRROR
    catalog = MagicMock()
    catalog.resolve.return_value = window or ReleaseWindow.around(Version("2025"))
    return run_setup(
        config, app_config,
        ctan=ctan, catalog=catalog, store=store, keys=keys, environ=environ,
    )


def outputs(temp_dir) -> dict[str, str]:
    lines = (temp_dir / "output").read_text().splitlines()
    return dict(line.split("=", 1) for line in lines)


class TestRunSetup:
    """Test the install-or-restore cycle."""

    def test_cold_install(self, temp_dir, app_config, store, keys, environ, collaborators):
        """Test a fresh installation with packages."""
        config = make_config(temp_dir, packages="amsmath xcolor")

        result = run(config, app_config, store, keys, environ)

        assert result.version == "2025"
        assert not result.cache_hit
        assert not result.cache_restored
        assert result.repository == REPORT.repository.url
        collaborators["orchestrator"].return_value.install.assert_called_once()
        collaborators["tlmgr"].add_path.assert_called_once()
        collaborators["tlmgr"].install.assert_called_once_with(("amsmath", "xcolor"))
        collaborators["updater"].assert_not_called()
        assert outputs(temp_dir) == {
            "cache-hit": "false", "cache-restored": "false", "version": "2025",
        }
        state = SaveState.read(app_config.state_path)
        primary = keys.compute_keys("2025", ["amsmath", "xcolor"]).primary
        assert state == SaveState(key=primary, target=str(temp_dir / "texlive" / "2025"))

    def test_cache_hit(self, temp_dir, app_config, store, keys, environ, collaborators):
        """Test a restored installation with the same packages."""
        config = make_config(temp_dir, packages="amsmath")
        primary = keys.compute_keys("2025", ["amsmath"]).primary
        store.restore.return_value = primary

        result = run(config, app_config, store, keys, environ)

        assert result.cache_hit
        assert result.cache_restored
        assert result.repository is None
        collaborators["orchestrator"].assert_not_called()
        collaborators["updater"].return_value.update.assert_called_once_with(
            "2025", None, update_all_packages=False
        )
        collaborators["adjust"].assert_called_once()
        collaborators["tlmgr"].install.assert_not_called()
        assert outputs(temp_dir)["cache-hit"] == "true"
        assert SaveState.read(app_config.state_path) == SaveState(key=primary)

    def test_partial_restore(self, temp_dir, app_config, store, keys, environ, collaborators):
        """Test that a restore with other packages installs the missing ones."""
        config = make_config(temp_dir, packages="amsmath")
        store.restore.return_value = "setup-texlive-action-linux-x64-2025-" + digest(["other"])

        result = run(config, app_config, store, keys, environ)

        assert not result.cache_hit
        assert result.cache_restored
        collaborators["orchestrator"].assert_not_called()
        collaborators["updater"].return_value.update.assert_called_once()
        collaborators["tlmgr"].install.assert_called_once_with(("amsmath",))
        assert outputs(temp_dir) == {
            "cache-hit": "false", "cache-restored": "true", "version": "2025",
        }

    def test_old_release_restored_without_update(
        self, temp_dir, app_config, store, keys, environ, collaborators
    ):
        """Test that releases before the previous one are not updated."""
        config = make_config(temp_dir, version="2020")
        store.restore.return_value = keys.compute_keys("2020", []).primary

        run(config, app_config, store, keys, environ)

        collaborators["updater"].assert_not_called()
        collaborators["adjust"].assert_called_once()

    def test_cache_disabled(self, temp_dir, app_config, store, keys, environ, collaborators):
        """Test that a disabled cache is neither restored nor registered."""
        config = make_config(temp_dir, version="latest", cache=False)

        result = run(config, app_config, store, keys, environ)

        store.restore.assert_not_called()
        store.save.assert_not_called()
        collaborators["orchestrator"].return_value.install.assert_called_once()
        assert result.version == "2025"
        assert not result.cache_hit
        assert not result.cache_restored
        assert outputs(temp_dir) == {
            "cache-hit": "false", "cache-restored": "false", "version": "2025",
        }
        assert SaveState.read(app_config.state_path) is None

    def test_old_release_restored_on_secondary_key(
        self, temp_dir, app_config, store, keys, environ, collaborators
    ):
        """Test a release-only match for an old release with packages."""
        config = make_config(temp_dir, version="2015", packages="amsmath")
        store.restore.return_value = "setup-texlive-action-linux-x64-2015-"

        result = run(config, app_config, store, keys, environ)

        assert not result.cache_hit
        assert result.cache_restored
        collaborators["orchestrator"].assert_not_called()
        collaborators["updater"].assert_not_called()
        collaborators["adjust"].assert_called_once()
        collaborators["tlmgr"].install.assert_called_once_with(("amsmath",))
        assert outputs(temp_dir) == {
            "cache-hit": "false", "cache-restored": "true", "version": "2015",
        }
        state = SaveState.read(app_config.state_path)
        assert state.key == keys.compute_keys("2015", ["amsmath"]).primary

    def test_tlcontrib(self, temp_dir, app_config, store, keys, environ, collaborators):
        """Test TLContrib setup for the latest release."""
        config = make_config(temp_dir, tlcontrib=True)

        run(config, app_config, store, keys, environ)

        tlmgr = collaborators["tlmgr"]
        tlmgr.repository_add.assert_called_once_with(
            MIRROR + "systems/texlive/tlcontrib/", "tlcontrib"
        )
        tlmgr.pinning_add.assert_called_once_with("tlcontrib", "*")

    def test_repository_override_too_old(
        self, temp_dir, app_config, store, keys, environ, collaborators
    ):
        """Test that overrides are rejected before 2012."""
        config = make_config(temp_dir, version="2011", repository="https://example.com/tlnet/")
        with pytest.raises(ValueError, match="2012"):
            run(config, app_config, store, keys, environ)
        collaborators["orchestrator"].assert_not_called()

    def test_install_failure(self, temp_dir, app_config, store, keys, environ, collaborators):
        """Test that failures propagate after the cache outputs are written."""
        error = TeXLiveError(CLASSIFIER.download_failed(MIRROR).error)
        collaborators["orchestrator"].return_value.install.side_effect = error
        config = make_config(temp_dir)

        with pytest.raises(TeXLiveError):
            run(config, app_config, store, keys, environ)

        assert outputs(temp_dir) == {"cache-hit": "false", "cache-restored": "false"}
        assert SaveState.read(app_config.state_path) is None


class TestAdjustInputs:
    """Test options dropped for older releases."""

    def test_latest_unchanged(self, temp_dir, window):
        config = make_config(temp_dir, tlcontrib=True, update_all_packages=True)
        assert adjust_inputs(config, Version("2025"), window) is config

    def test_previous_release(self, temp_dir, window):
        """Test that TLContrib and full updates are dropped."""
        config = make_config(temp_dir, tlcontrib=True, update_all_packages=True)
        adjusted = adjust_inputs(config, Version("2024"), window)
        assert not adjusted.tlcontrib
        assert not adjusted.update_all_packages

    def test_update_all_kept_after_new_release(self, temp_dir):
        """Test that full updates are kept for stale caches of old releases."""
        window = ReleaseWindow.around(Version("2025"), new_version_released=True)
        config = make_config(temp_dir, update_all_packages=True)
        assert adjust_inputs(config, Version("2023"), window).update_all_packages


class TestOutputs:
    """Test step outputs and the save phase."""

    def test_set_output(self, temp_dir):
        environ = {"GITHUB_OUTPUT": str(temp_dir / "output")}
        set_output("cache-hit", True, environ)
        set_output("version", "2025", environ)
        assert outputs(temp_dir) == {"cache-hit": "true", "version": "2025"}

    def test_set_output_outside_workflow(self):
        set_output("version", "2025", {})

    def test_run_save(self, app_config):
        """Test that the state is consumed."""
        SaveState(key="k", target="/tl").write(app_config.state_path)
        store = MagicMock()
        store.save.return_value = 10
        assert run_save(app_config, store) == 10
        assert not app_config.state_path.exists()
