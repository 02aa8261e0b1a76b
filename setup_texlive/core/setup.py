"""Cold-or-warm installation cycle."""

from __future__ import annotations

import os
from collections.abc import MutableMapping
from dataclasses import dataclass
from pathlib import Path

import structlog

from setup_texlive.core.cache import (
    BlobStore,
    CacheKeyManager,
    CacheService,
    LocalBlobStore,
    save_cache,
)
from setup_texlive.core.capabilities import supports
from setup_texlive.core.config import AppConfig, CacheConfig, SetupConfig, init_installer_env
from setup_texlive.core.ctan import CTANClient
from setup_texlive.core.install_tl import Acquirer
from setup_texlive.core.installer import InstallOrchestrator
from setup_texlive.core.process import CommandRunner, run_command
from setup_texlive.core.profile import Profile
from setup_texlive.core.releases import VersionCatalog, resolve_version
from setup_texlive.core.state import SaveState
from setup_texlive.core.tlmgr import Tlmgr
from setup_texlive.core.tlnet import RepositoryLocator
from setup_texlive.core.tool_cache import ToolCache
from setup_texlive.core.types import ReleaseWindow, Version
from setup_texlive.core.update import TLCONTRIB_TAG, UpdateOrchestrator, adjust_texmf

logger = structlog.get_logger()


@dataclass(frozen=True)
class SetupResult:
    """What a run reports to the caller."""

    version: Version
    cache_hit: bool
    cache_restored: bool
    repository: str | None = None


def set_output(name: str, value: object, environ: MutableMapping[str, str] | None = None) -> None:
    """Write a step output to ``GITHUB_OUTPUT`` when running in a workflow."""
    environ = os.environ if environ is None else environ
    text = str(value).lower() if isinstance(value, bool) else str(value)
    target = environ.get("GITHUB_OUTPUT")
    if target:
        with open(target, "a", encoding="utf-8") as f:
            f.write(f"{name}={text}\n")
    logger.debug("output", name=name, value=text)


def adjust_inputs(config: SetupConfig, version: Version, window: ReleaseWindow) -> SetupConfig:
    """Drop options that do not apply to an older release."""
    if version >= window.latest:
        return config
    updates: dict[str, bool] = {}
    if config.tlcontrib:
        logger.warning("tlcontrib_ignored", note="TLContrib cannot be used with an older version of TeX Live")
        updates["tlcontrib"] = False
    if config.update_all_packages and not (
        version < window.previous and window.new_version_released
    ):
        logger.info("update_all_packages_ignored", note="`update-all-packages` is ignored for older versions")
        updates["update_all_packages"] = False
    return config.model_copy(update=updates) if updates else config


def run_setup(
    config: SetupConfig,
    app_config: AppConfig | None = None,
    *,
    runner: CommandRunner = run_command,
    ctan: CTANClient | None = None,
    catalog: VersionCatalog | None = None,
    store: BlobStore | None = None,
    keys: CacheKeyManager | None = None,
    environ: MutableMapping[str, str] | None = None,
) -> SetupResult:
    """Install TeX Live or bring a cached installation up to date.

    Args:
        config: Inputs of this run
        app_config: Application configuration
        runner: Process collaborator
        ctan: CTAN client
        catalog: Release catalog
        store: Cache blob store
        keys: Cache key manager
        environ: Environment (defaults to ``os.environ``)

    Returns:
        The resolved version and cache status

    Raises:
        TeXLiveError: If installation or update failed
        ValueError: If an input is invalid
    """
    app_config = app_config or AppConfig()
    environ = os.environ if environ is None else environ
    init_installer_env(environ)

    ctan = ctan or CTANClient(app_config.network)
    catalog = catalog or VersionCatalog(ctan)
    window = catalog.resolve()
    locator = RepositoryLocator(window, ctan)
    acquirer = Acquirer(
        ToolCache(app_config.cache.tool_cache_dir, config.arch),
        config=app_config.network,
        platform=config.platform,
        runner=runner,
    )

    version = resolve_version(
        config.version,
        window,
        repository=config.repository,
        locator=locator,
        probe_installer=acquirer.probe_version,
        platform=config.platform,
        arch=config.arch,
    )
    if config.repository is not None and not supports(version, "repository-override"):
        raise ValueError("Currently `repository` input is only supported with version 2012 or later")
    config = adjust_inputs(config, version, window)
    logger.info("texlive_version", version=version)

    profile = Profile(
        version=version,
        prefix=config.prefix,
        texdir=config.texdir,
        platform=config.platform,
        arch=config.arch,
    )
    cache = CacheService.setup(
        profile.TEXDIR,
        version,
        config.packages,
        enable=config.cache and app_config.cache.enabled,
        store=store or LocalBlobStore(app_config.cache.cache_dir),
        keys=keys or CacheKeyManager(config.platform, config.arch),
        force_update=app_config.cache.force_update or CacheConfig.force_update_from_env(environ),
    )

    repository: str | None = None
    try:
        if cache.enabled:
            cache.restore()

        if not cache.restored:
            logger.info("installation_profile", profile=profile.render())
            report = InstallOrchestrator(locator, acquirer).install(profile, config.repository)
            repository = report.repository.url

        tlmgr = Tlmgr(version, profile.TEXDIR, runner=runner, ctan=ctan, environ=environ)
        tlmgr.add_path()

        if cache.restored:
            if version >= window.previous:
                UpdateOrchestrator(tlmgr, locator, window, cache).update(
                    version,
                    config.repository,
                    update_all_packages=config.update_all_packages,
                )
            adjust_texmf(tlmgr, profile)

        if config.tlcontrib:
            logger.info("setting_up_tlcontrib")
            tlmgr.repository_add(locator.contrib(), TLCONTRIB_TAG)
            tlmgr.pinning_add(TLCONTRIB_TAG, "*")

        if not cache.hit and config.packages:
            logger.info("installing_packages", packages=list(config.packages))
            tlmgr.install(config.packages)

        logger.info("tlmgr_version", output=tlmgr.show_version().strip())
        cache.register(app_config.state_path)
    finally:
        set_output("cache-hit", cache.hit, environ)
        set_output("cache-restored", cache.restored, environ)

    set_output("version", version, environ)
    return SetupResult(version, cache.hit, cache.restored, repository)


def run_save(app_config: AppConfig | None = None, store: BlobStore | None = None) -> int | None:
    """Save the installation registered by :func:`run_setup`."""
    app_config = app_config or AppConfig()
    state_path: Path = app_config.state_path
    size = save_cache(state_path, store or LocalBlobStore(app_config.cache.cache_dir))
    SaveState.clear(state_path)
    return size
