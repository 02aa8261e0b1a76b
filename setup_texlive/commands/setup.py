"""Setup commands: install, save, cache keys and release information."""

from __future__ import annotations

import json
import sys
from typing import Any

import click
import structlog
from rich.console import Console
from rich.table import Table

from setup_texlive.core.cache import CacheKeyManager, LocalBlobStore
from setup_texlive.core.config import AppConfig, SetupConfig
from setup_texlive.core.ctan import CTANClient
from setup_texlive.core.errors import TeXLiveError
from setup_texlive.core.releases import VersionCatalog, resolve_version
from setup_texlive.core.setup import run_save, run_setup
from setup_texlive.core.types import ReleaseWindow

logger = structlog.get_logger()


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool]:
    """Extract common context objects."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    verbose: bool = ctx.obj["verbose"]
    return config, console, verbose


def _output_json(data: dict[str, Any]) -> None:
    """Output data as JSON."""
    print(json.dumps(data, indent=2, default=str))


@click.command()
@click.option("--version", "version_spec", type=str, default=None,
              help="TeX Live version (year or 'latest')")
@click.option("--packages", type=str, default=None,
              help="Packages to install, in DEPENDS.txt format")
@click.option("--package-file", type=str, default=None,
              help="Glob pattern of DEPENDS.txt files")
@click.option("--prefix", type=click.Path(), default=None,
              help="Installation prefix")
@click.option("--texdir", type=click.Path(), default=None,
              help="Installation directory; overrides --prefix")
@click.option("--repository", type=str, default=None,
              help="Package repository URL")
@click.option("--tlcontrib/--no-tlcontrib", default=False,
              help="Set up TLContrib")
@click.option("--update-all-packages/--no-update-all-packages", default=False,
              help="Update all packages after a cache restore")
@click.option("--cache/--no-cache", default=True,
              help="Enable caching")
@click.pass_context
def install(
    ctx: click.Context,
    version_spec: str | None,
    packages: str | None,
    package_file: str | None,
    prefix: str | None,
    texdir: str | None,
    repository: str | None,
    tlcontrib: bool,
    update_all_packages: bool,
    cache: bool,
) -> None:
    """Install TeX Live, or restore and update a cached installation."""
    config, console, verbose = _get_context_objects(ctx)

    try:
        setup_config = SetupConfig.from_inputs(
            version=version_spec,
            packages=packages,
            package_file=package_file,
            prefix=prefix,
            texdir=texdir,
            repository=repository,
            tlcontrib=tlcontrib,
            update_all_packages=update_all_packages,
            cache=cache,
        )
        result = run_setup(setup_config, config)
    except TeXLiveError as e:
        logger.error("setup_failed", kind=e.kind.value, error=str(e), note=e.error.note)
        console.print(f"[red]Error: {e}[/red]")
        if e.error.note:
            console.print(f"[yellow]{e.error.note}[/yellow]")
        sys.exit(1)
    except Exception as e:
        logger.error("setup_failed", error=str(e))
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if config.output_format == "json":
        _output_json({
            "version": result.version,
            "cache_hit": result.cache_hit,
            "cache_restored": result.cache_restored,
            "repository": result.repository,
        })
        return

    table = Table(title="TeX Live")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Version", result.version)
    table.add_row("Cache hit", str(result.cache_hit).lower())
    table.add_row("Cache restored", str(result.cache_restored).lower())
    if verbose and result.repository:
        table.add_row("Repository", result.repository)
    console.print(table)


@click.command()
@click.pass_context
def save(ctx: click.Context) -> None:
    """Save the installation to the cache, as registered by `install`."""
    config, console, verbose = _get_context_objects(ctx)

    size = run_save(config)
    if config.output_format == "json":
        _output_json({"saved": size is not None, "size": size})
    elif size is not None:
        console.print(f"[green]Saved {size} bytes to cache[/green]")
    elif verbose:
        console.print("[dim]Nothing saved[/dim]")


@click.command()
@click.argument("version_spec", type=str)
@click.option("--packages", type=str, default=None,
              help="Packages, in DEPENDS.txt format")
@click.option("--package-file", type=str, default=None,
              help="Glob pattern of DEPENDS.txt files")
@click.option("--offline", is_flag=True, help="Do not check CTAN for a new release")
@click.pass_context
def keys(
    ctx: click.Context,
    version_spec: str,
    packages: str | None,
    package_file: str | None,
    offline: bool,
) -> None:
    """Show the cache keys for VERSION_SPEC and a package set."""
    config, console, verbose = _get_context_objects(ctx)

    try:
        setup_config = SetupConfig.from_inputs(
            version=version_spec, packages=packages, package_file=package_file, cache=True
        )
        catalog = VersionCatalog(CTANClient(config.network))
        window = catalog.resolve() if not offline else _offline_window(catalog)
        version = resolve_version(
            setup_config.version, window,
            platform=setup_config.platform, arch=setup_config.arch,
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    manager = CacheKeyManager(setup_config.platform, setup_config.arch)
    cache_keys = manager.compute_keys(version, setup_config.packages)
    store = LocalBlobStore(config.cache.cache_dir)
    matched = store.find(cache_keys.unique, cache_keys.restore_keys)
    status = manager.classify(matched, cache_keys)

    if config.output_format == "json":
        _output_json({
            "version": version,
            "secondary": cache_keys.secondary,
            "primary": cache_keys.primary,
            "old_secondary": cache_keys.old_secondary,
            "old_primary": cache_keys.old_primary,
            "matched": matched,
            "status": status.value,
        })
        return

    table = Table(title=f"Cache keys for TeX Live {version}")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("primary", cache_keys.primary)
    table.add_row("secondary", cache_keys.secondary)
    if verbose:
        table.add_row("old primary", cache_keys.old_primary)
        table.add_row("old secondary", cache_keys.old_secondary)
    table.add_row("matched", matched or "-")
    table.add_row("status", status.value)
    console.print(table)


def _offline_window(catalog: VersionCatalog) -> ReleaseWindow:
    """Release window from the bundled release data only."""
    return ReleaseWindow.around(catalog.latest)


@click.command()
@click.option("--offline", is_flag=True, help="Do not check CTAN for a new release")
@click.pass_context
def releases(ctx: click.Context, offline: bool) -> None:
    """Show the previous, latest and next TeX Live releases."""
    config, console, _ = _get_context_objects(ctx)

    catalog = VersionCatalog(CTANClient(config.network))
    window = _offline_window(catalog) if offline else catalog.resolve()

    if config.output_format == "json":
        _output_json({
            "previous": window.previous,
            "latest": window.latest,
            "next": window.next,
            "new_version_released": window.new_version_released,
            "latest_release_date": window.latest_release_date,
        })
        return

    table = Table(title="TeX Live releases")
    table.add_column("Release", style="cyan")
    table.add_column("Version", style="magenta")
    table.add_row("previous", window.previous)
    table.add_row("latest", window.latest)
    table.add_row("next", window.next)
    if window.latest_release_date is not None:
        table.add_row("released", window.latest_release_date.isoformat())
    console.print(table)
