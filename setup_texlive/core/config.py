"""Configuration management for setup-texlive."""

from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path, PurePosixPath
from urllib.parse import urlsplit, urlunsplit

import structlog
from pydantic import BaseModel, Field, field_validator

from setup_texlive.core.depends_txt import collect_packages
from setup_texlive.core.types import Arch, Platform

logger = structlog.get_logger()

FORCE_UPDATE_ENV = "SETUP_TEXLIVE_ACTION_FORCE_UPDATE_CACHE"
DEPRECATED_FORCE_UPDATE_ENV = "SETUP_TEXLIVE_FORCE_UPDATE_CACHE"


class NetworkConfig(BaseModel):
    """Package repository and metadata endpoints."""

    ctan_mirrors: str = Field(
        default="https://mirrors.ctan.org/",
        description="CTAN mirror redirector"
    )
    ctan_master: str = Field(
        default="https://ftp.math.utah.edu/pub/ctan/",
        description="High-availability CTAN origin"
    )
    ctan_api: str = Field(
        default="https://ctan.org/json/2.0/pkg/",
        description="CTAN JSON API base"
    )
    historic_default: str = Field(
        default="https://ftp.math.utah.edu/pub/tex/",
        description="Historic archive host"
    )
    historic_master: str = Field(
        default="https://tug.org/",
        description="Master host of the historic archive"
    )
    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, description="Maximum retry attempts per request")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    mirror_max_tries: int = Field(
        default=10,
        description="Attempts to obtain a stable CTAN mirror"
    )
    unstable_mirror_pattern: str = Field(
        default="cicku",
        description="Hostname pattern of mirrors known to serve inconsistent data"
    )

    @field_validator("ctan_mirrors", "ctan_master", "ctan_api", "historic_default", "historic_master")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URLs end with a slash so relative paths join cleanly."""
        if not v:
            raise ValueError("URL cannot be empty")
        return v if v.endswith("/") else v + "/"

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator("max_retries", "mirror_max_tries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        """Validate retry counts."""
        if v < 0:
            raise ValueError("Retry count must be non-negative")
        return v

    @field_validator("unstable_mirror_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        """Validate the unstable mirror pattern compiles."""
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid pattern: {e}") from e
        return v


class CacheConfig(BaseModel):
    """Cache configuration."""

    enabled: bool = Field(default=True, description="Whether caching is enabled")
    cache_dir: Path = Field(
        default=Path.home() / ".cache" / "setup-texlive" / "blobs",
        description="Cache blob store directory"
    )
    tool_cache_dir: Path = Field(
        default_factory=lambda: Path(
            os.environ.get("RUNNER_TOOL_CACHE")
            or Path.home() / ".cache" / "setup-texlive" / "tools"
        ),
        description="Tool cache directory for install-tl"
    )
    force_update: bool = Field(
        default=False,
        description="Always save a fresh cache entry after a hit"
    )

    @classmethod
    def force_update_from_env(cls, environ: dict[str, str] | None = None) -> bool:
        """Read the force-update toggle from the environment.

        The deprecated variable is honoured only when the current one is unset.
        """
        environ = os.environ if environ is None else environ
        if FORCE_UPDATE_ENV in environ:
            return environ[FORCE_UPDATE_ENV] != "0"
        if DEPRECATED_FORCE_UPDATE_ENV in environ:
            logger.warning(
                "deprecated_environment_variable",
                name=DEPRECATED_FORCE_UPDATE_ENV,
                replacement=FORCE_UPDATE_ENV,
            )
            return environ[DEPRECATED_FORCE_UPDATE_ENV] != "0"
        return False


class AppConfig(BaseModel):
    """Application configuration."""

    # Directory settings
    data_dir: Path = Field(
        default=Path.home() / ".local" / "share" / "setup-texlive",
        description="Data directory"
    )

    network: NetworkConfig = Field(default_factory=NetworkConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    state_file: Path | None = Field(
        default=None,
        description="Where the install phase leaves state for the save phase"
    )

    # Output settings
    output_format: str = Field(
        default="rich",
        description="Output format (rich, json, plain)"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    @property
    def state_path(self) -> Path:
        return self.state_file or self.data_dir / "state.json"

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = Path.home() / ".config" / "setup-texlive" / "config.json"

        if config_file.exists():
            with open(config_file) as f:
                data = json.load(f)
                return cls(**data)

        # Return defaults
        return cls()

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {"rich", "json", "plain"}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v


class SetupConfig(BaseModel):
    """Inputs of a single install-or-update run.

    ``version`` holds the raw spec (``None``, ``"latest"`` or a year); it is
    resolved against the release window by :func:`setup_texlive.core.releases.resolve_version`.
    """

    version: str | None = Field(default=None, description="Requested release year or 'latest'")
    packages: tuple[str, ...] = Field(default=(), description="Packages to install")
    prefix: Path = Field(description="Installation prefix")
    texdir: Path | None = Field(default=None, description="Explicit TEXDIR")
    repository: str | None = Field(default=None, description="Package repository override")
    tlcontrib: bool = Field(default=False, description="Set up TLContrib")
    update_all_packages: bool = Field(default=False, description="Update all packages after a restore")
    cache: bool = Field(default=True, description="Enable caching")
    platform: Platform = Field(default_factory=lambda: Platform.current())
    arch: Arch = Field(default_factory=lambda: Arch.current())

    @classmethod
    def from_inputs(
        cls,
        *,
        version: str | None = None,
        packages: str | None = None,
        package_file: str | None = None,
        prefix: str | Path | None = None,
        texdir: str | Path | None = None,
        repository: str | None = None,
        tlcontrib: bool = False,
        update_all_packages: bool = False,
        cache: bool = True,
        environ: dict[str, str] | None = None,
    ) -> SetupConfig:
        """Build a run configuration from raw inputs.

        Args:
            version: Release year, "latest" or empty
            packages: Inline DEPENDS.txt-formatted package list
            package_file: Glob pattern of DEPENDS.txt files
            prefix: Installation prefix; defaults from the environment
            texdir: Explicit TEXDIR
            repository: Package repository override
            tlcontrib: Set up TLContrib
            update_all_packages: Update all packages after a restore
            cache: Enable caching
            environ: Environment to read defaults from

        Raises:
            ValueError: If an input is invalid
        """
        return cls(
            version=version,
            packages=collect_packages(packages, package_file),
            prefix=Path(prefix) if prefix else default_prefix(environ),
            texdir=Path(texdir) if texdir else None,
            repository=repository,
            tlcontrib=tlcontrib,
            update_all_packages=update_all_packages,
            cache=cache,
        )

    @field_validator("version", mode="before")
    @classmethod
    def normalize_version(cls, v: str | None) -> str | None:
        """Trim and lower-case the version spec; empty means unspecified."""
        if v is None:
            return None
        v = str(v).strip().lower()
        return v or None

    @field_validator("packages", mode="before")
    @classmethod
    def normalize_packages(cls, v: object) -> tuple[str, ...]:
        """Sort and deduplicate package names."""
        if v is None:
            return ()
        if isinstance(v, str):
            v = v.split()
        return tuple(sorted({str(name) for name in v if str(name)}))

    @field_validator("repository", mode="before")
    @classmethod
    def normalize_repository(cls, v: str | None) -> str | None:
        """Validate and normalise a repository URL."""
        if v is None or not str(v).strip():
            return None
        return normalize_repository_url(str(v).strip())


_REPOSITORY_SUFFIX = re.compile(r"/archive/?$|/tlpkg(?:/(?:texlive\.tlpdb)?)?$")


def normalize_repository_url(url: str) -> str:
    """Normalise a user-supplied repository URL.

    Only http(s) is accepted.  Trailing ``archive`` or ``tlpkg/texlive.tlpdb``
    components are removed, mirroring what install-tl does with its
    ``-repository`` argument.

    Raises:
        ValueError: If the URL is malformed or not http(s)
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Invalid input for `repository`: {url}")
    if parts.scheme not in {"http", "https"}:
        raise ValueError("Currently only http/https repositories are supported")

    path = re.sub(r"/+", "/", parts.path or "/")
    path = str(PurePosixPath(path)) if path != "/" else "/"
    path = _REPOSITORY_SUFFIX.sub("", path)
    if not path.endswith("/"):
        path += "/"
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def default_prefix(environ: dict[str, str] | None = None) -> Path:
    """Installation prefix used when none is given."""
    environ = os.environ if environ is None else environ
    if environ.get("TEXLIVE_INSTALL_PREFIX"):
        return Path(environ["TEXLIVE_INSTALL_PREFIX"])
    runner_temp = environ.get("RUNNER_TEMP") or tempfile.gettempdir()
    return Path(runner_temp) / "setup-texlive-action"


SYSTEM_TREES = ("TEXMFLOCAL", "TEXMFSYSCONFIG", "TEXMFSYSVAR")


def init_installer_env(environ: dict[str, str] | None = None) -> None:
    """Prepare environment variables read by install-tl.

    Missing ``RUNNER_TEMP`` falls back to the system temporary directory.
    System-tree overrides other than ``TEXMFLOCAL`` are ignored because the
    profile determines them.
    """
    environ = os.environ if environ is None else environ
    if "RUNNER_TEMP" not in environ:
        logger.warning("runner_temp_undefined", fallback=tempfile.gettempdir())
        environ["RUNNER_TEMP"] = tempfile.gettempdir()
    environ["TMPDIR"] = environ["RUNNER_TEMP"]

    environ.setdefault("TEXLIVE_INSTALL_ENV_NOCHECK", "1")
    environ.setdefault("TEXLIVE_INSTALL_NO_WELCOME", "1")

    for tree in SYSTEM_TREES:
        key = f"TEXLIVE_INSTALL_{tree}"
        if tree != "TEXMFLOCAL" and key in environ:
            logger.warning("environment_variable_ignored", name=key)
            del environ[key]
