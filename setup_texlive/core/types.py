"""Core type definitions for setup_texlive."""

from __future__ import annotations

import platform as _platform
import re
import sys
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, StrEnum

from setup_texlive.core.capabilities import supports

LATEST = "latest"
MIN_VERSION = "2008"


class Platform(StrEnum):
    """Operating systems, named the way cache keys have always spelled them."""
    LINUX = "linux"
    DARWIN = "darwin"
    WIN32 = "win32"

    @classmethod
    def current(cls) -> Platform:
        if sys.platform.startswith("win"):
            return cls.WIN32
        if sys.platform == "darwin":
            return cls.DARWIN
        return cls.LINUX


class Arch(StrEnum):
    """CPU architectures."""
    X64 = "x64"
    ARM64 = "arm64"

    @classmethod
    def current(cls) -> Arch:
        machine = _platform.machine().lower()
        if machine in {"arm64", "aarch64"}:
            return cls.ARM64
        return cls.X64


class Version(str):
    """A TeX Live release year.

    Versions are 4-digit years, so ordinary string comparison orders them
    correctly.  Construction validates the year against the target platform:
    nothing before 2008 is supported, releases before 2013 do not run on
    64-bit macOS and releases before 2017 have no AArch64 Linux binaries.

    Example:
        >>> Version("2023", platform=Platform.LINUX) < "2024"
        True
    """

    _RE = re.compile(r"20\d{2}")

    def __new__(
        cls,
        spec: str,
        *,
        platform: Platform | None = None,
        arch: Arch | None = None,
    ) -> Version:
        text = str(spec).strip()
        if not cls._RE.fullmatch(text):
            raise ValueError(f"`{spec}` is not a valid version spec")
        if text < MIN_VERSION:
            raise ValueError("Versions prior to 2008 are not supported")

        platform = platform or Platform.current()
        if platform is Platform.DARWIN and not supports(text, "darwin-64bit"):
            raise ValueError("Versions prior to 2013 do not work on 64-bit macOS")
        if (
            platform is Platform.LINUX
            and (arch or Arch.current()) is Arch.ARM64
            and not supports(text, "linux-aarch64")
        ):
            raise ValueError("Versions prior to 2017 do not support AArch64 Linux")

        return super().__new__(cls, text)

    @classmethod
    def is_version(cls, spec: object) -> bool:
        """Check if ``spec`` looks like a release year, without platform rules."""
        return isinstance(spec, str) and cls._RE.fullmatch(spec) is not None

    @property
    def number(self) -> int:
        return int(self)

    def offset(self, years: int) -> Version:
        """Return the release ``years`` after (or before) this one."""
        return Version(str(self.number + years))


class RepositoryKind(StrEnum):
    """Kinds of package repository."""
    MIRROR = "mirror"
    MASTER = "master"
    HISTORIC = "historic"
    USER = "user"


@dataclass(frozen=True)
class Repository:
    """A package repository base URL tagged with its kind."""

    url: str
    kind: RepositoryKind

    def __post_init__(self) -> None:
        if not self.url.endswith("/"):
            object.__setattr__(self, "url", self.url + "/")

    def __str__(self) -> str:
        return self.url

    @property
    def scheme(self) -> str:
        return self.url.split(":", 1)[0].lower()


@dataclass(frozen=True)
class ReleaseWindow:
    """The previous, latest and next release years known to this run."""

    previous: Version
    latest: Version
    next: Version
    new_version_released: bool = False
    latest_release_date: datetime | None = None

    @classmethod
    def around(
        cls,
        latest: Version,
        *,
        new_version_released: bool = False,
        latest_release_date: datetime | None = None,
    ) -> ReleaseWindow:
        """Build a window centred on ``latest``."""
        return cls(
            previous=latest.offset(-1),
            latest=latest,
            next=latest.offset(1),
            new_version_released=new_version_released,
            latest_release_date=latest_release_date,
        )

    def is_current(self, version: str) -> bool:
        """Current releases are served by CTAN; everything older is historic."""
        return version >= self.latest


class CacheStatus(Enum):
    """Classification of a restored cache key."""
    HIT = "hit"
    PARTIAL = "partial"
    MISS = "miss"
