"""TeX Live release tracking and version resolution."""

from __future__ import annotations

import re
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta, timezone
from email.utils import parsedate_to_datetime

import httpx
import structlog

from setup_texlive.core.ctan import CTANClient
from setup_texlive.core.tlnet import RepositoryLocator
from setup_texlive.core.types import LATEST, Arch, Platform, ReleaseWindow, Version

logger = structlog.get_logger()

# Bundled release data, trusted until the next scheduled release date passes.
CURRENT_RELEASE = {"version": "2025", "release_date": "2025-03-08T00:00:00+00:00"}
NEXT_RELEASE = {"version": "2026", "release_date": "2026-03-01T00:00:00"}

# The earliest time zone on Earth; a release is "out" once it is out anywhere.
EARLIEST_TZ = timezone(timedelta(hours=14))


class VersionCatalog:
    """Knows the previous, latest and next TeX Live releases.

    The bundled snapshot is used until the scheduled date of the next release
    has passed somewhere in the world; after that, the CTAN API is asked for
    the real latest release.  The known latest release only ever moves
    forward, and lookup failures fall back to the bundled value.
    """

    def __init__(
        self,
        ctan: CTANClient | None = None,
        *,
        current: dict[str, str] | None = None,
        next_release: dict[str, str] | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.ctan = ctan or CTANClient()
        self.current = current or CURRENT_RELEASE
        self.next_release = next_release or NEXT_RELEASE
        self._now = now or (lambda: datetime.now(UTC))
        self._latest = Version(self.current["version"])
        self._release_date: datetime | None = None
        self._window: ReleaseWindow | None = None

    @property
    def latest(self) -> Version:
        return self._latest

    def _widen(self, candidate: Version) -> None:
        if self._latest < candidate:
            self._latest = candidate
            self._release_date = None
            logger.warning(
                "new_texlive_release",
                version=candidate,
                note="The action may not work properly for a few days after release.",
            )
        logger.info("latest_version", version=self._latest)

    def needs_check(self) -> bool:
        """True once the scheduled next release date has been reached."""
        scheduled = datetime.fromisoformat(self.next_release["release_date"])
        if scheduled.tzinfo is None:
            scheduled = scheduled.replace(tzinfo=EARLIEST_TZ)
        return self._now() >= scheduled

    def check_latest(self) -> Version:
        """Ask CTAN for the latest release; never raises."""
        logger.info("checking_latest_version")
        try:
            data = self.ctan.pkg("texlive")
            version = data.get("version") if isinstance(data, dict) else None
            number = version.get("number") if isinstance(version, dict) else None
            if not isinstance(number, str):
                raise ValueError(f"Unexpected version field: {version!r}")
            self._widen(Version(number))
        except (httpx.HTTPError, ValueError, RuntimeError) as e:
            logger.info("latest_version_check_failed", error=str(e))
            logger.info("latest_version_fallback", version=self._latest)
        return self._latest

    def resolve(self) -> ReleaseWindow:
        """Compute the release window, at most once per catalog."""
        if self._window is None:
            if self.needs_check():
                self.check_latest()
            self._window = ReleaseWindow.around(
                self._latest,
                new_version_released=self.current["version"] < self._latest,
                latest_release_date=self._bundled_release_date(),
            )
        return self._window

    def _bundled_release_date(self) -> datetime | None:
        if self._latest == self.current["version"]:
            return datetime.fromisoformat(self.current["release_date"])
        return self._release_date

    def release_date(self, locator: RepositoryLocator) -> datetime:
        """Approximate release time of the latest release.

        There is no formal record, but the ``Last-Modified`` header of the
        ``TEXLIVE_YYYY`` marker on the CTAN origin is a good approximation.

        Raises:
            LookupError: If the marker or its timestamp is missing
        """
        bundled = self._bundled_release_date()
        if bundled is not None:
            return bundled
        master = locator.ctan(master=True)
        headers = locator.check_version_file(master, self._latest)
        if headers is None:
            raise LookupError(f"`TEXLIVE_{self._latest}` file not found in {master}")
        timestamp = headers.get("last-modified", "")
        try:
            self._release_date = parsedate_to_datetime(timestamp).astimezone(UTC)
        except (TypeError, ValueError) as e:
            raise LookupError(f"Invalid timestamp: {timestamp}") from e
        return self._release_date


_HISTORIC_PATH = re.compile(r"/historic/systems/texlive/(\d{4})/")


def resolve_version(
    spec: str | None,
    window: ReleaseWindow,
    *,
    repository: str | None = None,
    locator: RepositoryLocator | None = None,
    probe_installer: Callable[[str], str] | None = None,
    platform: Platform | None = None,
    arch: Arch | None = None,
) -> Version:
    """Resolve a version spec to a concrete release year.

    Args:
        spec: None, ``"latest"`` or a 4-digit year
        window: Release window of this run
        repository: User-supplied repository, used when no version is given
        locator: Locator for probing the repository's marker files
        probe_installer: Fallback that downloads install-tl from a repository
            and returns its self-reported version
        platform: Target platform (defaults to the current one)
        arch: Target architecture (defaults to the current one)

    Raises:
        ValueError: If the version spec is invalid or unsupported on this platform
    """
    if spec is None and repository is not None:
        return check_remote_version(
            repository, window, locator=locator, probe_installer=probe_installer,
            platform=platform, arch=arch,
        )
    if spec is None or spec == LATEST:
        return window.latest
    if Version.is_version(spec):
        version = Version(spec, platform=platform, arch=arch)
        if version <= window.next:
            return version
    raise ValueError(f"{spec} is not a valid version")


def check_remote_version(
    repository: str,
    window: ReleaseWindow,
    *,
    locator: RepositoryLocator | None = None,
    probe_installer: Callable[[str], str] | None = None,
    platform: Platform | None = None,
    arch: Arch | None = None,
) -> Version:
    """Infer the release served by a user-supplied repository."""
    found = _HISTORIC_PATH.search(httpx.URL(repository).path)
    if found is not None and Version.is_version(found.group(1)):
        return Version(found.group(1), platform=platform, arch=arch)

    logger.info("checking_remote_version", repository=repository)
    locator = locator or RepositoryLocator(window)
    candidates = [window.latest, window.next]
    with ThreadPoolExecutor(max_workers=len(candidates)) as executor:
        headers = list(executor.map(
            lambda v: locator.check_version_file(repository, v), candidates
        ))
    for version, found_headers in zip(candidates, headers, strict=True):
        if found_headers is not None:
            logger.info("remote_version", version=version)
            return version

    if probe_installer is None:
        raise ValueError(f"Failed to determine the version of {repository}")
    version = Version(probe_installer(repository), platform=platform, arch=arch)
    logger.info("remote_version", version=version)
    return version
