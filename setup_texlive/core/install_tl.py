"""Acquisition and invocation of install-tl."""

from __future__ import annotations

import shutil
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import structlog

from setup_texlive.core.capabilities import supports
from setup_texlive.core.config import NetworkConfig
from setup_texlive.core.errors import CLASSIFIER, ErrorClassifier, Invocation, Outcome
from setup_texlive.core.patch import patch
from setup_texlive.core.process import CommandRunner, run_command
from setup_texlive.core.profile import Profile
from setup_texlive.core.tool_cache import ToolCache
from setup_texlive.core.types import Platform, Repository, RepositoryKind, Version

logger = structlog.get_logger()

RELEASE_TEXT_FILE = "release-texlive.txt"


def executable_name(version: str, platform: Platform | None = None) -> str:
    """Name of the installer entry point for a release."""
    if (platform or Platform.current()) is not Platform.WIN32:
        return "install-tl"
    if supports(version, "install-tl-windows-script"):
        return "install-tl-windows.bat"
    return "install-tl.bat"


def archive_name(platform: Platform | None = None) -> str:
    """Name of the installer archive in a repository."""
    if (platform or Platform.current()) is Platform.WIN32:
        return "install-tl.zip"
    return "install-tl-unx.tar.gz"


@dataclass
class InstallTL:
    """A local, runnable copy of install-tl."""

    directory: Path
    version: Version
    platform: Platform = field(default_factory=lambda: Platform.current())
    runner: CommandRunner = run_command
    classifier: ErrorClassifier = CLASSIFIER

    @property
    def executable(self) -> Path:
        return self.directory / executable_name(self.version, self.platform)

    def command_args(self, profile_path: Path, repository: Repository) -> list[str]:
        """Build install-tl arguments for this release."""
        args: list[str] = []
        for option in ("no-continue", "no-interaction"):
            if supports(self.version, f"install-tl-{option}"):
                args.append(f"-{option}")
        args += ["-profile", str(profile_path)]

        url = repository.url
        if url.startswith("https:") and not supports(self.version, "install-tl-https"):
            url = "http:" + url.removeprefix("https:")
        flag = "-repository" if supports(self.version, "install-tl-repository-option") else "-location"
        args += [flag, url]
        return args

    def run(self, profile: Profile, repository: Repository, workdir: Path) -> Outcome:
        """Install TeX Live from ``repository``.

        Returns:
            The classified outcome of the installer run

        Raises:
            ExecError: If ``install-tl -version`` itself fails
        """
        executable = str(self.executable)
        self.runner(executable, ["-version"])
        profile_path = profile.write(workdir)
        result = self.runner(
            executable,
            self.command_args(profile_path, repository),
            ignore_return_code=True,
        )
        return self.classifier.classify(
            result,
            Invocation.INSTALL_TL,
            version=self.version,
            repository=repository.url,
        )


@dataclass
class AcquireResult:
    """Outcome of :meth:`Acquirer.acquire`; ``installer`` is set only on success."""

    outcome: Outcome
    installer: InstallTL | None = None
    remote_version: str | None = None


class Acquirer:
    """Obtains install-tl from the tool cache or a repository."""

    def __init__(
        self,
        tool_cache: ToolCache,
        *,
        config: NetworkConfig | None = None,
        client: httpx.Client | None = None,
        platform: Platform | None = None,
        runner: CommandRunner = run_command,
        classifier: ErrorClassifier = CLASSIFIER,
        workdir: Path | None = None,
    ):
        self.tool_cache = tool_cache
        self.config = config or NetworkConfig()
        self._client = client
        self.platform = platform or Platform.current()
        self.runner = runner
        self.classifier = classifier
        self.workdir = workdir

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
                follow_redirects=True,
            )
        return self._client

    def _installer(self, directory: Path, version: Version) -> InstallTL:
        return InstallTL(
            directory, version, self.platform, self.runner, self.classifier
        )

    def restore(self, version: Version) -> InstallTL | None:
        """Look up install-tl in the tool cache."""
        executable = executable_name(version, self.platform)
        try:
            found = self.tool_cache.find(executable, version)
        except (OSError, ValueError) as e:
            logger.info("tool_cache_restore_failed", executable=executable, error=str(e))
            return None
        if not found:
            return None
        logger.info("tool_cache_found", path=found)
        return self._installer(Path(found), version)

    def download(self, repository: Repository, dest: Path) -> Path:
        """Download and extract the installer archive into ``dest``.

        Returns:
            The extracted installer directory

        Raises:
            httpx.HTTPError: If the download fails
            OSError: If the archive cannot be written or extracted
        """
        archive = archive_name(self.platform)
        url = repository.url + archive
        archive_path = dest / archive

        logger.info("downloading_installer", archive=archive, url=url)
        with self.client.stream("GET", url) as response:
            response.raise_for_status()
            with open(archive_path, "wb") as f:
                for chunk in response.iter_bytes():
                    f.write(chunk)

        logger.info("extracting_installer", path=str(archive_path))
        extracted = dest / "extracted"
        if archive.endswith(".zip"):
            with zipfile.ZipFile(archive_path) as zf:
                zf.extractall(extracted)
        else:
            with tarfile.open(archive_path, "r:gz") as tf:
                tf.extractall(extracted, filter="data")
        archive_path.unlink()

        children = [p for p in extracted.iterdir() if p.is_dir()]
        # Archives contain a single install-tl-YYYYMMDD/ directory.
        return children[0] if len(children) == 1 else extracted

    def save(self, directory: Path, version: Version) -> None:
        """Patch the extracted tree and register it in the tool cache."""
        patch(directory, version, self.platform)
        executable = executable_name(version, self.platform)
        try:
            logger.info("tool_cache_adding", executable=executable, version=version)
            self.tool_cache.cache_dir(directory, executable, version)
        except (OSError, shutil.Error) as e:
            logger.info("tool_cache_save_failed", executable=executable, error=str(e))

    def acquire(self, repository: Repository, version: Version | None = None) -> AcquireResult:
        """Obtain install-tl for ``version`` (any version when None).

        A freshly downloaded installer is cached under the version it
        reports about itself, even when that differs from the expected one;
        the mismatch is still returned as a recoverable outcome.  The
        download directory is removed unless the returned installer still
        lives in it.
        """
        if version is not None:
            cached = self.restore(version)
            if cached is not None:
                return AcquireResult(Outcome.success(), cached, version)

        if repository.scheme not in {"http", "https"}:
            return AcquireResult(self.classifier.unsupported_download(repository.url, repository.scheme))

        dest = Path(tempfile.mkdtemp(prefix="install-tl-", dir=self.workdir))
        result: AcquireResult | None = None
        try:
            result = self._fetch(repository, version, dest)
            return result
        finally:
            if (
                result is None
                or result.installer is None
                or not result.installer.directory.is_relative_to(dest)
            ):
                shutil.rmtree(dest, ignore_errors=True)

    def _fetch(self, repository: Repository, version: Version | None, dest: Path) -> AcquireResult:
        try:
            directory = self.download(repository, dest)
        except httpx.HTTPError as e:
            logger.info("installer_download_failed", url=repository.url, error=str(e))
            return AcquireResult(self.classifier.download_failed(repository.url, e))

        text: str | None = None
        cause: OSError | None = None
        try:
            text = (directory / RELEASE_TEXT_FILE).read_text(encoding="utf-8")
        except OSError as e:
            cause = e
        remote, outcome = self.classifier.check_release_text(
            text, expected=version, repository=repository.url, cause=cause
        )
        if remote is None:
            return AcquireResult(outcome)

        try:
            remote_version = Version(remote, platform=self.platform)
        except ValueError as e:
            logger.info("installer_version_unsupported", version=remote, error=str(e))
            if outcome.ok:
                _, outcome = self.classifier.check_release_text(
                    None, expected=version, repository=repository.url, cause=e
                )
            return AcquireResult(outcome, remote_version=remote)

        self.save(directory, remote_version)
        if not outcome.ok:
            return AcquireResult(outcome, remote_version=remote)
        # Run from the tool cache copy when registration worked.
        installer = self.restore(remote_version) or self._installer(directory, remote_version)
        return AcquireResult(outcome, installer, remote)

    def probe_version(self, repository: str) -> str:
        """Download install-tl from a repository just to learn its release.

        Raises:
            TeXLiveError: If no version can be determined
        """
        result = self.acquire(Repository(repository, RepositoryKind.USER))
        result.outcome.raise_for_status()
        assert result.remote_version is not None
        return result.remote_version
