"""Wrapper around the TeX Live package manager."""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Mapping, MutableMapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

import httpx
import structlog

from setup_texlive.core.capabilities import supports
from setup_texlive.core.ctan import CTANClient
from setup_texlive.core.errors import (
    CLASSIFIER,
    ClassifiedError,
    ErrorClassifier,
    ErrorKind,
    Invocation,
    Outcome,
    TeXLiveError,
)
from setup_texlive.core.process import CommandRunner, ExecError, ExecOutput, run_command
from setup_texlive.core.types import Version

logger = structlog.get_logger()

TEXMF_KEYS = ("TEXMFLOCAL", "TEXMFHOME", "TEXMFCONFIG", "TEXMFVAR")

_REPOSITORY_LINE = re.compile(r"^\t(?P<path>.+) \((?P<tag>.+)\)$")


@dataclass(frozen=True)
class RepositoryConfig:
    """A repository registered with tlmgr."""

    path: str
    tag: str | None = None


class Tlmgr:
    """Runs tlmgr actions against an installed TEXDIR.

    Attributes:
        version: Installed release
        texdir: Installation directory
    """

    def __init__(
        self,
        version: Version,
        texdir: Path,
        *,
        runner: CommandRunner = run_command,
        classifier: ErrorClassifier = CLASSIFIER,
        ctan: CTANClient | None = None,
        environ: MutableMapping[str, str] | None = None,
    ):
        self.version = version
        self.texdir = texdir
        self.runner = runner
        self.classifier = classifier
        self.ctan = ctan or CTANClient()
        self.environ = os.environ if environ is None else environ

    def _exec(
        self,
        action: str,
        args: Iterable[str] = (),
        *,
        ignore_return_code: bool = False,
    ) -> ExecOutput:
        return self.runner("tlmgr", [action, *args], ignore_return_code=ignore_return_code)

    def update(
        self,
        packages: Iterable[str] = (),
        *,
        all_packages: bool = False,
        self_update: bool = False,
        reinstall_forcibly_removed: bool = False,
    ) -> Outcome:
        """Run ``tlmgr update``.

        Returns:
            The classified outcome; recoverable kinds are VERSION_OUTDATED
            and REPOSITORY_NOT_INITIALIZED
        """
        args = ["--all"] if all_packages else list(packages)
        if self_update:
            args.append("--self" if supports(self.version, "tlmgr-self-option") else "texlive.infra")
        if reinstall_forcibly_removed and supports(self.version, "tlmgr-reinstall-forcibly-removed"):
            args.insert(0, "--reinstall-forcibly-removed")
        result = self._exec("update", args, ignore_return_code=True)
        return self.classifier.classify(result, Invocation.TLMGR_UPDATE, version=self.version)

    def _try_install(self, packages: set[str]) -> Outcome:
        if not packages:
            return Outcome.success()
        result = self._exec("install", sorted(packages), ignore_return_code=True)
        return self.classifier.classify(result, Invocation.TLMGR_INSTALL, version=self.version)

    def resolve_package_name(self, name: str) -> str | None:
        """Look up the TeX Live name of a CTAN package."""
        try:
            data = self.ctan.pkg(name)
        except (httpx.HTTPError, ValueError) as e:
            logger.info("package_lookup_failed", package=name, error=str(e))
            return None
        texlive = data.get("texlive")
        if isinstance(texlive, str) and texlive:
            return texlive
        logger.info("package_lookup_unexpected", package=name, response=data)
        return None

    def install(self, packages: Iterable[str]) -> None:
        """Install packages, retrying once with names resolved through CTAN.

        DEPENDS.txt uses CTAN names, which sometimes differ from the names
        tlmgr expects.

        Raises:
            TeXLiveError: If packages are still missing or tlmgr fails
        """
        outcome = self._try_install(set(packages))
        if outcome.kind is not ErrorKind.PACKAGE_NOT_FOUND:
            outcome.raise_for_status()
            return

        assert outcome.error is not None
        missing = outcome.error.packages
        logger.info("resolving_package_names", packages=list(missing))
        with ThreadPoolExecutor(max_workers=max(1, min(len(missing), 8))) as executor:
            names = list(executor.map(self.resolve_package_name, missing))

        resolved: set[str] = set()
        not_found: list[str] = []
        for ctan_name, tl_name in zip(missing, names, strict=True):
            logger.info("package_name_resolved", ctan=ctan_name, texlive=tl_name or "???")
            if tl_name is None:
                not_found.append(ctan_name)
            else:
                resolved.add(tl_name)
        if not_found:
            raise TeXLiveError(ClassifiedError(
                kind=ErrorKind.PACKAGE_NOT_FOUND,
                action=Invocation.TLMGR_INSTALL.value,
                message=outcome.error.message,
                packages=tuple(not_found),
            ))
        self._try_install(resolved).raise_for_status()

    def repository_list(self) -> list[RepositoryConfig]:
        """Repositories registered with tlmgr."""
        output = self._exec("repository", ["list"])
        repositories = []
        for line in output.stdout.splitlines()[1:]:
            found = _REPOSITORY_LINE.match(line)
            if found:
                repositories.append(RepositoryConfig(found.group("path"), found.group("tag")))
            elif line.strip():
                repositories.append(RepositoryConfig(line.strip()))
        return repositories

    def repository_add(self, repository: str, tag: str | None = None) -> None:
        """Register a repository; adding a known one again is not an error.

        Raises:
            TeXLiveError: If tlmgr fails for another reason
        """
        args = ["add", repository]
        if tag is not None:
            args.append(tag)
        result = self._exec("repository", args, ignore_return_code=True)
        self.classifier.classify(
            result, Invocation.TLMGR_REPOSITORY, version=self.version, repository=repository
        ).raise_for_status()

    def repository_remove(self, repository: str) -> None:
        self._exec("repository", ["remove", repository])

    def pinning_add(self, repository: str, *globs: str) -> None:
        if not globs:
            raise ValueError("At least one glob is required")
        self._exec("pinning", ["add", repository, *globs])

    def get_texmf(self, key: str) -> str | None:
        """Current value of a TEXMF variable according to kpsewhich."""
        result = self.runner("kpsewhich", [f"-var-value={key}"], ignore_return_code=True)
        value = result.stdout.strip()
        return value if result.exit_code == 0 and value else None

    def set_texmf(self, key: str, value: str) -> None:
        """Set a TEXMF variable.

        Releases without ``tlmgr conf`` get the value through the environment.
        """
        if supports(self.version, "tlmgr-conf"):
            self._exec("conf", ["texmf", key, value])
        else:
            export_variable(key, value, self.environ)
        if key == "TEXMFLOCAL":
            try:
                self.runner("mktexlsr", [value])
            except (OSError, ExecError) as e:
                logger.info("texmflocal_init_failed", path=value, error=str(e))

    def texmf_values(self, keys: Iterable[str] = TEXMF_KEYS) -> dict[str, str | None]:
        """Read several TEXMF variables concurrently."""
        keys = list(keys)
        with ThreadPoolExecutor(max_workers=max(1, len(keys))) as executor:
            values = list(executor.map(self.get_texmf, keys))
        return dict(zip(keys, values, strict=True))

    def show_version(self) -> str:
        return self._exec("version").stdout

    def bin_dir(self) -> Path:
        """The single platform directory under ``TEXDIR/bin``.

        Raises:
            FileNotFoundError: If there is not exactly one
        """
        bin_root = self.texdir / "bin"
        try:
            children = [p for p in bin_root.iterdir() if p.is_dir()]
        except OSError as e:
            raise FileNotFoundError("Unable to locate TeX Live's binary directory") from e
        if len(children) != 1:
            raise FileNotFoundError("Unable to locate TeX Live's binary directory")
        return children[0]

    def add_path(self) -> Path:
        """Prepend the binary directory to ``PATH`` and record it in ``GITHUB_PATH``."""
        directory = self.bin_dir()
        add_path(directory, self.environ)
        return directory


def export_variable(
    name: str, value: str, environ: MutableMapping[str, str] | None = None
) -> None:
    """Set an environment variable here and for later workflow steps."""
    environ = os.environ if environ is None else environ
    environ[name] = value
    _append_file(environ, "GITHUB_ENV", f"{name}={value}")


def add_path(directory: Path, environ: MutableMapping[str, str] | None = None) -> None:
    """Prepend a directory to ``PATH`` here and for later workflow steps."""
    environ = os.environ if environ is None else environ
    current = environ.get("PATH", "")
    environ["PATH"] = f"{directory}{os.pathsep}{current}" if current else str(directory)
    _append_file(environ, "GITHUB_PATH", str(directory))
    logger.info("path_added", directory=str(directory))


def _append_file(environ: Mapping[str, str], variable: str, line: str) -> None:
    target = environ.get(variable)
    if target:
        with open(target, "a", encoding="utf-8") as f:
            f.write(line + "\n")
