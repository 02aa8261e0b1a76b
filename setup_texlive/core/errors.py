"""Failure classification for install-tl and tlmgr.

The wrapped tools are inconsistent about exit codes across releases, so the
text they print on stderr is the only reliable signal.  This module turns a
finished invocation into an :class:`Outcome` by matching a fixed, ordered
table of rules; it is the only place that constructs :class:`ClassifiedError`
values, so every fallback decision in the orchestrators funnels through it.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, StrEnum
from pathlib import PurePosixPath

import structlog

from setup_texlive.core.capabilities import supports
from setup_texlive.core.process import ExecError, ExecOutput

logger = structlog.get_logger()


class ErrorKind(StrEnum):
    """Closed set of recognised failure kinds."""
    DOWNLOAD_FAILED = "FAILED_TO_DOWNLOAD"
    UNEXPECTED_VERSION = "UNEXPECTED_VERSION"
    INCOMPATIBLE_REPOSITORY = "INCOMPATIBLE_REPOSITORY_VERSION"
    REPOSITORY_NOT_INITIALIZED = "FAILED_TO_INITIALIZE"
    TLPDB_CHECKSUM_MISMATCH = "TLPDB_CHECKSUM_MISMATCH"
    PACKAGE_CHECKSUM_MISMATCH = "PACKAGE_CHECKSUM_MISMATCH"
    VERSION_OUTDATED = "TL_VERSION_OUTDATED"
    VERSION_NOT_SUPPORTED = "TL_VERSION_NOT_SUPPORTED"
    PACKAGE_NOT_FOUND = "PACKAGE_NOT_FOUND"
    UNCLASSIFIED = "UNCLASSIFIED"


class Invocation(StrEnum):
    """Tool invocation types, each with its own rule order."""
    INSTALL_TL = "install-tl"
    TLMGR_UPDATE = "update"
    TLMGR_INSTALL = "install"
    TLMGR_REPOSITORY = "repository"


class Status(Enum):
    SUCCESS = "success"
    RECOVERABLE = "recoverable"
    FATAL = "fatal"


# Kinds that a repository switch can cure, per invocation type.
RECOVERABLE_KINDS: dict[Invocation, frozenset[ErrorKind]] = {
    Invocation.INSTALL_TL: frozenset({
        ErrorKind.DOWNLOAD_FAILED,
        ErrorKind.UNEXPECTED_VERSION,
        ErrorKind.INCOMPATIBLE_REPOSITORY,
        ErrorKind.REPOSITORY_NOT_INITIALIZED,
    }),
    Invocation.TLMGR_UPDATE: frozenset({
        ErrorKind.VERSION_OUTDATED,
        ErrorKind.REPOSITORY_NOT_INITIALIZED,
    }),
    Invocation.TLMGR_INSTALL: frozenset(),
    Invocation.TLMGR_REPOSITORY: frozenset(),
}


@dataclass(frozen=True)
class ClassifiedError:
    """A recognised tool failure."""

    kind: ErrorKind
    action: str
    message: str
    remote_version: str | None = None
    repository: str | None = None
    url: str | None = None
    packages: tuple[str, ...] = ()
    note: str | None = None
    cause: BaseException | None = field(default=None, compare=False)


class TeXLiveError(Exception):
    """Raised when a classified failure has to leave the core.

    Attributes:
        error: The classified failure
    """

    def __init__(self, error: ClassifiedError):
        self.error = error
        super().__init__(error.message)
        if error.cause is not None:
            self.__cause__ = error.cause

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def remote_version(self) -> str | None:
        return self.error.remote_version

    @property
    def repository(self) -> str | None:
        return self.error.repository

    @property
    def packages(self) -> tuple[str, ...]:
        return self.error.packages


@dataclass(frozen=True)
class Outcome:
    """Result of classifying a finished step."""

    status: Status
    error: ClassifiedError | None = None

    @classmethod
    def success(cls) -> Outcome:
        return cls(Status.SUCCESS)

    @property
    def ok(self) -> bool:
        return self.status is Status.SUCCESS

    @property
    def recoverable(self) -> bool:
        return self.status is Status.RECOVERABLE

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    def raise_for_status(self) -> None:
        """Raise :class:`TeXLiveError` unless the step succeeded."""
        if self.error is not None and not self.ok:
            raise TeXLiveError(self.error)


ExitPredicate = Callable[[int, "str | None"], bool]


def _nonzero(exit_code: int, version: str | None) -> bool:
    return exit_code != 0


def _any(exit_code: int, version: str | None) -> bool:
    return True


def _missing_package_reported(exit_code: int, version: str | None) -> bool:
    # Before 2015 a missing package still exits 0; a non-zero status means
    # something worse happened.
    if version is not None and not supports(version, "tlmgr-missing-package-is-error"):
        return exit_code == 0
    return exit_code != 0


@dataclass(frozen=True)
class Rule:
    """One row of the classification table.

    A rule with ``kind=None`` marks a benign message that some releases
    report with a non-zero status.
    """

    kind: ErrorKind | None
    pattern: re.Pattern[str]
    message: str = ""
    when: ExitPredicate = _nonzero
    capability: str | None = None
    note: str | None = None
    extract: Callable[[re.Pattern[str], str], dict[str, object] | None] | None = None

    def applies(self, output: ExecOutput, version: str | None) -> bool:
        if self.capability is not None:
            if version is None or not supports(version, self.capability):
                return False
        return self.when(output.exit_code, version)

    def match(self, stderr: str) -> dict[str, object] | None:
        if self.extract is not None:
            return self.extract(self.pattern, stderr)
        found = self.pattern.search(stderr)
        if found is None:
            return None
        return {k: v for k, v in found.groupdict().items() if v is not None}


def _package_names(pattern: re.Pattern[str], stderr: str) -> dict[str, object] | None:
    names = [m.group("package").strip() for m in pattern.finditer(stderr)]
    if not names:
        return None
    return {"packages": tuple(sorted(set(names)))}


def _checksum_packages(pattern: re.Pattern[str], stderr: str) -> dict[str, object] | None:
    names = [
        PurePosixPath(m.group("package")).name.removesuffix(".tar.xz")
        for m in pattern.finditer(stderr)
    ]
    if not names:
        return None
    return {"packages": tuple(sorted(set(names)))}


def _not_supported(pattern: re.Pattern[str], stderr: str) -> dict[str, object] | None:
    found = pattern.search(stderr)
    if found is None:
        return None
    lines = [line.strip() for line in found.group("rest").strip().splitlines()]
    result: dict[str, object] = {}
    if lines and lines[0]:
        result["repository"] = lines[0]
    if len(lines) > 1 and lines[1]:
        result["remote_version"] = lines[1].removeprefix("(").removesuffix(")")
    return result


_NOT_INITIALIZED = Rule(
    ErrorKind.REPOSITORY_NOT_INITIALIZED,
    re.compile(r"TLPDB::from_file could not initialize from: (?P<url>.*)$", re.MULTILINE),
    message="Repository initialization failed",
    note="The repository may not have been synchronized yet. "
         "Please try re-running the workflow after a while.",
)
_TLPDB_CHECKSUM = Rule(
    ErrorKind.TLPDB_CHECKSUM_MISMATCH,
    re.compile(r"from (?P<url>.+): digest disagree"),
    message="Repository initialization failed",
    when=_any,
    note="The repository seems to have some problem. "
         "Please try re-running the workflow after a while.",
)
_PACKAGE_CHECKSUM = Rule(
    ErrorKind.PACKAGE_CHECKSUM_MISMATCH,
    re.compile(r": checksums differ for (?P<package>.+):$", re.MULTILINE),
    message="Checksums of some packages did not match",
    when=_any,
    note="The CTAN mirror may be in the process of synchronisation. "
         "Please try re-running the workflow after a while.",
    extract=_checksum_packages,
)

RULES: dict[Invocation, tuple[Rule, ...]] = {
    Invocation.INSTALL_TL: (
        Rule(
            ErrorKind.INCOMPATIBLE_REPOSITORY,
            re.compile(
                r"repository being accessed are not compatible"
                r"(?:.|\n)*?^\s*repository:\s*(?P<remote_version>20\d{2})"
                r"|repository being accessed are not compatible",
                re.MULTILINE,
            ),
            message="The repository is not compatible with this version of install-tl",
            note="The CTAN mirrors may not have completed synchronisation "
                 "against a release of new version of TeX Live. "
                 "Please try re-running the workflow after a while.",
        ),
        _NOT_INITIALIZED,
        _TLPDB_CHECKSUM,
        _PACKAGE_CHECKSUM,
    ),
    Invocation.TLMGR_UPDATE: (
        _NOT_INITIALIZED,
        _TLPDB_CHECKSUM,
        Rule(
            ErrorKind.VERSION_OUTDATED,
            re.compile(r"is older than remote repository(?: \((?P<remote_version>\d{4})\))?"),
            message="The version of TeX Live is outdated",
        ),
        Rule(
            ErrorKind.VERSION_NOT_SUPPORTED,
            re.compile(r"The TeX Live versions supported by the repository(?P<rest>(?:.|\n)*)"),
            message="The version of TeX Live is not supported by the repository",
            extract=_not_supported,
        ),
    ),
    Invocation.TLMGR_INSTALL: (
        _PACKAGE_CHECKSUM,
        Rule(
            ErrorKind.PACKAGE_NOT_FOUND,
            re.compile(r": Cannot find package (?P<package>.+)$", re.MULTILINE),
            message="Some packages not found in the repository",
            when=_missing_package_reported,
            capability="tlmgr-cannot-find-message",
            extract=_package_names,
        ),
        Rule(
            ErrorKind.PACKAGE_NOT_FOUND,
            re.compile(r"^package (?P<package>.+) not present in package repository", re.MULTILINE),
            message="Some packages not found in the repository",
            when=_missing_package_reported,
            capability="tlmgr-not-present-in-repository-message",
            extract=_package_names,
        ),
        Rule(
            ErrorKind.PACKAGE_NOT_FOUND,
            re.compile(r"^tlmgr install: package (?P<package>\S+) not present", re.MULTILINE),
            message="Some packages not found in the repository",
            when=_missing_package_reported,
            capability="tlmgr-install-not-present-message",
            extract=_package_names,
        ),
    ),
    Invocation.TLMGR_REPOSITORY: (
        Rule(None, re.compile(r"repository or its tag already defined")),
    ),
}

_RELEASE_TEXT = re.compile(r"^TeX Live .+ version (?P<version>20\d{2})", re.MULTILINE)


class ErrorClassifier:
    """Turns finished tool invocations into :class:`Outcome` values."""

    def __init__(self, rules: dict[Invocation, tuple[Rule, ...]] | None = None):
        self.rules = rules or RULES

    def _outcome(self, invocation: Invocation, error: ClassifiedError) -> Outcome:
        if error.kind in RECOVERABLE_KINDS.get(invocation, frozenset()):
            status = Status.RECOVERABLE
        else:
            status = Status.FATAL
        logger.debug(
            "error_classified",
            invocation=invocation.value,
            kind=error.kind.value,
            status=status.value,
        )
        return Outcome(status, error)

    def classify(
        self,
        output: ExecOutput,
        invocation: Invocation,
        *,
        version: str | None = None,
        repository: str | None = None,
    ) -> Outcome:
        """Classify a finished invocation.

        Args:
            output: Captured process output
            invocation: Which tool action produced it
            version: Installed or installing release, for version-specific rules
            repository: Repository in use, recorded on the error

        Returns:
            Success, or a recoverable/fatal outcome carrying the error
        """
        for rule in self.rules.get(invocation, ()):
            if not rule.applies(output, version):
                continue
            fields = rule.match(output.stderr)
            if fields is None:
                continue
            if rule.kind is None:
                return Outcome.success()
            error = ClassifiedError(
                kind=rule.kind,
                action=invocation.value,
                message=rule.message,
                remote_version=fields.get("remote_version"),  # type: ignore[arg-type]
                repository=fields.get("repository", repository),  # type: ignore[arg-type]
                url=fields.get("url"),  # type: ignore[arg-type]
                packages=fields.get("packages", ()),  # type: ignore[arg-type]
                note=rule.note,
                cause=ExecError(output) if output.exit_code != 0 else None,
            )
            return self._outcome(invocation, error)

        if output.exit_code != 0:
            error = ClassifiedError(
                kind=ErrorKind.UNCLASSIFIED,
                action=invocation.value,
                message=f"`{output.command}` exited with status {output.exit_code}",
                repository=repository,
                cause=ExecError(output),
            )
            return self._outcome(invocation, error)
        return Outcome.success()

    def download_failed(self, repository: str, cause: BaseException | None = None) -> Outcome:
        """Classify a failed installer download."""
        return self._outcome(
            Invocation.INSTALL_TL,
            ClassifiedError(
                kind=ErrorKind.DOWNLOAD_FAILED,
                action=Invocation.INSTALL_TL.value,
                message="Failed to download install-tl",
                repository=repository,
                cause=cause,
            ),
        )

    def unsupported_download(self, repository: str, scheme: str) -> Outcome:
        """Classify a repository whose protocol cannot be downloaded from."""
        return self._outcome(
            Invocation.INSTALL_TL,
            ClassifiedError(
                kind=ErrorKind.DOWNLOAD_FAILED,
                action=Invocation.INSTALL_TL.value,
                message=f"Download from {scheme.upper()} repositories is currently not supported",
                repository=repository,
            ),
        )

    def check_release_text(
        self,
        text: str | None,
        *,
        expected: str | None,
        repository: str | None = None,
        cause: BaseException | None = None,
    ) -> tuple[str | None, Outcome]:
        """Check install-tl's self-reported release against the expected one.

        Args:
            text: Content of ``release-texlive.txt``; None if unreadable
            expected: Expected release, or None to accept any
            repository: Repository the installer came from
            cause: Error raised while reading the file

        Returns:
            The reported release (None if unrecognisable) and the outcome
        """
        found = _RELEASE_TEXT.search(text or "")
        remote = found.group("version") if found else None
        if remote is not None and (expected is None or remote == expected):
            return remote, Outcome.success()
        return remote, self._outcome(
            Invocation.INSTALL_TL,
            ClassifiedError(
                kind=ErrorKind.UNEXPECTED_VERSION,
                action=Invocation.INSTALL_TL.value,
                message=f"Unexpected install-tl version: {remote or 'unknown'}",
                remote_version=remote,
                repository=repository,
                cause=cause,
            ),
        )


CLASSIFIER = ErrorClassifier()
