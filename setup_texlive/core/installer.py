"""Installation with bounded repository fallback.

The orchestrator is a small explicit state machine::

    START --begin--> TRY_CANDIDATE
    TRY_CANDIDATE --succeeded--> SUCCESS
    TRY_CANDIDATE --recoverable--> RECOVERABLE_FAILURE
    TRY_CANDIDATE --fatal--> FATAL_FAILURE
    RECOVERABLE_FAILURE --advance--> TRY_CANDIDATE
    RECOVERABLE_FAILURE --exhausted--> FATAL_FAILURE

``advance`` is only taken while an untried candidate remains and no
fallback has been used yet, so a single installation makes at most two
attempts.
"""

from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import structlog

from setup_texlive.core.errors import Outcome
from setup_texlive.core.install_tl import Acquirer, InstallTL
from setup_texlive.core.profile import Profile
from setup_texlive.core.tlnet import RepositoryLocator
from setup_texlive.core.types import Repository

logger = structlog.get_logger()

MAX_FALLBACKS = 1


class State(Enum):
    START = "start"
    TRY_CANDIDATE = "try_candidate"
    SUCCESS = "success"
    RECOVERABLE_FAILURE = "recoverable_failure"
    FATAL_FAILURE = "fatal_failure"


class Event(Enum):
    BEGIN = "begin"
    SUCCEEDED = "succeeded"
    RECOVERABLE = "recoverable"
    FATAL = "fatal"
    ADVANCE = "advance"
    EXHAUSTED = "exhausted"


TRANSITIONS: dict[tuple[State, Event], State] = {
    (State.START, Event.BEGIN): State.TRY_CANDIDATE,
    (State.TRY_CANDIDATE, Event.SUCCEEDED): State.SUCCESS,
    (State.TRY_CANDIDATE, Event.RECOVERABLE): State.RECOVERABLE_FAILURE,
    (State.TRY_CANDIDATE, Event.FATAL): State.FATAL_FAILURE,
    (State.RECOVERABLE_FAILURE, Event.ADVANCE): State.TRY_CANDIDATE,
    (State.RECOVERABLE_FAILURE, Event.EXHAUSTED): State.FATAL_FAILURE,
}

TERMINAL_STATES = frozenset({State.SUCCESS, State.FATAL_FAILURE})


def transition(state: State, event: Event) -> State:
    """Next state for ``event``.

    Raises:
        ValueError: If the transition is not in :data:`TRANSITIONS`
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise ValueError(f"Invalid transition: {state.value} --{event.value}-->") from None


@dataclass(frozen=True)
class Attempt:
    """One installation attempt against a repository."""

    repository: Repository
    outcome: Outcome


@dataclass
class InstallReport:
    """Result of a successful installation."""

    repository: Repository
    attempts: list[Attempt] = field(default_factory=list)

    @property
    def fell_back(self) -> bool:
        return len(self.attempts) > 1


class InstallOrchestrator:
    """Installs a release, falling back to the next candidate repository
    when the failure is one a repository switch can cure.
    """

    def __init__(
        self,
        locator: RepositoryLocator,
        acquirer: Acquirer,
        workdir: Path | None = None,
    ):
        self.locator = locator
        self.acquirer = acquirer
        self.workdir = workdir
        self.installer: InstallTL | None = None
        self.state = State.START
        self.attempts: list[Attempt] = []

    def _fire(self, event: Event) -> State:
        new_state = transition(self.state, event)
        logger.debug(
            "install_transition",
            state=self.state.value,
            trigger=event.value,
            next=new_state.value,
        )
        self.state = new_state
        return new_state

    def _attempt(self, profile: Profile, repository: Repository) -> Outcome:
        if self.installer is None:
            acquired = self.acquirer.acquire(repository, profile.version)
            if not acquired.outcome.ok:
                return acquired.outcome
            self.installer = acquired.installer
        assert self.installer is not None
        if self.workdir is not None:
            return self.installer.run(profile, repository, self.workdir)
        with tempfile.TemporaryDirectory(prefix="setup-texlive-") as workdir:
            return self.installer.run(profile, repository, Path(workdir))

    def install(self, profile: Profile, repository: str | None = None) -> InstallReport:
        """Install ``profile.version``.

        Args:
            profile: Installation profile
            repository: Operator-supplied repository override

        Returns:
            The repository that succeeded and every attempt made

        Raises:
            TeXLiveError: If the last attempt failed, unchanged
            ValueError: If the override cannot be used with this release
        """
        candidates = self.locator.locate(profile.version, repository)
        self.state = State.START
        self.attempts = []
        index = 0
        outcome = Outcome.success()

        self._fire(Event.BEGIN)
        while self.state not in TERMINAL_STATES:
            if self.state is State.TRY_CANDIDATE:
                candidate = candidates[index]
                if index == 0:
                    logger.info("using_repository", repository=candidate.url)
                else:
                    logger.info("switched_to_repository", repository=candidate.url)
                outcome = self._attempt(profile, candidate)
                self.attempts.append(Attempt(candidate, outcome))
                if outcome.ok:
                    self._fire(Event.SUCCEEDED)
                elif outcome.recoverable:
                    self._fire(Event.RECOVERABLE)
                else:
                    self._fire(Event.FATAL)
            elif self.state is State.RECOVERABLE_FAILURE:
                if index + 1 < len(candidates) and index < MAX_FALLBACKS:
                    assert outcome.error is not None
                    logger.info(
                        "install_failed_retrying",
                        kind=outcome.error.kind.value,
                        message=outcome.error.message,
                        note=outcome.error.note,
                    )
                    index += 1
                    self._fire(Event.ADVANCE)
                else:
                    self._fire(Event.EXHAUSTED)

        if self.state is State.FATAL_FAILURE:
            outcome.raise_for_status()
        return InstallReport(candidates[index], list(self.attempts))
