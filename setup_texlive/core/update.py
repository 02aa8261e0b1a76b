"""Bringing a restored installation up to date."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from setup_texlive.core.errors import ErrorKind, Outcome
from setup_texlive.core.tlmgr import TEXMF_KEYS, Tlmgr
from setup_texlive.core.tlnet import RepositoryLocator
from setup_texlive.core.types import ReleaseWindow, Version

if TYPE_CHECKING:
    from setup_texlive.core.cache import CacheService
    from setup_texlive.core.profile import Profile

logger = structlog.get_logger()

MAIN_TAG = "main"
TLCONTRIB_TAG = "tlcontrib"


class UpdateOrchestrator:
    """Self-updates tlmgr after a cache restore.

    When the installed release is older than what the main repository
    serves (the yearly release has shipped since the cache was saved), the
    main repository is moved to the historic archive for the installed
    release and the cache is marked for a forced save.
    """

    def __init__(
        self,
        tlmgr: Tlmgr,
        locator: RepositoryLocator,
        window: ReleaseWindow,
        cache: CacheService,
    ):
        self.tlmgr = tlmgr
        self.locator = locator
        self.window = window
        self.cache = cache

    def update(
        self,
        version: Version,
        repository: str | None = None,
        *,
        update_all_packages: bool = False,
    ) -> None:
        """Self-update tlmgr, moving to the historic archive if needed.

        Args:
            version: Installed release
            repository: Operator-supplied repository override
            update_all_packages: Also update every installed package

        Raises:
            TeXLiveError: If the update fails in a way no switch can cure
        """
        main = self.clean_up_repositories(version, repository)
        if main is not None:
            self.change_repository(MAIN_TAG, main)
        outcome = self._update_tlmgr(update_all_packages)
        if outcome.ok:
            return
        if outcome.kind is ErrorKind.VERSION_OUTDATED and repository is None:
            assert outcome.error is not None
            logger.info("texlive_outdated", message=outcome.error.message)
            self.move_to_historic(version, update_all_packages=update_all_packages)
            return
        outcome.raise_for_status()

    def clean_up_repositories(self, version: Version, repository: str | None) -> str | None:
        """Drop repository tags that no longer apply to ``version``.

        A main repository still pointing at the pre-release channel is
        moved to CTAN once the release has shipped, and TLContrib is removed
        from older releases.  Returns the repository the main tag should be
        set to, if any.
        """
        if version < self.window.previous:
            return repository
        for config in self.tlmgr.repository_list():
            if (
                config.tag == MAIN_TAG
                and "tlpretest" in config.path
                and repository is None
                and version == self.window.latest
            ):
                repository = self.locator.ctan().url
            elif (
                config.tag == TLCONTRIB_TAG or "tlcontrib" in config.path
            ) and version < self.window.latest:
                name = config.tag or config.path
                logger.info("removing_repository", repository=name)
                self.tlmgr.repository_remove(name)
        return repository

    def _update_tlmgr(self, update_all_packages: bool) -> Outcome:
        return self.tlmgr.update(
            self_update=True,
            all_packages=update_all_packages,
            reinstall_forcibly_removed=update_all_packages,
        )

    def move_to_historic(self, version: Version, *, update_all_packages: bool = False) -> None:
        """Point the main repository at the historic archive and update again.

        The archive's master host is tried if the default one has not been
        initialized yet.
        """
        self.change_repository(MAIN_TAG, self.locator.historic(version).url)
        outcome = self._update_tlmgr(update_all_packages)
        if outcome.kind is ErrorKind.REPOSITORY_NOT_INITIALIZED:
            assert outcome.error is not None
            logger.info("historic_repository_not_initialized", message=outcome.error.message)
            self.change_repository(MAIN_TAG, self.locator.historic(version, master=True).url)
            outcome = self._update_tlmgr(update_all_packages)
        outcome.raise_for_status()
        self.cache.update()

    def change_repository(self, tag: str, url: str) -> None:
        logger.info("changing_repository", tag=tag, url=url)
        self.tlmgr.repository_remove(tag)
        self.tlmgr.repository_add(url, tag)


def adjust_texmf(tlmgr: Tlmgr, profile: Profile) -> dict[str, str]:
    """Reset TEXMF variables that differ from the profile.

    A restored installation may have been configured with other paths.

    Returns:
        The variables that were changed
    """
    expected = {key: str(getattr(profile, key)) for key in TEXMF_KEYS}
    current = tlmgr.texmf_values(TEXMF_KEYS)
    drifted = {key: value for key, value in expected.items() if current.get(key) != value}
    for key, value in drifted.items():
        logger.info("adjusting_texmf", key=key, value=value, previous=current.get(key))
        tlmgr.set_texmf(key, value)
    return drifted
