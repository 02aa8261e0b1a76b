"""Package repository locations and candidate ordering."""

from __future__ import annotations

import httpx
import structlog

from setup_texlive.core.capabilities import supports
from setup_texlive.core.config import NetworkConfig
from setup_texlive.core.ctan import CTANClient
from setup_texlive.core.types import ReleaseWindow, Repository, RepositoryKind, Version

logger = structlog.get_logger()

TLNET_PATH = "systems/texlive/tlnet/"
TLCONTRIB_PATH = "systems/texlive/tlcontrib/"
TLPRETEST_PATH = "systems/texlive/tlpretest/"


class RepositoryLocator:
    """Produces candidate repositories for a release, in priority order.

    * A user override is the only candidate.
    * Current releases use the CTAN mirror network first and the
      high-availability origin as fallback.  A release newer than the known
      latest goes straight to the origin, since mirrors index new releases late.
    * Older releases use the historic archive, then its master host.
    """

    def __init__(
        self,
        window: ReleaseWindow,
        ctan: CTANClient | None = None,
        config: NetworkConfig | None = None,
    ):
        self.window = window
        self.config = config or (ctan.config if ctan is not None else NetworkConfig())
        self.ctan_client = ctan or CTANClient(self.config)

    def ctan(self, *, master: bool = False) -> Repository:
        """The current tlnet tree on a CTAN mirror or the origin."""
        root = self.ctan_client.resolve_mirror(master=master)
        kind = RepositoryKind.MASTER if master else RepositoryKind.MIRROR
        return Repository(root + TLNET_PATH, kind)

    def contrib(self) -> str:
        """The TLContrib repository on the resolved CTAN mirror."""
        return self.ctan_client.resolve_mirror() + TLCONTRIB_PATH

    def historic(self, version: Version, *, master: bool = False) -> Repository:
        """The permanent archive of a past release."""
        tree = "tlnet-final" if supports(version, "historic-tlnet-final") else "tlnet"
        base = self.config.historic_master if master else self.config.historic_default
        return Repository(
            f"{base}historic/systems/texlive/{version}/{tree}/",
            RepositoryKind.HISTORIC,
        )

    def locate(self, version: Version, user_override: str | None = None) -> list[Repository]:
        """Candidate repositories for installing ``version``.

        Args:
            version: Concrete release year
            user_override: Operator-supplied repository URL

        Returns:
            One or two candidates; later ones are fallbacks

        Raises:
            ValueError: If an override is given for a release that cannot honour it
        """
        if user_override is not None:
            if not supports(version, "repository-override"):
                raise ValueError(
                    "Currently `repository` input is only supported with version 2012 or later"
                )
            return [Repository(user_override, RepositoryKind.USER)]

        if self.window.is_current(version):
            candidates = [self._current_primary(version), self.ctan(master=True)]
        else:
            candidates = [self.historic(version), self.historic(version, master=True)]

        unique: list[Repository] = []
        for candidate in candidates:
            if candidate.url not in {c.url for c in unique}:
                unique.append(candidate)
        logger.debug(
            "repository_candidates",
            version=version,
            candidates=[str(c) for c in unique],
        )
        return unique

    def _current_primary(self, version: Version) -> Repository:
        if version >= self.window.next:
            return self.ctan(master=True)
        try:
            return self.ctan()
        except RuntimeError as e:
            logger.warning("ctan_mirror_unavailable", error=str(e))
            return self.ctan(master=True)

    def version_file_url(self, repository: Repository | str, version: str) -> str:
        """URL of the ``TEXLIVE_YYYY`` marker file in a repository."""
        return f"{Repository(str(repository), RepositoryKind.USER).url}TEXLIVE_{version}"

    def check_version_file(
        self, repository: Repository | str, version: str
    ) -> httpx.Headers | None:
        """Headers of the ``TEXLIVE_YYYY`` marker, or None if absent."""
        return self.ctan_client.head(self.version_file_url(repository, version))
