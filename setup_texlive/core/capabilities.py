"""Version-dependent capabilities of TeX Live and its tools.

Behaviour of ``install-tl`` and ``tlmgr`` has changed many times over the
years.  Rather than comparing release years at each call site, every
year-dependent fact lives in :data:`CAPABILITIES` and is looked up by name
with :func:`supports`.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Capability:
    """A fact that holds for an inclusive range of release years."""

    name: str
    min_version: str | None = None
    max_version: str | None = None
    description: str = ""

    def covers(self, version: str) -> bool:
        """Check whether ``version`` falls inside this capability's range.

        Args:
            version: 4-digit release year

        Returns:
            True if the capability applies to the release
        """
        if self.min_version is not None and version < self.min_version:
            return False
        if self.max_version is not None and version > self.max_version:
            return False
        return True


CAPABILITIES: tuple[Capability, ...] = (
    # Platforms
    Capability("darwin-64bit", min_version="2013",
               description="Runs on 64-bit macOS"),
    Capability("linux-aarch64", min_version="2017",
               description="Ships AArch64 Linux binaries"),
    Capability("darwin-universal-binary", max_version="2019",
               description="Needs universal-darwin binaries on Apple silicon"),
    # install-tl
    Capability("install-tl-repository-option", min_version="2009",
               description="install-tl accepts -repository instead of -location"),
    Capability("install-tl-https", min_version="2018",
               description="install-tl works with https repositories"),
    Capability("install-tl-no-continue", min_version="2022",
               description="install-tl accepts -no-continue"),
    Capability("install-tl-no-interaction", min_version="2023",
               description="install-tl accepts -no-interaction"),
    Capability("install-tl-windows-script", min_version="2013",
               description="Windows entry point is install-tl-windows.bat"),
    Capability("repository-override", min_version="2012",
               description="A user-supplied repository can be honoured"),
    Capability("historic-tlnet-final", min_version="2010",
               description="Historic archive keeps the tree under tlnet-final/"),
    # Profile
    Capability("profile-new-option-names", min_version="2017",
               description="Profile uses instopt_/tlpdbopt_ instead of option_"),
    Capability("scheme-infraonly", min_version="2016",
               description="scheme-infraonly exists"),
    Capability("profile-adjustpath", min_version="2019",
               description="Profile accepts instopt_adjustpath"),
    Capability("profile-adjustrepo", min_version="2011",
               description="Profile accepts instopt_adjustrepo"),
    Capability("profile-symlinks", max_version="2009",
               description="Profile names adjustpath 'symlinks'"),
    Capability("profile-windows-integration", min_version="2009",
               description="Profile accepts desktop_integration and w32_multi_user"),
    Capability("profile-windows-menu-integration", min_version="2012", max_version="2016",
               description="Profile accepts menu_integration"),
    # tlmgr
    Capability("tlmgr-self-option", min_version="2009",
               description="tlmgr update accepts --self"),
    Capability("tlmgr-reinstall-forcibly-removed", min_version="2009",
               description="tlmgr update accepts --reinstall-forcibly-removed"),
    Capability("tlmgr-conf", min_version="2010",
               description="tlmgr conf texmf is implemented"),
    Capability("tlmgr-missing-package-is-error", min_version="2015",
               description="tlmgr install exits non-zero for missing packages"),
    Capability("tlmgr-cannot-find-message", max_version="2008",
               description="Missing packages reported as 'Cannot find package'"),
    Capability("tlmgr-not-present-in-repository-message",
               min_version="2009", max_version="2014",
               description="Missing packages reported as 'not present in package repository'"),
    Capability("tlmgr-install-not-present-message", min_version="2015",
               description="Missing packages reported as 'tlmgr install: package X not present'"),
)

_BY_NAME: dict[str, Capability] = {cap.name: cap for cap in CAPABILITIES}


def get_capability(name: str) -> Capability:
    """Look up a capability by name.

    Raises:
        KeyError: If no capability has that name
    """
    try:
        return _BY_NAME[name]
    except KeyError:
        raise KeyError(f"Unknown capability: {name}") from None


def supports(version: str, name: str) -> bool:
    """Check whether a release has the named capability."""
    return get_capability(name).covers(str(version))
