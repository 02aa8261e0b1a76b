"""install-tl profile generation."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from setup_texlive.core.capabilities import supports
from setup_texlive.core.types import Arch, Platform, Version

USER_TREES = ("TEXMFHOME", "TEXMFCONFIG", "TEXMFVAR")


class Profile(BaseModel):
    """Installation profile for a release.

    Directory trees are derived from ``prefix`` (``{prefix}/{version}`` and
    ``{prefix}/texmf-local``) unless ``texdir`` is given.  User trees default
    to the system trees so that everything lives under one cached directory.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    version: Version
    prefix: Path | None = None
    texdir: Path | None = None
    texuserdir: Path | None = None
    texmflocal: Path | None = Field(default=None, description="Overrides TEXMFLOCAL")
    platform: Platform = Field(default_factory=lambda: Platform.current())
    arch: Arch = Field(default_factory=lambda: Arch.current())

    def model_post_init(self, __context) -> None:
        if self.prefix is None and self.texdir is None:
            raise ValueError("Either prefix or texdir is required")

    @property
    def TEXDIR(self) -> Path:
        if self.texdir is not None:
            return self.texdir
        assert self.prefix is not None
        return self.prefix / self.version

    @property
    def TEXMFLOCAL(self) -> Path:
        if self.texmflocal is not None:
            return self.texmflocal
        if self.texdir is None and self.prefix is not None:
            return self.prefix / "texmf-local"
        return self.TEXDIR / "texmf-local"

    @property
    def TEXMFSYSCONFIG(self) -> Path:
        return self.TEXDIR / "texmf-config"

    @property
    def TEXMFSYSVAR(self) -> Path:
        return self.TEXDIR / "texmf-var"

    @property
    def TEXMFHOME(self) -> Path:
        if self.texuserdir is not None:
            return self.texuserdir / "texmf"
        return self.TEXMFLOCAL

    @property
    def TEXMFCONFIG(self) -> Path:
        if self.texuserdir is not None:
            return self.texuserdir / "texmf-config"
        return self.TEXMFSYSCONFIG

    @property
    def TEXMFVAR(self) -> Path:
        if self.texuserdir is not None:
            return self.texuserdir / "texmf-var"
        return self.TEXMFSYSVAR

    def trees(self) -> dict[str, Path]:
        return {
            "TEXDIR": self.TEXDIR,
            "TEXMFLOCAL": self.TEXMFLOCAL,
            "TEXMFSYSCONFIG": self.TEXMFSYSCONFIG,
            "TEXMFSYSVAR": self.TEXMFSYSVAR,
            "TEXMFHOME": self.TEXMFHOME,
            "TEXMFCONFIG": self.TEXMFCONFIG,
            "TEXMFVAR": self.TEXMFVAR,
        }

    @property
    def selected_scheme(self) -> str:
        return "scheme-infraonly" if supports(self.version, "scheme-infraonly") else "scheme-minimal"

    @property
    def binary(self) -> str | None:
        if (
            self.platform is Platform.DARWIN
            and self.arch is Arch.ARM64
            and supports(self.version, "darwin-universal-binary")
        ):
            return "universal-darwin"
        return None

    def _instopt(self) -> dict[str, int]:
        opts: dict[str, int] = {}
        if supports(self.version, "profile-adjustpath"):
            opts["adjustpath"] = 0
        if supports(self.version, "profile-adjustrepo"):
            opts["adjustrepo"] = 0
        if supports(self.version, "profile-symlinks"):
            opts["symlinks"] = 0
        return opts

    def _tlpdbopt(self) -> dict[str, int]:
        opts: dict[str, int] = {"autobackup": 0}
        if supports(self.version, "profile-new-option-names"):
            opts["install_docfiles"] = 0
            opts["install_srcfiles"] = 0
        else:
            opts["doc"] = 0
            opts["src"] = 0
        if self.platform is Platform.WIN32:
            opts["file_assocs"] = 0
            if supports(self.version, "profile-windows-integration"):
                opts["desktop_integration"] = 0
                opts["w32_multi_user"] = 0
            if supports(self.version, "profile-windows-menu-integration"):
                opts["menu_integration"] = 0
        return opts

    def entries(self) -> dict[str, str]:
        """Profile entries in the order install-tl expects them."""
        plain: dict[str, str] = {
            key: str(path) for key, path in self.trees().items()
        }
        plain["selected_scheme"] = self.selected_scheme
        if supports(self.version, "profile-new-option-names"):
            groups = {"instopt": self._instopt(), "tlpdbopt": self._tlpdbopt()}
        else:
            groups = {"option": {**self._instopt(), **self._tlpdbopt()}}
        for prefix, values in groups.items():
            for key, value in values.items():
                plain[f"{prefix}_{key}"] = str(value)
        if self.binary is not None:
            plain[f"binary_{self.binary}"] = "1"
        return plain

    def render(self) -> str:
        return "\n".join(f"{key} {value}" for key, value in self.entries().items()) + "\n"

    def write(self, directory: Path) -> Path:
        """Write the profile file into ``directory`` and return its path."""
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / "texlive.profile"
        path.write_text(self.render(), encoding="utf-8")
        return path
