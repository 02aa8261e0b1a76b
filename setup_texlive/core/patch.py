"""Source patches applied to extracted installer trees.

Old releases of ``install-tl`` and the TeX Live Perl modules do not run
unmodified on current runner images.  Each patch names the file, the
releases and platforms it applies to, and a list of regex substitutions.
"""

from __future__ import annotations

import difflib
import re
from dataclasses import dataclass
from pathlib import Path

import structlog

from setup_texlive.core.types import Platform

logger = structlog.get_logger()


@dataclass(frozen=True)
class Change:
    pattern: str
    replacement: str


@dataclass(frozen=True)
class Patch:
    description: str
    file: str
    changes: tuple[Change, ...]
    min_version: str | None = None
    max_version: str | None = None
    platforms: frozenset[Platform] | None = None

    def applies(self, version: str, platform: Platform) -> bool:
        if self.min_version is not None and version < self.min_version:
            return False
        if self.max_version is not None and version > self.max_version:
            return False
        return self.platforms is None or platform in self.platforms


PATCHES: tuple[Patch, ...] = (
    Patch(
        description="Replace `defined(@array)`, a fatal error since Perl 5.22",
        file="tlpkg/TeXLive/TLPDB.pm",
        changes=(Change(r"defined\((@[\w:]+)\)", r"\1"),),
        max_version="2010",
    ),
    Patch(
        description="Let `install-tl-windows.bat` exit with the installer's status",
        file="install-tl-windows.bat",
        changes=(Change(r"(?m)^exit /b$", "exit /b %ERRORLEVEL%"),),
        min_version="2013",
        max_version="2019",
        platforms=frozenset({Platform.WIN32}),
    ),
)


def select_patches(
    version: str, platform: Platform, patches: tuple[Patch, ...] = PATCHES
) -> list[Patch]:
    """Patches applicable to a release on a platform."""
    return [p for p in patches if p.applies(version, platform)]


def apply_patch(patch: Patch, directory: Path) -> list[str]:
    """Apply one patch, returning the unified diff of the change.

    Missing target files are skipped.
    """
    target = directory / patch.file
    if not target.is_file():
        logger.debug("patch_target_missing", file=patch.file)
        return []
    original = target.read_text(encoding="utf-8", errors="surrogateescape")
    content = original
    for change in patch.changes:
        content = re.sub(change.pattern, change.replacement, content)
    if content == original:
        return []
    target.write_text(content, encoding="utf-8", errors="surrogateescape")
    return list(difflib.unified_diff(
        original.splitlines(), content.splitlines(),
        fromfile=f"a/{patch.file}", tofile=f"b/{patch.file}", lineterm="",
    ))


def patch(
    directory: Path,
    version: str,
    platform: Platform | None = None,
    patches: tuple[Patch, ...] = PATCHES,
) -> int:
    """Apply every applicable patch to an extracted tree.

    Returns:
        Number of files changed
    """
    selected = select_patches(version, platform or Platform.current(), patches)
    if not selected:
        return 0
    logger.info("applying_patches", count=len(selected))
    changed = 0
    for p in selected:
        diff = apply_patch(p, directory)
        if diff:
            changed += 1
            logger.info("patch_applied", description=p.description, file=p.file)
            for line in diff:
                logger.debug("patch_diff", line=line)
    return changed
