"""DEPENDS.txt dependency lists.

Format: one directive per line, ``#`` starts a comment::

    package <name>     # following dependencies belong to <name>
    hard <names...>    # required dependencies
    soft <names...>    # optional dependencies
    <names...>         # same as ``hard``
"""

from __future__ import annotations

import glob
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import structlog

logger = structlog.get_logger()

DependencyType = Literal["hard", "soft"]

_COMMENT = re.compile(r"#.*")
_DIRECTIVE = re.compile(r"^(?P<type>package|hard|soft)(?:$|\s(?P<args>.*))")


@dataclass(frozen=True)
class Dependency:
    name: str
    type: DependencyType
    package: str | None = None


def parse(text: str) -> Iterator[Dependency]:
    """Yield every dependency named in a DEPENDS.txt document.

    Malformed ``package`` directives are reported and reset the current
    package.
    """
    package: str | None = None
    for raw in _COMMENT.sub("", text).split("\n"):
        line = raw.strip()
        if not line:
            continue
        found = _DIRECTIVE.match(line)
        directive = found.group("type") if found else "hard"
        args = ((found.group("args") if found else line) or "").strip()
        if directive == "package":
            if not args or re.search(r"\s", args):
                logger.warning("depends_txt_invalid_package_directive", args=args)
                package = None
            else:
                package = args
            continue
        for name in args.split():
            yield Dependency(name, directive, package)  # type: ignore[arg-type]


class DependsTxt:
    """Dependencies grouped by the package they belong to.

    Dependencies before any ``package`` directive belong to ``""``.
    """

    def __init__(self, text: str):
        self._groups: dict[str, dict[str, set[str]]] = {}
        for dep in parse(text):
            group = self._groups.setdefault(dep.package or "", {})
            group.setdefault(dep.type, set()).add(dep.name)

    def get(self, package: str) -> dict[str, set[str]] | None:
        return self._groups.get(package)

    def __iter__(self) -> Iterator[tuple[str, dict[str, set[str]]]]:
        return iter(self._groups.items())

    def __len__(self) -> int:
        return len(self._groups)

    def names(self) -> set[str]:
        """Every dependency name, hard or soft."""
        return {name for group in self._groups.values() for names in group.values() for name in names}


def collect_packages(
    packages: str | None = None,
    package_file: str | None = None,
    *,
    root: Path | None = None,
) -> tuple[str, ...]:
    """Gather package names from an inline list and DEPENDS.txt files.

    Args:
        packages: Inline DEPENDS.txt-formatted text
        package_file: Glob pattern of DEPENDS.txt files
        root: Directory relative patterns are resolved against

    Returns:
        Sorted, deduplicated package names
    """
    names: set[str] = set()
    if packages is not None:
        logger.info("parsing_packages_input")
        names |= DependsTxt(packages).names()
    if package_file is not None:
        files = _glob_files(package_file, root)
        if not files:
            logger.info("package_file_not_found", pattern=package_file)
        for path in files:
            depends = DependsTxt(path.read_text(encoding="utf-8"))
            logger.info("parsing_package_file", path=str(path), groups=len(depends))
            names |= depends.names()

    result = tuple(sorted(names))
    if packages is not None or package_file is not None:
        logger.info("packages_found", count=len(result), packages=list(result))
    return result


def _glob_files(pattern: str, root: Path | None) -> list[Path]:
    base = str(root) if root is not None else None
    matches: Iterable[str] = glob.glob(pattern, root_dir=base, recursive=True)
    paths = [Path(base, m) if base is not None else Path(m) for m in matches]
    return sorted(p for p in paths if p.is_file())
