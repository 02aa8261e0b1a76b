"""Directory-based tool cache.

Cache layout (compatible with the hosted runners' tool cache):
{root}/
└── {tool}/
    └── {version}/
        ├── {arch}/            # Cached directory tree
        └── {arch}.complete    # Marker written after a successful copy
"""

from __future__ import annotations

import shutil
from pathlib import Path

import structlog

from setup_texlive.core.types import Arch

logger = structlog.get_logger()


class ToolCache:
    """Stores extracted tool directories keyed by (name, version)."""

    def __init__(self, root: Path, arch: Arch | None = None):
        self.root = root
        self.arch = arch or Arch.current()

    def _tool_path(self, tool: str, version: str) -> Path:
        if not tool:
            raise ValueError("Tool name cannot be empty")
        if not version:
            raise ValueError("Version cannot be empty")
        return self.root / tool / version / self.arch.value

    def find(self, tool: str, version: str) -> str:
        """Locate a cached tool.

        Returns:
            The cached directory, or an empty string if not cached
        """
        path = self._tool_path(tool, version)
        marker = path.with_name(f"{path.name}.complete")
        if path.is_dir() and marker.exists():
            logger.debug("tool_cache_hit", tool=tool, version=version, path=str(path))
            return str(path)
        return ""

    def cache_dir(self, source: Path, tool: str, version: str) -> Path:
        """Copy a directory into the cache.

        Raises:
            OSError: If the copy fails
        """
        path = self._tool_path(tool, version)
        marker = path.with_name(f"{path.name}.complete")
        if marker.exists():
            marker.unlink()
        if path.exists():
            shutil.rmtree(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source, path, symlinks=True)
        marker.touch()
        logger.debug("tool_cache_stored", tool=tool, version=version, path=str(path))
        return path
