"""setup-texlive - TeX Live acquisition, caching and update for CI.

This package installs TeX Live inside ephemeral CI jobs as cheaply as
possible: a warm cache is preferred over a fresh install, and a
metadata-only update over a reinstall, while coping with a mirror network
that often serves stale or incompatible data.

Key modules:
- core: Release tracking, repository fallback, caching and tool wrappers
- commands: CLI command implementations
"""

__version__ = "0.1.0"
__author__ = "setup-texlive contributors"

# Re-export commonly used types and functions
from setup_texlive.core.types import (
    Platform,
    ReleaseWindow,
    Repository,
    Version,
)

__all__ = [
    "__version__",
    "__author__",
    "Platform",
    "ReleaseWindow",
    "Repository",
    "Version",
]
