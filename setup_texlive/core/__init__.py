"""Core functionality for setup_texlive.

This module provides the installation protocol:
- Release tracking and version resolution
- Repository candidates and fallback
- Failure classification
- Cache keys and cache services
- install-tl and tlmgr wrappers
"""

from setup_texlive.core.cache import CacheKeyManager, CacheKeys, CacheService
from setup_texlive.core.capabilities import supports
from setup_texlive.core.errors import (
    ClassifiedError,
    ErrorClassifier,
    ErrorKind,
    Outcome,
    TeXLiveError,
)
from setup_texlive.core.types import (
    Arch,
    CacheStatus,
    Platform,
    ReleaseWindow,
    Repository,
    RepositoryKind,
    Version,
)

__all__ = [
    # Types
    "Arch",
    "CacheStatus",
    "Platform",
    "ReleaseWindow",
    "Repository",
    "RepositoryKind",
    "Version",
    # Errors
    "ClassifiedError",
    "ErrorClassifier",
    "ErrorKind",
    "Outcome",
    "TeXLiveError",
    # Cache
    "CacheKeyManager",
    "CacheKeys",
    "CacheService",
    # Capabilities
    "supports",
]
