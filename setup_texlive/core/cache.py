"""Installation caching.

Cache keys form a three-tier hierarchy::

    secondary = setup-texlive-action-{platform}-{arch}-{version}-
    primary   = {secondary}{sha256 of the sorted package list}
    unique    = {primary}-{random id}

Entries written by earlier releases of the action used the prefix
``setup-texlive-`` instead; those legacy keys are probed after their
current-format counterparts.

Blob store layout:
{cache_dir}/
├── entries/
│   └── {key}.tar.gz     # One archive per saved key
└── metadata.json        # key -> {created, size}
"""

from __future__ import annotations

import hashlib
import json
import shutil
import tarfile
import tempfile
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import structlog

from setup_texlive.core.state import SaveState
from setup_texlive.core.types import Arch, CacheStatus, Platform

logger = structlog.get_logger()

KEY_PREFIX = "setup-texlive-action"
OLD_KEY_PREFIX = "setup-texlive"


def digest(packages: Iterable[str]) -> str:
    """Stable hash of a package set, independent of order and duplicates."""
    data = json.dumps(sorted(set(packages)), separators=(",", ":"))
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheKeys:
    """Cache keys for one (platform, arch, version, packages) entry."""

    secondary: str
    primary: str
    unique: str
    old_secondary: str
    old_primary: str

    @property
    def restore_keys(self) -> list[str]:
        """Fallback restore keys, each legacy key after its current counterpart."""
        return [self.primary, self.old_primary, self.secondary, self.old_secondary]


class CacheKeyManager:
    """Computes and classifies cache keys."""

    def __init__(
        self,
        platform: Platform | None = None,
        arch: Arch | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self.platform = platform or Platform.current()
        self.arch = arch or Arch.current()
        self.id_factory = id_factory or (lambda: uuid.uuid4().hex)

    def compute_keys(self, version: str, packages: Iterable[str]) -> CacheKeys:
        distribution = f"{self.platform.value}-{self.arch.value}-{version}"
        package_digest = digest(packages)
        secondary = f"{KEY_PREFIX}-{distribution}-"
        old_secondary = f"{OLD_KEY_PREFIX}-{distribution}-"
        primary = secondary + package_digest
        return CacheKeys(
            secondary=secondary,
            primary=primary,
            unique=f"{primary}-{self.id_factory()}",
            old_secondary=old_secondary,
            old_primary=old_secondary + package_digest,
        )

    @staticmethod
    def classify(restored_key: str | None, keys: CacheKeys) -> CacheStatus:
        """Classify a restored key.

        A key starting with the primary key (current or legacy) is a hit;
        anything else that restored something is a partial restore.
        """
        if restored_key is None:
            return CacheStatus.MISS
        if restored_key.startswith((keys.primary, keys.old_primary)):
            return CacheStatus.HIT
        return CacheStatus.PARTIAL


class ReserveCacheError(Exception):
    """Raised when saving under a key that another job already saved."""


class BlobStore(Protocol):
    """Storage for cached directory trees."""

    def is_available(self) -> bool: ...

    def restore(
        self, paths: Sequence[Path], primary_key: str, restore_keys: Sequence[str] = ()
    ) -> str | None: ...

    def save(self, paths: Sequence[Path], key: str) -> int: ...


class LocalBlobStore:
    """Blob store on the local filesystem.

    Lookup follows the hosted cache service: an exact match on the primary
    key first, then the newest entry whose key starts with each restore key
    in turn.  Entries are immutable; saving an existing key fails.
    """

    def __init__(self, base_dir: Path | None = None):
        """Initialize blob store.

        Args:
            base_dir: Store directory, defaults to ~/.cache/setup-texlive/blobs
        """
        self.base_dir = base_dir or (Path.home() / ".cache" / "setup-texlive" / "blobs")
        self.entries_dir = self.base_dir / "entries"
        self.metadata_file = self.base_dir / "metadata.json"

    def is_available(self) -> bool:
        try:
            self.entries_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("cache_store_unavailable", path=str(self.base_dir), error=str(e))
            return False
        return True

    def _load_metadata(self) -> dict[str, Any]:
        if not self.metadata_file.exists():
            return {}
        try:
            with open(self.metadata_file, encoding="utf-8") as f:
                data: Any = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("metadata_load_failed", error=str(e))
            return {}
        if not isinstance(data, dict):
            logger.warning("metadata_invalid_format", type=type(data).__name__)
            return {}
        return data

    def _save_metadata(self, metadata: dict[str, Any]) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.metadata_file.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(metadata, f, indent=2)
        tmp.replace(self.metadata_file)

    def _archive_path(self, key: str) -> Path:
        if not key:
            raise ValueError("Cache key cannot be empty")
        safe_key = key.replace("/", "_").replace(":", "_")
        return self.entries_dir / f"{safe_key}.tar.gz"

    def find(self, primary_key: str, restore_keys: Sequence[str] = ()) -> str | None:
        """Key of the entry a restore would use, without extracting it."""
        metadata = self._load_metadata()
        if primary_key in metadata:
            return primary_key
        for prefix in restore_keys:
            candidates = [k for k in metadata if k.startswith(prefix)]
            if candidates:
                return max(candidates, key=lambda k: metadata[k].get("created", 0))
        return None

    def restore(
        self, paths: Sequence[Path], primary_key: str, restore_keys: Sequence[str] = ()
    ) -> str | None:
        """Extract a matching entry onto ``paths``.

        Returns:
            The matched key, or None if nothing matched
        """
        key = self.find(primary_key, restore_keys)
        if key is None:
            return None
        archive = self._archive_path(key)
        with tempfile.TemporaryDirectory(prefix="setup-texlive-cache-") as tmp:
            with tarfile.open(archive, "r:gz") as tf:
                tf.extractall(tmp, filter="data")
            for index, path in enumerate(paths):
                source = Path(tmp) / str(index)
                if source.exists():
                    path.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copytree(source, path, symlinks=True, dirs_exist_ok=True)
        logger.debug("cache_entry_extracted", key=key, size=archive.stat().st_size)
        return key

    def save(self, paths: Sequence[Path], key: str) -> int:
        """Archive ``paths`` under ``key``.

        Returns:
            Archive size in bytes, or -1 if there was nothing to save

        Raises:
            ReserveCacheError: If ``key`` already exists
        """
        metadata = self._load_metadata()
        if key in metadata:
            raise ReserveCacheError(
                f"Unable to reserve cache with key {key}, "
                "another job may be creating this cache."
            )
        existing = [p for p in paths if p.exists()]
        if not existing:
            logger.warning("cache_paths_missing", paths=[str(p) for p in paths])
            return -1

        self.entries_dir.mkdir(parents=True, exist_ok=True)
        archive = self._archive_path(key)
        tmp = archive.with_name(archive.name + ".tmp")
        with tarfile.open(tmp, "w:gz") as tf:
            for index, path in enumerate(paths):
                if path.exists():
                    tf.add(path, arcname=str(index))
        tmp.replace(archive)

        size = archive.stat().st_size
        metadata[key] = {"created": time.time(), "size": size}
        self._save_metadata(metadata)
        return size

    def keys(self) -> list[str]:
        """Saved keys, newest first."""
        metadata = self._load_metadata()
        return sorted(metadata, key=lambda k: metadata[k].get("created", 0), reverse=True)


@dataclass(frozen=True)
class CacheEntryState:
    """Snapshot of a cache service after restore."""

    restored: bool
    hit: bool
    forced_update: bool
    target: str | None = None
    key: str | None = None


class CacheService(ABC):
    """Restores an installation before a run and registers it for saving after."""

    enabled: bool = False

    @property
    @abstractmethod
    def hit(self) -> bool: ...

    @property
    @abstractmethod
    def restored(self) -> bool: ...

    @abstractmethod
    def restore(self) -> CacheService: ...

    @abstractmethod
    def update(self) -> None:
        """Make the next save write a fresh entry even after a hit."""

    @abstractmethod
    def register(self, state_path: Path) -> SaveState | None:
        """Persist what the save phase should do."""

    @abstractmethod
    def entry_state(self) -> CacheEntryState: ...

    @property
    def disabled(self) -> bool:
        return not self.enabled

    @classmethod
    def setup(
        cls,
        target: Path,
        version: str,
        packages: Iterable[str],
        *,
        enable: bool = True,
        store: BlobStore | None = None,
        keys: CacheKeyManager | None = None,
        force_update: bool = False,
    ) -> CacheService:
        """Create the cache service for a run.

        Falls back to a disabled service when caching is off or the store
        cannot be used.
        """
        if enable:
            store = store or LocalBlobStore()
            if store.is_available():
                manager = keys or CacheKeyManager()
                return BlobCacheService(
                    target,
                    manager.compute_keys(version, packages),
                    store,
                    force_update=force_update,
                )
            logger.warning("cache_unavailable", note="Caching is disabled as cache service is not available")
        return DefaultCacheService()


class DefaultCacheService(CacheService):
    """Cache service used when caching is disabled."""

    enabled = False

    @property
    def hit(self) -> bool:
        return False

    @property
    def restored(self) -> bool:
        return False

    def restore(self) -> CacheService:
        return self

    def update(self) -> None:
        pass

    def register(self, state_path: Path) -> SaveState | None:
        return None

    def entry_state(self) -> CacheEntryState:
        return CacheEntryState(restored=False, hit=False, forced_update=False)


class BlobCacheService(CacheService):
    """Cache service backed by a :class:`BlobStore`."""

    enabled = True

    def __init__(
        self,
        target: Path,
        keys: CacheKeys,
        store: BlobStore,
        *,
        force_update: bool = False,
    ):
        self.target = target
        self.keys = keys
        self.store = store
        self.force_update = force_update
        self.matched_key: str | None = None

    def restore(self) -> CacheService:
        """Restore the installation; failures are logged, never raised."""
        try:
            self.matched_key = self.store.restore(
                [self.target], self.keys.unique, self.keys.restore_keys
            )
        except Exception as e:
            logger.warning("cache_restore_failed", error=str(e), exc_info=True)
            self.matched_key = None
            return self
        if self.matched_key is None:
            logger.info("cache_not_found")
            return self
        logger.info("cache_restored", target=str(self.target), key=self.matched_key)
        if self.matched_key.startswith(self.keys.old_primary):
            # Re-save legacy entries under the current key format.
            self.update()
        return self

    def update(self) -> None:
        self.force_update = True

    @property
    def status(self) -> CacheStatus:
        return CacheKeyManager.classify(self.matched_key, self.keys)

    @property
    def hit(self) -> bool:
        return self.status is CacheStatus.HIT

    @property
    def restored(self) -> bool:
        return self.matched_key is not None

    @property
    def key(self) -> str:
        """Key the save phase should use."""
        if not self.hit:
            return self.keys.primary
        if self.force_update:
            return self.keys.unique
        assert self.matched_key is not None
        return self.matched_key

    def entry_state(self) -> CacheEntryState:
        needs_save = self.force_update or not self.hit
        return CacheEntryState(
            restored=self.restored,
            hit=self.hit,
            forced_update=self.force_update,
            target=str(self.target) if needs_save else None,
            key=self.key,
        )

    def register(self, state_path: Path) -> SaveState:
        entry = self.entry_state()
        state = SaveState(key=entry.key, target=entry.target)
        state.write(state_path)
        if state.target is not None:
            logger.info("cache_save_scheduled", target=state.target, key=state.key)
        return state


def save_cache(state_path: Path, store: BlobStore | None = None) -> int | None:
    """Save the installation recorded by the install phase.

    Failures are logged and never raised.

    Returns:
        The saved size, or None if nothing was saved
    """
    try:
        state = SaveState.read(state_path)
        if state is None or state.key is None:
            logger.info("cache_nothing_to_save")
            return None
        if state.target is None:
            logger.info("cache_hit_not_saving", key=state.key)
            return None
        store = store or LocalBlobStore()
        size = store.save([Path(state.target)], state.key)
        if size == -1:
            return None
        logger.info("cache_saved", target=state.target, key=state.key, size=size)
        return size
    except ReserveCacheError as e:
        logger.info("cache_already_exists", message=str(e))
    except Exception as e:
        logger.warning("cache_save_failed", error=str(e), exc_info=True)
    return None
