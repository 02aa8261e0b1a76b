"""Tests for cache.py module."""

import hashlib
import json
from unittest.mock import MagicMock

import pytest

from setup_texlive.core.cache import (
    BlobCacheService,
    CacheKeyManager,
    CacheService,
    DefaultCacheService,
    LocalBlobStore,
    ReserveCacheError,
    digest,
    save_cache,
)
from setup_texlive.core.state import SaveState
from setup_texlive.core.types import Arch, CacheStatus, Platform

SECONDARY = "setup-texlive-action-linux-x64-2025-"
OLD_SECONDARY = "setup-texlive-linux-x64-2025-"


@pytest.fixture
def manager():
    return CacheKeyManager(Platform.LINUX, Arch.X64, id_factory=lambda: "0123abcd")


@pytest.fixture
def keys(manager):
    return manager.compute_keys("2025", ["xcolor", "amsmath"])


class TestCacheKeys:
    """Test key computation."""

    def test_layout(self, keys):
        """Test the key hierarchy."""
        package_digest = hashlib.sha256(b'["amsmath","xcolor"]').hexdigest()
        assert keys.secondary == SECONDARY
        assert keys.primary == SECONDARY + package_digest
        assert keys.unique == SECONDARY + package_digest + "-0123abcd"
        assert keys.old_secondary == OLD_SECONDARY
        assert keys.old_primary == OLD_SECONDARY + package_digest

    def test_prefixes(self, keys):
        """Test that each tier extends the one above it."""
        assert keys.unique.startswith(keys.primary)
        assert keys.primary.startswith(keys.secondary)
        assert keys.old_primary.startswith(keys.old_secondary)

    def test_digest_ignores_order_and_duplicates(self):
        assert digest(["b", "a", "b"]) == digest(["a", "b"])
        assert digest([]) == hashlib.sha256(b"[]").hexdigest()

    def test_restore_key_order(self, keys):
        """Test that legacy keys follow their current counterparts."""
        assert keys.restore_keys == [
            keys.primary, keys.old_primary, keys.secondary, keys.old_secondary,
        ]

    def test_unique_ids_differ(self):
        manager = CacheKeyManager(Platform.LINUX, Arch.X64)
        assert manager.compute_keys("2025", []).unique != manager.compute_keys("2025", []).unique


class TestClassify:
    """Test restored-key classification."""

    def test_miss(self, keys):
        assert CacheKeyManager.classify(None, keys) is CacheStatus.MISS

    @pytest.mark.parametrize("attr", ["primary", "unique", "old_primary"])
    def test_hit(self, keys, attr):
        """Test keys that carry the primary key."""
        assert CacheKeyManager.classify(getattr(keys, attr), keys) is CacheStatus.HIT

    def test_hit_on_other_unique(self, keys):
        """Test that any unique key under the primary key is a hit."""
        assert CacheKeyManager.classify(keys.primary + "-ffff", keys) is CacheStatus.HIT

    @pytest.mark.parametrize("prefix", [SECONDARY, OLD_SECONDARY])
    def test_partial(self, keys, prefix):
        """Test keys saved with other package sets."""
        other = prefix + digest(["other"])
        assert CacheKeyManager.classify(other, keys) is CacheStatus.PARTIAL


class TestLocalBlobStore:
    """Test the filesystem blob store."""

    @pytest.fixture
    def tree(self, temp_dir):
        target = temp_dir / "texlive"
        (target / "2025" / "bin").mkdir(parents=True)
        (target / "2025" / "bin" / "tlmgr").write_text("tlmgr")
        return target

    def test_save_and_restore(self, temp_dir, tree):
        """Test archiving a tree and extracting it elsewhere."""
        store = LocalBlobStore(temp_dir / "store")
        assert store.is_available()
        assert store.save([tree], "key-1") > 0

        destination = temp_dir / "restored"
        assert store.restore([destination], "key-1") == "key-1"
        assert (destination / "2025" / "bin" / "tlmgr").read_text() == "tlmgr"
        assert store.keys() == ["key-1"]

    def test_immutable_entries(self, temp_dir, tree):
        """Test that a saved key cannot be saved again."""
        store = LocalBlobStore(temp_dir / "store")
        store.save([tree], "key-1")
        with pytest.raises(ReserveCacheError):
            store.save([tree], "key-1")

    def test_nothing_to_save(self, temp_dir):
        store = LocalBlobStore(temp_dir / "store")
        assert store.save([temp_dir / "missing"], "key-1") == -1
        assert store.keys() == []

    def test_find_prefers_exact_match(self, temp_dir):
        """Test lookup order: exact key, then newest entry per prefix."""
        store = LocalBlobStore(temp_dir / "store")
        store.base_dir.mkdir(parents=True)
        store.metadata_file.write_text(json.dumps({
            "a-1": {"created": 1},
            "a-2": {"created": 2},
            "b-1": {"created": 3},
        }))
        assert store.find("a-1", ["a-"]) == "a-1"
        assert store.find("x", ["a-"]) == "a-2"
        assert store.find("x", ["c-", "b-", "a-"]) == "b-1"
        assert store.find("x", ["c-"]) is None

    def test_restore_miss(self, temp_dir):
        store = LocalBlobStore(temp_dir / "store")
        assert store.restore([temp_dir / "restored"], "key-1", ["key-"]) is None
        assert not (temp_dir / "restored").exists()

    def test_corrupt_metadata(self, temp_dir):
        """Test that unreadable metadata means an empty store."""
        store = LocalBlobStore(temp_dir / "store")
        store.base_dir.mkdir(parents=True)
        store.metadata_file.write_text("{broken")
        assert store.keys() == []


class TestCacheServiceSetup:
    """Test choosing a cache service."""

    def test_disabled(self, temp_dir, keys):
        service = CacheService.setup(temp_dir, "2025", [], enable=False)
        assert isinstance(service, DefaultCacheService)
        assert service.disabled
        assert service.restore() is service
        assert service.register(temp_dir / "state.json") is None

    def test_unavailable_store(self, temp_dir):
        """Test that an unusable store disables caching."""
        store = MagicMock()
        store.is_available.return_value = False
        service = CacheService.setup(temp_dir, "2025", [], store=store)
        assert isinstance(service, DefaultCacheService)

    def test_enabled(self, temp_dir, manager):
        store = MagicMock()
        store.is_available.return_value = True
        service = CacheService.setup(temp_dir, "2025", ["amsmath"], store=store, keys=manager)
        assert isinstance(service, BlobCacheService)
        assert service.keys == manager.compute_keys("2025", ["amsmath"])


class TestBlobCacheService:
    """Test restore outcomes and the keys they lead to."""

    def make_service(self, temp_dir, keys, matched, force_update=False):
        store = MagicMock()
        store.restore.return_value = matched
        service = BlobCacheService(temp_dir / "texlive", keys, store, force_update=force_update)
        return service.restore(), store

    def test_miss(self, temp_dir, keys):
        """Test that a miss saves under the primary key."""
        service, store = self.make_service(temp_dir, keys, None)
        store.restore.assert_called_once_with([temp_dir / "texlive"], keys.unique, keys.restore_keys)
        assert not service.restored
        assert not service.hit
        state = service.entry_state()
        assert state.key == keys.primary
        assert state.target == str(temp_dir / "texlive")

    def test_hit(self, temp_dir, keys):
        """Test that a hit needs no save."""
        service, _ = self.make_service(temp_dir, keys, keys.primary)
        assert service.hit
        state = service.entry_state()
        assert state.key == keys.primary
        assert state.target is None

    def test_forced_update(self, temp_dir, keys):
        """Test that a forced update saves a new unique entry."""
        service, _ = self.make_service(temp_dir, keys, keys.primary, force_update=True)
        state = service.entry_state()
        assert state.key == keys.unique
        assert state.target is not None

    def test_partial(self, temp_dir, keys):
        """Test that a partial restore saves under the primary key."""
        service, _ = self.make_service(temp_dir, keys, SECONDARY + digest(["other"]))
        assert service.restored
        assert not service.hit
        assert service.entry_state().key == keys.primary

    def test_legacy_primary(self, temp_dir, keys):
        """Test that legacy entries are re-saved under the current format."""
        service, _ = self.make_service(temp_dir, keys, keys.old_primary)
        assert service.hit
        assert service.force_update
        assert service.entry_state().key == keys.unique

    def test_update_after_hit(self, temp_dir, keys):
        service, _ = self.make_service(temp_dir, keys, keys.primary)
        service.update()
        assert service.entry_state().target is not None

    def test_restore_failure(self, temp_dir, keys):
        """Test that store errors are not raised."""
        store = MagicMock()
        store.restore.side_effect = OSError("disk")
        service = BlobCacheService(temp_dir / "texlive", keys, store).restore()
        assert not service.restored

    def test_register(self, temp_dir, keys):
        """Test that the save phase is told what to do."""
        service, _ = self.make_service(temp_dir, keys, None)
        state_path = temp_dir / "state.json"
        service.register(state_path)
        assert SaveState.read(state_path) == SaveState(
            key=keys.primary, target=str(temp_dir / "texlive")
        )


class TestSaveCache:
    """Test the save phase."""

    def test_no_state(self, temp_dir):
        store = MagicMock()
        assert save_cache(temp_dir / "state.json", store) is None
        store.save.assert_not_called()

    def test_hit_not_saved(self, temp_dir):
        """Test that a key without a target is not saved."""
        path = temp_dir / "state.json"
        SaveState(key="k").write(path)
        store = MagicMock()
        assert save_cache(path, store) is None
        store.save.assert_not_called()

    def test_saves(self, temp_dir):
        path = temp_dir / "state.json"
        SaveState(key="k", target=str(temp_dir / "tl")).write(path)
        store = MagicMock()
        store.save.return_value = 42
        assert save_cache(path, store) == 42
        store.save.assert_called_once_with([temp_dir / "tl"], "k")

    @pytest.mark.parametrize("error", [ReserveCacheError("taken"), OSError("disk")])
    def test_errors_are_logged(self, temp_dir, error):
        """Test that save failures never raise."""
        path = temp_dir / "state.json"
        SaveState(key="k", target=str(temp_dir / "tl")).write(path)
        store = MagicMock()
        store.save.side_effect = error
        assert save_cache(path, store) is None

    def test_round_trip_with_local_store(self, temp_dir, manager):
        """Test that a saved installation is a hit for the next run."""
        target = temp_dir / "texlive"
        target.mkdir()
        (target / "marker").write_text("x")
        store = LocalBlobStore(temp_dir / "store")
        keys = manager.compute_keys("2025", ["amsmath"])
        state_path = temp_dir / "state.json"

        first = BlobCacheService(target, keys, store).restore()
        assert not first.restored
        first.register(state_path)
        assert save_cache(state_path, store) is not None

        second = BlobCacheService(temp_dir / "restored", keys, store).restore()
        assert second.hit
        assert (temp_dir / "restored" / "marker").read_text() == "x"
