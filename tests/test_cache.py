"""Tests for the access cache and checkpoint store — proves TTL and durability."""

from pathlib import Path

import pytest

from vaultledger.access.cache import AccessCache, CheckpointStore, ScanCheckpoint
from vaultledger.access.projection import PrincipalProjection
from vaultledger.models.access import ResolvedAccessSet

ALICE = "0x" + "22" * 20
BOB = "0x" + "33" * 20
H1 = "0x" + "d1" * 32


class ManualClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _resolved(principal: str, at: float) -> ResolvedAccessSet:
    return ResolvedAccessSet(principal=principal, file_hashes=frozenset({H1}), computed_at=at)


class TestAccessCache:
    def test_hit_within_ttl(self) -> None:
        clock = ManualClock()
        cache = AccessCache(ttl_seconds=300, clock=clock)
        entry = _resolved(ALICE, clock.now)
        cache.put(entry)
        clock.now += 299.9
        assert cache.get(ALICE) is entry

    def test_expires_at_ttl(self) -> None:
        clock = ManualClock()
        cache = AccessCache(ttl_seconds=300, clock=clock)
        cache.put(_resolved(ALICE, clock.now))
        clock.now += 300
        assert cache.get(ALICE) is None
        assert len(cache) == 0

    def test_put_purges_expired(self) -> None:
        clock = ManualClock()
        cache = AccessCache(ttl_seconds=10, clock=clock)
        cache.put(_resolved(ALICE, clock.now))
        clock.now += 11
        cache.put(_resolved(BOB, clock.now))
        assert len(cache) == 1

    def test_invalidate(self) -> None:
        cache = AccessCache(clock=ManualClock())
        cache.put(_resolved(ALICE, 1000.0))
        assert cache.invalidate(ALICE) is True
        assert cache.invalidate(ALICE) is False
        assert cache.get(ALICE) is None

    def test_zero_ttl_never_serves(self) -> None:
        clock = ManualClock()
        cache = AccessCache(ttl_seconds=0, clock=clock)
        cache.put(_resolved(ALICE, clock.now))
        assert cache.get(ALICE) is None

    def test_negative_ttl_rejected(self) -> None:
        with pytest.raises(ValueError):
            AccessCache(ttl_seconds=-1)


class TestCheckpointStore:
    def test_never_moves_backwards(self) -> None:
        store = CheckpointStore()
        store.put(ScanCheckpoint(ALICE, 500, PrincipalProjection()))
        store.put(ScanCheckpoint(ALICE, 400, PrincipalProjection(members=frozenset({H1}))))
        checkpoint = store.get(ALICE)
        assert checkpoint is not None
        assert checkpoint.last_block == 500
        assert checkpoint.projection.members == frozenset()

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "checkpoints.json"
        store = CheckpointStore(storage_path=path)
        projection = PrincipalProjection(members=frozenset({H1}), owned=frozenset({H1}))
        store.put(ScanCheckpoint(ALICE, 42, projection))

        reloaded = CheckpointStore(storage_path=path).get(ALICE)
        assert reloaded == ScanCheckpoint(ALICE, 42, projection)
        assert not path.with_suffix(".json.tmp").exists()

    def test_drop(self, tmp_path: Path) -> None:
        path = tmp_path / "checkpoints.json"
        store = CheckpointStore(storage_path=path)
        store.put(ScanCheckpoint(ALICE, 1, PrincipalProjection()))
        store.drop(ALICE)
        assert store.get(ALICE) is None
        assert len(CheckpointStore(storage_path=path)) == 0
