"""Read-through cache and scan checkpoints for access resolution.

AccessCache holds finished ResolvedAccessSets for a short TTL so repeated
queries cost no ledger I/O. CheckpointStore remembers, per principal, how
far the event history has been folded, so a cache miss only scans blocks
that arrived since. Both are owned by one resolution engine; nothing here
is process-global.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from vaultledger.access.projection import PrincipalProjection
from vaultledger.models.access import ResolvedAccessSet

DEFAULT_TTL_SECONDS = 300.0


class AccessCache:
    """Per-principal ResolvedAccessSet cache with a fixed TTL.

    A set computed at t is served while now - t < ttl. Expired entries are
    dropped lazily on lookup and on every store.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be non-negative")
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, ResolvedAccessSet] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def now(self) -> float:
        return self._clock()

    def get(self, principal: str) -> Optional[ResolvedAccessSet]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(principal)
            if entry is None:
                return None
            if now - entry.computed_at >= self._ttl:
                del self._entries[principal]
                return None
            return entry

    def put(self, resolved: ResolvedAccessSet) -> None:
        now = self._clock()
        with self._lock:
            self._purge_locked(now)
            self._entries[resolved.principal] = resolved

    def invalidate(self, principal: str) -> bool:
        """Drop the cached set for principal. True if one was cached."""
        with self._lock:
            return self._entries.pop(principal, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _purge_locked(self, now: float) -> None:
        expired = [p for p, e in self._entries.items() if now - e.computed_at >= self._ttl]
        for principal in expired:
            del self._entries[principal]


@dataclass(frozen=True)
class ScanCheckpoint:
    """Projection of all events up to and including last_block."""
    principal: str
    last_block: int
    projection: PrincipalProjection

    def to_dict(self) -> dict:
        return {
            "principal": self.principal,
            "last_block": self.last_block,
            "members": sorted(self.projection.members),
            "owned": sorted(self.projection.owned),
        }

    @staticmethod
    def from_dict(data: dict) -> ScanCheckpoint:
        return ScanCheckpoint(
            principal=data["principal"],
            last_block=int(data["last_block"]),
            projection=PrincipalProjection(
                members=frozenset(data.get("members", [])),
                owned=frozenset(data.get("owned", [])),
            ),
        )


class CheckpointStore:
    """Per-principal scan checkpoints, optionally persisted as one JSON file.

    The file is rewritten atomically (write to a sibling, then replace) on
    every update and loaded on construction.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._storage_path = storage_path
        self._checkpoints: dict[str, ScanCheckpoint] = {}
        self._lock = threading.Lock()

        if storage_path and storage_path.exists():
            raw = json.loads(storage_path.read_text(encoding="utf-8"))
            for entry in raw.get("checkpoints", []):
                checkpoint = ScanCheckpoint.from_dict(entry)
                self._checkpoints[checkpoint.principal] = checkpoint

    def get(self, principal: str) -> Optional[ScanCheckpoint]:
        with self._lock:
            return self._checkpoints.get(principal)

    def put(self, checkpoint: ScanCheckpoint) -> None:
        with self._lock:
            current = self._checkpoints.get(checkpoint.principal)
            # Never move a checkpoint backwards; a slower concurrent scan
            # may finish after a faster one.
            if current is not None and current.last_block > checkpoint.last_block:
                return
            self._checkpoints[checkpoint.principal] = checkpoint
            self._save_locked()

    def drop(self, principal: str) -> None:
        with self._lock:
            if self._checkpoints.pop(principal, None) is not None:
                self._save_locked()

    def __len__(self) -> int:
        with self._lock:
            return len(self._checkpoints)

    def _save_locked(self) -> None:
        if self._storage_path is None:
            return
        payload = {
            "checkpoints": [
                cp.to_dict() for _, cp in sorted(self._checkpoints.items())
            ],
        }
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self._storage_path)
