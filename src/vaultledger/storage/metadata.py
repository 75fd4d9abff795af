"""Off-ledger file metadata: names, types and sizes the ledger does not hold.

The ledger records only (file hash, owner, pointer). Everything a user sees
in a file listing lives here, keyed by file hash. Deletion is logical: the
record gains a deleted_at timestamp and drops out of listings, while the
ledger entry and the ciphertext are left alone.

Persistence is an append-only JSONL file. Every change appends the full
record; on load the last line for each file hash wins.
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Optional

from vaultledger.errors import DuplicateFile, NotFound
from vaultledger.models.identity import normalize_address, normalize_file_hash


@dataclass(frozen=True)
class FileMetadata:
    file_hash: str
    owner: str
    file_name: str
    content_type: str
    size: int
    encrypted_size: int
    pointer: str
    uploaded_at: str
    deleted_at: Optional[str] = None

    @property
    def deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileMetadata:
        return cls(
            file_hash=normalize_file_hash(data["file_hash"]),
            owner=normalize_address(data["owner"]),
            file_name=str(data["file_name"]),
            content_type=str(data["content_type"]),
            size=int(data["size"]),
            encrypted_size=int(data["encrypted_size"]),
            pointer=str(data["pointer"]),
            uploaded_at=str(data["uploaded_at"]),
            deleted_at=data.get("deleted_at"),
        )


class MetadataStore:
    """File metadata keyed by file hash, optionally persisted to JSONL.

    Usage:
        store = MetadataStore(storage_path=Path("data/metadata.jsonl"))
        store.put(FileMetadata(...))
        store.get(file_hash)              # None if never recorded
        store.mark_deleted(file_hash, "2026-01-01T00:00:00+00:00")
        store.owned_by(owner)             # live records, newest first
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._records: dict[str, FileMetadata] = {}
        self._storage_path = storage_path
        self._lock = threading.Lock()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def put(self, metadata: FileMetadata) -> FileMetadata:
        """Record metadata for a new file. A live record for the hash is a duplicate."""
        metadata = FileMetadata.from_dict(metadata.to_dict())
        with self._lock:
            existing = self._records.get(metadata.file_hash)
            if existing is not None and not existing.deleted:
                raise DuplicateFile(f"Metadata already recorded: {metadata.file_hash}")
            self._write(metadata)
        return metadata

    def get(self, file_hash: str) -> Optional[FileMetadata]:
        """The latest record for file_hash, deleted or not."""
        with self._lock:
            return self._records.get(normalize_file_hash(file_hash))

    def mark_deleted(self, file_hash: str, deleted_at: str) -> FileMetadata:
        file_hash = normalize_file_hash(file_hash)
        with self._lock:
            existing = self._records.get(file_hash)
            if existing is None or existing.deleted:
                raise NotFound(f"No metadata for file: {file_hash}")
            updated = replace(existing, deleted_at=deleted_at)
            self._write(updated)
        return updated

    def owned_by(self, owner: str) -> list[FileMetadata]:
        owner = normalize_address(owner)
        with self._lock:
            owned = [
                m for m in self._records.values()
                if m.owner == owner and not m.deleted
            ]
        return sorted(owned, key=lambda m: m.uploaded_at, reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for m in self._records.values() if not m.deleted)

    def _write(self, metadata: FileMetadata) -> None:
        if self._storage_path is not None:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(metadata.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")
        self._records[metadata.file_hash] = metadata

    def _load_from_file(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    metadata = FileMetadata.from_dict(json.loads(line))
                except (KeyError, TypeError, ValueError) as exc:
                    raise ValueError(f"Malformed metadata (line {line_num}): {exc}") from exc
                self._records[metadata.file_hash] = metadata
