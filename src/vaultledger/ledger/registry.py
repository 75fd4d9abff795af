"""Access registry — the ledger-side rules for file custody and access.

This is the registry contract's logic expressed in Python. Each accepted
state-changing call is mined into its own block and emits one event. The
event list is append-only and is the sole source of truth: the record and
membership maps are a projection of it, and a registry loaded from disk is
rebuilt by replaying its events through the same rules.

Rules:
1. A file hash can be registered once. The registering caller becomes the
   immutable owner and an implicit member.
2. Only the owner may grant or revoke.
3. The owner can never be revoked.
4. Granting an existing member or revoking a non-member changes nothing
   and emits nothing.
5. has_access is False, never an error, for unknown file hashes.
"""

from __future__ import annotations

import hashlib
import json
import threading
from pathlib import Path
from typing import Optional

from vaultledger.errors import (
    CannotRevokeOwner,
    DuplicateFile,
    InvalidPointer,
    NotFound,
    NotOwner,
)
from vaultledger.models.access import EventType, FileRecord, LedgerEvent
from vaultledger.models.identity import (
    normalize_address,
    normalize_file_hash,
    normalize_principal,
)


class AccessRegistry:
    """In-process access registry with optional JSONL persistence.

    Usage:
        registry = AccessRegistry()
        registry.register_file(owner, file_hash, "uploads/abc.bin")
        registry.grant(owner, file_hash, reader)
        registry.has_access(file_hash, reader)   # True
        registry.revoke(owner, file_hash, reader)

    Persistence (optional):
        registry = AccessRegistry(storage_path=Path("data/registry.jsonl"))
        # Events are appended on each mutation and replayed on construction.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._records: dict[str, FileRecord] = {}
        self._members: dict[str, set[str]] = {}
        self._events: list[LedgerEvent] = []
        self._block_number = 0
        self._storage_path = storage_path
        self._lock = threading.RLock()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    # ------------------------------------------------------------------
    # State-changing calls
    # ------------------------------------------------------------------

    def register_file(self, sender: str, file_hash: str, pointer: str) -> LedgerEvent:
        """Create the FileRecord for file_hash, owned by sender."""
        sender = normalize_principal(sender)
        file_hash = normalize_file_hash(file_hash)
        if not pointer:
            raise InvalidPointer("Pointer cannot be empty")

        with self._lock:
            if file_hash in self._records:
                raise DuplicateFile(f"File already exists: {file_hash}")
            return self._emit(EventType.FILE_REGISTERED, file_hash, sender, pointer)

    def grant(self, sender: str, file_hash: str, principal: str) -> Optional[LedgerEvent]:
        """Add principal to the file's access list.

        Returns the emitted event, or None if principal already had access.
        """
        sender = normalize_address(sender)
        file_hash = normalize_file_hash(file_hash)
        principal = normalize_principal(principal)

        with self._lock:
            self._require_owner(file_hash, sender, "grant")
            if principal in self._members[file_hash]:
                return None
            return self._emit(EventType.ACCESS_GRANTED, file_hash, principal)

    def revoke(self, sender: str, file_hash: str, principal: str) -> Optional[LedgerEvent]:
        """Remove principal from the file's access list.

        Returns the emitted event, or None if principal had no access.
        """
        sender = normalize_address(sender)
        file_hash = normalize_file_hash(file_hash)
        principal = normalize_address(principal)

        with self._lock:
            record = self._require_owner(file_hash, sender, "revoke")
            if principal == record.owner:
                raise CannotRevokeOwner("Cannot revoke the owner's access")
            if principal not in self._members[file_hash]:
                return None
            return self._emit(EventType.ACCESS_REVOKED, file_hash, principal)

    def mine_empty_blocks(self, count: int) -> int:
        """Advance the chain height without events. Returns the new height.

        Empty blocks are not persisted; a reloaded registry resumes at the
        height of its last event.
        """
        if count < 0:
            raise ValueError("count must be non-negative")
        with self._lock:
            self._block_number += count
            return self._block_number

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def block_number(self) -> int:
        return self._block_number

    def has_access(self, file_hash: str, principal: str) -> bool:
        file_hash = normalize_file_hash(file_hash)
        principal = normalize_address(principal)
        with self._lock:
            return principal in self._members.get(file_hash, ())

    def get_record(self, file_hash: str) -> FileRecord:
        file_hash = normalize_file_hash(file_hash)
        with self._lock:
            record = self._records.get(file_hash)
        if record is None:
            raise NotFound(f"File not found: {file_hash}")
        return record

    def get_pointer(self, file_hash: str) -> str:
        return self.get_record(file_hash).pointer

    def get_owner(self, file_hash: str) -> str:
        return self.get_record(file_hash).owner

    def file_exists(self, file_hash: str) -> bool:
        file_hash = normalize_file_hash(file_hash)
        with self._lock:
            return file_hash in self._records

    def members(self, file_hash: str) -> frozenset[str]:
        """Current access list for file_hash (empty if unknown)."""
        file_hash = normalize_file_hash(file_hash)
        with self._lock:
            return frozenset(self._members.get(file_hash, ()))

    def query_events(
        self,
        event_type: EventType,
        from_block: int,
        to_block: int,
        *,
        file_hash: Optional[str] = None,
        principal: Optional[str] = None,
    ) -> list[LedgerEvent]:
        """Events of one type in [from_block, to_block], optionally filtered."""
        if file_hash is not None:
            file_hash = normalize_file_hash(file_hash)
        if principal is not None:
            principal = normalize_address(principal)

        with self._lock:
            return [
                e for e in self._events
                if e.event_type == event_type
                and from_block <= e.block_number <= to_block
                and (file_hash is None or e.file_hash == file_hash)
                and (principal is None or e.principal == principal)
            ]

    def events(self) -> list[LedgerEvent]:
        with self._lock:
            return list(self._events)

    @property
    def file_count(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_owner(self, file_hash: str, sender: str, action: str) -> FileRecord:
        record = self._records.get(file_hash)
        if record is None:
            raise NotFound(f"File not found: {file_hash}")
        if record.owner != sender:
            raise NotOwner(f"Not authorized: only owner can {action} access")
        return record

    def _emit(
        self,
        event_type: EventType,
        file_hash: str,
        principal: str,
        pointer: Optional[str] = None,
    ) -> LedgerEvent:
        block = self._block_number + 1
        event = LedgerEvent(
            block_number=block,
            log_index=0,
            event_type=event_type,
            file_hash=file_hash,
            principal=principal,
            pointer=pointer,
            tx_id=_tx_id(block, event_type, file_hash, principal),
        )
        self._apply(event)
        if self._storage_path:
            self._append_to_file(event)
        return event

    def _apply(self, event: LedgerEvent) -> None:
        """Fold one event into the projection. Fails closed on inconsistency."""
        if event.event_type == EventType.FILE_REGISTERED:
            if event.file_hash in self._records:
                raise ValueError(f"Replayed duplicate registration: {event.file_hash}")
            if not event.pointer:
                raise ValueError(f"Registration without pointer: {event.file_hash}")
            self._records[event.file_hash] = FileRecord(
                file_hash=event.file_hash,
                owner=event.principal,
                pointer=event.pointer,
                registered_block=event.block_number,
            )
            self._members[event.file_hash] = {event.principal}
        else:
            members = self._members.get(event.file_hash)
            if members is None:
                raise ValueError(f"Access event for unknown file: {event.file_hash}")
            if event.event_type == EventType.ACCESS_GRANTED:
                members.add(event.principal)
            else:
                if event.principal == self._records[event.file_hash].owner:
                    raise ValueError(f"Replayed owner revocation: {event.file_hash}")
                members.discard(event.principal)

        self._events.append(event)
        self._block_number = max(self._block_number, event.block_number)

    def _append_to_file(self, event: LedgerEvent) -> None:
        data = event.to_dict()
        data["event_hash"] = _event_hash(data)
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(data, sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Replay a JSONL event file with integrity verification.

        Fail-closed: rejects tampered lines (hash mismatch), repeated
        (block, log_index) positions and events the rules would refuse.
        """
        seen: set[tuple[int, int]] = set()
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                stored_hash = data.pop("event_hash", None)
                expected_hash = _event_hash(data)
                if stored_hash != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): "
                        f"stored hash {stored_hash} != computed {expected_hash}"
                    )

                event = LedgerEvent.from_dict(data)
                position = (event.block_number, event.log_index)
                if position in seen:
                    raise ValueError(
                        f"Duplicate event position on recovery (line {line_num}): {position}"
                    )
                seen.add(position)
                self._apply(event)


def _event_hash(data: dict) -> str:
    canonical = json.dumps(data, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


def _tx_id(block: int, event_type: EventType, file_hash: str, principal: str) -> str:
    seed = f"{block}:{event_type.value}:{file_hash}:{principal}".encode("utf-8")
    return "0x" + hashlib.sha256(seed).hexdigest()
