"""Access registry data model.

FileRecords and access entries live on the ledger. ResolvedAccessSets are
off-ledger projections of the ledger's event history and can be thrown
away and recomputed at any time.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional


class EventType(str, enum.Enum):
    """Events emitted by the access registry."""
    FILE_REGISTERED = "FileRegistered"
    ACCESS_GRANTED = "AccessGranted"
    ACCESS_REVOKED = "AccessRevoked"


@dataclass(frozen=True)
class FileRecord:
    """One registered file. Owner and pointer never change after creation."""
    file_hash: str
    owner: str
    pointer: str
    registered_block: int = 0
    exists: bool = True


@dataclass(frozen=True, order=True)
class LedgerEvent:
    """A single registry event.

    Ordering is by (block_number, log_index), the order in which the
    ledger applied them. For FILE_REGISTERED the principal is the owner.
    """
    block_number: int
    log_index: int
    event_type: EventType = field(compare=False)
    file_hash: str = field(compare=False)
    principal: str = field(compare=False)
    pointer: Optional[str] = field(default=None, compare=False)
    tx_id: Optional[str] = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "block_number": self.block_number,
            "log_index": self.log_index,
            "event_type": self.event_type.value,
            "file_hash": self.file_hash,
            "principal": self.principal,
            "pointer": self.pointer,
            "tx_id": self.tx_id,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> LedgerEvent:
        return LedgerEvent(
            block_number=int(data["block_number"]),
            log_index=int(data["log_index"]),
            event_type=EventType(data["event_type"]),
            file_hash=data["file_hash"],
            principal=data["principal"],
            pointer=data.get("pointer"),
            tx_id=data.get("tx_id"),
        )


@dataclass(frozen=True)
class ResolvedAccessSet:
    """The set of file hashes a principal may read, as of computed_at.

    complete is False when some scan chunks were skipped after exhausting
    their retries; strict is True when every member was re-verified with
    a direct has_access call.
    """
    principal: str
    file_hashes: frozenset[str]
    computed_at: float
    scanned_from: int = 0
    scanned_to: int = 0
    complete: bool = True
    strict: bool = False

    def __contains__(self, file_hash: object) -> bool:
        return file_hash in self.file_hashes

    def __len__(self) -> int:
        return len(self.file_hashes)

    def sorted_hashes(self) -> list[str]:
        return sorted(self.file_hashes)


class AccessDecision(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of an access-gate check."""
    decision: AccessDecision
    file_hash: str
    principal: str
    reason: str

    @property
    def allowed(self) -> bool:
        return self.decision == AccessDecision.ALLOW
