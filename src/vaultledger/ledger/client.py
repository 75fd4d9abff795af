"""Ledger client — typed, validated registry calls through the resilience layer.

Identifiers are normalized and validated here, before any network I/O.
Every call then runs through ResilientRpc.with_retry, so transient
endpoint trouble is absorbed and only domain errors, permanent failures
or exhausted retries reach the caller.
"""

from __future__ import annotations

import logging
from typing import Optional

from vaultledger.errors import InvalidPointer, PermanentRpcError, ValidationError
from vaultledger.logs import log_event
from vaultledger.models.access import EventType, LedgerEvent
from vaultledger.models.identity import (
    normalize_address,
    normalize_file_hash,
    normalize_principal,
    short,
)
from vaultledger.rpc.resilience import ResilientRpc

log = logging.getLogger("vaultledger.ledger")

# Writes back off more slowly than reads: a confirmation is already slow
# and a rate-limited send is usually rate-limited for a few seconds.
WRITE_BASE_DELAY_MS = 2000


class LedgerClient:
    """Registry operations: register, grant, revoke and the read calls.

    Usage:
        client = LedgerClient(rpc, max_block_range=10_000)
        tx = client.register_file(file_hash, "uploads/abc.bin")
        client.grant(file_hash, reader)
        client.has_access(file_hash, reader)   # True
    """

    def __init__(
        self,
        rpc: ResilientRpc,
        max_block_range: Optional[int] = None,
        write_base_delay_ms: int = WRITE_BASE_DELAY_MS,
    ) -> None:
        self._rpc = rpc
        self._max_block_range = max_block_range
        self._write_base_delay_ms = write_base_delay_ms

    @property
    def rpc(self) -> ResilientRpc:
        return self._rpc

    @property
    def max_block_range(self) -> Optional[int]:
        return self._max_block_range

    @property
    def caller(self) -> Optional[str]:
        return self._rpc.transport().caller

    # ------------------------------------------------------------------
    # State-changing calls
    # ------------------------------------------------------------------

    def register_file(self, file_hash: str, pointer: str) -> str:
        """Register file_hash with its object-store pointer. Returns the tx id.

        Raises DuplicateFile if the hash is already registered and
        InvalidPointer if pointer is empty.
        """
        file_hash = normalize_file_hash(file_hash)
        if not isinstance(pointer, str) or not pointer.strip():
            raise InvalidPointer("Pointer cannot be empty")

        tx_id = self._rpc.with_retry(
            lambda t: t.register_file(file_hash, pointer),
            base_delay_ms=self._write_base_delay_ms,
        )
        log_event(log, "file_registered", file_hash=short(file_hash), tx=tx_id)
        return tx_id

    def grant(self, file_hash: str, principal: str) -> str:
        """Grant principal read access. Owner only; re-granting is a no-op."""
        file_hash = normalize_file_hash(file_hash)
        principal = normalize_principal(principal)
        tx_id = self._rpc.with_retry(
            lambda t: t.grant(file_hash, principal),
            base_delay_ms=self._write_base_delay_ms,
        )
        log_event(
            log, "access_granted",
            file_hash=short(file_hash), principal=short(principal), tx=tx_id,
        )
        return tx_id

    def revoke(self, file_hash: str, principal: str) -> str:
        """Revoke principal's access. Owner only; the owner cannot be revoked."""
        file_hash = normalize_file_hash(file_hash)
        principal = normalize_address(principal)
        tx_id = self._rpc.with_retry(
            lambda t: t.revoke(file_hash, principal),
            base_delay_ms=self._write_base_delay_ms,
        )
        log_event(
            log, "access_revoked",
            file_hash=short(file_hash), principal=short(principal), tx=tx_id,
        )
        return tx_id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def block_number(self) -> int:
        height = self._rpc.with_retry(lambda t: t.block_number())
        if not isinstance(height, int) or height < 0:
            raise PermanentRpcError(f"Invalid block height from ledger: {height!r}")
        return height

    def has_access(self, file_hash: str, principal: str) -> bool:
        """False, not an error, for unknown file hashes."""
        file_hash = normalize_file_hash(file_hash)
        principal = normalize_address(principal)
        return bool(self._rpc.with_retry(lambda t: t.has_access(file_hash, principal)))

    def get_pointer(self, file_hash: str) -> str:
        file_hash = normalize_file_hash(file_hash)
        return self._rpc.with_retry(lambda t: t.get_pointer(file_hash))

    def get_owner(self, file_hash: str) -> str:
        file_hash = normalize_file_hash(file_hash)
        return normalize_address(self._rpc.with_retry(lambda t: t.get_owner(file_hash)))

    def query_events(
        self,
        event_type: EventType,
        from_block: int,
        to_block: int,
        *,
        file_hash: Optional[str] = None,
        principal: Optional[str] = None,
    ) -> list[LedgerEvent]:
        """Historical events of one type in [from_block, to_block].

        The range must fit in max_block_range; callers scanning wider
        ranges split them into chunks first.
        """
        event_type = EventType(event_type)
        if from_block < 0 or to_block < from_block:
            raise ValidationError(f"Invalid block range {from_block}-{to_block}")
        if self._max_block_range is not None and to_block - from_block + 1 > self._max_block_range:
            raise ValidationError(
                f"Block range {from_block}-{to_block} exceeds the per-call "
                f"maximum of {self._max_block_range}"
            )
        if file_hash is not None:
            file_hash = normalize_file_hash(file_hash)
        if principal is not None:
            principal = normalize_address(principal)

        return self._rpc.with_retry(lambda t: t.query_events(
            event_type, from_block, to_block, file_hash=file_hash, principal=principal,
        ))
