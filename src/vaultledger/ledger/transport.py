"""Ledger transport contract and the in-process implementation.

A transport is one connection to the registry through one endpoint. The
resilience layer holds one transport at a time and replaces it whenever it
rotates to another endpoint, so transports must be cheap to build and must
not do network I/O in their constructor.

Transports take canonical identifiers (see vaultledger.models.identity);
validation happens in LedgerClient before a transport is ever called.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from vaultledger.errors import PermanentRpcError, RangeTooLarge
from vaultledger.ledger.registry import AccessRegistry
from vaultledger.models.access import EventType, LedgerEvent


@runtime_checkable
class LedgerTransport(Protocol):
    """Registry calls bound to a single endpoint.

    State-changing calls return a transaction identifier. Reads return
    plain values. Failures are raised as vaultledger errors: domain errors
    (NotFound, NotOwner, ...) as-is, infrastructure failures as
    TransientRpcError or PermanentRpcError subclasses.
    """

    @property
    def endpoint(self) -> str:
        ...

    @property
    def caller(self) -> Optional[str]:
        """Address that state-changing calls are sent from, if any."""
        ...

    def block_number(self) -> int:
        ...

    def register_file(self, file_hash: str, pointer: str) -> str:
        ...

    def grant(self, file_hash: str, principal: str) -> str:
        ...

    def revoke(self, file_hash: str, principal: str) -> str:
        ...

    def has_access(self, file_hash: str, principal: str) -> bool:
        ...

    def get_pointer(self, file_hash: str) -> str:
        ...

    def get_owner(self, file_hash: str) -> str:
        ...

    def query_events(
        self,
        event_type: EventType,
        from_block: int,
        to_block: int,
        *,
        file_hash: Optional[str] = None,
        principal: Optional[str] = None,
    ) -> list[LedgerEvent]:
        ...


class LocalLedgerTransport:
    """Transport backed by an in-process AccessRegistry.

    Several transports (one per simulated endpoint) can share one registry.
    max_block_range mimics the per-call range ceiling of hosted RPC
    providers; None means unlimited.
    """

    def __init__(
        self,
        registry: AccessRegistry,
        caller: Optional[str] = None,
        endpoint: str = "local://registry",
        max_block_range: Optional[int] = None,
    ) -> None:
        self._registry = registry
        self._caller = caller
        self._endpoint = endpoint
        self._max_block_range = max_block_range

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def caller(self) -> Optional[str]:
        return self._caller

    @property
    def registry(self) -> AccessRegistry:
        return self._registry

    def block_number(self) -> int:
        return self._registry.block_number

    def register_file(self, file_hash: str, pointer: str) -> str:
        event = self._registry.register_file(self._require_caller(), file_hash, pointer)
        return event.tx_id or ""

    def grant(self, file_hash: str, principal: str) -> str:
        event = self._registry.grant(self._require_caller(), file_hash, principal)
        return event.tx_id if event and event.tx_id else ""

    def revoke(self, file_hash: str, principal: str) -> str:
        event = self._registry.revoke(self._require_caller(), file_hash, principal)
        return event.tx_id if event and event.tx_id else ""

    def has_access(self, file_hash: str, principal: str) -> bool:
        return self._registry.has_access(file_hash, principal)

    def get_pointer(self, file_hash: str) -> str:
        return self._registry.get_pointer(file_hash)

    def get_owner(self, file_hash: str) -> str:
        return self._registry.get_owner(file_hash)

    def query_events(
        self,
        event_type: EventType,
        from_block: int,
        to_block: int,
        *,
        file_hash: Optional[str] = None,
        principal: Optional[str] = None,
    ) -> list[LedgerEvent]:
        if self._max_block_range is not None and to_block - from_block + 1 > self._max_block_range:
            raise RangeTooLarge(
                f"{self._endpoint}: block range {from_block}-{to_block} exceeds "
                f"{self._max_block_range}"
            )
        return self._registry.query_events(
            event_type, from_block, to_block, file_hash=file_hash, principal=principal,
        )

    def _require_caller(self) -> str:
        if self._caller is None:
            raise PermanentRpcError(f"{self._endpoint}: no signing account configured")
        return self._caller
