"""Access gate — the allow/deny decision in front of the object store.

Nothing leaves the store, neither a presigned URL nor decrypted bytes,
until authorize() has returned ALLOW. Every way of not knowing the answer
(unknown file, unreachable ledger, unavailable or timed-out resolution)
is a DENY. Malformed identifiers are still a ValidationError.
"""

from __future__ import annotations

import logging
from typing import Optional

from vaultledger.access.resolver import AccessResolutionEngine
from vaultledger.crypto.cipher import decrypt, file_hash_of
from vaultledger.errors import (
    AccessDenied,
    AuthenticationError,
    NotFound,
    ResolutionUnavailable,
    ValidationError,
    VaultError,
)
from vaultledger.ledger.client import LedgerClient
from vaultledger.logs import log_event
from vaultledger.models.access import AccessDecision, AuthorizationResult
from vaultledger.models.identity import normalize_address, normalize_file_hash, short
from vaultledger.storage.object_store import ObjectStore

log = logging.getLogger("vaultledger.gate")


class AccessGate:
    """Authorizes (file_hash, principal) pairs and releases what they unlock.

    Usage:
        gate = AccessGate(client, engine, store)
        gate.authorize(file_hash, reader).allowed
        url = gate.release_pointer(file_hash, reader, ttl_seconds=300)
        plaintext = gate.open_file(file_hash, reader, key, nonce, tag)
    """

    def __init__(
        self,
        client: LedgerClient,
        engine: AccessResolutionEngine,
        object_store: Optional[ObjectStore] = None,
        resolve_timeout: Optional[float] = None,
    ) -> None:
        self._client = client
        self._engine = engine
        self._store = object_store
        self._resolve_timeout = resolve_timeout

    def authorize(self, file_hash: str, principal: str) -> AuthorizationResult:
        file_hash = normalize_file_hash(file_hash)
        principal = normalize_address(principal)

        # Ownership is read straight from the ledger, never from the cache.
        try:
            owner = self._client.get_owner(file_hash)
        except NotFound:
            return self._decide(AccessDecision.DENY, file_hash, principal, "unknown file")
        except ValidationError:
            raise
        except VaultError as exc:
            return self._decide(
                AccessDecision.DENY, file_hash, principal,
                f"owner lookup failed: {type(exc).__name__}",
            )
        if owner == principal:
            return self._decide(AccessDecision.ALLOW, file_hash, principal, "owner")

        try:
            resolved = self._engine.resolve(principal, timeout=self._resolve_timeout)
        except ResolutionUnavailable as exc:
            return self._decide(
                AccessDecision.DENY, file_hash, principal,
                f"resolution unavailable: {type(exc).__name__}",
            )
        if file_hash in resolved:
            return self._decide(AccessDecision.ALLOW, file_hash, principal, "granted")
        return self._decide(AccessDecision.DENY, file_hash, principal, "no grant")

    def release_pointer(self, file_hash: str, principal: str, ttl_seconds: int) -> str:
        """Presigned URL for the file's ciphertext. Raises AccessDenied on DENY."""
        result = self.require_allow(file_hash, principal)
        pointer = self._client.get_pointer(result.file_hash)
        return self._object_store().presign(pointer, ttl_seconds)

    def open_file(
        self,
        file_hash: str,
        principal: str,
        key: bytes,
        nonce: bytes,
        tag: bytes,
    ) -> bytes:
        """Fetch, integrity-check and decrypt the file. Raises AccessDenied on DENY.

        The fetched ciphertext must hash to file_hash; a mismatch means the
        store returned the wrong or altered object and raises
        AuthenticationError before decryption is attempted.
        """
        result = self.require_allow(file_hash, principal)
        pointer = self._client.get_pointer(result.file_hash)
        ciphertext = self._object_store().get(pointer)
        if file_hash_of(ciphertext) != result.file_hash:
            log_event(
                log, "ciphertext_hash_mismatch", level=logging.ERROR,
                file_hash=short(result.file_hash),
            )
            raise AuthenticationError(
                f"Stored ciphertext does not match file hash {result.file_hash}"
            )
        return decrypt(ciphertext, key, nonce, tag)

    def require_allow(self, file_hash: str, principal: str) -> AuthorizationResult:
        result = self.authorize(file_hash, principal)
        if not result.allowed:
            raise AccessDenied(
                f"Access denied to {result.file_hash} for {result.principal}: {result.reason}"
            )
        return result

    def _object_store(self) -> ObjectStore:
        if self._store is None:
            raise ValueError("AccessGate was created without an object store")
        return self._store

    def _decide(
        self,
        decision: AccessDecision,
        file_hash: str,
        principal: str,
        reason: str,
    ) -> AuthorizationResult:
        log_event(
            log, "access_decision",
            level=logging.INFO if decision == AccessDecision.ALLOW else logging.WARNING,
            decision=decision.value, file_hash=short(file_hash),
            principal=short(principal), reason=reason,
        )
        return AuthorizationResult(
            decision=decision, file_hash=file_hash, principal=principal, reason=reason,
        )
