"""Vault service — unified facade for upload, access management and download.

This is the surface an HTTP layer (or the CLI) calls. It wires together:
- Cipher module (encrypt on upload, decrypt on download)
- Object store (ciphertext only, never key material)
- Ledger client (register, grant, revoke through the resilience layer)
- Access resolution engine (cached, chunked event scans)
- Access gate (allow/deny before anything is released)
- Metadata store (file names and sizes the ledger does not hold)

Every operation returns a ServiceResult. Domain errors are reported as
"<ErrorClass>: <message>"; anything else is a bug and propagates.
"""

from __future__ import annotations

import base64
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from vaultledger import __version__
from vaultledger.access.cache import AccessCache, CheckpointStore
from vaultledger.access.gate import AccessGate
from vaultledger.access.resolver import AccessResolutionEngine, ResolverSettings
from vaultledger.config import VaultConfig
from vaultledger.crypto.cipher import encrypt, generate_key
from vaultledger.errors import NotFound, NotOwner, VaultError
from vaultledger.ledger.client import LedgerClient
from vaultledger.ledger.registry import AccessRegistry
from vaultledger.ledger.transport import LedgerTransport, LocalLedgerTransport
from vaultledger.logs import log_event
from vaultledger.models.identity import normalize_address, normalize_file_hash, short
from vaultledger.rpc.resilience import ResilientRpc, RetryPolicy
from vaultledger.storage.metadata import FileMetadata, MetadataStore
from vaultledger.storage.object_store import (
    DEFAULT_CONTENT_TYPE,
    FileSystemObjectStore,
    ObjectStore,
)

log = logging.getLogger("vaultledger.service")

LOCAL_ENDPOINT = "local://registry"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


def _failure(exc: VaultError) -> ServiceResult:
    return ServiceResult(success=False, errors=[f"{type(exc).__name__}: {exc}"])


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _iso(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()


def _entry(meta: FileMetadata, principal: str) -> dict[str, Any]:
    entry = meta.to_dict()
    del entry["deleted_at"]
    entry["is_owner"] = meta.owner == principal
    entry["on_chain_only"] = False
    return entry


def object_key_for(filename: str, now_ms: int) -> str:
    """Object-store key for an upload: "<epoch_ms>_<sanitized name>"."""
    name = _UNSAFE_NAME_CHARS.sub("_", Path(filename).name).strip("._") or "file"
    return f"{now_ms}_{name}"


class VaultService:
    """Facade over the custody engine.

    Usage:
        service = VaultService.from_config(VaultConfig.load(), caller=owner)
        result = service.upload_file(b"...", "report.pdf")
        file_hash = result.data["file_hash"]
        service.grant_access(file_hash, reader)
        service.list_accessible(reader).data["file_hashes"]

    The caller (signing identity) is fixed per service: it is the local
    caller address, or the account behind the configured private key.
    """

    def __init__(
        self,
        client: LedgerClient,
        engine: AccessResolutionEngine,
        gate: AccessGate,
        object_store: ObjectStore,
        presign_ttl_seconds: int = 300,
        clock: Callable[[], float] = time.time,
        metadata: Optional[MetadataStore] = None,
    ) -> None:
        self._client = client
        self._engine = engine
        self._gate = gate
        self._store = object_store
        self._metadata = metadata if metadata is not None else MetadataStore()
        self._presign_ttl = presign_ttl_seconds
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: VaultConfig,
        caller: Optional[str] = None,
        object_store: Optional[ObjectStore] = None,
    ) -> VaultService:
        """Build the full object graph from configuration.

        With a contract address and RPC endpoints the web3 transport is
        used; otherwise a local JSONL registry under config.data_dir, with
        caller as the acting identity.
        """
        data_dir = config.data_dir
        data_dir.mkdir(parents=True, exist_ok=True)

        factory: Callable[[str], LedgerTransport]
        if config.uses_web3:
            from vaultledger.ledger.web3_transport import Web3LedgerTransport

            endpoints = list(config.rpc_urls)

            def factory(url: str) -> LedgerTransport:
                return Web3LedgerTransport(
                    url,
                    config.contract_address,
                    private_key=config.private_key,
                    chain_id=config.chain_id,
                    request_timeout=config.request_timeout_seconds,
                )

            suffix = f"-{config.chain_id}-{config.contract_address[2:10]}"
        else:
            registry = AccessRegistry(storage_path=data_dir / "registry.jsonl")
            local_caller = normalize_address(caller) if caller else None
            endpoints = [LOCAL_ENDPOINT]

            def factory(url: str) -> LedgerTransport:
                return LocalLedgerTransport(registry, caller=local_caller, endpoint=url)

            suffix = ""

        rpc = ResilientRpc(
            endpoints,
            factory,
            RetryPolicy(max_attempts=config.max_attempts, base_delay_ms=config.base_delay_ms),
        )
        client = LedgerClient(rpc, max_block_range=config.chunk_size_blocks)
        engine = AccessResolutionEngine(
            client,
            AccessCache(ttl_seconds=config.cache_ttl_seconds),
            CheckpointStore(storage_path=data_dir / f"checkpoints{suffix}.json"),
            ResolverSettings(
                window_blocks=config.scan_window_blocks,
                chunk_size=config.chunk_size_blocks,
                concurrency=config.scan_concurrency,
                deployment_block=config.deployment_block,
                strict=config.strict_verification,
            ),
        )
        store = object_store
        if store is None:
            store = FileSystemObjectStore(data_dir / "objects")
        gate = AccessGate(client, engine, store)
        return cls(
            client, engine, gate, store,
            presign_ttl_seconds=config.presign_ttl_seconds,
            metadata=MetadataStore(storage_path=data_dir / f"metadata{suffix}.jsonl"),
        )

    @property
    def client(self) -> LedgerClient:
        return self._client

    @property
    def engine(self) -> AccessResolutionEngine:
        return self._engine

    @property
    def gate(self) -> AccessGate:
        return self._gate

    @property
    def metadata(self) -> MetadataStore:
        return self._metadata

    def close(self) -> None:
        self._engine.close()

    # ------------------------------------------------------------------
    # Upload and registration
    # ------------------------------------------------------------------

    def upload_file(
        self,
        plaintext: bytes,
        filename: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> ServiceResult:
        """Encrypt, store and register a file.

        The returned data carries the key, iv and auth tag (base64). They
        are not kept anywhere else; losing them loses the file.
        """
        key = generate_key()
        obj = encrypt(plaintext, key)
        now = self._clock()
        pointer = object_key_for(filename, int(now * 1000))
        try:
            locator = self._store.put(pointer, obj.ciphertext, content_type)
            tx_id = self._client.register_file(obj.file_hash, pointer)
            meta = self._metadata.put(FileMetadata(
                file_hash=obj.file_hash,
                owner=self._client.caller,
                file_name=Path(filename).name or filename,
                content_type=content_type,
                size=len(plaintext),
                encrypted_size=len(obj.ciphertext),
                pointer=pointer,
                uploaded_at=_iso(now),
            ))
        except VaultError as e:
            log_event(
                log, "upload_failed", level=logging.ERROR,
                file_hash=short(obj.file_hash), error=type(e).__name__,
            )
            return _failure(e)

        self._invalidate_caller()
        log_event(
            log, "upload_completed",
            file_hash=short(obj.file_hash), size=len(plaintext),
            encrypted_size=len(obj.ciphertext),
        )
        return ServiceResult(success=True, data={
            "file_hash": obj.file_hash,
            "pointer": pointer,
            "locator": locator,
            "tx": tx_id,
            "content_type": content_type,
            "size": len(plaintext),
            "encrypted_size": len(obj.ciphertext),
            "uploaded_at": meta.uploaded_at,
            "key": _b64(key),
            "iv": _b64(obj.iv),
            "auth_tag": _b64(obj.auth_tag),
        })

    def register_upload(self, file_hash: str, pointer: str) -> ServiceResult:
        """Register ciphertext that is already in the object store."""
        try:
            tx_id = self._client.register_file(file_hash, pointer)
        except VaultError as e:
            return _failure(e)
        self._invalidate_caller()
        return ServiceResult(success=True, data={
            "file_hash": normalize_file_hash(file_hash), "pointer": pointer, "tx": tx_id,
        })

    # ------------------------------------------------------------------
    # Access management
    # ------------------------------------------------------------------

    def grant_access(self, file_hash: str, principal: str) -> ServiceResult:
        try:
            tx_id = self._client.grant(file_hash, principal)
            self._engine.invalidate(principal)
        except VaultError as e:
            return _failure(e)
        return ServiceResult(success=True, data={
            "file_hash": normalize_file_hash(file_hash),
            "principal": normalize_address(principal),
            "tx": tx_id,
        })

    def revoke_access(self, file_hash: str, principal: str) -> ServiceResult:
        try:
            tx_id = self._client.revoke(file_hash, principal)
            self._engine.invalidate(principal)
        except VaultError as e:
            return _failure(e)
        return ServiceResult(success=True, data={
            "file_hash": normalize_file_hash(file_hash),
            "principal": normalize_address(principal),
            "tx": tx_id,
        })

    def check_access(self, file_hash: str, principal: str) -> ServiceResult:
        """Gate decision for one file. data["allowed"] is the boolean answer."""
        try:
            result = self._gate.authorize(file_hash, principal)
        except VaultError as e:
            return _failure(e)
        return ServiceResult(success=True, data={
            "file_hash": result.file_hash,
            "principal": result.principal,
            "allowed": result.allowed,
            "decision": result.decision.value,
            "reason": result.reason,
        })

    def list_accessible(
        self,
        principal: str,
        strict: Optional[bool] = None,
        bypass_cache: bool = False,
    ) -> ServiceResult:
        try:
            resolved = self._engine.resolve(
                principal, strict=strict, bypass_cache=bypass_cache,
            )
        except VaultError as e:
            return _failure(e)
        file_hashes = resolved.sorted_hashes()
        return ServiceResult(success=True, data={
            "principal": resolved.principal,
            "file_hashes": file_hashes,
            "complete": resolved.complete,
            "strict": resolved.strict,
            "computed_at": resolved.computed_at,
            "scanned_blocks": [resolved.scanned_from, resolved.scanned_to],
            "files": self._listing(file_hashes, resolved.principal),
        })

    # ------------------------------------------------------------------
    # File metadata
    # ------------------------------------------------------------------

    def file_metadata(self, file_hash: str, principal: str) -> ServiceResult:
        """Stored metadata for one file, only after the gate allows it."""
        try:
            result = self._gate.require_allow(file_hash, principal)
            meta = self._metadata.get(result.file_hash)
            if meta is None or meta.deleted:
                raise NotFound(f"No metadata for file: {result.file_hash}")
        except VaultError as e:
            return _failure(e)
        return ServiceResult(success=True, data=_entry(meta, result.principal))

    def delete_file(self, file_hash: str) -> ServiceResult:
        """Owner-only logical delete of the file's metadata.

        The ledger entry, its grants and the stored ciphertext are untouched.
        The hash still resolves, but it leaves the "files" part of listings
        and file_metadata reports NotFound for it.
        """
        try:
            file_hash = normalize_file_hash(file_hash)
            caller = self._client.caller
            if caller is None:
                raise NotOwner("No signing identity configured")
            owner = self._client.get_owner(file_hash)
            if owner != caller:
                raise NotOwner(f"{caller} is not the owner of {file_hash}")
            meta = self._metadata.mark_deleted(file_hash, _iso(self._clock()))
        except VaultError as e:
            return _failure(e)
        log_event(log, "file_deleted", file_hash=short(file_hash))
        return ServiceResult(success=True, data={
            "file_hash": file_hash, "deleted_at": meta.deleted_at,
        })

    def _listing(self, file_hashes: list[str], principal: str) -> list[dict[str, Any]]:
        """Metadata entries for the hashes. Deleted files are left out."""
        files = []
        for file_hash in file_hashes:
            meta = self._metadata.get(file_hash)
            if meta is None:
                log_event(
                    log, "metadata_missing", level=logging.WARNING,
                    file_hash=short(file_hash),
                )
                files.append({"file_hash": file_hash, "on_chain_only": True})
            elif not meta.deleted:
                files.append(_entry(meta, principal))
        return files

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def download_url(
        self,
        file_hash: str,
        principal: str,
        ttl_seconds: Optional[int] = None,
    ) -> ServiceResult:
        """Presigned URL for the ciphertext, only after the gate allows it."""
        ttl = ttl_seconds if ttl_seconds is not None else self._presign_ttl
        try:
            url = self._gate.release_pointer(file_hash, principal, ttl)
        except VaultError as e:
            return _failure(e)
        return ServiceResult(success=True, data={"url": url, "expires_in": ttl})

    def download_file(
        self,
        file_hash: str,
        principal: str,
        key: bytes,
        iv: bytes,
        auth_tag: bytes,
    ) -> ServiceResult:
        """Decrypted file bytes, only after the gate allows it."""
        try:
            plaintext = self._gate.open_file(file_hash, principal, key, iv, auth_tag)
        except VaultError as e:
            return _failure(e)
        return ServiceResult(success=True, data={
            "file_hash": normalize_file_hash(file_hash),
            "plaintext": plaintext,
            "size": len(plaintext),
        })

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Return a summary of the ledger connection and caches."""
        rpc = self._client.rpc
        try:
            block: Optional[int] = self._client.block_number()
            error = None
        except VaultError as e:
            block = None
            error = f"{type(e).__name__}: {e}"
        return {
            "version": __version__,
            "caller": self._client.caller,
            "ledger": {
                "endpoint": rpc.current_endpoint,
                "endpoints": len(rpc.endpoints),
                "rotations": rpc.rotations,
                "block_number": block,
                "error": error,
            },
            "resolution": {
                "cached_principals": len(self._engine.cache),
                "cache_ttl_seconds": self._engine.cache.ttl_seconds,
                "strict": self._engine.settings.strict,
            },
            "files_indexed": len(self._metadata),
        }

    def _invalidate_caller(self) -> None:
        caller = self._client.caller
        if caller is not None:
            self._engine.invalidate(caller)


