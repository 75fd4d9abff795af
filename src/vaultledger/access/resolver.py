"""Access resolution engine — which files can a principal read?

Answers come from the registry's event history, never from a
full-history scan per query:

1. Cache hit (younger than the TTL): return it, no ledger I/O.
2. Otherwise find the tip and the blocks still to scan: from the
   principal's checkpoint if there is one, else a bounded window
   ``[max(deployment_block, tip - window), tip]``.
3. Split that range into chunks no wider than the transport's per-call
   ceiling and scan them, a few at a time, for FileRegistered,
   AccessGranted and AccessRevoked events naming the principal. A chunk
   that exhausts its retries is skipped; the result is marked incomplete.
4. Fold the events in ledger order onto the checkpoint's projection.
5. In strict mode re-verify every non-owned candidate with has_access.
   A check that fails after its retries leaves the answer incomplete;
   if no check succeeds the answer is unavailable.
6. Cache the set (and checkpoint it if no chunk was skipped). Strict
   answers with unverified grants are returned but not cached.

Staleness bound: a grant or revoke is visible at most one cache TTL after
it is mined. Grants older than the first scan window are not visible
until the principal's checkpoint covers them, which happens only if the
checkpoint file predates them; deployment_block bounds the window from
below for fresh installs.

If the tip cannot be read, every chunk fails, or strict verification
cannot check a single grant, the engine raises ResolutionUnavailable.
That means "unknown", and the gate denies on it.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Optional

from vaultledger.access.cache import AccessCache, CheckpointStore, ScanCheckpoint
from vaultledger.access.projection import (
    EMPTY_PROJECTION,
    PrincipalProjection,
    fold_principal_events,
)
from vaultledger.errors import (
    ResolutionTimeout,
    ResolutionUnavailable,
    ValidationError,
    VaultError,
)
from vaultledger.ledger.client import LedgerClient
from vaultledger.logs import log_event
from vaultledger.models.access import EventType, LedgerEvent, ResolvedAccessSet
from vaultledger.models.identity import normalize_address, short

log = logging.getLogger("vaultledger.access")

_SCANNED_EVENTS = (
    EventType.FILE_REGISTERED,
    EventType.ACCESS_GRANTED,
    EventType.ACCESS_REVOKED,
)


@dataclass(frozen=True)
class ResolverSettings:
    window_blocks: int = 50_000
    chunk_size: int = 10_000
    concurrency: int = 4
    deployment_block: int = 0
    strict: bool = False

    def __post_init__(self) -> None:
        if self.window_blocks < 1:
            raise ValueError("window_blocks must be at least 1")
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.deployment_block < 0:
            raise ValueError("deployment_block must be non-negative")


def plan_chunks(start: int, end: int, size: int) -> list[tuple[int, int]]:
    """Split [start, end] into consecutive inclusive ranges of at most size blocks."""
    if size < 1:
        raise ValueError("size must be at least 1")
    return [(lo, min(lo + size - 1, end)) for lo in range(start, end + 1, size)]


@dataclass(frozen=True)
class _ScanOutcome:
    events: list[LedgerEvent]
    failed_chunks: list[tuple[int, int]]
    chunk_count: int


class AccessResolutionEngine:
    """Resolves principals to readable file hashes with a read-through cache.

    Usage:
        engine = AccessResolutionEngine(client, AccessCache(ttl_seconds=300))
        resolved = engine.resolve("0xabc...")
        "0x5f..." in resolved       # membership test
        engine.resolve(p, strict=True, bypass_cache=True)
        engine.resolve(p, timeout=2.0)   # raises ResolutionTimeout on expiry
    """

    def __init__(
        self,
        client: LedgerClient,
        cache: Optional[AccessCache] = None,
        checkpoints: Optional[CheckpointStore] = None,
        settings: Optional[ResolverSettings] = None,
    ) -> None:
        self._client = client
        self._cache = cache if cache is not None else AccessCache()
        self._checkpoints = checkpoints
        self._settings = settings or ResolverSettings()
        ceiling = client.max_block_range
        if ceiling is not None and self._settings.chunk_size > ceiling:
            raise ValueError(
                f"chunk_size {self._settings.chunk_size} exceeds the client's "
                f"per-call block range of {ceiling}"
            )
        self._background: Optional[ThreadPoolExecutor] = None
        self._background_lock = threading.Lock()

    @property
    def cache(self) -> AccessCache:
        return self._cache

    @property
    def settings(self) -> ResolverSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(
        self,
        principal: str,
        *,
        bypass_cache: bool = False,
        strict: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> ResolvedAccessSet:
        """Return the set of file hashes principal may read.

        Raises:
            ValidationError: principal is not a valid address.
            ResolutionUnavailable: the ledger could not be read.
            ResolutionTimeout: timeout expired first. The computation keeps
                running in the background and may still fill the cache.
        """
        principal = normalize_address(principal)
        strict = self._settings.strict if strict is None else strict

        if not bypass_cache:
            cached = self._cache.get(principal)
            if cached is not None and (cached.strict or not strict):
                log_event(
                    log, "resolve_cache_hit", level=logging.DEBUG,
                    principal=short(principal), files=len(cached),
                )
                return cached

        if timeout is None:
            return self._compute(principal, strict)

        future = self._executor().submit(self._compute, principal, strict)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as exc:
            log_event(
                log, "resolve_timeout", level=logging.WARNING,
                principal=short(principal), timeout_s=timeout,
            )
            raise ResolutionTimeout(
                f"Access resolution for {principal} exceeded {timeout}s"
            ) from exc

    def list_accessible(self, principal: str, **kwargs) -> list[str]:
        """Sorted list form of resolve()."""
        return self.resolve(principal, **kwargs).sorted_hashes()

    def invalidate(self, principal: str) -> bool:
        """Drop the cached set for principal; the next resolve rescans."""
        return self._cache.invalidate(normalize_address(principal))

    def close(self) -> None:
        with self._background_lock:
            if self._background is not None:
                self._background.shutdown(wait=False)
                self._background = None

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    def _compute(self, principal: str, strict: bool) -> ResolvedAccessSet:
        try:
            tip = self._client.block_number()
        except VaultError as exc:
            log_event(
                log, "resolve_unavailable", level=logging.ERROR,
                principal=short(principal), error=type(exc).__name__,
            )
            raise ResolutionUnavailable(f"Cannot read ledger tip: {exc}") from exc

        start, base = self._scan_start(principal, tip)
        outcome = self.scan(principal, start, tip)
        if outcome.chunk_count and len(outcome.failed_chunks) == outcome.chunk_count:
            raise ResolutionUnavailable(
                f"All {outcome.chunk_count} scan chunks failed for {principal}"
            )

        projection = fold_principal_events(principal, outcome.events, base)
        complete = not outcome.failed_chunks
        if complete and self._checkpoints is not None:
            self._checkpoints.put(ScanCheckpoint(principal, tip, projection))

        file_hashes = projection.members
        if strict:
            file_hashes, unverified = self._verify(principal, projection)
            if unverified:
                candidates = len(projection.members - projection.owned)
                if len(unverified) == candidates:
                    raise ResolutionUnavailable(
                        f"Could not verify any of {candidates} grants for {principal}"
                    )
                complete = False

        resolved = ResolvedAccessSet(
            principal=principal,
            file_hashes=frozenset(file_hashes),
            computed_at=self._cache.now(),
            scanned_from=start,
            scanned_to=tip,
            complete=complete,
            strict=strict,
        )
        # A strict answer with unverified grants is not cached.
        if complete or not strict:
            self._cache.put(resolved)
        log_event(
            log, "resolve_done",
            principal=short(principal), files=len(resolved), events=len(outcome.events),
            blocks=f"{start}-{tip}", complete=complete, strict=strict,
        )
        return resolved

    def _scan_start(self, principal: str, tip: int) -> tuple[int, PrincipalProjection]:
        if self._checkpoints is not None:
            checkpoint = self._checkpoints.get(principal)
            if checkpoint is not None:
                if checkpoint.last_block <= tip:
                    return checkpoint.last_block + 1, checkpoint.projection
                # Checkpoint is ahead of this endpoint's tip: distrust it.
                self._checkpoints.drop(principal)
        window_start = tip - self._settings.window_blocks
        return max(self._settings.deployment_block, window_start, 0), EMPTY_PROJECTION

    def scan(self, principal: str, start: int, end: int) -> _ScanOutcome:
        """Fetch every event naming principal in [start, end], chunk by chunk."""
        if start > end:
            return _ScanOutcome(events=[], failed_chunks=[], chunk_count=0)

        chunks = plan_chunks(start, end, self._settings.chunk_size)
        workers = min(self._settings.concurrency, len(chunks))
        log_event(
            log, "resolve_scan", level=logging.DEBUG,
            principal=short(principal), blocks=f"{start}-{end}", chunks=len(chunks),
        )

        results: list[tuple[tuple[int, int], Optional[list[LedgerEvent]]]]
        if workers == 1:
            results = [(chunk, self._scan_chunk(principal, chunk)) for chunk in chunks]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="vault-scan") as pool:
                fetched = pool.map(lambda c: self._scan_chunk(principal, c), chunks)
                results = list(zip(chunks, fetched))

        events: list[LedgerEvent] = []
        failed: list[tuple[int, int]] = []
        for chunk, chunk_events in results:
            if chunk_events is None:
                failed.append(chunk)
            else:
                events.extend(chunk_events)
        events.sort()
        return _ScanOutcome(events=events, failed_chunks=failed, chunk_count=len(chunks))

    def _scan_chunk(
        self, principal: str, chunk: tuple[int, int],
    ) -> Optional[list[LedgerEvent]]:
        """Events for one chunk, or None if it could not be fetched."""
        lo, hi = chunk
        events: list[LedgerEvent] = []
        try:
            for event_type in _SCANNED_EVENTS:
                events.extend(
                    self._client.query_events(event_type, lo, hi, principal=principal)
                )
        except ValidationError:
            raise
        except VaultError as exc:
            log_event(
                log, "resolve_chunk_failed", level=logging.WARNING,
                principal=short(principal), blocks=f"{lo}-{hi}", error=type(exc).__name__,
            )
            return None
        return events

    def _verify(
        self, principal: str, projection: PrincipalProjection,
    ) -> tuple[set[str], list[str]]:
        """Split candidates into confirmed hashes and ones that could not be checked.

        Owned files need no check. A candidate that has_access denies is
        dropped. One whose check raised is reported as unverified.
        """
        verified = set(projection.owned)
        unverified: list[str] = []
        for file_hash in sorted(projection.members - projection.owned):
            try:
                if self._client.has_access(file_hash, principal):
                    verified.add(file_hash)
            except VaultError as exc:
                log_event(
                    log, "resolve_verify_failed", level=logging.WARNING,
                    principal=short(principal), file_hash=short(file_hash),
                    error=type(exc).__name__,
                )
                unverified.append(file_hash)
        return verified, unverified

    def _executor(self) -> ThreadPoolExecutor:
        with self._background_lock:
            if self._background is None:
                self._background = ThreadPoolExecutor(
                    max_workers=max(2, self._settings.concurrency),
                    thread_name_prefix="vault-resolve",
                )
            return self._background
