"""RPC resilience — endpoint rotation and retry with exponential backoff.

Shared RPC endpoints rate-limit per IP and cap the block range of log
queries, so any one endpoint is a single point of failure. Every ledger
call therefore runs through ``ResilientRpc.with_retry``, which is a plain
loop over an explicit state:

    attempt         1 .. max_attempts
    current         index into the endpoint list (shared, locked)
    classify(err)   TRANSIENT or PERMANENT
    backoff(n)      base_delay_ms * 2 ** (n - 1)

A transient failure with attempts left sleeps for backoff(attempt),
rotates to the next endpoint and tries again. Permanent failures, and the
last transient failure once attempts run out, are re-raised unchanged.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Sequence, TypeVar

from vaultledger.errors import (
    MalformedResponse,
    RangeTooLarge,
    RateLimited,
    RpcTimeout,
    TransientRpcError,
    VaultError,
)
from vaultledger.logs import log_event

if TYPE_CHECKING:
    from vaultledger.ledger.transport import LedgerTransport

log = logging.getLogger("vaultledger.rpc")

T = TypeVar("T")

TransportFactory = Callable[[str], "LedgerTransport"]


class ErrorClass(str, enum.Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


# Message fragments (lowercased) that identify provider-side transient
# failures in errors raised by third-party HTTP/JSON-RPC stacks.
_RATE_LIMIT_MARKERS = (
    "too many requests", "429 client error", "rate limit", "-32005",
    "request count exceeded",
)
_RANGE_MARKERS = (
    "block range", "range too large", "range is too large", "range is too wide",
    "query returned more than", "response size exceeded", "is limited to",
)
_TIMEOUT_MARKERS = ("timed out", "timeout", "time exhausted")
_MALFORMED_MARKERS = (
    "bad_data", "could not decode", "invalid json", "expecting value",
    "bad response", "badresponseformat",
)


def transient_error_for(exc: BaseException, endpoint: str = "") -> Optional[TransientRpcError]:
    """Recognize a foreign exception as transient and wrap it, else None."""
    if isinstance(exc, TransientRpcError):
        return exc
    if isinstance(exc, VaultError):
        return None

    text = f"{type(exc).__name__} {exc}".lower()
    prefix = f"{endpoint}: " if endpoint else ""
    if any(marker in text for marker in _RANGE_MARKERS):
        return RangeTooLarge(f"{prefix}{exc}")
    if any(marker in text for marker in _RATE_LIMIT_MARKERS):
        return RateLimited(f"{prefix}{exc}")
    if isinstance(exc, TimeoutError) or any(marker in text for marker in _TIMEOUT_MARKERS):
        return RpcTimeout(f"{prefix}{exc}")
    if any(marker in text for marker in _MALFORMED_MARKERS):
        return MalformedResponse(f"{prefix}{exc}")
    return None


def classify(error: BaseException) -> ErrorClass:
    """TRANSIENT if retrying (possibly elsewhere) could succeed."""
    if transient_error_for(error) is not None:
        return ErrorClass.TRANSIENT
    return ErrorClass.PERMANENT


def backoff_delay_ms(attempt: int, base_delay_ms: int) -> int:
    """Delay after the given (1-based) failed attempt."""
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    return base_delay_ms * 2 ** (attempt - 1)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay_ms: int = 1000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be non-negative")


class ResilientRpc:
    """Ordered endpoint list, a current-endpoint pointer and the retry loop.

    Usage:
        rpc = ResilientRpc(["https://a", "https://b"], make_transport)
        block = rpc.with_retry(lambda t: t.block_number())

    The transport factory builds a LedgerTransport for an endpoint URL and
    must not do network I/O. ``sleep`` is injectable so tests can record
    delays instead of waiting.
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        transport_factory: TransportFactory,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not endpoints:
            raise ValueError("At least one RPC endpoint is required")
        self._endpoints = tuple(endpoints)
        self._factory = transport_factory
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._lock = threading.Lock()
        self._index = 0
        self._transport = transport_factory(self._endpoints[0])
        self._rotations = 0

    @property
    def endpoints(self) -> tuple[str, ...]:
        return self._endpoints

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_endpoint(self) -> str:
        return self._endpoints[self._index]

    @property
    def rotations(self) -> int:
        """Total rotations since construction."""
        return self._rotations

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def transport(self) -> LedgerTransport:
        with self._lock:
            return self._transport

    def _snapshot(self) -> tuple[int, LedgerTransport]:
        with self._lock:
            return self._rotations, self._transport

    def rotate(self, seen_rotations: Optional[int] = None) -> str:
        """Advance to the next endpoint and rebuild the transport for it.

        With seen_rotations, rotation is compare-and-swap: it is skipped if
        another caller already rotated away from the endpoint that failed,
        so concurrent failures on one endpoint move the pointer once.
        """
        with self._lock:
            if seen_rotations is not None and seen_rotations != self._rotations:
                return self._endpoints[self._index]
            self._index = (self._index + 1) % len(self._endpoints)
            self._transport = self._factory(self._endpoints[self._index])
            self._rotations += 1
            index = self._index
            endpoint = self._endpoints[index]
        log_event(
            log, "rpc_rotated",
            index=index + 1, total=len(self._endpoints), endpoint=endpoint,
        )
        return endpoint

    def with_retry(
        self,
        call: Callable[[LedgerTransport], T],
        max_attempts: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
    ) -> T:
        """Run call against the current transport, retrying transient failures."""
        attempts = max_attempts if max_attempts is not None else self._policy.max_attempts
        base = base_delay_ms if base_delay_ms is not None else self._policy.base_delay_ms
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        attempt = 1
        while True:
            seen, transport = self._snapshot()
            try:
                return call(transport)
            except Exception as exc:
                if classify(exc) is ErrorClass.PERMANENT or attempt >= attempts:
                    raise
                delay = backoff_delay_ms(attempt, base)
                log_event(
                    log, "rpc_retry", level=logging.WARNING,
                    attempt=attempt, max_attempts=attempts, delay_ms=delay,
                    endpoint=transport.endpoint, error=type(exc).__name__,
                )
                self._sleep(delay / 1000.0)
                self.rotate(seen)
                attempt += 1
