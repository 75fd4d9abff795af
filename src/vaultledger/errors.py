"""Error taxonomy for the custody engine.

Six families, each with its own propagation rule:

- Validation: malformed identity, hash or pointer. Raised before any I/O.
- NotFound / DuplicateFile: registry lookups and the registration guard.
- Authorization: owner-only operations and gate denials.
- Transient infrastructure: rate limits, range ceilings, timeouts and
  garbled responses. Absorbed by retry and endpoint rotation; they only
  reach the caller once attempts are exhausted.
- Permanent infrastructure: bad credentials, reverted transactions,
  anything the retry loop cannot fix. Surfaced immediately.
- Crypto integrity: authentication-tag mismatch. Never retried.

The access gate converts every infrastructure failure into a DENY.
"""

from __future__ import annotations


class VaultError(Exception):
    """Base class for every error raised by vaultledger."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationError(VaultError, ValueError):
    """Malformed input, rejected before touching the ledger or the store."""


class InvalidPointer(ValidationError):
    """Object-store pointer is empty."""


class InvalidPrincipal(ValidationError):
    """Principal is the null (all-zero) identity."""


# ---------------------------------------------------------------------------
# Registry state
# ---------------------------------------------------------------------------

class NotFound(VaultError):
    """No FileRecord exists for the requested file hash."""


class DuplicateFile(VaultError):
    """A FileRecord already exists for this file hash."""


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class AuthorizationError(VaultError):
    """Caller is not allowed to perform the operation."""


class NotOwner(AuthorizationError):
    """Only the recorded owner may grant or revoke."""


class CannotRevokeOwner(AuthorizationError):
    """The owner's own access is permanent."""


class AccessDenied(AuthorizationError):
    """The access gate returned DENY for a release or decrypt request."""


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

class InfrastructureError(VaultError):
    """A remote dependency (RPC endpoint, object store) failed."""


class TransientRpcError(InfrastructureError):
    """Failure that may succeed on retry or on another endpoint."""


class RateLimited(TransientRpcError):
    pass


class RangeTooLarge(TransientRpcError):
    """Endpoint refused the block range of an event query."""


class RpcTimeout(TransientRpcError):
    pass


class MalformedResponse(TransientRpcError):
    """Endpoint answered with something that could not be decoded."""


class PermanentRpcError(InfrastructureError):
    """Failure that retrying will not fix."""


# ---------------------------------------------------------------------------
# Crypto
# ---------------------------------------------------------------------------

class CryptoError(VaultError):
    """The underlying cipher primitive failed."""


class AuthenticationError(CryptoError):
    """AEAD tag did not verify: tampered data, wrong key or wrong nonce."""


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

class ResolutionUnavailable(VaultError):
    """Accessible-file set could not be computed. Means unknown, not empty."""


class ResolutionTimeout(ResolutionUnavailable):
    """Caller-supplied deadline expired before resolution finished."""
