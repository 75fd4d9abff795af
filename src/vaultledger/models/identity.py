"""Canonical forms for principals and file hashes.

Principals are 20-byte addresses written as 40 hex characters. File hashes
are 32-byte SHA-256 digests written as 64 hex characters. Both accept an
optional ``0x`` prefix and any letter case on input; the canonical form is
``0x`` followed by lowercase hex. Everything downstream (cache keys, event
filters, comparisons) uses the canonical form only.
"""

from __future__ import annotations

import re

from vaultledger.errors import InvalidPrincipal, ValidationError

_ADDRESS_RE = re.compile(r"^(?:0x)?([0-9a-fA-F]{40})$")
_HASH_RE = re.compile(r"^(?:0x)?([0-9a-fA-F]{64})$")

ZERO_ADDRESS = "0x" + "0" * 40


def normalize_address(value: str) -> str:
    """Return the canonical lowercase form of an address.

    Raises ValidationError for anything that is not 40 hex characters.
    """
    if not isinstance(value, str):
        raise ValidationError(f"Address must be a string, got {type(value).__name__}")
    match = _ADDRESS_RE.match(value.strip())
    if match is None:
        raise ValidationError(f"Invalid address format: {value!r}")
    return "0x" + match.group(1).lower()


def normalize_principal(value: str) -> str:
    """Like normalize_address, but also rejects the null identity."""
    address = normalize_address(value)
    if address == ZERO_ADDRESS:
        raise InvalidPrincipal("Cannot use the zero address as a principal")
    return address


def normalize_file_hash(value: str | bytes) -> str:
    """Return the canonical lowercase form of a 256-bit file hash.

    Accepts raw 32-byte digests as well as hex strings.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValidationError(f"File hash must be 32 bytes, got {len(value)}")
        return "0x" + bytes(value).hex()
    if not isinstance(value, str):
        raise ValidationError(f"File hash must be a string, got {type(value).__name__}")
    match = _HASH_RE.match(value.strip())
    if match is None:
        raise ValidationError(f"Invalid file hash format: {value!r}")
    return "0x" + match.group(1).lower()


def file_hash_bytes(file_hash: str) -> bytes:
    """Decode a canonical file hash back to its 32 raw bytes."""
    return bytes.fromhex(normalize_file_hash(file_hash)[2:])


def short(value: str, width: int = 10) -> str:
    """Truncate an address or hash for log lines."""
    return value if len(value) <= width else f"{value[:width]}..."
