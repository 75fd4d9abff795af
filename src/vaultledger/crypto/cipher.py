"""AES-256-GCM encryption and content hashing.

Files are encrypted before they leave the process. The SHA-256 of the
ciphertext (never the plaintext) is the file's identity on the ledger and
the de-duplication key in the object store, so nothing about the content
is revealed by its registry entry.

Keys are generated here and handed back to the caller. They are never
persisted by this package.
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from vaultledger.errors import AuthenticationError, CryptoError, ValidationError
from vaultledger.models.identity import normalize_file_hash

KEY_BYTES = 32    # AES-256
NONCE_BYTES = 12  # 96-bit GCM nonce
TAG_BYTES = 16    # 128-bit authentication tag


@dataclass(frozen=True)
class EncryptedObject:
    """Ciphertext plus everything except the key needed to decrypt it."""
    ciphertext: bytes
    iv: bytes
    auth_tag: bytes
    content_hash: bytes

    @property
    def file_hash(self) -> str:
        """Canonical hex form of content_hash, as used on the ledger."""
        return normalize_file_hash(self.content_hash)


def generate_key() -> bytes:
    """Return a fresh random 256-bit key."""
    return os.urandom(KEY_BYTES)


def content_hash(data: bytes) -> bytes:
    """SHA-256 digest of data. Deterministic; used as the ledger identifier."""
    return hashlib.sha256(data).digest()


def file_hash_of(data: bytes) -> str:
    """Canonical hex file hash of data."""
    return normalize_file_hash(content_hash(data))


def encrypt(plaintext: bytes, key: bytes) -> EncryptedObject:
    """Encrypt plaintext under key with a fresh random nonce.

    The content hash is computed over the ciphertext only.
    """
    _check_key(key)
    nonce = os.urandom(NONCE_BYTES)
    try:
        sealed = AESGCM(key).encrypt(nonce, bytes(plaintext), None)
    except Exception as exc:
        raise CryptoError(f"Encryption failed: {exc}") from exc

    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return EncryptedObject(
        ciphertext=ciphertext,
        iv=nonce,
        auth_tag=tag,
        content_hash=content_hash(ciphertext),
    )


def decrypt(ciphertext: bytes, key: bytes, nonce: bytes, tag: bytes) -> bytes:
    """Verify the tag and return the plaintext.

    GCM verifies the tag before any plaintext is produced, so a failure
    here never leaks partial output.

    Raises:
        AuthenticationError: tag mismatch (tampering, wrong key or nonce).
        ValidationError: key, nonce or tag has the wrong length.
    """
    _check_key(key)
    if len(nonce) != NONCE_BYTES:
        raise ValidationError(f"Nonce must be {NONCE_BYTES} bytes, got {len(nonce)}")
    if len(tag) != TAG_BYTES:
        raise ValidationError(f"Auth tag must be {TAG_BYTES} bytes, got {len(tag)}")

    try:
        return AESGCM(key).decrypt(bytes(nonce), bytes(ciphertext) + bytes(tag), None)
    except InvalidTag as exc:
        raise AuthenticationError("Authentication tag did not verify") from exc
    except Exception as exc:
        raise CryptoError(f"Decryption failed: {exc}") from exc


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_BYTES:
        size = len(key) if isinstance(key, (bytes, bytearray)) else type(key).__name__
        raise ValidationError(f"Key must be {KEY_BYTES} bytes, got {size}")
