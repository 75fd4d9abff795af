"""Cryptographic primitives — AEAD encryption and content hashing."""

from vaultledger.crypto.cipher import (
    EncryptedObject,
    content_hash,
    decrypt,
    encrypt,
    file_hash_of,
    generate_key,
)

__all__ = [
    "EncryptedObject",
    "content_hash",
    "decrypt",
    "encrypt",
    "file_hash_of",
    "generate_key",
]
