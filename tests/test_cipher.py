"""Tests for the cipher module — proves AEAD round-trips and tamper detection."""

import hashlib

import pytest

from vaultledger.crypto.cipher import (
    KEY_BYTES,
    NONCE_BYTES,
    TAG_BYTES,
    content_hash,
    decrypt,
    encrypt,
    file_hash_of,
    generate_key,
)
from vaultledger.errors import AuthenticationError, ValidationError


def _flip_bit(data: bytes, index: int = 0) -> bytes:
    out = bytearray(data)
    out[index] ^= 0x01
    return bytes(out)


class TestKeyGeneration:
    def test_key_is_256_bits(self) -> None:
        assert len(generate_key()) == KEY_BYTES == 32

    def test_keys_are_random(self) -> None:
        assert generate_key() != generate_key()


class TestEncryptDecrypt:
    @pytest.mark.parametrize("plaintext", [b"", b"x", b"hello vault", bytes(range(256)) * 40])
    def test_round_trip(self, plaintext: bytes) -> None:
        key = generate_key()
        obj = encrypt(plaintext, key)
        assert decrypt(obj.ciphertext, key, obj.iv, obj.auth_tag) == plaintext

    def test_lengths(self) -> None:
        obj = encrypt(b"payload", generate_key())
        assert len(obj.iv) == NONCE_BYTES
        assert len(obj.auth_tag) == TAG_BYTES
        assert len(obj.ciphertext) == len(b"payload")
        assert len(obj.content_hash) == 32

    def test_fresh_nonce_per_call(self) -> None:
        key = generate_key()
        a = encrypt(b"same", key)
        b = encrypt(b"same", key)
        assert a.iv != b.iv
        assert a.ciphertext != b.ciphertext
        assert a.file_hash != b.file_hash

    def test_hash_is_over_ciphertext(self) -> None:
        obj = encrypt(b"secret contents", generate_key())
        assert obj.content_hash == hashlib.sha256(obj.ciphertext).digest()
        assert obj.content_hash != hashlib.sha256(b"secret contents").digest()
        assert obj.file_hash == "0x" + obj.content_hash.hex()


class TestTamperDetection:
    def test_flipped_tag_bit(self) -> None:
        key = generate_key()
        obj = encrypt(b"important", key)
        with pytest.raises(AuthenticationError):
            decrypt(obj.ciphertext, key, obj.iv, _flip_bit(obj.auth_tag, 5))

    def test_flipped_ciphertext_bit(self) -> None:
        key = generate_key()
        obj = encrypt(b"important", key)
        with pytest.raises(AuthenticationError):
            decrypt(_flip_bit(obj.ciphertext), key, obj.iv, obj.auth_tag)

    def test_wrong_key(self) -> None:
        obj = encrypt(b"important", generate_key())
        with pytest.raises(AuthenticationError):
            decrypt(obj.ciphertext, generate_key(), obj.iv, obj.auth_tag)

    def test_wrong_nonce(self) -> None:
        key = generate_key()
        obj = encrypt(b"important", key)
        with pytest.raises(AuthenticationError):
            decrypt(obj.ciphertext, key, _flip_bit(obj.iv), obj.auth_tag)


class TestInputValidation:
    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            encrypt(b"data", b"\x00" * 16)

    def test_bad_nonce_length_rejected(self) -> None:
        key = generate_key()
        obj = encrypt(b"data", key)
        with pytest.raises(ValidationError):
            decrypt(obj.ciphertext, key, obj.iv[:8], obj.auth_tag)

    def test_bad_tag_length_rejected(self) -> None:
        key = generate_key()
        obj = encrypt(b"data", key)
        with pytest.raises(ValidationError):
            decrypt(obj.ciphertext, key, obj.iv, obj.auth_tag[:12])


class TestHashing:
    def test_content_hash_deterministic(self) -> None:
        assert content_hash(b"abc") == content_hash(b"abc")
        assert content_hash(b"abc") == hashlib.sha256(b"abc").digest()

    def test_file_hash_canonical(self) -> None:
        assert file_hash_of(b"abc") == "0x" + hashlib.sha256(b"abc").hexdigest()
