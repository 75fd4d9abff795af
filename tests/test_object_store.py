"""Tests for the object stores — proves ciphertext storage and presigned release."""

import json
from pathlib import Path

import pytest

from vaultledger.errors import InvalidPointer, NotFound
from vaultledger.storage.object_store import (
    DEFAULT_CONTENT_TYPE,
    FileSystemObjectStore,
    InMemoryObjectStore,
    ObjectStore,
)


def _clock() -> float:
    return 5_000.0


class TestInMemoryObjectStore:
    def test_put_get(self) -> None:
        store = InMemoryObjectStore()
        locator = store.put("1700000000000_report.pdf", b"\x00cipher", "application/pdf")
        assert locator == "memory://1700000000000_report.pdf"
        assert store.get("1700000000000_report.pdf") == b"\x00cipher"
        assert store.content_type("1700000000000_report.pdf") == "application/pdf"
        assert "1700000000000_report.pdf" in store
        assert len(store) == 1

    def test_default_content_type(self) -> None:
        store = InMemoryObjectStore()
        store.put("k", b"x")
        assert store.content_type("k") == DEFAULT_CONTENT_TYPE

    def test_presign_expiry(self) -> None:
        store = InMemoryObjectStore(clock=_clock)
        store.put("k", b"x")
        assert store.presign("k", 300) == "memory://k?expires=5300"

    def test_missing_object(self) -> None:
        store = InMemoryObjectStore()
        with pytest.raises(NotFound):
            store.get("nope")
        with pytest.raises(NotFound):
            store.presign("nope", 60)

    def test_empty_key_rejected(self) -> None:
        with pytest.raises(InvalidPointer):
            InMemoryObjectStore().put("  ", b"x")

    def test_ttl_must_be_positive(self) -> None:
        store = InMemoryObjectStore()
        store.put("k", b"x")
        with pytest.raises(ValueError):
            store.presign("k", 0)

    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryObjectStore(), ObjectStore)


class TestFileSystemObjectStore:
    def test_put_get(self, tmp_path: Path) -> None:
        store = FileSystemObjectStore(tmp_path / "objects")
        locator = store.put("uploads/a.bin", b"ciphertext", "text/plain")
        path = store.object_path("uploads/a.bin")
        assert locator == path.resolve().as_uri()
        assert path.read_bytes() == b"ciphertext"
        assert store.get("uploads/a.bin") == b"ciphertext"

    def test_sidecar_metadata(self, tmp_path: Path) -> None:
        store = FileSystemObjectStore(tmp_path)
        store.put("k", b"12345", "text/plain")
        meta = json.loads(store.object_path("k").with_suffix(".json").read_text())
        assert meta == {"key": "k", "content_type": "text/plain", "size": 5}

    def test_layout_is_fanned_out(self, tmp_path: Path) -> None:
        store = FileSystemObjectStore(tmp_path)
        path = store.object_path("k")
        assert path.parent.parent == tmp_path
        assert path.name.startswith(path.parent.name)
        assert not path.with_suffix(".tmp").exists()

    def test_overwrite(self, tmp_path: Path) -> None:
        store = FileSystemObjectStore(tmp_path)
        store.put("k", b"first")
        store.put("k", b"second")
        assert store.get("k") == b"second"

    def test_presign(self, tmp_path: Path) -> None:
        store = FileSystemObjectStore(tmp_path, clock=_clock)
        store.put("k", b"x")
        url = store.presign("k", 60)
        assert url.startswith("file://")
        assert url.endswith("?expires=5060")

    def test_missing_object(self, tmp_path: Path) -> None:
        store = FileSystemObjectStore(tmp_path)
        with pytest.raises(NotFound):
            store.get("absent")
        with pytest.raises(NotFound):
            store.presign("absent", 60)

    def test_empty_key_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidPointer):
            FileSystemObjectStore(tmp_path).put("", b"x")

    def test_satisfies_protocol(self, tmp_path: Path) -> None:
        assert isinstance(FileSystemObjectStore(tmp_path), ObjectStore)
