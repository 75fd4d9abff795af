"""Tests for the file metadata store — proves records persist, replay and delete logically."""

from pathlib import Path

import pytest

from vaultledger.errors import DuplicateFile, NotFound
from vaultledger.storage.metadata import FileMetadata, MetadataStore

OWNER = "0x" + "11" * 20
ALICE = "0x" + "22" * 20
H1 = "0x" + "a1" * 32
H2 = "0x" + "a2" * 32


def _meta(
    file_hash: str = H1,
    owner: str = OWNER,
    uploaded_at: str = "2026-01-01T00:00:00+00:00",
) -> FileMetadata:
    return FileMetadata(
        file_hash=file_hash,
        owner=owner,
        file_name="report.pdf",
        content_type="application/pdf",
        size=10,
        encrypted_size=10,
        pointer="1000_report.pdf",
        uploaded_at=uploaded_at,
    )


class TestMetadataStore:
    def test_put_and_get(self) -> None:
        store = MetadataStore()
        store.put(_meta())
        meta = store.get(H1)
        assert meta is not None
        assert meta.file_name == "report.pdf"
        assert not meta.deleted
        assert len(store) == 1

    def test_get_normalizes_hash(self) -> None:
        store = MetadataStore()
        store.put(_meta(file_hash="0x" + "A1" * 32))
        assert store.get("0x" + "A1" * 32).file_hash == H1

    def test_unknown_is_none(self) -> None:
        assert MetadataStore().get(H2) is None

    def test_duplicate_rejected(self) -> None:
        store = MetadataStore()
        store.put(_meta())
        with pytest.raises(DuplicateFile):
            store.put(_meta())

    def test_mark_deleted(self) -> None:
        store = MetadataStore()
        store.put(_meta())
        updated = store.mark_deleted(H1, "2026-02-01T00:00:00+00:00")
        assert updated.deleted
        assert store.get(H1).deleted_at == "2026-02-01T00:00:00+00:00"
        assert len(store) == 0

    def test_delete_twice_not_found(self) -> None:
        store = MetadataStore()
        store.put(_meta())
        store.mark_deleted(H1, "t")
        with pytest.raises(NotFound):
            store.mark_deleted(H1, "t")

    def test_delete_unknown_not_found(self) -> None:
        with pytest.raises(NotFound):
            MetadataStore().mark_deleted(H2, "t")

    def test_owned_by_newest_first(self) -> None:
        store = MetadataStore()
        store.put(_meta(H1, uploaded_at="2026-01-01T00:00:00+00:00"))
        store.put(_meta(H2, uploaded_at="2026-03-01T00:00:00+00:00"))
        store.put(_meta("0x" + "a3" * 32, owner=ALICE))
        assert [m.file_hash for m in store.owned_by(OWNER)] == [H2, H1]

    def test_owned_by_skips_deleted(self) -> None:
        store = MetadataStore()
        store.put(_meta(H1))
        store.put(_meta(H2))
        store.mark_deleted(H1, "t")
        assert [m.file_hash for m in store.owned_by(OWNER)] == [H2]


class TestMetadataPersistence:
    def test_replay_last_record_wins(self, tmp_path: Path) -> None:
        path = tmp_path / "metadata.jsonl"
        store = MetadataStore(storage_path=path)
        store.put(_meta(H1))
        store.put(_meta(H2))
        store.mark_deleted(H1, "2026-02-01T00:00:00+00:00")

        assert len(path.read_text(encoding="utf-8").splitlines()) == 3
        reloaded = MetadataStore(storage_path=path)
        assert reloaded.get(H1).deleted
        assert not reloaded.get(H2).deleted
        assert len(reloaded) == 1

    def test_reupload_after_delete(self, tmp_path: Path) -> None:
        path = tmp_path / "metadata.jsonl"
        store = MetadataStore(storage_path=path)
        store.put(_meta(H1))
        store.mark_deleted(H1, "t")
        store.put(_meta(H1, uploaded_at="2026-04-01T00:00:00+00:00"))
        reloaded = MetadataStore(storage_path=path)
        assert not reloaded.get(H1).deleted
        assert reloaded.get(H1).uploaded_at == "2026-04-01T00:00:00+00:00"

    def test_malformed_line(self, tmp_path: Path) -> None:
        path = tmp_path / "metadata.jsonl"
        path.write_text('{"file_hash": "0x00"}\n', encoding="utf-8")
        with pytest.raises(ValueError, match="line 1"):
            MetadataStore(storage_path=path)
