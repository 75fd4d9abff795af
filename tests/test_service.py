"""Tests for the vault service — proves the upload, share and download lifecycle."""

import base64
from pathlib import Path

import pytest

from vaultledger import __version__
from vaultledger.config import VaultConfig
from vaultledger.service import LOCAL_ENDPOINT, VaultService, object_key_for
from vaultledger.storage.object_store import InMemoryObjectStore

OWNER = "0x" + "11" * 20
ALICE = "0x" + "22" * 20
MALLORY = "0x" + "66" * 20
UNKNOWN = "0x" + "f0" * 32


def _config(tmp_path: Path) -> VaultConfig:
    return VaultConfig(data_dir=tmp_path / "data", base_delay_ms=0)


def _service(tmp_path: Path, caller: str = OWNER, store=None) -> VaultService:
    return VaultService.from_config(_config(tmp_path), caller=caller, object_store=store)


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore(clock=lambda: 1_000.0)


@pytest.fixture
def service(tmp_path: Path, store: InMemoryObjectStore) -> VaultService:
    svc = _service(tmp_path, store=store)
    yield svc
    svc.close()


def _decoded(data: dict) -> tuple[bytes, bytes, bytes]:
    return tuple(base64.b64decode(data[name]) for name in ("key", "iv", "auth_tag"))


class TestObjectKey:
    def test_sanitized(self) -> None:
        assert object_key_for("../etc/my report (1).pdf", 17) == "17_my_report_1_.pdf"

    def test_empty_name(self) -> None:
        assert object_key_for("...", 5) == "5_file"


class TestUpload:
    def test_upload_registers_and_stores_ciphertext(
        self, service: VaultService, store: InMemoryObjectStore,
    ) -> None:
        result = service.upload_file(b"hello vault", "hello.txt", "text/plain")
        assert result.success, result.errors
        data = result.data
        assert data["file_hash"].startswith("0x") and len(data["file_hash"]) == 66
        assert data["pointer"].endswith("_hello.txt")
        assert data["size"] == 11
        assert data["encrypted_size"] == 11
        assert store.get(data["pointer"]) != b"hello vault"
        assert store.content_type(data["pointer"]) == "text/plain"
        assert service.client.get_owner(data["file_hash"]) == OWNER

    def test_owner_sees_upload(self, service: VaultService) -> None:
        service.list_accessible(OWNER)
        file_hash = service.upload_file(b"x", "x.bin").data["file_hash"]
        assert service.list_accessible(OWNER).data["file_hashes"] == [file_hash]

    def test_round_trip(self, service: VaultService) -> None:
        data = service.upload_file(b"round trip", "r.txt").data
        key, iv, tag = _decoded(data)
        result = service.download_file(data["file_hash"], OWNER, key, iv, tag)
        assert result.success, result.errors
        assert result.data["plaintext"] == b"round trip"

    def test_register_duplicate_fails(self, service: VaultService) -> None:
        data = service.upload_file(b"x", "x.bin").data
        result = service.register_upload(data["file_hash"], "other-key")
        assert not result.success
        assert result.errors[0].startswith("DuplicateFile: ")

    def test_upload_without_caller_fails(self, tmp_path: Path, store: InMemoryObjectStore) -> None:
        svc = VaultService.from_config(_config(tmp_path), object_store=store)
        result = svc.upload_file(b"x", "x.bin")
        assert not result.success
        assert result.errors[0].startswith("PermanentRpcError: ")


class TestSharing:
    def test_grant_list_revoke(self, service: VaultService) -> None:
        file_hash = service.upload_file(b"shared", "s.txt").data["file_hash"]
        assert service.list_accessible(ALICE).data["file_hashes"] == []

        granted = service.grant_access(file_hash, ALICE)
        assert granted.success
        assert granted.data["principal"] == ALICE
        assert service.list_accessible(ALICE).data["file_hashes"] == [file_hash]
        assert service.check_access(file_hash, ALICE).data["allowed"]

        assert service.revoke_access(file_hash, ALICE).success
        assert service.list_accessible(ALICE).data["file_hashes"] == []
        check = service.check_access(file_hash, ALICE)
        assert check.success
        assert not check.data["allowed"]
        assert check.data["decision"] == "deny"

    def test_revoke_owner_rejected(self, service: VaultService) -> None:
        file_hash = service.upload_file(b"x", "x.bin").data["file_hash"]
        result = service.revoke_access(file_hash, OWNER)
        assert not result.success
        assert result.errors[0].startswith("CannotRevokeOwner: ")

    def test_non_owner_cannot_grant(self, tmp_path: Path, service: VaultService) -> None:
        file_hash = service.upload_file(b"x", "x.bin").data["file_hash"]
        other = _service(tmp_path, caller=MALLORY)
        result = other.grant_access(file_hash, MALLORY)
        assert not result.success
        assert result.errors[0].startswith("NotOwner: ")

    def test_invalid_principal(self, service: VaultService) -> None:
        file_hash = service.upload_file(b"x", "x.bin").data["file_hash"]
        result = service.grant_access(file_hash, "bob")
        assert not result.success
        assert result.errors[0].startswith("ValidationError: ")

    def test_list_reports_scan(self, service: VaultService) -> None:
        service.upload_file(b"x", "x.bin")
        data = service.list_accessible(OWNER, strict=True, bypass_cache=True).data
        assert data["complete"] is True
        assert data["strict"] is True
        assert data["scanned_blocks"][1] >= 1

    def test_state_survives_restart(self, tmp_path: Path, service: VaultService) -> None:
        file_hash = service.upload_file(b"x", "x.bin").data["file_hash"]
        service.grant_access(file_hash, ALICE)
        reopened = _service(tmp_path, caller=ALICE)
        assert reopened.list_accessible(ALICE).data["file_hashes"] == [file_hash]


class TestDownload:
    def test_presigned_url_for_grantee(self, service: VaultService) -> None:
        data = service.upload_file(b"x", "x.bin").data
        service.grant_access(data["file_hash"], ALICE)
        result = service.download_url(data["file_hash"], ALICE)
        assert result.success
        assert result.data["expires_in"] == 300
        assert result.data["url"].endswith("expires=1300")

    def test_custom_ttl(self, service: VaultService) -> None:
        data = service.upload_file(b"x", "x.bin").data
        result = service.download_url(data["file_hash"], OWNER, ttl_seconds=60)
        assert result.data["url"].endswith("expires=1060")

    def test_stranger_denied(self, service: VaultService) -> None:
        data = service.upload_file(b"x", "x.bin").data
        key, iv, tag = _decoded(data)
        url = service.download_url(data["file_hash"], MALLORY)
        assert not url.success
        assert url.errors[0].startswith("AccessDenied: ")
        assert not service.download_file(data["file_hash"], MALLORY, key, iv, tag).success

    def test_unknown_file_denied(self, service: VaultService) -> None:
        result = service.download_url(UNKNOWN, OWNER)
        assert not result.success
        assert result.errors[0].startswith("AccessDenied: ")

    def test_wrong_key(self, service: VaultService) -> None:
        data = service.upload_file(b"x", "x.bin").data
        _, iv, tag = _decoded(data)
        result = service.download_file(data["file_hash"], OWNER, b"\x00" * 32, iv, tag)
        assert not result.success
        assert result.errors[0].startswith("AuthenticationError: ")


class TestStatus:
    def test_local_status(self, service: VaultService) -> None:
        service.upload_file(b"x", "x.bin")
        status = service.status()
        assert status["version"] == __version__
        assert status["caller"] == OWNER
        assert status["ledger"]["endpoint"] == LOCAL_ENDPOINT
        assert status["ledger"]["endpoints"] == 1
        assert status["ledger"]["block_number"] == 1
        assert status["ledger"]["error"] is None
        assert status["resolution"]["cache_ttl_seconds"] == 300.0
        assert status["resolution"]["strict"] is False


class TestConfigWiring:
    def test_injected_empty_store_is_kept(self, tmp_path: Path) -> None:
        empty = InMemoryObjectStore()
        assert len(empty) == 0
        svc = _service(tmp_path, store=empty)
        try:
            pointer = svc.upload_file(b"x", "x.bin").data["pointer"]
        finally:
            svc.close()
        assert pointer in empty
        assert not (tmp_path / "data" / "objects").exists()

    def test_metadata_persisted_under_data_dir(self, tmp_path: Path, store: InMemoryObjectStore) -> None:
        svc = _service(tmp_path, store=store)
        file_hash = svc.upload_file(b"x", "x.bin").data["file_hash"]
        svc.close()
        reopened = _service(tmp_path, store=store)
        assert reopened.metadata.get(file_hash).file_name == "x.bin"
        assert (tmp_path / "data" / "metadata.jsonl").exists()


class TestFileMetadata:
    def test_upload_records_metadata(self, service: VaultService) -> None:
        data = service.upload_file(b"hello", "dir/report.pdf", "application/pdf").data
        meta = service.metadata.get(data["file_hash"])
        assert meta.owner == OWNER
        assert meta.file_name == "report.pdf"
        assert meta.content_type == "application/pdf"
        assert meta.size == 5
        assert meta.pointer == data["pointer"]
        assert meta.uploaded_at == data["uploaded_at"]

    def test_listing_marks_owner_and_grantee(self, service: VaultService) -> None:
        file_hash = service.upload_file(b"x", "x.bin").data["file_hash"]
        service.grant_access(file_hash, ALICE)

        [owned] = service.list_accessible(OWNER).data["files"]
        assert owned["is_owner"] is True
        assert owned["on_chain_only"] is False
        assert owned["file_name"] == "x.bin"

        [shared] = service.list_accessible(ALICE).data["files"]
        assert shared["is_owner"] is False
        assert shared["owner"] == OWNER

    def test_listing_flags_hash_without_metadata(self, service: VaultService) -> None:
        file_hash = service.upload_file(b"x", "x.bin").data["file_hash"]
        registered = "0x" + "ab" * 32
        assert service.register_upload(registered, "elsewhere").success

        files = service.list_accessible(OWNER).data["files"]
        by_hash = {f["file_hash"]: f for f in files}
        assert by_hash[registered] == {"file_hash": registered, "on_chain_only": True}
        assert by_hash[file_hash]["on_chain_only"] is False

    def test_metadata_for_grantee(self, service: VaultService) -> None:
        file_hash = service.upload_file(b"x", "x.bin").data["file_hash"]
        service.grant_access(file_hash, ALICE)
        result = service.file_metadata(file_hash, ALICE)
        assert result.success, result.errors
        assert result.data["file_name"] == "x.bin"
        assert result.data["is_owner"] is False
        assert "deleted_at" not in result.data

    def test_metadata_denied_to_stranger(self, service: VaultService) -> None:
        file_hash = service.upload_file(b"x", "x.bin").data["file_hash"]
        result = service.file_metadata(file_hash, MALLORY)
        assert not result.success
        assert result.errors[0].startswith("AccessDenied: ")

    def test_metadata_missing(self, service: VaultService) -> None:
        registered = "0x" + "ab" * 32
        service.register_upload(registered, "elsewhere")
        result = service.file_metadata(registered, OWNER)
        assert not result.success
        assert result.errors[0].startswith("NotFound: ")


class TestDelete:
    def test_owner_deletes(self, service: VaultService) -> None:
        data = service.upload_file(b"x", "x.bin").data
        file_hash = data["file_hash"]
        service.grant_access(file_hash, ALICE)

        result = service.delete_file(file_hash)
        assert result.success, result.errors
        assert result.data["file_hash"] == file_hash
        assert result.data["deleted_at"]

        listing = service.list_accessible(ALICE).data
        assert listing["file_hashes"] == [file_hash]
        assert listing["files"] == []
        assert service.file_metadata(file_hash, OWNER).errors[0].startswith("NotFound: ")
        assert service.status()["files_indexed"] == 0

    def test_ledger_and_ciphertext_untouched(self, service: VaultService) -> None:
        data = service.upload_file(b"kept", "k.txt").data
        service.delete_file(data["file_hash"])
        assert service.client.get_owner(data["file_hash"]) == OWNER
        key, iv, tag = _decoded(data)
        assert service.download_file(data["file_hash"], OWNER, key, iv, tag).data["plaintext"] == b"kept"

    def test_non_owner_cannot_delete(self, tmp_path: Path, service: VaultService) -> None:
        file_hash = service.upload_file(b"x", "x.bin").data["file_hash"]
        service.grant_access(file_hash, ALICE)
        other = _service(tmp_path, caller=ALICE)
        result = other.delete_file(file_hash)
        assert not result.success
        assert result.errors[0].startswith("NotOwner: ")
        assert not service.metadata.get(file_hash).deleted

    def test_no_caller_cannot_delete(self, tmp_path: Path, service: VaultService) -> None:
        file_hash = service.upload_file(b"x", "x.bin").data["file_hash"]
        anonymous = VaultService.from_config(_config(tmp_path))
        assert anonymous.delete_file(file_hash).errors[0].startswith("NotOwner: ")

    def test_delete_twice(self, service: VaultService) -> None:
        file_hash = service.upload_file(b"x", "x.bin").data["file_hash"]
        assert service.delete_file(file_hash).success
        assert service.delete_file(file_hash).errors[0].startswith("NotFound: ")

    def test_delete_unregistered(self, service: VaultService) -> None:
        result = service.delete_file(UNKNOWN)
        assert not result.success
        assert result.errors[0].startswith("NotFound: ")
