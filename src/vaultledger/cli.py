"""vaultledger CLI — command-line interface for the custody engine.

Usage:
    python -m vaultledger.cli status
    python -m vaultledger.cli --as 0xOWNER upload --file report.pdf
    python -m vaultledger.cli --as 0xOWNER grant --file-hash 0x5f... --principal 0xREADER
    python -m vaultledger.cli --as 0xOWNER revoke --file-hash 0x5f... --principal 0xREADER
    python -m vaultledger.cli check --file-hash 0x5f... --principal 0xREADER
    python -m vaultledger.cli list --principal 0xREADER --strict
    python -m vaultledger.cli authorize --file-hash 0x5f... --principal 0xREADER
    python -m vaultledger.cli download --file-hash 0x5f... --principal 0xREADER \\
        --key ... --iv ... --tag ... --out report.pdf
    python -m vaultledger.cli info --file-hash 0x5f... --principal 0xREADER
    python -m vaultledger.cli --as 0xOWNER delete --file-hash 0x5f...

Without VAULT_CONTRACT_ADDRESS the commands run against a local registry
under --data-dir, acting as the --as address.
"""

from __future__ import annotations

import argparse
import base64
import binascii
import json
import mimetypes
import sys
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterator, Optional

from vaultledger.config import DEFAULT_CONFIG_DIR, VaultConfig
from vaultledger.logs import configure_logging
from vaultledger.service import ServiceResult, VaultService


def _make_service(args: argparse.Namespace) -> VaultService:
    """Create a VaultService from config, env and command-line overrides."""
    config = VaultConfig.load(args.config)
    if args.data_dir is not None:
        config = replace(config, data_dir=args.data_dir)
    configure_logging(args.log_level or config.log_level)
    return VaultService.from_config(config, caller=args.caller)


@contextmanager
def _service(args: argparse.Namespace) -> Iterator[VaultService]:
    service = _make_service(args)
    try:
        yield service
    finally:
        service.close()


def _principal(args: argparse.Namespace) -> Optional[str]:
    return args.principal or args.caller


def _report(result: ServiceResult, message: Optional[str] = None) -> int:
    if result.success:
        print(message if message is not None else json.dumps(result.data, indent=2, default=str))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def _decode(value: str, name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SystemExit(f"--{name} is not valid base64") from exc


def cmd_status(args: argparse.Namespace) -> int:
    with _service(args) as service:
        print(json.dumps(service.status(), indent=2, default=str))
    return 0


def cmd_upload(args: argparse.Namespace) -> int:
    """Encrypt a local file, store the ciphertext and register it."""
    path: Path = args.file
    if not path.is_file():
        print(f"Failed: file not found: {path}", file=sys.stderr)
        return 1
    content_type = args.content_type or mimetypes.guess_type(path.name)[0]
    with _service(args) as service:
        result = service.upload_file(
            path.read_bytes(), path.name, content_type or "application/octet-stream",
        )
    return _report(result)


def cmd_grant(args: argparse.Namespace) -> int:
    with _service(args) as service:
        result = service.grant_access(args.file_hash, args.principal)
    return _report(result, f"Granted {args.principal} access to {args.file_hash}")


def cmd_revoke(args: argparse.Namespace) -> int:
    with _service(args) as service:
        result = service.revoke_access(args.file_hash, args.principal)
    return _report(result, f"Revoked {args.principal} from {args.file_hash}")


def cmd_check(args: argparse.Namespace) -> int:
    """Print the gate decision; exits 0 for both allow and deny."""
    with _service(args) as service:
        result = service.check_access(args.file_hash, _principal(args))
    if result.success:
        print(f"{result.data['decision']} ({result.data['reason']})")
        return 0
    return _report(result)


def cmd_list(args: argparse.Namespace) -> int:
    with _service(args) as service:
        result = service.list_accessible(
            _principal(args), strict=args.strict or None, bypass_cache=args.fresh,
        )
    return _report(result)


def cmd_info(args: argparse.Namespace) -> int:
    with _service(args) as service:
        result = service.file_metadata(args.file_hash, _principal(args))
    return _report(result)


def cmd_delete(args: argparse.Namespace) -> int:
    """Remove a file from listings. Only its owner may do this."""
    with _service(args) as service:
        result = service.delete_file(args.file_hash)
    return _report(result, f"Deleted {args.file_hash}")


def cmd_authorize(args: argparse.Namespace) -> int:
    """Print a presigned download URL, or fail if access is denied."""
    with _service(args) as service:
        result = service.download_url(args.file_hash, _principal(args), args.ttl)
    return _report(result, result.data.get("url"))


def cmd_download(args: argparse.Namespace) -> int:
    """Fetch, verify and decrypt a file to --out."""
    key = _decode(args.key, "key")
    iv = _decode(args.iv, "iv")
    tag = _decode(args.tag, "tag")
    with _service(args) as service:
        result = service.download_file(args.file_hash, _principal(args), key, iv, tag)
    if not result.success:
        return _report(result)
    args.out.write_bytes(result.data["plaintext"])
    print(f"Wrote {result.data['size']} bytes to {args.out}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaultledger",
        description="vaultledger — encrypted file custody with ledger-backed access control",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Local registry, checkpoints and objects (default: VAULT_DATA_DIR or data/)",
    )
    parser.add_argument(
        "--as",
        dest="caller",
        help="Acting address for the local registry",
    )
    parser.add_argument("--log-level", help="Override VAULT_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show ledger connection and cache status")

    # upload
    p_upload = sub.add_parser("upload", help="Encrypt, store and register a file")
    p_upload.add_argument("--file", type=Path, required=True, help="File to upload")
    p_upload.add_argument("--content-type", help="MIME type (default: guessed)")

    # grant / revoke
    for name, help_text in (("grant", "Grant read access"), ("revoke", "Revoke read access")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--file-hash", required=True, help="0x-prefixed SHA-256 of the ciphertext")
        p.add_argument("--principal", required=True, help="Address to grant or revoke")

    # check
    p_check = sub.add_parser("check", help="Show the access decision for one file")
    p_check.add_argument("--file-hash", required=True)
    p_check.add_argument("--principal", help="Address to check (default: --as)")

    # list
    p_list = sub.add_parser("list", help="List files a principal can read")
    p_list.add_argument("--principal", help="Address to resolve (default: --as)")
    p_list.add_argument("--strict", action="store_true", help="Re-verify every candidate")
    p_list.add_argument("--fresh", action="store_true", help="Bypass the cache")

    # info / delete
    p_info = sub.add_parser("info", help="Show stored metadata for a readable file")
    p_info.add_argument("--file-hash", required=True)
    p_info.add_argument("--principal", help="Requesting address (default: --as)")

    p_delete = sub.add_parser("delete", help="Remove an owned file from listings")
    p_delete.add_argument("--file-hash", required=True)

    # authorize
    p_auth = sub.add_parser("authorize", help="Release a presigned URL if access is allowed")
    p_auth.add_argument("--file-hash", required=True)
    p_auth.add_argument("--principal", help="Requesting address (default: --as)")
    p_auth.add_argument("--ttl", type=int, help="URL lifetime in seconds")

    # download
    p_down = sub.add_parser("download", help="Decrypt a file if access is allowed")
    p_down.add_argument("--file-hash", required=True)
    p_down.add_argument("--principal", help="Requesting address (default: --as)")
    p_down.add_argument("--key", required=True, help="Base64 AES-256 key from upload")
    p_down.add_argument("--iv", required=True, help="Base64 nonce from upload")
    p_down.add_argument("--tag", required=True, help="Base64 auth tag from upload")
    p_down.add_argument("--out", type=Path, required=True, help="Output path")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "upload": cmd_upload,
        "grant": cmd_grant,
        "revoke": cmd_revoke,
        "check": cmd_check,
        "list": cmd_list,
        "info": cmd_info,
        "delete": cmd_delete,
        "authorize": cmd_authorize,
        "download": cmd_download,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    needs_principal = ("check", "list", "info", "authorize", "download")
    if args.command in needs_principal and _principal(args) is None:
        print("Failed: --principal or --as is required", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
