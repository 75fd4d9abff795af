"""Ledger transport for the deployed registry contract, via web3.

One instance talks to one RPC endpoint. Writes are simulated with
``.call()`` first so revert reasons map onto domain errors before any gas
is spent, then signed locally with eth_account, broadcast, and awaited for
one confirmation.

Every failure leaves this module as a vaultledger error: reverts become
DuplicateFile / NotOwner / ..., provider trouble becomes a transient or
permanent RPC error for the resilience layer to classify.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, TypeVar

from eth_account import Account
from web3 import HTTPProvider, Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TimeExhausted

from vaultledger.errors import (
    CannotRevokeOwner,
    DuplicateFile,
    InvalidPointer,
    InvalidPrincipal,
    MalformedResponse,
    NotFound,
    NotOwner,
    PermanentRpcError,
    RpcTimeout,
    VaultError,
)
from vaultledger.logs import log_event
from vaultledger.models.access import EventType, LedgerEvent
from vaultledger.models.identity import (
    ZERO_ADDRESS,
    file_hash_bytes,
    normalize_address,
    normalize_file_hash,
    short,
)
from vaultledger.rpc.resilience import transient_error_for

log = logging.getLogger("vaultledger.ledger")

T = TypeVar("T")

REGISTRY_ABI: list[dict[str, Any]] = [
    {
        "type": "function", "name": "addFile", "stateMutability": "nonpayable",
        "inputs": [{"name": "fileHash", "type": "bytes32"}, {"name": "s3Key", "type": "string"}],
        "outputs": [],
    },
    {
        "type": "function", "name": "grantAccess", "stateMutability": "nonpayable",
        "inputs": [{"name": "fileHash", "type": "bytes32"}, {"name": "grantee", "type": "address"}],
        "outputs": [],
    },
    {
        "type": "function", "name": "revokeAccess", "stateMutability": "nonpayable",
        "inputs": [{"name": "fileHash", "type": "bytes32"}, {"name": "revokee", "type": "address"}],
        "outputs": [],
    },
    {
        "type": "function", "name": "hasAccess", "stateMutability": "view",
        "inputs": [{"name": "fileHash", "type": "bytes32"}, {"name": "who", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function", "name": "getS3Key", "stateMutability": "view",
        "inputs": [{"name": "fileHash", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "type": "function", "name": "getOwner", "stateMutability": "view",
        "inputs": [{"name": "fileHash", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function", "name": "fileExists", "stateMutability": "view",
        "inputs": [{"name": "fileHash", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "event", "name": "FileAdded", "anonymous": False,
        "inputs": [
            {"name": "fileHash", "type": "bytes32", "indexed": True},
            {"name": "owner", "type": "address", "indexed": True},
            {"name": "s3Key", "type": "string", "indexed": False},
        ],
    },
    {
        "type": "event", "name": "AccessGranted", "anonymous": False,
        "inputs": [
            {"name": "fileHash", "type": "bytes32", "indexed": True},
            {"name": "grantee", "type": "address", "indexed": True},
        ],
    },
    {
        "type": "event", "name": "AccessRevoked", "anonymous": False,
        "inputs": [
            {"name": "fileHash", "type": "bytes32", "indexed": True},
            {"name": "revokee", "type": "address", "indexed": True},
        ],
    },
]

# EventType -> (contract event name, name of the indexed principal argument)
_EVENT_BINDINGS: dict[EventType, tuple[str, str]] = {
    EventType.FILE_REGISTERED: ("FileAdded", "owner"),
    EventType.ACCESS_GRANTED: ("AccessGranted", "grantee"),
    EventType.ACCESS_REVOKED: ("AccessRevoked", "revokee"),
}

# Revert-reason fragments -> domain error. Checked in order.
_REVERT_MAP: list[tuple[str, type[VaultError]]] = [
    ("already exists", DuplicateFile),
    ("cannot be empty", InvalidPointer),
    ("cannot revoke owner", CannotRevokeOwner),
    ("zero address", InvalidPrincipal),
    ("only owner", NotOwner),
    ("not authorized", NotOwner),
    ("does not exist", NotFound),
    ("not found", NotFound),
]


def revert_to_error(message: str) -> VaultError:
    """Map a contract revert reason onto the domain error it represents."""
    lowered = message.lower()
    for fragment, error_cls in _REVERT_MAP:
        if fragment in lowered:
            return error_cls(message)
    return PermanentRpcError(f"Transaction reverted: {message}")


def translate_error(exc: BaseException, endpoint: str) -> VaultError:
    """Turn any exception raised by web3 or its HTTP stack into a VaultError."""
    if isinstance(exc, VaultError):
        return exc
    if isinstance(exc, ContractLogicError):
        return revert_to_error(str(exc.message if getattr(exc, "message", None) else exc))
    if isinstance(exc, TimeExhausted):
        return RpcTimeout(f"{endpoint}: {exc}")
    if isinstance(exc, BadFunctionCallOutput):
        return MalformedResponse(f"{endpoint}: {exc}")
    transient = transient_error_for(exc, endpoint)
    if transient is not None:
        return transient
    return PermanentRpcError(f"{endpoint}: {type(exc).__name__}: {exc}")


class Web3LedgerTransport:
    """Registry transport bound to one JSON-RPC endpoint.

    Construction does no network I/O, so the resilience layer can rebuild
    a transport on every rotation.
    """

    def __init__(
        self,
        endpoint: str,
        contract_address: str,
        private_key: Optional[str] = None,
        chain_id: int = 11155111,  # Sepolia
        request_timeout: float = 10.0,
        receipt_timeout: float = 120.0,
        w3: Optional[Web3] = None,
    ) -> None:
        self._endpoint = endpoint
        self._w3 = w3 or Web3(HTTPProvider(endpoint, request_kwargs={"timeout": request_timeout}))
        self._contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=REGISTRY_ABI,
        )
        self._account = Account.from_key(private_key) if private_key else None
        self._chain_id = chain_id
        self._receipt_timeout = receipt_timeout

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def caller(self) -> Optional[str]:
        return normalize_address(self._account.address) if self._account else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def block_number(self) -> int:
        return self._guard(lambda: int(self._w3.eth.block_number))

    def has_access(self, file_hash: str, principal: str) -> bool:
        fn = self._contract.functions.hasAccess(
            file_hash_bytes(file_hash), Web3.to_checksum_address(principal),
        )
        return bool(self._guard(fn.call))

    def get_pointer(self, file_hash: str) -> str:
        self._require_exists(file_hash)
        fn = self._contract.functions.getS3Key(file_hash_bytes(file_hash))
        return str(self._guard(fn.call))

    def get_owner(self, file_hash: str) -> str:
        fn = self._contract.functions.getOwner(file_hash_bytes(file_hash))
        owner = normalize_address(self._guard(fn.call))
        if owner == ZERO_ADDRESS:
            raise NotFound(f"File not found: {file_hash}")
        return owner

    def query_events(
        self,
        event_type: EventType,
        from_block: int,
        to_block: int,
        *,
        file_hash: Optional[str] = None,
        principal: Optional[str] = None,
    ) -> list[LedgerEvent]:
        event_name, principal_arg = _EVENT_BINDINGS[event_type]
        argument_filters: dict[str, Any] = {}
        if file_hash is not None:
            argument_filters["fileHash"] = file_hash_bytes(file_hash)
        if principal is not None:
            argument_filters[principal_arg] = Web3.to_checksum_address(principal)

        event = getattr(self._contract.events, event_name)()
        logs = self._guard(lambda: event.get_logs(
            from_block=from_block,
            to_block=to_block,
            argument_filters=argument_filters or None,
        ))
        return [decode_log(event_type, entry, principal_arg) for entry in logs]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def register_file(self, file_hash: str, pointer: str) -> str:
        fn = self._contract.functions.addFile(file_hash_bytes(file_hash), pointer)
        return self._transact(fn, "register_file", file_hash)

    def grant(self, file_hash: str, principal: str) -> str:
        fn = self._contract.functions.grantAccess(
            file_hash_bytes(file_hash), Web3.to_checksum_address(principal),
        )
        return self._transact(fn, "grant", file_hash)

    def revoke(self, file_hash: str, principal: str) -> str:
        fn = self._contract.functions.revokeAccess(
            file_hash_bytes(file_hash), Web3.to_checksum_address(principal),
        )
        return self._transact(fn, "revoke", file_hash)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transact(self, fn: Any, action: str, file_hash: str) -> str:
        if self._account is None:
            raise PermanentRpcError(f"{self._endpoint}: no signing account configured")
        sender = self._account.address

        # Simulate first: reverts surface as domain errors without spending gas.
        self._guard(lambda: fn.call({"from": sender}))

        def send() -> str:
            tx = fn.build_transaction({
                "from": sender,
                "nonce": self._w3.eth.get_transaction_count(sender),
                "chainId": self._chain_id,
            })
            signed = self._account.sign_transaction(tx)
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
            log_event(log, "tx_sent", action=action, file_hash=short(file_hash), tx=_hex(tx_hash))
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout,
            )
            if receipt["status"] != 1:
                raise PermanentRpcError(f"{action} transaction reverted: {_hex(tx_hash)}")
            log_event(
                log, "tx_confirmed", action=action,
                block=receipt["blockNumber"], gas_used=receipt["gasUsed"],
            )
            return _hex(tx_hash)

        return self._guard(send)

    def _require_exists(self, file_hash: str) -> None:
        fn = self._contract.functions.fileExists(file_hash_bytes(file_hash))
        if not self._guard(fn.call):
            raise NotFound(f"File not found: {file_hash}")

    def _guard(self, call: Callable[[], T]) -> T:
        try:
            return call()
        except Exception as exc:
            error = translate_error(exc, self._endpoint)
            if error is exc:
                raise
            raise error from exc


def decode_log(event_type: EventType, entry: Any, principal_arg: str) -> LedgerEvent:
    """Convert a decoded web3 log entry into a LedgerEvent.

    Raises PermanentRpcError if the entry lacks the registry's arguments.
    """
    try:
        args = entry["args"]
        pointer = args.get("s3Key") if event_type == EventType.FILE_REGISTERED else None
        return LedgerEvent(
            block_number=int(entry["blockNumber"]),
            log_index=int(entry["logIndex"]),
            event_type=event_type,
            file_hash=normalize_file_hash(_hex(args["fileHash"])),
            principal=normalize_address(args[principal_arg]),
            pointer=pointer,
            tx_id=_hex(entry["transactionHash"]) if entry.get("transactionHash") else None,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise PermanentRpcError(f"Malformed {event_type.value} log: {exc}") from exc


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text
