"""Core data models for vaultledger."""

from vaultledger.models.access import (
    AccessDecision,
    AuthorizationResult,
    EventType,
    FileRecord,
    LedgerEvent,
    ResolvedAccessSet,
)
from vaultledger.models.identity import (
    ZERO_ADDRESS,
    normalize_address,
    normalize_file_hash,
    normalize_principal,
)

__all__ = [
    "AccessDecision",
    "AuthorizationResult",
    "EventType",
    "FileRecord",
    "LedgerEvent",
    "ResolvedAccessSet",
    "ZERO_ADDRESS",
    "normalize_address",
    "normalize_file_hash",
    "normalize_principal",
]
