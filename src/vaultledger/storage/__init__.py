"""Ciphertext storage behind the ObjectStore protocol, and off-ledger file metadata."""

from vaultledger.storage.metadata import FileMetadata, MetadataStore
from vaultledger.storage.object_store import (
    FileSystemObjectStore,
    InMemoryObjectStore,
    ObjectStore,
)

__all__ = [
    "FileMetadata",
    "FileSystemObjectStore",
    "InMemoryObjectStore",
    "MetadataStore",
    "ObjectStore",
]
