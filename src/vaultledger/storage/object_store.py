"""Object store boundary for encrypted file bytes.

The engine only ever stores ciphertext, addressed by an opaque key (the
pointer recorded on the ledger). Stores implement three calls:

    put(key, data, content_type) -> locator
    presign(key, ttl_seconds)    -> time-limited URL
    get(key)                     -> bytes

InMemoryObjectStore backs tests. FileSystemObjectStore lays objects out
under a root directory, fanned out by the SHA-256 of the key.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from pathlib import Path
from typing import Callable, Protocol, runtime_checkable
from urllib.parse import quote, urlencode

from vaultledger.errors import InfrastructureError, InvalidPointer, NotFound

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@runtime_checkable
class ObjectStore(Protocol):
    """Where ciphertext lives. Keys are ledger pointers."""

    def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        ...

    def presign(self, key: str, ttl_seconds: int) -> str:
        ...

    def get(self, key: str) -> bytes:
        ...


def _check_key(key: str) -> str:
    if not isinstance(key, str) or not key.strip():
        raise InvalidPointer("Object key cannot be empty")
    return key


def _check_ttl(ttl_seconds: int) -> int:
    if ttl_seconds <= 0:
        raise ValueError("ttl_seconds must be positive")
    return int(ttl_seconds)


class InMemoryObjectStore:
    """Dictionary-backed store. Presigned URLs use the memory:// scheme."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._objects: dict[str, tuple[bytes, str]] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        key = _check_key(key)
        with self._lock:
            self._objects[key] = (bytes(data), content_type)
        return f"memory://{quote(key)}"

    def presign(self, key: str, ttl_seconds: int) -> str:
        key = _check_key(key)
        ttl = _check_ttl(ttl_seconds)
        with self._lock:
            if key not in self._objects:
                raise NotFound(f"Object not found: {key}")
        expires = int(self._clock()) + ttl
        return f"memory://{quote(key)}?{urlencode({'expires': expires})}"

    def get(self, key: str) -> bytes:
        key = _check_key(key)
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise NotFound(f"Object not found: {key}")
        return entry[0]

    def content_type(self, key: str) -> str:
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise NotFound(f"Object not found: {key}")
        return entry[1]

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._objects

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)


class FileSystemObjectStore:
    """Objects under root/<aa>/<sha256(key)>.bin with a JSON sidecar.

    Writes go to a temporary sibling first and are then renamed into place,
    so a reader never sees a half-written object.
    """

    def __init__(self, root: Path, clock: Callable[[], float] = time.time) -> None:
        self._root = Path(root)
        self._clock = clock

    @property
    def root(self) -> Path:
        return self._root

    def object_path(self, key: str) -> Path:
        digest = hashlib.sha256(_check_key(key).encode("utf-8")).hexdigest()
        return self._root / digest[:2] / f"{digest}.bin"

    def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        path = self.object_path(key)
        meta = {"key": key, "content_type": content_type, "size": len(data)}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_bytes(data)
            tmp.replace(path)
            path.with_suffix(".json").write_text(
                json.dumps(meta, sort_keys=True), encoding="utf-8",
            )
        except OSError as exc:
            raise InfrastructureError(f"Object write failed for {key}: {exc}") from exc
        return path.resolve().as_uri()

    def presign(self, key: str, ttl_seconds: int) -> str:
        ttl = _check_ttl(ttl_seconds)
        path = self.object_path(key)
        if not path.exists():
            raise NotFound(f"Object not found: {key}")
        expires = int(self._clock()) + ttl
        return f"{path.resolve().as_uri()}?{urlencode({'expires': expires})}"

    def get(self, key: str) -> bytes:
        path = self.object_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFound(f"Object not found: {key}") from exc
        except OSError as exc:
            raise InfrastructureError(f"Object read failed for {key}: {exc}") from exc
