"""
docflow_services.storage -- Object storage for document images.

Responsibility:
    The storage collaborator: ``put(data) -> key``, ``get(key) -> bytes``,
    ``delete(key)``.  Keys are opaque strings generated by the store.

Architecture position:
    Services layer.  DocumentWorkflow stores the image before the database
    unit of work and deletes it again if that unit fails; deletions of
    documents remove the image only after commit.

Failure modes:
    - StoredObjectNotFoundError from ``get`` on an unknown key.
    - ``delete`` of an unknown key is a no-op.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Protocol, runtime_checkable
from uuid import uuid4

from docflow_kernel.exceptions import StoredObjectNotFoundError
from docflow_kernel.logging_config import get_logger

logger = get_logger("services.storage")


@runtime_checkable
class ObjectStore(Protocol):
    def put(self, data: bytes) -> str: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...


class InMemoryObjectStore:
    """Process-local store, for tests and development."""

    def __init__(self) -> None:
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes) -> str:
        key = uuid4().hex
        with self._lock:
            self._objects[key] = bytes(data)
        return key

    def get(self, key: str) -> bytes:
        with self._lock:
            try:
                return self._objects[key]
            except KeyError:
                raise StoredObjectNotFoundError(key) from None

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._objects

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)


class LocalDirectoryObjectStore:
    """Stores each object as a file named by its key under ``root``."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise StoredObjectNotFoundError(key)
        return self._root / key

    def put(self, data: bytes) -> str:
        key = uuid4().hex
        self._path(key).write_bytes(data)
        logger.debug("object_stored", extra={"key": key, "size": len(data)})
        return key

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise StoredObjectNotFoundError(key)
        return path.read_bytes()

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
