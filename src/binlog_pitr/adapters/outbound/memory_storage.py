"""In-memory storage backend adapter.

A simple in-memory implementation of StorageBackend for testing and
development purposes. Data is not persisted across restarts.

Usage:
    storage = InMemoryStorageBackend()
    storage.put("prod/00000000000000000001", data)
    header = storage.get("prod/00000000000000000001", length=HEADER_SIZE)
"""

from __future__ import annotations

import threading

from binlog_pitr.domain.errors import ConflictError, NotFoundError


class InMemoryStorageBackend:
    """In-memory implementation of StorageBackend.

    Objects live in a dictionary guarded by a lock. Writes are
    create-only, like every other backend.
    """

    def __init__(self) -> None:
        """Initialize empty storage."""
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes) -> None:
        """Store an object.

        Raises:
            ConflictError: If the key already exists.
        """
        with self._lock:
            if key in self._objects:
                raise ConflictError("object already exists", key=key)
            self._objects[key] = bytes(data)

    def list(self, prefix: str) -> list[str]:
        with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))

    def get(self, key: str, length: int | None = None) -> bytes:
        """Load an object, or its first ``length`` bytes.

        Raises:
            NotFoundError: If the key does not exist.
        """
        with self._lock:
            data = self._objects.get(key)
        if data is None:
            raise NotFoundError("object not found", key=key)
        return data if length is None else data[:length]

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def clear(self) -> None:
        """Clear all stored data."""
        with self._lock:
            self._objects.clear()

    def __len__(self) -> int:
        """Number of stored objects."""
        return len(self._objects)
