"""Filesystem storage backend.

This adapter implements the StorageBackend protocol on a local directory,
for single-host deployments and tests against real files. A key maps to a
path under the root directory (``<root>/<stream-id>/<sequence>``).

Write Protocol:
    1. Write the object to a hidden temporary file in the target directory
    2. fsync the temporary file
    3. os.link() it to the final name, which fails if the name exists
    4. Remove the temporary name and fsync the directory

A reader therefore sees either no object or the complete object.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from binlog_pitr.domain.errors import (
    ConflictError,
    FatalError,
    NotFoundError,
    TransientIOError,
)


TEMP_PREFIX = ".tmp-"


class FileSystemStorageBackend:
    """Directory-backed implementation of the StorageBackend protocol.

    Attributes:
        root: Directory holding all objects.
    """

    def __init__(self, root: str | Path) -> None:
        """Initialize the backend, creating the root directory if needed."""
        self._root = Path(root)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise FatalError(f"cannot create storage root {self._root}: {e}") from e

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        parts = key.split("/")
        if not key or any(p in ("", ".", "..") or p.startswith(TEMP_PREFIX) for p in parts):
            raise FatalError("invalid object key", key=key)
        return self._root.joinpath(*parts)

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=path.parent)
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.link(tmp_name, path)
            finally:
                os.unlink(tmp_name)
            self._sync_dir(path.parent)
        except FileExistsError as e:
            raise ConflictError("object already exists", key=key) from e
        except PermissionError as e:
            raise FatalError(f"permission denied: {e}", key=key) from e
        except OSError as e:
            raise TransientIOError(f"write failed: {e}", key=key) from e

    def list(self, prefix: str) -> list[str]:
        # Walk from the deepest directory named by the prefix
        directory, _, _ = prefix.rpartition("/")
        base = self._root.joinpath(*directory.split("/")) if directory else self._root
        if not base.is_dir():
            return []
        keys = []
        try:
            for dirpath, dirnames, filenames in os.walk(base):
                dirnames[:] = [d for d in dirnames if not d.startswith(TEMP_PREFIX)]
                rel = Path(dirpath).relative_to(self._root)
                for name in filenames:
                    if name.startswith(TEMP_PREFIX):
                        continue
                    key = "/".join((*rel.parts, name))
                    if key.startswith(prefix):
                        keys.append(key)
        except PermissionError as e:
            raise FatalError(f"permission denied listing {base}: {e}") from e
        return sorted(keys)

    def get(self, key: str, length: int | None = None) -> bytes:
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read() if length is None else f.read(length)
        except FileNotFoundError as e:
            raise NotFoundError("object not found", key=key) from e
        except PermissionError as e:
            raise FatalError(f"permission denied: {e}", key=key) from e
        except OSError as e:
            raise TransientIOError(f"read failed: {e}", key=key) from e

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise TransientIOError(f"delete failed: {e}", key=key) from e

    @staticmethod
    def _sync_dir(directory: Path) -> None:
        fd = os.open(directory, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
