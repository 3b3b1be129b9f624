"""Storage backend port for segment persistence.

This outbound port defines the capability set every object-storage
provider offers to the core. It has exactly four operations and no
business logic; provider-specific retry and backoff live inside each
adapter.

Error contract (all adapters):
    - NotFoundError: the key does not exist
    - ConflictError: put on a key that already exists
    - TransientIOError: network/provider failure, retryable
    - FatalError: authorization or configuration failure, not retryable
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol for object storage.

    Key guarantees:
    - put is atomic from a reader's perspective (no partial objects)
    - put never overwrites; segment keys are written exactly once
    - list returns the complete, lexicographically sorted listing

    Thread Safety:
        Adapters hold no cross-call state beyond their client handles.
    """

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Write an object.

        Args:
            key: Object key.
            data: Object contents.

        Raises:
            ConflictError: If the key already exists.
            TransientIOError: On retryable provider errors.
            FatalError: On authorization/configuration errors.
        """
        ...

    @abstractmethod
    def list(self, prefix: str) -> list[str]:
        """List every key under prefix, sorted lexicographically.

        Implementations paginate internally; the result is never truncated.
        """
        ...

    @abstractmethod
    def get(self, key: str, length: int | None = None) -> bytes:
        """Read an object.

        Args:
            key: Object key.
            length: If given, read only the first ``length`` bytes
                (header-only reads).

        Raises:
            NotFoundError: If the key does not exist.
            TransientIOError: On retryable provider errors.
            FatalError: On authorization/configuration errors.
        """
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete an object. Best-effort; missing keys are ignored."""
        ...
