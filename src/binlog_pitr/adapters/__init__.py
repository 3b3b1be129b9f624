"""Adapters layer - concrete implementations of port interfaces.

Adapters provide the actual implementations:
- Storage backends: S3, Azure Blob, local filesystem, in-memory
- MySQL: replication event source and transaction apply sink

Provider adapters are imported from their modules directly so that a
process only loads the SDK it was configured for.
"""

from binlog_pitr.adapters.outbound import (
    FileSystemStorageBackend,
    InMemoryStorageBackend,
    MeteredStorageBackend,
)

__all__ = [
    "FileSystemStorageBackend",
    "InMemoryStorageBackend",
    "MeteredStorageBackend",
]
