"""Outbound adapters - implementations of outbound ports.

These adapters implement external dependencies: object storage
providers, the source's replication stream and the target database.
"""

from binlog_pitr.adapters.outbound.file_storage import FileSystemStorageBackend
from binlog_pitr.adapters.outbound.memory_storage import InMemoryStorageBackend
from binlog_pitr.adapters.outbound.metered_storage import MeteredStorageBackend

__all__ = [
    "FileSystemStorageBackend",
    "InMemoryStorageBackend",
    "MeteredStorageBackend",
]
