"""Outbound ports - interfaces for external dependencies.

Outbound ports define contracts for the systems the core depends on:
object storage, the source's replication stream and the target's
apply primitive.
"""

from binlog_pitr.ports.outbound.apply_sink import ApplySink
from binlog_pitr.ports.outbound.event_source import EventSource
from binlog_pitr.ports.outbound.storage_backend import StorageBackend

__all__ = [
    "ApplySink",
    "EventSource",
    "StorageBackend",
]
