"""Ports layer - interface definitions following Hexagonal Architecture.

Ports are abstract interfaces (protocols) that define contracts:
- Inbound ports: APIs offered to the bootstrap layer (CollectorService, RecovererService)
- Outbound ports: Dependencies on external systems (StorageBackend, EventSource, ApplySink)

Adapters implement these ports with concrete functionality.
"""

from binlog_pitr.ports.inbound import (
    CollectorService,
    CycleResult,
    RecovererService,
    RecoveryState,
    RecoveryStats,
)
from binlog_pitr.ports.outbound import ApplySink, EventSource, StorageBackend

__all__ = [
    # Inbound ports
    "CollectorService",
    "CycleResult",
    "RecovererService",
    "RecoveryState",
    "RecoveryStats",
    # Outbound ports
    "ApplySink",
    "EventSource",
    "StorageBackend",
]
