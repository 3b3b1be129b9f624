"""Inbound ports - API contracts for collection and recovery."""

from binlog_pitr.ports.inbound.pitr_service import (
    CollectorService,
    CycleResult,
    RecovererService,
    RecoveryState,
    RecoveryStats,
)

__all__ = [
    "CollectorService",
    "CycleResult",
    "RecovererService",
    "RecoveryState",
    "RecoveryStats",
]
