"""Collector and recoverer ports.

These inbound ports define the operations the bootstrap layer (CLI, outer
timer loop) drives, and the results it gets back.
"""

from __future__ import annotations

import threading
from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from binlog_pitr.domain.value_objects import LogCoordinate, RecoveryTarget, SequenceNumber


@dataclass
class CycleResult:
    """Outcome of one committed collection cycle."""

    key: str  # Storage key of the committed segment
    sequence: SequenceNumber
    start: LogCoordinate
    end: LogCoordinate  # New resume point
    events: int = 0  # Events committed
    payload_bytes: int = 0
    dropped_events: int = 0  # Trailing events of an unfinished transaction
    append_attempts: int = 1
    cancelled: bool = False  # Capture was cut short by cancellation
    duration_ms: float = 0.0


class RecoveryState(Enum):
    """Terminal states of a recovery run."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RecoveryStats:
    """Statistics from a recovery run."""

    state: RecoveryState
    target: str  # Human-readable target
    segments_planned: int = 0
    segments_applied: int = 0
    transactions_applied: int = 0
    transactions_skipped: int = 0  # Before base or rolled back
    final_coordinate: LogCoordinate | None = None  # Last applied commit
    duration_ms: float = 0.0


class CollectorService(Protocol):
    """Protocol for the binlog collector."""

    @abstractmethod
    def run_cycle(self, cancel: threading.Event | None = None) -> CycleResult:
        """Run one resume -> capture -> commit cycle.

        Raises:
            CycleAbortedError: If cancelled without committing.
            PitrError: Any non-retryable failure (fail-stop).
        """
        ...

    @abstractmethod
    def run_forever(self, cancel: threading.Event) -> None:
        """Run cycles back to back until cancelled."""
        ...


class RecovererService(Protocol):
    """Protocol for the binlog recoverer."""

    @abstractmethod
    def recover(
        self,
        target: RecoveryTarget,
        cancel: threading.Event | None = None,
    ) -> RecoveryStats:
        """Replay stored segments into the target database up to target.

        Raises:
            IncompleteHistoryError: If the chain has a gap.
            TargetNotCapturedError: If the target is beyond the chain.
            ApplyError: If the target database rejected data.
            RecoveryCancelledError: If cancelled at a transaction boundary.
        """
        ...
