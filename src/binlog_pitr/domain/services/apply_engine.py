"""Transaction-atomic replay of segment payloads.

The engine wraps the external apply primitive and enforces the stop rule:
a transaction is applied iff

    after < transaction.end <= cutoff

so replay never overshoots into a later transaction and never truncates
one mid-way. When the cutoff falls inside a transaction, that transaction
ends after the cutoff and is left out, which makes the previous complete
transaction the effective stop point.

States:
    IDLE -> APPLYING -> IDLE      (apply_all finished a segment)
    IDLE -> APPLYING -> STOPPED   (cutoff honoured or cancelled; terminal)
    IDLE -> APPLYING -> FAILED    (sink rejected a transaction; terminal)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from binlog_pitr.domain.entities import BinlogEvent, decode_payload, group_transactions
from binlog_pitr.domain.errors import ApplyError
from binlog_pitr.domain.value_objects import LogCoordinate
from binlog_pitr.infrastructure.logging import get_logger
from binlog_pitr.ports.outbound.apply_sink import ApplySink


logger = get_logger(__name__)


class ApplyState(Enum):
    """Lifecycle of an apply engine."""

    IDLE = "idle"
    APPLYING = "applying"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class ApplyResult:
    """Outcome of replaying one segment payload."""

    applied: int = 0
    skipped: int = 0
    last_applied: LogCoordinate | None = None
    cancelled: bool = False
    incomplete_tail: int = 0  # Events of an unfinished trailing transaction


class ApplyEngine:
    """Bounded replay state machine over an ApplySink.

    Usage:
        engine = ApplyEngine(sink)
        engine.apply_all(payload, after=base)
        engine.apply_up_to(last_payload, cutoff)

    Thread Safety:
        Single-threaded; cancellation is observed between transactions only.
    """

    def __init__(self, sink: ApplySink) -> None:
        self._sink = sink
        self._state = ApplyState.IDLE
        self._last_applied: LogCoordinate | None = None

    @property
    def state(self) -> ApplyState:
        return self._state

    @property
    def last_applied(self) -> LogCoordinate | None:
        """End of the last transaction the sink accepted, across all calls."""
        return self._last_applied

    def apply_all(
        self,
        payload: bytes,
        after: LogCoordinate | None = None,
        cancel: threading.Event | None = None,
        key: str | None = None,
    ) -> ApplyResult:
        """Apply every complete transaction of a payload.

        Args:
            payload: Segment payload (framed events).
            after: Skip transactions ending at or before this coordinate.
            cancel: Checked before each transaction.
            key: Segment key, for error context.
        """
        return self._apply(decode_payload(payload, key=key), None, after, cancel, key)

    def apply_up_to(
        self,
        payload: bytes,
        cutoff: LogCoordinate,
        after: LogCoordinate | None = None,
        cancel: threading.Event | None = None,
        key: str | None = None,
    ) -> ApplyResult:
        """Apply complete transactions ending at or before cutoff, then stop."""
        return self._apply(decode_payload(payload, key=key), cutoff, after, cancel, key)

    @staticmethod
    def cutoff_for_time(
        payload: bytes,
        moment: datetime,
        floor: LogCoordinate,
        key: str | None = None,
    ) -> LogCoordinate:
        """Resolve a timestamp to the end of the last transaction at or before it.

        Args:
            payload: Payload of the cutoff segment.
            moment: Recovery timestamp.
            floor: Returned when no transaction qualifies (the segment start).
        """
        transactions, _ = group_transactions(decode_payload(payload, key=key))
        cutoff = floor
        for transaction in transactions:
            if transaction.timestamp > moment:
                break
            cutoff = transaction.end
        return cutoff

    def _apply(
        self,
        events: list[BinlogEvent],
        cutoff: LogCoordinate | None,
        after: LogCoordinate | None,
        cancel: threading.Event | None,
        key: str | None,
    ) -> ApplyResult:
        if self._state in (ApplyState.STOPPED, ApplyState.FAILED):
            raise ApplyError(f"apply engine is {self._state.value}; refusing more data", key=key)

        self._state = ApplyState.APPLYING
        result = ApplyResult()
        transactions, trailing = group_transactions(events)

        for transaction in transactions:
            if cutoff is not None and transaction.end > cutoff:
                break
            if after is not None and transaction.end <= after:
                result.skipped += 1
                continue
            if transaction.rolled_back:
                result.skipped += 1
                continue
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                break
            try:
                self._sink.apply_transaction(transaction)
            except Exception as e:
                self._state = ApplyState.FAILED
                raise ApplyError(
                    f"target rejected transaction: {e}", key=key, coordinate=transaction.end
                ) from e
            result.applied += 1
            result.last_applied = transaction.end
            self._last_applied = transaction.end

        if trailing and not result.cancelled:
            result.incomplete_tail = len(trailing)
            logger.warning(
                "incomplete_transaction_not_applied",
                key=key,
                events=len(trailing),
                starts_after=str(trailing[0].coordinate),
            )

        if cutoff is not None or result.cancelled:
            self._state = ApplyState.STOPPED
        else:
            self._state = ApplyState.IDLE
        return result
