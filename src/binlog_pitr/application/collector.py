"""Binlog collector - periodic, crash-resumable capture into segments.

One cycle:
    1. Resume:  recompute the resume point from the manifest
    2. Capture: stream events from the source until the cycle deadline,
                the segment size limit, cancellation or source exhaustion
    3. Commit:  trim to the last transaction boundary, build the segment
                and append it; only a confirmed append completes the cycle

The collector keeps no position of its own between cycles. A crash at any
point before the append confirms leaves the manifest unchanged, and the
next cycle resumes from the same coordinate under the same key.

Usage:
    collector = BinlogCollector(manifest, source, config.collector)
    collector.run_forever(cancel)
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from binlog_pitr.application.retry import read_with_retries
from binlog_pitr.domain.entities import (
    BinlogEvent,
    EventKind,
    ResumeCursor,
    Segment,
    group_transactions,
    segment_prefix,
)
from binlog_pitr.domain.errors import (
    ConflictError,
    CycleAbortedError,
    FatalError,
    NotFoundError,
    PitrError,
    TransientIOError,
)
from binlog_pitr.domain.services import SegmentManifest
from binlog_pitr.domain.value_objects import LogCoordinate, TimeRange
from binlog_pitr.infrastructure.config import CollectorConfig
from binlog_pitr.infrastructure.logging import get_logger
from binlog_pitr.infrastructure.metrics import MetricsRegistry, get_metrics
from binlog_pitr.infrastructure.tracing import trace_span
from binlog_pitr.ports.inbound.pitr_service import CycleResult
from binlog_pitr.ports.outbound.event_source import EventSource


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BinlogCollector:
    """Collector implementing the CollectorService protocol.

    Thread Safety:
        Cycles run strictly sequentially; one collector per stream.
    """

    def __init__(
        self,
        manifest: SegmentManifest,
        source: EventSource,
        config: CollectorConfig | None = None,
        metrics: MetricsRegistry | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the collector.

        Args:
            manifest: Segment manifest of the stream being written.
            source: Replication event source.
            config: Cycle settings (defaults if None).
            metrics: Metrics registry (global registry if None).
            clock: Wall-clock source for deadlines and capture ranges.
            sleep: Used for retry backoff.
        """
        self._manifest = manifest
        self._source = source
        self._config = config or CollectorConfig()
        self._metrics = metrics or get_metrics()
        self._clock = clock
        self._sleep = sleep
        self._log = get_logger(__name__, stream=manifest.stream_id)

    @property
    def manifest(self) -> SegmentManifest:
        return self._manifest

    def run_cycle(self, cancel: threading.Event | None = None) -> CycleResult:
        """Run one resume -> capture -> commit cycle.

        Returns:
            The committed cycle's result.

        Raises:
            CycleAbortedError: If cancelled and commit_on_cancel is off.
            PitrError: Any other failure; nothing is committed.
        """
        started = time.perf_counter()
        try:
            result = self._run_cycle(cancel)
        except CycleAbortedError:
            self._metrics.cycles_total.labels(status="aborted").inc()
            raise
        except PitrError:
            self._metrics.cycles_total.labels(status="failed").inc()
            raise
        result.duration_ms = (time.perf_counter() - started) * 1000
        self._metrics.cycles_total.labels(status="committed").inc()
        self._metrics.cycle_duration_seconds.observe(result.duration_ms / 1000)
        return result

    def _run_cycle(self, cancel: threading.Event | None) -> CycleResult:
        with trace_span("collector.cycle", {"stream": self._manifest.stream_id}) as span:
            cursor = self._resolve_resume_point()
            span.set_attribute("resume.coordinate", str(cursor.coordinate))
            span.set_attribute("segment.sequence", cursor.next_sequence)
            log = self._log.bind(sequence=cursor.next_sequence, resume=str(cursor.coordinate))
            log.debug("cycle_resumed", cold_start=cursor.is_cold_start)

            capture_start = self._clock()
            deadline = capture_start + timedelta(seconds=self._config.collect_span_seconds)
            events = self._capture(cursor.coordinate, deadline, cancel)
            cancelled = cancel is not None and cancel.is_set()

            if cancelled and not self._config.commit_on_cancel:
                log.info("cycle_aborted", buffered_events=len(events))
                raise CycleAbortedError(
                    "cycle cancelled before commit", coordinate=cursor.coordinate
                )

            _, trailing = group_transactions(events)
            committed = events[: len(events) - len(trailing)]
            if trailing:
                log.debug("incomplete_transaction_deferred", events=len(trailing))

            capture_end = max(self._clock(), capture_start)
            segment = Segment.build(
                sequence=cursor.next_sequence,
                start=cursor.coordinate,
                events=committed,
                captured_at=TimeRange(capture_start, capture_end),
            )
            key, attempts = self._commit(segment)
            header = segment.header

            self._metrics.events_captured_total.inc(header.event_count)
            self._metrics.segment_bytes_total.inc(header.payload_length)
            self._metrics.segments_committed_total.labels(
                empty=str(header.is_empty).lower()
            ).inc()
            self._metrics.resume_position.set(header.end.position)
            log.info(
                "segment_committed",
                key=key,
                end=str(header.end),
                events=header.event_count,
                bytes=header.payload_length,
                attempts=attempts,
                cancelled=cancelled,
            )
            return CycleResult(
                key=key,
                sequence=header.sequence,
                start=header.start,
                end=header.end,
                events=header.event_count,
                payload_bytes=header.payload_length,
                dropped_events=len(trailing),
                append_attempts=attempts,
                cancelled=cancelled,
            )

    def _resolve_resume_point(self) -> ResumeCursor:
        return read_with_retries(
            self._manifest.resolve_resume_point,
            operation="resume point read",
            key=segment_prefix(self._manifest.stream_id),
            retries=self._config.max_read_retries,
            backoff_seconds=self._config.retry_backoff_seconds,
            sleep=self._sleep,
            on_retry=self._metrics.storage_read_retries_total.labels(operation="resume").inc,
        )

    def _capture(
        self,
        coordinate: LogCoordinate,
        deadline: datetime,
        cancel: threading.Event | None,
    ) -> list[BinlogEvent]:
        """Buffer events until a stop condition holds.

        The size limit is only checked on transaction boundaries, so a
        segment may exceed it by at most one transaction.
        """
        events: list[BinlogEvent] = []
        size = 0
        in_transaction = False
        with trace_span("collector.capture", {"from": str(coordinate)}):
            try:
                for event in self._source.open_stream(coordinate, deadline, cancel):
                    events.append(event)
                    size += event.framed_size()
                    if event.kind is EventKind.BEGIN:
                        in_transaction = True
                    elif event.kind in (EventKind.COMMIT, EventKind.ROLLBACK):
                        in_transaction = False
                    if not in_transaction and size >= self._config.max_segment_size:
                        self._log.debug("segment_size_reached", bytes=size)
                        break
                    if cancel is not None and cancel.is_set():
                        break
                    if self._clock() >= deadline:
                        break
            finally:
                self._source.close()
        return events

    def _commit(self, segment: Segment) -> tuple[str, int]:
        """Append the segment, retrying transient errors with the same bytes.

        Returns:
            (key, attempts)

        Raises:
            ConflictError: If the key holds a different object.
            FatalError: When retries are exhausted.
        """
        key = self._manifest.key_for(segment.header.sequence)
        attempt = 0
        while True:
            attempt += 1
            try:
                with trace_span("collector.append", {"key": key, "attempt": attempt}):
                    return self._manifest.append(segment), attempt
            except ConflictError:
                if attempt > 1 and self._already_landed(key, segment):
                    self._log.info("append_confirmed_after_retry", key=key, attempts=attempt)
                    return key, attempt
                raise
            except TransientIOError as e:
                if attempt > self._config.max_append_retries:
                    raise FatalError(
                        f"segment append failed after {attempt} attempts: {e}", key=key
                    ) from e
                self._metrics.append_retries_total.inc()
                backoff = self._config.retry_backoff_seconds * attempt
                self._log.warning(
                    "append_retry", key=key, attempt=attempt, backoff=backoff, error=str(e)
                )
                self._sleep(backoff)

    def _already_landed(self, key: str, segment: Segment) -> bool:
        # A "failed" attempt may have reached storage before the error
        try:
            stored = read_with_retries(
                lambda: self._manifest.backend.get(key),
                operation="append confirmation read",
                key=key,
                retries=self._config.max_read_retries,
                backoff_seconds=self._config.retry_backoff_seconds,
                sleep=self._sleep,
                on_retry=self._metrics.storage_read_retries_total.labels(operation="segment").inc,
            )
        except NotFoundError:
            return False
        return stored == segment.to_bytes()

    def run_forever(self, cancel: threading.Event) -> None:
        """Run cycles back to back until cancelled.

        Each cycle starts no sooner than collect_span_seconds after the
        previous one started. Any error other than cancellation stops the
        loop and propagates (fail-stop).
        """
        span = self._config.collect_span_seconds
        self._log.info("collector_started", span_seconds=span)
        while not cancel.is_set():
            started = time.monotonic()
            try:
                self.run_cycle(cancel)
            except CycleAbortedError:
                break
            remaining = span - (time.monotonic() - started)
            if remaining > 0:
                cancel.wait(remaining)
        self._log.info("collector_stopped")
