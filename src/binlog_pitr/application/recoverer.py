"""Binlog recoverer - replays a validated segment chain up to a target.

Pipeline:
    1. Resolve the target to a cutoff (coordinate, or segment + time)
    2. Select the gap-free chain from the base coordinate to the cutoff segment
    3. Download each segment in order and apply it; the cutoff segment is
       applied only up to the last complete transaction at the cutoff

Boundary policies for targets outside the captured history are
configurable (see RecoveryConfig): ``target_before_history`` and
``target_after_history``.

Usage:
    recoverer = BinlogRecoverer(manifest, sink, config.recovery)
    stats = recoverer.recover(RecoveryTarget.at_time(moment))
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterator, Sequence

from binlog_pitr.application.retry import read_with_retries
from binlog_pitr.domain.entities import ManifestEntry, RecoveryPlan, Segment, segment_prefix
from binlog_pitr.domain.errors import (
    FatalError,
    PitrError,
    RecoveryCancelledError,
    TargetNotCapturedError,
)
from binlog_pitr.domain.services import ApplyEngine, SegmentManifest
from binlog_pitr.domain.value_objects import (
    START_COORDINATE,
    LogCoordinate,
    RecoveryTarget,
    TargetKind,
)
from binlog_pitr.infrastructure.config import RecoveryConfig
from binlog_pitr.infrastructure.logging import get_logger
from binlog_pitr.infrastructure.metrics import MetricsRegistry, get_metrics
from binlog_pitr.infrastructure.tracing import trace_span
from binlog_pitr.ports.inbound.pitr_service import RecoveryState, RecoveryStats
from binlog_pitr.ports.outbound.apply_sink import ApplySink


def target_from_config(config: RecoveryConfig) -> RecoveryTarget:
    """Build the recovery target described by configuration."""
    if config.target_type == "timestamp":
        return RecoveryTarget.at_time(config.target_time)  # type: ignore[arg-type]
    if config.target_type == "coordinate":
        return RecoveryTarget.at_coordinate(
            LogCoordinate.parse(config.target_coordinate)  # type: ignore[arg-type]
        )
    return RecoveryTarget.latest()


class BinlogRecoverer:
    """Recoverer implementing the RecovererService protocol.

    Thread Safety:
        One recovery run at a time. With prefetch enabled a single
        background thread downloads the next segment; apply order is
        unchanged.
    """

    def __init__(
        self,
        manifest: SegmentManifest,
        sink: ApplySink,
        config: RecoveryConfig | None = None,
        metrics: MetricsRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the recoverer.

        Args:
            manifest: Segment manifest of the stream to replay.
            sink: Apply primitive for the target database.
            config: Recovery settings (defaults if None).
            metrics: Metrics registry (global registry if None).
            sleep: Used for read retry backoff.
        """
        self._manifest = manifest
        self._sink = sink
        self._config = config or RecoveryConfig()
        self._metrics = metrics or get_metrics()
        self._sleep = sleep
        self._last_stats: RecoveryStats | None = None
        self._log = get_logger(__name__, stream=manifest.stream_id)

    @property
    def last_stats(self) -> RecoveryStats | None:
        """Statistics of the most recent run, including failed and cancelled ones."""
        return self._last_stats

    @property
    def base(self) -> LogCoordinate:
        if self._config.base_coordinate:
            return LogCoordinate.parse(self._config.base_coordinate)
        return START_COORDINATE

    def plan(self, target: RecoveryTarget) -> RecoveryPlan:
        """Resolve the target and select the segment chain, without applying.

        Raises:
            IncompleteHistoryError: On a gap, or a timestamp before the
                captured history under the "fail" policy.
            TargetNotCapturedError: If the target is beyond the chain under
                the "fail" policy.
            ManifestConsistencyError: If two segments overlap.
        """
        base = self.base
        entries = self._read_entries()
        after_policy = self._config.target_after_history

        if target.kind is TargetKind.TIMESTAMP:
            segment_end = self._manifest.resolve_time(
                target.timestamp,  # type: ignore[arg-type]
                base,
                entries,
                allow_before_history=self._config.target_before_history == "ignore",
            )
            if segment_end is None:
                if after_policy == "fail":
                    raise TargetNotCapturedError(
                        f"target {target} is after the last captured segment"
                    )
                self._log.warning("target_after_history", target=str(target))
                return self._manifest.select_chain(base, None, entries)
            plan = self._manifest.select_chain(base, segment_end, entries)
            plan.cutoff_coordinate = None
            plan.cutoff_time = target.timestamp
            return plan

        if target.kind is TargetKind.COORDINATE:
            plan = self._manifest.select_chain(base, target.coordinate, entries)
            if not plan.target_reached:
                if after_policy == "fail":
                    last_end = entries[-1].end if entries else base
                    raise TargetNotCapturedError(
                        f"target {target} is beyond the captured chain ending at {last_end}",
                        coordinate=target.coordinate,
                    )
                self._log.warning("target_after_history", target=str(target))
            return plan

        return self._manifest.select_chain(base, None, entries)

    def recover(
        self,
        target: RecoveryTarget,
        cancel: threading.Event | None = None,
    ) -> RecoveryStats:
        """Replay stored segments into the target database up to target."""
        started = time.perf_counter()
        stats = RecoveryStats(state=RecoveryState.FAILED, target=str(target))
        self._last_stats = stats
        log = self._log.bind(target=str(target))

        try:
            with trace_span("recoverer.recover", {"target": str(target)}) as span:
                plan = self.plan(target)
                stats.segments_planned = len(plan)
                span.set_attribute("plan.segments", len(plan))
                log.info(
                    "recovery_planned",
                    base=str(plan.base),
                    segments=len(plan),
                    target_reached=plan.target_reached,
                )
                self._apply_plan(plan, stats, cancel)
        except RecoveryCancelledError:
            stats.state = RecoveryState.CANCELLED
            log.warning("recovery_cancelled", final=str(stats.final_coordinate))
            raise
        except PitrError as e:
            log.error("recovery_failed", error=str(e), final=str(stats.final_coordinate))
            raise
        finally:
            stats.duration_ms = (time.perf_counter() - started) * 1000
            self._metrics.recovery_duration_seconds.set(stats.duration_ms / 1000)

        stats.state = RecoveryState.COMPLETED
        log.info(
            "recovery_completed",
            segments=stats.segments_applied,
            transactions=stats.transactions_applied,
            final=str(stats.final_coordinate),
        )
        return stats

    def _apply_plan(
        self,
        plan: RecoveryPlan,
        stats: RecoveryStats,
        cancel: threading.Event | None,
    ) -> None:
        engine = ApplyEngine(self._sink)
        try:
            self._apply_segments(plan, stats, engine, cancel)
        finally:
            if engine.last_applied is not None:
                stats.final_coordinate = engine.last_applied

    def _apply_segments(
        self,
        plan: RecoveryPlan,
        stats: RecoveryStats,
        engine: ApplyEngine,
        cancel: threading.Event | None,
    ) -> None:
        cutoff_entry = plan.cutoff_entry
        for entry, segment in self._download(plan.entries):
            with trace_span("recoverer.apply_segment", {"key": entry.key}):
                if entry is cutoff_entry:
                    cutoff = self._cutoff_within(plan, entry, segment)
                    result = engine.apply_up_to(
                        segment.payload, cutoff, after=plan.base, cancel=cancel, key=entry.key
                    )
                else:
                    result = engine.apply_all(
                        segment.payload, after=plan.base, cancel=cancel, key=entry.key
                    )

            stats.transactions_applied += result.applied
            stats.transactions_skipped += result.skipped
            if result.last_applied is not None:
                stats.final_coordinate = result.last_applied
            self._metrics.recovery_transactions_applied_total.inc(result.applied)

            if result.cancelled:
                raise RecoveryCancelledError(
                    "recovery cancelled at a transaction boundary",
                    key=entry.key,
                    coordinate=stats.final_coordinate,
                )
            stats.segments_applied += 1
            self._metrics.recovery_segments_applied_total.inc()
            self._log.debug("segment_applied", key=entry.key, transactions=result.applied)

    @staticmethod
    def _cutoff_within(
        plan: RecoveryPlan, entry: ManifestEntry, segment: Segment
    ) -> LogCoordinate:
        if plan.cutoff_time is not None:
            return ApplyEngine.cutoff_for_time(
                segment.payload, plan.cutoff_time, floor=entry.start, key=entry.key
            )
        return plan.cutoff_coordinate  # type: ignore[return-value]

    def _download(
        self, entries: Sequence[ManifestEntry]
    ) -> Iterator[tuple[ManifestEntry, Segment]]:
        if not self._config.prefetch or len(entries) < 2:
            for entry in entries:
                yield entry, self._read_segment(entry)
            return

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="segment-prefetch") as pool:
            pending: Future[Segment] = pool.submit(self._read_segment, entries[0])
            for index, entry in enumerate(entries):
                segment = pending.result()
                if index + 1 < len(entries):
                    pending = pool.submit(self._read_segment, entries[index + 1])
                yield entry, segment

    def _read_entries(self) -> list[ManifestEntry]:
        """Listing and header reads, retried as one unit."""
        return read_with_retries(
            self._manifest.entries,
            operation="manifest read",
            key=segment_prefix(self._manifest.stream_id),
            retries=self._config.max_read_retries,
            backoff_seconds=self._config.retry_backoff_seconds,
            sleep=self._sleep,
            on_retry=self._metrics.storage_read_retries_total.labels(operation="manifest").inc,
        )

    def _read_segment(self, entry: ManifestEntry) -> Segment:
        """Full segment read with bounded retries on transient errors."""
        segment = read_with_retries(
            lambda: self._manifest.read_segment(entry.key),
            operation="segment read",
            key=entry.key,
            retries=self._config.max_read_retries,
            backoff_seconds=self._config.retry_backoff_seconds,
            sleep=self._sleep,
            on_retry=self._metrics.storage_read_retries_total.labels(operation="segment").inc,
        )
        if segment.header != entry.header:
            raise FatalError("segment header changed since listing", key=entry.key)
        return segment
