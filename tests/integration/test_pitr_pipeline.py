"""End-to-end collection and recovery over the filesystem backend."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from binlog_pitr.adapters.outbound import FileSystemStorageBackend
from binlog_pitr.application import BinlogCollector, BinlogRecoverer
from binlog_pitr.domain.errors import IncompleteHistoryError, TargetNotCapturedError
from binlog_pitr.domain.services import SegmentManifest
from binlog_pitr.domain.value_objects import LogCoordinate, RecoveryTarget
from binlog_pitr.infrastructure.config import CollectorConfig, RecoveryConfig
from binlog_pitr.infrastructure.metrics import MetricsRegistry

from conftest import (
    BINLOG_FILE,
    T0,
    FakeClock,
    RecordingApplySink,
    ScriptedEventSource,
    make_history,
)


ALL_ENDS = [10, 20, 30, 40, 50, 60, 70, 75, 85, 100]


def at(position: int) -> LogCoordinate:
    return LogCoordinate(BINLOG_FILE, position)


class Pipeline:
    """A collector and recoverer sharing one filesystem-backed stream."""

    def __init__(self, root: Path, metrics: MetricsRegistry) -> None:
        self.backend = FileSystemStorageBackend(root)
        self.manifest = SegmentManifest(self.backend, stream_id="orders-db")
        self.source = ScriptedEventSource(make_history(ALL_ENDS))
        self.clock = FakeClock()
        self.metrics = metrics
        self.collector = BinlogCollector(
            self.manifest,
            self.source,
            CollectorConfig(retry_backoff_seconds=0),
            metrics=metrics,
            clock=self.clock,
        )

    def collect_until(self, position: int | None, at_second: float) -> None:
        """Run one cycle whose capture window sits at T0 + at_second."""
        self.source.available_until = at(position) if position is not None else None
        self.clock.now = T0 + timedelta(seconds=at_second)
        self.collector.run_cycle()

    def recover(self, target: RecoveryTarget, **config) -> RecordingApplySink:
        sink = RecordingApplySink()
        recoverer = BinlogRecoverer(
            self.manifest, sink, RecoveryConfig(**config), metrics=self.metrics
        )
        recoverer.recover(target)
        return sink


@pytest.fixture
def pipeline(temp_dir: Path, metrics_registry: MetricsRegistry) -> Pipeline:
    return Pipeline(temp_dir / "store", metrics_registry)


@pytest.fixture
def three_segments(pipeline: Pipeline) -> Pipeline:
    """Segments [start,40], [40,75], [75,100], each captured 5s after its last commit."""
    pipeline.collect_until(40, at_second=45)
    pipeline.collect_until(75, at_second=80)
    pipeline.collect_until(None, at_second=105)
    return pipeline


@pytest.mark.integration
class TestRecoveryToTarget:
    """Recovery reproduces exactly the transactions up to the target."""

    def test_chain_layout(self, three_segments: Pipeline) -> None:
        entries = three_segments.manifest.entries()

        assert [(str(e.start), str(e.end)) for e in entries] == [
            ("<start>", "binlog.000001:40"),
            ("binlog.000001:40", "binlog.000001:75"),
            ("binlog.000001:75", "binlog.000001:100"),
        ]

    def test_latest(self, three_segments: Pipeline) -> None:
        sink = three_segments.recover(RecoveryTarget.latest())
        assert sink.applied_ends == ALL_ENDS

    def test_coordinate_never_touches_later_segment(self, three_segments: Pipeline) -> None:
        backend = three_segments.backend
        reads: list[str] = []
        original_get = backend.get

        def recording_get(key: str, length: int | None = None) -> bytes:
            if length is None:
                reads.append(key)
            return original_get(key, length)

        backend.get = recording_get

        sink = three_segments.recover(RecoveryTarget.at_coordinate(at(60)))

        assert sink.applied_ends == [10, 20, 30, 40, 50, 60]
        assert reads == [
            "orders-db/00000000000000000001",
            "orders-db/00000000000000000002",
        ]

    def test_coordinate_inside_transaction(self, three_segments: Pipeline) -> None:
        sink = three_segments.recover(RecoveryTarget.at_coordinate(at(58)))
        assert sink.applied_ends == [10, 20, 30, 40, 50]

    def test_timestamp(self, three_segments: Pipeline) -> None:
        sink = three_segments.recover(RecoveryTarget.at_time(T0 + timedelta(seconds=65)))
        assert sink.applied_ends == [10, 20, 30, 40, 50, 60]

    def test_removed_middle_segment(self, three_segments: Pipeline) -> None:
        three_segments.backend.delete("orders-db/00000000000000000002")
        sink = RecordingApplySink()
        recoverer = BinlogRecoverer(
            three_segments.manifest, sink, metrics=three_segments.metrics
        )

        with pytest.raises(IncompleteHistoryError):
            recoverer.recover(RecoveryTarget.at_coordinate(at(90)))

        assert sink.applied == []


@pytest.mark.integration
class TestCrashRecovery:
    """A collector killed mid-cycle resumes without gaps or duplicates."""

    @pytest.mark.parametrize("events_before_crash", [12, 13])
    def test_crash_then_resume(self, pipeline: Pipeline, events_before_crash: int) -> None:
        """Killed right after the commit at 40, or one event into the next transaction."""
        pipeline.source.fail_after = events_before_crash

        with pytest.raises(RuntimeError):
            pipeline.collect_until(None, at_second=45)

        assert pipeline.manifest.list_keys() == []

        pipeline.source.fail_after = None
        pipeline.collect_until(None, at_second=105)

        keys = pipeline.manifest.list_keys()
        assert keys == ["orders-db/00000000000000000001"]
        assert pipeline.recover(RecoveryTarget.latest()).applied_ends == ALL_ENDS

    def test_crash_after_first_segment(self, pipeline: Pipeline) -> None:
        pipeline.collect_until(40, at_second=45)
        pipeline.source.fail_after = 2

        with pytest.raises(RuntimeError):
            pipeline.collect_until(None, at_second=80)

        pipeline.source.fail_after = None
        pipeline.collect_until(None, at_second=105)

        assert len(pipeline.manifest.list_keys()) == 2
        assert pipeline.source.opened_from[-1] == at(40)
        assert pipeline.recover(RecoveryTarget.latest()).applied_ends == ALL_ENDS


@pytest.mark.integration
class TestIdleCoverage:
    """Empty segments extend time coverage while the source is quiet."""

    def test_idle_cycles_cover_later_timestamps(self, pipeline: Pipeline) -> None:
        pipeline.collect_until(40, at_second=45)
        pipeline.collect_until(40, at_second=100)
        pipeline.collect_until(40, at_second=160)

        sink = pipeline.recover(RecoveryTarget.at_time(T0 + timedelta(seconds=150)))

        assert sink.applied_ends == [10, 20, 30, 40]
        assert [e.header.is_empty for e in pipeline.manifest.entries()] == [False, True, True]

    def test_timestamp_beyond_idle_coverage(self, pipeline: Pipeline) -> None:
        pipeline.collect_until(40, at_second=45)
        pipeline.collect_until(40, at_second=100)

        with pytest.raises(TargetNotCapturedError):
            pipeline.recover(RecoveryTarget.at_time(T0 + timedelta(seconds=200)))
