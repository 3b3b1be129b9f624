"""Pytest configuration and fixtures for binlog_pitr tests."""

from __future__ import annotations

import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator, Iterator

import pytest
import structlog
from prometheus_client import CollectorRegistry

from binlog_pitr.adapters.outbound import InMemoryStorageBackend
from binlog_pitr.domain.entities import BinlogEvent, EventKind, Transaction, encode_body
from binlog_pitr.domain.errors import TransientIOError
from binlog_pitr.domain.value_objects import LogCoordinate
from binlog_pitr.infrastructure.container import Container
from binlog_pitr.infrastructure.metrics import MetricsRegistry


BINLOG_FILE = "binlog.000001"
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_transaction(
    end: int,
    *,
    file: str = BINLOG_FILE,
    at: datetime | None = None,
    table: str = "orders",
) -> list[BinlogEvent]:
    """Three events (BEGIN, ROWS, COMMIT) whose COMMIT sits at ``end``.

    The default timestamp is T0 plus ``end`` seconds.
    """
    moment = at or T0 + timedelta(seconds=end)
    body = encode_body(
        {"schema": "shop", "table": table, "action": "insert", "rows": [{"values": {"id": end}}]}
    )
    return [
        BinlogEvent(LogCoordinate(file, end - 4), moment, EventKind.BEGIN),
        BinlogEvent(LogCoordinate(file, end - 2), moment, EventKind.ROWS, body),
        BinlogEvent(LogCoordinate(file, end), moment, EventKind.COMMIT),
    ]


def make_history(ends: list[int], **kwargs) -> list[BinlogEvent]:
    """Concatenate transactions committing at each of ``ends``."""
    events: list[BinlogEvent] = []
    for end in ends:
        events.extend(make_transaction(end, **kwargs))
    return events


class ScriptedEventSource:
    """Non-blocking EventSource over a fixed, growable list of events.

    Only events up to ``available_until`` are served, which lets a test
    decide what the source has produced by the time each cycle runs.
    """

    def __init__(self, events: list[BinlogEvent] | None = None) -> None:
        self.events: list[BinlogEvent] = list(events or [])
        self.available_until: LogCoordinate | None = None
        self.fail_after: int | None = None  # raise after yielding this many events
        self.failure: Exception = RuntimeError("collector process killed")
        self.opened_from: list[LogCoordinate] = []
        self.closed = 0

    def open_stream(
        self,
        from_coordinate: LogCoordinate,
        deadline: datetime | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[BinlogEvent]:
        self.opened_from.append(from_coordinate)
        yielded = 0
        for event in self.events:
            if event.coordinate <= from_coordinate:
                continue
            if self.available_until is not None and event.coordinate > self.available_until:
                return
            if self.fail_after is not None and yielded >= self.fail_after:
                raise self.failure
            if cancel is not None and cancel.is_set():
                return
            yielded += 1
            yield event

    def close(self) -> None:
        self.closed += 1


class RecordingApplySink:
    """ApplySink that records transactions and can reject one."""

    def __init__(self) -> None:
        self.applied: list[Transaction] = []
        self.fail_at: LogCoordinate | None = None
        self.on_apply: Callable[[Transaction], None] | None = None
        self.closed = False

    def apply_transaction(self, transaction: Transaction) -> None:
        if self.fail_at is not None and transaction.end == self.fail_at:
            raise RuntimeError("duplicate key for 'PRIMARY'")
        self.applied.append(transaction)
        if self.on_apply is not None:
            self.on_apply(transaction)

    def close(self) -> None:
        self.closed = True

    @property
    def applied_ends(self) -> list[int]:
        return [t.end.position for t in self.applied]


class FlakyStorage(InMemoryStorageBackend):
    """In-memory backend that injects transient failures.

    Attributes:
        put_failures: Number of upcoming puts that fail transiently.
        land_before_failure: If set, failing puts store the object before
            raising, like a request whose response was lost.
        get_failures: Number of upcoming full gets that fail transiently.
        header_failures: Number of upcoming ranged gets that fail transiently.
        list_failures: Number of upcoming listings that fail transiently.
    """

    def __init__(self) -> None:
        super().__init__()
        self.put_failures = 0
        self.land_before_failure = False
        self.get_failures = 0
        self.header_failures = 0
        self.list_failures = 0
        self.put_calls = 0
        self.list_calls = 0

    def put(self, key: str, data: bytes) -> None:
        self.put_calls += 1
        if self.put_failures > 0:
            self.put_failures -= 1
            if self.land_before_failure:
                super().put(key, data)
            raise TransientIOError("connection reset by peer", key=key)
        super().put(key, data)

    def list(self, prefix: str) -> list[str]:
        self.list_calls += 1
        if self.list_failures > 0:
            self.list_failures -= 1
            raise TransientIOError("list timed out", key=prefix)
        return super().list(prefix)

    def get(self, key: str, length: int | None = None) -> bytes:
        if length is None and self.get_failures > 0:
            self.get_failures -= 1
            raise TransientIOError("read timed out", key=key)
        if length is not None and self.header_failures > 0:
            self.header_failures -= 1
            raise TransientIOError("ranged read timed out", key=key)
        return super().get(key, length)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def _reset_logging() -> Generator[None, None, None]:
    """Drop any logging configuration a test installed."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def container() -> Generator[Container, None, None]:
    """Provide a fresh DI container for each test."""
    c = Container()
    yield c
    c.clear()


@pytest.fixture
def metrics_registry() -> MetricsRegistry:
    """Provide a fresh metrics registry for each test."""
    # Use a separate registry to avoid conflicts between tests
    registry = CollectorRegistry(auto_describe=True)
    return MetricsRegistry(registry=registry)


@pytest.fixture
def storage() -> FlakyStorage:
    """In-memory storage with failure injection (no failures by default)."""
    return FlakyStorage()


@pytest.fixture
def source() -> ScriptedEventSource:
    return ScriptedEventSource()


@pytest.fixture
def sink() -> RecordingApplySink:
    return RecordingApplySink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def txn() -> Callable[..., list[BinlogEvent]]:
    """Factory for one BEGIN/ROWS/COMMIT transaction."""
    return make_transaction


@pytest.fixture
def history() -> Callable[..., list[BinlogEvent]]:
    """Factory for a run of transactions."""
    return make_history


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
