"""Unit tests for the MySQL event source and apply sink."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

import pymysql
import pytest
from pymysqlreplication.event import HeartbeatLogEvent, QueryEvent, RotateEvent, XidEvent
from pymysqlreplication.row_event import DeleteRowsEvent, UpdateRowsEvent, WriteRowsEvent

from binlog_pitr.adapters.outbound.mysql_apply_sink import (
    MySQLApplySink,
    build_row_statements,
    quote_identifier,
)
from binlog_pitr.adapters.outbound.mysql_event_source import MySQLEventSource
from binlog_pitr.domain.entities import (
    BinlogEvent,
    EventKind,
    Transaction,
    decode_body,
    encode_body,
)
from binlog_pitr.domain.errors import FatalError, PositionUnavailableError, TransientIOError
from binlog_pitr.domain.value_objects import START_COORDINATE, LogCoordinate
from binlog_pitr.infrastructure.config import SourceConfig, TargetDatabaseConfig

from conftest import T0, make_transaction


EPOCH = 1767268800  # 2026-01-01T12:00:00Z


def raw_event(spec: type, position: int, **attrs: Any) -> tuple[MagicMock, int]:
    event = MagicMock(spec=spec)
    event.timestamp = EPOCH
    for name, value in attrs.items():
        setattr(event, name, value)
    return event, position


class FakeReader:
    """Stands in for BinLogStreamReader; advances log_pos as events are read."""

    instances: list[FakeReader] = []

    def __init__(
        self,
        events: list[tuple[MagicMock, int]],
        error: Exception | None = None,
        **kwargs: Any,
    ) -> None:
        self.kwargs = kwargs
        self.log_file = kwargs.get("log_file", "binlog.000001")
        self.log_pos = kwargs.get("log_pos", 4)
        self._events = events
        self._error = error
        self.closed = False
        FakeReader.instances.append(self)

    def __iter__(self):
        for event, position in self._events:
            self.log_pos = position
            yield event
        if self._error is not None:
            raise self._error

    def close(self) -> None:
        self.closed = True


def source_with(events, error: Exception | None = None) -> MySQLEventSource:
    def factory(**kwargs: Any) -> FakeReader:
        return FakeReader(events, error, **kwargs)

    return MySQLEventSource(SourceConfig(password="secret", server_id=42), reader_factory=factory)


@pytest.fixture(autouse=True)
def _reset_readers():
    FakeReader.instances = []
    yield


@pytest.mark.unit
class TestMySQLEventSource:
    """Tests for conversion of replication events."""

    def test_transaction_conversion(self) -> None:
        events = [
            raw_event(QueryEvent, 120, query="BEGIN", schema=b"shop"),
            raw_event(
                WriteRowsEvent,
                200,
                schema="shop",
                table="orders",
                rows=[{"values": {"id": 1, "total": 10}}],
            ),
            raw_event(XidEvent, 231),
        ]

        converted = list(source_with(events).open_stream(START_COORDINATE))

        assert [e.kind for e in converted] == [EventKind.BEGIN, EventKind.ROWS, EventKind.COMMIT]
        assert [e.coordinate.position for e in converted] == [120, 200, 231]
        assert converted[0].timestamp == datetime(2026, 1, 1, 12, tzinfo=timezone.utc)
        assert decode_body(converted[1].body) == {
            "schema": "shop",
            "table": "orders",
            "action": "insert",
            "rows": [{"values": {"id": 1, "total": 10}}],
        }

    def test_ddl_becomes_statement(self) -> None:
        events = [raw_event(QueryEvent, 300, query=b"ALTER TABLE t ADD c INT", schema=b"shop")]

        (event,) = source_with(events).open_stream(START_COORDINATE)

        assert event.kind is EventKind.STATEMENT
        assert decode_body(event.body) == {"schema": "shop", "query": "ALTER TABLE t ADD c INT"}

    def test_row_actions(self) -> None:
        events = [
            raw_event(UpdateRowsEvent, 10, schema="s", table="t", rows=[]),
            raw_event(DeleteRowsEvent, 20, schema="s", table="t", rows=[]),
        ]

        actions = [
            decode_body(e.body)["action"] for e in source_with(events).open_stream(START_COORDINATE)
        ]

        assert actions == ["update", "delete"]

    def test_heartbeat_and_rotate_skipped(self) -> None:
        events = [
            raw_event(HeartbeatLogEvent, 4),
            raw_event(RotateEvent, 4),
            raw_event(QueryEvent, 50, query="ROLLBACK", schema=""),
        ]

        converted = list(source_with(events).open_stream(START_COORDINATE))

        assert [e.kind for e in converted] == [EventKind.ROLLBACK]

    def test_resume_arguments(self) -> None:
        """A warm start resumes at the stored file and position."""
        list(source_with([]).open_stream(LogCoordinate("binlog.000007", 1337)))

        kwargs = FakeReader.instances[0].kwargs
        assert kwargs["resume_stream"] is True
        assert kwargs["log_file"] == "binlog.000007"
        assert kwargs["log_pos"] == 1337
        assert kwargs["server_id"] == 42
        assert kwargs["blocking"] is True
        assert kwargs["connection_settings"]["passwd"] == "secret"

    def test_cold_start_arguments(self) -> None:
        list(source_with([]).open_stream(START_COORDINATE))

        kwargs = FakeReader.instances[0].kwargs
        assert kwargs["resume_stream"] is False
        assert "log_file" not in kwargs

    def test_stream_closed_after_iteration(self) -> None:
        list(source_with([raw_event(XidEvent, 10)]).open_stream(START_COORDINATE))
        assert FakeReader.instances[0].closed

    def test_cancel_stops_stream(self) -> None:
        cancel = threading.Event()
        cancel.set()
        events = [raw_event(XidEvent, 10)]

        assert list(source_with(events).open_stream(START_COORDINATE, cancel=cancel)) == []

    def test_expired_deadline_stops_stream(self) -> None:
        events = [raw_event(XidEvent, 10)]
        deadline = datetime(2000, 1, 1, tzinfo=timezone.utc)

        assert list(source_with(events).open_stream(START_COORDINATE, deadline=deadline)) == []

    def test_purged_binlog_is_position_unavailable(self) -> None:
        error = pymysql.err.OperationalError(1236, "Could not find first log file name")
        coordinate = LogCoordinate("binlog.000001", 4)

        with pytest.raises(PositionUnavailableError) as exc_info:
            list(source_with([], error).open_stream(coordinate))

        assert exc_info.value.coordinate == coordinate

    def test_access_denied_is_fatal(self) -> None:
        error = pymysql.err.OperationalError(1045, "Access denied")

        with pytest.raises(FatalError):
            list(source_with([], error).open_stream(START_COORDINATE))

    def test_lost_connection_is_transient(self) -> None:
        error = pymysql.err.OperationalError(2013, "Lost connection to MySQL server")

        with pytest.raises(TransientIOError):
            list(source_with([], error).open_stream(START_COORDINATE))


@pytest.mark.unit
class TestRowStatements:
    """Tests for build_row_statements."""

    def test_insert(self) -> None:
        body = {
            "schema": "shop",
            "table": "orders",
            "action": "insert",
            "rows": [{"values": {"id": 1, "note": None}}],
        }

        assert build_row_statements(body) == [
            ("INSERT INTO `shop`.`orders` (`id`, `note`) VALUES (%s, %s)", [1, None])
        ]

    def test_update_uses_null_safe_before_image(self) -> None:
        body = {
            "schema": "shop",
            "table": "orders",
            "action": "update",
            "rows": [
                {
                    "before_values": {"id": 1, "note": None},
                    "after_values": {"id": 1, "note": "x"},
                }
            ],
        }

        ((sql, params),) = build_row_statements(body)

        assert sql == (
            "UPDATE `shop`.`orders` SET `id` = %s, `note` = %s "
            "WHERE `id` <=> %s AND `note` <=> %s LIMIT 1"
        )
        assert params == [1, "x", 1, None]

    def test_delete(self) -> None:
        body = {
            "schema": "shop",
            "table": "orders",
            "action": "delete",
            "rows": [{"values": {"id": 7}}],
        }

        assert build_row_statements(body) == [
            ("DELETE FROM `shop`.`orders` WHERE `id` <=> %s LIMIT 1", [7])
        ]

    def test_unknown_action(self) -> None:
        with pytest.raises(ValueError):
            build_row_statements({"schema": "s", "table": "t", "action": "upsert", "rows": [{}]})

    def test_identifier_quoting(self) -> None:
        assert quote_identifier("we`ird") == "`we``ird`"


@pytest.fixture
def connection() -> MagicMock:
    return MagicMock()


@pytest.fixture
def mysql_sink(connection: MagicMock) -> MySQLApplySink:
    return MySQLApplySink(TargetDatabaseConfig(host="replica"), connect=lambda **kw: connection)


def cursor_of(connection: MagicMock) -> MagicMock:
    return connection.cursor.return_value.__enter__.return_value


@pytest.mark.unit
class TestMySQLApplySink:
    """Tests for transactional apply."""

    def test_rows_committed(self, mysql_sink: MySQLApplySink, connection: MagicMock) -> None:
        mysql_sink.apply_transaction(Transaction(events=make_transaction(10)))

        cursor_of(connection).execute.assert_called_once_with(
            "INSERT INTO `shop`.`orders` (`id`) VALUES (%s)", [10]
        )
        connection.commit.assert_called_once()
        connection.rollback.assert_not_called()

    def test_statement_runs_in_schema(
        self, mysql_sink: MySQLApplySink, connection: MagicMock
    ) -> None:
        body = encode_body({"schema": "shop", "query": "ALTER TABLE orders ADD c INT"})
        event = BinlogEvent(LogCoordinate("binlog.000001", 9), T0, EventKind.STATEMENT, body)

        mysql_sink.apply_transaction(Transaction(events=[event]))

        calls = [c.args[0] for c in cursor_of(connection).execute.call_args_list]
        assert calls == ["USE `shop`", "ALTER TABLE orders ADD c INT"]

    def test_failure_rolls_back(self, mysql_sink: MySQLApplySink, connection: MagicMock) -> None:
        """A rejected statement leaves the target unchanged."""
        cursor_of(connection).execute.side_effect = pymysql.err.IntegrityError(
            1062, "Duplicate entry '10' for key 'PRIMARY'"
        )

        with pytest.raises(pymysql.err.IntegrityError):
            mysql_sink.apply_transaction(Transaction(events=make_transaction(10)))

        connection.rollback.assert_called_once()
        connection.commit.assert_not_called()

    def test_connection_reused_and_closed(self, connection: MagicMock) -> None:
        opened = []

        def connect(**kwargs: Any) -> MagicMock:
            opened.append(kwargs)
            return connection

        sink = MySQLApplySink(TargetDatabaseConfig(host="replica"), connect=connect)
        sink.apply_transaction(Transaction(events=make_transaction(10)))
        sink.apply_transaction(Transaction(events=make_transaction(20)))
        sink.close()

        assert len(opened) == 1
        assert opened[0]["host"] == "replica"
        assert opened[0]["autocommit"] is False
        connection.close.assert_called_once()
