"""MySQL replication event source.

Connects to the source as a replica (python-mysql-replication) and turns
the replication stream into BinlogEvent objects:

    Replication event              | BinlogEvent
    -------------------------------|-----------------------------------
    QueryEvent "BEGIN"             | BEGIN
    QueryEvent "COMMIT"            | COMMIT
    QueryEvent "ROLLBACK"          | ROLLBACK
    other QueryEvent (DDL, SBR)    | STATEMENT {"schema", "query"}
    Write/Update/DeleteRowsEvent   | ROWS {"schema", "table", "action", "rows"}
    XidEvent                       | COMMIT
    HeartbeatLogEvent              | (deadline check only)

Each event's coordinate is the reader's position after the event, so
resuming from it continues with the next event.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Iterator

import pymysql
from pymysqlreplication import BinLogStreamReader
from pymysqlreplication.event import HeartbeatLogEvent, QueryEvent, RotateEvent, XidEvent
from pymysqlreplication.row_event import DeleteRowsEvent, UpdateRowsEvent, WriteRowsEvent

from binlog_pitr.domain.entities import BinlogEvent, EventKind, encode_body
from binlog_pitr.domain.errors import FatalError, PositionUnavailableError, TransientIOError
from binlog_pitr.domain.value_objects import LogCoordinate
from binlog_pitr.infrastructure.config import SourceConfig
from binlog_pitr.infrastructure.logging import get_logger


logger = get_logger(__name__)

# Source has purged the requested binlog / position is invalid
ER_MASTER_FATAL_ERROR_READING_BINLOG = 1236
_AUTH_ERRORS = {1045, 1044, 1227}

_ROW_ACTIONS = {
    WriteRowsEvent: "insert",
    UpdateRowsEvent: "update",
    DeleteRowsEvent: "delete",
}

_MARKERS = {
    "BEGIN": EventKind.BEGIN,
    "COMMIT": EventKind.COMMIT,
    "ROLLBACK": EventKind.ROLLBACK,
}


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value or "")


class MySQLEventSource:
    """EventSource over a MySQL replication connection.

    Usage:
        source = MySQLEventSource(config.source)
        for event in source.open_stream(coordinate, deadline):
            ...
        source.close()
    """

    def __init__(self, config: SourceConfig, reader_factory: Any = BinLogStreamReader) -> None:
        """Initialize the source.

        Args:
            config: Source connection settings.
            reader_factory: Callable building the replication reader;
                tests pass a fake.
        """
        self._config = config
        self._reader_factory = reader_factory
        self._stream: Any = None

    def _reader_kwargs(self, from_coordinate: LogCoordinate) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "connection_settings": {
                "host": self._config.host,
                "port": self._config.port,
                "user": self._config.user,
                "passwd": self._config.password,
            },
            "server_id": self._config.server_id,
            "blocking": True,
            "only_events": [
                QueryEvent,
                XidEvent,
                RotateEvent,
                HeartbeatLogEvent,
                WriteRowsEvent,
                UpdateRowsEvent,
                DeleteRowsEvent,
            ],
            "slave_heartbeat": self._config.heartbeat_seconds,
        }
        if from_coordinate.is_start:
            kwargs["resume_stream"] = False
        else:
            kwargs["resume_stream"] = True
            kwargs["log_file"] = from_coordinate.file
            kwargs["log_pos"] = from_coordinate.position
        return kwargs

    def open_stream(
        self,
        from_coordinate: LogCoordinate,
        deadline: datetime | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[BinlogEvent]:
        """Stream events after from_coordinate until the deadline passes or cancel is set.

        Heartbeats wake the blocking reader, so both checks run at least
        once per heartbeat interval on an idle source.
        """
        self.close()
        logger.info("replication_stream_opening", coordinate=str(from_coordinate))
        stream = self._reader_factory(**self._reader_kwargs(from_coordinate))
        self._stream = stream
        try:
            for raw in stream:
                if deadline is not None and datetime.now(timezone.utc) >= deadline:
                    return
                if cancel is not None and cancel.is_set():
                    return
                event = self._convert(raw, stream)
                if event is not None:
                    yield event
        except pymysql.err.OperationalError as e:
            code = e.args[0] if e.args else None
            if code == ER_MASTER_FATAL_ERROR_READING_BINLOG:
                raise PositionUnavailableError(
                    f"source cannot serve the requested binlog: {e}", coordinate=from_coordinate
                ) from e
            if code in _AUTH_ERRORS:
                raise FatalError(f"replication access denied: {e}") from e
            raise TransientIOError(
                f"replication stream failed: {e}", coordinate=from_coordinate
            ) from e
        finally:
            stream.close()
            if self._stream is stream:
                self._stream = None

    def close(self) -> None:
        if self._stream is not None:
            stream, self._stream = self._stream, None
            stream.close()

    def _convert(self, raw: Any, stream: Any) -> BinlogEvent | None:
        if isinstance(raw, (HeartbeatLogEvent, RotateEvent)):
            return None

        coordinate = LogCoordinate(stream.log_file, stream.log_pos)
        timestamp = datetime.fromtimestamp(raw.timestamp, tz=timezone.utc)

        if isinstance(raw, XidEvent):
            return BinlogEvent(coordinate, timestamp, EventKind.COMMIT)

        if isinstance(raw, QueryEvent):
            query = _as_text(raw.query).strip()
            marker = _MARKERS.get(query.upper())
            if marker is not None:
                return BinlogEvent(coordinate, timestamp, marker)
            body = encode_body({"schema": _as_text(raw.schema), "query": query})
            return BinlogEvent(coordinate, timestamp, EventKind.STATEMENT, body)

        for event_type, action in _ROW_ACTIONS.items():
            if not isinstance(raw, event_type):
                continue
            body = encode_body(
                {
                    "schema": _as_text(raw.schema),
                    "table": _as_text(raw.table),
                    "action": action,
                    "rows": raw.rows,
                }
            )
            return BinlogEvent(coordinate, timestamp, EventKind.ROWS, body)

        return None
