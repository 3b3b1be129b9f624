"""Captured binlog events and their on-storage framing.

Event kinds map onto transaction structure:

    Kind      | Meaning                          | Transaction role
    ----------|----------------------------------|-------------------------
    BEGIN     | Transaction start                | Opens a transaction
    STATEMENT | Statement (DDL, statement-based) | Own transaction if outside BEGIN
    ROWS      | Row-based change set             | Own transaction if outside BEGIN
    COMMIT    | XID / COMMIT                     | Closes a transaction
    ROLLBACK  | ROLLBACK                         | Closes and discards a transaction

Payload format (one segment):
    [length(4) + record + CRC32(4)] ...
    record = kind(1) + file_len(2) + file + position(8) + timestamp_us(8) + body
"""

from __future__ import annotations

import base64
import json
import struct
import zlib
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import IntEnum
from typing import Any, ClassVar, Iterable

from binlog_pitr.domain.errors import CorruptSegmentError
from binlog_pitr.domain.value_objects import LogCoordinate, from_micros, to_micros


RECORD_LENGTH_FORMAT = ">I"
RECORD_CRC_FORMAT = ">I"
RECORD_OVERHEAD = 8  # 4 bytes length + 4 bytes CRC


class EventKind(IntEnum):
    """Kinds of captured events. IntEnum so it serializes to one byte."""

    BEGIN = 1
    STATEMENT = 2
    ROWS = 3
    COMMIT = 4
    ROLLBACK = 5


@dataclass(frozen=True)
class BinlogEvent:
    """One captured binlog event.

    Attributes:
        coordinate: Position *after* this event; resuming from it skips the event.
        timestamp: When the source executed the event.
        kind: Transaction role of the event.
        body: Kind-specific payload (JSON for STATEMENT and ROWS).
    """

    coordinate: LogCoordinate
    timestamp: datetime
    kind: EventKind
    body: bytes = b""

    FIXED_FORMAT: ClassVar[str] = ">BH"
    FIXED_SIZE: ClassVar[int] = 3
    POSITION_FORMAT: ClassVar[str] = ">QQ"
    POSITION_SIZE: ClassVar[int] = 16

    def to_bytes(self) -> bytes:
        file = self.coordinate.file.encode("utf-8")
        return (
            struct.pack(self.FIXED_FORMAT, self.kind, len(file))
            + file
            + struct.pack(self.POSITION_FORMAT, self.coordinate.position, to_micros(self.timestamp))
            + self.body
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> BinlogEvent:
        if len(data) < cls.FIXED_SIZE:
            raise ValueError(f"event record requires at least {cls.FIXED_SIZE} bytes")
        kind, file_len = struct.unpack(cls.FIXED_FORMAT, data[: cls.FIXED_SIZE])
        offset = cls.FIXED_SIZE
        file = data[offset : offset + file_len].decode("utf-8")
        offset += file_len
        if len(data) < offset + cls.POSITION_SIZE:
            raise ValueError("event record truncated before position")
        position, micros = struct.unpack(
            cls.POSITION_FORMAT, data[offset : offset + cls.POSITION_SIZE]
        )
        offset += cls.POSITION_SIZE
        try:
            event_kind = EventKind(kind)
        except ValueError:
            raise ValueError(f"unknown event kind: {kind}")
        return cls(
            coordinate=LogCoordinate(file, position),
            timestamp=from_micros(micros),
            kind=event_kind,
            body=data[offset:],
        )

    def framed_size(self) -> int:
        """Bytes this event occupies inside a segment payload."""
        file_len = len(self.coordinate.file.encode("utf-8"))
        return RECORD_OVERHEAD + self.FIXED_SIZE + file_len + self.POSITION_SIZE + len(self.body)


def encode_payload(events: Iterable[BinlogEvent]) -> bytes:
    """Frame events into a segment payload."""
    parts = []
    for event in events:
        record = event.to_bytes()
        parts.append(struct.pack(RECORD_LENGTH_FORMAT, len(record)))
        parts.append(record)
        parts.append(struct.pack(RECORD_CRC_FORMAT, zlib.crc32(record) & 0xFFFFFFFF))
    return b"".join(parts)


def decode_payload(payload: bytes, *, key: str | None = None) -> list[BinlogEvent]:
    """Decode a segment payload back into events.

    Raises:
        CorruptSegmentError: On truncation or CRC mismatch.
    """
    events = []
    offset = 0
    total = len(payload)
    while offset < total:
        if offset + 4 > total:
            raise CorruptSegmentError(f"truncated record length at offset {offset}", key=key)
        (length,) = struct.unpack(RECORD_LENGTH_FORMAT, payload[offset : offset + 4])
        offset += 4
        if offset + length + 4 > total:
            raise CorruptSegmentError(f"truncated record at offset {offset}", key=key)
        record = payload[offset : offset + length]
        offset += length
        (stored_crc,) = struct.unpack(RECORD_CRC_FORMAT, payload[offset : offset + 4])
        offset += 4
        computed_crc = zlib.crc32(record) & 0xFFFFFFFF
        if stored_crc != computed_crc:
            raise CorruptSegmentError(
                f"CRC mismatch: stored={stored_crc}, computed={computed_crc}", key=key
            )
        try:
            events.append(BinlogEvent.from_bytes(record))
        except ValueError as e:
            raise CorruptSegmentError(f"undecodable event record: {e}", key=key) from e
    return events


@dataclass
class Transaction:
    """A complete group of events applied atomically.

    Attributes:
        events: Events in log order, including BEGIN/COMMIT markers.
        rolled_back: True if the transaction ended with ROLLBACK.
    """

    events: list[BinlogEvent] = field(default_factory=list)
    rolled_back: bool = False

    @property
    def end(self) -> LogCoordinate:
        """Coordinate of the event that completed the transaction."""
        return self.events[-1].coordinate

    @property
    def timestamp(self) -> datetime:
        return self.events[-1].timestamp

    @property
    def changes(self) -> list[BinlogEvent]:
        """The STATEMENT and ROWS events, without markers."""
        return [e for e in self.events if e.kind in (EventKind.STATEMENT, EventKind.ROWS)]


def group_transactions(
    events: Iterable[BinlogEvent],
) -> tuple[list[Transaction], list[BinlogEvent]]:
    """Group events into complete transactions.

    Returns:
        (transactions, trailing) where trailing holds the events of a
        transaction that was opened but not yet closed.
    """
    transactions: list[Transaction] = []
    current: list[BinlogEvent] | None = None

    for event in events:
        if event.kind is EventKind.BEGIN:
            # A BEGIN inside an open transaction drops the unterminated one.
            current = [event]
        elif event.kind is EventKind.COMMIT:
            if current is not None:
                current.append(event)
                transactions.append(Transaction(events=current))
                current = None
        elif event.kind is EventKind.ROLLBACK:
            if current is not None:
                current.append(event)
                transactions.append(Transaction(events=current, rolled_back=True))
                current = None
        elif current is not None:
            current.append(event)
        else:
            transactions.append(Transaction(events=[event]))

    return transactions, current or []


class _BodyEncoder(json.JSONEncoder):
    def default(self, o: Any) -> Any:
        if isinstance(o, (bytes, bytearray)):
            return {"__bytes__": base64.b64encode(bytes(o)).decode("ascii")}
        if isinstance(o, (datetime, date, time)):
            return o.isoformat()
        if isinstance(o, timedelta):
            total = int(o.total_seconds())
            sign = "-" if total < 0 else ""
            hours, rest = divmod(abs(total), 3600)
            return f"{sign}{hours}:{rest // 60:02d}:{rest % 60:02d}"
        if isinstance(o, Decimal):
            return str(o)
        if isinstance(o, (set, frozenset)):
            return ",".join(sorted(str(v) for v in o))
        return super().default(o)


def _restore_bytes(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and "__bytes__" in obj:
        return base64.b64decode(obj["__bytes__"])
    return obj


def encode_body(content: dict[str, Any]) -> bytes:
    """Serialize a STATEMENT or ROWS body."""
    return json.dumps(content, cls=_BodyEncoder, separators=(",", ":")).encode("utf-8")


def decode_body(body: bytes) -> dict[str, Any]:
    """Deserialize a STATEMENT or ROWS body."""
    return json.loads(body.decode("utf-8"), object_hook=_restore_bytes)
