"""Segments: immutable, ordered chunks of captured binlog events.

Storage Object Layout:
    - Segment Header (fixed size): magic, version, sequence, start coordinate,
      end coordinate, captured-at range, event count, payload length,
      sha256 payload checksum
    - Payload: framed binlog events (see binlog_event)

Keys are ``<stream-id>/<sequence:020d>``. Zero padding makes lexicographic
listing order equal to sequence order, so the backend listing alone is
the manifest order. Reading only the first HEADER_SIZE bytes of an object is
enough to place it in the chain.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from binlog_pitr.domain.entities.binlog_event import BinlogEvent, encode_payload
from binlog_pitr.domain.errors import CorruptSegmentError
from binlog_pitr.domain.value_objects import (
    LogCoordinate,
    SequenceNumber,
    TimeRange,
    from_micros,
    to_micros,
)


SEGMENT_MAGIC = b"PITRSEG\x00"
SEGMENT_VERSION = 1
# magic, version, sequence, start_file, start_pos, end_file, end_pos,
# captured_start_us, captured_end_us, event_count, payload_length, sha256
HEADER_FORMAT = ">8sIQ64sQ64sQQQIQ32s"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
MAX_FILE_NAME = 64
SEQUENCE_DIGITS = 20


def segment_prefix(stream_id: str) -> str:
    """Listing prefix holding every segment of a stream."""
    return f"{stream_id}/"


def segment_key(stream_id: str, sequence: SequenceNumber) -> str:
    """Storage key for a segment; lexicographic order equals sequence order."""
    return f"{stream_id}/{sequence:0{SEQUENCE_DIGITS}d}"


def parse_segment_key(stream_id: str, key: str) -> SequenceNumber:
    """Recover the sequence number from a segment key.

    Raises:
        ValueError: If the key does not belong to the stream's naming scheme.
    """
    prefix = segment_prefix(stream_id)
    suffix = key[len(prefix):] if key.startswith(prefix) else ""
    if len(suffix) != SEQUENCE_DIGITS or not suffix.isdigit():
        raise ValueError(f"not a segment key of stream {stream_id!r}: {key!r}")
    return SequenceNumber(int(suffix))


def _pack_file(name: str) -> bytes:
    raw = name.encode("utf-8")
    if len(raw) > MAX_FILE_NAME:
        raise ValueError(f"binlog file name longer than {MAX_FILE_NAME} bytes: {name!r}")
    return raw


@dataclass(frozen=True)
class SegmentHeader:
    """Metadata stored ahead of a segment payload.

    Attributes:
        sequence: Ordinal of the segment within its stream.
        start: Coordinate the segment resumes from (exclusive).
        end: Coordinate of the last event in the segment (inclusive).
        captured_at: Wall-clock span of the collection cycle.
        event_count: Number of events in the payload.
        payload_length: Payload size in bytes.
        checksum: sha256 digest of the payload.
    """

    sequence: SequenceNumber
    start: LogCoordinate
    end: LogCoordinate
    captured_at: TimeRange
    event_count: int
    payload_length: int
    checksum: bytes

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"segment ends before it starts: {self.start} > {self.end}")

    @property
    def is_empty(self) -> bool:
        """An idle-cycle segment: advances time coverage, not position."""
        return self.start == self.end

    def covers(self, coordinate: LogCoordinate) -> bool:
        """True if the coordinate lies in (start, end]."""
        return self.start < coordinate <= self.end

    def to_bytes(self) -> bytes:
        return struct.pack(
            HEADER_FORMAT,
            SEGMENT_MAGIC,
            SEGMENT_VERSION,
            self.sequence,
            _pack_file(self.start.file),
            self.start.position,
            _pack_file(self.end.file),
            self.end.position,
            to_micros(self.captured_at.start),
            to_micros(self.captured_at.end),
            self.event_count,
            self.payload_length,
            self.checksum,
        )

    @classmethod
    def from_bytes(cls, data: bytes, *, key: str | None = None) -> SegmentHeader:
        """Decode a header from the first HEADER_SIZE bytes of an object.

        Raises:
            CorruptSegmentError: If the header is short, foreign or malformed.
        """
        if len(data) < HEADER_SIZE:
            raise CorruptSegmentError(
                f"segment header too short: {len(data)} < {HEADER_SIZE}", key=key
            )
        (
            magic,
            version,
            sequence,
            start_file,
            start_pos,
            end_file,
            end_pos,
            captured_start,
            captured_end,
            event_count,
            payload_length,
            checksum,
        ) = struct.unpack(HEADER_FORMAT, data[:HEADER_SIZE])

        if magic != SEGMENT_MAGIC:
            raise CorruptSegmentError(f"invalid segment magic: {magic!r}", key=key)
        if version != SEGMENT_VERSION:
            raise CorruptSegmentError(f"unsupported segment version: {version}", key=key)

        try:
            return cls(
                sequence=SequenceNumber(sequence),
                start=LogCoordinate(start_file.rstrip(b"\x00").decode("utf-8"), start_pos),
                end=LogCoordinate(end_file.rstrip(b"\x00").decode("utf-8"), end_pos),
                captured_at=TimeRange(from_micros(captured_start), from_micros(captured_end)),
                event_count=event_count,
                payload_length=payload_length,
                checksum=checksum,
            )
        except ValueError as e:
            raise CorruptSegmentError(f"malformed segment header: {e}", key=key) from e


@dataclass(frozen=True)
class Segment:
    """A header plus the framed event payload it describes."""

    header: SegmentHeader
    payload: bytes

    @classmethod
    def build(
        cls,
        sequence: SequenceNumber,
        start: LogCoordinate,
        events: Sequence[BinlogEvent],
        captured_at: TimeRange,
    ) -> Segment:
        """Create a segment from captured events.

        The end coordinate is the last event's coordinate, or the start
        coordinate when nothing was captured.
        """
        payload = encode_payload(events)
        end = events[-1].coordinate if events else start
        header = SegmentHeader(
            sequence=sequence,
            start=start,
            end=end,
            captured_at=captured_at,
            event_count=len(events),
            payload_length=len(payload),
            checksum=hashlib.sha256(payload).digest(),
        )
        return cls(header=header, payload=payload)

    def to_bytes(self) -> bytes:
        return self.header.to_bytes() + self.payload

    @classmethod
    def from_bytes(cls, data: bytes, *, key: str | None = None) -> Segment:
        """Decode and verify a whole stored object.

        Raises:
            CorruptSegmentError: On header, length or checksum mismatch.
        """
        header = SegmentHeader.from_bytes(data, key=key)
        payload = data[HEADER_SIZE:]
        if len(payload) != header.payload_length:
            raise CorruptSegmentError(
                f"payload length mismatch: header={header.payload_length}, actual={len(payload)}",
                key=key,
            )
        if hashlib.sha256(payload).digest() != header.checksum:
            raise CorruptSegmentError("payload checksum mismatch", key=key)
        return cls(header=header, payload=payload)


@dataclass(frozen=True)
class ManifestEntry:
    """A segment's place in the manifest: its key and decoded header."""

    key: str
    header: SegmentHeader

    @property
    def sequence(self) -> SequenceNumber:
        return self.header.sequence

    @property
    def start(self) -> LogCoordinate:
        return self.header.start

    @property
    def end(self) -> LogCoordinate:
        return self.header.end

    @property
    def captured_until(self) -> datetime:
        return self.header.captured_at.end


@dataclass(frozen=True)
class ResumeCursor:
    """Where collection resumes, derived entirely from the manifest.

    Attributes:
        coordinate: End of the last committed segment (or the cold-start
            coordinate when the stream is empty).
        next_sequence: Sequence number the next segment will use.
        last_key: Key of the last committed segment, None on a cold start.
    """

    coordinate: LogCoordinate
    next_sequence: SequenceNumber
    last_key: str | None = None

    @property
    def is_cold_start(self) -> bool:
        return self.last_key is None
