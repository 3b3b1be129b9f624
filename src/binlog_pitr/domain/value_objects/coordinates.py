"""Binlog coordinates and capture time ranges.

A coordinate locates a position in the source's binary log stream. MySQL
names binlog files with a zero-padded, monotonically increasing suffix
(``binlog.000001``, ``binlog.000002``, ...), so ordering coordinates by
``(file, position)`` gives the same total order as the log itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import NewType


SequenceNumber = NewType("SequenceNumber", int)
"""Ordinal of a segment within one collection stream. Starts at 1."""

FIRST_SEQUENCE = SequenceNumber(1)


@dataclass(frozen=True, order=True, slots=True)
class LogCoordinate:
    """A position in the binlog stream.

    Attributes:
        file: Binlog file name, e.g. ``binlog.000042``.
        position: Byte offset inside the file.

    Example:
        >>> LogCoordinate.parse("binlog.000002:154")
        LogCoordinate(file='binlog.000002', position=154)
        >>> LogCoordinate("binlog.000001", 900) < LogCoordinate("binlog.000002", 4)
        True
    """

    file: str
    position: int

    def __post_init__(self) -> None:
        if self.position < 0:
            raise ValueError(f"position must be non-negative, got {self.position}")
        if ":" in self.file:
            raise ValueError(f"binlog file name must not contain ':', got {self.file!r}")

    @property
    def is_start(self) -> bool:
        """True for the start-of-time sentinel."""
        return self == START_COORDINATE

    def __str__(self) -> str:
        if self.is_start:
            return "<start>"
        return f"{self.file}:{self.position}"

    @classmethod
    def parse(cls, text: str) -> LogCoordinate:
        """Parse ``file:position``.

        Raises:
            ValueError: If the text is not a valid coordinate.
        """
        file, sep, position = text.strip().rpartition(":")
        if not sep or not file:
            raise ValueError(f"coordinate must look like 'file:position', got {text!r}")
        try:
            pos = int(position)
        except ValueError:
            raise ValueError(f"coordinate position must be an integer, got {position!r}")
        return cls(file=file, position=pos)


START_COORDINATE = LogCoordinate(file="", position=0)
"""Sentinel for a cold start: precedes every real coordinate."""


def to_micros(moment: datetime) -> int:
    """Convert an aware (or UTC-naive) datetime to epoch microseconds."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    delta = moment - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def from_micros(micros: int) -> datetime:
    """Convert epoch microseconds to an aware UTC datetime."""
    seconds, remainder = divmod(micros, 1_000_000)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=remainder)


@dataclass(frozen=True, slots=True)
class TimeRange:
    """Wall-clock interval covered by one collection cycle."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"time range ends before it starts: {self.start} > {self.end}")

    def covers(self, moment: datetime) -> bool:
        """True if moment falls within [start, end]."""
        return self.start <= moment <= self.end
