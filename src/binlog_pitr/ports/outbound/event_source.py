"""Event source port for reading the source database's binlog stream."""

from __future__ import annotations

import threading
from abc import abstractmethod
from datetime import datetime
from typing import Iterator, Protocol, runtime_checkable

from binlog_pitr.domain.entities import BinlogEvent
from binlog_pitr.domain.value_objects import LogCoordinate


@runtime_checkable
class EventSource(Protocol):
    """Protocol for a replication event stream.

    The source must be able to resume from any coordinate it previously
    issued. Reads are blocking but must observe the deadline: once it
    passes, iteration ends and the caller keeps whatever was yielded.
    """

    @abstractmethod
    def open_stream(
        self,
        from_coordinate: LogCoordinate,
        deadline: datetime | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[BinlogEvent]:
        """Stream events strictly after from_coordinate.

        Args:
            from_coordinate: Resume point; START_COORDINATE means the oldest
                binlog still available.
            deadline: Stop yielding once this moment has passed.
            cancel: Stop yielding once this event is set.

        Yields:
            BinlogEvent objects in log order.

        Raises:
            PositionUnavailableError: If the source purged from_coordinate.
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the stream and release the replication connection."""
        ...
