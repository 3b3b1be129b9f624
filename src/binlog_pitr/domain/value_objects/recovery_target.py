"""Recovery targets: latest, a point in time or a log coordinate."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from binlog_pitr.domain.value_objects.coordinates import LogCoordinate


class TargetKind(Enum):
    """How the recovery point is expressed."""

    LATEST = "latest"
    TIMESTAMP = "timestamp"
    COORDINATE = "coordinate"


@dataclass(frozen=True, slots=True)
class RecoveryTarget:
    """The point a recovery run must stop at.

    Exactly one of ``timestamp`` / ``coordinate`` is set for the matching
    kind; ``LATEST`` sets neither and replays the whole captured chain.
    """

    kind: TargetKind
    timestamp: datetime | None = None
    coordinate: LogCoordinate | None = None

    def __post_init__(self) -> None:
        if self.kind is TargetKind.TIMESTAMP and self.timestamp is None:
            raise ValueError("timestamp target requires a timestamp")
        if self.kind is TargetKind.COORDINATE and self.coordinate is None:
            raise ValueError("coordinate target requires a coordinate")

    @classmethod
    def latest(cls) -> RecoveryTarget:
        return cls(kind=TargetKind.LATEST)

    @classmethod
    def at_time(cls, moment: datetime) -> RecoveryTarget:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return cls(kind=TargetKind.TIMESTAMP, timestamp=moment)

    @classmethod
    def at_coordinate(cls, coordinate: LogCoordinate) -> RecoveryTarget:
        return cls(kind=TargetKind.COORDINATE, coordinate=coordinate)

    def __str__(self) -> str:
        if self.kind is TargetKind.TIMESTAMP:
            return f"timestamp {self.timestamp.isoformat()}"  # type: ignore[union-attr]
        if self.kind is TargetKind.COORDINATE:
            return f"coordinate {self.coordinate}"
        return "latest"
