"""Recovery plans: the ordered segment chain for one recovery run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from binlog_pitr.domain.entities.segment import ManifestEntry
from binlog_pitr.domain.value_objects import LogCoordinate


@dataclass
class RecoveryPlan:
    """Segments selected for replay, in apply order.

    Attributes:
        entries: Gap-free chain from the base coordinate to the cutoff segment.
        base: Transactions ending at or before this coordinate are skipped.
        cutoff_coordinate: Stop point inside the last segment, when known
            from the manifest alone (coordinate targets).
        cutoff_time: Stop time inside the last segment (timestamp targets);
            resolved to a coordinate once that segment's payload is read.
        target_reached: False when the target lies beyond the captured chain.
    """

    entries: list[ManifestEntry] = field(default_factory=list)
    base: LogCoordinate | None = None
    cutoff_coordinate: LogCoordinate | None = None
    cutoff_time: datetime | None = None
    target_reached: bool = True

    @property
    def has_cutoff(self) -> bool:
        return self.cutoff_coordinate is not None or self.cutoff_time is not None

    @property
    def cutoff_entry(self) -> ManifestEntry | None:
        """The segment in which replay stops mid-way, if any."""
        if not self.entries or not self.has_cutoff:
            return None
        return self.entries[-1]

    def __len__(self) -> int:
        return len(self.entries)
