"""Value objects for the binlog PITR domain.

Value objects are immutable types that represent domain concepts.
They have no identity - two value objects with the same attributes are equal.

Exports:
    Coordinates:
        - LogCoordinate: Totally ordered (file, position) in the binlog stream
        - START_COORDINATE: Cold-start sentinel preceding every coordinate
        - SequenceNumber, FIRST_SEQUENCE: Segment ordinal within a stream
        - TimeRange: Wall-clock interval of a collection cycle

    Recovery:
        - RecoveryTarget: Where a recovery run stops
        - TargetKind: latest / timestamp / coordinate
"""

from binlog_pitr.domain.value_objects.coordinates import (
    FIRST_SEQUENCE,
    START_COORDINATE,
    LogCoordinate,
    SequenceNumber,
    TimeRange,
    from_micros,
    to_micros,
)
from binlog_pitr.domain.value_objects.recovery_target import RecoveryTarget, TargetKind

__all__ = [
    # Coordinates
    "LogCoordinate",
    "START_COORDINATE",
    "SequenceNumber",
    "FIRST_SEQUENCE",
    "TimeRange",
    "to_micros",
    "from_micros",
    # Recovery
    "RecoveryTarget",
    "TargetKind",
]
