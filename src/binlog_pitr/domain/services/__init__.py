"""Domain services for collection and recovery logic.

Services implement domain logic that doesn't naturally fit within a
single entity: ordering and continuity over stored segments, and the
bounded replay state machine.
"""

from binlog_pitr.domain.services.apply_engine import ApplyEngine, ApplyResult, ApplyState
from binlog_pitr.domain.services.segment_manifest import SegmentManifest

__all__ = [
    "ApplyEngine",
    "ApplyResult",
    "ApplyState",
    "SegmentManifest",
]
