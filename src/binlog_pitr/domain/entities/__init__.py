"""Domain entities for binlog collection and recovery.

Exports:
    Events:
        - BinlogEvent: One captured event with its resume coordinate
        - EventKind: BEGIN / STATEMENT / ROWS / COMMIT / ROLLBACK
        - Transaction: Complete event group applied atomically
        - encode_payload, decode_payload: Segment payload framing
        - group_transactions: Split events into complete transactions
        - encode_body, decode_body: JSON bodies for STATEMENT and ROWS

    Segments:
        - SegmentHeader: Fixed-size metadata ahead of the payload
        - Segment: Header plus payload
        - ManifestEntry: A segment's key and header
        - segment_key, parse_segment_key, segment_prefix: Key naming

    Recovery:
        - RecoveryPlan: Ordered chain plus in-segment cutoff
"""

from binlog_pitr.domain.entities.binlog_event import (
    BinlogEvent,
    EventKind,
    Transaction,
    decode_body,
    decode_payload,
    encode_body,
    encode_payload,
    group_transactions,
)
from binlog_pitr.domain.entities.recovery_plan import RecoveryPlan
from binlog_pitr.domain.entities.segment import (
    HEADER_SIZE,
    ManifestEntry,
    ResumeCursor,
    Segment,
    SegmentHeader,
    parse_segment_key,
    segment_key,
    segment_prefix,
)

__all__ = [
    # Events
    "BinlogEvent",
    "EventKind",
    "Transaction",
    "encode_payload",
    "decode_payload",
    "group_transactions",
    "encode_body",
    "decode_body",
    # Segments
    "HEADER_SIZE",
    "SegmentHeader",
    "Segment",
    "ManifestEntry",
    "segment_key",
    "parse_segment_key",
    "segment_prefix",
    # Recovery
    "RecoveryPlan",
    "ResumeCursor",
]
