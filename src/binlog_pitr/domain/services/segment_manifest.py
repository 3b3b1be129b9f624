"""Segment manifest: the durable ordering and continuity model.

The manifest is never stored separately. It is the backend's listing of
``<stream-id>/`` plus the fixed-size header of each object, re-read on
every call so that no state survives a crash except what storage holds.

Chain rules:
    - Listing order (by key) is sequence order
    - Consecutive segments must satisfy ``next.start == prev.end``
    - ``next.start > prev.end`` is a gap -> IncompleteHistoryError
    - ``next.start < prev.end`` is an overlap -> ManifestConsistencyError;
      the later key wins and the earlier one is reported, never dropped
    - Empty segments (start == end) pass through the chain unchanged and
      only extend time coverage
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from binlog_pitr.domain.entities import (
    HEADER_SIZE,
    ManifestEntry,
    RecoveryPlan,
    ResumeCursor,
    Segment,
    SegmentHeader,
    parse_segment_key,
    segment_key,
    segment_prefix,
)
from binlog_pitr.domain.errors import (
    CorruptSegmentError,
    FatalError,
    IncompleteHistoryError,
    ManifestConsistencyError,
)
from binlog_pitr.domain.value_objects import (
    FIRST_SEQUENCE,
    START_COORDINATE,
    LogCoordinate,
    SequenceNumber,
)
from binlog_pitr.infrastructure.logging import get_logger
from binlog_pitr.ports.outbound.storage_backend import StorageBackend


class SegmentManifest:
    """Ordered, gap-checked view over the segments of one stream.

    Usage:
        manifest = SegmentManifest(backend, stream_id="prod-db")
        cursor = manifest.resolve_resume_point()
        key = manifest.append(segment)
        plan = manifest.select_chain(base, target)

    Thread Safety:
        Stateless apart from the injected backend; one writer per stream.
    """

    def __init__(
        self,
        backend: StorageBackend,
        stream_id: str,
        initial_coordinate: LogCoordinate = START_COORDINATE,
    ) -> None:
        """Initialize the manifest.

        Args:
            backend: Storage holding the stream.
            stream_id: Key prefix of the stream.
            initial_coordinate: Resume point reported for an empty stream.
        """
        self._backend = backend
        self._stream_id = stream_id
        self._initial_coordinate = initial_coordinate
        self._log = get_logger(__name__, stream=stream_id)

    @property
    def stream_id(self) -> str:
        return self._stream_id

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    def key_for(self, sequence: SequenceNumber) -> str:
        return segment_key(self._stream_id, sequence)

    def list_keys(self) -> list[str]:
        """List segment keys in sequence order.

        Raises:
            FatalError: If a foreign object sits under the stream prefix.
        """
        keys = self._backend.list(segment_prefix(self._stream_id))
        for key in keys:
            try:
                parse_segment_key(self._stream_id, key)
            except ValueError as e:
                raise FatalError(f"unexpected object in segment stream: {e}", key=key) from e
        return keys

    def read_header(self, key: str) -> ManifestEntry:
        """Header-only read of one segment.

        Raises:
            CorruptSegmentError: If the header is invalid or its sequence
                disagrees with the key.
        """
        data = self._backend.get(key, length=HEADER_SIZE)
        header = SegmentHeader.from_bytes(data, key=key)
        expected = parse_segment_key(self._stream_id, key)
        if header.sequence != expected:
            raise CorruptSegmentError(
                f"header sequence {header.sequence} does not match key sequence {expected}",
                key=key,
            )
        return ManifestEntry(key=key, header=header)

    def read_segment(self, key: str) -> Segment:
        """Full read of one segment, with length and checksum verification."""
        return Segment.from_bytes(self._backend.get(key), key=key)

    def entries(self) -> list[ManifestEntry]:
        """Decode every header in listing order."""
        return [self.read_header(key) for key in self.list_keys()]

    def resolve_resume_point(self) -> ResumeCursor:
        """Find where collection must resume.

        Decodes only the lexicographically last segment. An empty stream
        resumes from the initial coordinate (cold start).
        """
        keys = self.list_keys()
        if not keys:
            return ResumeCursor(
                coordinate=self._initial_coordinate,
                next_sequence=FIRST_SEQUENCE,
            )
        last = self.read_header(keys[-1])
        return ResumeCursor(
            coordinate=last.end,
            next_sequence=SequenceNumber(last.sequence + 1),
            last_key=last.key,
        )

    def append(self, segment: Segment) -> str:
        """Persist a segment under the key derived from its sequence.

        Returns:
            The storage key written.

        Raises:
            ConflictError: If the key already exists.
            TransientIOError: On retryable backend errors.
        """
        key = self.key_for(segment.header.sequence)
        self._backend.put(key, segment.to_bytes())
        self._log.debug(
            "segment_appended",
            key=key,
            start=str(segment.header.start),
            end=str(segment.header.end),
            events=segment.header.event_count,
        )
        return key

    def select_chain(
        self,
        from_coordinate: LogCoordinate,
        to_target: LogCoordinate | None = None,
        entries: Sequence[ManifestEntry] | None = None,
    ) -> RecoveryPlan:
        """Select the gap-free chain from from_coordinate up to to_target.

        Walks the listing from the first segment holding data after
        from_coordinate, checking contiguity, and stops at the segment
        covering to_target (the cutoff segment). Empty segments are
        checked for continuity but not included in the plan.

        Args:
            from_coordinate: Point the target database is consistent up to.
            to_target: Stop coordinate; None replays the whole chain.
            entries: Pre-read headers from this run, to avoid a second listing.

        Returns:
            The plan. ``target_reached`` is False when to_target lies beyond
            the last segment.

        Raises:
            IncompleteHistoryError: On a gap, or if no segment reaches back
                to from_coordinate.
            ManifestConsistencyError: If two segments overlap.
        """
        if entries is None:
            entries = self.entries()

        plan = RecoveryPlan(base=from_coordinate, cutoff_coordinate=to_target)
        if to_target is not None and to_target <= from_coordinate:
            self._log.warning(
                "target_not_after_base", base=str(from_coordinate), target=str(to_target)
            )
            return plan

        start_index = next(
            (i for i, entry in enumerate(entries) if entry.end > from_coordinate), None
        )
        if start_index is None:
            plan.target_reached = to_target is None
            return plan

        first = entries[start_index]
        if first.start > from_coordinate:
            raise IncompleteHistoryError(
                f"no segment reaches back to the base coordinate; "
                f"earliest available data starts at {first.start}",
                key=first.key,
                coordinate=from_coordinate,
            )

        previous: ManifestEntry | None = None
        for entry in entries[start_index:]:
            if previous is not None:
                self._check_adjacent(previous, entry)
            previous = entry
            if entry.header.is_empty:
                continue
            plan.entries.append(entry)
            if to_target is not None and entry.header.covers(to_target):
                return plan

        plan.target_reached = to_target is None
        return plan

    def resolve_time(
        self,
        moment: datetime,
        from_coordinate: LogCoordinate,
        entries: Sequence[ManifestEntry],
        allow_before_history: bool = False,
    ) -> LogCoordinate | None:
        """Map a recovery timestamp to the end of the segment that covers it.

        The chosen segment is the first one (at or after from_coordinate)
        whose capture window covers or follows the moment.

        Returns:
            That segment's end coordinate, or None if the moment is after
            everything captured so far.

        Raises:
            IncompleteHistoryError: If the moment precedes the first
                relevant segment and allow_before_history is False.
        """
        candidates = [entry for entry in entries if entry.end >= from_coordinate]
        if not candidates:
            return None
        first = candidates[0]
        if moment < first.header.captured_at.start and not allow_before_history:
            raise IncompleteHistoryError(
                f"target time {moment.isoformat()} precedes captured history starting at "
                f"{first.header.captured_at.start.isoformat()}",
                key=first.key,
            )
        for entry in candidates:
            if entry.captured_until >= moment:
                return entry.end
        return None

    def _check_adjacent(self, previous: ManifestEntry, entry: ManifestEntry) -> None:
        if entry.start == previous.end:
            return
        if entry.start > previous.end:
            raise IncompleteHistoryError(
                f"gap in segment chain between {previous.end} and {entry.start}",
                key=entry.key,
                coordinate=previous.end,
            )
        raise ManifestConsistencyError(
            f"segments overlap at {entry.start}",
            winner=entry.key,
            superseded=previous.key,
        )
