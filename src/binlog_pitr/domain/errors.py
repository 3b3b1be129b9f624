"""Error taxonomy for collection and recovery.

Only ``TransientIOError`` is retried, and only locally at the point where it
occurs (segment append, segment read). Every other error propagates to the
top level and stops the run: a silently skipped gap or mis-ordered segment
would corrupt the recovered database beyond repair.

Every error carries the storage key and/or binlog coordinate it concerns so
that an operator can diagnose and re-seed by hand.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from binlog_pitr.domain.value_objects import LogCoordinate


class PitrError(Exception):
    """Base class for all collector and recoverer errors."""

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        coordinate: LogCoordinate | None = None,
    ) -> None:
        self.key = key
        self.coordinate = coordinate
        context = []
        if key is not None:
            context.append(f"key={key}")
        if coordinate is not None:
            context.append(f"coordinate={coordinate}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class TransientIOError(PitrError):
    """Network or provider-level failure. Safe to retry."""


class NotFoundError(PitrError):
    """The requested object does not exist."""


class ConflictError(PitrError):
    """An object already exists under a key that must be written once.

    Signals a second collector writing the same stream, or manual tampering.
    """


class ManifestConsistencyError(ConflictError):
    """Two segments claim authority over an overlapping position range."""

    def __init__(self, message: str, *, winner: str, superseded: str) -> None:
        self.winner = winner
        self.superseded = superseded
        super().__init__(f"{message}: {superseded} is superseded by {winner}", key=superseded)


class IncompleteHistoryError(PitrError):
    """The segment chain has a gap. Recovery cannot proceed past it."""


class TargetNotCapturedError(PitrError):
    """The recovery target lies beyond the last captured segment."""


class PositionUnavailableError(PitrError):
    """The source has purged the binlog needed to resume collection."""


class ApplyError(PitrError):
    """The target database rejected a transaction."""


class FatalError(PitrError):
    """Configuration, authorization or data-integrity failure. Not retryable."""


class CorruptSegmentError(FatalError):
    """A stored segment failed header, length or checksum validation."""


class CycleAbortedError(PitrError):
    """A collection cycle was cancelled before it could commit."""


class RecoveryCancelledError(PitrError):
    """Recovery was cancelled at a transaction boundary."""
