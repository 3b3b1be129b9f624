"""Apply sink port for replaying transactions into the target database."""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from binlog_pitr.domain.entities import Transaction


@runtime_checkable
class ApplySink(Protocol):
    """Protocol for the downstream apply primitive.

    Key guarantees:
    - A transaction is applied entirely or not at all (no torn transactions)
    - Re-applying a transaction after a crash is the operator's concern;
      the engine never re-sends a transaction within one run
    """

    @abstractmethod
    def apply_transaction(self, transaction: Transaction) -> None:
        """Apply one complete transaction atomically.

        Raises:
            Exception: Any failure; the engine wraps it in ApplyError.
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the target database connection."""
        ...
