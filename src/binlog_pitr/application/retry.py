"""Bounded retries for storage reads.

Transient storage errors on the read path are retried in place with a
linear backoff. Once the retries run out the failure is no longer treated
as transient: it escalates to FatalError carrying the key that was read.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from binlog_pitr.domain.errors import FatalError, TransientIOError
from binlog_pitr.infrastructure.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


def read_with_retries(
    read: Callable[[], T],
    *,
    operation: str,
    key: str,
    retries: int,
    backoff_seconds: float,
    sleep: Callable[[float], None],
    on_retry: Callable[[], None] | None = None,
) -> T:
    """Call read, retrying TransientIOError up to retries times.

    Args:
        read: The read to perform.
        operation: Short name used in logs and in the final error.
        key: Object key or prefix being read.
        retries: Retries after the first attempt.
        backoff_seconds: Sleep before retry n is backoff_seconds * n.
        sleep: Sleep function.
        on_retry: Called once per retry (metrics).

    Raises:
        FatalError: When every attempt failed transiently.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return read()
        except TransientIOError as e:
            if attempt > retries:
                raise FatalError(
                    f"{operation} failed after {attempt} attempts: {e}", key=key
                ) from e
            if on_retry is not None:
                on_retry()
            backoff = backoff_seconds * attempt
            logger.warning(
                "read_retry",
                operation=operation,
                key=key,
                attempt=attempt,
                backoff=backoff,
                error=str(e),
            )
            sleep(backoff)
