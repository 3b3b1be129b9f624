"""Storage backend decorator that records operation metrics.

Wraps any StorageBackend and counts each call in
``pitr_storage_operations_total{operation, status}``. Errors propagate
unchanged; the status label is the error class name.
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar

from binlog_pitr.infrastructure.metrics import MetricsRegistry
from binlog_pitr.ports.outbound.storage_backend import StorageBackend

T = TypeVar("T")


class MeteredStorageBackend:
    """StorageBackend that forwards to an inner backend and counts calls."""

    def __init__(self, inner: StorageBackend, metrics: MetricsRegistry) -> None:
        self._inner = inner
        self._metrics = metrics

    @property
    def inner(self) -> StorageBackend:
        return self._inner

    def _observe(self, operation: str, call: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            result = call(*args, **kwargs)
        except Exception as e:
            self._metrics.storage_operations_total.labels(
                operation=operation, status=type(e).__name__
            ).inc()
            raise
        self._metrics.storage_operations_total.labels(operation=operation, status="success").inc()
        return result

    def put(self, key: str, data: bytes) -> None:
        self._observe("put", self._inner.put, key, data)

    def list(self, prefix: str) -> list[str]:
        return self._observe("list", self._inner.list, prefix)

    def get(self, key: str, length: int | None = None) -> bytes:
        return self._observe("get", self._inner.get, key, length)

    def delete(self, key: str) -> None:
        self._observe("delete", self._inner.delete, key)
