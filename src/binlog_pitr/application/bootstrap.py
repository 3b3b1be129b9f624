"""Wiring of configuration into a populated dependency container.

Every component is registered as a lazy factory, so a ``recover`` run
never opens a replication connection and a ``collect`` run never
connects to the target database.
"""

from __future__ import annotations

from binlog_pitr.adapters.outbound.file_storage import FileSystemStorageBackend
from binlog_pitr.adapters.outbound.memory_storage import InMemoryStorageBackend
from binlog_pitr.adapters.outbound.metered_storage import MeteredStorageBackend
from binlog_pitr.application.collector import BinlogCollector
from binlog_pitr.application.recoverer import BinlogRecoverer
from binlog_pitr.domain.services import SegmentManifest
from binlog_pitr.domain.value_objects import START_COORDINATE, LogCoordinate
from binlog_pitr.infrastructure.config import Config, StorageConfig
from binlog_pitr.infrastructure.container import Container
from binlog_pitr.infrastructure.metrics import MetricsRegistry, get_metrics
from binlog_pitr.ports.outbound import ApplySink, EventSource, StorageBackend


def build_storage(config: StorageConfig) -> StorageBackend:
    """Create the storage backend selected by configuration."""
    if config.type == "s3":
        from binlog_pitr.adapters.outbound.s3_storage import S3StorageBackend

        return S3StorageBackend.from_config(config.s3)
    if config.type == "azure":
        from binlog_pitr.adapters.outbound.azure_storage import AzureBlobStorageBackend

        return AzureBlobStorageBackend.from_config(config.azure)
    if config.type == "filesystem":
        return FileSystemStorageBackend(config.filesystem.root)
    return InMemoryStorageBackend()


def _event_source(container: Container) -> EventSource:
    from binlog_pitr.adapters.outbound.mysql_event_source import MySQLEventSource

    return MySQLEventSource(container.resolve(Config).source)


def _apply_sink(container: Container) -> ApplySink:
    from binlog_pitr.adapters.outbound.mysql_apply_sink import MySQLApplySink

    return MySQLApplySink(container.resolve(Config).recovery.database)


def _manifest(container: Container) -> SegmentManifest:
    config = container.resolve(Config)
    initial = config.collector.initial_coordinate
    return SegmentManifest(
        backend=container.resolve(StorageBackend),
        stream_id=config.storage.stream_id,
        initial_coordinate=LogCoordinate.parse(initial) if initial else START_COORDINATE,
    )


def build_container(config: Config, metrics: MetricsRegistry | None = None) -> Container:
    """
    Register configuration, adapters and services.

    Args:
        config: Loaded configuration
        metrics: Metrics registry (global registry if None)

    Returns:
        A container resolving StorageBackend, EventSource, ApplySink,
        SegmentManifest, BinlogCollector and BinlogRecoverer
    """
    container = Container()
    registry = metrics or get_metrics()

    container.register_singleton(Config, config)
    container.register_singleton(MetricsRegistry, registry)
    container.register_factory(
        StorageBackend,
        lambda c: MeteredStorageBackend(build_storage(config.storage), c.resolve(MetricsRegistry)),
    )
    container.register_factory(EventSource, _event_source)
    container.register_factory(ApplySink, _apply_sink)
    container.register_factory(SegmentManifest, _manifest)
    container.register_factory(
        BinlogCollector,
        lambda c: BinlogCollector(
            manifest=c.resolve(SegmentManifest),
            source=c.resolve(EventSource),
            config=config.collector,
            metrics=c.resolve(MetricsRegistry),
        ),
    )
    container.register_factory(
        BinlogRecoverer,
        lambda c: BinlogRecoverer(
            manifest=c.resolve(SegmentManifest),
            sink=c.resolve(ApplySink),
            config=config.recovery,
            metrics=c.resolve(MetricsRegistry),
        ),
    )
    return container
