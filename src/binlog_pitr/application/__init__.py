"""Application layer - collector and recoverer orchestration.

Usage:
    from binlog_pitr.application import build_container, BinlogCollector

    container = build_container(config)
    container.resolve(BinlogCollector).run_forever(cancel)
"""

from binlog_pitr.application.bootstrap import build_container, build_storage
from binlog_pitr.application.collector import BinlogCollector
from binlog_pitr.application.recoverer import BinlogRecoverer, target_from_config

__all__ = [
    "BinlogCollector",
    "BinlogRecoverer",
    "build_container",
    "build_storage",
    "target_from_config",
]
