"""Command-line entry point.

Usage:
    python -m binlog_pitr collect [config.yaml]
    python -m binlog_pitr recover [config.yaml]

Without a config file, settings come from ``BINLOG_PITR_*`` environment
variables. SIGINT and SIGTERM request a graceful stop: the collector
commits (or aborts) its current cycle, the recoverer stops at the next
transaction boundary.
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from typing import NoReturn, Sequence

from pydantic import ValidationError

from binlog_pitr import __version__
from binlog_pitr.application import (
    BinlogCollector,
    BinlogRecoverer,
    build_container,
    target_from_config,
)
from binlog_pitr.domain.errors import PitrError
from binlog_pitr.infrastructure import (
    Config,
    get_config,
    get_logger,
    get_metrics,
    setup_logging,
    setup_metrics,
    setup_tracing,
)
from binlog_pitr.infrastructure.container import Container
from binlog_pitr.ports.outbound import ApplySink


logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(EXIT_FAILURE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="binlog_pitr",
        description="Continuous binlog capture and point-in-time recovery.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", metavar="{collect,recover}")
    commands.required = True

    collect = commands.add_parser("collect", help="capture binlog segments until stopped")
    collect.add_argument("config", nargs="?", help="YAML config file (default: environment)")

    recover = commands.add_parser("recover", help="replay segments up to the recovery target")
    recover.add_argument("config", nargs="?", help="YAML config file (default: environment)")
    return parser


def load_config(path: str | None) -> Config:
    if path:
        return Config.from_yaml(path)
    return get_config()


def install_signal_handlers(cancel: threading.Event) -> None:
    def _handle(signum: int, _frame: object) -> None:
        logger.info("shutdown_requested", signal=signal.Signals(signum).name)
        cancel.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run_collect(container: Container, cancel: threading.Event) -> int:
    container.resolve(BinlogCollector).run_forever(cancel)
    return EXIT_OK


def run_recover(container: Container, config: Config, cancel: threading.Event) -> int:
    recoverer = container.resolve(BinlogRecoverer)
    try:
        stats = recoverer.recover(target_from_config(config.recovery), cancel)
    finally:
        container.resolve(ApplySink).close()
    summary = {
        "state": stats.state.value,
        "target": stats.target,
        "segments_applied": stats.segments_applied,
        "transactions_applied": stats.transactions_applied,
        "final_coordinate": str(stats.final_coordinate) if stats.final_coordinate else None,
        "duration_ms": round(stats.duration_ms, 1),
    }
    print(json.dumps(summary))
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (OSError, ValueError, ValidationError) as e:
        print(f"binlog_pitr: invalid configuration: {e}", file=sys.stderr)
        return EXIT_FAILURE

    observability = config.observability
    setup_logging(level=observability.log_level, log_format=observability.log_format)
    if observability.otel_endpoint:
        setup_tracing(observability.otel_service_name, observability.otel_endpoint)
    if observability.metrics_port:
        metrics = setup_metrics(port=observability.metrics_port)
    else:
        metrics = get_metrics()

    container = build_container(config, metrics)
    cancel = threading.Event()
    install_signal_handlers(cancel)

    try:
        if args.command == "collect":
            return run_collect(container, cancel)
        return run_recover(container, config, cancel)
    except PitrError as e:
        logger.error("command_failed", command=args.command, error=str(e), kind=type(e).__name__)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
