"""MySQL apply sink.

Replays captured transactions into the target database over PyMySQL.
Each captured transaction runs inside one database transaction: either
every change commits or the connection rolls back.

Row changes are rebuilt as parameterised statements:

    insert -> INSERT INTO `db`.`t` (cols) VALUES (%s, ...)
    update -> UPDATE `db`.`t` SET c = %s, ... WHERE c <=> %s AND ... LIMIT 1
    delete -> DELETE FROM `db`.`t` WHERE c <=> %s AND ... LIMIT 1

``<=>`` is MySQL's NULL-safe equality, so before-images containing NULLs
still match exactly one row.
"""

from __future__ import annotations

from typing import Any, Callable

import pymysql

from binlog_pitr.domain.entities import EventKind, Transaction, decode_body
from binlog_pitr.infrastructure.config import TargetDatabaseConfig
from binlog_pitr.infrastructure.logging import get_logger


logger = get_logger(__name__)


def quote_identifier(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


def _table(body: dict[str, Any]) -> str:
    return f"{quote_identifier(body['schema'])}.{quote_identifier(body['table'])}"


def _where(image: dict[str, Any]) -> tuple[str, list[Any]]:
    clause = " AND ".join(f"{quote_identifier(col)} <=> %s" for col in image)
    return clause, list(image.values())


def build_row_statements(body: dict[str, Any]) -> list[tuple[str, list[Any]]]:
    """Turn a ROWS body into (sql, params) pairs, one per row."""
    table = _table(body)
    action = body["action"]
    statements = []
    for row in body["rows"]:
        if action == "insert":
            values = row["values"]
            columns = ", ".join(quote_identifier(col) for col in values)
            placeholders = ", ".join(["%s"] * len(values))
            statements.append(
                (f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", list(values.values()))
            )
        elif action == "update":
            after = row["after_values"]
            assignments = ", ".join(f"{quote_identifier(col)} = %s" for col in after)
            where, params = _where(row["before_values"])
            sql = f"UPDATE {table} SET {assignments} WHERE {where} LIMIT 1"
            statements.append((sql, list(after.values()) + params))
        elif action == "delete":
            where, params = _where(row["values"])
            statements.append((f"DELETE FROM {table} WHERE {where} LIMIT 1", params))
        else:
            raise ValueError(f"unknown row action: {action!r}")
    return statements


class MySQLApplySink:
    """ApplySink writing to a MySQL-compatible target.

    The connection is opened on first use and reused for the whole run.
    """

    def __init__(
        self,
        config: TargetDatabaseConfig,
        connect: Callable[..., Any] = pymysql.connect,
    ) -> None:
        """
        Initialize the sink.

        Args:
            config: Target database settings
            connect: Connection factory (tests inject a fake)
        """
        self._config = config
        self._connect = connect
        self._connection: Any = None

    def _get_connection(self) -> Any:
        if self._connection is None:
            self._connection = self._connect(
                host=self._config.host,
                port=self._config.port,
                user=self._config.user,
                password=self._config.password,
                connect_timeout=self._config.connect_timeout,
                autocommit=False,
                charset="utf8mb4",
            )
            logger.info("target_connected", host=self._config.host, port=self._config.port)
        return self._connection

    def apply_transaction(self, transaction: Transaction) -> None:
        connection = self._get_connection()
        try:
            with connection.cursor() as cursor:
                for event in transaction.changes:
                    body = decode_body(event.body)
                    if event.kind is EventKind.STATEMENT:
                        if body.get("schema"):
                            cursor.execute(f"USE {quote_identifier(body['schema'])}")
                        cursor.execute(body["query"])
                    else:
                        for sql, params in build_row_statements(body):
                            cursor.execute(sql, params)
            connection.commit()
        except Exception:
            connection.rollback()
            raise

    def close(self) -> None:
        if self._connection is not None:
            connection, self._connection = self._connection, None
            connection.close()
