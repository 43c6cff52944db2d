"""
SQLite database adapter implementation.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Sequence

from ..dialects.sqlite import SQLiteDialect
from ..utils import get_logger, redact_params, resolve_slow_query_ms, time_call
from .base import (
    AdapterConnectionError,
    AdapterExecutionError,
    AdapterTransactionError,
    ConnectionConfig,
    ConstraintViolationError,
    DatabaseAdapter,
)


@dataclass(slots=True)
class SQLiteConnectionState:
    connection: sqlite3.Connection
    config: ConnectionConfig


class SQLiteAdapter(DatabaseAdapter):
    """
    Adapter wrapping the stdlib sqlite3 module.

    The connection runs with ``isolation_level=None`` so transactions are
    controlled only through :meth:`begin`, :meth:`commit` and :meth:`rollback`.
    """

    def __init__(self, slow_query_ms: int | None = None) -> None:
        self.dialect = SQLiteDialect()
        self._state: SQLiteConnectionState | None = None
        self.logger = get_logger("adapters.sqlite")
        self.slow_query_ms = resolve_slow_query_ms(default=100, override=slow_query_ms)

    # ------------------------------------------------------------------ #
    # Connection management
    # ------------------------------------------------------------------ #
    def connect(self, config: ConnectionConfig) -> sqlite3.Connection:
        path = self._normalize_path(config.url)
        timeout = config.timeout if config.timeout is not None else 5.0
        try:
            connection = sqlite3.connect(
                path,
                isolation_level=None,
                timeout=timeout,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise AdapterConnectionError(
                f"Could not open SQLite database {config.redacted_dsn()}: {exc}"
            ) from exc
        connection.row_factory = sqlite3.Row
        if config.foreign_keys:
            connection.execute("PRAGMA foreign_keys = ON")

        self._state = SQLiteConnectionState(connection, config)
        self.logger.debug("Connected to %s", config.descriptive_label())
        return connection

    def close(self) -> None:
        if self._state:
            self._state.connection.close()
            self._state = None

    @property
    def in_transaction(self) -> bool:
        return bool(self._state and self._state.connection.in_transaction)

    def _ensure_connection(self) -> sqlite3.Connection:
        if not self._state:
            raise AdapterConnectionError("SQLiteAdapter is not connected.")
        return self._state.connection

    # ------------------------------------------------------------------ #
    # Execution helpers
    # ------------------------------------------------------------------ #
    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        connection = self._ensure_connection()
        cursor = connection.cursor()
        params = tuple(params or ())
        try:
            with time_call("sqlite.execute", self.logger, sql=sql, threshold_ms=self.slow_query_ms):
                cursor.execute(sql, params)
        except sqlite3.IntegrityError as exc:
            raise ConstraintViolationError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise AdapterExecutionError(f"{exc} (while executing: {sql})") from exc
        self.logger.debug("SQL executed", extra={"sql": sql, "params": redact_params(params)})
        return cursor

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def begin(self) -> None:
        self._transaction_statement("BEGIN")

    def commit(self) -> None:
        self._transaction_statement("COMMIT")

    def rollback(self) -> None:
        self._transaction_statement("ROLLBACK")

    def _transaction_statement(self, statement: str) -> None:
        connection = self._ensure_connection()
        try:
            connection.execute(statement)
        except sqlite3.IntegrityError as exc:
            raise ConstraintViolationError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise AdapterTransactionError(f"{statement} failed: {exc}") from exc

    # ------------------------------------------------------------------ #
    def last_insert_id(self, cursor: sqlite3.Cursor, table: str, pk_column: str) -> Any:
        return cursor.lastrowid

    @staticmethod
    def _normalize_path(url: str) -> str:
        if url in ("sqlite:///:memory:", "sqlite://", ":memory:"):
            return ":memory:"
        prefix = "sqlite:///"
        if url.startswith(prefix):
            return url[len(prefix) :].split("?", 1)[0]
        return url
