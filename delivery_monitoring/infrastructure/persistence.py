"""
SQL persistence handle consumed by the monitoring store.

`MonitoringPersistence` is the narrow contract the store depends on; any object
implementing it can be injected (the tests use a SQLite-backed one).
`PsycopgPersistence` is the production implementation on top of a psycopg 3
connection pool.

Statements use the `%s` paramstyle. Inside `transaction()` every call made by
the same thread runs on one pooled connection; outside of it each call borrows
a connection and commits on return.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import (
    Any,
    ContextManager,
    Dict,
    Generator,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from psycopg import Connection
from psycopg.rows import dict_row
from psycopg.sql import SQL, Identifier, Placeholder
from psycopg_pool import ConnectionPool

from delivery_monitoring.infrastructure.db_factory import get_sync_pool
from delivery_monitoring.utils.logging import get_logger

log = get_logger(__name__)

Params = Optional[Sequence[Any]]


@runtime_checkable
class MonitoringPersistence(Protocol):
    """
    Backing store interface.

    Methods
    -------
    query(sql, params)
        Run a statement and return its rows as dicts.
    exec(sql, params)
        Run a statement and return the affected row count.
    insert(table, data)
        Insert one row built from a column/value mapping; returns affected rows.
    last_insert_id(table)
        Surrogate id generated by the latest insert into `table` in the
        current transaction.
    column_names(table)
        Ordered column names of `table`, empty if it does not exist.
    limit_statement(sql, limit, offset)
        Dialect specific LIMIT/OFFSET rewrite.
    transaction()
        Context manager; commits on success, rolls back and re-raises on error.
    """

    def query(self, sql: str, params: Params = None) -> List[Dict[str, Any]]:
        ...

    def exec(self, sql: str, params: Params = None) -> int:
        ...

    def insert(self, table: str, data: Mapping[str, Any]) -> int:
        ...

    def last_insert_id(self, table: str) -> Any:
        ...

    def column_names(self, table: str) -> List[str]:
        ...

    def limit_statement(self, sql: str, limit: int, offset: int = 0) -> str:
        ...

    def transaction(self) -> ContextManager[None]:
        ...


class PsycopgPersistence:
    """
    PostgreSQL implementation of `MonitoringPersistence`.

    Parameters
    ----------
    pool : ConnectionPool
        Pool the connections are borrowed from. The pool is not owned: closing
        it stays with whoever created it (normally `PoolManager`).
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool
        self._local = threading.local()

    @classmethod
    def from_settings(cls) -> "PsycopgPersistence":
        """Build a handle on the process-wide pool configured by `Settings`."""
        return cls(get_sync_pool())

    def _bound(self) -> Optional[Connection]:
        return getattr(self._local, "conn", None)

    @contextmanager
    def _connection(self) -> Generator[Connection, None, None]:
        conn = self._bound()
        if conn is not None:
            yield conn
            return
        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        conn = self._bound()
        if conn is not None:
            # Nested scope: psycopg turns it into a savepoint.
            with conn.transaction():
                yield
            return
        with self._pool.connection() as conn:
            self._local.conn = conn
            try:
                with conn.transaction():
                    yield
            finally:
                self._local.conn = None

    def query(self, sql: str, params: Params = None) -> List[Dict[str, Any]]:
        with self._connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, params)
                return cur.fetchall()

    def exec(self, sql: str, params: Params = None) -> int:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.rowcount

    def insert(self, table: str, data: Mapping[str, Any]) -> int:
        columns = list(data)
        statement = SQL("INSERT INTO {table} ({columns}) VALUES ({values})").format(
            table=Identifier(table),
            columns=SQL(", ").join(Identifier(column) for column in columns),
            values=SQL(", ").join(Placeholder() for _ in columns),
        )
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(statement, [data[column] for column in columns])
                return cur.rowcount

    def last_insert_id(self, table: str) -> Any:
        if self._bound() is None:
            log.warning(
                "last_insert_id called outside a transaction; currval may fail",
                extra={"table": table},
            )
        rows = self.query("SELECT currval(pg_get_serial_sequence(%s, 'id')) AS last_id", [table])
        return rows[0]["last_id"]

    def column_names(self, table: str) -> List[str]:
        rows = self.query(
            """
            SELECT column_name
            FROM information_schema.columns
            WHERE table_schema = current_schema() AND table_name = %s
            ORDER BY ordinal_position
            """,
            [table],
        )
        return [row["column_name"] for row in rows]

    def limit_statement(self, sql: str, limit: int, offset: int = 0) -> str:
        return f"{sql}\nLIMIT {int(limit)} OFFSET {int(offset)}"


__all__ = ["MonitoringPersistence", "PsycopgPersistence", "Params"]
