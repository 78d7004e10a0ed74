"""
Pytest configuration for the delivery monitoring store.

Provides fixtures for:
- An in-memory SQLite implementation of the persistence handle (unit tests)
- Store instances with an injected or introspected schema
- PostgreSQL connection management and table cleanup (integration tests)
"""

from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Mapping, Optional, Sequence

import psycopg
import pytest
from psycopg_pool import ConnectionPool

from delivery_monitoring.config import Settings
from delivery_monitoring.infrastructure.persistence import PsycopgPersistence
from delivery_monitoring.monitoring.schema import MonitoringSchema, create_tables
from delivery_monitoring.monitoring.store import DeliveryMonitoringStore

SQLITE_DDL = (
    """
    CREATE TABLE delivery_monitoring (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        delivery_execution_id VARCHAR(255) NOT NULL UNIQUE,
        status VARCHAR(255),
        current_assessment_item VARCHAR(255),
        test_taker VARCHAR(255),
        authorized_by VARCHAR(255),
        start_time INTEGER,
        end_time INTEGER
    )
    """,
    """
    CREATE TABLE kv_delivery_monitoring (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        parent_id INTEGER NOT NULL REFERENCES delivery_monitoring (id),
        monitoring_key VARCHAR(255) NOT NULL,
        monitoring_value TEXT
    )
    """,
)


class SqlitePersistence:
    """
    `MonitoringPersistence` over a SQLite connection.

    Rewrites the `%s` paramstyle to `?` and records every statement it runs
    in `statements` so tests can count round trips.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.statements: List[str] = []
        self.column_lookups = 0
        self._depth = 0
        self._last_ids: Dict[str, Any] = {}

    def _execute(self, sql: str, params: Optional[Sequence[Any]]) -> sqlite3.Cursor:
        self.statements.append(sql)
        return self.conn.execute(sql.replace("%s", "?"), tuple(params or ()))

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        cur = self._execute(sql, params)
        if cur.description is None:
            return []
        columns = [description[0] for description in cur.description]
        return [dict(zip(columns, row)) for row in cur.fetchall()]

    def exec(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        return self._execute(sql, params).rowcount

    def insert(self, table: str, data: Mapping[str, Any]) -> int:
        columns = list(data)
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join('%s' for _ in columns)})"
        )
        cur = self._execute(sql, [data[column] for column in columns])
        self._last_ids[table] = cur.lastrowid
        return cur.rowcount

    def last_insert_id(self, table: str) -> Any:
        return self._last_ids[table]

    def column_names(self, table: str) -> List[str]:
        self.column_lookups += 1
        return [row[1] for row in self.conn.execute(f"PRAGMA table_info({table})").fetchall()]

    def limit_statement(self, sql: str, limit: int, offset: int = 0) -> str:
        return f"{sql}\nLIMIT {int(limit)} OFFSET {int(offset)}"

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        outermost = self._depth == 0
        if outermost:
            self.conn.execute("BEGIN")
        self._depth += 1
        try:
            yield
        except BaseException:
            self._depth -= 1
            if outermost:
                self.conn.execute("ROLLBACK")
            raise
        self._depth -= 1
        if outermost:
            self.conn.execute("COMMIT")

    def count(self, table: str) -> int:
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


@pytest.fixture
def sqlite_persistence() -> Generator[SqlitePersistence, None, None]:
    conn = sqlite3.connect(":memory:", isolation_level=None)
    conn.execute("PRAGMA foreign_keys = ON")
    for statement in SQLITE_DDL:
        conn.execute(statement)
    try:
        yield SqlitePersistence(conn)
    finally:
        conn.close()


@pytest.fixture
def schema() -> MonitoringSchema:
    return MonitoringSchema()


@pytest.fixture
def store(sqlite_persistence: SqlitePersistence, schema: MonitoringSchema) -> DeliveryMonitoringStore:
    return DeliveryMonitoringStore(sqlite_persistence, schema=schema)


@pytest.fixture
def introspecting_store(sqlite_persistence: SqlitePersistence) -> DeliveryMonitoringStore:
    return DeliveryMonitoringStore(sqlite_persistence)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "delivery_monitoring"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def pg_pool(test_dsn: str, db_connection_available: bool) -> Generator[ConnectionPool, None, None]:
    """
    Session-scoped pool for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    pool = ConnectionPool(conninfo=test_dsn, min_size=1, max_size=4, open=True)
    try:
        yield pool
    finally:
        pool.close()


@pytest.fixture(scope="session")
def pg_persistence(pg_pool: ConnectionPool) -> PsycopgPersistence:
    """
    Persistence handle on the test database with the monitoring tables created.
    """
    persistence = PsycopgPersistence(pg_pool)
    create_tables(persistence)
    return persistence


@pytest.fixture
def clean_monitoring_tables(pg_persistence: PsycopgPersistence) -> Generator[None, None, None]:
    """
    Empty both monitoring tables around each test function.
    """
    truncate = "TRUNCATE TABLE kv_delivery_monitoring, delivery_monitoring RESTART IDENTITY"
    pg_persistence.exec(truncate)
    yield
    pg_persistence.exec(truncate)


@pytest.fixture
def pg_store(pg_persistence: PsycopgPersistence, clean_monitoring_tables) -> DeliveryMonitoringStore:
    return DeliveryMonitoringStore(pg_persistence)
