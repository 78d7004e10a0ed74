"""
Table layout of the monitoring store.

`MonitoringSchema` is the immutable descriptor the store classifies attributes
with: the ordered column names of the primary table plus the two table names.
Build it explicitly (tests, fixed deployments) or introspect it once from the
backing database with `MonitoringSchema.introspect`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Tuple

from delivery_monitoring.domain.models import (
    COLUMN_AUTHORIZED_BY,
    COLUMN_CURRENT_ASSESSMENT_ITEM,
    COLUMN_DELIVERY_EXECUTION_ID,
    COLUMN_END_TIME,
    COLUMN_ID,
    COLUMN_START_TIME,
    COLUMN_STATUS,
    COLUMN_TEST_TAKER,
)
from delivery_monitoring.errors import SchemaError
from delivery_monitoring.infrastructure.persistence import MonitoringPersistence

TABLE_NAME = "delivery_monitoring"
KV_TABLE_NAME = "kv_delivery_monitoring"
KV_COLUMN_ID = "id"
KV_COLUMN_PARENT_ID = "parent_id"
KV_COLUMN_KEY = "monitoring_key"
KV_COLUMN_VALUE = "monitoring_value"
KV_FK_PARENT = "fk_delivery_monitoring_kv_delivery_monitoring"

DEFAULT_COLUMNS: Tuple[str, ...] = (
    COLUMN_ID,
    COLUMN_DELIVERY_EXECUTION_ID,
    COLUMN_STATUS,
    COLUMN_CURRENT_ASSESSMENT_ITEM,
    COLUMN_TEST_TAKER,
    COLUMN_AUTHORIZED_BY,
    COLUMN_START_TIME,
    COLUMN_END_TIME,
)


@dataclass(frozen=True)
class MonitoringSchema:
    """
    Immutable descriptor of the primary/secondary table pair.
    """

    columns: Tuple[str, ...] = DEFAULT_COLUMNS
    table: str = TABLE_NAME
    kv_table: str = KV_TABLE_NAME

    def __post_init__(self) -> None:
        columns = tuple(self.columns)
        for required in (COLUMN_ID, COLUMN_DELIVERY_EXECUTION_ID):
            if required not in columns:
                raise SchemaError(f"Table '{self.table}' has no '{required}' column")
        object.__setattr__(self, "columns", columns)

    @classmethod
    def introspect(
        cls,
        persistence: MonitoringPersistence,
        table: str = TABLE_NAME,
        kv_table: str = KV_TABLE_NAME,
    ) -> "MonitoringSchema":
        """
        Ask the backing database for the primary table's column list.

        Raises
        ------
        SchemaError
            If the table does not exist or lacks the key columns.
        """
        columns = tuple(persistence.column_names(table))
        if not columns:
            raise SchemaError(f"Table '{table}' not found; run `init-db` first")
        return cls(columns=columns, table=table, kv_table=kv_table)

    def is_fixed(self, key: str) -> bool:
        return key in self.columns

    def split(self, data: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Partition attributes into (fixed, dynamic) by column membership.
        """
        fixed: Dict[str, Any] = {}
        dynamic: Dict[str, Any] = {}
        for key, value in data.items():
            if self.is_fixed(key):
                fixed[key] = value
            else:
                dynamic[key] = value
        return fixed, dynamic


def create_table_statements(schema: MonitoringSchema = MonitoringSchema()) -> Iterable[str]:
    """
    PostgreSQL DDL for the default layout.

    Only the default column set is created; extra fixed columns are added by
    migrations, and introspection picks them up.
    """
    return (
        f"""
        CREATE TABLE IF NOT EXISTS {schema.table} (
            {COLUMN_ID} BIGSERIAL PRIMARY KEY,
            {COLUMN_DELIVERY_EXECUTION_ID} VARCHAR(255) NOT NULL UNIQUE,
            {COLUMN_STATUS} VARCHAR(255),
            {COLUMN_CURRENT_ASSESSMENT_ITEM} VARCHAR(255),
            {COLUMN_TEST_TAKER} VARCHAR(255),
            {COLUMN_AUTHORIZED_BY} VARCHAR(255),
            {COLUMN_START_TIME} BIGINT,
            {COLUMN_END_TIME} BIGINT
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {schema.kv_table} (
            {KV_COLUMN_ID} BIGSERIAL PRIMARY KEY,
            {KV_COLUMN_PARENT_ID} BIGINT NOT NULL,
            {KV_COLUMN_KEY} VARCHAR(255) NOT NULL,
            {KV_COLUMN_VALUE} TEXT,
            CONSTRAINT {KV_FK_PARENT} FOREIGN KEY ({KV_COLUMN_PARENT_ID})
                REFERENCES {schema.table} ({COLUMN_ID})
        )
        """,
        f"CREATE INDEX IF NOT EXISTS idx_{schema.table}_{COLUMN_STATUS} "
        f"ON {schema.table} ({COLUMN_STATUS})",
        f"CREATE INDEX IF NOT EXISTS idx_{schema.kv_table}_{KV_COLUMN_KEY} "
        f"ON {schema.kv_table} ({KV_COLUMN_PARENT_ID}, {KV_COLUMN_KEY})",
    )


def create_tables(persistence: MonitoringPersistence, schema: MonitoringSchema = MonitoringSchema()) -> None:
    """Create both monitoring tables inside one transaction."""
    with persistence.transaction():
        for statement in create_table_statements(schema):
            persistence.exec(statement)


__all__ = [
    "TABLE_NAME",
    "KV_TABLE_NAME",
    "KV_COLUMN_ID",
    "KV_COLUMN_PARENT_ID",
    "KV_COLUMN_KEY",
    "KV_COLUMN_VALUE",
    "DEFAULT_COLUMNS",
    "MonitoringSchema",
    "create_table_statements",
    "create_tables",
]
