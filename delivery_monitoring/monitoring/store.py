"""
Delivery monitoring store.

Keeps one row per delivery execution in the primary table and every attribute
that has no column there in the key/value table. Callers never choose where an
attribute goes: the schema decides at save time.

Usage
-----
Save:

    record = MonitoringRecord(delivery_execution_id=de_uri)
    record.set({
        "test_taker": "http://sample/first.rdf#i1450190828500474",
        "status": "ACTIVE",
        "current_assessment_item": "http://sample/first.rdf#i145018936535755",
        "remaining_time": "1200",
    })
    store.save(record)

Find:

    store.find([{"status": "active"}, "OR", {"start_time": ">1450428401"}],
               {"limit": 10, "order": "t.id ASC"}, together=True)
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from delivery_monitoring.domain.models import (
    COLUMN_DELIVERY_EXECUTION_ID,
    COLUMN_ID,
    FindOptions,
    MonitoringRecord,
)
from delivery_monitoring.infrastructure.persistence import MonitoringPersistence
from delivery_monitoring.monitoring.criteria import (
    KV_ALIAS,
    PRIMARY_ALIAS,
    Criteria,
    compile_criteria,
    parse_criteria,
)
from delivery_monitoring.monitoring.schema import (
    KV_COLUMN_KEY,
    KV_COLUMN_PARENT_ID,
    KV_COLUMN_VALUE,
    KV_TABLE_NAME,
    TABLE_NAME,
    MonitoringSchema,
)
from delivery_monitoring.utils.logging import get_logger

log = get_logger(__name__)

Validator = Callable[[MonitoringRecord], bool]


def _default_validator(record: MonitoringRecord) -> bool:
    return record.is_valid()


class DeliveryMonitoringStore:
    """
    Find, save and delete monitoring records.

    Parameters
    ----------
    persistence : MonitoringPersistence
        Backing SQL handle.
    schema : MonitoringSchema, optional
        Column layout of the primary table. When omitted the columns of
        `table` are introspected on first use and kept for the lifetime of
        the store.
    validator : callable, optional
        Predicate a record must pass to be saved. Defaults to
        `MonitoringRecord.is_valid`.
    table, kv_table : str
        Table names used for introspection; ignored when `schema` is given.
    """

    def __init__(
        self,
        persistence: MonitoringPersistence,
        schema: Optional[MonitoringSchema] = None,
        validator: Optional[Validator] = None,
        table: str = TABLE_NAME,
        kv_table: str = KV_TABLE_NAME,
    ) -> None:
        self._persistence = persistence
        self._schema = schema
        self._validator = validator or _default_validator
        self._table = table
        self._kv_table = kv_table
        self._schema_lock = threading.Lock()

    @property
    def schema(self) -> MonitoringSchema:
        if self._schema is None:
            with self._schema_lock:
                if self._schema is None:
                    self._schema = MonitoringSchema.introspect(
                        self._persistence, table=self._table, kv_table=self._kv_table
                    )
                    log.debug(
                        "Primary columns introspected",
                        extra={"table": self._table, "columns": list(self._schema.columns)},
                    )
        return self._schema

    # ------------------------------------------------------------------ find

    def find(
        self,
        criteria: Union[Criteria, Iterable[Any], Mapping[str, Any], None] = None,
        options: Union[FindOptions, Mapping[str, Any], None] = None,
        together: bool = False,
    ) -> List[MonitoringRecord]:
        """
        Find monitoring records.

        Examples
        --------
        By delivery execution id:

            store.find([{"delivery_execution_id": "http://sample/first.rdf#i1450191587554175"}])

        Two fields, implicit AND:

            store.find([{"status": "active"}, {"start_time": ">1450428401"}])

        Two fields with OR:

            store.find([{"status": "active"}, "OR", {"start_time": ">1450428401"}])

        Combined:

            store.find([
                {"status": "finished"},
                "AND",
                [{"error_code": "0"}, "OR", {"error_code": "1"}],
            ])

        A string value may start with one of `<>`, `<=`, `>=`, `<`, `>`, `=`,
        `LIKE` or `NOT LIKE`; otherwise the attribute must equal the value.

        Parameters
        ----------
        criteria
            Expression tree or nested list/dict criteria.
        options
            `order` (raw ORDER BY fragment, default "t.id ASC"), `offset`
            (default 0) and `limit` (no limit by default).
        together : bool
            Whether to load the key/value attributes of every result as well.
        """
        schema = self.schema
        if not isinstance(options, FindOptions):
            options = FindOptions(**dict(options or {}))

        where, parameters = compile_criteria(parse_criteria(criteria), schema)
        sql = (
            f"SELECT DISTINCT {PRIMARY_ALIAS}.* FROM {schema.table} {PRIMARY_ALIAS}\n"
            f"LEFT JOIN {schema.kv_table} {KV_ALIAS} "
            f"ON {KV_ALIAS}.{KV_COLUMN_PARENT_ID} = {PRIMARY_ALIAS}.{COLUMN_ID}\n"
        )
        if where:
            sql += f"WHERE {where}\n"
        sql += f"ORDER BY {options.order}"
        if options.limit is not None:
            sql = self._persistence.limit_statement(sql, options.limit, options.offset)
        elif options.offset:
            log.debug("Offset ignored without a limit", extra={"offset": options.offset})

        rows = self._persistence.query(sql, parameters)

        if together and rows:
            kv_data = self._get_kv_data([row[COLUMN_ID] for row in rows])
            rows = [{**row, **kv_data.get(row[COLUMN_ID], {})} for row in rows]

        return [MonitoringRecord.from_row(row) for row in rows]

    # ------------------------------------------------------------------ save

    def save(self, record: MonitoringRecord) -> bool:
        """
        Create or update the record, depending on whether its delivery
        execution is already stored.

        The whole sequence runs in one transaction; on failure nothing is
        written and the driver error propagates.

        Returns
        -------
        bool
            False if the record failed validation, otherwise whether the
            primary row was written.
        """
        if not self._validator(record):
            log.warning(
                "Monitoring record rejected by validation",
                extra={
                    "delivery_execution_id": record.delivery_execution_id,
                    "errors": record.validation_errors(),
                },
            )
            return False

        with self._persistence.transaction():
            record_id = self._find_id(record.delivery_execution_id)
            if record_id is None:
                return self._create(record)
            return self._update(record, record_id)

    def _create(self, record: MonitoringRecord) -> bool:
        schema = self.schema
        data = record.get()
        primary_data, _ = schema.split(data)
        primary_data.pop(COLUMN_ID, None)

        result = self._persistence.insert(schema.table, primary_data) == 1
        record_id = self._persistence.last_insert_id(schema.table)
        record.add_value(COLUMN_ID, record_id)

        self._save_kv_data(record)
        log.info(
            "Monitoring record created",
            extra={"delivery_execution_id": record.delivery_execution_id, "id": record_id},
        )
        return result

    def _update(self, record: MonitoringRecord, record_id: Any) -> bool:
        schema = self.schema
        data = record.get()
        primary_data, _ = schema.split(data)
        primary_data.pop(COLUMN_ID, None)
        primary_data.pop(COLUMN_DELIVERY_EXECUTION_ID, None)

        if primary_data:
            set_clause = ", ".join(f"{column} = %s" for column in primary_data)
            self._persistence.exec(
                f"UPDATE {schema.table} SET {set_clause} WHERE {COLUMN_DELIVERY_EXECUTION_ID} = %s",
                [*primary_data.values(), record.delivery_execution_id],
            )
        record.add_value(COLUMN_ID, record_id)

        self._save_kv_data(record)
        log.debug(
            "Monitoring record updated",
            extra={"delivery_execution_id": record.delivery_execution_id, "id": record_id},
        )
        return True

    def _save_kv_data(self, record: MonitoringRecord) -> None:
        """Replace every key/value row of the record with its current attributes."""
        schema = self.schema
        record_id = record.id
        self._delete_kv_data(record_id)
        _, kv_data = schema.split(record.get())
        for key, value in kv_data.items():
            self._persistence.insert(
                schema.kv_table,
                {
                    KV_COLUMN_PARENT_ID: record_id,
                    KV_COLUMN_KEY: key,
                    KV_COLUMN_VALUE: None if value is None else str(value),
                },
            )

    # ---------------------------------------------------------------- delete

    def delete(self, record: MonitoringRecord) -> bool:
        """
        Delete the record and all of its key/value rows.

        Returns
        -------
        bool
            True if exactly one primary row was removed, False if the delivery
            execution was not stored.
        """
        schema = self.schema
        with self._persistence.transaction():
            record_id = self._find_id(record.delivery_execution_id)
            if record_id is None:
                return False
            self._delete_kv_data(record_id)
            deleted = self._persistence.exec(
                f"DELETE FROM {schema.table} WHERE {COLUMN_DELIVERY_EXECUTION_ID} = %s",
                [record.delivery_execution_id],
            )
        log.info(
            "Monitoring record deleted",
            extra={"delivery_execution_id": record.delivery_execution_id, "id": record_id},
        )
        return deleted == 1

    def _delete_kv_data(self, record_id: Any) -> int:
        return self._persistence.exec(
            f"DELETE FROM {self.schema.kv_table} WHERE {KV_COLUMN_PARENT_ID} = %s",
            [record_id],
        )

    # --------------------------------------------------------------- helpers

    def _find_id(self, delivery_execution_id: str) -> Optional[Any]:
        """Surrogate id of the stored delivery execution, None if it is new."""
        rows = self._persistence.query(
            f"SELECT {COLUMN_ID} FROM {self.schema.table} WHERE {COLUMN_DELIVERY_EXECUTION_ID} = %s",
            [delivery_execution_id],
        )
        return rows[0][COLUMN_ID] if rows else None

    def _get_kv_data(self, record_ids: List[Any]) -> Dict[Any, Dict[str, Any]]:
        placeholders = ", ".join("%s" for _ in record_ids)
        rows = self._persistence.query(
            f"SELECT {KV_COLUMN_PARENT_ID}, {KV_COLUMN_KEY}, {KV_COLUMN_VALUE} "
            f"FROM {self.schema.kv_table} WHERE {KV_COLUMN_PARENT_ID} IN ({placeholders})",
            record_ids,
        )
        result: Dict[Any, Dict[str, Any]] = {}
        for row in rows:
            result.setdefault(row[KV_COLUMN_PARENT_ID], {})[row[KV_COLUMN_KEY]] = row[KV_COLUMN_VALUE]
        return result


__all__ = ["DeliveryMonitoringStore", "Validator"]
