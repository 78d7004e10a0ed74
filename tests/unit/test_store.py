from __future__ import annotations

from typing import Any, Mapping

import pytest

from delivery_monitoring.domain.models import MonitoringRecord
from delivery_monitoring.errors import SchemaError
from delivery_monitoring.monitoring.criteria import Compare, Operator, Or
from delivery_monitoring.monitoring.schema import MonitoringSchema
from delivery_monitoring.monitoring.store import DeliveryMonitoringStore

TABLE = "delivery_monitoring"
KV_TABLE = "kv_delivery_monitoring"

DE_1 = "http://sample/first.rdf#i1450191587554175"
DE_2 = "http://sample/first.rdf#i1450191587554176"
DE_3 = "http://sample/first.rdf#i1450191587554177"


def _record(delivery_execution_id: str, data: Mapping[str, Any]) -> MonitoringRecord:
    record = MonitoringRecord(delivery_execution_id=delivery_execution_id)
    record.set(data)
    return record


@pytest.fixture
def seeded(store: DeliveryMonitoringStore) -> DeliveryMonitoringStore:
    store.save(_record(DE_1, {"status": "active", "start_time": 500, "error_code": "0", "browser": "firefox"}))
    store.save(_record(DE_2, {"status": "active", "start_time": 1500, "error_code": "1"}))
    store.save(_record(DE_3, {"status": "finished", "start_time": 2500, "remaining_time": "30"}))
    return store


def _ids(records) -> list:
    return [record.delivery_execution_id for record in records]


class TestSaveCreate:
    def test_find_returns_saved_attributes(self, store):
        record = _record(
            DE_1,
            {
                "status": "ACTIVE",
                "test_taker": "http://sample/first.rdf#i1450190828500474",
                "start_time": 1450428401,
                "remaining_time": "1200",
                "extended_time": "300",
            },
        )
        assert store.save(record) is True

        found = store.find([{"delivery_execution_id": DE_1}], together=True)

        assert len(found) == 1
        data = found[0].get()
        assert data["status"] == "ACTIVE"
        assert data["test_taker"] == "http://sample/first.rdf#i1450190828500474"
        assert data["start_time"] == 1450428401
        assert data["remaining_time"] == "1200"
        assert data["extended_time"] == "300"
        assert found[0].id == record.id

    def test_surrogate_id_is_written_back(self, store):
        record = _record(DE_1, {"status": "ACTIVE"})
        assert record.id is None
        store.save(record)
        assert isinstance(record.id, int)

    def test_fixed_and_dynamic_attributes_land_in_their_tables(self, store, sqlite_persistence):
        store.save(_record(DE_1, {"status": "ACTIVE", "remaining_time": "1200"}))

        kv_rows = sqlite_persistence.query(
            "SELECT monitoring_key, monitoring_value FROM kv_delivery_monitoring"
        )
        assert kv_rows == [{"monitoring_key": "remaining_time", "monitoring_value": "1200"}]
        primary = sqlite_persistence.query("SELECT status FROM delivery_monitoring")
        assert primary == [{"status": "ACTIVE"}]

    def test_dynamic_values_are_stored_as_text(self, store, sqlite_persistence):
        store.save(_record(DE_1, {"remaining_time": 1200, "note": None}))

        rows = sqlite_persistence.query(
            "SELECT monitoring_key, monitoring_value FROM kv_delivery_monitoring ORDER BY monitoring_key"
        )
        assert rows == [
            {"monitoring_key": "note", "monitoring_value": None},
            {"monitoring_key": "remaining_time", "monitoring_value": "1200"},
        ]

    def test_caller_supplied_id_is_not_inserted(self, store, sqlite_persistence):
        record = _record(DE_1, {"id": 999, "status": "ACTIVE"})
        store.save(record)
        assert record.id != 999
        assert sqlite_persistence.query("SELECT id FROM delivery_monitoring") == [{"id": record.id}]

    def test_round_trips_per_create(self, store, sqlite_persistence):
        sqlite_persistence.statements.clear()
        store.save(_record(DE_1, {"status": "ACTIVE", "a": "1", "b": "2"}))
        # exists-check + primary insert + kv delete + one insert per dynamic attribute
        assert len(sqlite_persistence.statements) == 5


class TestValidation:
    def test_invalid_record_is_not_saved(self, store, sqlite_persistence):
        record = _record("  ", {"status": "ACTIVE"})
        assert store.save(record) is False
        assert sqlite_persistence.count(TABLE) == 0
        assert record.id is None

    def test_injected_validator_overrides_default(self, sqlite_persistence, schema):
        store = DeliveryMonitoringStore(
            sqlite_persistence,
            schema=schema,
            validator=lambda record: "status" in record.data,
        )
        assert store.save(_record(DE_1, {"remaining_time": "5"})) is False
        assert store.save(_record(DE_1, {"status": "ACTIVE"})) is True


class TestSaveUpdate:
    def test_update_replaces_dynamic_attributes(self, store):
        store.save(_record(DE_1, {"status": "ACTIVE", "remaining_time": "1200", "error_code": "0"}))
        store.save(_record(DE_1, {"status": "PAUSED", "remaining_time": "900"}))

        found = store.find([{"delivery_execution_id": DE_1}], together=True)[0].get()

        assert found["status"] == "PAUSED"
        assert found["remaining_time"] == "900"
        assert "error_code" not in found

    def test_disjoint_dynamic_keys_are_not_merged(self, store):
        store.save(_record(DE_1, {"status": "ACTIVE", "a": "1", "b": "2"}))
        store.save(_record(DE_1, {"status": "ACTIVE", "c": "3"}))

        found = store.find([{"delivery_execution_id": DE_1}], together=True)[0]
        dynamic = {key: value for key, value in found.get().items() if not store.schema.is_fixed(key)}

        assert dynamic == {"c": "3"}

    def test_update_keeps_one_primary_row_and_writes_back_id(self, store, sqlite_persistence):
        first = _record(DE_1, {"status": "ACTIVE"})
        store.save(first)
        second = _record(DE_1, {"status": "FINISHED"})

        assert store.save(second) is True

        assert sqlite_persistence.count(TABLE) == 1
        assert second.id == first.id

    def test_update_can_clear_a_fixed_column(self, store):
        store.save(_record(DE_1, {"status": "ACTIVE", "authorized_by": "proctor"}))
        store.save(_record(DE_1, {"status": "ACTIVE", "authorized_by": None}))

        found = store.find([{"delivery_execution_id": DE_1}])[0].get()
        assert found["authorized_by"] is None

    def test_update_with_only_dynamic_attributes(self, store, sqlite_persistence):
        store.save(_record(DE_1, {"status": "ACTIVE", "a": "1"}))
        sqlite_persistence.statements.clear()

        assert store.save(_record(DE_1, {"a": "2"})) is True

        assert not any(sql.startswith("UPDATE") for sql in sqlite_persistence.statements)
        found = store.find([{"a": "2"}], together=True)
        assert _ids(found) == [DE_1]
        assert found[0].get()["status"] == "ACTIVE"

    def test_failed_save_rolls_back(self, store, sqlite_persistence, monkeypatch):
        original_insert = sqlite_persistence.insert

        def failing_insert(table, data):
            if table == KV_TABLE:
                raise RuntimeError("kv insert failed")
            return original_insert(table, data)

        monkeypatch.setattr(sqlite_persistence, "insert", failing_insert)

        with pytest.raises(RuntimeError, match="kv insert failed"):
            store.save(_record(DE_1, {"status": "ACTIVE", "remaining_time": "1"}))

        assert sqlite_persistence.count(TABLE) == 0
        assert sqlite_persistence.count(KV_TABLE) == 0


class TestFind:
    def test_implicit_and(self, seeded):
        found = seeded.find([{"status": "active"}, {"start_time": ">1000"}])
        assert _ids(found) == [DE_2]

    def test_or_token_returns_union(self, seeded):
        found = seeded.find([{"status": "active"}, "OR", {"start_time": ">1000"}])
        assert _ids(found) == [DE_1, DE_2, DE_3]

    def test_single_nested_list_unwraps(self, seeded):
        nested = seeded.find([[{"status": "finished"}]])
        flat = seeded.find([{"status": "finished"}])
        assert _ids(nested) == _ids(flat) == [DE_3]

    def test_dynamic_attribute_predicate(self, seeded):
        assert _ids(seeded.find([{"error_code": "1"}])) == [DE_2]

    def test_missing_dynamic_attribute_never_matches(self, seeded):
        for value in ("30", "<>30", ">0", "<999", "LIKE %", "NOT LIKE x%"):
            found = seeded.find([{"remaining_time": value}])
            assert DE_1 not in _ids(found)
            assert DE_2 not in _ids(found)

    def test_combined_condition(self, seeded):
        found = seeded.find(
            [
                {"status": "active"},
                "AND",
                [{"error_code": "0"}, "OR", {"error_code": "1"}],
            ]
        )
        assert _ids(found) == [DE_1, DE_2]

    def test_results_are_distinct(self, seeded):
        # DE_1 has two kv rows; the join must not duplicate it.
        found = seeded.find([{"status": "active"}, "OR", {"error_code": "0"}])
        assert _ids(found) == [DE_1, DE_2]

    def test_empty_criteria_returns_everything(self, seeded):
        assert _ids(seeded.find()) == [DE_1, DE_2, DE_3]
        assert _ids(seeded.find([])) == [DE_1, DE_2, DE_3]

    def test_expression_tree(self, seeded):
        tree = Or(Compare("start_time", Operator.LT, 1000), Compare("remaining_time", Operator.EQ, "30"))
        assert _ids(seeded.find(tree)) == [DE_1, DE_3]

    def test_order_offset_and_limit(self, seeded):
        found = seeded.find(options={"order": "start_time DESC", "limit": 2, "offset": 1})
        assert _ids(found) == [DE_2, DE_1]

    def test_without_together_dynamic_attributes_are_omitted(self, seeded):
        found = seeded.find([{"delivery_execution_id": DE_3}])[0].get()
        assert "remaining_time" not in found
        assert found["status"] == "finished"

    def test_together_loads_attributes_in_one_extra_query(self, seeded, sqlite_persistence):
        sqlite_persistence.statements.clear()

        found = seeded.find(together=True)

        assert len(sqlite_persistence.statements) == 2
        assert found[0].get()["error_code"] == "0"
        assert found[2].get()["remaining_time"] == "30"

    def test_blank_key_is_skipped(self, seeded):
        found = seeded.find([{"status": "finished"}, "OR", {"  ": "x"}])
        assert _ids(found) == [DE_3]

    def test_null_fixed_column(self, seeded):
        assert _ids(seeded.find([{"end_time": None}])) == [DE_1, DE_2, DE_3]

    def test_records_can_be_saved_again(self, seeded):
        record = seeded.find([{"delivery_execution_id": DE_3}], together=True)[0]
        record.add_value("status", "terminated")

        assert seeded.save(record) is True

        again = seeded.find([{"delivery_execution_id": DE_3}], together=True)[0].get()
        assert again["status"] == "terminated"
        assert again["remaining_time"] == "30"


class TestDelete:
    def test_delete_unsaved_record_returns_false(self, store):
        assert store.delete(MonitoringRecord(delivery_execution_id=DE_1)) is False

    def test_delete_removes_primary_and_kv_rows(self, seeded, sqlite_persistence):
        deleted_id = seeded.find([{"delivery_execution_id": DE_1}])[0].id
        kv_before = sqlite_persistence.count(KV_TABLE)

        assert seeded.delete(MonitoringRecord(delivery_execution_id=DE_1)) is True

        assert _ids(seeded.find()) == [DE_2, DE_3]
        orphans = sqlite_persistence.query(
            f"SELECT id FROM {KV_TABLE} WHERE parent_id = %s", [deleted_id]
        )
        assert orphans == []
        # error_code and browser
        assert sqlite_persistence.count(KV_TABLE) == kv_before - 2

    def test_delete_twice(self, seeded):
        record = MonitoringRecord(delivery_execution_id=DE_3)
        assert seeded.delete(record) is True
        assert seeded.delete(record) is False


class TestSchemaIntrospection:
    def test_columns_are_introspected_once(self, introspecting_store, sqlite_persistence):
        introspecting_store.save(_record(DE_1, {"status": "ACTIVE", "remaining_time": "5"}))
        introspecting_store.find([{"remaining_time": "5"}])
        introspecting_store.find([{"status": "ACTIVE"}], together=True)

        assert sqlite_persistence.column_lookups == 1
        assert introspecting_store.schema.columns == MonitoringSchema().columns

    def test_classification_uses_introspected_columns(self, introspecting_store, sqlite_persistence):
        sqlite_persistence.conn.execute("ALTER TABLE delivery_monitoring ADD COLUMN remaining_time TEXT")

        introspecting_store.save(_record(DE_1, {"status": "ACTIVE", "remaining_time": "5"}))

        assert sqlite_persistence.count(KV_TABLE) == 0
        row = sqlite_persistence.query("SELECT remaining_time FROM delivery_monitoring")
        assert row == [{"remaining_time": "5"}]

    def test_missing_table_raises(self, sqlite_persistence):
        store = DeliveryMonitoringStore(sqlite_persistence, table="no_such_table")
        with pytest.raises(SchemaError):
            store.find()
