"""
Tests for the SQLAlchemy entity store.

Tests cover:
- Reads in store order, per-parent child lookups, counts
- Upserting batches and their all-or-nothing behaviour
- Conflict matching by id and by name fields
- Before-image capture and restore
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from src.models.enums import EntityKind
from src.services.exceptions import (
    ConstraintViolation,
    ErrorKind,
    MemoryLimitExceeded,
    ReferenceIntegrityError,
    StorageSpaceInsufficient,
    TransactionFailed,
)
from src.utils.uuid_utils import new_id


def product(name, **overrides):
    record = {"id": new_id(), "name": name, "price": 1.0, "cost": 0.5}
    record.update(overrides)
    return record


class TestReads:
    def test_get_entities_in_insertion_order(self, store):
        records = [product(f"P{i}") for i in range(5)]
        store.write_batch(EntityKind.PRODUCT, records)
        assert [r["name"] for r in store.get_entities(EntityKind.PRODUCT)] == [
            "P0",
            "P1",
            "P2",
            "P3",
            "P4",
        ]

    def test_records_exclude_bookkeeping_columns(self, store):
        store.write_batch(EntityKind.PRODUCT, [product("Cola")])
        record = store.get_entities(EntityKind.PRODUCT)[0]
        assert "created_at" not in record
        assert "updated_at" not in record
        assert record["min_stock"] == 10

    def test_child_lookups(self, store, sample_data):
        sale_id = sample_data["sales"][0]["id"]
        assert len(store.get_sale_items(sale_id)) == 2
        assert store.get_sale_items(new_id()) == []

        cola_id = sample_data["products"][0]["id"]
        tiers = store.get_bulk_pricing_tiers(cola_id)
        assert [t["min_quantity"] for t in tiers] == [6, 24]

    def test_count(self, store, sample_data):
        assert store.count(EntityKind.PRODUCT) == 2
        assert store.count(EntityKind.SALE_ITEM) == 2
        assert store.count(EntityKind.EXPENSE) == 1


class TestWriteBatch:
    def test_update_existing_record(self, store):
        record = product("Cola")
        store.write_batch(EntityKind.PRODUCT, [record])
        store.write_batch(EntityKind.PRODUCT, [dict(record, price=2.0)])

        stored = store.get_entities(EntityKind.PRODUCT)
        assert len(stored) == 1
        assert stored[0]["price"] == 2.0

    def test_unknown_fields_ignored(self, store):
        store.write_batch(EntityKind.CATEGORY, [{"id": new_id(), "name": "Dairy", "color": "blue"}])
        assert "color" not in store.get_entities(EntityKind.CATEGORY)[0]

    def test_null_for_defaulted_column_uses_default(self, store):
        store.write_batch(EntityKind.PRODUCT, [product("Cola", quantity=None)])
        assert store.get_entities(EntityKind.PRODUCT)[0]["quantity"] == 0

    def test_failed_batch_writes_nothing(self, store):
        valid = {"id": new_id(), "total": 5.0, "payment_method": "cash"}
        store.write_batch(EntityKind.SALE, [valid])
        items = [
            {"id": new_id(), "sale_id": valid["id"], "product_id": new_id(), "quantity": 1, "price": 1.0},
            {"id": new_id(), "sale_id": new_id(), "product_id": new_id(), "quantity": 1, "price": 1.0},
        ]
        with pytest.raises(ReferenceIntegrityError) as excinfo:
            store.write_batch(EntityKind.SALE_ITEM, items)
        assert isinstance(excinfo.value.__cause__, IntegrityError)
        assert excinfo.value.kind is ErrorKind.REFERENCE_INTEGRITY_ERROR
        assert store.count(EntityKind.SALE_ITEM) == 0

    def test_not_null_failure_is_a_constraint_violation(self, store):
        with pytest.raises(ConstraintViolation) as excinfo:
            store.write_batch(EntityKind.CUSTOMER, [{"id": new_id(), "name": None}])
        assert excinfo.value.kind is ErrorKind.CONSTRAINT_VIOLATION
        assert excinfo.value.message.startswith("Customer batch breaks a store constraint")
        assert store.count(EntityKind.CUSTOMER) == 0

    def test_locked_database_is_a_failed_transaction(self, store, monkeypatch):
        def locked(kind, records):
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(store, "_upsert", locked)
        with pytest.raises(TransactionFailed) as excinfo:
            store.write_batch(EntityKind.PRODUCT, [product("Cola")])
        assert "database is locked" in excinfo.value.message

    def test_full_disk_is_reported_as_storage(self, store, monkeypatch):
        def full(kind, records):
            raise OperationalError("COMMIT", {}, Exception("database or disk is full"))

        monkeypatch.setattr(store, "_upsert", full)
        with pytest.raises(StorageSpaceInsufficient):
            store.write_batch(EntityKind.PRODUCT, [product("Cola")])

    def test_memory_error_is_a_memory_limit(self, store, monkeypatch):
        def exhausted(kind, records):
            raise MemoryError()

        monkeypatch.setattr(store, "_upsert", exhausted)
        with pytest.raises(MemoryLimitExceeded) as excinfo:
            store.write_batch(EntityKind.PRODUCT, [product("Cola")])
        assert excinfo.value.kind is ErrorKind.MEMORY_LIMIT_EXCEEDED


class TestFindMatch:
    def test_match_by_id(self, store):
        record = product("Cola")
        store.write_batch(EntityKind.PRODUCT, [record])
        existing, matched_on = store.find_match(EntityKind.PRODUCT, {"id": record["id"]})
        assert matched_on == "id"
        assert existing["name"] == "Cola"

    def test_match_by_name(self, store):
        record = product("Cola")
        store.write_batch(EntityKind.PRODUCT, [record])
        existing, matched_on = store.find_match(EntityKind.PRODUCT, product("Cola"))
        assert matched_on == "name"
        assert existing["id"] == record["id"]

    def test_match_by_barcode(self, store):
        record = product("Cola", barcode="4000001")
        store.write_batch(EntityKind.PRODUCT, [record])
        _, matched_on = store.find_match(EntityKind.PRODUCT, product("Cola Zero", barcode="4000001"))
        assert matched_on == "barcode"

    def test_no_match(self, store):
        store.write_batch(EntityKind.PRODUCT, [product("Cola")])
        assert store.find_match(EntityKind.PRODUCT, product("Chips")) is None

    def test_kinds_without_name_fields_match_by_id_only(self, store):
        sale = {"id": new_id(), "total": 5.0, "payment_method": "cash"}
        store.write_batch(EntityKind.SALE, [sale])
        assert store.find_match(EntityKind.SALE, dict(sale, id=new_id())) is None


class TestCaptureRestore:
    def test_capture_marks_new_ids(self, store):
        existing = product("Cola")
        store.write_batch(EntityKind.PRODUCT, [existing])
        fresh_id = new_id()

        state = store.capture_state(EntityKind.PRODUCT, [existing["id"], fresh_id])
        assert state["kind"] == "product"
        assert state["before"][existing["id"]]["name"] == "Cola"
        assert state["before"][fresh_id] is None

    def test_restore_undoes_a_batch(self, store):
        existing = product("Cola", price=1.5)
        store.write_batch(EntityKind.PRODUCT, [existing])
        inserted = product("Chips")

        batch = [dict(existing, price=9.9), inserted]
        state = store.capture_state(EntityKind.PRODUCT, [r["id"] for r in batch])
        store.write_batch(EntityKind.PRODUCT, batch)
        store.restore_state(state)

        stored = store.get_entities(EntityKind.PRODUCT)
        assert [r["id"] for r in stored] == [existing["id"]]
        assert stored[0]["price"] == 1.5
