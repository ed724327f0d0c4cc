"""
End-to-end export -> import tests across two databases.

Each test exports from the seeded store, imports the file into a fresh
database and compares what the two stores hold.
"""

import pytest

from src.models.base import Base
from src.models.enums import DataTypeSelector, EntityKind
from src.services.database import create_database_engine, create_session_factory, init_database
from src.services.snapshot_import_service import SnapshotImporter
from src.services.store_service import SqlAlchemyEntityStore


@pytest.fixture
def target_store():
    """A second, empty database to import into."""
    engine = create_database_engine("sqlite:///:memory:")
    init_database(engine)
    yield SqlAlchemyEntityStore(create_session_factory(engine))
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def target_importer(target_store, file_surface, config, recovery):
    return SnapshotImporter(target_store, file_surface, config, recovery=recovery)


def by_id(records):
    return sorted(records, key=lambda record: record["id"])


def test_complete_roundtrip(exporter, store, sample_data, target_importer, target_store):
    exported = exporter.export("complete")
    assert exported.success, exported.error

    result = target_importer.import_snapshot(exported.file_path, "complete")

    assert result.success, result.error
    assert result.imported == exported.record_count
    for kind in EntityKind:
        assert by_id(target_store.get_entities(kind)) == by_id(store.get_entities(kind)), kind


@pytest.mark.parametrize(
    "selector",
    [selector for selector in DataTypeSelector if selector is not DataTypeSelector.COMPLETE],
)
def test_selective_roundtrip(selector, exporter, store, sample_data, target_importer, target_store):
    exported = exporter.export(selector)
    result = target_importer.import_snapshot(exported.file_path, selector)

    assert result.success, result.error
    for kind in EntityKind:
        if selector.allows(kind):
            assert by_id(target_store.get_entities(kind)) == by_id(store.get_entities(kind))
        else:
            assert target_store.count(kind) == 0


def test_second_import_updates_instead_of_duplicating(exporter, sample_data, target_importer, target_store):
    path = exporter.export("products").file_path
    target_importer.import_snapshot(path, "products")
    again = target_importer.import_snapshot(path, "products")

    assert again.success
    assert again.imported == 0
    assert again.updated == 7
    assert target_store.count(EntityKind.PRODUCT) == 2


def test_skip_mode_keeps_target_edits(exporter, sample_data, target_importer, target_store):
    path = exporter.export("customers").file_path
    target_importer.import_snapshot(path, "customers")

    edited = dict(target_store.get_entities(EntityKind.CUSTOMER)[0], phone="555-0000")
    target_store.write_batch(EntityKind.CUSTOMER, [edited])

    result = target_importer.import_snapshot(path, "customers", "skip")
    assert result.skipped == 1
    assert target_store.get_entities(EntityKind.CUSTOMER)[0]["phone"] == "555-0000"


def test_sales_file_imported_as_customers(exporter, sample_data, target_importer, target_store):
    path = exporter.export("sales").file_path
    result = target_importer.import_snapshot(path, "customers")

    assert not result.success
    assert result.available_data_types == ["sales"]
    assert "Available data types: sales" in result.error
    for kind in EntityKind:
        assert target_store.count(kind) == 0
