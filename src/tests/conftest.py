"""Pytest configuration and fixtures for snapshot pipeline tests."""

import copy
import json
from collections import OrderedDict
from datetime import datetime, timezone

import pytest

from src.models.base import Base
from src.models.enums import EntityKind
from src.services.database import create_database_engine, create_session_factory, init_database
from src.services.error_recovery_service import ErrorRecoveryService
from src.services.file_service import LocalFileSurface
from src.services.integrity_service import seal_envelope
from src.services.snapshot_export_service import SnapshotExporter
from src.services.snapshot_import_service import SnapshotImporter
from src.services.store_service import NAME_MATCH_FIELDS, EntityStore, SqlAlchemyEntityStore
from src.utils.config import Config
from src.utils.uuid_utils import new_id

FIXED_EXPORT_TIME = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)


# ============================================================================
# In-memory store
# ============================================================================


class InMemoryEntityStore(EntityStore):
    """EntityStore over plain dicts; hands back exactly what it was given."""

    def __init__(self):
        self.tables = {kind: OrderedDict() for kind in EntityKind}
        self.write_calls = []

    def seed(self, kind, records):
        for record in records:
            self.tables[kind][record.get("id") or new_id()] = record

    def get_entities(self, kind):
        return list(self.tables[kind].values())

    def get_sale_items(self, sale_id):
        return [
            item for item in self.tables[EntityKind.SALE_ITEM].values()
            if item.get("sale_id") == sale_id
        ]

    def get_bulk_pricing_tiers(self, product_id):
        tiers = [
            tier for tier in self.tables[EntityKind.BULK_PRICING].values()
            if tier.get("product_id") == product_id
        ]
        return sorted(tiers, key=lambda tier: tier["min_quantity"])

    def write_batch(self, kind, records):
        self.write_calls.append((kind, len(records)))
        for record in records:
            self.tables[kind][record["id"]] = dict(record)

    def count(self, kind):
        return len(self.tables[kind])

    def find_match(self, kind, record):
        existing = self.tables[kind].get(record.get("id"))
        if existing is not None:
            return dict(existing), "id"
        for stored in self.tables[kind].values():
            for field_name in NAME_MATCH_FIELDS.get(kind, ()):
                value = record.get(field_name)
                if value and stored.get(field_name) == value:
                    return dict(stored), field_name
        return None

    def capture_state(self, kind, ids):
        before = {}
        for record_id in ids:
            stored = self.tables[kind].get(record_id)
            before[record_id] = copy.deepcopy(stored) if stored is not None else None
        return {"kind": kind.value, "before": before}

    def restore_state(self, state):
        table = self.tables[EntityKind(state["kind"])]
        for record_id, before in state["before"].items():
            if before is None:
                table.pop(record_id, None)
            else:
                table[record_id] = before


# ============================================================================
# Database fixtures
# ============================================================================


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite engine with every table created."""
    engine = create_database_engine("sqlite:///:memory:")
    init_database(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_db(engine):
    """Session factory bound to the in-memory database."""
    return create_session_factory(engine)


@pytest.fixture
def store(test_db):
    return SqlAlchemyEntityStore(test_db)


@pytest.fixture
def memory_store():
    return InMemoryEntityStore()


# ============================================================================
# Pipeline fixtures
# ============================================================================


@pytest.fixture
def config(tmp_path):
    """Config rooted in tmp_path with pauses and retry waits disabled."""
    return Config(
        base_dir=tmp_path,
        overrides={"batch_pause_seconds": 0, "retry_delay_scale": 0},
    )


@pytest.fixture
def file_surface(tmp_path):
    return LocalFileSurface(tmp_path / "exports", tmp_path / "outbox")


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_EXPORT_TIME


@pytest.fixture
def recovery(config):
    return ErrorRecoveryService(config, sleep=lambda seconds: None)


@pytest.fixture
def exporter(store, file_surface, config, recovery, fixed_clock):
    return SnapshotExporter(store, file_surface, config, recovery=recovery, clock=fixed_clock)


@pytest.fixture
def importer(store, file_surface, config, recovery):
    return SnapshotImporter(store, file_surface, config, recovery=recovery)


@pytest.fixture
def sample_data(store):
    """Seed one or more records of every kind, linked the way real data is."""
    beverages = {"id": new_id(), "name": "Beverages", "description": "Soft drinks"}
    snacks = {"id": new_id(), "name": "Snacks", "description": None}
    supplier = {"id": new_id(), "name": "Acme Wholesale", "phone": "555-0100"}
    cola = {
        "id": new_id(),
        "name": "Cola 330ml",
        "barcode": "4000001",
        "category_id": beverages["id"],
        "supplier_id": supplier["id"],
        "price": 1.5,
        "cost": 0.8,
        "quantity": 48,
    }
    chips = {
        "id": new_id(),
        "name": "Salted Chips",
        "barcode": "4000002",
        "category_id": snacks["id"],
        "supplier_id": None,
        "price": 2.25,
        "cost": 1.1,
        "quantity": 20,
    }
    customer = {"id": new_id(), "name": "Dana Reyes", "phone": "555-0199"}
    sale = {
        "id": new_id(),
        "total": 5.25,
        "payment_method": "cash",
        "customer_id": customer["id"],
        "date": "2024-02-28T10:15:00.000Z",
    }
    sale_items = [
        {"id": new_id(), "sale_id": sale["id"], "product_id": cola["id"], "quantity": 2, "price": 1.5},
        {"id": new_id(), "sale_id": sale["id"], "product_id": chips["id"], "quantity": 1, "price": 2.25},
    ]
    tiers = [
        {"id": new_id(), "product_id": cola["id"], "min_quantity": 6, "bulk_price": 1.3},
        {"id": new_id(), "product_id": cola["id"], "min_quantity": 24, "bulk_price": 1.1},
    ]
    rent = {"id": new_id(), "name": "Rent"}
    expense = {
        "id": new_id(),
        "category_id": rent["id"],
        "amount": 850.0,
        "description": "March rent",
        "date": "2024-03-01",
    }
    movement = {
        "id": new_id(),
        "product_id": cola["id"],
        "movement_type": "restock",
        "quantity": 24,
        "supplier_id": supplier["id"],
        "unit_cost": 0.8,
    }

    store.write_batch(EntityKind.CATEGORY, [beverages, snacks])
    store.write_batch(EntityKind.SUPPLIER, [supplier])
    store.write_batch(EntityKind.PRODUCT, [cola, chips])
    store.write_batch(EntityKind.BULK_PRICING, tiers)
    store.write_batch(EntityKind.CUSTOMER, [customer])
    store.write_batch(EntityKind.SALE, [sale])
    store.write_batch(EntityKind.SALE_ITEM, sale_items)
    store.write_batch(EntityKind.EXPENSE_CATEGORY, [rent])
    store.write_batch(EntityKind.EXPENSE, [expense])
    store.write_batch(EntityKind.STOCK_MOVEMENT, [movement])

    return {
        "categories": [beverages, snacks],
        "suppliers": [supplier],
        "products": [cola, chips],
        "bulkPricing": tiers,
        "customers": [customer],
        "sales": [sale],
        "saleItems": sale_items,
        "expenseCategories": [rent],
        "expenses": [expense],
        "stockMovements": [movement],
    }


# ============================================================================
# Snapshot file helpers
# ============================================================================


def build_envelope(data_type, data, seal=True):
    """Minimal well-formed envelope around ``data``."""
    envelope = {
        "version": "2.0",
        "exportDate": "2024-03-01T12:30:00.000Z",
        "dataType": data_type,
        "metadata": {"recordCount": sum(len(records) for records in data.values())},
        "data": data,
        "relationships": {},
        "integrity": {
            "checksum": "",
            "recordCounts": {key: len(records) for key, records in data.items()},
            "validationRules": [],
        },
    }
    if seal:
        seal_envelope(envelope)
    return envelope


@pytest.fixture
def write_snapshot(tmp_path):
    """Write an envelope (or raw text) to a file and return its path."""

    def _write(envelope, filename="snapshot.json"):
        path = tmp_path / filename
        if isinstance(envelope, str):
            path.write_text(envelope, encoding="utf-8")
        else:
            path.write_text(json.dumps(envelope, indent=2), encoding="utf-8")
        return path

    return _write
