"""
Store Service - the entity store the snapshot pipeline reads from and writes to.

``EntityStore`` is the narrow interface the exporter and importer depend on.
``SqlAlchemyEntityStore`` implements it over the SQLAlchemy models.

Records cross this boundary as plain dicts keyed by column name. Store
bookkeeping columns (created_at, updated_at) are never part of a record.

Writes happen only through ``write_batch``, one transaction per batch: a
batch is either applied completely or not at all.

Usage:
    store = SqlAlchemyEntityStore(session_factory)
    products = store.get_entities(EntityKind.PRODUCT)
    state = store.capture_state(EntityKind.PRODUCT, [p["id"] for p in batch])
    store.write_batch(EntityKind.PRODUCT, batch)
    store.restore_state(state)   # undo the batch
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import literal_column, or_
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from src.models import MODEL_BY_KIND, SaleItem, BulkPricingTier
from src.models.enums import EntityKind
from src.services.database import session_scope
from src.services.exceptions import (
    ConstraintViolation,
    MemoryLimitExceeded,
    ReferenceIntegrityError,
    StorageSpaceInsufficient,
    TransactionFailed,
)
from src.services.logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

Record = Dict[str, Any]

# Fields used to recognise the same real-world entity under a different id
NAME_MATCH_FIELDS: Dict[EntityKind, Tuple[str, ...]] = {
    EntityKind.PRODUCT: ("name", "barcode"),
    EntityKind.CUSTOMER: ("name", "phone"),
    EntityKind.CATEGORY: ("name",),
    EntityKind.SUPPLIER: ("name",),
    EntityKind.EXPENSE_CATEGORY: ("name",),
}


class EntityStore(ABC):
    """Interface of the store collaborator."""

    @abstractmethod
    def get_entities(self, kind: EntityKind) -> List[Record]:
        """All records of a kind, in store order."""

    @abstractmethod
    def get_sale_items(self, sale_id: str) -> List[Record]:
        """Line items of one sale."""

    @abstractmethod
    def get_bulk_pricing_tiers(self, product_id: str) -> List[Record]:
        """Bulk pricing tiers of one product."""

    @abstractmethod
    def write_batch(self, kind: EntityKind, records: List[Record]) -> None:
        """Insert or update a batch of records atomically; raises a SnapshotError on failure."""

    @abstractmethod
    def count(self, kind: EntityKind) -> int:
        """Number of records of a kind."""

    @abstractmethod
    def find_match(
        self, kind: EntityKind, record: Mapping[str, Any]
    ) -> Optional[Tuple[Record, str]]:
        """
        Find an existing record that ``record`` would collide with.

        Returns:
            (existing_record, matched_field) or None. Ids are matched first,
            then the kind's name fields.
        """

    @abstractmethod
    def capture_state(self, kind: EntityKind, ids: Iterable[str]) -> Dict[str, Any]:
        """Before-images of the given ids (None for ids not yet stored)."""

    @abstractmethod
    def restore_state(self, state: Mapping[str, Any]) -> None:
        """Put back the before-images captured by ``capture_state``."""


class SqlAlchemyEntityStore(EntityStore):
    """
    EntityStore backed by the SQLAlchemy models.

    Args:
        session_factory: Factory producing sessions on the target database
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # ========================================================================
    # Reads
    # ========================================================================

    def get_entities(self, kind: EntityKind) -> List[Record]:
        model = MODEL_BY_KIND[kind]
        with session_scope(self._session_factory) as session:
            rows = session.query(model).order_by(literal_column("rowid")).all()
            return [row.to_record() for row in rows]

    def get_sale_items(self, sale_id: str) -> List[Record]:
        with session_scope(self._session_factory) as session:
            rows = (
                session.query(SaleItem)
                .filter(SaleItem.sale_id == sale_id)
                .order_by(literal_column("rowid"))
                .all()
            )
            return [row.to_record() for row in rows]

    def get_bulk_pricing_tiers(self, product_id: str) -> List[Record]:
        with session_scope(self._session_factory) as session:
            rows = (
                session.query(BulkPricingTier)
                .filter(BulkPricingTier.product_id == product_id)
                .order_by(BulkPricingTier.min_quantity, literal_column("rowid"))
                .all()
            )
            return [row.to_record() for row in rows]

    def count(self, kind: EntityKind) -> int:
        with session_scope(self._session_factory) as session:
            return session.query(MODEL_BY_KIND[kind]).count()

    def find_match(
        self, kind: EntityKind, record: Mapping[str, Any]
    ) -> Optional[Tuple[Record, str]]:
        model = MODEL_BY_KIND[kind]
        with session_scope(self._session_factory) as session:
            record_id = record.get("id")
            if record_id:
                existing = session.get(model, record_id)
                if existing is not None:
                    return existing.to_record(), "id"

            conditions = []
            for field_name in NAME_MATCH_FIELDS.get(kind, ()):
                value = record.get(field_name)
                if value:
                    conditions.append(getattr(model, field_name) == value)
            if not conditions:
                return None

            existing = (
                session.query(model)
                .filter(or_(*conditions))
                .order_by(literal_column("rowid"))
                .first()
            )
            if existing is None:
                return None

            matched = next(
                field_name
                for field_name in NAME_MATCH_FIELDS[kind]
                if record.get(field_name) and getattr(existing, field_name) == record.get(field_name)
            )
            return existing.to_record(), matched

    # ========================================================================
    # Writes
    # ========================================================================

    def write_batch(self, kind: EntityKind, records: List[Record]) -> None:
        """
        Upsert a batch of records in one transaction.

        Raises:
            ReferenceIntegrityError: A record points at a parent that is not stored
            ConstraintViolation: A record breaks another store constraint
            StorageSpaceInsufficient: The database ran out of disk space
            TransactionFailed: The transaction could not be committed
            MemoryLimitExceeded: The batch did not fit in memory
        """
        try:
            inserted, updated = self._upsert(kind, records)
        except IntegrityError as e:
            cause = str(e.orig)
            if "foreign key" in cause.lower():
                raise ReferenceIntegrityError([f"{kind.data_key} batch: {cause}"]) from e
            raise ConstraintViolation(
                f"{kind.label.capitalize()} batch breaks a store constraint: {cause}"
            ) from e
        except OperationalError as e:
            cause = str(e.orig)
            if "disk is full" in cause.lower():
                raise StorageSpaceInsufficient(f"the {kind.data_key} batch") from e
            raise TransactionFailed(
                f"{kind.label.capitalize()} batch could not be committed: {cause}"
            ) from e
        except MemoryError as e:
            raise MemoryLimitExceeded(
                f"Not enough memory to write {len(records)} {kind.data_key} records"
            ) from e

        log_operation(
            logger,
            operation="write_batch",
            outcome="success",
            kind=kind.value,
            inserted=inserted,
            updated=updated,
        )

    def _upsert(self, kind: EntityKind, records: List[Record]) -> Tuple[int, int]:
        model = MODEL_BY_KIND[kind]
        columns = set(model.record_columns())
        # Non-null columns with a default take the default when a record has null
        defaulted = {
            column.name
            for column in model.__table__.columns
            if not column.nullable and column.default is not None
        }
        inserted = updated = 0

        with session_scope(self._session_factory) as session:
            for record in records:
                values = {
                    name: value
                    for name, value in record.items()
                    if name in columns and not (value is None and name in defaulted)
                }
                record_id = values.pop("id", None)

                existing = session.get(model, record_id) if record_id else None
                if existing is not None:
                    existing.update_from_dict(values)
                    updated += 1
                    continue

                instance = model(**values)
                if record_id:
                    instance.id = record_id
                session.add(instance)
                inserted += 1

            session.flush()

        return inserted, updated

    def capture_state(self, kind: EntityKind, ids: Iterable[str]) -> Dict[str, Any]:
        model = MODEL_BY_KIND[kind]
        before: Dict[str, Optional[Record]] = {}
        with session_scope(self._session_factory) as session:
            for record_id in ids:
                if not record_id or record_id in before:
                    continue
                existing = session.get(model, record_id)
                before[record_id] = existing.to_record() if existing is not None else None
        return {"kind": kind.value, "before": before}

    def restore_state(self, state: Mapping[str, Any]) -> None:
        kind = EntityKind(state["kind"])
        model = MODEL_BY_KIND[kind]
        restored = deleted = 0

        with session_scope(self._session_factory) as session:
            for record_id, before in state.get("before", {}).items():
                current = session.get(model, record_id)
                if before is None:
                    if current is not None:
                        session.delete(current)
                        deleted += 1
                    continue

                if current is None:
                    values = {name: value for name, value in before.items() if name != "id"}
                    instance = model(**values)
                    instance.id = record_id
                    session.add(instance)
                else:
                    current.update_from_dict(before)
                restored += 1

        log_operation(
            logger,
            operation="restore_state",
            outcome="success",
            kind=kind.value,
            restored=restored,
            deleted=deleted,
        )
