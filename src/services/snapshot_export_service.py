"""
Snapshot Export Service - write a versioned, checksummed snapshot of store data.

An export runs through a fixed sequence of stages:

    idle -> fetching -> filtering -> sanitizing -> building_integrity
         -> writing -> done            (any stage may go to failed)

- fetching: read every kind the selected data type needs from the store.
  Sale items and bulk pricing tiers are looked up per parent, in batches
  sized by the batch planner, checking for cancellation between batches.
- filtering: keep exactly the sections the data type allows.
- sanitizing: clean every record; rejected records are logged and counted.
- building_integrity: record counts, rule manifest, identifier check, then
  the checksum over the finished envelope.
- writing: atomic write of the pretty-printed JSON file.

An export that finds no records still succeeds: it writes an envelope with
empty sections, ``metadata.emptyExport`` set and an ``_empty`` filename suffix.

Usage:
    exporter = SnapshotExporter(store, files, config)
    exporter.on_progress(lambda event: print(event.stage, event.percentage))
    result = exporter.export(DataTypeSelector.PRODUCTS)
    print(exporter.feedback_message(result))
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from src.models.enums import DataTypeSelector, EntityKind
from src.services import integrity_service
from src.services.batch_planner import BatchPlanner
from src.services.error_recovery_service import ErrorRecoveryService
from src.services.exceptions import OperationCancelled
from src.services.file_service import LocalFileSurface
from src.services.logging_utils import get_service_logger, log_operation
from src.services.progress import CancelToken, ProgressCallback, ProgressReporter
from src.services.sanitizer_service import sanitize_section
from src.services.snapshot_results import ExportPreview, ExportResult
from src.services.store_service import EntityStore
from src.utils.config import Config
from src.utils.constants import (
    APP_NAME,
    APP_VERSION,
    EMPTY_EXPORT_SUFFIX,
    ENVELOPE_OVERHEAD_RATIO,
    ESTIMATED_RECORD_BYTES,
    EXPORT_FILENAME_TEMPLATE,
    MIN_ENVELOPE_OVERHEAD_BYTES,
    SIZE_UNITS,
    SNAPSHOT_FORMAT_VERSION,
    UUID_VALIDATION_MARKER,
)
from src.utils.datetime_utils import date_stamp, to_iso, utc_now

logger = get_service_logger(__name__)


# ============================================================================
# Stages
# ============================================================================


class ExportStage(str, Enum):
    """Export state machine stages."""

    IDLE = "idle"
    FETCHING = "fetching"
    FILTERING = "filtering"
    SANITIZING = "sanitizing"
    BUILDING_INTEGRITY = "building_integrity"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


_STAGE_SEQUENCE = [
    ExportStage.IDLE,
    ExportStage.FETCHING,
    ExportStage.FILTERING,
    ExportStage.SANITIZING,
    ExportStage.BUILDING_INTEGRITY,
    ExportStage.WRITING,
    ExportStage.DONE,
]


# ============================================================================
# Envelope
# ============================================================================


@dataclass
class SnapshotEnvelope:
    """The unit of export, in the shape written to the snapshot file."""

    data_type: str
    export_date: str
    metadata: Dict[str, Any]
    data: Dict[str, List[Dict[str, Any]]]
    relationships: Dict[str, Dict[str, str]]
    integrity: integrity_service.IntegrityBlock
    version: str = SNAPSHOT_FORMAT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        """Convert envelope to dictionary for JSON serialization."""
        return {
            "version": self.version,
            "exportDate": self.export_date,
            "dataType": self.data_type,
            "metadata": self.metadata,
            "data": self.data,
            "relationships": self.relationships,
            "integrity": self.integrity.to_dict(),
        }


def build_relationships(
    data: Dict[str, List[Dict[str, Any]]], lookups: Dict[str, List[Dict[str, Any]]]
) -> Dict[str, Dict[str, str]]:
    """
    Build the name lookup tables stored alongside the data.

    Args:
        data: Exported sections (products and sales are read from here)
        lookups: Sections to resolve names from (categories, suppliers, customers)

    Returns:
        productCategories / productSuppliers map product id to category /
        supplier name; saleCustomers maps sale id to customer name. Tables
        without entries are omitted.
    """

    def names(key: str) -> Dict[str, str]:
        return {
            record["id"]: record.get("name", "")
            for record in lookups.get(key, [])
            if _is_key(record.get("id"))
        }

    def resolve(
        records: List[Dict[str, Any]], column: str, table: Dict[str, str]
    ) -> Dict[str, str]:
        resolved = {}
        for record in records:
            record_id, target = record.get("id"), record.get(column)
            if _is_key(record_id) and _is_key(target) and target in table:
                resolved[record_id] = table[target]
        return resolved

    relationships: Dict[str, Dict[str, str]] = {}

    products = data.get("products", [])
    if products:
        product_categories = resolve(products, "category_id", names("categories"))
        product_suppliers = resolve(products, "supplier_id", names("suppliers"))
        if product_categories:
            relationships["productCategories"] = product_categories
        if product_suppliers:
            relationships["productSuppliers"] = product_suppliers

    sales = data.get("sales", [])
    if sales:
        sale_customers = resolve(sales, "customer_id", names("customers"))
        if sale_customers:
            relationships["saleCustomers"] = sale_customers

    return relationships


def _is_key(value: Any) -> bool:
    # Lists and dicts in id columns are unhashable and never match a lookup
    return isinstance(value, str) and value != ""


def build_export_filename(selector: DataTypeSelector, export_time: datetime, empty: bool) -> str:
    """e.g. 'products_export_2024-03-01.json' or 'sales_export_2024-03-01_empty.json'"""
    return EXPORT_FILENAME_TEMPLATE.format(
        data_type=selector.value,
        date=date_stamp(export_time),
        suffix=EMPTY_EXPORT_SUFFIX if empty else "",
    )


def estimate_export_bytes(counts: Dict[str, int]) -> int:
    """Approximate file size for the given per-section record counts."""
    total = sum(ESTIMATED_RECORD_BYTES.get(key, 150) * count for key, count in counts.items())
    if total > 0:
        total += max(MIN_ENVELOPE_OVERHEAD_BYTES, total * ENVELOPE_OVERHEAD_RATIO)
    return int(total)


def format_file_size(size: int) -> str:
    """Human-readable size, e.g. '512 B', '12.3 KB', '1.5 MB'."""
    if size <= 0:
        return "0 KB"
    exponent = 0
    while size >= 1024 ** (exponent + 1) and exponent < len(SIZE_UNITS) - 1:
        exponent += 1
    if exponent == 0:
        return f"{size} {SIZE_UNITS[0]}"
    scaled = round(size / 1024 ** exponent, 1)
    if scaled == int(scaled):
        scaled = int(scaled)
    return f"{scaled} {SIZE_UNITS[exponent]}"


# ============================================================================
# Exporter
# ============================================================================


class SnapshotExporter:
    """
    Exports store data to snapshot files.

    One exporter runs one export at a time; the store is treated as
    exclusively owned for the duration of the call.

    Args:
        store: Entity store to read from
        files: File surface to write snapshot files to
        config: Pipeline configuration
        planner: Batch planner for the per-parent lookup phases
        recovery: Error recovery service (retries for store and file access)
        clock: Source of the export timestamp
    """

    def __init__(
        self,
        store: EntityStore,
        files: LocalFileSurface,
        config: Optional[Config] = None,
        planner: Optional[BatchPlanner] = None,
        recovery: Optional[ErrorRecoveryService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or Config()
        self.store = store
        self.files = files
        self.planner = planner or BatchPlanner(self.config)
        self.recovery = recovery or ErrorRecoveryService(self.config)
        self._clock = clock
        self._progress = ProgressReporter()
        self._stage = ExportStage.IDLE

    @property
    def stage(self) -> ExportStage:
        """Current state machine stage."""
        return self._stage

    def on_progress(self, callback: Optional[ProgressCallback]) -> None:
        """Subscribe a single progress observer (None to unsubscribe)."""
        self._progress.subscribe(callback)

    def _advance(self, stage: ExportStage) -> None:
        expected = _STAGE_SEQUENCE[_STAGE_SEQUENCE.index(self._stage) + 1]
        if stage is not expected:
            raise RuntimeError(f"Invalid export stage transition: {self._stage.value} -> {stage.value}")
        self._stage = stage
        step = _STAGE_SEQUENCE.index(stage)
        self._progress.report(stage.value, step, len(_STAGE_SEQUENCE) - 1)
        log_operation(logger, operation="export", outcome="stage_changed", level=logging.DEBUG, stage=stage.value)

    # ========================================================================
    # Export
    # ========================================================================

    def export(
        self,
        selector: Union[DataTypeSelector, str],
        cancel_token: Optional[CancelToken] = None,
    ) -> ExportResult:
        """
        Export one data type to a snapshot file.

        Args:
            selector: Data type to export
            cancel_token: Checked between batches; cancelling stops the export
                before anything is written

        Returns:
            ExportResult; failures are reported on the result, not raised
        """
        selector = DataTypeSelector(selector)
        result = ExportResult(data_type=selector.value)
        export_time = self._clock()
        found = 0

        self._stage = ExportStage.IDLE
        self.planner.reset()
        log_operation(logger, operation="export", outcome="started", data_type=selector.value)

        try:
            self._advance(ExportStage.FETCHING)
            fetched = self._fetch(selector, cancel_token)
            found = sum(len(records) for records in fetched.values())

            self._advance(ExportStage.FILTERING)
            data = integrity_service.narrow_to_selector(fetched, selector)

            self._advance(ExportStage.SANITIZING)
            data = self._sanitize(data, result)
            record_count = sum(len(records) for records in data.values())
            empty = record_count == 0
            if empty:
                resolution = self.recovery.handle_empty_data_type(selector.label)
                log_operation(
                    logger,
                    operation="export",
                    outcome="empty_export",
                    data_type=selector.value,
                    user_message=resolution.message,
                )

            self._advance(ExportStage.BUILDING_INTEGRITY)
            envelope = self._build_envelope(selector, data, fetched, export_time, empty, result)
            payload = json.dumps(envelope, indent=2, ensure_ascii=False).encode("utf-8")

            self._advance(ExportStage.WRITING)
            filename = build_export_filename(selector, export_time, empty)
            path = self.recovery.run_with_recovery(
                lambda: self.files.write_file(filename, payload), "write_snapshot"
            )

            result.file_path = str(path)
            result.filename = filename
            result.record_count = record_count
            result.empty_export = empty
            result.checksum = envelope["integrity"]["checksum"]
            result.file_size = len(payload)
            for key, records in data.items():
                result.add_entity_count(key, len(records))

            self._advance(ExportStage.DONE)
            log_operation(
                logger,
                operation="export",
                outcome="success",
                data_type=selector.value,
                record_count=record_count,
                path=result.file_path,
            )

        except OperationCancelled as e:
            self._stage = ExportStage.FAILED
            result.cancelled = True
            result.fail(f"{selector.label} export was cancelled. No file was written.")
            log_operation(
                logger,
                operation="export",
                outcome="cancelled",
                level=logging.WARNING,
                data_type=selector.value,
                records_processed=e.records_processed,
            )

        except Exception as e:
            self._stage = ExportStage.FAILED
            resolution = self.recovery.resolve(e)
            result.fail(
                f"{selector.label} export failed after finding {found} records. "
                f"{resolution.message}",
                resolution.kind,
            )
            log_operation(
                logger,
                operation="export",
                outcome="failed",
                level=logging.ERROR,
                data_type=selector.value,
                error_kind=resolution.kind.value if resolution.kind else None,
                error=str(e),
            )

        if self._stage is ExportStage.FAILED:
            self._progress.report(ExportStage.FAILED.value, 0, 0)
        return result

    def _fetch(
        self, selector: DataTypeSelector, cancel_token: Optional[CancelToken]
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Fetch every section the selector needs (plus name lookups for relationships)."""
        fetched: Dict[str, List[Dict[str, Any]]] = {}

        def fetch(kind: EntityKind) -> List[Dict[str, Any]]:
            if kind.data_key not in fetched:
                fetched[kind.data_key] = self.recovery.run_with_recovery(
                    lambda: self.store.get_entities(kind), f"fetch_{kind.value}"
                )
            return fetched[kind.data_key]

        kinds = selector.allowed_kinds
        for kind in kinds:
            if kind in (EntityKind.SALE_ITEM, EntityKind.BULK_PRICING):
                continue
            fetch(kind)

        if EntityKind.SALE in kinds:
            fetch(EntityKind.CUSTOMER)
            fetched[EntityKind.SALE_ITEM.data_key] = self._fetch_children(
                fetched[EntityKind.SALE.data_key],
                self.store.get_sale_items,
                EntityKind.SALE_ITEM,
                cancel_token,
            )

        if EntityKind.BULK_PRICING in kinds:
            fetched[EntityKind.BULK_PRICING.data_key] = self._fetch_children(
                fetch(EntityKind.PRODUCT),
                self.store.get_bulk_pricing_tiers,
                EntityKind.BULK_PRICING,
                cancel_token,
            )

        return fetched

    def _fetch_children(
        self,
        parents: List[Dict[str, Any]],
        lookup: Callable[[str], List[Dict[str, Any]]],
        kind: EntityKind,
        cancel_token: Optional[CancelToken],
    ) -> List[Dict[str, Any]]:
        children: List[Dict[str, Any]] = []
        done = 0
        for batch in self.planner.iter_batches(parents, cancel_token, operation="export"):
            for parent in batch:
                parent_id = parent.get("id")
                if not parent_id:
                    continue
                children.extend(
                    self.recovery.run_with_recovery(
                        lambda: lookup(parent_id), f"fetch_{kind.value}"
                    )
                )
            done += len(batch)
            self._progress.report(ExportStage.FETCHING.value, done, len(parents))
        return children

    def _sanitize(
        self, data: Dict[str, List[Dict[str, Any]]], result: ExportResult
    ) -> Dict[str, List[Dict[str, Any]]]:
        sanitized = {}
        for key, records in data.items():
            kind = EntityKind.from_data_key(key)
            report = sanitize_section(records, kind, self.config.strict_numeric)
            sanitized[key] = report.accepted
            if report.rejected:
                result.warnings.append(
                    f"{report.rejected_count} of {report.total} {key} records failed "
                    "validation and were left out"
                )
        return sanitized

    def _name_lookups(
        self, data: Dict[str, List[Dict[str, Any]]], fetched: Dict[str, List[Dict[str, Any]]]
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Sanitized categories, suppliers and customers to resolve relationship names from."""
        lookups = {}
        for kind in (EntityKind.CATEGORY, EntityKind.SUPPLIER, EntityKind.CUSTOMER):
            key = kind.data_key
            if key in data:
                lookups[key] = data[key]
            elif key in fetched:
                lookups[key] = sanitize_section(
                    fetched[key], kind, self.config.strict_numeric
                ).accepted
        return lookups

    def _build_envelope(
        self,
        selector: DataTypeSelector,
        data: Dict[str, List[Dict[str, Any]]],
        fetched: Dict[str, List[Dict[str, Any]]],
        export_time: datetime,
        empty: bool,
        result: ExportResult,
    ) -> Dict[str, Any]:
        integrity = integrity_service.build_integrity(data, selector)

        violations = integrity_service.validate_identifiers(data)
        if violations:
            integrity.validation_rules.append(UUID_VALIDATION_MARKER)
            result.warnings.append(f"{len(violations)} identifier(s) are not valid UUIDs")
            log_operation(
                logger,
                operation="export",
                outcome="identifier_warnings",
                level=logging.WARNING,
                data_type=selector.value,
                violations=violations[:10],
            )

        envelope = SnapshotEnvelope(
            data_type=selector.value,
            export_date=to_iso(export_time),
            metadata={
                "appName": APP_NAME,
                "appVersion": APP_VERSION,
                "recordCount": sum(len(records) for records in data.values()),
                "dataTypes": list(data.keys()),
                "emptyExport": empty,
                "exportOptions": {"dataType": selector.value},
            },
            data=data,
            relationships=build_relationships(data, self._name_lookups(data, fetched)),
            integrity=integrity,
        ).to_dict()

        integrity_service.ensure_consistent_structure(envelope["data"], selector)
        integrity_service.seal_envelope(envelope)
        return envelope

    # ========================================================================
    # Preview, feedback, sharing
    # ========================================================================

    def preview(self, selector: Union[DataTypeSelector, str]) -> ExportPreview:
        """Record counts and estimated file size for an export, without exporting."""
        selector = DataTypeSelector(selector)
        counts = {kind.data_key: self.store.count(kind) for kind in selector.allowed_kinds}
        estimated = estimate_export_bytes(counts)
        return ExportPreview(
            data_type=selector.value,
            counts=counts,
            estimated_bytes=estimated,
            estimated_size=format_file_size(estimated),
        )

    def feedback_message(self, result: ExportResult) -> str:
        """User-facing one-line outcome of an export."""
        label = DataTypeSelector(result.data_type).label
        if result.cancelled or not result.success:
            return result.error or f"{label} export failed: Unknown error"
        if result.empty_export:
            return (
                f"{label} export completed, but no data was found. "
                "An empty export file has been created for consistency."
            )
        noun = "record" if result.record_count == 1 else "records"
        return f"{label} export completed successfully! {result.record_count} {noun} exported."

    def share(self, result: ExportResult, title: Optional[str] = None):
        """Share a finished export file; returns the shared copy's path."""
        label = DataTypeSelector(result.data_type).label
        return self.files.share(result.file_path, title or f"{label} Export")
