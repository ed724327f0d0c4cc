"""
Snapshot Import Service - apply a snapshot file to the store.

Import mirrors export:

1. Read and parse the file (missing file, undecodable text and invalid JSON
   each fail with their own error).
2. Check the envelope shape and verify its checksum.
3. Check that the file holds the requested data type; if not, stop and list
   the data types it does hold.
4. Sanitize every record of the requested sections; malformed records and
   corrupted sections are skipped and reported.
5. Check every id and foreign key. Unlike export, a bad identifier is fatal
   here because it would be written as a join key.
6. Detect conflicts with records already in the store and apply the chosen
   conflict resolution (update, skip, or ask).
7. Write kinds parents-first, in batches sized by the batch planner. A
   checkpoint is taken before every batch; a batch that still fails after
   its retries is rolled back and the import stops.

Usage:
    importer = SnapshotImporter(store, files, config)
    result = importer.import_snapshot(path, DataTypeSelector.PRODUCTS)
    print(result.get_summary())
"""

import json
import logging
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from src.models.enums import IMPORT_KIND_ORDER, DataTypeSelector, EntityKind
from src.services import integrity_service
from src.services.batch_planner import BatchPlanner
from src.services.error_recovery_service import Checkpoint, ErrorRecoveryService
from src.services.exceptions import (
    CorruptedDataSection,
    FileCorrupted,
    InvalidFileFormat,
    MissingDataTypeError,
    OperationCancelled,
    ReferenceIntegrityError,
    SnapshotError,
)
from src.services.file_service import LocalFileSurface
from src.services.logging_utils import get_service_logger, log_operation
from src.services.progress import CancelToken, ProgressCallback, ProgressReporter
from src.services.sanitizer_service import sanitize, sanitize_section
from src.services.snapshot_results import (
    AvailabilityReport,
    Conflict,
    ImportPreview,
    ImportResult,
    ValidationReport,
)
from src.services.store_service import EntityStore
from src.utils.config import Config
from src.utils.constants import PREVIEW_SAMPLE_SIZE, SNAPSHOT_FORMAT_VERSION
from src.utils.uuid_utils import is_foreign_key_field, new_id

logger = get_service_logger(__name__)

Records = Dict[str, List[Dict[str, Any]]]


class ConflictResolution(str, Enum):
    """What to do with imported records that match records already stored."""

    UPDATE = "update"
    SKIP = "skip"
    ASK = "ask"


def _display_name(record: Mapping[str, Any]) -> str:
    for field_name in ("name", "description", "reference_number", "id"):
        value = record.get(field_name)
        if value:
            return str(value)
    return "unnamed"


def _describe_found(result: ImportResult) -> str:
    """What the file turned out to hold, for failure messages."""
    found = [f"{count} {key}" for key, count in result.detailed_counts.items() if count]
    if found:
        return "file holds " + ", ".join(found)
    if result.corrupted_sections:
        return "file holds only corrupted sections"
    return "no importable records were found"


# ============================================================================
# Envelope checks
# ============================================================================


def check_envelope_format(envelope: Any) -> ValidationReport:
    """
    Structural check of a parsed snapshot file.

    Errors mean the file is not a usable snapshot; warnings are reported
    but do not stop an import.
    """
    report = ValidationReport()
    if not isinstance(envelope, Mapping):
        report.errors.append("Import file does not contain a valid JSON object")
        return report

    if "dataType" not in envelope:
        report.errors.append("Missing dataType field")
    else:
        try:
            DataTypeSelector.parse(envelope["dataType"])
        except ValueError as e:
            report.errors.append(str(e))

    if "data" not in envelope:
        report.errors.append('Missing "data" field in import file')
    elif not isinstance(envelope["data"], Mapping):
        report.errors.append("Data field is not a valid object")

    if "version" not in envelope:
        report.warnings.append("Missing version field")
    elif envelope["version"] != SNAPSHOT_FORMAT_VERSION:
        report.warnings.append(
            f"Snapshot version {envelope['version']} differs from {SNAPSHOT_FORMAT_VERSION}"
        )
    if "exportDate" not in envelope:
        report.warnings.append("Missing exportDate field")
    return report


def check_envelope_integrity(envelope: Mapping[str, Any]) -> ValidationReport:
    """
    Checksum and count check of a structurally valid envelope.

    A checksum mismatch is an error. A missing checksum, counts that
    disagree with the data and duplicate product names are warnings.
    """
    report = ValidationReport()

    integrity = envelope.get("integrity")
    stored = integrity.get("checksum") if isinstance(integrity, Mapping) else None
    if not stored:
        report.warnings.append("File has no checksum; its integrity cannot be verified")
    elif not integrity_service.verify_checksum(envelope):
        report.errors.append(
            "Checksum mismatch: the file was modified or truncated after export"
        )

    for mismatch in integrity_service.find_count_mismatches(envelope):
        report.warnings.append(f"Record count mismatch: {mismatch}")

    products = envelope.get("data", {}).get("products")
    if isinstance(products, list):
        seen = set()
        for product in products:
            name = product.get("name") if isinstance(product, Mapping) else None
            if not name:
                continue
            if name in seen:
                report.warnings.append(f"Duplicate product name: {name}")
            seen.add(name)

    return report


# ============================================================================
# Importer
# ============================================================================


class SnapshotImporter:
    """
    Imports snapshot files into the store.

    Args:
        store: Entity store to write to
        files: File surface to read snapshot files from
        config: Pipeline configuration
        planner: Batch planner for the write phase
        recovery: Error recovery service (retries, checkpoints, messages)
        clock: Monotonic clock used for the import duration
    """

    def __init__(
        self,
        store: EntityStore,
        files: LocalFileSurface,
        config: Optional[Config] = None,
        planner: Optional[BatchPlanner] = None,
        recovery: Optional[ErrorRecoveryService] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or Config()
        self.store = store
        self.files = files
        self.planner = planner or BatchPlanner(self.config)
        self.recovery = recovery or ErrorRecoveryService(self.config)
        self._clock = clock
        self._progress = ProgressReporter()

    def on_progress(self, callback: Optional[ProgressCallback]) -> None:
        """Subscribe a single progress observer (None to unsubscribe)."""
        self._progress.subscribe(callback)

    # ========================================================================
    # Reading and validation
    # ========================================================================

    def load_envelope(self, path: Union[str, Path]) -> Dict[str, Any]:
        """
        Read and parse a snapshot file.

        Raises:
            SnapshotFileNotFound: If the file does not exist
            FileCorrupted: If the file is not UTF-8 text
            InvalidFileFormat: If the file is not a JSON object
        """
        raw = self.recovery.run_with_recovery(lambda: self.files.read_file(path), "read_snapshot")
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FileCorrupted("file is not valid UTF-8 text", str(path)) from e
        try:
            envelope = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidFileFormat(f"invalid JSON ({e.msg} at line {e.lineno})", str(path)) from e
        if not isinstance(envelope, dict):
            raise InvalidFileFormat("top level is not a JSON object", str(path))
        return envelope

    def validate_envelope(self, envelope: Any) -> ValidationReport:
        """Format report, plus the integrity report when the format is usable."""
        report = check_envelope_format(envelope)
        if report.is_valid:
            report.extend(check_envelope_integrity(envelope))
        return report

    def validate_file(self, path: Union[str, Path]) -> ValidationReport:
        """
        Check a snapshot file without importing it.

        Returns:
            ValidationReport; unreadable files are reported as errors, not raised
        """
        try:
            envelope = self.load_envelope(path)
        except SnapshotError as e:
            return ValidationReport(errors=[e.message])

        report = self.validate_envelope(envelope)
        if report.is_valid:
            availability = self.check_availability(envelope)
            report.availability = availability
            report.warnings.extend(availability.validation_errors)
            if not availability.available_data_types:
                report.errors.append(availability.message)

        log_operation(
            logger,
            operation="validate_file",
            outcome="valid" if report.is_valid else "invalid",
            path=str(path),
            errors=len(report.errors),
            warnings=len(report.warnings),
        )
        return report

    def check_availability(self, envelope: Mapping[str, Any]) -> AvailabilityReport:
        """
        Work out which data types a parsed snapshot actually holds.

        A section counts only its records that pass sanitizing. A section
        that is not a list, or that holds records but none valid, is
        reported as corrupted.
        """
        data = envelope.get("data") if isinstance(envelope, Mapping) else None
        if not isinstance(data, Mapping):
            return AvailabilityReport(
                message='Import file does not contain valid data structure (missing "data" field)',
                validation_errors=['Missing "data" field in import file'],
            )

        report = AvailabilityReport()
        strict = self.config.strict_numeric
        for key, section in data.items():
            try:
                kind = EntityKind.from_data_key(key)
            except ValueError:
                report.validation_errors.append(f'Unknown data section "{key}" will be ignored')
                continue

            if section is None:
                report.detailed_counts[key] = 0
                continue
            if not isinstance(section, list):
                report.validation_errors.append(
                    f'Data section "{key}" is not an array (found {type(section).__name__})'
                )
                report.corrupted_sections.append(key)
                report.detailed_counts[key] = 0
                continue

            valid = sum(1 for record in section if sanitize(record, kind, strict)[1])
            report.detailed_counts[key] = valid
            if valid < len(section):
                report.validation_errors.append(
                    f'Data section "{key}" has {len(section) - valid} corrupted/invalid '
                    f"records out of {len(section)}"
                )
                if valid == 0:
                    report.corrupted_sections.append(key)

        present = {key for key, count in report.detailed_counts.items() if count > 0}
        report.available_data_types = [
            selector.value
            for selector in DataTypeSelector
            if selector is not DataTypeSelector.COMPLETE
            and any(kind.data_key in present for kind in selector.allowed_kinds)
        ]

        if not report.available_data_types:
            if report.corrupted_sections:
                report.message = (
                    "Import file contains only corrupted data sections: "
                    f"{', '.join(report.corrupted_sections)}"
                )
            else:
                report.message = "Import file does not contain any valid data"
        elif report.corrupted_sections:
            report.message = (
                "Some data sections are corrupted and will be skipped: "
                f"{', '.join(report.corrupted_sections)}"
            )
        else:
            report.message = f"Available data types: {', '.join(report.available_data_types)}"
        return report

    # ========================================================================
    # Preview and conflicts
    # ========================================================================

    def preview(
        self,
        path: Union[str, Path],
        selector: Union[DataTypeSelector, str] = DataTypeSelector.COMPLETE,
    ) -> ImportPreview:
        """
        Describe what importing a file would do, without writing anything.

        Raises:
            SnapshotError: If the file cannot be read or parsed
        """
        selector = DataTypeSelector(selector)
        envelope = self.load_envelope(path)
        preview = ImportPreview(
            data_type=selector.value,
            validation=self.validate_envelope(envelope),
            availability=self.check_availability(envelope),
        )

        data = envelope.get("data")
        if not isinstance(data, Mapping):
            return preview

        accepted: Records = {}
        for kind in selector.allowed_kinds:
            section = data.get(kind.data_key)
            if not isinstance(section, list):
                continue
            records = sanitize_section(section, kind, self.config.strict_numeric).accepted
            accepted[kind.data_key] = records
            preview.counts[kind.data_key] = len(records)
            preview.samples[kind.data_key] = records[:PREVIEW_SAMPLE_SIZE]

        preview.conflicts = self.detect_conflicts(accepted)
        return preview

    def detect_conflicts(self, data: Mapping[str, List[Dict[str, Any]]]) -> List[Conflict]:
        """
        Find imported records that collide with records already in the store.

        Records are matched by id first, then by name fields (product name or
        barcode, customer name or phone, category and supplier names).
        """
        conflicts = []
        for kind in IMPORT_KIND_ORDER:
            for record in data.get(kind.data_key) or []:
                match = self.store.find_match(kind, record)
                if match is None:
                    continue
                existing, matched_on = match
                conflicts.append(
                    Conflict(
                        section=kind.data_key,
                        record_id=record.get("id"),
                        record_name=_display_name(record),
                        existing_id=existing["id"],
                        matched_on=matched_on,
                    )
                )

        if conflicts:
            log_operation(
                logger,
                operation="detect_conflicts",
                outcome="conflicts_found",
                count=len(conflicts),
            )
        return conflicts

    # ========================================================================
    # Import
    # ========================================================================

    def import_snapshot(
        self,
        path: Union[str, Path],
        selector: Union[DataTypeSelector, str] = DataTypeSelector.COMPLETE,
        conflict_resolution: Union[ConflictResolution, str] = ConflictResolution.UPDATE,
        cancel_token: Optional[CancelToken] = None,
    ) -> ImportResult:
        """
        Import one data type from a snapshot file.

        Args:
            path: Snapshot file to import
            selector: Data type to import from the file
            conflict_resolution: "update" overwrites matching records, "skip"
                keeps the stored ones, "ask" returns the conflicts without
                writing anything
            cancel_token: Checked between batches; batches already written are kept

        Returns:
            ImportResult; failures are reported on the result, not raised
        """
        selector = DataTypeSelector(selector)
        mode = ConflictResolution(conflict_resolution)
        result = ImportResult(data_type=selector.value)
        started = self._clock()

        self.planner.reset()
        log_operation(
            logger,
            operation="import",
            outcome="started",
            data_type=selector.value,
            path=str(path),
            conflict_resolution=mode.value,
        )

        try:
            self._progress.report("reading", 0, 1)
            envelope = self.load_envelope(path)

            self._progress.report("validating", 0, 1)
            availability = self.check_availability(envelope)
            result.available_data_types = availability.available_data_types
            result.detailed_counts = availability.detailed_counts
            result.corrupted_sections = availability.corrupted_sections
            self._verify_envelope(envelope, result)

            data = self._select_sections(envelope["data"], selector, availability, result)
            if data is not None:
                data = self._sanitize(data, result)
                self._assign_ids(data)

                violations = integrity_service.validate_identifiers(data)
                if violations:
                    raise ReferenceIntegrityError(violations)

                self._progress.report("detecting_conflicts", 0, 1)
                conflicts = self.detect_conflicts(data)
                result.conflicts = conflicts

                if conflicts and mode is ConflictResolution.ASK:
                    result.success = False
                    result.validation_message = (
                        "Conflicts detected. Please resolve them to continue."
                    )
                    result.error = result.validation_message
                else:
                    data = self._apply_conflict_resolution(data, conflicts, mode, result)
                    if self._write_all(data, selector, result, cancel_token):
                        result.validation_message = (
                            f"Successfully processed {selector.label.lower()}. "
                            f"{result.imported} records imported, {result.updated} updated, "
                            f"{result.skipped} skipped across "
                            f"{len(result.processed_data_types)} data types."
                        )

        except OperationCancelled as e:
            result.cancelled = True
            result.fail(
                f"{selector.label} import was cancelled after {e.records_processed} records "
                f"of the current section. Batches written before cancelling were kept."
            )

        except Exception as e:
            resolution = self.recovery.resolve(e)
            result.fail(
                f"{selector.label} import failed; {_describe_found(result)}. {resolution.message}",
                resolution.kind,
            )
            result.validation_message = result.error

        result.duration = self._clock() - started
        self._progress.report("done" if result.success else "failed", 1, 1)
        log_operation(
            logger,
            operation="import",
            outcome="success" if result.success else "failed",
            level=logging.INFO if result.success else logging.WARNING,
            data_type=selector.value,
            imported=result.imported,
            updated=result.updated,
            skipped=result.skipped,
            failed=result.failed,
            rolled_back=result.rolled_back,
            error=result.error,
        )
        return result

    def _verify_envelope(self, envelope: Dict[str, Any], result: ImportResult) -> None:
        report = check_envelope_format(envelope)
        if not report.is_valid:
            raise InvalidFileFormat(report.errors[0])

        integrity = check_envelope_integrity(envelope)
        if not integrity.is_valid:
            raise FileCorrupted(integrity.errors[0])

        for warning in report.warnings + integrity.warnings:
            result.add_warning("file", "envelope", warning)

    def _select_sections(
        self,
        raw_data: Mapping[str, Any],
        selector: DataTypeSelector,
        availability: AvailabilityReport,
        result: ImportResult,
    ) -> Optional[Records]:
        """
        Keep the requested sections that hold valid records.

        Returns:
            Sections to import, or None if the import stops here (the
            result has already been marked)

        Raises:
            MissingDataTypeError: If the file holds none of the requested data
            CorruptedDataSection: If every requested section is corrupted
        """
        requested = [kind.data_key for kind in selector.allowed_kinds]
        present = [key for key in requested if availability.detailed_counts.get(key, 0) > 0]
        corrupted = [key for key in requested if key in availability.corrupted_sections]

        if not present:
            if corrupted:
                resolution = self.recovery.handle_corrupted_sections(corrupted, [])
                raise CorruptedDataSection(corrupted, resolution.message)

            has_empty_sections = any(isinstance(raw_data.get(key), list) for key in requested)
            if has_empty_sections and not availability.available_data_types:
                result.add_warning(
                    selector.value, "file", f"No {selector.label.lower()} records to import"
                )
                result.validation_message = "Import file contains no records. Nothing was imported."
                return None

            raise MissingDataTypeError(selector.value, availability.available_data_types)

        if corrupted:
            resolution = self.recovery.handle_corrupted_sections(corrupted, present)
            result.add_warning(selector.value, "file", resolution.message)

        ignored = [key for key in raw_data if key not in requested]
        if ignored:
            log_operation(
                logger,
                operation="import",
                outcome="sections_ignored",
                level=logging.DEBUG,
                data_type=selector.value,
                sections=ignored,
            )
        return {key: raw_data[key] for key in present}

    def _sanitize(self, data: Records, result: ImportResult) -> Records:
        sanitized = {}
        for key, records in data.items():
            report = sanitize_section(records, EntityKind.from_data_key(key), self.config.strict_numeric)
            if report.rejected:
                resolution = self.recovery.handle_malformed_records(
                    key, report.total, report.accepted_count
                )
                result.add_rejected(key, report.rejected_count, resolution.message)
            sanitized[key] = report.accepted
        return sanitized

    @staticmethod
    def _assign_ids(data: Records) -> None:
        for records in data.values():
            for record in records:
                if not record.get("id"):
                    record["id"] = new_id()

    def _apply_conflict_resolution(
        self,
        data: Records,
        conflicts: List[Conflict],
        mode: ConflictResolution,
        result: ImportResult,
    ) -> Records:
        """
        Remap name-matched records onto the stored ids, then drop conflicting
        records when skipping.

        Foreign keys pointing at a remapped id are rewritten too, so children
        follow their parent onto the stored record.
        """
        if not conflicts:
            return data

        id_map = {
            conflict.record_id: conflict.existing_id
            for conflict in conflicts
            if conflict.matched_on != "id" and conflict.record_id
        }
        if id_map:
            for records in data.values():
                for record in records:
                    for field_name, value in list(record.items()):
                        if field_name != "id" and not is_foreign_key_field(field_name):
                            continue
                        if value in id_map:
                            record[field_name] = id_map[value]
            log_operation(
                logger,
                operation="import",
                outcome="ids_remapped",
                count=len(id_map),
            )

        if mode is not ConflictResolution.SKIP:
            return data

        conflicting = {(conflict.section, conflict.existing_id) for conflict in conflicts}
        kept: Records = {}
        for key, records in data.items():
            kept[key] = []
            for record in records:
                if (key, record["id"]) in conflicting:
                    result.add_skip(key, _display_name(record), "Matches an existing record")
                else:
                    kept[key].append(record)
        return kept

    def _write_all(
        self,
        data: Records,
        selector: DataTypeSelector,
        result: ImportResult,
        cancel_token: Optional[CancelToken],
    ) -> bool:
        """
        Write every section parents-first, one checkpointed batch at a time.

        Returns:
            False if a batch failed and was rolled back (the result is marked)
        """
        kinds = [kind for kind in IMPORT_KIND_ORDER if data.get(kind.data_key)]
        total = sum(len(data[kind.data_key]) for kind in kinds)
        written = 0

        for kind in kinds:
            key = kind.data_key
            records = data[key]
            for batch in self.planner.iter_batches(records, cancel_token, operation="import"):
                state = self.store.capture_state(kind, [record["id"] for record in batch])
                checkpoint = self.recovery.checkpoints.create(
                    f"import_{kind.value}", state, records_processed=written
                )
                try:
                    self.recovery.run_with_recovery(
                        lambda: self.store.write_batch(kind, batch),
                        f"import_{kind.value}",
                        on_memory_pressure=self.planner.apply_memory_pressure,
                    )
                except Exception as error:
                    self._roll_back(checkpoint)
                    resolution = self.recovery.resolve(error)
                    result.rolled_back = True
                    result.fail(
                        f"{selector.label} import stopped while writing {key} "
                        f"({written} of {total} records written). {resolution.message} "
                        "The failed batch was rolled back; check the file for records "
                        "that break store constraints and import again.",
                        resolution.kind,
                    )
                    result.validation_message = result.error
                    return False

                before = state["before"]
                for record in batch:
                    if before.get(record["id"]) is None:
                        result.add_success(key)
                    else:
                        result.add_update(key)
                written += len(batch)
                self._progress.report("importing", written, total)

            result.processed_data_types.append(key)
        return True

    def _roll_back(self, checkpoint: Checkpoint) -> None:
        self.recovery.checkpoints.rollback_to(
            checkpoint.id, restore=lambda cp: self.store.restore_state(cp.state)
        )
