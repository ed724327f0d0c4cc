"""
Result and report types returned by the snapshot exporter and importer.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.services.exceptions import ErrorKind


class ExportResult:
    """Result of an export operation."""

    def __init__(self, data_type: str, file_path: Optional[str] = None, record_count: int = 0):
        self.data_type = data_type
        self.file_path = file_path
        self.filename: Optional[str] = None
        self.record_count = record_count
        self.success = True
        self.error: Optional[str] = None
        self.error_kind: Optional[ErrorKind] = None
        self.cancelled = False
        self.empty_export = False
        self.checksum: Optional[str] = None
        self.file_size = 0
        self.entity_counts: Dict[str, int] = {}
        self.warnings: List[str] = []

    def add_entity_count(self, entity_type: str, count: int):
        """Add count for a specific entity type."""
        self.entity_counts[entity_type] = count

    def fail(self, message: str, kind: Optional[ErrorKind] = None):
        """Mark the export as failed."""
        self.success = False
        self.error = message
        self.error_kind = kind

    def get_summary(self) -> str:
        """Get a summary string of the export results."""
        if self.cancelled:
            return f"Export cancelled: {self.error}"
        if not self.success:
            return f"Export failed: {self.error}"

        lines = [f"Exported {self.record_count} records to {self.file_path}"]
        if self.empty_export:
            lines.append("No data was found; an empty export file was created.")

        if self.entity_counts:
            lines.append("")
            for entity, count in self.entity_counts.items():
                lines.append(f"  {entity}: {count}")

        if self.warnings:
            lines.append("")
            lines.append("Warnings:")
            for warning in self.warnings:
                lines.append(f"  - {warning}")

        return "\n".join(lines)


@dataclass
class Conflict:
    """An imported record that collides with a record already in the store."""

    section: str
    record_id: Optional[str]
    record_name: str
    existing_id: str
    matched_on: str

    def describe(self) -> str:
        return (
            f"{self.section}: '{self.record_name}' matches existing record "
            f"{self.existing_id} by {self.matched_on}"
        )


class ImportResult:
    """Result of an import operation with per-entity tracking."""

    def __init__(self, data_type: str):
        self.data_type = data_type
        self.success = True
        self.error: Optional[str] = None
        self.error_kind: Optional[ErrorKind] = None
        self.rolled_back = False
        self.cancelled = False
        self.duration = 0.0

        self.total_records = 0
        self.successful = 0
        self.updated = 0
        self.skipped = 0
        self.failed = 0
        self.errors: List[Dict[str, str]] = []
        self.warnings: List[Dict[str, str]] = []
        self.entity_counts: Dict[str, Dict[str, int]] = {}

        self.conflicts: List[Conflict] = []
        self.available_data_types: List[str] = []
        self.processed_data_types: List[str] = []
        self.detailed_counts: Dict[str, int] = {}
        self.corrupted_sections: List[str] = []
        self.validation_message: Optional[str] = None

    @property
    def imported(self) -> int:
        """Records newly created in the store."""
        return self.successful - self.updated

    def add_success(self, entity_type: str = None):
        """Record a newly imported record."""
        self.successful += 1
        self.total_records += 1
        if entity_type:
            self._ensure_entity(entity_type)
            self.entity_counts[entity_type]["imported"] += 1

    def add_update(self, entity_type: str):
        """Record an existing record that was overwritten."""
        self.successful += 1
        self.updated += 1
        self.total_records += 1
        self._ensure_entity(entity_type)
        self.entity_counts[entity_type]["updated"] += 1

    def add_skip(self, record_type: str, record_name: str, reason: str):
        """Record a skipped record."""
        self.skipped += 1
        self.total_records += 1
        self._ensure_entity(record_type)
        self.entity_counts[record_type]["skipped"] += 1
        self.warnings.append(
            {
                "record_type": record_type,
                "record_name": record_name,
                "warning_type": "skipped",
                "message": reason,
            }
        )

    def add_error(self, record_type: str, record_name: str, error: str):
        """Record a failed record."""
        self.failed += 1
        self.total_records += 1
        self._ensure_entity(record_type)
        self.entity_counts[record_type]["errors"] += 1
        self.errors.append(
            {
                "record_type": record_type,
                "record_name": record_name,
                "error_type": "import_error",
                "message": error,
            }
        )

    def add_rejected(self, record_type: str, count: int, message: str):
        """Record records dropped by validation, with one aggregate warning."""
        self.failed += count
        self.total_records += count
        self._ensure_entity(record_type)
        self.entity_counts[record_type]["errors"] += count
        self.add_warning(record_type, f"{count} records", message)

    def add_warning(self, record_type: str, record_name: str, message: str):
        """Record a warning (non-fatal issue during import)."""
        self.warnings.append(
            {
                "record_type": record_type,
                "record_name": record_name,
                "warning_type": "warning",
                "message": message,
            }
        )

    def fail(self, message: str, kind: Optional[ErrorKind] = None):
        """Mark the whole import as failed."""
        self.success = False
        self.error = message
        self.error_kind = kind

    def _ensure_entity(self, entity_type: str):
        """Ensure entity type exists in entity_counts."""
        if entity_type not in self.entity_counts:
            self.entity_counts[entity_type] = {
                "imported": 0,
                "updated": 0,
                "skipped": 0,
                "errors": 0,
            }

    def get_summary(self) -> str:
        """Get a user-friendly summary string of the import results."""
        lines = [
            "=" * 60,
            "Import Summary",
            "=" * 60,
            f"Data Type: {self.data_type}",
        ]

        if self.cancelled:
            lines.append("Status: cancelled")
        elif self.rolled_back:
            lines.append("Status: rolled back")
        elif not self.success:
            lines.append("Status: failed")
        if self.error:
            lines.append(f"Error: {self.error}")
        lines.append("")

        if self.entity_counts:
            for entity, counts in self.entity_counts.items():
                parts = []
                if counts["imported"] > 0:
                    parts.append(f"{counts['imported']} imported")
                if counts["updated"] > 0:
                    parts.append(f"{counts['updated']} updated")
                if counts["skipped"] > 0:
                    parts.append(f"{counts['skipped']} skipped")
                if counts["errors"] > 0:
                    parts.append(f"{counts['errors']} errors")
                if parts:
                    lines.append(f"  {entity}: {', '.join(parts)}")
            lines.append("")

        lines.extend([
            f"Total Records: {self.total_records}",
            f"Imported:      {self.imported}",
            f"Updated:       {self.updated}",
            f"Skipped:       {self.skipped}",
            f"Failed:        {self.failed}",
        ])

        if self.conflicts:
            lines.append(f"\nConflicts ({len(self.conflicts)}):")
            for conflict in self.conflicts[:10]:
                lines.append(f"  - {conflict.describe()}")

        if self.errors:
            lines.append("\nErrors:")
            for error in self.errors:
                lines.append(f"  - {error['record_type']}: {error['record_name']}")
                lines.append(f"    {error['message']}")

        if self.warnings and len(self.warnings) <= 10:
            lines.append("\nWarnings:")
            for warning in self.warnings:
                lines.append(f"  - {warning['record_type']}: {warning['record_name']}")
                lines.append(f"    {warning['message']}")
        elif self.warnings:
            lines.append(f"\n{len(self.warnings)} warnings (use detailed report for full list)")

        lines.append("=" * 60)
        return "\n".join(lines)


@dataclass
class ExportPreview:
    """Record counts and size estimate for a prospective export."""

    data_type: str
    counts: Dict[str, int] = field(default_factory=dict)
    estimated_bytes: int = 0
    estimated_size: str = "0 B"

    @property
    def total_records(self) -> int:
        return sum(self.counts.values())

    @property
    def is_empty(self) -> bool:
        return self.total_records == 0


@dataclass
class ValidationReport:
    """Errors and warnings found while checking a snapshot file."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    # Set once the file parsed and its envelope checked out
    availability: Optional["AvailabilityReport"] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def extend(self, other: "ValidationReport") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


@dataclass
class AvailabilityReport:
    """Which data types a snapshot file actually contains."""

    available_data_types: List[str] = field(default_factory=list)
    detailed_counts: Dict[str, int] = field(default_factory=dict)
    corrupted_sections: List[str] = field(default_factory=list)
    validation_errors: List[str] = field(default_factory=list)
    message: str = ""

    @property
    def is_valid(self) -> bool:
        return bool(self.available_data_types) and not self.corrupted_sections


@dataclass
class ImportPreview:
    """What an import would do, without writing anything."""

    data_type: str
    counts: Dict[str, int] = field(default_factory=dict)
    samples: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    validation: ValidationReport = field(default_factory=ValidationReport)
    availability: AvailabilityReport = field(default_factory=AvailabilityReport)
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def total_records(self) -> int:
        return sum(self.counts.values())
