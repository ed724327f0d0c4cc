"""
Snapshot CLI Utility

Command-line interface for exporting, importing and checking snapshot files.

Usage Examples:
    # Export products (with categories, suppliers and bulk pricing)
    python -m src.utils.snapshot_cli export products

    # Export everything into a specific directory
    python -m src.utils.snapshot_cli export complete --output-dir ./backups

    # Import the sales data from a file, keeping records that already exist
    python -m src.utils.snapshot_cli import sales_export_2024-03-01.json --type sales --conflicts skip

    # Check a file without importing it
    python -m src.utils.snapshot_cli validate complete_export_2024-03-01.json

    # See what an export or import would contain
    python -m src.utils.snapshot_cli preview-export sales
    python -m src.utils.snapshot_cli preview-import complete_export_2024-03-01.json
"""

import argparse
import logging
from typing import List, Optional

from src.models.enums import DataTypeSelector
from src.services.database import open_database
from src.services.file_service import LocalFileSurface
from src.services.snapshot_export_service import SnapshotExporter
from src.services.snapshot_import_service import ConflictResolution, SnapshotImporter
from src.services.snapshot_results import AvailabilityReport
from src.services.exceptions import SnapshotError
from src.services.store_service import SqlAlchemyEntityStore
from src.utils.config import Config

SELECTOR_CHOICES = [selector.value for selector in DataTypeSelector]


class SnapshotTools:
    """Exporter and importer wired to the configured database and directories."""

    def __init__(self, config: Config, output_dir: Optional[str] = None):
        config.ensure_directories()
        session_factory = open_database(config)
        store = SqlAlchemyEntityStore(session_factory)
        files = LocalFileSurface(output_dir or config.export_dir, config.share_dir)
        self.exporter = SnapshotExporter(store, files, config)
        self.importer = SnapshotImporter(store, files, config)


def export_data(tools: SnapshotTools, data_type: str) -> int:
    """Export one data type."""
    print(f"Exporting {data_type}...")
    result = tools.exporter.export(data_type)

    print(tools.exporter.feedback_message(result))
    if result.success:
        print(result.get_summary())
        return 0
    return 1


def import_data(tools: SnapshotTools, file_path: str, data_type: str, conflicts: str) -> int:
    """Import one data type from a snapshot file."""
    print(f"Importing {data_type} from {file_path}...")
    result = tools.importer.import_snapshot(file_path, data_type, conflicts)

    print(result.get_summary())
    if result.success:
        return 0
    if result.error_kind is not None:
        print(
            tools.importer.recovery.generate_error_report(
                result.data_type,
                result.available_data_types,
                result.corrupted_sections,
                [result.error],
                result.detailed_counts,
            )
        )
    return 1


def validate_file(tools: SnapshotTools, file_path: str, data_type: str) -> int:
    """Check a snapshot file without importing it."""
    print(f"Validating {file_path}...")
    report = tools.importer.validate_file(file_path)

    for error in report.errors:
        print(f"  ERROR: {error}")
    for warning in report.warnings:
        print(f"  WARNING: {warning}")

    if report.is_valid:
        print("File is valid.")
        return 0
    print("File is NOT valid.")
    availability = report.availability or AvailabilityReport()
    print(
        tools.importer.recovery.generate_error_report(
            data_type,
            availability.available_data_types,
            availability.corrupted_sections,
            report.errors,
            availability.detailed_counts,
        )
    )
    return 1


def preview_export(tools: SnapshotTools, data_type: str) -> int:
    """Show record counts and the estimated size of an export."""
    preview = tools.exporter.preview(data_type)

    print(f"Export preview: {DataTypeSelector(data_type).label}")
    for key, count in preview.counts.items():
        print(f"  {key}: {count}")
    print(f"Total records: {preview.total_records}")
    print(f"Estimated size: {preview.estimated_size}")
    if preview.is_empty:
        print("No data found; the export would create an empty file.")
    return 0


def preview_import(tools: SnapshotTools, file_path: str, data_type: str) -> int:
    """Show what importing a file would do."""
    try:
        preview = tools.importer.preview(file_path, data_type)
    except SnapshotError as e:
        print(f"ERROR: {e.message}")
        return 1

    print(f"Import preview: {file_path}")
    print(f"Available data types: {', '.join(preview.availability.available_data_types) or 'none'}")
    for key, count in preview.counts.items():
        print(f"  {key}: {count}")
        for sample in preview.samples.get(key, []):
            print(f"    - {sample.get('name') or sample.get('id')}")

    for error in preview.validation.errors:
        print(f"  ERROR: {error}")
    for warning in preview.validation.warnings:
        print(f"  WARNING: {warning}")

    if preview.conflicts:
        print(f"Conflicts ({len(preview.conflicts)}):")
        for conflict in preview.conflicts:
            print(f"  - {conflict.describe()}")
    return 0 if preview.validation.is_valid else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pos-snapshot",
        description="Export and import POS data snapshots",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Export products:
    pos-snapshot export products

  Import sales, keeping existing records:
    pos-snapshot import sales_export_2024-03-01.json --type sales --conflicts skip

  Validate a snapshot file:
    pos-snapshot validate complete_export_2024-03-01.json
""",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--database", dest="database_url", help="Database URL (overrides config)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    export_parser = subparsers.add_parser("export", help="Export one data type")
    export_parser.add_argument("data_type", choices=SELECTOR_CHOICES, help="Data type to export")
    export_parser.add_argument("-o", "--output-dir", dest="output_dir", help="Output directory")

    import_parser = subparsers.add_parser("import", help="Import data from a snapshot file")
    import_parser.add_argument("file", help="Snapshot file path")
    import_parser.add_argument(
        "-t",
        "--type",
        dest="data_type",
        choices=SELECTOR_CHOICES,
        default=DataTypeSelector.COMPLETE.value,
        help="Data type to import (default: complete)",
    )
    import_parser.add_argument(
        "--conflicts",
        choices=[mode.value for mode in ConflictResolution],
        default=ConflictResolution.UPDATE.value,
        help="How to treat records that already exist (default: update)",
    )

    validate_parser = subparsers.add_parser("validate", help="Validate a snapshot file")
    validate_parser.add_argument("file", help="Snapshot file path")
    validate_parser.add_argument(
        "-t",
        "--type",
        dest="data_type",
        choices=SELECTOR_CHOICES,
        default=DataTypeSelector.COMPLETE.value,
        help="Data type the file is meant to provide (default: complete)",
    )

    preview_export_parser = subparsers.add_parser(
        "preview-export", help="Show counts and estimated size of an export"
    )
    preview_export_parser.add_argument("data_type", choices=SELECTOR_CHOICES)

    preview_import_parser = subparsers.add_parser(
        "preview-import", help="Show what importing a file would do"
    )
    preview_import_parser.add_argument("file", help="Snapshot file path")
    preview_import_parser.add_argument(
        "-t",
        "--type",
        dest="data_type",
        choices=SELECTOR_CHOICES,
        default=DataTypeSelector.COMPLETE.value,
    )

    return parser


def main(argv: Optional[List[str]] = None, config: Optional[Config] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 1

    if config is None:
        overrides = {"database_url": args.database_url} if args.database_url else None
        config = Config(overrides=overrides)
    tools = SnapshotTools(config, getattr(args, "output_dir", None))

    if args.command == "export":
        return export_data(tools, args.data_type)
    elif args.command == "import":
        return import_data(tools, args.file, args.data_type, args.conflicts)
    elif args.command == "validate":
        return validate_file(tools, args.file, args.data_type)
    elif args.command == "preview-export":
        return preview_export(tools, args.data_type)
    elif args.command == "preview-import":
        return preview_import(tools, args.file, args.data_type)

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
