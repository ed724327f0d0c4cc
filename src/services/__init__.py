"""Services package - the snapshot export/import pipeline.

Architecture:
- Components are classes and plain functions; configuration is passed in
  explicitly (see src.utils.config.Config)
- Transactions: Managed via session_scope() context manager
- Exceptions: Typed errors with an explicit ErrorKind (see exceptions)
- Logging: get_service_logger() / log_operation() (see logging_utils)

Pipeline Modules:
- sanitizer_service: Per-record cleanup and required-field validation
- integrity_service: Selective narrowing, record counts, checksums, UUID checks
- batch_planner: Adaptive batch sizing and cooperative batch streaming
- error_recovery_service: Error classification, recovery policies, checkpoints
- snapshot_export_service: Exporter state machine and envelope assembly
- snapshot_import_service: Envelope validation, conflict handling, batched writes

Infrastructure:
- database: Engine, session factory and session_scope()
- store_service: EntityStore interface and its SQLAlchemy implementation
- file_service: Atomic local file writes and the share outbox
- progress: Progress events and cancellation tokens
- snapshot_results: Result and report types
"""

from .snapshot_export_service import SnapshotExporter
from .snapshot_import_service import SnapshotImporter

__all__ = ["SnapshotExporter", "SnapshotImporter"]
