"""Service layer exception classes for POS Snapshot.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across export and import.

Every failure the snapshot pipeline raises itself carries an explicit
``ErrorKind``; the error recovery service maps that kind to a recovery policy
without inspecting the message text.

Exception Hierarchy:
    ServiceError (base)
    ├── OperationCancelled
    ├── RetriesExhausted
    ├── ShareUnavailable
    └── SnapshotError (carries ErrorKind)
        ├── SnapshotFileNotFound
        ├── InvalidFileFormat
        ├── FileCorrupted
        ├── InvalidDataStructure
        ├── MissingDataTypeError
        ├── CorruptedDataSection
        ├── ReferenceIntegrityError
        ├── ConstraintViolation
        ├── TransactionFailed
        ├── MemoryLimitExceeded
        └── StorageSpaceInsufficient
"""

from enum import Enum
from typing import List, Optional, Sequence


class ErrorKind(str, Enum):
    """
    Closed classification of snapshot failures.

    Grouped as file-level, data-level, store-level and resource-level
    problems; ``UNKNOWN`` covers anything that could not be classified.
    """

    # File-level
    FILE_NOT_FOUND = "file_not_found"
    INVALID_FILE_FORMAT = "invalid_file_format"
    FILE_CORRUPTED = "file_corrupted"

    # Data-level
    INVALID_DATA_STRUCTURE = "invalid_data_structure"
    MISSING_REQUIRED_FIELDS = "missing_required_fields"
    DATA_TYPE_MISMATCH = "data_type_mismatch"
    EMPTY_DATA_TYPE = "empty_data_type"
    MISSING_DATA_TYPE = "missing_data_type"
    CORRUPTED_DATA_SECTION = "corrupted_data_section"
    MALFORMED_RECORDS = "malformed_records"
    CIRCULAR_REFERENCE = "circular_reference"
    INVALID_NUMERIC_DATA = "invalid_numeric_data"

    # Store-level
    CONSTRAINT_VIOLATION = "constraint_violation"
    REFERENCE_INTEGRITY_ERROR = "reference_integrity_error"
    TRANSACTION_FAILED = "transaction_failed"

    # Resource-level
    MEMORY_LIMIT_EXCEEDED = "memory_limit_exceeded"
    STORAGE_SPACE_INSUFFICIENT = "storage_space_insufficient"
    NETWORK_ERROR = "network_error"

    UNKNOWN = "unknown"


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions should inherit from this class.
    """

    pass


class OperationCancelled(ServiceError):
    """Raised when a cancellation request is observed between batches.

    Args:
        operation: Operation that was cancelled (e.g., "export", "import")
        records_processed: Records fully processed before cancelling
    """

    def __init__(self, operation: str, records_processed: int = 0):
        self.operation = operation
        self.records_processed = records_processed
        super().__init__(
            f"{operation.capitalize()} cancelled after {records_processed} records"
        )


class RetriesExhausted(ServiceError):
    """Raised when a retryable step keeps failing after its last allowed attempt.

    Args:
        kind: Classification of the last failure
        attempts: Number of attempts made (first try included)
        last_error: The final exception raised by the step

    Example:
        >>> raise RetriesExhausted(ErrorKind.CONSTRAINT_VIOLATION, 4, err)
        RetriesExhausted: constraint_violation persisted after 4 attempts
    """

    def __init__(self, kind: ErrorKind, attempts: int, last_error: Exception):
        self.kind = kind
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{kind.value} persisted after {attempts} attempts")


class ShareUnavailable(ServiceError):
    """Raised when sharing a file is not possible on this host."""

    def __init__(self, reason: str = "Sharing is not available on this device"):
        self.reason = reason
        super().__init__(reason)


# ============================================================================
# Snapshot errors (typed with an ErrorKind)
# ============================================================================


class SnapshotError(ServiceError):
    """Base class for failures classified by kind.

    Subclasses set a default ``kind``; callers may also raise SnapshotError
    directly with an explicit kind.

    Args:
        message: Human-readable description, shown to the user
        kind: Classification; defaults to the subclass's kind
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        if kind is not None:
            self.kind = kind
        self.message = message
        super().__init__(message)


class SnapshotFileNotFound(SnapshotError):
    """Raised when a snapshot file does not exist.

    Example:
        >>> raise SnapshotFileNotFound("/exports/products_export_2024-03-01.json")
        SnapshotFileNotFound: Snapshot file not found: /exports/...
    """

    kind = ErrorKind.FILE_NOT_FOUND

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Snapshot file not found: {path}")


class InvalidFileFormat(SnapshotError):
    """Raised when a file is not a snapshot envelope (bad JSON or wrong shape)."""

    kind = ErrorKind.INVALID_FILE_FORMAT

    def __init__(self, reason: str, path: Optional[str] = None):
        self.reason = reason
        self.path = path
        super().__init__(f"Invalid snapshot file format: {reason}")


class FileCorrupted(SnapshotError):
    """Raised when a file cannot be decoded or fails its checksum."""

    kind = ErrorKind.FILE_CORRUPTED

    def __init__(self, reason: str, path: Optional[str] = None):
        self.reason = reason
        self.path = path
        super().__init__(f"Snapshot file is corrupted: {reason}")


class InvalidDataStructure(SnapshotError):
    """Raised when part of the envelope has the wrong structure."""

    kind = ErrorKind.INVALID_DATA_STRUCTURE


class MissingDataTypeError(SnapshotError):
    """Raised when a file holds none of the kinds the caller asked for.

    Args:
        selected: Data type the caller requested
        available: Data types the file actually contains

    Example:
        >>> raise MissingDataTypeError("customers", ["sales"])
        MissingDataTypeError: Import file does not contain customers data.
        Available data types: sales
    """

    kind = ErrorKind.MISSING_DATA_TYPE

    def __init__(self, selected: str, available: Sequence[str]):
        self.selected = selected
        self.available = list(available)
        listed = ", ".join(self.available) if self.available else "none"
        super().__init__(
            f"Import file does not contain {selected} data. Available data types: {listed}"
        )


class CorruptedDataSection(SnapshotError):
    """Raised when data sections are unusable.

    Args:
        sections: Names of the corrupted sections
        message: Replaces the default "Corrupted data sections: ..." text
    """

    kind = ErrorKind.CORRUPTED_DATA_SECTION

    def __init__(self, sections: List[str], message: Optional[str] = None):
        self.sections = list(sections)
        super().__init__(message or f"Corrupted data sections: {', '.join(self.sections)}")


class ReferenceIntegrityError(SnapshotError):
    """Raised when join-key identifiers are not valid UUIDs or point at missing records.

    Args:
        violations: One description per offending field
    """

    kind = ErrorKind.REFERENCE_INTEGRITY_ERROR

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        super().__init__(
            f"{len(self.violations)} invalid identifier(s) found: "
            + "; ".join(self.violations[:3])
        )


class ConstraintViolation(SnapshotError):
    """Raised when a store write breaks a database constraint."""

    kind = ErrorKind.CONSTRAINT_VIOLATION


class TransactionFailed(SnapshotError):
    """Raised when a store transaction cannot be committed."""

    kind = ErrorKind.TRANSACTION_FAILED


class MemoryLimitExceeded(SnapshotError):
    """Raised when a batch is too large to process in memory."""

    kind = ErrorKind.MEMORY_LIMIT_EXCEEDED


class StorageSpaceInsufficient(SnapshotError):
    """Raised when the device runs out of space while writing."""

    kind = ErrorKind.STORAGE_SPACE_INSUFFICIENT

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Not enough storage space to write {path}")
