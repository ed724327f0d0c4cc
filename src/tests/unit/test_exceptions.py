"""Unit tests for the exception hierarchy.

Validates that every exception inherits from ServiceError and that snapshot
errors carry the ErrorKind the recovery service relies on.
"""

import inspect

import pytest

from src.services import exceptions as exc_module
from src.services.exceptions import (
    ConstraintViolation,
    CorruptedDataSection,
    ErrorKind,
    FileCorrupted,
    InvalidFileFormat,
    MemoryLimitExceeded,
    MissingDataTypeError,
    OperationCancelled,
    ReferenceIntegrityError,
    RetriesExhausted,
    ServiceError,
    SnapshotError,
    SnapshotFileNotFound,
    StorageSpaceInsufficient,
    TransactionFailed,
)


def get_all_exception_classes():
    return [
        obj
        for _, obj in inspect.getmembers(exc_module, inspect.isclass)
        if issubclass(obj, Exception) and obj.__module__ == exc_module.__name__
    ]


class TestExceptionHierarchy:
    def test_all_inherit_from_service_error(self):
        for exc_class in get_all_exception_classes():
            assert issubclass(exc_class, ServiceError), exc_class.__name__

    def test_snapshot_subclasses_have_specific_kind(self):
        for exc_class in get_all_exception_classes():
            if issubclass(exc_class, SnapshotError) and exc_class is not SnapshotError:
                assert exc_class.kind is not ErrorKind.UNKNOWN, exc_class.__name__


class TestSnapshotErrors:
    def test_explicit_kind_overrides_default(self):
        error = SnapshotError("bad numbers", ErrorKind.INVALID_NUMERIC_DATA)
        assert error.kind is ErrorKind.INVALID_NUMERIC_DATA
        assert error.message == "bad numbers"

    def test_explicit_kind_does_not_leak_to_class(self):
        SnapshotError("first", ErrorKind.NETWORK_ERROR)
        assert SnapshotError("second").kind is ErrorKind.UNKNOWN

    def test_file_not_found_names_path(self):
        error = SnapshotFileNotFound("/exports/missing.json")
        assert error.kind is ErrorKind.FILE_NOT_FOUND
        assert "/exports/missing.json" in str(error)

    @pytest.mark.parametrize(
        "error,kind",
        [
            (InvalidFileFormat("invalid JSON"), ErrorKind.INVALID_FILE_FORMAT),
            (FileCorrupted("checksum mismatch"), ErrorKind.FILE_CORRUPTED),
            (CorruptedDataSection(["sales"]), ErrorKind.CORRUPTED_DATA_SECTION),
            (ReferenceIntegrityError(["products[0].id"]), ErrorKind.REFERENCE_INTEGRITY_ERROR),
            (StorageSpaceInsufficient("/exports/a.json"), ErrorKind.STORAGE_SPACE_INSUFFICIENT),
            (ConstraintViolation("NOT NULL constraint failed"), ErrorKind.CONSTRAINT_VIOLATION),
            (TransactionFailed("database is locked"), ErrorKind.TRANSACTION_FAILED),
            (MemoryLimitExceeded("batch too large"), ErrorKind.MEMORY_LIMIT_EXCEEDED),
        ],
    )
    def test_default_kinds(self, error, kind):
        assert error.kind is kind

    def test_missing_data_type_lists_available(self):
        error = MissingDataTypeError("customers", ["sales"])
        assert error.available == ["sales"]
        assert str(error) == (
            "Import file does not contain customers data. Available data types: sales"
        )

    def test_missing_data_type_with_nothing_available(self):
        assert "Available data types: none" in str(MissingDataTypeError("sales", []))

    def test_corrupted_sections_default_and_custom_message(self):
        assert str(CorruptedDataSection(["sales", "customers"])) == (
            "Corrupted data sections: sales, customers"
        )
        error = CorruptedDataSection(["sales"], "Nothing usable in sales")
        assert error.sections == ["sales"]
        assert error.message == "Nothing usable in sales"

    def test_reference_integrity_lists_first_violations(self):
        violations = [f"products[{i}].id: 'x' is not a valid UUID" for i in range(5)]
        error = ReferenceIntegrityError(violations)
        assert str(error).startswith("5 invalid identifier(s) found")
        assert "products[3]" not in str(error)


def test_operation_cancelled_message():
    error = OperationCancelled("import", 40)
    assert error.records_processed == 40
    assert str(error) == "Import cancelled after 40 records"


def test_retries_exhausted_keeps_last_error():
    cause = RuntimeError("UNIQUE constraint failed")
    error = RetriesExhausted(ErrorKind.CONSTRAINT_VIOLATION, 4, cause)
    assert error.kind is ErrorKind.CONSTRAINT_VIOLATION
    assert error.last_error is cause
    assert str(error) == "constraint_violation persisted after 4 attempts"
