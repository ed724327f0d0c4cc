"""
Tests for error classification, recovery policies and checkpoints.

Tests cover:
- Classification of typed errors, library exceptions and bare messages
- One policy per error kind
- Retry with linear backoff, exhaustion and memory mitigation
- Checkpoint ring eviction and rollback
- Situation-specific messages and the error report
"""

import errno
import json
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from src.services.error_recovery_service import (
    DEFAULT_POLICIES,
    CheckpointLedger,
    ErrorRecoveryService,
    RecoveryAction,
    classify_error,
    classify_message,
)
from src.services.exceptions import (
    CorruptedDataSection,
    ErrorKind,
    FileCorrupted,
    MissingDataTypeError,
    OperationCancelled,
    RetriesExhausted,
    SnapshotError,
)
from src.utils.config import Config


def unique_violation():
    return IntegrityError("INSERT INTO products", {}, Exception("UNIQUE constraint failed: products.id"))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def service(tmp_path, sleeps):
    config = Config(base_dir=tmp_path)
    clock = lambda: datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    return ErrorRecoveryService(config, sleep=sleeps.append, clock=clock)


# ============================================================================
# Classification
# ============================================================================


class TestClassification:
    def test_typed_errors_report_their_kind(self):
        assert classify_error(FileCorrupted("bad checksum")) is ErrorKind.FILE_CORRUPTED
        assert classify_error(MissingDataTypeError("sales", [])) is ErrorKind.MISSING_DATA_TYPE

    def test_typed_kind_wins_over_message(self):
        error = SnapshotError("network connection lost", ErrorKind.TRANSACTION_FAILED)
        assert classify_error(error) is ErrorKind.TRANSACTION_FAILED

    @pytest.mark.parametrize(
        "error,kind",
        [
            (FileNotFoundError("x.json"), ErrorKind.FILE_NOT_FOUND),
            (json.JSONDecodeError("Expecting value", "", 0), ErrorKind.INVALID_FILE_FORMAT),
            (UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid"), ErrorKind.FILE_CORRUPTED),
            (MemoryError(), ErrorKind.MEMORY_LIMIT_EXCEEDED),
            (RecursionError(), ErrorKind.CIRCULAR_REFERENCE),
            (OSError(errno.ENOSPC, "No space left on device"), ErrorKind.STORAGE_SPACE_INSUFFICIENT),
            (ConnectionResetError(), ErrorKind.NETWORK_ERROR),
        ],
    )
    def test_library_exceptions_by_type(self, error, kind):
        assert classify_error(error) is kind

    def test_unique_violation(self):
        assert classify_error(unique_violation()) is ErrorKind.CONSTRAINT_VIOLATION

    def test_foreign_key_violation(self):
        error = IntegrityError("INSERT", {}, Exception("FOREIGN KEY constraint failed"))
        assert classify_error(error) is ErrorKind.REFERENCE_INTEGRITY_ERROR

    def test_locked_database(self):
        error = OperationalError("INSERT", {}, Exception("database is locked"))
        assert classify_error(error) is ErrorKind.TRANSACTION_FAILED

    @pytest.mark.parametrize(
        "message,kind",
        [
            ("ENOENT: no such file or directory", ErrorKind.FILE_NOT_FOUND),
            ("Unexpected token < in JSON", ErrorKind.INVALID_FILE_FORMAT),
            ("Corrupted data section: sales", ErrorKind.CORRUPTED_DATA_SECTION),
            ("payload is corrupted", ErrorKind.FILE_CORRUPTED),
            ("3 malformed records found", ErrorKind.MALFORMED_RECORDS),
            ("Missing required field name", ErrorKind.MISSING_REQUIRED_FIELDS),
            ("price is NaN", ErrorKind.INVALID_NUMERIC_DATA),
            ("FOREIGN KEY constraint failed", ErrorKind.REFERENCE_INTEGRITY_ERROR),
            ("UNIQUE constraint failed", ErrorKind.CONSTRAINT_VIOLATION),
            ("dangling reference to product", ErrorKind.REFERENCE_INTEGRITY_ERROR),
            ("out of memory", ErrorKind.MEMORY_LIMIT_EXCEEDED),
            ("disk is full", ErrorKind.STORAGE_SPACE_INSUFFICIENT),
            ("not enough storage", ErrorKind.STORAGE_SPACE_INSUFFICIENT),
            ("connection refused", ErrorKind.NETWORK_ERROR),
            ("something odd happened", ErrorKind.UNKNOWN),
        ],
    )
    def test_message_rules(self, message, kind):
        assert classify_message(message) is kind

    def test_every_kind_has_a_policy(self):
        assert set(DEFAULT_POLICIES) == set(ErrorKind)


# ============================================================================
# Resolution
# ============================================================================


class TestResolve:
    def test_user_intervention_stops_with_error_message(self, service):
        resolution = service.resolve(MissingDataTypeError("customers", ["sales"]))
        assert resolution.action is RecoveryAction.ABORT
        assert resolution.aborts
        assert "Available data types: sales" in resolution.message

    def test_raised_skippable_error_stops_with_its_own_message(self, service):
        error = CorruptedDataSection(
            ["customers"], "All data sections are corrupted: customers. Cannot proceed with import."
        )
        resolution = service.resolve(error)
        assert resolution.action is RecoveryAction.ABORT
        assert resolution.kind is ErrorKind.CORRUPTED_DATA_SECTION
        assert resolution.message == error.message

    def test_stopping_message_has_single_full_stop(self, service):
        resolution = service.resolve(SnapshotError("Bad file.", ErrorKind.FILE_CORRUPTED))
        assert resolution.message.startswith("Bad file. The file appears to be corrupted.")

    def test_skip_policy(self, service):
        resolution = service.resolve(ValueError("3 malformed records found"))
        assert resolution.action is RecoveryAction.SKIP
        assert not resolution.aborts

    def test_raw_text_never_shown_for_unknown_errors(self, service):
        resolution = service.resolve(RuntimeError("segfault at 0xdeadbeef"))
        assert resolution.kind is ErrorKind.UNKNOWN
        assert "0xdeadbeef" not in resolution.message

    def test_exhausted_retries_abort(self, service):
        error = RetriesExhausted(ErrorKind.CONSTRAINT_VIOLATION, 4, unique_violation())
        resolution = service.resolve(error)
        assert resolution.action is RecoveryAction.ABORT
        assert resolution.kind is ErrorKind.CONSTRAINT_VIOLATION
        assert "after 4 attempts" in resolution.message

    def test_transaction_failure_rolls_back(self, service):
        resolution = service.resolve(OperationalError("COMMIT", {}, Exception("database is locked")))
        assert resolution.action is RecoveryAction.ROLLBACK


# ============================================================================
# Retries
# ============================================================================


class TestRunWithRecovery:
    def test_returns_result_of_successful_step(self, service):
        assert service.run_with_recovery(lambda: 42, "step") == 42

    def test_retries_then_succeeds(self, service, sleeps):
        attempts = []

        def step():
            attempts.append(1)
            if len(attempts) < 3:
                raise unique_violation()
            return "written"

        assert service.run_with_recovery(step, "import_product") == "written"
        assert len(attempts) == 3
        assert sleeps == [1.0, 2.0]

    def test_constraint_violation_exhausts_after_four_attempts(self, service, sleeps):
        attempts = []

        def step():
            attempts.append(1)
            raise unique_violation()

        with pytest.raises(RetriesExhausted) as exc_info:
            service.run_with_recovery(step, "import_product")
        assert len(attempts) == 4
        assert exc_info.value.attempts == 4
        assert exc_info.value.kind is ErrorKind.CONSTRAINT_VIOLATION
        assert sleeps == [1.0, 2.0, 3.0]

    def test_delay_scale(self, tmp_path, sleeps):
        config = Config(base_dir=tmp_path, overrides={"retry_delay_scale": 0})
        service = ErrorRecoveryService(config, sleep=sleeps.append)
        def step():
            raise unique_violation()

        with pytest.raises(RetriesExhausted):
            service.run_with_recovery(step, "step")
        assert sleeps == []

    def test_non_retryable_error_propagates_unchanged(self, service):
        error = FileCorrupted("bad checksum")

        def step():
            raise error

        with pytest.raises(FileCorrupted) as exc_info:
            service.run_with_recovery(step, "read_snapshot")
        assert exc_info.value is error

    def test_cancellation_is_not_retried(self, service):
        calls = []

        def step():
            calls.append(1)
            raise OperationCancelled("import", 0)

        with pytest.raises(OperationCancelled):
            service.run_with_recovery(step, "import_product")
        assert len(calls) == 1

    def test_memory_mitigation_runs_once(self, service):
        mitigations = []

        def step():
            raise MemoryError()

        with pytest.raises(RetriesExhausted) as exc_info:
            service.run_with_recovery(step, "import_product", lambda: mitigations.append(1))
        assert exc_info.value.attempts == 3
        assert mitigations == [1]


# ============================================================================
# Checkpoints
# ============================================================================


class TestCheckpointLedger:
    def test_ring_keeps_newest(self):
        ledger = CheckpointLedger(max_checkpoints=10)
        created = [ledger.create("import_product", records_processed=i) for i in range(11)]
        assert len(ledger) == 10
        assert ledger.get(created[0].id) is None
        assert ledger.all()[0].id == created[1].id
        assert ledger.latest().id == created[-1].id

    def test_ids_are_unique(self):
        ledger = CheckpointLedger()
        ids = {ledger.create("op").id for _ in range(10)}
        assert len(ids) == 10

    def test_timestamp_uses_clock(self):
        clock = lambda: datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
        checkpoint = CheckpointLedger(clock=clock).create("op")
        assert checkpoint.timestamp == "2024-03-01T08:00:00.000Z"

    def test_rollback_restores_newest_first_and_discards_later(self):
        ledger = CheckpointLedger()
        first = ledger.create("import_category", state="a")
        ledger.create("import_product", state="b")
        ledger.create("import_product", state="c")

        restored = []
        target = ledger.rollback_to(first.id, restore=lambda cp: restored.append(cp.state))

        assert restored == ["c", "b", "a"]
        assert target is first
        assert ledger.all() == [first]

    def test_clear_drops_everything(self):
        ledger = CheckpointLedger()
        checkpoint = ledger.create("op")
        ledger.clear()
        assert len(ledger) == 0
        assert ledger.get(checkpoint.id) is None
        assert ledger.latest() is None

    def test_rollback_to_unknown_checkpoint(self):
        with pytest.raises(KeyError):
            CheckpointLedger().rollback_to("checkpoint_missing")

    def test_service_ring_size_from_config(self, tmp_path):
        config = Config(base_dir=tmp_path, overrides={"max_checkpoints": 3})
        service = ErrorRecoveryService(config)
        for _ in range(5):
            service.checkpoints.create("op")
        assert len(service.checkpoints) == 3


# ============================================================================
# Situation messages
# ============================================================================


class TestSituationMessages:
    def test_empty_data_type(self, service):
        resolution = service.handle_empty_data_type("Sales")
        assert resolution.action is RecoveryAction.SKIP
        assert resolution.message == (
            "No Sales data found. Creating empty export file for consistency."
        )

    def test_missing_data_type(self, service):
        assert service.handle_missing_data_type("customers", ["sales"]).message == (
            "Import file does not contain customers data. Available data types: sales"
        )
        assert "No valid data types found" in service.handle_missing_data_type("sales", []).message

    def test_corrupted_sections(self, service):
        assert service.handle_corrupted_sections(["sales"], []).action is RecoveryAction.ABORT
        skip = service.handle_corrupted_sections(["sales"], ["products"])
        assert skip.action is RecoveryAction.SKIP
        assert "1 corrupted data section(s) will be skipped: sales" in skip.message

    def test_malformed_records(self, service):
        assert service.handle_malformed_records("products", 10, 7).message == (
            "3 malformed records in products section will be skipped. "
            "7 valid records will be processed."
        )
        assert "All 4 records" in service.handle_malformed_records("sales", 4, 0).message

    def test_validation_failures_truncated(self, service):
        message = service.handle_validation_failures(["e1", "e2", "e3", "e4", "e5"]).message
        assert "e1; e2; e3... and 2 more errors" in message

    def test_error_report(self, service):
        report = service.generate_error_report(
            "customers",
            ["sales"],
            ["expenses"],
            ["bad date"],
            {"sales": 12},
        )
        assert "Selected Data Type: customers" in report
        assert "Timestamp: 2024-03-01T12:00:00.000Z" in report
        assert "  - sales: 12 records" in report
        assert "  - expenses: Contains invalid or malformed data" in report
        assert "  1. bad date" in report
        assert "Select one of the available data types: sales" in report
