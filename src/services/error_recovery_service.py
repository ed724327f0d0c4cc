"""
Error Recovery Service - classify failures and decide how to recover.

Every failure is mapped to one ErrorKind, and every kind has exactly one
recovery policy:

- retry: run the step again, up to ``max_retries`` more times, waiting
  ``retry_delay * attempt`` seconds in between. Memory failures also apply a
  one-shot mitigation (the caller's batch planner shrinks the next batch).
- skip: drop the offending records or sections and carry on.
- rollback: restore the latest checkpoint and stop.
- user_intervention: stop with a message telling the user what to do.

Errors raised by this package carry their kind explicitly (SnapshotError).
Exceptions from the standard library and SQLAlchemy are mapped by type, and
only anything left over is classified by its message text.

The service also keeps the checkpoint ledger used to roll back imports.

Usage:
    recovery = ErrorRecoveryService(config)
    checkpoint = recovery.checkpoints.create("import_product", state, records_processed=0)
    recovery.run_with_recovery(lambda: store.write_batch(kind, batch), "import_batch")
"""

import errno
import json
import logging
import re
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from src.services.exceptions import (
    ErrorKind,
    OperationCancelled,
    RetriesExhausted,
    SnapshotError,
)
from src.services.logging_utils import get_service_logger, log_operation
from src.utils.config import Config
from src.utils.constants import MAX_LISTED_VALIDATION_ERRORS
from src.utils.datetime_utils import to_iso, utc_now

logger = get_service_logger(__name__)

T = TypeVar("T")


# ============================================================================
# Policies
# ============================================================================


class RecoveryAction(str, Enum):
    """What the caller should do about a failure."""

    RETRY = "retry"
    SKIP = "skip"
    ROLLBACK = "rollback"
    USER_INTERVENTION = "user_intervention"
    ABORT = "abort"


@dataclass(frozen=True)
class RecoveryPolicy:
    """Recovery strategy for one error kind."""

    action: RecoveryAction
    user_message: str
    max_retries: int = 0
    retry_delay: float = 0.0
    mitigate: bool = False


@dataclass(frozen=True)
class Resolution:
    """Decision for one concrete failure, with the message to show the user."""

    action: RecoveryAction
    message: str
    kind: Optional[ErrorKind] = None

    @property
    def aborts(self) -> bool:
        """True if the operation must stop."""
        return self.action in (
            RecoveryAction.ABORT,
            RecoveryAction.USER_INTERVENTION,
            RecoveryAction.ROLLBACK,
        )


_SKIP = RecoveryAction.SKIP
_ASK = RecoveryAction.USER_INTERVENTION

DEFAULT_POLICIES: Dict[ErrorKind, RecoveryPolicy] = {
    # File-level
    ErrorKind.FILE_NOT_FOUND: RecoveryPolicy(
        _ASK, "The selected file could not be found. Please select a valid file."
    ),
    ErrorKind.INVALID_FILE_FORMAT: RecoveryPolicy(
        _ASK, "The file format is invalid. Please select a valid JSON export file."
    ),
    ErrorKind.FILE_CORRUPTED: RecoveryPolicy(
        _ASK, "The file appears to be corrupted. Please try with a different file."
    ),
    # Data-level
    ErrorKind.INVALID_DATA_STRUCTURE: RecoveryPolicy(
        _SKIP, "Some data has invalid structure and will be skipped."
    ),
    ErrorKind.MISSING_REQUIRED_FIELDS: RecoveryPolicy(
        _SKIP, "Records with missing required fields will be skipped."
    ),
    ErrorKind.DATA_TYPE_MISMATCH: RecoveryPolicy(
        _SKIP, "Records with incorrect data types will be skipped."
    ),
    ErrorKind.EMPTY_DATA_TYPE: RecoveryPolicy(
        _ASK, "The selected data type has no records. An empty export file will be created."
    ),
    ErrorKind.MISSING_DATA_TYPE: RecoveryPolicy(
        _ASK,
        "The import file does not contain the selected data type. "
        "Please check available data types.",
    ),
    ErrorKind.CORRUPTED_DATA_SECTION: RecoveryPolicy(
        _SKIP,
        "Some data sections are corrupted and will be skipped. "
        "Valid data will still be processed.",
    ),
    ErrorKind.MALFORMED_RECORDS: RecoveryPolicy(
        _SKIP,
        "Some records are malformed and will be skipped. Valid records will still be processed.",
    ),
    ErrorKind.CIRCULAR_REFERENCE: RecoveryPolicy(
        _SKIP, "Records with circular references will be skipped to prevent processing errors."
    ),
    ErrorKind.INVALID_NUMERIC_DATA: RecoveryPolicy(
        _SKIP, "Records with invalid numeric data will be skipped or sanitized where possible."
    ),
    # Store-level
    ErrorKind.CONSTRAINT_VIOLATION: RecoveryPolicy(
        RecoveryAction.RETRY,
        "Database constraint violation. Retrying with adjusted data.",
        max_retries=3,
        retry_delay=1.0,
    ),
    ErrorKind.REFERENCE_INTEGRITY_ERROR: RecoveryPolicy(
        _ASK,
        "Some records reference other records with invalid identifiers. "
        "Import the related data first or fix the identifiers in the source file.",
    ),
    ErrorKind.TRANSACTION_FAILED: RecoveryPolicy(
        RecoveryAction.ROLLBACK, "Transaction failed. Rolling back to previous state."
    ),
    # Resource-level
    ErrorKind.MEMORY_LIMIT_EXCEEDED: RecoveryPolicy(
        RecoveryAction.RETRY,
        "Memory limit exceeded. Reducing batch size and retrying.",
        max_retries=2,
        mitigate=True,
    ),
    ErrorKind.STORAGE_SPACE_INSUFFICIENT: RecoveryPolicy(
        _ASK, "Insufficient storage space. Please free up space and try again."
    ),
    ErrorKind.NETWORK_ERROR: RecoveryPolicy(
        RecoveryAction.RETRY,
        "Network error occurred. Retrying...",
        max_retries=3,
        retry_delay=2.0,
    ),
    ErrorKind.UNKNOWN: RecoveryPolicy(
        RecoveryAction.ABORT, "Unable to handle error automatically. The operation was stopped."
    ),
}


# ============================================================================
# Classification
# ============================================================================

# Ordered message rules for exceptions that carry no kind; first match wins
MESSAGE_RULES: List[Tuple[ErrorKind, Tuple[str, ...]]] = [
    (ErrorKind.FILE_NOT_FOUND, (r"file not found", r"enoent", r"no such file")),
    (ErrorKind.INVALID_FILE_FORMAT, (r"invalid json", r"unexpected token", r"expecting value")),
    (ErrorKind.CORRUPTED_DATA_SECTION, (r"corrupted (data )?section",)),
    (ErrorKind.FILE_CORRUPTED, (r"corrupted", r"\bmalformed\b(?! records)")),
    (ErrorKind.INVALID_DATA_STRUCTURE, (r"invalid data structure",)),
    (ErrorKind.MISSING_REQUIRED_FIELDS, (r"missing required", r"required field")),
    (ErrorKind.DATA_TYPE_MISMATCH, (r"type mismatch", r"invalid type")),
    (ErrorKind.EMPTY_DATA_TYPE, (r"no records", r"empty data type")),
    (ErrorKind.MISSING_DATA_TYPE, (r"does not contain .*data",)),
    (ErrorKind.MALFORMED_RECORDS, (r"malformed records", r"invalid records")),
    (ErrorKind.CIRCULAR_REFERENCE, (r"circular reference",)),
    (ErrorKind.INVALID_NUMERIC_DATA, (r"invalid numeric", r"\bnan\b", r"not a number")),
    (ErrorKind.REFERENCE_INTEGRITY_ERROR, (r"foreign key",)),
    (ErrorKind.CONSTRAINT_VIOLATION, (r"constraint", r"\bunique\b")),
    (ErrorKind.REFERENCE_INTEGRITY_ERROR, (r"\breference",)),
    (ErrorKind.TRANSACTION_FAILED, (r"transaction", r"rollback", r"database is locked")),
    (ErrorKind.MEMORY_LIMIT_EXCEEDED, (r"out of memory", r"\bmemory\b")),
    (ErrorKind.STORAGE_SPACE_INSUFFICIENT, (r"\bstorage\b", r"disk space", r"disk is full")),
    (ErrorKind.NETWORK_ERROR, (r"network", r"connection")),
]

_COMPILED_RULES = [
    (kind, [re.compile(pattern) for pattern in patterns]) for kind, patterns in MESSAGE_RULES
]


def classify_message(message: str) -> ErrorKind:
    """Classify by message text alone; UNKNOWN if no rule matches."""
    text = message.lower()
    for kind, patterns in _COMPILED_RULES:
        if any(pattern.search(text) for pattern in patterns):
            return kind
    return ErrorKind.UNKNOWN


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map an exception to an ErrorKind.

    Typed snapshot errors report their own kind; well-known library
    exceptions are mapped by type; anything else falls back to message rules.
    """
    if isinstance(error, (SnapshotError, RetriesExhausted)):
        return error.kind

    if isinstance(error, FileNotFoundError):
        return ErrorKind.FILE_NOT_FOUND
    if isinstance(error, json.JSONDecodeError):
        return ErrorKind.INVALID_FILE_FORMAT
    if isinstance(error, UnicodeDecodeError):
        return ErrorKind.FILE_CORRUPTED
    if isinstance(error, MemoryError):
        return ErrorKind.MEMORY_LIMIT_EXCEEDED
    if isinstance(error, RecursionError):
        return ErrorKind.CIRCULAR_REFERENCE
    if isinstance(error, OSError) and error.errno in (errno.ENOSPC, errno.EDQUOT):
        return ErrorKind.STORAGE_SPACE_INSUFFICIENT
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorKind.NETWORK_ERROR

    if isinstance(error, IntegrityError):
        if "foreign key" in str(error.orig).lower():
            return ErrorKind.REFERENCE_INTEGRITY_ERROR
        return ErrorKind.CONSTRAINT_VIOLATION
    if isinstance(error, OperationalError):
        message = str(error.orig).lower()
        if "disk is full" in message or "disk i/o" in message:
            return ErrorKind.STORAGE_SPACE_INSUFFICIENT
        return ErrorKind.TRANSACTION_FAILED
    if isinstance(error, SQLAlchemyError):
        return ErrorKind.TRANSACTION_FAILED

    return classify_message(str(error))


# ============================================================================
# Checkpoints
# ============================================================================


@dataclass
class Checkpoint:
    """Restorable marker taken before a state-changing step."""

    id: str
    timestamp: str
    operation: str
    state: Any = None
    records_processed: int = 0


class CheckpointLedger:
    """
    Bounded, insertion-ordered set of checkpoints.

    Holds at most ``max_checkpoints``; creating one more evicts the oldest.
    """

    def __init__(self, max_checkpoints: int = 10, clock: Callable[[], datetime] = utc_now):
        self.max_checkpoints = max_checkpoints
        self._clock = clock
        self._checkpoints: "OrderedDict[str, Checkpoint]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._checkpoints)

    def create(self, operation: str, state: Any = None, records_processed: int = 0) -> Checkpoint:
        """Record a new checkpoint, evicting the oldest if the ledger is full."""
        checkpoint = Checkpoint(
            id=f"checkpoint_{uuid.uuid4().hex[:12]}",
            timestamp=to_iso(self._clock()),
            operation=operation,
            state=state,
            records_processed=records_processed,
        )
        self._checkpoints[checkpoint.id] = checkpoint
        while len(self._checkpoints) > self.max_checkpoints:
            evicted_id, _ = self._checkpoints.popitem(last=False)
            log_operation(
                logger,
                operation="checkpoint",
                outcome="evicted",
                level=logging.DEBUG,
                checkpoint_id=evicted_id,
            )

        log_operation(
            logger,
            operation="checkpoint",
            outcome="created",
            level=logging.DEBUG,
            checkpoint_id=checkpoint.id,
            checkpoint_operation=operation,
            records_processed=records_processed,
        )
        return checkpoint

    def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        """Checkpoint by id, or None if it was never created or has been evicted."""
        return self._checkpoints.get(checkpoint_id)

    def latest(self) -> Optional[Checkpoint]:
        """Most recently created checkpoint, or None."""
        if not self._checkpoints:
            return None
        return next(reversed(self._checkpoints.values()))

    def all(self) -> List[Checkpoint]:
        """Every retained checkpoint, oldest first."""
        return list(self._checkpoints.values())

    def rollback_to(
        self,
        checkpoint_id: str,
        restore: Optional[Callable[[Checkpoint], None]] = None,
    ) -> Checkpoint:
        """
        Roll back to a checkpoint.

        ``restore`` is called for every checkpoint from the newest back to the
        target (inclusive), so each step's changes are undone in reverse
        order. Checkpoints newer than the target are then discarded; the
        target itself is kept.

        Raises:
            KeyError: If the checkpoint is not (or no longer) in the ledger
        """
        if checkpoint_id not in self._checkpoints:
            raise KeyError(f"Checkpoint {checkpoint_id} not found")

        ids = list(self._checkpoints)
        position = ids.index(checkpoint_id)
        newest_first = [self._checkpoints[cid] for cid in reversed(ids[position:])]

        if restore is not None:
            for checkpoint in newest_first:
                restore(checkpoint)

        for cid in ids[position + 1 :]:
            del self._checkpoints[cid]

        target = self._checkpoints[checkpoint_id]
        log_operation(
            logger,
            operation="checkpoint",
            outcome="rolled_back",
            level=logging.WARNING,
            checkpoint_id=checkpoint_id,
            discarded=len(ids) - position - 1,
            records_processed=target.records_processed,
        )
        return target

    def clear(self) -> None:
        """Drop every checkpoint without restoring anything."""
        self._checkpoints.clear()


# ============================================================================
# Service
# ============================================================================


class ErrorRecoveryService:
    """
    Classifies failures, applies recovery policies and owns the checkpoint ledger.

    Args:
        config: Supplies the checkpoint ring size and retry delay scale
        policies: Replacements for individual default policies
        sleep: Function used to wait between retries
        clock: Source of checkpoint timestamps
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        policies: Optional[Dict[ErrorKind, RecoveryPolicy]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        config = config or Config()
        self.policies: Dict[ErrorKind, RecoveryPolicy] = dict(DEFAULT_POLICIES)
        if policies:
            self.policies.update(policies)
        self.checkpoints = CheckpointLedger(config.max_checkpoints, clock)
        self._delay_scale = config.retry_delay_scale
        self._sleep = sleep
        self._clock = clock

    def classify(self, error: BaseException) -> ErrorKind:
        return classify_error(error)

    def policy_for(self, kind: ErrorKind) -> RecoveryPolicy:
        """Policy for a kind (unknown kinds get the UNKNOWN policy)."""
        return self.policies.get(kind, self.policies[ErrorKind.UNKNOWN])

    def resolve(self, error: BaseException) -> Resolution:
        """
        Decide what to do about a failure.

        Stopping resolutions carry the error's own message when it is one of
        ours (it names what was selected and what was found); otherwise the
        policy's message is used so raw exception text never reaches the user.
        """
        kind = self.classify(error)
        policy = self.policy_for(kind)

        action = policy.action
        if action is RecoveryAction.USER_INTERVENTION:
            action = RecoveryAction.ABORT

        if isinstance(error, RetriesExhausted):
            action = RecoveryAction.ABORT
            message = (
                f"The step kept failing ({kind.value.replace('_', ' ')}) "
                f"after {error.attempts} attempts and was stopped."
            )
        elif isinstance(error, SnapshotError) and action is RecoveryAction.SKIP:
            # Raised rather than skipped: nothing usable was left to carry on with
            action = RecoveryAction.ABORT
            message = error.message
        elif isinstance(error, SnapshotError) and action is RecoveryAction.ABORT:
            message = f"{error.message.rstrip('.')}. {policy.user_message}"
        else:
            message = policy.user_message

        log_operation(
            logger,
            operation="resolve_error",
            outcome=action.value,
            level=logging.WARNING,
            error_kind=kind.value,
            error=str(error),
        )
        return Resolution(action=action, message=message, kind=kind)

    def run_with_recovery(
        self,
        step: Callable[[], T],
        operation: str,
        on_memory_pressure: Optional[Callable[[], None]] = None,
    ) -> T:
        """
        Run a step, retrying it when its failure's policy says so.

        Non-retryable failures propagate unchanged for the caller to resolve.

        Args:
            step: Zero-argument callable to run
            operation: Name used in logs
            on_memory_pressure: One-shot mitigation run before the first retry
                of a memory failure

        Returns:
            Whatever the step returns

        Raises:
            RetriesExhausted: If a retryable failure outlasts its retry budget
        """
        attempt = 0
        mitigated = False
        while True:
            attempt += 1
            try:
                return step()
            except OperationCancelled:
                raise
            except Exception as error:
                kind = self.classify(error)
                policy = self.policy_for(kind)
                if policy.action is not RecoveryAction.RETRY:
                    raise

                if attempt > policy.max_retries:
                    log_operation(
                        logger,
                        operation=operation,
                        outcome="retries_exhausted",
                        level=logging.ERROR,
                        error_kind=kind.value,
                        attempts=attempt,
                    )
                    raise RetriesExhausted(kind, attempt, error) from error

                if policy.mitigate and on_memory_pressure is not None and not mitigated:
                    on_memory_pressure()
                    mitigated = True

                delay = policy.retry_delay * attempt * self._delay_scale
                log_operation(
                    logger,
                    operation=operation,
                    outcome="retrying",
                    level=logging.WARNING,
                    error_kind=kind.value,
                    attempt=attempt,
                    delay_seconds=delay,
                )
                if delay > 0:
                    self._sleep(delay)

    # ========================================================================
    # Situation-specific resolutions
    # ========================================================================

    def handle_empty_data_type(self, data_type: str) -> Resolution:
        """Export found nothing: continue with an empty file."""
        return Resolution(
            action=RecoveryAction.SKIP,
            message=f"No {data_type} data found. Creating empty export file for consistency.",
            kind=ErrorKind.EMPTY_DATA_TYPE,
        )

    def handle_missing_data_type(self, selected: str, available: Sequence[str]) -> Resolution:
        """Import file lacks the requested data type: stop and list what it has."""
        if available:
            available_text = f"Available data types: {', '.join(available)}"
        else:
            available_text = "No valid data types found in import file"
        return Resolution(
            action=RecoveryAction.ABORT,
            message=f"Import file does not contain {selected} data. {available_text}",
            kind=ErrorKind.MISSING_DATA_TYPE,
        )

    def handle_corrupted_sections(
        self, corrupted: Sequence[str], valid: Sequence[str]
    ) -> Resolution:
        """Skip corrupted sections, or stop if nothing valid remains."""
        if not valid:
            return Resolution(
                action=RecoveryAction.ABORT,
                message=(
                    f"All data sections are corrupted: {', '.join(corrupted)}. "
                    "Cannot proceed with import."
                ),
                kind=ErrorKind.CORRUPTED_DATA_SECTION,
            )
        return Resolution(
            action=RecoveryAction.SKIP,
            message=(
                f"{len(corrupted)} corrupted data section(s) will be skipped: "
                f"{', '.join(corrupted)}. {len(valid)} valid section(s) will be processed: "
                f"{', '.join(valid)}."
            ),
            kind=ErrorKind.CORRUPTED_DATA_SECTION,
        )

    def handle_malformed_records(self, section: str, total: int, valid: int) -> Resolution:
        """Report how many records of a section are skipped versus kept."""
        malformed = total - valid
        if valid == 0:
            message = f"All {total} records in {section} section are malformed and will be skipped."
        else:
            message = (
                f"{malformed} malformed records in {section} section will be skipped. "
                f"{valid} valid records will be processed."
            )
        return Resolution(
            action=RecoveryAction.SKIP, message=message, kind=ErrorKind.MALFORMED_RECORDS
        )

    def handle_validation_failures(self, errors: Sequence[str]) -> Resolution:
        """Summarize validation errors (first few listed, the rest counted)."""
        if len(errors) > MAX_LISTED_VALIDATION_ERRORS:
            listed = "; ".join(errors[:MAX_LISTED_VALIDATION_ERRORS])
            summary = f"{listed}... and {len(errors) - MAX_LISTED_VALIDATION_ERRORS} more errors"
        else:
            summary = "; ".join(errors)
        return Resolution(
            action=RecoveryAction.SKIP,
            message=f"Validation errors found: {summary}. Invalid data will be skipped.",
            kind=ErrorKind.MISSING_REQUIRED_FIELDS,
        )

    def generate_error_report(
        self,
        data_type: str,
        available_types: Sequence[str],
        corrupted_sections: Sequence[str],
        validation_errors: Sequence[str],
        detailed_counts: Dict[str, int],
    ) -> str:
        """Plain-text report of what was selected, what was found and what to do."""
        lines = [
            "=" * 60,
            "DATA IMPORT/EXPORT ERROR REPORT",
            "=" * 60,
            f"Selected Data Type: {data_type}",
            f"Timestamp: {to_iso(self._clock())}",
            "",
        ]

        if available_types:
            lines.append("Available Data Types:")
            for available in available_types:
                lines.append(f"  - {available}: {detailed_counts.get(available, 0)} records")
        else:
            lines.append("No valid data types found in file.")
        lines.append("")

        if corrupted_sections:
            lines.append("Corrupted Data Sections:")
            for section in corrupted_sections:
                lines.append(f"  - {section}: Contains invalid or malformed data")
            lines.append("")

        if validation_errors:
            lines.append("Validation Errors:")
            for number, error in enumerate(validation_errors, start=1):
                lines.append(f"  {number}. {error}")
            lines.append("")

        lines.append("Recommendations:")
        if available_types and data_type not in available_types:
            lines.append(
                f"  - Select one of the available data types: {', '.join(available_types)}"
            )
        if corrupted_sections:
            lines.append("  - Fix corrupted data sections in the source file")
            lines.append("  - Or select a different data type that is not corrupted")
        if validation_errors:
            lines.append("  - Validate and fix data format issues in the source file")
        lines.append("=" * 60)

        return "\n".join(lines)
