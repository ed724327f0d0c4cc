"""
Record sanitizing and validation for snapshot export and import.

Every record passes through ``sanitize`` before it is written to a snapshot
or to the store. Sanitizing never mutates the input; it returns a cleaned
copy, or rejects the record.

Cleanup steps, in order:
- Fields whose value is callable are dropped
- Fields that cannot be serialized (circular structures, NaN/infinity,
  arbitrary objects) are dropped
- Control characters (0x00-0x1F, 0x7F) are stripped from every string
- Numeric columns given as strings are parsed; an unparseable value becomes
  0, or rejects the record when ``strict_numeric`` is set
- The record is rejected if its kind's required fields are not satisfied

Usage:
    from src.services.sanitizer_service import sanitize, sanitize_all

    clean, ok = sanitize({"name": "Cola", "price": "1.50", "cost": 0.9}, EntityKind.PRODUCT)
    products = sanitize_all(raw_products, EntityKind.PRODUCT)
"""

import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from src.models.enums import EntityKind
from src.services.logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

_CONTROL_CHARACTERS = re.compile(r"[\x00-\x1f\x7f]")


# ============================================================================
# Field predicates
# ============================================================================


def is_number(value: Any) -> bool:
    """True for finite int/float values (booleans are not numbers)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def is_text(value: Any) -> bool:
    """True for strings with at least one non-blank character."""
    return isinstance(value, str) and value.strip() != ""


def is_identifier(value: Any) -> bool:
    """True for non-empty identifier values (format is checked separately)."""
    return is_text(value)


@dataclass(frozen=True)
class FieldRule:
    """A required field and the predicate its value must satisfy."""

    name: str
    predicate: Callable[[Any], bool]
    expected: str

    def check(self, record: Mapping[str, Any]) -> Optional[str]:
        """Return a problem description, or None if the field is valid."""
        if self.name not in record or record[self.name] is None:
            return f"missing {self.name}"
        if not self.predicate(record[self.name]):
            return f"{self.name} must be {self.expected}"
        return None


def _text(name: str) -> FieldRule:
    return FieldRule(name, is_text, "non-empty text")


def _number(name: str) -> FieldRule:
    return FieldRule(name, is_number, "a number")


def _reference(name: str) -> FieldRule:
    return FieldRule(name, is_identifier, "an identifier")


REQUIRED_FIELDS: Dict[EntityKind, Tuple[FieldRule, ...]] = {
    EntityKind.PRODUCT: (_text("name"), _number("price"), _number("cost")),
    EntityKind.CATEGORY: (_text("name"),),
    EntityKind.SUPPLIER: (_text("name"),),
    EntityKind.SALE: (_number("total"), _text("payment_method")),
    EntityKind.SALE_ITEM: (_reference("product_id"), _number("quantity"), _number("price")),
    EntityKind.CUSTOMER: (_text("name"),),
    EntityKind.EXPENSE: (_number("amount"), _text("description")),
    EntityKind.EXPENSE_CATEGORY: (_text("name"),),
    EntityKind.STOCK_MOVEMENT: (
        _reference("product_id"),
        _text("movement_type"),
        _number("quantity"),
    ),
    EntityKind.BULK_PRICING: (
        _reference("product_id"),
        _number("min_quantity"),
        _number("bulk_price"),
    ),
}


def _parse_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"not a finite number: {text!r}")
    return value


def _parse_int(text: str) -> int:
    # Decimal strings are truncated ("2.9" -> 2)
    return int(_parse_float(text))


# Numeric columns accepted as strings and parsed
NUMERIC_FIELDS: Dict[str, Callable[[str], Any]] = {
    "price": _parse_float,
    "cost": _parse_float,
    "quantity": _parse_int,
    "total": _parse_float,
    "amount": _parse_float,
    "min_quantity": _parse_int,
    "bulk_price": _parse_float,
}


def missing_required_fields(record: Mapping[str, Any], kind: EntityKind) -> List[str]:
    """
    Check a record against the required-field rules for its kind.

    Args:
        record: Record to check
        kind: Entity kind whose rules apply

    Returns:
        One problem description per failing rule (empty if valid)
    """
    problems = []
    for rule in REQUIRED_FIELDS[kind]:
        problem = rule.check(record)
        if problem:
            problems.append(problem)
    return problems


# ============================================================================
# Value cleanup
# ============================================================================


def strip_control_characters(value: Any) -> Any:
    """Remove control characters from a string, or from every string inside lists/dicts."""
    if isinstance(value, str):
        return _CONTROL_CHARACTERS.sub("", value)
    if isinstance(value, list):
        return [strip_control_characters(item) for item in value]
    if isinstance(value, dict):
        return {key: strip_control_characters(item) for key, item in value.items()}
    return value


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime) or isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, tuple):
        return list(value)
    return value


def _is_serializable(value: Any) -> bool:
    # Same arguments the checksum is computed with, so anything kept here can be sealed.
    try:
        json.dumps(
            value, allow_nan=False, sort_keys=True, ensure_ascii=False, separators=(",", ":")
        ).encode("utf-8")
    except (TypeError, ValueError, RecursionError):
        return False
    return True


def _clean(
    record: Any, kind: EntityKind, strict_numeric: bool
) -> Tuple[Optional[Dict[str, Any]], List[str]]:
    if not isinstance(record, Mapping):
        return None, [f"not a keyed record ({type(record).__name__})"]

    clean: Dict[str, Any] = {}
    dropped: List[str] = []
    for name, value in record.items():
        if not isinstance(name, str):
            dropped.append(repr(name))
            continue
        if callable(value):
            dropped.append(name)
            continue
        value = _normalize(value)
        if not _is_serializable(value):
            dropped.append(name)
            continue
        clean[name] = strip_control_characters(value)

    if dropped:
        log_operation(
            logger,
            operation="sanitize",
            outcome="fields_dropped",
            level=logging.DEBUG,
            kind=kind.value,
            fields=dropped,
        )

    for name, parser in NUMERIC_FIELDS.items():
        value = clean.get(name)
        if not isinstance(value, str):
            continue
        try:
            clean[name] = parser(value.strip())
        except ValueError:
            if strict_numeric:
                return None, [f"{name} is not numeric: {value!r}"]
            clean[name] = parser("0")

    problems = missing_required_fields(clean, kind)
    if problems:
        return None, problems
    return clean, []


def sanitize(
    record: Any, kind: EntityKind, strict_numeric: bool = False
) -> Tuple[Optional[Dict[str, Any]], bool]:
    """
    Clean and validate one record.

    Args:
        record: Raw record (anything; non-mappings are rejected)
        kind: Entity kind whose rules apply
        strict_numeric: Reject unparseable numeric strings instead of using 0

    Returns:
        Tuple of (clean_record, ok). clean_record is None when ok is False.
    """
    clean, _problems = _clean(record, kind, strict_numeric)
    return clean, clean is not None


# ============================================================================
# Sections
# ============================================================================


@dataclass
class RejectedRecord:
    """A record dropped by the sanitizer, identified by its position."""

    index: int
    reasons: List[str]


@dataclass
class SectionReport:
    """Outcome of sanitizing every record of one kind."""

    kind: EntityKind
    total: int
    accepted: List[Dict[str, Any]] = field(default_factory=list)
    rejected: List[RejectedRecord] = field(default_factory=list)

    @property
    def accepted_count(self) -> int:
        return len(self.accepted)

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)

    def summary(self) -> str:
        """e.g. 'product: 2/3 records accepted'"""
        return f"{self.kind.label}: {self.accepted_count}/{self.total} records accepted"


def sanitize_section(
    records: Any, kind: EntityKind, strict_numeric: bool = False
) -> SectionReport:
    """
    Sanitize a list of records of one kind.

    Rejections are logged (one warning per record, with its index) and
    collected; nothing is raised. A value that is not a list yields an
    empty report.

    Args:
        records: Records to sanitize
        kind: Entity kind of every record
        strict_numeric: Reject unparseable numeric strings instead of using 0

    Returns:
        SectionReport with accepted records in their original order
    """
    if records is None:
        return SectionReport(kind=kind, total=0)

    if not isinstance(records, list):
        log_operation(
            logger,
            operation="sanitize",
            outcome="section_not_a_list",
            level=logging.WARNING,
            kind=kind.value,
            value_type=type(records).__name__,
        )
        return SectionReport(kind=kind, total=0)

    report = SectionReport(kind=kind, total=len(records))
    for index, record in enumerate(records):
        clean, problems = _clean(record, kind, strict_numeric)
        if clean is None:
            report.rejected.append(RejectedRecord(index=index, reasons=problems))
            log_operation(
                logger,
                operation="sanitize",
                outcome="record_rejected",
                level=logging.WARNING,
                kind=kind.value,
                index=index,
                reasons=problems,
            )
            continue
        report.accepted.append(clean)

    log_operation(
        logger,
        operation="sanitize",
        outcome="section_complete",
        kind=kind.value,
        accepted=report.accepted_count,
        total=report.total,
    )
    return report


def sanitize_all(
    records: Any, kind: EntityKind, strict_numeric: bool = False
) -> List[Dict[str, Any]]:
    """
    Sanitize a list of records and return only the accepted ones.

    See ``sanitize_section`` for logging behaviour.
    """
    return sanitize_section(records, kind, strict_numeric).accepted
