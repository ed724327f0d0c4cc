"""
Integrity Service - checksums, record counts and identifier checks for snapshots.

A snapshot's integrity block records how many records of each kind the data
section holds, which validation rules the data was checked against, and a
checksum over the whole envelope. An importer recomputes the checksum to
detect files that were altered or truncated after export.

The checksum is a 32-bit rolling hash (hash * 31 + code unit) over the
canonical JSON form of the envelope with the checksum itself blanked. It
detects accidental change; it is not a security measure.

Usage:
    from src.services.integrity_service import (
        narrow_to_selector, build_integrity, seal_envelope, verify_checksum,
    )

    data = narrow_to_selector(fetched, DataTypeSelector.PRODUCTS)
    envelope["integrity"] = build_integrity(data, DataTypeSelector.PRODUCTS).to_dict()
    seal_envelope(envelope)
    assert verify_checksum(envelope)
"""

import copy
import json
import logging
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from src.models.enums import DataTypeSelector, EntityKind
from src.services.exceptions import InvalidDataStructure
from src.services.logging_utils import get_service_logger, log_operation
from src.utils.uuid_utils import is_foreign_key_field, is_valid_uuid4

logger = get_service_logger(__name__)


# ============================================================================
# Data Classes
# ============================================================================


@dataclass
class IntegrityBlock:
    """Checksum, per-kind record counts and rule manifest of an envelope."""

    checksum: str = ""
    record_counts: Dict[str, int] = field(default_factory=dict)
    validation_rules: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the envelope's JSON shape."""
        return {
            "checksum": self.checksum,
            "recordCounts": dict(self.record_counts),
            "validationRules": list(self.validation_rules),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IntegrityBlock":
        """Build from an envelope's integrity section (missing parts default to empty)."""
        counts = data.get("recordCounts") or {}
        rules = data.get("validationRules") or []
        return cls(
            checksum=data.get("checksum") or "",
            record_counts=dict(counts) if isinstance(counts, Mapping) else {},
            validation_rules=list(rules) if isinstance(rules, list) else [],
        )


# ============================================================================
# Selective narrowing
# ============================================================================


def narrow_to_selector(
    data: Mapping[str, Any], selector: DataTypeSelector
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Keep exactly the sections a selector allows.

    Disallowed sections are dropped (and logged); allowed sections missing
    from ``data`` are added as empty lists.

    Args:
        data: Sections keyed by envelope data key
        selector: Scope to narrow to

    Returns:
        New dict in envelope section order
    """
    allowed_keys = [kind.data_key for kind in selector.allowed_kinds]
    removed = [key for key in data if key not in allowed_keys]
    if removed:
        log_operation(
            logger,
            operation="narrow",
            outcome="sections_removed",
            level=logging.DEBUG,
            data_type=selector.value,
            sections=removed,
        )
    return {key: list(data.get(key) or []) for key in allowed_keys}


def ensure_consistent_structure(data: Dict[str, Any], selector: DataTypeSelector) -> List[str]:
    """
    Delete, in place, any section a selector does not allow.

    Run right before an envelope is sealed. Anything removed here means an
    earlier step let a disallowed kind through, so it is logged as a warning.

    Returns:
        Keys that were removed
    """
    allowed_keys = {kind.data_key for kind in selector.allowed_kinds}
    removed = [key for key in list(data) if key not in allowed_keys]
    for key in removed:
        del data[key]
        log_operation(
            logger,
            operation="ensure_consistent_structure",
            outcome="section_removed",
            level=logging.WARNING,
            data_type=selector.value,
            section=key,
        )
    return removed


# ============================================================================
# Integrity block
# ============================================================================


def build_integrity(data: Mapping[str, Any], selector: DataTypeSelector) -> IntegrityBlock:
    """
    Count records per kind and attach the selector's rule manifest.

    The checksum is left empty; ``seal_envelope`` fills it in once the
    envelope is complete.

    Raises:
        InvalidDataStructure: If data holds a section the selector does not allow,
            or a section that is not a list
    """
    allowed_keys = [kind.data_key for kind in selector.allowed_kinds]
    extra = [key for key in data if key not in allowed_keys]
    if extra:
        raise InvalidDataStructure(
            f"Sections {', '.join(extra)} are not part of {selector.value} data"
        )

    counts = {}
    for key in allowed_keys:
        records = data.get(key, [])
        if not isinstance(records, list):
            raise InvalidDataStructure(f"Section {key} is not a list")
        counts[key] = len(records)

    return IntegrityBlock(record_counts=counts, validation_rules=selector.validation_rules)


# ============================================================================
# Checksums
# ============================================================================


def calculate_checksum(text: str) -> str:
    """
    Rolling 32-bit hash of a string, hex-encoded.

    Each UTF-16 code unit is folded in as ``hash = hash * 31 + unit``, kept to
    a signed 32-bit value; the result is the hex of its absolute value.
    """
    value = 0
    for (unit,) in struct.iter_unpack("<H", text.encode("utf-16-le")):
        value = (value * 31 + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return format(abs(value), "x")


def canonical_json(envelope: Mapping[str, Any]) -> str:
    """
    Canonical serialization of an envelope with its checksum blanked.

    Keys are sorted and separators compact so that a parsed file
    re-serializes to the same text it was sealed with.
    """
    unsealed = copy.deepcopy(dict(envelope))
    integrity = unsealed.get("integrity")
    if isinstance(integrity, dict):
        integrity["checksum"] = ""
    return json.dumps(unsealed, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def compute_envelope_checksum(envelope: Mapping[str, Any]) -> str:
    """Checksum of an envelope, ignoring any checksum it already carries."""
    return calculate_checksum(canonical_json(envelope))


def seal_envelope(envelope: Dict[str, Any]) -> str:
    """
    Compute the envelope checksum and store it in ``integrity.checksum``.

    Returns:
        The checksum
    """
    checksum = compute_envelope_checksum(envelope)
    envelope.setdefault("integrity", {})["checksum"] = checksum
    return checksum


def verify_checksum(envelope: Mapping[str, Any]) -> bool:
    """True if the envelope's stored checksum matches its content."""
    integrity = envelope.get("integrity")
    if not isinstance(integrity, Mapping):
        return False
    stored = integrity.get("checksum")
    if not stored:
        return False
    return stored == compute_envelope_checksum(envelope)


def find_count_mismatches(envelope: Mapping[str, Any]) -> List[str]:
    """
    Compare the recorded counts with the actual section lengths.

    Returns:
        One description per disagreement (empty when everything agrees)
    """
    data = envelope.get("data")
    if not isinstance(data, Mapping):
        return []

    mismatches = []
    integrity = envelope.get("integrity")
    counts = integrity.get("recordCounts") if isinstance(integrity, Mapping) else None
    if isinstance(counts, Mapping):
        for key, expected in counts.items():
            records = data.get(key)
            actual = len(records) if isinstance(records, list) else 0
            if expected != actual:
                mismatches.append(f"{key}: expected {expected}, found {actual}")

    metadata = envelope.get("metadata")
    if isinstance(metadata, Mapping) and "recordCount" in metadata:
        total = sum(len(records) for records in data.values() if isinstance(records, list))
        if metadata["recordCount"] != total:
            mismatches.append(
                f"metadata.recordCount: expected {metadata['recordCount']}, found {total}"
            )
    return mismatches


# ============================================================================
# Identifier checks
# ============================================================================


def _record_violations(path: str, record: Mapping[str, Any]) -> List[str]:
    violations = []
    for name, value in record.items():
        if name == "id" or is_foreign_key_field(name):
            # Lists and dicts here are violations, not nested records
            if value is not None and not is_valid_uuid4(value):
                violations.append(f"{path}.{name}: {value!r} is not a valid UUID")
            continue
        if isinstance(value, list):
            for index, nested in enumerate(value):
                if isinstance(nested, Mapping):
                    violations.extend(_record_violations(f"{path}.{name}[{index}]", nested))
    return violations


def validate_identifiers(data: Mapping[str, Any]) -> List[str]:
    """
    Check every id and ``*_id`` field in every record against the UUID v4 shape.

    Null references are allowed. Nested lists of records are checked too.

    Args:
        data: Sections keyed by envelope data key

    Returns:
        One violation string per offending field, e.g.
        "products[2].category_id: 'abc' is not a valid UUID"
    """
    violations = []
    for key, records in data.items():
        if not isinstance(records, list):
            continue
        for index, record in enumerate(records):
            if isinstance(record, Mapping):
                violations.extend(_record_violations(f"{key}[{index}]", record))
    return violations


def kinds_with_records(data: Mapping[str, Any]) -> List[EntityKind]:
    """Kinds whose section is a non-empty list, in the order they appear."""
    kinds = []
    for key, records in data.items():
        try:
            kind = EntityKind.from_data_key(key)
        except ValueError:
            continue
        if isinstance(records, list) and records:
            kinds.append(kind)
    return kinds
