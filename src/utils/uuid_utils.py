"""
UUID helpers for entity identifiers.

Entity ids are random (version 4) UUIDs stored as 36-character strings.
"""

import re
import uuid
from typing import Any

UUID_V4_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def new_id() -> str:
    """Generate a new entity id."""
    return str(uuid.uuid4())


def is_valid_uuid4(value: Any) -> bool:
    """
    Check whether a value is a version 4 UUID string.

    Args:
        value: Candidate identifier

    Returns:
        True if value is a string in canonical UUID v4 shape
    """
    return isinstance(value, str) and UUID_V4_PATTERN.match(value) is not None


def is_foreign_key_field(field_name: str) -> bool:
    """True for fields named like foreign keys (``*_id``)."""
    return field_name.endswith("_id")
