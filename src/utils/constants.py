"""
Constants for the POS snapshot pipeline.

This module defines all system-wide constants including:
- Application metadata
- Snapshot envelope format
- Batch planner and recovery defaults
- Export size estimation table
"""

from typing import Dict, List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "POS Snapshot"
APP_VERSION = "1.0.0"
DATABASE_FILENAME = "pos_snapshot.db"
DATABASE_VERSION = "1.0"

# Environment variable prefix for configuration overrides
ENV_PREFIX = "POS_SNAPSHOT_"

# ============================================================================
# Snapshot Envelope
# ============================================================================

SNAPSHOT_FORMAT_VERSION = "2.0"

# Filename: {dataType}_export_{YYYY-MM-DD}[_empty].json
EXPORT_FILENAME_TEMPLATE = "{data_type}_export_{date}{suffix}.json"
EMPTY_EXPORT_SUFFIX = "_empty"

# Marker appended to validationRules when identifier checks found problems
UUID_VALIDATION_MARKER = "uuid_format_validation"

# Number of sample records shown per kind in an import preview
PREVIEW_SAMPLE_SIZE = 3

# Validation errors listed before "... and N more errors"
MAX_LISTED_VALIDATION_ERRORS = 3

# ============================================================================
# Batch Planner Defaults
# ============================================================================

DEFAULT_MIN_BATCH_SIZE = 5
DEFAULT_MAX_BATCH_SIZE = 100
DEFAULT_MEMORY_THRESHOLD = 80  # percent
DEFAULT_AVERAGE_BYTES_PER_RECORD = 1024
DEFAULT_MEMORY_BUDGET_BYTES = 100 * 1024 * 1024
DEFAULT_BATCH_PAUSE_SECONDS = 0.01

# (exclusive upper bound on total records, seed size); larger datasets seed at the max size
BATCH_SEED_TABLE = [
    (100, 10),
    (1_000, 25),
    (10_000, 50),
]

BATCH_DURATION_HISTORY = 20
RECENT_BATCH_WINDOW = 3
SLOW_BATCH_RATIO = 1.5
FAST_BATCH_RATIO = 0.7
SHRINK_FACTOR = 0.8
GROW_FACTOR = 1.2

# ============================================================================
# Error Recovery Defaults
# ============================================================================

DEFAULT_MAX_CHECKPOINTS = 10

# ============================================================================
# Export Size Estimation
# ============================================================================

# Approximate serialized bytes per record, keyed by envelope data key
ESTIMATED_RECORD_BYTES: Dict[str, int] = {
    "products": 300,
    "categories": 100,
    "suppliers": 200,
    "sales": 250,
    "saleItems": 150,
    "customers": 200,
    "expenses": 180,
    "expenseCategories": 80,
    "stockMovements": 200,
    "bulkPricing": 120,
}

MIN_ENVELOPE_OVERHEAD_BYTES = 2000
ENVELOPE_OVERHEAD_RATIO = 0.15

SIZE_UNITS: List[str] = ["B", "KB", "MB", "GB"]
