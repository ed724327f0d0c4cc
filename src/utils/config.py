"""
Configuration management for the POS snapshot pipeline.

This module handles:
- Database and export directory configuration
- Batch planner tuning (batch size bounds, memory heuristic, pause)
- Error recovery tuning (checkpoint ring size, retry delay scale)
- Environment-specific configuration (development vs. production)

Every tunable can be overridden with a ``POS_SNAPSHOT_<NAME>`` environment
variable. Invalid override values fall back to the default with a warning.
A Config is passed explicitly to the components that need it; there is no
process-wide instance.
"""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .constants import (
    APP_NAME,
    APP_VERSION,
    DATABASE_FILENAME,
    DATABASE_VERSION,
    DEFAULT_AVERAGE_BYTES_PER_RECORD,
    DEFAULT_BATCH_PAUSE_SECONDS,
    DEFAULT_MAX_BATCH_SIZE,
    DEFAULT_MAX_CHECKPOINTS,
    DEFAULT_MEMORY_BUDGET_BYTES,
    DEFAULT_MEMORY_THRESHOLD,
    DEFAULT_MIN_BATCH_SIZE,
    ENV_PREFIX,
)

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


class Config:
    """
    Snapshot pipeline configuration.

    Values are resolved in this order: explicit ``overrides`` passed to the
    constructor, ``POS_SNAPSHOT_*`` environment variables, built-in defaults.
    """

    def __init__(
        self,
        environment: str = "production",
        base_dir: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize configuration.

        Args:
            environment: Environment mode - 'production' or 'development'
            base_dir: Directory holding the database and exports. If None,
                derived from the environment.
            overrides: Explicit values that win over environment variables
        """
        self.environment = environment
        self._overrides = dict(overrides or {})

        if base_dir is not None:
            self._base_dir = Path(base_dir)
        elif environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_user_documents_dir()

    def _get_project_data_dir(self) -> Path:
        """Project data/ directory used during development."""
        project_root = Path(__file__).parent.parent.parent
        return project_root / "data"

    def _get_user_documents_dir(self) -> Path:
        """User's Documents folder with an app subdirectory."""
        return Path.home() / "Documents" / "POSSnapshot"

    def ensure_directories(self) -> None:
        """Create the data and export directories if they don't exist."""
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self.export_dir.mkdir(parents=True, exist_ok=True)

    # ========================================================================
    # Value resolution
    # ========================================================================

    def _resolve(self, name: str, default: Any, parser: Callable[[str], Any]) -> Any:
        if name in self._overrides:
            return self._overrides[name]

        env_name = f"{ENV_PREFIX}{name.upper()}"
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            return default

        try:
            return parser(raw)
        except ValueError:
            logger.warning(f"Invalid {env_name} value {raw!r}, using default {default!r}")
            return default

    def _resolve_positive_int(self, name: str, default: int) -> int:
        value = self._resolve(name, default, int)
        if value < 1:
            logger.warning(
                f"Invalid {ENV_PREFIX}{name.upper()} value {value!r} "
                f"(must be positive), using default {default!r}"
            )
            return default
        return value

    # ========================================================================
    # Application
    # ========================================================================

    @property
    def app_name(self) -> str:
        """Application name."""
        return APP_NAME

    @property
    def app_version(self) -> str:
        """Application version."""
        return APP_VERSION

    @property
    def database_version(self) -> str:
        """Database schema version."""
        return DATABASE_VERSION

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    # ========================================================================
    # Paths
    # ========================================================================

    @property
    def base_dir(self) -> Path:
        """Directory holding the database file."""
        return self._base_dir

    @property
    def database_path(self) -> Path:
        """Full path to the database file."""
        return self._base_dir / DATABASE_FILENAME

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        Returns:
            Database URL string for SQLAlchemy
        """
        db_path_str = str(self.database_path).replace("\\", "/")
        return self._resolve("database_url", f"sqlite:///{db_path_str}", str)

    @property
    def export_dir(self) -> Path:
        """Directory snapshot files are written to."""
        return Path(self._resolve("export_dir", self._base_dir / "exports", Path))

    @property
    def share_dir(self) -> Optional[Path]:
        """Outbox directory used by share(); None disables sharing."""
        value = self._resolve("share_dir", None, Path)
        return Path(value) if value is not None else None

    # ========================================================================
    # Batch planner
    # ========================================================================

    @property
    def min_batch_size(self) -> int:
        """Smallest batch the planner will choose."""
        return self._resolve_positive_int("min_batch_size", DEFAULT_MIN_BATCH_SIZE)

    @property
    def max_batch_size(self) -> int:
        """Largest batch the planner will choose."""
        value = self._resolve_positive_int("max_batch_size", DEFAULT_MAX_BATCH_SIZE)
        if value < self.min_batch_size:
            logger.warning(
                f"Invalid {ENV_PREFIX}MAX_BATCH_SIZE {value!r} is below the minimum, "
                f"using default {DEFAULT_MAX_BATCH_SIZE!r}"
            )
            return max(DEFAULT_MAX_BATCH_SIZE, self.min_batch_size)
        return value

    @property
    def memory_threshold(self) -> float:
        """Estimated memory utilization (percent) above which batches halve."""
        value = self._resolve("memory_threshold", DEFAULT_MEMORY_THRESHOLD, float)
        if not 0 < value <= 100:
            logger.warning(
                f"Invalid {ENV_PREFIX}MEMORY_THRESHOLD {value!r} (must be in (0, 100]), "
                f"using default {DEFAULT_MEMORY_THRESHOLD!r}"
            )
            return DEFAULT_MEMORY_THRESHOLD
        return value

    @property
    def average_bytes_per_record(self) -> int:
        """Bytes assumed per processed record by the memory heuristic."""
        return self._resolve_positive_int(
            "average_bytes_per_record", DEFAULT_AVERAGE_BYTES_PER_RECORD
        )

    @property
    def memory_budget_bytes(self) -> int:
        """Memory budget the heuristic measures utilization against."""
        return self._resolve_positive_int("memory_budget_bytes", DEFAULT_MEMORY_BUDGET_BYTES)

    @property
    def batch_pause_seconds(self) -> float:
        """Cooperative pause after each batch."""
        value = self._resolve("batch_pause_seconds", DEFAULT_BATCH_PAUSE_SECONDS, float)
        if value < 0:
            logger.warning(
                f"Invalid {ENV_PREFIX}BATCH_PAUSE_SECONDS {value!r}, "
                f"using default {DEFAULT_BATCH_PAUSE_SECONDS!r}"
            )
            return DEFAULT_BATCH_PAUSE_SECONDS
        return value

    @property
    def adaptive_batching(self) -> bool:
        """If False, the planner never adjusts sizes after seeding."""
        return self._resolve("adaptive_batching", True, _parse_bool)

    # ========================================================================
    # Recovery and sanitizing
    # ========================================================================

    @property
    def max_checkpoints(self) -> int:
        """Size of the checkpoint ring."""
        return self._resolve_positive_int("max_checkpoints", DEFAULT_MAX_CHECKPOINTS)

    @property
    def retry_delay_scale(self) -> float:
        """Multiplier applied to every retry delay (0 disables waiting)."""
        value = self._resolve("retry_delay_scale", 1.0, float)
        if value < 0:
            logger.warning(
                f"Invalid {ENV_PREFIX}RETRY_DELAY_SCALE {value!r}, using default 1.0"
            )
            return 1.0
        return value

    @property
    def strict_numeric(self) -> bool:
        """Reject records with unparseable numeric fields instead of coercing to 0."""
        return self._resolve("strict_numeric", False, _parse_bool)

    def __repr__(self) -> str:
        """String representation of config."""
        return f"Config(environment='{self.environment}', base_dir='{self._base_dir}')"
