"""Service layer logging utilities.

Provides structured logging functions for service operations, enabling
consistent log format and context across export, import and recovery.

Usage:
    from src.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    # Log a stage transition
    log_operation(
        logger,
        operation="export",
        outcome="stage_changed",
        stage="sanitizing",
        data_type="products",
    )

    # Log a skipped record
    log_operation(
        logger,
        operation="sanitize",
        outcome="record_rejected",
        level=logging.WARNING,
        kind="product",
        index=3,
    )
"""

import logging
from typing import Any

LOGGER_PREFIX = "pos_snapshot.services"


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance with the 'pos_snapshot.services' prefix.

    Example:
        >>> logger = get_service_logger(__name__)
        >>> logger.name
        'pos_snapshot.services.snapshot_export_service'
    """
    # Extract just the module name if full path is provided
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The message is "{operation}: {outcome}"; the context is passed via the
    'extra' parameter for structured logging.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "export", "import_batch", "checkpoint")
        outcome: Outcome description (e.g., "success", "record_rejected", "retrying")
        level: Log level (default: INFO). Use DEBUG for verbose/frequent logs.
        **context: Additional context fields. Common fields:
            - data_type: Selector being exported/imported
            - kind: Entity kind being processed
            - stage: Pipeline stage
            - error_kind: Classified error kind
            - error: Error message if outcome is an error

    Example:
        >>> log_operation(
        ...     logger,
        ...     operation="import_batch",
        ...     outcome="retrying",
        ...     level=logging.WARNING,
        ...     kind="product",
        ...     attempt=2,
        ... )
        # Logs "import_batch: retrying" at WARNING level with extra context
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)
