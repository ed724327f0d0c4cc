"""
Batch Planner - adaptive batch sizing for streaming export and import phases.

Batch sizes start from a seed chosen by dataset size and then react to two
signals:

- Estimated memory use. There is no direct memory introspection, so the
  estimate is ``records_processed * average_bytes_per_record`` measured
  against a fixed budget. Above the threshold the batch size halves.
- Batch timing. When the last three batches averaged more than 1.5x the
  overall average the size shrinks by 20%; below 0.7x it grows by 20%.

Usage:
    planner = BatchPlanner(config)
    for batch in planner.iter_batches(records, cancel_token):
        write(batch)
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence, TypeVar

from src.services.exceptions import OperationCancelled
from src.services.logging_utils import get_service_logger, log_operation
from src.services.progress import CancelToken
from src.utils.config import Config
from src.utils.constants import (
    BATCH_DURATION_HISTORY,
    BATCH_SEED_TABLE,
    FAST_BATCH_RATIO,
    GROW_FACTOR,
    RECENT_BATCH_WINDOW,
    SHRINK_FACTOR,
    SLOW_BATCH_RATIO,
)

logger = get_service_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class MemoryEstimate:
    """Heuristic memory use against the configured budget."""

    used_bytes: int
    budget_bytes: int

    @property
    def percentage(self) -> float:
        if self.budget_bytes <= 0:
            return 0.0
        return self.used_bytes * 100.0 / self.budget_bytes


class BatchPlanner:
    """
    Chooses batch sizes and streams records in batches.

    Args:
        config: Source of size bounds, memory heuristic and pause length
        memory_probe: Optional replacement for the built-in memory heuristic
        clock: Monotonic clock used to time batches
        sleep: Function used for the cooperative pause between batches
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        memory_probe: Optional[Callable[[], MemoryEstimate]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        config = config or Config()
        self.min_size = config.min_batch_size
        self.max_size = config.max_batch_size
        self.memory_threshold = config.memory_threshold
        self.adaptive = config.adaptive_batching
        self.pause_seconds = config.batch_pause_seconds
        self._bytes_per_record = config.average_bytes_per_record
        self._memory_budget = config.memory_budget_bytes

        self._memory_probe = memory_probe
        self._clock = clock
        self._sleep = sleep

        self._durations: deque = deque(maxlen=BATCH_DURATION_HISTORY)
        self._batch_records: deque = deque(maxlen=BATCH_DURATION_HISTORY)
        self._sizes: deque = deque(maxlen=BATCH_DURATION_HISTORY)
        self._memory_pressure = False
        self.records_processed = 0

    # ========================================================================
    # Sizing
    # ========================================================================

    @property
    def size_history(self) -> List[int]:
        """Batch sizes chosen so far (most recent last, bounded)."""
        return list(self._sizes)

    @property
    def durations(self) -> List[float]:
        """Recorded batch durations in seconds (most recent last, bounded)."""
        return list(self._durations)

    def seed_size(self, total_records: int) -> int:
        """Starting size for a dataset of ``total_records``."""
        size = self.max_size
        for upper_bound, seed in BATCH_SEED_TABLE:
            if total_records < upper_bound:
                size = min(seed, self.max_size)
                break
        return max(self.min_size, size)

    def estimate_memory(self) -> MemoryEstimate:
        """Current memory estimate (probe if configured, else the record heuristic)."""
        if self._memory_probe is not None:
            return self._memory_probe()
        return MemoryEstimate(
            used_bytes=self.records_processed * self._bytes_per_record,
            budget_bytes=self._memory_budget,
        )

    def next_batch_size(
        self,
        total_records: int,
        recent_durations: Optional[Sequence[float]] = None,
        memory_estimate: Optional[MemoryEstimate] = None,
    ) -> int:
        """
        Choose the size of the next batch.

        Args:
            total_records: Size of the dataset being processed
            recent_durations: Batch durations to judge timing by; defaults to
                the planner's own history
            memory_estimate: Memory estimate to use; defaults to estimate_memory()

        Returns:
            Batch size within [min_size, max_size]
        """
        size = self.seed_size(total_records)
        if total_records <= 0:
            self._sizes.append(size)
            return size

        under_pressure = self._memory_pressure
        if self._memory_pressure:
            size = max(self.min_size, size // 2)
            self._memory_pressure = False

        if self.adaptive:
            memory = memory_estimate or self.estimate_memory()
            if memory.percentage > self.memory_threshold:
                size = max(self.min_size, size // 2)
                under_pressure = True
                log_operation(
                    logger,
                    operation="plan_batch",
                    outcome="memory_threshold_exceeded",
                    level=logging.DEBUG,
                    memory_percentage=round(memory.percentage, 1),
                    batch_size=size,
                )

            durations = list(recent_durations) if recent_durations is not None else self.durations
            size = self._adjust_for_timing(size, durations, allow_growth=not under_pressure)

        self._sizes.append(size)
        return size

    def _adjust_for_timing(self, size: int, durations: List[float], allow_growth: bool) -> int:
        if len(durations) <= RECENT_BATCH_WINDOW:
            return size

        overall = sum(durations) / len(durations)
        if overall <= 0:
            return size

        recent = durations[-RECENT_BATCH_WINDOW:]
        recent_average = sum(recent) / len(recent)

        if recent_average > overall * SLOW_BATCH_RATIO:
            return max(self.min_size, int(size * SHRINK_FACTOR))
        if allow_growth and recent_average < overall * FAST_BATCH_RATIO:
            return min(self.max_size, int(size * GROW_FACTOR))
        return size

    def apply_memory_pressure(self) -> None:
        """Halve the next chosen size once (mitigation for memory failures)."""
        self._memory_pressure = True
        log_operation(
            logger,
            operation="plan_batch",
            outcome="memory_pressure_applied",
            level=logging.WARNING,
        )

    # ========================================================================
    # Streaming
    # ========================================================================

    def record_batch(self, duration: float, record_count: int) -> None:
        """Add a finished batch to the history."""
        self._durations.append(max(0.0, duration))
        self._batch_records.append(record_count)
        self.records_processed += record_count

    def iter_batches(
        self,
        records: Sequence[T],
        cancel_token: Optional[CancelToken] = None,
        operation: str = "batch",
    ) -> Iterator[List[T]]:
        """
        Yield consecutive batches of ``records`` in order.

        Each batch is timed from the moment it is yielded until the consumer
        asks for the next one. After every batch but the last, the generator
        pauses briefly so interactive callers stay responsive.

        Raises:
            OperationCancelled: If the token is cancelled before a batch starts
        """
        total = len(records)
        position = 0
        while position < total:
            if cancel_token is not None and cancel_token.cancelled:
                raise OperationCancelled(operation, position)

            size = self.next_batch_size(total)
            batch = list(records[position : position + size])
            started = self._clock()
            yield batch
            self.record_batch(self._clock() - started, len(batch))
            position += len(batch)

            if position < total and self.pause_seconds > 0:
                self._sleep(self.pause_seconds)

    # ========================================================================
    # Reporting
    # ========================================================================

    def estimated_time_remaining(self, remaining_records: int) -> float:
        """Seconds needed for ``remaining_records`` at the recent pace (0 if unknown)."""
        processed = sum(self._batch_records)
        if remaining_records <= 0 or processed == 0:
            return 0.0
        return sum(self._durations) / processed * remaining_records

    def recommendations(self) -> List[str]:
        """Plain-language tuning hints from the current history."""
        hints = []
        if self.estimate_memory().percentage > self.memory_threshold:
            hints.append("Memory usage is high. Consider exporting smaller data types separately.")
        if self._durations and sum(self._durations) / len(self._durations) > 1.0:
            hints.append("Batches are slow. Close other apps or reduce the batch size.")
        if self.records_processed > 10_000:
            hints.append("Large dataset detected. Consider exporting one data type at a time.")
        return hints

    def reset(self) -> None:
        """Forget all history (start of a new operation)."""
        self._durations.clear()
        self._batch_records.clear()
        self._sizes.clear()
        self._memory_pressure = False
        self.records_processed = 0
