"""
Progress reporting and cooperative cancellation for long-running operations.

Exporter and importer report every stage transition and batch through a
single-subscriber callback. The reporter never drives control flow; the
engine's own stage is the source of truth and the callback only observes it.

Usage:
    def show(event):
        print(f"{event.stage}: {event.percentage}%")

    reporter = ProgressReporter(show)
    reporter.report("fetching", 2, 10)

    token = CancelToken()
    token.cancel()          # checked between batches
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from src.services.logging_utils import get_service_logger

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """One progress notification."""

    stage: str
    current: int
    total: int

    @property
    def percentage(self) -> int:
        """Whole percent complete, 0 when total is unknown."""
        if self.total <= 0:
            return 0
        return min(100, round(self.current * 100 / self.total))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "current": self.current,
            "total": self.total,
            "percentage": self.percentage,
        }


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressReporter:
    """
    Deliver progress events to at most one subscriber.

    Subscribing again replaces the previous callback. A callback that raises
    is logged and unsubscribed so a broken observer cannot fail the operation.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self.last_event: Optional[ProgressEvent] = None

    def subscribe(self, callback: Optional[ProgressCallback]) -> None:
        """Set (or clear, with None) the subscriber."""
        self._callback = callback

    def report(self, stage: str, current: int, total: int) -> ProgressEvent:
        """Record and deliver one event."""
        event = ProgressEvent(stage=stage, current=current, total=total)
        self.last_event = event
        if self._callback is None:
            return event
        try:
            self._callback(event)
        except Exception:
            logger.warning("Progress callback failed; unsubscribing", exc_info=True)
            self._callback = None
        return event


class CancelToken:
    """Cooperative cancellation flag, checked between batches."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        """Request cancellation; takes effect before the next batch."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled
