"""
Progress callbacks for audit requests.

The orchestrator reports chunk completions, accepted findings and the
final summary through a ProgressCallback; the default just logs.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ProgressEventType(Enum):
    """Types of progress events during an audit."""
    STARTED = "started"
    CHUNK_COMPLETED = "chunk_completed"
    CHUNK_FAILED = "chunk_failed"
    FINDING = "finding"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class ProgressEvent:
    """A progress update event."""
    type: ProgressEventType
    request_id: str = ""
    message: str = ""
    current: int = 0
    total: int = 0
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return round(100.0 * self.current / self.total, 1)


class ProgressCallback:
    """Base class for progress callbacks."""

    def on_progress(self, event: ProgressEvent) -> None:
        """Handle a progress event."""
        raise NotImplementedError


class LoggingProgressCallback(ProgressCallback):
    """Logs progress events."""

    def on_progress(self, event: ProgressEvent) -> None:
        prefix = f"[PROGRESS] {event.request_id}"
        if event.type == ProgressEventType.STARTED:
            logger.info(f"{prefix} Audit started: {event.total} chunk(s)")
        elif event.type == ProgressEventType.CHUNK_COMPLETED:
            logger.info(f"{prefix} Chunk done ({event.current}/{event.total}, {event.percentage}%)")
        elif event.type == ProgressEventType.CHUNK_FAILED:
            logger.warning(f"{prefix} Chunk failed ({event.current}/{event.total}): {event.message}")
        elif event.type == ProgressEventType.FINDING:
            logger.debug(f"{prefix} Finding: {event.message}")
        elif event.type == ProgressEventType.COMPLETED:
            logger.info(f"{prefix} Audit completed: {event.message}")
        elif event.type == ProgressEventType.ERROR:
            logger.error(f"{prefix} Error: {event.message}")


class ProgressTracker:
    """Counts chunk completions for one request and fires callbacks."""

    def __init__(self, request_id: str, total: int, callback: Optional[ProgressCallback] = None):
        self.callback = callback or LoggingProgressCallback()
        self.request_id = request_id
        self.total = total
        self.done = 0

    def _fire(self, event_type: ProgressEventType, message: str = "", **details: Any) -> None:
        self.callback.on_progress(ProgressEvent(
            type=event_type,
            request_id=self.request_id,
            message=message,
            current=self.done,
            total=self.total,
            details=details,
        ))

    def on_started(self):
        self._fire(ProgressEventType.STARTED)

    def on_chunk_completed(self, chunk_index: int):
        self.done += 1
        self._fire(ProgressEventType.CHUNK_COMPLETED, chunk_index=chunk_index)

    def on_chunk_failed(self, chunk_index: int, message: str):
        self.done += 1
        self._fire(ProgressEventType.CHUNK_FAILED, message, chunk_index=chunk_index)

    def on_finding(self, message: str):
        self._fire(ProgressEventType.FINDING, message)

    def on_completed(self, message: str):
        self._fire(ProgressEventType.COMPLETED, message)

    def on_error(self, message: str):
        self._fire(ProgressEventType.ERROR, message)
