"""
Pipeline log stream for SSE streaming.

The orchestrator publishes one LogEvent per noteworthy step; any number of
SSE connections subscribe and unsubscribe independently. Subscribing only
yields events published afterwards (no replay).
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from queue import Full, Queue
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class LogEvent:
    """A single log line from the pipeline."""

    message: str
    level: str = "info"
    stage: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "message": self.message,
            "level": self.level,
            "stage": self.stage,
            "data": self.data,
        }

    def to_sse(self) -> str:
        """Format as Server-Sent Event."""
        return f"data: {json.dumps(self.to_dict(), ensure_ascii=False, default=str)}\n\n"


class LogStream:
    """
    Broadcast channel for pipeline log events.

    Thread-safe for use from the pipeline worker thread. Each subscriber gets
    its own bounded queue; a full queue drops the event for that subscriber
    only, so a slow consumer never blocks the pipeline.

    Usage:
        queue = stream.subscribe()
        stream.publish(LogEvent("Matching started", stage="matching"))
        event = queue.get()
        stream.unsubscribe(queue)
    """

    def __init__(self, *, maxsize: int = 1000) -> None:
        self._maxsize = maxsize
        self._subscribers: list[Queue[LogEvent | None]] = []
        self._lock = threading.Lock()

    def subscribe(self) -> Queue[LogEvent | None]:
        """Create a new subscriber queue for an SSE connection."""
        queue: Queue[LogEvent | None] = Queue(maxsize=self._maxsize)
        with self._lock:
            self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: Queue[LogEvent | None]) -> None:
        """Remove a subscriber when its SSE connection closes."""
        with self._lock:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def publish(self, event: LogEvent) -> None:
        """Deliver event to all current subscribers without blocking."""
        with self._lock:
            subscribers = list(self._subscribers)
        for queue in subscribers:
            try:
                queue.put_nowait(event)
            except Full:
                # Slow consumer
                pass

    def close(self) -> None:
        """Send the end-of-stream sentinel to all subscribers."""
        with self._lock:
            subscribers = list(self._subscribers)
        for queue in subscribers:
            try:
                queue.put_nowait(None)
            except Full:
                pass

    @property
    def has_subscribers(self) -> bool:
        with self._lock:
            return len(self._subscribers) > 0


_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class PipelineLog:
    """Writes each pipeline log line to both the Python logger and the stream."""

    def __init__(self, stream: LogStream, *, logger_: logging.Logger | None = None) -> None:
        self.stream = stream
        self._logger = logger_ or logger

    def emit(
        self,
        message: str,
        *,
        level: str = "info",
        stage: str | None = None,
        **data: Any,
    ) -> LogEvent:
        event = LogEvent(message=message, level=level, stage=stage, data=data)
        prefix = f"[{stage}] " if stage else ""
        self._logger.log(_LEVELS.get(level, logging.INFO), "%s%s", prefix, message)
        self.stream.publish(event)
        return event

    def info(self, message: str, *, stage: str | None = None, **data: Any) -> LogEvent:
        return self.emit(message, level="info", stage=stage, **data)

    def warning(self, message: str, *, stage: str | None = None, **data: Any) -> LogEvent:
        return self.emit(message, level="warning", stage=stage, **data)

    def error(self, message: str, *, stage: str | None = None, **data: Any) -> LogEvent:
        return self.emit(message, level="error", stage=stage, **data)
