"""
Metrics collection for the ingestion service.

Provides metrics collection with rolling time windows for tracking
stream health and message flow from both ingestion channels.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .models import ErrorRecord, MessageSource


@dataclass
class IngestionMetrics:
    """
    Snapshot of ingestion service health and message flow.

    This is an immutable snapshot - use MetricsCollector to track
    metrics over time.
    """
    # Connection state
    websocket_connected: bool = False
    websocket_connected_at: Optional[datetime] = None
    last_frame_at: Optional[datetime] = None
    reconnection_count: int = 0

    # Data flow (from rolling window)
    frames_received: int = 0
    tickles_received: int = 0
    polls_completed: int = 0
    poll_failures: int = 0
    duplicates_dropped: int = 0
    messages_stored: int = 0
    messages_by_source: dict[str, int] = field(default_factory=dict)

    # Errors
    errors_last_hour: int = 0
    recent_errors: list[ErrorRecord] = field(default_factory=list)

    # Uptime
    started_at: Optional[datetime] = None
    uptime_seconds: float = 0.0

    @property
    def last_frame_age_seconds(self) -> Optional[float]:
        """Seconds since the last stream frame."""
        if self.last_frame_at is None:
            return None
        now = datetime.now(timezone.utc)
        return (now - self.last_frame_at).total_seconds()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "websocket_connected": self.websocket_connected,
            "websocket_connected_at": self.websocket_connected_at.isoformat() if self.websocket_connected_at else None,
            "last_frame_at": self.last_frame_at.isoformat() if self.last_frame_at else None,
            "last_frame_age_seconds": self.last_frame_age_seconds,
            "reconnection_count": self.reconnection_count,
            "frames_received": self.frames_received,
            "tickles_received": self.tickles_received,
            "polls_completed": self.polls_completed,
            "poll_failures": self.poll_failures,
            "duplicates_dropped": self.duplicates_dropped,
            "messages_stored": self.messages_stored,
            "messages_by_source": dict(self.messages_by_source),
            "errors_last_hour": self.errors_last_hour,
            "recent_errors": [
                {
                    "timestamp": e.timestamp.isoformat(),
                    "error_type": e.error_type,
                    "message": e.message,
                    "component": e.component,
                }
                for e in self.recent_errors
            ],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "uptime_seconds": round(self.uptime_seconds, 0),
        }


class MetricsCollector:
    """
    Metrics collection with rolling time windows.

    All recording happens on the event loop thread.

    Usage:
        collector = MetricsCollector()
        collector.start()

        collector.record_frame()
        collector.record_message_stored(MessageSource.STREAM)

        metrics = collector.get_metrics()
        print(f"Stored: {metrics.messages_stored}")
    """

    def __init__(
        self,
        window_seconds: float = 3600.0,  # 1 hour window
        max_errors: int = 100,  # Keep last N errors
    ):
        self._window_seconds = window_seconds
        self._max_errors = max_errors

        # Connection state
        self._websocket_connected = False
        self._websocket_connected_at: Optional[datetime] = None
        self._last_frame_at: Optional[datetime] = None
        self._reconnection_count = 0

        # Rolling window data
        self._frames: deque[float] = deque()
        self._tickles: deque[float] = deque()
        self._polls: deque[float] = deque()
        self._poll_failures: deque[float] = deque()
        self._duplicates: deque[tuple[float, int]] = deque()  # (timestamp, count)
        self._stored: deque[tuple[float, str]] = deque()  # (timestamp, source)

        # Error tracking
        self._errors: deque[ErrorRecord] = deque(maxlen=max_errors)

        # Uptime
        self._started_at: Optional[datetime] = None

    def start(self) -> None:
        """Mark the service as started."""
        self._started_at = datetime.now(timezone.utc)

    def stop(self) -> None:
        """Mark the service as stopped."""
        self._websocket_connected = False

    def _now(self) -> float:
        """Current time as Unix timestamp."""
        return time.time()

    def _prune_old(self, dq: deque, cutoff: float) -> None:
        """Remove entries older than cutoff."""
        while dq:
            head = dq[0]
            ts = head[0] if isinstance(head, tuple) else head
            if ts >= cutoff:
                break
            dq.popleft()

    def _prune_all(self) -> None:
        """Prune all rolling windows."""
        cutoff = self._now() - self._window_seconds
        for dq in (
            self._frames,
            self._tickles,
            self._polls,
            self._poll_failures,
            self._duplicates,
            self._stored,
        ):
            self._prune_old(dq, cutoff)

    # Connection state updates

    def set_websocket_connected(self, connected: bool) -> None:
        """Update WebSocket connection state."""
        was_connected = self._websocket_connected
        self._websocket_connected = connected
        if connected:
            self._websocket_connected_at = datetime.now(timezone.utc)
        elif was_connected:
            self._reconnection_count += 1

    # Event recording

    def record_frame(self) -> None:
        """Record a decoded stream frame."""
        self._frames.append(self._now())
        self._last_frame_at = datetime.now(timezone.utc)

    def record_tickle(self) -> None:
        """Record a push tickle."""
        self._tickles.append(self._now())

    def record_poll(self) -> None:
        """Record a completed fetch-and-reconcile."""
        self._polls.append(self._now())

    def record_poll_failure(self) -> None:
        """Record a failed REST fetch."""
        self._poll_failures.append(self._now())

    def record_duplicates(self, count: int = 1) -> None:
        """Record messages dropped as duplicates."""
        self._duplicates.append((self._now(), count))

    def record_message_stored(self, source: MessageSource) -> None:
        """Record a message newly stored."""
        self._stored.append((self._now(), MessageSource(source).value))

    def record_error(
        self,
        error_type: str,
        message: str,
        component: str,
        recoverable: bool = True,
    ) -> None:
        """Record an error."""
        self._errors.append(ErrorRecord(
            timestamp=datetime.now(timezone.utc),
            error_type=error_type,
            message=message,
            component=component,
            recoverable=recoverable,
        ))

    # Metrics retrieval

    def get_metrics(self) -> IngestionMetrics:
        """Get current metrics snapshot."""
        self._prune_all()

        now = self._now()

        by_source: dict[str, int] = {}
        for _, source in self._stored:
            by_source[source] = by_source.get(source, 0) + 1

        # Count errors in last hour
        hour_ago = now - 3600
        errors_last_hour = sum(1 for e in self._errors if e.timestamp.timestamp() > hour_ago)

        # Uptime
        uptime = 0.0
        if self._started_at:
            uptime = (datetime.now(timezone.utc) - self._started_at).total_seconds()

        return IngestionMetrics(
            websocket_connected=self._websocket_connected,
            websocket_connected_at=self._websocket_connected_at,
            last_frame_at=self._last_frame_at,
            reconnection_count=self._reconnection_count,
            frames_received=len(self._frames),
            tickles_received=len(self._tickles),
            polls_completed=len(self._polls),
            poll_failures=len(self._poll_failures),
            duplicates_dropped=sum(count for _, count in self._duplicates),
            messages_stored=len(self._stored),
            messages_by_source=by_source,
            errors_last_hour=errors_last_hour,
            recent_errors=list(self._errors)[-10:],  # Last 10 errors
            started_at=self._started_at,
            uptime_seconds=uptime,
        )

    def reset(self) -> None:
        """Reset all metrics (for testing)."""
        self._frames.clear()
        self._tickles.clear()
        self._polls.clear()
        self._poll_failures.clear()
        self._duplicates.clear()
        self._stored.clear()
        self._errors.clear()
        self._reconnection_count = 0
        self._websocket_connected = False
        self._websocket_connected_at = None
        self._last_frame_at = None
        self._started_at = None
