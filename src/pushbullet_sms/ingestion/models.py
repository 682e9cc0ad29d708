"""
Data models for the ingestion layer.

These models represent data structures for:
- Normalized SMS messages (stream, mirror, poll and thread paths)
- Wait filters
- Stream events emitted by the WebSocket client
- Error records for metrics

Note on timestamps:
    Pushbullet sends whole-second Unix epoch values. They are always
    converted to milliseconds before being turned into a datetime, so
    every stored timestamp renders with millisecond precision.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .extractor import extract_code

UNKNOWN_SENDER = "Unknown"

# Default Android SMS app; mirrors from it are treated as SMS
DEFAULT_SMS_PACKAGE = "com.android.mms"


class MessageSource(str, Enum):
    """Which ingestion path produced a message."""
    STREAM = "stream"
    MIRROR = "mirror"
    POLL = "poll"
    THREAD = "thread"


class StreamEventKind(str, Enum):
    """Kinds of events emitted by the stream client."""
    OPENED = "opened"
    CLOSED = "closed"
    ERRORED = "errored"
    FRAME_RECEIVED = "frame_received"


def epoch_seconds_to_datetime(seconds: float) -> datetime:
    """Convert a relay epoch-seconds value to an aware UTC datetime."""
    millis = int(round(float(seconds) * 1000))
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def format_timestamp(ts: datetime) -> str:
    """Render a datetime as an ISO-8601 instant with millisecond precision."""
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SmsMessage:
    """
    Canonical stored SMS message.

    Messages are immutable once built. Identity (``id``) is the only
    thing the store uses for dedup.

    Attributes:
        id: Dedup identity (see the ``from_*`` constructors for schemes)
        sender: Display name or raw address, "Unknown" if absent
        body: Message text, "" if absent
        timestamp: Aware UTC datetime, millisecond precision
        thread_id: Relay thread identifier (if known)
        app: Application name for mirrored notifications
        source: Ingestion path that produced this message
    """
    id: str
    sender: str
    body: str
    timestamp: datetime
    thread_id: Optional[str] = None
    app: Optional[str] = None
    source: MessageSource = MessageSource.STREAM

    @property
    def timestamp_iso(self) -> str:
        """Timestamp as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
        return format_timestamp(self.timestamp)

    @property
    def age_seconds(self) -> float:
        """Seconds since this message's timestamp."""
        now = datetime.now(timezone.utc)
        return (now - self.timestamp).total_seconds()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "sender": self.sender,
            "body": self.body,
            "timestamp": self.timestamp_iso,
            "threadId": self.thread_id,
            "app": self.app,
            "source": self.source.value,
        }

    # =========================================================================
    # Normalization from relay payloads
    # =========================================================================

    @classmethod
    def from_stream_notification(
        cls,
        notification: dict,
        received_ms: Optional[int] = None,
    ) -> "SmsMessage":
        """
        Build a message from an ``sms_changed`` notification seen on the stream.

        The stream carries no per-notification server timestamp, so the id
        uses the local receipt time. Such ids will not collide with the poll
        path's ids for the same SMS; exact-id dedup is all we do.
        """
        received_ms = _now_ms() if received_ms is None else received_ms
        thread_id = notification.get("thread_id")
        return cls(
            id=f"{thread_id}_{received_ms}",
            sender=notification.get("title") or UNKNOWN_SENDER,
            body=notification.get("body") or "",
            timestamp=datetime.fromtimestamp(received_ms / 1000, tz=timezone.utc),
            thread_id=thread_id,
            source=MessageSource.STREAM,
        )

    @classmethod
    def from_mirror(
        cls,
        push: dict,
        received_ms: Optional[int] = None,
    ) -> "SmsMessage":
        """Build a message from a ``mirror`` push of the default SMS app."""
        received_ms = _now_ms() if received_ms is None else received_ms
        return cls(
            id=f"mirror_{received_ms}",
            sender=push.get("title") or UNKNOWN_SENDER,
            body=push.get("body") or "",
            timestamp=datetime.fromtimestamp(received_ms / 1000, tz=timezone.utc),
            app=push.get("application_name"),
            source=MessageSource.MIRROR,
        )

    @classmethod
    def from_polled_notification(
        cls,
        notification: dict,
        modified: Any,
    ) -> "SmsMessage":
        """
        Build a message from a notification inside a polled ``sms_changed`` push.

        The id combines the thread id with the push's server-side
        ``modified`` value exactly as the relay sent it.
        """
        thread_id = notification.get("thread_id")
        return cls(
            id=f"{thread_id}_{modified}",
            sender=notification.get("title") or UNKNOWN_SENDER,
            body=notification.get("body") or "",
            timestamp=epoch_seconds_to_datetime(modified),
            thread_id=thread_id,
            source=MessageSource.POLL,
        )

    @classmethod
    def from_thread(cls, thread: dict) -> Optional["SmsMessage"]:
        """
        Build a message from a thread's latest entry.

        Returns None when the thread has no ``latest`` message.
        """
        latest = thread.get("latest")
        if not latest:
            return None

        recipients = thread.get("recipients") or []
        first = recipients[0] if recipients else {}
        sender = first.get("name") or first.get("number") or UNKNOWN_SENDER

        thread_id = thread.get("id")
        return cls(
            id=str(thread_id),
            sender=sender,
            body=latest.get("body") or "",
            timestamp=epoch_seconds_to_datetime(latest.get("timestamp", 0)),
            thread_id=thread_id,
            source=MessageSource.THREAD,
        )


@dataclass(frozen=True)
class SmsFilter:
    """
    Conjunction of optional message predicates.

    Attributes:
        sender: Case-insensitive substring of the sender
        contains: Case-insensitive substring of the body
        has_code: Require an extractable verification code
    """
    sender: Optional[str] = None
    contains: Optional[str] = None
    has_code: bool = False

    @property
    def is_empty(self) -> bool:
        """Whether the filter matches everything."""
        return not self.sender and not self.contains and not self.has_code

    def matches(self, message: SmsMessage) -> bool:
        """Check whether a message satisfies every set predicate."""
        if self.sender and self.sender.lower() not in message.sender.lower():
            return False
        if self.contains and self.contains.lower() not in message.body.lower():
            return False
        if self.has_code and extract_code(message.body) is None:
            return False
        return True

    def to_dict(self) -> dict:
        """Only the predicates that are set, using the tool argument names."""
        data: dict[str, Any] = {}
        if self.sender:
            data["sender"] = self.sender
        if self.contains:
            data["contains"] = self.contains
        if self.has_code:
            data["hasCode"] = True
        return data


@dataclass(frozen=True)
class StreamEvent:
    """
    Event emitted by the stream client.

    Only FRAME_RECEIVED carries a frame; ERRORED may carry the error.
    """
    kind: StreamEventKind
    frame: Optional[dict] = None
    error: Optional[BaseException] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ErrorRecord:
    """Record of an error that occurred during ingestion."""
    timestamp: datetime
    error_type: str
    message: str
    component: str  # "websocket", "rest", "poller", "service"
    recoverable: bool = True

    @property
    def age_seconds(self) -> float:
        """Seconds since this error occurred."""
        now = datetime.now(timezone.utc)
        return (now - self.timestamp).total_seconds()
