"""
Bounded in-memory SMS buffer.

Messages are kept newest-first by insertion order (not by timestamp) and
deduplicated by id. All access happens on the event loop thread, so each
insert is atomic with respect to the stream and poll writers.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Iterator, Optional

from .models import SmsMessage

logger = logging.getLogger(__name__)

MAX_STORED = 100

# Called synchronously with each newly stored message
InsertListener = Callable[[SmsMessage], None]


class MessageStore:
    """
    Ordered, bounded, id-deduplicated message buffer.

    Usage:
        store = MessageStore()
        store.insert(message)          # True if stored, False if duplicate
        store.list(limit=10, sender="bank")

        unsubscribe = store.subscribe(on_insert)
        ...
        unsubscribe()
    """

    def __init__(self, max_size: int = MAX_STORED):
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")

        self._max_size = max_size
        self._messages: deque[SmsMessage] = deque()
        self._ids: set[str] = set()
        self._listeners: list[InsertListener] = []
        self._evicted_count = 0

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __iter__(self) -> Iterator[SmsMessage]:
        # Snapshot so listeners inserting during iteration are safe
        return iter(list(self._messages))

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def evicted_count(self) -> int:
        """Number of messages dropped from the tail since creation."""
        return self._evicted_count

    def size(self) -> int:
        """Number of stored messages."""
        return len(self._messages)

    def most_recent(self) -> Optional[SmsMessage]:
        """Most recently inserted message, or None if empty."""
        return self._messages[0] if self._messages else None

    def get(self, message_id: str) -> Optional[SmsMessage]:
        """Look up a stored message by id."""
        if message_id not in self._ids:
            return None
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def insert(self, message: SmsMessage) -> bool:
        """
        Store a message at the front of the buffer.

        Inserting a known id is a no-op. After a successful insert the
        oldest entries are evicted while the buffer is over capacity, and
        every listener is notified.

        Returns:
            True if the message was stored, False if it was a duplicate
        """
        if message.id in self._ids:
            logger.debug(f"Duplicate message ignored: {message.id}")
            return False

        self._messages.appendleft(message)
        self._ids.add(message.id)

        while len(self._messages) > self._max_size:
            evicted = self._messages.pop()
            self._ids.discard(evicted.id)
            self._evicted_count += 1

        logger.info(
            f"SMS received from {message.sender}: {message.body[:50]}..."
        )

        self._notify(message)
        return True

    def list(
        self,
        limit: int = 10,
        sender: Optional[str] = None,
    ) -> list[SmsMessage]:
        """
        Get the newest messages, optionally filtered by sender.

        The ``limit`` newest entries are taken first and the sender filter
        (case-insensitive substring) is applied to that window.

        Args:
            limit: Maximum number of messages to consider
            sender: Optional sender substring

        Returns:
            Messages, newest first
        """
        if limit <= 0:
            return []

        window = list(self._messages)[:limit]
        if sender:
            needle = sender.lower()
            window = [m for m in window if needle in m.sender.lower()]
        return window

    def subscribe(self, listener: InsertListener) -> Callable[[], None]:
        """
        Register a listener for newly stored messages.

        Returns:
            Function that removes the listener (safe to call twice)
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self, message: SmsMessage) -> None:
        """Deliver a new message to every listener."""
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                logger.error(f"Error in store listener: {e}")

    def clear(self) -> None:
        """Drop all messages (for testing)."""
        self._messages.clear()
        self._ids.clear()
