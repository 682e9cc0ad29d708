"""
Blocking "wait for the next matching SMS" on top of the message store.

A wait first scans what is already stored. If nothing matches it registers
a store listener and suspends on a future that the first qualifying
insertion completes. Waits never block the event loop and any number of
them can be pending at once; one insert is delivered to all of them.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .models import SmsFilter, SmsMessage
from .store import MessageStore

logger = logging.getLogger(__name__)

# New arrivals older than this (relative to the wait start) are ignored
FRESHNESS_WINDOW_SECONDS = 60.0


class WaitCoordinator:
    """
    Filtered wait over a MessageStore.

    Usage:
        waiter = WaitCoordinator(store)
        message = await waiter.wait_for(SmsFilter(has_code=True), timeout_seconds=60)
        if message is None:
            print("timed out")
    """

    def __init__(
        self,
        store: MessageStore,
        freshness_window_seconds: float = FRESHNESS_WINDOW_SECONDS,
    ):
        self._store = store
        self._freshness_window = timedelta(seconds=freshness_window_seconds)
        self._active_waits = 0

    @property
    def active_waits(self) -> int:
        """Number of waits currently suspended."""
        return self._active_waits

    def find_existing(self, sms_filter: Optional[SmsFilter] = None) -> Optional[SmsMessage]:
        """Newest stored message matching the filter, if any."""
        for message in self._store:
            if sms_filter is None or sms_filter.matches(message):
                return message
        return None

    async def wait_for(
        self,
        sms_filter: Optional[SmsFilter] = None,
        timeout_seconds: float = 60.0,
    ) -> Optional[SmsMessage]:
        """
        Wait for a message matching the filter.

        Args:
            sms_filter: Predicates to satisfy (None matches anything)
            timeout_seconds: Wall-clock limit for the suspended phase

        Returns:
            The matching message, or None on timeout
        """
        started_at = datetime.now(timezone.utc)

        existing = self.find_existing(sms_filter)
        if existing is not None:
            return existing

        cutoff = started_at - self._freshness_window
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_insert(message: SmsMessage) -> None:
            if future.done():
                return
            if message.timestamp <= cutoff:
                logger.debug(f"Ignoring stale message {message.id} during wait")
                return
            if sms_filter is None or sms_filter.matches(message):
                future.set_result(message)

        # No await between the scan above and this subscription, so no
        # insert can slip through unseen
        unsubscribe = self._store.subscribe(on_insert)
        self._active_waits += 1
        try:
            return await asyncio.wait_for(future, timeout=max(0.0, timeout_seconds))
        except asyncio.TimeoutError:
            return None
        finally:
            unsubscribe()
            self._active_waits -= 1
