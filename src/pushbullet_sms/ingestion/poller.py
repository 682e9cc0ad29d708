"""
REST polling fallback for SMS ingestion.

Two independent operations:
    - fetch_and_reconcile(): triggered by stream tickles (and once at
      startup); pulls recent pushes and inserts their SMS notifications
    - fetch_threads_snapshot(): caller-invoked catch-up from the phone's
      SMS thread list

Both treat upstream failures as soft: they log and return an empty list.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .client import PushbulletAPIError, PushbulletRestClient
from .metrics import MetricsCollector
from .models import SmsMessage
from .store import MessageStore

logger = logging.getLogger(__name__)

SMS_CHANGED = "sms_changed"


class PushPoller:
    """
    Reconciles Pushbullet REST data into the message store.

    Usage:
        poller = PushPoller(rest_client, store)
        new_messages = await poller.fetch_and_reconcile(limit=10)
        snapshot = await poller.fetch_threads_snapshot(limit=20)
    """

    def __init__(
        self,
        rest_client: PushbulletRestClient,
        store: MessageStore,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._client = rest_client
        self._store = store
        self._metrics = metrics

    def _record_failure(self, error: Exception, operation: str) -> None:
        if self._metrics:
            self._metrics.record_poll_failure()
            self._metrics.record_error(
                error_type=type(error).__name__,
                message=f"{operation}: {error}",
                component="poller",
            )

    @staticmethod
    def normalize_pushes(pushes: list[dict]) -> list[SmsMessage]:
        """
        Turn raw pushes into messages using the poll-path id scheme.

        Only ``sms_changed`` pushes with notifications are used. Malformed
        notifications are skipped.
        """
        messages = []
        for push in pushes:
            if push.get("type") != SMS_CHANGED:
                continue
            notifications = push.get("notifications")
            if not notifications:
                continue

            modified = push.get("modified")
            if modified is None:
                logger.debug("sms_changed push without modified timestamp, skipping")
                continue

            for notification in notifications:
                if not isinstance(notification, dict):
                    continue
                try:
                    messages.append(
                        SmsMessage.from_polled_notification(notification, modified)
                    )
                except (TypeError, ValueError, OverflowError) as e:
                    logger.warning(f"Failed to parse SMS notification: {e}")
        return messages

    async def fetch_and_reconcile(self, limit: int = 10) -> list[SmsMessage]:
        """
        Fetch recent pushes and insert any new SMS notifications.

        Args:
            limit: Number of pushes to request

        Returns:
            Messages that were newly stored (duplicates excluded)
        """
        try:
            pushes = await self._client.get_pushes(limit=limit, active=True)
        except asyncio.CancelledError:
            raise
        except PushbulletAPIError as e:
            logger.error(f"Failed to fetch pushes: {e}")
            self._record_failure(e, "fetch_pushes")
            return []
        except Exception as e:
            logger.error(f"Error fetching pushes: {e}")
            self._record_failure(e, "fetch_pushes")
            return []

        stored = []
        duplicates = 0
        for message in self.normalize_pushes(pushes):
            if self._store.insert(message):
                stored.append(message)
                if self._metrics:
                    self._metrics.record_message_stored(message.source)
            else:
                duplicates += 1

        if self._metrics:
            self._metrics.record_poll()
            if duplicates:
                self._metrics.record_duplicates(duplicates)

        logger.debug(
            f"Reconciled {len(pushes)} pushes: {len(stored)} new, {duplicates} duplicate"
        )
        return stored

    async def fetch_threads_snapshot(self, limit: int = 20) -> list[SmsMessage]:
        """
        Fetch the latest message of each SMS thread from the phone.

        Does not touch the store; the caller decides how to merge.

        Args:
            limit: Maximum number of threads to use

        Returns:
            One message per thread with a latest entry, or [] when no
            SMS-capable device exists or the request fails
        """
        try:
            device_iden = await self._client.get_sms_device_iden()
            if not device_iden:
                logger.error("No SMS-capable device found")
                return []

            threads = await self._client.get_sms_threads(device_iden)
        except asyncio.CancelledError:
            raise
        except PushbulletAPIError as e:
            # SMS feature might not be enabled on the phone
            logger.error(f"Failed to fetch SMS threads: {e}")
            self._record_failure(e, "fetch_threads")
            return []
        except Exception as e:
            logger.error(f"Error fetching SMS: {e}")
            self._record_failure(e, "fetch_threads")
            return []

        messages = []
        for thread in threads[:max(0, limit)]:
            try:
                message = SmsMessage.from_thread(thread)
            except (TypeError, ValueError, OverflowError) as e:
                logger.warning(f"Failed to parse SMS thread: {e}")
                continue
            if message is not None:
                messages.append(message)
        return messages
