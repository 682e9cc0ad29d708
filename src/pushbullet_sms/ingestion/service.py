"""
Main ingestion service orchestrator.

Manages the complete SMS ingestion pipeline:
    - WebSocket stream for real-time notifications
    - REST poller for tickle-triggered reconciliation and thread catch-up
    - Bounded, deduplicated message store
    - Filtered waits over the store
    - Metrics collection

Stream frames are interpreted here, not in the WebSocket client:
    - tickle/push      -> poll recent pushes
    - push/sms_changed -> store each notification
    - push/mirror      -> store if it comes from the default SMS app
    - anything else    -> ignored (nop heartbeats included)
"""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .client import PushbulletRestClient
from .metrics import IngestionMetrics, MetricsCollector
from .models import (
    DEFAULT_SMS_PACKAGE,
    SmsFilter,
    SmsMessage,
    StreamEvent,
    StreamEventKind,
    format_timestamp,
)
from .poller import SMS_CHANGED, PushPoller
from .store import MAX_STORED, MessageStore
from .waiter import FRESHNESS_WINDOW_SECONDS, WaitCoordinator
from .websocket import STREAM_URL, PushbulletStream, WebSocketState

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Required configuration is missing or invalid."""
    pass


class ServiceState(str, Enum):
    """Service lifecycle state."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


@dataclass
class IngestionConfig:
    """Configuration for the ingestion service."""

    # Credentials
    api_token: str = ""

    # WebSocket settings
    stream_url: str = STREAM_URL
    reconnect_delay: float = 5.0
    heartbeat_timeout: float = 90.0

    # REST API settings
    api_base: str = PushbulletRestClient.API_BASE
    request_timeout: float = 30.0
    max_retries: int = 3

    # Store / polling
    max_stored: int = MAX_STORED
    poll_limit: int = 10
    seed_on_start: bool = True

    # Waits
    freshness_window_seconds: float = FRESHNESS_WINDOW_SECONDS


@dataclass
class SmsStatus:
    """Status snapshot exposed to callers."""
    connected: bool
    stored_count: int
    most_recent_timestamp: Optional[datetime]
    credential_configured: bool

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "connected": self.connected,
            "storedCount": self.stored_count,
            "mostRecentTimestamp": (
                format_timestamp(self.most_recent_timestamp)
                if self.most_recent_timestamp else None
            ),
            "credentialConfigured": self.credential_configured,
        }


@dataclass
class HealthStatus:
    """Overall service health status."""
    healthy: bool
    state: ServiceState
    uptime_seconds: float
    websocket_state: WebSocketState
    websocket_connected: bool
    last_frame_age_seconds: Optional[float]
    stored_count: int
    active_waits: int
    errors_last_hour: int
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "healthy": self.healthy,
            "state": self.state.value,
            "uptime_seconds": round(self.uptime_seconds, 0),
            "websocket": {
                "state": self.websocket_state.value,
                "connected": self.websocket_connected,
                "last_frame_age_seconds": (
                    round(self.last_frame_age_seconds, 1)
                    if self.last_frame_age_seconds is not None else None
                ),
            },
            "stored_count": self.stored_count,
            "active_waits": self.active_waits,
            "errors_last_hour": self.errors_last_hour,
            "details": self.details,
        }


class IngestionService:
    """
    Composition root of the SMS ingestion engine.

    Owns the store, stream, REST client, poller, waiter and metrics.

    Usage:
        service = IngestionService(IngestionConfig(api_token=token))
        await service.start()

        recent = service.recent_messages(limit=5)
        message = await service.wait_for(SmsFilter(has_code=True), 60)
        status = service.status()

        await service.stop()
    """

    def __init__(
        self,
        config: Optional[IngestionConfig] = None,
        rest_client: Optional[PushbulletRestClient] = None,
        stream: Optional[PushbulletStream] = None,
    ):
        """
        Initialize the ingestion service.

        Args:
            config: Service configuration
            rest_client: Optional REST client (built from config if omitted)
            stream: Optional stream client (built from config if omitted)
        """
        self._config = config or IngestionConfig()

        # State
        self._state = ServiceState.STOPPED
        self._started_at: Optional[datetime] = None
        self._stop_event = asyncio.Event()

        # Components
        self._metrics = MetricsCollector()
        self._store = MessageStore(max_size=self._config.max_stored)
        self._waiter = WaitCoordinator(
            self._store,
            freshness_window_seconds=self._config.freshness_window_seconds,
        )
        self._rest_client = rest_client or PushbulletRestClient(
            self._config.api_token,
            timeout=self._config.request_timeout,
            max_retries=self._config.max_retries,
            api_base=self._config.api_base,
        )
        self._poller = PushPoller(self._rest_client, self._store, self._metrics)
        self._stream = stream or PushbulletStream(
            self._config.api_token,
            on_event=self.handle_stream_event,
            on_state_change=self._handle_ws_state_change,
            reconnect_delay=self._config.reconnect_delay,
            heartbeat_timeout=self._config.heartbeat_timeout,
            base_url=self._config.stream_url,
        )

        # Tickle-triggered polls in flight
        self._poll_tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> ServiceState:
        """Current service state."""
        return self._state

    @property
    def is_running(self) -> bool:
        """Whether the service is running."""
        return self._state == ServiceState.RUNNING

    @property
    def credential_configured(self) -> bool:
        return bool(self._config.api_token)

    @property
    def store(self) -> MessageStore:
        return self._store

    @property
    def stream(self) -> PushbulletStream:
        return self._stream

    @property
    def poller(self) -> PushPoller:
        return self._poller

    @property
    def waiter(self) -> WaitCoordinator:
        return self._waiter

    @property
    def metrics(self) -> IngestionMetrics:
        """Get current metrics snapshot."""
        return self._metrics.get_metrics()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Start the ingestion service.

        This will:
        1. Verify the access token is configured
        2. Open the REST session
        3. Connect the stream (reconnects are scheduled on failure)
        4. Seed the store with one fetch-and-reconcile
        """
        if not self.credential_configured:
            raise ConfigurationError(
                "PUSHBULLET_API_TOKEN is required. Set it as an environment variable."
            )

        if self._state != ServiceState.STOPPED:
            logger.warning(f"Cannot start: already in state {self._state.value}")
            return

        logger.info("Starting ingestion service...")
        self._state = ServiceState.STARTING
        self._started_at = datetime.now(timezone.utc)
        self._stop_event.clear()

        try:
            self._metrics.start()
            await self._rest_client.__aenter__()
            await self._stream.start()

            if self._config.seed_on_start:
                seeded = await self._poller.fetch_and_reconcile(
                    limit=self._config.poll_limit
                )
                logger.info(f"Seeded store with {len(seeded)} message(s)")

            self._state = ServiceState.RUNNING
            logger.info("Ingestion service started successfully")

        except Exception as e:
            logger.error(f"Failed to start ingestion service: {e}")
            self._state = ServiceState.FAILED
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """
        Stop the ingestion service gracefully.

        Buffered messages stay readable after stop.
        """
        if self._state in (ServiceState.STOPPED, ServiceState.STOPPING):
            return

        logger.info("Stopping ingestion service...")
        self._state = ServiceState.STOPPING
        self._stop_event.set()

        await self._cleanup()
        self._metrics.stop()

        self._state = ServiceState.STOPPED
        logger.info("Ingestion service stopped")

    async def _cleanup(self) -> None:
        """Clean up resources."""
        for task in list(self._poll_tasks):
            task.cancel()
        if self._poll_tasks:
            await asyncio.gather(*self._poll_tasks, return_exceptions=True)
        self._poll_tasks.clear()

        try:
            await self._stream.stop()
        except Exception as e:
            logger.warning(f"Error stopping WebSocket: {e}")

        try:
            await self._rest_client.close()
        except Exception as e:
            logger.warning(f"Error closing REST client: {e}")

    # =========================================================================
    # Stream event dispatch
    # =========================================================================

    async def handle_stream_event(self, event: StreamEvent) -> None:
        """Single dispatch point for everything the stream emits."""
        if event.kind == StreamEventKind.OPENED:
            self._metrics.set_websocket_connected(True)

        elif event.kind == StreamEventKind.CLOSED:
            self._metrics.set_websocket_connected(False)

        elif event.kind == StreamEventKind.ERRORED:
            # Exception text can embed the token-bearing stream URL
            error_type = type(event.error).__name__ if event.error else "StreamError"
            logger.error(f"WebSocket error: {error_type}")
            self._metrics.record_error(
                error_type=error_type,
                message=error_type,
                component="websocket",
            )

        elif event.kind == StreamEventKind.FRAME_RECEIVED and event.frame is not None:
            self._metrics.record_frame()
            self.dispatch_frame(event.frame)

    def dispatch_frame(
        self,
        frame: dict,
        received_ms: Optional[int] = None,
    ) -> list[SmsMessage]:
        """
        Interpret one decoded stream frame.

        Args:
            frame: Decoded JSON object
            received_ms: Receipt time in epoch ms (defaults to now)

        Returns:
            Messages newly stored from this frame
        """
        frame_type = frame.get("type")

        if frame_type == "tickle":
            if frame.get("subtype") == "push":
                logger.info("Tickle received, fetching pushes...")
                self._metrics.record_tickle()
                self.schedule_poll()
            return []

        if frame_type != "push":
            logger.debug(f"Ignoring frame type '{frame_type}'")
            return []

        push = frame.get("push")
        if not isinstance(push, dict):
            return []

        if received_ms is None:
            received_ms = int(time.time() * 1000)

        messages: list[SmsMessage] = []
        push_type = push.get("type")

        if push_type == SMS_CHANGED and push.get("notifications"):
            for notification in push["notifications"]:
                if isinstance(notification, dict):
                    messages.append(
                        SmsMessage.from_stream_notification(notification, received_ms)
                    )

        elif push_type == "mirror" and push.get("package_name") == DEFAULT_SMS_PACKAGE:
            messages.append(SmsMessage.from_mirror(push, received_ms))

        else:
            logger.debug(f"Ignoring push type '{push_type}'")

        return self._ingest(messages)

    def _ingest(self, messages: list[SmsMessage]) -> list[SmsMessage]:
        """Insert messages into the store and record what happened."""
        stored = []
        for message in messages:
            if self._store.insert(message):
                stored.append(message)
                self._metrics.record_message_stored(message.source)
            else:
                self._metrics.record_duplicates()
        return stored

    def schedule_poll(self) -> asyncio.Task:
        """Run fetch-and-reconcile in the background."""
        task = asyncio.create_task(
            self._poller.fetch_and_reconcile(limit=self._config.poll_limit)
        )
        self._poll_tasks.add(task)
        task.add_done_callback(self._poll_tasks.discard)
        return task

    async def _handle_ws_state_change(self, state: WebSocketState) -> None:
        """Handle WebSocket state changes."""
        if state == WebSocketState.CONNECTED:
            logger.info("Pushbullet stream connected")
        elif state == WebSocketState.DISCONNECTED and self._state == ServiceState.RUNNING:
            logger.warning("Pushbullet stream disconnected")

    # =========================================================================
    # Caller operations
    # =========================================================================

    def recent_messages(
        self,
        limit: int = 10,
        sender: Optional[str] = None,
    ) -> list[SmsMessage]:
        """Newest stored messages, optionally filtered by sender."""
        return self._store.list(limit=limit, sender=sender)

    async def wait_for(
        self,
        sms_filter: Optional[SmsFilter] = None,
        timeout_seconds: float = 60.0,
    ) -> Optional[SmsMessage]:
        """Wait for a matching message; None on timeout."""
        return await self._waiter.wait_for(sms_filter, timeout_seconds)

    async def fetch_and_reconcile(self, limit: Optional[int] = None) -> list[SmsMessage]:
        """Poll recent pushes now; returns newly stored messages."""
        return await self._poller.fetch_and_reconcile(
            limit=self._config.poll_limit if limit is None else limit
        )

    async def fetch_threads(self, limit: int = 20) -> list[SmsMessage]:
        """
        Catch up from the phone's SMS thread list.

        Every fetched message is merged into the store (known ids are
        skipped). The relay lists threads newest-first, so they are inserted
        oldest-first to keep that order at the front of the buffer.

        Returns:
            All fetched thread messages, or [] if nothing was found
        """
        messages = await self._poller.fetch_threads_snapshot(limit=limit)
        merged = self._ingest(list(reversed(messages)))
        if messages:
            logger.info(f"Fetched {len(messages)} thread(s), merged {len(merged)} new")
        return messages

    def status(self) -> SmsStatus:
        """Connection and store snapshot."""
        most_recent = self._store.most_recent()
        return SmsStatus(
            connected=self._stream.is_connected,
            stored_count=len(self._store),
            most_recent_timestamp=most_recent.timestamp if most_recent else None,
            credential_configured=self.credential_configured,
        )

    def health(self) -> HealthStatus:
        """
        Get current health status.

        Returns:
            HealthStatus indicating overall service health
        """
        metrics = self._metrics.get_metrics()

        uptime = 0.0
        if self._started_at:
            uptime = (datetime.now(timezone.utc) - self._started_at).total_seconds()

        last_frame_age = None
        if self._stream.last_message_time is not None:
            last_frame_age = (
                time.monotonic() - self._stream.last_message_time
            )

        healthy = True
        details = {}

        if self._state != ServiceState.RUNNING:
            healthy = False
            details["reason"] = f"Service not running: {self._state.value}"

        elif not self._stream.is_connected:
            healthy = False
            details["reason"] = "WebSocket not connected"

        return HealthStatus(
            healthy=healthy,
            state=self._state,
            uptime_seconds=uptime,
            websocket_state=self._stream.state,
            websocket_connected=self._stream.is_connected,
            last_frame_age_seconds=last_frame_age,
            stored_count=len(self._store),
            active_waits=self._waiter.active_waits,
            errors_last_hour=metrics.errors_last_hour,
            details=details,
        )

    # =========================================================================
    # Standalone running
    # =========================================================================

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}, initiating shutdown...")
            self._stop_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    async def run_forever(self) -> None:
        """Run the service until a signal or stop() ends it."""
        await self.start()
        self._setup_signal_handlers()

        try:
            await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()
