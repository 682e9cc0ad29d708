"""
WebSocket client for the Pushbullet event stream.

Features:
    - Auto-reconnect after a fixed delay, unlimited attempts
    - At most one pending reconnect at any time
    - Stale-connection detection (Pushbullet sends a nop every 30s)
    - Emits raw connection/frame events; frames are interpreted elsewhere

Security Note:
    The stream URL embeds the access token. It is never logged; use
    ``redacted_url`` for anything user-visible.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
)

from .models import StreamEvent, StreamEventKind

logger = logging.getLogger(__name__)

STREAM_URL = "wss://stream.pushbullet.com/websocket/"


class WebSocketState(str, Enum):
    """WebSocket connection state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STOPPING = "stopping"


# Type aliases for callbacks
StreamEventCallback = Callable[[StreamEvent], Awaitable[None]]
StateCallback = Callable[[WebSocketState], Awaitable[None]]


class PushbulletStream:
    """
    Resilient WebSocket client for the Pushbullet stream.

    Reconnection is deliberately simple: every disconnect schedules one
    reconnect after ``reconnect_delay`` seconds, forever, with no backoff
    growth and no jitter.

    Usage:
        async def handle_event(event: StreamEvent):
            if event.kind == StreamEventKind.FRAME_RECEIVED:
                print(event.frame)

        stream = PushbulletStream(api_token, on_event=handle_event)
        await stream.start()

        # ... later
        await stream.stop()
    """

    def __init__(
        self,
        api_token: str,
        on_event: StreamEventCallback,
        on_state_change: Optional[StateCallback] = None,
        reconnect_delay: float = 5.0,
        heartbeat_timeout: float = 90.0,
        base_url: str = STREAM_URL,
    ):
        """
        Initialize the stream client.

        Args:
            api_token: Pushbullet access token (embedded in the URL)
            on_event: Callback for every connection and frame event
            on_state_change: Optional callback for state transitions
            reconnect_delay: Fixed seconds to wait before reconnecting
            heartbeat_timeout: Seconds without any frame before the
                connection is considered dead
            base_url: Stream endpoint without the token
        """
        self._api_token = api_token
        self._on_event = on_event
        self._on_state_change = on_state_change
        self._reconnect_delay = reconnect_delay
        self._heartbeat_timeout = heartbeat_timeout
        self._base_url = base_url

        # Connection state
        self._state = WebSocketState.DISCONNECTED
        self._ws = None
        self._reconnect_count = 0

        # Tasks
        self._receive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

        # Heartbeat tracking (time.monotonic)
        self._last_message_time: Optional[float] = None

    @property
    def url(self) -> str:
        """Full stream URL, including the token. Never log this."""
        return f"{self._base_url}{self._api_token}"

    @property
    def redacted_url(self) -> str:
        """Stream URL safe for logs."""
        return f"{self._base_url}<redacted>"

    @property
    def state(self) -> WebSocketState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Whether currently connected."""
        return self._state == WebSocketState.CONNECTED

    @property
    def reconnect_count(self) -> int:
        """Number of reconnects scheduled since start."""
        return self._reconnect_count

    @property
    def reconnect_pending(self) -> bool:
        """Whether a reconnect is currently scheduled."""
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def last_message_time(self) -> Optional[float]:
        """Monotonic time of the last received frame."""
        return self._last_message_time

    async def _set_state(self, state: WebSocketState) -> None:
        """Update state and notify callback."""
        if self._state != state:
            old_state = self._state
            self._state = state
            logger.info(f"WebSocket state: {old_state.value} -> {state.value}")

            if self._on_state_change:
                try:
                    await self._on_state_change(state)
                except Exception as e:
                    logger.error(f"Error in state change callback: {e}")

    async def _emit(self, event: StreamEvent) -> None:
        """Deliver an event; callback failures never reach the socket."""
        try:
            await self._on_event(event)
        except Exception as e:
            logger.error(f"Error handling stream event {event.kind.value}: {e}")

    async def start(self) -> None:
        """
        Start the stream client.

        Connects immediately; failures are followed by scheduled reconnects
        rather than raised.
        """
        if self._state != WebSocketState.DISCONNECTED or self.reconnect_pending:
            logger.warning(f"Cannot start: already in state {self._state.value}")
            return

        self._stop_event.clear()
        await self.connect()

    async def stop(self) -> None:
        """Stop the client, cancel pending reconnects and close the socket."""
        if self._stop_event.is_set() and self._state == WebSocketState.DISCONNECTED:
            return

        logger.info("Stopping WebSocket client...")
        await self._set_state(WebSocketState.STOPPING)
        self._stop_event.set()

        current = asyncio.current_task()
        for task in (self._reconnect_task, self._receive_task):
            if task and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reconnect_task = None
        self._receive_task = None

        await self._close_socket()
        await self._set_state(WebSocketState.DISCONNECTED)
        logger.info("WebSocket client stopped")

    async def _close_socket(self) -> None:
        """Close the current socket, if any."""
        if self._ws is not None:
            ws, self._ws = self._ws, None
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}")

    async def connect(self) -> None:
        """
        Open a new connection, replacing any existing one.

        Any existing socket is closed first, so at most one connection and
        one reconnect timer are ever alive.
        """
        if self._stop_event.is_set():
            return

        current = asyncio.current_task()
        if self._receive_task and self._receive_task is not current and not self._receive_task.done():
            self._receive_task.cancel()
        self._receive_task = None
        await self._close_socket()

        await self._set_state(WebSocketState.CONNECTING)
        logger.info(f"Connecting to {self.redacted_url}...")

        try:
            self._ws = await websockets.connect(
                self.url,
                ping_interval=20,
                ping_timeout=10,
                close_timeout=5,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to connect: {type(e).__name__}")
            await self._emit(StreamEvent(kind=StreamEventKind.ERRORED, error=e))
            await self._set_state(WebSocketState.DISCONNECTED)
            self._schedule_reconnect()
            return

        self._last_message_time = time.monotonic()
        await self._set_state(WebSocketState.CONNECTED)
        logger.info("WebSocket connected")
        await self._emit(StreamEvent(kind=StreamEventKind.OPENED))

        self._receive_task = asyncio.create_task(self._receive_loop(self._ws))

    async def _receive_loop(self, ws) -> None:
        """Receive frames until the connection ends, then schedule a reconnect."""
        error: Optional[BaseException] = None
        try:
            while not self._stop_event.is_set():
                try:
                    message = await asyncio.wait_for(
                        ws.recv(),
                        timeout=self._heartbeat_timeout,
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        f"No frame received in {self._heartbeat_timeout}s, reconnecting..."
                    )
                    break
                except ConnectionClosedOK:
                    logger.info("WebSocket closed normally")
                    break
                except ConnectionClosedError as e:
                    logger.warning(f"WebSocket closed with error: {e}")
                    error = e
                    break
                except ConnectionClosed as e:
                    logger.warning(f"WebSocket connection closed: {type(e).__name__}")
                    break

                self._last_message_time = time.monotonic()
                await self.handle_frame(message)

        except asyncio.CancelledError:
            logger.debug("Receive loop cancelled")
            raise

        except Exception as e:
            logger.error(f"Error in receive loop: {e}")
            error = e

        await self._handle_disconnect(ws, error)

    async def _handle_disconnect(self, ws, error: Optional[BaseException]) -> None:
        """Close/error path: report, go DISCONNECTED, schedule one reconnect."""
        if self._ws is ws:
            await self._close_socket()

        if error is not None:
            await self._emit(StreamEvent(kind=StreamEventKind.ERRORED, error=error))
        await self._emit(StreamEvent(kind=StreamEventKind.CLOSED))

        if self._stop_event.is_set():
            return

        await self._set_state(WebSocketState.DISCONNECTED)
        logger.info(f"WebSocket closed, reconnecting in {self._reconnect_delay:.0f}s...")
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Schedule a single reconnect, replacing any pending one."""
        if self._stop_event.is_set():
            return

        current = asyncio.current_task()
        if (
            self._reconnect_task
            and self._reconnect_task is not current
            and not self._reconnect_task.done()
        ):
            self._reconnect_task.cancel()

        self._reconnect_count += 1
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        """Wait the fixed delay, then reconnect."""
        try:
            await asyncio.sleep(self._reconnect_delay)
        except asyncio.CancelledError:
            logger.debug("Pending reconnect cancelled")
            raise

        if not self._stop_event.is_set():
            logger.info(f"Reconnecting (attempt #{self._reconnect_count})...")
            await self.connect()

    async def handle_frame(self, raw_message) -> None:
        """
        Parse a raw frame and emit it.

        Empty, malformed and non-object frames are logged and dropped.
        """
        if isinstance(raw_message, bytes):
            try:
                raw_message = raw_message.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning("Dropping undecodable binary frame")
                return

        if not raw_message or not raw_message.strip():
            logger.debug("Received empty frame")
            return

        try:
            data = json.loads(raw_message)
        except json.JSONDecodeError as e:
            logger.warning(f"Error parsing message: {e}")
            return

        if not isinstance(data, dict):
            logger.debug(f"Ignoring non-object frame: {str(data)[:200]}")
            return

        await self._emit(StreamEvent(kind=StreamEventKind.FRAME_RECEIVED, frame=data))
