"""
Ingestion Layer - Pushbullet stream, REST fallback and message buffer.

This module provides SMS ingestion from the Pushbullet relay:
    - WebSocket client for real-time stream events
    - REST client and poller for tickle-triggered and manual catch-up
    - Bounded, deduplicated message store
    - Filtered waits with timeout
    - Verification code extraction
    - Ingestion service orchestrator

Usage:
    from pushbullet_sms.ingestion import (
        IngestionConfig,
        IngestionService,
        SmsFilter,
    )

    service = IngestionService(IngestionConfig(api_token=token))
    await service.start()

    message = await service.wait_for(SmsFilter(has_code=True), timeout_seconds=60)

    await service.stop()
"""

# Models
from .models import (
    ErrorRecord,
    MessageSource,
    SmsFilter,
    SmsMessage,
    StreamEvent,
    StreamEventKind,
    epoch_seconds_to_datetime,
    format_timestamp,
)

# Code extraction
from .extractor import extract_code

# Store and waits
from .store import MAX_STORED, MessageStore
from .waiter import WaitCoordinator

# Metrics
from .metrics import (
    IngestionMetrics,
    MetricsCollector,
)

# REST Client
from .client import (
    PushbulletAPIError,
    PushbulletRestClient,
    RateLimitError,
)
from .poller import PushPoller

# WebSocket Client
from .websocket import (
    PushbulletStream,
    WebSocketState,
)

# Service
from .service import (
    ConfigurationError,
    HealthStatus,
    IngestionConfig,
    IngestionService,
    ServiceState,
    SmsStatus,
)


__all__ = [
    # Models
    "ErrorRecord",
    "MessageSource",
    "SmsFilter",
    "SmsMessage",
    "StreamEvent",
    "StreamEventKind",
    "epoch_seconds_to_datetime",
    "format_timestamp",
    # Extraction
    "extract_code",
    # Store
    "MAX_STORED",
    "MessageStore",
    "WaitCoordinator",
    # Metrics
    "IngestionMetrics",
    "MetricsCollector",
    # REST Client
    "PushbulletAPIError",
    "PushbulletRestClient",
    "RateLimitError",
    "PushPoller",
    # WebSocket
    "PushbulletStream",
    "WebSocketState",
    # Service
    "ConfigurationError",
    "HealthStatus",
    "IngestionConfig",
    "IngestionService",
    "ServiceState",
    "SmsStatus",
]
