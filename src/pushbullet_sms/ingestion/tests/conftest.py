"""
Test fixtures for ingestion layer.

IMPORTANT: All external API calls must be mocked.
Never hit the real Pushbullet API or stream in tests.
"""

import time
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from pushbullet_sms.ingestion.client import PushbulletRestClient
from pushbullet_sms.ingestion.metrics import MetricsCollector
from pushbullet_sms.ingestion.models import MessageSource, SmsMessage
from pushbullet_sms.ingestion.poller import PushPoller
from pushbullet_sms.ingestion.service import IngestionConfig, IngestionService
from pushbullet_sms.ingestion.store import MessageStore
from pushbullet_sms.ingestion.websocket import PushbulletStream, WebSocketState


# =============================================================================
# Time Fixtures
# =============================================================================


@pytest.fixture
def now():
    """Current time in UTC."""
    return datetime.now(timezone.utc)


@pytest.fixture
def now_timestamp():
    """Current Unix timestamp."""
    return time.time()


# =============================================================================
# Model Fixtures
# =============================================================================


def make_message(
    message_id: str,
    sender: str = "Bank",
    body: str = "Hello",
    timestamp: datetime = None,
    source: MessageSource = MessageSource.STREAM,
) -> SmsMessage:
    """Build a message with sensible defaults."""
    return SmsMessage(
        id=message_id,
        sender=sender,
        body=body,
        timestamp=timestamp or datetime.now(timezone.utc),
        thread_id="thread_1",
        source=source,
    )


@pytest.fixture
def message_factory():
    """Factory for SmsMessage objects."""
    return make_message


@pytest.fixture
def code_message(now):
    """A fresh message carrying a verification code."""
    return make_message("thread_7_1", sender="Google", body="G-482913 is your Google verification code.", timestamp=now)


@pytest.fixture
def stale_message(now):
    """
    A message from 10 minutes ago.

    Must never satisfy the new-arrival branch of a wait.
    """
    return make_message("thread_9_old", sender="Google", body="Your code is 111222", timestamp=now - timedelta(minutes=10))


# =============================================================================
# Relay payload fixtures
# =============================================================================


@pytest.fixture
def sms_changed_push():
    """A polled sms_changed push as returned by /v2/pushes."""
    return {
        "active": True,
        "iden": "ujpah72o0sjAoRtnM0jc",
        "type": "sms_changed",
        "modified": 1700000000,
        "source_device_iden": "ujpah72o0sjAsoeMFETjUQ",
        "notifications": [
            {
                "thread_id": "42",
                "title": "Acme Bank",
                "body": "Your code is 482913",
                "timestamp": 1700000000,
            },
        ],
    }


@pytest.fixture
def stream_sms_frame():
    """An sms_changed push frame as sent on the stream."""
    return {
        "type": "push",
        "push": {
            "type": "sms_changed",
            "source_device_iden": "ujpah72o0sjAsoeMFETjUQ",
            "notifications": [
                {
                    "thread_id": "42",
                    "title": "Acme Bank",
                    "body": "Your code is 482913",
                    "timestamp": 1700000000,
                },
            ],
        },
    }


@pytest.fixture
def mirror_frame():
    """A mirror push frame from the default SMS app."""
    return {
        "type": "push",
        "push": {
            "type": "mirror",
            "package_name": "com.android.mms",
            "application_name": "Messaging",
            "title": "+15551234567",
            "body": "Use 7731 to sign in",
        },
    }


@pytest.fixture
def devices_response():
    """Devices list with one SMS-capable active phone."""
    return {
        "devices": [
            {"iden": "laptop_1", "active": True, "has_sms": False},
            {"iden": "old_phone", "active": False, "has_sms": True},
            {"iden": "phone_1", "active": True, "has_sms": True},
        ],
    }


@pytest.fixture
def threads_response():
    """Thread list for the SMS-capable phone."""
    return {
        "threads": [
            {
                "id": "3",
                "recipients": [{"name": "Mom", "number": "+15550001111"}],
                "latest": {"id": "17", "body": "Call me", "timestamp": 1700000000},
            },
            {
                "id": "5",
                "recipients": [{"number": "+15550002222"}],
                "latest": {"id": "21", "body": "Code 5566", "timestamp": 1700000100},
            },
            {
                "id": "8",
                "recipients": [],
            },
        ],
    }


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def store():
    """Empty message store."""
    return MessageStore()


@pytest.fixture
def metrics_collector():
    """Real metrics collector."""
    collector = MetricsCollector()
    collector.start()
    return collector


@pytest.fixture
def mock_rest_client():
    """Mocked REST client."""
    client = MagicMock(spec=PushbulletRestClient)
    client.get_pushes = AsyncMock(return_value=[])
    client.get_devices = AsyncMock(return_value=[])
    client.get_sms_device_iden = AsyncMock(return_value=None)
    client.get_sms_threads = AsyncMock(return_value=[])
    client.close = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    return client


@pytest.fixture
def poller(mock_rest_client, store, metrics_collector):
    """Poller wired to the mocked REST client."""
    return PushPoller(mock_rest_client, store, metrics_collector)


@pytest.fixture
def mock_stream():
    """Mocked stream client."""
    stream = MagicMock(spec=PushbulletStream)
    stream.start = AsyncMock()
    stream.stop = AsyncMock()
    stream.is_connected = False
    stream.state = WebSocketState.DISCONNECTED
    stream.last_message_time = None
    return stream


@pytest.fixture
def ingestion_config():
    """Service configuration with a dummy token."""
    return IngestionConfig(api_token="o.testtoken", reconnect_delay=0.01)


@pytest.fixture
def service(ingestion_config, mock_rest_client, mock_stream):
    """Ingestion service with mocked transports."""
    return IngestionService(
        config=ingestion_config,
        rest_client=mock_rest_client,
        stream=mock_stream,
    )
