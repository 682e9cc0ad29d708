"""
Test fixtures for the tool layer.

The ingestion service is real; its REST client and stream are mocked.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from pushbullet_sms.ingestion import (
    IngestionConfig,
    IngestionService,
    PushbulletRestClient,
    PushbulletStream,
    WebSocketState,
)
from pushbullet_sms.tools import SmsTools


@pytest.fixture
def mock_rest_client():
    client = MagicMock(spec=PushbulletRestClient)
    client.get_pushes = AsyncMock(return_value=[])
    client.get_sms_device_iden = AsyncMock(return_value=None)
    client.get_sms_threads = AsyncMock(return_value=[])
    client.close = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    return client


@pytest.fixture
def mock_stream():
    stream = MagicMock(spec=PushbulletStream)
    stream.start = AsyncMock()
    stream.stop = AsyncMock()
    stream.is_connected = False
    stream.state = WebSocketState.DISCONNECTED
    stream.last_message_time = None
    return stream


@pytest.fixture
def service(mock_rest_client, mock_stream):
    return IngestionService(
        config=IngestionConfig(api_token="o.testtoken"),
        rest_client=mock_rest_client,
        stream=mock_stream,
    )


@pytest.fixture
def tools(service):
    return SmsTools(service)


@pytest.fixture
def sms_frame():
    """Stream frame carrying one SMS with a code."""
    return {
        "type": "push",
        "push": {
            "type": "sms_changed",
            "notifications": [
                {"thread_id": "42", "title": "Acme Bank", "body": "Your code is 482913"},
            ],
        },
    }
