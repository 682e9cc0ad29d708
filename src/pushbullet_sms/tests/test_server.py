"""
Tests for the FastAPI tool server.
"""

import pytest
from fastapi.testclient import TestClient

from pushbullet_sms.ingestion import ServiceState
from pushbullet_sms.server import create_tool_app


@pytest.fixture
def client(service):
    return TestClient(create_tool_app(service))


class TestToolEndpoints:
    """Tests for /tools."""

    def test_list_tools(self, client):
        response = client.get("/tools")

        assert response.status_code == 200
        assert len(response.json()["tools"]) == 5

    def test_call_tool(self, client):
        response = client.post(
            "/tools/extract_code_from_sms",
            json={"text": "Your code is 482913"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "content": [{"type": "text", "text": "Extracted verification code: 482913"}],
            "isError": False,
            "structuredContent": {"code": "482913"},
        }

    def test_call_without_body(self, client):
        response = client.post("/tools/get_sms_status")

        assert response.status_code == 200
        assert response.json()["isError"] is False

    def test_unknown_tool_is_error_result(self, client):
        response = client.post("/tools/nope", json={})

        assert response.status_code == 200
        assert response.json()["isError"] is True


class TestApiEndpoints:
    """Tests for /api/* and /health."""

    def test_status(self, client, service, sms_frame):
        service.dispatch_frame(sms_frame, received_ms=1700000000000)

        response = client.get("/api/status")

        assert response.json() == {
            "connected": False,
            "storedCount": 1,
            "mostRecentTimestamp": "2023-11-14T22:13:20.000Z",
            "credentialConfigured": True,
        }

    def test_metrics(self, client, service, sms_frame):
        service.dispatch_frame(sms_frame)

        response = client.get("/api/metrics")

        assert response.status_code == 200
        assert response.json()["messages_by_source"] == {"stream": 1}

    def test_health_unhealthy_when_stopped(self, client):
        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_health_healthy(self, client, service, mock_stream):
        service._state = ServiceState.RUNNING
        mock_stream.is_connected = True

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
