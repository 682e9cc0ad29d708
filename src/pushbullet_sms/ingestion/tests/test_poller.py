"""
Tests for the REST polling fallback.

These tests verify:
- sms_changed pushes are normalized with the poll id scheme
- Repeated polls of the same pushes collapse to one stored message
- Upstream failures are soft (empty result, nothing raised)
- Thread snapshots do not touch the store
"""

import pytest

from pushbullet_sms.ingestion.client import PushbulletAPIError
from pushbullet_sms.ingestion.models import MessageSource
from pushbullet_sms.ingestion.poller import PushPoller


class TestNormalizePushes:
    """Tests for PushPoller.normalize_pushes()."""

    def test_only_sms_changed_with_notifications(self, sms_changed_push):
        pushes = [
            sms_changed_push,
            {"type": "note", "title": "hi", "modified": 1700000001},
            {"type": "sms_changed", "notifications": [], "modified": 1700000002},
            {"type": "sms_changed", "notifications": [{"thread_id": "1"}]},
        ]

        messages = PushPoller.normalize_pushes(pushes)

        assert [m.id for m in messages] == ["42_1700000000"]
        assert messages[0].source == MessageSource.POLL

    def test_multiple_notifications_per_push(self):
        push = {
            "type": "sms_changed",
            "modified": 1700000000,
            "notifications": [
                {"thread_id": "1", "title": "A", "body": "one"},
                {"thread_id": "2", "title": "B", "body": "two"},
            ],
        }

        messages = PushPoller.normalize_pushes([push])

        assert [m.id for m in messages] == ["1_1700000000", "2_1700000000"]


class TestFetchAndReconcile:
    """Tests for fetch_and_reconcile()."""

    @pytest.mark.asyncio
    async def test_inserts_new_messages(self, poller, mock_rest_client, store, sms_changed_push):
        mock_rest_client.get_pushes.return_value = [sms_changed_push]

        stored = await poller.fetch_and_reconcile(limit=10)

        mock_rest_client.get_pushes.assert_awaited_once_with(limit=10, active=True)
        assert [m.id for m in stored] == ["42_1700000000"]
        assert store.most_recent().sender == "Acme Bank"

    @pytest.mark.asyncio
    async def test_repeated_poll_is_idempotent(
        self, poller, mock_rest_client, store, metrics_collector, sms_changed_push
    ):
        mock_rest_client.get_pushes.return_value = [sms_changed_push]

        await poller.fetch_and_reconcile()
        second = await poller.fetch_and_reconcile()

        assert second == []
        assert store.size() == 1

        metrics = metrics_collector.get_metrics()
        assert metrics.polls_completed == 2
        assert metrics.duplicates_dropped == 1
        assert metrics.messages_by_source == {"poll": 1}

    @pytest.mark.asyncio
    async def test_api_error_returns_empty(self, poller, mock_rest_client, store, metrics_collector):
        mock_rest_client.get_pushes.side_effect = PushbulletAPIError("Server error: 503", status_code=503)

        assert await poller.fetch_and_reconcile() == []
        assert store.size() == 0

        metrics = metrics_collector.get_metrics()
        assert metrics.poll_failures == 1
        assert metrics.recent_errors[0].component == "poller"

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_empty(self, poller, mock_rest_client):
        mock_rest_client.get_pushes.side_effect = ValueError("bad json")

        assert await poller.fetch_and_reconcile() == []


class TestFetchThreadsSnapshot:
    """Tests for fetch_threads_snapshot()."""

    @pytest.mark.asyncio
    async def test_no_device_returns_empty(self, poller, mock_rest_client):
        mock_rest_client.get_sms_device_iden.return_value = None

        assert await poller.fetch_threads_snapshot() == []
        mock_rest_client.get_sms_threads.assert_not_called()

    @pytest.mark.asyncio
    async def test_snapshot_skips_threads_without_latest(
        self, poller, mock_rest_client, store, threads_response
    ):
        mock_rest_client.get_sms_device_iden.return_value = "phone_1"
        mock_rest_client.get_sms_threads.return_value = threads_response["threads"]

        messages = await poller.fetch_threads_snapshot(limit=20)

        mock_rest_client.get_sms_threads.assert_awaited_once_with("phone_1")
        assert [m.id for m in messages] == ["3", "5"]
        assert [m.sender for m in messages] == ["Mom", "+15550002222"]
        assert store.size() == 0

    @pytest.mark.asyncio
    async def test_snapshot_limit(self, poller, mock_rest_client, threads_response):
        mock_rest_client.get_sms_device_iden.return_value = "phone_1"
        mock_rest_client.get_sms_threads.return_value = threads_response["threads"]

        messages = await poller.fetch_threads_snapshot(limit=1)

        assert [m.id for m in messages] == ["3"]

    @pytest.mark.asyncio
    async def test_threads_error_returns_empty(self, poller, mock_rest_client):
        mock_rest_client.get_sms_device_iden.return_value = "phone_1"
        mock_rest_client.get_sms_threads.side_effect = PushbulletAPIError("API error: 403 Forbidden", status_code=403)

        assert await poller.fetch_threads_snapshot() == []
