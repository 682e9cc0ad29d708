"""
Tests for main module - configuration and process entry point.

These tests verify that:
1. A missing token fails fast with exit status 1
2. Environment variables are parsed into SmsConfig
3. CLI flags override the environment
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pushbullet_sms.ingestion import ConfigurationError
from pushbullet_sms.main import SmsConfig, main, run


# =============================================================================
# SmsConfig Tests
# =============================================================================


class TestSmsConfigFromEnv:
    """Tests for SmsConfig.from_env()."""

    def test_loads_default_values(self):
        with patch.dict("os.environ", {}, clear=True):
            config = SmsConfig.from_env()

        assert config.api_token == ""
        assert config.max_stored == 100
        assert config.reconnect_delay == 5.0
        assert config.server_enabled is True
        assert config.server_port == 8765

    def test_loads_values_from_env(self):
        with patch.dict("os.environ", {
            "PUSHBULLET_API_TOKEN": "  o.abc  ",
            "SMS_MAX_STORED": "50",
            "SMS_SERVER_ENABLED": "false",
            "SMS_SERVER_PORT": "9000",
        }, clear=True):
            config = SmsConfig.from_env()

        assert config.api_token == "o.abc"
        assert config.max_stored == 50
        assert config.server_enabled is False
        assert config.server_port == 9000

    def test_ingestion_config(self):
        config = SmsConfig(api_token="o.abc", max_stored=20, poll_limit=5)

        ingestion = config.ingestion_config()

        assert ingestion.api_token == "o.abc"
        assert ingestion.max_stored == 20
        assert ingestion.poll_limit == 5


class TestSmsConfigValidate:
    """Tests for SmsConfig.validate()."""

    def test_missing_token(self):
        with pytest.raises(ConfigurationError, match="PUSHBULLET_API_TOKEN"):
            SmsConfig().validate()

    def test_invalid_max_stored(self):
        with pytest.raises(ConfigurationError):
            SmsConfig(api_token="o.abc", max_stored=0).validate()


# =============================================================================
# Entry point Tests
# =============================================================================


class TestMain:
    """Tests for main()."""

    def test_missing_token_exits_1(self):
        with patch.dict("os.environ", {}, clear=True), \
                patch("pushbullet_sms.main.asyncio.run") as mock_run:
            assert main([]) == 1

        mock_run.assert_not_called()

    def test_invalid_number_exits_1(self):
        with patch.dict("os.environ", {
            "PUSHBULLET_API_TOKEN": "o.abc",
            "SMS_MAX_STORED": "lots",
        }, clear=True):
            assert main([]) == 1

    def test_cli_overrides(self):
        with patch.dict("os.environ", {"PUSHBULLET_API_TOKEN": "o.abc"}, clear=True), \
                patch("pushbullet_sms.main.run", new=MagicMock()) as mock_run_coro, \
                patch("pushbullet_sms.main.asyncio.run") as mock_asyncio_run:
            assert main(["--port", "9100", "--host", "0.0.0.0", "--no-server"]) == 0

        mock_asyncio_run.assert_called_once()
        config = mock_run_coro.call_args[0][0]
        assert config.server_port == 9100
        assert config.server_host == "0.0.0.0"
        assert config.server_enabled is False


class TestRun:
    """Tests for run()."""

    @pytest.mark.asyncio
    async def test_no_server_runs_ingestion_only(self):
        config = SmsConfig(api_token="o.abc", server_enabled=False)

        with patch("pushbullet_sms.main.IngestionService") as mock_service_cls:
            mock_service_cls.return_value.run_forever = AsyncMock()

            await run(config)

        mock_service_cls.return_value.run_forever.assert_awaited_once()
        assert mock_service_cls.call_args[1]["config"].api_token == "o.abc"
