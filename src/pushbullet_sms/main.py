"""
Pushbullet SMS bridge - Main Entry Point

Usage:
    python -m pushbullet_sms.main                 # ingestion + tool server
    python -m pushbullet_sms.main --no-server     # ingestion only
    python -m pushbullet_sms.main --port 9000

Environment Variables:
    PUSHBULLET_API_TOKEN      Pushbullet access token (required)
    LOG_LEVEL                 Logging level (DEBUG/INFO/WARNING/ERROR)
    SMS_MAX_STORED            Messages kept in memory (default: 100)
    SMS_RECONNECT_DELAY       Seconds between stream reconnects (default: 5)
    SMS_HEARTBEAT_TIMEOUT     Seconds of stream silence before reconnect (default: 90)
    SMS_POLL_LIMIT            Pushes fetched per reconcile (default: 10)
    SMS_REQUEST_TIMEOUT       REST request timeout in seconds (default: 30)
    SMS_MAX_RETRIES           REST attempts for retryable failures (default: 3)
    SMS_SERVER_ENABLED        Run the HTTP tool server (default: true)
    SMS_SERVER_HOST           Tool server bind address (default: 127.0.0.1)
    SMS_SERVER_PORT           Tool server port (default: 8765)

A missing token is fatal: the process exits with status 1 before any
network activity.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

from .ingestion import ConfigurationError, IngestionConfig, IngestionService  # noqa: E402


@dataclass
class SmsConfig:
    """Complete process configuration."""

    # Credentials
    api_token: str = ""

    # Ingestion
    max_stored: int = 100
    reconnect_delay: float = 5.0
    heartbeat_timeout: float = 90.0
    poll_limit: int = 10
    request_timeout: float = 30.0
    max_retries: int = 3

    # Tool server
    server_enabled: bool = True
    server_host: str = "127.0.0.1"
    server_port: int = 8765

    @classmethod
    def from_env(cls) -> "SmsConfig":
        """Load configuration from environment variables."""
        return cls(
            api_token=os.environ.get("PUSHBULLET_API_TOKEN", "").strip(),
            max_stored=int(os.environ.get("SMS_MAX_STORED", "100")),
            reconnect_delay=float(os.environ.get("SMS_RECONNECT_DELAY", "5")),
            heartbeat_timeout=float(os.environ.get("SMS_HEARTBEAT_TIMEOUT", "90")),
            poll_limit=int(os.environ.get("SMS_POLL_LIMIT", "10")),
            request_timeout=float(os.environ.get("SMS_REQUEST_TIMEOUT", "30")),
            max_retries=int(os.environ.get("SMS_MAX_RETRIES", "3")),
            server_enabled=os.environ.get("SMS_SERVER_ENABLED", "true").lower() == "true",
            server_host=os.environ.get("SMS_SERVER_HOST", "127.0.0.1"),
            server_port=int(os.environ.get("SMS_SERVER_PORT", "8765")),
        )

    def validate(self) -> None:
        """Raise ConfigurationError for unusable settings."""
        if not self.api_token:
            raise ConfigurationError(
                "PUSHBULLET_API_TOKEN is required. Set it as an environment variable."
            )
        if self.max_stored < 1:
            raise ConfigurationError("SMS_MAX_STORED must be at least 1")

    def ingestion_config(self) -> IngestionConfig:
        """Settings for the ingestion service."""
        return IngestionConfig(
            api_token=self.api_token,
            reconnect_delay=self.reconnect_delay,
            heartbeat_timeout=self.heartbeat_timeout,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            max_stored=self.max_stored,
            poll_limit=self.poll_limit,
        )


async def run(config: SmsConfig) -> None:
    """
    Run ingestion (and the tool server, if enabled) until interrupted.

    Args:
        config: Validated process configuration
    """
    service = IngestionService(config=config.ingestion_config())

    if not config.server_enabled:
        await service.run_forever()
        return

    # Import lazily so --no-server runs don't need the server stack
    import uvicorn

    from .server import create_tool_app

    await service.start()
    try:
        server = uvicorn.Server(uvicorn.Config(
            create_tool_app(service),
            host=config.server_host,
            port=config.server_port,
            log_level="warning",
        ))
        logger.info(
            f"Pushbullet SMS tool server running at "
            f"http://{config.server_host}:{config.server_port}"
        )
        await server.serve()
    finally:
        await service.stop()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pushbullet SMS bridge")
    parser.add_argument("--host", help="Tool server bind address")
    parser.add_argument("--port", type=int, help="Tool server port")
    parser.add_argument(
        "--no-server",
        action="store_true",
        help="Run ingestion only, without the HTTP tool server",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """Process entry point. Returns the exit status."""
    args = parse_args(argv)

    try:
        config = SmsConfig.from_env()
        config.validate()
    except ConfigurationError as e:
        logger.error(str(e))
        return 1
    except ValueError as e:
        logger.error(f"Invalid configuration value: {e}")
        return 1

    if args.host:
        config.server_host = args.host
    if args.port:
        config.server_port = args.port
    if args.no_server:
        config.server_enabled = False

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
