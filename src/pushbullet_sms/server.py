"""
FastAPI tool server.

Provides:
    - Tool listing and invocation endpoints
    - REST API endpoints for status and metrics
    - Health check endpoint
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from fastapi import Body, FastAPI
from fastapi.responses import JSONResponse

from . import __version__
from .tools import SmsTools

if TYPE_CHECKING:
    from .ingestion import IngestionService

logger = logging.getLogger(__name__)


def create_tool_app(
    service: "IngestionService",
    tools: Optional[SmsTools] = None,
) -> FastAPI:
    """
    Create the FastAPI tool server application.

    Args:
        service: The ingestion service backing the tools
        tools: Optional tool set (built from the service if omitted)

    Returns:
        FastAPI application instance
    """
    tools = tools or SmsTools(service)

    app = FastAPI(
        title="Pushbullet SMS",
        description="SMS retrieval and verification-code waits over Pushbullet",
        version=__version__,
    )

    @app.get("/tools")
    async def list_tools():
        """List available tools and their input schemas."""
        return {"tools": tools.list_tools()}

    @app.post("/tools/{name}")
    async def call_tool(name: str, arguments: Optional[dict[str, Any]] = Body(default=None)):
        """
        Invoke a tool.

        Tool failures are reported in the body with ``isError: true``;
        the HTTP status stays 200.
        """
        result = await tools.call(name, arguments or {})
        return result.to_dict()

    @app.get("/api/status")
    async def get_status():
        """Connection and store snapshot."""
        return service.status().to_dict()

    @app.get("/api/metrics")
    async def get_metrics():
        """Get current ingestion metrics."""
        return service.metrics.to_dict()

    @app.get("/health")
    async def health_check():
        """
        Health check endpoint.

        Returns 200 if healthy, 503 if unhealthy.
        """
        health = service.health()
        if health.healthy:
            return {"status": "healthy"}
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "details": health.details},
        )

    return app
