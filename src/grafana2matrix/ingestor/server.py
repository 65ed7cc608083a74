"""HTTP server receiving Grafana webhooks.

Serves ``POST /webhook`` next to the health and metrics endpoints of the
``HealthMonitor`` on a single aiohttp application.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from grafana2matrix.ingestor.health import WEBHOOKS_TOTAL, HealthMonitor
from grafana2matrix.ingestor.models import (
    LegacyPayload,
    PayloadError,
    UnifiedPayload,
    parse_payload,
)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000

WebhookHandler = Callable[[UnifiedPayload | LegacyPayload], Awaitable[Any]]


class WebhookServer:
    """aiohttp application wrapping the webhook endpoint.

    Example:
        ```python
        server = WebhookServer(bridge.handle_webhook, monitor)
        await server.start(port=3000)
        ...
        await server.stop()
        ```
    """

    def __init__(self, handler: WebhookHandler, health: HealthMonitor) -> None:
        """Initialize the server.

        Args:
            handler: Coroutine processing a parsed webhook payload.
            health: Monitor whose endpoints are served alongside.
        """
        self._handler = handler
        self._health = health
        self._runner: web.AppRunner | None = None

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_post("/webhook", self._handle_webhook)
        self._health.add_routes(app)
        return app

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        """Handle POST /webhook."""
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Rejected webhook with invalid JSON: %s", e)
            WEBHOOKS_TOTAL.labels(format="invalid").inc()
            return web.Response(status=400, text="Invalid JSON body")

        logger.debug("Received webhook: %s", json.dumps(data, indent=2))

        try:
            payload = parse_payload(data)
        except PayloadError as e:
            logger.warning("Rejected webhook: %s", e)
            WEBHOOKS_TOTAL.labels(format="invalid").inc()
            return web.Response(status=400, text=str(e))

        WEBHOOKS_TOTAL.labels(
            format="unified" if isinstance(payload, UnifiedPayload) else "legacy"
        ).inc()

        try:
            await self._handler(payload)
        except Exception as e:
            logger.exception("Error processing webhook: %s", e)
            return web.Response(status=500, text="Error processing webhook")

        return web.Response(status=200, text="Notification sent")

    async def start(self, port: int = DEFAULT_PORT, host: str = "0.0.0.0") -> None:
        """Start listening.

        Args:
            port: Port to listen on.
            host: Interface to bind.
        """
        if self._runner:
            logger.warning("HTTP server already running")
            return

        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, host, port)
        await site.start()

        logger.info("Grafana webhook receiver listening on port %d", port)

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP server stopped")
