"""Tests for the webhook HTTP server."""

from unittest.mock import AsyncMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from grafana2matrix.ingestor.health import HealthMonitor
from grafana2matrix.ingestor.models import LegacyPayload, UnifiedPayload
from grafana2matrix.ingestor.server import WebhookServer
from tests.factories import webhook_entry


@pytest.fixture
def handler() -> AsyncMock:
    return AsyncMock(return_value=None)


@pytest.fixture
def server(handler: AsyncMock) -> WebhookServer:
    return WebhookServer(handler, HealthMonitor())


class TestWebhookEndpoint:
    """Tests for POST /webhook."""

    async def test_unified_payload(self, server: WebhookServer, handler: AsyncMock) -> None:
        async with TestClient(TestServer(server.create_app())) as client:
            resp = await client.post("/webhook", json={"alerts": [webhook_entry()]})

            assert resp.status == 200
            assert await resp.text() == "Notification sent"

        payload = handler.await_args.args[0]
        assert isinstance(payload, UnifiedPayload)
        assert payload.alerts[0].fingerprint == "abc123"

    async def test_legacy_payload(self, server: WebhookServer, handler: AsyncMock) -> None:
        async with TestClient(TestServer(server.create_app())) as client:
            resp = await client.post("/webhook", json={"state": "alerting", "title": "Disk"})

            assert resp.status == 200

        payload = handler.await_args.args[0]
        assert isinstance(payload, LegacyPayload)
        assert payload.title == "Disk"

    async def test_invalid_json(self, server: WebhookServer, handler: AsyncMock) -> None:
        async with TestClient(TestServer(server.create_app())) as client:
            resp = await client.post(
                "/webhook", data="{not json", headers={"Content-Type": "application/json"}
            )

            assert resp.status == 400
            assert await resp.text() == "Invalid JSON body"

        handler.assert_not_awaited()

    async def test_non_object_body(self, server: WebhookServer, handler: AsyncMock) -> None:
        async with TestClient(TestServer(server.create_app())) as client:
            resp = await client.post("/webhook", json=[1, 2, 3])

            assert resp.status == 400

        handler.assert_not_awaited()

    async def test_handler_error(self, server: WebhookServer, handler: AsyncMock) -> None:
        handler.side_effect = RuntimeError("boom")

        async with TestClient(TestServer(server.create_app())) as client:
            resp = await client.post("/webhook", json={"alerts": []})

            assert resp.status == 500
            assert await resp.text() == "Error processing webhook"

    async def test_health_routes_served(self, server: WebhookServer) -> None:
        async with TestClient(TestServer(server.create_app())) as client:
            resp = await client.get("/live")

            assert resp.status == 200

    async def test_get_not_allowed(self, server: WebhookServer) -> None:
        async with TestClient(TestServer(server.create_app())) as client:
            resp = await client.get("/webhook")

            assert resp.status == 405


class TestLifecycle:
    """Tests for starting and stopping the server."""

    async def test_start_stop(self, server: WebhookServer) -> None:
        await server.start(port=0, host="127.0.0.1")
        assert server._runner is not None

        await server.stop()
        assert server._runner is None

    async def test_stop_when_not_running(self, server: WebhookServer) -> None:
        await server.stop()
        assert server._runner is None
