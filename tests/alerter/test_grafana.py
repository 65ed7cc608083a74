"""Tests for the Grafana silence client."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from grafana2matrix.alerter.grafana import (
    SILENCE_COMMENT,
    SILENCE_CREATED_BY,
    GrafanaClient,
    matchers_for,
)

START = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
END = START + timedelta(hours=24)


@pytest.fixture
def client() -> GrafanaClient:
    return GrafanaClient("https://grafana.example.org/", "glsa_token")


def patched_client(mock_client_class: MagicMock, status_code: int = 200) -> AsyncMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = '{"silenceID": "s1"}'
    http = AsyncMock()
    http.post.return_value = response
    http.__aenter__.return_value = http
    http.__aexit__.return_value = None
    mock_client_class.return_value = http
    return http


class TestMatchers:
    """Tests for matcher construction."""

    def test_one_exact_matcher_per_label(self) -> None:
        matchers = matchers_for({"alertname": "HighCPU", "host": "db1"})

        assert matchers == [
            {"name": "alertname", "value": "HighCPU", "isRegex": False, "isEqual": True},
            {"name": "host", "value": "db1", "isRegex": False, "isEqual": True},
        ]

    def test_empty_labels(self) -> None:
        assert matchers_for({}) == []


class TestCreateSilence:
    """Tests for GrafanaClient.create_silence."""

    def test_enabled(self, client: GrafanaClient) -> None:
        assert client.enabled is True
        assert GrafanaClient(None, "token").enabled is False
        assert GrafanaClient("https://grafana.example.org", None).enabled is False

    async def test_success(self, client: GrafanaClient) -> None:
        matchers = matchers_for({"host": "db1"})

        with patch("httpx.AsyncClient") as mock_client_class:
            http = patched_client(mock_client_class)

            assert await client.create_silence(matchers, START, END) is True

        url = http.post.call_args.args[0]
        assert url == "https://grafana.example.org/api/alertmanager/grafana/api/v2/silences"
        body = http.post.call_args.kwargs["json"]
        assert body == {
            "matchers": matchers,
            "startsAt": "2024-01-01T09:00:00.000Z",
            "endsAt": "2024-01-02T09:00:00.000Z",
            "createdBy": SILENCE_CREATED_BY,
            "comment": SILENCE_COMMENT,
        }
        assert http.post.call_args.kwargs["headers"] == {"Authorization": "Bearer glsa_token"}

    async def test_rejected(self, client: GrafanaClient) -> None:
        with patch("httpx.AsyncClient") as mock_client_class:
            patched_client(mock_client_class, status_code=400)

            assert await client.create_silence([], START, END) is False

    async def test_network_error(self, client: GrafanaClient) -> None:
        with patch("httpx.AsyncClient") as mock_client_class:
            http = patched_client(mock_client_class)
            http.post.side_effect = httpx.ConnectError("unreachable")

            assert await client.create_silence([], START, END) is False

    async def test_timeout(self, client: GrafanaClient) -> None:
        with patch("httpx.AsyncClient") as mock_client_class:
            http = patched_client(mock_client_class)
            http.post.side_effect = httpx.ConnectTimeout("timed out")

            assert await client.create_silence([], START, END) is False

    async def test_disabled_makes_no_request(self) -> None:
        client = GrafanaClient(None, None)

        with patch("httpx.AsyncClient") as mock_client_class:
            assert await client.create_silence([], START, END) is False
            mock_client_class.assert_not_called()

    def test_update_config(self, client: GrafanaClient) -> None:
        client.update_config(None, None)
        assert client.enabled is False

        client.update_config("https://g2.example.org/", "t2")
        assert client.url == "https://g2.example.org"
        assert client.enabled is True
