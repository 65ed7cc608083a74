"""Grafana Alertmanager API client used for interactive silencing."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import httpx

logger = logging.getLogger(__name__)

SILENCES_PATH = "/api/alertmanager/grafana/api/v2/silences"

SILENCE_CREATED_BY = "Grafana2Matrix"
SILENCE_COMMENT = "Silenced via Matrix for 24h"


def matchers_for(labels: Mapping[str, str]) -> list[dict[str, Any]]:
    """Build one exact, non-regex matcher per label."""
    return [
        {"name": name, "value": value, "isRegex": False, "isEqual": True}
        for name, value in labels.items()
    ]


def _iso(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class GrafanaClient:
    """Creates silences through Grafana's built-in Alertmanager."""

    def __init__(
        self,
        url: str | None,
        api_key: str | None,
        *,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the client.

        Args:
            url: Grafana base URL. Silencing is disabled without it.
            api_key: Service account token sent as a bearer token.
            timeout: HTTP request timeout in seconds.
        """
        self.timeout = timeout
        self.update_config(url, api_key)

    def update_config(self, url: str | None, api_key: str | None) -> None:
        """Rebind the client after a configuration reload."""
        self.url = url.rstrip("/") if url else None
        self._api_key = api_key

    @property
    def enabled(self) -> bool:
        """Check if both URL and API key are configured."""
        return bool(self.url and self._api_key)

    async def create_silence(
        self,
        matchers: list[dict[str, Any]],
        start: datetime,
        end: datetime,
    ) -> bool:
        """Create a silence for the given matchers.

        Args:
            matchers: Alertmanager matchers, usually from ``matchers_for``.
            start: Silence start.
            end: Silence end.

        Returns:
            True if Grafana accepted the silence, False otherwise.
        """
        if not self.enabled:
            logger.error("Cannot create silence: GRAFANA_URL or GRAFANA_API_KEY not set")
            return False

        payload = {
            "matchers": matchers,
            "startsAt": _iso(start),
            "endsAt": _iso(end),
            "createdBy": SILENCE_CREATED_BY,
            "comment": SILENCE_COMMENT,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.url}{SILENCES_PATH}",
                    json=payload,
                    headers=headers,
                )

                if response.status_code >= 400:
                    logger.error(
                        "Grafana rejected silence: %s %s",
                        response.status_code,
                        response.text,
                    )
                    return False

                logger.info("Silence created: %s", response.text)
                return True

        except httpx.TimeoutException:
            logger.warning("Grafana silence request timed out")
            return False
        except httpx.HTTPError as e:
            logger.error("Failed to create silence: %s", e)
            return False
