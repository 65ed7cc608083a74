"""Matrix client-server API channel implementation."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any
from urllib.parse import quote

import httpx

from grafana2matrix.alerter.formatter import to_html

logger = logging.getLogger(__name__)

CLIENT_API_PATH = "/_matrix/client/v3"

# Long-poll window for /sync in milliseconds
DEFAULT_SYNC_TIMEOUT_MS = 30_000


class MatrixError(Exception):
    """Raised when a Matrix API call fails."""

    pass


class MatrixChannel:
    """Matrix channel bound to a single room.

    Sends notifications and reactions into the room and exposes the
    ``/sync`` long-poll used by the sync loop. Send failures are logged and
    reported through the return value; they are never retried except when
    the homeserver asks us to back off.
    """

    def __init__(
        self,
        homeserver_url: str,
        room_id: str,
        access_token: str,
        *,
        max_rate_limit_retries: int = 2,
        timeout: float = 10.0,
    ) -> None:
        """Initialize Matrix channel.

        Args:
            homeserver_url: Base URL of the homeserver.
            room_id: Room all messages are posted to.
            access_token: Access token of the bot account.
            max_rate_limit_retries: How often to honour M_LIMIT_EXCEEDED.
            timeout: HTTP request timeout in seconds (sync adds its poll window).
        """
        self.name = "matrix"
        self.max_rate_limit_retries = max_rate_limit_retries
        self.timeout = timeout
        self.user_id: str | None = None
        self.update_config(homeserver_url, room_id, access_token)

    def update_config(self, homeserver_url: str, room_id: str, access_token: str) -> None:
        """Rebind the channel after a configuration reload."""
        self.homeserver_url = homeserver_url.rstrip("/")
        self.room_id = room_id
        self._access_token = access_token

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    def _url(self, path: str) -> str:
        return f"{self.homeserver_url}{CLIENT_API_PATH}{path}"

    def _room_send_url(self, event_type: str) -> str:
        txn_id = uuid.uuid4().hex
        return self._url(f"/rooms/{quote(self.room_id, safe='')}/send/{event_type}/{txn_id}")

    async def _put_event(self, event_type: str, content: dict[str, Any]) -> str | None:
        """PUT an event into the room and return its event id.

        The transaction id is fixed across rate-limit retries so the
        homeserver deduplicates a repeated request.
        """
        url = self._room_send_url(event_type)

        for _attempt in range(self.max_rate_limit_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.put(url, json=content, headers=self._headers)

                    if response.status_code == 429:
                        retry_after_ms = response.json().get("retry_after_ms", 1000)
                        logger.warning("Matrix rate limited, retry after %dms", retry_after_ms)
                        await asyncio.sleep(retry_after_ms / 1000)
                        continue

                    if response.status_code >= 400:
                        logger.error(
                            "Matrix %s failed: %s %s",
                            event_type,
                            response.status_code,
                            response.text,
                        )
                        return None

                    event_id: str | None = response.json().get("event_id")
                    return event_id

            except httpx.TimeoutException:
                logger.warning("Matrix %s timed out", event_type)
                return None
            except httpx.HTTPError as e:
                logger.error("Failed to send Matrix %s: %s", event_type, e)
                return None
            except ValueError as e:
                logger.error("Invalid Matrix response to %s: %s", event_type, e)
                return None

        logger.error("Matrix %s abandoned after rate limiting", event_type)
        return None

    async def send_notification(self, text: str) -> str | None:
        """Post a message to the room.

        Args:
            text: Markdown-flavoured message text.

        Returns:
            The event id of the sent message, or None on failure.
        """
        logger.info("Sending Matrix notification (length: %d)", len(text))
        content = {
            "msgtype": "m.text",
            "body": text,
            "format": "org.matrix.custom.html",
            "formatted_body": to_html(text),
        }
        event_id = await self._put_event("m.room.message", content)
        if event_id:
            logger.info("Matrix event sent: %s", event_id)
        return event_id

    async def send_reaction(self, event_id: str, key: str) -> bool:
        """React to an event in the room.

        Returns:
            True if the reaction was accepted.
        """
        content = {
            "m.relates_to": {
                "rel_type": "m.annotation",
                "event_id": event_id,
                "key": key,
            }
        }
        return await self._put_event("m.reaction", content) is not None

    async def _get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=timeout or self.timeout) as client:
                response = await client.get(self._url(path), params=params, headers=self._headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise MatrixError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise MatrixError(f"GET {path} returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise MatrixError(f"GET {path} returned {type(data).__name__}, expected an object")
        return data

    async def sync(self, since: str | None = None, timeout_ms: int = 0) -> dict[str, Any]:
        """Run one ``/sync`` request.

        Raises:
            MatrixError: If the request fails.
        """
        params: dict[str, Any] = {"timeout": timeout_ms}
        if since:
            params["since"] = since
        return await self._get_json("/sync", params, timeout=self.timeout + timeout_ms / 1000)

    async def whoami(self) -> str | None:
        """Resolve and remember the bot's own user id."""
        try:
            data = await self._get_json("/account/whoami")
        except MatrixError as e:
            logger.warning("Could not resolve own user id: %s", e)
            return None
        self.user_id = data.get("user_id")
        return self.user_id

    async def list_joined_rooms(self) -> list[str]:
        """Log and return the rooms the bot has joined."""
        logger.info("Fetching joined rooms...")
        try:
            data = await self._get_json("/joined_rooms")
        except MatrixError as e:
            logger.error("Failed to fetch joined rooms: %s", e)
            return []

        rooms: list[str] = data.get("joined_rooms", [])
        logger.info("Joined to %d rooms:", len(rooms))
        for room_id in rooms:
            try:
                name = await self._get_json(f"/rooms/{quote(room_id, safe='')}/state/m.room.name")
                label = f" ({name['name']})" if name.get("name") else ""
            except MatrixError:
                label = ""
            logger.info("- %s%s", room_id, label)

        if self.room_id not in rooms:
            logger.warning("Configured room %s is not among the joined rooms", self.room_id)
        return rooms
