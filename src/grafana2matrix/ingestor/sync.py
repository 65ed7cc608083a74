"""Matrix ``/sync`` long-poll loop.

Watches the configured room for reactions and user messages and hands them
to registered handlers. History from before startup is skipped: the first
request only fetches a ``next_batch`` token.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from grafana2matrix.alerter.channels.matrix import DEFAULT_SYNC_TIMEOUT_MS, MatrixError
from grafana2matrix.ingestor.health import COMPONENT_MATRIX_SYNC
from grafana2matrix.ingestor.models import Reaction, UserMessage

if TYPE_CHECKING:
    from grafana2matrix.alerter.channels.matrix import MatrixChannel
    from grafana2matrix.ingestor.health import HealthMonitor

logger = logging.getLogger(__name__)

DEFAULT_ERROR_BACKOFF_SECONDS = 5.0

ReactionHandler = Callable[[Reaction], Awaitable[Any]]
MessageHandler = Callable[[UserMessage], Awaitable[Any]]


class SyncState(str, Enum):
    """State of the sync loop."""

    STOPPED = "stopped"
    RUNNING = "running"
    BACKING_OFF = "backing_off"


@dataclass
class SyncStats:
    """Counters for the sync loop."""

    syncs: int = 0
    errors: int = 0
    reactions: int = 0
    messages: int = 0
    last_error: str | None = None


class MatrixSyncLoop:
    """Background task that long-polls ``/sync`` for the bridge room.

    Example:
        ```python
        sync = MatrixSyncLoop(channel, health=monitor)
        sync.on_reaction(silence.handle_reaction)
        sync.on_user_message(bridge.handle_user_message)
        await sync.start()
        ...
        await sync.stop()
        ```
    """

    def __init__(
        self,
        channel: MatrixChannel,
        *,
        health: HealthMonitor | None = None,
        timeout_ms: int = DEFAULT_SYNC_TIMEOUT_MS,
        error_backoff_seconds: float = DEFAULT_ERROR_BACKOFF_SECONDS,
    ) -> None:
        """Initialize the sync loop.

        Args:
            channel: Matrix channel providing ``sync`` and the room id.
            health: Optional monitor that receives success and failure reports.
            timeout_ms: Long-poll window per request.
            error_backoff_seconds: Pause after a failed request.
        """
        self._channel = channel
        self._health = health
        self._timeout_ms = timeout_ms
        self._error_backoff = error_backoff_seconds

        self._reaction_handlers: list[ReactionHandler] = []
        self._message_handlers: list[MessageHandler] = []

        self._state = SyncState.STOPPED
        self._stats = SyncStats()
        self._since: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> SyncState:
        """Current loop state."""
        return self._state

    @property
    def stats(self) -> SyncStats:
        """Current loop statistics."""
        return self._stats

    @property
    def since(self) -> str | None:
        """Batch token the next request continues from."""
        return self._since

    def on_reaction(self, handler: ReactionHandler) -> None:
        """Register a coroutine called for each reaction in the room."""
        self._reaction_handlers.append(handler)

    def on_user_message(self, handler: MessageHandler) -> None:
        """Register a coroutine called for each message not sent by the bot."""
        self._message_handlers.append(handler)

    async def start(self) -> None:
        """Start the background sync task."""
        if self._state != SyncState.STOPPED:
            logger.warning("Cannot start sync: already in state %s", self._state.value)
            return

        self._stop_event.clear()
        self._state = SyncState.RUNNING
        self._task = asyncio.create_task(self._run())
        logger.info("Matrix sync started")

    async def stop(self) -> None:
        """Stop the background sync task."""
        if self._state == SyncState.STOPPED:
            return

        self._stop_event.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        self._state = SyncState.STOPPED
        logger.info("Matrix sync stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.sync_once()
                self._state = SyncState.RUNNING
            except asyncio.CancelledError:
                break
            except MatrixError as e:
                logger.error("Sync error: %s", e)
                if await self._back_off(e):
                    break
            except Exception as e:
                logger.exception("Unexpected sync error: %s", e)
                if await self._back_off(e):
                    break

    async def _back_off(self, error: Exception) -> bool:
        """Record a failed sync and wait before retrying.

        Returns:
            True if stop() was requested while waiting.
        """
        self._stats.errors += 1
        self._stats.last_error = str(error)
        self._state = SyncState.BACKING_OFF
        if self._health:
            self._health.record_failure(COMPONENT_MATRIX_SYNC, str(error))
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self._error_backoff)
        except TimeoutError:
            return False
        return True

    async def sync_once(self) -> None:
        """Run a single sync request and dispatch its events.

        The very first request uses a zero timeout and only records the
        batch token.

        Raises:
            MatrixError: If the request fails.
        """
        if self._since is None:
            data = await self._channel.sync(timeout_ms=0)
            self._since = data.get("next_batch")
            logger.info("Initial sync complete, continuing from %s", self._since)
        else:
            data = await self._channel.sync(since=self._since, timeout_ms=self._timeout_ms)
            self._since = data.get("next_batch") or self._since
            await self.process_sync_response(data)

        self._stats.syncs += 1
        if self._health:
            self._health.record_success(COMPONENT_MATRIX_SYNC)

    async def process_sync_response(self, data: dict[str, Any]) -> None:
        """Dispatch the bridge room's timeline events to the handlers.

        Args:
            data: Decoded ``/sync`` response body.
        """
        rooms = (data.get("rooms") or {}).get("join") or {}
        room = rooms.get(self._channel.room_id)
        if not room:
            return

        for event in (room.get("timeline") or {}).get("events") or []:
            event_type = event.get("type")
            if event_type == "m.reaction":
                reaction = Reaction.from_event(event)
                if reaction is not None:
                    self._stats.reactions += 1
                    await self._dispatch(self._reaction_handlers, reaction)
            elif event_type == "m.room.message":
                if self._channel.user_id and event.get("sender") == self._channel.user_id:
                    continue
                message = UserMessage.from_event(event)
                if message is not None:
                    self._stats.messages += 1
                    await self._dispatch(self._message_handlers, message)

    async def _dispatch(self, handlers: list[Callable[[Any], Awaitable[Any]]], item: Any) -> None:
        for handler in handlers:
            try:
                await handler(item)
            except Exception as e:
                logger.exception("Sync event handler failed: %s", e)
