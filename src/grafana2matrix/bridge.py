"""Bridge orchestration.

Wires the state engine to Matrix and Grafana: the webhook path
(deduplicate, notify, prune), the periodic tick (persistent mentions and
scheduled summaries), reaction-based silencing and the chat commands.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import ValidationError

from grafana2matrix.alerter.channels.matrix import MatrixChannel
from grafana2matrix.alerter.formatter import AlertFormatter, severity_matches
from grafana2matrix.alerter.grafana import GrafanaClient
from grafana2matrix.config import Settings, clear_settings_cache, get_settings
from grafana2matrix.engine.dedup import AlertDeduplicator
from grafana2matrix.engine.mentions import (
    MentionContext,
    MentionEvaluator,
    immediate_kinds,
    immediate_mentions,
)
from grafana2matrix.engine.models import Alert, Classification, Severity
from grafana2matrix.engine.policy import MentionConfigLoader, PolicyMap
from grafana2matrix.engine.schedule import ScheduleEvaluator
from grafana2matrix.engine.silence import SilenceOutcome, SilenceWorkflow
from grafana2matrix.ingestor.health import (
    ALERT_EVENTS_TOTAL,
    COMPONENT_TICK,
    SILENCES_TOTAL,
    TICK_DURATION,
    HealthMonitor,
    record_notification,
)
from grafana2matrix.ingestor.models import LegacyPayload, Reaction, UnifiedPayload, UserMessage
from grafana2matrix.ingestor.server import WebhookServer
from grafana2matrix.ingestor.sync import MatrixSyncLoop
from grafana2matrix.storage.store import StateStore, StorageError

logger = logging.getLogger(__name__)

SUMMARY_COMMAND = ".summary"
RELOAD_COMMAND = ".reload-config"

REACTION_ACK = "☑️"
REACTION_RELOADED = "✅"
REACTION_RELOAD_FAILED = "❌"

Clock = Callable[[], datetime]


class Bridge:
    """Grafana to Matrix alert bridge.

    Example:
        ```python
        bridge = Bridge(get_settings())
        await bridge.start()
        ...
        await bridge.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: StateStore | None = None,
        channel: MatrixChannel | None = None,
        grafana: GrafanaClient | None = None,
        health: HealthMonitor | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the bridge and its components.

        Args:
            settings: Application settings.
            store: State store (defaults to the SQLite file from settings).
            channel: Matrix channel (defaults to one built from settings).
            grafana: Grafana client (defaults to one built from settings).
            health: Health monitor shared with the HTTP server.
            clock: Returns the current UTC time.
        """
        self.settings = settings
        self._clock: Clock = clock or (lambda: datetime.now(UTC))

        self.store = store or StateStore.from_path(settings.db_file)
        self.channel = channel or MatrixChannel(
            settings.matrix.homeserver_url,
            settings.matrix.room_id,
            settings.matrix.access_token.get_secret_value(),
        )
        self.grafana = grafana or GrafanaClient(
            settings.grafana.url,
            settings.grafana.api_key.get_secret_value() if settings.grafana.api_key else None,
        )
        self.health = health or HealthMonitor(
            stale_threshold_seconds=max(180.0, settings.tick_interval_seconds * 3)
        )
        self.formatter = AlertFormatter()

        self._mention_loader = MentionConfigLoader(settings.mention_config_path)
        self.dedup = AlertDeduplicator(self.store)
        self.mentions = MentionEvaluator(self.store, self._load_policies)
        self.schedule = ScheduleEvaluator(self.store)
        self.silence = SilenceWorkflow(
            self.store, self.grafana, self.channel, self.formatter, clock=self._clock
        )

        self.sync = MatrixSyncLoop(self.channel, health=self.health)
        self.sync.on_reaction(self.handle_reaction)
        self.sync.on_user_message(self.handle_user_message)
        self.server = WebhookServer(self.handle_webhook, self.health)

        self._tick_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    def _load_policies(self) -> PolicyMap:
        return self._mention_loader.load()

    # Webhook path

    async def handle_webhook(self, payload: UnifiedPayload | LegacyPayload) -> None:
        """Process one parsed webhook delivery."""
        if isinstance(payload, LegacyPayload):
            event_id = await self.channel.send_notification(self.formatter.format_legacy(payload))
            record_notification("legacy", event_id)
            return

        now = self._clock()
        result = self.dedup.process(payload.alerts)
        for classification in result.classifications.values():
            ALERT_EVENTS_TOTAL.labels(classification=classification.value).inc()
        if result.skipped:
            ALERT_EVENTS_TOTAL.labels(classification="skipped").inc(len(result.skipped))
            logger.warning(
                "Skipped %d alert(s) on storage errors: %s",
                len(result.skipped),
                ", ".join(result.skipped),
            )

        policies = self._load_policies() if result.notify else {}
        for alert in result.notify:
            is_new = result.classifications[alert.fingerprint] is Classification.NEW_FIRING
            policy = policies.get(alert.host or "") if is_new else None
            text = self.formatter.format_alert(alert, immediate_mentions(alert, policy))
            event_id = await self.channel.send_notification(text)
            record_notification("alert", event_id)
            if not event_id or not alert.is_firing:
                continue

            # Re-read after the send: the alert may have been resolved meanwhile
            try:
                stored = self.store.get_alert(alert.fingerprint)
                if stored is None:
                    logger.info(
                        "Alert %s left the store while its message was sent", alert.fingerprint
                    )
                    continue
                self.store.map_message_to_alert(event_id, alert.fingerprint)
                kinds = immediate_kinds(stored, policy)
                if kinds:
                    for kind in kinds:
                        stored.mentions.mark_sent(kind, now)
                    self.store.put_alert(alert.fingerprint, stored)
            except StorageError as e:
                logger.error(
                    "Failed to record message %s for %s: %s", event_id, alert.fingerprint, e
                )

        duplicates = self._reload(result.duplicates)
        for group in self.mentions.evaluate(duplicates, MentionContext.WEBHOOK, now):
            event_id = await self.channel.send_notification(
                self.formatter.format_mention_group(group)
            )
            record_notification("mention", event_id)

        pruned = self.dedup.prune_zombies(payload.fingerprints)
        if pruned:
            logger.info("Pruned %d zombie alert(s)", len(pruned))
        self._publish_active_alerts()

    # Tick path

    async def run_tick(self, now: datetime | None = None) -> None:
        """Run one pass of persistent mentions and scheduled summaries."""
        now = now or self._clock()
        started = time.perf_counter()

        try:
            active = self.store.list_active_alerts()
        except StorageError as e:
            logger.error("Skipping mention check: %s", e)
            active = []

        for group in self.mentions.evaluate(active, MentionContext.TICK, now):
            event_id = await self.channel.send_notification(
                self.formatter.format_mention_group(group)
            )
            record_notification("mention", event_id)

        schedules = {
            Severity.CRIT: self.settings.summary.schedule_crit,
            Severity.WARN: self.settings.summary.schedule_warn,
        }
        for severity, schedule in schedules.items():
            try:
                due = self.schedule.is_due(severity, schedule, now)
            except StorageError as e:
                logger.error("Skipping %s schedule check: %s", severity.value, e)
                continue
            if not due:
                continue
            try:
                await self.send_summary(severity.value, scheduled=True)
            except StorageError as e:
                logger.error("Failed to build %s summary: %s", severity.value, e)

        TICK_DURATION.observe(time.perf_counter() - started)
        self.health.record_success(COMPONENT_TICK)
        self._publish_active_alerts()

    async def send_summary(self, severity: str, *, scheduled: bool = False) -> str | None:
        """Post a summary of the active alerts of one severity.

        Args:
            severity: Severity class or raw severity label.
            scheduled: Scheduled summaries honour SUMMARY_SCHEDULE_SKIP_EMPTY.

        Returns:
            Event id of the summary message, or None if skipped or failed.
        """
        severity = severity.upper()
        alerts = [a for a in self.store.list_active_alerts() if severity_matches(a, severity)]

        if scheduled and not alerts and self.settings.summary.skip_empty:
            logger.info("Skipping empty %s summary", severity)
            return None

        logger.info("Sending summary for severity: %s", severity)
        event_id = await self.channel.send_notification(
            self.formatter.format_summary(severity, alerts)
        )
        record_notification("summary", event_id)
        return event_id

    def _reload(self, alerts: list[Alert]) -> list[Alert]:
        """Return the stored copies of alerts that are still active."""
        fresh: list[Alert] = []
        for alert in alerts:
            try:
                stored = self.store.get_alert(alert.fingerprint)
            except StorageError as e:
                logger.error("Skipping mentions for %s: %s", alert.fingerprint, e)
                continue
            if stored is not None:
                fresh.append(stored)
        return fresh

    def _publish_active_alerts(self) -> None:
        try:
            self.health.set_active_alerts(self.store.count_active_alerts())
        except StorageError as e:
            logger.warning("Could not count active alerts: %s", e)

    # Matrix events

    async def handle_reaction(self, reaction: Reaction) -> SilenceOutcome:
        outcome = await self.silence.handle_reaction(reaction)
        if outcome is not SilenceOutcome.IGNORED:
            SILENCES_TOTAL.labels(outcome=outcome.value).inc()
            self._publish_active_alerts()
        return outcome

    async def handle_user_message(self, message: UserMessage) -> None:
        """Dispatch chat commands."""
        body = message.body.strip()
        parts = body.split()
        if not parts:
            return

        if parts[0] == SUMMARY_COMMAND:
            await self.channel.send_reaction(message.event_id, REACTION_ACK)
            if len(parts) > 1:
                logger.info("Received manual summary request for: %s", parts[1].upper())
                await self.send_summary(parts[1])
            else:
                await self.channel.send_notification(self.formatter.summary_usage())
        elif body == RELOAD_COMMAND:
            await self.channel.send_reaction(message.event_id, REACTION_ACK)
            try:
                self.reload_config()
            except (ValidationError, ValueError) as e:
                logger.error("Failed to reload config: %s", e)
                await self.channel.send_reaction(message.event_id, REACTION_RELOAD_FAILED)
                await self.channel.send_notification(f"Failed to reload config: {e}")
                return
            await self.channel.send_reaction(message.event_id, REACTION_RELOADED)

    def reload_config(self) -> Settings:
        """Reload settings and rebind the components that depend on them.

        The running configuration is kept when loading fails.

        Raises:
            ValidationError: If the new configuration is invalid.
            ValueError: If the config file is not valid JSON.
        """
        logger.info("Reloading configuration...")
        clear_settings_cache()
        settings = get_settings()

        self.settings = settings
        self.channel.update_config(
            settings.matrix.homeserver_url,
            settings.matrix.room_id,
            settings.matrix.access_token.get_secret_value(),
        )
        self.grafana.update_config(
            settings.grafana.url,
            settings.grafana.api_key.get_secret_value() if settings.grafana.api_key else None,
        )
        self._mention_loader = MentionConfigLoader(settings.mention_config_path)
        logger.info("Configuration reloaded")
        return settings

    # Lifecycle

    async def _tick_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.settings.tick_interval_seconds,
                )
                break
            except TimeoutError:
                pass

            try:
                await self.run_tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Tick failed: %s", e)
                self.health.record_failure(COMPONENT_TICK, str(e))

    async def start(self, port: int | None = None) -> None:
        """Start the HTTP server, the Matrix sync loop and the tick."""
        self._stop_event.clear()
        self.health.register_component(COMPONENT_TICK)

        await self.channel.whoami()
        await self.server.start(port=port or self.settings.port)
        await self.channel.list_joined_rooms()
        await self.sync.start()

        self._tick_task = asyncio.create_task(self._tick_loop())
        self._publish_active_alerts()
        logger.info("Bridge started")

    async def stop(self) -> None:
        """Stop all background work and close the store."""
        self._stop_event.set()
        if self._tick_task:
            self._tick_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._tick_task
            self._tick_task = None

        await self.sync.stop()
        await self.server.stop()
        self.store.close()
        logger.info("Bridge stopped")
