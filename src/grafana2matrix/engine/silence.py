"""Reaction-driven silencing of alerts.

Reacting with a mute emoji to an alert message creates a 24 hour silence
in Grafana for that alert's exact label set and stops tracking it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from grafana2matrix.alerter.grafana import matchers_for
from grafana2matrix.storage.store import StateStore

if TYPE_CHECKING:
    from grafana2matrix.alerter.channels.matrix import MatrixChannel
    from grafana2matrix.alerter.formatter import AlertFormatter
    from grafana2matrix.alerter.grafana import GrafanaClient
    from grafana2matrix.ingestor.models import Reaction

logger = logging.getLogger(__name__)

MUTE_KEYS = frozenset({"🔇", ":mute:"})
SILENCE_DURATION = timedelta(hours=24)

REACTION_SILENCED = "☑️"
REACTION_SILENCE_FAILED = "⛔️"


class SilenceOutcome(str, Enum):
    """Result of handling one reaction."""

    IGNORED = "ignored"
    SILENCED = "silenced"
    FAILED = "failed"


class SilenceWorkflow:
    """Turns mute reactions on tracked messages into Grafana silences.

    Example:
        ```python
        workflow = SilenceWorkflow(store, grafana, channel, formatter)
        sync_loop.on_reaction(workflow.handle_reaction)
        ```
    """

    def __init__(
        self,
        store: StateStore,
        grafana: GrafanaClient,
        channel: MatrixChannel,
        formatter: AlertFormatter,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._grafana = grafana
        self._channel = channel
        self._formatter = formatter
        self._clock = clock or (lambda: datetime.now(UTC))

    async def handle_reaction(self, reaction: Reaction) -> SilenceOutcome:
        """Silence the alert behind a reacted-to message.

        Only mute keys on messages that map to a stored alert act; every
        other reaction is ignored. On failure the alert stays tracked so the
        reaction can be retried.

        Args:
            reaction: Reaction observed in the room.

        Returns:
            What happened.
        """
        if reaction.key not in MUTE_KEYS:
            return SilenceOutcome.IGNORED

        fingerprint = self._store.lookup_alert_for_message(reaction.target_event_id)
        if fingerprint is None:
            return SilenceOutcome.IGNORED

        logger.info(
            "Received mute reaction for event %s, alert %s",
            reaction.target_event_id,
            fingerprint,
        )
        alert = self._store.get_alert(fingerprint)
        if alert is None:
            logger.error("Alert not found for silence: %s", fingerprint)
            return SilenceOutcome.IGNORED

        start = self._clock()
        success = await self._grafana.create_silence(
            matchers_for(alert.labels), start, start + SILENCE_DURATION
        )

        if success:
            logger.info("Alert %s silenced successfully", fingerprint)
            self._store.forget_alert(fingerprint)
            await self._channel.send_notification(
                self._formatter.format_silence_result(alert, success=True)
            )
            await self._channel.send_reaction(reaction.target_event_id, REACTION_SILENCED)
            return SilenceOutcome.SILENCED

        await self._channel.send_notification(
            self._formatter.format_silence_result(alert, success=False)
        )
        await self._channel.send_reaction(reaction.target_event_id, REACTION_SILENCE_FAILED)
        return SilenceOutcome.FAILED
