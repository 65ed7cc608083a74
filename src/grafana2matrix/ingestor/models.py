"""Data models for inbound webhook payloads and Matrix events."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from grafana2matrix.engine.models import Alert

logger = logging.getLogger(__name__)

# Legacy states that count as an active alert
ALERTING_STATES = frozenset({"firing", "alerting"})


class PayloadError(ValueError):
    """Raised when a webhook body cannot be interpreted at all."""


@dataclass
class UnifiedPayload:
    """Grafana Unified Alerting webhook body.

    Attributes:
        alerts: Parsed alert events in delivery order.
        external_url: Grafana base URL advertised by the sender.
        ignored: Number of entries dropped for an unknown status.
    """

    alerts: list[Alert] = field(default_factory=list)
    external_url: str | None = None
    ignored: int = 0

    @property
    def fingerprints(self) -> set[str]:
        return {alert.fingerprint for alert in self.alerts}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UnifiedPayload:
        """Create a payload from the webhook JSON.

        Entries that are not objects or carry a status other than
        ``firing``/``resolved`` are logged and skipped.
        """
        payload = cls(external_url=data.get("externalURL"))
        for entry in data.get("alerts") or []:
            if not isinstance(entry, dict):
                logger.warning("Ignoring malformed alert entry: %r", entry)
                payload.ignored += 1
                continue
            try:
                payload.alerts.append(Alert.from_dict(entry))
            except ValueError as e:
                logger.warning("Ignoring alert %s: %s", entry.get("fingerprint"), e)
                payload.ignored += 1
        return payload


@dataclass(frozen=True)
class LegacyPayload:
    """Pre Unified Alerting webhook body. Never deduplicated."""

    state: str | None = None
    title: str = "Grafana Alert"
    message: str = "No message provided"
    rule_url: str | None = None

    @property
    def is_alerting(self) -> bool:
        return (self.state or "").lower() in ALERTING_STATES

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LegacyPayload:
        return cls(
            state=data.get("state"),
            title=data.get("title") or "Grafana Alert",
            message=data.get("message") or "No message provided",
            rule_url=data.get("ruleUrl") or None,
        )


def parse_payload(data: Any) -> UnifiedPayload | LegacyPayload:
    """Detect the webhook flavour and parse it.

    A body with an ``alerts`` list is Unified Alerting; any other JSON
    object is treated as a legacy notification.

    Raises:
        PayloadError: If the body is not a JSON object.
    """
    if not isinstance(data, dict):
        raise PayloadError("Webhook body must be a JSON object")
    if isinstance(data.get("alerts"), list):
        return UnifiedPayload.from_dict(data)
    return LegacyPayload.from_dict(data)


@dataclass(frozen=True)
class Reaction:
    """An ``m.reaction`` annotation observed in the room.

    Attributes:
        key: Reaction key, usually an emoji.
        target_event_id: Event the reaction annotates.
        sender: User who reacted.
        event_id: Id of the reaction event itself.
    """

    key: str
    target_event_id: str
    sender: str
    event_id: str

    @classmethod
    def from_event(cls, event: dict[str, Any]) -> Reaction | None:
        """Build from a timeline event, or None if it is not an annotation."""
        relates_to = (event.get("content") or {}).get("m.relates_to") or {}
        if relates_to.get("rel_type") != "m.annotation":
            return None
        key = relates_to.get("key")
        target = relates_to.get("event_id")
        if not key or not target:
            return None
        return cls(
            key=key,
            target_event_id=target,
            sender=event.get("sender", ""),
            event_id=event.get("event_id", ""),
        )


@dataclass(frozen=True)
class UserMessage:
    """A plain text ``m.room.message`` sent by somebody other than the bot."""

    body: str
    sender: str
    event_id: str

    @classmethod
    def from_event(cls, event: dict[str, Any]) -> UserMessage | None:
        body = (event.get("content") or {}).get("body")
        if not isinstance(body, str):
            return None
        return cls(body=body, sender=event.get("sender", ""), event_id=event.get("event_id", ""))
