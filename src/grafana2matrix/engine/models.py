"""Data models for the alert state engine."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

UNKNOWN_ALERT = "Unknown Alert"
UNKNOWN_HOST = "Unknown Host"


class AlertStatus(str, Enum):
    """Lifecycle status reported by Grafana."""

    FIRING = "firing"
    RESOLVED = "resolved"


class Severity(str, Enum):
    """Severity classes that drive mentions and summaries."""

    CRIT = "CRIT"
    WARN = "WARN"

    @classmethod
    def classify(cls, raw: str | None) -> Severity | None:
        """Map a free-form severity label onto a class.

        ``CRIT``/``CRITICAL`` and ``WARN``/``WARNING`` match case-insensitively,
        anything else has no class.
        """
        if not raw:
            return None
        value = raw.strip().upper()
        if value in ("CRIT", "CRITICAL"):
            return cls.CRIT
        if value in ("WARN", "WARNING"):
            return cls.WARN
        return None


class MentionKind(str, Enum):
    """Which user list of a mention policy is targeted."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class Classification(str, Enum):
    """Outcome of deduplicating one incoming alert event."""

    NEW_FIRING = "new_firing"
    DUPLICATE_FIRING = "duplicate_firing"
    RESOLVED = "resolved"
    RESOLVED_UNKNOWN = "resolved_unknown"


@dataclass
class MentionTracking:
    """When each mention type was last sent for an alert.

    Attributes:
        last_sent_primary: Epoch seconds of the last primary mention, 0 if never.
        last_sent_secondary: Epoch seconds of the last secondary mention, 0 if never.
    """

    last_sent_primary: float = 0
    last_sent_secondary: float = 0

    def last_sent(self, kind: MentionKind) -> float:
        if kind is MentionKind.PRIMARY:
            return self.last_sent_primary
        return self.last_sent_secondary

    def mark_sent(self, kind: MentionKind, when: datetime) -> None:
        if kind is MentionKind.PRIMARY:
            self.last_sent_primary = when.timestamp()
        else:
            self.last_sent_secondary = when.timestamp()

    def to_dict(self) -> dict[str, float]:
        return {
            "last_sent_primary": self.last_sent_primary,
            "last_sent_secondary": self.last_sent_secondary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MentionTracking:
        if not data:
            return cls()
        return cls(
            last_sent_primary=float(data.get("last_sent_primary") or 0),
            last_sent_secondary=float(data.get("last_sent_secondary") or 0),
        )


def derive_fingerprint(labels: dict[str, str]) -> str:
    """Derive a stable fingerprint from a label set.

    Used when the webhook payload carries no fingerprint of its own.
    """
    label_string = ",".join(f"{key}={value}" for key, value in sorted(labels.items()))
    return hashlib.md5(label_string.encode("utf-8")).hexdigest()


def parse_timestamp(value: str | None) -> datetime:
    """Parse an RFC 3339 timestamp as sent by Grafana.

    Missing or unparseable values fall back to the current time. Grafana sends
    nanosecond precision, which is truncated to microseconds.
    """
    if not value:
        return datetime.now(UTC)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        while rest and rest[0].isdigit():
            digits += rest[0]
            rest = rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return datetime.now(UTC)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


@dataclass
class Alert:
    """One alert instance as reported by Grafana Unified Alerting.

    Attributes:
        fingerprint: Stable identifier of the alert instance.
        status: Current lifecycle status.
        labels: Label set; conventionally includes alertname, host and severity.
        annotations: Free-form annotations (summary, description, message).
        starts_at: When the alert started firing.
        mentions: Mention bookkeeping carried across webhook deliveries.
    """

    fingerprint: str
    status: AlertStatus
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    starts_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    mentions: MentionTracking = field(default_factory=MentionTracking)

    @property
    def is_firing(self) -> bool:
        return self.status is AlertStatus.FIRING

    @property
    def alertname(self) -> str:
        return self.labels.get("alertname") or UNKNOWN_ALERT

    @property
    def host(self) -> str | None:
        return self.labels.get("host") or self.labels.get("instance") or None

    @property
    def display_host(self) -> str:
        return self.host or UNKNOWN_HOST

    @property
    def severity(self) -> str:
        raw = self.labels.get("severity") or self.annotations.get("severity") or ""
        return raw.upper()

    @property
    def severity_class(self) -> Severity | None:
        return Severity.classify(self.severity)

    @property
    def summary(self) -> str:
        return self.annotations.get("summary", "")

    @property
    def description(self) -> str:
        return self.annotations.get("description") or self.annotations.get("message") or ""

    def minutes_since_start(self, now: datetime) -> float:
        return (now - self.starts_at).total_seconds() / 60

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for storage."""
        return {
            "fingerprint": self.fingerprint,
            "status": self.status.value,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "startsAt": self.starts_at.isoformat(),
            "mentions": self.mentions.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Alert:
        """Deserialize a stored alert or a Unified-Alerting webhook entry.

        Rows written by earlier releases keep boolean ``mentionsSent`` flags
        instead of timestamps; those load as never sent.
        """
        labels = {str(k): str(v) for k, v in (data.get("labels") or {}).items()}
        annotations = {str(k): str(v) for k, v in (data.get("annotations") or {}).items()}
        fingerprint = data.get("fingerprint") or derive_fingerprint(labels)
        try:
            status = AlertStatus(str(data.get("status", "")).lower())
        except ValueError as e:
            raise ValueError(f"Unknown alert status: {data.get('status')!r}") from e

        return cls(
            fingerprint=str(fingerprint),
            status=status,
            labels=labels,
            annotations=annotations,
            starts_at=parse_timestamp(data.get("startsAt")),
            mentions=MentionTracking.from_dict(data.get("mentions")),
        )
