"""Builders for alerts and webhook bodies used across the tests."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from grafana2matrix.engine.models import Alert, AlertStatus


def make_alert(
    fingerprint: str = "abc123",
    *,
    status: AlertStatus = AlertStatus.FIRING,
    alertname: str = "HighCPU",
    host: str | None = "db1",
    severity: str = "CRIT",
    starts_at: datetime | None = None,
    **annotations: Any,
) -> Alert:
    """Build an alert the way a Unified-Alerting webhook would describe it."""
    labels = {"alertname": alertname, "severity": severity}
    if host is not None:
        labels["host"] = host
    return Alert(
        fingerprint=fingerprint,
        status=status,
        labels=labels,
        annotations={k: str(v) for k, v in annotations.items()},
        starts_at=starts_at or datetime(2024, 1, 1, 8, 0, tzinfo=UTC),
    )


def webhook_entry(
    fingerprint: str = "abc123",
    *,
    status: str = "firing",
    alertname: str = "HighCPU",
    host: str = "db1",
    severity: str = "CRIT",
    starts_at: str = "2024-01-01T08:00:00Z",
) -> dict[str, Any]:
    """Build one entry of a Unified-Alerting ``alerts`` array."""
    return {
        "fingerprint": fingerprint,
        "status": status,
        "labels": {"alertname": alertname, "host": host, "severity": severity},
        "annotations": {"summary": f"{alertname} on {host}"},
        "startsAt": starts_at,
    }
