"""Message formatter for Matrix notifications.

This module turns alerts, summaries and mention groups into the Markdown
flavoured text posted to the room. The Matrix channel derives the HTML
``formatted_body`` from it with ``to_html``.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Sequence
from typing import TYPE_CHECKING

from grafana2matrix.engine.models import Alert, Severity

if TYPE_CHECKING:
    from grafana2matrix.engine.mentions import MentionGroup
    from grafana2matrix.ingestor.models import LegacyPayload

# Font colors
COLOR_CRITICAL = "#d20000"
COLOR_WARNING = "#ff9100"
COLOR_RESOLVED = "#007a00"

ICON_CRITICAL = "🚨"
ICON_WARNING = "⚠️"
ICON_RESOLVED = "✅"
ICON_SILENCED = "🔇"

_BOLD = re.compile(r"\*\*(.*?)\*\*")
_HEADING = re.compile(r"## (.*?)(\n|$)")
_LINK = re.compile(r"\[(.*?)\]\((.*?)\)")


def to_html(text: str) -> str:
    """Convert the small Markdown subset used in messages to Matrix HTML."""
    html = _HEADING.sub(r"<h3>\1</h3>", text, count=1)
    html = _BOLD.sub(r"<b>\1</b>", html)
    html = _LINK.sub(r'<a href="\2">\1</a>', html)
    return html.replace("\n", "<br>")


def format_user(user: str) -> str:
    """Render a Matrix user id as a mention."""
    return user if user.startswith("@") else f"@{user}"


def severity_matches(alert: Alert, severity: str) -> bool:
    """Check whether an alert belongs to a requested summary severity.

    Known classes match all of their spellings; anything else needs an
    exact (case-insensitive) match.
    """
    requested = Severity.classify(severity)
    if requested is not None:
        return alert.severity_class is requested
    return (alert.severity or "UNKNOWN") == severity.upper()


class AlertFormatter:
    """Formats alerts and alert groups into Matrix messages."""

    def format_alert(self, alert: Alert, mentions: Sequence[str] = ()) -> str:
        """Format an individual firing or resolved alert.

        Args:
            alert: Alert to describe.
            mentions: Users to mention immediately (firing alerts only).

        Returns:
            Message text.
        """
        severity = alert.severity
        if not alert.is_firing:
            color, header = COLOR_RESOLVED, f"{ICON_RESOLVED} RESOLVED {severity}"
        elif alert.severity_class is Severity.WARN:
            color, header = COLOR_WARNING, f"{ICON_WARNING} {severity}"
        else:
            color, header = COLOR_CRITICAL, f"{ICON_CRITICAL} {severity}"

        lines = [
            f'<font color="{color}">**{header.strip()}: {alert.alertname}**</font>',
            f"**💻️ HOST: {alert.display_host}**",
        ]
        if alert.summary:
            lines.append(alert.summary)
        if alert.description:
            lines.append(alert.description)

        if mentions and alert.is_firing:
            lines.append("")
            lines.append(f"Attention: {' '.join(format_user(u) for u in mentions)}")

        return "\n".join(lines) + "\n"

    def format_summary(self, severity: str, alerts: Sequence[Alert]) -> str:
        """Format a summary of active alerts grouped by host."""
        lines = [f"## 📋 {severity} Alert Summary", ""]
        if not alerts:
            lines.append(f"No active {severity} alerts.")
            return "\n".join(lines)

        by_host: dict[str, list[Alert]] = defaultdict(list)
        for alert in alerts:
            by_host[alert.display_host].append(alert)

        for host in sorted(by_host):
            lines.append(f"**Host: {host}**")
            for alert in by_host[host]:
                detail = alert.summary or alert.description
                lines.append(f"- {alert.alertname}{f': {detail}' if detail else ''}")
            lines.append("")
        return "\n".join(lines)

    def format_mention_group(self, group: MentionGroup) -> str:
        """Format a persistent-mention message for one user group."""
        lines = [
            f"## {ICON_WARNING} Persistent Alert Notification",
            "",
            "The following alerts have been active for a significant time:",
            "",
        ]
        for alert in group.alerts:
            lines.append(f"- **{alert.alertname}** on **{alert.display_host}**")
        lines.append("")
        lines.append(f"Attention: {' '.join(format_user(u) for u in group.users)}")
        return "\n".join(lines)

    def format_legacy(self, payload: LegacyPayload) -> str:
        """Format a legacy (pre Unified Alerting) notification."""
        icon = ICON_CRITICAL if payload.is_alerting else ICON_RESOLVED
        status = "Firing" if payload.is_alerting else "Resolved"
        text = f"## {icon} {status}: {payload.title}\n\n{payload.message}\n\n"
        if payload.rule_url:
            text += f"[View in Grafana]({payload.rule_url})"
        return text

    def format_silence_result(self, alert: Alert, success: bool) -> str:
        """Format the room notice sent after a silence attempt."""
        subject = f"{alert.severity} {alert.display_host} {alert.alertname}"
        if success:
            return f"{ICON_SILENCED} Alert silenced for 24h: {subject}"
        return f"Alert could not be silenced: {subject}"

    def summary_usage(self) -> str:
        return "Usage: .summary <severity> (e.g. CRITICAL, WARNING)"
