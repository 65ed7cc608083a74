"""Mention policy evaluation.

Decides which users must be pinged for which active alerts, either when
Grafana redelivers a firing alert (webhook context) or on the periodic
tick (tick context). Decisions that depend on ``last_sent`` bookkeeping
are written back to the store before they are returned, so the caller can
send the resulting messages afterwards without holding any state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from grafana2matrix.engine.models import Alert, MentionKind, Severity
from grafana2matrix.engine.policy import MentionPolicy, PolicyMap
from grafana2matrix.storage.store import StateStore, StorageError

logger = logging.getLogger(__name__)

# Secondary users are collected before primary ones
EVALUATION_ORDER = (MentionKind.SECONDARY, MentionKind.PRIMARY)


class MentionContext(str, Enum):
    """Where a mention evaluation was triggered from."""

    WEBHOOK = "webhook"
    TICK = "tick"


@dataclass
class MentionGroup:
    """Alerts that mention exactly the same set of users.

    Rendered as a single persistent-mention message.
    """

    users: tuple[str, ...]
    alerts: list[Alert] = field(default_factory=list)


class MentionEvaluator:
    """Applies per-host delay and repeat rules to active alerts.

    Example:
        ```python
        evaluator = MentionEvaluator(store, MentionConfigLoader(path).load)
        for group in evaluator.evaluate(store.list_active_alerts(), MentionContext.TICK, now):
            ...  # render one message per group
        ```
    """

    def __init__(self, store: StateStore, policies: Callable[[], PolicyMap]) -> None:
        """Initialize the evaluator.

        Args:
            store: State store that owns the mention bookkeeping.
            policies: Returns the current per-host policy map. Called once per
                evaluation so configuration edits apply immediately.
        """
        self._store = store
        self._policies = policies

    def evaluate(
        self,
        alerts: Sequence[Alert],
        context: MentionContext,
        now: datetime,
    ) -> list[MentionGroup]:
        """Evaluate mentions for a set of firing alerts.

        Args:
            alerts: Alerts to evaluate.
            context: Webhook redelivery or periodic tick.
            now: Evaluation time.

        Returns:
            Mention groups keyed by their sorted user list, in first-seen order.
        """
        policies = self._policies()
        if not policies:
            return []

        groups: dict[tuple[str, ...], MentionGroup] = {}
        for alert in alerts:
            policy = policies.get(alert.host or "")
            if policy is None:
                continue
            try:
                users = self._evaluate_alert(alert, policy, context, now)
            except StorageError as e:
                logger.error("Skipping mention check for %s: %s", alert.fingerprint, e)
                continue
            if not users:
                continue

            key = tuple(sorted(users))
            groups.setdefault(key, MentionGroup(users=key)).alerts.append(alert)

        if groups:
            logger.info(
                "%d alert(s) need mentions in %s context",
                sum(len(g.alerts) for g in groups.values()),
                context.value,
            )
        return list(groups.values())

    def _evaluate_alert(
        self,
        alert: Alert,
        policy: MentionPolicy,
        context: MentionContext,
        now: datetime,
    ) -> set[str]:
        severity = alert.severity_class
        if severity is None or not alert.is_firing:
            return set()

        users: set[str] = set()
        tracking_changed = False
        for kind in EVALUATION_ORDER:
            fire, marked = self._should_mention(alert, policy, severity, kind, context, now)
            if fire:
                users.update(policy.users(kind))
            tracking_changed = tracking_changed or marked

        if tracking_changed:
            self._store.put_alert(alert.fingerprint, alert)
        return users

    def _should_mention(
        self,
        alert: Alert,
        policy: MentionPolicy,
        severity: Severity,
        kind: MentionKind,
        context: MentionContext,
        now: datetime,
    ) -> tuple[bool, bool]:
        """Decide a single mention type.

        Returns:
            Tuple of (mention now, last_sent was updated).
        """
        delay = policy.delay(severity, kind)
        if delay is None or delay < 0:
            return False, False
        if alert.minutes_since_start(now) < delay:
            return False, False

        repeat = policy.repeat(severity, kind)
        if repeat is None:
            # Redeliveries own this mention; the tick never sends it
            return context is MentionContext.WEBHOOK, False
        if context is MentionContext.WEBHOOK:
            return False, False
        if repeat == 0:
            return True, False

        last_sent = alert.mentions.last_sent(kind)
        if repeat < 0:
            if last_sent:
                return False, False
            alert.mentions.mark_sent(kind, now)
            return True, True

        if now.timestamp() - last_sent >= repeat * 60:
            alert.mentions.mark_sent(kind, now)
            return True, True
        return False, False


def immediate_kinds(alert: Alert, policy: MentionPolicy | None) -> list[MentionKind]:
    """Mention types whose delay for the alert's severity class is exactly zero."""
    if policy is None or not alert.is_firing:
        return []
    severity = alert.severity_class
    if severity is None:
        return []
    return [kind for kind in EVALUATION_ORDER if policy.delay(severity, kind) == 0]


def immediate_mentions(alert: Alert, policy: MentionPolicy | None) -> list[str]:
    """Users to mention inside the first message of a newly firing alert.

    A user type qualifies when its delay for the alert's severity class is
    exactly zero. Secondary users come first; duplicates are dropped.
    """
    if policy is None:
        return []
    users: list[str] = []
    for kind in immediate_kinds(alert, policy):
        for user in policy.users(kind):
            if user not in users:
                users.append(user)
    return users
