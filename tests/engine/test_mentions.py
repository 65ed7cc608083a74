"""Tests for mention policy evaluation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from grafana2matrix.engine.mentions import (
    MentionContext,
    MentionEvaluator,
    MentionGroup,
    immediate_kinds,
    immediate_mentions,
)
from grafana2matrix.engine.models import Alert, AlertStatus, MentionKind
from grafana2matrix.engine.policy import MentionPolicy, PolicyMap
from grafana2matrix.storage.store import StateStore
from tests.factories import make_alert

START = datetime(2024, 1, 1, 8, 0, tzinfo=UTC)

PRIMARY = "@oncall:example.org"
SECONDARY = "@team:example.org"


def policy(**rules: Any) -> MentionPolicy:
    return MentionPolicy.model_validate({"primary": [PRIMARY], "secondary": [SECONDARY], **rules})


def stored(store: StateStore, alert: Alert) -> Alert:
    store.put_alert(alert.fingerprint, alert)
    return alert


def at(minutes: float) -> datetime:
    return START + timedelta(minutes=minutes)


class Harness:
    """Evaluator over a fixed policy map."""

    def __init__(self, store: StateStore, policies: PolicyMap) -> None:
        self.evaluator = MentionEvaluator(store, lambda: policies)

    def tick(self, alerts: list[Alert], minutes: float) -> list[MentionGroup]:
        return self.evaluator.evaluate(alerts, MentionContext.TICK, at(minutes))

    def webhook(self, alerts: list[Alert], minutes: float) -> list[MentionGroup]:
        return self.evaluator.evaluate(alerts, MentionContext.WEBHOOK, at(minutes))


# ============================================================================
# Delay Tests
# ============================================================================


class TestDelay:
    """Tests for the delay threshold."""

    def test_not_due_before_delay(self, store: StateStore) -> None:
        alert = stored(store, make_alert(starts_at=START))
        harness = Harness(store, {"db1": policy(delay_crit_primary=15, repeat_crit_primary=0)})

        assert harness.tick([alert], 14) == []

    def test_due_at_delay(self, store: StateStore) -> None:
        """Reaching the delay exactly is enough."""
        alert = stored(store, make_alert(starts_at=START))
        harness = Harness(store, {"db1": policy(delay_crit_primary=15, repeat_crit_primary=0)})

        groups = harness.tick([alert], 15)

        assert len(groups) == 1
        assert groups[0].users == (PRIMARY,)

    def test_negative_delay_never_fires(self, store: StateStore) -> None:
        alert = stored(store, make_alert(starts_at=START))
        harness = Harness(store, {"db1": policy(delay_crit_primary=-1, repeat_crit_primary=0)})

        assert harness.tick([alert], 24 * 60) == []

    def test_missing_delay_never_fires(self, store: StateStore) -> None:
        alert = stored(store, make_alert(starts_at=START))
        harness = Harness(store, {"db1": policy(repeat_crit_primary=0)})

        assert harness.tick([alert], 24 * 60) == []

    def test_uses_severity_class_rules(self, store: StateStore) -> None:
        """WARN alerts follow the warn rules, not the crit ones."""
        alert = stored(store, make_alert(severity="warning", starts_at=START))
        rules = policy(
            delay_crit_primary=0,
            repeat_crit_primary=0,
            delay_warn_secondary=5,
            repeat_warn_secondary=0,
        )
        harness = Harness(store, {"db1": rules})

        assert [g.users for g in harness.tick([alert], 5)] == [(SECONDARY,)]


# ============================================================================
# Repeat Tests
# ============================================================================


class TestRepeat:
    """Tests for repeat behaviour in each context."""

    def test_repeat_interval(self, store: StateStore) -> None:
        """A 60 minute repeat waits a full hour between mentions."""
        alert = stored(store, make_alert(starts_at=START))
        harness = Harness(store, {"db1": policy(delay_crit_primary=0, repeat_crit_primary=60)})

        assert len(harness.tick([alert], 1)) == 1

        reloaded = store.get_alert(alert.fingerprint)
        assert reloaded is not None
        assert reloaded.mentions.last_sent(MentionKind.PRIMARY) == at(1).timestamp()

        assert harness.tick([reloaded], 1 + 59) == []
        assert len(harness.tick([reloaded], 1 + 60)) == 1

    def test_repeat_zero_fires_every_tick(self, store: StateStore) -> None:
        alert = stored(store, make_alert(starts_at=START))
        harness = Harness(store, {"db1": policy(delay_crit_primary=0, repeat_crit_primary=0)})

        for minute in (1, 2, 3):
            assert len(harness.tick([alert], minute)) == 1

    def test_negative_repeat_fires_once(self, store: StateStore) -> None:
        alert = stored(store, make_alert(starts_at=START))
        harness = Harness(store, {"db1": policy(delay_crit_primary=0, repeat_crit_primary=-1)})

        assert len(harness.tick([alert], 1)) == 1
        assert harness.tick([alert], 2) == []
        assert harness.tick([alert], 5 * 60) == []

    def test_missing_repeat_is_webhook_only(self, store: StateStore) -> None:
        """Without a repeat, redeliveries mention and the tick stays silent."""
        alert = stored(store, make_alert(starts_at=START))
        harness = Harness(store, {"db1": policy(delay_crit_primary=0)})

        assert harness.tick([alert], 10) == []
        assert [g.users for g in harness.webhook([alert], 10)] == [(PRIMARY,)]
        # Every redelivery mentions again
        assert len(harness.webhook([alert], 11)) == 1

    def test_webhook_context_ignores_configured_repeat(self, store: StateStore) -> None:
        alert = stored(store, make_alert(starts_at=START))
        harness = Harness(store, {"db1": policy(delay_crit_primary=0, repeat_crit_primary=0)})

        assert harness.webhook([alert], 5) == []

    def test_webhook_context_does_not_touch_tracking(self, store: StateStore) -> None:
        alert = stored(store, make_alert(starts_at=START))
        harness = Harness(store, {"db1": policy(delay_crit_primary=0)})

        harness.webhook([alert], 5)

        reloaded = store.get_alert(alert.fingerprint)
        assert reloaded is not None
        assert reloaded.mentions.last_sent(MentionKind.PRIMARY) == 0


# ============================================================================
# Grouping Tests
# ============================================================================


class TestGrouping:
    """Tests for grouping alerts by mentioned users."""

    def test_same_users_grouped(self, store: StateStore) -> None:
        a = stored(store, make_alert("a", host="db1", starts_at=START))
        b = stored(store, make_alert("b", host="db2", starts_at=START))
        rules = policy(delay_crit_primary=0, repeat_crit_primary=0)
        harness = Harness(store, {"db1": rules, "db2": rules})

        groups = harness.tick([a, b], 1)

        assert len(groups) == 1
        assert [alert.fingerprint for alert in groups[0].alerts] == ["a", "b"]

    def test_different_users_split(self, store: StateStore) -> None:
        a = stored(store, make_alert("a", host="db1", starts_at=START))
        b = stored(store, make_alert("b", host="db2", starts_at=START))
        both = policy(
            delay_crit_primary=0,
            repeat_crit_primary=0,
            delay_crit_secondary=0,
            repeat_crit_secondary=0,
        )
        harness = Harness(
            store,
            {"db1": policy(delay_crit_primary=0, repeat_crit_primary=0), "db2": both},
        )

        groups = harness.tick([a, b], 1)

        assert [g.users for g in groups] == [(PRIMARY,), (PRIMARY, SECONDARY)]

    def test_users_deduplicated(self, store: StateStore) -> None:
        """A user in both lists appears once."""
        alert = stored(store, make_alert(starts_at=START))
        rules = MentionPolicy.model_validate(
            {
                "primary": [PRIMARY],
                "secondary": [PRIMARY],
                "delay_crit_primary": 0,
                "delay_crit_secondary": 0,
                "repeat_crit_primary": 0,
                "repeat_crit_secondary": 0,
            }
        )
        harness = Harness(store, {"db1": rules})

        assert harness.tick([alert], 1)[0].users == (PRIMARY,)

    def test_host_without_policy_skipped(self, store: StateStore) -> None:
        alert = stored(store, make_alert(host="web9", starts_at=START))
        harness = Harness(store, {"db1": policy(delay_crit_primary=0, repeat_crit_primary=0)})

        assert harness.tick([alert], 1) == []

    def test_unclassified_severity_skipped(self, store: StateStore) -> None:
        alert = stored(store, make_alert(severity="INFO", starts_at=START))
        harness = Harness(store, {"db1": policy(delay_crit_primary=0, repeat_crit_primary=0)})

        assert harness.tick([alert], 1) == []

    def test_empty_policy_map(self, store: StateStore) -> None:
        alert = stored(store, make_alert(starts_at=START))

        assert Harness(store, {}).tick([alert], 1) == []


# ============================================================================
# Immediate Mention Tests
# ============================================================================


class TestImmediateMentions:
    """Tests for mentions embedded in the first alert message."""

    def test_zero_delay_included(self) -> None:
        rules = policy(delay_crit_primary=0, delay_crit_secondary=0)
        alert = make_alert()

        assert immediate_mentions(alert, rules) == [SECONDARY, PRIMARY]
        assert immediate_kinds(alert, rules) == [MentionKind.SECONDARY, MentionKind.PRIMARY]

    def test_positive_delay_excluded(self) -> None:
        rules = policy(delay_crit_primary=0, delay_crit_secondary=10)

        assert immediate_mentions(make_alert(), rules) == [PRIMARY]

    @pytest.mark.parametrize(
        "alert",
        [
            make_alert(status=AlertStatus.RESOLVED),
            make_alert(severity="INFO"),
        ],
    )
    def test_not_applicable(self, alert: Alert) -> None:
        rules = policy(delay_crit_primary=0)
        assert immediate_mentions(alert, rules) == []
        assert immediate_kinds(alert, rules) == []

    def test_no_policy(self) -> None:
        assert immediate_mentions(make_alert(), None) == []

    def test_duplicates_dropped(self) -> None:
        rules = MentionPolicy.model_validate(
            {
                "primary": [PRIMARY],
                "secondary": [PRIMARY],
                "delay_crit_primary": 0,
                "delay_crit_secondary": 0,
            }
        )
        assert immediate_mentions(make_alert(), rules) == [PRIMARY]
