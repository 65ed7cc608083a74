"""Tests for alert deduplication."""

from __future__ import annotations

from unittest.mock import MagicMock

from grafana2matrix.engine.dedup import AlertDeduplicator
from grafana2matrix.engine.models import AlertStatus, Classification, MentionTracking
from grafana2matrix.storage.store import StateStore, StorageError
from tests.factories import make_alert


class TestProcess:
    """Tests for batch classification."""

    def test_new_firing(self, store: StateStore) -> None:
        """A firing alert that is not stored is new and notified."""
        dedup = AlertDeduplicator(store)

        result = dedup.process([make_alert("abc123")])

        assert [a.fingerprint for a in result.notify] == ["abc123"]
        assert result.classifications == {"abc123": Classification.NEW_FIRING}
        stored = store.get_alert("abc123")
        assert stored is not None
        assert stored.mentions == MentionTracking()

    def test_duplicate_firing_not_notified(self, store: StateStore) -> None:
        """The same firing batch twice yields one notification and one stored alert."""
        dedup = AlertDeduplicator(store)
        dedup.process([make_alert("abc123", summary="first")])

        result = dedup.process([make_alert("abc123", summary="second")])

        assert result.notify == []
        assert [a.fingerprint for a in result.duplicates] == ["abc123"]
        assert result.classifications["abc123"] is Classification.DUPLICATE_FIRING
        assert result.has_state_changes is False
        assert store.count_active_alerts() == 1
        stored = store.get_alert("abc123")
        assert stored is not None
        assert stored.summary == "second"

    def test_duplicate_carries_mention_tracking(self, store: StateStore) -> None:
        """Mention bookkeeping survives redelivery."""
        first = make_alert("abc123")
        first.mentions = MentionTracking(last_sent_primary=1234.0)
        store.put_alert("abc123", first)
        dedup = AlertDeduplicator(store)

        result = dedup.process([make_alert("abc123")])

        assert result.duplicates[0].mentions.last_sent_primary == 1234.0
        stored = store.get_alert("abc123")
        assert stored is not None
        assert stored.mentions.last_sent_primary == 1234.0

    def test_resolved_known(self, store: StateStore) -> None:
        """Resolving a stored alert deletes it and its message mappings."""
        dedup = AlertDeduplicator(store)
        dedup.process([make_alert("abc123")])
        store.map_message_to_alert("$event1", "abc123")

        result = dedup.process([make_alert("abc123", status=AlertStatus.RESOLVED)])

        assert [a.fingerprint for a in result.notify] == ["abc123"]
        assert result.classifications["abc123"] is Classification.RESOLVED
        assert store.list_active_alerts() == []
        assert store.lookup_alert_for_message("$event1") is None

    def test_resolved_unknown(self, store: StateStore) -> None:
        """Resolved alerts we never saw are still notified."""
        dedup = AlertDeduplicator(store)

        result = dedup.process([make_alert("zzz", status=AlertStatus.RESOLVED)])

        assert [a.fingerprint for a in result.notify] == ["zzz"]
        assert result.classifications["zzz"] is Classification.RESOLVED_UNKNOWN
        assert store.count_active_alerts() == 0

    def test_batch_order_preserved(self, store: StateStore) -> None:
        dedup = AlertDeduplicator(store)

        result = dedup.process([make_alert("b"), make_alert("a"), make_alert("c")])

        assert [a.fingerprint for a in result.notify] == ["b", "a", "c"]

    def test_abc123_lifecycle(self, store: StateStore) -> None:
        """Fire then resolve leaves store and message map empty."""
        dedup = AlertDeduplicator(store)

        fired = dedup.process([make_alert("abc123", alertname="HighCPU", host="db1")])
        assert [a.fingerprint for a in fired.notify] == ["abc123"]
        assert fired.notify[0].mentions == MentionTracking(0, 0)
        store.map_message_to_alert("$sent", "abc123")

        resolved = dedup.process([make_alert("abc123", status=AlertStatus.RESOLVED)])

        assert [a.fingerprint for a in resolved.notify] == ["abc123"]
        assert store.count_active_alerts() == 0
        assert store.lookup_alert_for_message("$sent") is None

    def test_storage_error_skips_event(self) -> None:
        """A failing store skips only the affected event."""
        store = MagicMock(spec=StateStore)
        store.get_alert.side_effect = [StorageError("disk I/O error"), None]
        dedup = AlertDeduplicator(store)

        result = dedup.process([make_alert("bad"), make_alert("good")])

        assert result.skipped == ["bad"]
        assert [a.fingerprint for a in result.notify] == ["good"]


class TestPruneZombies:
    """Tests for pruning alerts missing from a batch."""

    def test_prunes_missing(self, store: StateStore) -> None:
        dedup = AlertDeduplicator(store)
        dedup.process([make_alert("a"), make_alert("b")])
        store.map_message_to_alert("$b", "b")

        pruned = dedup.prune_zombies({"a"})

        assert pruned == ["b"]
        assert store.has_alert("a")
        assert not store.has_alert("b")
        assert store.lookup_alert_for_message("$b") is None

    def test_nothing_to_prune(self, store: StateStore) -> None:
        dedup = AlertDeduplicator(store)
        dedup.process([make_alert("a")])

        assert dedup.prune_zombies(["a"]) == []
        assert store.has_alert("a")

    def test_idempotent(self, store: StateStore) -> None:
        """Pruning twice with the same batch is a no-op the second time."""
        dedup = AlertDeduplicator(store)
        dedup.process([make_alert("a"), make_alert("b")])

        assert dedup.prune_zombies({"a"}) == ["b"]
        assert dedup.prune_zombies({"a"}) == []
