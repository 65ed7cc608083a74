"""Alert deduplication against persisted state.

Grafana redelivers every firing alert of a rule group on each evaluation.
The deduplicator decides which of those deliveries are state changes worth
an individual Matrix message and keeps the store in line with the most
recent payload.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from grafana2matrix.engine.models import Alert, AlertStatus, Classification, MentionTracking
from grafana2matrix.storage.store import StateStore, StorageError

logger = logging.getLogger(__name__)


@dataclass
class DedupResult:
    """Outcome of deduplicating one webhook batch.

    Attributes:
        notify: Alerts needing an individual notification, in batch order.
        duplicates: Stored alerts redelivered while still firing.
        classifications: Classification per fingerprint.
        skipped: Fingerprints whose processing failed on a storage error.
    """

    notify: list[Alert] = field(default_factory=list)
    duplicates: list[Alert] = field(default_factory=list)
    classifications: dict[str, Classification] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def has_state_changes(self) -> bool:
        return bool(self.notify)


class AlertDeduplicator:
    """Classifies incoming alerts as new, duplicate, resolved or unknown.

    Example:
        ```python
        dedup = AlertDeduplicator(store)
        result = dedup.process(alerts)
        for alert in result.notify:
            ...  # render and send
        dedup.prune_zombies({a.fingerprint for a in alerts})
        ```
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store

    def process(self, alerts: Sequence[Alert]) -> DedupResult:
        """Deduplicate a batch of alert events in order.

        A storage error aborts only the event it occurred on.

        Args:
            alerts: Alert events from one webhook delivery.

        Returns:
            DedupResult describing what needs to be sent.
        """
        result = DedupResult()
        for alert in alerts:
            try:
                classification = self._classify(alert)
            except StorageError as e:
                logger.error("Skipping alert %s: %s", alert.fingerprint, e)
                result.skipped.append(alert.fingerprint)
                continue

            result.classifications[alert.fingerprint] = classification
            if classification is Classification.DUPLICATE_FIRING:
                result.duplicates.append(alert)
            else:
                result.notify.append(alert)

        if not result.has_state_changes:
            logger.info("No state changes detected (all alerts are duplicates)")
        return result

    def _classify(self, alert: Alert) -> Classification:
        fingerprint = alert.fingerprint

        if alert.status is AlertStatus.FIRING:
            existing = self._store.get_alert(fingerprint)
            if existing is None:
                logger.info("New firing alert: %s (%s)", fingerprint, alert.alertname)
                alert.mentions = MentionTracking()
                classification = Classification.NEW_FIRING
            else:
                alert.mentions = existing.mentions
                classification = Classification.DUPLICATE_FIRING
            # Keep the latest payload regardless of classification
            self._store.put_alert(fingerprint, alert)
            return classification

        if self._store.has_alert(fingerprint):
            logger.info("Alert resolved: %s (%s)", fingerprint, alert.alertname)
            self._store.forget_alert(fingerprint)
            return Classification.RESOLVED

        logger.info("Resolved alert %s was not tracked, notifying anyway", fingerprint)
        return Classification.RESOLVED_UNKNOWN

    def prune_zombies(self, received: Iterable[str]) -> list[str]:
        """Delete stored alerts missing from the latest batch.

        Some Grafana setups stop reporting an alert instead of sending a
        resolved event for it.

        Args:
            received: Fingerprints present in the current batch.

        Returns:
            Fingerprints that were pruned.
        """
        received_set = set(received)
        pruned: list[str] = []
        for alert in self._store.list_active_alerts():
            if alert.fingerprint in received_set:
                continue
            logger.info("Pruning zombie alert: %s (%s)", alert.fingerprint, alert.alertname)
            try:
                self._store.forget_alert(alert.fingerprint)
            except StorageError as e:
                logger.error("Failed to prune zombie alert %s: %s", alert.fingerprint, e)
                continue
            pruned.append(alert.fingerprint)
        return pruned
