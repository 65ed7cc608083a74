"""Alert state engine - deduplication, mentions, schedules and silencing."""

from grafana2matrix.engine.models import (
    Alert,
    AlertStatus,
    Classification,
    MentionKind,
    MentionTracking,
    Severity,
    derive_fingerprint,
)
from grafana2matrix.engine.policy import MentionConfigLoader, MentionPolicy, PolicyMap

__all__ = [
    "Alert",
    "AlertStatus",
    "Classification",
    "MentionConfigLoader",
    "MentionKind",
    "MentionPolicy",
    "MentionTracking",
    "PolicyMap",
    "Severity",
    "derive_fingerprint",
]
