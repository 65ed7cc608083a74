"""Ingestion layer - Grafana webhooks and Matrix room events."""

from grafana2matrix.ingestor.health import (
    ComponentHealth,
    ComponentStatus,
    HealthMonitor,
    HealthReport,
    HealthStatus,
)
from grafana2matrix.ingestor.models import (
    LegacyPayload,
    PayloadError,
    Reaction,
    UnifiedPayload,
    UserMessage,
    parse_payload,
)
from grafana2matrix.ingestor.server import WebhookServer
from grafana2matrix.ingestor.sync import MatrixSyncLoop, SyncState, SyncStats

__all__ = [
    "ComponentHealth",
    "ComponentStatus",
    "HealthMonitor",
    "HealthReport",
    "HealthStatus",
    "LegacyPayload",
    "MatrixSyncLoop",
    "PayloadError",
    "Reaction",
    "SyncState",
    "SyncStats",
    "UnifiedPayload",
    "UserMessage",
    "WebhookServer",
    "parse_payload",
]
