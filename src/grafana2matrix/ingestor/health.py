"""Component health monitor and Prometheus metrics.

This module tracks the health of the bridge's background components (the
Matrix sync loop and the periodic tick), detects when one of them stops
reporting, and serves the ``/health``, ``/ready``, ``/live`` and
``/metrics`` endpoints.
"""

import copy
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from aiohttp import web
from prometheus_client import Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)

# No activity for this long marks a component stale
DEFAULT_STALE_THRESHOLD_SECONDS = 180

COMPONENT_MATRIX_SYNC = "matrix_sync"
COMPONENT_TICK = "tick"


class HealthStatus(Enum):
    """Overall health status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentStatus(Enum):
    """Status of an individual component."""

    ACTIVE = "active"
    STALE = "stale"
    FAILING = "failing"


@dataclass
class ComponentHealth:
    """Health status for an individual component."""

    name: str
    status: ComponentStatus = ComponentStatus.ACTIVE
    last_success_time: float | None = None
    successes: int = 0
    failures: int = 0
    last_error: str | None = None


@dataclass
class HealthReport:
    """Health report for all components."""

    status: HealthStatus
    components: dict[str, ComponentHealth] = field(default_factory=dict)
    active_alerts: int = 0
    uptime_seconds: float = 0.0
    timestamp: float = field(default_factory=time.time)


# Prometheus metrics
WEBHOOKS_TOTAL = Counter(
    "grafana2matrix_webhooks_total",
    "Webhook deliveries received",
    ["format"],
)

ALERT_EVENTS_TOTAL = Counter(
    "grafana2matrix_alert_events_total",
    "Alert events processed, by dedup classification",
    ["classification"],
)

NOTIFICATIONS_TOTAL = Counter(
    "grafana2matrix_notifications_total",
    "Matrix messages sent",
    ["kind", "outcome"],
)

SILENCES_TOTAL = Counter(
    "grafana2matrix_silences_total",
    "Silence requests from reactions",
    ["outcome"],
)

ACTIVE_ALERTS = Gauge(
    "grafana2matrix_active_alerts",
    "Alerts currently tracked as firing",
)

TICK_DURATION = Histogram(
    "grafana2matrix_tick_duration_seconds",
    "Duration of one mention and summary evaluation pass",
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

COMPONENT_STATUS = Gauge(
    "grafana2matrix_component_status",
    "Component status (1=active, 0.5=stale, 0=failing)",
    ["component"],
)

HEALTH_STATUS = Gauge(
    "grafana2matrix_health_status",
    "Overall health status (1=healthy, 0.5=degraded, 0=unhealthy)",
)


def record_notification(kind: str, event_id: str | None) -> None:
    """Count one Matrix send attempt by its outcome."""
    NOTIFICATIONS_TOTAL.labels(kind=kind, outcome="sent" if event_id else "failed").inc()


class HealthMonitor:
    """Track component health and expose it over HTTP.

    Components report successes and failures as they run. A component that
    has not succeeded within the stale threshold is reported stale.

    Example:
        ```python
        monitor = HealthMonitor(stale_threshold_seconds=180)
        monitor.record_success("tick")
        monitor.record_failure("matrix_sync", "HTTP 502")
        report = monitor.get_health_report()
        monitor.add_routes(app)  # /health, /ready, /live, /metrics
        ```
    """

    def __init__(
        self,
        *,
        stale_threshold_seconds: float = DEFAULT_STALE_THRESHOLD_SECONDS,
    ) -> None:
        """Initialize the health monitor.

        Args:
            stale_threshold_seconds: Seconds without success before a component is stale.
        """
        self._stale_threshold = stale_threshold_seconds
        self._components: dict[str, ComponentHealth] = {}
        self._start_time = time.time()
        self._active_alerts = 0

    def register_component(self, name: str) -> None:
        """Register a component for monitoring.

        Args:
            name: Unique name for the component.
        """
        if name not in self._components:
            self._components[name] = ComponentHealth(name=name, last_success_time=time.time())
            logger.info("Registered component for monitoring: %s", name)

    def record_success(self, name: str) -> None:
        """Record a successful run of a component."""
        self.register_component(name)
        component = self._components[name]
        component.successes += 1
        component.last_success_time = time.time()
        component.last_error = None
        component.status = ComponentStatus.ACTIVE
        COMPONENT_STATUS.labels(component=name).set(1.0)

    def record_failure(self, name: str, error: str | None = None) -> None:
        """Record a failed run of a component.

        Args:
            name: Component name.
            error: Optional error message.
        """
        self.register_component(name)
        component = self._components[name]
        component.failures += 1
        component.last_error = error
        component.status = ComponentStatus.FAILING
        COMPONENT_STATUS.labels(component=name).set(0.0)
        logger.debug("Component failing: %s (error: %s)", name, error)

    def set_active_alerts(self, count: int) -> None:
        """Publish the number of tracked firing alerts."""
        self._active_alerts = count
        ACTIVE_ALERTS.set(count)

    def _check_staleness(self) -> None:
        now = time.time()
        for name, component in self._components.items():
            if component.status == ComponentStatus.FAILING:
                continue
            last = component.last_success_time or self._start_time
            if now - last > self._stale_threshold:
                component.status = ComponentStatus.STALE
                COMPONENT_STATUS.labels(component=name).set(0.5)

    def _determine_overall_status(self) -> HealthStatus:
        """Determine overall health status based on component states.

        Returns:
            Overall health status.
        """
        if not self._components:
            return HealthStatus.HEALTHY

        statuses = [c.status for c in self._components.values()]

        if all(s == ComponentStatus.FAILING for s in statuses):
            return HealthStatus.UNHEALTHY

        if any(s != ComponentStatus.ACTIVE for s in statuses):
            return HealthStatus.DEGRADED

        return HealthStatus.HEALTHY

    def get_health_report(self) -> HealthReport:
        """Generate a health report.

        Returns:
            HealthReport with current status of all components.
        """
        self._check_staleness()

        overall_status = self._determine_overall_status()
        HEALTH_STATUS.set(
            1.0 if overall_status == HealthStatus.HEALTHY
            else 0.5 if overall_status == HealthStatus.DEGRADED
            else 0.0
        )

        # Copy components so callers cannot mutate internal state
        components_copy = {name: copy.copy(c) for name, c in self._components.items()}

        return HealthReport(
            status=overall_status,
            components=components_copy,
            active_alerts=self._active_alerts,
            uptime_seconds=time.time() - self._start_time,
        )

    # HTTP handlers

    async def _handle_health(self, _request: web.Request) -> web.Response:
        """Handle /health endpoint."""
        report = self.get_health_report()

        status_code = 200 if report.status == HealthStatus.HEALTHY else 503

        body: dict[str, Any] = {
            "status": report.status.value,
            "uptime_seconds": report.uptime_seconds,
            "active_alerts": report.active_alerts,
            "components": {},
        }

        for name, component in report.components.items():
            body["components"][name] = {
                "status": component.status.value,
                "successes": component.successes,
                "failures": component.failures,
                "last_success_time": component.last_success_time,
                "last_error": component.last_error,
            }

        return web.json_response(body, status=status_code)

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        """Handle /metrics endpoint (Prometheus format)."""
        self.get_health_report()

        metrics = generate_latest()
        return web.Response(
            body=metrics,
            content_type="text/plain",
            charset="utf-8",
        )

    async def _handle_ready(self, _request: web.Request) -> web.Response:
        """Handle /ready endpoint for readiness probes."""
        report = self.get_health_report()

        if report.status == HealthStatus.UNHEALTHY:
            return web.json_response(
                {"ready": False, "reason": "unhealthy"},
                status=503,
            )

        return web.json_response({"ready": True}, status=200)

    async def _handle_live(self, _request: web.Request) -> web.Response:
        """Handle /live endpoint for liveness probes."""
        return web.json_response({"live": True}, status=200)

    def add_routes(self, app: web.Application) -> None:
        """Register the health and metrics endpoints on an application."""
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get("/ready", self._handle_ready)
        app.router.add_get("/live", self._handle_live)
