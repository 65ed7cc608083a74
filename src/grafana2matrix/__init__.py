"""grafana2matrix - Grafana Alerting to Matrix bridge."""

__version__ = "0.2.0"
