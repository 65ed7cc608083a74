"""Alerting layer - message rendering and delivery to Matrix and Grafana."""

from grafana2matrix.alerter.channels.matrix import MatrixChannel, MatrixError
from grafana2matrix.alerter.formatter import AlertFormatter
from grafana2matrix.alerter.grafana import GrafanaClient

__all__ = [
    "AlertFormatter",
    "GrafanaClient",
    "MatrixChannel",
    "MatrixError",
]
