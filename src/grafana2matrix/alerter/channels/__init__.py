"""Matrix channel implementation."""

from grafana2matrix.alerter.channels.matrix import MatrixChannel, MatrixError

__all__ = [
    "MatrixChannel",
    "MatrixError",
]
