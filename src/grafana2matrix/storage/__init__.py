"""Storage layer - SQLite persistence of alert state."""

from grafana2matrix.storage.store import StateStore, StorageError

__all__ = [
    "StateStore",
    "StorageError",
]
