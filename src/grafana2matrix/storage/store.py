"""Persistent state store for alerts, message mappings and schedules.

All operations are synchronous and run in their own transaction, so each
read or write is atomic per key. Callers on the event loop never await
between a read and the write that depends on it.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from grafana2matrix.engine.models import Alert
from grafana2matrix.storage.models import (
    ActiveAlertModel,
    Base,
    MessageMapModel,
    ScheduleModel,
)

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a state store operation fails."""

    pass


class StateStore:
    """Durable keyed storage for the bridge state.

    Owns three tables: active alerts by fingerprint, sent Matrix event ids
    by fingerprint, and the last summary time per severity class.

    Example:
        ```python
        store = StateStore.from_path("alerts.db")
        store.put_alert(alert.fingerprint, alert)
        store.map_message_to_alert("$event", alert.fingerprint)
        assert store.lookup_alert_for_message("$event") == alert.fingerprint
        ```
    """

    def __init__(self, engine: Engine) -> None:
        """Initialize the store and create missing tables.

        Args:
            engine: SQLAlchemy engine bound to the state database.
        """
        self._engine = engine
        self._session_factory = sessionmaker(engine, expire_on_commit=False)
        try:
            Base.metadata.create_all(engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to initialise state database: {e}") from e

    @classmethod
    def from_path(cls, db_file: str | Path) -> StateStore:
        """Open (or create) a SQLite state database at ``db_file``."""
        engine = create_engine(f"sqlite:///{db_file}")
        logger.info("Using state database %s", db_file)
        return cls(engine)

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        try:
            with self._session_factory.begin() as session:
                yield session
        except (SQLAlchemyError, ValueError) as e:
            raise StorageError(f"{operation} failed: {e}") from e

    def close(self) -> None:
        """Dispose of pooled connections."""
        self._engine.dispose()

    # Active alerts

    def list_active_alerts(self) -> list[Alert]:
        """Return every stored alert."""
        with self._transaction("list_active_alerts") as session:
            rows = session.execute(select(ActiveAlertModel)).scalars().all()
            alerts = []
            for row in rows:
                data = json.loads(row.data)
                data.setdefault("fingerprint", row.id)
                alerts.append(Alert.from_dict(data))
            return alerts

    def count_active_alerts(self) -> int:
        with self._transaction("count_active_alerts") as session:
            return session.execute(select(func.count()).select_from(ActiveAlertModel)).scalar_one()

    def get_alert(self, fingerprint: str) -> Alert | None:
        """Get a stored alert by fingerprint.

        Returns:
            The Alert if stored, None otherwise.
        """
        with self._transaction("get_alert") as session:
            row = session.get(ActiveAlertModel, fingerprint)
            if row is None:
                return None
            data = json.loads(row.data)
            data.setdefault("fingerprint", fingerprint)
            return Alert.from_dict(data)

    def has_alert(self, fingerprint: str) -> bool:
        with self._transaction("has_alert") as session:
            return session.get(ActiveAlertModel, fingerprint) is not None

    def put_alert(self, fingerprint: str, alert: Alert) -> None:
        """Insert an alert or fully replace the stored one."""
        payload = json.dumps(alert.to_dict())
        stmt = sqlite_insert(ActiveAlertModel).values(id=fingerprint, data=payload)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={"data": stmt.excluded.data},
        )
        with self._transaction("put_alert") as session:
            session.execute(stmt)

    def delete_alert(self, fingerprint: str) -> bool:
        """Delete a stored alert.

        Returns:
            True if an alert was deleted, False if none was stored.
        """
        with self._transaction("delete_alert") as session:
            result = session.execute(
                delete(ActiveAlertModel).where(ActiveAlertModel.id == fingerprint)
            )
            return bool(result.rowcount)

    def forget_alert(self, fingerprint: str) -> None:
        """Delete an alert together with all of its message mappings."""
        with self._transaction("forget_alert") as session:
            session.execute(
                delete(ActiveAlertModel).where(ActiveAlertModel.id == fingerprint)
            )
            session.execute(
                delete(MessageMapModel).where(MessageMapModel.alert_id == fingerprint)
            )

    # Message map

    def map_message_to_alert(self, event_id: str, fingerprint: str) -> None:
        stmt = sqlite_insert(MessageMapModel).values(event_id=event_id, alert_id=fingerprint)
        stmt = stmt.on_conflict_do_update(
            index_elements=["event_id"],
            set_={"alert_id": stmt.excluded.alert_id},
        )
        with self._transaction("map_message_to_alert") as session:
            session.execute(stmt)

    def lookup_alert_for_message(self, event_id: str) -> str | None:
        """Return the fingerprint a sent message reported on, if tracked."""
        with self._transaction("lookup_alert_for_message") as session:
            row = session.get(MessageMapModel, event_id)
            return row.alert_id if row else None

    def delete_message_mappings_for_alert(self, fingerprint: str) -> int:
        """Delete every message mapping for an alert.

        Returns:
            Number of mappings removed.
        """
        with self._transaction("delete_message_mappings_for_alert") as session:
            result = session.execute(
                delete(MessageMapModel).where(MessageMapModel.alert_id == fingerprint)
            )
            return int(result.rowcount or 0)

    # Schedules

    def get_last_summary_time(self, severity: str) -> int | None:
        """Return the stored last-sent value for a severity, None if never sent."""
        with self._transaction("get_last_summary_time") as session:
            row = session.get(ScheduleModel, severity)
            return int(row.last_sent) if row else None

    def set_last_summary_time(self, severity: str, timestamp: int) -> None:
        stmt = sqlite_insert(ScheduleModel).values(severity=severity, last_sent=int(timestamp))
        stmt = stmt.on_conflict_do_update(
            index_elements=["severity"],
            set_={"last_sent": stmt.excluded.last_sent},
        )
        with self._transaction("set_last_summary_time") as session:
            session.execute(stmt)
