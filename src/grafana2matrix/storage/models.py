"""SQLAlchemy models for persistent storage.

This module defines the database schema for active alerts, the mapping
from sent Matrix events to alerts, and the last-sent time of each summary
schedule. Table and column names match the databases written by earlier
releases so that existing state files are picked up unchanged.
"""

from __future__ import annotations

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class ActiveAlertModel(Base):
    """SQLAlchemy model for currently firing alerts.

    The alert itself is kept as a JSON document keyed by its fingerprint.
    """

    __tablename__ = "active_alerts"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    data: Mapped[str] = mapped_column(Text, nullable=False)


class MessageMapModel(Base):
    """SQLAlchemy model mapping a sent Matrix event to the alert it reported."""

    __tablename__ = "message_map"

    event_id: Mapped[str] = mapped_column(String, primary_key=True)
    alert_id: Mapped[str] = mapped_column(String, nullable=False)  # fingerprint

    __table_args__ = (Index("idx_message_map_alert_id", "alert_id"),)


class ScheduleModel(Base):
    """SQLAlchemy model for the last triggered summary per severity class.

    ``last_sent`` holds epoch seconds. Databases from earlier releases stored
    minutes since midnight instead; see ``engine.schedule`` for how those are read.
    """

    __tablename__ = "schedules"

    severity: Mapped[str] = mapped_column(String, primary_key=True)
    last_sent: Mapped[int] = mapped_column(Integer, nullable=False)
