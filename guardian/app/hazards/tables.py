"""
tables.py — ORM tables for hazards and alerts, plus read-only mappings of
the user/place tables owned by the CRUD layer.

    hazard        UNIQUE (source, source_event_id)
    alert         UNIQUE (user_id, hazard_id), FK hazard.id
    user_account  read-only here
    user_place    read-only here
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from guardian.app.core.database import Base


class HazardRow(Base):
    __tablename__ = "hazard"
    __table_args__ = (
        UniqueConstraint("source", "source_event_id", name="uq_hazard_source_event"),
        Index("ix_hazard_occurred_at", "occurred_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(32), nullable=False)
    severity = Column(Float, nullable=False, default=0.0)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    source = Column(String(64), nullable=False)
    source_event_id = Column(String(255), nullable=False)
    attributes = Column(JSON, nullable=False, default=dict)


class AlertRow(Base):
    __tablename__ = "alert"
    __table_args__ = (
        UniqueConstraint("user_id", "hazard_id", name="uq_alert_user_hazard"),
        Index("ix_alert_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    hazard_id = Column(Integer, ForeignKey("hazard.id", ondelete="CASCADE"), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class UserAccountRow(Base):
    __tablename__ = "user_account"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, default="")
    last_lat = Column(Float, nullable=True)
    last_lon = Column(Float, nullable=True)
    last_location_update = Column(DateTime(timezone=True), nullable=True)
    push_token = Column(String(255), nullable=True)
    family_id = Column(String(64), nullable=True, index=True)


class UserPlaceRow(Base):
    __tablename__ = "user_place"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False)
    label = Column(String(255), nullable=True)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
