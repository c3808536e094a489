from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from signaldesk.infra.db import Base, UUID_TYPE


class AlertStatus:
    UNREAD = "unread"
    READ = "read"
    DISMISSED = "dismissed"


ALERT_STATUSES = {AlertStatus.UNREAD, AlertStatus.READ, AlertStatus.DISMISSED}


class Organization(Base):
    __tablename__ = "organizations"

    org_id: Mapped[uuid.UUID] = mapped_column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    focus_topics: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class WatchlistEntry(Base):
    __tablename__ = "watchlist_entries"

    entry_id: Mapped[uuid.UUID] = mapped_column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID_TYPE, ForeignKey("organizations.org_id", ondelete="RESTRICT"), nullable=False
    )
    entity_name: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(32))
    aliases: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    alert_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=50.0)
    sentiment_alert: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_evaluated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_watchlist_entries_org_active", "org_id", "is_active"),
        Index("ix_watchlist_entries_last_evaluated", "last_evaluated_at"),
    )


class EntityAlert(Base):
    __tablename__ = "entity_alerts"

    alert_id: Mapped[uuid.UUID] = mapped_column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID_TYPE, ForeignKey("organizations.org_id", ondelete="RESTRICT"), nullable=False
    )
    watchlist_entry_id: Mapped[uuid.UUID] = mapped_column(
        UUID_TYPE, ForeignKey("watchlist_entries.entry_id", ondelete="RESTRICT"), nullable=False
    )
    entity_name: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_key: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    matched_entity: Mapped[str] = mapped_column(String(255), nullable=False)
    match_type: Mapped[str] = mapped_column(String(16), nullable=False)
    match_score: Mapped[float] = mapped_column(Float, nullable=False)
    alert_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    actionable_score: Mapped[float] = mapped_column(Float, nullable=False)
    score_breakdown: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    velocity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    current_mentions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sample_sources: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    suggested_action: Mapped[str | None] = mapped_column(String(500))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=AlertStatus.UNREAD)
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    alert_day: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("org_id", "entity_key", "alert_day", name="uq_entity_alerts_org_entity_day"),
        Index("ix_entity_alerts_org_status", "org_id", "status", "created_at"),
    )
