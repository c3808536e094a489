from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from signaldesk.infra.db import Base, UUID_TYPE


class EntityTrend(Base):
    __tablename__ = "entity_trends"

    trend_id: Mapped[uuid.UUID] = mapped_column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    entity_key: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_name: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    mentions_1h: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mentions_6h: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mentions_24h: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mentions_7d: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    velocity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    momentum: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_trending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sentiment_avg: Mapped[float | None] = mapped_column(Float)
    sentiment_change: Mapped[float | None] = mapped_column(Float)
    first_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    values_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("entity_key", "entity_type", name="uq_entity_trends_entity"),
        Index("ix_entity_trends_trending", "is_trending", "velocity"),
        Index("ix_entity_trends_calculated_at", "calculated_at"),
    )


class EntityTrendSnapshot(Base):
    __tablename__ = "entity_trend_snapshots"

    snapshot_id: Mapped[uuid.UUID] = mapped_column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    entity_key: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    bucket_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    velocity: Mapped[float] = mapped_column(Float, nullable=False)
    mentions_1h: Mapped[int] = mapped_column(Integer, nullable=False)
    mentions_6h: Mapped[int] = mapped_column(Integer, nullable=False)
    mentions_24h: Mapped[int] = mapped_column(Integer, nullable=False)
    sentiment_avg: Mapped[float | None] = mapped_column(Float)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "entity_key", "entity_type", "bucket_start", name="uq_entity_trend_snapshots_bucket"
        ),
        Index("ix_entity_trend_snapshots_entity", "entity_key", "entity_type"),
    )
