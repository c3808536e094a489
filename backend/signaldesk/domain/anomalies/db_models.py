from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from signaldesk.infra.db import Base, UUID_TYPE


class EntityAnomaly(Base):
    __tablename__ = "entity_anomalies"

    anomaly_id: Mapped[uuid.UUID] = mapped_column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    entity_key: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_name: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    anomaly_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    z_score: Mapped[float | None] = mapped_column(Float)
    current_value: Mapped[float] = mapped_column(Float, nullable=False)
    baseline_value: Mapped[float] = mapped_column(Float, nullable=False)
    baseline_stddev: Mapped[float] = mapped_column(Float, nullable=False)
    baseline_points: Mapped[int] = mapped_column(Integer, nullable=False)
    is_surfaced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    detected_day: Mapped[date] = mapped_column(Date, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "entity_key", "entity_type", "anomaly_type", "detected_day", name="uq_entity_anomalies_day"
        ),
        Index("ix_entity_anomalies_surfaced", "is_surfaced", "detected_at"),
    )
