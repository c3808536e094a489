from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from signaldesk.infra.db import Base, UUID_TYPE

WEIGHT_TYPE = Numeric(9, 6)


class LinkConfidence:
    DETERMINISTIC = "deterministic"
    PROBABILISTIC = "probabilistic"


RESOLUTION_KEY_TYPES = ("refcode", "click_id", "phone_hash")


class Donation(Base):
    __tablename__ = "donations"

    transaction_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    org_id: Mapped[uuid.UUID | None] = mapped_column(UUID_TYPE)
    donor_identity: Mapped[str | None] = mapped_column(String(255))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    donated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_donations_donated_at", "donated_at"),
        Index("ix_donations_donor_identity", "donor_identity"),
    )


class Touchpoint(Base):
    __tablename__ = "attribution_touchpoints"

    touchpoint_id: Mapped[uuid.UUID] = mapped_column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    donor_identity: Mapped[str | None] = mapped_column(String(255))
    touchpoint_type: Mapped[str] = mapped_column(String(32), nullable=False)
    campaign_id: Mapped[str | None] = mapped_column(String(128))
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolution_key_type: Mapped[str | None] = mapped_column(String(16))
    link_confidence: Mapped[str] = mapped_column(
        String(16), nullable=False, default=LinkConfidence.PROBABILISTIC
    )
    external_id: Mapped[str | None] = mapped_column(String(255))
    utm_source: Mapped[str | None] = mapped_column(String(255))
    utm_medium: Mapped[str | None] = mapped_column(String(255))
    utm_campaign: Mapped[str | None] = mapped_column(String(255))
    metadata_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("touchpoint_type", "external_id", name="uq_attribution_touchpoints_external"),
        Index("ix_attribution_touchpoints_identity", "donor_identity", "occurred_at"),
    )


class AttributionRecord(Base):
    __tablename__ = "transaction_attributions"

    transaction_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    is_organic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    model: Mapped[str] = mapped_column(String(16), nullable=False, default="40_20_40")
    first_touch_channel: Mapped[str] = mapped_column(String(32), nullable=False)
    first_touch_campaign: Mapped[str | None] = mapped_column(String(128))
    first_touch_weight: Mapped[Decimal] = mapped_column(WEIGHT_TYPE, nullable=False)
    last_touch_channel: Mapped[str | None] = mapped_column(String(32))
    last_touch_campaign: Mapped[str | None] = mapped_column(String(128))
    last_touch_weight: Mapped[Decimal] = mapped_column(WEIGHT_TYPE, nullable=False)
    middle_touches: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    middle_touches_weight: Mapped[Decimal] = mapped_column(WEIGHT_TYPE, nullable=False)
    total_touchpoints: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
