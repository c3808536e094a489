from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class TouchpointIn(BaseModel):
    touchpoint_type: Literal["ad_click", "sms", "email", "organic"]
    occurred_at: datetime
    donor_identity: str | None = Field(None, max_length=255)
    campaign_id: str | None = Field(None, max_length=128)
    resolution_key_type: Literal["refcode", "click_id", "phone_hash"] | None = None
    link_confidence: Literal["deterministic", "probabilistic"] = "probabilistic"
    external_id: str | None = Field(None, max_length=255)
    utm_source: str | None = Field(None, max_length=255)
    utm_medium: str | None = Field(None, max_length=255)
    utm_campaign: str | None = Field(None, max_length=255)
    metadata: dict = Field(default_factory=dict)


class TouchpointResponse(BaseModel):
    touchpoint_id: uuid.UUID
    touchpoint_type: str
    campaign_id: str | None
    occurred_at: datetime
    resolution_key_type: str | None
    link_confidence: str
    external_id: str | None

    class Config:
        from_attributes = True


class DonationIn(BaseModel):
    transaction_id: str = Field(..., min_length=1, max_length=64)
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    donated_at: datetime
    org_id: uuid.UUID | None = None
    donor_identity: str | None = Field(None, max_length=255)


class DonationResponse(BaseModel):
    transaction_id: str
    org_id: uuid.UUID | None
    amount: Decimal
    donated_at: datetime

    class Config:
        from_attributes = True


class MiddleTouch(BaseModel):
    channel: str
    campaign_id: str | None
    occurred_at: datetime
    weight: Decimal


class AttributionResponse(BaseModel):
    transaction_id: str
    is_organic: bool
    model: str
    first_touch_channel: str
    first_touch_campaign: str | None
    first_touch_weight: Decimal
    last_touch_channel: str | None
    last_touch_campaign: str | None
    last_touch_weight: Decimal
    middle_touches: list[MiddleTouch]
    middle_touches_weight: Decimal
    total_touchpoints: int
    computed_at: datetime

    class Config:
        from_attributes = True
