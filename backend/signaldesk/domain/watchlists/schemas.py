from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


class OrganizationUpsert(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    focus_topics: list[str] = Field(default_factory=list, max_length=100)


class OrganizationResponse(BaseModel):
    org_id: uuid.UUID
    name: str
    focus_topics: list[str]
    is_active: bool

    class Config:
        from_attributes = True


class WatchlistEntryCreate(BaseModel):
    entity_name: str = Field(..., min_length=1, max_length=255)
    entity_type: str | None = Field(None, max_length=32)
    aliases: list[str] = Field(default_factory=list, max_length=50)
    alert_threshold: float = Field(50.0, ge=0, le=100)
    sentiment_alert: bool = True


class WatchlistEntryResponse(BaseModel):
    entry_id: uuid.UUID
    org_id: uuid.UUID
    entity_name: str
    entity_type: str | None
    aliases: list[str]
    alert_threshold: float
    sentiment_alert: bool
    is_active: bool
    last_evaluated_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class WatchlistEntryListResponse(BaseModel):
    items: list[WatchlistEntryResponse]


class EntityAlertResponse(BaseModel):
    alert_id: uuid.UUID
    org_id: uuid.UUID
    watchlist_entry_id: uuid.UUID
    entity_name: str
    entity_type: str
    matched_entity: str
    match_type: str
    match_score: float
    alert_type: str
    severity: str
    actionable_score: float
    score_breakdown: dict[str, float]
    velocity: float
    current_mentions: int
    sample_sources: list[dict]
    suggested_action: str | None
    status: str
    alert_day: date
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EntityAlertListResponse(BaseModel):
    items: list[EntityAlertResponse]


class AlertStatusUpdate(BaseModel):
    status: Literal["unread", "read", "dismissed"]
