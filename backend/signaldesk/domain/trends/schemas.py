from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class EntityTrendResponse(BaseModel):
    entity_name: str
    entity_type: str
    mentions_1h: int
    mentions_6h: int
    mentions_24h: int
    mentions_7d: int
    velocity: float
    momentum: float
    is_trending: bool
    sentiment_avg: float | None
    sentiment_change: float | None
    first_seen_at: datetime | None
    last_seen_at: datetime | None
    calculated_at: datetime

    class Config:
        from_attributes = True


class EntityTrendListResponse(BaseModel):
    items: list[EntityTrendResponse]
