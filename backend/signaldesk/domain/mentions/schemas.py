from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class MentionIn(BaseModel):
    entity_name: str = Field(..., min_length=1, max_length=255)
    entity_type: str = Field(..., min_length=1, max_length=32)
    source_type: str = Field(..., min_length=1, max_length=32)
    source_id: str = Field(..., min_length=1, max_length=255)
    mentioned_at: datetime
    sentiment: float | None = Field(None, ge=-1.0, le=1.0)
    source_title: str | None = Field(None, max_length=500)
    source_url: str | None = Field(None, max_length=1000)


class MentionBatchRequest(BaseModel):
    mentions: list[MentionIn] = Field(default_factory=list, max_length=1000)


class MentionBatchResponse(BaseModel):
    created: int
    updated: int
    skipped: int
