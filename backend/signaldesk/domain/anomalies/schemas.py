from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel


class EntityAnomalyResponse(BaseModel):
    entity_name: str
    entity_type: str
    anomaly_type: str
    severity: str
    z_score: float | None
    current_value: float
    baseline_value: float
    baseline_stddev: float
    baseline_points: int
    is_surfaced: bool
    detected_day: date
    detected_at: datetime

    class Config:
        from_attributes = True


class EntityAnomalyListResponse(BaseModel):
    items: list[EntityAnomalyResponse]
