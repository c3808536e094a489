from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.anomalies import schemas as anomaly_schemas
from signaldesk.domain.anomalies.service import list_anomalies
from signaldesk.domain.trends import schemas as trend_schemas
from signaldesk.domain.trends.service import list_trends
from signaldesk.infra.db import get_db_session

router = APIRouter()


@router.get("/v1/trends", response_model=trend_schemas.EntityTrendListResponse)
async def get_trends(
    is_trending: bool | None = None,
    limit: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
) -> trend_schemas.EntityTrendListResponse:
    trends = await list_trends(session, is_trending=is_trending, limit=limit)
    return trend_schemas.EntityTrendListResponse(
        items=[trend_schemas.EntityTrendResponse.model_validate(trend) for trend in trends]
    )


@router.get("/v1/anomalies", response_model=anomaly_schemas.EntityAnomalyListResponse)
async def get_anomalies(
    surfaced: bool | None = None,
    limit: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
) -> anomaly_schemas.EntityAnomalyListResponse:
    anomalies = await list_anomalies(session, surfaced=surfaced, limit=limit)
    return anomaly_schemas.EntityAnomalyListResponse(
        items=[anomaly_schemas.EntityAnomalyResponse.model_validate(anomaly) for anomaly in anomalies]
    )
