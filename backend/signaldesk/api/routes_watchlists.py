import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.watchlists import schemas, service
from signaldesk.infra.db import get_db_session

router = APIRouter(prefix="/v1/orgs/{org_id}")


@router.put("", response_model=schemas.OrganizationResponse)
async def put_organization(
    org_id: uuid.UUID,
    payload: schemas.OrganizationUpsert,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.OrganizationResponse:
    org = await service.upsert_organization(session, org_id, payload)
    return schemas.OrganizationResponse.model_validate(org)


@router.get("/watchlist", response_model=schemas.WatchlistEntryListResponse)
async def get_watchlist(
    org_id: uuid.UUID,
    include_inactive: bool = False,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.WatchlistEntryListResponse:
    entries = await service.list_entries(session, org_id, include_inactive=include_inactive)
    return schemas.WatchlistEntryListResponse(
        items=[schemas.WatchlistEntryResponse.model_validate(entry) for entry in entries]
    )


@router.post("/watchlist", response_model=schemas.WatchlistEntryResponse, status_code=status.HTTP_201_CREATED)
async def post_watchlist_entry(
    org_id: uuid.UUID,
    payload: schemas.WatchlistEntryCreate,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.WatchlistEntryResponse:
    entry = await service.create_entry(session, org_id, payload)
    return schemas.WatchlistEntryResponse.model_validate(entry)


@router.delete("/watchlist/{entry_id}", response_model=schemas.WatchlistEntryResponse)
async def delete_watchlist_entry(
    org_id: uuid.UUID,
    entry_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.WatchlistEntryResponse:
    entry = await service.deactivate_entry(session, org_id, entry_id)
    return schemas.WatchlistEntryResponse.model_validate(entry)


@router.get("/alerts", response_model=schemas.EntityAlertListResponse)
async def get_alerts(
    org_id: uuid.UUID,
    alert_status: str | None = Query("unread", alias="status"),
    limit: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
) -> schemas.EntityAlertListResponse:
    alerts = await service.list_alerts(session, org_id, status=alert_status or None, limit=limit)
    return schemas.EntityAlertListResponse(
        items=[schemas.EntityAlertResponse.model_validate(alert) for alert in alerts]
    )


@router.patch("/alerts/{alert_id}", response_model=schemas.EntityAlertResponse)
async def patch_alert(
    org_id: uuid.UUID,
    alert_id: uuid.UUID,
    payload: schemas.AlertStatusUpdate,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.EntityAlertResponse:
    alert = await service.update_alert_status(session, org_id, alert_id, payload.status)
    return schemas.EntityAlertResponse.model_validate(alert)
