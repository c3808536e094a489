from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.attribution import schemas, service
from signaldesk.infra.db import get_db_session

router = APIRouter()


@router.post("/v1/touchpoints", response_model=schemas.TouchpointResponse)
async def post_touchpoint(
    payload: schemas.TouchpointIn,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.TouchpointResponse:
    touchpoint, action = await service.record_touchpoint(session, payload)
    response.status_code = status.HTTP_201_CREATED if action == "created" else status.HTTP_200_OK
    return schemas.TouchpointResponse.model_validate(touchpoint)


@router.post("/v1/donations", response_model=schemas.DonationResponse)
async def post_donation(
    payload: schemas.DonationIn,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.DonationResponse:
    donation, created = await service.record_donation(session, payload)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return schemas.DonationResponse.model_validate(donation)


@router.get("/v1/attribution/{transaction_id}", response_model=schemas.AttributionResponse)
async def get_attribution(
    transaction_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.AttributionResponse:
    record = await service.get_attribution(session, transaction_id)
    return schemas.AttributionResponse.model_validate(record)
