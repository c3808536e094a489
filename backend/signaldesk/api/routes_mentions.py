from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.mentions import schemas
from signaldesk.domain.mentions.service import ingest_mentions
from signaldesk.infra.db import get_db_session

router = APIRouter()


@router.post("/v1/mentions", response_model=schemas.MentionBatchResponse, status_code=status.HTTP_202_ACCEPTED)
async def post_mentions(
    request: schemas.MentionBatchRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.MentionBatchResponse:
    return await ingest_mentions(session, request.mentions)
