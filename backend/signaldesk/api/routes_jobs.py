from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.ops import schemas
from signaldesk.domain.ops.service import enable_job, list_job_statuses
from signaldesk.infra.db import get_db_session

router = APIRouter()


@router.get("/v1/jobs", response_model=schemas.JobStatusListResponse)
async def get_jobs(session: AsyncSession = Depends(get_db_session)) -> schemas.JobStatusListResponse:
    return schemas.JobStatusListResponse(items=await list_job_statuses(session))


@router.post("/v1/jobs/{job_name}/enable", response_model=schemas.JobStatusResponse)
async def post_enable_job(
    job_name: str, session: AsyncSession = Depends(get_db_session)
) -> schemas.JobStatusResponse:
    await enable_job(session, job_name)
    statuses = await list_job_statuses(session)
    return next(item for item in statuses if item.name == job_name)
