from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.ops.db_models import JobLease
from signaldesk.settings import settings

logger = logging.getLogger(__name__)


async def acquire_lease(
    session: AsyncSession,
    job_name: str,
    holder: str,
    *,
    ttl_seconds: int | None = None,
    now: datetime | None = None,
) -> bool:
    """Take the single-runner lease for ``job_name``.

    An expired lease, or one already held by ``holder``, is taken over in one
    conditional UPDATE. Otherwise a fresh row is inserted and a primary key
    conflict means another runner holds it.
    """

    now = now or datetime.now(tz=timezone.utc)
    ttl = ttl_seconds if ttl_seconds is not None else settings.job_lease_ttl_seconds
    expires_at = now + timedelta(seconds=ttl)

    result = await session.execute(
        sa.update(JobLease)
        .where(
            JobLease.job_name == job_name,
            sa.or_(JobLease.expires_at <= now, JobLease.holder == holder),
        )
        .values(holder=holder, acquired_at=now, expires_at=expires_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        await session.commit()
        return True

    session.add(JobLease(job_name=job_name, holder=holder, acquired_at=now, expires_at=expires_at))
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        return False
    return True


async def release_lease(session: AsyncSession, job_name: str, holder: str) -> bool:
    result = await session.execute(
        sa.delete(JobLease)
        .where(JobLease.job_name == job_name, JobLease.holder == holder)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    released = bool(result.rowcount)
    if not released:
        logger.warning("job_lease_release_missed", extra={"extra": {"job": job_name, "holder": holder}})
    return released


async def get_lease(session: AsyncSession, job_name: str) -> JobLease | None:
    return await session.get(JobLease, job_name)
