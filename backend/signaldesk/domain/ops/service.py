from __future__ import annotations

import logging
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.errors import NotFoundError
from signaldesk.domain.ops import schemas
from signaldesk.domain.ops.db_models import JobHeartbeat, JobRun
from signaldesk.infra.db import ensure_utc
from signaldesk.infra.metrics import metrics
from signaldesk.shared.batch import RunSummary

logger = logging.getLogger(__name__)

RUNNER_HEARTBEAT = "jobs-runner"
JOB_ORDER = ("entity-trends", "anomaly-detection", "watchlist-alerts", "attribution")


async def is_job_disabled(session: AsyncSession, name: str) -> bool:
    record = await session.get(JobHeartbeat, name)
    return bool(record and record.is_disabled)


async def record_job_run(
    session: AsyncSession,
    name: str,
    *,
    started_at: datetime,
    summary: RunSummary | None,
    runner_id: str | None = None,
    error: str | None = None,
) -> JobRun:
    run = JobRun(
        job_name=name,
        runner_id=runner_id,
        started_at=started_at,
        finished_at=datetime.now(tz=timezone.utc),
        status="failed" if error else (summary.status if summary else "ok"),
        processed=summary.processed if summary else 0,
        skipped=summary.skipped if summary else 0,
        errored=summary.errored if summary else 0,
        deferred=summary.deferred if summary else 0,
        detail=dict(summary.counters) if summary else {},
        error=error,
    )
    session.add(run)
    await session.commit()
    return run


async def _latest_runs(session: AsyncSession) -> dict[str, JobRun]:
    latest = (
        sa.select(JobRun.job_name, sa.func.max(JobRun.started_at).label("started_at"))
        .group_by(JobRun.job_name)
        .subquery()
    )
    rows = await session.execute(
        sa.select(JobRun).join(
            latest,
            sa.and_(JobRun.job_name == latest.c.job_name, JobRun.started_at == latest.c.started_at),
        )
    )
    return {run.job_name: run for run in rows.scalars().all()}


async def list_job_statuses(session: AsyncSession) -> list[schemas.JobStatusResponse]:
    heartbeats = {
        record.name: record
        for record in (await session.execute(sa.select(JobHeartbeat))).scalars().all()
    }
    runs = await _latest_runs(session)
    names = list(JOB_ORDER) + sorted(name for name in heartbeats if name not in JOB_ORDER)
    statuses = []
    for name in names:
        record = heartbeats.get(name)
        run = runs.get(name)
        statuses.append(
            schemas.JobStatusResponse(
                name=name,
                last_heartbeat=ensure_utc(record.last_heartbeat) if record else None,
                runner_id=record.runner_id if record else None,
                last_success_at=ensure_utc(record.last_success_at) if record else None,
                last_error=record.last_error if record else None,
                last_error_at=ensure_utc(record.last_error_at) if record else None,
                consecutive_failures=record.consecutive_failures if record else 0,
                is_disabled=bool(record and record.is_disabled),
                disabled_at=ensure_utc(record.disabled_at) if record else None,
                last_run_status=run.status if run else None,
                last_run_at=ensure_utc(run.started_at) if run else None,
            )
        )
    return statuses


async def enable_job(session: AsyncSession, name: str) -> JobHeartbeat:
    if name not in JOB_ORDER:
        raise NotFoundError(detail=f"Unknown job {name}")
    now = datetime.now(tz=timezone.utc)
    record = await session.get(JobHeartbeat, name)
    if record is None:
        record = JobHeartbeat(name=name, last_heartbeat=now, consecutive_failures=0, updated_at=now)
        session.add(record)
    record.is_disabled = False
    record.disabled_at = None
    record.consecutive_failures = 0
    await session.commit()
    await session.refresh(record)
    metrics.set_job_disabled(name, False)
    logger.info("job_enabled", extra={"extra": {"job": name}})
    return record
